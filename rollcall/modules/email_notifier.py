"""
Email Notifier Module - Rollcall QR Attendance

Sends every student assigned to a session an email with their personal scan
link. Messages go out one at a time; a failed recipient is counted and logged
and the batch carries on with the rest.
"""

import smtplib
import ssl
import time
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Callable, Dict, Optional
import logging

from jinja2 import Template

from rollcall.modules.exceptions import EmailDeliveryFailure, SessionNotFound
from rollcall.modules.qr_generator import build_scan_url

QR_EMAIL_TEMPLATE = """
<div style="font-family: Arial, sans-serif; line-height: 1.6;">
  <h2>Attendance QR Code</h2>
  <p>Hello <strong>{{ student_name }}</strong>,</p>
  <p>Here is your QR code for the session: <strong>{{ session_name }}</strong></p>
  <p><strong>Roll Number:</strong> {{ roll_no }}</p>
  <p><strong>Teacher:</strong> {{ teacher_name }}</p>
  <br>
  <p>Please click the link below to access your QR code:</p>
  <p><a href="{{ qr_url }}" target="_blank" style="color: #0066cc;">Open QR Code</a></p>
  <br>
  <p>Best regards,<br>{{ teacher_name }}</p>
</div>
"""


class EmailNotifier:
    """
    Batch delivery of QR scan links by email.
    """

    def __init__(self, database_manager, mail_config: Optional[Dict[str, Any]] = None,
                 transport: Optional[Callable[[MIMEMultipart], None]] = None):
        """
        Initialize the notifier.

        Args:
            database_manager: Database manager instance
            mail_config (Dict[str, Any]): smtp_server, smtp_port, username,
                password, use_tls, sender, send_delay_seconds
            transport: Callable that delivers one message; defaults to SMTP
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

        self.email_config = {
            'smtp_server': 'localhost',
            'smtp_port': 587,
            'username': '',
            'password': '',
            'use_tls': True,
            'sender': 'Attendance System <noreply@attendance.local>',
            'send_delay_seconds': 0.0
        }
        if mail_config:
            self.email_config.update({k: v for k, v in mail_config.items() if v is not None})

        self.transport = transport or self._send_via_smtp
        self.template = Template(QR_EMAIL_TEMPLATE, autoescape=True)

    def send_one(self, recipient: str, template_fields: Dict[str, Any]) -> None:
        """
        Render and send one QR email.

        Args:
            recipient (str): Destination address
            template_fields (Dict[str, Any]): student_name, session_name,
                roll_no, teacher_name, teacher_email, qr_url

        Raises:
            EmailDeliveryFailure: If the message could not be sent
        """
        try:
            msg = MIMEMultipart()
            msg['From'] = self.email_config['sender']
            msg['To'] = recipient
            msg['Subject'] = f"QR Code for {template_fields.get('session_name', '')}"
            if template_fields.get('teacher_email'):
                msg['Reply-To'] = template_fields['teacher_email']
            msg.attach(MIMEText(self.template.render(**template_fields), 'html'))

            self.transport(msg)
        except Exception as e:
            raise EmailDeliveryFailure(recipient, str(e)) from e

        self.logger.info(f"Sent QR email to {recipient}")

    def send_session_qr_codes(self, session_id: str, teacher_id: str, origin: str) -> Dict[str, Any]:
        """
        Email every student assigned to a session their scan link.

        Args:
            session_id (str): Session id
            teacher_id (str): Owning teacher, used for the signature and reply-to
            origin (str): Application origin for the scan URLs

        Returns:
            Dict[str, Any]: Batch result with sent/failed counts

        Raises:
            SessionNotFound: If the teacher has no such session
        """
        session = self.db.execute_query(
            "SELECT id, session_name FROM sessions WHERE id = ? AND teacher_id = ?",
            (session_id, teacher_id),
            fetch_all=False
        )
        if not session:
            raise SessionNotFound()

        teacher = self.db.execute_query(
            "SELECT name, email FROM teachers WHERE id = ?",
            (teacher_id,),
            fetch_all=False
        ) or {'name': '', 'email': ''}

        students = self.db.execute_query(
            """SELECT s.id, s.student_name, s.student_email, s.roll_no, s.qr_token
               FROM session_students ss
               JOIN students s ON s.id = ss.student_id
               WHERE ss.session_id = ?
               ORDER BY s.student_name""",
            (session_id,)
        )

        if not students:
            self.logger.info(f"No students assigned to session {session_id}")
            return {
                'success': True,
                'total': 0,
                'sent': 0,
                'failed': 0,
                'errors': [],
                'message': 'No students assigned to this session'
            }

        sent = 0
        errors = []
        delay = float(self.email_config.get('send_delay_seconds') or 0)

        for index, student in enumerate(students):
            if index and delay:
                time.sleep(delay)

            fields = {
                'student_name': student['student_name'],
                'session_name': session['session_name'],
                'roll_no': student['roll_no'],
                'teacher_name': teacher['name'],
                'teacher_email': teacher['email'],
                'qr_url': build_scan_url(origin, student['id'], student['qr_token'], session_id)
            }
            try:
                self.send_one(student['student_email'], fields)
                sent += 1
            except EmailDeliveryFailure as e:
                self.logger.error(e.message)
                errors.append({'recipient': e.recipient, 'error': e.reason})

        failed = len(errors)
        self.logger.info(f"Email results for session {session_id}: {sent} success, {failed} failed")
        return {
            'success': failed == 0,
            'total': len(students),
            'sent': sent,
            'failed': failed,
            'errors': errors,
            'message': f'Emails sent: {sent} successful, {failed} failed'
        }

    def _send_via_smtp(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.email_config['smtp_server'], int(self.email_config['smtp_port'])) as server:
            if self.email_config['use_tls']:
                server.starttls(context=ssl.create_default_context())
            if self.email_config['username']:
                server.login(self.email_config['username'], self.email_config['password'])
            server.send_message(msg)
