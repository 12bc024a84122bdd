"""
Attendance Manager Module - Rollcall QR Attendance

This module turns a scanned QR payload into an attendance record.

Check-in runs in two stages with no writes until the first stage passes:

1. validate_scan: the session exists and belongs to the scanning teacher, the
   session is active, the student exists, and the presented token equals the
   student's stored token.
2. record_attendance: an idempotent upsert to 'present'. A missing row is
   inserted, an 'absent' row is flipped, and a row that is already 'present'
   is left alone and reported as ALREADY_PRESENT.

process_attendance_scan wraps both stages and converts every failure into a
result dictionary, so a bad scan never propagates out of the scan loop.
"""

from enum import Enum
import hmac
import logging
from typing import Dict, List, Optional, Any, Tuple

from rollcall.modules.database_manager import utc_now
from rollcall.modules.exceptions import (
    PersistenceError,
    RollcallError,
    SessionNotActive,
    SessionNotFound,
    StudentNotFound,
    TokenMismatch,
)
from rollcall.modules.qr_payload import ScanPayload, parse_scan_payload

STATUS_PRESENT = 'present'
STATUS_ABSENT = 'absent'


class RecordOutcome(Enum):
    CREATED = 'created'
    UPDATED = 'updated'
    ALREADY_PRESENT = 'already_present'


OUTCOME_MESSAGES = {
    RecordOutcome.CREATED: '{name} - Attendance marked Present',
    RecordOutcome.UPDATED: '{name} - Attendance updated to Present',
    RecordOutcome.ALREADY_PRESENT: '{name} - Already marked present',
}


class AttendanceManager:
    """
    Scan validation and attendance recording.
    """

    def __init__(self, database_manager):
        """
        Initialize the attendance manager with database connection.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    def process_attendance_scan(self, qr_data: str, teacher_id: str) -> Dict[str, Any]:
        """
        Process a QR code scan for attendance recording.

        Args:
            qr_data (str): Text decoded from the QR code
            teacher_id (str): Teacher performing the scan

        Returns:
            Dict[str, Any]: Scan processing result
        """
        try:
            payload = parse_scan_payload(qr_data)
            student, session = self.validate_scan(payload, teacher_id)
            outcome, scanned_at = self.record_attendance(student, session, teacher_id)

        except PersistenceError as e:
            self.logger.error(f"Attendance scan failed on datastore error: {str(e)}")
            return {
                'success': False,
                'message': 'An error occurred while processing the scan',
                'error_type': e.error_type
            }

        except RollcallError as e:
            self.logger.warning(f"Scan rejected ({e.error_type}): {e.message}")
            return {
                'success': False,
                'message': e.message,
                'error_type': e.error_type
            }

        return {
            'success': True,
            'outcome': outcome.value,
            'message': OUTCOME_MESSAGES[outcome].format(name=student['student_name']),
            'student': {
                'id': student['id'],
                'name': student['student_name'],
                'roll_no': student['roll_no']
            },
            'session': {
                'id': session['id'],
                'name': session['session_name']
            },
            'scanned_at': scanned_at
        }

    def validate_scan(self, payload: ScanPayload,
                      teacher_id: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Check a scan against the session and the student's stored token.

        Args:
            payload (ScanPayload): Parsed QR payload
            teacher_id (str): Teacher performing the scan

        Returns:
            Tuple[Dict[str, Any], Dict[str, Any]]: The (student, session) rows

        Raises:
            SessionNotFound, SessionNotActive, StudentNotFound, TokenMismatch
        """
        session = self.db.execute_query(
            """SELECT id, session_name, teacher_id, start_time, end_time
               FROM sessions WHERE id = ? AND teacher_id = ?""",
            (payload.session_id, teacher_id),
            fetch_all=False
        )
        if not session:
            raise SessionNotFound()

        if session['start_time'] is None or session['end_time'] is not None:
            raise SessionNotActive(session['session_name'])

        student = self.db.execute_query(
            """SELECT id, student_name, student_email, roll_no, qr_token
               FROM students WHERE id = ?""",
            (payload.student_id,),
            fetch_all=False
        )
        if not student:
            raise StudentNotFound()

        if not hmac.compare_digest(student['qr_token'].encode(), payload.qr_token.encode()):
            raise TokenMismatch()

        return student, session

    def record_attendance(self, student: Dict[str, Any], session: Dict[str, Any],
                          teacher_id: str) -> Tuple[RecordOutcome, Optional[str]]:
        """
        Mark a validated student present in a session.

        Each branch is a single conditional write, so concurrent scans of the
        same student cannot insert twice or lose an update.

        Returns:
            Tuple[RecordOutcome, Optional[str]]: Outcome and the row's scanned_at
        """
        now = utc_now()

        with self.db.transaction() as conn:
            cursor = conn.cursor()

            cursor.execute(
                """INSERT INTO attendance
                       (student_id, session_id, teacher_id, attendance_status, scanned_at)
                   VALUES (?, ?, ?, 'present', ?)
                   ON CONFLICT(student_id, session_id) DO NOTHING""",
                (student['id'], session['id'], teacher_id, now)
            )
            if cursor.rowcount == 1:
                outcome = RecordOutcome.CREATED
            else:
                cursor.execute(
                    """UPDATE attendance SET attendance_status = 'present', scanned_at = ?
                       WHERE student_id = ? AND session_id = ? AND attendance_status = 'absent'""",
                    (now, student['id'], session['id'])
                )
                outcome = RecordOutcome.UPDATED if cursor.rowcount == 1 else RecordOutcome.ALREADY_PRESENT

            cursor.execute(
                "SELECT scanned_at FROM attendance WHERE student_id = ? AND session_id = ?",
                (student['id'], session['id'])
            )
            scanned_at = cursor.fetchone()['scanned_at']

        if outcome is RecordOutcome.ALREADY_PRESENT:
            self.logger.info(f"Student {student['id']} already present in session {session['id']}")
        else:
            self.logger.info(
                f"Attendance recorded: student {student['id']}, session {session['id']}, "
                f"outcome {outcome.value}"
            )
        return outcome, scanned_at

    def get_attendance_record(self, student_id: str, session_id: str) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM attendance WHERE student_id = ? AND session_id = ?",
            (student_id, session_id),
            fetch_all=False
        )

    def get_session_records(self, session_id: str) -> List[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM attendance WHERE session_id = ? ORDER BY id",
            (session_id,)
        )

    def get_recent_attendance(self, teacher_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Most recent present-marks across a teacher's sessions.

        Args:
            teacher_id (str): Owning teacher
            limit (int): Number of records to retrieve

        Returns:
            List[Dict[str, Any]]: Recent attendance records
        """
        return self.db.execute_query(
            """SELECT a.student_id, a.session_id, a.attendance_status, a.scanned_at,
                      s.student_name, s.roll_no, se.session_name
               FROM attendance a
               JOIN students s ON a.student_id = s.id
               JOIN sessions se ON a.session_id = se.id
               WHERE se.teacher_id = ? AND a.attendance_status = 'present'
               ORDER BY a.scanned_at DESC
               LIMIT ?""",
            (teacher_id, limit)
        )
