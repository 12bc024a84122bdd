"""
QR Code Generator Module - Rollcall QR Attendance

Builds the scan URLs embedded in student QR codes and renders them as PNG
images. A scan URL carries three query parameters:

    <origin>/scan?student_id=<id>&qr=<percent-encoded token>&session_id=<id>

The token is the student's secret, generated once at student creation as a
random UUID and never derived from the student id or roll number.
"""

import base64
import io
import logging
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import qrcode
from PIL import Image, ImageDraw, ImageFont

from rollcall.modules.qr_payload import SCAN_PATH


def generate_qr_token() -> str:
    """Return a fresh, unguessable student token."""
    return str(uuid.uuid4())


def build_scan_url(origin: str, student_id: str, qr_token: str,
                   session_id: Optional[str] = None) -> str:
    """
    Build the URL encoded into a student's QR code.

    Args:
        origin (str): Application origin, e.g. ``https://attendance.example.edu``
        student_id (str): Student id
        qr_token (str): Student's secret token
        session_id (str): Session id; omitted when no session is selected

    Returns:
        str: Scan URL
    """
    url = (f"{origin.rstrip('/')}{SCAN_PATH}?student_id={quote(str(student_id), safe='')}"
           f"&qr={quote(qr_token, safe='')}")
    if session_id:
        url += f"&session_id={quote(str(session_id), safe='')}"
    return url


class QRGenerator:
    """Renders scan URLs as QR code images."""

    def __init__(self, box_size: int = 10, border: int = 4):
        self.logger = logging.getLogger(__name__)

        self.default_settings = {
            'version': 1,
            'error_correction': qrcode.constants.ERROR_CORRECT_M,  # ~15% error correction
            'box_size': box_size,
            'border': border,
            'fill_color': 'black',
            'back_color': 'white'
        }

    def generate_qr_image(self, data: str, label: Optional[str] = None) -> Dict[str, Any]:
        """
        Render ``data`` as a QR code PNG.

        Args:
            data (str): Text to encode, normally a scan URL
            label (str): Optional caption drawn under the code

        Returns:
            Dict[str, Any]: ``image_base64`` and ``image_size``
        """
        settings = self.default_settings
        qr = qrcode.QRCode(
            version=settings['version'],
            error_correction=settings['error_correction'],
            box_size=settings['box_size'],
            border=settings['border']
        )
        qr.add_data(data)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=settings['fill_color'],
            back_color=settings['back_color']
        ).convert('RGB')

        if label:
            img = self._add_caption(img, label)

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')

        return {
            'image_base64': base64.b64encode(buffer.getvalue()).decode(),
            'image_size': img.size
        }

    def _add_caption(self, qr_img: Image.Image, caption: str) -> Image.Image:
        """Return a copy of ``qr_img`` with ``caption`` centered underneath."""
        width, height = qr_img.size
        canvas = Image.new('RGB', (width, height + 40), 'white')
        canvas.paste(qr_img, (0, 0))

        draw = ImageDraw.Draw(canvas)
        font = ImageFont.load_default()

        bbox = draw.textbbox((0, 0), caption, font=font)
        text_width = bbox[2] - bbox[0]
        draw.text(((width - text_width) // 2, height + 10), caption, fill='black', font=font)
        return canvas

    def generate_session_qr_codes(self, origin: str, session_id: str,
                                  students: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Render QR codes for every student assigned to a session.

        Args:
            origin (str): Application origin
            session_id (str): Session id
            students (List[Dict[str, Any]]): Rows with id, student_name, roll_no, qr_token

        Returns:
            Dict[str, Any]: Batch result with per-student entries and failures
        """
        results = {
            'success': True,
            'total_students': len(students),
            'successful': 0,
            'failed': 0,
            'results': [],
            'errors': []
        }

        for student in students:
            try:
                qr_url = build_scan_url(origin, student['id'], student['qr_token'], session_id)
                image = self.generate_qr_image(
                    qr_url, label=f"{student['student_name']} ({student['roll_no']})"
                )
                results['successful'] += 1
                results['results'].append({
                    'student_id': student['id'],
                    'student_name': student['student_name'],
                    'qr_url': qr_url,
                    'image_base64': image['image_base64']
                })
            except (KeyError, ValueError, OSError) as e:
                results['failed'] += 1
                results['errors'].append({
                    'student_id': student.get('id', 'unknown'),
                    'error': str(e)
                })

        if results['failed'] > 0:
            results['success'] = False

        self.logger.info(
            f"Session {session_id} QR generation: "
            f"{results['successful']}/{results['total_students']} successful"
        )
        return results
