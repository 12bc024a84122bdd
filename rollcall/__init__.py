# Rollcall QR Attendance - App Package
"""
Classroom attendance by QR code: teachers run sessions, assign students, and
mark attendance by scanning each student's personal QR code.
"""

__version__ = "1.0.0"
__description__ = "Flask-based classroom attendance tracking using per-student QR codes"

from .modules.database_manager import DatabaseManager
from .modules.attendance_manager import AttendanceManager
from .modules.session_manager import SessionManager
from .modules.student_manager import StudentManager
from .modules.auth_manager import AuthManager
from .modules.report_generator import ReportGenerator
from .modules.email_notifier import EmailNotifier
from .modules.qr_generator import QRGenerator
from .modules.scan_debouncer import ScanDebouncer

__all__ = [
    'DatabaseManager',
    'AttendanceManager',
    'SessionManager',
    'StudentManager',
    'AuthManager',
    'ReportGenerator',
    'EmailNotifier',
    'QRGenerator',
    'ScanDebouncer'
]
