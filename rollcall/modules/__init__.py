# Rollcall QR Attendance - Modules Package
"""
Core modules for the attendance system: persistence, scan payload parsing,
check-in validation and recording, session lifecycle, students, teachers,
reporting and email delivery.
"""
