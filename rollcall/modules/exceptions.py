"""
Exceptions Module - Rollcall QR Attendance

Error taxonomy shared by the attendance modules. Each error carries a short
machine-readable ``error_type`` (the same strings the managers put in their
result dictionaries) and a message suitable for a user-facing notification.
"""

from typing import Optional


class RollcallError(Exception):
    """Base class for all attendance errors."""

    error_type = 'system_error'
    default_message = 'An error occurred'

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class MalformedPayload(RollcallError):
    error_type = 'malformed_payload'
    default_message = ('Invalid QR code format. Expected URL with student_id, '
                       'qr, and session_id parameters.')


class SessionNotFound(RollcallError):
    error_type = 'session_not_found'
    default_message = 'Session not found'


class SessionNotActive(RollcallError):
    error_type = 'session_not_active'

    def __init__(self, session_name: Optional[str] = None):
        self.session_name = session_name
        super().__init__(f'Session "{session_name}" is not active')


class StudentNotFound(RollcallError):
    error_type = 'student_not_found'
    default_message = 'Student not found'


class TokenMismatch(RollcallError):
    error_type = 'token_mismatch'
    default_message = ('QR code validation failed. This QR code is invalid '
                       'or has been tampered with.')


class AlreadyStarted(RollcallError):
    error_type = 'already_started'
    default_message = 'Session already started'


class PersistenceError(RollcallError):
    """Wraps any failure raised by the datastore."""

    error_type = 'persistence_error'
    default_message = 'Database operation failed'


class EmailDeliveryFailure(RollcallError):
    error_type = 'email_delivery_failure'

    def __init__(self, recipient: str, reason: str = ''):
        self.recipient = recipient
        self.reason = reason
        message = f'Failed to send to {recipient}'
        if reason:
            message = f'{message}: {reason}'
        super().__init__(message)


class NotAuthenticated(RollcallError):
    error_type = 'not_authenticated'
    default_message = 'Not authenticated. Please log in.'


class ValidationError(RollcallError):
    error_type = 'validation_error'
    default_message = 'Invalid input'
