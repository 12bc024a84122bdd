"""
Authentication Manager Module - Rollcall QR Attendance

Teacher accounts and sign-in state. The rest of the system never reads
ambient login state: the Flask layer asks this module for the caller's id and
passes it explicitly into every manager call.

Interested components can subscribe to 'signed_in' / 'signed_out' events.
subscribe() returns a handle whose unsubscribe() is idempotent, and the handle
is also a context manager so teardown always detaches it.
"""

from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, timedelta
from typing import Callable, Dict, Any, List, Optional
import logging
import re
import threading
import uuid
from dataclasses import dataclass

from rollcall.modules.database_manager import utc_now
from rollcall.modules.exceptions import NotAuthenticated, PersistenceError

EVENT_SIGNED_IN = 'signed_in'
EVENT_SIGNED_OUT = 'signed_out'

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


@dataclass
class TeacherSession:
    """Data structure for a signed-in teacher."""
    teacher_id: str
    email: str
    name: str
    login_time: datetime
    last_activity: datetime


class AuthSubscription:
    """Handle returned by AuthManager.subscribe()."""

    def __init__(self, manager: 'AuthManager', callback: Callable[[str, Dict[str, Any]], None]):
        self._manager = manager
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._manager._remove_subscription(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unsubscribe()
        return False


class AuthManager:
    """
    Teacher registration, sign-in and session tracking.
    """

    def __init__(self, database_manager, session_timeout_minutes: int = 480,
                 password_min_length: int = 6):
        """
        Initialize the authentication manager with database connection.

        Args:
            database_manager: Database manager instance
            session_timeout_minutes (int): Inactivity window before a sign-in expires
            password_min_length (int): Minimum accepted password length
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)
        self.session_timeout = timedelta(minutes=session_timeout_minutes)
        self.password_min_length = password_min_length

        self.active_sessions: Dict[str, TeacherSession] = {}
        self._subscriptions: List[AuthSubscription] = []
        self._lock = threading.Lock()

    def register_teacher(self, name: str, email: str, password: str) -> Dict[str, Any]:
        """
        Create a teacher account.

        Returns:
            Dict[str, Any]: Creation result
        """
        name = (name or '').strip()
        email = (email or '').strip().lower()

        if not name or not email or not password:
            return {'success': False, 'error': 'Name, email and password are required'}
        if not EMAIL_PATTERN.match(email):
            return {'success': False, 'error': 'Invalid email address format'}
        if len(password) < self.password_min_length:
            return {'success': False,
                    'error': f'Password must be at least {self.password_min_length} characters long'}

        existing = self.db.execute_query(
            "SELECT id FROM teachers WHERE email = ?",
            (email,),
            fetch_all=False
        )
        if existing:
            return {'success': False, 'error': 'Email address already exists'}

        teacher_id = str(uuid.uuid4())
        try:
            self.db.execute_update(
                """INSERT INTO teachers (id, name, email, password_hash, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (teacher_id, name, email, generate_password_hash(password), utc_now())
            )
        except PersistenceError as e:
            self.logger.error(f"Teacher registration failed for {email}: {str(e)}")
            return {'success': False, 'error': 'Failed to create teacher account'}

        self.logger.info(f"Teacher registered: {email} (ID: {teacher_id})")
        return {'success': True, 'teacher_id': teacher_id, 'message': 'Account created successfully'}

    def authenticate_teacher(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        """
        Check credentials and open a sign-in session.

        Returns:
            Dict[str, Any]: Teacher information if authenticated, None otherwise
        """
        email = (email or '').strip().lower()
        teacher = self.db.execute_query(
            "SELECT * FROM teachers WHERE email = ?",
            (email,),
            fetch_all=False
        )

        if not teacher or not check_password_hash(teacher['password_hash'], password or ''):
            self.logger.warning(f"Authentication failed for {email}")
            return None

        now = datetime.now()
        with self._lock:
            self.active_sessions[teacher['id']] = TeacherSession(
                teacher_id=teacher['id'],
                email=teacher['email'],
                name=teacher['name'],
                login_time=now,
                last_activity=now
            )

        self.logger.info(f"Teacher authenticated: {email}")
        info = {'id': teacher['id'], 'name': teacher['name'], 'email': teacher['email']}
        self._notify(EVENT_SIGNED_IN, info)
        return info

    def sign_out(self, teacher_id: str) -> bool:
        with self._lock:
            session = self.active_sessions.pop(teacher_id, None)
        if session is None:
            return False

        self.logger.info(f"Teacher {teacher_id} signed out")
        self._notify(EVENT_SIGNED_OUT, {'id': teacher_id, 'email': session.email})
        return True

    def is_session_valid(self, teacher_id: Optional[str]) -> bool:
        """
        Whether ``teacher_id`` is signed in and has not been idle too long.
        A valid check refreshes the activity time.
        """
        if not teacher_id:
            return False

        with self._lock:
            session = self.active_sessions.get(teacher_id)
            if session is None:
                return False

            now = datetime.now()
            if now - session.last_activity > self.session_timeout:
                del self.active_sessions[teacher_id]
                expired = True
            else:
                session.last_activity = now
                expired = False

        if expired:
            self.logger.info(f"Session expired for teacher {teacher_id}")
            self._notify(EVENT_SIGNED_OUT, {'id': teacher_id, 'email': session.email})
            return False
        return True

    def require_caller(self, teacher_id: Optional[str]) -> str:
        """Return the caller's id, or raise NotAuthenticated."""
        if not self.is_session_valid(teacher_id):
            raise NotAuthenticated()
        return teacher_id

    def get_teacher(self, teacher_id: str) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT id, name, email, created_at FROM teachers WHERE id = ?",
            (teacher_id,),
            fetch_all=False
        )

    def subscribe(self, callback: Callable[[str, Dict[str, Any]], None]) -> AuthSubscription:
        """
        Register ``callback(event, teacher_info)`` for sign-in/out events.

        Returns:
            AuthSubscription: Handle to cancel the subscription
        """
        subscription = AuthSubscription(self, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove_subscription(self, subscription: AuthSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _notify(self, event: str, teacher_info: Dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscriptions)
        for subscription in subscribers:
            try:
                subscription.callback(event, teacher_info)
            except Exception as e:
                self.logger.error(f"Auth event listener failed on {event}: {str(e)}")
