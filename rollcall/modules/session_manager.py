"""
Session Manager Module - Rollcall QR Attendance

This module owns the attendance session lifecycle and student enrollment.

A session moves one way only:

    not_started (start_time NULL) -> active (start_time set, end_time NULL)
                                  -> stopped (end_time set)

Start and stop are conditional updates whose WHERE clause carries the
expected state, so concurrent callers (two tabs, two teachers) cannot double
start, double provision, or overwrite timestamps. The database predicate is
the concurrency boundary; nothing here checks state first and writes later.

Starting a session provisions an 'absent' attendance row for every enrolled
student who does not have a row yet.
"""

from dataclasses import dataclass
from typing import Dict, List, Any, Optional
import logging
import uuid

from rollcall.modules.database_manager import utc_now
from rollcall.modules.exceptions import (
    AlreadyStarted,
    SessionNotActive,
    SessionNotFound,
    StudentNotFound,
    ValidationError,
)

STATE_NOT_STARTED = 'not_started'
STATE_ACTIVE = 'active'
STATE_STOPPED = 'stopped'

SESSION_COLUMNS = """id, teacher_id, session_name, start_time, end_time, created_at,
                     (start_time IS NOT NULL AND end_time IS NULL) AS is_active"""


@dataclass
class ProvisioningResult:
    """Outcome of seeding absent rows for a session."""
    session_id: str
    provisioned: int
    no_students_assigned: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'provisioned': self.provisioned,
            'no_students_assigned': self.no_students_assigned
        }


def session_state(session: Dict[str, Any]) -> str:
    """Derive the lifecycle state from a session row."""
    if session.get('start_time') is None:
        return STATE_NOT_STARTED
    if session.get('end_time') is None:
        return STATE_ACTIVE
    return STATE_STOPPED


class SessionManager:
    """
    Session lifecycle and enrollment management.
    Every operation takes the caller's teacher id explicitly; a session owned
    by another teacher is reported as not found.
    """

    def __init__(self, database_manager):
        """
        Initialize the session manager with database connection.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    def create_session(self, teacher_id: str, session_name: str) -> Dict[str, Any]:
        """
        Create a new, not yet started session.

        Args:
            teacher_id (str): Owning teacher
            session_name (str): Display name, e.g. "Math 101 - 2025-10-16"

        Returns:
            Dict[str, Any]: The created session row
        """
        session_name = (session_name or '').strip()
        if not session_name:
            raise ValidationError('Session name is required')

        session_id = str(uuid.uuid4())
        self.db.execute_update(
            """INSERT INTO sessions (id, teacher_id, session_name, created_at)
               VALUES (?, ?, ?, ?)""",
            (session_id, teacher_id, session_name, utc_now())
        )

        self.logger.info(f"Session created: {session_name} (ID: {session_id}) by teacher {teacher_id}")
        return self.get_session(session_id, teacher_id)

    def get_session(self, session_id: str, teacher_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Load a session by id, optionally restricted to its owner.

        Returns:
            Dict[str, Any]: Session row with derived is_active, or None
        """
        if teacher_id is None:
            session = self.db.execute_query(
                f"SELECT {SESSION_COLUMNS} FROM sessions WHERE id = ?",
                (session_id,),
                fetch_all=False
            )
        else:
            session = self.db.execute_query(
                f"SELECT {SESSION_COLUMNS} FROM sessions WHERE id = ? AND teacher_id = ?",
                (session_id, teacher_id),
                fetch_all=False
            )
        if session:
            session['is_active'] = bool(session['is_active'])
        return session

    def get_sessions_by_teacher(self, teacher_id: str) -> List[Dict[str, Any]]:
        """A teacher's sessions, newest first."""
        sessions = self.db.execute_query(
            f"""SELECT {SESSION_COLUMNS} FROM sessions
                WHERE teacher_id = ?
                ORDER BY created_at DESC, rowid DESC""",
            (teacher_id,)
        )
        for session in sessions:
            session['is_active'] = bool(session['is_active'])
            session['state'] = session_state(session)
        return sessions

    def get_session_state(self, session_id: str, teacher_id: str) -> str:
        return session_state(self._require_session(session_id, teacher_id))

    def start_session(self, session_id: str, teacher_id: str) -> ProvisioningResult:
        """
        Activate a session and provision absent rows for enrolled students.

        Args:
            session_id (str): Session to start
            teacher_id (str): Caller; must own the session

        Returns:
            ProvisioningResult: How many absent rows were created

        Raises:
            SessionNotFound: If the caller has no such session
            AlreadyStarted: If the session was started before (by anyone)
            PersistenceError: If provisioning fails; the session stays active
                and resume_provisioning() completes the remaining rows
        """
        affected = self.db.execute_update(
            """UPDATE sessions SET start_time = ?, end_time = NULL
               WHERE id = ? AND teacher_id = ? AND start_time IS NULL""",
            (utc_now(), session_id, teacher_id)
        )

        if affected == 0:
            self._require_session(session_id, teacher_id)
            self.logger.warning(f"Start rejected, session {session_id} already started")
            raise AlreadyStarted('Session already started or failed to start')

        self.logger.info(f"Session {session_id} started by teacher {teacher_id}")
        return self._provision_absent_rows(session_id, teacher_id)

    def resume_provisioning(self, session_id: str, teacher_id: str) -> ProvisioningResult:
        """
        Re-run provisioning for an active session.

        This is the repair path after a start whose provisioning failed part
        way: the session is already active, so start_session() would refuse
        with AlreadyStarted. Rows that already exist are left untouched.

        Raises:
            SessionNotFound: If the caller has no such session
            SessionNotActive: If the session is not started or already stopped
        """
        session = self._require_session(session_id, teacher_id)
        if not session['is_active']:
            raise SessionNotActive(session['session_name'])

        self.logger.info(f"Resuming provisioning for session {session_id}")
        return self._provision_absent_rows(session_id, teacher_id)

    def stop_session(self, session_id: str, teacher_id: str) -> bool:
        """
        Stop an active session.

        Returns:
            bool: True if this call stopped the session, False if it was not
                active (never started or already stopped); the latter is not
                an error

        Raises:
            SessionNotFound: If the caller has no such session
        """
        affected = self.db.execute_update(
            """UPDATE sessions SET end_time = ?
               WHERE id = ? AND teacher_id = ?
                     AND start_time IS NOT NULL AND end_time IS NULL""",
            (utc_now(), session_id, teacher_id)
        )

        if affected == 0:
            session = self._require_session(session_id, teacher_id)
            self.logger.warning(
                f"Stop ignored, session {session_id} is {session_state(session)}"
            )
            return False

        self.logger.info(f"Session {session_id} stopped by teacher {teacher_id}")
        return True

    def _provision_absent_rows(self, session_id: str, teacher_id: str) -> ProvisioningResult:
        """
        Insert an 'absent' row for each enrolled student lacking a record.
        Idempotent: existing rows, including ones already marked present,
        are never touched.
        """
        enrolled_ids = self.get_assigned_student_ids(session_id)
        if not enrolled_ids:
            self.logger.warning(f"No students assigned to session {session_id}")
            return ProvisioningResult(session_id, 0, no_students_assigned=True)

        existing = self.db.execute_query(
            "SELECT student_id FROM attendance WHERE session_id = ?",
            (session_id,)
        )
        existing_ids = {row['student_id'] for row in existing}

        missing = [student_id for student_id in enrolled_ids if student_id not in existing_ids]
        if missing:
            self.db.execute_many(
                """INSERT INTO attendance (student_id, session_id, teacher_id, attendance_status)
                   VALUES (?, ?, ?, 'absent')
                   ON CONFLICT(student_id, session_id) DO NOTHING""",
                [(student_id, session_id, teacher_id) for student_id in missing]
            )

        self.logger.info(f"Session {session_id} provisioned with {len(missing)} attendance records")
        return ProvisioningResult(session_id, len(missing))

    # Enrollment

    def assign_student(self, session_id: str, student_id: str, teacher_id: str) -> bool:
        """
        Enroll a student in a session. Assigning twice is a no-op.

        Returns:
            bool: True if a new assignment was created
        """
        return self.assign_students(session_id, [student_id], teacher_id) == 1

    def assign_students(self, session_id: str, student_ids: List[str], teacher_id: str) -> int:
        """
        Enroll several students, skipping ones already assigned.

        Returns:
            int: Number of new assignments

        Raises:
            StudentNotFound: If any id is not a known student; nothing is
                assigned in that case
        """
        self._require_session(session_id, teacher_id)
        if not student_ids:
            return 0

        unique_ids = list(dict.fromkeys(student_ids))
        placeholders = ', '.join('?' for _ in unique_ids)
        known = {
            row['id'] for row in self.db.execute_query(
                f"SELECT id FROM students WHERE id IN ({placeholders})",
                tuple(unique_ids)
            )
        }
        unknown = [student_id for student_id in unique_ids if student_id not in known]
        if unknown:
            self.logger.warning(f"Assignment to session {session_id} rejected, unknown students: {unknown}")
            raise StudentNotFound(f"Student not found: {', '.join(map(str, unknown))}")

        created = self.db.execute_many(
            """INSERT INTO session_students (session_id, student_id)
               VALUES (?, ?)
               ON CONFLICT(session_id, student_id) DO NOTHING""",
            [(session_id, student_id) for student_id in unique_ids]
        )
        self.logger.info(f"Assigned {created} students to session {session_id}")
        return created

    def unassign_student(self, session_id: str, student_id: str, teacher_id: str) -> bool:
        return self.unassign_students(session_id, [student_id], teacher_id) == 1

    def unassign_students(self, session_id: str, student_ids: List[str], teacher_id: str) -> int:
        """
        Remove students from a session. Removing a missing assignment is a
        no-op. Attendance rows already written are kept.

        Returns:
            int: Number of assignments removed
        """
        self._require_session(session_id, teacher_id)
        if not student_ids:
            return 0

        removed = self.db.execute_many(
            "DELETE FROM session_students WHERE session_id = ? AND student_id = ?",
            [(session_id, student_id) for student_id in dict.fromkeys(student_ids)]
        )
        self.logger.info(f"Removed {removed} students from session {session_id}")
        return removed

    def get_assigned_student_ids(self, session_id: str) -> List[str]:
        rows = self.db.execute_query(
            "SELECT student_id FROM session_students WHERE session_id = ? ORDER BY rowid",
            (session_id,)
        )
        return [row['student_id'] for row in rows]

    def get_assigned_students(self, session_id: str) -> List[Dict[str, Any]]:
        """Full student rows for everyone enrolled in a session."""
        return self.db.execute_query(
            """SELECT s.id, s.student_name, s.student_email, s.roll_no, s.qr_token
               FROM session_students ss
               JOIN students s ON s.id = ss.student_id
               WHERE ss.session_id = ?
               ORDER BY s.student_name""",
            (session_id,)
        )

    def _require_session(self, session_id: str, teacher_id: str) -> Dict[str, Any]:
        session = self.get_session(session_id, teacher_id)
        if not session:
            raise SessionNotFound()
        return session
