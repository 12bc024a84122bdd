"""
Database Manager Module - Rollcall QR Attendance

SQLite persistence for rollcall. This module owns connection handling, the
schema, and the small set of persistence primitives the
managers are written against:

- point lookup and filtered/ordered list queries (execute_query)
- insert, conditional update and delete reporting affected rows (execute_update)
- bulk insert (execute_many)
- multi-statement transactions (transaction)

Every sqlite3 failure is logged, rolled back and re-raised as PersistenceError.
Uniqueness of attendance rows per (student, session) is enforced by the schema.
"""

import sqlite3
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
import threading
import os

from rollcall.modules.exceptions import PersistenceError


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string, the format stored in every timestamp column."""
    return datetime.now(timezone.utc).isoformat()


DEFAULT_SETTINGS = [
    ('system_name', 'Rollcall QR Attendance', 'Name of the attendance system'),
    ('scan_cooldown_seconds', '3', 'Seconds an identical scan payload is ignored after dispatch'),
    ('result_display_seconds', '3', 'Seconds a scan result stays on screen before the scanner resets'),
]


class DatabaseManager:
    """
    Database management class for the attendance system.
    Handles connection management, schema creation and the persistence
    primitives used by the managers, with transaction support.
    """

    def __init__(self, db_path):
        """
        Open (or create) the rollcall database at db_path.

        Args:
            db_path (str): Path to the SQLite database file, or ':memory:'
        """
        self.db_path = str(db_path)
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()

        # file databases need their directory
        directory = os.path.dirname(self.db_path)
        if self.db_path != ':memory:' and directory:
            os.makedirs(directory, exist_ok=True)

        self.initialize_database()

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Each thread lazily opens and then reuses its own connection.

        Yields:
            sqlite3.Connection: This thread's connection
        """
        if not hasattr(self._local, 'connection'):
            self._local.connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0
            )
            self._local.connection.row_factory = sqlite3.Row
            self._local.connection.execute("PRAGMA foreign_keys = ON")

        try:
            yield self._local.connection
        except Exception as e:
            self._local.connection.rollback()
            self.logger.error(f"Rolled back after error: {str(e)}")
            raise

    def initialize_database(self):
        """
        Create all tables and default settings.
        Idempotent; safe to call on every start.
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS teachers (
                        id TEXT PRIMARY KEY,
                        name VARCHAR(100) NOT NULL,
                        email VARCHAR(100) UNIQUE NOT NULL,
                        password_hash VARCHAR(255) NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS students (
                        id TEXT PRIMARY KEY,
                        student_name VARCHAR(100) NOT NULL,
                        student_email VARCHAR(100) NOT NULL,
                        roll_no VARCHAR(50) NOT NULL,
                        qr_token VARCHAR(64) UNIQUE NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                # is_active is derived from start_time/end_time, never stored
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS sessions (
                        id TEXT PRIMARY KEY,
                        teacher_id TEXT NOT NULL,
                        session_name VARCHAR(200) NOT NULL,
                        start_time TIMESTAMP,
                        end_time TIMESTAMP,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (teacher_id) REFERENCES teachers(id)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS session_students (
                        session_id TEXT NOT NULL,
                        student_id TEXT NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        PRIMARY KEY (session_id, student_id),
                        FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE,
                        FOREIGN KEY (student_id) REFERENCES students(id) ON DELETE CASCADE
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS attendance (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id TEXT NOT NULL,
                        session_id TEXT NOT NULL,
                        teacher_id TEXT,
                        attendance_status VARCHAR(20) NOT NULL DEFAULT 'absent'
                            CHECK (attendance_status IN ('absent', 'present')),
                        scanned_at TIMESTAMP,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (student_id) REFERENCES students(id) ON DELETE CASCADE,
                        FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE,
                        UNIQUE(student_id, session_id)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS system_settings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        setting_key VARCHAR(100) UNIQUE NOT NULL,
                        setting_value TEXT,
                        description TEXT,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_session ON attendance(session_id)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_teacher ON sessions(teacher_id)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_session_students_session ON session_students(session_id)")

                cursor.executemany("""
                    INSERT OR IGNORE INTO system_settings (setting_key, setting_value, description)
                    VALUES (?, ?, ?)
                """, DEFAULT_SETTINGS)

                conn.commit()
                self.logger.info(f"Database ready at {self.db_path}")

        except sqlite3.Error as e:
            self.logger.error(f"Schema creation failed: {str(e)}")
            raise PersistenceError(f"Failed to initialize database: {e}") from e

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Run a SELECT: a point lookup or a filtered, ordered listing.

        Args:
            query (str): SELECT statement with ? placeholders
            params (tuple): Placeholder values
            fetch_all (bool): False for a single-row lookup

        Returns:
            list or dict: All rows as dictionaries, or one row (None if absent)
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())

                if fetch_all:
                    return [dict(row) for row in cursor.fetchall()]

                result = cursor.fetchone()
                return dict(result) if result else None

        except sqlite3.Error as e:
            self.logger.error(f"Query failed: {str(e)}")
            raise PersistenceError(str(e)) from e

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE statement.

        Conditional updates (``UPDATE ... WHERE <predicate>``) report how many
        rows matched the predicate, which is how callers detect lost races.

        Args:
            query (str): SQL statement
            params (tuple): Statement parameters

        Returns:
            int: Number of affected rows
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())
                conn.commit()
                return cursor.rowcount

        except sqlite3.Error as e:
            self.logger.error(f"Write failed: {str(e)}")
            raise PersistenceError(str(e)) from e

    def execute_many(self, query, params_list):
        """
        Execute a statement for every parameter tuple in one transaction.

        Args:
            query (str): SQL statement
            params_list (list): One placeholder tuple per row

        Returns:
            int: Number of affected rows
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.executemany(query, params_list)
                conn.commit()
                return cursor.rowcount

        except sqlite3.Error as e:
            self.logger.error(f"Bulk write failed: {str(e)}")
            raise PersistenceError(str(e)) from e

    @contextmanager
    def transaction(self):
        """
        Group several statements atomically. Commits on success and rolls back on any error.

        Yields:
            sqlite3.Connection: Connection to issue the statements on
        """
        with self.get_connection() as conn:
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                self.logger.error(f"Transaction rolled back: {str(e)}")
                raise PersistenceError(str(e)) from e
            except Exception:
                conn.rollback()
                raise

    def get_system_setting(self, key, default_value=None):
        """
        Look up a tunable in system_settings.

        Args:
            key (str): Setting key
            default_value: Returned when the key is missing or unreadable

        Returns:
            str: Setting value
        """
        try:
            result = self.execute_query(
                "SELECT setting_value FROM system_settings WHERE setting_key = ?",
                (key,),
                fetch_all=False
            )
            return result['setting_value'] if result else default_value

        except PersistenceError as e:
            self.logger.error(f"Could not read setting {key}: {str(e)}")
            return default_value

    def update_system_setting(self, key, value, description=None):
        """
        Upsert a tunable in system_settings.

        Args:
            key (str): Setting key
            value: New value, stored as text
            description (str): Kept unchanged when None
        """
        self.execute_update("""
            INSERT INTO system_settings (setting_key, setting_value, description)
            VALUES (?, ?, ?)
            ON CONFLICT(setting_key) DO UPDATE SET
                setting_value = excluded.setting_value,
                description = COALESCE(excluded.description, system_settings.description),
                updated_at = CURRENT_TIMESTAMP
        """, (key, str(value), description))

    def close_all_connections(self):
        """Close the current thread's connection."""
        try:
            if hasattr(self._local, 'connection'):
                self._local.connection.close()
                del self._local.connection
        except sqlite3.Error as e:
            self.logger.error(f"Error closing connection: {str(e)}")

    def __del__(self):
        self.close_all_connections()
