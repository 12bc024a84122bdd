"""
Report Generator Module - Rollcall QR Attendance

Attendance reporting for a session: the row listing shown on the reports
page, present/absent counts, and CSV export.

The CSV format has the header ``name,roll_no,email,status,scanned_at`` in that
order, every field double-quoted (embedded quotes doubled), lines joined by
``\\n`` with no trailing newline, and empty strings for missing values.
"""

import csv
import io
import logging
from typing import Dict, List, Any, Optional

import pandas as pd
from pandas.errors import EmptyDataError, ParserError

from rollcall.modules.exceptions import SessionNotFound, ValidationError

CSV_COLUMNS = ['name', 'roll_no', 'email', 'status', 'scanned_at']


class ReportGenerator:
    """
    Session attendance reports and CSV export.
    """

    def __init__(self, database_manager):
        """
        Initialize the report generator with database connection.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    def get_session_attendance(self, session_id: str,
                               teacher_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Attendance rows for a session, newest record first.

        Args:
            session_id (str): Session id
            teacher_id (str): If given, the session must belong to this teacher

        Returns:
            List[Dict[str, Any]]: Rows keyed by the CSV column names
        """
        if teacher_id is not None:
            owned = self.db.execute_query(
                "SELECT id FROM sessions WHERE id = ? AND teacher_id = ?",
                (session_id, teacher_id),
                fetch_all=False
            )
            if not owned:
                raise SessionNotFound()

        return self.db.execute_query(
            """SELECT s.student_name AS name, s.roll_no AS roll_no, s.student_email AS email,
                      a.attendance_status AS status, a.scanned_at AS scanned_at
               FROM attendance a
               LEFT JOIN students s ON a.student_id = s.id
               WHERE a.session_id = ?
               ORDER BY a.created_at DESC, a.id DESC""",
            (session_id,)
        )

    def get_attendance_counts(self, session_id: str) -> Dict[str, int]:
        rows = self.db.execute_query(
            """SELECT attendance_status, COUNT(*) AS count
               FROM attendance WHERE session_id = ?
               GROUP BY attendance_status""",
            (session_id,)
        )
        counts = {'present': 0, 'absent': 0}
        for row in rows:
            counts[row['attendance_status']] = row['count']
        return counts

    def generate_session_report(self, session_id: str, teacher_id: str) -> Dict[str, Any]:
        """
        Rows and counts for the reports page.

        Returns:
            Dict[str, Any]: ``rows``, ``counts`` and ``total``
        """
        rows = self.get_session_attendance(session_id, teacher_id)
        counts = self.get_attendance_counts(session_id)
        return {
            'session_id': session_id,
            'rows': rows,
            'counts': counts,
            'total': len(rows)
        }

    def export_attendance_csv(self, rows: List[Dict[str, Any]]) -> str:
        """
        Serialize attendance rows to quoted CSV text.

        Args:
            rows (List[Dict[str, Any]]): Rows with the CSV column keys

        Returns:
            str: CSV text including the header line
        """
        cleaned = [
            {column: '' if row.get(column) is None else str(row.get(column))
             for column in CSV_COLUMNS}
            for row in rows
        ]
        df = pd.DataFrame(cleaned, columns=CSV_COLUMNS)
        return df.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator='\n').rstrip('\n')

    def parse_attendance_csv(self, csv_text: str) -> List[Dict[str, str]]:
        """
        Read CSV text produced by export_attendance_csv back into rows.
        All values come back as strings.

        Raises:
            ValidationError: If the text is not CSV with the expected header
        """
        try:
            df = pd.read_csv(io.StringIO(csv_text), dtype=str, keep_default_na=False)
        except (EmptyDataError, ParserError) as e:
            raise ValidationError(f'Invalid attendance CSV: {e}') from e

        if list(df.columns) != CSV_COLUMNS:
            raise ValidationError(
                f"Unexpected CSV header: {', '.join(map(str, df.columns))}"
            )
        return df.to_dict(orient='records')

    def export_session_csv(self, session_id: str, teacher_id: str) -> Dict[str, Any]:
        """
        CSV download for a session.

        Returns:
            Dict[str, Any]: ``filename`` and ``content``
        """
        rows = self.get_session_attendance(session_id, teacher_id)
        content = self.export_attendance_csv(rows)
        self.logger.info(f"Exported {len(rows)} attendance rows for session {session_id}")
        return {
            'filename': f'attendance-{session_id}.csv',
            'content': content,
            'records': len(rows)
        }
