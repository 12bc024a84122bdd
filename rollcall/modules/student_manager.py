"""
Student Manager Module - Rollcall QR Attendance

This module handles student records for the attendance system: creation
with a freshly generated QR token, administrative edits, token re-issue,
searching, and bulk import from CSV.

A student's token is the secret embedded in the QR code. It is generated once
at creation and changes only through reissue_token().
"""

from typing import Dict, List, Any, Optional
import logging
import re
import csv
import io
import uuid

from rollcall.modules.database_manager import utc_now
from rollcall.modules.exceptions import PersistenceError
from rollcall.modules.qr_generator import generate_qr_token

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

# CSV header aliases accepted by import_students_from_csv
CSV_COLUMN_ALIASES = {
    'student_name': ('student_name', 'name'),
    'student_email': ('student_email', 'email'),
    'roll_no': ('roll_no', 'roll'),
}


class StudentManager:
    """
    Student administration for the attendance system.
    """

    def __init__(self, database_manager):
        """
        Initialize the student manager with database connection.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    def create_student(self, student_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a new student record with a new QR token.

        Args:
            student_data (Dict[str, Any]): student_name, student_email, roll_no

        Returns:
            Dict[str, Any]: Creation result
        """
        cleaned = {field: '' if student_data.get(field) is None else str(student_data[field]).strip()
                   for field in CSV_COLUMN_ALIASES}

        validation_result = self._validate_student_data(cleaned)
        if not validation_result['valid']:
            return {
                'success': False,
                'error': validation_result['error']
            }

        student_id = str(uuid.uuid4())
        qr_token = generate_qr_token()

        try:
            self.db.execute_update(
                """INSERT INTO students (id, student_name, student_email, roll_no, qr_token)
                   VALUES (?, ?, ?, ?, ?)""",
                (student_id, cleaned['student_name'], cleaned['student_email'],
                 cleaned['roll_no'], qr_token)
            )
        except PersistenceError as e:
            self.logger.error(f"Student creation failed for {cleaned['roll_no']}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to create student record'
            }

        self.logger.info(f"Student created: {cleaned['roll_no']} (ID: {student_id})")

        return {
            'success': True,
            'student_id': student_id,
            'qr_token': qr_token,
            'message': 'Student added successfully'
        }

    def update_student(self, student_id: str, update_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Administrative edit of a student's display fields.
        The QR token is not editable here; use reissue_token().

        Args:
            student_id (str): Student id
            update_data (Dict[str, Any]): Any of student_name, student_email, roll_no

        Returns:
            Dict[str, Any]: Update result
        """
        updates = {field: str(value).strip() for field, value in update_data.items()
                   if field in CSV_COLUMN_ALIASES and value is not None}
        if not updates:
            return {'success': False, 'error': 'No valid fields to update'}

        validation_result = self._validate_student_data(updates, partial=True)
        if not validation_result['valid']:
            return {'success': False, 'error': validation_result['error']}

        assignments = ', '.join(f"{field} = ?" for field in updates)
        affected = self.db.execute_update(
            f"UPDATE students SET {assignments}, updated_at = ? WHERE id = ?",
            (*updates.values(), utc_now(), student_id)
        )

        if affected == 0:
            return {'success': False, 'error': 'Student not found'}

        self.logger.info(f"Student {student_id} updated: {', '.join(updates)}")
        return {'success': True, 'message': 'Student updated successfully'}

    def reissue_token(self, student_id: str) -> Dict[str, Any]:
        """
        Replace a student's QR token. Previously issued QR codes stop working.

        Args:
            student_id (str): Student id

        Returns:
            Dict[str, Any]: Result with the new token
        """
        new_token = generate_qr_token()
        affected = self.db.execute_update(
            "UPDATE students SET qr_token = ?, updated_at = ? WHERE id = ?",
            (new_token, utc_now(), student_id)
        )

        if affected == 0:
            return {'success': False, 'error': 'Student not found'}

        self.logger.info(f"QR token re-issued for student {student_id}")
        return {
            'success': True,
            'qr_token': new_token,
            'message': 'QR code regenerated successfully'
        }

    def get_student(self, student_id: str) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM students WHERE id = ?",
            (student_id,),
            fetch_all=False
        )

    def get_all_students(self) -> List[Dict[str, Any]]:
        """All students, newest first."""
        return self.db.execute_query(
            """SELECT id, student_name, student_email, roll_no, qr_token, created_at
               FROM students
               ORDER BY created_at DESC, rowid DESC"""
        )

    def get_student_count(self) -> int:
        result = self.db.execute_query(
            "SELECT COUNT(*) AS count FROM students",
            fetch_all=False
        )
        return result['count'] if result else 0

    def search_students(self, query: str, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Case-insensitive search by name, email, or roll number.

        Args:
            query (str): Search text
            limit (int): Maximum number of results

        Returns:
            List[Dict[str, Any]]: Matching students
        """
        if not query:
            return self.get_all_students()[:limit]

        pattern = f"%{query.lower()}%"
        return self.db.execute_query(
            """SELECT id, student_name, student_email, roll_no, qr_token, created_at
               FROM students
               WHERE LOWER(student_name) LIKE ? OR LOWER(student_email) LIKE ?
                     OR LOWER(roll_no) LIKE ?
               ORDER BY student_name
               LIMIT ?""",
            (pattern, pattern, pattern, limit)
        )

    def bulk_create_students(self, students_data: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Create multiple students, continuing past individual failures.

        Args:
            students_data (List[Dict[str, Any]]): List of student data

        Returns:
            Dict[str, Any]: Bulk creation result
        """
        results = {
            'success': True,
            'total_students': len(students_data),
            'created': 0,
            'failed': 0,
            'errors': [],
            'created_students': []
        }

        for row, student_data in enumerate(students_data, start=1):
            result = self.create_student(student_data)
            if result['success']:
                results['created'] += 1
                results['created_students'].append({
                    'row': row,
                    'student_id': result['student_id'],
                    'name': student_data.get('student_name')
                })
            else:
                results['failed'] += 1
                results['errors'].append({
                    'row': row,
                    'roll_no': student_data.get('roll_no', 'unknown'),
                    'error': result['error']
                })

        if results['failed'] > 0:
            results['success'] = False

        self.logger.info(f"Bulk student creation completed: "
                         f"{results['created']}/{results['total_students']} successful")
        return results

    def import_students_from_csv(self, csv_content: str) -> Dict[str, Any]:
        """
        Import students from CSV text with a header row.

        Accepted headers: student_name or name, student_email or email,
        roll_no or roll. Blank lines are skipped.

        Args:
            csv_content (str): CSV content as string

        Returns:
            Dict[str, Any]: Import result
        """
        try:
            reader = csv.DictReader(io.StringIO(csv_content))
            students_data = []
            for row in reader:
                if not any((value or '').strip() for value in row.values() if isinstance(value, str)):
                    continue
                students_data.append({
                    field: next((row[alias] for alias in aliases if row.get(alias)), '')
                    for field, aliases in CSV_COLUMN_ALIASES.items()
                })
        except csv.Error as e:
            self.logger.error(f"CSV import failed: {str(e)}")
            return {
                'success': False,
                'error': 'Invalid CSV file'
            }

        if not students_data:
            return {
                'success': False,
                'error': 'No student rows found in CSV'
            }

        result = self.bulk_create_students(students_data)
        result['import_method'] = 'csv'
        return result

    def _validate_student_data(self, student_data: Dict[str, Any],
                               partial: bool = False) -> Dict[str, Any]:
        """
        Validate student data.

        Args:
            student_data (Dict[str, Any]): Student data to validate
            partial (bool): Whether this is a partial update

        Returns:
            Dict[str, Any]: Validation result
        """
        for field in CSV_COLUMN_ALIASES:
            if field not in student_data and partial:
                continue
            if not student_data.get(field):
                return {'valid': False, 'error': f'Missing required field: {field}'}

        email = student_data.get('student_email')
        if email and not EMAIL_PATTERN.match(email):
            return {'valid': False, 'error': 'Invalid email address format'}

        return {'valid': True}
