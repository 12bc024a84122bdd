import smtplib

import pytest

from app import create_app
from rollcall.modules.attendance_manager import AttendanceManager
from rollcall.modules.auth_manager import AuthManager
from rollcall.modules.database_manager import DatabaseManager
from rollcall.modules.qr_generator import build_scan_url
from rollcall.modules.report_generator import ReportGenerator
from rollcall.modules.session_manager import SessionManager
from rollcall.modules.student_manager import StudentManager

ORIGIN = 'http://testserver'


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(tmp_path / 'attendance.db')
    yield manager
    manager.close_all_connections()


@pytest.fixture
def auth(db):
    return AuthManager(db)


@pytest.fixture
def students(db):
    return StudentManager(db)


@pytest.fixture
def sessions(db):
    return SessionManager(db)


@pytest.fixture
def attendance(db):
    return AttendanceManager(db)


@pytest.fixture
def reports(db):
    return ReportGenerator(db)


def _register(auth, name, email):
    result = auth.register_teacher(name, email, 'secret123')
    assert result['success'], result
    return result['teacher_id']


@pytest.fixture
def teacher_id(auth):
    return _register(auth, 'Ada Teacher', 'ada@school.edu')


@pytest.fixture
def other_teacher_id(auth):
    return _register(auth, 'Bob Teacher', 'bob@school.edu')


@pytest.fixture
def make_student(students):
    def _make(name='Jane Doe', email=None, roll_no=None):
        index = len(students.get_all_students()) + 1
        result = students.create_student({
            'student_name': name,
            'student_email': email or f'student{index}@school.edu',
            'roll_no': roll_no or f'R{index:03d}'
        })
        assert result['success'], result
        return students.get_student(result['student_id'])
    return _make


@pytest.fixture
def make_session(sessions, teacher_id):
    def _make(name='Math 101', owner=None):
        return sessions.create_session(owner or teacher_id, name)
    return _make


@pytest.fixture
def scan_text():
    def _scan(student, session_id, token=None):
        return build_scan_url(ORIGIN, student['id'], token or student['qr_token'], session_id)
    return _scan


class RecordingTransport:
    """Stands in for SMTP; fails for addresses listed in ``failing``."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.sent = []

    def __call__(self, msg):
        if msg['To'] in self.failing:
            raise smtplib.SMTPException('mailbox unavailable')
        self.sent.append(msg)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def app(tmp_path, transport):
    application = create_app(
        'testing',
        DATABASE_PATH=str(tmp_path / 'app.db'),
        MAIL_TRANSPORT=transport
    )
    yield application
    application.extensions['rollcall']['db'].close_all_connections()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def logged_in_client(client):
    client.post('/register', json={
        'name': 'Ada Teacher', 'email': 'ada@school.edu', 'password': 'secret123'
    })
    response = client.post('/login', json={'email': 'ada@school.edu', 'password': 'secret123'})
    assert response.status_code == 200
    return client
