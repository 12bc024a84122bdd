"""
Rollcall QR Attendance - Main Application

This module serves as the main entry point for the attendance service.
It builds the Flask application, wires the managers together and exposes the
JSON API used by the browser front end. The browser handles camera capture
and QR decoding; it posts the decoded text to /api/scan.

Features:
- Teacher registration and login
- Session creation, start/stop and student assignment
- QR code rendering and batch email of scan links
- QR scan check-in with duplicate-read suppression
- Attendance reports and CSV download
"""

from flask import Blueprint, Flask, Response, current_app, jsonify, request, session
from functools import wraps
import logging

from config import LOG_FORMAT, init_config
from rollcall.modules.attendance_manager import AttendanceManager
from rollcall.modules.auth_manager import EVENT_SIGNED_OUT, AuthManager
from rollcall.modules.database_manager import DatabaseManager
from rollcall.modules.email_notifier import EmailNotifier
from rollcall.modules.exceptions import MalformedPayload, RollcallError, ValidationError
from rollcall.modules.qr_generator import QRGenerator, build_scan_url
from rollcall.modules.report_generator import ReportGenerator
from rollcall.modules.scan_debouncer import ScanDebouncer
from rollcall.modules.session_manager import SessionManager
from rollcall.modules.student_manager import StudentManager

logger = logging.getLogger(__name__)

# HTTP status for each error_type surfaced to the client
STATUS_CODES = {
    'malformed_payload': 400,
    'validation_error': 400,
    'not_authenticated': 401,
    'token_mismatch': 403,
    'session_not_found': 404,
    'student_not_found': 404,
    'session_not_active': 409,
    'already_started': 409,
    'duplicate_read': 429,
    'persistence_error': 500,
    'email_delivery_failure': 502,
}

bp = Blueprint('rollcall', __name__)


def create_app(config_name=None, **overrides):
    """
    Build the Flask application.

    Args:
        config_name (str): Key in config.config; defaults to FLASK_ENV
        **overrides: Config values applied after the config class

    Returns:
        Flask: The configured application
    """
    app = Flask(__name__)
    config_class = init_config(app, config_name)
    app.config.update(overrides)

    logging.basicConfig(
        level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
        format=LOG_FORMAT
    )

    db_manager = DatabaseManager(app.config['DATABASE_PATH'])
    auth_manager = AuthManager(
        db_manager,
        session_timeout_minutes=app.config['AUTH_SESSION_TIMEOUT_MINUTES'],
        password_min_length=app.config['PASSWORD_MIN_LENGTH']
    )
    mail_settings = config_class.mail_settings()
    mail_settings['send_delay_seconds'] = app.config['MAIL_SEND_DELAY_SECONDS']

    components = {
        'db': db_manager,
        'auth': auth_manager,
        'attendance': AttendanceManager(db_manager),
        'sessions': SessionManager(db_manager),
        'students': StudentManager(db_manager),
        'reports': ReportGenerator(db_manager),
        'qr': QRGenerator(app.config['QR_CODE_BOX_SIZE'], app.config['QR_CODE_BORDER']),
        'mailer': EmailNotifier(db_manager, mail_settings, app.config.get('MAIL_TRANSPORT')),
        'debouncers': {}
    }

    # a signed-out teacher's pending scan state is discarded
    def _on_auth_event(event, teacher_info):
        if event == EVENT_SIGNED_OUT:
            components['debouncers'].pop(teacher_info['id'], None)

    components['auth_subscription'] = auth_manager.subscribe(_on_auth_event)

    app.extensions['rollcall'] = components
    app.register_blueprint(bp)
    app.register_error_handler(RollcallError, _handle_rollcall_error)

    logger.info(f"Application created with {config_class.__name__}")
    return app


def _components():
    return current_app.extensions['rollcall']


def _error_response(error_type, message):
    return jsonify({
        'success': False,
        'error_type': error_type,
        'message': message
    }), STATUS_CODES.get(error_type, 400)


def _handle_rollcall_error(error):
    if error.error_type == 'persistence_error':
        logger.error(f"Request failed on datastore error: {error.message}")
        return _error_response(error.error_type, 'A database error occurred')
    return _error_response(error.error_type, error.message)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Expected a JSON object body')
    return data


def _text_field(data, name, error=ValidationError, strip=True):
    """String field from a JSON body; missing or null reads as empty"""
    value = data.get(name)
    if value is None:
        return ''
    if not isinstance(value, str):
        raise error(f'{name} must be a string')
    return value.strip() if strip else value


def login_required(f):
    """Decorator to require a signed-in teacher; passes teacher_id to the view"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        teacher_id = session.get('teacher_id')
        if not _components()['auth'].is_session_valid(teacher_id):
            session.pop('teacher_id', None)
            return _error_response('not_authenticated', 'Not authenticated. Please log in.')
        return f(teacher_id, *args, **kwargs)
    return decorated_function


def _debouncer_for(teacher_id):
    debouncers = _components()['debouncers']
    if teacher_id not in debouncers:
        cooldown = _components()['db'].get_system_setting(
            'scan_cooldown_seconds', current_app.config['SCAN_COOLDOWN_SECONDS']
        )
        debouncers[teacher_id] = ScanDebouncer(cooldown_seconds=float(cooldown))
    return debouncers[teacher_id]


@bp.route('/')
def index():
    """Service landing document"""
    return jsonify({
        'name': 'Rollcall QR Attendance',
        'authenticated': 'teacher_id' in session
    })


@bp.route('/register', methods=['POST'])
def register():
    data = _json_body()
    result = _components()['auth'].register_teacher(
        _text_field(data, 'name'), _text_field(data, 'email'),
        _text_field(data, 'password', strip=False)
    )
    return jsonify(result), (201 if result['success'] else 400)


@bp.route('/login', methods=['POST'])
def login():
    """Teacher authentication"""
    data = _json_body()
    email = _text_field(data, 'email')
    password = _text_field(data, 'password', strip=False)

    if not email or not password:
        return _error_response('validation_error', 'Please provide both email and password.')

    teacher = _components()['auth'].authenticate_teacher(email, password)
    if not teacher:
        logger.warning(f"Failed login attempt for: {email}")
        return _error_response('not_authenticated', 'Invalid email or password.')

    session['teacher_id'] = teacher['id']
    session['teacher_name'] = teacher['name']
    logger.info(f"Teacher {email} logged in successfully")
    return jsonify({'success': True, 'teacher': teacher, 'message': f"Welcome back, {teacher['name']}!"})


@bp.route('/logout', methods=['POST'])
@login_required
def logout(teacher_id):
    _components()['auth'].sign_out(teacher_id)
    session.clear()
    return jsonify({'success': True, 'message': 'You have been logged out successfully.'})


@bp.route('/api/sessions', methods=['GET'])
@login_required
def list_sessions(teacher_id):
    return jsonify({'sessions': _components()['sessions'].get_sessions_by_teacher(teacher_id)})


@bp.route('/api/sessions', methods=['POST'])
@login_required
def create_session(teacher_id):
    data = _json_body()
    created = _components()['sessions'].create_session(teacher_id, _text_field(data, 'session_name'))
    return jsonify({'success': True, 'session': created, 'message': 'Session created'}), 201


@bp.route('/api/sessions/<session_id>', methods=['GET'])
@login_required
def session_detail(teacher_id, session_id):
    manager = _components()['sessions']
    state = manager.get_session_state(session_id, teacher_id)
    return jsonify({
        'session': manager.get_session(session_id, teacher_id),
        'state': state,
        'assigned_student_ids': manager.get_assigned_student_ids(session_id)
    })


@bp.route('/api/sessions/<session_id>/start', methods=['POST'])
@login_required
def start_session(teacher_id, session_id):
    result = _components()['sessions'].start_session(session_id, teacher_id)
    if result.no_students_assigned:
        message = 'No students assigned to this session'
    else:
        message = f'Session started with {result.provisioned} attendance records'
    return jsonify({'success': True, 'message': message, **result.to_dict()})


@bp.route('/api/sessions/<session_id>/resume', methods=['POST'])
@login_required
def resume_session(teacher_id, session_id):
    result = _components()['sessions'].resume_provisioning(session_id, teacher_id)
    return jsonify({
        'success': True,
        'message': f'Provisioning completed with {result.provisioned} new attendance records',
        **result.to_dict()
    })


@bp.route('/api/sessions/<session_id>/stop', methods=['POST'])
@login_required
def stop_session(teacher_id, session_id):
    stopped = _components()['sessions'].stop_session(session_id, teacher_id)
    return jsonify({
        'success': True,
        'stopped': stopped,
        'message': 'Session stopped' if stopped else 'Session is not active'
    })


@bp.route('/api/sessions/<session_id>/students', methods=['POST', 'DELETE'])
@login_required
def assign_students(teacher_id, session_id):
    student_ids = _json_body().get('student_ids') or []
    if not isinstance(student_ids, list) or not all(isinstance(i, str) for i in student_ids):
        raise ValidationError('student_ids must be a list of ids')

    manager = _components()['sessions']
    if request.method == 'POST':
        changed = manager.assign_students(session_id, student_ids, teacher_id)
        message = f'Assigned {changed} students'
    else:
        changed = manager.unassign_students(session_id, student_ids, teacher_id)
        message = f'Removed {changed} students'

    return jsonify({
        'success': True,
        'changed': changed,
        'message': message,
        'assigned_student_ids': manager.get_assigned_student_ids(session_id)
    })


@bp.route('/api/sessions/<session_id>/qr-codes', methods=['GET'])
@login_required
def session_qr_codes(teacher_id, session_id):
    manager = _components()['sessions']
    manager.get_session_state(session_id, teacher_id)
    students = manager.get_assigned_students(session_id)
    result = _components()['qr'].generate_session_qr_codes(
        current_app.config['APP_ORIGIN'], session_id, students
    )
    return jsonify(result)


@bp.route('/api/sessions/<session_id>/email', methods=['POST'])
@login_required
def email_session_qr_codes(teacher_id, session_id):
    result = _components()['mailer'].send_session_qr_codes(
        session_id, teacher_id, current_app.config['APP_ORIGIN']
    )
    return jsonify(result)


@bp.route('/api/students', methods=['GET'])
@login_required
def list_students(teacher_id):
    query = request.args.get('q', '').strip()
    students = _components()['students']
    rows = students.search_students(query) if query else students.get_all_students()

    session_id = request.args.get('session_id')
    for row in rows:
        row['qr_url'] = build_scan_url(
            current_app.config['APP_ORIGIN'], row['id'], row['qr_token'], session_id
        )
    return jsonify({'students': rows})


@bp.route('/api/students', methods=['POST'])
@login_required
def add_student(teacher_id):
    result = _components()['students'].create_student(_json_body())
    return jsonify(result), (201 if result['success'] else 400)


@bp.route('/api/students/<student_id>', methods=['PUT'])
@login_required
def edit_student(teacher_id, student_id):
    result = _components()['students'].update_student(student_id, _json_body())
    if result['success']:
        return jsonify(result)
    return jsonify(result), (404 if result['error'] == 'Student not found' else 400)


@bp.route('/api/dashboard', methods=['GET'])
@login_required
def dashboard(teacher_id):
    """Dashboard summary for the signed-in teacher"""
    components = _components()
    return jsonify({
        'teacher': components['auth'].get_teacher(teacher_id),
        'student_count': components['students'].get_student_count(),
        'sessions': components['sessions'].get_sessions_by_teacher(teacher_id),
        'recent_attendance': components['attendance'].get_recent_attendance(teacher_id)
    })


@bp.route('/api/students/import', methods=['POST'])
@login_required
def import_students(teacher_id):
    upload = request.files.get('file')
    if upload is not None:
        content = upload.read().decode('utf-8-sig', errors='replace')
    else:
        content = request.get_data(as_text=True)

    if not content.strip():
        return _error_response('validation_error', 'No CSV content provided')

    result = _components()['students'].import_students_from_csv(content)
    return jsonify(result), (200 if result.get('created') else 400)


@bp.route('/api/students/<student_id>/reissue-token', methods=['POST'])
@login_required
def reissue_student_token(teacher_id, student_id):
    result = _components()['students'].reissue_token(student_id)
    return jsonify(result), (200 if result['success'] else 404)


@bp.route('/api/scan', methods=['POST'])
@login_required
def process_scan(teacher_id):
    """Process QR code scan and record attendance"""
    data = _json_body()
    qr_code = _text_field(data, 'qr_code', error=MalformedPayload)

    if not qr_code:
        return _error_response('malformed_payload', 'No QR code data provided')

    reset_after = float(_components()['db'].get_system_setting(
        'result_display_seconds', current_app.config['RESULT_DISPLAY_SECONDS']
    ))
    with _debouncer_for(teacher_id).dispatching(qr_code) as accepted:
        if not accepted:
            return _error_response('duplicate_read', 'Duplicate read ignored')

        result = _components()['attendance'].process_attendance_scan(qr_code, teacher_id)

    result['reset_after_seconds'] = reset_after
    if result['success']:
        return jsonify(result)
    return jsonify(result), STATUS_CODES.get(result['error_type'], 400)


@bp.route('/api/reports/<session_id>', methods=['GET'])
@login_required
def session_report(teacher_id, session_id):
    return jsonify(_components()['reports'].generate_session_report(session_id, teacher_id))


@bp.route('/api/reports/<session_id>/csv', methods=['GET'])
@login_required
def download_report_csv(teacher_id, session_id):
    export = _components()['reports'].export_session_csv(session_id, teacher_id)
    return Response(
        export['content'],
        mimetype='text/csv',
        headers={'Content-Disposition': f"attachment; filename={export['filename']}"}
    )


if __name__ == '__main__':
    app = create_app()
    app.run(debug=app.config['DEBUG'], host='0.0.0.0', port=5000)
