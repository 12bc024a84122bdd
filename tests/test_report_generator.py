import pytest

from rollcall.modules.exceptions import SessionNotFound, ValidationError
from rollcall.modules.report_generator import CSV_COLUMNS

HEADER = '"name","roll_no","email","status","scanned_at"'


def test_export_quotes_every_field(reports):
    rows = [
        {'name': 'Doe, Jane', 'roll_no': '007', 'email': 'jane@school.edu',
         'status': 'present', 'scanned_at': '2025-10-16T09:05:00+00:00'},
        {'name': 'Ann "Annie" Lee', 'roll_no': 'R2', 'email': 'ann@school.edu',
         'status': 'absent', 'scanned_at': None},
    ]

    text = reports.export_attendance_csv(rows)

    assert text == (
        HEADER
        + '\n"Doe, Jane","007","jane@school.edu","present","2025-10-16T09:05:00+00:00"'
        + '\n"Ann ""Annie"" Lee","R2","ann@school.edu","absent",""'
    )


def test_export_then_parse_preserves_values(reports):
    rows = [
        {'name': 'Doe, Jane', 'roll_no': '007', 'email': 'jane@school.edu',
         'status': 'present', 'scanned_at': '2025-10-16T09:05:00+00:00'},
        {'name': 'Ann "Annie" Lee', 'roll_no': 'R2', 'email': 'ann@school.edu',
         'status': 'absent', 'scanned_at': ''},
    ]

    assert reports.parse_attendance_csv(reports.export_attendance_csv(rows)) == rows


def test_export_empty(reports):
    assert reports.export_attendance_csv([]) == HEADER
    assert reports.parse_attendance_csv(HEADER) == []


@pytest.mark.parametrize('text', ['', 'a,b\n1,2\n'])
def test_parse_rejects_foreign_csv(reports, text):
    with pytest.raises(ValidationError):
        reports.parse_attendance_csv(text)


def test_session_report(reports, attendance, sessions, make_session, make_student, scan_text, teacher_id):
    alice = make_student('Alice')
    bob = make_student('Bob, Jr.')
    session = make_session()
    sessions.assign_students(session['id'], [alice['id'], bob['id']], teacher_id)
    sessions.start_session(session['id'], teacher_id)
    attendance.process_attendance_scan(scan_text(bob, session['id']), teacher_id)

    report = reports.generate_session_report(session['id'], teacher_id)

    assert report['counts'] == {'present': 1, 'absent': 1}
    assert report['total'] == 2
    assert set(report['rows'][0]) == set(CSV_COLUMNS)
    by_name = {row['name']: row for row in report['rows']}
    assert by_name['Bob, Jr.']['status'] == 'present'
    assert by_name['Alice']['scanned_at'] is None


def test_report_for_foreign_session(reports, make_session, other_teacher_id):
    session = make_session()
    with pytest.raises(SessionNotFound):
        reports.generate_session_report(session['id'], other_teacher_id)


def test_export_session_csv(reports, sessions, make_session, make_student, teacher_id):
    student = make_student('Jane Doe', email='jane@school.edu', roll_no='R001')
    session = make_session()
    sessions.assign_student(session['id'], student['id'], teacher_id)
    sessions.start_session(session['id'], teacher_id)

    export = reports.export_session_csv(session['id'], teacher_id)

    assert export['filename'] == f"attendance-{session['id']}.csv"
    assert export['records'] == 1
    assert export['content'] == HEADER + '\n"Jane Doe","R001","jane@school.edu","absent",""'
