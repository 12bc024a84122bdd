import smtplib

import pytest

from rollcall.modules.email_notifier import EmailNotifier
from rollcall.modules.exceptions import EmailDeliveryFailure, SessionNotFound

ORIGIN = 'https://attendance.school.edu'


@pytest.fixture
def notifier(db, transport):
    return EmailNotifier(db, {'sender': 'Rollcall <noreply@school.edu>'}, transport=transport)


def html_body(msg):
    return msg.get_payload()[0].get_payload(decode=True).decode()


def test_batch_counts_partial_failure(notifier, transport, sessions, make_session, make_student, teacher_id):
    alice = make_student('Alice', email='alice@school.edu')
    bob = make_student('Bob', email='bob@school.edu')
    carol = make_student('Carol', email='carol@school.edu')
    session = make_session('Biology')
    sessions.assign_students(session['id'], [alice['id'], bob['id'], carol['id']], teacher_id)
    transport.failing.add('bob@school.edu')

    result = notifier.send_session_qr_codes(session['id'], teacher_id, ORIGIN)

    assert result['success'] is False
    assert (result['total'], result['sent'], result['failed']) == (3, 2, 1)
    assert result['errors'] == [{'recipient': 'bob@school.edu', 'error': 'mailbox unavailable'}]
    assert result['message'] == 'Emails sent: 2 successful, 1 failed'
    assert [m['To'] for m in transport.sent] == ['alice@school.edu', 'carol@school.edu']


def test_message_content(notifier, transport, sessions, make_session, make_student, teacher_id):
    student = make_student('Jane <b>Doe</b>', email='jane@school.edu', roll_no='R042')
    session = make_session('Biology')
    sessions.assign_student(session['id'], student['id'], teacher_id)

    result = notifier.send_session_qr_codes(session['id'], teacher_id, ORIGIN)

    assert result['success']
    msg = transport.sent[0]
    assert msg['Subject'] == 'QR Code for Biology'
    assert msg['Reply-To'] == 'ada@school.edu'
    assert msg['From'] == 'Rollcall <noreply@school.edu>'
    body = html_body(msg)
    assert 'Jane &lt;b&gt;Doe&lt;/b&gt;' in body
    assert 'R042' in body
    assert f"{ORIGIN}/scan?student_id={student['id']}" in body
    assert f"session_id={session['id']}" in body


def test_no_students_assigned(notifier, transport, make_session, teacher_id):
    session = make_session()

    result = notifier.send_session_qr_codes(session['id'], teacher_id, ORIGIN)

    assert result['success']
    assert result['total'] == 0
    assert result['message'] == 'No students assigned to this session'
    assert transport.sent == []


def test_foreign_session(notifier, make_session, other_teacher_id):
    session = make_session()
    with pytest.raises(SessionNotFound):
        notifier.send_session_qr_codes(session['id'], other_teacher_id, ORIGIN)


def test_send_one_wraps_transport_error(db):
    def refuse(msg):
        raise smtplib.SMTPRecipientsRefused({msg['To']: (550, b'no such user')})

    notifier = EmailNotifier(db, transport=refuse)

    with pytest.raises(EmailDeliveryFailure) as excinfo:
        notifier.send_one('ghost@school.edu', {'session_name': 'Biology'})
    assert excinfo.value.recipient == 'ghost@school.edu'
    assert excinfo.value.error_type == 'email_delivery_failure'


def test_unexpected_transport_error_does_not_abort_batch(db, sessions, make_session, make_student, teacher_id):
    delivered = []

    def transport(msg):
        if msg['To'] == 'bad@school.edu':
            raise ValueError('invalid address')
        delivered.append(msg['To'])

    notifier = EmailNotifier(db, transport=transport)
    first = make_student('Alice', email='bad@school.edu')
    second = make_student('Bob', email='bob@school.edu')
    session = make_session()
    sessions.assign_students(session['id'], [first['id'], second['id']], teacher_id)

    result = notifier.send_session_qr_codes(session['id'], teacher_id, ORIGIN)

    assert (result['sent'], result['failed']) == (1, 1)
    assert result['errors'] == [{'recipient': 'bad@school.edu', 'error': 'invalid address'}]
    assert delivered == ['bob@school.edu']
