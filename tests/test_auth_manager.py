from datetime import timedelta

import pytest

from rollcall.modules.auth_manager import EVENT_SIGNED_IN, EVENT_SIGNED_OUT
from rollcall.modules.exceptions import NotAuthenticated


def test_register_and_authenticate(auth):
    registered = auth.register_teacher('Ada', 'Ada@School.edu', 'secret123')
    assert registered['success']

    teacher = auth.authenticate_teacher('ada@school.edu', 'secret123')
    assert teacher == {'id': registered['teacher_id'], 'name': 'Ada', 'email': 'ada@school.edu'}
    assert auth.is_session_valid(teacher['id'])
    assert auth.get_teacher(teacher['id'])['name'] == 'Ada'


def test_register_validation(auth, teacher_id):
    assert auth.register_teacher('', 'x@school.edu', 'secret123')['error'] == \
        'Name, email and password are required'
    assert auth.register_teacher('X', 'nope', 'secret123')['error'] == 'Invalid email address format'
    assert 'at least 6' in auth.register_teacher('X', 'x@school.edu', '123')['error']
    assert auth.register_teacher('X', 'ada@school.edu', 'secret123')['error'] == \
        'Email address already exists'


def test_wrong_password(auth, teacher_id):
    assert auth.authenticate_teacher('ada@school.edu', 'wrong') is None
    assert not auth.is_session_valid(teacher_id)


def test_require_caller(auth, teacher_id):
    with pytest.raises(NotAuthenticated):
        auth.require_caller(teacher_id)
    with pytest.raises(NotAuthenticated):
        auth.require_caller(None)

    auth.authenticate_teacher('ada@school.edu', 'secret123')
    assert auth.require_caller(teacher_id) == teacher_id


def test_idle_session_expires(auth, teacher_id):
    events = []
    auth.subscribe(lambda event, info: events.append(event))
    auth.authenticate_teacher('ada@school.edu', 'secret123')
    auth.active_sessions[teacher_id].last_activity -= timedelta(hours=9)

    assert not auth.is_session_valid(teacher_id)
    assert events == [EVENT_SIGNED_IN, EVENT_SIGNED_OUT]


def test_subscription_events_and_teardown(auth, teacher_id):
    events = []
    subscription = auth.subscribe(lambda event, info: events.append((event, info['id'])))

    auth.authenticate_teacher('ada@school.edu', 'secret123')
    assert auth.sign_out(teacher_id) is True
    assert auth.sign_out(teacher_id) is False

    subscription.unsubscribe()
    subscription.unsubscribe()
    auth.authenticate_teacher('ada@school.edu', 'secret123')

    assert events == [(EVENT_SIGNED_IN, teacher_id), (EVENT_SIGNED_OUT, teacher_id)]


def test_subscription_as_context_manager(auth, teacher_id):
    events = []
    with auth.subscribe(lambda event, info: events.append(event)) as subscription:
        auth.authenticate_teacher('ada@school.edu', 'secret123')

    assert not subscription.active
    auth.sign_out(teacher_id)
    assert events == [EVENT_SIGNED_IN]


def test_failing_listener_does_not_break_others(auth, teacher_id):
    received = []

    def broken(event, info):
        raise RuntimeError('listener bug')

    auth.subscribe(broken)
    auth.subscribe(lambda event, info: received.append(event))

    assert auth.authenticate_teacher('ada@school.edu', 'secret123') is not None
    assert received == [EVENT_SIGNED_IN]
