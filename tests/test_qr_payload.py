import pytest

from rollcall.modules.exceptions import MalformedPayload
from rollcall.modules.qr_generator import build_scan_url
from rollcall.modules.qr_payload import ScanPayload, detect_shape, parse_scan_payload


def test_absolute_url():
    payload = parse_scan_payload('https://example.edu/scan?student_id=s1&qr=t1&session_id=x1')
    assert payload == ScanPayload(student_id='s1', qr_token='t1', session_id='x1')


def test_path_relative():
    payload = parse_scan_payload('/scan?student_id=s1&qr=t1&session_id=x1')
    assert payload == ScanPayload('s1', 't1', 'x1')


def test_bare_query_with_and_without_question_mark():
    assert parse_scan_payload('student_id=s1&qr=t1&session_id=x1') == ScanPayload('s1', 't1', 'x1')
    assert parse_scan_payload('?student_id=s1&qr=t1&session_id=x1') == ScanPayload('s1', 't1', 'x1')


def test_surrounding_whitespace_is_ignored():
    payload = parse_scan_payload('  /scan?student_id=s1&qr=t1&session_id=x1\n')
    assert payload.session_id == 'x1'


def test_token_is_percent_decoded():
    token = 'a+b/c=d&e'
    url = build_scan_url('http://localhost:5000', 'stu-1', token, 'ses-1')
    payload = parse_scan_payload(url)
    assert payload.qr_token == token
    assert payload.student_id == 'stu-1'


def test_first_matching_shape_wins():
    shape, query = detect_shape('https://host/scan?student_id=1&qr=2&session_id=3')
    assert shape == 'absolute_url'
    assert query == 'student_id=1&qr=2&session_id=3'

    assert detect_shape('/scan?student_id=1')[0] == 'scan_path'
    assert detect_shape('student_id=1')[0] == 'bare_query'


@pytest.mark.parametrize('raw', [
    '/scan?student_id=s1&qr=t1',
    '/scan?student_id=s1&session_id=x1',
    'https://host/scan?qr=t1&session_id=x1',
    '/scan?student_id=&qr=t1&session_id=x1',
])
def test_missing_or_empty_field(raw):
    with pytest.raises(MalformedPayload) as excinfo:
        parse_scan_payload(raw)
    assert excinfo.value.message == 'Missing required parameters in QR code'
    assert excinfo.value.error_type == 'malformed_payload'


@pytest.mark.parametrize('raw', ['hello world', '', 'ftp://host/scan?x=1', '/other?student_id=1'])
def test_unrecognised_text(raw):
    # '/other?student_id=1' still matches the bare query shape but lacks fields
    with pytest.raises(MalformedPayload):
        parse_scan_payload(raw)


def test_non_string_input():
    with pytest.raises(MalformedPayload):
        parse_scan_payload(None)
