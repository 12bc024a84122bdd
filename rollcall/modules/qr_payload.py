"""
QR Payload Module - Rollcall QR Attendance

Decodes the text a QR reader hands over into the scan triple
(student_id, qr token, session_id). The browser may deliver:

- an absolute URL:        https://host/scan?student_id=..&qr=..&session_id=..
- a path-relative string: /scan?student_id=..&qr=..&session_id=..
- a bare query string:    student_id=..&qr=..&session_id=..

Shapes are tried in that order and the first match wins. This module does
no I/O.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlsplit, parse_qs

from rollcall.modules.exceptions import MalformedPayload

SCAN_PATH = '/scan'


@dataclass(frozen=True)
class ScanPayload:
    """Decoded contents of a student's attendance QR code."""
    student_id: str
    qr_token: str
    session_id: str


def _match_absolute_url(raw: str) -> Optional[str]:
    if raw.startswith('http://') or raw.startswith('https://'):
        return urlsplit(raw).query
    return None


def _match_scan_path(raw: str) -> Optional[str]:
    if raw.startswith(SCAN_PATH + '?'):
        return raw[len(SCAN_PATH) + 1:]
    return None


def _match_bare_query(raw: str) -> Optional[str]:
    if 'student_id=' in raw:
        return raw.lstrip('?')
    return None


# (shape name, matcher) pairs; a matcher returns the query string or None
PAYLOAD_SHAPES: List[Tuple[str, Callable[[str], Optional[str]]]] = [
    ('absolute_url', _match_absolute_url),
    ('scan_path', _match_scan_path),
    ('bare_query', _match_bare_query),
]


def detect_shape(raw: str) -> Tuple[str, str]:
    """
    Find the first payload shape matching ``raw``.

    Returns:
        Tuple[str, str]: Shape name and the query string it extracted

    Raises:
        MalformedPayload: If no shape matches
    """
    for shape, matcher in PAYLOAD_SHAPES:
        query = matcher(raw)
        if query is not None:
            return shape, query
    raise MalformedPayload()


def parse_scan_payload(raw: str) -> ScanPayload:
    """
    Parse a decoded QR string into a ScanPayload.

    Args:
        raw (str): Text decoded from the QR code

    Returns:
        ScanPayload: The scan triple, percent-decoded

    Raises:
        MalformedPayload: If the text has none of the known shapes or any of
            student_id, qr, session_id is missing or empty
    """
    if not isinstance(raw, str):
        raise MalformedPayload()

    _, query = detect_shape(raw.strip())
    params = parse_qs(query, keep_blank_values=True)

    def first(name):
        values = params.get(name)
        return values[0] if values else ''

    student_id = first('student_id')
    qr_token = first('qr')
    session_id = first('session_id')

    if not student_id or not qr_token or not session_id:
        raise MalformedPayload('Missing required parameters in QR code')

    return ScanPayload(student_id=student_id, qr_token=qr_token, session_id=session_id)
