import pytest

from proof_attendance.modules.database_manager import Session
from proof_attendance.modules.proof_token import OtpToken, QrToken
from proof_attendance.modules.token_validator import MismatchKind, TokenValidator

NOW_MS = 1_760_000_100_000


def make_session(**overrides):
    fields = dict(
        id='s-1', staff_id='staff-1', subject='DSA', cohort_year=2, cohort_semester=3,
        token_mode='qr', is_active=True, current_token=None, total_students=40,
        started_at=None, ended_at=None,
    )
    fields.update(overrides)
    return Session(**fields)


def qr_issued(age_ms):
    return QrToken('s-1', NOW_MS - age_ms, 'DSA', 2, 3)


def otp_issued(age_ms):
    return OtpToken('s-1', NOW_MS - age_ms, 'DSA', 2, 3, code='123456')


@pytest.mark.parametrize('make_token,window', [(qr_issued, 5000), (otp_issued, 15000)])
def test_freshness_boundary(validator, make_token, window):
    assert validator.is_valid(make_token(window - 1), NOW_MS) is True
    assert validator.is_valid(make_token(window), NOW_MS) is True
    assert validator.is_valid(make_token(window + 1), NOW_MS) is False


def test_qr_window_is_shorter_than_otp_window(validator):
    assert validator.is_valid(qr_issued(6000), NOW_MS) is False
    assert validator.is_valid(otp_issued(6000), NOW_MS) is True


def test_windows_are_configurable():
    validator = TokenValidator(qr_window_ms=100, otp_window_ms=200)

    assert validator.is_valid(qr_issued(101), NOW_MS) is False
    assert validator.is_valid(otp_issued(199), NOW_MS) is True


def test_cross_check_accepts_matching_session(validator):
    assert validator.cross_check(qr_issued(0), make_session()) is None


@pytest.mark.parametrize('session,expected', [
    (None, MismatchKind.SESSION_NOT_FOUND),
    (make_session(id='s-2'), MismatchKind.SESSION_NOT_FOUND),
    (make_session(is_active=False), MismatchKind.SESSION_INACTIVE),
    (make_session(subject='DBMS'), MismatchKind.SUBJECT_MISMATCH),
    (make_session(cohort_year=3), MismatchKind.COHORT_MISMATCH),
    (make_session(cohort_semester=4), MismatchKind.COHORT_MISMATCH),
])
def test_cross_check_reports_specific_mismatch(validator, session, expected):
    assert validator.cross_check(qr_issued(0), session) is expected


def test_cross_check_does_not_consider_freshness(validator):
    assert validator.cross_check(otp_issued(60_000), make_session()) is None


def test_inactive_is_reported_before_attribute_mismatch(validator):
    session = make_session(is_active=False, subject='DBMS', cohort_year=4)
    assert validator.cross_check(qr_issued(0), session) is MismatchKind.SESSION_INACTIVE
