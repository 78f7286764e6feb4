import time

import pytest

from proof_attendance.modules.session_manager import SessionError, SessionManager


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def session_manager(db_manager, codec, generator):
    manager = SessionManager(db_manager, codec, generator, rotation_period_seconds=0.05)
    yield manager
    manager.shutdown()


def test_start_session_creates_active_session_with_cohort_size(session_manager, db_manager, seeded):
    session = session_manager.start_session(seeded['staff_id'], 'DSA', 2, 3, 'otp')

    assert session.is_active is True
    assert session.total_students == 3
    assert session.token_mode == 'otp'
    assert wait_for(lambda: db_manager.get_session(session.id).current_token is not None)
    assert session_manager.get_scheduler(session.id).running


@pytest.mark.parametrize('subject,year,semester,mode', [
    ('', 2, 3, 'qr'),
    ('DSA', None, 3, 'qr'),
    ('DSA', 2, None, 'qr'),
    ('DSA', 2, 3, 'nfc'),
    ('DSA', '2', 3, 'qr'),
    ('DSA', True, 3, 'qr'),
    ('DSA', 0, 3, 'qr'),
    ('DSA', 5, 3, 'qr'),
    ('DSA', 2, 9, 'qr'),
])
def test_invalid_requests_are_rejected(session_manager, seeded, subject, year, semester, mode):
    with pytest.raises(SessionError) as excinfo:
        session_manager.start_session(seeded['staff_id'], subject, year, semester, mode)
    assert excinfo.value.error_type == 'invalid_request'


def test_unknown_staff_is_not_found(session_manager, seeded):
    with pytest.raises(SessionError) as excinfo:
        session_manager.start_session('nobody', 'DSA', 2, 3)
    assert excinfo.value.error_type == 'not_found'


def test_subject_must_be_taught_by_staff(session_manager, seeded):
    with pytest.raises(SessionError) as excinfo:
        session_manager.start_session(seeded['staff_id'], 'Compiler Design', 2, 3)
    assert excinfo.value.error_type == 'forbidden'


def test_second_active_session_is_a_conflict(session_manager, db_manager, seeded):
    session_manager.start_session(seeded['staff_id'], 'DSA', 2, 3)

    with pytest.raises(SessionError) as excinfo:
        session_manager.start_session(seeded['staff_id'], 'DBMS', 2, 4)

    assert excinfo.value.error_type == 'conflict'
    assert len(db_manager.get_active_sessions(seeded['staff_id'])) == 1


def test_end_session_stops_rotation_and_clears_token(session_manager, db_manager, seeded):
    session = session_manager.start_session(seeded['staff_id'], 'DSA', 2, 3)
    scheduler = session_manager.get_scheduler(session.id)
    assert wait_for(lambda: scheduler.rotation_count >= 1)

    ended = session_manager.end_session(session.id, seeded['staff_id'])

    assert ended.is_active is False
    assert ended.current_token is None
    assert not scheduler.running
    assert session_manager.get_scheduler(session.id) is None

    time.sleep(0.15)
    assert db_manager.get_session(session.id).current_token is None


def test_ending_allows_a_new_session(session_manager, seeded):
    first = session_manager.start_session(seeded['staff_id'], 'DSA', 2, 3)
    session_manager.end_session(first.id)

    second = session_manager.start_session(seeded['staff_id'], 'DBMS', 2, 4)
    assert second.id != first.id


def test_other_staff_cannot_end_session(session_manager, db_manager, seeded):
    session = session_manager.start_session(seeded['staff_id'], 'DSA', 2, 3)
    intruder = db_manager.add_staff('Dr. Iyer', subjects=['DSA'])

    with pytest.raises(SessionError) as excinfo:
        session_manager.end_session(session.id, intruder)

    assert excinfo.value.error_type == 'not_found'
    assert db_manager.get_session(session.id).is_active is True


def test_delete_session_stops_rotation_and_removes_records(session_manager, db_manager, seeded):
    session = session_manager.start_session(seeded['staff_id'], 'DSA', 2, 3)
    scheduler = session_manager.get_scheduler(session.id)

    assert session_manager.delete_session(session.id, seeded['staff_id']) is True
    assert not scheduler.running
    assert db_manager.get_session(session.id) is None


def test_resume_starts_rotation_for_orphaned_sessions(db_manager, codec, generator, seeded):
    orphan = db_manager.create_session(seeded['staff_id'], 'DSA', 2, 3, 'qr')
    manager = SessionManager(db_manager, codec, generator, rotation_period_seconds=0.05)
    try:
        assert manager.resume_active_sessions() == 1
        assert manager.resume_active_sessions() == 0
        assert wait_for(lambda: db_manager.get_session(orphan.id).current_token is not None)
    finally:
        manager.shutdown()


def test_shutdown_stops_rotation_but_keeps_sessions_active(db_manager, codec, generator, seeded):
    manager = SessionManager(db_manager, codec, generator, rotation_period_seconds=0.05)
    session = manager.start_session(seeded['staff_id'], 'DSA', 2, 3)
    scheduler = manager.get_scheduler(session.id)

    manager.shutdown()

    assert not scheduler.running
    assert db_manager.get_session(session.id).is_active is True


def test_scheduler_stopped_by_store_side_end_is_pruned(session_manager, db_manager, seeded):
    session = session_manager.start_session(seeded['staff_id'], 'DSA', 2, 3)
    scheduler = session_manager.get_scheduler(session.id)
    assert wait_for(lambda: scheduler.rotation_count >= 1)

    db_manager.end_session(session.id)

    assert wait_for(lambda: not scheduler.running)
    assert session_manager.get_scheduler(session.id) is None
    assert session_manager.resume_active_sessions() == 0
