import pytest

from proof_attendance.modules.attendance_manager import AttendanceManager
from proof_attendance.modules.database_manager import DatabaseManager
from proof_attendance.modules.token_codec import TokenCodec
from proof_attendance.modules.token_generator import TokenGenerator
from proof_attendance.modules.token_validator import TokenValidator

T0_MS = 1_760_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now_ms: int = T0_MS):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def codec():
    return TokenCodec('unit-test-secret')


@pytest.fixture
def validator():
    return TokenValidator(qr_window_ms=5000, otp_window_ms=15000)


@pytest.fixture
def generator(clock):
    return TokenGenerator(clock=clock)


@pytest.fixture
def db_manager(tmp_path):
    manager = DatabaseManager(tmp_path / 'attendance.db', timeout=5.0)
    yield manager
    manager.close_all_connections()


@pytest.fixture
def seeded(db_manager):
    """One DSA instructor and students in cohorts (2, 3) and (2, 4)."""
    staff_id = db_manager.add_staff('Dr. Rao', 'rao@college.edu', ['DSA', 'DBMS'])
    students = {
        'asha': db_manager.add_student('1001', 'Asha', 2, 3),
        'bala': db_manager.add_student('1002', 'Bala', 2, 3),
        'chen': db_manager.add_student('1003', 'Chen', 2, 3),
        'dev': db_manager.add_student('1004', 'Dev', 2, 4),
    }
    return {'staff_id': staff_id, 'students': students}


@pytest.fixture
def dsa_session(db_manager, seeded):
    return db_manager.create_session(seeded['staff_id'], 'DSA', 2, 3, 'otp', total_students=3)


@pytest.fixture
def attendance_manager(db_manager, codec, validator, clock):
    return AttendanceManager(db_manager, codec, validator, clock=clock)
