# Proof Attendance System - Core Package
"""
Rotating-token proof-of-presence attendance.
An instructor's device shows a short-lived QR payload or OTP code; students
submit it and the server commits one attendance row per student per session.
"""

__version__ = "1.0.0"
__author__ = "Proof Attendance Team"
__description__ = "Rotating proof-token attendance marking with replay and duplicate protection"

# Import core components for easy access
from .modules.proof_token import ProofToken, QrToken, OtpToken, TokenKind
from .modules.token_codec import TokenCodec, DecodeError
from .modules.token_generator import TokenGenerator
from .modules.token_validator import TokenValidator, MismatchKind
from .modules.rotation_scheduler import RotationScheduler
from .modules.attendance_manager import AttendanceManager, CommitOutcome, CommitResult
from .modules.database_manager import DatabaseManager, StorageError
from .modules.session_manager import SessionManager, SessionError
from .modules.qr_generator import QRGenerator

__all__ = [
    'ProofToken',
    'QrToken',
    'OtpToken',
    'TokenKind',
    'TokenCodec',
    'DecodeError',
    'TokenGenerator',
    'TokenValidator',
    'MismatchKind',
    'RotationScheduler',
    'AttendanceManager',
    'CommitOutcome',
    'CommitResult',
    'DatabaseManager',
    'StorageError',
    'SessionManager',
    'SessionError',
    'QRGenerator'
]
