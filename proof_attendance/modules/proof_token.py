"""
Proof Token Module - Proof Attendance System

Data structures for the short-lived proof tokens an instructor's device
displays and students submit. A token is either a QR token (scanned) or an
OTP token (typed), both bound to one session and the session's cohort.

Tokens are immutable values: every rotation produces a new instance.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

OTP_CODE_LENGTH = 6


class TokenKind(str, Enum):
    """Delivery mode of a proof token."""
    QR = 'qr'
    OTP = 'otp'


@dataclass(frozen=True)
class ProofToken(ABC):
    """Fields shared by every proof token variant. Only the QR and OTP
    variants are instantiable."""
    session_id: str
    issued_at_ms: int
    subject: str
    cohort_year: int
    cohort_semester: int

    @property
    @abstractmethod
    def kind(self) -> TokenKind:
        """Delivery mode of the token."""

    def to_payload(self) -> Dict[str, Any]:
        """Return the canonical field map used by the codec."""
        return {
            'kind': self.kind.value,
            'session_id': self.session_id,
            'issued_at_ms': self.issued_at_ms,
            'subject': self.subject,
            'cohort_year': self.cohort_year,
            'cohort_semester': self.cohort_semester,
        }


@dataclass(frozen=True)
class QrToken(ProofToken):
    """Token rendered as a scannable QR image."""

    @property
    def kind(self) -> TokenKind:
        return TokenKind.QR


@dataclass(frozen=True)
class OtpToken(ProofToken):
    """Token carrying a 6-digit code a student types by hand."""
    code: str = ''

    @property
    def kind(self) -> TokenKind:
        return TokenKind.OTP

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload['code'] = self.code
        return payload
