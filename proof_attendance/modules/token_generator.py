"""
Token Generator Module - Proof Attendance System

Mints new proof tokens bound to a session and its cohort. Generation only
reads the clock and the random source; both are injectable so the generator
can be driven deterministically in tests and without a scheduler.
"""

import logging
import secrets
import time
from typing import Callable

from proof_attendance.modules.proof_token import OTP_CODE_LENGTH, OtpToken, ProofToken, QrToken, TokenKind


def current_time_ms() -> int:
    """Wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


class TokenGenerator:
    """Produces QR and OTP proof tokens."""

    def __init__(self, clock: Callable[[], int] = current_time_ms,
                 randbelow: Callable[[int], int] = secrets.randbelow):
        """
        Args:
            clock: Returns the current time in epoch milliseconds
            randbelow: Returns a uniform integer in ``[0, n)``
        """
        self.clock = clock
        self.randbelow = randbelow
        self.logger = logging.getLogger(__name__)

    def generate_otp_code(self) -> str:
        """Draw a fresh zero-padded numeric code. Repeats across rotations are expected."""
        return str(self.randbelow(10 ** OTP_CODE_LENGTH)).zfill(OTP_CODE_LENGTH)

    def generate_qr_token(self, session_id: str, subject: str,
                          cohort_year: int, cohort_semester: int) -> QrToken:
        return QrToken(
            session_id=session_id,
            issued_at_ms=self.clock(),
            subject=subject,
            cohort_year=cohort_year,
            cohort_semester=cohort_semester,
        )

    def generate_otp_token(self, session_id: str, subject: str,
                           cohort_year: int, cohort_semester: int) -> OtpToken:
        return OtpToken(
            session_id=session_id,
            issued_at_ms=self.clock(),
            subject=subject,
            cohort_year=cohort_year,
            cohort_semester=cohort_semester,
            code=self.generate_otp_code(),
        )

    def generate(self, kind: TokenKind, session_id: str, subject: str,
                 cohort_year: int, cohort_semester: int) -> ProofToken:
        """
        Generate a token of the requested kind.

        Args:
            kind (TokenKind): QR or OTP
            session_id (str): Session the token is bound to
            subject (str): Session subject
            cohort_year (int): Session cohort year
            cohort_semester (int): Session cohort semester

        Returns:
            ProofToken: A new token stamped with the current time
        """
        kind = TokenKind(kind)
        if kind is TokenKind.OTP:
            token = self.generate_otp_token(session_id, subject, cohort_year, cohort_semester)
        else:
            token = self.generate_qr_token(session_id, subject, cohort_year, cohort_semester)

        self.logger.debug(f"Generated {kind.value} token for session {session_id} at {token.issued_at_ms}")
        return token
