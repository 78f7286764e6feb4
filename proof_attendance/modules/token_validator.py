"""
Token Validator Module - Proof Attendance System

Freshness and consistency checks for decoded proof tokens.

A QR token is only accepted for a short window so a photographed code
cannot be replayed from outside the room; an OTP token gets a longer window
to cover the time it takes a student to type it. Both windows are plain
constructor parameters.

Clock skew between the issuing device and the server is not compensated;
deployments are expected to run NTP-synchronized clocks.
"""

import logging
from enum import Enum
from typing import Optional

from proof_attendance.modules.proof_token import ProofToken, TokenKind

QR_TOKEN_WINDOW_MS = 5000
OTP_TOKEN_WINDOW_MS = 15000


class MismatchKind(str, Enum):
    """Reason a token does not belong to the session it names."""
    SESSION_NOT_FOUND = 'session_not_found'
    SESSION_INACTIVE = 'session_inactive'
    SUBJECT_MISMATCH = 'subject_mismatch'
    COHORT_MISMATCH = 'cohort_mismatch'


class TokenValidator:
    """Checks token freshness and token/session consistency."""

    def __init__(self, qr_window_ms: int = QR_TOKEN_WINDOW_MS,
                 otp_window_ms: int = OTP_TOKEN_WINDOW_MS):
        self.windows = {
            TokenKind.QR: qr_window_ms,
            TokenKind.OTP: otp_window_ms,
        }
        self.logger = logging.getLogger(__name__)

    def window_for(self, token: ProofToken) -> int:
        """Validity window in milliseconds for the token's delivery mode."""
        return self.windows[token.kind]

    def is_valid(self, token: ProofToken, now_ms: int) -> bool:
        """
        Check whether a token is still fresh.

        Args:
            token (ProofToken): Decoded token
            now_ms (int): Current time in epoch milliseconds

        Returns:
            bool: True if the token age is within its window
        """
        age_ms = now_ms - token.issued_at_ms
        return abs(age_ms) <= self.window_for(token)

    def cross_check(self, token: ProofToken, session) -> Optional[MismatchKind]:
        """
        Confirm the token was minted for the given session as it stands now.

        Args:
            token (ProofToken): Decoded token
            session (Session): Live session record, or None if not found

        Returns:
            MismatchKind: The first inconsistency found, or None if the token
            matches the session
        """
        if session is None or session.id != token.session_id:
            return MismatchKind.SESSION_NOT_FOUND

        if not session.is_active:
            return MismatchKind.SESSION_INACTIVE

        if token.subject != session.subject:
            self.logger.warning(
                f"Subject mismatch for session {session.id}: token={token.subject!r} session={session.subject!r}"
            )
            return MismatchKind.SUBJECT_MISMATCH

        if (token.cohort_year != session.cohort_year
                or token.cohort_semester != session.cohort_semester):
            self.logger.warning(f"Cohort mismatch for session {session.id}")
            return MismatchKind.COHORT_MISMATCH

        return None
