"""
Attendance Manager Module - Proof Attendance System

This module runs the server side of a student submission. A submitted proof
(an encoded QR payload or a typed OTP code) is decoded, matched to its
session, checked for freshness, cross-checked against the live session
record and the student's cohort, and finally committed as a single
attendance row.

Every submission ends in exactly one CommitOutcome. Nothing is persisted
unless the outcome is MARKED, and a duplicate submission never creates a
second row.

Features:
- QR payload and OTP code submission paths
- Distinct outcomes for every rejection reason
- Atomic insert-if-absent commit
- Attendance history and per-student statistics
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from proof_attendance.modules.database_manager import Session, StorageError
from proof_attendance.modules.proof_token import OtpToken, ProofToken
from proof_attendance.modules.token_codec import OTP_CODE_PATTERN, DecodeError, TokenCodec
from proof_attendance.modules.token_generator import current_time_ms
from proof_attendance.modules.token_validator import MismatchKind, TokenValidator


class CommitOutcome(str, Enum):
    """Terminal outcome of one submission."""
    MARKED = 'marked'
    INVALID_PROOF = 'invalid_proof'
    SESSION_NOT_FOUND = 'session_not_found'
    EXPIRED_PROOF = 'expired_proof'
    SESSION_INACTIVE = 'session_inactive'
    SUBJECT_MISMATCH = 'subject_mismatch'
    COHORT_MISMATCH = 'cohort_mismatch'
    NOT_ELIGIBLE = 'not_eligible'
    ALREADY_MARKED = 'already_marked'
    STORAGE_ERROR = 'storage_error'


MISMATCH_OUTCOMES = {
    MismatchKind.SESSION_NOT_FOUND: CommitOutcome.SESSION_NOT_FOUND,
    MismatchKind.SESSION_INACTIVE: CommitOutcome.SESSION_INACTIVE,
    MismatchKind.SUBJECT_MISMATCH: CommitOutcome.SUBJECT_MISMATCH,
    MismatchKind.COHORT_MISMATCH: CommitOutcome.COHORT_MISMATCH,
}


@dataclass
class CommitResult:
    """Result of a submission attempt."""
    outcome: CommitOutcome
    student_id: str
    session_id: Optional[str] = None
    subject: Optional[str] = None
    marked_at: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome is CommitOutcome.MARKED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'outcome': self.outcome.value,
            'student_id': self.student_id,
            'session_id': self.session_id,
            'subject': self.subject,
            'marked_at': self.marked_at,
        }


def ms_to_iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


class AttendanceManager:
    """
    Commit protocol for proof-of-presence submissions.
    """

    def __init__(self, database_manager, codec: TokenCodec, validator: TokenValidator,
                 clock: Callable[[], int] = current_time_ms):
        """
        Initialize the attendance manager.

        Args:
            database_manager: Persistent store
            codec (TokenCodec): Codec sharing the emitter's secret
            validator (TokenValidator): Freshness and consistency checks
            clock: Returns the current time in epoch milliseconds
        """
        self.db = database_manager
        self.codec = codec
        self.validator = validator
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def process_token_submission(self, raw_token: str, student_id: str) -> CommitResult:
        """
        Process an encoded token scanned from the instructor's display.

        Args:
            raw_token (str): Encoded token exactly as scanned
            student_id (str): Authenticated student ID

        Returns:
            CommitResult: Terminal outcome of the submission
        """
        try:
            token = self.codec.decode(raw_token)
        except DecodeError as e:
            self.logger.info(f"Rejected undecodable proof from student {student_id}: {str(e)}")
            return CommitResult(CommitOutcome.INVALID_PROOF, student_id)

        try:
            session = self.db.get_session(token.session_id)
            if session is None:
                return CommitResult(CommitOutcome.SESSION_NOT_FOUND, student_id, token.session_id)
            return self._validate_and_commit(token, student_id)
        except StorageError as e:
            return self._storage_failure(student_id, token.session_id, e)

    def process_otp_submission(self, otp_code: str, student_id: str,
                               session_id: Optional[str] = None) -> CommitResult:
        """
        Process a typed OTP code.

        The code carries no session identifier, so the live tokens of all
        active sessions are searched for it. Passing ``session_id`` limits
        the search to that session.

        Args:
            otp_code (str): Six-digit code typed by the student
            student_id (str): Authenticated student ID
            session_id (str): Optional session the student is attending

        Returns:
            CommitResult: Terminal outcome of the submission
        """
        code = otp_code.strip() if isinstance(otp_code, str) else ''
        if not OTP_CODE_PATTERN.match(code):
            return CommitResult(CommitOutcome.INVALID_PROOF, student_id, session_id)

        try:
            match = self._find_session_by_code(code, session_id)
            if match is None:
                self.logger.info(f"No active session publishes the code submitted by student {student_id}")
                return CommitResult(CommitOutcome.SESSION_NOT_FOUND, student_id, session_id)

            token, _ = match
            return self._validate_and_commit(token, student_id)
        except StorageError as e:
            return self._storage_failure(student_id, session_id, e)

    def _find_session_by_code(self, code: str,
                              session_id: Optional[str]) -> Optional[Tuple[OtpToken, Session]]:
        """
        Find the session whose published OTP token carries ``code``.

        Fresh matches win over stale ones; among equals the oldest active
        session wins. Two sessions publishing the same fresh code is not
        disambiguated.
        """
        if session_id is not None:
            session = self.db.get_active_session(session_id)
            candidates = [session] if session else []
        else:
            candidates = self.db.get_active_sessions()

        now_ms = self.clock()
        stale_match = None

        for session in candidates:
            if not session.current_token:
                continue
            try:
                token = self.codec.decode(session.current_token)
            except DecodeError:
                self.logger.warning(f"Session {session.id} holds an undecodable token")
                continue

            if not isinstance(token, OtpToken) or token.code != code:
                continue

            if self.validator.is_valid(token, now_ms):
                return token, session
            if stale_match is None:
                stale_match = (token, session)

        return stale_match

    def _validate_and_commit(self, token: ProofToken, student_id: str) -> CommitResult:
        if not self.validator.is_valid(token, self.clock()):
            return CommitResult(CommitOutcome.EXPIRED_PROOF, student_id, token.session_id, token.subject)

        # Re-read the live record; the session may have ended since the lookup
        session = self.db.get_session(token.session_id)
        mismatch = self.validator.cross_check(token, session)
        if mismatch is not None:
            self.logger.info(f"Proof from student {student_id} rejected: {mismatch.value}")
            return CommitResult(MISMATCH_OUTCOMES[mismatch], student_id, token.session_id, token.subject)

        cohort = self.db.get_student_cohort(student_id)
        if cohort is None or cohort != (session.cohort_year, session.cohort_semester):
            self.logger.info(f"Student {student_id} is not in the cohort of session {session.id}")
            return CommitResult(CommitOutcome.NOT_ELIGIBLE, student_id, session.id, session.subject)

        marked_at = ms_to_iso(self.clock())
        result = self.db.insert_attendance_if_absent(session.id, student_id, marked_at)
        if not result.inserted:
            return CommitResult(CommitOutcome.ALREADY_MARKED, student_id, session.id, session.subject)

        self.logger.info(f"Attendance recorded: student {student_id}, session {session.id} ({session.subject})")
        return CommitResult(CommitOutcome.MARKED, student_id, session.id, session.subject, marked_at)

    def _storage_failure(self, student_id: str, session_id: Optional[str],
                         error: StorageError) -> CommitResult:
        self.logger.error(f"Storage failure while processing submission from {student_id}: {str(error)}")
        return CommitResult(CommitOutcome.STORAGE_ERROR, student_id, session_id)

    def get_session_attendance(self, session_id: str) -> List[Dict[str, Any]]:
        """Attendance rows of one session, earliest first."""
        return self.db.get_session_attendance(session_id)

    def get_student_attendance_history(self, student_id: str) -> List[Dict[str, Any]]:
        """Sessions attended by a student, most recent first."""
        return self.db.get_student_attendance(student_id)

    def get_student_attendance_stats(self, student_id: str) -> Optional[Dict[str, Any]]:
        """
        Attendance summary for a student across all sessions of their cohort.

        Args:
            student_id (str): Student ID

        Returns:
            Dict[str, Any]: Totals and rounded percentage, or None for an
            unknown student
        """
        cohort = self.db.get_student_cohort(student_id)
        if cohort is None:
            return None

        history = self.db.get_student_attendance(student_id)
        total_sessions = self.db.count_sessions_for_cohort(*cohort)
        attended = len(history)

        return {
            'total_sessions': total_sessions,
            'attended_sessions': attended,
            'attendance_percentage': int(attended * 100 / total_sessions + 0.5) if total_sessions else 0,
            'recent_attendance': history[:5],
        }
