"""
Session Manager Module - Proof Attendance System

This module handles the lifecycle of attendance sessions: an instructor
starts a session for one subject and cohort, its token rotates while it is
active, and ending it stops the rotation and clears the live token.

Features:
- Session creation with subject and cohort validation
- One active session per instructor
- One rotation scheduler per active session
- Resuming rotation for sessions left active across a restart
- Session deletion (attendance cascades)
"""

import logging
import threading
from typing import Callable, Dict, List, Optional

from proof_attendance.modules.database_manager import Session
from proof_attendance.modules.proof_token import ProofToken, TokenKind
from proof_attendance.modules.rotation_scheduler import ROTATION_PERIOD_SECONDS, RotationScheduler
from proof_attendance.modules.token_codec import TokenCodec
from proof_attendance.modules.token_generator import TokenGenerator


class SessionError(Exception):
    """Raised when a session request is rejected."""

    def __init__(self, message: str, error_type: str = 'invalid_request'):
        super().__init__(message)
        self.message = message
        self.error_type = error_type


class SessionManager:
    """
    Session lifecycle and rotation ownership.
    """

    def __init__(self, database_manager, codec: TokenCodec, generator: TokenGenerator,
                 rotation_period_seconds: float = ROTATION_PERIOD_SECONDS,
                 year_range=(1, 4), semester_range=(1, 8),
                 on_rotate: Optional[Callable[[ProofToken, str], None]] = None):
        """
        Initialize the session manager.

        Args:
            database_manager: Persistent store
            codec (TokenCodec): Codec for published tokens
            generator (TokenGenerator): Token source for the schedulers
            rotation_period_seconds (float): Seconds between token rotations
            year_range (tuple): Inclusive bounds for cohort year
            semester_range (tuple): Inclusive bounds for cohort semester
            on_rotate: Listener passed to every scheduler
        """
        self.db = database_manager
        self.codec = codec
        self.generator = generator
        self.rotation_period_seconds = rotation_period_seconds
        self.year_range = year_range
        self.semester_range = semester_range
        self.on_rotate = on_rotate
        self.logger = logging.getLogger(__name__)

        self._schedulers: Dict[str, RotationScheduler] = {}
        self._lock = threading.Lock()

    def start_session(self, staff_id: str, subject: str, year: int, semester: int,
                      token_mode: str = TokenKind.QR.value) -> Session:
        """
        Create an active session and start rotating its token.

        Args:
            staff_id (str): Instructor starting the session
            subject (str): Subject taught
            year (int): Cohort year
            semester (int): Cohort semester
            token_mode (str): 'qr' or 'otp'

        Returns:
            Session: The new session

        Raises:
            SessionError: If the request is invalid or the instructor already
                has an active session
        """
        if not subject or year is None or semester is None:
            raise SessionError('Subject, year, and semester are required')

        try:
            token_mode = TokenKind(token_mode).value
        except ValueError:
            raise SessionError(f"Unknown token mode: {token_mode}")

        if isinstance(year, bool) or not isinstance(year, int) \
                or isinstance(semester, bool) or not isinstance(semester, int):
            raise SessionError('Invalid year or semester')

        if not (self.year_range[0] <= year <= self.year_range[1]
                and self.semester_range[0] <= semester <= self.semester_range[1]):
            raise SessionError('Invalid year or semester')

        staff = self.db.get_staff(staff_id)
        if staff is None:
            raise SessionError('Staff member not found', error_type='not_found')
        if subject not in staff['subjects']:
            raise SessionError('You are not authorized to teach this subject', error_type='forbidden')

        with self._lock:
            if self.db.get_active_sessions(staff_id):
                raise SessionError('You already have an active session. Please end it first.',
                                   error_type='conflict')

            total_students = self.db.count_students_in_cohort(year, semester)
            session = self.db.create_session(staff_id, subject, year, semester,
                                             token_mode, total_students)
            self._start_rotation(session)

        self.logger.info(f"Session {session.id} started by {staff_id}: {subject}, year {year} sem {semester}")
        return session

    def _start_rotation(self, session: Session) -> RotationScheduler:
        scheduler = RotationScheduler(
            session,
            self.db,
            self.codec,
            self.generator,
            period_seconds=self.rotation_period_seconds,
            on_rotate=self.on_rotate
        )
        self._schedulers[session.id] = scheduler
        scheduler.start()
        return scheduler

    def end_session(self, session_id: str, staff_id: Optional[str] = None) -> Session:
        """
        Stop rotation and mark the session ended.

        Args:
            session_id (str): Session to end
            staff_id (str): When given, the session must belong to this instructor

        Returns:
            Session: The ended session
        """
        session = self._get_owned_session(session_id, staff_id)

        with self._lock:
            scheduler = self._schedulers.pop(session_id, None)
        if scheduler is not None:
            scheduler.stop(timeout=self.rotation_period_seconds)

        if session.is_active:
            self.db.end_session(session_id)
            self.logger.info(f"Session {session_id} ended")
        return self.db.get_session(session_id)

    def delete_session(self, session_id: str, staff_id: Optional[str] = None) -> bool:
        """Stop rotation and delete the session with its attendance."""
        self._get_owned_session(session_id, staff_id)

        with self._lock:
            scheduler = self._schedulers.pop(session_id, None)
        if scheduler is not None:
            scheduler.stop(timeout=self.rotation_period_seconds)

        deleted = self.db.delete_session(session_id)
        self.logger.info(f"Session {session_id} deleted")
        return deleted

    def _get_owned_session(self, session_id: str, staff_id: Optional[str]) -> Session:
        session = self.db.get_session(session_id)
        if session is None or (staff_id is not None and session.staff_id != staff_id):
            raise SessionError('Session not found or access denied', error_type='not_found')
        return session

    def get_scheduler(self, session_id: str) -> Optional[RotationScheduler]:
        """Running scheduler of a session, or None."""
        with self._lock:
            self._prune_stopped()
            return self._schedulers.get(session_id)

    def _prune_stopped(self) -> None:
        # Schedulers stop themselves when their session ends outside this manager
        for session_id, scheduler in list(self._schedulers.items()):
            if not scheduler.running:
                del self._schedulers[session_id]

    def get_sessions_for_staff(self, staff_id: str) -> List[Session]:
        return self.db.get_sessions_for_staff(staff_id)

    def resume_active_sessions(self) -> int:
        """
        Start rotation for active sessions that have no scheduler, e.g.
        after a process restart.

        Returns:
            int: Number of schedulers started
        """
        resumed = 0
        with self._lock:
            self._prune_stopped()
            for session in self.db.get_active_sessions():
                if session.id in self._schedulers:
                    continue
                self._start_rotation(session)
                resumed += 1

        if resumed:
            self.logger.info(f"Resumed token rotation for {resumed} active sessions")
        return resumed

    def shutdown(self) -> None:
        """Stop every scheduler without ending the sessions."""
        with self._lock:
            schedulers = list(self._schedulers.values())
            self._schedulers.clear()

        for scheduler in schedulers:
            scheduler.stop(timeout=self.rotation_period_seconds)
