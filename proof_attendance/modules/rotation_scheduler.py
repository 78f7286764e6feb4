"""
Rotation Scheduler Module - Proof Attendance System

Drives the periodic replacement of a session's live proof token. One
scheduler instance exists per active session and owns one background thread;
schedulers share no state with each other.

Each tick generates a token, encodes it and publishes the encoded string to
the session record (and to an optional listener for the display). Stopping
is cooperative: the loop checks the stop flag at every tick boundary and
again right before publishing, so nothing is published once ``stop`` has
returned.

Rotation is best-effort. A failed publish is logged and counted, the
previous token stays in place, and the loop keeps ticking.
"""

import logging
import threading
import time
from typing import Callable, Optional

from proof_attendance.modules.database_manager import Session
from proof_attendance.modules.proof_token import ProofToken, TokenKind
from proof_attendance.modules.token_codec import TokenCodec
from proof_attendance.modules.token_generator import TokenGenerator

ROTATION_PERIOD_SECONDS = 8.0


class RotationScheduler:
    """
    Cancellable periodic token rotation for a single session.
    """

    def __init__(self, session: Session, store, codec: TokenCodec,
                 generator: TokenGenerator,
                 period_seconds: float = ROTATION_PERIOD_SECONDS,
                 on_rotate: Optional[Callable[[ProofToken, str], None]] = None,
                 monotonic: Callable[[], float] = time.monotonic):
        """
        Args:
            session (Session): Session whose token is rotated
            store: Persistent store exposing ``publish_current_token`` and
                ``get_active_session``
            codec (TokenCodec): Codec used to encode each new token
            generator (TokenGenerator): Token source
            period_seconds (float): Seconds between rotations
            on_rotate: Called with (token, encoded) after each successful publish
            monotonic: Clock used for the countdown
        """
        if period_seconds <= 0:
            raise ValueError("period_seconds must be positive")

        self.session = session
        self.store = store
        self.codec = codec
        self.generator = generator
        self.period_seconds = period_seconds
        self.on_rotate = on_rotate
        self.monotonic = monotonic
        self.token_kind = TokenKind(session.token_mode)
        self.logger = logging.getLogger(__name__)

        self.rotation_count = 0
        self.failed_rotations = 0
        self.last_token: Optional[ProofToken] = None
        self.last_encoded: Optional[str] = None

        self._stop_event = threading.Event()
        self._publish_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._next_rotation_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def start(self) -> None:
        """Start rotating. The first token is published immediately."""
        if self.running:
            return
        if self._stop_event.is_set():
            raise RuntimeError(f"Scheduler for session {self.session.id} has been stopped")

        self._thread = threading.Thread(
            target=self._run,
            name=f"token-rotation-{self.session.id}",
            daemon=True
        )
        self._thread.start()
        self.logger.info(
            f"Token rotation started for session {self.session.id} "
            f"({self.token_kind.value}, every {self.period_seconds}s)"
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Signal the loop to exit and wait for it.

        Args:
            timeout (float): Seconds to wait for the thread; None waits forever
        """
        # Waits for an in-flight publish to finish
        with self._publish_lock:
            self._stop_event.set()
        self._next_rotation_at = None

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self.logger.info(
            f"Token rotation stopped for session {self.session.id} after {self.rotation_count} rotations"
        )

    def seconds_until_next_rotation(self) -> Optional[float]:
        """Countdown shown next to the live token; None when not running."""
        if self._next_rotation_at is None or self._stop_event.is_set():
            return None
        return max(0.0, self._next_rotation_at - self.monotonic())

    def _run(self) -> None:
        while not self._stop_event.is_set():
            if not self._session_still_active():
                self.logger.info(f"Session {self.session.id} is no longer active; quiescing rotation")
                self._stop_event.set()
                break

            self.rotate_once()
            self._next_rotation_at = self.monotonic() + self.period_seconds

            if self._stop_event.wait(self.period_seconds):
                break

    def _session_still_active(self) -> bool:
        try:
            return self.store.get_active_session(self.session.id) is not None
        except Exception as e:
            # Read failure; keep the current token and try again next tick
            self.logger.warning(f"Could not re-read session {self.session.id}: {str(e)}")
            return True

    def rotate_once(self) -> bool:
        """
        Generate, encode and publish one new token.

        Returns:
            bool: True if the token was published
        """
        session = self.session
        try:
            token = self.generator.generate(
                self.token_kind, session.id, session.subject,
                session.cohort_year, session.cohort_semester
            )
            encoded = self.codec.encode(token)
        except Exception as e:
            self.failed_rotations += 1
            self.logger.error(f"Token generation failed for session {session.id}: {str(e)}")
            return False

        with self._publish_lock:
            if self._stop_event.is_set():
                return False

            try:
                published = self.store.publish_current_token(session.id, encoded)
            except Exception as e:
                self.failed_rotations += 1
                self.logger.error(f"Failed to publish token for session {session.id}: {str(e)}")
                return False

            if not published:
                self.failed_rotations += 1
                self.logger.warning(f"Session {session.id} rejected the new token; it may have ended")
                return False

            self.rotation_count += 1
            self.last_token = token
            self.last_encoded = encoded

        self.logger.debug(f"Rotation #{self.rotation_count} published for session {session.id}")

        if self.on_rotate is not None:
            try:
                self.on_rotate(token, encoded)
            except Exception as e:
                self.logger.error(f"Rotation listener failed for session {session.id}: {str(e)}")

        return True
