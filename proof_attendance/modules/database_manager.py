"""
Database Manager Module - Proof Attendance System

This module is the persistent store behind the attendance protocol. It wraps
a SQLite database holding staff, students, live sessions and attendance
records, and exposes the narrow set of operations the token rotation and
commit protocol depend on.

Features:
- Thread-local SQLite connections with a bounded busy timeout
- Idempotent schema creation
- Atomic insert-if-absent for attendance rows
- Cascade delete of attendance when a session is removed
- Every sqlite3 failure surfaced as StorageError
"""

import json
import logging
import os
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


class StorageError(Exception):
    """Raised when the underlying database cannot complete an operation."""


@dataclass
class Session:
    """Data class for an attendance session row."""
    id: str
    staff_id: str
    subject: str
    cohort_year: int
    cohort_semester: int
    token_mode: str
    is_active: bool
    current_token: Optional[str]
    total_students: int
    started_at: Optional[str]
    ended_at: Optional[str]


@dataclass
class InsertResult:
    """Outcome of an insert-if-absent attempt."""
    inserted: bool
    reason: Optional[str] = None

    ALREADY_EXISTS = 'already_exists'


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DatabaseManager:
    """
    SQLite-backed store for sessions, students and attendance.
    All public methods raise StorageError on database failure.
    """

    def __init__(self, db_path, timeout: float = 30.0, journal_mode: str = 'WAL'):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file, or ':memory:'
            timeout (float): Seconds to wait on a locked database
            journal_mode (str): SQLite journal mode for file databases
        """
        self.db_path = str(db_path)
        self.timeout = timeout
        self.journal_mode = journal_mode
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()

        # ':memory:' would give every thread its own empty database
        self._uri = None
        if self.db_path == ':memory:':
            self._uri = f"file:proof_attendance_{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._keepalive = self._connect()
        else:
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        self.initialize_database()

    def _connect(self) -> sqlite3.Connection:
        if self._uri:
            connection = sqlite3.connect(self._uri, uri=True, check_same_thread=False,
                                         timeout=self.timeout)
        else:
            connection = sqlite3.connect(self.db_path, check_same_thread=False,
                                         timeout=self.timeout)
            connection.execute(f"PRAGMA journal_mode = {self.journal_mode}")
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        return connection

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Provides thread-local connections for thread safety.

        Yields:
            sqlite3.Connection: Database connection object
        """
        try:
            if not hasattr(self._local, 'connection'):
                self._local.connection = self._connect()
        except sqlite3.Error as e:
            self.logger.error(f"Database connection failed: {str(e)}")
            raise StorageError(str(e)) from e

        try:
            yield self._local.connection
        except sqlite3.Error as e:
            self._local.connection.rollback()
            self.logger.error(f"Database operation failed: {str(e)}")
            raise StorageError(str(e)) from e

    def initialize_database(self):
        """
        Create all tables and indexes. Safe to call repeatedly.
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS staff (
                    id VARCHAR(36) PRIMARY KEY,
                    name VARCHAR(100) NOT NULL,
                    email VARCHAR(100) UNIQUE,
                    subjects TEXT NOT NULL DEFAULT '[]',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS students (
                    id VARCHAR(36) PRIMARY KEY,
                    reg_no VARCHAR(15) UNIQUE NOT NULL,
                    name VARCHAR(100) NOT NULL,
                    email VARCHAR(100) UNIQUE,
                    year INTEGER NOT NULL,
                    semester INTEGER NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id VARCHAR(36) PRIMARY KEY,
                    staff_id VARCHAR(36) NOT NULL,
                    subject VARCHAR(100) NOT NULL,
                    year INTEGER NOT NULL,
                    semester INTEGER NOT NULL,
                    token_mode VARCHAR(10) NOT NULL DEFAULT 'qr',
                    is_active BOOLEAN DEFAULT 1,
                    current_token TEXT,
                    total_students INTEGER DEFAULT 0,
                    started_at TIMESTAMP,
                    ended_at TIMESTAMP,
                    FOREIGN KEY (staff_id) REFERENCES staff(id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS attendance (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id VARCHAR(36) NOT NULL,
                    student_id VARCHAR(36) NOT NULL,
                    marked_at TIMESTAMP NOT NULL,
                    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE,
                    FOREIGN KEY (student_id) REFERENCES students(id),
                    UNIQUE(session_id, student_id)
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_active ON sessions(is_active)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_staff ON sessions(staff_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_student ON attendance(student_id)")

            conn.commit()
            self.logger.info("Database initialized successfully")

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        with self.get_connection() as conn:
            cursor = conn.execute(query, params or ())

            if fetch_all:
                return [dict(row) for row in cursor.fetchall()]

            result = cursor.fetchone()
            return dict(result) if result else None

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE query.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters

        Returns:
            int: Number of affected rows
        """
        with self.get_connection() as conn:
            cursor = conn.execute(query, params or ())
            conn.commit()
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Staff and students

    def add_staff(self, name: str, email: Optional[str] = None,
                  subjects: Optional[List[str]] = None, staff_id: Optional[str] = None) -> str:
        staff_id = staff_id or uuid.uuid4().hex
        self.execute_update(
            "INSERT INTO staff (id, name, email, subjects) VALUES (?, ?, ?, ?)",
            (staff_id, name, email, json.dumps(subjects or []))
        )
        return staff_id

    def get_staff(self, staff_id: str) -> Optional[Dict[str, Any]]:
        staff = self.execute_query(
            "SELECT * FROM staff WHERE id = ?", (staff_id,), fetch_all=False
        )
        if staff:
            staff['subjects'] = json.loads(staff['subjects'])
        return staff

    def add_student(self, reg_no: str, name: str, year: int, semester: int,
                    email: Optional[str] = None, student_id: Optional[str] = None) -> str:
        student_id = student_id or uuid.uuid4().hex
        self.execute_update(
            """INSERT INTO students (id, reg_no, name, email, year, semester)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (student_id, reg_no, name, email, year, semester)
        )
        return student_id

    def get_student_cohort(self, student_id: str) -> Optional[Tuple[int, int]]:
        """
        Get the (year, semester) cohort of a student.

        Returns:
            tuple: (year, semester), or None if the student does not exist
        """
        row = self.execute_query(
            "SELECT year, semester FROM students WHERE id = ?",
            (student_id,),
            fetch_all=False
        )
        return (row['year'], row['semester']) if row else None

    def count_students_in_cohort(self, year: int, semester: int) -> int:
        row = self.execute_query(
            "SELECT COUNT(*) AS total FROM students WHERE year = ? AND semester = ?",
            (year, semester),
            fetch_all=False
        )
        return row['total']

    # ------------------------------------------------------------------
    # Sessions

    @staticmethod
    def _row_to_session(row: Optional[Dict[str, Any]]) -> Optional[Session]:
        if row is None:
            return None
        return Session(
            id=row['id'],
            staff_id=row['staff_id'],
            subject=row['subject'],
            cohort_year=row['year'],
            cohort_semester=row['semester'],
            token_mode=row['token_mode'],
            is_active=bool(row['is_active']),
            current_token=row['current_token'],
            total_students=row['total_students'],
            started_at=row['started_at'],
            ended_at=row['ended_at'],
        )

    def create_session(self, staff_id: str, subject: str, year: int, semester: int,
                       token_mode: str = 'qr', total_students: int = 0) -> Session:
        """
        Insert a new active session.

        Args:
            staff_id (str): Instructor running the session
            subject (str): Subject taught
            year (int): Cohort year
            semester (int): Cohort semester
            token_mode (str): 'qr' or 'otp'
            total_students (int): Students in the cohort at creation time

        Returns:
            Session: The stored session
        """
        session_id = uuid.uuid4().hex
        self.execute_update(
            """INSERT INTO sessions (id, staff_id, subject, year, semester, token_mode,
                                     is_active, total_students, started_at)
               VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)""",
            (session_id, staff_id, subject, year, semester, token_mode,
             total_students, utc_now_iso())
        )
        return self.get_session(session_id)

    def get_session(self, session_id: str) -> Optional[Session]:
        """Get a session regardless of its state."""
        row = self.execute_query(
            "SELECT * FROM sessions WHERE id = ?", (session_id,), fetch_all=False
        )
        return self._row_to_session(row)

    def get_active_session(self, session_id: str) -> Optional[Session]:
        """Get a session only if it is currently active."""
        row = self.execute_query(
            "SELECT * FROM sessions WHERE id = ? AND is_active = 1",
            (session_id,),
            fetch_all=False
        )
        return self._row_to_session(row)

    def get_active_sessions(self, staff_id: Optional[str] = None) -> List[Session]:
        """
        Get active sessions, oldest first.

        Args:
            staff_id (str): Restrict to one instructor; all instructors if None
        """
        if staff_id is None:
            rows = self.execute_query(
                "SELECT * FROM sessions WHERE is_active = 1 ORDER BY started_at, rowid"
            )
        else:
            rows = self.execute_query(
                """SELECT * FROM sessions WHERE is_active = 1 AND staff_id = ?
                   ORDER BY started_at, rowid""",
                (staff_id,)
            )
        return [self._row_to_session(row) for row in rows]

    def get_sessions_for_staff(self, staff_id: str) -> List[Session]:
        rows = self.execute_query(
            "SELECT * FROM sessions WHERE staff_id = ? ORDER BY started_at DESC, rowid DESC",
            (staff_id,)
        )
        return [self._row_to_session(row) for row in rows]

    def publish_current_token(self, session_id: str, encoded_token: str) -> bool:
        """
        Replace the session's live token.

        Returns:
            bool: False if the session is missing or no longer active
        """
        updated = self.execute_update(
            "UPDATE sessions SET current_token = ? WHERE id = ? AND is_active = 1",
            (encoded_token, session_id)
        )
        return updated == 1

    def end_session(self, session_id: str) -> bool:
        """Mark a session ended and clear its live token."""
        updated = self.execute_update(
            """UPDATE sessions SET is_active = 0, current_token = NULL, ended_at = ?
               WHERE id = ? AND is_active = 1""",
            (utc_now_iso(), session_id)
        )
        return updated == 1

    def delete_session(self, session_id: str) -> bool:
        """Delete a session; its attendance rows go with it."""
        return self.execute_update("DELETE FROM sessions WHERE id = ?", (session_id,)) == 1

    def count_sessions_for_cohort(self, year: int, semester: int) -> int:
        row = self.execute_query(
            "SELECT COUNT(*) AS total FROM sessions WHERE year = ? AND semester = ?",
            (year, semester),
            fetch_all=False
        )
        return row['total']

    # ------------------------------------------------------------------
    # Attendance

    def insert_attendance_if_absent(self, session_id: str, student_id: str,
                                    marked_at: str) -> InsertResult:
        """
        Insert one attendance row unless the pair is already recorded.

        This is a single conditional statement, so concurrent attempts for
        the same (session, student) resolve to exactly one inserted row.

        Args:
            session_id (str): Session ID
            student_id (str): Student ID
            marked_at (str): ISO timestamp of the commit

        Returns:
            InsertResult: inserted=True for the winner, otherwise
            inserted=False with reason ALREADY_EXISTS
        """
        inserted = self.execute_update(
            """INSERT INTO attendance (session_id, student_id, marked_at)
               VALUES (?, ?, ?)
               ON CONFLICT(session_id, student_id) DO NOTHING""",
            (session_id, student_id, marked_at)
        )
        if inserted == 1:
            return InsertResult(inserted=True)
        return InsertResult(inserted=False, reason=InsertResult.ALREADY_EXISTS)

    def get_session_attendance(self, session_id: str) -> List[Dict[str, Any]]:
        return self.execute_query(
            """SELECT a.session_id, a.student_id, a.marked_at, s.reg_no, s.name, s.email
               FROM attendance a
               JOIN students s ON s.id = a.student_id
               WHERE a.session_id = ?
               ORDER BY a.marked_at, a.id""",
            (session_id,)
        )

    def get_student_attendance(self, student_id: str) -> List[Dict[str, Any]]:
        return self.execute_query(
            """SELECT a.session_id, a.student_id, a.marked_at,
                      se.subject, se.year, se.semester, se.started_at
               FROM attendance a
               JOIN sessions se ON se.id = a.session_id
               WHERE a.student_id = ?
               ORDER BY a.marked_at DESC, a.id DESC""",
            (student_id,)
        )

    def close_all_connections(self):
        """Close the calling thread's connection."""
        if hasattr(self._local, 'connection'):
            self._local.connection.close()
            del self._local.connection
