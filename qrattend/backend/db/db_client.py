import logging
from typing import List, Optional
from uuid import UUID
import asyncpg
from datetime import datetime
from ..models.db_models import (
    User, Subject, Enrollment, AttendanceSession, AttendanceRecord,
    SessionStatus, SessionWithSubject, EnrollmentDetail, AttendanceHistoryEntry
)
from ..modules.session_status import OPEN_STATUSES

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS Users (
    user_id UUID PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('admin', 'student')),
    roll_number TEXT,
    reset_token_hash TEXT,
    reset_token_expiry TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK (role <> 'student' OR roll_number IS NOT NULL)
);
CREATE UNIQUE INDEX IF NOT EXISTS users_email_lower_key ON Users (lower(email));
CREATE UNIQUE INDEX IF NOT EXISTS users_student_roll_number_key
    ON Users (roll_number) WHERE role = 'student';

CREATE TABLE IF NOT EXISTS Subjects (
    subject_id UUID PRIMARY KEY,
    name TEXT NOT NULL,
    course_code TEXT NOT NULL UNIQUE,
    admin_id UUID NOT NULL REFERENCES Users (user_id)
);

CREATE TABLE IF NOT EXISTS Enrollments (
    enrollment_id UUID PRIMARY KEY,
    student_id UUID NOT NULL REFERENCES Users (user_id),
    subject_id UUID NOT NULL REFERENCES Subjects (subject_id) ON DELETE CASCADE,
    enrolled_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (student_id, subject_id)
);

CREATE TABLE IF NOT EXISTS Sessions (
    session_id UUID PRIMARY KEY,
    subject_id UUID NOT NULL REFERENCES Subjects (subject_id) ON DELETE CASCADE,
    admin_id UUID NOT NULL REFERENCES Users (user_id),
    start_time TIMESTAMPTZ NOT NULL,
    end_time TIMESTAMPTZ NOT NULL,
    classroom_lat DOUBLE PRECISION NOT NULL CHECK (classroom_lat BETWEEN -90 AND 90),
    classroom_lng DOUBLE PRECISION NOT NULL CHECK (classroom_lng BETWEEN -180 AND 180),
    token TEXT NOT NULL UNIQUE,
    status TEXT NOT NULL DEFAULT 'upcoming'
        CHECK (status IN ('upcoming', 'active', 'expired', 'invalidated')),
    CHECK (start_time < end_time)
);
CREATE INDEX IF NOT EXISTS sessions_admin_start_idx ON Sessions (admin_id, start_time DESC);
CREATE INDEX IF NOT EXISTS sessions_subject_start_idx ON Sessions (subject_id, start_time DESC);
CREATE INDEX IF NOT EXISTS sessions_status_idx ON Sessions (status);

CREATE TABLE IF NOT EXISTS AttendanceRecords (
    record_id UUID PRIMARY KEY,
    student_id UUID NOT NULL REFERENCES Users (user_id),
    session_id UUID NOT NULL REFERENCES Sessions (session_id) ON DELETE CASCADE,
    scanned_at TIMESTAMPTZ NOT NULL,
    scan_lat DOUBLE PRECISION NOT NULL,
    scan_lng DOUBLE PRECISION NOT NULL,
    UNIQUE (student_id, session_id)
);
"""


def _affected_rows(status: str) -> int:
    """Parses asyncpg command tags such as 'UPDATE 3' or 'DELETE 1'."""
    try:
        return int(str(status).split()[-1])
    except (ValueError, IndexError):
        return 0


class AsyncPostgresClient:
    """
    PostgreSQL client wrapping every database operation of the service.
    """
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def init_schema(self):
        """Creates the tables and indexes if they do not exist yet."""
        async with self._pool.acquire() as connection:
            await connection.execute(SCHEMA)
        logger.info("Database schema is ready.")

    # ===== Users =====

    async def add_user(self, user: User) -> Optional[User]:
        """Inserts a new user. Returns None when the email (in any case) or roll number is taken."""
        query = """
            INSERT INTO Users (user_id, name, email, password_hash, role, roll_number)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT DO NOTHING
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(
                query, user.user_id, user.name, user.email, user.password_hash,
                user.role.value, user.roll_number
            )
            return User(**record) if record else None

    async def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        query = "SELECT * FROM Users WHERE user_id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id)
            return User(**record) if record else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        query = "SELECT * FROM Users WHERE lower(email) = lower($1);"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, email)
            return User(**record) if record else None

    async def get_student_by_roll_number(self, roll_number: str) -> Optional[User]:
        query = "SELECT * FROM Users WHERE role = 'student' AND roll_number = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, roll_number)
            return User(**record) if record else None

    async def get_students(self) -> List[User]:
        query = "SELECT * FROM Users WHERE role = 'student' ORDER BY name;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query)
            return [User(**record) for record in records]

    async def get_students_by_roll_numbers(self, roll_numbers: List[str]) -> List[User]:
        """Returns the students whose roll numbers are in the given list."""
        if not roll_numbers:
            return []
        query = "SELECT * FROM Users WHERE role = 'student' AND roll_number = ANY($1);"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, roll_numbers)
            return [User(**record) for record in records]

    async def set_reset_token(self, user_id: UUID, token_hash: str, expiry: datetime):
        query = """
            UPDATE Users SET reset_token_hash = $2, reset_token_expiry = $3
            WHERE user_id = $1;
        """
        async with self._pool.acquire() as connection:
            await connection.execute(query, user_id, token_hash, expiry)

    async def get_user_by_reset_token(self, token_hash: str, now: datetime) -> Optional[User]:
        """Finds the user holding an unexpired reset token with the given hash."""
        query = """
            SELECT * FROM Users
            WHERE reset_token_hash = $1 AND reset_token_expiry > $2;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, token_hash, now)
            return User(**record) if record else None

    async def update_password(self, user_id: UUID, password_hash: str):
        """Stores a new password hash and clears any pending reset token."""
        query = """
            UPDATE Users
            SET password_hash = $2, reset_token_hash = NULL, reset_token_expiry = NULL
            WHERE user_id = $1;
        """
        async with self._pool.acquire() as connection:
            await connection.execute(query, user_id, password_hash)

    # ===== Subjects =====

    async def add_subject(self, subject: Subject) -> Optional[Subject]:
        """Inserts a subject. Returns None when the course code already exists."""
        query = """
            INSERT INTO Subjects (subject_id, name, course_code, admin_id)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (course_code) DO NOTHING
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(
                query, subject.subject_id, subject.name, subject.course_code, subject.admin_id
            )
            return Subject(**record) if record else None

    async def get_subject_by_id(self, subject_id: UUID) -> Optional[Subject]:
        query = "SELECT * FROM Subjects WHERE subject_id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, subject_id)
            return Subject(**record) if record else None

    async def get_subject_by_course_code(self, course_code: str) -> Optional[Subject]:
        query = "SELECT * FROM Subjects WHERE course_code = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, course_code)
            return Subject(**record) if record else None

    async def get_subjects_by_admin(self, admin_id: UUID) -> List[Subject]:
        query = "SELECT * FROM Subjects WHERE admin_id = $1 ORDER BY name;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, admin_id)
            return [Subject(**record) for record in records]

    async def get_admin_subjects_by_ids(self, admin_id: UUID, subject_ids: List[UUID]) -> List[Subject]:
        """Returns those of the given subjects that belong to the admin."""
        if not subject_ids:
            return []
        query = "SELECT * FROM Subjects WHERE admin_id = $1 AND subject_id = ANY($2);"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, admin_id, subject_ids)
            return [Subject(**record) for record in records]

    async def delete_subject(self, subject_id: UUID, admin_id: UUID) -> bool:
        """
        Deletes a subject owned by the admin. Enrollments, sessions and their
        attendance records go with it through ON DELETE CASCADE.
        """
        query = "DELETE FROM Subjects WHERE subject_id = $1 AND admin_id = $2;"
        async with self._pool.acquire() as connection:
            result = await connection.execute(query, subject_id, admin_id)
            return _affected_rows(result) > 0

    # ===== Enrollments =====

    async def add_enrollment(self, enrollment: Enrollment) -> Optional[Enrollment]:
        """Creates an enrollment. Returns None if the student was already enrolled."""
        query = """
            INSERT INTO Enrollments (enrollment_id, student_id, subject_id, enrolled_at)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (student_id, subject_id) DO NOTHING
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(
                query, enrollment.enrollment_id, enrollment.student_id,
                enrollment.subject_id, enrollment.enrolled_at
            )
            return Enrollment(**record) if record else None

    async def get_enrollment(self, student_id: UUID, subject_id: UUID) -> Optional[Enrollment]:
        query = "SELECT * FROM Enrollments WHERE student_id = $1 AND subject_id = $2;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, student_id, subject_id)
            return Enrollment(**record) if record else None

    async def get_student_enrollments(self, student_id: UUID) -> List[EnrollmentDetail]:
        query = """
            SELECT e.*, s.name AS subject_name, s.course_code, a.name AS admin_name
            FROM Enrollments e
            JOIN Subjects s ON s.subject_id = e.subject_id
            LEFT JOIN Users a ON a.user_id = s.admin_id
            WHERE e.student_id = $1
            ORDER BY e.enrolled_at DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, student_id)
            return [EnrollmentDetail(**record) for record in records]

    async def get_enrolled_students(self, subject_id: UUID) -> List[User]:
        query = """
            SELECT u.* FROM Users u
            JOIN Enrollments e ON e.student_id = u.user_id
            WHERE e.subject_id = $1
            ORDER BY u.name;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, subject_id)
            return [User(**record) for record in records]

    # ===== Sessions =====

    async def add_session_if_no_overlap(self, session: AttendanceSession) -> Optional[AttendanceSession]:
        """
        Inserts the session unless its window overlaps another non-invalidated
        session of the same admin. Returns None on overlap.

        The check and the insert share one transaction holding a per-admin
        advisory lock, so two concurrent creations cannot both pass the check.
        """
        overlap_query = """
            SELECT 1 FROM Sessions
            WHERE admin_id = $1
              AND status <> 'invalidated'
              AND start_time < $3
              AND end_time > $2
            LIMIT 1;
        """
        insert_query = """
            INSERT INTO Sessions (session_id, subject_id, admin_id, start_time, end_time,
                                  classroom_lat, classroom_lng, token, status)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                await connection.execute("SELECT pg_advisory_xact_lock(hashtext($1));", str(session.admin_id))
                overlap = await connection.fetchval(
                    overlap_query, session.admin_id, session.start_time, session.end_time
                )
                if overlap:
                    return None
                record = await connection.fetchrow(
                    insert_query, session.session_id, session.subject_id, session.admin_id,
                    session.start_time, session.end_time, session.classroom_lat,
                    session.classroom_lng, session.token, session.status.value
                )
                return AttendanceSession(**record)

    async def get_session_by_id(self, session_id: UUID) -> Optional[AttendanceSession]:
        query = "SELECT * FROM Sessions WHERE session_id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, session_id)
            return AttendanceSession(**record) if record else None

    async def get_session_by_token(self, token: str) -> Optional[AttendanceSession]:
        query = "SELECT * FROM Sessions WHERE token = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, token)
            return AttendanceSession(**record) if record else None

    async def invalidate_session(self, session_id: UUID, admin_id: UUID) -> Optional[AttendanceSession]:
        """
        Moves an upcoming or active session of the admin to 'invalidated'.
        Returns None when no row matched the filter.
        """
        query = """
            UPDATE Sessions SET status = 'invalidated'
            WHERE session_id = $1 AND admin_id = $2 AND status = ANY($3)
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, session_id, admin_id, [s.value for s in OPEN_STATUSES])
            return AttendanceSession(**record) if record else None

    async def get_admin_sessions(self, admin_id: UUID, statuses: List[SessionStatus]) -> List[SessionWithSubject]:
        query = """
            SELECT se.*, su.name AS subject_name
            FROM Sessions se JOIN Subjects su ON su.subject_id = se.subject_id
            WHERE se.admin_id = $1 AND se.status = ANY($2)
            ORDER BY se.start_time DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, admin_id, [s.value for s in statuses])
            return [SessionWithSubject(**record) for record in records]

    async def get_subject_sessions(self, subject_id: UUID, admin_id: UUID, statuses: List[SessionStatus]) -> List[AttendanceSession]:
        query = """
            SELECT * FROM Sessions
            WHERE subject_id = $1 AND admin_id = $2 AND status = ANY($3)
            ORDER BY start_time DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, subject_id, admin_id, [s.value for s in statuses])
            return [AttendanceSession(**record) for record in records]

    async def get_student_sessions(self, student_id: UUID, statuses: List[SessionStatus]) -> List[SessionWithSubject]:
        """Sessions of every subject the student is enrolled in."""
        query = """
            SELECT se.*, su.name AS subject_name
            FROM Sessions se
            JOIN Subjects su ON su.subject_id = se.subject_id
            JOIN Enrollments e ON e.subject_id = se.subject_id
            WHERE e.student_id = $1 AND se.status = ANY($2)
            ORDER BY se.start_time DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, student_id, [s.value for s in statuses])
            return [SessionWithSubject(**record) for record in records]

    async def expire_sessions(self, now: datetime) -> int:
        """upcoming/active -> expired for every session whose window has closed."""
        query = """
            UPDATE Sessions SET status = 'expired'
            WHERE status = ANY($2) AND end_time <= $1;
        """
        async with self._pool.acquire() as connection:
            return _affected_rows(await connection.execute(query, now, [s.value for s in OPEN_STATUSES]))

    async def activate_sessions(self, now: datetime) -> int:
        """upcoming -> active for every session whose window contains now."""
        query = """
            UPDATE Sessions SET status = 'active'
            WHERE status = 'upcoming' AND start_time <= $1 AND end_time > $1;
        """
        async with self._pool.acquire() as connection:
            return _affected_rows(await connection.execute(query, now))

    # ===== Attendance Records =====

    async def add_attendance_record(self, record: AttendanceRecord) -> Optional[AttendanceRecord]:
        """
        Inserts an attendance record. Returns None if the student already has a
        record for the session; the unique constraint settles concurrent scans.
        """
        query = """
            INSERT INTO AttendanceRecords (record_id, student_id, session_id, scanned_at, scan_lat, scan_lng)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (student_id, session_id) DO NOTHING
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                query, record.record_id, record.student_id, record.session_id,
                record.scanned_at, record.scan_lat, record.scan_lng
            )
            return AttendanceRecord(**row) if row else None

    async def get_attendance_record(self, student_id: UUID, session_id: UUID) -> Optional[AttendanceRecord]:
        query = "SELECT * FROM AttendanceRecords WHERE student_id = $1 AND session_id = $2;"
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(query, student_id, session_id)
            return AttendanceRecord(**row) if row else None

    async def get_attendance_records_for_sessions(self, session_ids: List[UUID]) -> List[AttendanceRecord]:
        if not session_ids:
            return []
        query = "SELECT * FROM AttendanceRecords WHERE session_id = ANY($1);"
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(query, session_ids)
            return [AttendanceRecord(**row) for row in rows]

    async def get_student_attendance_history(self, student_id: UUID) -> List[AttendanceHistoryEntry]:
        query = """
            SELECT ar.*, se.start_time, se.end_time, se.status AS session_status,
                   su.subject_id, su.name AS subject_name
            FROM AttendanceRecords ar
            JOIN Sessions se ON se.session_id = ar.session_id
            JOIN Subjects su ON su.subject_id = se.subject_id
            WHERE ar.student_id = $1
            ORDER BY ar.scanned_at DESC;
        """
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(query, student_id)
            return [AttendanceHistoryEntry(**row) for row in rows]
