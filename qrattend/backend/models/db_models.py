# qrattend/backend/models/db_models.py

from enum import Enum
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from uuid import UUID


class Role(str, Enum):
    ADMIN = "admin"
    STUDENT = "student"


class SessionStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    EXPIRED = "expired"
    INVALIDATED = "invalidated"


class User(BaseModel):
    """
    Represents a user in the system, mapping to the 'Users' table.
    """
    user_id: UUID = Field(..., description="Primary key")
    name: str
    email: str = Field(..., description="Unique login email")
    password_hash: str
    role: Role
    roll_number: Optional[str] = Field(None, description="Required for students, unique among students")
    reset_token_hash: Optional[str] = None
    reset_token_expiry: Optional[datetime] = None


class Subject(BaseModel):
    """
    Represents a subject owned by an admin, mapping to the 'Subjects' table.
    """
    subject_id: UUID
    name: str
    course_code: str = Field(..., description="Globally unique course code")
    admin_id: UUID = Field(..., description="FK linking to the owning admin")


class Enrollment(BaseModel):
    """
    Links a student to a subject, mapping to the 'Enrollments' table.
    """
    enrollment_id: UUID
    student_id: UUID
    subject_id: UUID
    enrolled_at: datetime


class AttendanceSession(BaseModel):
    """
    A time-boxed attendance window, mapping to the 'Sessions' table.
    """
    session_id: UUID = Field(..., description="Unique identifier for the attendance session")
    subject_id: UUID
    admin_id: UUID = Field(..., description="FK linking to the admin who created the session")
    start_time: datetime
    end_time: datetime
    classroom_lat: float
    classroom_lng: float
    token: str = Field(..., description="Opaque random token embedded in the QR code")
    status: SessionStatus = SessionStatus.UPCOMING


class AttendanceRecord(BaseModel):
    """
    A single student's mark for a session, mapping to the 'AttendanceRecords' table.
    """
    record_id: UUID
    student_id: UUID
    session_id: UUID
    scanned_at: datetime
    scan_lat: float
    scan_lng: float


# --- Joined read models ---

class SessionWithSubject(AttendanceSession):
    """Session row joined with the name of its subject."""
    subject_name: str


class EnrollmentDetail(Enrollment):
    """Enrollment row joined with subject data and the owning admin's name."""
    subject_name: str
    course_code: str
    admin_name: Optional[str] = None


class AttendanceHistoryEntry(AttendanceRecord):
    """Attendance record joined with its session window and subject name."""
    start_time: datetime
    end_time: datetime
    session_status: SessionStatus
    subject_id: UUID
    subject_name: str
