from pydantic import BaseModel, Field, ConfigDict
from uuid import UUID
from datetime import datetime
from typing import Optional

from ...models.db_models import SessionStatus

class MarkAttendanceRequest(BaseModel):
    """Body of a QR scan: the token read from the code and the device location."""
    token: str = Field(..., min_length=1, description="Opaque session token read from the QR code.")
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

class AttendanceRecordResponse(BaseModel):
    record_id: UUID
    session_id: UUID
    student_id: UUID
    scanned_at: datetime
    scan_lat: float
    scan_lng: float

    model_config = ConfigDict(from_attributes=True)

class MarkAttendanceResponse(BaseModel):
    message: str = "Attendance marked successfully"
    record: AttendanceRecordResponse

class AttendanceHistoryResponse(AttendanceRecordResponse):
    start_time: datetime
    end_time: datetime
    session_status: SessionStatus
    subject_id: UUID
    subject_name: str

class EnrollmentResponse(BaseModel):
    enrollment_id: UUID
    subject_id: UUID
    subject_name: str
    course_code: str
    admin_name: Optional[str] = None
    enrolled_at: datetime

    model_config = ConfigDict(from_attributes=True)
