from pydantic import BaseModel, Field, ConfigDict, field_validator
from uuid import UUID
from datetime import datetime, timezone

from ...models.db_models import SessionStatus

class SessionCreateRequest(BaseModel):
    """Request model for creating a new attendance session."""
    subject_id: UUID
    start_time: datetime = Field(..., description="ISO-8601 start of the attendance window.")
    end_time: datetime = Field(..., description="ISO-8601 end of the attendance window.")
    lat: float = Field(..., ge=-90, le=90, description="Classroom latitude.")
    lng: float = Field(..., ge=-180, le=180, description="Classroom longitude.")

    @field_validator('start_time', 'end_time')
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Timestamps without an offset are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

class StudentSessionResponse(BaseModel):
    """Session as shown to students; the QR token is left out."""
    session_id: UUID
    subject_id: UUID
    subject_name: str
    start_time: datetime
    end_time: datetime
    status: SessionStatus

    model_config = ConfigDict(from_attributes=True)

class AdminSessionResponse(StudentSessionResponse):
    admin_id: UUID
    classroom_lat: float
    classroom_lng: float
    token: str

class SessionResponse(BaseModel):
    session_id: UUID
    subject_id: UUID
    admin_id: UUID
    start_time: datetime
    end_time: datetime
    classroom_lat: float
    classroom_lng: float
    token: str
    status: SessionStatus

    model_config = ConfigDict(from_attributes=True)

class SessionQRResponse(BaseModel):
    """A session plus its QR code as a PNG data URL."""
    session: SessionResponse
    qr_code: str
