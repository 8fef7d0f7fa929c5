from fastapi import APIRouter, Depends, Request
from typing import List

from ..services.student_service import StudentService
from ..services.errors import ServiceError
from ..models.db_models import User
from .schemas.attendance import (
    MarkAttendanceRequest, MarkAttendanceResponse, AttendanceRecordResponse,
    AttendanceHistoryResponse, EnrollmentResponse
)
from .schemas.session import StudentSessionResponse
from .auth import require_student
from .dependencies import get_student_service
from .utilities.http_errors import to_http_exception
from .utilities.limiter import limiter

router = APIRouter(prefix="/student", tags=["Student Endpoints"])


@router.post(
    "/mark-attendance",
    response_model=MarkAttendanceResponse,
    summary="Mark attendance by scanning a session QR code"
)
@limiter.limit("10/minute")
async def mark_attendance(
    request: Request,
    mark_request: MarkAttendanceRequest,
    user: User = Depends(require_student),
    service: StudentService = Depends(get_student_service)
):
    """
    Records the student's attendance for the session whose token was read from
    the QR code. The device location must lie inside the classroom geofence.
    """
    try:
        record = await service.mark_attendance(user, mark_request.token, mark_request.lat, mark_request.lng)
    except ServiceError as e:
        raise to_http_exception(e)
    return MarkAttendanceResponse(record=AttendanceRecordResponse.model_validate(record))


@router.get("/attendance-history", response_model=List[AttendanceHistoryResponse], summary="My attendance records")
@limiter.limit("30/minute")
async def get_attendance_history(
    request: Request,
    user: User = Depends(require_student),
    service: StudentService = Depends(get_student_service)
):
    return await service.attendance_history(user)


@router.get("/sessions", response_model=List[StudentSessionResponse], summary="Active and past sessions of my subjects")
@limiter.limit("30/minute")
async def get_sessions(
    request: Request,
    user: User = Depends(require_student),
    service: StudentService = Depends(get_student_service)
):
    return await service.list_sessions(user)


@router.get("/enrollments", response_model=List[EnrollmentResponse], summary="Subjects I am enrolled in")
@limiter.limit("30/minute")
async def get_enrollments(
    request: Request,
    user: User = Depends(require_student),
    service: StudentService = Depends(get_student_service)
):
    return await service.list_enrollments(user)
