from fastapi import APIRouter, Depends, status, Request
from typing import List
from uuid import UUID

from ..services.admin_service import (
    AdminService, StudentInfo, EnrollmentBatchResult, SubjectAttendanceReport
)
from ..services.errors import ServiceError
from ..models.db_models import User
from .schemas.subject import SubjectCreateRequest, SubjectResponse, EnrollStudentsRequest
from .schemas.session import SessionCreateRequest, SessionResponse, SessionQRResponse, AdminSessionResponse
from .schemas.user import MessageResponse
from .auth import require_admin
from .dependencies import get_admin_service
from .utilities.http_errors import to_http_exception
from .utilities.limiter import limiter

router = APIRouter(prefix="/admin", tags=["Admin Endpoints"])


# === PART 1: SUBJECTS ===

@router.post("/subject", response_model=SubjectResponse, summary="Create a subject")
@limiter.limit("30/minute")
async def create_subject(request: Request, create_request: SubjectCreateRequest, admin: User = Depends(require_admin), service: AdminService = Depends(get_admin_service)):
    try:
        return await service.create_subject(admin, create_request.name, create_request.course_code)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/subjects", response_model=List[SubjectResponse], summary="List the admin's subjects")
@limiter.limit("60/minute")
async def get_subjects(request: Request, admin: User = Depends(require_admin), service: AdminService = Depends(get_admin_service)):
    return await service.list_subjects(admin)

@router.delete("/subject/{subject_id}", response_model=MessageResponse, summary="Delete a subject with its sessions and enrollments")
@limiter.limit("30/minute")
async def delete_subject(request: Request, subject_id: UUID, admin: User = Depends(require_admin), service: AdminService = Depends(get_admin_service)):
    try:
        await service.delete_subject(admin, subject_id)
    except ServiceError as e:
        raise to_http_exception(e)
    return MessageResponse(message="Subject deleted successfully")

@router.get("/subject/{subject_id}/attendance", response_model=SubjectAttendanceReport, summary="Attendance report of a subject")
@limiter.limit("30/minute")
async def view_attendance_by_subject(request: Request, subject_id: UUID, admin: User = Depends(require_admin), service: AdminService = Depends(get_admin_service)):
    try:
        return await service.subject_attendance_report(admin, subject_id)
    except ServiceError as e:
        raise to_http_exception(e)

# === PART 2: ATTENDANCE SESSIONS ===

@router.post("/session", response_model=SessionQRResponse, summary="Create an attendance session and its QR code")
@limiter.limit("30/minute")
async def create_session(request: Request, create_request: SessionCreateRequest, admin: User = Depends(require_admin), service: AdminService = Depends(get_admin_service)):
    try:
        return await service.create_session(
            admin=admin,
            subject_id=create_request.subject_id,
            start_time=create_request.start_time,
            end_time=create_request.end_time,
            lat=create_request.lat,
            lng=create_request.lng
        )
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/session/{session_id}/qr", response_model=SessionQRResponse, summary="Render the QR code of an existing session")
@limiter.limit("60/minute")
async def get_session_qr(request: Request, session_id: UUID, admin: User = Depends(require_admin), service: AdminService = Depends(get_admin_service)):
    try:
        return await service.get_session_qr(admin, session_id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.put("/session/{session_id}/invalidate", response_model=SessionResponse, summary="Invalidate an upcoming or active session")
@limiter.limit("30/minute")
async def invalidate_session(request: Request, session_id: UUID, admin: User = Depends(require_admin), service: AdminService = Depends(get_admin_service)):
    try:
        return await service.invalidate_session(admin, session_id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/sessions", response_model=List[AdminSessionResponse], summary="List the admin's upcoming and active sessions")
@limiter.limit("60/minute")
async def get_sessions(request: Request, admin: User = Depends(require_admin), service: AdminService = Depends(get_admin_service)):
    return await service.list_sessions(admin)

# === PART 3: ENROLLMENTS AND STUDENTS ===

@router.post("/enroll-student", response_model=EnrollmentBatchResult, status_code=status.HTTP_201_CREATED, summary="Enroll a student into subjects")
@router.post("/enroll-students", response_model=EnrollmentBatchResult, status_code=status.HTTP_201_CREATED, summary="Enroll students into subjects")
@limiter.limit("30/minute")
async def enroll_students(request: Request, enroll_request: EnrollStudentsRequest, admin: User = Depends(require_admin), service: AdminService = Depends(get_admin_service)):
    try:
        return await service.enroll_students(admin, enroll_request.student_pairs(), enroll_request.subject_ids)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/students", response_model=List[StudentInfo], summary="List all registered students")
@limiter.limit("60/minute")
async def get_all_students(request: Request, admin: User = Depends(require_admin), service: AdminService = Depends(get_admin_service)):
    return await service.list_students()
