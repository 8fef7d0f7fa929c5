import logging
from typing import List
from uuid import uuid4
from datetime import datetime, timezone

# --- Required clients and models ---
from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import (
    User, AttendanceRecord, SessionStatus, SessionWithSubject,
    EnrollmentDetail, AttendanceHistoryEntry
)
from ..modules.session_status import check_scan_window
from ..tools.geofence import verify_geofence, InvalidCoordinatesError
from .errors import ServiceError, ConflictError, AuthorizationError, OutOfRangeError, StorageError

logger = logging.getLogger(__name__)

VISIBLE_STATUSES = [SessionStatus.ACTIVE, SessionStatus.EXPIRED]


class StudentService:
    """
    Service layer running all student-side business logic.
    """
    def __init__(self, db_client: AsyncPostgresClient):
        self.db_client = db_client

    async def mark_attendance(self, student: User, token: str, lat: float, lng: float) -> AttendanceRecord:
        """
        Records a QR scan. Checks run in a fixed order and the first failure
        wins: session state, time window, enrollment, geofence, duplicate.
        """
        if not token:
            raise ServiceError("Missing required fields")

        logger.info(f"Student '{student.user_id}' is scanning a session QR code.")
        session = await self.db_client.get_session_by_token(token)
        if not session or session.status != SessionStatus.ACTIVE:
            logger.warning(f"Student '{student.user_id}' scanned an unknown or inactive session.")
            raise ServiceError("Invalid or inactive session")

        now = datetime.now(timezone.utc)
        window_problem = check_scan_window(session.start_time, session.end_time, now)
        if window_problem == "not_started":
            raise ServiceError("Session has not started yet")
        if window_problem == "expired":
            raise ServiceError("Session expired")

        enrollment = await self.db_client.get_enrollment(student.user_id, session.subject_id)
        if not enrollment:
            logger.warning(f"Student '{student.user_id}' is not enrolled in subject {session.subject_id}.")
            raise AuthorizationError("Not enrolled in subject")

        try:
            inside, distance = verify_geofence(lat, lng, session.classroom_lat, session.classroom_lng, settings.GEOFENCE_RADIUS_METERS)
        except InvalidCoordinatesError as e:
            raise ServiceError(f"Location error: {e}") from e
        if not inside:
            logger.warning(f"Student '{student.user_id}' is {distance:.2f} m away from session {session.session_id}.")
            raise OutOfRangeError("Out of location range", distance=distance)

        if await self.db_client.get_attendance_record(student.user_id, session.session_id):
            raise ConflictError("Attendance already marked")

        new_record = AttendanceRecord(
            record_id=uuid4(),
            student_id=student.user_id,
            session_id=session.session_id,
            scanned_at=now,
            scan_lat=float(lat),
            scan_lng=float(lng)
        )
        try:
            created = await self.db_client.add_attendance_record(new_record)
        except Exception as e:
            logger.error(f"Error saving attendance for student '{student.user_id}'.", exc_info=True)
            raise StorageError("A server error occurred while marking attendance.") from e
        if created is None:
            # A concurrent scan won the unique constraint.
            raise ConflictError("Attendance already marked")

        logger.info(f"Attendance marked for student '{student.user_id}' in session {session.session_id} ({distance:.2f} m).")
        return created

    async def attendance_history(self, student: User) -> List[AttendanceHistoryEntry]:
        return await self.db_client.get_student_attendance_history(student.user_id)

    async def list_sessions(self, student: User) -> List[SessionWithSubject]:
        return await self.db_client.get_student_sessions(student.user_id, VISIBLE_STATUSES)

    async def list_enrollments(self, student: User) -> List[EnrollmentDetail]:
        return await self.db_client.get_student_enrollments(student.user_id)
