import logging
import secrets
from typing import List, Optional, Tuple
from uuid import UUID, uuid4
from datetime import datetime, timezone

from pydantic import BaseModel

# --- Required clients and models ---
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import User, Subject, Enrollment, AttendanceSession, SessionStatus, SessionWithSubject
from ..modules.session_status import derive_status, ensure_aware, can_invalidate, OPEN_STATUSES
from ..tools.geofence import validate_coordinates, InvalidCoordinatesError
from ..tools.qr_generator import generate_qr_data_url, QRCodeError
from .errors import ServiceError, ConflictError, NotFoundError, StorageError

logger = logging.getLogger(__name__)

COUNTED_STATUSES = [SessionStatus.ACTIVE, SessionStatus.EXPIRED]
INVALIDATE_REJECTED = "Only active or upcoming sessions can be invalidated."


# --- Result models ---

class StudentInfo(BaseModel):
    user_id: UUID
    name: str
    email: str
    roll_number: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "StudentInfo":
        return cls(user_id=user.user_id, name=user.name, email=user.email, roll_number=user.roll_number)


class CreatedSession(BaseModel):
    session: AttendanceSession
    qr_code: str


class SubjectEnrollmentResult(BaseModel):
    subject: Subject
    enrolled: List[StudentInfo] = []
    already_enrolled: List[StudentInfo] = []


class EnrollmentBatchResult(BaseModel):
    results: List[SubjectEnrollmentResult]
    unmatched_students: List[str] = []
    missing_subject_ids: List[UUID] = []


class AttendedSession(BaseModel):
    session_id: UUID
    start_time: datetime
    scanned_at: datetime
    session_status: SessionStatus


class StudentAttendanceStats(BaseModel):
    student: StudentInfo
    total_classes: int
    attended_classes: int
    attendance_percentage: int
    attendance_records: List[AttendedSession]


class SessionAttendanceSummary(BaseModel):
    session_id: UUID
    start_time: datetime
    end_time: datetime
    status: SessionStatus
    total_attendance: int


class SubjectAttendanceReport(BaseModel):
    subject_id: UUID
    total_classes: int
    student_stats: List[StudentAttendanceStats]
    session_details: List[SessionAttendanceSummary]


class AdminService:
    """
    Service layer for everything an admin does: subjects, enrollments,
    attendance sessions and attendance reports.
    """
    def __init__(self, db_client: AsyncPostgresClient):
        self.db_client = db_client

    async def _get_owned_subject(self, subject_id: UUID, admin: User) -> Subject:
        subject = await self.db_client.get_subject_by_id(subject_id)
        if not subject or subject.admin_id != admin.user_id:
            raise NotFoundError("Subject not found")
        return subject

    async def _get_owned_session(self, session_id: UUID, admin: User) -> AttendanceSession:
        session = await self.db_client.get_session_by_id(session_id)
        if not session or session.admin_id != admin.user_id:
            raise NotFoundError("Session not found")
        return session

    # === Subjects ===

    async def create_subject(self, admin: User, name: str, course_code: str) -> Subject:
        name, course_code = (name or "").strip(), (course_code or "").strip()
        if not name or not course_code:
            raise ServiceError("Both name and course code are required")

        if await self.db_client.get_subject_by_course_code(course_code):
            logger.warning(f"Admin '{admin.user_id}' tried to reuse course code '{course_code}'.")
            raise ConflictError("Course code already exists")

        subject = Subject(subject_id=uuid4(), name=name, course_code=course_code, admin_id=admin.user_id)
        try:
            created = await self.db_client.add_subject(subject)
        except Exception as e:
            logger.error(f"Error adding subject '{course_code}'.", exc_info=True)
            raise StorageError("A server error occurred while creating the subject.") from e
        if created is None:
            raise ConflictError("Course code already exists")

        logger.info(f"Subject '{created.course_code}' ({created.subject_id}) created by admin '{admin.user_id}'.")
        return created

    async def list_subjects(self, admin: User) -> List[Subject]:
        return await self.db_client.get_subjects_by_admin(admin.user_id)

    async def delete_subject(self, admin: User, subject_id: UUID):
        deleted = await self.db_client.delete_subject(subject_id, admin.user_id)
        if not deleted:
            raise NotFoundError("Subject not found")
        logger.info(f"Subject {subject_id} deleted by admin '{admin.user_id}' together with its sessions and enrollments.")

    # === Sessions ===

    async def create_session(self, admin: User, subject_id: UUID, start_time: datetime, end_time: datetime, lat: float, lng: float) -> CreatedSession:
        await self._get_owned_subject(subject_id, admin)

        start_time, end_time = ensure_aware(start_time), ensure_aware(end_time)
        if start_time >= end_time:
            raise ServiceError("Start time must be before end time")
        try:
            lat, lng = validate_coordinates(lat, lng)
        except InvalidCoordinatesError as e:
            raise ServiceError(str(e)) from e

        new_session = AttendanceSession(
            session_id=uuid4(),
            subject_id=subject_id,
            admin_id=admin.user_id,
            start_time=start_time,
            end_time=end_time,
            classroom_lat=lat,
            classroom_lng=lng,
            token=secrets.token_hex(16),
            status=derive_status(start_time, end_time, datetime.now(timezone.utc))
        )

        try:
            created = await self.db_client.add_session_if_no_overlap(new_session)
        except Exception as e:
            logger.error(f"Error adding session {new_session.session_id}.", exc_info=True)
            raise StorageError("Failed to generate session") from e
        if created is None:
            logger.warning(f"Admin '{admin.user_id}' tried to create an overlapping session ({start_time} - {end_time}).")
            raise ConflictError("Cannot create session: time interval overlaps with another session.")

        logger.info(f"Session {created.session_id} created for subject {subject_id} with status '{created.status.value}'.")
        return CreatedSession(session=created, qr_code=self._render_qr(created))

    def _render_qr(self, session: AttendanceSession) -> str:
        try:
            return generate_qr_data_url(session.token)
        except QRCodeError as e:
            raise StorageError(str(e)) from e

    async def get_session_qr(self, admin: User, session_id: UUID) -> CreatedSession:
        session = await self._get_owned_session(session_id, admin)
        return CreatedSession(session=session, qr_code=self._render_qr(session))

    async def invalidate_session(self, admin: User, session_id: UUID) -> AttendanceSession:
        """
        Invalidates an upcoming or active session. The write is a conditional
        update, so a sweep that expires the session first wins.
        """
        session = await self._get_owned_session(session_id, admin)
        if not can_invalidate(session.status):
            raise ServiceError(INVALIDATE_REJECTED)

        invalidated = await self.db_client.invalidate_session(session_id, admin.user_id)
        if not invalidated:
            logger.warning(f"Session {session_id} left the open statuses before it could be invalidated.")
            raise ServiceError(INVALIDATE_REJECTED)

        logger.info(f"Session {session_id} invalidated by admin '{admin.user_id}'.")
        return invalidated

    async def list_sessions(self, admin: User) -> List[SessionWithSubject]:
        return await self.db_client.get_admin_sessions(admin.user_id, OPEN_STATUSES)

    # === Enrollments ===

    async def enroll_students(self, admin: User, students: List[Tuple[str, Optional[str]]], subject_ids: List[UUID]) -> EnrollmentBatchResult:
        """
        Enrolls students, matched by roll number (and optionally by name), into
        each of the admin's subjects. Reports per subject who was newly enrolled
        and who already was. Earlier successes are kept if a later write fails.
        """
        if not students or not subject_ids:
            raise ServiceError("Please provide students and at least one subject")

        unique_subject_ids = list(dict.fromkeys(subject_ids))
        subjects = await self.db_client.get_admin_subjects_by_ids(admin.user_id, unique_subject_ids)
        subject_map = {s.subject_id: s for s in subjects}
        missing_subject_ids = [sid for sid in unique_subject_ids if sid not in subject_map]

        results = {sid: SubjectEnrollmentResult(subject=subject_map[sid]) for sid in unique_subject_ids if sid in subject_map}
        unmatched = []

        roll_numbers = [roll for roll, _ in students]
        student_map = {s.roll_number: s for s in await self.db_client.get_students_by_roll_numbers(roll_numbers)}

        for roll_number, name in students:
            student = student_map.get(roll_number)
            if not student or (name and student.name.lower() != name.strip().lower()):
                unmatched.append(roll_number)
                continue

            info = StudentInfo.from_user(student)
            for subject_id, result in results.items():
                enrollment = Enrollment(
                    enrollment_id=uuid4(),
                    student_id=student.user_id,
                    subject_id=subject_id,
                    enrolled_at=datetime.now(timezone.utc)
                )
                try:
                    created = await self.db_client.add_enrollment(enrollment)
                except Exception as e:
                    logger.error(f"Error enrolling '{roll_number}' into {subject_id}.", exc_info=True)
                    raise StorageError("Failed to enroll students") from e
                if created:
                    result.enrolled.append(info)
                else:
                    result.already_enrolled.append(info)

        logger.info(
            f"Admin '{admin.user_id}' enrollment batch: {sum(len(r.enrolled) for r in results.values())} new, "
            f"{len(unmatched)} unmatched students, {len(missing_subject_ids)} unknown subjects."
        )
        return EnrollmentBatchResult(
            results=list(results.values()),
            unmatched_students=unmatched,
            missing_subject_ids=missing_subject_ids
        )

    async def list_students(self) -> List[StudentInfo]:
        students = await self.db_client.get_students()
        return [StudentInfo.from_user(s) for s in students]

    # === Reports ===

    async def subject_attendance_report(self, admin: User, subject_id: UUID) -> SubjectAttendanceReport:
        await self._get_owned_subject(subject_id, admin)

        sessions = await self.db_client.get_subject_sessions(subject_id, admin.user_id, COUNTED_STATUSES)
        session_map = {s.session_id: s for s in sessions}
        total_classes = len(sessions)
        students = await self.db_client.get_enrolled_students(subject_id)
        records = await self.db_client.get_attendance_records_for_sessions(list(session_map))

        student_stats = []
        for student in students:
            own_records = [r for r in records if r.student_id == student.user_id]
            attended = len(own_records)
            student_stats.append(StudentAttendanceStats(
                student=StudentInfo.from_user(student),
                total_classes=total_classes,
                attended_classes=attended,
                attendance_percentage=round(attended / total_classes * 100) if total_classes > 0 else 0,
                attendance_records=[
                    AttendedSession(
                        session_id=r.session_id,
                        start_time=session_map[r.session_id].start_time,
                        scanned_at=r.scanned_at,
                        session_status=session_map[r.session_id].status
                    ) for r in own_records
                ]
            ))

        session_details = [
            SessionAttendanceSummary(
                session_id=s.session_id,
                start_time=s.start_time,
                end_time=s.end_time,
                status=s.status,
                total_attendance=sum(1 for r in records if r.session_id == s.session_id)
            ) for s in sessions
        ]

        return SubjectAttendanceReport(
            subject_id=subject_id,
            total_classes=total_classes,
            student_stats=student_stats,
            session_details=session_details
        )
