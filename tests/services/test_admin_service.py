import pytest
import pytest_asyncio
import uuid
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, patch

from qrattend.backend.services.admin_service import AdminService
from qrattend.backend.services.errors import ServiceError, ConflictError, NotFoundError, StorageError
from qrattend.backend.models.db_models import (
    User, Role, Subject, Enrollment, AttendanceSession, AttendanceRecord, SessionStatus
)

# --- Test Fixtures ---

@pytest.fixture
def admin_user() -> User:
    return User(
        user_id=uuid.uuid4(), name="Test Admin", email="admin@example.com",
        password_hash="x", role=Role.ADMIN
    )

@pytest.fixture
def subject(admin_user) -> Subject:
    return Subject(subject_id=uuid.uuid4(), name="Algorithms", course_code="CS101", admin_id=admin_user.user_id)

def make_student(roll_number: str, name: str) -> User:
    return User(
        user_id=uuid.uuid4(), name=name, email=f"{roll_number.lower()}@example.com",
        password_hash="x", role=Role.STUDENT, roll_number=roll_number
    )

def make_session(admin_user, subject, status=SessionStatus.ACTIVE, hours_ago=1) -> AttendanceSession:
    start = datetime.now(timezone.utc) - timedelta(hours=hours_ago)
    return AttendanceSession(
        session_id=uuid.uuid4(), subject_id=subject.subject_id, admin_id=admin_user.user_id,
        start_time=start, end_time=start + timedelta(hours=2),
        classroom_lat=12.34, classroom_lng=56.78, token=uuid.uuid4().hex, status=status
    )

@pytest_asyncio.fixture
async def service_instance():
    """An AdminService over a mocked database client."""
    mock_db_client = AsyncMock()
    service = AdminService(db_client=mock_db_client)
    return service, mock_db_client

async def _echo(value):
    return value


# --- Test Scenarios ---

@pytest.mark.asyncio
class TestSubjects:

    async def test_create_subject_success(self, service_instance, admin_user):
        service, mock_db_client = service_instance
        mock_db_client.get_subject_by_course_code.return_value = None
        mock_db_client.add_subject.side_effect = _echo

        created = await service.create_subject(admin_user, " Algorithms ", "CS101")

        assert created.name == "Algorithms"
        assert created.course_code == "CS101"
        assert created.admin_id == admin_user.user_id

    async def test_create_subject_requires_both_fields(self, service_instance, admin_user):
        service, mock_db_client = service_instance

        with pytest.raises(ServiceError, match="Both name and course code are required"):
            await service.create_subject(admin_user, "Algorithms", "  ")
        mock_db_client.add_subject.assert_not_called()

    async def test_duplicate_course_code_is_a_conflict(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        mock_db_client.get_subject_by_course_code.return_value = subject

        with pytest.raises(ConflictError, match="Course code already exists"):
            await service.create_subject(admin_user, "Other", "CS101")

    async def test_duplicate_course_code_race_is_a_conflict(self, service_instance, admin_user):
        service, mock_db_client = service_instance
        mock_db_client.get_subject_by_course_code.return_value = None
        mock_db_client.add_subject.return_value = None

        with pytest.raises(ConflictError):
            await service.create_subject(admin_user, "Algorithms", "CS101")

    async def test_delete_unknown_or_foreign_subject_is_not_found(self, service_instance, admin_user):
        service, mock_db_client = service_instance
        mock_db_client.delete_subject.return_value = False
        subject_id = uuid.uuid4()

        with pytest.raises(NotFoundError, match="Subject not found"):
            await service.delete_subject(admin_user, subject_id)
        mock_db_client.delete_subject.assert_awaited_once_with(subject_id, admin_user.user_id)


@pytest.mark.asyncio
class TestSessions:

    async def test_create_session_derives_status_and_renders_qr(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        mock_db_client.get_subject_by_id.return_value = subject
        mock_db_client.add_session_if_no_overlap.side_effect = _echo
        start = datetime.now(timezone.utc) - timedelta(minutes=5)

        with patch("qrattend.backend.services.admin_service.generate_qr_data_url", return_value="data:image/png;base64,AAAA") as mock_qr:
            created = await service.create_session(admin_user, subject.subject_id, start, start + timedelta(hours=1), 12.34, 56.78)

        assert created.session.status == SessionStatus.ACTIVE
        assert created.session.admin_id == admin_user.user_id
        assert len(created.session.token) == 32
        assert created.qr_code == "data:image/png;base64,AAAA"
        mock_qr.assert_called_once_with(created.session.token)

    async def test_future_session_starts_upcoming(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        mock_db_client.get_subject_by_id.return_value = subject
        mock_db_client.add_session_if_no_overlap.side_effect = _echo
        start = datetime.now(timezone.utc) + timedelta(days=1)

        with patch("qrattend.backend.services.admin_service.generate_qr_data_url", return_value="data:"):
            created = await service.create_session(admin_user, subject.subject_id, start, start + timedelta(hours=1), 0, 0)

        assert created.session.status == SessionStatus.UPCOMING

    async def test_naive_times_are_treated_as_utc(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        mock_db_client.get_subject_by_id.return_value = subject
        mock_db_client.add_session_if_no_overlap.side_effect = _echo
        start = datetime(2030, 1, 1, 9, 0)

        with patch("qrattend.backend.services.admin_service.generate_qr_data_url", return_value="data:"):
            created = await service.create_session(admin_user, subject.subject_id, start, datetime(2030, 1, 1, 10, 0), 0, 0)

        assert created.session.start_time.tzinfo is not None

    async def test_start_must_precede_end(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        mock_db_client.get_subject_by_id.return_value = subject
        start = datetime.now(timezone.utc)

        with pytest.raises(ServiceError, match="Start time must be before end time"):
            await service.create_session(admin_user, subject.subject_id, start, start, 12.34, 56.78)
        mock_db_client.add_session_if_no_overlap.assert_not_called()

    async def test_invalid_classroom_coordinates_are_rejected(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        mock_db_client.get_subject_by_id.return_value = subject
        start = datetime.now(timezone.utc)

        with pytest.raises(ServiceError, match="Invalid coordinates"):
            await service.create_session(admin_user, subject.subject_id, start, start + timedelta(hours=1), 91, 0)

    async def test_session_for_foreign_subject_is_not_found(self, service_instance, admin_user):
        service, mock_db_client = service_instance
        foreign = Subject(subject_id=uuid.uuid4(), name="X", course_code="X1", admin_id=uuid.uuid4())
        mock_db_client.get_subject_by_id.return_value = foreign
        start = datetime.now(timezone.utc)

        with pytest.raises(NotFoundError, match="Subject not found"):
            await service.create_session(admin_user, foreign.subject_id, start, start + timedelta(hours=1), 0, 0)

    async def test_overlapping_session_is_a_conflict(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        mock_db_client.get_subject_by_id.return_value = subject
        mock_db_client.add_session_if_no_overlap.return_value = None
        start = datetime.now(timezone.utc)

        with pytest.raises(ConflictError, match="overlaps with another session"):
            await service.create_session(admin_user, subject.subject_id, start, start + timedelta(hours=1), 0, 0)

    async def test_storage_failure_on_create(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        mock_db_client.get_subject_by_id.return_value = subject
        mock_db_client.add_session_if_no_overlap.side_effect = RuntimeError("db down")
        start = datetime.now(timezone.utc)

        with pytest.raises(StorageError, match="Failed to generate session"):
            await service.create_session(admin_user, subject.subject_id, start, start + timedelta(hours=1), 0, 0)

    async def test_invalidate_active_session(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        session = make_session(admin_user, subject, status=SessionStatus.ACTIVE)
        mock_db_client.get_session_by_id.return_value = session
        mock_db_client.invalidate_session.return_value = session.model_copy(update={"status": SessionStatus.INVALIDATED})

        result = await service.invalidate_session(admin_user, session.session_id)

        assert result.status == SessionStatus.INVALIDATED
        mock_db_client.invalidate_session.assert_awaited_once_with(session.session_id, admin_user.user_id)

    @pytest.mark.parametrize("status", [SessionStatus.EXPIRED, SessionStatus.INVALIDATED])
    async def test_closed_session_is_rejected_without_writing(self, service_instance, admin_user, subject, status):
        service, mock_db_client = service_instance
        mock_db_client.get_session_by_id.return_value = make_session(admin_user, subject, status=status)

        with pytest.raises(ServiceError, match="Only active or upcoming sessions can be invalidated."):
            await service.invalidate_session(admin_user, uuid.uuid4())
        mock_db_client.invalidate_session.assert_not_called()

    async def test_session_expired_by_a_concurrent_sweep_is_rejected(self, service_instance, admin_user, subject):
        """The status read was still open but the conditional update matched nothing."""
        service, mock_db_client = service_instance
        mock_db_client.get_session_by_id.return_value = make_session(admin_user, subject, status=SessionStatus.UPCOMING)
        mock_db_client.invalidate_session.return_value = None

        with pytest.raises(ServiceError, match="Only active or upcoming sessions can be invalidated."):
            await service.invalidate_session(admin_user, uuid.uuid4())

    async def test_invalidate_unknown_session_is_not_found(self, service_instance, admin_user):
        service, mock_db_client = service_instance
        mock_db_client.get_session_by_id.return_value = None

        with pytest.raises(NotFoundError, match="Session not found"):
            await service.invalidate_session(admin_user, uuid.uuid4())
        mock_db_client.invalidate_session.assert_not_called()

    async def test_invalidate_foreign_session_is_not_found(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        foreign = make_session(admin_user, subject).model_copy(update={"admin_id": uuid.uuid4()})
        mock_db_client.get_session_by_id.return_value = foreign

        with pytest.raises(NotFoundError, match="Session not found"):
            await service.invalidate_session(admin_user, foreign.session_id)
        mock_db_client.invalidate_session.assert_not_called()

    async def test_list_sessions_only_open_ones(self, service_instance, admin_user):
        service, mock_db_client = service_instance
        mock_db_client.get_admin_sessions.return_value = []

        await service.list_sessions(admin_user)

        mock_db_client.get_admin_sessions.assert_awaited_once_with(
            admin_user.user_id, [SessionStatus.UPCOMING, SessionStatus.ACTIVE]
        )


@pytest.mark.asyncio
class TestEnrollments:

    async def test_batch_reports_new_existing_and_unmatched(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        alice, bob = make_student("R1", "Alice"), make_student("R2", "Bob")
        missing_subject = uuid.uuid4()
        mock_db_client.get_admin_subjects_by_ids.return_value = [subject]
        mock_db_client.get_students_by_roll_numbers.return_value = [alice, bob]

        async def _add(enrollment: Enrollment):
            return None if enrollment.student_id == bob.user_id else enrollment
        mock_db_client.add_enrollment.side_effect = _add

        result = await service.enroll_students(
            admin_user,
            [("R1", "alice"), ("R2", None), ("R3", None), ("R1", "Not Alice")],
            [subject.subject_id, missing_subject, subject.subject_id]
        )

        assert len(result.results) == 1
        subject_result = result.results[0]
        assert [s.roll_number for s in subject_result.enrolled] == ["R1"]
        assert [s.roll_number for s in subject_result.already_enrolled] == ["R2"]
        assert result.unmatched_students == ["R3", "R1"]
        assert result.missing_subject_ids == [missing_subject]
        mock_db_client.get_admin_subjects_by_ids.assert_awaited_once_with(
            admin_user.user_id, [subject.subject_id, missing_subject]
        )

    async def test_batch_requires_students_and_subjects(self, service_instance, admin_user):
        service, _ = service_instance

        with pytest.raises(ServiceError, match="Please provide students and at least one subject"):
            await service.enroll_students(admin_user, [("R1", None)], [])

    async def test_write_failure_aborts_with_storage_error(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        mock_db_client.get_admin_subjects_by_ids.return_value = [subject]
        mock_db_client.get_students_by_roll_numbers.return_value = [make_student("R1", "Alice")]
        mock_db_client.add_enrollment.side_effect = RuntimeError("db down")

        with pytest.raises(StorageError, match="Failed to enroll students"):
            await service.enroll_students(admin_user, [("R1", None)], [subject.subject_id])


@pytest.mark.asyncio
class TestAttendanceReport:

    async def test_report_counts_and_percentages(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        alice, bob = make_student("R1", "Alice"), make_student("R2", "Bob")
        s1 = make_session(admin_user, subject, status=SessionStatus.EXPIRED, hours_ago=48)
        s2 = make_session(admin_user, subject, status=SessionStatus.EXPIRED, hours_ago=24)
        s3 = make_session(admin_user, subject, status=SessionStatus.ACTIVE, hours_ago=1)

        def record(student, session):
            return AttendanceRecord(
                record_id=uuid.uuid4(), student_id=student.user_id, session_id=session.session_id,
                scanned_at=session.start_time + timedelta(minutes=5), scan_lat=12.34, scan_lng=56.78
            )

        mock_db_client.get_subject_by_id.return_value = subject
        mock_db_client.get_subject_sessions.return_value = [s1, s2, s3]
        mock_db_client.get_enrolled_students.return_value = [alice, bob]
        mock_db_client.get_attendance_records_for_sessions.return_value = [
            record(alice, s1), record(alice, s2), record(bob, s3)
        ]

        report = await service.subject_attendance_report(admin_user, subject.subject_id)

        assert report.total_classes == 3
        stats = {s.student.roll_number: s for s in report.student_stats}
        assert stats["R1"].attended_classes == 2
        assert stats["R1"].attendance_percentage == 67
        assert stats["R2"].attendance_percentage == 33
        assert [d.total_attendance for d in report.session_details] == [1, 1, 1]
        mock_db_client.get_subject_sessions.assert_awaited_once_with(
            subject.subject_id, admin_user.user_id, [SessionStatus.ACTIVE, SessionStatus.EXPIRED]
        )

    async def test_report_without_sessions_is_zero_percent(self, service_instance, admin_user, subject):
        service, mock_db_client = service_instance
        mock_db_client.get_subject_by_id.return_value = subject
        mock_db_client.get_subject_sessions.return_value = []
        mock_db_client.get_enrolled_students.return_value = [make_student("R1", "Alice")]
        mock_db_client.get_attendance_records_for_sessions.return_value = []

        report = await service.subject_attendance_report(admin_user, subject.subject_id)

        assert report.total_classes == 0
        assert report.student_stats[0].attendance_percentage == 0
