import uuid
import pytest
from datetime import datetime, timezone, timedelta
from fastapi.testclient import TestClient

from qrattend.backend.main import app

from qrattend.backend.models.db_models import (
    Subject, Enrollment, AttendanceSession, AttendanceRecord, SessionStatus, SessionWithSubject
)

API = "/api/v1/student"
CLASSROOM = (12.34, 56.78)


@pytest.fixture
def classroom_session(admin_user):
    """An active session of a freshly created subject, reachable by its token."""
    subject = Subject(subject_id=uuid.uuid4(), name="Algorithms", course_code="CS101", admin_id=admin_user.user_id)
    start = datetime.now(timezone.utc) - timedelta(minutes=10)
    return AttendanceSession(
        session_id=uuid.uuid4(), subject_id=subject.subject_id, admin_id=admin_user.user_id,
        start_time=start, end_time=start + timedelta(hours=1),
        classroom_lat=CLASSROOM[0], classroom_lng=CLASSROOM[1],
        token=uuid.uuid4().hex, status=SessionStatus.ACTIVE
    )


@pytest.fixture
def attendance_store(mock_db_client, classroom_session):
    """Keeps inserted attendance records so a repeated scan sees the first one."""
    records = {}

    async def _get_record(student_id, session_id):
        return records.get((student_id, session_id))

    async def _add_record(record: AttendanceRecord):
        key = (record.student_id, record.session_id)
        if key in records:
            return None
        records[key] = record
        return record

    mock_db_client.get_session_by_token.return_value = classroom_session
    mock_db_client.get_attendance_record.side_effect = _get_record
    mock_db_client.add_attendance_record.side_effect = _add_record
    return records


def enroll(mock_db_client, student_user, session):
    mock_db_client.get_enrollment.return_value = Enrollment(
        enrollment_id=uuid.uuid4(), student_id=student_user.user_id,
        subject_id=session.subject_id, enrolled_at=datetime.now(timezone.utc)
    )


def scan(client, session, lat=CLASSROOM[0], lng=CLASSROOM[1]):
    return client.post(f"{API}/mark-attendance", json={"token": session.token, "lat": lat, "lng": lng})


def test_enrolled_student_marks_once(client, login_as, mock_db_client, student_user, classroom_session, attendance_store):
    login_as(student_user)
    enroll(mock_db_client, student_user, classroom_session)

    first = scan(client, classroom_session)
    assert first.status_code == 200
    assert first.json()["message"] == "Attendance marked successfully"
    assert first.json()["record"]["session_id"] == str(classroom_session.session_id)

    second = scan(client, classroom_session)
    assert second.status_code == 400
    assert second.json()["detail"] == "Attendance already marked"
    assert len(attendance_store) == 1


def test_unenrolled_student_is_403(client, login_as, mock_db_client, student_user, classroom_session, attendance_store):
    login_as(student_user)
    mock_db_client.get_enrollment.return_value = None

    response = scan(client, classroom_session)

    assert response.status_code == 403
    assert response.json()["detail"] == "Not enrolled in subject"
    assert attendance_store == {}


def test_admin_cannot_mark_attendance(client, login_as, admin_user, classroom_session):
    login_as(admin_user)

    response = scan(client, classroom_session)

    assert response.status_code == 403
    assert response.json()["detail"] == "This operation is only valid for students."


def test_out_of_range_scan_reports_distance(client, login_as, mock_db_client, student_user, classroom_session, attendance_store):
    login_as(student_user)
    enroll(mock_db_client, student_user, classroom_session)

    response = scan(client, classroom_session, lat=CLASSROOM[0] + 0.01)

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["message"] == "Out of location range"
    assert detail["distance"] == pytest.approx(1111.95, rel=1e-3)
    assert "meters away from the classroom" in detail["details"]
    assert attendance_store == {}


def test_invalidated_session_is_rejected(client, login_as, mock_db_client, student_user, classroom_session, attendance_store):
    login_as(student_user)
    mock_db_client.get_session_by_token.return_value = classroom_session.model_copy(update={"status": SessionStatus.INVALIDATED})

    response = scan(client, classroom_session)

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid or inactive session"


def test_missing_location_is_400(client, login_as, student_user, classroom_session):
    login_as(student_user)

    response = client.post(f"{API}/mark-attendance", json={"token": classroom_session.token})

    assert response.status_code == 400
    assert "errors" in response.json()


def test_sessions_hide_qr_token(client, login_as, mock_db_client, student_user, classroom_session):
    login_as(student_user)
    mock_db_client.get_student_sessions.return_value = [
        SessionWithSubject(**classroom_session.model_dump(), subject_name="Algorithms")
    ]

    response = client.get(f"{API}/sessions")

    assert response.status_code == 200
    assert response.json()[0]["subject_name"] == "Algorithms"
    assert "token" not in response.json()[0]


def test_unexpected_error_is_500(client, login_as, mock_db_client, student_user):
    login_as(student_user)
    mock_db_client.get_student_enrollments.side_effect = RuntimeError("boom")

    response = TestClient(app, raise_server_exceptions=False).get(f"{API}/enrollments")

    assert response.status_code == 500
    assert response.json()["detail"] == "Internal server error"
