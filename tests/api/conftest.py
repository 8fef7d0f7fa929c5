import uuid
import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from qrattend.backend.main import app
from qrattend.backend.api.auth import get_current_user
from qrattend.backend.api.dependencies import get_auth_service, get_admin_service, get_student_service
from qrattend.backend.services.auth_service import AuthService
from qrattend.backend.services.admin_service import AdminService
from qrattend.backend.services.student_service import StudentService
from qrattend.backend.models.db_models import User, Role

# The client is built without entering the lifespan, so no pools are opened;
# every test swaps the services for ones backed by mocks.


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def mock_db_client():
    return AsyncMock()


@pytest.fixture
def mock_redis_client():
    return AsyncMock()


@pytest.fixture
def admin_user() -> User:
    return User(user_id=uuid.uuid4(), name="Test Admin", email="admin@example.com", password_hash="x", role=Role.ADMIN)


@pytest.fixture
def student_user() -> User:
    return User(
        user_id=uuid.uuid4(), name="Test Student", email="student@example.com",
        password_hash="x", role=Role.STUDENT, roll_number="R-001"
    )


@pytest.fixture
def use_services(mock_db_client, mock_redis_client):
    """Routes every service dependency to the shared mocks."""
    app.dependency_overrides[get_auth_service] = lambda: AuthService(redis_client=mock_redis_client, db_client=mock_db_client)
    app.dependency_overrides[get_admin_service] = lambda: AdminService(db_client=mock_db_client)
    app.dependency_overrides[get_student_service] = lambda: StudentService(db_client=mock_db_client)


@pytest.fixture
def login_as(use_services):
    """Makes the given user the authenticated caller."""
    def _login(user: User):
        app.dependency_overrides[get_current_user] = lambda: user
    return _login
