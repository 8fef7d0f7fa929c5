import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from uuid import UUID, uuid4

import bcrypt
import jwt

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..db.redis_client import RedisClient
from ..models.db_models import User, Role
from ..models.redis_models import UserSessionRedis
from ..tools.mailer import send_password_reset_email, MailDeliveryError
from .errors import ServiceError, ConflictError, AuthenticationError, StorageError

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
SPECIAL_CHARS_REGEX = re.compile(r'[!@#$%^&*(),.?":{}|<>]')
PASSWORD_MIN_LENGTH = 6
# bcrypt only looks at the first 72 bytes.
PASSWORD_MAX_BYTES = 72

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."


# --- Helper functions ---

def validate_password(password: str) -> Optional[str]:
    """Returns an error message if the password breaks a rule, otherwise None."""
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters long"
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        return f"Password must be at most {PASSWORD_MAX_BYTES} bytes long"
    if not re.search(r"[a-zA-Z]", password):
        return "Password must contain at least one alphabet"
    if not re.search(r"[0-9]", password):
        return "Password must contain at least one number"
    if not SPECIAL_CHARS_REGEX.search(password):
        return "Password must contain at least one special character"
    return None


def validate_email(email: str) -> bool:
    return bool(EMAIL_REGEX.match(email))


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or over-long input.
        return False


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_access_token(data: dict, expires_delta: timedelta) -> str:
    """Creates a signed JWT carrying ``data`` and an expiry."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


class AuthService:
    """
    Registration, login and password recovery.
    """
    def __init__(self, redis_client: RedisClient, db_client: AsyncPostgresClient):
        self.redis_client = redis_client
        self.db_client = db_client

    async def _open_login_session(self, user: User) -> str:
        """Stores a fresh login session in Redis and returns a token bound to it."""
        ttl = settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
        now = datetime.now(timezone.utc)
        session = UserSessionRedis(
            user_id=user.user_id,
            session_id=uuid4(),
            session_start_time=now,
            session_end_time=now + timedelta(seconds=ttl)
        )
        try:
            await self.redis_client.save_user_session(session, ttl=ttl)
        except Exception as e:
            logger.error(f"Could not store login session for user '{user.user_id}'.", exc_info=True)
            raise StorageError("A server error occurred while creating the session.") from e

        token_payload = {"sub": str(user.user_id), "sid": str(session.session_id)}
        return create_access_token(data=token_payload, expires_delta=timedelta(seconds=ttl))

    async def register(self, name: str, email: str, password: str, role: Role, roll_number: Optional[str] = None) -> Tuple[str, User]:
        name, email = (name or "").strip(), (email or "").strip()
        roll_number = roll_number.strip() if roll_number else None

        if not name or not email or not password or not role:
            raise ServiceError("All fields are required")
        if role == Role.STUDENT and not roll_number:
            raise ServiceError("Roll number is required for students")
        if not validate_email(email):
            raise ServiceError("Invalid email format")
        password_error = validate_password(password)
        if password_error:
            raise ServiceError(password_error)

        if await self.db_client.get_user_by_email(email):
            logger.warning(f"Registration attempt with an existing email '{email}'.")
            raise ConflictError("User already exists")
        if role == Role.STUDENT and await self.db_client.get_student_by_roll_number(roll_number):
            logger.warning(f"Registration attempt with an existing roll number '{roll_number}'.")
            raise ConflictError("Roll number already registered")

        new_user = User(
            user_id=uuid4(),
            name=name,
            email=email,
            password_hash=hash_password(password),
            role=role,
            roll_number=roll_number if role == Role.STUDENT else None
        )
        try:
            created = await self.db_client.add_user(new_user)
        except Exception as e:
            logger.error(f"Database error while registering '{email}'.", exc_info=True)
            raise StorageError("A server error occurred during registration.") from e
        if created is None:
            # Lost a race against a concurrent registration.
            raise ConflictError("User already exists")

        logger.info(f"User '{created.email}' registered as {created.role.value}.")
        token = await self._open_login_session(created)
        return token, created

    async def login(self, email: str, password: str) -> Tuple[str, User]:
        if not email or not password:
            raise ServiceError("Please provide email and password")

        logger.info(f"Login attempt for '{email}'.")
        user = await self.db_client.get_user_by_email(email.strip())
        if not user or not verify_password(password, user.password_hash):
            logger.warning(f"Invalid credentials for '{email}'.")
            raise AuthenticationError("Invalid credentials")

        token = await self._open_login_session(user)
        logger.info(f"User '{user.email}' ({user.role.value}) logged in successfully.")
        return token, user

    async def logout(self, user: User):
        await self.redis_client.delete_user_session(user.user_id)
        logger.info(f"Session for user '{user.user_id}' deleted.")

    async def resolve_token(self, token: str) -> Optional[User]:
        """
        Decodes a bearer token and returns its user if the login session it
        names is still the active one. Returns None otherwise.
        """
        try:
            payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
            user_id = UUID(payload["sub"])
            session_id = UUID(payload["sid"])
        except (jwt.PyJWTError, KeyError, ValueError, TypeError) as e:
            logger.warning(f"Token validation error: {e}")
            return None

        user_session = await self.redis_client.get_user_session(user_id)
        if user_session is None or user_session.session_id != session_id:
            logger.warning(f"User '{user_id}' presented a token without a matching active session.")
            return None

        return await self.db_client.get_user_by_id(user_id)

    async def forgot_password(self, email: str) -> str:
        """
        Issues a reset token for a known email and mails the link. The answer is
        the same whether or not the account exists.
        """
        if not email:
            raise ServiceError("Email is required")

        user = await self.db_client.get_user_by_email(email.strip())
        if not user:
            logger.info(f"Password reset requested for unknown email '{email}'.")
            return FORGOT_PASSWORD_MESSAGE

        token = secrets.token_hex(32)
        expiry = datetime.now(timezone.utc) + timedelta(minutes=settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES)
        await self.db_client.set_reset_token(user.user_id, hash_reset_token(token), expiry)

        reset_link = f"{settings.FRONTEND_URL.rstrip('/')}/reset-password/{token}"
        try:
            await send_password_reset_email(user.email, reset_link)
        except MailDeliveryError as e:
            raise StorageError(str(e)) from e

        logger.info(f"Password reset token issued for user '{user.user_id}'.")
        return FORGOT_PASSWORD_MESSAGE

    async def reset_password(self, token: str, new_password: str):
        if not token or not new_password:
            raise ServiceError("Token and new password are required")
        password_error = validate_password(new_password)
        if password_error:
            raise ServiceError(password_error)

        user = await self.db_client.get_user_by_reset_token(hash_reset_token(token), datetime.now(timezone.utc))
        if not user:
            logger.warning("Password reset attempted with an invalid or expired token.")
            raise AuthenticationError("Invalid or expired reset token")

        await self.db_client.update_password(user.user_id, hash_password(new_password))
        # Existing logins must not survive a password change.
        await self.redis_client.delete_user_session(user.user_id)
        logger.info(f"Password reset completed for user '{user.user_id}'.")
