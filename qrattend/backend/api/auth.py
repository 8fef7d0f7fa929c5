import logging
from fastapi import APIRouter, Depends, HTTPException, status, Response, Request
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm

from .schemas.user import (
    Token, LoginRequest, LoginResponse, RegisterRequest, UserResponse,
    ForgotPasswordRequest, ResetPasswordRequest, MessageResponse
)
from ..models.db_models import User, Role
from ..services.auth_service import AuthService
from ..services.errors import ServiceError
from .dependencies import get_auth_service
from .utilities.http_errors import to_http_exception
from .utilities.limiter import limiter

logger = logging.getLogger(__name__)

# --- Router and security setup ---
router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


# --- Dependencies for protected routes ---
async def get_current_user(
    token: str = Depends(oauth2_scheme),
    service: AuthService = Depends(get_auth_service)
) -> User:
    """
    Decodes the bearer token, checks that its login session is still the active
    one in Redis and returns the user from the database.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    user = await service.resolve_token(token)
    if user is None:
        raise credentials_exception
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != Role.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This operation is only valid for admins.")
    return user


def require_student(user: User = Depends(get_current_user)) -> User:
    if user.role != Role.STUDENT:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This operation is only valid for students.")
    return user


def _login_response(token: str, user: User) -> LoginResponse:
    return LoginResponse(token=Token(access_token=token), user=UserResponse.model_validate(user))


# --- API endpoints ---

@router.post("/register", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def register(
    request: Request,
    register_request: RegisterRequest,
    service: AuthService = Depends(get_auth_service)
):
    try:
        token, user = await service.register(
            name=register_request.name,
            email=register_request.email,
            password=register_request.password,
            role=register_request.role,
            roll_number=register_request.roll_number
        )
    except ServiceError as e:
        raise to_http_exception(e)
    return _login_response(token, user)


@router.post("/token", response_model=Token)
@limiter.limit("20/minute")
async def login_for_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    service: AuthService = Depends(get_auth_service)
):
    """Standard OAuth2 endpoint for Swagger UI. The username is the email."""
    try:
        token, _ = await service.login(form_data.username, form_data.password)
    except ServiceError as e:
        raise to_http_exception(e)
    return Token(access_token=token)


@router.post("/login", response_model=LoginResponse)
@limiter.limit("20/minute")
async def login(
    request: Request,
    login_request: LoginRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Login endpoint for web clients."""
    try:
        token, user = await service.login(login_request.email, login_request.password)
    except ServiceError as e:
        raise to_http_exception(e)
    return _login_response(token, user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("60/minute")
async def logout(
    request: Request,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service)
):
    """Deletes the user's login session from Redis."""
    logger.info(f"User '{current_user.user_id}' logging out.")
    try:
        await service.logout(current_user)
    except Exception:
        logger.error(f"Error during logout for user '{current_user.user_id}'.", exc_info=True)
        raise HTTPException(status_code=500, detail="An error occurred during logout.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit("5/minute")
async def forgot_password(
    request: Request,
    forgot_request: ForgotPasswordRequest,
    service: AuthService = Depends(get_auth_service)
):
    try:
        message = await service.forgot_password(forgot_request.email)
    except ServiceError as e:
        raise to_http_exception(e)
    return MessageResponse(message=message)


@router.post("/reset-password", response_model=MessageResponse)
@limiter.limit("5/minute")
async def reset_password(
    request: Request,
    reset_request: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service)
):
    try:
        await service.reset_password(reset_request.token, reset_request.password)
    except ServiceError as e:
        raise to_http_exception(e)
    return MessageResponse(message="Password has been reset successfully")


@router.get("/me", response_model=UserResponse)
@limiter.limit("60/minute")
async def me(request: Request, current_user: User = Depends(get_current_user)):
    return current_user
