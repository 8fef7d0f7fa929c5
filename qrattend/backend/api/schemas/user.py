# qrattend/backend/api/schemas/user.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from uuid import UUID

from ...models.db_models import Role

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str
    password: str
    role: Role
    roll_number: Optional[str] = Field(None, description="Required when role is 'student'.")

class LoginRequest(BaseModel):
    email: str
    password: str

class ForgotPasswordRequest(BaseModel):
    email: str

class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"

class UserResponse(BaseModel):
    """Public view of a user; never carries password or reset data."""
    user_id: UUID
    name: str
    email: str
    role: Role
    roll_number: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

class LoginResponse(BaseModel):
    token: Token
    user: UserResponse

class MessageResponse(BaseModel):
    message: str
