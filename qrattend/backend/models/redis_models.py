from pydantic import BaseModel, Field
from datetime import datetime
from uuid import UUID


class UserSessionRedis(BaseModel):
    """
    Represents a user's login session stored in Redis.

    Only one session per user is kept, so logging in again replaces the previous
    one and makes older tokens unusable.
    """
    user_id: UUID = Field(..., description="The user owning this login session.")
    session_id: UUID = Field(..., description="Unique ID for this login, echoed in the token as 'sid'.")
    session_start_time: datetime = Field(..., description="The time this session began.")
    session_end_time: datetime = Field(..., description="The time this session will expire.")
