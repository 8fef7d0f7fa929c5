from typing import Optional

import jwt
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from ...config.config import settings

BEARER_PREFIX = "bearer "


def _token_subject(authorization: Optional[str]) -> Optional[str]:
    """User id carried by a bearer token, or None. Expired tokens still count."""
    if not authorization or not authorization.lower().startswith(BEARER_PREFIX) or not settings.SECRET_KEY:
        return None
    try:
        payload = jwt.decode(
            authorization[len(BEARER_PREFIX):].strip(),
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"verify_exp": False}
        )
    except jwt.PyJWTError:
        return None
    return payload.get("sub")


def get_limiter_key(request: Request) -> str:
    """Signed-in callers share one bucket per user; everyone else one per IP."""
    user_id = _token_subject(request.headers.get("authorization"))
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=get_limiter_key, storage_uri=settings.RATE_LIMITER_REDIS_URL)
