from datetime import timedelta
from typing import Any, Dict, Optional

from jose import jwt

from app.core.config import settings
from app.core.datetime_utils import utc_now


def create_access_token(
    *, subject: Dict[str, Any], expires_minutes: Optional[int] = None
) -> str:
    """Issue a bearer token. Claims: user_id, school_id, role."""
    if expires_minutes is None:
        expires_minutes = settings.access_token_expire_minutes

    claims = {**subject, "exp": utc_now() + timedelta(minutes=expires_minutes)}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify signature and expiry. Raises jose.JWTError on any failure."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
