"""Session token handling.

Tokens are issued by the identity service; this module only verifies them
and resolves the subject to a user id. ``create_session_token`` exists for
local development and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import BaseModel, ValidationError as PayloadValidationError

from ..config import settings


class TokenPayload(BaseModel):
    """JWT token payload."""
    sub: str  # User ID
    type: str  # "access" or "refresh"
    exp: int  # Expiration timestamp
    iat: int  # Issued at timestamp


def create_session_token(
    user_id: int,
    token_type: str = "access",
    expires_minutes: int = 60,
) -> str:
    """
    Create a signed session token.

    Args:
        user_id: Integer user id
        token_type: "access" or "refresh"
        expires_minutes: Token lifetime

    Returns:
        Encoded JWT token
    """
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=expires_minutes)

    payload = {
        "sub": str(user_id),
        "type": token_type,
        "exp": int(exp.timestamp()),
        "iat": int(now.timestamp()),
    }

    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_session_token(token: str) -> TokenPayload:
    """
    Decode and verify a session token.

    Raises:
        jwt.ExpiredSignatureError: Token expired
        jwt.InvalidTokenError: Token invalid
    """
    payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    return TokenPayload(**payload)


def resolve_session_user_id(token: str, expected_type: str = "access") -> Optional[int]:
    """
    Resolve a bearer token to the user id it was issued for.

    Returns None for expired, malformed or wrong-type tokens, without saying
    which, so callers cannot probe for valid ids.
    """
    try:
        payload = decode_session_token(token)
    except (jwt.ExpiredSignatureError, jwt.InvalidTokenError, PayloadValidationError):
        return None

    if payload.type != expected_type:
        return None

    try:
        user_id = int(payload.sub)
    except ValueError:
        return None

    return user_id if user_id > 0 else None
