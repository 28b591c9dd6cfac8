"""JWT token utilities.

Tokens are issued by the external auth service; this backend only verifies
them and reads the ``sub`` and ``user_type`` claims. ``create_access_token``
exists for local tooling and tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt.exceptions import InvalidTokenError

from servicehub.lib.settings import settings


TOKEN_EXPIRY_HOURS = 24

STAFF_USER_TYPES = frozenset({"ADMIN", "STAFF"})


def create_access_token(
    user_id: str,
    user_type: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed access token.

    Args:
        user_id: Subject identifier (stored in 'sub' claim)
        user_type: Role of the caller (ADMIN, STAFF, WORKER, CUSTOMER)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(hours=TOKEN_EXPIRY_HOURS)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "user_type": user_type,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token.

    Raises:
        InvalidTokenError: If token is invalid, expired, or signature doesn't match
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
    )


def get_user_from_token(token: str) -> tuple[str, str]:
    """Extract (user_id, user_type) from a verified token.

    Raises:
        InvalidTokenError: If token is invalid or required claims are missing
    """
    payload = verify_token(token)
    try:
        return payload["sub"], payload["user_type"]
    except KeyError as e:
        raise InvalidTokenError(f"Missing claim: {e.args[0]}") from e


def is_staff(user_type: str) -> bool:
    return user_type.upper() in STAFF_USER_TYPES
