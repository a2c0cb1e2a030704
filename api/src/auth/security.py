"""JWT helpers.

Access tokens are issued by the identity service; this API only verifies
them. ``create_access_token`` exists for local tooling and tests.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from src.config.settings import get_settings


DEFAULT_ACCESS_TOKEN_TTL = timedelta(minutes=15)


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token.

    Args:
        data: Claims, typically {"sub": user_id, "email": email, "role": role}
        expires_delta: Token lifetime (default 15 minutes)

    Returns:
        Encoded JWT string
    """
    settings = get_settings()
    now = datetime.now(UTC)

    to_encode = data.copy()
    to_encode.update(
        {
            "exp": now + (expires_delta or DEFAULT_ACCESS_TOKEN_TTL),
            "iat": now,
            "type": "access",
        }
    )
    return jwt.encode(
        to_encode,
        settings.auth_secret_key,
        algorithm=settings.auth_algorithm,
    )


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and validate an access token.

    Validates the signature, expiration, token type and the presence of a
    subject.

    Raises:
        JWTError: If token is invalid, expired, or wrong type
    """
    settings = get_settings()

    payload = jwt.decode(
        token,
        settings.auth_secret_key,
        algorithms=[settings.auth_algorithm],
    )

    if payload.get("type") != "access":
        msg = "Invalid token type: expected 'access'"
        raise JWTError(msg)
    if not payload.get("sub"):
        msg = "Token has no subject"
        raise JWTError(msg)

    return payload
