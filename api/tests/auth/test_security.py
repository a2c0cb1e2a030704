"""Tests for access token handling."""

from datetime import timedelta
from uuid import uuid4

import pytest
from jose import JWTError, jwt

from src.auth.permissions import UserRole
from src.auth.security import create_access_token, decode_access_token
from src.config.settings import get_settings


def _claims(role: UserRole = UserRole.STUDENT) -> dict[str, str]:
    return {"sub": str(uuid4()), "email": "test@example.com", "role": role.value}


class TestAccessToken:
    """Tests for access token creation and decoding."""

    def test_decode_access_token(self) -> None:
        """Should decode token and return payload."""
        data = _claims(UserRole.ADMIN)
        payload = decode_access_token(create_access_token(data))

        assert payload["sub"] == data["sub"]
        assert payload["email"] == data["email"]
        assert payload["role"] == "admin"
        assert payload["type"] == "access"
        assert "exp" in payload
        assert "iat" in payload

    def test_decode_access_token_expired(self) -> None:
        """Should raise JWTError for expired token."""
        token = create_access_token(_claims(), expires_delta=timedelta(seconds=-1))

        with pytest.raises(JWTError):
            decode_access_token(token)

    def test_decode_access_token_invalid(self) -> None:
        with pytest.raises(JWTError):
            decode_access_token("invalid.token.here")

    def test_decode_access_token_wrong_type(self) -> None:
        """Tokens that are not access tokens are rejected."""
        settings = get_settings()
        token = jwt.encode(
            {**_claims(), "type": "refresh"},
            settings.auth_secret_key,
            algorithm=settings.auth_algorithm,
        )

        with pytest.raises(JWTError, match="expected 'access'"):
            decode_access_token(token)

    def test_decode_access_token_without_subject(self) -> None:
        token = create_access_token({"email": "nobody@example.com"})

        with pytest.raises(JWTError, match="no subject"):
            decode_access_token(token)

    def test_decode_access_token_wrong_key(self) -> None:
        """Tokens signed with another key fail signature validation."""
        settings = get_settings()
        token = jwt.encode(
            {**_claims(), "type": "access"},
            "some-other-secret",
            algorithm=settings.auth_algorithm,
        )

        with pytest.raises(JWTError):
            decode_access_token(token)

    def test_tokens_unique_for_different_users(self) -> None:
        assert create_access_token(_claims()) != create_access_token(_claims())
