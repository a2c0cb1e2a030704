"""Request helpers shared by the HTTP-level tests."""

import hashlib
import hmac
from uuid import UUID

from src.auth.security import create_access_token


def auth_headers(user_id: UUID, role: str = "student", email: str | None = None) -> dict:
    token = create_access_token(
        {"sub": str(user_id), "email": email or "learner@example.com", "role": role}
    )
    return {"Authorization": f"Bearer {token}"}


def checkout_signature(order_id: str, payment_id: str, secret: str) -> str:
    return hmac.new(
        secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256
    ).hexdigest()


def body_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
