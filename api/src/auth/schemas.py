"""Pydantic schemas for authentication."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict

from src.auth.permissions import UserRole, is_admin


class AuthenticatedUser(BaseModel):
    """Identity extracted from a verified access token."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    email: str | None = None
    role: UserRole = UserRole.STUDENT

    @property
    def is_admin(self) -> bool:
        return is_admin(self.role)
