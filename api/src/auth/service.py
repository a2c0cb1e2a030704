"""User service layer.

Reads users and maintains the ``enrolled_courses`` mirror. Mirror writes are
set operations, so they are safe to repeat and safe under concurrency.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from src.auth.models import User
from src.core.exceptions import NotFoundError
from src.core.logging import get_logger


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)


class UserNotFoundError(NotFoundError):
    def __init__(self, message: str = "User not found"):
        super().__init__(message, "user_not_found")


class UserService:
    """Service for user lookups and the course-membership mirror."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._get_user_by_id = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.users WHERE id = ?"
        )
        self._insert_user = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.users
            (id, email, name, role, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """)
        self._get_mirror = self.session.prepare(
            f"SELECT enrolled_courses FROM {self.keyspace}.users WHERE id = ?"
        )
        self._add_to_mirror = self.session.prepare(f"""
            UPDATE {self.keyspace}.users
            SET enrolled_courses = enrolled_courses + ?
            WHERE id = ?
        """)
        self._remove_from_mirror = self.session.prepare(f"""
            UPDATE {self.keyspace}.users
            SET enrolled_courses = enrolled_courses - ?
            WHERE id = ?
        """)

    async def get_user(self, user_id: UUID) -> User | None:
        result = await self.session.aexecute(self._get_user_by_id, [user_id])
        row = result.one()
        return User.from_row(row) if row else None

    async def require_user(self, user_id: UUID) -> User:
        """Get a user or raise UserNotFoundError."""
        user = await self.get_user(user_id)
        if user is None:
            raise UserNotFoundError
        return user

    async def create_user(
        self,
        email: str,
        name: str,
        role: str = "student",
        user_id: UUID | None = None,
    ) -> User:
        """Insert a user record (identity sync, seeding)."""
        user = User(id=user_id, email=email, name=name, role=role)
        await self.session.aexecute(
            self._insert_user,
            [
                user.id,
                user.email,
                user.name,
                user.role,
                user.is_active,
                user.created_at,
                datetime.now(UTC),
            ],
        )
        logger.info("user_created", user_id=str(user.id))
        return user

    # ==========================================================================
    # Course-membership mirror
    # ==========================================================================

    async def get_enrolled_courses(self, user_id: UUID) -> set[UUID]:
        result = await self.session.aexecute(self._get_mirror, [user_id])
        row = result.one()
        if row is None:
            return set()
        return set(row.enrolled_courses or ())

    async def add_enrolled_courses(self, user_id: UUID, course_ids: set[UUID]) -> None:
        if course_ids:
            await self.session.aexecute(self._add_to_mirror, [course_ids, user_id])

    async def remove_enrolled_courses(
        self, user_id: UUID, course_ids: set[UUID]
    ) -> None:
        if course_ids:
            await self.session.aexecute(self._remove_from_mirror, [course_ids, user_id])
