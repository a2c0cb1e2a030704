"""Database models for users.

Users are owned by the identity service; this API keeps the columns it reads
for notifications plus ``enrolled_courses``, the mirror of the user's course
memberships. The mirror is only ever changed with set union/difference so
concurrent enrollments never overwrite each other.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from src.auth.permissions import UserRole


USER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.users (
    id UUID PRIMARY KEY,
    email TEXT,
    name TEXT,
    role TEXT,
    is_active BOOLEAN,
    enrolled_courses SET<UUID>,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

AUTH_TABLES_CQL = [
    USER_TABLE_CQL,
]


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class User:
    """User entity.

    Attributes:
        id: Unique identifier (UUID)
        email: Address used for confirmation emails
        name: Display name
        role: User role (student, instructor, admin)
        is_active: Account status
        enrolled_courses: Mirror of the user's active course ids
        created_at: Account creation timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        id: UUID | None = None,
        email: str = "",
        name: str = "",
        role: str = UserRole.STUDENT.value,
        is_active: bool = True,
        enrolled_courses: set[UUID] | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.id = id or uuid4()
        self.email = (email or "").lower().strip()
        self.name = name or ""
        self.role = role
        self.is_active = is_active
        # Cassandra returns None for an empty set
        self.enrolled_courses = set(enrolled_courses or ())
        self.created_at = ensure_utc_aware(created_at) or datetime.now(UTC)
        self.updated_at = ensure_utc_aware(updated_at)

    @classmethod
    def from_row(cls, row: Any) -> "User":
        """Create User instance from Cassandra row."""
        return cls(
            id=row.id,
            email=row.email,
            name=row.name,
            role=row.role,
            is_active=row.is_active if row.is_active is not None else True,
            enrolled_courses=row.enrolled_courses,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "is_active": self.is_active,
            "enrolled_courses": sorted(self.enrolled_courses, key=str),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
