"""Role-based access control.

Hierarchical roles:
- ADMIN (level 2): enrollment administration (suspend, restore, reconcile)
- INSTRUCTOR (level 1): course authoring, handled by another service
- STUDENT (level 0): enrolls, learns, withdraws
"""

from enum import Enum


class UserRole(str, Enum):
    """User roles with hierarchical levels."""

    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.STUDENT: 0,
    UserRole.INSTRUCTOR: 1,
    UserRole.ADMIN: 2,
}


def get_role_level(role: UserRole | str) -> int:
    """Get the permission level for a role, 0 for unknown roles."""
    if isinstance(role, str):
        try:
            role = UserRole(role)
        except ValueError:
            return 0
    return ROLE_HIERARCHY.get(role, 0)


def has_permission(user_role: UserRole | str, required_role: UserRole | str) -> bool:
    """Check if user has at least the required permission level.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.INSTRUCTOR)
        True
        >>> has_permission("student", "admin")
        False
    """
    return get_role_level(user_role) >= get_role_level(required_role)


def is_admin(role: UserRole | str) -> bool:
    return get_role_level(role) == ROLE_HIERARCHY[UserRole.ADMIN]
