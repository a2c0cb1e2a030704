"""Database models for enrollments.

Cassandra table definitions for:
- Enrollments: one row per (user, course), inserted with IF NOT EXISTS
- Enrollments by id: lookup for id-addressed operations (withdraw, admin)
- Enrollments by course: status replica used to recount a course's enrollments

Architecture: the primary row is the source of truth. The user's
``enrolled_courses`` mirror, the course counter and ``enrollments_by_course``
are secondary writes that may lag and are repaired by reconciliation.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid5


class EnrollmentStatus(str, Enum):
    """Enrollment lifecycle status."""

    ACTIVE = "active"
    COMPLETED = "completed"  # reached 100% progress, never reverted automatically
    DROPPED = "dropped"  # learner withdrew, terminal
    SUSPENDED = "suspended"  # admin action, reversible by admin only


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class AccessLevel(str, Enum):
    PREVIEW = "preview"
    FULL = "full"
    EXPIRED = "expired"


# Statuses that grant access and count towards a course's enrollment total
COUNTED_STATUSES = frozenset({EnrollmentStatus.ACTIVE.value, EnrollmentStatus.COMPLETED.value})

# Fixed namespace so every process derives the same id for a (user, course) pair
ENROLLMENT_NAMESPACE = UUID("6f1c2d0e-4c1b-5b8e-9a57-3e0d2b7c9a41")


def enrollment_id_for(user_id: UUID, course_id: UUID) -> UUID:
    """Deterministic enrollment id for a (user, course) pair."""
    return uuid5(ENROLLMENT_NAMESPACE, f"{user_id}:{course_id}")


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

ENROLLMENTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.enrollments (
    user_id UUID,
    course_id UUID,
    enrollment_id UUID,
    status TEXT,
    payment_status TEXT,
    payment_method TEXT,
    payment_id TEXT,
    order_id TEXT,
    amount_paid DECIMAL,
    currency TEXT,
    access_level TEXT,
    completed_lessons SET<TEXT>,
    current_lesson TEXT,
    total_progress INT,
    time_spent INT,
    last_accessed TIMESTAMP,
    enrolled_at TIMESTAMP,
    completed_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY ((user_id), course_id)
) WITH CLUSTERING ORDER BY (course_id ASC)
"""

ENROLLMENTS_BY_ID_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.enrollments_by_id (
    enrollment_id UUID PRIMARY KEY,
    user_id UUID,
    course_id UUID
)
"""

ENROLLMENTS_BY_COURSE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.enrollments_by_course (
    course_id UUID,
    user_id UUID,
    status TEXT,
    enrolled_at TIMESTAMP,
    PRIMARY KEY ((course_id), user_id)
) WITH CLUSTERING ORDER BY (user_id ASC)
"""

ENROLLMENTS_TABLES_CQL = [
    ENROLLMENTS_TABLE_CQL,
    ENROLLMENTS_BY_ID_TABLE_CQL,
    ENROLLMENTS_BY_COURSE_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class Enrollment:
    """Binding between a user and a course.

    Attributes:
        id: Deterministic id derived from (user_id, course_id)
        status: Lifecycle status (see EnrollmentStatus)
        payment_status: Gateway outcome for the purchase
        amount_paid: Charged amount in major currency units (0 when unknown)
        access_level: Content access granted
        completed_lessons: Ids of lessons completed at least once
        current_lesson: Lesson the learner last worked on
        total_progress: Percent of the live course structure completed
        time_spent: Seconds spent across all lessons
    """

    def __init__(
        self,
        user_id: UUID,
        course_id: UUID,
        id: UUID | None = None,
        status: str = EnrollmentStatus.ACTIVE.value,
        payment_status: str = PaymentStatus.PAID.value,
        payment_method: str | None = None,
        payment_id: str | None = None,
        order_id: str | None = None,
        amount_paid: Decimal | None = None,
        currency: str | None = None,
        access_level: str = AccessLevel.FULL.value,
        completed_lessons: set[str] | None = None,
        current_lesson: str | None = None,
        total_progress: int = 0,
        time_spent: int = 0,
        last_accessed: datetime | None = None,
        enrolled_at: datetime | None = None,
        completed_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.user_id = user_id
        self.course_id = course_id
        self.id = id or enrollment_id_for(user_id, course_id)
        self.status = status
        self.payment_status = payment_status
        self.payment_method = payment_method
        self.payment_id = payment_id
        self.order_id = order_id
        self.amount_paid = amount_paid if amount_paid is not None else Decimal(0)
        self.currency = currency
        self.access_level = access_level
        self.completed_lessons = set(completed_lessons or ())
        self.current_lesson = current_lesson
        self.total_progress = total_progress or 0
        self.time_spent = time_spent or 0
        self.enrolled_at = ensure_utc_aware(enrolled_at) or datetime.now(UTC)
        self.last_accessed = ensure_utc_aware(last_accessed) or self.enrolled_at
        self.completed_at = ensure_utc_aware(completed_at)
        self.updated_at = ensure_utc_aware(updated_at)

    @property
    def is_counted(self) -> bool:
        """Whether this enrollment grants access and counts for the course."""
        return self.status in COUNTED_STATUSES

    @classmethod
    def from_row(cls, row: Any) -> "Enrollment":
        """Create Enrollment instance from Cassandra row."""
        return cls(
            user_id=row.user_id,
            course_id=row.course_id,
            id=row.enrollment_id,
            status=row.status,
            payment_status=row.payment_status,
            payment_method=row.payment_method,
            payment_id=row.payment_id,
            order_id=row.order_id,
            amount_paid=row.amount_paid,
            currency=row.currency,
            access_level=row.access_level,
            completed_lessons=row.completed_lessons,
            current_lesson=row.current_lesson,
            total_progress=row.total_progress,
            time_spent=row.time_spent,
            last_accessed=row.last_accessed,
            enrolled_at=row.enrolled_at,
            completed_at=row.completed_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "course_id": self.course_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "payment_id": self.payment_id,
            "order_id": self.order_id,
            "amount_paid": self.amount_paid,
            "currency": self.currency,
            "access_level": self.access_level,
            "progress": {
                "completed_lessons": sorted(self.completed_lessons),
                "current_lesson": self.current_lesson,
                "total_progress": self.total_progress,
                "time_spent": self.time_spent,
                "last_accessed": self.last_accessed,
            },
            "enrolled_at": self.enrolled_at,
            "completed_at": self.completed_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return f"<Enrollment {self.user_id}:{self.course_id} ({self.status})>"


def percent_of(part: int, whole: int) -> int:
    """Whole percent of ``part`` in ``whole``, halves rounded up."""
    if whole <= 0:
        return 0
    return (part * 200 + whole) // (2 * whole)
