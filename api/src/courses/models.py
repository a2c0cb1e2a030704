"""Database models for courses.

Course content is authored elsewhere; this API reads the parts enrollment
and progress depend on:
- Courses: price, currency and display fields
- Course lessons: the live lesson structure, ordered by unit and position
- Enrollment counters: running per-course enrollment totals

``total_lessons`` is never stored. It is counted from ``course_lessons`` at
read time so progress always uses the current structure.
"""

import re
import unicodedata
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class ContentStatus(str, Enum):
    """Content publication status."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class LessonType(str, Enum):
    VIDEO = "video"
    READING = "reading"
    QUIZ = "quiz"
    CODING = "coding"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

COURSE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.courses (
    id UUID PRIMARY KEY,
    title TEXT,
    slug TEXT,
    description TEXT,
    thumbnail_url TEXT,
    status TEXT,
    instructor_id UUID,
    price DECIMAL,
    currency TEXT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

# One row per lesson; lesson ids are the content service's string ids
COURSE_LESSONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_lessons (
    course_id UUID,
    unit_position INT,
    lesson_position INT,
    lesson_id TEXT,
    unit_title TEXT,
    title TEXT,
    lesson_type TEXT,
    duration_minutes INT,
    PRIMARY KEY (course_id, unit_position, lesson_position)
) WITH CLUSTERING ORDER BY (unit_position ASC, lesson_position ASC)
"""

# Counter tables cannot hold regular columns
COURSE_ENROLLMENT_COUNTERS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_enrollment_counters (
    course_id UUID PRIMARY KEY,
    total_enrollments COUNTER
)
"""

COURSES_TABLES_CQL = [
    COURSE_TABLE_CQL,
    COURSE_LESSONS_TABLE_CQL,
    COURSE_ENROLLMENT_COUNTERS_TABLE_CQL,
]


# ==============================================================================
# Helper Functions
# ==============================================================================


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def generate_slug(title: str) -> str:
    """Generate URL-friendly slug from title."""
    slug = unicodedata.normalize("NFKD", title)
    slug = slug.encode("ascii", "ignore").decode("ascii")
    slug = slug.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    return re.sub(r"[-\s]+", "-", slug)


# ==============================================================================
# Entity Classes
# ==============================================================================


class Course:
    """Course entity.

    Attributes:
        id: Unique identifier (UUID)
        title: Course title
        slug: URL-friendly identifier
        description: Course description
        thumbnail_url: Cover image URL
        status: Publication status (draft, published, archived)
        instructor_id: Course owner
        price: Course price (0 = free)
        currency: ISO currency code for ``price``
    """

    def __init__(
        self,
        id: UUID | None = None,
        title: str = "",
        slug: str | None = None,
        description: str | None = None,
        thumbnail_url: str | None = None,
        status: str = ContentStatus.PUBLISHED.value,
        instructor_id: UUID | None = None,
        price: Decimal | None = None,
        currency: str = "INR",
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.id = id or uuid4()
        self.title = (title or "").strip()
        self.slug = slug or generate_slug(self.title)
        self.description = description
        self.thumbnail_url = thumbnail_url
        self.status = status
        self.instructor_id = instructor_id
        self.price = price if price is not None else Decimal(0)
        self.currency = currency or "INR"
        self.created_at = ensure_utc_aware(created_at) or datetime.now(UTC)
        self.updated_at = ensure_utc_aware(updated_at)

    @classmethod
    def from_row(cls, row: Any) -> "Course":
        """Create Course instance from Cassandra row."""
        return cls(
            id=row.id,
            title=row.title,
            slug=row.slug,
            description=row.description,
            thumbnail_url=row.thumbnail_url,
            status=row.status,
            instructor_id=row.instructor_id,
            price=row.price,
            currency=row.currency,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_summary(self) -> dict[str, Any]:
        """Fields embedded in enrollment listings."""
        return {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "thumbnail_url": self.thumbnail_url,
            "price": self.price,
            "currency": self.currency,
        }

    def __repr__(self) -> str:
        return f"<Course {self.title} ({self.status})>"


@dataclass(frozen=True)
class CourseLesson:
    """A lesson's place in the course structure."""

    course_id: UUID
    unit_position: int
    lesson_position: int
    lesson_id: str
    title: str = ""
    unit_title: str = ""
    lesson_type: str = LessonType.VIDEO.value
    duration_minutes: int = 0

    @classmethod
    def from_row(cls, row: Any) -> "CourseLesson":
        return cls(
            course_id=row.course_id,
            unit_position=row.unit_position,
            lesson_position=row.lesson_position,
            lesson_id=row.lesson_id,
            title=row.title or "",
            unit_title=row.unit_title or "",
            lesson_type=row.lesson_type or LessonType.VIDEO.value,
            duration_minutes=row.duration_minutes or 0,
        )


@dataclass(frozen=True)
class CourseStructure:
    """Live aggregates over a course's lessons."""

    total_lessons: int
    total_duration_minutes: int
    first_lesson_id: str | None
