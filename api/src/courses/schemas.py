"""Pydantic schemas for courses."""

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class CourseSummary(BaseModel):
    """Course fields embedded in enrollment and dashboard responses."""

    id: UUID
    title: str
    slug: str
    thumbnail_url: str | None = None
    price: Decimal = Decimal(0)
    currency: str = "INR"


class CreateLessonRequest(BaseModel):
    """A lesson entry used when seeding a course structure."""

    lesson_id: str = Field(..., min_length=1, max_length=100)
    title: str = Field(..., min_length=1, max_length=200)
    lesson_type: str = "video"
    duration_minutes: int = Field(default=0, ge=0)


class CreateUnitRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    lessons: list[CreateLessonRequest] = Field(default_factory=list)


class CreateCourseRequest(BaseModel):
    """Course definition used by the seeding script and tests."""

    title: str = Field(..., min_length=3, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    thumbnail_url: str | None = None
    price: Decimal = Field(default=Decimal(0), ge=0, decimal_places=2)
    currency: str = Field(default="INR", min_length=3, max_length=3)
    units: list[CreateUnitRequest] = Field(default_factory=list)
