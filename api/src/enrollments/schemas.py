"""Pydantic schemas for enrollments.

Every endpoint answers with ``{success, message, data}`` where ``data`` is
the persisted state after the operation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.courses.schemas import CourseSummary

from .models import Enrollment


T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Standard envelope."""

    success: bool = True
    message: str
    data: T | None = None


class PaymentInfo(BaseModel):
    """Payment facts recorded on a new enrollment."""

    model_config = ConfigDict(frozen=True)

    payment_id: str | None = None
    order_id: str | None = None
    payment_method: str = "razorpay"
    amount: Decimal | None = Field(default=None, ge=0)
    currency: str | None = None


# ==============================================================================
# Requests
# ==============================================================================


class EnrollRequest(BaseModel):
    course_id: UUID


# ==============================================================================
# Responses
# ==============================================================================


class EnrollmentProgressSummary(BaseModel):
    completed_lessons: list[str] = Field(default_factory=list)
    current_lesson: str | None = None
    total_progress: int = Field(default=0, ge=0, le=100)
    time_spent: int = Field(default=0, description="Seconds")
    last_accessed: datetime | None = None


class EnrollmentResponse(BaseModel):
    """Enrollment as stored."""

    id: UUID
    user_id: UUID
    course_id: UUID
    status: str
    payment_status: str
    payment_method: str | None = None
    payment_id: str | None = None
    order_id: str | None = None
    amount_paid: Decimal
    currency: str | None = None
    access_level: str
    progress: EnrollmentProgressSummary
    enrolled_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_entity(cls, entity: Enrollment) -> "EnrollmentResponse":
        """Create response from entity."""
        return cls.model_validate(entity.to_dict())


class MyEnrollmentResponse(EnrollmentResponse):
    """Enrollment with the course summary, or the bare id if it was deleted."""

    course: CourseSummary | UUID


class EnrollResult(BaseModel):
    enrollment: EnrollmentResponse
    created: bool = Field(description="False when the enrollment already existed")


class MirrorReconcileResponse(BaseModel):
    user_id: UUID
    added: list[UUID]
    removed: list[UUID]


class CounterReconcileResponse(BaseModel):
    course_id: UUID
    previous: int
    actual: int
