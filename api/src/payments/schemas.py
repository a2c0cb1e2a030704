"""Pydantic schemas for payments."""

from decimal import Decimal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from src.enrollments.schemas import EnrollmentResponse


class CreateOrderRequest(BaseModel):
    """Request to open a gateway order. ``amount`` is in major units."""

    amount: Decimal
    currency: str | None = Field(None, min_length=3, max_length=3)
    course_id: UUID | None = Field(
        None, validation_alias=AliasChoices("course_id", "courseId")
    )


class OrderResponse(BaseModel):
    """Gateway order, as the checkout widget expects it."""

    id: str
    amount: int = Field(description="Smallest currency unit")
    currency: str
    receipt: str
    status: str
    notes: dict[str, str] = Field(default_factory=dict)
    key_id: str | None = Field(None, description="Public key for the checkout widget")


class VerifyPaymentRequest(BaseModel):
    """Checkout confirmation. Accepts the gateway's own field names too."""

    order_id: str = Field(
        "", validation_alias=AliasChoices("order_id", "razorpay_order_id")
    )
    payment_id: str = Field(
        "", validation_alias=AliasChoices("payment_id", "razorpay_payment_id")
    )
    signature: str = Field(
        "", validation_alias=AliasChoices("signature", "razorpay_signature")
    )
    course_id: UUID | None = Field(
        None, validation_alias=AliasChoices("course_id", "courseId")
    )


class VerifyPaymentResponse(BaseModel):
    order_id: str
    payment_id: str
    amount: Decimal
    currency: str
    amount_verified: bool
    enrollment_created: bool
    enrollment: EnrollmentResponse | None = None


class WebhookResponse(BaseModel):
    status: str = "ok"
    event: str
    handled: bool
