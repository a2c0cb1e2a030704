"""Payment API endpoints.

Provides routes for:
- Gateway order creation
- Checkout verification (enrolls the payer)
- Gateway webhook
"""

from fastapi import APIRouter, Header, Request

from src.auth.dependencies import CurrentUser
from src.enrollments.schemas import ApiResponse, EnrollmentResponse

from .dependencies import PaymentServiceDep
from .schemas import (
    CreateOrderRequest,
    OrderResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookResponse,
)


router = APIRouter(prefix="/v1/payments", tags=["payments"])


@router.post(
    "/orders",
    response_model=ApiResponse[OrderResponse],
    summary="Create a payment order",
)
async def create_order(
    data: CreateOrderRequest,
    service: PaymentServiceDep,
    user: CurrentUser,
) -> ApiResponse[OrderResponse]:
    order = await service.create_order(
        user_id=user.id,
        amount=data.amount,
        currency=data.currency,
        course_id=data.course_id,
    )
    return ApiResponse(
        message="Order created",
        data=OrderResponse(
            id=order.id,
            amount=order.amount,
            currency=order.currency,
            receipt=order.receipt,
            status=order.status,
            notes=order.notes,
            key_id=service.gateway.key_id or None,
        ),
    )


@router.post(
    "/verify",
    response_model=ApiResponse[VerifyPaymentResponse],
    summary="Verify a completed checkout",
)
async def verify_payment(
    data: VerifyPaymentRequest,
    service: PaymentServiceDep,
    user: CurrentUser,
) -> ApiResponse[VerifyPaymentResponse]:
    """Verify the checkout signature and enroll the caller.

    Confirmation emails are queued in the background and never delay or fail
    this response.
    """
    result = await service.verify_payment(
        user_id=user.id,
        order_id=data.order_id,
        payment_id=data.payment_id,
        signature=data.signature,
        course_id=data.course_id,
    )
    return ApiResponse(
        message="Payment verified successfully",
        data=VerifyPaymentResponse(
            order_id=result.order_id,
            payment_id=result.payment_id,
            amount=result.amount,
            currency=result.currency,
            amount_verified=result.amount_verified,
            enrollment_created=result.created,
            enrollment=(
                EnrollmentResponse.from_entity(result.enrollment)
                if result.enrollment
                else None
            ),
        ),
    )


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Payment gateway webhook",
)
async def payment_webhook(
    request: Request,
    service: PaymentServiceDep,
    x_razorpay_signature: str = Header(default=""),
) -> WebhookResponse:
    """Gateway callback, authenticated by an HMAC over the raw body."""
    outcome = await service.handle_webhook(await request.body(), x_razorpay_signature)
    return WebhookResponse(event=outcome.event, handled=outcome.handled)
