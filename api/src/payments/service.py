"""Payment verification service layer.

Business logic for:
- Gateway order creation, remembered in Redis until verification
- Checkout signature verification and amount lookup
- Turning a verified payment into an enrollment
- Gateway webhooks (``payment.captured``)

No state is touched before the signature has been checked. Enrollment
idempotency is owned by EnrollmentService; verifying the same payment twice
relies on it rather than on any bookkeeping here.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

import orjson
import structlog
from redis.exceptions import RedisError

from src.core.context import set_correlation_id
from src.core.exceptions import AuthenticationError, DependencyError, ValidationError
from src.core.redis import pending_order_key
from src.enrollments.schemas import PaymentInfo

from .gateway import GatewayOrder, from_minor_units


if TYPE_CHECKING:
    import redis.asyncio as redis

    from src.auth.models import User
    from src.auth.service import UserService
    from src.courses.models import Course
    from src.courses.service import CourseService
    from src.enrollments.models import Enrollment
    from src.enrollments.service import EnrollmentService
    from src.notifications import NotificationDispatcher

    from .gateway import PaymentGateway

logger = structlog.get_logger(__name__)

PAYMENT_METHOD = "razorpay"
CAPTURED_EVENT = "payment.captured"


@dataclass
class PaymentVerification:
    """Outcome of a verified payment."""

    order_id: str
    payment_id: str
    amount: Decimal
    currency: str
    amount_verified: bool
    enrollment: "Enrollment | None" = None
    created: bool = False


@dataclass
class WebhookOutcome:
    event: str
    handled: bool
    enrollment: "Enrollment | None" = None


class PaymentService:
    """Service for payment orders, verification and webhooks."""

    def __init__(
        self,
        gateway: "PaymentGateway",
        enrollment_service: "EnrollmentService",
        user_service: "UserService",
        course_service: "CourseService",
        dispatcher: "NotificationDispatcher",
        redis_client: "redis.Redis | None" = None,
        default_currency: str = "INR",
        order_ttl_seconds: int = 3600,
    ):
        self.gateway = gateway
        self.enrollments = enrollment_service
        self.users = user_service
        self.courses = course_service
        self.dispatcher = dispatcher
        self.redis = redis_client
        self.default_currency = default_currency
        self.order_ttl_seconds = order_ttl_seconds

    # ==========================================================================
    # Orders
    # ==========================================================================

    async def create_order(
        self,
        user_id: UUID,
        amount: Decimal,
        currency: str | None = None,
        course_id: UUID | None = None,
    ) -> GatewayOrder:
        """Create a gateway order and remember what it pays for.

        Args:
            user_id: Paying user
            amount: Amount in major units (must be > 0)
            currency: ISO currency, defaults to the configured one
            course_id: Course being bought, if any

        Raises:
            ValidationError: Non-positive amount
            CourseNotFoundError: Unknown course
            DependencyError: Gateway failure
        """
        if amount is None or amount <= 0:
            raise ValidationError("Amount must be greater than 0", "invalid_amount")
        if course_id is not None:
            await self.courses.require_course(course_id)

        currency = (currency or self.default_currency).upper()
        order = await self.gateway.create_order(
            amount=amount,
            currency=currency,
            notes={
                "user_id": str(user_id),
                "course_id": str(course_id) if course_id else "",
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )
        await self._remember_order(order, user_id, course_id)
        return order

    async def _remember_order(
        self, order: GatewayOrder, user_id: UUID, course_id: UUID | None
    ) -> None:
        if self.redis is None:
            logger.warning("pending_order_not_stored", order_id=order.id, reason="no_redis")
            return

        record = {
            "user_id": str(user_id),
            "course_id": str(course_id) if course_id else None,
            "amount": order.amount,
            "currency": order.currency,
        }
        try:
            await self.redis.set(
                pending_order_key(order.id),
                orjson.dumps(record).decode(),
                ex=self.order_ttl_seconds,
            )
        except RedisError as e:
            logger.warning("pending_order_not_stored", order_id=order.id, error=str(e))

    async def _pending_order(self, order_id: str) -> dict[str, Any] | None:
        if self.redis is None:
            return None
        try:
            raw = await self.redis.get(pending_order_key(order_id))
        except RedisError as e:
            logger.warning("pending_order_lookup_failed", order_id=order_id, error=str(e))
            return None
        return orjson.loads(raw) if raw else None

    async def _forget_order(self, order_id: str) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.delete(pending_order_key(order_id))
        except RedisError as e:
            logger.warning("pending_order_delete_failed", order_id=order_id, error=str(e))

    async def _course_for_order(self, order_id: str, user_id: UUID) -> UUID | None:
        """Course remembered for an order, if the order was created by this user."""
        pending = await self._pending_order(order_id)
        if not pending or not pending.get("course_id"):
            return None
        if pending.get("user_id") != str(user_id):
            logger.warning("pending_order_user_mismatch", order_id=order_id)
            return None
        return UUID(pending["course_id"])

    # ==========================================================================
    # Verification
    # ==========================================================================

    async def verify_payment(
        self,
        user_id: UUID | None,
        order_id: str,
        payment_id: str,
        signature: str,
        course_id: UUID | None = None,
    ) -> PaymentVerification:
        """Verify a checkout payment and enroll the payer.

        The amount lookup is not a gate: when it fails the payment still
        verifies and 0 is recorded.

        Raises:
            ValidationError: Missing identifiers (before any read)
            AuthenticationError: Signature mismatch (nothing is written)
            UserNotFoundError: Unknown user
            CourseNotFoundError: The course to enroll in does not exist
        """
        if not order_id or not payment_id or not signature:
            raise ValidationError("Missing payment details", "missing_payment_details")
        if user_id is None:
            raise ValidationError("User ID is required", "missing_user_id")

        if not self.gateway.verify_signature(order_id, payment_id, signature):
            logger.warning(
                "payment_signature_invalid", order_id=order_id, payment_id=payment_id
            )
            raise AuthenticationError(
                "Invalid signature. Payment verification failed", "invalid_signature"
            )
        set_correlation_id(order_id)

        amount, currency, amount_verified = await self._charged_amount(payment_id)
        user = await self.users.require_user(user_id)
        course_id = course_id or await self._course_for_order(order_id, user_id)

        verification = PaymentVerification(
            order_id=order_id,
            payment_id=payment_id,
            amount=amount,
            currency=currency,
            amount_verified=amount_verified,
        )

        course = None
        if course_id is not None:
            outcome = await self.enrollments.enroll(
                user_id,
                course_id,
                PaymentInfo(
                    payment_id=payment_id,
                    order_id=order_id,
                    payment_method=PAYMENT_METHOD,
                    amount=amount,
                    currency=currency,
                ),
            )
            verification.enrollment = outcome.enrollment
            verification.created = outcome.created
            course = await self.courses.get_course(course_id)

        logger.info(
            "payment_verified",
            user_id=str(user_id),
            order_id=order_id,
            payment_id=payment_id,
            amount=str(amount),
            amount_verified=amount_verified,
            course_id=str(course_id) if course_id else None,
            enrollment_created=verification.created,
        )

        await self._forget_order(order_id)
        await self._notify(user, verification, course)
        return verification

    async def _charged_amount(self, payment_id: str) -> tuple[Decimal, str, bool]:
        try:
            payment = await self.gateway.fetch_payment(payment_id)
        except DependencyError as e:
            logger.warning(
                "payment_amount_lookup_failed", payment_id=payment_id, error=str(e)
            )
            return Decimal(0), self.default_currency, False
        return payment["amount"], payment.get("currency") or self.default_currency, True

    async def _notify(
        self, user: "User", verification: PaymentVerification, course: "Course | None"
    ) -> None:
        """Queue the receipt, and the welcome email for a new enrollment."""
        try:
            self.dispatcher.payment_receipt(
                user,
                amount=verification.amount,
                currency=verification.currency,
                payment_id=verification.payment_id,
                order_id=verification.order_id,
                course=course,
            )
            if verification.created and course is not None:
                structure = await self.courses.get_structure(course.id)
                self.dispatcher.course_welcome(user, course, structure.total_lessons)
        except Exception as e:
            logger.exception(
                "payment_notification_failed",
                payment_id=verification.payment_id,
                error=str(e),
            )

    # ==========================================================================
    # Webhooks
    # ==========================================================================

    async def handle_webhook(self, raw_body: bytes, signature: str) -> WebhookOutcome:
        """Process a gateway webhook.

        ``payment.captured`` enrolls the payer named in the payment notes (or
        in the remembered order). Other events are acknowledged and ignored.

        Raises:
            AuthenticationError: Signature mismatch over the raw body
            ValidationError: Body is not a JSON object
        """
        if not self.gateway.verify_webhook_signature(raw_body, signature):
            logger.warning("payment_webhook_signature_invalid")
            raise AuthenticationError("Invalid webhook signature", "invalid_signature")

        try:
            payload = orjson.loads(raw_body)
        except orjson.JSONDecodeError as e:
            raise ValidationError("Webhook body is not valid JSON", "invalid_payload") from e
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body must be an object", "invalid_payload")

        event = str(payload.get("event") or "")
        if event != CAPTURED_EVENT:
            logger.info("payment_webhook_ignored", event=event)
            return WebhookOutcome(event=event, handled=False)

        try:
            entity = payload["payload"]["payment"]["entity"]
            payment_id = entity["id"]
            amount = from_minor_units(int(entity["amount"]))
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError("Malformed payment.captured event", "invalid_payload") from e

        order_id = entity.get("order_id")
        set_correlation_id(order_id)
        notes = entity.get("notes")
        user_id, course_id = await self._webhook_target(
            notes if isinstance(notes, dict) else {}, order_id
        )
        logger.info(
            "payment_captured",
            payment_id=payment_id,
            order_id=order_id,
            amount=str(amount),
        )
        if user_id is None or course_id is None:
            logger.warning("payment_webhook_unattributed", payment_id=payment_id)
            return WebhookOutcome(event=event, handled=False)
        if await self.users.get_user(user_id) is None:
            logger.warning(
                "payment_webhook_unknown_user", payment_id=payment_id, user_id=str(user_id)
            )
            return WebhookOutcome(event=event, handled=False)

        outcome = await self.enrollments.enroll(
            user_id,
            course_id,
            PaymentInfo(
                payment_id=payment_id,
                order_id=order_id,
                payment_method=PAYMENT_METHOD,
                amount=amount,
                currency=entity.get("currency") or self.default_currency,
            ),
        )
        return WebhookOutcome(event=event, handled=True, enrollment=outcome.enrollment)

    async def _webhook_target(
        self, notes: dict[str, Any], order_id: str | None
    ) -> tuple[UUID | None, UUID | None]:
        user_ref = notes.get("user_id") or notes.get("userId")
        course_ref = notes.get("course_id") or notes.get("courseId")

        if (not user_ref or not course_ref) and order_id:
            pending = await self._pending_order(order_id) or {}
            user_ref = user_ref or pending.get("user_id")
            course_ref = course_ref or pending.get("course_id")

        try:
            return (
                UUID(str(user_ref)) if user_ref else None,
                UUID(str(course_ref)) if course_ref else None,
            )
        except ValueError:
            logger.warning("payment_webhook_bad_reference", order_id=order_id)
            return None, None


