"""Fire-and-forget notification dispatch.

Callers hand over a message and move on; delivery runs in a background task
and its failure is only logged. A verified payment or an enrollment is never
rolled back because an email could not be sent.
"""

import asyncio
from decimal import Decimal
from typing import TYPE_CHECKING

from src.core.logging import get_logger

from .schemas import EmailRecipient, SendEmailRequest
from .templates import render_course_welcome, render_payment_receipt


if TYPE_CHECKING:
    from src.auth.models import User
    from src.courses.models import Course

    from .email import EmailService


logger = get_logger(__name__)


class NotificationDispatcher:
    """Sends user-facing notifications without blocking the caller.

    Args:
        email_service: Gmail sender, or None when email is disabled
        frontend_url: Base URL used for links in messages
    """

    def __init__(self, email_service: "EmailService | None", frontend_url: str):
        self.email_service = email_service
        self.frontend_url = frontend_url.rstrip("/")
        self._tasks: set[asyncio.Task] = set()

    async def send(
        self,
        to: str,
        subject: str,
        body_html: str,
        body_text: str | None = None,
        to_name: str | None = None,
    ) -> bool:
        """Deliver one message now. Returns whether it was accepted."""
        if self.email_service is None:
            logger.info("notification_skipped", reason="email_disabled", subject=subject)
            return False

        response = await self.email_service.send_email(
            SendEmailRequest(
                to=[EmailRecipient(email=to, name=to_name)],
                subject=subject,
                body_html=body_html,
                body_text=body_text,
            )
        )
        if not response.success:
            logger.warning("notification_not_delivered", subject=subject, error=response.error)
        return response.success

    def dispatch(
        self,
        to: str,
        subject: str,
        body_html: str,
        body_text: str | None = None,
        to_name: str | None = None,
    ) -> asyncio.Task:
        """Schedule delivery in the background and return immediately.

        The task inherits the caller's context, so its log lines keep the
        originating request id.
        """
        task = asyncio.create_task(
            self._deliver(to, subject, body_html, body_text, to_name)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(
        self,
        to: str,
        subject: str,
        body_html: str,
        body_text: str | None,
        to_name: str | None,
    ) -> None:
        try:
            await self.send(to, subject, body_html, body_text, to_name)
        except Exception as e:
            logger.exception("notification_failed", subject=subject, error=str(e))

    async def drain(self) -> None:
        """Wait for every in-flight delivery (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # ==========================================================================
    # Messages
    # ==========================================================================

    def payment_receipt(
        self,
        user: "User",
        amount: Decimal,
        currency: str,
        payment_id: str,
        order_id: str,
        course: "Course | None" = None,
    ) -> asyncio.Task:
        html, text = render_payment_receipt(
            user_name=user.name,
            amount=amount,
            currency=currency,
            payment_id=payment_id,
            order_id=order_id,
            course_title=course.title if course else None,
            dashboard_url=f"{self.frontend_url}/dashboard",
        )
        return self.dispatch(
            user.email, "Payment Successful - codeElevateX", html, text, user.name
        )

    def course_welcome(
        self, user: "User", course: "Course", total_lessons: int
    ) -> asyncio.Task:
        html, text = render_course_welcome(
            user_name=user.name,
            course_title=course.title,
            total_lessons=total_lessons,
            course_url=f"{self.frontend_url}/course/{course.id}",
        )
        return self.dispatch(
            user.email, f"Welcome to {course.title} - codeElevateX", html, text, user.name
        )
