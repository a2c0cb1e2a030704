"""Tests for email delivery and background notification dispatch."""

import base64
from decimal import Decimal
from email import message_from_bytes
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from src.auth.models import User
from src.courses.models import Course
from src.notifications import EmailService, NotificationDispatcher
from src.notifications.schemas import EmailRecipient, SendEmailRequest, SendEmailResponse
from src.notifications.templates import render_course_welcome, render_payment_receipt


@pytest.fixture
def user() -> User:
    return User(email="asha@example.com", name="Asha <Learner>")


@pytest.fixture
def course() -> Course:
    return Course(id=uuid4(), title="Python Foundations", price=Decimal("499.00"))


@pytest.fixture
def email_service() -> MagicMock:
    service = MagicMock(spec=EmailService)
    service.send_email = AsyncMock(
        return_value=SendEmailResponse(success=True, message_id="msg123")
    )
    return service


class TestTemplates:
    def test_payment_receipt(self) -> None:
        html, text = render_payment_receipt(
            user_name="Asha",
            amount=Decimal("499"),
            currency="INR",
            payment_id="pay_1",
            order_id="order_1",
            course_title="Python Foundations",
            dashboard_url="http://frontend.test/dashboard",
        )

        assert "INR 499.00" in html
        assert "pay_1" in html
        assert "Python Foundations" in html
        assert "http://frontend.test/dashboard" in html
        assert text.startswith("Payment Successful - codeElevateX")
        assert "Order ID: order_1" in text

    def test_receipt_without_course(self) -> None:
        html, text = render_payment_receipt(
            user_name="Asha",
            amount=Decimal(0),
            currency="INR",
            payment_id="pay_1",
            order_id="order_1",
            course_title=None,
            dashboard_url="http://frontend.test/dashboard",
        )

        assert "Course:" not in text
        assert "INR 0.00" in text

    def test_course_welcome_escapes_names(self) -> None:
        html, text = render_course_welcome(
            user_name="<script>x</script>",
            course_title="C & C++",
            total_lessons=12,
            course_url="http://frontend.test/course/abc",
        )

        assert "<script>" not in html
        assert "C &amp; C++" in html
        assert "12" in html
        assert "The course has 12 lesson(s)." in text


class TestEmailService:
    """Tests for the Gmail sender."""

    @pytest.mark.asyncio
    async def test_missing_credentials(self) -> None:
        service = EmailService(
            credentials_path="/nonexistent/credentials.json",
            sender_address="noreply@codeelevatex.test",
        )

        response = await service.send_email(
            SendEmailRequest(
                to=[EmailRecipient(email="asha@example.com")],
                subject="Hello",
                body_html="<p>Hello</p>",
            )
        )

        assert response.success is False
        assert "credentials" in response.error

    @pytest.mark.asyncio
    async def test_sends_raw_message(self) -> None:
        gmail = MagicMock()
        send = gmail.users.return_value.messages.return_value.send
        send.return_value.execute.return_value = {"id": "m1", "threadId": "t1"}

        with patch.object(EmailService, "_get_service", return_value=gmail):
            service = EmailService(
                credentials_path="/fake/path.json",
                sender_address="noreply@codeelevatex.test",
            )
            response = await service.send_email(
                SendEmailRequest(
                    to=[EmailRecipient(email="asha@example.com", name="Asha")],
                    subject="Payment Successful - codeElevateX",
                    body_html="<p>Paid</p>",
                    body_text="Paid",
                )
            )

        assert response.success is True
        assert response.message_id == "m1"
        assert response.thread_id == "t1"

        raw = send.call_args.kwargs["body"]["raw"]
        message = message_from_bytes(base64.urlsafe_b64decode(raw))
        assert message["To"] == "Asha <asha@example.com>"
        assert message["From"] == "codeElevateX <noreply@codeelevatex.test>"
        assert message["Subject"] == "Payment Successful - codeElevateX"


class TestNotificationDispatcher:
    @pytest.mark.asyncio
    async def test_send_without_email_service(self) -> None:
        dispatcher = NotificationDispatcher(None, "http://frontend.test")

        assert await dispatcher.send("a@example.com", "Hi", "<p>Hi</p>") is False

    @pytest.mark.asyncio
    async def test_payment_receipt_is_background(self, email_service, user, course) -> None:
        dispatcher = NotificationDispatcher(email_service, "http://frontend.test/")

        dispatcher.payment_receipt(
            user,
            amount=Decimal("499.00"),
            currency="INR",
            payment_id="pay_1",
            order_id="order_1",
            course=course,
        )
        assert dispatcher.pending == 1

        await dispatcher.drain()

        assert dispatcher.pending == 0
        request = email_service.send_email.await_args.args[0]
        assert request.subject == "Payment Successful - codeElevateX"
        assert request.to[0].email == "asha@example.com"
        assert "http://frontend.test/dashboard" in request.body_html

    @pytest.mark.asyncio
    async def test_course_welcome(self, email_service, user, course) -> None:
        dispatcher = NotificationDispatcher(email_service, "http://frontend.test")

        dispatcher.course_welcome(user, course, total_lessons=8)
        await dispatcher.drain()

        request = email_service.send_email.await_args.args[0]
        assert request.subject == "Welcome to Python Foundations - codeElevateX"
        assert f"http://frontend.test/course/{course.id}" in request.body_html
        assert "Asha &lt;Learner&gt;" in request.body_html

    @pytest.mark.asyncio
    async def test_delivery_failure_is_contained(self, email_service) -> None:
        email_service.send_email.side_effect = RuntimeError("smtp down")
        dispatcher = NotificationDispatcher(email_service, "http://frontend.test")

        task = dispatcher.dispatch("a@example.com", "Hi", "<p>Hi</p>")
        await dispatcher.drain()

        assert task.done()
        assert task.exception() is None
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_rejected_delivery_returns_false(self, email_service) -> None:
        email_service.send_email.return_value = SendEmailResponse(
            success=False, error="Gmail API error"
        )
        dispatcher = NotificationDispatcher(email_service, "http://frontend.test")

        assert await dispatcher.send("a@example.com", "Hi", "<p>Hi</p>") is False

    @pytest.mark.asyncio
    async def test_drain_with_nothing_pending(self) -> None:
        dispatcher = NotificationDispatcher(None, "http://frontend.test")

        await dispatcher.drain()

        assert dispatcher.pending == 0
