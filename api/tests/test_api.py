"""HTTP tests for the payment, enrollment and progress routes."""

from uuid import uuid4

import httpx
import orjson
import pytest
import pytest_asyncio

from src.config import get_settings
from src.core.exceptions import DependencyError
from src.main import create_app, wire_services
from src.payments.gateway import PaymentGateway

from helpers import auth_headers, body_signature, checkout_signature


KEY_SECRET = "key-secret"
WEBHOOK_SECRET = "hook-secret"


def _gateway_api(request: httpx.Request) -> httpx.Response:
    if request.method == "POST":
        body = orjson.loads(request.content)
        return httpx.Response(
            200,
            json={
                "id": "order_http",
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "status": "created",
                "notes": body["notes"],
            },
        )
    return httpx.Response(200, json={"id": "pay_http", "amount": 49900, "currency": "INR"})


@pytest_asyncio.fixture
async def api(session, redis_client, code_runner, dispatcher):
    app = create_app()
    gateway = PaymentGateway(
        base_url="https://gateway.test/v1",
        key_id="rzp_test_key",
        key_secret=KEY_SECRET,
        webhook_secret=WEBHOOK_SECRET,
        transport=httpx.MockTransport(_gateway_api),
    )
    wire_services(
        app,
        session,
        get_settings(),
        redis_client=redis_client,
        code_runner=code_runner,
        gateway=gateway,
        dispatcher=dispatcher,
    )
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client


def _verify_body(course_id, order_id: str = "order_http", payment_id: str = "pay_http"):
    return {
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": checkout_signature(order_id, payment_id, KEY_SECRET),
        "courseId": str(course_id),
    }


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, api) -> None:
        response = await api.get("/v1/enrollments/my")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Access token missing"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_admin_route_requires_admin(self, api) -> None:
        response = await api.post(
            f"/v1/admin/enrollments/{uuid4()}/suspend", headers=auth_headers(uuid4())
        )

        assert response.status_code == 403


class TestPaymentRoutes:
    @pytest.mark.asyncio
    async def test_create_order(self, api, make_user, make_course) -> None:
        user = await make_user()
        course = await make_course()

        response = await api.post(
            "/v1/payments/orders",
            json={"amount": "499.00", "courseId": str(course.id)},
            headers=auth_headers(user.id),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Order created"
        assert body["data"]["id"] == "order_http"
        assert body["data"]["amount"] == 49900
        assert body["data"]["key_id"] == "rzp_test_key"

    @pytest.mark.asyncio
    async def test_order_amount_validated(self, api) -> None:
        response = await api.post(
            "/v1/payments/orders", json={"amount": 0}, headers=auth_headers(uuid4())
        )

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_amount"

    @pytest.mark.asyncio
    async def test_verify_enrolls(self, api, dispatcher, make_user, make_course) -> None:
        user = await make_user()
        course = await make_course()

        response = await api.post(
            "/v1/payments/verify",
            json=_verify_body(course.id),
            headers=auth_headers(user.id),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Payment verified successfully"
        data = body["data"]
        assert data["enrollment_created"] is True
        assert data["amount_verified"] is True
        assert data["enrollment"]["course_id"] == str(course.id)
        assert data["enrollment"]["payment_id"] == "pay_http"
        assert data["enrollment"]["progress"]["current_lesson"] == "l1"
        dispatcher.payment_receipt.assert_called_once()

    @pytest.mark.asyncio
    async def test_verify_bad_signature(self, api, session, make_user, make_course) -> None:
        user = await make_user()
        course = await make_course()
        payload = _verify_body(course.id)
        payload["razorpay_signature"] = "f" * 64
        before = list(session.mutations)

        response = await api.post(
            "/v1/payments/verify", json=payload, headers=auth_headers(user.id)
        )

        assert response.status_code == 401
        body = response.json()
        assert body["code"] == "invalid_signature"
        assert body["success"] is False
        assert session.mutations == before

    @pytest.mark.asyncio
    async def test_verify_missing_fields(self, api) -> None:
        response = await api.post(
            "/v1/payments/verify",
            json={"razorpay_order_id": "order_http"},
            headers=auth_headers(uuid4()),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "missing_payment_details"

    @pytest.mark.asyncio
    async def test_webhook(self, api, make_user, make_course) -> None:
        user = await make_user()
        course = await make_course()
        body = orjson.dumps(
            {
                "event": "payment.captured",
                "payload": {
                    "payment": {
                        "entity": {
                            "id": "pay_hook",
                            "amount": 49900,
                            "currency": "INR",
                            "order_id": "order_hook",
                            "notes": {"userId": str(user.id), "courseId": str(course.id)},
                        }
                    }
                },
            }
        )

        response = await api.post(
            "/v1/payments/webhook",
            content=body,
            headers={"X-Razorpay-Signature": body_signature(body, WEBHOOK_SECRET)},
        )

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "event": "payment.captured",
            "handled": True,
        }

    @pytest.mark.asyncio
    async def test_webhook_without_signature(self, api) -> None:
        response = await api.post("/v1/payments/webhook", content=b"{}")

        assert response.status_code == 401


class TestEnrollmentRoutes:
    @pytest.mark.asyncio
    async def test_enroll_twice(self, api, make_user, make_course) -> None:
        user = await make_user()
        course = await make_course()
        headers = auth_headers(user.id)

        first = await api.post(
            "/v1/enrollments", json={"course_id": str(course.id)}, headers=headers
        )
        second = await api.post(
            "/v1/enrollments", json={"course_id": str(course.id)}, headers=headers
        )

        assert first.json()["message"] == "Enrolled successfully"
        assert first.json()["data"]["created"] is True
        assert second.json()["message"] == "Already enrolled"
        assert second.json()["data"]["created"] is False
        assert (
            first.json()["data"]["enrollment"]["id"]
            == second.json()["data"]["enrollment"]["id"]
        )

    @pytest.mark.asyncio
    async def test_enroll_unknown_course(self, api, make_user) -> None:
        user = await make_user()

        response = await api.post(
            "/v1/enrollments",
            json={"course_id": str(uuid4())},
            headers=auth_headers(user.id),
        )

        assert response.status_code == 404
        assert response.json()["code"] == "course_not_found"

    @pytest.mark.asyncio
    async def test_my_enrollments(self, api, enrollment_service, make_user, make_course) -> None:
        user = await make_user()
        course = await make_course(title="Algorithms 101")
        await enrollment_service.enroll(user.id, course.id)

        response = await api.get("/v1/enrollments/my", headers=auth_headers(user.id))

        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data) == 1
        assert data[0]["course"]["title"] == "Algorithms 101"

    @pytest.mark.asyncio
    async def test_unenroll_other_users_enrollment(
        self, api, enrollment_service, make_user, make_course
    ) -> None:
        owner = await make_user()
        intruder = await make_user()
        course = await make_course()
        enrollment = (await enrollment_service.enroll(owner.id, course.id)).enrollment

        response = await api.delete(
            f"/v1/enrollments/{enrollment.id}", headers=auth_headers(intruder.id)
        )

        assert response.status_code == 403
        assert response.json()["code"] == "not_enrollment_owner"
        assert await enrollment_service.get_enrollment(owner.id, course.id) is not None

    @pytest.mark.asyncio
    async def test_unenroll(self, api, enrollment_service, make_user, make_course) -> None:
        user = await make_user()
        course = await make_course()
        enrollment = (await enrollment_service.enroll(user.id, course.id)).enrollment

        response = await api.delete(
            f"/v1/enrollments/{enrollment.id}", headers=auth_headers(user.id)
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Unenrolled successfully"
        assert await enrollment_service.get_enrollment(user.id, course.id) is None

    @pytest.mark.asyncio
    async def test_admin_suspend_and_restore(
        self, api, enrollment_service, make_user, make_course
    ) -> None:
        user = await make_user()
        course = await make_course()
        enrollment = (await enrollment_service.enroll(user.id, course.id)).enrollment
        admin = auth_headers(uuid4(), role="admin")

        suspended = await api.post(
            f"/v1/admin/enrollments/{enrollment.id}/suspend", headers=admin
        )
        again = await api.post(
            f"/v1/admin/enrollments/{enrollment.id}/suspend", headers=admin
        )
        restored = await api.post(
            f"/v1/admin/enrollments/{enrollment.id}/restore", headers=admin
        )

        assert suspended.json()["data"]["status"] == "suspended"
        assert again.status_code == 400
        assert again.json()["code"] == "invalid_status_transition"
        assert restored.json()["data"]["status"] == "active"

    @pytest.mark.asyncio
    async def test_admin_reconcile_course(
        self, api, enrollment_service, course_service, make_user, make_course
    ) -> None:
        course = await make_course()
        user = await make_user()
        await enrollment_service.enroll(user.id, course.id)
        await course_service.increment_enrollments(course.id, 4)

        response = await api.post(
            f"/v1/admin/reconcile/courses/{course.id}",
            headers=auth_headers(uuid4(), role="admin"),
        )

        assert response.json()["data"] == {
            "course_id": str(course.id),
            "previous": 5,
            "actual": 1,
        }


class TestProgressRoutes:
    @pytest.mark.asyncio
    async def test_record_and_read(
        self, api, enrollment_service, make_user, make_course
    ) -> None:
        user = await make_user()
        course = await make_course()
        await enrollment_service.enroll(user.id, course.id)
        headers = auth_headers(user.id)

        recorded = await api.post(
            "/v1/progress/lessons/l1",
            json={
                "course_id": str(course.id),
                "event": {"type": "quiz", "score": 8, "max_score": 10, "time_spent": 120},
            },
            headers=headers,
        )
        course_progress = await api.get(
            f"/v1/progress/courses/{course.id}", headers=headers
        )
        dashboard = await api.get("/v1/progress/dashboard", headers=headers)

        assert recorded.status_code == 200
        data = recorded.json()["data"]
        assert data["lesson"]["status"] == "completed"
        assert data["lesson"]["score"] == 8
        assert data["enrollment"]["total_progress"] == 50
        assert data["enrollment"]["completed_lessons"] == ["l1"]
        assert data["enrollment_status"] == "active"

        summary = course_progress.json()["data"]
        assert summary["overall_percentage"] == 50
        assert summary["total_time_spent"] == 2

        stats = dashboard.json()["data"]
        assert stats["total_courses"] == 1
        assert stats["average_progress"] == 50

    @pytest.mark.asyncio
    async def test_record_unknown_event_type(self, api) -> None:
        response = await api.post(
            "/v1/progress/lessons/l1",
            json={"course_id": str(uuid4()), "event": {"type": "essay"}},
            headers=auth_headers(uuid4()),
        )

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_record_without_enrollment(self, api, make_course) -> None:
        course = await make_course()

        response = await api.post(
            "/v1/progress/lessons/l1",
            json={"course_id": str(course.id), "event": {"type": "status"}},
            headers=auth_headers(uuid4()),
        )

        assert response.status_code == 403
        assert response.json()["code"] == "not_enrolled"

    @pytest.mark.asyncio
    async def test_runner_failure_is_502(
        self, api, code_runner, enrollment_service, make_user, make_course
    ) -> None:
        user = await make_user()
        course = await make_course()
        await enrollment_service.enroll(user.id, course.id)
        code_runner.run.side_effect = DependencyError("Code runner unreachable")

        response = await api.post(
            "/v1/progress/lessons/l1",
            json={
                "course_id": str(course.id),
                "event": {
                    "type": "coding",
                    "problem_id": "p1",
                    "code": "print(1)",
                    "language": "python",
                    "test_cases": [{"expected_output": "1"}],
                },
            },
            headers=auth_headers(user.id),
        )

        assert response.status_code == 502
        assert response.json()["success"] is False
