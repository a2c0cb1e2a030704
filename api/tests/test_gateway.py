"""Tests for the payment gateway and code runner HTTP clients."""

from decimal import Decimal

import httpx
import orjson
import pytest

from src.core.exceptions import DependencyError, DependencyTimeoutError
from src.payments.gateway import (
    PaymentGateway,
    from_minor_units,
    hmac_sha256_hex,
    to_minor_units,
)
from src.progress.runner import CodeRunnerClient

from helpers import body_signature, checkout_signature


GATEWAY_URL = "https://gateway.test/v1"
RUNNER_URL = "http://runner.test"


def _gateway(handler, **overrides) -> PaymentGateway:
    options = {
        "base_url": GATEWAY_URL,
        "key_id": "rzp_test_key",
        "key_secret": "key-secret",
        "webhook_secret": "hook-secret",
        "transport": httpx.MockTransport(handler),
    }
    options.update(overrides)
    return PaymentGateway(**options)


def _runner(handler) -> CodeRunnerClient:
    return CodeRunnerClient(
        base_url=RUNNER_URL, timeout=5.0, transport=httpx.MockTransport(handler)
    )


def _unused(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


class TestMinorUnits:
    @pytest.mark.parametrize(
        "amount,expected",
        [
            (Decimal("499"), 49900),
            (Decimal("499.99"), 49999),
            (Decimal("0.005"), 1),
            (Decimal("10.004"), 1000),
        ],
    )
    def test_to_minor_units(self, amount, expected) -> None:
        assert to_minor_units(amount) == expected

    def test_from_minor_units(self) -> None:
        assert from_minor_units(49999) == Decimal("499.99")


class TestSignatures:
    def test_checkout_signature(self) -> None:
        gateway = _gateway(_unused)
        signature = checkout_signature("order_1", "pay_1", "key-secret")

        assert gateway.verify_signature("order_1", "pay_1", signature) is True
        assert gateway.verify_signature("order_1", "pay_2", signature) is False
        assert gateway.verify_signature("order_1", "pay_1", "") is False
        assert gateway.verify_signature("order_1", "pay_1", signature.upper()) is False

    def test_empty_secret_never_verifies(self) -> None:
        gateway = _gateway(_unused, key_secret="", webhook_secret="")
        signature = hmac_sha256_hex("", b"order_1|pay_1")

        assert gateway.verify_signature("order_1", "pay_1", signature) is False
        assert gateway.verify_webhook_signature(b"{}", hmac_sha256_hex("", b"{}")) is False

    def test_webhook_signature_over_raw_body(self) -> None:
        gateway = _gateway(_unused)
        body = b'{"event":"payment.captured"}'
        signature = body_signature(body, "hook-secret")

        assert gateway.verify_webhook_signature(body, signature) is True
        # Same JSON, different bytes
        assert gateway.verify_webhook_signature(b'{"event": "payment.captured"}', signature) is False
        assert gateway.verify_webhook_signature(body, body_signature(body, "key-secret")) is False


class TestCreateOrder:
    @pytest.mark.asyncio
    async def test_posts_minor_units(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["authorization"]
            seen["body"] = orjson.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "id": "order_abc",
                    "amount": seen["body"]["amount"],
                    "currency": "INR",
                    "receipt": seen["body"]["receipt"],
                    "status": "created",
                    "notes": seen["body"]["notes"],
                },
            )

        order = await _gateway(handler).create_order(
            Decimal("499.50"), "INR", notes={"user_id": "u1"}
        )

        assert seen["path"] == "/v1/orders"
        assert seen["auth"].startswith("Basic ")
        assert seen["body"]["amount"] == 49950
        assert seen["body"]["receipt"].startswith("receipt_")
        assert order.id == "order_abc"
        assert order.amount == 49950
        assert order.amount_major == Decimal("499.50")
        assert order.notes == {"user_id": "u1"}

    @pytest.mark.asyncio
    async def test_gateway_error(self) -> None:
        gateway = _gateway(lambda request: httpx.Response(400, json={"error": "bad"}))

        with pytest.raises(DependencyError) as exc_info:
            await gateway.create_order(Decimal("10"), "INR")

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_malformed_order(self) -> None:
        gateway = _gateway(lambda request: httpx.Response(200, json={"amount": 100}))

        with pytest.raises(DependencyError, match="malformed order"):
            await gateway.create_order(Decimal("1"), "INR")

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(DependencyTimeoutError) as exc_info:
            await _gateway(handler).create_order(Decimal("1"), "INR")

        assert exc_info.value.status_code == 504

    @pytest.mark.asyncio
    async def test_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(DependencyError, match="unreachable"):
            await _gateway(handler).create_order(Decimal("1"), "INR")


class TestFetchPayment:
    @pytest.mark.asyncio
    async def test_amount_in_major_units(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/payments/pay_123"
            return httpx.Response(
                200, json={"id": "pay_123", "amount": 49900, "currency": "INR"}
            )

        payment = await _gateway(handler).fetch_payment("pay_123")

        assert payment["amount"] == Decimal("499")
        assert payment["currency"] == "INR"

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        gateway = _gateway(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(DependencyError, match="invalid JSON"):
            await gateway.fetch_payment("pay_123")

    @pytest.mark.asyncio
    async def test_missing_amount(self) -> None:
        gateway = _gateway(lambda request: httpx.Response(200, json={"id": "pay_123"}))

        with pytest.raises(DependencyError, match="malformed payment"):
            await gateway.fetch_payment("pay_123")


class TestCodeRunner:
    """Tests for CodeRunnerClient."""

    CASES = [
        {"input": "1 2", "expected_output": "3"},
        {"input": "2 2", "expected_output": "4"},
    ]

    @pytest.mark.asyncio
    async def test_results_in_order(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = orjson.loads(request.content)
            assert request.url.path == "/run"
            assert body["language"] == "python"
            assert body["test_cases"] == self.CASES
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"passed": True, "actual_output": "3"},
                        {"passed": False, "actual_output": "5"},
                    ]
                },
            )

        results = await _runner(handler).run("code", "python", self.CASES)

        assert [r.passed for r in results] == [True, False]
        assert results[1].actual_output == "5"

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(DependencyTimeoutError):
            await _runner(handler).run("code", "python", self.CASES)

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        runner = _runner(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(DependencyError, match="500"):
            await runner.run("code", "python", self.CASES)

    @pytest.mark.asyncio
    async def test_malformed_results(self) -> None:
        runner = _runner(lambda request: httpx.Response(200, json={"output": "3"}))

        with pytest.raises(DependencyError, match="malformed"):
            await runner.run("code", "python", self.CASES)

    @pytest.mark.asyncio
    async def test_result_count_mismatch(self) -> None:
        runner = _runner(
            lambda request: httpx.Response(200, json={"results": [{"passed": True}]})
        )

        with pytest.raises(DependencyError, match="mismatch"):
            await runner.run("code", "python", self.CASES)
