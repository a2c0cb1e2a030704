"""Razorpay payment gateway client.

Only the three calls the payment flow needs are implemented: order creation,
payment lookup and signature verification. Gateway amounts are in the
smallest currency unit (paise for INR).
"""

import hashlib
import hmac
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx
import structlog

from src.core.exceptions import DependencyError, DependencyTimeoutError


logger = structlog.get_logger(__name__)

MINOR_UNITS = 100


def to_minor_units(amount: Decimal) -> int:
    """Major currency amount to gateway units, halves rounded up."""
    return int((amount * MINOR_UNITS).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return Decimal(amount) / MINOR_UNITS


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class GatewayOrder:
    id: str
    amount: int
    currency: str
    receipt: str
    status: str = "created"
    notes: dict[str, str] = field(default_factory=dict)

    @property
    def amount_major(self) -> Decimal:
        return from_minor_units(self.amount)


class PaymentGateway:
    """HTTP client for the payment gateway, with a bounded timeout.

    Args:
        base_url: Gateway API root, e.g. ``https://api.razorpay.com/v1``
        key_id: Public key id (basic auth user)
        key_secret: Secret used for basic auth and payment signatures
        webhook_secret: Secret used for webhook signatures
        timeout: Seconds before a call fails with DependencyTimeoutError
        transport: Optional httpx transport (tests)
    """

    def __init__(
        self,
        base_url: str,
        key_id: str,
        key_secret: str,
        webhook_secret: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self._transport = transport

    async def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            logger.error("payment_gateway_timeout", path=path, timeout=self.timeout)
            raise DependencyTimeoutError("Payment gateway timed out") from e
        except httpx.RequestError as e:
            logger.error("payment_gateway_request_error", path=path, error=str(e))
            raise DependencyError("Payment gateway unreachable") from e

        if response.status_code != httpx.codes.OK:
            logger.error(
                "payment_gateway_failed",
                path=path,
                status_code=response.status_code,
                response_text=response.text[:500],
            )
            raise DependencyError(f"Payment gateway error: {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise DependencyError("Payment gateway returned invalid JSON") from e

    async def create_order(
        self,
        amount: Decimal,
        currency: str,
        notes: dict[str, str] | None = None,
    ) -> GatewayOrder:
        """Create an order for ``amount`` (major units).

        Raises:
            DependencyError: The gateway rejected or failed the request
        """
        payload = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": f"receipt_{int(time.time() * 1000)}",
            "notes": notes or {},
        }
        data = await self._request("POST", "/orders", json=payload)

        try:
            order = GatewayOrder(
                id=data["id"],
                amount=int(data["amount"]),
                currency=data.get("currency", currency),
                receipt=data.get("receipt", payload["receipt"]),
                status=data.get("status", "created"),
                notes=data.get("notes") or {},
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DependencyError("Payment gateway returned a malformed order") from e

        logger.info("payment_order_created", order_id=order.id, amount=order.amount)
        return order

    async def fetch_payment(self, payment_id: str) -> dict[str, Any]:
        """Look up a payment. ``amount`` is converted to major units."""
        data = await self._request("GET", f"/payments/{payment_id}")
        try:
            return {**data, "amount": from_minor_units(int(data["amount"]))}
        except (KeyError, TypeError, ValueError) as e:
            raise DependencyError("Payment gateway returned a malformed payment") from e

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Check a checkout signature over ``order_id|payment_id``."""
        if not self.key_secret:
            return False
        expected = hmac_sha256_hex(self.key_secret, f"{order_id}|{payment_id}".encode())
        return hmac.compare_digest(expected.encode(), (signature or "").encode())

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        """Check a webhook signature over the exact raw request body."""
        if not self.webhook_secret:
            return False
        expected = hmac_sha256_hex(self.webhook_secret, raw_body)
        return hmac.compare_digest(expected.encode(), (signature or "").encode())
