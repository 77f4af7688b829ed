"""Payment gateway integration.

Wraps the Razorpay Python SDK. All amounts are in paise (INR). The SDK is
synchronous, so every network call runs in a worker thread. Signature checks
are local and go through the SDK's utility helpers.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from staybook.core.config import Settings
from staybook.core.errors import GatewayError

logger = logging.getLogger(__name__)

CAPTURED = "captured"


@dataclass(frozen=True)
class GatewayOrder:
    id: str
    amount_paise: int
    currency: str


@dataclass(frozen=True)
class GatewayPayment:
    id: str
    status: str  # created / authorized / captured / refunded / failed
    amount_paise: int
    method: str | None
    created_at: datetime | None


@dataclass(frozen=True)
class GatewayRefund:
    id: str
    amount_paise: int


class PaymentGateway(Protocol):
    key_id: str

    async def create_order(self, amount_paise: int, currency: str, receipt: str) -> GatewayOrder: ...

    async def fetch_payment(self, payment_id: str) -> GatewayPayment: ...

    async def refund(self, payment_id: str, amount_paise: int) -> GatewayRefund: ...

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool: ...

    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool: ...


class RazorpayGateway:
    def __init__(self, settings: Settings):
        import razorpay

        self.key_id = settings.razorpay_key_id
        self._webhook_secret = settings.razorpay_webhook_secret
        self._client = razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))
        self._signature_error = razorpay.errors.SignatureVerificationError
        self._errors = (
            razorpay.errors.BadRequestError,
            razorpay.errors.GatewayError,
            razorpay.errors.ServerError,
            OSError,  # requests' connection errors
        )

    async def _call(self, description: str, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except self._errors as exc:
            logger.error("Razorpay %s failed: %s", description, exc)
            raise GatewayError(f"Payment gateway {description} failed: {exc}") from exc

    async def create_order(self, amount_paise: int, currency: str, receipt: str) -> GatewayOrder:
        data = await self._call(
            "order creation",
            self._client.order.create,
            {"amount": amount_paise, "currency": currency, "receipt": receipt, "payment_capture": 1},
        )
        return GatewayOrder(id=data["id"], amount_paise=int(data["amount"]), currency=data["currency"])

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        data = await self._call("payment fetch", self._client.payment.fetch, payment_id)
        created = data.get("created_at")
        return GatewayPayment(
            id=data["id"],
            status=data["status"],
            amount_paise=int(data["amount"]),
            method=data.get("method"),
            created_at=datetime.fromtimestamp(created, UTC) if created else None,
        )

    async def refund(self, payment_id: str, amount_paise: int) -> GatewayRefund:
        data = await self._call("refund", self._client.payment.refund, payment_id, {"amount": amount_paise})
        return GatewayRefund(id=data["id"], amount_paise=int(data["amount"]))

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Checkout callback signature, keyed with the API key secret."""
        try:
            self._client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature or "",
                }
            )
        except self._signature_error:
            return False
        return True

    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool:
        """Webhook signature covers the raw body and uses the separate webhook secret."""
        if not self._webhook_secret or not signature:
            return False
        try:
            self._client.utility.verify_webhook_signature(body.decode(), signature, self._webhook_secret)
        except (self._signature_error, UnicodeDecodeError):
            return False
        return True
