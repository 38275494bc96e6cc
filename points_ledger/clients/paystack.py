# points_ledger/clients/paystack.py

import hashlib
import hmac
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping

from points_ledger.clients.payment_gateway import (
    OUTCOME_FAILED, OUTCOME_PENDING, OUTCOME_SUCCEEDED,
    InitializeResult, PaymentGateway, VerifyResult, parse_paid_at, to_decimal,
)
from points_ledger.core.exceptions import GatewayError

logger = logging.getLogger(__name__)

KOBO_PER_NAIRA = 100

# Статусы Paystack -> наши исходы. Все, что не перечислено, считаем "еще в процессе"
PAYSTACK_STATUS_MAP = {
    "success": OUTCOME_SUCCEEDED,
    "failed": OUTCOME_FAILED,
    "abandoned": OUTCOME_FAILED,
    "reversed": OUTCOME_FAILED,
}


def to_kobo(amount: Decimal) -> int:
    value = Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return int(value * KOBO_PER_NAIRA)


def from_kobo(amount) -> Decimal:
    return (to_decimal(amount) / KOBO_PER_NAIRA).quantize(Decimal("0.01"))


class PaystackGateway(PaymentGateway):
    """
    Адаптер Paystack. Суммы на стороне Paystack - в kobo (минорные единицы).
    """
    name = "paystack"

    async def initialize(self, amount_major, currency, reference, customer_email, redirect_url, metadata) -> InitializeResult:
        payload = {
            "email": customer_email,
            "amount": to_kobo(amount_major),
            "currency": currency,
            "reference": reference,
            "callback_url": redirect_url,
            "metadata": metadata,
        }
        body = await self._request("POST", "/transaction/initialize", json=payload)
        if not body.get("status"):
            raise GatewayError(f"Paystack initialize failed: {body.get('message')}")

        data = body.get("data") or {}
        if not data.get("authorization_url"):
            raise GatewayError("Paystack initialize response has no authorization_url")
        logger.info(f"Paystack transaction initialized for reference {reference}")
        return InitializeResult(
            checkout_url=data["authorization_url"],
            provider_handle=data.get("access_code") or data["authorization_url"],
        )

    async def verify(self, reference: str) -> VerifyResult:
        body = await self._request("GET", f"/transaction/verify/{reference}")
        data = body.get("data")
        if not body.get("status") or not isinstance(data, dict):
            raise GatewayError(f"Paystack verify failed: {body.get('message')}")

        raw_status = str(data.get("status") or "").lower()
        return VerifyResult(
            outcome=PAYSTACK_STATUS_MAP.get(raw_status, OUTCOME_PENDING),
            amount_major=from_kobo(data.get("amount")),
            currency=data.get("currency"),
            channel=data.get("channel"),
            paid_at=parse_paid_at(data.get("paid_at")),
            provider_transaction_id=str(data["id"]) if data.get("id") is not None else None,
            raw_status=raw_status,
            extra={"gateway_response": data.get("gateway_response")},
        )

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        signature = headers.get("x-paystack-signature")
        if not signature or not self.secret_key:
            return False
        digest = hmac.new(self.secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(digest, signature)

    def parse_webhook_reference(self, payload: dict) -> str | None:
        if payload.get("event") != "charge.success":
            return None
        return (payload.get("data") or {}).get("reference")
