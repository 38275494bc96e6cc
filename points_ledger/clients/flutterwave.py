# points_ledger/clients/flutterwave.py

import hmac
import logging
from typing import Mapping

import httpx

from points_ledger.clients.payment_gateway import (
    OUTCOME_FAILED, OUTCOME_PENDING, OUTCOME_SUCCEEDED,
    InitializeResult, PaymentGateway, VerifyResult, parse_paid_at, to_decimal,
)
from points_ledger.core.exceptions import GatewayError

logger = logging.getLogger(__name__)

FLUTTERWAVE_STATUS_MAP = {
    "successful": OUTCOME_SUCCEEDED,
    "failed": OUTCOME_FAILED,
    "cancelled": OUTCOME_FAILED,
}


class FlutterwaveGateway(PaymentGateway):
    """Адаптер Flutterwave. Суммы уже в наирах (мажорные единицы)."""
    name = "flutterwave"

    def __init__(self, base_url: str, secret_key: str, webhook_hash: str = "",
                 timeout: float | None = None, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(base_url, secret_key, timeout=timeout, transport=transport)
        self.webhook_hash = webhook_hash

    async def initialize(self, amount_major, currency, reference, customer_email, redirect_url, metadata) -> InitializeResult:
        payload = {
            "tx_ref": reference,
            "amount": str(amount_major),
            "currency": currency,
            "redirect_url": redirect_url,
            "payment_options": "card,banktransfer,ussd,account",
            "customer": {
                "email": customer_email,
                "name": customer_email.split("@")[0],
            },
            "customizations": {
                "title": "Point Purchase",
                "description": f"Purchase {metadata.get('points_amount', '')} points",
            },
            "meta": metadata,
        }
        body = await self._request("POST", "/payments", json=payload)
        data = body.get("data") or {}
        if body.get("status") != "success" or not data.get("link"):
            raise GatewayError(f"Flutterwave initialize failed: {body.get('message')}")

        logger.info(f"Flutterwave payment initialized for tx_ref {reference}")
        return InitializeResult(checkout_url=data["link"], provider_handle=data["link"])

    async def verify(self, reference: str) -> VerifyResult:
        body = await self._request("GET", "/transactions/verify_by_reference", params={"tx_ref": reference})
        data = body.get("data")
        if body.get("status") != "success" or not isinstance(data, dict):
            raise GatewayError(f"Flutterwave verify failed: {body.get('message')}")

        if data.get("tx_ref") and data["tx_ref"] != reference:
            raise GatewayError("Flutterwave returned a transaction for another reference")

        raw_status = str(data.get("status") or "").lower()
        return VerifyResult(
            outcome=FLUTTERWAVE_STATUS_MAP.get(raw_status, OUTCOME_PENDING),
            amount_major=to_decimal(data.get("amount")),
            currency=data.get("currency"),
            channel=data.get("payment_type"),
            paid_at=parse_paid_at(data.get("created_at")),
            provider_transaction_id=str(data["id"]) if data.get("id") is not None else None,
            raw_status=raw_status,
            extra={"flw_ref": data.get("flw_ref")},
        )

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        # Flutterwave не подписывает тело, а присылает заранее заданный секрет в заголовке
        received = headers.get("verif-hash")
        if not received or not self.webhook_hash:
            return False
        return hmac.compare_digest(received, self.webhook_hash)

    def parse_webhook_reference(self, payload: dict) -> str | None:
        data = payload.get("data") or {}
        if payload.get("event") != "charge.completed" or data.get("status") != "successful":
            return None
        return data.get("tx_ref")
