# points_ledger/clients/payment_gateway.py

"""
Единый интерфейс платежного шлюза.

Провайдеры возвращают суммы в разных единицах (копейки/kobo против наир)
и разными словарями статусов. Адаптер убирает эти различия: остальная
система работает с одной валютной единицей и тремя исходами.
Новый провайдер = новая реализация PaymentGateway, логика журнала не меняется.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping

import httpx

from points_ledger.core.config import settings
from points_ledger.core.exceptions import GatewayError, GatewayUnavailable

logger = logging.getLogger(__name__)

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_FAILED = "failed"
OUTCOME_PENDING = "pending"


@dataclass(frozen=True)
class InitializeResult:
    checkout_url: str
    provider_handle: str


@dataclass(frozen=True)
class VerifyResult:
    outcome: str
    amount_major: Decimal
    currency: str | None = None
    channel: str | None = None
    paid_at: str | None = None
    provider_transaction_id: str | None = None
    raw_status: str | None = None
    extra: dict = field(default_factory=dict)


def to_decimal(value: Any) -> Decimal:
    """Переводит сумму из ответа провайдера в Decimal, иначе - GatewayError."""
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise GatewayError(f"Malformed amount in gateway response: {value!r}")


class PaymentGateway(ABC):
    """
    Базовый асинхронный клиент провайдера.
    Сетевые ошибки превращаются в GatewayUnavailable, HTTP 4xx/5xx и
    некорректные ответы - в GatewayError.
    """
    name: str = "gateway"

    def __init__(self, base_url: str, secret_key: str, timeout: float | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        timeouts = httpx.Timeout(timeout or settings.GATEWAY_TIMEOUT_SECONDS)
        self.async_client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
            },
            timeout=timeouts,
            transport=transport,
        )

    async def _request(self, method: str, endpoint: str, **kwargs) -> dict:
        try:
            response = await self.async_client.request(method, endpoint, **kwargs)
            response.raise_for_status()
        except httpx.RequestError as e:
            logger.error(f"[{self.name}] Network error during {method} request to {e.request.url!r}.", exc_info=True)
            raise GatewayUnavailable(f"{self.name} is unreachable")
        except httpx.HTTPStatusError as e:
            logger.error(f"[{self.name}] HTTP error during {method} request to {e.request.url!r}: {e.response.text}")
            raise GatewayError(f"{self.name} request failed ({e.response.status_code})")

        try:
            body = response.json()
        except ValueError:
            raise GatewayError(f"{self.name} returned a non-JSON response")
        if not isinstance(body, dict):
            raise GatewayError(f"{self.name} returned an unexpected response")
        return body

    async def aclose(self):
        await self.async_client.aclose()

    @abstractmethod
    async def initialize(
        self,
        amount_major: Decimal,
        currency: str,
        reference: str,
        customer_email: str,
        redirect_url: str,
        metadata: dict,
    ) -> InitializeResult:
        """Создает сессию оплаты. `reference` передается провайдеру без изменений."""

    @abstractmethod
    async def verify(self, reference: str) -> VerifyResult:
        """Авторитетный ответ провайдера о платеже по нашей ссылке."""

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        ...

    @abstractmethod
    def parse_webhook_reference(self, payload: dict) -> str | None:
        """Ссылка на покупку из события об успешной оплате, иначе None."""


def build_payment_gateway(provider: str | None = None,
                          transport: httpx.AsyncBaseTransport | None = None) -> PaymentGateway:
    """Фабрика адаптеров по настройке PAYMENT_PROVIDER."""
    from points_ledger.clients.flutterwave import FlutterwaveGateway
    from points_ledger.clients.paystack import PaystackGateway

    provider = (provider or settings.PAYMENT_PROVIDER).lower()
    if provider == PaystackGateway.name:
        return PaystackGateway(
            base_url=settings.PAYSTACK_BASE_URL,
            secret_key=settings.PAYSTACK_SECRET_KEY,
            transport=transport,
        )
    if provider == FlutterwaveGateway.name:
        return FlutterwaveGateway(
            base_url=settings.FLUTTERWAVE_BASE_URL,
            secret_key=settings.FLUTTERWAVE_SECRET_KEY,
            webhook_hash=settings.FLUTTERWAVE_WEBHOOK_HASH,
            transport=transport,
        )
    raise ValueError(f"Unknown payment provider: {provider}")


class GatewayPool:
    """
    Адаптеры по имени провайдера. Покупку подтверждает тот провайдер,
    через который она создана, даже если PAYMENT_PROVIDER с тех пор сменился.
    Адаптеры создаются по требованию и закрываются вместе.
    """

    def __init__(self, gateways: list[PaymentGateway] | None = None,
                 factory: Callable[[str], PaymentGateway] = build_payment_gateway):
        self._gateways = {g.name: g for g in gateways or []}
        self._factory = factory

    def get(self, provider: str) -> PaymentGateway:
        gateway = self._gateways.get(provider)
        if gateway is None:
            try:
                gateway = self._factory(provider)
            except ValueError:
                logger.error(f"No payment adapter configured for provider '{provider}'")
                raise GatewayError(f"Payment provider '{provider}' is not supported")
            self._gateways[provider] = gateway
        return gateway

    async def aclose(self):
        for gateway in self._gateways.values():
            await gateway.aclose()
        self._gateways.clear()


def parse_paid_at(value: Any) -> str | None:
    """Нормализует время оплаты к ISO-строке; неизвестный формат отдаем как есть."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)
