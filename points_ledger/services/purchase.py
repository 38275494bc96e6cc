# points_ledger/services/purchase.py

"""
Покупка баллов: создание (initiate_purchase) и подтверждение (verify_purchase).

Подтверждение идемпотентно и не зависит от провайдера: вызов клиента
после редиректа, веб-хук и фоновая сверка идут через verify_purchase.
"""

import logging
import math
import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy.orm import Session

from points_ledger.clients.payment_gateway import (
    OUTCOME_FAILED, OUTCOME_SUCCEEDED, GatewayPool, PaymentGateway, VerifyResult,
)
from points_ledger.core.config import settings
from points_ledger.core.exceptions import (
    Forbidden, GatewayError, GatewayUnavailable, IntegrityViolation, PurchaseFailed, PurchaseNotFound,
)
from points_ledger.crud import member as crud_member
from points_ledger.crud import purchase as crud_purchase
from points_ledger.models.ledger import REF_POINT_PURCHASE, TX_PURCHASE
from points_ledger.models.member import Member
from points_ledger.models.purchase import (
    PointPurchase, STATUS_FAILED, STATUS_SUCCESS,
)
from points_ledger.schemas.purchase import (
    PaginatedPurchases, PurchaseCreate, PurchaseInitiated, PurchaseVerification,
)
from points_ledger.services import ledger as ledger_service
from points_ledger.services.catalog import PackageCatalog

logger = logging.getLogger(__name__)


def generate_reference() -> str:
    """Уникальная ссылка покупки: метка времени + 64 бита из CSPRNG."""
    return f"pt_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


# --- Создание покупки ---

async def _initialize_with_retry(gateway: PaymentGateway, **kwargs):
    """
    Повторяет initialize только при сетевых сбоях. Повтор безопасен:
    ссылка та же, а провайдер не создаст по ней второй платеж.
    """
    attempts = 1 + max(settings.GATEWAY_INIT_RETRIES, 0)
    for attempt in range(1, attempts + 1):
        try:
            return await gateway.initialize(**kwargs)
        except GatewayUnavailable:
            if attempt == attempts:
                raise
            logger.warning(f"Gateway initialize attempt {attempt}/{attempts} failed for {kwargs.get('reference')}, retrying")


async def initiate_purchase(
    db: Session,
    gateway: PaymentGateway,
    catalog: PackageCatalog,
    member: Member,
    purchase_in: PurchaseCreate,
) -> PurchaseInitiated:
    """
    Создает покупку в статусе 'pending' и получает ссылку на оплату.
    Запись о намерении фиксируется в БД ДО обращения к шлюзу: проверка оплаты
    никогда не увидит "нет такой покупки" для ссылки, которую клиент уже оплачивает.
    """
    # --- Шаг 1: Проверка пакета (до любых сетевых вызовов) ---
    package = catalog.validate(purchase_in.mode, purchase_in.points_amount, purchase_in.local_amount)

    # --- Шаг 2: Запись намерения ---
    reference = generate_reference()
    purchase = crud_purchase.create_purchase(
        db,
        member_id=member.id,
        points_amount=package.points,
        local_amount=package.local_amount,
        exchange_rate=package.exchange_rate,
        mode=purchase_in.mode,
        external_reference=reference,
        provider=gateway.name,
        meta={"mode": purchase_in.mode},
    )
    db.commit()
    db.refresh(purchase)
    logger.info(f"Pending purchase {purchase.id} ({reference}) created for member {member.id}: "
                f"{package.points} points for {package.local_amount} {settings.CURRENCY}")

    # --- Шаг 3: Обращение к шлюзу ---
    redirect_url = str(purchase_in.callback_url) if purchase_in.callback_url else f"{settings.APP_URL}/purchase-points"
    try:
        result = await _initialize_with_retry(
            gateway,
            amount_major=package.local_amount,
            currency=settings.CURRENCY,
            reference=reference,
            customer_email=member.email,
            redirect_url=redirect_url,
            metadata={
                "member_id": member.id,
                "purchase_id": purchase.id,
                "points_amount": package.points,
                "mode": purchase_in.mode,
            },
        )
    except GatewayError as e:
        logger.error(f"Gateway initialize failed for purchase {purchase.id} ({reference}): {e.message}")
        _fail_purchase(db, purchase, {"error": "gateway_initialize_failed", "detail": e.message})
        raise

    # --- Шаг 4: Сохраняем хендл оплаты ---
    crud_purchase.update_if_pending(db, purchase.id, {
        "gateway_handle": result.provider_handle,
        "meta": {**(purchase.meta or {}), "checkout_url": result.checkout_url},
    })
    db.commit()
    db.refresh(purchase)

    return PurchaseInitiated(purchase=purchase, checkout_url=result.checkout_url, reference=reference)


# --- Подтверждение покупки ---

def _fail_purchase(db: Session, purchase: PointPurchase, details: dict) -> bool:
    """
    Терминальный переход pending -> failed с записью причины в metadata.
    Возвращает False, если покупку уже успел завершить другой запрос.
    """
    try:
        updated = crud_purchase.update_if_pending(db, purchase.id, {
            "status": STATUS_FAILED,
            "completed_at": datetime.now(timezone.utc),
            "meta": {**(purchase.meta or {}), **details},
        })
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(purchase)
    if updated:
        logger.warning(f"Purchase {purchase.id} ({purchase.external_reference}) marked as failed: {details}")
    return bool(updated)


def _settled_elsewhere(db: Session, purchase: PointPurchase) -> PurchaseVerification:
    """Покупку завершил параллельный запрос. Это не ошибка, а уже обработанный результат."""
    db.refresh(purchase)
    logger.info(f"Purchase {purchase.id} ({purchase.external_reference}) was settled by a concurrent request")
    if purchase.status == STATUS_FAILED:
        raise PurchaseFailed("This payment has already failed verification", status=purchase.status)
    return PurchaseVerification(purchase=purchase, already_processed=True)


def _gateway_details(result: VerifyResult) -> dict:
    return {
        "gateway_status": result.raw_status,
        "gateway_outcome": result.outcome,
        "transaction_id": result.provider_transaction_id,
        "channel": result.channel,
        "paid_at": result.paid_at,
        **{k: v for k, v in result.extra.items() if v is not None},
    }


def _credit_purchase(db: Session, purchase: PointPurchase, result: VerifyResult) -> PurchaseVerification:
    """
    Атомарное начисление в одной транзакции:
    1) CAS pending -> success; 0 строк = параллельный запрос нас опередил;
    2) блокировка строки участника и чтение баланса;
    3) запись 'purchase' в журнал.
    Либо и статус, и запись журнала фиксируются вместе, либо ничего.
    """
    now = datetime.now(timezone.utc)
    try:
        updated = crud_purchase.update_if_pending(db, purchase.id, {
            "status": STATUS_SUCCESS,
            "completed_at": now,
            "payment_method": result.channel,
            "meta": {**(purchase.meta or {}), **_gateway_details(result)},
        })
        if not updated:
            db.rollback()
            return _settled_elsewhere(db, purchase)

        crud_member.lock_members(db, [purchase.member_id])
        entry = ledger_service.append(
            db,
            member_id=purchase.member_id,
            transaction_type=TX_PURCHASE,
            source=purchase.provider,
            amount=purchase.points_amount,
            reference_type=REF_POINT_PURCHASE,
            reference_id=str(purchase.id),
            meta={
                "reference": purchase.external_reference,
                "local_amount": str(purchase.local_amount),
                "exchange_rate": str(purchase.exchange_rate),
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.error(f"Settlement transaction rolled back for purchase {purchase.id}", exc_info=True)
        raise

    db.refresh(purchase)
    logger.info(f"Purchase {purchase.id} ({purchase.external_reference}) settled: "
                f"+{purchase.points_amount} points to member {purchase.member_id} (ledger entry {entry.id})")
    return PurchaseVerification(purchase=purchase, credited=True)


async def verify_purchase(
    db: Session,
    gateways: GatewayPool,
    catalog: PackageCatalog,
    reference: str,
    caller: Member | None,
) -> PurchaseVerification:
    """
    Идемпотентно завершает покупку по ссылке.
    `caller=None` означает системного исполнителя (веб-хук, фоновая сверка).
    Шлюз выбирается по провайдеру, записанному в покупке.
    Любой сигнал об успехе от клиента игнорируется - верим только шлюзу.
    """
    # --- Шаг 1-2: Поиск и права ---
    purchase = crud_purchase.get_purchase_by_reference(db, reference)
    if not purchase:
        raise PurchaseNotFound("Purchase not found")
    if caller is not None and purchase.member_id != caller.id and not caller.is_admin:
        raise Forbidden("Unauthorized to verify this purchase")

    # --- Шаг 3-4: Терминальные статусы ---
    if purchase.status == STATUS_SUCCESS:
        return PurchaseVerification(purchase=purchase, already_processed=True)
    if purchase.status == STATUS_FAILED:
        raise PurchaseFailed("This payment has already failed verification")

    # --- Шаг 5: Авторитетный ответ шлюза. GatewayError оставляет покупку в 'pending' ---
    gateway = gateways.get(purchase.provider)
    logger.info(f"Verifying payment for reference: {reference} via {gateway.name}")
    result = await gateway.verify(reference)
    logger.info(f"Payment verification result - Reference: {reference}, Outcome: {result.outcome} ({result.raw_status})")

    # --- Шаг 6: Неуспешная или незавершенная оплата ---
    if result.outcome == OUTCOME_FAILED:
        if not _fail_purchase(db, purchase, _gateway_details(result)):
            return _settled_elsewhere(db, purchase)
        raise PurchaseFailed("Payment was not successful", status=result.raw_status)
    if result.outcome != OUTCOME_SUCCEEDED:
        return PurchaseVerification(purchase=purchase)

    # --- Шаг 7: Сверка суммы (защита от подмены суммы при создании) ---
    expected = Decimal(purchase.local_amount)
    currency_ok = result.currency is None or result.currency.upper() == settings.CURRENCY
    if result.amount_major != expected or not currency_ok:
        logger.error(f"Amount mismatch - Reference: {reference}, Expected: {expected} {settings.CURRENCY}, "
                     f"Received: {result.amount_major} {result.currency}")
        if not _fail_purchase(db, purchase, {
            **_gateway_details(result),
            "integrity_violation": "amount_mismatch",
            "expected": str(expected),
            "received": str(result.amount_major),
            "received_currency": result.currency,
        }):
            return _settled_elsewhere(db, purchase)
        raise IntegrityViolation("Payment amount mismatch")

    # --- Шаг 8: Повторная проверка пакета/курса ---
    if not catalog.revalidate(purchase):
        if not _fail_purchase(db, purchase, {
            **_gateway_details(result),
            "integrity_violation": "package_mismatch",
        }):
            return _settled_elsewhere(db, purchase)
        raise IntegrityViolation("Invalid package configuration")

    # --- Шаг 9: Атомарное начисление ---
    return _credit_purchase(db, purchase, result)


# --- Чтение ---

def get_member_purchases(db: Session, member_id: int, page: int = 1, page_size: int = 20) -> PaginatedPurchases:
    ledger_service.ensure_member_exists(db, member_id)
    page = max(page, 1)
    page_size = min(max(page_size, 1), ledger_service.MAX_PAGE_SIZE)
    items, total = crud_purchase.get_member_purchases(db, member_id, skip=(page - 1) * page_size, limit=page_size)
    return PaginatedPurchases(
        total_items=total,
        total_pages=math.ceil(total / page_size) if total > 0 else 1,
        current_page=page,
        size=page_size,
        items=items,
    )
