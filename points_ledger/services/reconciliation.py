# points_ledger/services/reconciliation.py

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from points_ledger.clients.payment_gateway import GatewayPool
from points_ledger.core.config import settings
from points_ledger.core.exceptions import GatewayError, PointsError
from points_ledger.crud import purchase as crud_purchase
from points_ledger.dependencies import get_db_context
from points_ledger.models.purchase import STATUS_PENDING
from points_ledger.services import purchase as purchase_service
from points_ledger.services.catalog import get_package_catalog

logger = logging.getLogger(__name__)

# Сколько покупок перепроверяется за один запуск
RECONCILE_BATCH_SIZE = 100


async def reconcile_pending_purchases_task(
    session_factory: Callable = get_db_context,
    gateway_pool_factory: Callable[[], GatewayPool] = GatewayPool,
) -> dict:
    """
    Фоновая задача: перепроверяет покупки, застрявшие в 'pending'
    (клиент закрыл страницу оплаты, веб-хук не дошел).
    Идет через обычный путь подтверждения от имени системы, поэтому
    двойное начисление исключено так же, как и для клиентских запросов.
    """
    logger.info("--- Starting scheduled job: Reconcile Pending Purchases ---")
    stats = {"checked": 0, "credited": 0, "failed": 0, "still_pending": 0, "errors": 0}

    cutoff = datetime.now(timezone.utc) - timedelta(minutes=settings.PENDING_RECONCILE_AFTER_MINUTES)
    with session_factory() as db:
        references = crud_purchase.get_stale_pending_references(db, cutoff, limit=RECONCILE_BATCH_SIZE)

    if not references:
        logger.info("No stale pending purchases found.")
        return stats

    logger.info(f"Found {len(references)} stale pending purchases to re-verify.")
    catalog = get_package_catalog()
    gateways = gateway_pool_factory()
    try:
        for reference in references:
            stats["checked"] += 1
            with session_factory() as db:
                try:
                    result = await purchase_service.verify_purchase(db, gateways, catalog, reference, caller=None)
                except GatewayError as e:
                    # Покупка остается 'pending' до следующего запуска
                    logger.error(f"Gateway error while reconciling {reference}: {e.message}")
                    stats["errors"] += 1
                    continue
                except PointsError as e:
                    logger.warning(f"Purchase {reference} closed during reconciliation: {e.code} - {e.message}")
                    stats["failed"] += 1
                    continue

                if result.credited:
                    stats["credited"] += 1
                elif result.purchase.status == STATUS_PENDING:
                    stats["still_pending"] += 1
    finally:
        await gateways.aclose()

    logger.info(f"--- Finished scheduled job: Reconcile Pending Purchases {stats} ---")
    return stats
