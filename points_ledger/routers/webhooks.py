# points_ledger/routers/webhooks.py

import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from points_ledger.clients.payment_gateway import GatewayPool, PaymentGateway
from points_ledger.core.exceptions import PointsError
from points_ledger.dependencies import (
    get_catalog, get_db, get_flutterwave_gateway, get_gateway_pool, get_paystack_gateway,
)
from points_ledger.schemas.common import ApiResponse
from points_ledger.services import purchase as purchase_service
from points_ledger.services.catalog import PackageCatalog

logger = logging.getLogger(__name__)
router = APIRouter()


async def _read_signed_payload(request: Request, gateway: PaymentGateway) -> dict:
    """Проверяет подпись провайдера по сырому телу и возвращает разобранный JSON."""
    raw_body = await request.body()
    if not gateway.verify_webhook_signature(raw_body, request.headers):
        logger.warning(f"[{gateway.name}] Webhook rejected: invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")
    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    return payload


async def _handle_event(db: Session, gateway: PaymentGateway, gateways: GatewayPool,
                        catalog: PackageCatalog, payload: dict) -> dict:
    """
    Запускает обычное подтверждение от имени системы.
    После успешной аутентификации всегда отвечаем 200, иначе провайдер
    будет повторять доставку. Незавершенные покупки подберет фоновая сверка.
    Платеж перепроверяется у провайдера покупки, а не у отправителя события.
    """
    reference = gateway.parse_webhook_reference(payload)
    if not reference:
        logger.info(f"[{gateway.name}] Webhook event '{payload.get('event')}' ignored")
        return {"processed": False}

    logger.info(f"[{gateway.name}] Webhook for reference {reference}")
    try:
        result = await purchase_service.verify_purchase(db, gateways, catalog, reference, caller=None)
    except PointsError as e:
        logger.warning(f"[{gateway.name}] Webhook for {reference} not settled: {e.code} - {e.message}")
        return {"processed": False, "reference": reference, "error": e.code}

    return {
        "processed": True,
        "reference": reference,
        "status": result.purchase.status,
        "alreadyProcessed": result.already_processed,
    }


@router.post("/paystack")
async def paystack_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_paystack_gateway),
    gateways: GatewayPool = Depends(get_gateway_pool),
    catalog: PackageCatalog = Depends(get_catalog),
):
    payload = await _read_signed_payload(request, gateway)
    return ApiResponse(data=await _handle_event(db, gateway, gateways, catalog, payload))


@router.post("/flutterwave")
async def flutterwave_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_flutterwave_gateway),
    gateways: GatewayPool = Depends(get_gateway_pool),
    catalog: PackageCatalog = Depends(get_catalog),
):
    payload = await _read_signed_payload(request, gateway)
    return ApiResponse(data=await _handle_event(db, gateway, gateways, catalog, payload))
