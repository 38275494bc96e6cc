# points_ledger/routers/points.py

import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from points_ledger.clients.payment_gateway import GatewayPool, PaymentGateway
from points_ledger.core.config import settings
from points_ledger.core.exceptions import Forbidden
from points_ledger.core.limiter import limiter
from points_ledger.dependencies import get_catalog, get_current_member, get_db, get_gateway_pool, get_payment_gateway
from points_ledger.models.member import Member
from points_ledger.models.purchase import STATUS_PENDING
from points_ledger.schemas.common import ApiResponse
from points_ledger.schemas.ledger import Balance, LedgerHistory
from points_ledger.schemas.purchase import (
    PackageCatalog, PaginatedPurchases, PurchaseCreate, PurchaseInitiated,
    PurchaseVerification, PurchaseVerifyRequest,
)
from points_ledger.schemas.transfer import Transfer, TransferCreate
from points_ledger.services import ledger as ledger_service
from points_ledger.services import purchase as purchase_service
from points_ledger.services import transfer as transfer_service
from points_ledger.services.catalog import PackageCatalog as Catalog

logger = logging.getLogger(__name__)
router = APIRouter()


def _ensure_access(current_member: Member, member_id: int):
    """Участник видит только свои данные; администратор - любые."""
    if current_member.id != member_id and not current_member.is_admin:
        raise Forbidden("Unauthorized to access this member's points")


@router.get("/balance/{member_id}", response_model=ApiResponse[Balance])
def get_member_balance(
    member_id: int,
    current_member: Member = Depends(get_current_member),
    db: Session = Depends(get_db),
):
    _ensure_access(current_member, member_id)
    balance = ledger_service.get_balance(db, member_id)
    return ApiResponse(data=Balance(member_id=member_id, balance=balance))


@router.get("/transactions/{member_id}", response_model=ApiResponse[LedgerHistory])
def get_member_transactions(
    member_id: int,
    type: Optional[str] = Query(None, description="purchase, transfer_in, transfer_out, award, redeem"),
    source: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=ledger_service.MAX_PAGE_SIZE, alias="pageSize"),
    current_member: Member = Depends(get_current_member),
    db: Session = Depends(get_db),
):
    """
    История операций участника, новые сверху.
    """
    _ensure_access(current_member, member_id)
    history = ledger_service.get_history(
        db, member_id,
        transaction_type=type, source=source,
        start_date=start_date, end_date=end_date,
        page=page, page_size=page_size,
    )
    return ApiResponse(data=history)


@router.post("/purchase", response_model=ApiResponse[PurchaseInitiated])
@limiter.limit(settings.PURCHASE_RATE_LIMIT)
async def create_purchase(
    request: Request,
    purchase_in: PurchaseCreate,
    current_member: Member = Depends(get_current_member),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    catalog: Catalog = Depends(get_catalog),
):
    """
    Создает покупку баллов и возвращает ссылку на страницу оплаты провайдера.
    """
    initiated = await purchase_service.initiate_purchase(db, gateway, catalog, current_member, purchase_in)
    return ApiResponse(data=initiated)


@router.post("/purchase/verify", response_model=ApiResponse[PurchaseVerification])
async def verify_purchase(
    verify_in: PurchaseVerifyRequest,
    current_member: Member = Depends(get_current_member),
    db: Session = Depends(get_db),
    gateways: GatewayPool = Depends(get_gateway_pool),
    catalog: Catalog = Depends(get_catalog),
):
    """
    Подтверждает оплату по ссылке. Повторный вызов безопасен.
    Если провайдер еще не завершил платеж - 202 и success=false.
    """
    result = await purchase_service.verify_purchase(db, gateways, catalog, verify_in.reference, current_member)
    if not result.credited and not result.already_processed and result.purchase.status == STATUS_PENDING:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={
                "success": False,
                "data": result.model_dump(mode="json", by_alias=True),
                "error": {
                    "code": "payment_pending",
                    "message": "Payment has not been completed yet",
                    "details": {"status": STATUS_PENDING},
                },
            },
        )
    return ApiResponse(data=result)


@router.get("/purchases/{member_id}", response_model=ApiResponse[PaginatedPurchases])
def get_member_purchases(
    member_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=ledger_service.MAX_PAGE_SIZE, alias="pageSize"),
    current_member: Member = Depends(get_current_member),
    db: Session = Depends(get_db),
):
    _ensure_access(current_member, member_id)
    return ApiResponse(data=purchase_service.get_member_purchases(db, member_id, page, page_size))


@router.post("/transfer", response_model=ApiResponse[Transfer])
@limiter.limit(settings.TRANSFER_RATE_LIMIT)
async def create_transfer(
    request: Request,
    transfer_in: TransferCreate,
    current_member: Member = Depends(get_current_member),
    db: Session = Depends(get_db),
):
    """Перевод баллов другому участнику от имени текущего."""
    transfer = transfer_service.transfer_points(
        db,
        from_member_id=current_member.id,
        to_member_id=transfer_in.to_member_id,
        points=transfer_in.points,
        reason=transfer_in.reason,
    )
    return ApiResponse(data=transfer)


@router.get("/packages", response_model=ApiResponse[PackageCatalog])
def get_packages(
    current_member: Member = Depends(get_current_member),
    catalog: Catalog = Depends(get_catalog),
):
    """Каталог пакетов и условия произвольной покупки."""
    return ApiResponse(data=PackageCatalog.model_validate(catalog.describe()))
