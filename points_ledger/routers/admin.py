# points_ledger/routers/admin.py

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from points_ledger.dependencies import get_admin_member, get_db
from points_ledger.models.member import Member
from points_ledger.schemas.common import ApiResponse
from points_ledger.schemas.ledger import LedgerAudit, LedgerEntry, LedgerTotals, PointsAdjustment
from points_ledger.schemas.transfer import TransferAudit
from points_ledger.services import ledger as ledger_service
from points_ledger.services import transfer as transfer_service

router = APIRouter()


@router.get("/ledger/{member_id}/audit", response_model=ApiResponse[LedgerAudit])
def audit_member_ledger(
    member_id: int,
    admin: Member = Depends(get_admin_member),
    db: Session = Depends(get_db),
):
    """
    [АДМИН] Сверяет кешированный balanceAfter с суммой записей участника.
    """
    return ApiResponse(data=ledger_service.audit_member(db, member_id))


@router.post("/ledger/{member_id}/award", response_model=ApiResponse[LedgerEntry])
def award_points(
    member_id: int,
    adjustment: PointsAdjustment,
    admin: Member = Depends(get_admin_member),
    db: Session = Depends(get_db),
):
    """[АДМИН] Начисляет баллы участнику."""
    entry = ledger_service.award(
        db, member_id, adjustment.points, adjustment.source,
        meta={"admin_id": admin.id, "reason": adjustment.reason},
    )
    return ApiResponse(data=LedgerEntry.model_validate(entry))


@router.post("/ledger/{member_id}/redeem", response_model=ApiResponse[LedgerEntry])
def redeem_points(
    member_id: int,
    adjustment: PointsAdjustment,
    admin: Member = Depends(get_admin_member),
    db: Session = Depends(get_db),
):
    """[АДМИН] Списывает баллы. Баланс не может уйти в минус."""
    entry = ledger_service.redeem(
        db, member_id, adjustment.points, adjustment.source,
        meta={"admin_id": admin.id, "reason": adjustment.reason},
    )
    return ApiResponse(data=LedgerEntry.model_validate(entry))


@router.get("/ledger/totals", response_model=ApiResponse[LedgerTotals])
def ledger_totals(
    admin: Member = Depends(get_admin_member),
    db: Session = Depends(get_db),
):
    """[АДМИН] Баллы в обороте и суммы по типам операций."""
    return ApiResponse(data=ledger_service.audit_totals(db))


@router.get("/transfers/{transfer_id}/audit", response_model=ApiResponse[TransferAudit])
def audit_transfer(
    transfer_id: str,
    admin: Member = Depends(get_admin_member),
    db: Session = Depends(get_db),
):
    """[АДМИН] Проверяет, что перевод состоит из двух записей с нулевой суммой."""
    return ApiResponse(data=transfer_service.audit_transfer(db, transfer_id))
