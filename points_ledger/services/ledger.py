# points_ledger/services/ledger.py

import logging
import math
from datetime import datetime
from sqlalchemy.orm import Session

from points_ledger.core.exceptions import InsufficientFunds, MemberNotFound, ValidationError
from points_ledger.crud import ledger as crud_ledger
from points_ledger.crud import member as crud_member
from points_ledger.models.ledger import (
    LedgerEntry, TX_AWARD, TX_REDEEM, TX_TRANSFER_IN, TX_TRANSFER_OUT, TRANSACTION_TYPES,
)
from points_ledger.schemas.ledger import LedgerAudit, LedgerHistory, LedgerTotals

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def ensure_member_exists(db: Session, member_id: int):
    member = crud_member.get_member(db, member_id)
    if not member:
        raise MemberNotFound(f"Member {member_id} not found")
    return member


def get_balance(db: Session, member_id: int) -> int:
    """Текущий баланс участника = сумма всех его записей."""
    ensure_member_exists(db, member_id)
    return crud_ledger.get_member_balance(db, member_id)


def get_history(
    db: Session,
    member_id: int,
    transaction_type: str | None = None,
    source: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    page_size: int = 20,
) -> LedgerHistory:
    """Пагинированная история записей с фильтрами по типу, источнику и датам."""
    ensure_member_exists(db, member_id)
    if transaction_type and transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"Unknown transaction type: {transaction_type}")
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

    items, total = crud_ledger.get_member_entries(
        db, member_id,
        skip=(page - 1) * page_size, limit=page_size,
        transaction_type=transaction_type, source=source,
        start_date=start_date, end_date=end_date,
    )
    return LedgerHistory(
        total_items=total,
        total_pages=math.ceil(total / page_size) if total > 0 else 1,
        current_page=page,
        size=page_size,
        items=items,
        current_balance=crud_ledger.get_member_balance(db, member_id),
    )


def append(
    db: Session,
    member_id: int,
    transaction_type: str,
    source: str,
    amount: int,
    reference_type: str | None = None,
    reference_id: str | None = None,
    meta: dict | None = None,
) -> LedgerEntry:
    """
    Добавляет запись в журнал внутри транзакции вызывающего кода.
    Строка участника ДОЛЖНА быть заблокирована вызывающим (crud_member.lock_members),
    тогда баланс, прочитанный здесь, не изменится до коммита.
    Требует внешнего вызова db.commit().
    """
    if amount == 0:
        raise ValidationError("Ledger entry amount must be non-zero")

    current_balance = crud_ledger.get_member_balance(db, member_id)
    new_balance = current_balance + amount
    if new_balance < 0:
        raise InsufficientFunds(
            "Insufficient points balance",
            balance=current_balance, requested=-amount,
        )

    entry = crud_ledger.create_entry(
        db,
        member_id=member_id,
        transaction_type=transaction_type,
        source=source,
        amount=amount,
        balance_after=new_balance,
        reference_type=reference_type,
        reference_id=reference_id,
        meta=meta,
    )
    db.flush()
    logger.info(
        f"Ledger entry {entry.id} for member {member_id}: {transaction_type} {amount:+d} "
        f"(balance {current_balance} -> {new_balance}, uncommitted)"
    )
    return entry


def _single_entry(db: Session, member_id: int, transaction_type: str, source: str, amount: int,
                  reference_type: str | None, reference_id: str | None, meta: dict | None) -> LedgerEntry:
    try:
        locked = crud_member.lock_members(db, [member_id])
        if not locked:
            raise MemberNotFound(f"Member {member_id} not found")
        entry = append(db, member_id, transaction_type, source, amount,
                       reference_type=reference_type, reference_id=reference_id, meta=meta)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(entry)
    return entry


def award(db: Session, member_id: int, points: int, source: str,
          reference_type: str | None = None, reference_id: str | None = None,
          meta: dict | None = None) -> LedgerEntry:
    """Начисление баллов внешними модулями (награды, админ-начисления)."""
    if points <= 0:
        raise ValidationError("Points must be greater than 0")
    return _single_entry(db, member_id, TX_AWARD, source, points, reference_type, reference_id, meta)


def redeem(db: Session, member_id: int, points: int, source: str,
           reference_type: str | None = None, reference_id: str | None = None,
           meta: dict | None = None) -> LedgerEntry:
    """Списание баллов (обмен на товары/услуги). Баланс не может уйти в минус."""
    if points <= 0:
        raise ValidationError("Points must be greater than 0")
    return _single_entry(db, member_id, TX_REDEEM, source, -points, reference_type, reference_id, meta)


def audit_member(db: Session, member_id: int) -> LedgerAudit:
    """
    Сверка кеша balance_after с суммой записей.
    Расхождение - это ошибка целостности данных, а не настраиваемое поведение.
    """
    ensure_member_exists(db, member_id)
    total = crud_ledger.get_member_balance(db, member_id)
    latest = crud_ledger.get_latest_entry(db, member_id)
    latest_balance_after = latest.balance_after if latest else 0
    consistent = total == latest_balance_after and total >= 0
    if not consistent:
        logger.error(
            f"Ledger divergence for member {member_id}: sum={total}, latest balance_after={latest_balance_after}"
        )
    return LedgerAudit(
        member_id=member_id,
        sum_of_amounts=total,
        latest_balance_after=latest_balance_after,
        entries=crud_ledger.count_member_entries(db, member_id),
        consistent=consistent,
    )


def audit_totals(db: Session) -> LedgerTotals:
    """
    Сверка по всему журналу. Переводы не создают и не сжигают баллы:
    сумма transfer_in и transfer_out всегда равна нулю.
    """
    circulation = crud_ledger.get_total_points_in_circulation(db)
    by_type = crud_ledger.get_totals_by_type(db)
    transfer_net = by_type.get(TX_TRANSFER_IN, 0) + by_type.get(TX_TRANSFER_OUT, 0)
    consistent = transfer_net == 0 and circulation >= 0
    if not consistent:
        logger.error(f"Ledger totals diverge: circulation={circulation}, transfer net={transfer_net}")
    return LedgerTotals(
        points_in_circulation=circulation,
        totals_by_type=by_type,
        transfer_net=transfer_net,
        consistent=consistent,
    )
