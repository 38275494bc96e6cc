# points_ledger/crud/ledger.py

from datetime import datetime
from typing import Dict, List, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import func

from points_ledger.models.ledger import LedgerEntry

# --- Базовые CRUD-операции ---

def create_entry(
    db: Session,
    member_id: int,
    transaction_type: str,
    source: str,
    amount: int,
    balance_after: int,
    reference_type: str | None = None,
    reference_id: str | None = None,
    meta: dict | None = None,
) -> LedgerEntry:
    """
    Создает запись журнала и добавляет ее в сессию.
    Требует внешнего вызова db.commit().
    """
    entry = LedgerEntry(
        member_id=member_id,
        transaction_type=transaction_type,
        source=source,
        amount=amount,
        balance_after=balance_after,
        reference_type=reference_type,
        reference_id=reference_id,
        meta=meta,
    )
    db.add(entry)
    return entry


def _filtered_query(
    db: Session,
    member_id: int,
    transaction_type: str | None = None,
    source: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
):
    query = db.query(LedgerEntry).filter(LedgerEntry.member_id == member_id)
    if transaction_type:
        query = query.filter(LedgerEntry.transaction_type == transaction_type)
    if source:
        query = query.filter(LedgerEntry.source == source)
    if start_date:
        query = query.filter(LedgerEntry.created_at >= start_date)
    if end_date:
        query = query.filter(LedgerEntry.created_at <= end_date)
    return query


def get_member_entries(
    db: Session,
    member_id: int,
    skip: int = 0,
    limit: int = 20,
    **filters,
) -> Tuple[List[LedgerEntry], int]:
    """Пагинированный список записей участника (от новых к старым) и общее количество."""
    query = _filtered_query(db, member_id, **filters)
    total = query.count()
    items = query.order_by(LedgerEntry.id.desc()).offset(skip).limit(limit).all()
    return items, total


def get_entries_by_reference(db: Session, reference_type: str, reference_id: str) -> List[LedgerEntry]:
    return db.query(LedgerEntry).filter(
        LedgerEntry.reference_type == reference_type,
        LedgerEntry.reference_id == reference_id,
    ).order_by(LedgerEntry.id.asc()).all()

# --- Расчетные функции ---

def get_member_balance(db: Session, member_id: int) -> int:
    """Баланс - это сумма ВСЕХ записей участника, а не снимок balance_after."""
    balance = db.query(func.sum(LedgerEntry.amount)).filter(
        LedgerEntry.member_id == member_id
    ).scalar()
    return int(balance or 0)


def get_latest_entry(db: Session, member_id: int) -> LedgerEntry | None:
    return db.query(LedgerEntry).filter(
        LedgerEntry.member_id == member_id
    ).order_by(LedgerEntry.id.desc()).first()


def count_member_entries(db: Session, member_id: int) -> int:
    return db.query(LedgerEntry).filter(LedgerEntry.member_id == member_id).count()


def get_total_points_in_circulation(db: Session) -> int:
    """Сумма всех записей всех участников. Переводы ее не меняют."""
    return int(db.query(func.sum(LedgerEntry.amount)).scalar() or 0)


def get_totals_by_type(db: Session) -> Dict[str, int]:
    rows = db.query(LedgerEntry.transaction_type, func.sum(LedgerEntry.amount)).group_by(
        LedgerEntry.transaction_type
    ).all()
    return {transaction_type: int(total or 0) for transaction_type, total in rows}
