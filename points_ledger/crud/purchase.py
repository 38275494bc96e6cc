# points_ledger/crud/purchase.py

from datetime import datetime
from decimal import Decimal
from typing import List, Tuple
from sqlalchemy.orm import Session

from points_ledger.models.purchase import PointPurchase, STATUS_PENDING


def create_purchase(
    db: Session,
    member_id: int,
    points_amount: int,
    local_amount: Decimal,
    exchange_rate: Decimal,
    mode: str,
    external_reference: str,
    provider: str,
    meta: dict | None = None,
) -> PointPurchase:
    """Создает покупку в статусе 'pending'. Требует внешнего вызова db.commit()."""
    purchase = PointPurchase(
        member_id=member_id,
        points_amount=points_amount,
        local_amount=local_amount,
        exchange_rate=exchange_rate,
        mode=mode,
        external_reference=external_reference,
        provider=provider,
        status=STATUS_PENDING,
        meta=meta or {},
    )
    db.add(purchase)
    return purchase


def get_purchase_by_reference(db: Session, reference: str) -> PointPurchase | None:
    return db.query(PointPurchase).filter(PointPurchase.external_reference == reference).first()


def get_member_purchases(db: Session, member_id: int, skip: int = 0, limit: int = 20) -> Tuple[List[PointPurchase], int]:
    query = db.query(PointPurchase).filter(PointPurchase.member_id == member_id)
    total = query.count()
    items = query.order_by(PointPurchase.id.desc()).offset(skip).limit(limit).all()
    return items, total


def update_if_pending(db: Session, purchase_id: int, values: dict) -> int:
    """
    Условное обновление покупки (compare-and-swap по статусу):
    `UPDATE point_purchases SET ... WHERE id = :id AND status = 'pending'`.
    Возвращает число обновленных строк. 0 означает, что другой запрос
    уже перевел покупку в терминальный статус.
    Все изменения покупки после создания идут только через эту функцию.
    Требует внешнего вызова db.commit().
    """
    return db.query(PointPurchase).filter(
        PointPurchase.id == purchase_id,
        PointPurchase.status == STATUS_PENDING,
    ).update(values, synchronize_session=False)


def get_stale_pending_references(db: Session, created_before: datetime, limit: int = 100) -> List[str]:
    """Ссылки 'зависших' покупок, которые давно ждут подтверждения."""
    rows = db.query(PointPurchase.external_reference).filter(
        PointPurchase.status == STATUS_PENDING,
        PointPurchase.created_at < created_before,
    ).order_by(PointPurchase.id.asc()).limit(limit).all()
    return [reference for reference, in rows]
