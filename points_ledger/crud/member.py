# points_ledger/crud/member.py
from typing import List
from sqlalchemy.orm import Session

from points_ledger.models.member import Member, ROLE_MEMBER

def get_member(db: Session, member_id: int) -> Member | None:
    """Получает участника по первичному ключу."""
    return db.query(Member).filter(Member.id == member_id).first()

def create_member(db: Session, email: str, full_name: str | None = None, role: str = ROLE_MEMBER) -> Member:
    """Создает участника. Требует внешнего вызова db.commit()."""
    member = Member(email=email, full_name=full_name, role=role)
    db.add(member)
    db.flush()
    return member

def lock_members(db: Session, member_ids: List[int]) -> List[Member]:
    """
    Блокирует строки участников (`SELECT ... FOR UPDATE`) в порядке возрастания ID.
    Единый порядок захвата исключает взаимоблокировки при встречных переводах.
    Все чтения баланса для записи делаются только после этой блокировки.
    """
    return db.query(Member).filter(
        Member.id.in_(member_ids)
    ).order_by(Member.id.asc()).with_for_update().all()
