# points_ledger/models/member.py

from sqlalchemy import Column, Integer, String, DateTime, func
from sqlalchemy.orm import relationship

from points_ledger.db.session import Base

ROLE_MEMBER = "member"
ROLE_ADMIN = "admin"


class Member(Base):
    """
    Минимальная проекция справочника участников.
    Сам справочник живет в другом сервисе, здесь нужны только
    существование, владение и признак администратора.
    """
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False)
    full_name = Column(String, nullable=True)
    # 'member' или 'admin'
    role = Column(String, default=ROLE_MEMBER, nullable=False, server_default=ROLE_MEMBER)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    ledger_entries = relationship("LedgerEntry", back_populates="member", lazy="dynamic")
    purchases = relationship("PointPurchase", back_populates="member", lazy="dynamic")

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN
