# points_ledger/models/purchase.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, JSON, Numeric, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from points_ledger.db.session import Base

STATUS_PENDING = "pending"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"

MODE_PRESET = "preset"
MODE_CUSTOM = "custom"


class PointPurchase(Base):
    """
    Покупка баллов за деньги через внешний платежный шлюз.
    Статус меняется ровно один раз: pending -> success | failed.
    """
    __tablename__ = "point_purchases"
    __table_args__ = (
        Index("point_purchases_member_date_idx", "member_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)

    points_amount = Column(Integer, nullable=False)
    local_amount = Column(Numeric(12, 2), nullable=False)
    exchange_rate = Column(Numeric(10, 4), nullable=False)
    mode = Column(String, nullable=False, default=MODE_PRESET)

    external_reference = Column(String, unique=True, nullable=False, index=True)
    # Ссылка на страницу оплаты / access code от провайдера
    gateway_handle = Column(String, nullable=True)
    provider = Column(String, nullable=False)

    status = Column(String, nullable=False, default=STATUS_PENDING, server_default=STATUS_PENDING)
    # card, bank_transfer, ussd ... - заполняется при успешной оплате
    payment_method = Column(String, nullable=True)
    meta = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    member = relationship("Member", back_populates="purchases")
