# points_ledger/models/ledger.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, JSON, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from points_ledger.db.session import Base

# Типы записей журнала
TX_PURCHASE = "purchase"
TX_TRANSFER_IN = "transfer_in"
TX_TRANSFER_OUT = "transfer_out"
TX_AWARD = "award"
TX_REDEEM = "redeem"
TRANSACTION_TYPES = (TX_PURCHASE, TX_TRANSFER_IN, TX_TRANSFER_OUT, TX_AWARD, TX_REDEEM)

# Типы ссылок на "причину" записи
REF_POINT_PURCHASE = "point_purchase"
REF_TRANSFER = "transfer"


class LedgerEntry(Base):
    """Неизменяемая запись журнала баллов. Только INSERT, никаких UPDATE/DELETE."""
    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ledger_entries_member_date_idx", "member_id", "created_at"),
        Index("ledger_entries_reference_idx", "reference_type", "reference_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)

    transaction_type = Column(String, nullable=False)
    # 'paystack', 'flutterwave', 'transfer', 'admin' ...
    source = Column(String, nullable=False)

    # Положительное число - начисление, отрицательное - списание
    amount = Column(Integer, nullable=False)
    # Снимок баланса после записи. Это кеш: источник истины - сумма amount
    balance_after = Column(Integer, nullable=False)

    reference_type = Column(String, nullable=True)
    reference_id = Column(String, nullable=True)
    # "metadata" зарезервировано в Declarative API, поэтому атрибут называется meta
    meta = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    member = relationship("Member", back_populates="ledger_entries")
