# points_ledger/schemas/ledger.py
from datetime import datetime
from pydantic import AliasChoices, Field

from points_ledger.schemas.common import CamelModel, PaginatedResponse


class LedgerEntry(CamelModel):
    id: int
    member_id: int
    transaction_type: str
    source: str
    amount: int
    balance_after: int
    reference_type: str | None = None
    reference_id: str | None = None
    # В ORM-модели атрибут называется meta (metadata занято SQLAlchemy)
    metadata: dict | None = Field(default=None, validation_alias=AliasChoices("meta", "metadata"))
    created_at: datetime


class LedgerHistory(PaginatedResponse[LedgerEntry]):
    current_balance: int


class Balance(CamelModel):
    member_id: int
    balance: int


class LedgerAudit(CamelModel):
    member_id: int
    sum_of_amounts: int
    latest_balance_after: int
    entries: int
    consistent: bool


class PointsAdjustment(CamelModel):
    """Ручное начисление/списание администратором."""
    points: int = Field(..., gt=0)
    source: str = Field("admin", min_length=1, max_length=64)
    reason: str | None = Field(None, max_length=255)


class LedgerTotals(CamelModel):
    points_in_circulation: int
    totals_by_type: dict[str, int]
    transfer_net: int
    consistent: bool
