# points_ledger/schemas/transfer.py
from typing import List
from pydantic import Field

from points_ledger.schemas.common import CamelModel
from points_ledger.schemas.ledger import LedgerEntry


class TransferCreate(CamelModel):
    to_member_id: int
    points: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=255)


class Transfer(CamelModel):
    transfer_id: str
    from_entry: LedgerEntry = Field(..., alias="from")
    to_entry: LedgerEntry = Field(..., alias="to")


class TransferAudit(CamelModel):
    transfer_id: str
    entries: List[LedgerEntry]
    net: int
    consistent: bool
