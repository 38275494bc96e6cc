# points_ledger/schemas/purchase.py
from datetime import datetime
from decimal import Decimal
from typing import Literal
from pydantic import AliasChoices, Field, HttpUrl

from points_ledger.schemas.common import CamelModel, PaginatedResponse


class PurchaseCreate(CamelModel):
    """Тело запроса POST /purchase."""
    mode: Literal["preset", "custom"] = "preset"
    points_amount: int = Field(..., gt=0)
    local_amount: Decimal = Field(..., gt=0)
    callback_url: HttpUrl | None = None


class PurchaseVerifyRequest(CamelModel):
    reference: str = Field(..., min_length=1)


class Purchase(CamelModel):
    id: int
    member_id: int
    points_amount: int
    local_amount: Decimal
    exchange_rate: Decimal
    mode: str
    external_reference: str
    gateway_handle: str | None = None
    provider: str
    status: str
    payment_method: str | None = None
    metadata: dict | None = Field(default=None, validation_alias=AliasChoices("meta", "metadata"))
    created_at: datetime | None = None
    completed_at: datetime | None = None


class PurchaseInitiated(CamelModel):
    purchase: Purchase
    checkout_url: str
    reference: str


class PurchaseVerification(CamelModel):
    purchase: Purchase
    already_processed: bool = False
    # True, только если этим вызовом баллы действительно начислены
    credited: bool = False


class PaginatedPurchases(PaginatedResponse[Purchase]):
    pass


class PointPackage(CamelModel):
    points: int
    local_amount: Decimal
    exchange_rate: Decimal


class CustomRate(CamelModel):
    exchange_rate: Decimal
    min_points: int
    max_points: int


class PackageCatalog(CamelModel):
    packages: list[PointPackage]
    custom_rate: CustomRate
    currency: str
