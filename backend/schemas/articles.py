from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import field_validator

from core.enums import ArticleType, ExpirationStatus
from schemas.base import CamelModel


class ArticleRef(CamelModel):
    id: UUID
    code: str
    name: str
    type: ArticleType
    unit: str
    current_stock: float
    is_perishable: bool
    managed_in_stock: bool


class AvailabilityRowOut(CamelModel):
    lot_id: Optional[UUID] = None
    lot_code: Optional[str] = None
    lot_expiration_date: Optional[date] = None
    expiration_status: Optional[ExpirationStatus] = None
    storage_zone_id: UUID
    storage_zone_code: Optional[str] = None
    storage_zone_designation: Optional[str] = None
    stock_quantity: float
    reserved_quantity: float
    available_quantity: float


class AvailabilitySummaryOut(CamelModel):
    total_stock: float
    total_reserved: float
    total_available: float
    requires_lot_selection: bool
    requires_zone_selection: bool
    can_direct_delivery: bool
    is_perishable: bool


class ArticleAvailabilityOut(CamelModel):
    article: ArticleRef
    availability: List[AvailabilityRowOut]
    summary: AvailabilitySummaryOut


class SplitLineIn(CamelModel):
    lot_id: Optional[UUID] = None
    from_storage_zone_id: Optional[UUID] = None
    quantity: Decimal


class SplitLineOut(CamelModel):
    lot_id: Optional[UUID] = None
    from_storage_zone_id: Optional[UUID] = None
    quantity: float


class SplitRequest(CamelModel):
    requested_quantity: Decimal
    splits: Optional[List[SplitLineIn]] = None
    exclude_delivery_id: Optional[UUID] = None

    @field_validator("requested_quantity")
    @classmethod
    def _positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("requestedQuantity must be > 0")
        return v


class SplitProposalOut(CamelModel):
    splits: List[SplitLineOut]
    errors: List[str]
    is_valid: bool
    summary: AvailabilitySummaryOut
