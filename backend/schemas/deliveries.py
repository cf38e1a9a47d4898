from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import Field, field_validator

from core.enums import DeliveryStatus
from schemas.articles import SplitLineIn
from schemas.base import CamelModel
from schemas.inventory import InventoryOperationOut


class DeliveryItemCreate(CamelModel):
    order_item_id: Optional[UUID] = None
    article_id: UUID
    requested_quantity: Decimal
    # omitted: use the direct-delivery auto split
    splits: Optional[List[SplitLineIn]] = None

    @field_validator("requested_quantity")
    @classmethod
    def _positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("requestedQuantity must be > 0")
        return v


class DeliveryCreate(CamelModel):
    order_id: UUID
    scheduled_date: Optional[date] = None
    notes: Optional[str] = None
    items: List[DeliveryItemCreate]

    @field_validator("notes")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class DeliveryItemOut(CamelModel):
    id: UUID
    order_item_id: Optional[UUID] = None
    article_id: UUID
    lot_id: Optional[UUID] = None
    from_storage_zone_id: Optional[UUID] = None
    quantity: float


class DeliveryOut(CamelModel):
    id: UUID
    code: str
    order_id: UUID
    client_id: Optional[UUID] = None
    status: DeliveryStatus
    is_validated: bool
    validated_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    scheduled_date: Optional[date] = None
    total_ttc: float = Field(0, alias="totalTTC")
    notes: Optional[str] = None
    items: List[DeliveryItemOut] = []


class DeliveryStatusUpdate(CamelModel):
    status: DeliveryStatus


class CancelBeforeValidationRequest(CamelModel):
    reason: Optional[str] = None


class CancelAfterValidationRequest(CamelModel):
    reason: Optional[str] = None
    is_return_to_stock: Optional[bool] = None
    waste_reason: Optional[str] = None


class DeliveryCancellationOut(CamelModel):
    delivery: DeliveryOut
    inventory_operation: Optional[InventoryOperationOut] = None
