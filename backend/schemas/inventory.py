from datetime import datetime
from typing import List, Optional
from uuid import UUID

from core.enums import OperationStatus, OperationType
from schemas.base import CamelModel


class InventoryOperationItemOut(CamelModel):
    id: UUID
    article_id: UUID
    lot_id: Optional[UUID] = None
    from_storage_zone_id: Optional[UUID] = None
    to_storage_zone_id: Optional[UUID] = None
    quantity: float
    quantity_before: Optional[float] = None
    quantity_after: Optional[float] = None
    reason: Optional[str] = None


class InventoryOperationOut(CamelModel):
    id: UUID
    code: str
    type: OperationType
    status: OperationStatus
    reason: Optional[str] = None
    waste_reason: Optional[str] = None
    delivery_id: Optional[UUID] = None
    order_id: Optional[UUID] = None
    client_id: Optional[UUID] = None
    parent_operation_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[InventoryOperationItemOut] = []
