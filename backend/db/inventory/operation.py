import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from core.enums import OperationStatus, OperationType
from ..database import Base, enum_column


class InventoryOperation(Base):
    """Append-only: rows are inserted, never updated. Reversals point back through parent_operation_id."""
    __tablename__ = "inventory_operations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String, nullable=False, unique=True, index=True)
    type = Column(enum_column(OperationType), nullable=False, index=True)
    status = Column(enum_column(OperationStatus), nullable=False, default=OperationStatus.COMPLETED)

    reason = Column(Text, nullable=True)
    waste_reason = Column(Text, nullable=True)

    delivery_id = Column(UUID(as_uuid=True), ForeignKey("deliveries.id", ondelete="SET NULL"), nullable=True, index=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)
    parent_operation_id = Column(
        UUID(as_uuid=True),
        ForeignKey("inventory_operations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)

    items = relationship("InventoryOperationItem", back_populates="operation", cascade="all, delete-orphan")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "code": self.code,
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "waste_reason": self.waste_reason,
            "delivery_id": self.delivery_id,
            "order_id": self.order_id,
            "client_id": self.client_id,
            "parent_operation_id": self.parent_operation_id,
            "notes": self.notes,
            "items": [it.to_schema for it in self.items],
        }


class InventoryOperationItem(Base):
    __tablename__ = "inventory_operation_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    operation_id = Column(
        UUID(as_uuid=True),
        ForeignKey("inventory_operations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    article_id = Column(UUID(as_uuid=True), ForeignKey("articles.id", ondelete="RESTRICT"), nullable=False, index=True)
    lot_id = Column(UUID(as_uuid=True), ForeignKey("lots.id", ondelete="SET NULL"), nullable=True)
    from_storage_zone_id = Column(UUID(as_uuid=True), ForeignKey("storage_zones.id", ondelete="SET NULL"), nullable=True)
    to_storage_zone_id = Column(UUID(as_uuid=True), ForeignKey("storage_zones.id", ondelete="SET NULL"), nullable=True)

    quantity = Column(Numeric(12, 3), nullable=False)
    quantity_before = Column(Numeric(12, 3), nullable=True)
    quantity_after = Column(Numeric(12, 3), nullable=True)
    reason = Column(Text, nullable=True)

    operation = relationship("InventoryOperation", back_populates="items")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "article_id": self.article_id,
            "lot_id": self.lot_id,
            "from_storage_zone_id": self.from_storage_zone_id,
            "to_storage_zone_id": self.to_storage_zone_id,
            "quantity": float(self.quantity),
            "quantity_before": float(self.quantity_before) if self.quantity_before is not None else None,
            "quantity_after": float(self.quantity_after) if self.quantity_after is not None else None,
            "reason": self.reason,
        }
