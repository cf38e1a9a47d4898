import uuid
from decimal import Decimal
from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from core.enums import DeliveryStatus
from .database import Base, enum_column


class Delivery(Base):
    """
    A shipment drawn from one order.

    status moves forward (pending -> in_transit -> delivered) or to cancelled (terminal).
    is_validated flips once, when the stock-decrementing operation is committed, and decides
    which cancellation path applies.
    """
    __tablename__ = "deliveries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String, nullable=False, unique=True, index=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, index=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)

    status = Column(enum_column(DeliveryStatus), nullable=False, default=DeliveryStatus.PENDING, index=True)
    is_validated = Column(Boolean, nullable=False, default=False)
    validated_at = Column(DateTime, nullable=True)

    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    scheduled_date = Column(Date, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    total_ttc = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    order = relationship("Order")
    items = relationship("DeliveryItem", back_populates="delivery", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="delivery")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "code": self.code,
            "order_id": self.order_id,
            "client_id": self.client_id,
            "status": self.status,
            "is_validated": bool(self.is_validated),
            "validated_at": self.validated_at,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_at": self.cancelled_at,
            "scheduled_date": self.scheduled_date,
            "total_ttc": float(self.total_ttc or 0),
            "notes": self.notes,
        }


class DeliveryItem(Base):
    __tablename__ = "delivery_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    delivery_id = Column(UUID(as_uuid=True), ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, index=True)
    order_item_id = Column(UUID(as_uuid=True), ForeignKey("order_items.id", ondelete="SET NULL"), nullable=True, index=True)
    article_id = Column(UUID(as_uuid=True), ForeignKey("articles.id", ondelete="RESTRICT"), nullable=False, index=True)
    lot_id = Column(UUID(as_uuid=True), ForeignKey("lots.id", ondelete="SET NULL"), nullable=True, index=True)
    from_storage_zone_id = Column(UUID(as_uuid=True), ForeignKey("storage_zones.id", ondelete="SET NULL"), nullable=True)
    quantity = Column(Numeric(12, 3), nullable=False)

    delivery = relationship("Delivery", back_populates="items")
    article = relationship("Article")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "order_item_id": self.order_item_id,
            "article_id": self.article_id,
            "lot_id": self.lot_id,
            "from_storage_zone_id": self.from_storage_zone_id,
            "quantity": float(self.quantity),
        }
