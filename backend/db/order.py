import uuid
from decimal import Decimal
from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from core.enums import OrderStatus
from .database import Base, enum_column


class Order(Base):
    __tablename__ = "orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String, nullable=False, unique=True, index=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = Column(enum_column(OrderStatus), nullable=False, default=OrderStatus.DRAFT, index=True)
    order_date = Column(Date, nullable=True)
    delivery_date = Column(Date, nullable=True)

    subtotal_ht = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_tax = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_ttc = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    client = relationship("Client")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    article_id = Column(UUID(as_uuid=True), ForeignKey("articles.id", ondelete="RESTRICT"), nullable=False, index=True)

    quantity = Column(Numeric(12, 3), nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_price = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    # Filled as deliveries get validated
    quantity_delivered = Column(Numeric(12, 3), nullable=False, default=Decimal("0"))

    order = relationship("Order", back_populates="items")
    article = relationship("Article")
