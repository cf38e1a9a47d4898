import uuid
from datetime import date
from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from core.enums import PaymentMethod, PaymentStatus
from .database import Base, enum_column


class Payment(Base):
    __tablename__ = "payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    delivery_id = Column(UUID(as_uuid=True), ForeignKey("deliveries.id", ondelete="SET NULL"), nullable=True, index=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(enum_column(PaymentMethod), nullable=False, default=PaymentMethod.CASH)
    status = Column(enum_column(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)
    payment_date = Column(Date, nullable=False, default=date.today)
    reference = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    received_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    delivery = relationship("Delivery", back_populates="payments")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "delivery_id": self.delivery_id,
            "order_id": self.order_id,
            "invoice_id": self.invoice_id,
            "client_id": self.client_id,
            "amount": float(self.amount),
            "method": self.method,
            "status": self.status,
            "payment_date": self.payment_date,
            "reference": self.reference,
            "notes": self.notes,
            "received_by": self.received_by,
        }
