import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from core.enums import ReservationStatus
from ..database import Base, enum_column


class StockReservation(Base):
    """Quantity held for a delivery between creation and validation."""
    __tablename__ = "stock_reservations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    article_id = Column(UUID(as_uuid=True), ForeignKey("articles.id", ondelete="CASCADE"), nullable=False, index=True)
    delivery_id = Column(UUID(as_uuid=True), ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, index=True)
    lot_id = Column(UUID(as_uuid=True), ForeignKey("lots.id", ondelete="SET NULL"), nullable=True, index=True)
    storage_zone_id = Column(UUID(as_uuid=True), ForeignKey("storage_zones.id", ondelete="SET NULL"), nullable=True)

    reserved_quantity = Column(Numeric(12, 3), nullable=False)
    status = Column(enum_column(ReservationStatus), nullable=False, default=ReservationStatus.RESERVED, index=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
