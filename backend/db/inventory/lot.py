import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from core.lots import expiration_status
from ..database import Base


class Lot(Base):
    __tablename__ = "lots"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    article_id = Column(UUID(as_uuid=True), ForeignKey("articles.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String, nullable=False, unique=True, index=True)

    manufacturing_date = Column(Date, nullable=True)
    use_date = Column(Date, nullable=True)
    expiration_date = Column(Date, nullable=True, index=True)
    alert_date = Column(Date, nullable=True)

    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    article = relationship("Article")
    supplier = relationship("Supplier", back_populates="lots")

    def status_on(self, today=None):
        return expiration_status(today, self.expiration_date, self.alert_date)
