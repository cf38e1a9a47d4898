import uuid
from decimal import Decimal
from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from core.enums import ArticleType
from .database import Base, enum_column


class Article(Base):
    """Anything sold or stocked. current_stock only moves through inventory operations."""
    __tablename__ = "articles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(enum_column(ArticleType), nullable=False, default=ArticleType.PRODUCT, index=True)
    unit = Column(String, nullable=False, default="piece")

    current_stock = Column(Numeric(12, 3), nullable=False, default=Decimal("0"))
    min_stock = Column(Numeric(12, 3), nullable=True)
    max_stock = Column(Numeric(12, 3), nullable=True)
    cost_per_unit = Column(Numeric(12, 4), nullable=True)  # PMP
    sale_price = Column(Numeric(12, 2), nullable=True)

    is_perishable = Column(Boolean, nullable=False, default=False)
    shelf_life_days = Column(Integer, nullable=True)
    managed_in_stock = Column(Boolean, nullable=False, default=True)
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "type": self.type,
            "unit": self.unit,
            "current_stock": float(self.current_stock or 0),
            "min_stock": float(self.min_stock) if self.min_stock is not None else None,
            "is_perishable": bool(self.is_perishable),
            "managed_in_stock": bool(self.managed_in_stock),
        }
