import uuid
from decimal import Decimal

from sqlalchemy import Column, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database import Base


class Stock(Base):
    __tablename__ = "stock"
    __table_args__ = (
        UniqueConstraint(
            "article_id",
            "storage_zone_id",
            "lot_id",
            name="ux_stock_article_zone_lot",
            postgresql_nulls_not_distinct=True,
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    article_id = Column(
        UUID(as_uuid=True),
        ForeignKey("articles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    storage_zone_id = Column(
        UUID(as_uuid=True),
        ForeignKey("storage_zones.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    lot_id = Column(UUID(as_uuid=True), ForeignKey("lots.id", ondelete="CASCADE"), nullable=True, index=True)

    quantity = Column(Numeric(12, 3), nullable=False, default=Decimal("0"))

    lot = relationship("Lot")
    storage_zone = relationship("StorageZone")
