import uuid
from sqlalchemy import Boolean, Column, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from .database import Base


class StorageZone(Base):
    __tablename__ = "storage_zones"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String, nullable=False, unique=True, index=True)
    designation = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    capacity = Column(Numeric(12, 3), nullable=True)
    unit = Column(String, nullable=True)
    temperature = Column(Numeric(5, 2), nullable=True)  # °C
    active = Column(Boolean, nullable=False, default=True)
