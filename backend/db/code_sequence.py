import logging

from sqlalchemy import Column, Integer, String, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.enums import OPERATION_CODE_PREFIX
from .database import Base
from .delivery import Delivery
from .inventory.operation import InventoryOperation

logger = logging.getLogger(__name__)

DELIVERY_CODE_PREFIX = "BL"


class CodeSequence(Base):
    """Last number handed out for one code prefix (BL, LIV, RETL...)."""
    __tablename__ = "code_sequences"

    prefix = Column(String(16), primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)


def _existing_count(prefix: str):
    if prefix == DELIVERY_CODE_PREFIX:
        return select(func.count(Delivery.id))
    op_type = next(t for t, p in OPERATION_CODE_PREFIX.items() if p == prefix)
    return select(func.count(InventoryOperation.id)).where(InventoryOperation.type == op_type)


def all_prefixes():
    return [DELIVERY_CODE_PREFIX, *OPERATION_CODE_PREFIX.values()]


async def next_sequence_value(db: AsyncSession, prefix: str) -> int:
    """
    Bump the prefix's counter and return the new value.

    The counter row is taken FOR UPDATE and stays locked until the caller's transaction
    ends, so two concurrent writers never get the same number.
    """
    res = await db.execute(select(CodeSequence).where(CodeSequence.prefix == prefix).with_for_update())
    seq = res.scalar_one_or_none()
    if seq is None:
        start = (await db.execute(_existing_count(prefix))).scalar_one() or 0
        seq = CodeSequence(prefix=prefix, last_value=int(start))
        db.add(seq)
    seq.last_value = int(seq.last_value) + 1
    await db.flush()
    return seq.last_value


async def ensure_code_sequences(db: AsyncSession) -> None:
    """Create missing counter rows, starting after the codes already in the tables."""
    res = await db.execute(select(CodeSequence.prefix))
    existing = set(res.scalars().all())
    for prefix in all_prefixes():
        if prefix in existing:
            continue
        start = (await db.execute(_existing_count(prefix))).scalar_one() or 0
        db.add(CodeSequence(prefix=prefix, last_value=int(start)))
        logger.info("Code sequence %s starts after %d", prefix, start)
    await db.commit()
