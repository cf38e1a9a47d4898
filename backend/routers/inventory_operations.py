import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.enums import OPERATION_CODE_PREFIX, OperationStatus, OperationType, operation_code
from core.errors import NotFound
from db.code_sequence import next_sequence_value
from db.database import get_async_session
from db.inventory.operation import (
    InventoryOperation as InventoryOperationModel,
    InventoryOperationItem as InventoryOperationItemModel,
)
from schemas.inventory import InventoryOperationOut

logger = logging.getLogger(__name__)

router = APIRouter()


async def next_operation_code(db: AsyncSession, op_type: OperationType) -> str:
    seq = await next_sequence_value(db, OPERATION_CODE_PREFIX[op_type])
    return operation_code(op_type, seq)


async def append_operation(
    db: AsyncSession,
    *,
    op_type: OperationType,
    items: List[dict],
    reason: Optional[str] = None,
    waste_reason: Optional[str] = None,
    delivery_id: Optional[UUID] = None,
    order_id: Optional[UUID] = None,
    client_id: Optional[UUID] = None,
    parent_operation_id: Optional[UUID] = None,
    notes: Optional[str] = None,
) -> InventoryOperationModel:
    """Add an operation and its items to the session (no commit). The ledger is insert-only."""
    op = InventoryOperationModel(
        code=await next_operation_code(db, op_type),
        type=op_type,
        status=OperationStatus.COMPLETED,
        reason=reason,
        waste_reason=waste_reason,
        delivery_id=delivery_id,
        order_id=order_id,
        client_id=client_id,
        parent_operation_id=parent_operation_id,
        notes=notes,
    )
    op.items = [InventoryOperationItemModel(**it) for it in items]
    db.add(op)
    await db.flush()
    return op


async def load_operation(db: AsyncSession, operation_id: UUID) -> Optional[InventoryOperationModel]:
    res = await db.execute(
        select(InventoryOperationModel)
        .options(selectinload(InventoryOperationModel.items))
        .where(InventoryOperationModel.id == operation_id)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


def operation_out(op: InventoryOperationModel) -> InventoryOperationOut:
    return InventoryOperationOut(**op.to_schema, created_at=op.created_at)


@router.get("", response_model=List[InventoryOperationOut])
async def list_inventory_operations(
    delivery_id: Optional[UUID] = Query(None, alias="deliveryId"),
    op_type: Optional[OperationType] = Query(None, alias="type"),
    db: AsyncSession = Depends(get_async_session),
):
    stmt = select(InventoryOperationModel).options(selectinload(InventoryOperationModel.items))
    if delivery_id is not None:
        stmt = stmt.where(InventoryOperationModel.delivery_id == delivery_id)
    if op_type is not None:
        stmt = stmt.where(InventoryOperationModel.type == op_type)
    stmt = stmt.order_by(InventoryOperationModel.created_at.asc(), InventoryOperationModel.code.asc())
    res = await db.execute(stmt)
    return [operation_out(op) for op in res.scalars().all()]


@router.get("/{operation_id}", response_model=InventoryOperationOut)
async def get_inventory_operation(
    operation_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    op = await load_operation(db, operation_id)
    if not op:
        raise NotFound("Inventory operation not found")
    return operation_out(op)
