import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.cancellation import (
    CancellationPath,
    DeliveredLine,
    clean_reason,
    ensure_cancellable,
    plan_after_validation,
    plan_before_validation,
)
from core.enums import (
    DELIVERABLE_ORDER_STATUSES,
    DELIVERY_STATUS_RANK,
    DeliveryStatus,
    OperationType,
    ReservationStatus,
)
from core.errors import DomainError, NotFound, StateConflict, ValidationFailed
from core.reconciliation import money
from core.splits import SplitLine, propose_splits, validate_splits
from db.article import Article as ArticleModel
from db.code_sequence import DELIVERY_CODE_PREFIX, next_sequence_value
from db.database import get_async_session
from db.delivery import Delivery as DeliveryModel, DeliveryItem as DeliveryItemModel
from db.inventory.operation import InventoryOperation as InventoryOperationModel
from db.inventory.reservation import StockReservation as StockReservationModel
from db.inventory.stock import Stock as StockModel
from db.order import Order as OrderModel, OrderItem as OrderItemModel
from routers.articles import SlotKey, is_stock_managed, load_availability
from routers.inventory_operations import append_operation, load_operation, operation_out
from schemas.deliveries import (
    CancelAfterValidationRequest,
    CancelBeforeValidationRequest,
    DeliveryCancellationOut,
    DeliveryCreate,
    DeliveryItemOut,
    DeliveryOut,
    DeliveryStatusUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _now() -> datetime:
    # naive UTC, like server_default=func.now() columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _delivery_out(d: DeliveryModel) -> DeliveryOut:
    return DeliveryOut(**d.to_schema, items=[DeliveryItemOut(**it.to_schema) for it in d.items])


async def _load_delivery(db: AsyncSession, delivery_id: UUID, *, lock: bool = False) -> DeliveryModel:
    stmt = (
        select(DeliveryModel)
        .options(selectinload(DeliveryModel.items))
        .where(DeliveryModel.id == delivery_id)
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update(of=DeliveryModel)
    d = (await db.execute(stmt)).scalar_one_or_none()
    if not d:
        raise NotFound("Delivery not found")
    return d


async def _next_delivery_code(db: AsyncSession) -> str:
    seq = await next_sequence_value(db, DELIVERY_CODE_PREFIX)
    return f"{DELIVERY_CODE_PREFIX}-{seq:06d}"


async def _lock_article(db: AsyncSession, article_id: UUID) -> ArticleModel:
    res = await db.execute(select(ArticleModel).where(ArticleModel.id == article_id).with_for_update())
    article = res.scalar_one_or_none()
    if not article:
        raise NotFound("Article not found")
    return article


async def _lock_stock_rows(
    db: AsyncSession, article_id: UUID, storage_zone_id: Optional[UUID], lot_id: Optional[UUID]
) -> List[StockModel]:
    """Every stock row of one (article, zone, lot) slot. Lot-less rows may be split over several rows."""
    stmt = select(StockModel).where(StockModel.article_id == article_id)
    stmt = stmt.where(StockModel.storage_zone_id == storage_zone_id)
    if lot_id is None:
        stmt = stmt.where(StockModel.lot_id.is_(None))
    else:
        stmt = stmt.where(StockModel.lot_id == lot_id)
    res = await db.execute(stmt.order_by(StockModel.id).with_for_update())
    return list(res.scalars().all())


async def _active_reservations(db: AsyncSession, delivery_id: UUID) -> List[StockReservationModel]:
    res = await db.execute(
        select(StockReservationModel)
        .where(StockReservationModel.delivery_id == delivery_id)
        .where(StockReservationModel.status == ReservationStatus.RESERVED)
        .order_by(StockReservationModel.created_at.asc(), StockReservationModel.id.asc())
    )
    return list(res.scalars().all())


async def _original_delivery_operation(db: AsyncSession, delivery_id: UUID) -> Optional[InventoryOperationModel]:
    res = await db.execute(
        select(InventoryOperationModel)
        .options(selectinload(InventoryOperationModel.items))
        .where(InventoryOperationModel.delivery_id == delivery_id)
        .where(InventoryOperationModel.type == OperationType.DELIVERY)
        .order_by(InventoryOperationModel.created_at.desc())
    )
    return res.scalars().first()


async def _track_delivered(db: AsyncSession, d: DeliveryModel, sign: int) -> None:
    """Add (sign=1) or remove (sign=-1) this delivery's quantities from order_items.quantity_delivered."""
    per_item: Dict[UUID, Decimal] = {}
    for it in d.items:
        if it.order_item_id is not None:
            per_item[it.order_item_id] = per_item.get(it.order_item_id, Decimal("0")) + Decimal(it.quantity)
    if not per_item:
        return
    res = await db.execute(
        select(OrderItemModel).where(OrderItemModel.id.in_(list(per_item))).with_for_update()
    )
    for oi in res.scalars().all():
        delivered = Decimal(oi.quantity_delivered or 0) + sign * per_item[oi.id]
        oi.quantity_delivered = max(delivered, Decimal("0"))


@router.post("", response_model=DeliveryOut, status_code=status.HTTP_201_CREATED)
async def create_delivery(
    payload: DeliveryCreate,
    db: AsyncSession = Depends(get_async_session),
):
    """
    Create a pending delivery from a confirmed order.

    Every item's splits are checked against fresh availability (stock rows locked), and
    errors from all items are reported together. On success each split line becomes a
    delivery item plus a stock reservation.
    """
    try:
        res = await db.execute(
            select(OrderModel).options(selectinload(OrderModel.items)).where(OrderModel.id == payload.order_id)
        )
        order = res.scalar_one_or_none()
        if not order:
            raise NotFound("Order not found")
        if order.status not in DELIVERABLE_ORDER_STATUSES:
            raise StateConflict(f"Order {order.code} is {order.status.value}, only confirmed orders can be delivered")
        if not payload.items:
            raise ValidationFailed("A delivery needs at least one item")

        order_items = {oi.id: oi for oi in order.items}
        errors: List[str] = []
        planned = []
        pending: Dict[UUID, Dict[SlotKey, Decimal]] = {}

        for idx, item in enumerate(payload.items, start=1):
            if item.order_item_id is not None:
                oi = order_items.get(item.order_item_id)
                if oi is None:
                    errors.append(f"Order item is not part of order {order.code} (item {idx})")
                    continue
                if oi.article_id != item.article_id:
                    errors.append(f"Order item does not match the article (item {idx})")
                    continue
            else:
                oi = next((x for x in order.items if x.article_id == item.article_id), None)

            article = (
                await db.execute(select(ArticleModel).where(ArticleModel.id == item.article_id))
            ).scalar_one_or_none()
            if not article:
                errors.append(f"Article not found (item {idx})")
                continue
            if not is_stock_managed(article):
                errors.append(f"Article {article.name} is not managed in stock (item {idx})")
                continue

            availability = await load_availability(db, article, extra_reserved=pending.get(article.id), lock=True)
            if item.splits is None:
                lines = list(propose_splits(availability, item.requested_quantity).lines)
            else:
                lines = [
                    SplitLine(lot_id=s.lot_id, from_storage_zone_id=s.from_storage_zone_id, quantity=s.quantity)
                    for s in item.splits
                ]
            item_errors, resolved = validate_splits(
                availability, item.requested_quantity, lines, article_name=article.name
            )
            if item_errors:
                errors.extend(item_errors)
                continue

            held = pending.setdefault(article.id, {})
            for x in resolved:
                k = (x.lot_id, x.from_storage_zone_id)
                held[k] = held.get(k, Decimal("0")) + x.quantity

            unit_price = Decimal(oi.unit_price) if oi is not None else Decimal(article.sale_price or 0)
            planned.append((item, oi, resolved, unit_price))

        if errors:
            raise ValidationFailed(errors[0] if len(errors) == 1 else "Delivery cannot be created", errors)

        # delivery TTC follows the order's HT -> TTC ratio
        subtotal_ht = Decimal(order.subtotal_ht or 0)
        ratio = Decimal(order.total_ttc or 0) / subtotal_ht if subtotal_ht > 0 else Decimal("1")
        lines_ht = sum(
            (sum((x.quantity for x in resolved), Decimal("0")) * unit_price for _, _, resolved, unit_price in planned),
            Decimal("0"),
        )

        delivery = DeliveryModel(
            code=await _next_delivery_code(db),
            order_id=order.id,
            client_id=order.client_id,
            status=DeliveryStatus.PENDING,
            is_validated=False,
            scheduled_date=payload.scheduled_date,
            notes=payload.notes,
            total_ttc=money(lines_ht * ratio),
        )
        db.add(delivery)
        await db.flush()

        for item, oi, resolved, _ in planned:
            for x in resolved:
                db.add(
                    DeliveryItemModel(
                        delivery_id=delivery.id,
                        order_item_id=oi.id if oi is not None else None,
                        article_id=item.article_id,
                        lot_id=x.lot_id,
                        from_storage_zone_id=x.from_storage_zone_id,
                        quantity=x.quantity,
                    )
                )
                db.add(
                    StockReservationModel(
                        article_id=item.article_id,
                        delivery_id=delivery.id,
                        lot_id=x.lot_id,
                        storage_zone_id=x.from_storage_zone_id,
                        reserved_quantity=x.quantity,
                        status=ReservationStatus.RESERVED,
                    )
                )

        await db.commit()
        logger.info("Delivery %s created for order %s (%d lines)", delivery.code, order.code, len(planned))

        d = await _load_delivery(db, delivery.id)
        return _delivery_out(d)
    except (DomainError, HTTPException):
        # Let the exception handlers render it; the session rolls back on close.
        raise
    except Exception:
        await db.rollback()
        logger.exception("create_delivery failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create delivery")


@router.get("/{delivery_id}", response_model=DeliveryOut)
async def get_delivery(
    delivery_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    d = await _load_delivery(db, delivery_id)
    return _delivery_out(d)


@router.post("/{delivery_id}/validate", response_model=DeliveryOut)
async def validate_delivery(
    delivery_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    """Commit the stock movement: reservations are consumed and a LIV operation is appended."""
    try:
        d = await _load_delivery(db, delivery_id, lock=True)
        if d.status == DeliveryStatus.CANCELLED:
            raise StateConflict("Cannot validate a cancelled delivery")
        if d.is_validated:
            raise StateConflict("Delivery is already validated")

        reservations = await _active_reservations(db, d.id)
        if not reservations:
            raise StateConflict("Delivery has no reserved stock to validate")

        errors: List[str] = []
        op_items = []
        for i, r in enumerate(reservations, start=1):
            qty = Decimal(r.reserved_quantity)
            stocks = await _lock_stock_rows(db, r.article_id, r.storage_zone_id, r.lot_id)
            if not stocks:
                errors.append(f"Stock row not found for line {i}")
                continue
            in_stock = sum((Decimal(s.quantity or 0) for s in stocks), Decimal("0"))
            if in_stock < qty:
                errors.append(f"Insufficient stock for line {i} (in stock: {in_stock}, needed: {qty})")
                continue

            article = await _lock_article(db, r.article_id)
            before = Decimal(article.current_stock or 0)
            after = before - qty
            left = qty
            for s in stocks:
                take = min(Decimal(s.quantity or 0), left)
                if take <= 0:
                    continue
                s.quantity = Decimal(s.quantity or 0) - take
                left -= take
            article.current_stock = after
            r.status = ReservationStatus.COMPLETED

            op_items.append(
                {
                    "article_id": r.article_id,
                    "lot_id": r.lot_id,
                    "from_storage_zone_id": r.storage_zone_id,
                    "quantity": qty,
                    "quantity_before": before,
                    "quantity_after": after,
                }
            )

        if errors:
            raise ValidationFailed(errors[0] if len(errors) == 1 else "Delivery cannot be validated", errors)

        op = await append_operation(
            db,
            op_type=OperationType.DELIVERY,
            items=op_items,
            reason=f"Delivery {d.code}",
            delivery_id=d.id,
            order_id=d.order_id,
            client_id=d.client_id,
        )
        await _track_delivered(db, d, 1)
        d.is_validated = True
        d.validated_at = _now()

        await db.commit()
        logger.info("Delivery %s validated, operation %s", d.code, op.code)

        d = await _load_delivery(db, d.id)
        return _delivery_out(d)
    except (DomainError, HTTPException):
        raise
    except Exception:
        await db.rollback()
        logger.exception("validate_delivery failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to validate delivery")


@router.patch("/{delivery_id}/status", response_model=DeliveryOut)
async def update_delivery_status(
    delivery_id: UUID,
    payload: DeliveryStatusUpdate,
    db: AsyncSession = Depends(get_async_session),
):
    d = await _load_delivery(db, delivery_id, lock=True)
    target = payload.status

    if target == DeliveryStatus.CANCELLED:
        raise StateConflict("Use the cancellation endpoints to cancel a delivery")
    if d.status == DeliveryStatus.CANCELLED:
        raise StateConflict("Delivery is cancelled")
    if DELIVERY_STATUS_RANK[target] < DELIVERY_STATUS_RANK[d.status]:
        raise StateConflict(f"Cannot move a delivery from {d.status.value} back to {target.value}")
    if target == DeliveryStatus.DELIVERED and not d.is_validated:
        raise StateConflict("Delivery must be validated before it is marked delivered")

    if target != d.status:
        logger.info("Delivery %s: %s -> %s", d.code, d.status.value, target.value)
        d.status = target
        if target == DeliveryStatus.DELIVERED:
            d.delivered_at = _now()
        await db.commit()

    d = await _load_delivery(db, d.id)
    return _delivery_out(d)


@router.post("/{delivery_id}/cancel-before-validation", response_model=DeliveryOut)
async def cancel_before_validation(
    delivery_id: UUID,
    payload: CancelBeforeValidationRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """No stock moved yet: release the reservations and cancel. No inventory operation is created."""
    try:
        d = await _load_delivery(db, delivery_id, lock=True)
        plan = plan_before_validation(status=d.status, is_validated=bool(d.is_validated), reason=payload.reason)

        for r in await _active_reservations(db, d.id):
            r.status = ReservationStatus.CANCELLED

        d.status = DeliveryStatus.CANCELLED
        d.cancellation_reason = plan.reason
        d.cancelled_at = _now()

        await db.commit()
        logger.info("Delivery %s cancelled before validation: %s", d.code, plan.reason)

        d = await _load_delivery(db, d.id)
        return _delivery_out(d)
    except (DomainError, HTTPException):
        raise
    except Exception:
        await db.rollback()
        logger.exception("cancel_before_validation failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to cancel delivery")


@router.post("/{delivery_id}/cancel-after-validation", response_model=DeliveryCancellationOut)
async def cancel_after_validation(
    delivery_id: UUID,
    payload: CancelAfterValidationRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """
    Stock already left: append a compensating operation referencing the delivery operation.

    - isReturnToStock=true: RETL operation, stock and article current_stock restored.
    - isReturnToStock=false: REBL operation, quantities recorded with a waste reason, stock untouched.
    """
    try:
        d = await _load_delivery(db, delivery_id, lock=True)
        ensure_cancellable(d.status, bool(d.is_validated), CancellationPath.AFTER_VALIDATION)
        clean_reason(payload.reason)

        original = await _original_delivery_operation(db, d.id)
        if original is None:
            raise StateConflict("Original delivery operation not found")

        plan = plan_after_validation(
            status=d.status,
            is_validated=bool(d.is_validated),
            reason=payload.reason,
            is_return_to_stock=payload.is_return_to_stock,
            waste_reason=payload.waste_reason,
            delivered_lines=[
                DeliveredLine(
                    article_id=it.article_id,
                    quantity=Decimal(it.quantity),
                    lot_id=it.lot_id,
                    storage_zone_id=it.from_storage_zone_id,
                )
                for it in original.items
            ],
        )

        op_items = []
        for line in plan.lines:
            article = await _lock_article(db, line.article_id)
            before = Decimal(article.current_stock or 0)
            after = before + line.stock_delta

            if plan.restores_stock:
                stocks = await _lock_stock_rows(db, line.article_id, line.to_storage_zone_id, line.lot_id)
                stock = stocks[0] if stocks else None
                if stock is None:
                    stock = StockModel(
                        article_id=line.article_id,
                        storage_zone_id=line.to_storage_zone_id,
                        lot_id=line.lot_id,
                        quantity=Decimal("0"),
                    )
                    db.add(stock)
                stock.quantity = Decimal(stock.quantity or 0) + line.stock_delta
                article.current_stock = after

            op_items.append(
                {
                    "article_id": line.article_id,
                    "lot_id": line.lot_id,
                    "from_storage_zone_id": None if plan.restores_stock else line.to_storage_zone_id,
                    "to_storage_zone_id": line.to_storage_zone_id if plan.restores_stock else None,
                    "quantity": line.quantity,
                    "quantity_before": before,
                    "quantity_after": after,
                    "reason": plan.reason if plan.restores_stock else plan.waste_reason,
                }
            )

        op = await append_operation(
            db,
            op_type=plan.operation_type,
            items=op_items,
            reason=plan.reason,
            waste_reason=plan.waste_reason,
            delivery_id=d.id,
            order_id=d.order_id,
            client_id=d.client_id,
            parent_operation_id=original.id,
        )
        await _track_delivered(db, d, -1)

        d.status = DeliveryStatus.CANCELLED
        d.cancellation_reason = plan.reason
        d.cancelled_at = _now()

        await db.commit()
        logger.info(
            "Delivery %s cancelled after validation (%s), operation %s",
            d.code,
            "return to stock" if plan.restores_stock else "waste",
            op.code,
        )

        d = await _load_delivery(db, d.id)
        op = await load_operation(db, op.id)
        return DeliveryCancellationOut(delivery=_delivery_out(d), inventory_operation=operation_out(op))
    except (DomainError, HTTPException):
        raise
    except Exception:
        await db.rollback()
        logger.exception("cancel_after_validation failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to cancel delivery")
