import logging
from datetime import date
from decimal import Decimal
from typing import Dict, Optional, Tuple
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.availability import Availability, StockSlot, resolve_availability
from core.enums import ArticleType, ReservationStatus
from core.errors import NotFound
from core.splits import SplitLine, propose_splits, validate_splits
from db.article import Article as ArticleModel
from db.database import get_async_session
from db.inventory.lot import Lot as LotModel
from db.inventory.reservation import StockReservation as StockReservationModel
from db.inventory.stock import Stock as StockModel
from db.storage_zone import StorageZone as StorageZoneModel
from schemas.articles import (
    ArticleAvailabilityOut,
    ArticleRef,
    AvailabilityRowOut,
    AvailabilitySummaryOut,
    SplitLineOut,
    SplitProposalOut,
    SplitRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

SlotKey = Tuple[Optional[UUID], UUID]


def is_stock_managed(article: ArticleModel) -> bool:
    return bool(article.managed_in_stock) and article.type != ArticleType.SERVICE


async def _reserved_by_slot(
    db: AsyncSession, article_id: UUID, exclude_delivery_id: Optional[UUID]
) -> Dict[SlotKey, Decimal]:
    stmt = (
        select(
            StockReservationModel.lot_id,
            StockReservationModel.storage_zone_id,
            func.sum(StockReservationModel.reserved_quantity),
        )
        .where(StockReservationModel.article_id == article_id)
        .where(StockReservationModel.status == ReservationStatus.RESERVED)
        .group_by(StockReservationModel.lot_id, StockReservationModel.storage_zone_id)
    )
    if exclude_delivery_id is not None:
        stmt = stmt.where(StockReservationModel.delivery_id != exclude_delivery_id)
    res = await db.execute(stmt)
    return {(lot_id, zone_id): Decimal(str(total or 0)) for lot_id, zone_id, total in res.all()}


async def load_availability(
    db: AsyncSession,
    article: ArticleModel,
    *,
    exclude_delivery_id: Optional[UUID] = None,
    extra_reserved: Optional[Dict[SlotKey, Decimal]] = None,
    lock: bool = False,
    today: Optional[date] = None,
) -> Availability:
    """
    Read stock rows and active reservations for one article and resolve availability.

    - lock=True takes row locks on the article's stock rows (SELECT ... FOR UPDATE) so a
      concurrent delivery cannot reserve against the same snapshot.
    - extra_reserved lets a caller count quantities it is about to reserve in the same request.
    """
    if not is_stock_managed(article):
        return resolve_availability([], is_perishable=bool(article.is_perishable), today=today)

    stmt = (
        select(StockModel, LotModel, StorageZoneModel)
        .join(StorageZoneModel, StockModel.storage_zone_id == StorageZoneModel.id)
        .outerjoin(LotModel, StockModel.lot_id == LotModel.id)
        .where(StockModel.article_id == article.id)
    )
    if lock:
        stmt = stmt.with_for_update(of=StockModel)
    rows = (await db.execute(stmt)).all()

    reserved = await _reserved_by_slot(db, article.id, exclude_delivery_id)
    for k, v in (extra_reserved or {}).items():
        reserved[k] = reserved.get(k, Decimal("0")) + v

    slots = []
    for stock, lot, zone in rows:
        slots.append(
            StockSlot(
                storage_zone_id=stock.storage_zone_id,
                stock_quantity=Decimal(stock.quantity or 0),
                reserved_quantity=reserved.get((stock.lot_id, stock.storage_zone_id), Decimal("0")),
                lot_id=stock.lot_id,
                lot_code=lot.code if lot else None,
                lot_expiration_date=lot.expiration_date if lot else None,
                lot_alert_date=lot.alert_date if lot else None,
                storage_zone_code=zone.code,
                storage_zone_designation=zone.designation,
            )
        )
    return resolve_availability(slots, is_perishable=bool(article.is_perishable), today=today)


async def get_article_or_404(db: AsyncSession, article_id: UUID) -> ArticleModel:
    res = await db.execute(select(ArticleModel).where(ArticleModel.id == article_id))
    article = res.scalar_one_or_none()
    if not article:
        raise NotFound("Article not found")
    return article


def _summary_out(availability: Availability) -> AvailabilitySummaryOut:
    s = availability.summary
    return AvailabilitySummaryOut(
        total_stock=float(s.total_stock),
        total_reserved=float(s.total_reserved),
        total_available=float(s.total_available),
        requires_lot_selection=s.requires_lot_selection,
        requires_zone_selection=s.requires_zone_selection,
        can_direct_delivery=s.can_direct_delivery,
        is_perishable=availability.is_perishable,
    )


@router.get("/{article_id}/availability", response_model=ArticleAvailabilityOut)
async def get_article_availability(
    article_id: UUID,
    exclude_delivery_id: Optional[UUID] = Query(None, alias="excludeDeliveryId"),
    db: AsyncSession = Depends(get_async_session),
):
    """Per lot/zone availability (stock - reserved) and the selection the split editor must enforce."""
    article = await get_article_or_404(db, article_id)
    availability = await load_availability(db, article, exclude_delivery_id=exclude_delivery_id)

    rows = [
        AvailabilityRowOut(
            lot_id=r.lot_id,
            lot_code=r.lot_code,
            lot_expiration_date=r.lot_expiration_date,
            expiration_status=r.expiration_status,
            storage_zone_id=r.storage_zone_id,
            storage_zone_code=r.storage_zone_code,
            storage_zone_designation=r.storage_zone_designation,
            stock_quantity=float(r.stock_quantity),
            reserved_quantity=float(r.reserved_quantity),
            available_quantity=float(r.available_quantity),
        )
        for r in availability.rows
    ]
    return ArticleAvailabilityOut(
        article=ArticleRef(**article.to_schema),
        availability=rows,
        summary=_summary_out(availability),
    )


@router.post("/{article_id}/splits", response_model=SplitProposalOut)
async def check_article_splits(
    article_id: UUID,
    payload: SplitRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """
    Propose or check a split set without committing anything.

    Without `splits`, returns the starting draft (auto split in the direct case).
    Always 200: validation problems come back in `errors`.
    """
    article = await get_article_or_404(db, article_id)
    availability = await load_availability(db, article, exclude_delivery_id=payload.exclude_delivery_id)

    if payload.splits is None:
        lines = list(propose_splits(availability, payload.requested_quantity).lines)
    else:
        lines = [
            SplitLine(lot_id=s.lot_id, from_storage_zone_id=s.from_storage_zone_id, quantity=s.quantity)
            for s in payload.splits
        ]

    errors, resolved = validate_splits(availability, payload.requested_quantity, lines, article_name=article.name)
    shown = resolved if not errors else lines
    return SplitProposalOut(
        splits=[
            SplitLineOut(lot_id=x.lot_id, from_storage_zone_id=x.from_storage_zone_id, quantity=float(x.quantity))
            for x in shown
        ],
        errors=errors,
        is_valid=not errors,
        summary=_summary_out(availability),
    )
