"""
Availability resolver.

Turns raw (lot, zone, stock, reserved) rows for one article into the rows a delivery can
draw from, plus the selection constraints the split allocator enforces.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from core.enums import ExpirationStatus
from core.lots import expiration_status

ZERO = Decimal("0")


@dataclass(frozen=True)
class StockSlot:
    """One stock row as read from the database, before reservations are subtracted."""

    storage_zone_id: UUID
    stock_quantity: Decimal
    reserved_quantity: Decimal = ZERO
    lot_id: Optional[UUID] = None
    lot_code: Optional[str] = None
    lot_expiration_date: Optional[datetime] = None
    lot_alert_date: Optional[datetime] = None
    storage_zone_code: Optional[str] = None
    storage_zone_designation: Optional[str] = None


@dataclass(frozen=True)
class AvailabilityRow:
    lot_id: Optional[UUID]
    storage_zone_id: UUID
    stock_quantity: Decimal
    reserved_quantity: Decimal
    available_quantity: Decimal
    lot_code: Optional[str] = None
    lot_expiration_date: Optional[datetime] = None
    expiration_status: Optional[ExpirationStatus] = None
    storage_zone_code: Optional[str] = None
    storage_zone_designation: Optional[str] = None

    @property
    def key(self) -> Tuple[Optional[UUID], UUID]:
        return (self.lot_id, self.storage_zone_id)


@dataclass(frozen=True)
class AvailabilitySummary:
    total_stock: Decimal
    total_reserved: Decimal
    total_available: Decimal
    requires_lot_selection: bool
    requires_zone_selection: bool
    can_direct_delivery: bool


@dataclass(frozen=True)
class Availability:
    is_perishable: bool
    summary: AvailabilitySummary
    rows: List[AvailabilityRow] = field(default_factory=list)

    def find(self, lot_id: Optional[UUID], storage_zone_id: Optional[UUID]) -> Optional[AvailabilityRow]:
        for r in self.rows:
            if r.lot_id == lot_id and r.storage_zone_id == storage_zone_id:
                return r
        return None


def _fefo_key(row: AvailabilityRow):
    # earliest expiry first, lot-less rows last, then by codes for a stable order
    exp = row.lot_expiration_date
    if isinstance(exp, datetime):
        exp = exp.date()
    return (
        exp is None,
        exp or date.max,
        row.lot_id is None,
        row.lot_code or "",
        row.storage_zone_code or "",
    )


def summarize(rows: List[AvailabilityRow], is_perishable: bool) -> AvailabilitySummary:
    total_stock = sum((r.stock_quantity for r in rows), ZERO)
    total_reserved = sum((r.reserved_quantity for r in rows), ZERO)
    available = [r for r in rows if r.available_quantity > 0]
    total_available = sum((r.available_quantity for r in available), ZERO)

    if not available:
        # nothing to choose from: force explicit selection, the allocator rejects it
        return AvailabilitySummary(
            total_stock=total_stock,
            total_reserved=total_reserved,
            total_available=ZERO,
            requires_lot_selection=True,
            requires_zone_selection=True,
            can_direct_delivery=False,
        )

    lots = {r.lot_id for r in available if r.lot_id is not None}
    zones = {r.storage_zone_id for r in available}
    pairs = {r.key for r in available}

    return AvailabilitySummary(
        total_stock=total_stock,
        total_reserved=total_reserved,
        total_available=total_available,
        # a perishable article is picked by lot only once some stock carries one
        requires_lot_selection=len(lots) > 1 or (bool(is_perishable) and bool(lots)),
        requires_zone_selection=len(zones) > 1,
        can_direct_delivery=len(pairs) == 1 and not is_perishable,
    )


def resolve_availability(
    slots: Iterable[StockSlot],
    *,
    is_perishable: bool,
    today: Optional[date] = None,
) -> Availability:
    """Compute per-(lot, zone) availability for one article.

    Slots sharing the same (lot, zone) are merged. Rows with nothing available are
    dropped from the list but still count in the stock/reserved totals.
    """
    merged: dict[Tuple[Optional[UUID], UUID], StockSlot] = {}
    for s in slots:
        k = (s.lot_id, s.storage_zone_id)
        prev = merged.get(k)
        if prev is None:
            merged[k] = s
            continue
        merged[k] = StockSlot(
            storage_zone_id=s.storage_zone_id,
            stock_quantity=Decimal(prev.stock_quantity) + Decimal(s.stock_quantity),
            reserved_quantity=Decimal(prev.reserved_quantity) + Decimal(s.reserved_quantity),
            lot_id=s.lot_id,
            lot_code=prev.lot_code or s.lot_code,
            lot_expiration_date=prev.lot_expiration_date or s.lot_expiration_date,
            lot_alert_date=prev.lot_alert_date or s.lot_alert_date,
            storage_zone_code=prev.storage_zone_code or s.storage_zone_code,
            storage_zone_designation=prev.storage_zone_designation or s.storage_zone_designation,
        )

    all_rows: List[AvailabilityRow] = []
    for s in merged.values():
        stock_q = Decimal(s.stock_quantity or 0)
        reserved_q = Decimal(s.reserved_quantity or 0)
        all_rows.append(
            AvailabilityRow(
                lot_id=s.lot_id,
                storage_zone_id=s.storage_zone_id,
                stock_quantity=stock_q,
                reserved_quantity=reserved_q,
                available_quantity=stock_q - reserved_q,
                lot_code=s.lot_code,
                lot_expiration_date=s.lot_expiration_date,
                expiration_status=(
                    expiration_status(today, s.lot_expiration_date, s.lot_alert_date)
                    if s.lot_id is not None
                    else None
                ),
                storage_zone_code=s.storage_zone_code,
                storage_zone_designation=s.storage_zone_designation,
            )
        )

    summary = summarize(all_rows, is_perishable)
    rows = sorted((r for r in all_rows if r.available_quantity > 0), key=_fefo_key)
    return Availability(is_perishable=bool(is_perishable), rows=rows, summary=summary)
