"""
Split allocator.

A delivery line asks for `requested_quantity` of one article; the allocator turns that into
(lot, zone, quantity) lines drawn from the resolver's availability rows. Every rule is checked
and all violations are reported together so the operator can fix every line in one pass.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from core.availability import Availability, AvailabilityRow
from core.errors import ValidationFailed

QUANTITY_TOLERANCE = Decimal("0.001")

_UNSET = object()


def as_decimal(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    if x is None:
        return Decimal("0")
    return Decimal(str(x))


@dataclass(frozen=True)
class SplitLine:
    lot_id: Optional[UUID] = None
    from_storage_zone_id: Optional[UUID] = None
    quantity: Decimal = Decimal("0")


@dataclass(frozen=True)
class SplitDraft:
    """Immutable snapshot of the lines an operator is editing; every edit returns a new draft."""

    lines: Tuple[SplitLine, ...] = field(default_factory=tuple)

    @property
    def total(self) -> Decimal:
        return sum((as_decimal(x.quantity) for x in self.lines), Decimal("0"))

    def add_line(
        self,
        lot_id: Optional[UUID] = None,
        from_storage_zone_id: Optional[UUID] = None,
        quantity=Decimal("0"),
    ) -> "SplitDraft":
        line = SplitLine(lot_id=lot_id, from_storage_zone_id=from_storage_zone_id, quantity=as_decimal(quantity))
        return SplitDraft(lines=self.lines + (line,))

    def remove_line(self, index: int) -> "SplitDraft":
        self._check_index(index)
        return SplitDraft(lines=self.lines[:index] + self.lines[index + 1:])

    def update_line(self, index: int, *, lot_id=_UNSET, from_storage_zone_id=_UNSET, quantity=_UNSET) -> "SplitDraft":
        self._check_index(index)
        changes = {}
        if lot_id is not _UNSET:
            changes["lot_id"] = lot_id
        if from_storage_zone_id is not _UNSET:
            changes["from_storage_zone_id"] = from_storage_zone_id
        if quantity is not _UNSET:
            changes["quantity"] = as_decimal(quantity)
        updated = replace(self.lines[index], **changes)
        return SplitDraft(lines=self.lines[:index] + (updated,) + self.lines[index + 1:])

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= len(self.lines):
            raise ValidationFailed(f"No split line at position {index + 1}")


def propose_splits(availability: Availability, requested_quantity) -> SplitDraft:
    """Starting draft for the editor.

    Direct case: one line on the only (lot, zone) pair, capped at what is available.
    Otherwise one empty line for the operator to fill. The cap is a convenience only,
    `validate_splits` still rejects a short auto split.
    """
    requested = as_decimal(requested_quantity)
    if availability.summary.can_direct_delivery and availability.rows:
        row = availability.rows[0]
        return SplitDraft().add_line(
            lot_id=row.lot_id,
            from_storage_zone_id=row.storage_zone_id,
            quantity=min(requested, row.available_quantity),
        )
    return SplitDraft().add_line()


def _match_row(availability: Availability, line: SplitLine) -> List[AvailabilityRow]:
    # an unset lot/zone only acts as a wildcard when that selection is not required
    out = []
    for r in availability.rows:
        if line.lot_id is not None and r.lot_id != line.lot_id:
            continue
        if line.from_storage_zone_id is not None and r.storage_zone_id != line.from_storage_zone_id:
            continue
        out.append(r)
    return out


def validate_splits(
    availability: Availability,
    requested_quantity,
    lines: Sequence[SplitLine],
    *,
    article_name: Optional[str] = None,
) -> Tuple[List[str], List[SplitLine]]:
    """Check a split set; returns (errors, resolved_lines).

    resolved_lines carry the concrete lot/zone of the availability row each line draws
    from and are only meaningful when errors is empty.
    """
    requested = as_decimal(requested_quantity)
    summary = availability.summary
    errors: List[str] = []
    resolved: List[SplitLine] = []
    label = f" for article {article_name}" if article_name else ""

    if requested <= 0:
        return [f"Requested quantity must be positive{label}"], []

    if not availability.rows:
        return [f"Insufficient availability{label}: no stock available"], []

    if not lines:
        errors.append(f"Insufficient availability{label}: no split line allocates any stock")

    total = sum((as_decimal(x.quantity) for x in lines), Decimal("0"))
    if abs(total - requested) > QUANTITY_TOLERANCE:
        errors.append(
            f"Quantity mismatch{label}: split total ({total}) must equal the requested quantity ({requested})"
        )

    seen: set = set()
    for i, line in enumerate(lines, start=1):
        qty = as_decimal(line.quantity)
        missing_selection = False
        if summary.requires_lot_selection and line.lot_id is None:
            errors.append(f"Lot required{label} (line {i})")
            missing_selection = True
        if summary.requires_zone_selection and line.from_storage_zone_id is None:
            errors.append(f"Zone required{label} (line {i})")
            missing_selection = True
        if qty <= 0:
            errors.append(f"Quantity must be positive (line {i})")

        if missing_selection:
            continue

        matches = _match_row(availability, line)
        if not matches:
            errors.append(f"Lot/zone combination not available in stock (line {i})")
            continue
        if len(matches) > 1:
            errors.append(f"Lot/zone combination is ambiguous, select a lot and a zone (line {i})")
            continue

        row = matches[0]
        if row.key in seen:
            errors.append(f"Lot/zone combination used more than once (line {i})")
        seen.add(row.key)
        if qty > row.available_quantity:
            errors.append(
                f"Insufficient availability for this lot/zone (available: {row.available_quantity}, line {i})"
            )
        resolved.append(SplitLine(lot_id=row.lot_id, from_storage_zone_id=row.storage_zone_id, quantity=qty))

    return errors, resolved


def allocate(
    availability: Availability,
    requested_quantity,
    lines: Optional[Iterable[SplitLine]] = None,
    *,
    article_name: Optional[str] = None,
) -> List[SplitLine]:
    """Validate and return the lines to materialise; raises ValidationFailed with every error.

    With no lines given, the proposed draft is used (the direct-delivery case).
    """
    if lines is None:
        lines = propose_splits(availability, requested_quantity).lines
    lines = list(lines)
    errors, resolved = validate_splits(availability, requested_quantity, lines, article_name=article_name)
    if errors:
        raise ValidationFailed(errors[0] if len(errors) == 1 else "Invalid split allocation", errors)
    return resolved
