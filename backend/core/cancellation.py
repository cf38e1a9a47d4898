"""
Delivery cancellation planner.

Two paths keyed on ``is_validated``:
- before validation: no stock ever moved, the delivery is simply cancelled and its
  reservations released;
- after validation: a compensating inventory operation is appended, either a return
  (stock restored) or a waste entry (stock untouched, quantities kept for loss accounting).

The router does the I/O; this module only decides and builds the plan.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Tuple
from uuid import UUID

from core.enums import DeliveryStatus, OperationType
from core.errors import StateConflict, ValidationFailed

MIN_REASON_LENGTH = 3


class CancellationPath(str, enum.Enum):
    BEFORE_VALIDATION = "before_validation"
    AFTER_VALIDATION = "after_validation"


@dataclass(frozen=True)
class DeliveredLine:
    """One line of the original delivery operation."""

    article_id: UUID
    quantity: Decimal
    lot_id: Optional[UUID] = None
    storage_zone_id: Optional[UUID] = None


@dataclass(frozen=True)
class CompensationLine:
    article_id: UUID
    quantity: Decimal
    stock_delta: Decimal
    lot_id: Optional[UUID] = None
    to_storage_zone_id: Optional[UUID] = None


@dataclass(frozen=True)
class CancellationPlan:
    path: CancellationPath
    reason: str
    operation_type: Optional[OperationType] = None
    waste_reason: Optional[str] = None
    lines: Tuple[CompensationLine, ...] = ()

    @property
    def creates_operation(self) -> bool:
        return self.operation_type is not None

    @property
    def restores_stock(self) -> bool:
        return self.operation_type == OperationType.DELIVERY_RETURN


def clean_reason(reason: Optional[str], field: str = "reason") -> str:
    r = (reason or "").strip()
    if len(r) < MIN_REASON_LENGTH:
        raise ValidationFailed(f"Cancellation {field} is required (minimum {MIN_REASON_LENGTH} characters)")
    return r


def choose_path(is_validated: bool) -> CancellationPath:
    return CancellationPath.AFTER_VALIDATION if is_validated else CancellationPath.BEFORE_VALIDATION


def ensure_cancellable(status: DeliveryStatus, is_validated: bool, requested: CancellationPath) -> None:
    if status == DeliveryStatus.CANCELLED:
        raise StateConflict("Delivery is already cancelled")
    actual = choose_path(is_validated)
    if actual != requested:
        if actual == CancellationPath.AFTER_VALIDATION:
            raise StateConflict("Delivery is already validated, use cancel-after-validation")
        raise StateConflict("Delivery is not validated, use cancel-before-validation")


def plan_before_validation(*, status: DeliveryStatus, is_validated: bool, reason: Optional[str]) -> CancellationPlan:
    ensure_cancellable(status, is_validated, CancellationPath.BEFORE_VALIDATION)
    return CancellationPlan(path=CancellationPath.BEFORE_VALIDATION, reason=clean_reason(reason))


def plan_after_validation(
    *,
    status: DeliveryStatus,
    is_validated: bool,
    reason: Optional[str],
    is_return_to_stock: Optional[bool],
    delivered_lines: Iterable[DeliveredLine],
    waste_reason: Optional[str] = None,
) -> CancellationPlan:
    """Build the compensating operation for a validated delivery.

    A return gives back exactly what the delivery operation took, into the zone it came
    from. A waste entry records the same quantities with a zero stock delta.
    """
    ensure_cancellable(status, is_validated, CancellationPath.AFTER_VALIDATION)
    r = clean_reason(reason)
    if is_return_to_stock is None:
        raise ValidationFailed("isReturnToStock is required when cancelling a validated delivery")

    lines = list(delivered_lines)
    if not lines:
        raise StateConflict("Original delivery operation has no items to compensate")

    if is_return_to_stock:
        op_type = OperationType.DELIVERY_RETURN
        w = None
    else:
        op_type = OperationType.DELIVERY_WASTE
        w = clean_reason(waste_reason, field="waste reason") if (waste_reason or "").strip() else r

    out = []
    for x in lines:
        qty = Decimal(x.quantity)
        out.append(
            CompensationLine(
                article_id=x.article_id,
                quantity=qty,
                stock_delta=qty if is_return_to_stock else Decimal("0"),
                lot_id=x.lot_id,
                to_storage_zone_id=x.storage_zone_id,
            )
        )

    return CancellationPlan(
        path=CancellationPath.AFTER_VALIDATION,
        reason=r,
        operation_type=op_type,
        waste_reason=w,
        lines=tuple(out),
    )
