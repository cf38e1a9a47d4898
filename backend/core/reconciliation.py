"""
Payment reconciliation.

Policy for what counts as paid:
- CANCELLED never counts;
- REFUNDED is reported in ``total_refunded`` and excluded from ``total_paid``;
- PENDING and VALID count (a pending payment is money announced by the client).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Union
from uuid import UUID

from core.enums import PaymentMethod, PaymentStatus

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")

NOT_PAID_STATUSES = frozenset({PaymentStatus.CANCELLED, PaymentStatus.REFUNDED})


def money(x) -> Decimal:
    if x is None:
        return ZERO
    if not isinstance(x, Decimal):
        x = Decimal(str(x))
    return x.quantize(CENT, rounding=ROUND_HALF_UP)


def counts_as_paid(status: PaymentStatus) -> bool:
    return PaymentStatus(status) not in NOT_PAID_STATUSES


@dataclass(frozen=True)
class PaymentFigure:
    amount: Decimal
    status: PaymentStatus
    method: Optional[PaymentMethod] = None
    payment_id: Optional[UUID] = None
    # references the row depends on; a missing one means the row is skipped
    delivery_id: Optional[UUID] = None
    invoice_id: Optional[UUID] = None


@dataclass(frozen=True)
class BalanceSummary:
    total_due: Decimal
    total_paid: Decimal
    total_refunded: Decimal
    remaining_amount: Decimal
    is_fully_paid: bool


def summarize_payments(total_due, payments: Iterable[PaymentFigure]) -> BalanceSummary:
    due = money(total_due)
    paid = ZERO
    refunded = ZERO
    for p in payments:
        status = PaymentStatus(p.status)
        if status == PaymentStatus.REFUNDED:
            refunded += money(p.amount)
        elif counts_as_paid(status):
            paid += money(p.amount)
    remaining = due - paid
    return BalanceSummary(
        total_due=due,
        total_paid=paid,
        total_refunded=refunded,
        remaining_amount=remaining,
        is_fully_paid=remaining <= 0,
    )


def recovery_rate(total_paid, total_due) -> Decimal:
    """Percentage of the due amount that has been paid; 0 when nothing is due."""
    due = money(total_due)
    if due <= 0:
        return ZERO
    return (money(total_paid) / due * 100).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class BaseFigures:
    total_due: Decimal
    total_paid: Decimal
    encours: Decimal
    recovery_rate: Decimal


def base_figures(total_due, total_paid) -> BaseFigures:
    due = money(total_due)
    paid = money(total_paid)
    return BaseFigures(
        total_due=due,
        total_paid=paid,
        encours=max(due - paid, ZERO),
        recovery_rate=recovery_rate(paid, due),
    )


@dataclass
class PaymentBuckets:
    payment_count: int = 0
    total_paid: Decimal = ZERO
    total_refunded: Decimal = ZERO
    total_cancelled: Decimal = ZERO
    by_status: Dict[str, Dict[str, Union[int, Decimal]]] = field(default_factory=dict)
    by_method: Dict[str, Decimal] = field(default_factory=dict)
    skipped_rows: int = 0


def bucket_payments(
    payments: Iterable[PaymentFigure],
    *,
    known_delivery_ids: Optional[set] = None,
    known_invoice_ids: Optional[set] = None,
) -> PaymentBuckets:
    """Fold payments into dashboard buckets.

    When a known-id set is given, a payment pointing at a delivery/invoice outside it is
    skipped and counted in ``skipped_rows``; the rest of the aggregation goes on.
    """
    out = PaymentBuckets()
    for s in PaymentStatus:
        out.by_status[s.value] = {"count": 0, "amount": ZERO}

    for p in payments:
        if known_delivery_ids is not None and p.delivery_id is not None and p.delivery_id not in known_delivery_ids:
            logger.warning("Skipping payment %s: delivery %s not found", p.payment_id, p.delivery_id)
            out.skipped_rows += 1
            continue
        if known_invoice_ids is not None and p.invoice_id is not None and p.invoice_id not in known_invoice_ids:
            logger.warning("Skipping payment %s: invoice %s not found", p.payment_id, p.invoice_id)
            out.skipped_rows += 1
            continue

        status = PaymentStatus(p.status)
        amount = money(p.amount)
        out.payment_count += 1
        bucket = out.by_status[status.value]
        bucket["count"] += 1
        bucket["amount"] += amount

        if status == PaymentStatus.CANCELLED:
            out.total_cancelled += amount
            continue
        if status == PaymentStatus.REFUNDED:
            out.total_refunded += amount
            continue

        out.total_paid += amount
        if p.method is not None:
            m = PaymentMethod(p.method).value
            out.by_method[m] = out.by_method.get(m, ZERO) + amount

    return out


def days_overdue(due_date: Union[date, datetime, None], today: Optional[date] = None) -> int:
    if due_date is None:
        return 0
    if isinstance(due_date, datetime):
        due_date = due_date.date()
    today = today or date.today()
    return max((today - due_date).days, 0)


def outstanding_rows(rows: List[dict]) -> List[dict]:
    """Keep rows with something left to pay, most overdue first."""
    kept = [r for r in rows if money(r.get("outstanding_amount")) > 0]
    return sorted(kept, key=lambda r: (-int(r.get("days_overdue") or 0), r.get("code") or ""))
