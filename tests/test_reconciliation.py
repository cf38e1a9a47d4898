import logging
import uuid
from datetime import date
from decimal import Decimal

from core.enums import PaymentMethod, PaymentStatus
from core.reconciliation import (
    PaymentFigure,
    base_figures,
    bucket_payments,
    days_overdue,
    outstanding_rows,
    recovery_rate,
    summarize_payments,
)


def _p(amount, status, method=PaymentMethod.CASH, **kw):
    return PaymentFigure(amount=Decimal(amount), status=status, method=method, **kw)


def test_cancelled_payments_are_not_paid():
    s = summarize_payments(Decimal("1000"), [_p("600", PaymentStatus.VALID), _p("200", PaymentStatus.CANCELLED)])

    assert s.total_paid == Decimal("600.00")
    assert s.remaining_amount == Decimal("400.00")
    assert s.is_fully_paid is False


def test_refunded_payments_are_reported_separately():
    s = summarize_payments(
        "500",
        [_p("300", PaymentStatus.VALID), _p("200", PaymentStatus.REFUNDED), _p("100", PaymentStatus.PENDING)],
    )

    assert s.total_paid == Decimal("400.00")
    assert s.total_refunded == Decimal("200.00")
    assert s.remaining_amount == Decimal("100.00")


def test_fully_paid():
    s = summarize_payments("80", [_p("50", PaymentStatus.VALID), _p("30", PaymentStatus.VALID)])

    assert s.remaining_amount == Decimal("0.00")
    assert s.is_fully_paid is True


def test_recovery_rate_guards_division_by_zero():
    assert recovery_rate(Decimal("10"), Decimal("0")) == Decimal("0")
    assert recovery_rate(Decimal("250"), Decimal("1000")) == Decimal("25.00")


def test_base_figures_encours_never_negative():
    b = base_figures(Decimal("100"), Decimal("150"))

    assert b.encours == Decimal("0")
    assert b.recovery_rate == Decimal("150.00")


def test_buckets_by_status_and_method():
    b = bucket_payments(
        [
            _p("100", PaymentStatus.VALID, PaymentMethod.CASH),
            _p("50", PaymentStatus.PENDING, PaymentMethod.CARD),
            _p("20", PaymentStatus.CANCELLED, PaymentMethod.CARD),
            _p("10", PaymentStatus.REFUNDED, PaymentMethod.BANK),
        ]
    )

    assert b.payment_count == 4
    assert b.total_paid == Decimal("150.00")
    assert b.total_cancelled == Decimal("20.00")
    assert b.total_refunded == Decimal("10.00")
    assert b.by_status["VALID"] == {"count": 1, "amount": Decimal("100.00")}
    assert b.by_status["CANCELLED"]["count"] == 1
    assert b.by_method == {"cash": Decimal("100.00"), "card": Decimal("50.00")}


def test_rows_with_missing_reference_are_skipped(caplog):
    known = uuid.uuid4()
    gone = uuid.uuid4()
    payments = [
        _p("100", PaymentStatus.VALID, delivery_id=known),
        _p("40", PaymentStatus.VALID, delivery_id=gone),
    ]

    with caplog.at_level(logging.WARNING, logger="core.reconciliation"):
        b = bucket_payments(payments, known_delivery_ids={known})

    assert b.skipped_rows == 1
    assert b.payment_count == 1
    assert b.total_paid == Decimal("100.00")
    assert "not found" in caplog.text


def test_days_overdue():
    today = date(2026, 5, 20)

    assert days_overdue(date(2026, 5, 10), today) == 10
    assert days_overdue(date(2026, 6, 1), today) == 0
    assert days_overdue(None, today) == 0


def test_outstanding_rows_keep_unpaid_sorted_by_age():
    rows = [
        {"code": "FAC-1", "outstanding_amount": Decimal("0"), "days_overdue": 40},
        {"code": "FAC-2", "outstanding_amount": Decimal("10"), "days_overdue": 2},
        {"code": "FAC-3", "outstanding_amount": Decimal("5"), "days_overdue": 30},
    ]

    assert [r["code"] for r in outstanding_rows(rows)] == ["FAC-3", "FAC-2"]
