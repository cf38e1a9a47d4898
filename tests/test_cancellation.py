import uuid
from decimal import Decimal

import pytest

from core.cancellation import (
    CancellationPath,
    DeliveredLine,
    choose_path,
    clean_reason,
    plan_after_validation,
    plan_before_validation,
)
from core.enums import DeliveryStatus, OperationType
from core.errors import StateConflict, ValidationFailed

ARTICLE = uuid.uuid4()
LOT = uuid.uuid4()
ZONE = uuid.uuid4()

LINES = [DeliveredLine(article_id=ARTICLE, quantity=Decimal("12"), lot_id=LOT, storage_zone_id=ZONE)]


def test_path_is_keyed_on_validation_flag():
    assert choose_path(False) == CancellationPath.BEFORE_VALIDATION
    assert choose_path(True) == CancellationPath.AFTER_VALIDATION


@pytest.mark.parametrize("reason", [None, "", "ok", "  ok  "])
def test_short_reason_is_rejected(reason):
    with pytest.raises(ValidationFailed) as exc:
        clean_reason(reason)
    assert "minimum 3 characters" in exc.value.message


def test_reason_is_trimmed():
    assert clean_reason("  broken box ") == "broken box"


def test_before_validation_creates_no_operation():
    plan = plan_before_validation(status=DeliveryStatus.PENDING, is_validated=False, reason="client absent")

    assert plan.creates_operation is False
    assert plan.lines == ()
    assert plan.reason == "client absent"


def test_before_validation_rejects_validated_delivery():
    with pytest.raises(StateConflict):
        plan_before_validation(status=DeliveryStatus.IN_TRANSIT, is_validated=True, reason="client absent")


def test_already_cancelled_is_surfaced():
    with pytest.raises(StateConflict) as exc:
        plan_before_validation(status=DeliveryStatus.CANCELLED, is_validated=False, reason="again please")
    assert "already cancelled" in exc.value.message


def test_return_to_stock_restores_exact_quantities():
    plan = plan_after_validation(
        status=DeliveryStatus.DELIVERED,
        is_validated=True,
        reason="customer refused",
        is_return_to_stock=True,
        delivered_lines=LINES,
    )

    assert plan.operation_type == OperationType.DELIVERY_RETURN
    assert plan.restores_stock is True
    assert plan.waste_reason is None
    assert [(x.quantity, x.stock_delta, x.to_storage_zone_id) for x in plan.lines] == [
        (Decimal("12"), Decimal("12"), ZONE)
    ]


def test_waste_keeps_stock_and_records_reason():
    plan = plan_after_validation(
        status=DeliveryStatus.IN_TRANSIT,
        is_validated=True,
        reason="crushed in transit",
        is_return_to_stock=False,
        waste_reason="cold chain broken",
        delivered_lines=LINES,
    )

    assert plan.operation_type == OperationType.DELIVERY_WASTE
    assert plan.restores_stock is False
    assert plan.waste_reason == "cold chain broken"
    assert plan.lines[0].stock_delta == Decimal("0")
    assert plan.lines[0].quantity == Decimal("12")


def test_waste_reason_defaults_to_reason():
    plan = plan_after_validation(
        status=DeliveryStatus.IN_TRANSIT,
        is_validated=True,
        reason="crushed in transit",
        is_return_to_stock=False,
        delivered_lines=LINES,
    )

    assert plan.waste_reason == "crushed in transit"


def test_after_validation_needs_disposition():
    with pytest.raises(ValidationFailed):
        plan_after_validation(
            status=DeliveryStatus.IN_TRANSIT,
            is_validated=True,
            reason="crushed in transit",
            is_return_to_stock=None,
            delivered_lines=LINES,
        )


def test_after_validation_rejects_unvalidated_delivery():
    with pytest.raises(StateConflict):
        plan_after_validation(
            status=DeliveryStatus.PENDING,
            is_validated=False,
            reason="crushed in transit",
            is_return_to_stock=True,
            delivered_lines=LINES,
        )


def test_after_validation_without_lines_is_a_conflict():
    with pytest.raises(StateConflict):
        plan_after_validation(
            status=DeliveryStatus.IN_TRANSIT,
            is_validated=True,
            reason="crushed in transit",
            is_return_to_stock=True,
            delivered_lines=[],
        )
