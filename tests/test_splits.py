import uuid
from decimal import Decimal

import pytest

from core.availability import StockSlot, resolve_availability
from core.errors import ValidationFailed
from core.splits import SplitDraft, SplitLine, allocate, propose_splits, validate_splits

ZONE = uuid.uuid4()
ZONE_2 = uuid.uuid4()
LOT_1 = uuid.uuid4()
LOT_2 = uuid.uuid4()


def _availability(*slots, perishable=False):
    return resolve_availability(list(slots), is_perishable=perishable)


def _slot(qty, lot=None, zone=ZONE):
    return StockSlot(storage_zone_id=zone, stock_quantity=Decimal(qty), lot_id=lot)


def _line(qty, lot=None, zone=ZONE):
    return SplitLine(lot_id=lot, from_storage_zone_id=zone, quantity=Decimal(qty))


@pytest.fixture
def two_lots():
    return _availability(_slot("50", LOT_1), _slot("30", LOT_2))


def test_two_lot_split_summing_to_request_is_valid(two_lots):
    errors, resolved = validate_splits(two_lots, Decimal("60"), [_line("50", LOT_1), _line("10", LOT_2)])

    assert errors == []
    assert [(x.lot_id, x.quantity) for x in resolved] == [(LOT_1, Decimal("50")), (LOT_2, Decimal("10"))]


def test_sum_within_tolerance_is_accepted(two_lots):
    errors, _ = validate_splits(two_lots, Decimal("60"), [_line("50", LOT_1), _line("10.0005", LOT_2)])

    assert errors == []


def test_quantity_mismatch(two_lots):
    errors, _ = validate_splits(two_lots, Decimal("60"), [_line("50", LOT_1), _line("5", LOT_2)])

    assert len(errors) == 1
    assert "Quantity mismatch" in errors[0]


def test_missing_lot_rejected_when_lot_selection_required(two_lots):
    errors, _ = validate_splits(two_lots, Decimal("60"), [_line("50", LOT_1), _line("10", None)])

    assert "Lot required (line 2)" in errors


def test_missing_zone_rejected_when_zone_selection_required():
    a = _availability(_slot("5", zone=ZONE), _slot("5", zone=ZONE_2))

    errors, _ = validate_splits(a, Decimal("5"), [_line("5", zone=None)])

    assert "Zone required (line 1)" in errors


def test_all_errors_are_collected(two_lots):
    errors, _ = validate_splits(two_lots, Decimal("60"), [_line("0", None), _line("-1", LOT_2)])

    assert any("Quantity mismatch" in e for e in errors)
    assert "Lot required (line 1)" in errors
    assert "Quantity must be positive (line 1)" in errors
    assert "Quantity must be positive (line 2)" in errors


def test_line_above_available_quantity(two_lots):
    errors, _ = validate_splits(two_lots, Decimal("60"), [_line("60", LOT_2)])

    assert any("Insufficient availability" in e and "line 1" in e for e in errors)


def test_unknown_combination(two_lots):
    errors, _ = validate_splits(two_lots, Decimal("10"), [_line("10", LOT_1, ZONE_2)])

    assert errors == ["Lot/zone combination not available in stock (line 1)"]


def test_duplicate_combination(two_lots):
    errors, _ = validate_splits(two_lots, Decimal("20"), [_line("10", LOT_1), _line("10", LOT_1)])

    assert errors == ["Lot/zone combination used more than once (line 2)"]


def test_no_stock_is_insufficient_availability():
    errors, resolved = validate_splits(_availability(), Decimal("5"), [_line("5", LOT_1)])

    assert len(errors) == 1
    assert "Insufficient availability" in errors[0]
    assert resolved == []


def test_empty_split_set_reports_insufficient_availability(two_lots):
    errors, _ = validate_splits(two_lots, Decimal("5"), [])

    assert any("Insufficient availability" in e for e in errors)
    assert any("Quantity mismatch" in e for e in errors)


def test_direct_case_auto_split_fills_lot_and_zone():
    a = _availability(_slot("40", LOT_1))

    draft = propose_splits(a, Decimal("25"))

    assert draft.lines == (SplitLine(lot_id=LOT_1, from_storage_zone_id=ZONE, quantity=Decimal("25")),)


def test_direct_auto_split_is_capped_and_then_rejected():
    a = _availability(_slot("20", LOT_1))

    draft = propose_splits(a, Decimal("25"))
    assert draft.total == Decimal("20")

    errors, _ = validate_splits(a, Decimal("25"), draft.lines)
    assert any("Quantity mismatch" in e for e in errors)


def test_wildcard_lot_resolves_when_selection_not_required():
    a = _availability(_slot("40", LOT_1))

    assert allocate(a, Decimal("10"), [_line("10", None, ZONE)]) == [_line("10", LOT_1, ZONE)]


def test_allocate_raises_with_every_error(two_lots):
    with pytest.raises(ValidationFailed) as exc:
        allocate(two_lots, Decimal("60"), [_line("50", None), _line("5", None)])

    assert len(exc.value.errors) == 3


def test_draft_edits_return_new_snapshots():
    empty = SplitDraft()
    one = empty.add_line(LOT_1, ZONE, "10")
    two = one.add_line(LOT_2, ZONE, 5)
    changed = two.update_line(1, quantity="7")
    removed = changed.remove_line(0)

    assert empty.lines == ()
    assert len(one.lines) == 1
    assert two.total == Decimal("15")
    assert changed.total == Decimal("17")
    assert two.lines[1].quantity == Decimal("5")
    assert removed.lines == (SplitLine(lot_id=LOT_2, from_storage_zone_id=ZONE, quantity=Decimal("7")),)


def test_draft_rejects_unknown_line():
    with pytest.raises(ValidationFailed):
        SplitDraft().remove_line(0)


def test_perishable_stock_without_lots_can_still_be_allocated():
    a = _availability(_slot("12"), perishable=True)

    errors, resolved = validate_splits(a, Decimal("5"), [_line("5")])

    assert errors == []
    assert resolved == [_line("5")]
