import uuid
from decimal import Decimal

import pytest_asyncio
from sqlalchemy import func, select

from core.enums import ArticleType, OrderStatus, ReservationStatus
from db.article import Article
from db.code_sequence import CodeSequence, ensure_code_sequences
from db.delivery import Delivery
from db.inventory.operation import InventoryOperation
from db.inventory.reservation import StockReservation
from db.inventory.stock import Stock
from db.order import OrderItem
from factories import make_article, make_client, make_delivery, make_lot, make_order, make_stock, make_zone


@pytest_asyncio.fixture
async def setup(session_maker):
    """Financier in one zone, two lots (50 + 30), ordered 60 at 2.50 HT (TTC ratio 1.2)."""
    zone = await make_zone(session_maker)
    article = await make_article(session_maker, "Financier", current_stock=Decimal("80"))
    lot1 = await make_lot(session_maker, article)
    lot2 = await make_lot(session_maker, article)
    await make_stock(session_maker, article, zone, "50", lot1)
    await make_stock(session_maker, article, zone, "30", lot2)
    customer = await make_client(session_maker)
    order = await make_order(
        session_maker,
        customer,
        items=[(article, "60", "2.50")],
        subtotal_ht=Decimal("150"),
        total_ttc=Decimal("180"),
    )
    return {"zone": zone, "article": article, "lot1": lot1, "lot2": lot2, "client": customer, "order": order}


def _split_payload(s, q1=50, q2=10):
    return {
        "orderId": str(s["order"].id),
        "items": [
            {
                "articleId": str(s["article"].id),
                "requestedQuantity": q1 + q2,
                "splits": [
                    {"lotId": str(s["lot1"].id), "fromStorageZoneId": str(s["zone"].id), "quantity": q1},
                    {"lotId": str(s["lot2"].id), "fromStorageZoneId": str(s["zone"].id), "quantity": q2},
                ],
            }
        ],
    }


async def _create(client, s, **kw):
    r = await client.post("/api/deliveries", json=_split_payload(s, **kw))
    assert r.status_code == 201, r.text
    return r.json()


async def _validated(client, s):
    d = await _create(client, s)
    r = await client.post(f"/api/deliveries/{d['id']}/validate")
    assert r.status_code == 200, r.text
    return r.json()


async def _stock_by_lot(session_maker, article):
    async with session_maker() as db:
        res = await db.execute(select(Stock).where(Stock.article_id == article.id))
        return {st.lot_id: Decimal(st.quantity) for st in res.scalars().all()}


async def _quantity_delivered(session_maker, order):
    async with session_maker() as db:
        res = await db.execute(select(OrderItem.quantity_delivered).where(OrderItem.order_id == order.id))
        return [Decimal(q) for q in res.scalars().all()]


async def _current_stock(session_maker, article):
    async with session_maker() as db:
        a = (await db.execute(select(Article).where(Article.id == article.id))).scalar_one()
        return Decimal(a.current_stock)


async def test_create_with_two_lot_split(client, setup, session_maker):
    d = await _create(client, setup)

    assert d["code"] == "BL-000001"
    assert d["status"] == "pending"
    assert d["isValidated"] is False
    assert d["totalTTC"] == 180.0
    assert sorted(it["quantity"] for it in d["items"]) == [10, 50]

    async with session_maker() as db:
        res = await db.execute(select(StockReservation).where(StockReservation.delivery_id == uuid.UUID(d["id"])))
        reservations = res.scalars().all()
    assert len(reservations) == 2
    assert all(r.status == ReservationStatus.RESERVED for r in reservations)

    # reserved quantities are no longer offered
    r = await client.get(f"/api/articles/{setup['article'].id}/availability")
    rows = r.json()["availability"]
    assert [(row["lotId"], row["availableQuantity"]) for row in rows] == [(str(setup["lot2"].id), 20)]


async def test_create_reports_errors_for_every_item(client, setup, session_maker):
    service = await make_article(
        session_maker, "Emballage cadeau", article_type=ArticleType.SERVICE, managed_in_stock=False
    )
    payload = _split_payload(setup)
    payload["items"][0]["splits"].pop()
    payload["items"].append({"articleId": str(service.id), "requestedQuantity": 1})

    r = await client.post("/api/deliveries", json=payload)

    assert r.status_code == 400
    body = r.json()
    assert body["message"] == "Delivery cannot be created"
    assert any("Quantity mismatch" in e for e in body["errors"])
    assert any("not managed in stock" in e for e in body["errors"])

    async with session_maker() as db:
        assert (await db.execute(select(func.count(Delivery.id)))).scalar_one() == 0


async def test_create_rejects_second_delivery_over_reserved_stock(client, setup):
    await _create(client, setup)

    payload = _split_payload(setup)
    payload["items"][0]["requestedQuantity"] = 25
    payload["items"][0]["splits"] = [
        {"lotId": str(setup["lot2"].id), "fromStorageZoneId": str(setup["zone"].id), "quantity": 25}
    ]
    r = await client.post("/api/deliveries", json=payload)

    assert r.status_code == 400
    assert r.json()["message"].startswith("Insufficient availability for this lot/zone (available: 20")


async def test_create_uses_auto_split_in_direct_case(client, session_maker):
    zone = await make_zone(session_maker)
    box = await make_article(session_maker, "Boite 6 macarons", current_stock=Decimal("20"))
    await make_stock(session_maker, box, zone, "20")
    customer = await make_client(session_maker)
    order = await make_order(session_maker, customer, items=[(box, "4", "9.00")])

    r = await client.post(
        "/api/deliveries",
        json={"orderId": str(order.id), "items": [{"articleId": str(box.id), "requestedQuantity": 4}]},
    )

    assert r.status_code == 201, r.text
    items = r.json()["items"]
    assert len(items) == 1
    assert items[0]["lotId"] is None
    assert items[0]["fromStorageZoneId"] == str(zone.id)
    assert items[0]["quantity"] == 4
    # no subtotal on the order: HT lines are used as is
    assert r.json()["totalTTC"] == 36.0


async def test_create_needs_deliverable_order(client, setup, session_maker):
    draft = await make_order(session_maker, setup["client"], status=OrderStatus.DRAFT)
    payload = _split_payload(setup)
    payload["orderId"] = str(draft.id)

    r = await client.post("/api/deliveries", json=payload)
    assert r.status_code == 400

    payload["orderId"] = str(uuid.uuid4())
    r = await client.post("/api/deliveries", json=payload)
    assert r.status_code == 404
    assert r.json() == {"message": "Order not found"}


async def test_validate_decrements_stock_and_appends_operation(client, setup, session_maker):
    d = await _validated(client, setup)

    assert d["isValidated"] is True
    assert d["validatedAt"] is not None
    assert await _stock_by_lot(session_maker, setup["article"]) == {
        setup["lot1"].id: Decimal("0"),
        setup["lot2"].id: Decimal("20"),
    }
    assert await _current_stock(session_maker, setup["article"]) == Decimal("20")
    assert await _quantity_delivered(session_maker, setup["order"]) == [Decimal("60")]

    r = await client.get("/api/inventory-operations", params={"deliveryId": d["id"]})
    ops = r.json()
    assert len(ops) == 1
    assert ops[0]["type"] == "delivery"
    assert ops[0]["code"] == "LIV-000001"
    assert sorted(it["quantity"] for it in ops[0]["items"]) == [10, 50]

    r = await client.get(f"/api/inventory-operations/{ops[0]['id']}")
    assert r.status_code == 200


async def test_validate_twice_is_rejected(client, setup):
    d = await _validated(client, setup)

    r = await client.post(f"/api/deliveries/{d['id']}/validate")

    assert r.status_code == 400
    assert r.json()["message"] == "Delivery is already validated"


async def test_cancel_before_validation_releases_reservations(client, setup, session_maker):
    d = await _create(client, setup)

    r = await client.post(f"/api/deliveries/{d['id']}/cancel-before-validation", json={"reason": "client absent"})

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "cancelled"
    assert body["cancellationReason"] == "client absent"
    assert body["cancelledAt"] is not None

    async with session_maker() as db:
        res = await db.execute(select(StockReservation).where(StockReservation.delivery_id == uuid.UUID(d["id"])))
        assert {r.status for r in res.scalars().all()} == {ReservationStatus.CANCELLED}
        n_ops = (await db.execute(select(func.count(InventoryOperation.id)))).scalar_one()
    assert n_ops == 0

    r = await client.get(f"/api/articles/{setup['article'].id}/availability")
    assert r.json()["summary"]["totalAvailable"] == 80


async def test_short_reason_is_rejected(client, setup):
    d = await _create(client, setup)

    r = await client.post(f"/api/deliveries/{d['id']}/cancel-before-validation", json={"reason": "ok"})

    assert r.status_code == 400
    assert "minimum 3 characters" in r.json()["message"]


async def test_second_cancellation_is_rejected(client, setup):
    d = await _create(client, setup)
    await client.post(f"/api/deliveries/{d['id']}/cancel-before-validation", json={"reason": "client absent"})

    r = await client.post(f"/api/deliveries/{d['id']}/cancel-before-validation", json={"reason": "client absent"})

    assert r.status_code == 400
    assert r.json()["message"] == "Delivery is already cancelled"


async def test_paths_are_not_interchangeable(client, setup):
    d = await _create(client, setup)
    r = await client.post(
        f"/api/deliveries/{d['id']}/cancel-after-validation",
        json={"reason": "customer refused", "isReturnToStock": True},
    )
    assert r.status_code == 400

    await client.post(f"/api/deliveries/{d['id']}/validate")
    r = await client.post(f"/api/deliveries/{d['id']}/cancel-before-validation", json={"reason": "client absent"})
    assert r.status_code == 400


async def test_cancel_after_validation_return_restores_stock(client, setup, session_maker):
    d = await _validated(client, setup)

    r = await client.post(
        f"/api/deliveries/{d['id']}/cancel-after-validation",
        json={"reason": "customer refused", "isReturnToStock": True},
    )

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["delivery"]["status"] == "cancelled"
    op = body["inventoryOperation"]
    assert op["type"] == "delivery_return"
    assert op["code"] == "RETL-000001"
    assert op["wasteReason"] is None
    assert sorted(it["quantity"] for it in op["items"]) == [10, 50]

    ops = (await client.get("/api/inventory-operations", params={"deliveryId": d["id"], "type": "delivery"})).json()
    assert op["parentOperationId"] == ops[0]["id"]

    assert await _stock_by_lot(session_maker, setup["article"]) == {
        setup["lot1"].id: Decimal("50"),
        setup["lot2"].id: Decimal("30"),
    }
    assert await _current_stock(session_maker, setup["article"]) == Decimal("80")
    assert await _quantity_delivered(session_maker, setup["order"]) == [Decimal("0")]


async def test_cancel_after_validation_waste_keeps_stock(client, setup, session_maker):
    d = await _validated(client, setup)

    r = await client.post(
        f"/api/deliveries/{d['id']}/cancel-after-validation",
        json={"reason": "crushed in transit", "isReturnToStock": False, "wasteReason": "cold chain broken"},
    )

    assert r.status_code == 200, r.text
    op = r.json()["inventoryOperation"]
    assert op["type"] == "delivery_waste"
    assert op["code"] == "REBL-000001"
    assert op["wasteReason"] == "cold chain broken"
    assert await _stock_by_lot(session_maker, setup["article"]) == {
        setup["lot1"].id: Decimal("0"),
        setup["lot2"].id: Decimal("20"),
    }
    assert await _current_stock(session_maker, setup["article"]) == Decimal("20")


async def test_cancel_after_validation_needs_disposition(client, setup):
    d = await _validated(client, setup)

    r = await client.post(f"/api/deliveries/{d['id']}/cancel-after-validation", json={"reason": "customer refused"})

    assert r.status_code == 400


async def test_status_moves_forward_only(client, setup):
    d = await _create(client, setup)
    url = f"/api/deliveries/{d['id']}/status"

    r = await client.patch(url, json={"status": "in_transit"})
    assert r.status_code == 200
    assert r.json()["status"] == "in_transit"

    # same status is a no-op
    r = await client.patch(url, json={"status": "in_transit"})
    assert r.status_code == 200

    r = await client.patch(url, json={"status": "pending"})
    assert r.status_code == 400

    r = await client.patch(url, json={"status": "delivered"})
    assert r.status_code == 400

    r = await client.patch(url, json={"status": "cancelled"})
    assert r.status_code == 400

    await client.post(f"/api/deliveries/{d['id']}/validate")
    r = await client.patch(url, json={"status": "delivered"})
    assert r.status_code == 200
    assert r.json()["status"] == "delivered"


async def test_unknown_delivery_is_404(client):
    r = await client.get(f"/api/deliveries/{uuid.uuid4()}")

    assert r.status_code == 404
    assert r.json() == {"message": "Delivery not found"}


async def test_unknown_inventory_operation_is_404(client):
    r = await client.get(f"/api/inventory-operations/{uuid.uuid4()}")

    assert r.status_code == 404
    assert r.json() == {"message": "Inventory operation not found"}


async def test_lot_less_stock_spread_over_two_rows(client, session_maker):
    zone = await make_zone(session_maker)
    tart = await make_article(session_maker, "Tarte citron", current_stock=Decimal("60"))
    await make_stock(session_maker, tart, zone, "30")
    await make_stock(session_maker, tart, zone, "30")
    customer = await make_client(session_maker)
    order = await make_order(session_maker, customer, items=[(tart, "40", "3.00")])

    r = await client.get(f"/api/articles/{tart.id}/availability")
    assert r.json()["summary"]["totalAvailable"] == 60

    r = await client.post(
        "/api/deliveries",
        json={"orderId": str(order.id), "items": [{"articleId": str(tart.id), "requestedQuantity": 40}]},
    )
    assert r.status_code == 201, r.text
    d = r.json()

    r = await client.post(f"/api/deliveries/{d['id']}/validate")
    assert r.status_code == 200, r.text

    async with session_maker() as db:
        res = await db.execute(select(Stock.quantity).where(Stock.article_id == tart.id))
        quantities = sorted(Decimal(q) for q in res.scalars().all())
    assert quantities == [Decimal("0"), Decimal("20")]
    assert await _current_stock(session_maker, tart) == Decimal("20")

    r = await client.post(
        f"/api/deliveries/{d['id']}/cancel-after-validation",
        json={"reason": "wrong address", "isReturnToStock": True},
    )
    assert r.status_code == 200, r.text

    async with session_maker() as db:
        res = await db.execute(select(Stock.quantity).where(Stock.article_id == tart.id))
        assert sum(Decimal(q) for q in res.scalars().all()) == Decimal("60")
    assert await _current_stock(session_maker, tart) == Decimal("60")


async def test_codes_come_from_counter_rows(client, setup, session_maker):
    first = await _create(client, setup, q1=10, q2=10)
    second = await _create(client, setup, q1=10, q2=10)

    assert [first["code"], second["code"]] == ["BL-000001", "BL-000002"]
    async with session_maker() as db:
        seq = (await db.execute(select(CodeSequence).where(CodeSequence.prefix == "BL"))).scalar_one()
    assert seq.last_value == 2


async def test_counters_start_after_existing_codes(client, setup, session_maker):
    await make_delivery(session_maker, setup["order"])
    async with session_maker() as db:
        await ensure_code_sequences(db)

    d = await _create(client, setup)

    assert d["code"] == "BL-000002"
