import asyncio
import sys
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

"""
Seed a small pastry catalogue (zones, articles, lots, stock, a client and a confirmed order).

This script can be run from either:
- backend/: `python -m scripts.seed_demo_data`
- repo root: `python backend/scripts/seed_demo_data.py`

Re-running it is safe: rows are looked up by code first.
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import logging

from sqlalchemy import select

from core.config import settings
from core.enums import ArticleType, OrderStatus
from core.logging_setup import setup_logging
from db.article import Article
from db.client import Client
from db.database import async_session_maker, create_db_and_tables
from db.inventory.lot import Lot
from db.inventory.stock import Stock
from db.order import Order, OrderItem
from db.storage_zone import StorageZone
from db.supplier import Supplier

logger = logging.getLogger(__name__)


async def _get_or_create(session, model, code: str, **fields):
    result = await session.execute(select(model).where(model.code == code))
    obj = result.scalar_one_or_none()
    if obj:
        return obj, False
    obj = model(code=code, **fields)
    session.add(obj)
    await session.flush()
    return obj, True


async def _ensure_stock(session, article, zone, lot, quantity: Decimal) -> None:
    stmt = select(Stock).where(Stock.article_id == article.id, Stock.storage_zone_id == zone.id)
    stmt = stmt.where(Stock.lot_id.is_(None) if lot is None else Stock.lot_id == lot.id)
    stock = (await session.execute(stmt)).scalar_one_or_none()
    if stock:
        return
    session.add(Stock(article_id=article.id, storage_zone_id=zone.id, lot_id=lot.id if lot else None, quantity=quantity))
    article.current_stock = Decimal(article.current_stock or 0) + quantity
    await session.flush()


async def seed(db) -> dict:
    """Insert the demo rows through an open session and return them by name; the caller commits."""
    today = date.today()

    cold, _ = await _get_or_create(
        db, StorageZone, "ZON-000001", designation="Chambre froide", temperature=Decimal("4"), unit="kg"
    )
    dry, _ = await _get_or_create(db, StorageZone, "ZON-000002", designation="Reserve seche", unit="kg")

    croissant, _ = await _get_or_create(
        db,
        Article,
        "PRD-000001",
        name="Croissant au beurre",
        type=ArticleType.PRODUCT,
        unit="piece",
        is_perishable=True,
        shelf_life_days=3,
        sale_price=Decimal("1.20"),
        current_stock=Decimal("0"),
    )
    flour, _ = await _get_or_create(
        db,
        Article,
        "ING-000001",
        name="Farine T55",
        type=ArticleType.INGREDIENT,
        unit="kg",
        is_perishable=False,
        sale_price=Decimal("1.50"),
        current_stock=Decimal("0"),
    )
    box, _ = await _get_or_create(
        db,
        Article,
        "PRD-000002",
        name="Boite patissiere",
        type=ArticleType.PRODUCT,
        unit="piece",
        is_perishable=False,
        sale_price=Decimal("0.80"),
        current_stock=Decimal("0"),
    )

    lot_a, _ = await _get_or_create(
        db,
        Lot,
        "LOT-CRO-001",
        article_id=croissant.id,
        manufacturing_date=today,
        expiration_date=today + timedelta(days=3),
        alert_date=today + timedelta(days=2),
    )
    lot_b, _ = await _get_or_create(
        db,
        Lot,
        "LOT-CRO-002",
        article_id=croissant.id,
        manufacturing_date=today,
        expiration_date=today + timedelta(days=4),
        alert_date=today + timedelta(days=3),
    )
    mill, _ = await _get_or_create(db, Supplier, "SUP-000001", name="Moulins de Beauce", contact="commandes@moulins.test")
    flour_lot_1, _ = await _get_or_create(db, Lot, "LOT-FAR-001", article_id=flour.id, supplier_id=mill.id)
    flour_lot_2, _ = await _get_or_create(db, Lot, "LOT-FAR-002", article_id=flour.id, supplier_id=mill.id)

    await _ensure_stock(db, croissant, cold, lot_a, Decimal("40"))
    await _ensure_stock(db, croissant, cold, lot_b, Decimal("25"))
    await _ensure_stock(db, flour, dry, flour_lot_1, Decimal("50"))
    await _ensure_stock(db, flour, dry, flour_lot_2, Decimal("30"))
    await _ensure_stock(db, box, dry, None, Decimal("200"))

    client, _ = await _get_or_create(db, Client, "CLI-000001", name="Salon de the Madeleine", email="contact@madeleine.test")

    order, created = await _get_or_create(
        db,
        Order,
        "CMD-000001",
        client_id=client.id,
        status=OrderStatus.CONFIRMED,
        order_date=today,
        subtotal_ht=Decimal("150.00"),
        total_tax=Decimal("30.00"),
        total_ttc=Decimal("180.00"),
    )
    if created:
        db.add_all(
            [
                OrderItem(order_id=order.id, article_id=croissant.id, quantity=Decimal("50"),
                          unit_price=Decimal("1.20"), total_price=Decimal("60.00")),
                OrderItem(order_id=order.id, article_id=flour.id, quantity=Decimal("60"),
                          unit_price=Decimal("1.50"), total_price=Decimal("90.00")),
            ]
        )
        await db.flush()

    return {
        "zones": [cold, dry],
        "articles": [croissant, flour, box],
        "lots": [lot_a, lot_b, flour_lot_1, flour_lot_2],
        "supplier": mill,
        "client": client,
        "order": order,
    }


async def main():
    setup_logging(settings)
    await create_db_and_tables()
    async with async_session_maker() as session:
        rows = await seed(session)
        await session.commit()
    logger.info(
        "Seeded %d zones, %d articles, %d lots, order %s",
        len(rows["zones"]),
        len(rows["articles"]),
        len(rows["lots"]),
        rows["order"].code,
    )


if __name__ == "__main__":
    asyncio.run(main())
