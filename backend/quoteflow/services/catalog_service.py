# Overview: Service-layer operations for catalog; encapsulates business logic and database work.

"""
Pricing / catalog snapshot provider.

Quotation lines copy the unit price and metadata of a catalog item at the
moment they are requested (price_snapshot). Later catalog price changes never
reach an existing quotation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..extensions import db
from ..models import CatalogItem
from quoteflow.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


class CatalogError(Exception):
    pass


@dataclass(frozen=True)
class PriceSnapshot:
    item_id: int
    name: str
    unit_price_cents: int
    price_unit: str
    taken_at: datetime


def price_snapshot(item_id: int) -> PriceSnapshot | None:
    """Unit price and metadata of an active catalog item, or None if it cannot be quoted."""
    item = db.session.get(CatalogItem, item_id)
    if item is None or not item.is_active:
        return None
    return PriceSnapshot(
        item_id=item.id,
        name=item.name,
        unit_price_cents=item.price_cents,
        price_unit=item.price_unit,
        taken_at=utcnow(),
    )


def create_item(
    *,
    sku: str,
    name: str,
    price_cents: int,
    price_unit: str = "unit",
    stock_quantity: int = 0,
) -> CatalogItem:
    if not sku or not name:
        raise CatalogError("sku and name are required")
    if price_cents < 0:
        raise CatalogError("price_cents must be >= 0")
    if stock_quantity < 0:
        raise CatalogError("stock_quantity must be >= 0")
    if db.session.query(CatalogItem).filter_by(sku=sku).first():
        raise CatalogError(f"SKU {sku} already exists")

    item = CatalogItem(
        sku=sku,
        name=name,
        price_cents=price_cents,
        price_unit=price_unit,
        stock_quantity=stock_quantity,
    )
    db.session.add(item)
    db.session.commit()
    return item


def restock(item_id: int, quantity: int) -> CatalogItem:
    """Add received stock to an item."""
    if quantity <= 0:
        raise CatalogError("quantity must be > 0")

    def _op() -> CatalogItem:
        item = lock_for_update(db.session.query(CatalogItem).filter_by(id=item_id)).first()
        if item is None:
            raise CatalogError("Catalog item not found")
        item.stock_quantity = (item.stock_quantity or 0) + quantity
        db.session.commit()
        return item

    return run_with_retry(_op)


def list_items(*, include_inactive: bool = False) -> list[CatalogItem]:
    query = db.session.query(CatalogItem)
    if not include_inactive:
        query = query.filter(CatalogItem.is_active.is_(True))
    return query.order_by(CatalogItem.sku.asc()).all()
