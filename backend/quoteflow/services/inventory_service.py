# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

"""
Inventory Availability Invariants (authoritative)

- available(item) = stock_quantity - delivered_quantity - reserved, floored at 0.
- reserved is derived: SUM(quantity - quantity_dispatched) over lines of open
  (confirmed / dispatched) sales orders. Creating an order reserves stock by
  existing; nothing is decremented.
- Unknown or inactive catalog items are "no longer available": 0.
- Read-only and side-effect free. Availability is read optimistically and
  re-validated at conversion; it is never locked for a quotation's lifetime.
- A failed lookup raises AvailabilityUnknownError. It is never treated as
  zero or as unlimited stock.
"""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..errors import AvailabilityUnknownError
from ..extensions import db
from ..models import CatalogItem, SalesOrder, SalesOrderLine, OPEN_ORDER_STATUSES


def reserved_quantity(catalog_item_id: int) -> int:
    """Quantity held by open sales orders and not yet dispatched."""
    reserved = (
        db.session.query(
            func.coalesce(
                func.sum(SalesOrderLine.quantity - SalesOrderLine.quantity_dispatched),
                0,
            )
        )
        .join(SalesOrder, SalesOrder.id == SalesOrderLine.order_id)
        .filter(
            SalesOrderLine.catalog_item_id == catalog_item_id,
            SalesOrder.status.in_(OPEN_ORDER_STATUSES),
        )
        .scalar()
    )
    return int(reserved or 0)


def available(catalog_item_id: int) -> int:
    """Current available quantity for a catalog item (always >= 0)."""
    try:
        item = db.session.get(CatalogItem, catalog_item_id)
        if item is None or not item.is_active:
            return 0
        on_hand = (item.stock_quantity or 0) - (item.delivered_quantity or 0)
        return max(0, on_hand - reserved_quantity(catalog_item_id))
    except SQLAlchemyError as exc:
        raise AvailabilityUnknownError(catalog_item_id) from exc


def get_availability_summary(catalog_item_id: int) -> dict | None:
    item = db.session.get(CatalogItem, catalog_item_id)
    if item is None:
        return None
    return {
        "catalog_item_id": item.id,
        "sku": item.sku,
        "stock_quantity": item.stock_quantity,
        "delivered_quantity": item.delivered_quantity,
        "reserved_quantity": reserved_quantity(item.id),
        "available_quantity": available(item.id),
    }
