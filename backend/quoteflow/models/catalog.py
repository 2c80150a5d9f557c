from __future__ import annotations

from ..extensions import db
from quoteflow.time_utils import to_utc_z


class CatalogItem(db.Model):
    """
    Stocked catalog item.

    stock_quantity counts everything ever stocked; delivered_quantity counts
    what already left the yard. Quantity reserved by open sales orders is
    derived from order lines (see inventory_service.available), never stored
    here, so there is no counter to drift.
    """
    __tablename__ = "catalog_items"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_catalog_items_stock_nonneg"),
        db.CheckConstraint("delivered_quantity >= 0", name="ck_catalog_items_delivered_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)

    price_cents = db.Column(db.Integer, nullable=False)
    price_unit = db.Column(db.String(32), nullable=False, default="unit")

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    delivered_quantity = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<CatalogItem id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "price_unit": self.price_unit,
            "stock_quantity": self.stock_quantity,
            "delivered_quantity": self.delivered_quantity,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
