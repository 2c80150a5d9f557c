from __future__ import annotations

from ..extensions import db
from quoteflow.time_utils import to_utc_z


OPEN_ORDER_STATUSES = ("confirmed", "dispatched")


class SalesOrder(db.Model):
    """
    Binding sales order created from an approved quotation.

    WHY: The order is a snapshot. Later edits to the quotation (there should
    be none, it is terminal) or to catalog prices never change what the buyer
    agreed to.

    BALANCE: outstanding_balance_cents starts at grand_total_cents and is only
    decremented by verified payment proofs. It never goes negative.
    """
    __tablename__ = "sales_orders"
    __table_args__ = (
        db.UniqueConstraint("quotation_id", name="uq_sales_orders_quotation"),
        db.CheckConstraint("outstanding_balance_cents >= 0", name="ck_sales_orders_outstanding_nonneg"),
        db.Index("ix_sales_orders_buyer_status", "buyer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "SO-000042")
    order_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id"), nullable=False)
    quotation_reference = db.Column(db.String(64), nullable=False)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="confirmed", index=True)

    # Financial snapshot (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False)

    # Payment tracking
    payment_status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    total_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    outstanding_balance_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    quotation = db.relationship("Quotation", backref=db.backref("sales_order", uselist=False, lazy=True))
    buyer = db.relationship("User", foreign_keys=[buyer_id], backref=db.backref("sales_orders", lazy=True))
    lines = db.relationship(
        "SalesOrderLine",
        back_populates="order",
        order_by="SalesOrderLine.position",
        cascade="all, delete-orphan",
    )
    payment_proofs = db.relationship(
        "PaymentProof",
        back_populates="order",
        order_by="PaymentProof.id",
    )
    timeline = db.relationship(
        "OrderTimelineEvent",
        back_populates="order",
        order_by="OrderTimelineEvent.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<SalesOrder id={self.id} number={self.order_number!r}>"

    def to_dict(self, *, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "quotation_id": self.quotation_id,
            "quotation_reference": self.quotation_reference,
            "buyer_id": self.buyer_id,
            "status": self.status,
            "financials": {
                "subtotal_cents": self.subtotal_cents,
                "tax_rate_bps": self.tax_rate_bps,
                "tax_cents": self.tax_cents,
                "shipping_cents": self.shipping_cents,
                "discount_cents": self.discount_cents,
                "grand_total_cents": self.grand_total_cents,
            },
            "payment_status": self.payment_status,
            "total_paid_cents": self.total_paid_cents,
            "outstanding_balance_cents": self.outstanding_balance_cents,
            "created_at": to_utc_z(self.created_at),
            "created_by_user_id": self.created_by_user_id,
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
            data["payment_proofs"] = [proof.to_dict() for proof in self.payment_proofs]
            data["timeline"] = [event.to_dict() for event in self.timeline]
        return data


class SalesOrderLine(db.Model):
    __tablename__ = "sales_order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sales_order_lines_quantity_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    catalog_item_id = db.Column(db.Integer, db.ForeignKey("catalog_items.id"), nullable=False, index=True)
    item_name = db.Column(db.String(255), nullable=False)
    price_unit = db.Column(db.String(32), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    quantity_dispatched = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("SalesOrder", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "catalog_item_id": self.catalog_item_id,
            "item_name": self.item_name,
            "price_unit": self.price_unit,
            "quantity": self.quantity,
            "quantity_dispatched": self.quantity_dispatched,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class PaymentProof(db.Model):
    """
    Buyer-submitted evidence of a payment.

    IMMUTABLE LIST: proofs are appended, never overwritten or deleted. Staff
    verification only moves status pending -> approved | rejected.
    """
    __tablename__ = "payment_proofs"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payment_proofs_amount_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    proof_reference = db.Column(db.String(512), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending, approved, rejected
    notes = db.Column(db.Text, nullable=True)

    submitted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    reviewed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("SalesOrder", back_populates="payment_proofs")

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "proof_reference": self.proof_reference,
            "status": self.status,
            "notes": self.notes,
            "submitted_by_user_id": self.submitted_by_user_id,
            "submitted_at": to_utc_z(self.submitted_at),
            "reviewed_by_user_id": self.reviewed_by_user_id,
            "reviewed_at": to_utc_z(self.reviewed_at) if self.reviewed_at else None,
        }


class OrderTimelineEvent(db.Model):
    """Append-only order history (confirmation, payment submissions and reviews)."""
    __tablename__ = "order_timeline_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)

    action = db.Column(db.String(64), nullable=False)  # order_confirmed, payment_submitted, payment_approved, payment_rejected
    amount_cents = db.Column(db.Integer, nullable=True)
    payment_proof_id = db.Column(db.Integer, db.ForeignKey("payment_proofs.id"), nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("SalesOrder", back_populates="timeline")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "amount_cents": self.amount_cents,
            "payment_proof_id": self.payment_proof_id,
            "actor_user_id": self.actor_user_id,
            "notes": self.notes,
            "occurred_at": to_utc_z(self.occurred_at),
        }
