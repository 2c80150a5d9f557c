from __future__ import annotations

from datetime import datetime

from ..extensions import db
from quoteflow.time_utils import to_utc_z, utcnow


TERMINAL_QUOTATION_STATUSES = frozenset({"approved", "rejected", "expired"})


def compute_tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    """Tax rounded half-up to the cent."""
    return (subtotal_cents * tax_rate_bps + 5000) // 10000


class Quotation(db.Model):
    """
    Price quotation document.

    LIFECYCLE (enforced by services/quotation_service.py, never written elsewhere):
        draft -> submitted -> issued -> approved | rejected | revision_requested
        submitted -> adjustment_required
        revision_requested -> issued
        any non-terminal -> expired (validity window lapsed)

    FINANCIALS: subtotal, tax and grand total are derived from the current
    lines and the staff pricing inputs (tax_rate_bps, shipping_cents,
    discount_cents). They are properties, not columns, so they can never
    disagree with their inputs.

    IDEMPOTENCY: linked_order_number is set once by the conversion engine and
    never cleared. The unique sales_orders.quotation_id backs it.
    """
    __tablename__ = "quotations"
    __table_args__ = (
        db.Index("ix_quotations_buyer_status", "buyer_id", "status"),
        db.CheckConstraint("shipping_cents >= 0", name="ck_quotations_shipping_nonneg"),
        db.CheckConstraint("discount_cents >= 0", name="ck_quotations_discount_nonneg"),
        db.CheckConstraint("tax_rate_bps >= 0", name="ck_quotations_tax_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable reference (e.g., "QT-000042"), immutable once assigned
    reference_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, default="draft", index=True)
    notes = db.Column(db.Text, nullable=True)

    # Staff pricing inputs
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    staff_comment = db.Column(db.Text, nullable=True)

    # Validity window
    valid_from = db.Column(db.DateTime(timezone=True), nullable=False)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=False)

    # Lifecycle timestamps and attribution
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=True)
    issued_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Buyer decision record
    decision_kind = db.Column(db.String(16), nullable=True)  # approve, reject, revise
    decision_comment = db.Column(db.Text, nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Set once by the conversion engine
    linked_order_number = db.Column(db.String(64), nullable=True, unique=True)

    # Last reconciliation report applied with buyer confirmation
    last_adjustments = db.Column(db.JSON, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    buyer = db.relationship("User", foreign_keys=[buyer_id], backref=db.backref("quotations", lazy=True))
    lines = db.relationship(
        "QuotationLine",
        back_populates="quotation",
        order_by="QuotationLine.position",
        cascade="all, delete-orphan",
        lazy="select",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Quotation id={self.id} ref={self.reference_number!r} status={self.status!r}>"

    # -- Derived financials --------------------------------------------------

    @property
    def subtotal_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)

    @property
    def tax_cents(self) -> int:
        return compute_tax_cents(self.subtotal_cents, self.tax_rate_bps or 0)

    @property
    def grand_total_cents(self) -> int:
        return (
            self.subtotal_cents
            + self.tax_cents
            + (self.shipping_cents or 0)
            - (self.discount_cents or 0)
        )

    def financial_summary(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "tax_rate_bps": self.tax_rate_bps or 0,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents or 0,
            "discount_cents": self.discount_cents or 0,
            "grand_total_cents": self.grand_total_cents,
        }

    # -- Derived status ------------------------------------------------------

    def is_lapsed(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return self.valid_until is not None and self.valid_until < now

    def effective_status(self, now: datetime | None = None) -> str:
        """Stored status, except a lapsed non-terminal document reads as expired."""
        if self.status in TERMINAL_QUOTATION_STATUSES:
            return self.status
        if self.is_lapsed(now):
            return "expired"
        return self.status

    def to_dict(self, *, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "reference_number": self.reference_number,
            "buyer_id": self.buyer_id,
            "status": self.effective_status(),
            "stored_status": self.status,
            "notes": self.notes,
            "staff_comment": self.staff_comment,
            "financials": self.financial_summary(),
            "validity": {
                "start": to_utc_z(self.valid_from),
                "end": to_utc_z(self.valid_until),
            },
            "decision": {
                "kind": self.decision_kind,
                "comment": self.decision_comment,
                "decided_at": to_utc_z(self.decided_at) if self.decided_at else None,
                "decided_by_user_id": self.decided_by_user_id,
            } if self.decision_kind else None,
            "linked_order_number": self.linked_order_number,
            "last_adjustments": self.last_adjustments,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            "submitted_at": to_utc_z(self.submitted_at) if self.submitted_at else None,
            "issued_at": to_utc_z(self.issued_at) if self.issued_at else None,
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class QuotationLine(db.Model):
    """Line item with the price and availability captured when it was requested."""
    __tablename__ = "quotation_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_quotation_lines_quantity_pos"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_quotation_lines_price_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    catalog_item_id = db.Column(db.Integer, db.ForeignKey("catalog_items.id"), nullable=False, index=True)
    item_name = db.Column(db.String(255), nullable=False)
    price_unit = db.Column(db.String(32), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    available_at_request = db.Column(db.Integer, nullable=True)
    price_captured_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.String(500), nullable=True)

    quotation = db.relationship("Quotation", back_populates="lines")
    catalog_item = db.relationship("CatalogItem")

    @property
    def line_total_cents(self) -> int:
        return (self.unit_price_cents or 0) * (self.quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "catalog_item_id": self.catalog_item_id,
            "item_name": self.item_name,
            "price_unit": self.price_unit,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "available_at_request": self.available_at_request,
            "price_captured_at": to_utc_z(self.price_captured_at) if self.price_captured_at else None,
            "notes": self.notes,
        }
