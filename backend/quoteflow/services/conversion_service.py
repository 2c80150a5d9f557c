# Overview: Service-layer operations for order conversion; encapsulates business logic and database work.

"""
Order Conversion Engine

Materializes an issued quotation into a binding sales order. Only the
issued -> approved transition reaches this module.

ONE TRANSACTION:
1. Re-run the availability reconciler. Newly unavailable items abort with
   AvailabilityConflictError and the quotation stays issued, unless the
   buyer confirmed adjustments with the approval.
2. Snapshot lines and pricing into a SalesOrder, allocate its order number
   and set quotation.linked_order_number.
3. Commit approved + order together.

IDEMPOTENCY: a set linked_order_number short-circuits and returns the
existing order (created=False). Two racing approvals both pass the status
check, but only one commit can win: the loser either fails the version
compare-and-swap (StaleDataError, retried and then short-circuited) or the
unique sales_orders.quotation_id (IntegrityError). Neither creates a second
order.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from ..errors import (
    AvailabilityConflictError,
    InvalidRequestError,
    NotFoundError,
    OwnershipError,
)
from ..extensions import db
from ..models import Quotation, SalesOrder, SalesOrderLine, OrderTimelineEvent
from quoteflow.time_utils import utcnow
from . import audit_service, quotation_service, reconciliation_service
from .concurrency import lock_for_update, run_in_transaction
from .document_service import SALES_ORDER_PREFIX, next_document_number


@dataclass
class ConversionResult:
    order: SalesOrder
    quotation: Quotation
    created: bool

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "quotation": self.quotation.to_dict(),
            "order": self.order.to_dict() if self.order is not None else None,
        }


def _snapshot_order(quotation: Quotation, order_number: str, actor_user_id: int) -> SalesOrder:
    totals = quotation.financial_summary()
    order = SalesOrder(
        order_number=order_number,
        quotation_id=quotation.id,
        quotation_reference=quotation.reference_number,
        buyer_id=quotation.buyer_id,
        status="confirmed",
        subtotal_cents=totals["subtotal_cents"],
        tax_rate_bps=totals["tax_rate_bps"],
        tax_cents=totals["tax_cents"],
        shipping_cents=totals["shipping_cents"],
        discount_cents=totals["discount_cents"],
        grand_total_cents=totals["grand_total_cents"],
        payment_status="pending",
        total_paid_cents=0,
        outstanding_balance_cents=totals["grand_total_cents"],
        created_by_user_id=actor_user_id,
    )
    order.lines = [
        SalesOrderLine(
            position=line.position,
            catalog_item_id=line.catalog_item_id,
            item_name=line.item_name,
            price_unit=line.price_unit,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            line_total_cents=line.line_total_cents,
        )
        for line in quotation.lines
    ]
    return order


def find_order_for(quotation: Quotation) -> SalesOrder | None:
    if not quotation.linked_order_number:
        return None
    return db.session.query(SalesOrder).filter_by(order_number=quotation.linked_order_number).first()


def convert_quotation(
    quotation_id: int,
    *,
    actor_user_id: int,
    comment: str | None = None,
    confirm_adjustments: bool = False,
) -> ConversionResult:
    """
    Approve an issued quotation and create its sales order.

    Returns ConversionResult(created=False) when the quotation already has a
    linked order. Raises AlreadyFinalizedError for other terminal states,
    AvailabilityConflictError when stock moved and adjustments were not
    confirmed.
    """
    def _op() -> ConversionResult:
        now = utcnow()
        quotation = lock_for_update(db.session.query(Quotation).filter_by(id=quotation_id)).first()
        if quotation is None:
            raise NotFoundError("Quotation not found", details={"quotation_id": quotation_id})
        if quotation.buyer_id != actor_user_id:
            raise OwnershipError("Quotation belongs to another account", details={"quotation_id": quotation_id})

        if quotation.linked_order_number:
            return ConversionResult(order=find_order_for(quotation), quotation=quotation, created=False)

        quotation_service.guard_transition(
            quotation, quotation_service.APPROVED, actor_user_id=actor_user_id, now=now,
        )

        report = reconciliation_service.reconcile_lines(quotation.lines)
        if not report.is_clean:
            if not confirm_adjustments:
                raise AvailabilityConflictError(
                    report.to_list(),
                    message=(
                        "Stock changed since this quotation was issued. Review the "
                        "adjusted items and approve again to confirm."
                    ),
                )
            reconciliation_service.apply_adjustments(quotation, report)

        if quotation.grand_total_cents < 0:
            raise InvalidRequestError(
                "Adjusted quotation total would be negative; ask staff to re-issue",
                details={"financials": quotation.financial_summary()},
            )

        order_number = next_document_number(document_type="sales_order", prefix=SALES_ORDER_PREFIX)
        order = _snapshot_order(quotation, order_number, actor_user_id)
        db.session.add(order)
        order.timeline.append(
            OrderTimelineEvent(
                action="order_confirmed",
                amount_cents=order.grand_total_cents,
                actor_user_id=actor_user_id,
                notes=f"Created from quotation {quotation.reference_number}",
                occurred_at=now,
            )
        )

        quotation.status = quotation_service.APPROVED
        quotation.linked_order_number = order_number
        quotation.decision_kind = "approve"
        quotation.decision_comment = comment
        quotation.decided_at = now
        quotation.decided_by_user_id = actor_user_id
        quotation.updated_at = now

        db.session.commit()
        return ConversionResult(order=order, quotation=quotation, created=True)

    try:
        result = run_in_transaction(_op)
    except IntegrityError:
        # Another approval committed an order for this quotation first.
        quotation = db.session.get(Quotation, quotation_id, populate_existing=True)
        if quotation is None or not quotation.linked_order_number:
            raise
        return ConversionResult(order=find_order_for(quotation), quotation=quotation, created=False)

    if result.created:
        audit_service.record_transition(
            entity_type="quotation",
            entity_id=result.quotation.id,
            event_type="quotation.approved",
            actor_user_id=actor_user_id,
            from_status=quotation_service.ISSUED,
            to_status=quotation_service.APPROVED,
            note=comment,
            payload={"order_number": result.order.order_number},
        )
        audit_service.record_transition(
            entity_type="sales_order",
            entity_id=result.order.id,
            event_type="order.created",
            actor_user_id=actor_user_id,
            to_status=result.order.status,
            payload={
                "quotation_reference": result.quotation.reference_number,
                "grand_total_cents": result.order.grand_total_cents,
            },
        )
    return result
