# Overview: Service-layer operations for payment proofs; encapsulates business logic and database work.

"""
Payment Proof Service

WHY: Buyers pay sales orders out of band (bank transfer) and attach proof.
Proof submission is a gated financial action (see workflow_service); staff
verify proofs separately.

RULES:
- amount_cents must be an integer > 0.
- amount_cents may exceed the current outstanding balance by at most
  PAYMENT_TOLERANCE_CENTS (rounding), otherwise AmountExceedsBalanceError
  carrying the balance. Nothing is stored on rejection.
- Proofs are appended with status pending; never overwritten or deleted.
- Only a verified proof moves money: outstanding_balance_cents decreases
  (clamped at 0), total_paid_cents increases, payment_status follows.
- Every submission and review lands on the order timeline.
"""

from __future__ import annotations

from flask import current_app

from ..errors import (
    AmountExceedsBalanceError,
    InvalidRequestError,
    NotFoundError,
    OwnershipError,
)
from ..extensions import db
from ..models import OrderTimelineEvent, PaymentProof, SalesOrder
from quoteflow.time_utils import utcnow
from . import audit_service
from .concurrency import lock_for_update, run_in_transaction


PAYMENT_PENDING = "pending"
PAYMENT_IN_PROGRESS = "payment_in_progress"
FULLY_PAID = "fully_paid"

PROOF_PENDING = "pending"
PROOF_APPROVED = "approved"
PROOF_REJECTED = "rejected"


def _load_order_for_update(order_id: int) -> SalesOrder:
    order = lock_for_update(db.session.query(SalesOrder).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def _validate_claim(order: SalesOrder, actor_user_id: int, amount_cents, proof_reference) -> None:
    if order.buyer_id != actor_user_id:
        raise OwnershipError("Order belongs to another account", details={"order_id": order.id})
    if order.status == "cancelled":
        raise InvalidRequestError("Order is cancelled", details={"order_id": order.id})
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidRequestError("amount_cents must be an integer")
    if amount_cents <= 0:
        raise InvalidRequestError("amount_cents must be > 0", details={"amount_cents": amount_cents})
    if not isinstance(proof_reference, str) or not proof_reference.strip():
        raise InvalidRequestError("proof_reference is required")

    tolerance = int(current_app.config.get("PAYMENT_TOLERANCE_CENTS", 1))
    if amount_cents > order.outstanding_balance_cents + tolerance:
        raise AmountExceedsBalanceError(amount_cents, order.outstanding_balance_cents)


def precheck_payment_proof(order_id: int, actor_user_id: int, amount_cents, proof_reference) -> SalesOrder:
    """Validate a claim before the Risk Gate runs, so a bad claim never opens a challenge."""
    order = db.session.get(SalesOrder, order_id)
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    _validate_claim(order, actor_user_id, amount_cents, proof_reference)
    return order


def submit_payment_proof(
    order_id: int,
    actor_user_id: int,
    amount_cents,
    proof_reference,
    *,
    notes: str | None = None,
) -> PaymentProof:
    """Append a pending proof after re-validating against the current balance."""
    def _op() -> PaymentProof:
        now = utcnow()
        order = _load_order_for_update(order_id)
        _validate_claim(order, actor_user_id, amount_cents, proof_reference)

        proof = PaymentProof(
            order_id=order.id,
            amount_cents=amount_cents,
            proof_reference=proof_reference.strip(),
            status=PROOF_PENDING,
            notes=notes,
            submitted_by_user_id=actor_user_id,
            submitted_at=now,
        )
        db.session.add(proof)
        db.session.flush()

        order.timeline.append(
            OrderTimelineEvent(
                action="payment_submitted",
                amount_cents=amount_cents,
                payment_proof_id=proof.id,
                actor_user_id=actor_user_id,
                occurred_at=now,
            )
        )
        if order.payment_status == PAYMENT_PENDING:
            order.payment_status = PAYMENT_IN_PROGRESS
        db.session.commit()
        return proof

    proof = run_in_transaction(_op)
    audit_service.record_transition(
        entity_type="payment_proof",
        entity_id=proof.id,
        event_type="payment.submitted",
        actor_user_id=actor_user_id,
        to_status=PROOF_PENDING,
        payload={"order_id": order_id, "amount_cents": amount_cents},
    )
    return proof


def _load_pending_proof(order: SalesOrder, proof_id: int) -> PaymentProof:
    proof = lock_for_update(
        db.session.query(PaymentProof).filter_by(id=proof_id, order_id=order.id)
    ).first()
    if proof is None:
        raise NotFoundError("Payment proof not found", details={"proof_id": proof_id})
    if proof.status != PROOF_PENDING:
        raise InvalidRequestError(
            "Payment proof was already reviewed",
            details={"proof_id": proof_id, "status": proof.status},
        )
    return proof


def verify_payment_proof(order_id: int, proof_id: int, staff_user_id: int, *, notes: str | None = None) -> SalesOrder:
    """pending -> approved; applies the amount to the order balance."""
    def _op() -> SalesOrder:
        now = utcnow()
        order = _load_order_for_update(order_id)
        proof = _load_pending_proof(order, proof_id)

        proof.status = PROOF_APPROVED
        proof.reviewed_by_user_id = staff_user_id
        proof.reviewed_at = now
        if notes:
            proof.notes = notes

        order.total_paid_cents = (order.total_paid_cents or 0) + proof.amount_cents
        order.outstanding_balance_cents = max(0, order.outstanding_balance_cents - proof.amount_cents)
        order.payment_status = FULLY_PAID if order.outstanding_balance_cents == 0 else PAYMENT_IN_PROGRESS
        order.timeline.append(
            OrderTimelineEvent(
                action="payment_approved",
                amount_cents=proof.amount_cents,
                payment_proof_id=proof.id,
                actor_user_id=staff_user_id,
                notes=notes,
                occurred_at=now,
            )
        )
        db.session.commit()
        return order

    order = run_in_transaction(_op)
    audit_service.record_transition(
        entity_type="payment_proof",
        entity_id=proof_id,
        event_type="payment.approved",
        actor_user_id=staff_user_id,
        from_status=PROOF_PENDING,
        to_status=PROOF_APPROVED,
        payload={"order_id": order_id, "outstanding_balance_cents": order.outstanding_balance_cents},
    )
    return order


def reject_payment_proof(order_id: int, proof_id: int, staff_user_id: int, *, notes: str | None = None) -> SalesOrder:
    """pending -> rejected; the balance is untouched."""
    def _op() -> SalesOrder:
        now = utcnow()
        order = _load_order_for_update(order_id)
        proof = _load_pending_proof(order, proof_id)

        proof.status = PROOF_REJECTED
        proof.reviewed_by_user_id = staff_user_id
        proof.reviewed_at = now
        if notes:
            proof.notes = notes

        still_pending = any(
            p.status == PROOF_PENDING for p in order.payment_proofs if p.id != proof.id
        )
        if not still_pending and not order.total_paid_cents:
            order.payment_status = PAYMENT_PENDING
        order.timeline.append(
            OrderTimelineEvent(
                action="payment_rejected",
                amount_cents=proof.amount_cents,
                payment_proof_id=proof.id,
                actor_user_id=staff_user_id,
                notes=notes,
                occurred_at=now,
            )
        )
        db.session.commit()
        return order

    order = run_in_transaction(_op)
    audit_service.record_transition(
        entity_type="payment_proof",
        entity_id=proof_id,
        event_type="payment.rejected",
        actor_user_id=staff_user_id,
        from_status=PROOF_PENDING,
        to_status=PROOF_REJECTED,
        note=notes,
    )
    return order


def get_order_for(order_id: int, user_id: int, *, can_view_all: bool = False) -> SalesOrder:
    order = db.session.get(SalesOrder, order_id)
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    if not can_view_all and order.buyer_id != user_id:
        raise OwnershipError("Order belongs to another account", details={"order_id": order_id})
    return order


def get_order_by_number_for(order_number: str, user_id: int, *, can_view_all: bool = False) -> SalesOrder:
    order = db.session.query(SalesOrder).filter_by(order_number=order_number).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_number": order_number})
    return get_order_for(order.id, user_id, can_view_all=can_view_all)


def list_orders(*, buyer_id: int | None = None, limit: int = 200) -> list[SalesOrder]:
    query = db.session.query(SalesOrder)
    if buyer_id is not None:
        query = query.filter(SalesOrder.buyer_id == buyer_id)
    return query.order_by(SalesOrder.id.desc()).limit(limit).all()
