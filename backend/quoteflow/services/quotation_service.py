# Overview: Service-layer operations for quotations; encapsulates business logic and database work.

"""
Quotation State Machine

WHY: A quotation is a financial document. Its status only moves along the
graph below, every move is a compare-and-swap on the row (lock_for_update +
version_id_col), and each move commits status, rewritten lines and derived
totals together or not at all.

GRAPH:
    draft              -> submitted            (buyer; reconciles availability)
    submitted          -> issued               (staff prices the quote)
    submitted          -> adjustment_required  (staff flags needed changes)
    issued             -> approved             (buyer; conversion_service only)
    issued             -> rejected             (buyer)
    issued             -> revision_requested   (buyer; comment required)
    revision_requested -> issued               (staff re-issues)
    any non-terminal   -> expired              (validity lapsed)

TERMINAL: approved, rejected, expired. Any transition attempted on a
terminal quotation raises AlreadyFinalizedError; any other illegal move
raises IllegalTransitionError. A lapsed quotation that is touched by a
transition is persisted as expired first, then AlreadyFinalizedError.

AUDIT: every committed transition is reported to audit_service after commit.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..errors import (
    AlreadyFinalizedError,
    AvailabilityConflictError,
    IllegalTransitionError,
    InvalidRequestError,
    NotFoundError,
    OwnershipError,
)
from ..extensions import db
from ..models import Quotation, QuotationLine, TERMINAL_QUOTATION_STATUSES
from ..models.quotations import compute_tax_cents
from quoteflow.time_utils import utcnow
from . import audit_service, catalog_service, inventory_service, reconciliation_service
from .concurrency import lock_for_update, run_in_transaction
from .document_service import QUOTATION_PREFIX, next_document_number


DRAFT = "draft"
SUBMITTED = "submitted"
ISSUED = "issued"
ADJUSTMENT_REQUIRED = "adjustment_required"
REVISION_REQUESTED = "revision_requested"
APPROVED = "approved"
REJECTED = "rejected"
EXPIRED = "expired"

ALL_STATUSES = (
    DRAFT, SUBMITTED, ISSUED, ADJUSTMENT_REQUIRED,
    REVISION_REQUESTED, APPROVED, REJECTED, EXPIRED,
)

TRANSITIONS = frozenset({
    (DRAFT, SUBMITTED),
    (SUBMITTED, ISSUED),
    (SUBMITTED, ADJUSTMENT_REQUIRED),
    (ISSUED, APPROVED),
    (ISSUED, REJECTED),
    (ISSUED, REVISION_REQUESTED),
    (REVISION_REQUESTED, ISSUED),
})

# Buyer decision kinds and the status each one targets
DECISION_TARGETS = {
    "approve": APPROVED,
    "reject": REJECTED,
    "revise": REVISION_REQUESTED,
}


def can_transition(current: str, target: str) -> bool:
    if current in TERMINAL_QUOTATION_STATUSES:
        return False
    if target == EXPIRED:
        return True
    return (current, target) in TRANSITIONS


def already_finalized(quotation: Quotation) -> AlreadyFinalizedError:
    return AlreadyFinalizedError(
        quotation.status,
        reference_number=quotation.reference_number,
        order_number=quotation.linked_order_number,
        decided_by_user_id=quotation.decided_by_user_id,
    )


def _expire(quotation: Quotation, now: datetime) -> str:
    from_status = quotation.status
    quotation.status = EXPIRED
    quotation.expired_at = now
    quotation.updated_at = now
    return from_status


def guard_transition(
    quotation: Quotation,
    target: str,
    *,
    actor_user_id: int | None,
    now: datetime | None = None,
) -> None:
    """
    Check that quotation may move to target, raising the matching error.

    Must run before the caller changes anything in the session: a lapsed
    quotation is committed as expired here before AlreadyFinalizedError.
    """
    now = now or utcnow()
    if quotation.status in TERMINAL_QUOTATION_STATUSES:
        raise already_finalized(quotation)

    if quotation.is_lapsed(now):
        from_status = _expire(quotation, now)
        db.session.commit()
        audit_service.record_transition(
            entity_type="quotation",
            entity_id=quotation.id,
            event_type="quotation.expired",
            actor_user_id=actor_user_id,
            from_status=from_status,
            to_status=EXPIRED,
            note="Validity window lapsed",
        )
        raise already_finalized(quotation)

    if not can_transition(quotation.status, target):
        raise IllegalTransitionError(quotation.status, target)


def _load_for_update(quotation_id: int) -> Quotation:
    quotation = lock_for_update(db.session.query(Quotation).filter_by(id=quotation_id)).first()
    if quotation is None:
        raise NotFoundError("Quotation not found", details={"quotation_id": quotation_id})
    return quotation


def _require_owner(quotation: Quotation, user_id: int) -> None:
    if quotation.buyer_id != user_id:
        raise OwnershipError(
            "Quotation belongs to another account",
            details={"quotation_id": quotation.id},
        )


def _validity_days(key: str) -> int:
    return int(current_app.config[key])


# -- Line building ----------------------------------------------------------

def _normalize_items(items) -> list[dict]:
    """
    Validate requested items and merge lines for the same catalog item.

    Each item: {"catalog_item_id": int, "quantity": int > 0, "notes": str?}
    """
    if not isinstance(items, list) or not items:
        raise InvalidRequestError("At least one item is required")

    merged: dict[int, dict] = {}
    for raw in items:
        if not isinstance(raw, dict):
            raise InvalidRequestError("Each item must be an object")
        try:
            item_id = int(raw.get("catalog_item_id"))
            quantity = int(raw.get("quantity"))
        except (TypeError, ValueError):
            raise InvalidRequestError(
                "catalog_item_id and quantity must be integers",
                details={"item": raw},
            )
        if quantity <= 0:
            raise InvalidRequestError(
                "quantity must be > 0",
                details={"catalog_item_id": item_id, "quantity": quantity},
            )
        if item_id in merged:
            merged[item_id]["quantity"] += quantity
        else:
            merged[item_id] = {
                "catalog_item_id": item_id,
                "quantity": quantity,
                "notes": raw.get("notes"),
            }
    return list(merged.values())


def _build_lines(items) -> list[QuotationLine]:
    lines = []
    for position, item in enumerate(_normalize_items(items), start=1):
        snapshot = catalog_service.price_snapshot(item["catalog_item_id"])
        if snapshot is None:
            raise InvalidRequestError(
                "Catalog item is not available for quotation",
                details={"catalog_item_id": item["catalog_item_id"]},
            )
        lines.append(
            QuotationLine(
                position=position,
                catalog_item_id=snapshot.item_id,
                item_name=snapshot.name,
                price_unit=snapshot.price_unit,
                quantity=item["quantity"],
                unit_price_cents=snapshot.unit_price_cents,
                available_at_request=inventory_service.available(snapshot.item_id),
                price_captured_at=snapshot.taken_at,
                notes=item["notes"],
            )
        )
    return lines


# -- No-commit building blocks (shared with workflow_service) ---------------

def new_draft(buyer_id: int, items, *, notes: str | None = None, now: datetime | None = None) -> Quotation:
    """Add a draft quotation with fresh price snapshots to the session (no commit)."""
    now = now or utcnow()
    quotation = Quotation(
        reference_number=next_document_number(document_type="quotation", prefix=QUOTATION_PREFIX),
        buyer_id=buyer_id,
        status=DRAFT,
        notes=notes,
        valid_from=now,
        valid_until=now + timedelta(days=_validity_days("QUOTATION_DRAFT_VALIDITY_DAYS")),
        created_at=now,
        updated_at=now,
    )
    quotation.lines = _build_lines(items)
    db.session.add(quotation)
    db.session.flush()
    return quotation


def load_editable_draft(quotation_id: int, buyer_id: int, *, now: datetime | None = None) -> Quotation:
    """Lock an owned draft for editing or submission."""
    quotation = _load_for_update(quotation_id)
    _require_owner(quotation, buyer_id)
    guard_transition(quotation, SUBMITTED, actor_user_id=buyer_id, now=now)
    return quotation


def replace_draft_lines(quotation: Quotation, items, *, notes: str | None = None, now: datetime | None = None) -> None:
    now = now or utcnow()
    new_lines = _build_lines(items)
    quotation.lines.clear()
    db.session.flush()
    quotation.lines.extend(new_lines)
    if notes is not None:
        quotation.notes = notes
    quotation.valid_from = now
    quotation.valid_until = now + timedelta(days=_validity_days("QUOTATION_DRAFT_VALIDITY_DAYS"))
    quotation.updated_at = now


def apply_submission(
    quotation: Quotation,
    *,
    confirm_adjustments: bool = False,
    now: datetime | None = None,
) -> reconciliation_service.ReconciliationReport:
    """
    draft -> submitted on a locked quotation (no commit).

    Raises AvailabilityConflictError when items are flagged and the buyer
    did not confirm the adjustments.
    """
    now = now or utcnow()
    report = reconciliation_service.reconcile_lines(quotation.lines)
    if not report.is_clean:
        if not confirm_adjustments:
            raise AvailabilityConflictError(report.to_list())
        reconciliation_service.apply_adjustments(quotation, report)

    quotation.status = SUBMITTED
    quotation.submitted_at = now
    quotation.valid_from = now
    quotation.valid_until = now + timedelta(days=_validity_days("QUOTATION_VALIDITY_DAYS"))
    quotation.updated_at = now
    return report


def record_submission(quotation: Quotation, buyer_id: int, report) -> None:
    audit_service.record_transition(
        entity_type="quotation",
        entity_id=quotation.id,
        event_type="quotation.submitted",
        actor_user_id=buyer_id,
        from_status=DRAFT,
        to_status=SUBMITTED,
        payload={"adjustments": report.to_list()} if not report.is_clean else None,
    )


def _record_decision(quotation: Quotation, kind: str, actor_user_id: int, comment: str | None, now: datetime) -> None:
    quotation.decision_kind = kind
    quotation.decision_comment = comment
    quotation.decided_at = now
    quotation.decided_by_user_id = actor_user_id
    quotation.updated_at = now


def reject(quotation_id: int, buyer_id: int, *, comment: str | None = None) -> Quotation:
    """issued -> rejected."""
    def _op() -> Quotation:
        now = utcnow()
        quotation = _load_for_update(quotation_id)
        _require_owner(quotation, buyer_id)
        guard_transition(quotation, REJECTED, actor_user_id=buyer_id, now=now)
        quotation.status = REJECTED
        _record_decision(quotation, "reject", buyer_id, comment, now)
        db.session.commit()
        return quotation

    quotation = run_in_transaction(_op)
    audit_service.record_transition(
        entity_type="quotation",
        entity_id=quotation.id,
        event_type="quotation.rejected",
        actor_user_id=buyer_id,
        from_status=ISSUED,
        to_status=REJECTED,
        note=comment,
    )
    return quotation


def request_revision(quotation_id: int, buyer_id: int, *, comment: str | None) -> Quotation:
    """issued -> revision_requested. The buyer must say what to change."""
    if not comment or not comment.strip():
        raise InvalidRequestError("A comment is required when requesting a revision")

    def _op() -> Quotation:
        now = utcnow()
        quotation = _load_for_update(quotation_id)
        _require_owner(quotation, buyer_id)
        guard_transition(quotation, REVISION_REQUESTED, actor_user_id=buyer_id, now=now)
        quotation.status = REVISION_REQUESTED
        _record_decision(quotation, "revise", buyer_id, comment.strip(), now)
        db.session.commit()
        return quotation

    quotation = run_in_transaction(_op)
    audit_service.record_transition(
        entity_type="quotation",
        entity_id=quotation.id,
        event_type="quotation.revision_requested",
        actor_user_id=buyer_id,
        from_status=ISSUED,
        to_status=REVISION_REQUESTED,
        note=comment,
    )
    return quotation


def precheck_decision(quotation_id: int, actor_user_id: int, decision: str) -> Quotation:
    """
    Validate a buyer decision before the Risk Gate runs.

    A terminal (or lapsed) quotation answers AlreadyFinalizedError here, so
    a retried approval never opens a step-up challenge.
    """
    target = DECISION_TARGETS.get(decision)
    if target is None:
        raise InvalidRequestError(
            "decision must be one of: approve, reject, revise",
            details={"decision": decision},
        )

    def _op() -> Quotation:
        quotation = _load_for_update(quotation_id)
        _require_owner(quotation, actor_user_id)
        guard_transition(quotation, target, actor_user_id=actor_user_id)
        return quotation

    quotation = run_in_transaction(_op)
    # Read-only check; release the row lock before the gate runs.
    db.session.rollback()
    return quotation


# -- Staff operations -------------------------------------------------------

def _non_negative_int(value, field_name: str) -> int:
    if value is None:
        return 0
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"{field_name} must be an integer")
    if number < 0:
        raise InvalidRequestError(f"{field_name} must be >= 0")
    return number


def issue(
    quotation_id: int,
    staff_user_id: int,
    *,
    tax_rate_bps=0,
    shipping_cents=0,
    discount_cents=0,
    line_prices: dict | None = None,
    validity_days: int | None = None,
    comment: str | None = None,
) -> Quotation:
    """
    submitted | revision_requested -> issued with priced terms.

    line_prices maps line id -> unit_price_cents override. The discount may
    not push the grand total below zero.
    """
    tax_rate_bps = _non_negative_int(tax_rate_bps, "tax_rate_bps")
    shipping_cents = _non_negative_int(shipping_cents, "shipping_cents")
    discount_cents = _non_negative_int(discount_cents, "discount_cents")
    if validity_days is None:
        validity_days = _validity_days("QUOTATION_VALIDITY_DAYS")
    validity_days = _non_negative_int(validity_days, "validity_days")
    if validity_days < 1:
        raise InvalidRequestError("validity_days must be >= 1")

    overrides: dict[int, int] = {}
    for line_id, price in (line_prices or {}).items():
        try:
            overrides[int(line_id)] = _non_negative_int(price, "unit_price_cents")
        except (TypeError, ValueError):
            raise InvalidRequestError("line_prices keys must be line ids")

    def _op():
        now = utcnow()
        quotation = _load_for_update(quotation_id)
        from_status = quotation.status
        guard_transition(quotation, ISSUED, actor_user_id=staff_user_id, now=now)

        lines_by_id = {line.id: line for line in quotation.lines}
        unknown = sorted(set(overrides) - set(lines_by_id))
        if unknown:
            raise InvalidRequestError(
                "line_prices refers to lines not on this quotation",
                details={"line_ids": unknown},
            )
        for line_id, price in overrides.items():
            lines_by_id[line_id].unit_price_cents = price

        subtotal = quotation.subtotal_cents
        ceiling = subtotal + compute_tax_cents(subtotal, tax_rate_bps) + shipping_cents
        if discount_cents > ceiling:
            raise InvalidRequestError(
                "discount_cents exceeds the quotation total",
                details={"discount_cents": discount_cents, "maximum_discount_cents": ceiling},
            )

        quotation.tax_rate_bps = tax_rate_bps
        quotation.shipping_cents = shipping_cents
        quotation.discount_cents = discount_cents
        quotation.staff_comment = comment
        quotation.status = ISSUED
        quotation.issued_at = now
        quotation.issued_by_user_id = staff_user_id
        quotation.valid_from = now
        quotation.valid_until = now + timedelta(days=validity_days)
        quotation.decision_kind = None
        quotation.decision_comment = None
        quotation.decided_at = None
        quotation.decided_by_user_id = None
        quotation.updated_at = now
        db.session.commit()
        return quotation, from_status

    quotation, from_status = run_in_transaction(_op)
    audit_service.record_transition(
        entity_type="quotation",
        entity_id=quotation.id,
        event_type="quotation.issued",
        actor_user_id=staff_user_id,
        from_status=from_status,
        to_status=ISSUED,
        note=comment,
        payload=quotation.financial_summary(),
    )
    return quotation


def require_adjustment(quotation_id: int, staff_user_id: int, *, comment: str | None) -> Quotation:
    """submitted -> adjustment_required. Staff must explain what to change."""
    if not comment or not comment.strip():
        raise InvalidRequestError("A comment is required when requesting adjustments")

    def _op() -> Quotation:
        now = utcnow()
        quotation = _load_for_update(quotation_id)
        guard_transition(quotation, ADJUSTMENT_REQUIRED, actor_user_id=staff_user_id, now=now)
        quotation.status = ADJUSTMENT_REQUIRED
        quotation.staff_comment = comment.strip()
        quotation.updated_at = now
        db.session.commit()
        return quotation

    quotation = run_in_transaction(_op)
    audit_service.record_transition(
        entity_type="quotation",
        entity_id=quotation.id,
        event_type="quotation.adjustment_required",
        actor_user_id=staff_user_id,
        from_status=SUBMITTED,
        to_status=ADJUSTMENT_REQUIRED,
        note=comment,
    )
    return quotation


# -- Reads ------------------------------------------------------------------

def get_quotation_for(quotation_id: int, user_id: int, *, can_view_all: bool = False) -> Quotation:
    quotation = db.session.get(Quotation, quotation_id)
    if quotation is None:
        raise NotFoundError("Quotation not found", details={"quotation_id": quotation_id})
    if not can_view_all:
        _require_owner(quotation, user_id)
    return quotation


def list_quotations(*, buyer_id: int | None = None, status: str | None = None, limit: int = 200) -> list[Quotation]:
    query = db.session.query(Quotation)
    if buyer_id is not None:
        query = query.filter(Quotation.buyer_id == buyer_id)
    if status:
        if status not in ALL_STATUSES:
            raise InvalidRequestError("Unknown status filter", details={"status": status})
        query = query.filter(Quotation.status == status)
    return query.order_by(Quotation.id.desc()).limit(limit).all()


# -- Maintenance ------------------------------------------------------------

def expire_lapsed_quotations(now: datetime | None = None) -> int:
    """Persist expired for every non-terminal quotation past its validity window."""
    now = now or utcnow()

    def _op():
        lapsed = (
            lock_for_update(
                db.session.query(Quotation).filter(
                    Quotation.status.notin_(TERMINAL_QUOTATION_STATUSES),
                    Quotation.valid_until < now,
                )
            ).all()
        )
        changes = [(q.id, _expire(q, now)) for q in lapsed]
        db.session.commit()
        return changes

    changes = run_in_transaction(_op)
    for quotation_id, from_status in changes:
        audit_service.record_transition(
            entity_type="quotation",
            entity_id=quotation_id,
            event_type="quotation.expired",
            actor_user_id=None,
            from_status=from_status,
            to_status=EXPIRED,
            note="Validity window lapsed",
        )
    return len(changes)
