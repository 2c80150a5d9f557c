# Overview: Service-layer operations for the quotation workflow; encapsulates business logic and database work.

"""
Workflow Facade

The operations the API (and CLI) layers call. Each one validates the
request, passes financially binding actions through the Risk Gate, and
returns a typed outcome:

    submit_quotation      -> Drafted | Submitted | AdjustmentNeeded
    decide                -> Allowed | Challenge
    satisfy_challenge     -> Resumed | Failed
    submit_payment_proof  -> Allowed | Challenge
    cancel_challenge      -> bool

Other business-rule violations propagate as WorkflowError subclasses;
infrastructure failures propagate unchanged.

RESUME: after a challenge is satisfied the ORIGINAL action is executed again
from scratch (ownership, state, availability, balance). The payload stored
with the challenge only says which action to run.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import (
    AlreadyFinalizedError,
    AvailabilityConflictError,
    InvalidRequestError,
    StepUpError,
    WorkflowError,
)
from ..extensions import db
from quoteflow.time_utils import utcnow
from . import (
    audit_service,
    conversion_service,
    payment_service,
    quotation_service,
    stepup_service,
)
from .concurrency import run_in_transaction
from .outcomes import (
    AdjustmentNeeded,
    Allowed,
    Challenge,
    Drafted,
    Failed,
    Resumed,
    Submitted,
)


APPROVE_QUOTATION = "quotation.approve"
REJECT_QUOTATION = "quotation.reject"
REQUEST_REVISION = "quotation.request_revision"
SUBMIT_PAYMENT_PROOF = "payment_proof.submit"

DECISION_ACTIONS = {
    "approve": APPROVE_QUOTATION,
    "reject": REJECT_QUOTATION,
    "revise": REQUEST_REVISION,
}


@dataclass(frozen=True)
class RequestContext:
    ip_address: str | None = None
    user_agent: str | None = None


NO_CONTEXT = RequestContext()


# -- Quotation submission ---------------------------------------------------

def submit_quotation(
    buyer_id: int,
    items=None,
    *,
    quotation_id: int | None = None,
    notes: str | None = None,
    save_as_draft: bool = False,
    confirm_adjustments: bool = False,
) -> Drafted | Submitted | AdjustmentNeeded:
    """
    Create (or update) a draft and submit it in one transaction.

    With quotation_id the buyer's existing draft is used; items, when given,
    replace its lines. save_as_draft stops before submission. Unavailable
    items without confirm_adjustments roll everything back and return
    AdjustmentNeeded.
    """
    if quotation_id is None and items is None:
        raise InvalidRequestError("items are required")

    def _op():
        now = utcnow()
        if quotation_id is None:
            quotation = quotation_service.new_draft(buyer_id, items, notes=notes, now=now)
            created = True
        else:
            quotation = quotation_service.load_editable_draft(quotation_id, buyer_id, now=now)
            if items is not None:
                quotation_service.replace_draft_lines(quotation, items, notes=notes, now=now)
            elif notes is not None:
                quotation.notes = notes
            created = False

        report = None
        if not save_as_draft:
            report = quotation_service.apply_submission(
                quotation, confirm_adjustments=confirm_adjustments, now=now,
            )
        db.session.commit()
        return quotation, report, created

    try:
        quotation, report, created = run_in_transaction(_op)
    except AvailabilityConflictError as exc:
        return AdjustmentNeeded(items=exc.items, message=exc.message)

    if created:
        audit_service.record_transition(
            entity_type="quotation",
            entity_id=quotation.id,
            event_type="quotation.created",
            actor_user_id=buyer_id,
            to_status=quotation_service.DRAFT,
        )
    if report is None:
        return Drafted(quotation=quotation)

    quotation_service.record_submission(quotation, buyer_id, report)
    return Submitted(quotation=quotation, adjustments=report.to_list())


# -- Gated actions ----------------------------------------------------------

def _execute(action_type: str, actor_user_id: int, payload: dict):
    """Run a gated action from scratch. Every invariant is re-checked here."""
    if action_type == APPROVE_QUOTATION:
        result = conversion_service.convert_quotation(
            payload["quotation_id"],
            actor_user_id=actor_user_id,
            comment=payload.get("comment"),
            confirm_adjustments=bool(payload.get("confirm_adjustments")),
        )
        if not result.created:
            raise AlreadyFinalizedError(
                result.quotation.status,
                reference_number=result.quotation.reference_number,
                order_number=result.quotation.linked_order_number,
                decided_by_user_id=result.quotation.decided_by_user_id,
            )
        return result

    if action_type == REJECT_QUOTATION:
        return quotation_service.reject(
            payload["quotation_id"], actor_user_id, comment=payload.get("comment"),
        )

    if action_type == REQUEST_REVISION:
        return quotation_service.request_revision(
            payload["quotation_id"], actor_user_id, comment=payload.get("comment"),
        )

    if action_type == SUBMIT_PAYMENT_PROOF:
        return payment_service.submit_payment_proof(
            payload["order_id"],
            actor_user_id,
            payload.get("amount_cents"),
            payload.get("proof_reference"),
            notes=payload.get("notes"),
        )

    raise InvalidRequestError("Unknown action", details={"action_type": action_type})


def decide(
    quotation_id: int,
    actor_user_id: int,
    decision: str,
    comment: str | None = None,
    *,
    confirm_adjustments: bool = False,
    context: RequestContext = NO_CONTEXT,
) -> Allowed | Challenge:
    """
    Buyer decision on an issued quotation: approve, reject or revise.

    A terminal quotation raises AlreadyFinalizedError before the gate runs,
    so a retried approval reports the existing order number instead of
    opening a new challenge.
    """
    quotation = quotation_service.precheck_decision(quotation_id, actor_user_id, decision)
    if decision == "revise" and not (comment or "").strip():
        raise InvalidRequestError("A comment is required when requesting a revision")

    action_type = DECISION_ACTIONS[decision]
    payload = {
        "quotation_id": quotation_id,
        "decision": decision,
        "comment": comment,
        "confirm_adjustments": bool(confirm_adjustments),
    }
    gate = stepup_service.evaluate(
        actor_user_id=actor_user_id,
        action_type=action_type,
        document_type="quotation",
        document_id=quotation_id,
        payload=payload,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        buyer_id=quotation.buyer_id,
    )
    if isinstance(gate, Challenge):
        return gate
    return Allowed(result=_execute(action_type, actor_user_id, payload))


def submit_payment_proof(
    order_id: int,
    actor_user_id: int,
    amount_cents,
    proof_reference,
    *,
    notes: str | None = None,
    context: RequestContext = NO_CONTEXT,
) -> Allowed | Challenge:
    """
    Claim a payment against an order. Validated before gating, so an amount
    over the balance is rejected without opening a challenge.
    """
    order = payment_service.precheck_payment_proof(order_id, actor_user_id, amount_cents, proof_reference)
    payload = {
        "order_id": order_id,
        "amount_cents": amount_cents,
        "proof_reference": proof_reference,
        "notes": notes,
    }
    gate = stepup_service.evaluate(
        actor_user_id=actor_user_id,
        action_type=SUBMIT_PAYMENT_PROOF,
        document_type="sales_order",
        document_id=order_id,
        payload=payload,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        buyer_id=order.buyer_id,
    )
    if isinstance(gate, Challenge):
        return gate
    return Allowed(result=_execute(SUBMIT_PAYMENT_PROOF, actor_user_id, payload))


def satisfy_challenge(
    session_ref: str,
    credentials: dict | None,
    *,
    actor_user_id: int | None = None,
    context: RequestContext = NO_CONTEXT,
) -> Resumed | Failed:
    """
    Present step-up credentials and, once verified, re-run the suspended action.

    Step-up failures and business-rule violations found by the re-run come
    back as Failed. Infrastructure failures propagate.
    """
    try:
        resume = stepup_service.satisfy(
            session_ref,
            credentials,
            actor_user_id=actor_user_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
    except StepUpError as exc:
        return Failed(error=exc)

    try:
        result = _execute(resume.action_type, resume.actor_user_id, resume.payload)
    except WorkflowError as exc:
        return Failed(error=exc)
    return Resumed(action_type=resume.action_type, result=result)


def cancel_challenge(session_ref: str, actor_user_id: int) -> bool:
    return stepup_service.cancel(session_ref, actor_user_id)
