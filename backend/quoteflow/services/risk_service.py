# Overview: Service-layer operations for risk; encapsulates business logic and database work.

"""
Risk signals for the step-up gate.

Each signal is a named, explainable reason to escalate a challenge to
human verification. All windows and thresholds come from Flask config.

- policy_flag: the action is flagged by configuration
  (STEPUP_ALWAYS_REQUIRE_HUMAN_VERIFICATION / STEPUP_HUMAN_VERIFICATION_ACTIONS)
- prior_verification_failures: wrong passwords and rejected human-verification
  proofs on the actor's recent challenges
- request_velocity: number of gated requests by the actor in a short window
- unusual_payment_amount: payment claim far above the average of the
  buyer's verified proofs
- new_ip_address: the request comes from an address the actor has not used
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import PaymentProof, SalesOrder, SecurityEvent, SessionToken, StepUpChallenge
from quoteflow.time_utils import utcnow
from .audit_service import GATE_ALLOWED, GATE_CHALLENGED, GATE_EVENT_TYPE


POLICY_FLAG = "policy_flag"
PRIOR_FAILURES = "prior_verification_failures"
REQUEST_VELOCITY = "request_velocity"
UNUSUAL_AMOUNT = "unusual_payment_amount"
NEW_IP = "new_ip_address"


@dataclass
class RiskAssessment:
    signals: list[str] = field(default_factory=list)

    @property
    def elevated(self) -> bool:
        return bool(self.signals)


def _policy_flagged(action_type: str) -> bool:
    config = current_app.config
    if config.get("STEPUP_ALWAYS_REQUIRE_HUMAN_VERIFICATION"):
        return True
    return action_type in (config.get("STEPUP_HUMAN_VERIFICATION_ACTIONS") or ())


def recent_verification_failures(actor_user_id: int, now=None) -> int:
    now = now or utcnow()
    window = timedelta(minutes=current_app.config["RISK_FAILURE_WINDOW_MINUTES"])
    total = (
        db.session.query(
            func.coalesce(
                func.sum(StepUpChallenge.password_failures + StepUpChallenge.verification_failures),
                0,
            )
        )
        .filter(
            StepUpChallenge.actor_user_id == actor_user_id,
            StepUpChallenge.created_at >= now - window,
        )
        .scalar()
    )
    return int(total or 0)


def recent_gated_requests(actor_user_id: int, now=None) -> int:
    now = now or utcnow()
    window = timedelta(minutes=current_app.config["RISK_VELOCITY_WINDOW_MINUTES"])
    return (
        db.session.query(func.count(SecurityEvent.id))
        .filter(
            SecurityEvent.user_id == actor_user_id,
            SecurityEvent.event_type == GATE_EVENT_TYPE,
            SecurityEvent.reason.in_((GATE_ALLOWED, GATE_CHALLENGED)),
            SecurityEvent.occurred_at >= now - window,
        )
        .scalar()
    ) or 0


def is_unusual_payment_amount(buyer_id: int, amount_cents: int) -> bool:
    """True when amount exceeds the average verified proof by more than the variance threshold."""
    average = (
        db.session.query(func.avg(PaymentProof.amount_cents))
        .join(SalesOrder, SalesOrder.id == PaymentProof.order_id)
        .filter(
            SalesOrder.buyer_id == buyer_id,
            PaymentProof.status == "approved",
        )
        .scalar()
    )
    if not average:
        return False
    threshold = current_app.config["RISK_AMOUNT_VARIANCE_THRESHOLD"]
    return amount_cents > float(average) * (1 + threshold)


def is_new_ip_address(actor_user_id: int, ip_address: str | None) -> bool:
    """True when the actor has history but none of it comes from ip_address."""
    if not ip_address or not current_app.config.get("RISK_TRACK_CLIENT_IP", True):
        return False

    seen_in_events = (
        db.session.query(SecurityEvent.id)
        .filter(
            SecurityEvent.user_id == actor_user_id,
            SecurityEvent.event_type == GATE_EVENT_TYPE,
            SecurityEvent.ip_address.isnot(None),
        )
    )
    if seen_in_events.first() is None:
        return False
    if seen_in_events.filter(SecurityEvent.ip_address == ip_address).first() is not None:
        return False
    seen_in_sessions = (
        db.session.query(SessionToken.id)
        .filter(SessionToken.user_id == actor_user_id, SessionToken.ip_address == ip_address)
        .first()
    )
    return seen_in_sessions is None


def assess(
    *,
    actor_user_id: int,
    action_type: str,
    payload: dict | None = None,
    ip_address: str | None = None,
    buyer_id: int | None = None,
) -> RiskAssessment:
    config = current_app.config
    now = utcnow()
    assessment = RiskAssessment()

    if _policy_flagged(action_type):
        assessment.signals.append(POLICY_FLAG)

    if recent_verification_failures(actor_user_id, now) >= config["RISK_FAILURE_THRESHOLD"]:
        assessment.signals.append(PRIOR_FAILURES)

    if recent_gated_requests(actor_user_id, now) >= config["RISK_VELOCITY_THRESHOLD"]:
        assessment.signals.append(REQUEST_VELOCITY)

    amount = (payload or {}).get("amount_cents")
    if buyer_id is not None and isinstance(amount, int) and is_unusual_payment_amount(buyer_id, amount):
        assessment.signals.append(UNUSUAL_AMOUNT)

    if is_new_ip_address(actor_user_id, ip_address):
        assessment.signals.append(NEW_IP)

    return assessment
