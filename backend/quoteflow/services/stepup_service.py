# Overview: Service-layer operations for step-up authentication; encapsulates business logic and database work.

"""
Risk Gate / Step-Up Authenticator

WHY: Financially binding actions (quotation approval, payment-proof
submission) need more than a bearer session. The gate decides, per
(actor, action, document), whether the action runs now or waits behind a
durable, server-side, single-use challenge session.

PROTOCOL:
    evaluate(...)  -> Allowed | Challenge(required_kinds, session_ref, ...)
    satisfy(ref)   -> Resume(original payload)
                      or CredentialRejectedError / ChallengeRejectedError /
                      SessionExpiredError
    cancel(ref)    -> owner-only invalidation

SESSION RULES:
- Only the SHA-256 hash of session_ref is stored (same scheme as bearer
  session tokens).
- A new challenge for the same triple supersedes any open one.
- Human verification is checked before the password. Each kind that passes
  is persisted immediately, so a retry only has to supply what is missing.
- A wrong password counts towards STEPUP_MAX_PASSWORD_ATTEMPTS; at the cap
  the session is discarded and the actor must restart the original action.
- A rejected human-verification proof leaves the session open.
- A missing credential is not a failed attempt.
- Any non-open state clears the stored payload.
- The resumed payload is only a hint: callers re-run the full action.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from ..errors import (
    ChallengeRejectedError,
    CredentialRejectedError,
    OwnershipError,
    SessionExpiredError,
)
from ..extensions import db
from ..models import StepUpChallenge
from quoteflow.time_utils import utcnow
from . import audit_service, risk_service, verification_service
from .concurrency import lock_for_update, run_in_transaction
from .outcomes import Allowed, Challenge
from .session_service import hash_token


KIND_PASSWORD = "password"
KIND_HUMAN = "human_verification"

# Verification order: human verification first, then password
KIND_ORDER = (KIND_HUMAN, KIND_PASSWORD)

OPEN = "open"
CONSUMED = "consumed"
CANCELLED = "cancelled"
SUPERSEDED = "superseded"
DISCARDED = "discarded"
EXPIRED = "expired"


@dataclass(frozen=True)
class StepUpPolicy:
    action_requirements: dict
    session_ttl_seconds: int = 600
    max_password_attempts: int = 3

    @classmethod
    def from_config(cls, config=None) -> "StepUpPolicy":
        config = config or current_app.config
        return cls(
            action_requirements={
                action: tuple(kinds)
                for action, kinds in (config.get("STEPUP_ACTION_REQUIREMENTS") or {}).items()
            },
            session_ttl_seconds=int(config.get("STEPUP_SESSION_TTL_SECONDS", 600)),
            max_password_attempts=int(config.get("STEPUP_MAX_PASSWORD_ATTEMPTS", 3)),
        )

    def base_requirements(self, action_type: str) -> tuple[str, ...]:
        return tuple(self.action_requirements.get(action_type, ()))

    def required_kinds(self, action_type: str, assessment: risk_service.RiskAssessment) -> list[str]:
        kinds = set(self.base_requirements(action_type))
        if assessment.elevated:
            kinds.add(KIND_HUMAN)
        return [kind for kind in KIND_ORDER if kind in kinds]


@dataclass
class Resume:
    actor_user_id: int
    action_type: str
    document_type: str
    document_id: int
    payload: dict


@dataclass
class _Attempt:
    challenge_id: int
    actor_user_id: int
    action_type: str
    document_type: str
    document_id: int
    error: Exception | None = None
    resume: Resume | None = None


def _close(row: StepUpChallenge, status: str, now: datetime) -> None:
    row.status = status
    row.resolved_at = now
    row.payload = None


def _triple_query(actor_user_id: int, action_type: str, document_type: str, document_id: int):
    return db.session.query(StepUpChallenge).filter(
        StepUpChallenge.actor_user_id == actor_user_id,
        StepUpChallenge.action_type == action_type,
        StepUpChallenge.document_type == document_type,
        StepUpChallenge.document_id == document_id,
    )


def evaluate(
    *,
    actor_user_id: int,
    action_type: str,
    document_type: str,
    document_id: int,
    payload: dict | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    buyer_id: int | None = None,
    policy: StepUpPolicy | None = None,
) -> Allowed | Challenge:
    """Decide whether an action may run now or must be verified first."""
    policy = policy or StepUpPolicy.from_config()

    if not policy.base_requirements(action_type):
        audit_service.record_gate_decision(
            actor_user_id=actor_user_id,
            action_type=action_type,
            document_type=document_type,
            document_id=document_id,
            outcome=audit_service.GATE_ALLOWED,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return Allowed()

    assessment = risk_service.assess(
        actor_user_id=actor_user_id,
        action_type=action_type,
        payload=payload,
        ip_address=ip_address,
        buyer_id=buyer_id,
    )
    kinds = policy.required_kinds(action_type, assessment)

    def _op():
        now = utcnow()
        for stale in lock_for_update(
            _triple_query(actor_user_id, action_type, document_type, document_id)
            .filter(StepUpChallenge.status == OPEN)
        ).all():
            _close(stale, SUPERSEDED, now)

        session_ref = secrets.token_urlsafe(32)
        row = StepUpChallenge(
            token_hash=hash_token(session_ref),
            actor_user_id=actor_user_id,
            action_type=action_type,
            document_type=document_type,
            document_id=document_id,
            required_kinds=kinds,
            satisfied_kinds=[],
            risk_signals=list(assessment.signals),
            payload=payload or {},
            password_failures=0,
            verification_failures=0,
            status=OPEN,
            created_at=now,
            expires_at=now + timedelta(seconds=policy.session_ttl_seconds),
            ip_address=ip_address,
        )
        db.session.add(row)
        db.session.commit()
        return row, session_ref

    row, session_ref = run_in_transaction(_op)

    audit_service.record_gate_decision(
        actor_user_id=actor_user_id,
        action_type=action_type,
        document_type=document_type,
        document_id=document_id,
        outcome=audit_service.GATE_CHALLENGED,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return Challenge(
        action_type=action_type,
        required_kinds=kinds,
        session_ref=session_ref,
        expires_at=row.expires_at,
        risk_signals=list(assessment.signals),
    )


def satisfy(
    session_ref: str,
    credentials: dict | None,
    *,
    actor_user_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    policy: StepUpPolicy | None = None,
) -> Resume:
    """
    Present credentials for an open challenge.

    credentials: {"password": str?, "human_verification_token": str?}
    Returns Resume when every required kind is satisfied (the session is
    consumed). VerifierUnavailableError propagates without touching the
    session.
    """
    policy = policy or StepUpPolicy.from_config()
    credentials = credentials or {}

    def _op() -> _Attempt:
        now = utcnow()
        row = lock_for_update(
            db.session.query(StepUpChallenge).filter_by(token_hash=hash_token(session_ref or ""))
        ).first()
        if row is None or row.status != OPEN:
            raise SessionExpiredError()
        if actor_user_id is not None and row.actor_user_id != actor_user_id:
            raise SessionExpiredError()

        attempt = _Attempt(
            challenge_id=row.id,
            actor_user_id=row.actor_user_id,
            action_type=row.action_type,
            document_type=row.document_type,
            document_id=row.document_id,
        )

        if row.expires_at <= now:
            _close(row, EXPIRED, now)
            db.session.commit()
            attempt.error = SessionExpiredError()
            return attempt

        satisfied = list(row.satisfied_kinds or [])
        outstanding = row.outstanding_kinds

        if KIND_HUMAN in outstanding and credentials.get("human_verification_token"):
            if verification_service.verify_human_token(
                credentials["human_verification_token"], remote_ip=ip_address,
            ):
                satisfied.append(KIND_HUMAN)
            else:
                row.verification_failures = (row.verification_failures or 0) + 1
                db.session.commit()
                attempt.error = ChallengeRejectedError(
                    "Human verification failed. Complete the challenge again.",
                    outstanding_kinds=row.outstanding_kinds,
                )
                return attempt

        if KIND_PASSWORD in outstanding and credentials.get("password"):
            if verification_service.verify_credentials(row.actor_user_id, credentials["password"]):
                satisfied.append(KIND_PASSWORD)
            else:
                row.password_failures = (row.password_failures or 0) + 1
                row.satisfied_kinds = satisfied
                remaining = max(0, policy.max_password_attempts - row.password_failures)
                if remaining == 0:
                    _close(row, DISCARDED, now)
                    attempt.error = CredentialRejectedError(
                        "Too many incorrect passwords. Start the action again.",
                        attempts_remaining=0,
                        session_discarded=True,
                    )
                else:
                    attempt.error = CredentialRejectedError(
                        "Incorrect password.",
                        attempts_remaining=remaining,
                    )
                db.session.commit()
                return attempt

        row.satisfied_kinds = satisfied
        still_needed = row.outstanding_kinds
        if still_needed:
            db.session.commit()
            if still_needed == [KIND_PASSWORD]:
                # Missing password: reported, never counted as an attempt.
                attempt.error = CredentialRejectedError(
                    "Password is required.",
                    attempts_remaining=max(0, policy.max_password_attempts - (row.password_failures or 0)),
                    credential_missing=True,
                    outstanding_kinds=still_needed,
                )
            else:
                attempt.error = ChallengeRejectedError(
                    "Human verification is required.",
                    outstanding_kinds=still_needed,
                )
            return attempt

        attempt.resume = Resume(
            actor_user_id=row.actor_user_id,
            action_type=row.action_type,
            document_type=row.document_type,
            document_id=row.document_id,
            payload=dict(row.payload or {}),
        )
        _close(row, CONSUMED, now)
        db.session.commit()
        return attempt

    attempt = run_in_transaction(_op)

    if attempt.error is not None:
        audit_service.record_gate_decision(
            actor_user_id=attempt.actor_user_id,
            action_type=attempt.action_type,
            document_type=attempt.document_type,
            document_id=attempt.document_id,
            outcome=audit_service.GATE_FAILED,
            reason=attempt.error.code,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        raise attempt.error

    audit_service.record_gate_decision(
        actor_user_id=attempt.actor_user_id,
        action_type=attempt.action_type,
        document_type=attempt.document_type,
        document_id=attempt.document_id,
        outcome=audit_service.GATE_SATISFIED,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return attempt.resume


def cancel(session_ref: str, actor_user_id: int) -> bool:
    """
    Invalidate an open challenge. Only its actor may cancel it.

    Returns False when the session is unknown or already closed.
    """
    def _op():
        row = lock_for_update(
            db.session.query(StepUpChallenge).filter_by(token_hash=hash_token(session_ref or ""))
        ).first()
        if row is None or row.status != OPEN:
            return None
        if row.actor_user_id != actor_user_id:
            raise OwnershipError("Verification session belongs to another user")
        _close(row, CANCELLED, utcnow())
        db.session.commit()
        return row

    row = run_in_transaction(_op)
    if row is None:
        return False

    audit_service.record_gate_decision(
        actor_user_id=actor_user_id,
        action_type=row.action_type,
        document_type=row.document_type,
        document_id=row.document_id,
        outcome=audit_service.GATE_CANCELLED,
    )
    return True


def cleanup_expired_challenges(*, now: datetime | None = None, retention_days: int = 30) -> dict:
    """
    Reclaim abandoned sessions.

    Open sessions past expires_at become expired (payload cleared); closed
    sessions resolved more than retention_days ago are deleted.
    """
    now = now or utcnow()

    def _op() -> dict:
        stale = lock_for_update(
            db.session.query(StepUpChallenge).filter(
                StepUpChallenge.status == OPEN,
                StepUpChallenge.expires_at <= now,
            )
        ).all()
        for row in stale:
            _close(row, EXPIRED, now)

        deleted = (
            db.session.query(StepUpChallenge)
            .filter(
                StepUpChallenge.status != OPEN,
                StepUpChallenge.resolved_at < now - timedelta(days=retention_days),
            )
            .delete(synchronize_session=False)
        )
        db.session.commit()
        return {"expired": len(stale), "deleted": deleted}

    return run_in_transaction(_op)
