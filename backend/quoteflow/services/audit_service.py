# Overview: Service-layer operations for audit; encapsulates business logic and database work.

"""
Audit Sink Invariants (authoritative)

- Receives a record of every quotation transition and every Risk Gate decision.
- Append-only: AuditEvent / SecurityEvent rows are never updated here.
- Fire-and-forget: callers invoke the sink AFTER their own commit (or
  rollback). A failure here is logged and swallowed; it never undoes or
  blocks the operation being audited.
- occurred_at is business time; created_at is system time (DB default).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditEvent, SecurityEvent
from quoteflow.time_utils import utcnow


GATE_EVENT_TYPE = "STEPUP_DECISION"

# Gate outcomes
GATE_ALLOWED = "allowed"
GATE_CHALLENGED = "challenged"
GATE_SATISFIED = "satisfied"
GATE_FAILED = "failed"
GATE_CANCELLED = "cancelled"


def _append(row) -> Optional[object]:
    try:
        db.session.add(row)
        db.session.commit()
        return row
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("Audit sink write failed: %s", exc)
        return None


def record_transition(
    *,
    entity_type: str,
    entity_id: int,
    event_type: str,
    actor_user_id: int | None,
    from_status: str | None = None,
    to_status: str | None = None,
    note: str | None = None,
    payload: dict | None = None,
    occurred_at: Optional[datetime] = None,
) -> AuditEvent | None:
    """
    Append a lifecycle event (quotation transition, order creation, payment proof).

    Returns the stored event, or None when the sink failed.
    """
    event = AuditEvent(
        event_type=event_type,
        event_category=event_type.split(".", 1)[0],
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        from_status=from_status,
        to_status=to_status,
        note=note,
        payload=payload,
        occurred_at=occurred_at or utcnow(),
    )
    stored = _append(event)
    if stored is not None:
        current_app.logger.info(
            "audit %s %s:%s %s -> %s by user %s",
            event_type, entity_type, entity_id, from_status, to_status, actor_user_id,
        )
    return stored


def record_gate_decision(
    *,
    actor_user_id: int,
    action_type: str,
    document_type: str,
    document_id: int,
    outcome: str,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent | None:
    """
    Append a Risk Gate decision (allowed / challenged / satisfied / failed / cancelled).

    Stored as a SecurityEvent so it sits beside login and permission events;
    risk_service reads these rows back for the request-velocity signal.
    """
    event = SecurityEvent(
        user_id=actor_user_id,
        event_type=GATE_EVENT_TYPE,
        resource=f"{document_type}:{document_id}",
        action=action_type,
        success=outcome in (GATE_ALLOWED, GATE_SATISFIED),
        reason=f"{outcome}: {reason}" if reason else outcome,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )
    stored = _append(event)
    if stored is not None:
        current_app.logger.info(
            "gate %s %s on %s:%s for user %s",
            outcome, action_type, document_type, document_id, actor_user_id,
        )
    return stored


def list_entity_events(entity_type: str, entity_id: int) -> list[AuditEvent]:
    return (
        db.session.query(AuditEvent)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditEvent.id.asc())
        .all()
    )
