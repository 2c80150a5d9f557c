from __future__ import annotations

from ..extensions import db
from quoteflow.time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Security event audit log.

    WHY: Track permission denials, logins, and every Risk Gate decision
    (allow / challenge / satisfied / failed). Request velocity risk signals
    are computed from this table.

    IMMUTABLE: Never update or delete (except retention cleanup). Append-only.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        db.Index("ix_security_events_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Event classification
    event_type = db.Column(db.String(64), nullable=False, index=True)  # PERMISSION_DENIED, LOGIN_FAILED, STEPUP_DECISION, ...
    resource = db.Column(db.String(128), nullable=True)  # e.g., "quotation:12"
    action = db.Column(db.String(64), nullable=True)     # e.g., "quotation.approve"

    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    # Client context
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class StepUpChallenge(db.Model):
    """
    Durable, single-use step-up verification session.

    Scoped to one (actor, action_type, document) triple. Holds the original
    action payload so a satisfied challenge resumes the request instead of
    forcing the client to resubmit it. Only the SHA-256 hash of the session
    token is stored.

    STATES: open -> consumed | cancelled | superseded | discarded | expired.
    Every state other than open clears the payload.
    """
    __tablename__ = "stepup_challenges"
    __table_args__ = (
        db.Index(
            "ix_stepup_challenges_triple",
            "actor_user_id", "action_type", "document_type", "document_id", "status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    action_type = db.Column(db.String(64), nullable=False)
    document_type = db.Column(db.String(32), nullable=False)
    document_id = db.Column(db.Integer, nullable=False)

    required_kinds = db.Column(db.JSON, nullable=False)
    satisfied_kinds = db.Column(db.JSON, nullable=False, default=list)
    risk_signals = db.Column(db.JSON, nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    password_failures = db.Column(db.Integer, nullable=False, default=0)
    verification_failures = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="open", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def outstanding_kinds(self) -> list[str]:
        satisfied = set(self.satisfied_kinds or [])
        return [kind for kind in (self.required_kinds or []) if kind not in satisfied]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "action_type": self.action_type,
            "document_type": self.document_type,
            "document_id": self.document_id,
            "required_kinds": list(self.required_kinds or []),
            "outstanding_kinds": self.outstanding_kinds,
            "status": self.status,
            "password_failures": self.password_failures,
            "verification_failures": self.verification_failures,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
        }
