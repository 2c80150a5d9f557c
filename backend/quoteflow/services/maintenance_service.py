# Overview: Service-layer operations for maintenance; encapsulates business logic and database work.

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import SecurityEvent
from quoteflow.time_utils import utcnow
from . import quotation_service, stepup_service


def cleanup_security_events(*, retention_days: int = 90) -> int:
    """
    Delete security events older than retention_days.

    Audit events (quotation transitions, orders, payments) are preserved.
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SecurityEvent).filter(
        SecurityEvent.occurred_at < cutoff
    ).delete()
    db.session.commit()
    return deleted


def expire_quotations() -> int:
    """Persist expired on every quotation whose validity window lapsed."""
    return quotation_service.expire_lapsed_quotations()


def cleanup_stepup_challenges(*, retention_days: int = 30) -> dict:
    """Expire abandoned step-up sessions and drop old closed ones."""
    return stepup_service.cleanup_expired_challenges(retention_days=retention_days)
