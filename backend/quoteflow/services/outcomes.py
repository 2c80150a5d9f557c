# Overview: Typed results returned by the workflow operations.

"""
Typed, resumable outcomes.

Business-rule rejections that the caller is expected to remediate come
back as values (Challenge, AdjustmentNeeded, Failed) instead of exceptions,
so a retried client call can tell "verify first" from "already done" from
"fix your input" without parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from quoteflow.time_utils import to_utc_z


def _result_dict(result: Any):
    if result is None:
        return None
    if hasattr(result, "to_dict"):
        return result.to_dict()
    return result


@dataclass
class Allowed:
    """The action ran (or may run) without further verification."""
    result: Any = None

    outcome = "allowed"

    def to_dict(self) -> dict:
        return {"outcome": self.outcome, "result": _result_dict(self.result)}


@dataclass
class Challenge:
    """The action is suspended behind a step-up session."""
    action_type: str
    required_kinds: list[str]
    session_ref: str
    expires_at: datetime
    risk_signals: list[str] = field(default_factory=list)

    outcome = "challenge"

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "requires_step_up": True,
            "action_type": self.action_type,
            "required_kinds": list(self.required_kinds),
            "session_ref": self.session_ref,
            "expires_at": to_utc_z(self.expires_at),
            "risk_signals": list(self.risk_signals),
        }


@dataclass
class Resumed:
    """A satisfied challenge re-ran its action."""
    action_type: str
    result: Any = None

    outcome = "resumed"

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "action_type": self.action_type,
            "result": _result_dict(self.result),
        }


@dataclass
class Failed:
    """Step-up verification (or the resumed action) was rejected."""
    error: Exception

    outcome = "failed"

    @property
    def http_status(self) -> int:
        return getattr(self.error, "http_status", 400)

    def to_dict(self) -> dict:
        body = self.error.to_dict() if hasattr(self.error, "to_dict") else {"error": str(self.error)}
        return {"outcome": self.outcome, **body}


@dataclass
class Drafted:
    """A quotation was saved as a draft without submitting."""
    quotation: Any

    outcome = "drafted"

    def to_dict(self) -> dict:
        return {"outcome": self.outcome, "quotation": self.quotation.to_dict()}


@dataclass
class Submitted:
    quotation: Any
    adjustments: list[dict] = field(default_factory=list)

    outcome = "submitted"

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "quotation": self.quotation.to_dict(),
            "adjustments": list(self.adjustments),
        }


@dataclass
class AdjustmentNeeded:
    """Submission found unavailable items; resubmit with confirm_adjustments."""
    items: list[dict]
    message: str = ""

    outcome = "adjustment_needed"

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "error": "ITEMS_UNAVAILABLE",
            "message": self.message,
            "items": list(self.items),
            "requires_review": True,
        }
