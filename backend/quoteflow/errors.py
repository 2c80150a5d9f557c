# Overview: Error taxonomy shared by the quotation, step-up and payment services.

"""
Workflow Error Taxonomy

Business-rule violations are recoverable: they carry a stable `code`, the
HTTP status the API answers with, and structured `details` so a client can
drive its remediation UI without another round-trip.

Infrastructure failures (store unavailable, verifier unreachable) are NOT
business errors. They derive from InfrastructureError (or stay as library
exceptions) and are fatal for the request; the caller retries with backoff.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for recoverable business-rule violations."""

    code = "WORKFLOW_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            **self.details,
        }


class InvalidRequestError(WorkflowError):
    code = "INVALID_REQUEST"
    http_status = 400


class NotFoundError(WorkflowError):
    code = "NOT_FOUND"
    http_status = 404


class OwnershipError(WorkflowError):
    """Actor is not allowed to act on a document it does not own."""
    code = "NOT_OWNER"
    http_status = 403


class IllegalTransitionError(WorkflowError):
    """Attempted move is not in the quotation state graph."""
    code = "ILLEGAL_TRANSITION"
    http_status = 409

    def __init__(self, current_status: str, attempted_status: str):
        super().__init__(
            f"Cannot move quotation from '{current_status}' to '{attempted_status}'",
            details={
                "current_status": current_status,
                "attempted_status": attempted_status,
            },
        )
        self.current_status = current_status
        self.attempted_status = attempted_status


class AlreadyFinalizedError(WorkflowError):
    """
    Quotation is already terminal (approved, rejected or expired).

    Retried conversions treat this as success-equivalent: order_number names
    the order that already exists, if any.
    """
    code = "ALREADY_FINALIZED"
    http_status = 409

    def __init__(
        self,
        status: str,
        *,
        reference_number: str | None = None,
        order_number: str | None = None,
        decided_by_user_id: int | None = None,
    ):
        super().__init__(
            f"Quotation is already {status}",
            details={
                "status": status,
                "reference_number": reference_number,
                "order_number": order_number,
                "decided_by_user_id": decided_by_user_id,
            },
        )
        self.status = status
        self.order_number = order_number
        self.decided_by_user_id = decided_by_user_id


class AvailabilityConflictError(WorkflowError):
    """Reconciliation flagged items; the caller must confirm adjustments."""
    code = "ITEMS_UNAVAILABLE"
    http_status = 409

    def __init__(self, items: list[dict], message: str | None = None):
        super().__init__(
            message or (
                "Some requested items are no longer available or need quantity "
                "adjustments. Review and confirm to continue."
            ),
            details={"items": items, "requires_review": True},
        )
        self.items = items


class AmountExceedsBalanceError(WorkflowError):
    code = "AMOUNT_EXCEEDS_BALANCE"
    http_status = 422

    def __init__(self, amount_cents: int, outstanding_balance_cents: int):
        super().__init__(
            "Claimed amount exceeds the outstanding balance",
            details={
                "amount_cents": amount_cents,
                "outstanding_balance_cents": outstanding_balance_cents,
            },
        )
        self.amount_cents = amount_cents
        self.outstanding_balance_cents = outstanding_balance_cents


# -- Step-up failures ---------------------------------------------------------

class StepUpError(WorkflowError):
    """Base class for step-up verification failures."""
    code = "STEP_UP_FAILED"
    http_status = 401


class CredentialRejectedError(StepUpError):
    code = "CREDENTIAL_REJECTED"
    http_status = 401

    def __init__(
        self,
        message: str,
        *,
        attempts_remaining: int,
        session_discarded: bool = False,
        credential_missing: bool = False,
        outstanding_kinds: list[str] | None = None,
    ):
        outstanding_kinds = list(outstanding_kinds or ([] if session_discarded else ["password"]))
        super().__init__(
            message,
            details={
                "attempts_remaining": attempts_remaining,
                "session_discarded": session_discarded,
                "restart_required": session_discarded,
                "credential_missing": credential_missing,
                "outstanding_kinds": outstanding_kinds,
            },
        )
        self.attempts_remaining = attempts_remaining
        self.session_discarded = session_discarded
        self.credential_missing = credential_missing
        self.outstanding_kinds = outstanding_kinds


class ChallengeRejectedError(StepUpError):
    code = "CHALLENGE_REJECTED"
    http_status = 403

    def __init__(self, message: str, *, outstanding_kinds: list[str]):
        super().__init__(
            message,
            details={"outstanding_kinds": outstanding_kinds, "restart_required": False},
        )
        self.outstanding_kinds = outstanding_kinds


class SessionExpiredError(StepUpError):
    code = "SESSION_EXPIRED"
    http_status = 410

    def __init__(self, message: str = "Verification session expired. Restart the original action."):
        super().__init__(message, details={"restart_required": True})


# -- Infrastructure -----------------------------------------------------------

class InfrastructureError(Exception):
    """A collaborator failed; never downgraded to a business-rule error."""


class AvailabilityUnknownError(InfrastructureError):
    def __init__(self, catalog_item_id: int):
        super().__init__(f"Availability unknown for catalog item {catalog_item_id}")
        self.catalog_item_id = catalog_item_id


class VerifierUnavailableError(InfrastructureError):
    """Human-verification or credential verifier could not be reached."""
