# Overview: Flask API routes for step-up challenge operations; parses input and returns JSON responses.

# backend/quoteflow/routes/challenges.py
"""
Step-up challenge routes

A gated action that answers 403 requires_step_up carries a session_ref.
The client collects the required credentials and posts them here; once
every required kind is verified the original action runs again and its
result is returned.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..errors import InfrastructureError, WorkflowError
from ..services import workflow_service


challenges_bp = Blueprint("challenges", __name__, url_prefix="/api/challenges")


def _json_error(exc: Exception, action: str):
    if isinstance(exc, WorkflowError):
        return jsonify(exc.to_dict()), exc.http_status
    if isinstance(exc, InfrastructureError):
        current_app.logger.warning("Dependency unavailable while trying to %s: %s", action, exc)
        return jsonify({"error": "SERVICE_UNAVAILABLE", "message": "Please retry shortly"}), 503
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500


@challenges_bp.post("/<session_ref>/satisfy")
@require_auth
def satisfy_challenge_route(session_ref: str):
    """
    Present step-up credentials.

    Body: password, human_verification_token (either or both)

    Returns 200 with the resumed action's result, otherwise the failure:
    401 CREDENTIAL_REJECTED (attempts_remaining), 403 CHALLENGE_REJECTED
    (outstanding_kinds), 410 SESSION_EXPIRED, or the resumed action's own
    business error.
    """
    try:
        data = request.get_json(silent=True) or {}
        credentials = {
            "password": data.get("password"),
            "human_verification_token": data.get("human_verification_token"),
        }

        outcome = workflow_service.satisfy_challenge(
            session_ref,
            credentials,
            actor_user_id=g.current_user.id,
            context=workflow_service.RequestContext(
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
            ),
        )
        if outcome.outcome == "failed":
            return jsonify(outcome.to_dict()), outcome.http_status
        return jsonify(outcome.to_dict()), 200

    except Exception as e:
        return _json_error(e, "satisfy step-up challenge")


@challenges_bp.delete("/<session_ref>")
@require_auth
def cancel_challenge_route(session_ref: str):
    """Abandon an open challenge. Unknown or closed sessions answer 404."""
    try:
        cancelled = workflow_service.cancel_challenge(session_ref, g.current_user.id)
        if not cancelled:
            return jsonify({"error": "NOT_FOUND", "message": "No open verification session"}), 404
        return jsonify({"message": "Verification session cancelled"}), 200

    except Exception as e:
        return _json_error(e, "cancel step-up challenge")
