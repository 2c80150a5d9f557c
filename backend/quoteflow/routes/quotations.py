# Overview: Flask API routes for quotation operations; parses input and returns JSON responses.

# backend/quoteflow/routes/quotations.py
"""
Quotation API routes

Buyers request, submit and decide on their own quotations; staff issue
them. Approval is a gated action: it may answer 403 with a step-up
challenge instead of running (see routes/challenges.py to satisfy it).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import InfrastructureError, WorkflowError
from ..services import permission_service, quotation_service, workflow_service
from ..services.outcomes import AdjustmentNeeded, Challenge


quotations_bp = Blueprint("quotations", __name__, url_prefix="/api/quotations")


def _request_context() -> workflow_service.RequestContext:
    return workflow_service.RequestContext(
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )


def _json_error(exc: Exception, action: str):
    if isinstance(exc, WorkflowError):
        return jsonify(exc.to_dict()), exc.http_status
    if isinstance(exc, InfrastructureError):
        current_app.logger.warning("Dependency unavailable while trying to %s: %s", action, exc)
        return jsonify({"error": "SERVICE_UNAVAILABLE", "message": "Please retry shortly"}), 503
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500


def _can_view_all() -> bool:
    return permission_service.user_has_permission(g.current_user.id, "VIEW_ALL_QUOTATIONS")


@quotations_bp.post("/")
@require_auth
@require_permission("REQUEST_QUOTATION")
def submit_quotation_route():
    """
    Create a quotation request and submit it.

    Body:
        items: [{"catalog_item_id": int, "quantity": int}, ...]
        quotation_id: existing draft to update/submit instead of a new one
        notes, save_as_draft, confirm_adjustments

    Returns 201 with the quotation, or 409 ITEMS_UNAVAILABLE listing the
    adjustments the buyer must confirm.
    """
    try:
        data = request.get_json(silent=True) or {}

        outcome = workflow_service.submit_quotation(
            g.current_user.id,
            data.get("items"),
            quotation_id=data.get("quotation_id"),
            notes=data.get("notes"),
            save_as_draft=bool(data.get("save_as_draft", False)),
            confirm_adjustments=bool(data.get("confirm_adjustments", False)),
        )

        if isinstance(outcome, AdjustmentNeeded):
            return jsonify(outcome.to_dict()), 409
        return jsonify(outcome.to_dict()), 201

    except Exception as e:
        return _json_error(e, "submit quotation")


@quotations_bp.get("/my")
@require_auth
@require_permission("REQUEST_QUOTATION")
def my_quotations_route():
    try:
        quotations = quotation_service.list_quotations(
            buyer_id=g.current_user.id,
            status=request.args.get("status"),
        )
        return jsonify({
            "quotations": [q.to_dict(include_lines=False) for q in quotations],
            "count": len(quotations),
        }), 200

    except Exception as e:
        return _json_error(e, "list own quotations")


@quotations_bp.get("/")
@require_auth
@require_permission("VIEW_ALL_QUOTATIONS")
def list_quotations_route():
    """Staff queue. Optional ?status=submitted filter."""
    try:
        quotations = quotation_service.list_quotations(status=request.args.get("status"))
        return jsonify({
            "quotations": [q.to_dict(include_lines=False) for q in quotations],
            "count": len(quotations),
        }), 200

    except Exception as e:
        return _json_error(e, "list quotations")


@quotations_bp.get("/<int:quotation_id>")
@require_auth
def get_quotation_route(quotation_id: int):
    try:
        quotation = quotation_service.get_quotation_for(
            quotation_id, g.current_user.id, can_view_all=_can_view_all(),
        )
        return jsonify({"quotation": quotation.to_dict()}), 200

    except Exception as e:
        return _json_error(e, "load quotation")


@quotations_bp.put("/<int:quotation_id>/issue")
@require_auth
@require_permission("ISSUE_QUOTATION")
def issue_quotation_route(quotation_id: int):
    """
    Price and issue a submitted (or revision-requested) quotation.

    Body: tax_rate_bps, shipping_cents, discount_cents, validity_days,
    line_prices {line_id: unit_price_cents}, comment
    """
    try:
        data = request.get_json(silent=True) or {}

        quotation = quotation_service.issue(
            quotation_id,
            g.current_user.id,
            tax_rate_bps=data.get("tax_rate_bps", 0),
            shipping_cents=data.get("shipping_cents", 0),
            discount_cents=data.get("discount_cents", 0),
            line_prices=data.get("line_prices"),
            validity_days=data.get("validity_days"),
            comment=data.get("comment"),
        )
        return jsonify({"quotation": quotation.to_dict()}), 200

    except Exception as e:
        return _json_error(e, "issue quotation")


@quotations_bp.put("/<int:quotation_id>/require-adjustment")
@require_auth
@require_permission("ISSUE_QUOTATION")
def require_adjustment_route(quotation_id: int):
    try:
        data = request.get_json(silent=True) or {}
        quotation = quotation_service.require_adjustment(
            quotation_id, g.current_user.id, comment=data.get("comment"),
        )
        return jsonify({"quotation": quotation.to_dict()}), 200

    except Exception as e:
        return _json_error(e, "flag quotation for adjustment")


def _decide(quotation_id: int, decision: str):
    data = request.get_json(silent=True) or {}

    outcome = workflow_service.decide(
        quotation_id,
        g.current_user.id,
        decision,
        data.get("comment"),
        confirm_adjustments=bool(data.get("confirm_adjustments", False)),
        context=_request_context(),
    )
    if isinstance(outcome, Challenge):
        return jsonify(outcome.to_dict()), 403
    return jsonify(outcome.to_dict()), 200


@quotations_bp.put("/<int:quotation_id>/approve")
@require_auth
@require_permission("DECIDE_QUOTATION")
def approve_quotation_route(quotation_id: int):
    """
    Approve an issued quotation, converting it into a sales order.

    Returns:
    - 200: order created
    - 403 requires_step_up: satisfy the returned challenge session
    - 409 ALREADY_FINALIZED: includes the existing order number
    - 409 ITEMS_UNAVAILABLE: resubmit with confirm_adjustments=true
    """
    try:
        return _decide(quotation_id, "approve")
    except Exception as e:
        return _json_error(e, "approve quotation")


@quotations_bp.put("/<int:quotation_id>/reject")
@require_auth
@require_permission("DECIDE_QUOTATION")
def reject_quotation_route(quotation_id: int):
    try:
        return _decide(quotation_id, "reject")
    except Exception as e:
        return _json_error(e, "reject quotation")


@quotations_bp.put("/<int:quotation_id>/request-revision")
@require_auth
@require_permission("DECIDE_QUOTATION")
def request_revision_route(quotation_id: int):
    """Body: comment (required)."""
    try:
        return _decide(quotation_id, "revise")
    except Exception as e:
        return _json_error(e, "request quotation revision")
