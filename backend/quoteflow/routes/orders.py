# Overview: Flask API routes for sales order and payment proof operations; parses input and returns JSON responses.

# backend/quoteflow/routes/orders.py
"""
Sales order API routes

Orders are created only by quotation approval. Buyers read their own
orders and attach payment proofs (a gated action); staff verify proofs.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import InfrastructureError, WorkflowError
from ..services import payment_service, permission_service, workflow_service
from ..services.outcomes import Challenge


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _json_error(exc: Exception, action: str):
    if isinstance(exc, WorkflowError):
        return jsonify(exc.to_dict()), exc.http_status
    if isinstance(exc, InfrastructureError):
        current_app.logger.warning("Dependency unavailable while trying to %s: %s", action, exc)
        return jsonify({"error": "SERVICE_UNAVAILABLE", "message": "Please retry shortly"}), 503
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500


def _can_view_all() -> bool:
    return permission_service.user_has_permission(g.current_user.id, "VIEW_ALL_ORDERS")


@orders_bp.get("/my")
@require_auth
def my_orders_route():
    try:
        orders = payment_service.list_orders(buyer_id=g.current_user.id)
        return jsonify({
            "orders": [o.to_dict(include_lines=False) for o in orders],
            "count": len(orders),
        }), 200

    except Exception as e:
        return _json_error(e, "list own orders")


@orders_bp.get("/")
@require_auth
@require_permission("VIEW_ALL_ORDERS")
def list_orders_route():
    try:
        orders = payment_service.list_orders()
        return jsonify({
            "orders": [o.to_dict(include_lines=False) for o in orders],
            "count": len(orders),
        }), 200

    except Exception as e:
        return _json_error(e, "list orders")


@orders_bp.get("/<order_number>")
@require_auth
def get_order_route(order_number: str):
    """Order by its number (e.g. SO-000001), with lines, proofs and timeline."""
    try:
        order = payment_service.get_order_by_number_for(
            order_number, g.current_user.id, can_view_all=_can_view_all(),
        )
        return jsonify({"order": order.to_dict()}), 200

    except Exception as e:
        return _json_error(e, "load order")


@orders_bp.post("/<int:order_id>/payment-proofs")
@require_auth
@require_permission("SUBMIT_PAYMENT_PROOF")
def submit_payment_proof_route(order_id: int):
    """
    Claim a payment against an order.

    Body: amount_cents (int > 0), proof_reference, notes

    Returns 201 with the pending proof, 403 requires_step_up with a
    challenge, or 422 AMOUNT_EXCEEDS_BALANCE.
    """
    try:
        data = request.get_json(silent=True) or {}

        outcome = workflow_service.submit_payment_proof(
            order_id,
            g.current_user.id,
            data.get("amount_cents"),
            data.get("proof_reference"),
            notes=data.get("notes"),
            context=workflow_service.RequestContext(
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
            ),
        )
        if isinstance(outcome, Challenge):
            return jsonify(outcome.to_dict()), 403
        return jsonify(outcome.to_dict()), 201

    except Exception as e:
        return _json_error(e, "submit payment proof")


@orders_bp.put("/<int:order_id>/payment-proofs/<int:proof_id>/verify")
@require_auth
@require_permission("VERIFY_PAYMENT")
def verify_payment_proof_route(order_id: int, proof_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = payment_service.verify_payment_proof(
            order_id, proof_id, g.current_user.id, notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict(include_lines=False)}), 200

    except Exception as e:
        return _json_error(e, "verify payment proof")


@orders_bp.put("/<int:order_id>/payment-proofs/<int:proof_id>/reject")
@require_auth
@require_permission("VERIFY_PAYMENT")
def reject_payment_proof_route(order_id: int, proof_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = payment_service.reject_payment_proof(
            order_id, proof_id, g.current_user.id, notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict(include_lines=False)}), 200

    except Exception as e:
        return _json_error(e, "reject payment proof")
