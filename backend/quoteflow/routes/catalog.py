# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

from flask import Blueprint, jsonify, current_app

from ..decorators import require_auth
from ..errors import AvailabilityUnknownError
from ..services import catalog_service, inventory_service


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


@catalog_bp.get("/")
@require_auth
def list_catalog_route():
    """Active catalog items with their current available quantity."""
    try:
        items = []
        for item in catalog_service.list_items():
            body = item.to_dict()
            body["available_quantity"] = inventory_service.available(item.id)
            items.append(body)
        return jsonify({"items": items, "count": len(items)}), 200

    except AvailabilityUnknownError:
        current_app.logger.warning("Availability lookup failed while listing catalog")
        return jsonify({"error": "SERVICE_UNAVAILABLE", "message": "Please retry shortly"}), 503
    except Exception:
        current_app.logger.exception("Failed to list catalog")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/<int:item_id>/availability")
@require_auth
def availability_route(item_id: int):
    try:
        summary = inventory_service.get_availability_summary(item_id)
        if summary is None:
            return jsonify({"error": "NOT_FOUND", "message": "Catalog item not found"}), 404
        return jsonify(summary), 200

    except AvailabilityUnknownError:
        current_app.logger.warning("Availability lookup failed for item %s", item_id)
        return jsonify({"error": "SERVICE_UNAVAILABLE", "message": "Please retry shortly"}), 503
    except Exception:
        current_app.logger.exception("Failed to load availability")
        return jsonify({"error": "Internal server error"}), 500
