# Overview: Flask API routes for refund requests; parses input and returns JSON responses.

# backend/storefront/routes/refunds.py
"""
Refund Request API Routes

DESIGN:
- Customers (or agents) request refunds for specific order lines
- Operators approve (which settles through the payment provider) or deny
- Settlement failures are reported on the request (status FAILED), not as
  HTTP errors

MULTI-TENANT: every route requires the X-Tenant-ID header.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..errors import StorefrontError
from ..services import refund_service
from ..validation import coerce_int, json_object, optional_int, optional_str, require_int


refunds_bp = Blueprint("refunds", __name__, url_prefix="/api/refunds")


# =============================================================================
# REFUND REQUESTS
# =============================================================================

@refunds_bp.post("")
@require_tenant
def submit_refund_route():
    """
    Request body:
    {
        "order_id": 12,
        "items": [{"order_item_id": 30, "quantity": 1}],
        "reason": "Wrong size"
    }

    Returns:
        201: PENDING refund request
        400: Missing items or quantity above what is still refundable
        404: Order or order item not found
    """
    try:
        data = json_object(request.get_json(silent=True))
        order_id = require_int(data, "order_id", minimum=1)

        refund = refund_service.submit_refund_request(
            g.tenant_id,
            order_id,
            data.get("items"),
            reason=optional_str(data, "reason"),
        )
        return jsonify({"refund": refund.to_dict()}), 201

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit refund request")
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.get("")
@require_tenant
def list_refunds_route():
    """Query params: page, page_size (max 200), status, order_id."""
    try:
        result = refund_service.list_refund_requests(
            g.tenant_id,
            page=coerce_int("page", request.args.get("page", 1), minimum=1),
            page_size=coerce_int("page_size", request.args.get("page_size", 20), minimum=1),
            status=request.args.get("status"),
            order_id=optional_int(request.args.to_dict(), "order_id", minimum=1),
        )
        return jsonify(result), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list refund requests")
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.get("/<int:refund_id>")
@require_tenant
def get_refund_route(refund_id: int):
    try:
        refund = refund_service.get_refund_request(g.tenant_id, refund_id)
        return jsonify({"refund": refund.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load refund request %s", refund_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# DECISIONS
# =============================================================================

@refunds_bp.post("/<int:refund_id>/approve")
@require_tenant
def approve_refund_route(refund_id: int):
    """
    Approve and settle a PENDING request.

    Request body (optional): {"notes": "Approved by support"}

    Returns:
        200: Settled request (REFUNDED or FAILED)
        404: Refund request not found
        409: Request already decided
    """
    try:
        data = json_object(request.get_json(silent=True))
        refund = refund_service.approve_refund(g.tenant_id, refund_id, notes=optional_str(data, "notes"))
        return jsonify({"refund": refund.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to approve refund request %s", refund_id)
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.post("/<int:refund_id>/deny")
@require_tenant
def deny_refund_route(refund_id: int):
    try:
        data = json_object(request.get_json(silent=True))
        refund = refund_service.deny_refund(g.tenant_id, refund_id, notes=optional_str(data, "notes"))
        return jsonify({"refund": refund.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deny refund request %s", refund_id)
        return jsonify({"error": "Internal server error"}), 500
