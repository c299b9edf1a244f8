# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/storefront/routes/orders.py
"""
Order API Routes

DESIGN:
- List/search orders (newest first, paginated)
- Operator status changes (PROCESSING, SHIPPED, DELIVERED, CANCELLED)
- Payment retry and payment status polling
- Immediate (operator) refunds

MULTI-TENANT: every route requires the X-Tenant-ID header; orders of other
tenants answer 404.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..errors import InvalidRequest, StorefrontError
from ..services import order_service, refund_service
from ..validation import coerce_int, json_object, optional_str, require_int
from storefront.time_utils import parse_iso_datetime


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _date_arg(key: str):
    raw = request.args.get(key)
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise InvalidRequest(f"{key} must be an ISO-8601 datetime")


# =============================================================================
# ORDER QUERIES
# =============================================================================

@orders_bp.get("")
@require_tenant
def list_orders_route():
    """
    Query params: page, page_size (max 200), status, from, to, search
    (order number or e-mail fragment).
    """
    try:
        result = order_service.list_orders(
            g.tenant_id,
            page=coerce_int("page", request.args.get("page", 1), minimum=1),
            page_size=coerce_int("page_size", request.args.get("page_size", 20), minimum=1),
            status=request.args.get("status"),
            from_date=_date_arg("from"),
            to_date=_date_arg("to"),
            search=request.args.get("search"),
        )
        return jsonify(result), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_tenant
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(g.tenant_id, order_id)
        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STATUS CHANGES
# =============================================================================

@orders_bp.put("/<int:order_id>/status")
@require_tenant
def update_status_route(order_id: int):
    """
    Request body:
    {
        "status": "SHIPPED",
        "tracking_number": "1Z999"   (optional, stored on SHIPPED)
    }

    Returns:
        200: Updated order
        400: Unknown status
        404: Order not found
        409: Transition not allowed from the current status
    """
    try:
        data = json_object(request.get_json(silent=True))
        status = optional_str(data, "status")
        if not status:
            return jsonify({"error": "status is required", "code": "INVALID_REQUEST"}), 400

        order = order_service.update_order_status(
            g.tenant_id,
            order_id,
            status,
            tracking_number=optional_str(data, "tracking_number"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update status of order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT
# =============================================================================

@orders_bp.post("/<int:order_id>/pay")
@require_tenant
def retry_payment_route(order_id: int):
    """
    Restart payment for a PENDING order.

    Request body (optional): {"payment_provider": "sandbox"}
    """
    try:
        data = json_object(request.get_json(silent=True))
        order, intent = order_service.retry_payment(
            g.tenant_id,
            order_id,
            provider=optional_str(data, "payment_provider"),
        )
        return jsonify({"order": order.to_dict(), "payment": intent.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restart payment for order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/payment-status")
@require_tenant
def payment_status_route(order_id: int):
    try:
        return jsonify(order_service.get_payment_status(g.tenant_id, order_id)), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load payment status for order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REFUNDS
# =============================================================================

@orders_bp.post("/<int:order_id>/refund")
@require_tenant
def immediate_refund_route(order_id: int):
    """
    Refund an amount straight away, without a customer request.

    Request body:
    {
        "amount_cents": 3000,
        "reason": "Damaged in transit"   (optional)
    }

    Returns:
        201: {"refund": ..., "order": ...}; refund.status is REFUNDED or FAILED
        400: Amount missing, not positive or above the refundable balance
        404: Order not found
        409: Order cannot be refunded
    """
    try:
        data = json_object(request.get_json(silent=True))
        amount = require_int(data, "amount_cents", minimum=1)

        refund = refund_service.create_immediate_refund(
            g.tenant_id,
            order_id,
            amount,
            reason=optional_str(data, "reason"),
        )
        order = order_service.get_order(g.tenant_id, order_id)
        return jsonify({"refund": refund.to_dict(), "order": order.to_dict()}), 201

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to refund order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500
