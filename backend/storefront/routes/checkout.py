# Overview: Flask API routes for checkout; parses input and returns JSON responses.

# backend/storefront/routes/checkout.py
"""
Checkout API Routes

DESIGN:
- POST /api/checkout turns the active cart into a PENDING order, reserves
  stock and starts payment with the chosen provider
- shipping-methods / shipping-quote / configuration feed the checkout page

A gateway failure after the order is committed answers 502 with the order
id and number in details so the client can retry via POST /api/orders/<id>/pay.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..errors import NotFound, StorefrontError
from ..services import cart_service, checkout_service, shipping_service
from ..validation import json_object, normalize_address, optional_int, optional_str, require_int


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


def _address_from_args() -> dict | None:
    country = request.args.get("country")
    region = request.args.get("region")
    if not country and not region:
        return None
    return normalize_address({"country": country, "region": region})


# =============================================================================
# PLACE ORDER
# =============================================================================

@checkout_bp.post("")
@require_tenant
def checkout_route():
    """
    Place an order from the cart.

    Request body:
    {
        "email": "buyer@example.com",
        "payment_provider": "sandbox",
        "currency": "USD",
        "cart_id": 7,                      (optional)
        "user_id": 42 | "guest_token": "abc",
        "coupon_code": "SAVE10",           (optional)
        "shipping_method_id": 2,           (optional, else default shipping)
        "shipping_address": {...},
        "billing_address": {...},          (optional, defaults to shipping)
        "payment_metadata": {...}          (optional)
    }

    Returns:
        201: {"order": ..., "payment": PaymentIntent}
        400: Validation failure or empty cart
        404: Cart or shipping method not found
        409: Insufficient stock
        502: Payment provider failed; order stays PENDING
    """
    try:
        data = json_object(request.get_json(silent=True))
        payment_metadata = data.get("payment_metadata")
        if payment_metadata is not None and not isinstance(payment_metadata, dict):
            return jsonify({"error": "payment_metadata must be an object", "code": "INVALID_REQUEST"}), 400

        order, intent = checkout_service.checkout(
            g.tenant_id,
            email=optional_str(data, "email"),
            payment_provider=optional_str(data, "payment_provider"),
            currency=optional_str(data, "currency"),
            coupon_code=optional_str(data, "coupon_code"),
            cart_id=optional_int(data, "cart_id", minimum=1),
            user_id=optional_int(data, "user_id", minimum=1),
            guest_token=optional_str(data, "guest_token"),
            shipping_address=normalize_address(data.get("shipping_address"), "shipping_address"),
            billing_address=normalize_address(data.get("billing_address"), "billing_address"),
            shipping_method_id=optional_int(data, "shipping_method_id", minimum=1),
            payment_metadata=payment_metadata,
        )
        return jsonify({"order": order.to_dict(), "payment": intent.to_dict()}), 201

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Checkout failed")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SHIPPING
# =============================================================================

@checkout_bp.get("/shipping-methods")
@require_tenant
def shipping_methods_route():
    """Enabled shipping methods for ?country=&region= (all enabled when omitted)."""
    try:
        methods = shipping_service.list_checkout_methods(g.tenant_id, _address_from_args())
        return jsonify({"shipping_methods": [m.to_dict() for m in methods]}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list shipping methods")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.post("/shipping-quote")
@require_tenant
def shipping_quote_route():
    """
    Price one shipping method for the active cart.

    Request body:
    {
        "shipping_method_id": 2,
        "address": {"country": "US", "region": "CA"},
        "cart_id": 7 | "user_id": 42 | "guest_token": "abc"
    }

    Returns:
        200: {"quote": ShippingQuote}
        400: Method unavailable for the address or order total out of range
        404: Method or cart not found
    """
    try:
        data = json_object(request.get_json(silent=True))
        method_id = require_int(data, "shipping_method_id", minimum=1)
        address = normalize_address(data.get("address"))
        cart_id = optional_int(data, "cart_id", minimum=1)

        if cart_id is not None:
            cart = cart_service.get_cart(g.tenant_id, cart_id)
        else:
            cart = cart_service.find_active_cart(
                g.tenant_id,
                user_id=optional_int(data, "user_id", minimum=1),
                guest_token=optional_str(data, "guest_token"),
            )
            if cart is None:
                raise NotFound("Cart not found")

        quote = shipping_service.quote_shipping(g.tenant_id, method_id, address, cart.items)
        return jsonify({"quote": quote.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to quote shipping")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/configuration")
@require_tenant
def configuration_route():
    """Shipping methods for ?country=&region=, accepted payment providers and default shipping."""
    try:
        config = checkout_service.get_checkout_configuration(g.tenant_id, _address_from_args())
        return jsonify(config), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load checkout configuration")
        return jsonify({"error": "Internal server error"}), 500
