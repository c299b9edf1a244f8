# Overview: Flask API routes for shopping carts; parses input and returns JSON responses.

# backend/storefront/routes/cart.py
"""
Cart API Routes

Carts are owned by exactly one identity: a registered user (user_id) or an
anonymous shopper (guest_token). Identity is read from the query string on
GET and from the JSON body on POST.

MULTI-TENANT: every route requires the X-Tenant-ID header.
"""

import secrets

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..errors import StorefrontError
from ..services import cart_service
from ..validation import json_object, optional_int, optional_str, require_int


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _identity(source: dict) -> tuple:
    return optional_int(source, "user_id", minimum=1), optional_str(source, "guest_token")


# =============================================================================
# CART RETRIEVAL
# =============================================================================

@cart_bp.get("")
@require_tenant
def get_cart_route():
    """
    Fetch (or lazily create) the active cart for ?user_id= or ?guest_token=.

    Returns:
        200: Cart with items and subtotal
        400: Missing or conflicting identity
    """
    try:
        user_id, guest_token = _identity(request.args.to_dict())
        cart = cart_service.get_or_create_cart(g.tenant_id, user_id=user_id, guest_token=guest_token)
        return jsonify({"cart": cart.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.post("")
@require_tenant
def create_cart_route():
    """
    Get or create the active cart.

    Request body:
    {
        "user_id": 42          (or)
        "guest_token": "abc"   (omit both to start a new guest cart)
    }

    Returns:
        200: Existing or new cart; guest_token echoes the owner token
    """
    try:
        data = json_object(request.get_json(silent=True))
        user_id, guest_token = _identity(data)
        if user_id is None and guest_token is None:
            guest_token = secrets.token_urlsafe(16)

        cart = cart_service.get_or_create_cart(g.tenant_id, user_id=user_id, guest_token=guest_token)
        return jsonify({"cart": cart.to_dict(), "guest_token": cart.guest_token}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.get("/<int:cart_id>")
@require_tenant
def get_cart_by_id_route(cart_id: int):
    try:
        cart = cart_service.get_cart(g.tenant_id, cart_id)
        return jsonify({"cart": cart.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load cart %s", cart_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CART ITEMS
# =============================================================================

@cart_bp.post("/items")
@require_tenant
def add_item_route():
    """
    Add a product to the cart; re-adding the same product/variant merges.

    Request body:
    {
        "product_id": 10,
        "variant_id": 3,          (optional)
        "quantity": 2,
        "cart_id": 7,             (optional, else resolved by identity)
        "user_id": 42 | "guest_token": "abc"
    }

    Returns:
        201: Updated cart
        400: Invalid quantity or unpublished product
        404: Product, variant or cart not found
        409: Insufficient stock
    """
    try:
        data = json_object(request.get_json(silent=True))
        product_id = require_int(data, "product_id", minimum=1)
        quantity = require_int(data, "quantity")
        variant_id = optional_int(data, "variant_id", minimum=1)
        cart_id = optional_int(data, "cart_id", minimum=1)
        user_id, guest_token = _identity(data)

        cart = cart_service.add_item(
            g.tenant_id,
            product_id,
            quantity,
            variant_id=variant_id,
            user_id=user_id,
            guest_token=guest_token,
            cart_id=cart_id,
        )
        return jsonify({"cart": cart.to_dict()}), 201

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add item to cart")
        return jsonify({"error": "Internal server error"}), 500
