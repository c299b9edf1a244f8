# Overview: Cart store; resolves carts by owner and adds items with stock checks.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Cart, CartItem, Product, ProductVariant
from ..errors import InvalidRequest, InsufficientStock, NotFound, Unavailable
from storefront.time_utils import utcnow, days_from_now
from .inventory_service import available_quantity


DEFAULT_GUEST_CART_TTL_DAYS = 7


def _guest_ttl_days() -> int:
    return int(current_app.config.get("GUEST_CART_TTL_DAYS", DEFAULT_GUEST_CART_TTL_DAYS))


def _validate_owner(user_id: int | None, guest_token: str | None) -> tuple[int | None, str | None]:
    """Exactly one of user_id / guest_token identifies a cart."""
    guest_token = (guest_token or "").strip() or None
    if user_id is None and guest_token is None:
        raise InvalidRequest("A user_id or guest_token must be provided")
    if user_id is not None and guest_token is not None:
        raise InvalidRequest("Provide either user_id or guest_token, not both")
    return user_id, guest_token


def find_active_cart(tenant_id: int, user_id: int | None = None, guest_token: str | None = None) -> Cart | None:
    """
    Most recent active cart for the owner.

    Guest carts past expires_at are treated as gone.
    """
    user_id, guest_token = _validate_owner(user_id, guest_token)

    query = db.session.query(Cart).filter(Cart.tenant_id == tenant_id, Cart.is_active.is_(True))
    if user_id is not None:
        query = query.filter(Cart.user_id == user_id)
    else:
        query = query.filter(
            Cart.guest_token == guest_token,
            db.or_(Cart.expires_at.is_(None), Cart.expires_at > utcnow()),
        )
    return query.order_by(Cart.id.desc()).first()


def _new_cart(tenant_id: int, user_id: int | None, guest_token: str | None) -> Cart:
    cart = Cart(
        tenant_id=tenant_id,
        user_id=user_id,
        guest_token=guest_token,
        is_active=True,
        expires_at=days_from_now(_guest_ttl_days()) if guest_token else None,
    )
    db.session.add(cart)
    return cart


def get_or_create_cart(tenant_id: int, user_id: int | None = None, guest_token: str | None = None) -> Cart:
    user_id, guest_token = _validate_owner(user_id, guest_token)
    cart = find_active_cart(tenant_id, user_id=user_id, guest_token=guest_token)
    if cart is None:
        cart = _new_cart(tenant_id, user_id, guest_token)
        db.session.commit()
    return cart


def get_cart(tenant_id: int, cart_id: int) -> Cart:
    cart = db.session.query(Cart).filter_by(id=cart_id, tenant_id=tenant_id).first()
    if cart is None:
        raise NotFound("Cart not found")
    return cart


def add_item(
    tenant_id: int,
    product_id: int,
    quantity: int,
    *,
    variant_id: int | None = None,
    user_id: int | None = None,
    guest_token: str | None = None,
    cart_id: int | None = None,
) -> Cart:
    """
    Add a product (optionally a variant) to the owner's active cart.

    Validation order: quantity, product, published, variant, availability.
    Availability uses the variant's stock row, then the product's variant-less
    row; no row means the product is not stock-tracked.

    Adding an item already in the cart increments its quantity and refreshes
    the price/name/sku snapshot from the catalog.
    """
    if quantity is None or int(quantity) <= 0:
        raise InvalidRequest("Quantity must be greater than zero")
    quantity = int(quantity)

    if cart_id is not None:
        cart = get_cart(tenant_id, cart_id)
        if not cart.is_active:
            raise InvalidRequest("Cart is no longer active")
    else:
        user_id, guest_token = _validate_owner(user_id, guest_token)
        cart = find_active_cart(tenant_id, user_id=user_id, guest_token=guest_token)
        if cart is None:
            cart = _new_cart(tenant_id, user_id, guest_token)

    product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
    if product is None:
        raise NotFound("Product not found")
    if not product.is_published:
        raise Unavailable("Product is not available for sale")

    variant = None
    if variant_id is not None:
        variant = (
            db.session.query(ProductVariant)
            .filter_by(id=variant_id, product_id=product.id, tenant_id=tenant_id)
            .first()
        )
        if variant is None:
            raise NotFound("Variant not found")

    available = available_quantity(tenant_id, product.id, variant_id)
    if available is not None and available < quantity:
        raise InsufficientStock(
            "Insufficient inventory for the requested quantity",
            details={"product_id": product.id, "available": max(available, 0), "requested": quantity},
        )

    unit_price = variant.price_cents if variant is not None and variant.price_cents is not None else product.price_cents
    name = (variant.name if variant is not None and variant.name else None) or product.name
    sku = (variant.sku if variant is not None and variant.sku else None) or product.sku

    existing = None
    for item in cart.items:
        if item.product_id == product.id and item.product_variant_id == variant_id:
            existing = item
            break

    if existing is None:
        cart.items.append(
            CartItem(
                tenant_id=tenant_id,
                product_id=product.id,
                product_variant_id=variant_id,
                quantity=quantity,
                unit_price_cents=unit_price,
                name=name,
                sku=sku,
            )
        )
    else:
        existing.quantity += quantity
        existing.unit_price_cents = unit_price
        existing.name = name
        existing.sku = sku

    db.session.commit()
    return cart
