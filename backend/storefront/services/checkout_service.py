# Overview: Checkout orchestrator; turns an active cart into a priced, reserved order and starts payment.

from __future__ import annotations

import logging
import uuid

from flask import current_app
from sqlalchemy import select, update

from ..extensions import db
from ..models import Cart, Coupon, Order, OrderItem, PaymentTransaction, product_categories
from ..errors import EmptyCart, GatewayError, InvalidRequest, NotFound
from .concurrency import run_with_retry
from .document_service import next_order_number
from .inventory_service import reserve_stock
from .notification_service import NotificationType, notify
from .payment_gateway import PaymentIntent, get_orchestrator
from .promotion_engine import PricingContext, PricingLine, PromotionResult, evaluate
from .shipping_service import list_checkout_methods, quote_shipping
from .tax_service import calculate_tax
from . import cart_service

logger = logging.getLogger(__name__)


"""
Checkout (authoritative)

Steps 1-10 run in ONE database transaction and commit once:
  1. validate email / payment provider / currency
  2. load the cart (by id, else by owner); reject missing or empty carts
  3. reserve stock for every line (conditional UPDATE, all or nothing)
  4. subtotal from the cart's price snapshots
  5. best discount (coupon or campaign)
  6. tax on subtotal - discount
  7. shipping (selected method, else the configured default)
  8. grand total = subtotal - discount + tax + shipping
  9. order + line snapshots + PENDING payment transaction; coupon redemption
 10. deactivate the cart
Any failure before the commit rolls everything back, so a reservation never
outlives its order.

After the commit:
 11. the gateway is asked to start payment. A gateway failure surfaces as
     GatewayError; the order stays PENDING and can be retried via retry_payment.
 12. ORDER_PLACED is queued (never raises)
"""


def _validate_request(email: str | None, payment_provider: str | None, currency: str | None) -> tuple[str, str, str]:
    email = (email or "").strip()
    provider = (payment_provider or "").strip().lower()
    currency = (currency or "").strip().upper()

    if not email:
        raise InvalidRequest("Email is required")
    if "@" not in email:
        raise InvalidRequest("Email is invalid")
    if not provider:
        raise InvalidRequest("A payment provider must be supplied")
    if not currency:
        raise InvalidRequest("Currency is required")
    if len(currency) != 3 or not currency.isalpha():
        raise InvalidRequest("Currency must be a 3-letter ISO code")
    if not get_orchestrator().supports(provider):
        raise InvalidRequest(f"Payment provider '{provider}' is not available")
    return email, provider, currency


def _load_cart(tenant_id: int, cart_id: int | None, user_id: int | None, guest_token: str | None) -> Cart:
    cart = None
    if cart_id is not None:
        cart = (
            db.session.query(Cart)
            .filter(Cart.id == cart_id, Cart.tenant_id == tenant_id, Cart.is_active.is_(True))
            .first()
        )
    if cart is None and (user_id is not None or guest_token):
        cart = cart_service.find_active_cart(tenant_id, user_id=user_id, guest_token=guest_token)
    if cart is None:
        raise NotFound("Cart not found")
    if not cart.items:
        raise EmptyCart("Cart is empty")
    return cart


def _category_lookup(product_ids: set[int]) -> dict[int, frozenset]:
    rows = db.session.execute(
        select(product_categories.c.product_id, product_categories.c.category_id)
        .where(product_categories.c.product_id.in_(product_ids))
    ).all()
    lookup: dict[int, set] = {}
    for product_id, category_id in rows:
        lookup.setdefault(product_id, set()).add(category_id)
    return {pid: frozenset(cats) for pid, cats in lookup.items()}


def price_cart(tenant_id: int, cart: Cart, currency: str, coupon_code: str | None) -> PromotionResult:
    categories = _category_lookup({item.product_id for item in cart.items})
    lines = [
        PricingLine(
            product_id=item.product_id,
            product_variant_id=item.product_variant_id,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            category_ids=categories.get(item.product_id, frozenset()),
        )
        for item in cart.items
    ]
    context = PricingContext(
        tenant_id=tenant_id,
        lines=lines,
        subtotal_cents=cart.subtotal_cents,
        currency=currency,
        coupon_code=coupon_code,
    )
    return evaluate(context)


def _redeem_coupon(coupon_id: int) -> None:
    # usage_limit is checked at evaluation time; two concurrent checkouts may
    # both redeem the last use.
    db.session.execute(
        update(Coupon)
        .where(Coupon.id == coupon_id)
        .values(times_redeemed=Coupon.times_redeemed + 1)
        .execution_options(synchronize_session=False)
    )


def _place_order(
    tenant_id: int,
    *,
    email: str,
    provider: str,
    currency: str,
    coupon_code: str | None,
    cart_id: int | None,
    user_id: int | None,
    guest_token: str | None,
    shipping_address: dict | None,
    billing_address: dict | None,
    shipping_method_id: int | None,
    payment_metadata: dict | None,
) -> tuple[Order, PaymentTransaction]:
    """Steps 2-10; the caller owns the transaction."""
    cart = _load_cart(tenant_id, cart_id, user_id, guest_token)

    reserve_stock(tenant_id, cart.items)

    subtotal = cart.subtotal_cents
    promotion = price_cart(tenant_id, cart, currency, coupon_code)
    discount = promotion.discount_cents
    taxable = subtotal - discount

    if shipping_method_id is not None:
        shipping = quote_shipping(tenant_id, shipping_method_id, shipping_address, cart.items).amount_cents
    else:
        shipping = int(current_app.config.get("DEFAULT_SHIPPING_CENTS", 999))

    tax_result = calculate_tax(tenant_id, taxable, shipping, shipping_address)
    tax = tax_result.tax_cents
    grand_total = taxable + tax + shipping

    order = Order(
        tenant_id=tenant_id,
        order_number=next_order_number(tenant_id),
        status="PENDING",
        cart_id=cart.id,
        user_id=cart.user_id,
        email=email,
        currency=currency,
        subtotal_cents=subtotal,
        discount_total_cents=discount,
        tax_total_cents=tax,
        shipping_total_cents=shipping,
        grand_total_cents=grand_total,
        shipping_address=shipping_address,
        billing_address=billing_address or shipping_address,
        coupon_id=promotion.coupon_id,
        coupon_code=promotion.coupon_code,
        promotion_campaign_id=promotion.campaign_id,
        tax_rule_id=tax_result.rule_id,
        shipping_method_id=shipping_method_id,
    )
    for item in cart.items:
        order.items.append(
            OrderItem(
                tenant_id=tenant_id,
                product_id=item.product_id,
                product_variant_id=item.product_variant_id,
                name=item.name,
                sku=item.sku,
                unit_price_cents=item.unit_price_cents,
                quantity=item.quantity,
                line_total_cents=item.line_total_cents,
            )
        )

    payment = PaymentTransaction(
        tenant_id=tenant_id,
        transaction_type="PAYMENT",
        provider=provider,
        provider_reference=uuid.uuid4().hex,
        status="PENDING",
        amount_cents=grand_total,
        currency=currency,
        raw_payload=payment_metadata,
    )
    order.payments.append(payment)
    db.session.add(order)

    if promotion.coupon_id is not None:
        _redeem_coupon(promotion.coupon_id)

    cart.is_active = False
    return order, payment


def start_payment(order: Order, payment: PaymentTransaction) -> PaymentIntent:
    """
    Ask the gateway to start payment for a committed order.

    A new provider reference returned by the gateway replaces the generated one.
    The reference is re-applied on every retry attempt, since a rollback
    discards it from the session.
    """
    try:
        intent = get_orchestrator().pay(payment.provider, order)
    except GatewayError:
        logger.warning("Payment initiation failed for order %s; order left PENDING", order.order_number)
        raise

    new_reference = intent.provider_reference
    if new_reference and new_reference != payment.provider_reference:
        payment_id = payment.id

        def _op():
            row = db.session.get(PaymentTransaction, payment_id)
            row.provider_reference = new_reference
            db.session.commit()

        run_with_retry(_op)
    return intent


def checkout(
    tenant_id: int,
    email: str,
    payment_provider: str,
    currency: str,
    coupon_code: str | None = None,
    cart_id: int | None = None,
    user_id: int | None = None,
    guest_token: str | None = None,
    shipping_address: dict | None = None,
    billing_address: dict | None = None,
    shipping_method_id: int | None = None,
    payment_metadata: dict | None = None,
) -> tuple[Order, PaymentIntent]:
    """
    Place an order from the cart and start payment.

    Returns (order, payment_intent). Raises InvalidRequest, NotFound, EmptyCart,
    InsufficientStock, Unavailable or OutOfRange before anything is persisted,
    and GatewayError after the order has been committed as PENDING.
    """
    email, provider, currency = _validate_request(email, payment_provider, currency)

    def _op():
        try:
            order, payment = _place_order(
                tenant_id,
                email=email,
                provider=provider,
                currency=currency,
                coupon_code=coupon_code,
                cart_id=cart_id,
                user_id=user_id,
                guest_token=guest_token,
                shipping_address=shipping_address,
                billing_address=billing_address,
                shipping_method_id=shipping_method_id,
                payment_metadata=payment_metadata,
            )
            db.session.commit()
            return order, payment
        except Exception:
            db.session.rollback()
            raise

    order, payment = run_with_retry(_op)
    logger.info("Order %s placed for tenant %s (%s %s)", order.order_number, tenant_id, order.grand_total_cents, currency)

    try:
        intent = start_payment(order, payment)
    except GatewayError as e:
        e.details.setdefault("order_id", order.id)
        e.details.setdefault("order_number", order.order_number)
        raise

    notify(NotificationType.ORDER_PLACED, order)
    logger.info("Checkout completed for order %s", order.order_number)
    return order, intent


def get_checkout_configuration(tenant_id: int, address: dict | None = None) -> dict:
    """Shipping methods for the address plus the payment providers the store accepts."""
    orchestrator = get_orchestrator()
    payment_methods = []
    for provider in orchestrator.providers():
        settings = orchestrator.provider_settings(provider)
        payment_methods.append({
            "provider": provider,
            "provider_currency": settings.provider_currency,
            "publishable_key": settings.publishable_key or None,
        })
    return {
        "shipping_methods": [m.to_dict() for m in list_checkout_methods(tenant_id, address)],
        "payment_methods": payment_methods,
        "default_shipping_cents": int(current_app.config.get("DEFAULT_SHIPPING_CENTS", 999)),
    }
