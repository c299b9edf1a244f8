from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


ORDER_STATUSES = ("PENDING", "PROCESSING", "SHIPPED", "DELIVERED", "CANCELLED", "REFUNDED")
PAYMENT_STATUSES = ("PENDING", "AUTHORIZED", "CAPTURED", "FAILED", "REFUNDED")


class Order(db.Model):
    """
    Order aggregate: header, immutable line snapshots and payment transactions.

    LIFECYCLE:
    - PENDING: created by checkout, stock reserved, awaiting payment
    - PROCESSING: payment authorized or captured
    - SHIPPED -> DELIVERED: fulfilment (reservation committed at shipment)
    - CANCELLED: payment failed or manual cancel (reservation released)
    - REFUNDED: refund settled or provider reported a refund (released)

    grand_total_cents == subtotal - discount + tax + shipping, fixed at checkout.
    inventory_released_at marks the one-time release/commit of the reservation.
    refund_claimed_cents is the amount held by approved, in-flight or settled
    refunds; it only moves through conditional UPDATEs.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "order_number", name="uq_orders_tenant_number"),
        db.Index("ix_orders_tenant_status_created", "tenant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    # Human-readable number (e.g., "ORD-000042")
    order_number = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    email = db.Column(db.String(255), nullable=False, index=True)

    # Totals (all amounts in cents)
    currency = db.Column(db.String(3), nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_total_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_total_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_total_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)

    shipping_address = db.Column(db.JSON, nullable=True)
    billing_address = db.Column(db.JSON, nullable=True)

    # Pricing provenance
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True)
    coupon_code = db.Column(db.String(64), nullable=True)
    promotion_campaign_id = db.Column(db.Integer, db.ForeignKey("promotion_campaigns.id"), nullable=True)
    tax_rule_id = db.Column(db.Integer, db.ForeignKey("tax_rules.id"), nullable=True)
    shipping_method_id = db.Column(db.Integer, db.ForeignKey("shipping_methods.id"), nullable=True)

    tracking_number = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    inventory_released_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_claimed_cents = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship("OrderItem", lazy="selectin", order_by="OrderItem.id", back_populates="order")
    payments = db.relationship("PaymentTransaction", lazy="selectin", order_by="PaymentTransaction.id", back_populates="order")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_number": self.order_number,
            "status": self.status,
            "cart_id": self.cart_id,
            "user_id": self.user_id,
            "email": self.email,
            "currency": self.currency,
            "subtotal_cents": self.subtotal_cents,
            "discount_total_cents": self.discount_total_cents,
            "tax_total_cents": self.tax_total_cents,
            "shipping_total_cents": self.shipping_total_cents,
            "grand_total_cents": self.grand_total_cents,
            "refund_claimed_cents": self.refund_claimed_cents,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "coupon_id": self.coupon_id,
            "coupon_code": self.coupon_code,
            "promotion_campaign_id": self.promotion_campaign_id,
            "tax_rule_id": self.tax_rule_id,
            "shipping_method_id": self.shipping_method_id,
            "tracking_number": self.tracking_number,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "shipped_at": to_utc_z(self.shipped_at) if self.shipped_at else None,
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class OrderItem(db.Model):
    """Immutable line snapshot copied from the cart at checkout."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_variant_id": self.product_variant_id,
            "name": self.name,
            "sku": self.sku,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
        }


class PaymentTransaction(db.Model):
    """
    Gateway-facing payment record.

    TRANSACTION TYPES:
    - PAYMENT: created PENDING at checkout, advanced by gateway/webhooks
    - REFUND: appended by refund settlement with a negative amount

    (provider, provider_reference) is unique; webhooks look transactions up by it.
    """
    __tablename__ = "payment_transactions"
    __table_args__ = (
        db.UniqueConstraint("provider", "provider_reference", name="uq_payment_transactions_provider_ref"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, default="PAYMENT")  # PAYMENT, REFUND
    provider = db.Column(db.String(32), nullable=False)
    provider_reference = db.Column(db.String(128), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    amount_cents = db.Column(db.Integer, nullable=False)  # negative for refunds
    currency = db.Column(db.String(3), nullable=False)

    raw_payload = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "transaction_type": self.transaction_type,
            "provider": self.provider,
            "provider_reference": self.provider_reference,
            "status": self.status,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
        }
