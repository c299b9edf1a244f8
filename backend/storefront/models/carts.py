from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Cart(db.Model):
    """
    Mutable pre-order basket.

    Owned by a registered user OR a guest token, never both and never neither.
    Deactivated (not deleted) at checkout so the basket stays auditable.
    """
    __tablename__ = "carts"
    __table_args__ = (
        db.Index("ix_carts_tenant_user_active", "tenant_id", "user_id", "is_active"),
        db.Index("ix_carts_tenant_guest_active", "tenant_id", "guest_token", "is_active"),
        db.CheckConstraint(
            "(user_id IS NULL) <> (guest_token IS NULL)",
            name="ck_carts_single_owner",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    user_id = db.Column(db.Integer, nullable=True)
    guest_token = db.Column(db.String(128), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    items = db.relationship(
        "CartItem",
        lazy="selectin",
        order_by="CartItem.id",
        cascade="all, delete-orphan",
    )

    @property
    def subtotal_cents(self) -> int:
        return sum(item.line_total_cents for item in self.items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "guest_token": self.guest_token,
            "is_active": self.is_active,
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
            "subtotal_cents": self.subtotal_cents,
        }


class CartItem(db.Model):
    """Line in a cart. Price/name/sku are snapshots taken when the item was last added."""
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "product_id", "product_variant_id", name="uq_cart_items_cart_product_variant"),
        db.CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_variant_id": self.product_variant_id,
            "name": self.name,
            "sku": self.sku,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
        }
