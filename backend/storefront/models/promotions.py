from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


DISCOUNT_TYPES = ("PERCENTAGE", "FIXED_AMOUNT")
APPLICABILITY_TYPES = ("CART", "PRODUCT", "CATEGORY")


class Coupon(db.Model):
    """
    Customer-entered discount code.

    value: basis points for PERCENTAGE, cents for FIXED_AMOUNT.
    Codes are stored upper-case; lookups upper-case the input.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_coupons_tenant_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    code = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)
    applicability = db.Column(db.String(16), nullable=False, default="CART")
    value = db.Column(db.Integer, nullable=False)

    target_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    target_category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True)

    minimum_order_cents = db.Column(db.Integer, nullable=True)
    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ends_at = db.Column(db.DateTime(timezone=True), nullable=True)

    usage_limit = db.Column(db.Integer, nullable=True)  # NULL = unlimited
    times_redeemed = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "applicability": self.applicability,
            "value": self.value,
            "target_product_id": self.target_product_id,
            "target_category_id": self.target_category_id,
            "minimum_order_cents": self.minimum_order_cents,
            "starts_at": to_utc_z(self.starts_at) if self.starts_at else None,
            "ends_at": to_utc_z(self.ends_at) if self.ends_at else None,
            "usage_limit": self.usage_limit,
            "times_redeemed": self.times_redeemed,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class PromotionCampaign(db.Model):
    """Automatic discount, evaluated by descending priority after the coupon."""
    __tablename__ = "promotion_campaigns"
    __table_args__ = (
        db.Index("ix_promotion_campaigns_tenant_active_priority", "tenant_id", "is_active", "priority"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    priority = db.Column(db.Integer, nullable=False, default=0)

    discount_type = db.Column(db.String(16), nullable=False)
    applicability = db.Column(db.String(16), nullable=False, default="CART")
    value = db.Column(db.Integer, nullable=False)

    target_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    target_category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True)

    minimum_order_cents = db.Column(db.Integer, nullable=True)
    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ends_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "priority": self.priority,
            "discount_type": self.discount_type,
            "applicability": self.applicability,
            "value": self.value,
            "target_product_id": self.target_product_id,
            "target_category_id": self.target_category_id,
            "minimum_order_cents": self.minimum_order_cents,
            "starts_at": to_utc_z(self.starts_at) if self.starts_at else None,
            "ends_at": to_utc_z(self.ends_at) if self.ends_at else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
