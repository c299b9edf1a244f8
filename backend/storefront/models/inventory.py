from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Inventory(db.Model):
    """
    Stock row per (product, variant-or-null).

    quantity_on_hand is physical stock; reserved_quantity is committed to
    orders that have not shipped, been cancelled or been refunded.

    reserved_quantity <= quantity_on_hand holds after every checkout and
    release. Only direct on-hand decrements (POS sales) may break it
    temporarily, since they skip reservation.

    Reservation and release are single conditional UPDATE statements in
    inventory_service; never read-modify-write these two columns.
    """
    __tablename__ = "inventories"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "product_id", "product_variant_id", name="uq_inventories_tenant_product_variant"),
        db.Index("ix_inventories_tenant_product", "tenant_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)

    last_adjusted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def available_quantity(self) -> int:
        """Available to sell, floored at 0 for display."""
        return max(0, (self.quantity_on_hand or 0) - (self.reserved_quantity or 0))

    def __repr__(self) -> str:
        return (
            f"<Inventory product_id={self.product_id} variant_id={self.product_variant_id} "
            f"on_hand={self.quantity_on_hand} reserved={self.reserved_quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_variant_id": self.product_variant_id,
            "quantity_on_hand": self.quantity_on_hand,
            "reserved_quantity": self.reserved_quantity,
            "available_quantity": self.available_quantity,
            "last_adjusted_at": to_utc_z(self.last_adjusted_at),
        }
