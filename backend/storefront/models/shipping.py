from __future__ import annotations

from ..extensions import db


METHOD_TYPES = ("FLAT_RATE", "WEIGHT_BASED", "RATE_TABLE", "EXTERNAL")
RATE_CONDITION_TYPES = ("NONE", "ORDER_TOTAL", "WEIGHT")


class ShippingZone(db.Model):
    """
    Geographic zone grouping shipping methods.

    A zone without regions matches every address only when it is the default zone.
    """
    __tablename__ = "shipping_zones"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    regions = db.relationship("ShippingZoneRegion", lazy="selectin", order_by="ShippingZoneRegion.id")

    def covers(self, country: str | None, region: str | None) -> bool:
        """Whether any region row matches; a NULL region_code covers the whole country."""
        if not self.regions:
            return bool(self.is_default)
        if not country:
            return False
        country = country.upper()
        region = region.upper() if region else None
        for r in self.regions:
            if (r.country_code or "").upper() != country:
                continue
            if r.region_code is None or (region and r.region_code.upper() == region):
                return True
        return False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_default": self.is_default,
            "regions": [
                {"country_code": r.country_code, "region_code": r.region_code}
                for r in self.regions
            ],
        }


class ShippingZoneRegion(db.Model):
    __tablename__ = "shipping_zone_regions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    zone_id = db.Column(db.Integer, db.ForeignKey("shipping_zones.id"), nullable=False, index=True)
    country_code = db.Column(db.String(2), nullable=False)
    region_code = db.Column(db.String(16), nullable=True)


class ShippingMethod(db.Model):
    """
    Shipping method offered at checkout.

    METHOD TYPES:
    - FLAT_RATE: flat_rate_cents
    - WEIGHT_BASED / RATE_TABLE: tiered lookup in rate table entries
    - EXTERNAL: carrier adapter keyed by carrier_key (flat rate fallback)
    """
    __tablename__ = "shipping_methods"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    zone_id = db.Column(db.Integer, db.ForeignKey("shipping_zones.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    method_type = db.Column(db.String(16), nullable=False, default="FLAT_RATE")
    rate_condition_type = db.Column(db.String(16), nullable=False, default="NONE")

    flat_rate_cents = db.Column(db.Integer, nullable=False, default=0)
    minimum_order_cents = db.Column(db.Integer, nullable=True)
    maximum_order_cents = db.Column(db.Integer, nullable=True)

    carrier_key = db.Column(db.String(64), nullable=True)
    carrier_service_level = db.Column(db.String(64), nullable=True)
    estimated_transit_days_min = db.Column(db.Integer, nullable=True)
    estimated_transit_days_max = db.Column(db.Integer, nullable=True)

    is_enabled = db.Column(db.Boolean, nullable=False, default=True)

    zone = db.relationship("ShippingZone", lazy="joined")
    rate_entries = db.relationship(
        "ShippingRateTableEntry",
        lazy="selectin",
        order_by="ShippingRateTableEntry.min_value",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "zone_id": self.zone_id,
            "name": self.name,
            "method_type": self.method_type,
            "rate_condition_type": self.rate_condition_type,
            "flat_rate_cents": self.flat_rate_cents,
            "minimum_order_cents": self.minimum_order_cents,
            "maximum_order_cents": self.maximum_order_cents,
            "carrier_key": self.carrier_key,
            "carrier_service_level": self.carrier_service_level,
            "estimated_transit_days_min": self.estimated_transit_days_min,
            "estimated_transit_days_max": self.estimated_transit_days_max,
            "is_enabled": self.is_enabled,
        }


class ShippingRateTableEntry(db.Model):
    """Tier [min_value, max_value] -> rate_cents. max_value NULL is open-ended."""
    __tablename__ = "shipping_rate_table_entries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    method_id = db.Column(db.Integer, db.ForeignKey("shipping_methods.id"), nullable=False, index=True)

    min_value = db.Column(db.Integer, nullable=False, default=0)
    max_value = db.Column(db.Integer, nullable=True)
    rate_cents = db.Column(db.Integer, nullable=False)
