from __future__ import annotations

from ..extensions import db


class TaxRule(db.Model):
    """
    Tax rule matched against the shipping address.

    rate: basis points for PERCENTAGE, cents for FIXED_AMOUNT.
    region_code NULL means the rule covers the whole country.
    """
    __tablename__ = "tax_rules"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=True)
    country_code = db.Column(db.String(2), nullable=True)
    region_code = db.Column(db.String(16), nullable=True)

    calculation_type = db.Column(db.String(16), nullable=False, default="PERCENTAGE")
    rate = db.Column(db.Integer, nullable=False, default=0)
    applies_to_shipping = db.Column(db.Boolean, nullable=False, default=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "country_code": self.country_code,
            "region_code": self.region_code,
            "calculation_type": self.calculation_type,
            "rate": self.rate,
            "applies_to_shipping": self.applies_to_shipping,
            "is_default": self.is_default,
        }
