# Overview: Tax resolver; picks the rule for a shipping address and computes tax in cents.

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..extensions import db
from ..models import TaxRule
from ..money import percent_of
from ..validation import address_country_region
from .tenant_service import tenant_currency

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaxResult:
    tax_cents: int
    currency: str
    rule_id: int | None = None

    def to_dict(self) -> dict:
        return {"tax_cents": self.tax_cents, "currency": self.currency, "rule_id": self.rule_id}


def resolve_rule(rules: list[TaxRule], address: dict | None) -> TaxRule | None:
    """
    Walk the rules in order and pick one for the address.

    - exact country + region match wins immediately
    - a country rule without a region becomes the fallback (a later one replaces it)
    - a default rule for another country is remembered only while no fallback exists
    """
    country, region = address_country_region(address)
    fallback = None
    for rule in rules:
        rule_country = (rule.country_code or "").upper()
        if not country or rule_country != country:
            if rule.is_default and fallback is None:
                fallback = rule
            continue

        if not rule.region_code:
            fallback = rule
            continue

        if region and rule.region_code.upper() == region:
            return rule

    return fallback


def calculate_tax(tenant_id: int, taxable_cents: int, shipping_cents: int, address: dict | None) -> TaxResult:
    """
    Tax for a checkout.

    taxable_cents is subtotal - discount. Non-positive taxable amounts are never
    taxed, even when shipping is. PERCENTAGE rules take basis points of the base
    (shipping included when the rule says so) rounded half-up; FIXED_AMOUNT
    rules charge their rate verbatim.
    """
    currency = tenant_currency(tenant_id)

    if taxable_cents <= 0:
        return TaxResult(0, currency, None)

    rules = (
        db.session.query(TaxRule)
        .filter(TaxRule.tenant_id == tenant_id)
        .order_by(TaxRule.id.asc())
        .all()
    )
    if not rules:
        return TaxResult(0, currency, None)

    rule = resolve_rule(rules, address)
    if rule is None:
        logger.debug("No tax rule matches the address for tenant %s", tenant_id)
        return TaxResult(0, currency, None)

    base = taxable_cents + (shipping_cents if rule.applies_to_shipping else 0)
    if rule.calculation_type == "PERCENTAGE":
        tax = percent_of(base, rule.rate)
    elif rule.calculation_type == "FIXED_AMOUNT":
        tax = rule.rate
    else:
        tax = 0

    return TaxResult(tax, currency, rule.id)
