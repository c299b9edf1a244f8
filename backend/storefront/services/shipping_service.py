# Overview: Shipping rate resolver; checkout method listing and per-method quotes in cents.

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import ShippingMethod
from ..errors import NotFound, OutOfRange, Unavailable
from ..validation import address_country_region
from .shipping_carriers import CarrierQuoteRequest, CarrierRegistry
from .tenant_service import tenant_currency

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShippingQuote:
    method_id: int
    method_name: str
    amount_cents: int
    currency: str | None
    estimated_transit_days_min: int | None = None
    estimated_transit_days_max: int | None = None

    def to_dict(self) -> dict:
        return {
            "method_id": self.method_id,
            "method_name": self.method_name,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "estimated_transit_days_min": self.estimated_transit_days_min,
            "estimated_transit_days_max": self.estimated_transit_days_max,
        }


def _carriers() -> CarrierRegistry:
    registry = current_app.extensions.get("shipping_carriers")
    if registry is None:
        registry = CarrierRegistry()
        current_app.extensions["shipping_carriers"] = registry
    return registry


def _zone_matches(method: ShippingMethod, address: dict | None) -> bool:
    if method.zone is None:
        return True
    country, region = address_country_region(address)
    return method.zone.covers(country, region)


def _enabled_methods(tenant_id: int) -> list[ShippingMethod]:
    return (
        db.session.query(ShippingMethod)
        .filter(ShippingMethod.tenant_id == tenant_id, ShippingMethod.is_enabled.is_(True))
        .order_by(ShippingMethod.name.asc(), ShippingMethod.id.asc())
        .all()
    )


def list_checkout_methods(tenant_id: int, address: dict | None = None) -> list[ShippingMethod]:
    """
    Enabled methods serving the address.

    Methods without a zone are offered everywhere. If the address matches no
    zone at all, every enabled method is offered rather than none.
    """
    methods = _enabled_methods(tenant_id)
    if address:
        matching = [m for m in methods if _zone_matches(m, address)]
        if matching:
            return matching
        logger.info("No shipping zone matches address for tenant %s; offering all enabled methods", tenant_id)
    return methods


def _rate_from_table(method: ShippingMethod, subtotal_cents: int, total_weight: int) -> int:
    value = total_weight if method.rate_condition_type == "WEIGHT" else subtotal_cents
    entries = sorted(method.rate_entries, key=lambda e: (e.min_value, e.id))
    for entry in entries:
        if value >= entry.min_value and (entry.max_value is None or value <= entry.max_value):
            return entry.rate_cents
    if entries:
        return entries[-1].rate_cents
    return method.flat_rate_cents or 0


def _rate_from_carrier(method: ShippingMethod, address: dict | None, subtotal_cents: int, total_weight: int, total_quantity: int) -> int:
    flat = method.flat_rate_cents or 0
    if not method.carrier_key:
        return flat

    adapter = _carriers().get(method.carrier_key)
    if adapter is None:
        logger.warning("No shipping carrier adapter registered for key %s", method.carrier_key)
        return flat

    request = CarrierQuoteRequest(
        carrier_key=method.carrier_key,
        service_level=method.carrier_service_level,
        address=address,
        subtotal_cents=subtotal_cents,
        total_weight=total_weight,
        total_quantity=total_quantity,
    )
    try:
        quote = adapter.quote(request)
    except Exception:
        logger.exception("Carrier %s failed to quote method %s; using flat rate", method.carrier_key, method.id)
        return flat

    if quote is None:
        logger.warning("Carrier %s returned no quote for method %s", method.carrier_key, method.id)
        return flat
    return int(quote.amount_cents)


def quote_shipping(tenant_id: int, method_id: int, address: dict | None, items) -> ShippingQuote:
    """
    Price one method for the given cart lines.

    items need unit_price_cents and quantity. Weight is approximated by the
    total quantity until products carry weights.
    """
    method = (
        db.session.query(ShippingMethod)
        .filter_by(id=method_id, tenant_id=tenant_id)
        .first()
    )
    if method is None:
        raise NotFound("Shipping method not found")
    if not method.is_enabled:
        raise Unavailable("Shipping method is not available")
    if not _zone_matches(method, address):
        raise Unavailable("Shipping method is not available for the selected address")

    subtotal = sum(item.unit_price_cents * item.quantity for item in items)
    total_quantity = sum(item.quantity for item in items)
    total_weight = total_quantity

    if method.minimum_order_cents is not None and subtotal < method.minimum_order_cents:
        raise OutOfRange("Order total does not meet the minimum required for this shipping method")
    if method.maximum_order_cents is not None and subtotal > method.maximum_order_cents:
        raise OutOfRange("Order total exceeds the maximum allowed for this shipping method")

    if method.method_type == "FLAT_RATE":
        amount = method.flat_rate_cents or 0
    elif method.method_type in ("WEIGHT_BASED", "RATE_TABLE"):
        amount = _rate_from_table(method, subtotal, total_weight)
    elif method.method_type == "EXTERNAL":
        amount = _rate_from_carrier(method, address, subtotal, total_weight, total_quantity)
    else:
        amount = method.flat_rate_cents or 0

    return ShippingQuote(
        method_id=method.id,
        method_name=method.name,
        amount_cents=amount,
        currency=tenant_currency(tenant_id),
        estimated_transit_days_min=method.estimated_transit_days_min,
        estimated_transit_days_max=method.estimated_transit_days_max,
    )
