"""
Shipping rate resolver tests.

Flat, rate-table (subtotal or weight), and carrier-quoted methods; zone
matching and order-total limits.
"""

from types import SimpleNamespace

import pytest

from storefront.errors import NotFound, OutOfRange, Unavailable
from storefront.models import ShippingMethod, ShippingRateTableEntry, ShippingZone, ShippingZoneRegion
from storefront.services import shipping_service
from storefront.services.shipping_carriers import CarrierQuote


def _items(*pairs):
    return [SimpleNamespace(unit_price_cents=price, quantity=qty) for price, qty in pairs]


def _method(db_session, tenant_id, **kwargs):
    tiers = kwargs.pop("tiers", ())
    params = {"tenant_id": tenant_id, "name": "Method", "method_type": "FLAT_RATE", "flat_rate_cents": 500}
    params.update(kwargs)
    method = ShippingMethod(**params)
    for min_value, max_value, rate in tiers:
        method.rate_entries.append(ShippingRateTableEntry(
            tenant_id=tenant_id, min_value=min_value, max_value=max_value, rate_cents=rate,
        ))
    db_session.add(method)
    db_session.commit()
    return method


def _zone(db_session, tenant_id, regions=(), is_default=False):
    zone = ShippingZone(tenant_id=tenant_id, name="Zone", is_default=is_default)
    for country, region in regions:
        zone.regions.append(ShippingZoneRegion(tenant_id=tenant_id, country_code=country, region_code=region))
    db_session.add(zone)
    db_session.commit()
    return zone


class FixedCarrier:
    carrier_key = "fixedship"

    def __init__(self, amount=None, error=None):
        self.amount = amount
        self.error = error
        self.requests = []

    def quote(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.amount is None:
            return None
        return CarrierQuote(amount_cents=self.amount)


class TestQuotes:

    def test_flat_rate(self, tenant_a, db_session):
        method = _method(db_session, tenant_a.id, flat_rate_cents=999)
        quote = shipping_service.quote_shipping(tenant_a.id, method.id, None, _items((1000, 1)))
        assert quote.amount_cents == 999
        assert quote.currency == "USD"

    def test_subtotal_rate_table(self, tenant_a, db_session):
        method = _method(
            db_session, tenant_a.id,
            method_type="RATE_TABLE", rate_condition_type="ORDER_TOTAL",
            tiers=[(0, 4999, 799), (5000, None, 0)],
        )
        assert shipping_service.quote_shipping(tenant_a.id, method.id, None, _items((2000, 1))).amount_cents == 799
        assert shipping_service.quote_shipping(tenant_a.id, method.id, None, _items((3000, 2))).amount_cents == 0

    def test_weight_tiers_use_quantity(self, tenant_a, db_session):
        """Weight is approximated by the total item quantity."""
        method = _method(
            db_session, tenant_a.id,
            method_type="WEIGHT_BASED", rate_condition_type="WEIGHT",
            tiers=[(0, 2, 500), (3, 5, 900)],
        )
        quote = shipping_service.quote_shipping(tenant_a.id, method.id, None, _items((100, 2), (100, 2)))
        assert quote.amount_cents == 900

    def test_value_beyond_tiers_uses_last_tier(self, tenant_a, db_session):
        method = _method(
            db_session, tenant_a.id,
            method_type="WEIGHT_BASED", rate_condition_type="WEIGHT",
            tiers=[(0, 2, 500), (3, 5, 900)],
        )
        quote = shipping_service.quote_shipping(tenant_a.id, method.id, None, _items((100, 12)))
        assert quote.amount_cents == 900

    def test_order_limits(self, tenant_a, db_session):
        method = _method(db_session, tenant_a.id, minimum_order_cents=2000, maximum_order_cents=10000)
        with pytest.raises(OutOfRange):
            shipping_service.quote_shipping(tenant_a.id, method.id, None, _items((1000, 1)))
        with pytest.raises(OutOfRange):
            shipping_service.quote_shipping(tenant_a.id, method.id, None, _items((20000, 1)))

    def test_disabled_and_unknown_methods(self, tenant_a, tenant_b, db_session):
        disabled = _method(db_session, tenant_a.id, is_enabled=False)
        with pytest.raises(Unavailable):
            shipping_service.quote_shipping(tenant_a.id, disabled.id, None, _items((1000, 1)))

        foreign = _method(db_session, tenant_b.id)
        with pytest.raises(NotFound):
            shipping_service.quote_shipping(tenant_a.id, foreign.id, None, _items((1000, 1)))


class TestCarrierQuotes:

    def test_carrier_amount_used(self, app, tenant_a, db_session):
        carrier = FixedCarrier(amount=1234)
        app.extensions["shipping_carriers"].register(carrier)
        method = _method(db_session, tenant_a.id, method_type="EXTERNAL", carrier_key="FixedShip", flat_rate_cents=700)

        quote = shipping_service.quote_shipping(tenant_a.id, method.id, {"country": "US"}, _items((1000, 3)))
        assert quote.amount_cents == 1234
        assert carrier.requests[0].total_quantity == 3
        assert carrier.requests[0].subtotal_cents == 3000

    @pytest.mark.parametrize("carrier", [
        FixedCarrier(amount=None),
        FixedCarrier(error=RuntimeError("carrier API down")),
    ])
    def test_carrier_failure_falls_back_to_flat_rate(self, app, tenant_a, db_session, carrier):
        app.extensions["shipping_carriers"].register(carrier)
        method = _method(db_session, tenant_a.id, method_type="EXTERNAL", carrier_key="fixedship", flat_rate_cents=700)

        quote = shipping_service.quote_shipping(tenant_a.id, method.id, None, _items((1000, 1)))
        assert quote.amount_cents == 700

    def test_unregistered_carrier_falls_back(self, tenant_a, db_session):
        method = _method(db_session, tenant_a.id, method_type="EXTERNAL", carrier_key="nosuch", flat_rate_cents=650)
        quote = shipping_service.quote_shipping(tenant_a.id, method.id, None, _items((1000, 1)))
        assert quote.amount_cents == 650


class TestZones:

    def test_method_outside_zone_is_unavailable(self, tenant_a, db_session):
        zone = _zone(db_session, tenant_a.id, regions=[("US", "CA")])
        method = _method(db_session, tenant_a.id, zone_id=zone.id)

        shipping_service.quote_shipping(tenant_a.id, method.id, {"country": "US", "region": "CA"}, _items((1000, 1)))
        with pytest.raises(Unavailable):
            shipping_service.quote_shipping(tenant_a.id, method.id, {"country": "US", "region": "NY"}, _items((1000, 1)))

    def test_country_wide_region(self, tenant_a, db_session):
        """A region row without region_code covers the whole country."""
        zone = _zone(db_session, tenant_a.id, regions=[("CA", None)])
        method = _method(db_session, tenant_a.id, zone_id=zone.id)
        quote = shipping_service.quote_shipping(tenant_a.id, method.id, {"country": "CA", "region": "QC"}, _items((1000, 1)))
        assert quote.amount_cents == 500

    def test_listing_filters_by_zone(self, tenant_a, db_session):
        zone = _zone(db_session, tenant_a.id, regions=[("US", None)])
        domestic = _method(db_session, tenant_a.id, name="Domestic", zone_id=zone.id)
        _method(db_session, tenant_a.id, name="Disabled", is_enabled=False)
        intl_zone = _zone(db_session, tenant_a.id, regions=[("DE", None)])
        _method(db_session, tenant_a.id, name="Germany", zone_id=intl_zone.id)

        methods = shipping_service.list_checkout_methods(tenant_a.id, {"country": "US"})
        assert [m.id for m in methods] == [domestic.id]

    def test_listing_fails_open_when_nothing_matches(self, tenant_a, db_session):
        """An address no zone covers still gets every enabled method."""
        zone = _zone(db_session, tenant_a.id, regions=[("US", None)])
        _method(db_session, tenant_a.id, name="Domestic", zone_id=zone.id)
        _method(db_session, tenant_a.id, name="Off", is_enabled=False)

        methods = shipping_service.list_checkout_methods(tenant_a.id, {"country": "JP"})
        assert [m.name for m in methods] == ["Domestic"]
