"""
Tax resolver tests.

Rule resolution order: exact country+region, then country-wide, then default.
"""

from storefront.models import TaxRule
from storefront.services import tax_service


def _rule(db_session, tenant_id, **kwargs):
    params = {"tenant_id": tenant_id, "calculation_type": "PERCENTAGE", "rate": 500}
    params.update(kwargs)
    rule = TaxRule(**params)
    db_session.add(rule)
    db_session.commit()
    return rule


class TestRuleResolution:

    def test_region_rule_beats_country_rule(self, tenant_a, db_session):
        country = _rule(db_session, tenant_a.id, name="US", country_code="US", rate=500)
        texas = _rule(db_session, tenant_a.id, name="TX", country_code="US", region_code="TX", rate=825)

        result = tax_service.calculate_tax(tenant_a.id, 10000, 0, {"country": "US", "region": "TX"})
        assert result.rule_id == texas.id
        assert result.tax_cents == 825

        result = tax_service.calculate_tax(tenant_a.id, 10000, 0, {"country": "US", "region": "OR"})
        assert result.rule_id == country.id
        assert result.tax_cents == 500

    def test_default_rule_for_unmatched_country(self, tenant_a, db_session):
        default = _rule(db_session, tenant_a.id, name="Default", is_default=True, rate=1000)
        _rule(db_session, tenant_a.id, name="CA", country_code="CA", rate=1300)

        result = tax_service.calculate_tax(tenant_a.id, 10000, 0, {"country": "DE"})
        assert result.rule_id == default.id
        assert result.tax_cents == 1000

    def test_no_rule_means_no_tax(self, tenant_a, db_session):
        _rule(db_session, tenant_a.id, name="CA", country_code="CA")
        result = tax_service.calculate_tax(tenant_a.id, 10000, 999, {"country": "US"})
        assert result.tax_cents == 0
        assert result.rule_id is None

    def test_rules_are_tenant_scoped(self, tenant_a, tenant_b, db_session):
        _rule(db_session, tenant_b.id, name="B default", is_default=True)
        result = tax_service.calculate_tax(tenant_a.id, 10000, 0, {"country": "US"})
        assert result.tax_cents == 0


class TestTaxAmounts:

    def test_shipping_included_only_when_flagged(self, tenant_a, db_session):
        rule = _rule(db_session, tenant_a.id, country_code="US", rate=800)
        assert tax_service.calculate_tax(tenant_a.id, 9000, 999, {"country": "US"}).tax_cents == 720

        rule.applies_to_shipping = True
        db_session.commit()
        # 8% of 9999 = 799.92 -> 800
        assert tax_service.calculate_tax(tenant_a.id, 9000, 999, {"country": "US"}).tax_cents == 800

    def test_fixed_amount_rule(self, tenant_a, db_session):
        _rule(db_session, tenant_a.id, country_code="US", calculation_type="FIXED_AMOUNT", rate=250)
        assert tax_service.calculate_tax(tenant_a.id, 9000, 0, {"country": "US"}).tax_cents == 250

    def test_non_positive_base_is_untaxed(self, tenant_a, db_session):
        """A fully discounted cart pays no tax even on taxable shipping."""
        _rule(db_session, tenant_a.id, country_code="US", rate=800, applies_to_shipping=True)
        assert tax_service.calculate_tax(tenant_a.id, 0, 999, {"country": "US"}).tax_cents == 0

    def test_currency_follows_tenant(self, tenant_a, db_session):
        tenant_a.default_currency = "EUR"
        db_session.commit()
        assert tax_service.calculate_tax(tenant_a.id, 1000, 0, None).currency == "EUR"
