"""
Pytest fixtures for storefront backend tests.

Provides test database setup, tenant/catalog fixtures, a recording payment
gateway, and test client.
"""

import itertools

import pytest
from storefront import create_app
from storefront.extensions import db
from storefront.errors import GatewayError
from storefront.models import (
    Coupon,
    Inventory,
    Product,
    ProductVariant,
    PromotionCampaign,
    ShippingMethod,
    TaxRule,
    Tenant,
)
from storefront.services import cart_service, checkout_service, webhook_service
from storefront.services.payment_gateway import PaymentIntent, PaymentStatus


WEBHOOK_SECRET = "whsec_test_secret"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'NOTIFICATION_WORKER_ENABLED': False,
    'DEFAULT_SHIPPING_CENTS': 999,
    'PAYMENT_PROVIDERS': {
        'sandbox': {'provider_currency': 'USD', 'webhook_secret': WEBHOOK_SECRET},
        'manual': {'provider_currency': 'USD'},
        'fakepay': {'provider_currency': 'USD'},
    },
}


class RecordingGateway:
    """
    Test double for a card processor.

    Records every pay/refund call. refund_result may be a status string or an
    exception instance to raise; pay_error makes pay() fail.
    """

    provider = "fakepay"

    def __init__(self):
        self._counter = itertools.count(1)
        self.payments = []
        self.refunds = []
        self.refund_result = PaymentStatus.REFUNDED
        self.pay_error = None

    def pay(self, order, context):
        if self.pay_error is not None:
            raise self.pay_error
        reference = f"fake_{next(self._counter)}"
        self.payments.append((order.order_number, reference))
        return PaymentIntent(
            provider=self.provider,
            client_secret="secret",
            metadata={"provider_reference": reference},
        )

    def refund(self, request, context):
        self.refunds.append(request)
        if isinstance(self.refund_result, Exception):
            raise self.refund_result
        return self.refund_result

    def verify(self, request, context):
        raise GatewayError("fakepay does not send webhooks")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifications(app, db_session):
    """The app's notification queue, emptied before the test."""
    queue = app.extensions["notification_queue"]
    queue.drain()
    yield queue
    queue.drain()


@pytest.fixture(scope='function')
def gateway(app):
    """A fresh RecordingGateway registered as provider 'fakepay'."""
    gw = RecordingGateway()
    app.extensions["payment_gateways"].register(gw)
    return gw


# =============================================================================
# TENANTS
# =============================================================================

@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Tenant A (first storefront)."""
    tenant = Tenant(name="Store A - Acme", code="acme", default_currency="USD", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Tenant B (second storefront)."""
    tenant = Tenant(name="Store B - Beta", code="beta", default_currency="USD", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


# =============================================================================
# CATALOG HELPERS
# =============================================================================

def make_product(tenant_id, sku, price_cents, *, name=None, on_hand=None, reserved=0, published=True, categories=()):
    product = Product(
        tenant_id=tenant_id,
        sku=sku,
        name=name or f"Product {sku}",
        price_cents=price_cents,
        is_published=published,
    )
    product.categories.extend(categories)
    db.session.add(product)
    db.session.flush()
    if on_hand is not None:
        db.session.add(Inventory(
            tenant_id=tenant_id,
            product_id=product.id,
            quantity_on_hand=on_hand,
            reserved_quantity=reserved,
        ))
    db.session.commit()
    return product


def make_variant(product, sku, *, price_cents=None, on_hand=None, reserved=0):
    variant = ProductVariant(
        tenant_id=product.tenant_id,
        product_id=product.id,
        sku=sku,
        name=f"{product.name} / {sku}",
        price_cents=price_cents,
    )
    db.session.add(variant)
    db.session.flush()
    if on_hand is not None:
        db.session.add(Inventory(
            tenant_id=product.tenant_id,
            product_id=product.id,
            product_variant_id=variant.id,
            quantity_on_hand=on_hand,
            reserved_quantity=reserved,
        ))
    db.session.commit()
    return variant


def make_coupon(tenant_id, code, discount_type, value, **kwargs):
    coupon = Coupon(tenant_id=tenant_id, code=code, discount_type=discount_type, value=value, **kwargs)
    db.session.add(coupon)
    db.session.commit()
    return coupon


def make_campaign(tenant_id, name, discount_type, value, **kwargs):
    campaign = PromotionCampaign(tenant_id=tenant_id, name=name, discount_type=discount_type, value=value, **kwargs)
    db.session.add(campaign)
    db.session.commit()
    return campaign


def inventory_row(product_id, variant_id=None):
    db.session.expire_all()
    return (
        db.session.query(Inventory)
        .filter_by(product_id=product_id, product_variant_id=variant_id)
        .one()
    )


def fill_cart(tenant_id, lines, *, guest_token="guest-1"):
    """Add (product, quantity[, variant]) lines to a guest cart and return it."""
    cart = None
    for line in lines:
        product, quantity = line[0], line[1]
        variant = line[2] if len(line) > 2 else None
        cart = cart_service.add_item(
            tenant_id,
            product.id,
            quantity,
            variant_id=variant.id if variant is not None else None,
            guest_token=guest_token,
        )
    return cart


US_ADDRESS = {"full_name": "Pat Doe", "line1": "1 Main St", "city": "Austin", "region": "TX", "country": "US"}


@pytest.fixture(scope='function')
def scenario_a_store(tenant_a):
    """
    One $100.00 product with stock, coupon SAVE10 (10% cart-wide), an 8% US
    tax rule that excludes shipping and a $9.99 flat-rate method.
    """
    product = make_product(tenant_a.id, "WIDGET", 10000, on_hand=10)
    coupon = make_coupon(tenant_a.id, "SAVE10", "PERCENTAGE", 1000)
    tax_rule = TaxRule(
        tenant_id=tenant_a.id,
        name="US sales tax",
        country_code="US",
        calculation_type="PERCENTAGE",
        rate=800,
        applies_to_shipping=False,
    )
    method = ShippingMethod(tenant_id=tenant_a.id, name="Standard", method_type="FLAT_RATE", flat_rate_cents=999)
    db.session.add_all([tax_rule, method])
    db.session.commit()
    return {"tenant": tenant_a, "product": product, "coupon": coupon, "tax_rule": tax_rule, "method": method}


# =============================================================================
# ORDER HELPERS
# =============================================================================

def place_order(store, quantity=1, *, provider="fakepay", guest_token="guest-1", **kwargs):
    """Check out `quantity` widgets from scenario_a_store with SAVE10 and Standard shipping."""
    tenant_id = store["tenant"].id
    fill_cart(tenant_id, [(store["product"], quantity)], guest_token=guest_token)
    params = {
        "email": "buyer@example.com",
        "payment_provider": provider,
        "currency": "USD",
        "guest_token": guest_token,
        "shipping_address": US_ADDRESS,
        "coupon_code": "SAVE10",
        "shipping_method_id": store["method"].id,
    }
    params.update(kwargs)
    order, _ = checkout_service.checkout(tenant_id, **params)
    return order


def capture_payment(order):
    """Mark the order's payment CAPTURED the way a provider webhook would."""
    payment = order.payments[0]
    return webhook_service.handle_payment_webhook(
        order.tenant_id, payment.provider, payment.provider_reference, PaymentStatus.CAPTURED,
    )
