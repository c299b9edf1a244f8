"""
Cart store tests.

Covers owner identity rules, add-item validation order, stock checks with the
variant-less fallback row, and merge semantics.
"""

from datetime import datetime

import pytest

from storefront.errors import InsufficientStock, InvalidRequest, NotFound, Unavailable
from storefront.models import Cart
from storefront.services import cart_service

from conftest import make_product, make_variant


class TestCartOwnership:
    """A cart is owned by exactly one of user_id / guest_token."""

    def test_requires_an_identity(self, tenant_a):
        """Neither user_id nor guest_token is rejected."""
        with pytest.raises(InvalidRequest):
            cart_service.get_or_create_cart(tenant_a.id)

    def test_rejects_both_identities(self, tenant_a):
        """Both user_id and guest_token is rejected."""
        with pytest.raises(InvalidRequest):
            cart_service.get_or_create_cart(tenant_a.id, user_id=1, guest_token="abc")

    def test_get_or_create_is_stable(self, tenant_a):
        """The same owner gets the same active cart back."""
        first = cart_service.get_or_create_cart(tenant_a.id, guest_token="abc")
        second = cart_service.get_or_create_cart(tenant_a.id, guest_token="abc")
        assert first.id == second.id
        assert first.expires_at is not None

    def test_user_cart_has_no_expiry(self, tenant_a):
        """Registered users' carts do not expire."""
        cart = cart_service.get_or_create_cart(tenant_a.id, user_id=42)
        assert cart.user_id == 42
        assert cart.expires_at is None

    def test_carts_are_tenant_scoped(self, tenant_a, tenant_b):
        """The same guest token in two tenants yields two carts."""
        cart_a = cart_service.get_or_create_cart(tenant_a.id, guest_token="shared")
        cart_b = cart_service.get_or_create_cart(tenant_b.id, guest_token="shared")
        assert cart_a.id != cart_b.id

        with pytest.raises(NotFound):
            cart_service.get_cart(tenant_b.id, cart_a.id)


class TestAddItem:
    """Validation and merge behaviour of add_item."""

    def test_rejects_non_positive_quantity(self, tenant_a):
        """Quantity is checked before the product is even looked up."""
        with pytest.raises(InvalidRequest):
            cart_service.add_item(tenant_a.id, 999, 0, guest_token="g")

    def test_unknown_product(self, tenant_a):
        with pytest.raises(NotFound):
            cart_service.add_item(tenant_a.id, 999, 1, guest_token="g")

    def test_unpublished_product(self, tenant_a):
        """Unpublished products are Unavailable, not NotFound."""
        product = make_product(tenant_a.id, "HIDDEN", 500, published=False)
        with pytest.raises(Unavailable):
            cart_service.add_item(tenant_a.id, product.id, 1, guest_token="g")

    def test_variant_must_belong_to_product(self, tenant_a):
        """A variant of another product is NotFound."""
        shirt = make_product(tenant_a.id, "SHIRT", 2000)
        mug = make_product(tenant_a.id, "MUG", 800)
        mug_variant = make_variant(mug, "MUG-RED")
        with pytest.raises(NotFound):
            cart_service.add_item(tenant_a.id, shirt.id, 1, variant_id=mug_variant.id, guest_token="g")

    def test_product_from_other_tenant_is_not_found(self, tenant_a, tenant_b):
        """Products are looked up within the cart's tenant only."""
        product = make_product(tenant_b.id, "B-ONLY", 1000)
        with pytest.raises(NotFound):
            cart_service.add_item(tenant_a.id, product.id, 1, guest_token="g")

    def test_insufficient_stock(self, tenant_a):
        """Available-to-sell below the requested quantity is rejected."""
        product = make_product(tenant_a.id, "LOW", 1000, on_hand=3, reserved=2)
        with pytest.raises(InsufficientStock) as exc:
            cart_service.add_item(tenant_a.id, product.id, 2, guest_token="g")
        assert exc.value.details["available"] == 1

    def test_untracked_product_is_unlimited(self, tenant_a):
        """No inventory row at all means the product is always available."""
        product = make_product(tenant_a.id, "DIGITAL", 1500)
        cart = cart_service.add_item(tenant_a.id, product.id, 500, guest_token="g")
        assert cart.items[0].quantity == 500

    def test_variant_falls_back_to_product_row(self, tenant_a):
        """A variant without its own stock row uses the product's row."""
        product = make_product(tenant_a.id, "TEE", 2000, on_hand=1)
        variant = make_variant(product, "TEE-L")
        with pytest.raises(InsufficientStock):
            cart_service.add_item(tenant_a.id, product.id, 2, variant_id=variant.id, guest_token="g")

    def test_variant_price_snapshot(self, tenant_a):
        """Variant price and sku override the product's."""
        product = make_product(tenant_a.id, "HOODIE", 4000)
        variant = make_variant(product, "HOODIE-XL", price_cents=4500, on_hand=5)
        cart = cart_service.add_item(tenant_a.id, product.id, 2, variant_id=variant.id, guest_token="g")

        item = cart.items[0]
        assert item.unit_price_cents == 4500
        assert item.sku == "HOODIE-XL"
        assert item.line_total_cents == 9000
        assert cart.subtotal_cents == 9000

    def test_readding_merges_and_refreshes_snapshot(self, tenant_a, db_session):
        """Re-adding increments quantity and takes the current catalog price."""
        product = make_product(tenant_a.id, "BOOK", 1200)
        cart_service.add_item(tenant_a.id, product.id, 1, guest_token="g")

        product.price_cents = 1000
        db_session.commit()

        cart = cart_service.add_item(tenant_a.id, product.id, 2, guest_token="g")
        assert len(cart.items) == 1
        assert cart.items[0].quantity == 3
        assert cart.items[0].unit_price_cents == 1000

    def test_add_to_inactive_cart_by_id(self, tenant_a, db_session):
        """A deactivated cart cannot be added to by id."""
        product = make_product(tenant_a.id, "PEN", 200)
        cart = cart_service.add_item(tenant_a.id, product.id, 1, guest_token="g")
        cart.is_active = False
        db_session.commit()

        with pytest.raises(InvalidRequest):
            cart_service.add_item(tenant_a.id, product.id, 1, cart_id=cart.id)

    def test_expired_guest_cart_is_replaced(self, tenant_a, db_session):
        """An expired guest cart is ignored and a new one is created."""
        product = make_product(tenant_a.id, "CUP", 300)
        cart = cart_service.add_item(tenant_a.id, product.id, 1, guest_token="g")
        cart.expires_at = datetime(2000, 1, 1)
        db_session.commit()

        fresh = cart_service.get_or_create_cart(tenant_a.id, guest_token="g")
        assert fresh.id != cart.id
        assert db_session.query(Cart).count() == 2
