"""
HTTP API tests.

Tenant resolution from X-Tenant-ID, cross-tenant isolation, and the happy
path through cart, checkout, order and refund endpoints.
"""

import pytest

from storefront.models import Order

from conftest import US_ADDRESS, capture_payment, make_product, place_order


def _headers(tenant):
    return {"X-Tenant-ID": str(tenant.code)}


class TestTenantHeader:

    def test_missing_header(self, client, db_session):
        response = client.get("/api/orders")
        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_REQUEST"

    def test_unknown_tenant(self, client, db_session):
        response = client.get("/api/orders", headers={"X-Tenant-ID": "nobody"})
        assert response.status_code == 404

    def test_inactive_tenant(self, client, tenant_a, db_session):
        tenant_a.is_active = False
        db_session.commit()
        response = client.get("/api/orders", headers=_headers(tenant_a))
        assert response.status_code == 404

    def test_numeric_tenant_id(self, client, tenant_a):
        response = client.get("/api/orders", headers={"X-Tenant-ID": str(tenant_a.id)})
        assert response.status_code == 200
        assert response.get_json()["total"] == 0


class TestTenantIsolation:
    """Resources of tenant A answer 404 to tenant B."""

    def test_orders_not_visible_across_tenants(self, client, scenario_a_store, tenant_b, gateway):
        order = place_order(scenario_a_store)

        assert client.get(f"/api/orders/{order.id}", headers=_headers(scenario_a_store["tenant"])).status_code == 200
        assert client.get(f"/api/orders/{order.id}", headers=_headers(tenant_b)).status_code == 404

        listing = client.get("/api/orders", headers=_headers(tenant_b)).get_json()
        assert listing["total"] == 0

        response = client.put(f"/api/orders/{order.id}/status", json={"status": "CANCELLED"}, headers=_headers(tenant_b))
        assert response.status_code == 404

    def test_cart_not_visible_across_tenants(self, client, tenant_a, tenant_b):
        cart = client.post("/api/cart", json={"guest_token": "shared"}, headers=_headers(tenant_a)).get_json()["cart"]
        assert client.get(f"/api/cart/{cart['id']}", headers=_headers(tenant_b)).status_code == 404

    def test_products_not_addable_across_tenants(self, client, tenant_a, tenant_b):
        product = make_product(tenant_b.id, "B-ONLY", 1000)
        response = client.post(
            "/api/cart/items",
            json={"product_id": product.id, "quantity": 1, "guest_token": "g"},
            headers=_headers(tenant_a),
        )
        assert response.status_code == 404


class TestCartEndpoints:

    def test_new_guest_cart_gets_a_token(self, client, tenant_a):
        response = client.post("/api/cart", json={}, headers=_headers(tenant_a))
        assert response.status_code == 200
        body = response.get_json()
        assert body["guest_token"]
        assert body["cart"]["guest_token"] == body["guest_token"]

        again = client.get(f"/api/cart?guest_token={body['guest_token']}", headers=_headers(tenant_a)).get_json()
        assert again["cart"]["id"] == body["cart"]["id"]

    def test_conflicting_identity(self, client, tenant_a):
        response = client.get("/api/cart?guest_token=abc&user_id=4", headers=_headers(tenant_a))
        assert response.status_code == 400

    def test_add_item(self, client, tenant_a):
        product = make_product(tenant_a.id, "MUG", 1250, on_hand=5)
        response = client.post(
            "/api/cart/items",
            json={"product_id": product.id, "quantity": 2, "guest_token": "g"},
            headers=_headers(tenant_a),
        )
        assert response.status_code == 201
        cart = response.get_json()["cart"]
        assert cart["subtotal_cents"] == 2500
        assert cart["items"][0]["sku"] == "MUG"

    def test_add_item_errors(self, client, tenant_a):
        product = make_product(tenant_a.id, "RARE", 1250, on_hand=1)
        url = "/api/cart/items"

        response = client.post(url, json={"product_id": product.id, "quantity": 2, "guest_token": "g"}, headers=_headers(tenant_a))
        assert response.status_code == 409
        assert response.get_json()["code"] == "INSUFFICIENT_STOCK"

        response = client.post(url, json={"product_id": product.id, "quantity": "1.5", "guest_token": "g"}, headers=_headers(tenant_a))
        assert response.status_code == 400

        response = client.post(url, json={"product_id": 99999, "quantity": 1, "guest_token": "g"}, headers=_headers(tenant_a))
        assert response.status_code == 404


class TestCheckoutEndpoints:

    def _checkout_body(self, store, **overrides):
        body = {
            "email": "buyer@example.com",
            "payment_provider": "fakepay",
            "currency": "USD",
            "guest_token": "web-guest",
            "coupon_code": "SAVE10",
            "shipping_method_id": store["method"].id,
            "shipping_address": US_ADDRESS,
        }
        body.update(overrides)
        return body

    def _fill(self, client, store, quantity=1):
        client.post(
            "/api/cart/items",
            json={"product_id": store["product"].id, "quantity": quantity, "guest_token": "web-guest"},
            headers=_headers(store["tenant"]),
        )

    def test_checkout(self, client, scenario_a_store, gateway):
        store = scenario_a_store
        self._fill(client, store)

        response = client.post("/api/checkout", json=self._checkout_body(store), headers=_headers(store["tenant"]))

        assert response.status_code == 201
        body = response.get_json()
        assert body["order"]["grand_total_cents"] == 10719
        assert body["order"]["status"] == "PENDING"
        assert body["payment"]["provider"] == "fakepay"
        assert body["payment"]["metadata"]["provider_reference"] == "fake_1"

    def test_empty_cart(self, client, scenario_a_store, gateway):
        client.post("/api/cart", json={"guest_token": "web-guest"}, headers=_headers(scenario_a_store["tenant"]))
        response = client.post(
            "/api/checkout", json=self._checkout_body(scenario_a_store), headers=_headers(scenario_a_store["tenant"]),
        )
        assert response.status_code == 400
        assert response.get_json()["code"] == "EMPTY_CART"

    def test_gateway_failure_is_502_with_order(self, client, scenario_a_store, gateway, db_session):
        self._fill(client, scenario_a_store)
        gateway.pay_error = RuntimeError("down")

        response = client.post(
            "/api/checkout", json=self._checkout_body(scenario_a_store), headers=_headers(scenario_a_store["tenant"]),
        )
        assert response.status_code == 502
        details = response.get_json()["details"]
        db_session.expire_all()
        assert db_session.get(Order, details["order_id"]).status == "PENDING"

    def test_shipping_methods_and_quote(self, client, scenario_a_store):
        store = scenario_a_store
        self._fill(client, store, quantity=2)
        headers = _headers(store["tenant"])

        methods = client.get("/api/checkout/shipping-methods?country=US", headers=headers).get_json()
        assert [m["name"] for m in methods["shipping_methods"]] == ["Standard"]

        response = client.post(
            "/api/checkout/shipping-quote",
            json={"shipping_method_id": store["method"].id, "address": US_ADDRESS, "guest_token": "web-guest"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.get_json()["quote"]["amount_cents"] == 999

        response = client.post(
            "/api/checkout/shipping-quote",
            json={"shipping_method_id": store["method"].id, "guest_token": "nobody"},
            headers=headers,
        )
        assert response.status_code == 404

    def test_configuration(self, client, scenario_a_store):
        response = client.get("/api/checkout/configuration?country=US", headers=_headers(scenario_a_store["tenant"]))
        assert response.status_code == 200
        assert response.get_json()["default_shipping_cents"] == 999


class TestOrderAndRefundEndpoints:

    def test_status_change_and_illegal_transition(self, client, scenario_a_store, gateway):
        order = place_order(scenario_a_store)
        headers = _headers(scenario_a_store["tenant"])

        response = client.put(f"/api/orders/{order.id}/status", json={"status": "DELIVERED"}, headers=headers)
        assert response.status_code == 409
        assert response.get_json()["code"] == "INVALID_STATE_TRANSITION"

        response = client.put(f"/api/orders/{order.id}/status", json={}, headers=headers)
        assert response.status_code == 400

        response = client.put(f"/api/orders/{order.id}/status", json={"status": "PROCESSING"}, headers=headers)
        assert response.status_code == 200
        assert response.get_json()["order"]["status"] == "PROCESSING"

    def test_payment_status(self, client, scenario_a_store, gateway):
        order = place_order(scenario_a_store)
        capture_payment(order)
        response = client.get(f"/api/orders/{order.id}/payment-status", headers=_headers(scenario_a_store["tenant"]))
        assert response.get_json()["payment_status"] == "captured"

    def test_list_orders_bad_date(self, client, scenario_a_store):
        response = client.get("/api/orders?from=yesterday", headers=_headers(scenario_a_store["tenant"]))
        assert response.status_code == 400

    def test_immediate_refund(self, client, scenario_a_store, gateway):
        order = place_order(scenario_a_store)
        capture_payment(order)
        headers = _headers(scenario_a_store["tenant"])

        response = client.post(f"/api/orders/{order.id}/refund", json={"amount_cents": 3000}, headers=headers)
        assert response.status_code == 201
        body = response.get_json()
        assert body["refund"]["status"] == "REFUNDED"
        assert body["order"]["status"] == "REFUNDED"
        refund_txns = [p for p in body["order"]["payments"] if p["transaction_type"] == "REFUND"]
        assert [p["amount_cents"] for p in refund_txns] == [-3000]

        response = client.post(f"/api/orders/{order.id}/refund", json={"amount_cents": 99999}, headers=headers)
        assert response.status_code == 400
        assert response.get_json()["code"] == "OUT_OF_RANGE"

    def test_refund_request_lifecycle(self, client, scenario_a_store, gateway):
        order = place_order(scenario_a_store, quantity=2)
        capture_payment(order)
        headers = _headers(scenario_a_store["tenant"])
        item_id = order.items[0].id

        response = client.post(
            "/api/refunds",
            json={"order_id": order.id, "items": [{"order_item_id": item_id, "quantity": 1}], "reason": "Too big"},
            headers=headers,
        )
        assert response.status_code == 201
        refund_id = response.get_json()["refund"]["id"]

        listing = client.get(f"/api/refunds?order_id={order.id}", headers=headers).get_json()
        assert [r["id"] for r in listing["items"]] == [refund_id]
        assert listing["items"][0]["order_number"] == order.order_number

        response = client.post(f"/api/refunds/{refund_id}/approve", json={"notes": "ok"}, headers=headers)
        assert response.status_code == 200
        assert response.get_json()["refund"]["status"] == "REFUNDED"

        response = client.post(f"/api/refunds/{refund_id}/deny", json={}, headers=headers)
        assert response.status_code == 409
        assert response.get_json()["code"] == "ALREADY_PROCESSED"

        assert client.get(f"/api/refunds/{refund_id}", headers=headers).status_code == 200

    def test_refund_request_over_quantity(self, client, scenario_a_store, gateway):
        order = place_order(scenario_a_store)
        response = client.post(
            "/api/refunds",
            json={"order_id": order.id, "items": [{"order_item_id": order.items[0].id, "quantity": 5}]},
            headers=_headers(scenario_a_store["tenant"]),
        )
        assert response.status_code == 400
        assert response.get_json()["details"]["refundable"] == 1


class TestRequestBodies:

    @pytest.mark.parametrize("method, url", [
        ("post", "/api/cart"),
        ("post", "/api/cart/items"),
        ("post", "/api/checkout"),
        ("post", "/api/checkout/shipping-quote"),
        ("post", "/api/refunds"),
    ])
    def test_array_body_is_rejected(self, client, tenant_a, method, url):
        response = getattr(client, method)(url, json=[1, 2], headers=_headers(tenant_a))
        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_REQUEST"

    def test_array_body_on_order_status(self, client, scenario_a_store, gateway):
        order = place_order(scenario_a_store)
        response = client.put(
            f"/api/orders/{order.id}/status", json=["SHIPPED"], headers=_headers(scenario_a_store["tenant"]),
        )
        assert response.status_code == 400


class TestSystemEndpoints:

    def test_health(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert "sandbox" in body["checks"]["services"]["details"]["payment_providers"]
        assert body["checks"]["database"]["status"] == "healthy"

    def test_cors_headers_for_allowed_origin(self, client, app, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "CORS_ALLOWED_ORIGINS", ["http://shop.test"])
        response = client.get("/health", headers={"Origin": "http://shop.test"})
        assert response.headers["Access-Control-Allow-Origin"] == "http://shop.test"

        response = client.get("/health", headers={"Origin": "http://evil.test"})
        assert "Access-Control-Allow-Origin" not in response.headers
