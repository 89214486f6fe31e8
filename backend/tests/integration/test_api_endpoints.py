"""
Integration Tests for API Endpoints

Tests for:
- Health check and root endpoints
- Error envelope
- Store owner authentication and store scoping
- Variant, cart, coupon and inventory endpoints
- Cron and webhook endpoints
"""

import hashlib
import hmac
import json
from unittest.mock import MagicMock, patch

KEY_SECRET = "rzp_test_key_secret"
WEBHOOK_SECRET = "whsec_test_secret"
STORE_ID = "store-test-001"

CART_ITEMS = [
    {"product_id": "prod-rice", "quantity": 2},
    {"product_id": "prod-tee", "variant_id": "var-s-red", "quantity": 1},
]


def _webhook(client, event: dict, secret: str = WEBHOOK_SECRET):
    body = json.dumps(event).encode()
    signature = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return client.post(
        "/api/v1/webhooks/razorpay",
        content=body,
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": signature},
    )


def _place_order(client, checkout_request, payment_method="razorpay"):
    response = client.post("/api/v1/orders/create", json={**checkout_request, "payment_method": payment_method})
    assert response.status_code == 201, response.text
    return response.json()


class TestHealthEndpoints:
    """Tests for health and root endpoints"""

    def test_health_check_healthy(self, client):
        manager = MagicMock()
        manager.get_dynamodb_client.return_value.describe_table.return_value = {
            'Table': {'TableStatus': 'ACTIVE'}
        }
        manager.health_check.return_value = {'region': 'ap-south-1'}

        with patch('storeforge.api.v1.health.get_db_manager', return_value=manager):
            response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["dynamodb"]["table_status"] == "ACTIVE"

    def test_health_check_degraded(self, client):
        """Test an unreachable table reports 503"""
        manager = MagicMock()
        manager.get_dynamodb_client.return_value.describe_table.side_effect = Exception("unreachable")

        with patch('storeforge.api.v1.health.get_db_manager', return_value=manager):
            response = client.get("/api/v1/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"
        assert response.json()["checks"]["dynamodb"]["status"] == "error"

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["health"] == "/api/v1/health"

    def test_request_id_echoed(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-abc"})

        assert response.headers["X-Request-ID"] == "req-abc"

    def test_security_headers(self, client):
        response = client.get("/")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


class TestErrorEnvelope:
    """Tests for the standard error body"""

    def test_domain_error(self, client):
        response = client.get("/api/v1/orders/lookup/ORD-0000000000000-XXXXX")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "ORDER_NOT_FOUND"
        assert "timestamp" in body

    def test_http_error(self, client):
        response = client.get("/api/v1/dashboard/orders")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "HTTP_401"

    def test_request_validation(self, client):
        response = client.post("/api/v1/cart/validate", json={"store_id": STORE_ID, "items": []})

        assert response.status_code == 422


class TestAuthentication:
    """Tests for store owner authentication"""

    def test_missing_token(self, client):
        response = client.get("/api/v1/products/prod-tee/variants")

        assert response.status_code == 401

    def test_invalid_token(self, client):
        response = client.get(
            "/api/v1/products/prod-tee/variants",
            headers={"Authorization": "Bearer not-a-token"},
        )

        assert response.status_code == 401

    def test_other_store_forbidden(self, client, other_auth_headers):
        """Test an owner cannot read another store's product"""
        response = client.get("/api/v1/products/prod-tee/variants", headers=other_auth_headers)

        assert response.status_code == 403


class TestVariantEndpoints:
    """Tests for /products/{id}/variants"""

    def test_get_variants(self, client, auth_headers):
        response = client.get("/api/v1/products/prod-tee/variants", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["variant_count"] == 2
        assert data["total_inventory"] == 7
        assert [o["name"] for o in data["variant_options"]] == ["Size", "Color"]

    def test_unknown_product(self, client, auth_headers):
        response = client.get("/api/v1/products/nope/variants", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "PRODUCT_NOT_FOUND"

    def test_save_options_then_generate(self, client, auth_headers):
        """Test adding a size generates only the missing combination"""
        options = {"options": [
            {"name": "Size", "values": [{"value": "S"}, {"value": "M"}, {"value": "L"}]},
            {"name": "Color", "values": [{"value": "Red"}]},
        ]}

        saved = client.post("/api/v1/products/prod-tee/variants/options", json=options, headers=auth_headers)
        generated = client.post(
            "/api/v1/products/prod-tee/variants/generate",
            json={"preserve_existing": True, "default_quantity": 3},
            headers=auth_headers,
        )

        assert saved.status_code == 200
        assert len(saved.json()["variant_options"][0]["values"]) == 3
        assert generated.status_code == 200
        data = generated.json()
        assert data["generated"] == 1
        assert data["preserved"] == 2
        assert data["total"] == 3

    def test_generate_without_options(self, client, seeded_db, auth_headers):
        response = client.post("/api/v1/products/prod-rice/variants/generate", json={}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VARIANT_GENERATION_ERROR"

    def test_replace_rejects_undefined_option(self, client, auth_headers):
        response = client.put(
            "/api/v1/products/prod-tee/variants",
            json={
                "options": [{"name": "Size", "values": [{"value": "S"}]}],
                "variants": [{"attributes": {"Fabric": "Cotton"}}],
            },
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_update_variant(self, client, seeded_db, auth_headers):
        response = client.patch(
            "/api/v1/products/prod-tee/variants/var-m-red",
            json={"price": 550, "quantity": 9},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["variant"]["price"] == 550
        assert seeded_db.variants[("prod-tee", "var-m-red")]["quantity"] == 9

    def test_update_negative_price_rejected(self, client, auth_headers):
        response = client.patch(
            "/api/v1/products/prod-tee/variants/var-m-red",
            json={"price": -1},
            headers=auth_headers,
        )

        assert response.status_code == 422

    def test_delete_default_promotes_next(self, client, seeded_db, auth_headers):
        response = client.delete("/api/v1/products/prod-tee/variants/var-s-red", headers=auth_headers)

        assert response.status_code == 200
        assert ("prod-tee", "var-s-red") not in seeded_db.variants
        assert seeded_db.variants[("prod-tee", "var-m-red")]["is_default"] is True

    def test_delete_unknown_variant(self, client, auth_headers):
        response = client.delete("/api/v1/products/prod-tee/variants/var-xl", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "VARIANT_NOT_FOUND"


class TestCartEndpoints:
    """Tests for /cart"""

    def test_validate_cart(self, client):
        response = client.post("/api/v1/cart/validate", json={"store_id": STORE_ID, "items": CART_ITEMS})

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert data["totals"]["total"] == 739.0
        assert data["savings"] == 60.0

    def test_validate_cart_cod(self, client):
        response = client.post(
            "/api/v1/cart/validate",
            json={"store_id": STORE_ID, "items": CART_ITEMS, "payment_method": "cod"},
        )

        assert response.json()["totals"]["total"] == 759.0

    def test_unknown_store(self, client):
        response = client.post("/api/v1/cart/validate", json={"store_id": "nope", "items": CART_ITEMS})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "STORE_NOT_FOUND"

    def test_apply_coupon(self, client, seeded_db):
        seeded_db.add_coupon("SAVE10")

        response = client.post(
            "/api/v1/cart/apply-coupon",
            json={"store_id": STORE_ID, "code": "save10", "items": CART_ITEMS},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["discount_amount"] == 69.0
        assert data["totals"]["total"] == 670.0

    def test_apply_expired_coupon(self, client, seeded_db):
        seeded_db.add_coupon("OLD", expires_at="2020-01-01T00:00:00")

        response = client.post(
            "/api/v1/cart/apply-coupon",
            json={"store_id": STORE_ID, "code": "OLD", "items": CART_ITEMS},
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["reason"] == "expired"


class TestCouponEndpoints:
    """Tests for /dashboard/coupons"""

    def test_coupon_crud(self, client, auth_headers):
        created = client.post(
            "/api/v1/dashboard/coupons",
            json={"code": "welcome", "discount_type": "percentage", "discount_value": 15},
            headers=auth_headers,
        )
        listed = client.get("/api/v1/dashboard/coupons", headers=auth_headers)
        updated = client.patch(
            "/api/v1/dashboard/coupons/WELCOME", json={"active": False}, headers=auth_headers
        )
        deleted = client.delete("/api/v1/dashboard/coupons/WELCOME", headers=auth_headers)

        assert created.status_code == 201
        assert created.json()["coupon"]["code"] == "WELCOME"
        assert listed.json()["count"] == 1
        assert updated.json()["coupon"]["active"] is False
        assert deleted.status_code == 200
        assert client.get("/api/v1/dashboard/coupons", headers=auth_headers).json()["count"] == 0

    def test_duplicate_code(self, client, seeded_db, auth_headers):
        seeded_db.add_coupon("SAVE10")

        response = client.post(
            "/api/v1/dashboard/coupons",
            json={"code": "SAVE10", "discount_type": "fixed_amount", "discount_value": 50},
            headers=auth_headers,
        )

        assert response.status_code == 409

    def test_percentage_over_100_rejected(self, client, auth_headers):
        response = client.post(
            "/api/v1/dashboard/coupons",
            json={"code": "HUGE", "discount_type": "percentage", "discount_value": 150},
            headers=auth_headers,
        )

        assert response.status_code == 422

    def test_coupons_scoped_to_token_store(self, client, seeded_db, other_auth_headers):
        seeded_db.add_coupon("SAVE10")

        response = client.get("/api/v1/dashboard/coupons", headers=other_auth_headers)

        assert response.json()["count"] == 0


class TestInventoryAndCronEndpoints:
    """Tests for low stock and scheduled maintenance"""

    def test_low_stock(self, client, auth_headers):
        response = client.get("/api/v1/inventory/low-stock", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert [p["variant_id"] for p in data["low_stock_products"]] == ["var-m-red", "var-s-red"]
        assert data["low_stock_products"][0]["title"] == "T-Shirt - M / Red"

    def test_low_stock_custom_threshold(self, client, auth_headers):
        response = client.get("/api/v1/inventory/low-stock?threshold=1", headers=auth_headers)

        assert response.json()["count"] == 0

    def test_cron_requires_secret(self, client):
        response = client.post("/api/v1/cron/cleanup-reservations")

        assert response.status_code == 401

    def test_cron_wrong_secret(self, client):
        response = client.post(
            "/api/v1/cron/cleanup-reservations", headers={"Authorization": "Bearer guess"}
        )

        assert response.status_code == 401

    def test_cleanup_reservations(self, client, seeded_db, cron_headers):
        seeded_db.add_reservation("order-old", "prod-rice", 1, minutes=-5)
        seeded_db.add_reservation("order-live", "prod-rice", 1)

        response = client.post("/api/v1/cron/cleanup-reservations", headers=cron_headers)

        assert response.status_code == 200
        assert response.json()["deleted"] == 1
        assert len(seeded_db.reservations) == 1

    def test_check_low_stock(self, client, cron_headers):
        response = client.get(f"/api/v1/cron/check-low-stock?store_id={STORE_ID}", headers=cron_headers)

        assert response.status_code == 200
        assert response.json()["count"] == 2


class TestWebhookEndpoint:
    """Tests for /webhooks/razorpay"""

    def test_invalid_signature(self, client):
        response = _webhook(client, {"event": "payment.captured", "payload": {}}, secret="wrong")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"

    def test_missing_signature(self, client):
        response = client.post("/api/v1/webhooks/razorpay", json={"event": "payment.captured"})

        assert response.status_code == 400

    def test_unhandled_event_acknowledged(self, client):
        response = _webhook(client, {"event": "order.paid", "payload": {}})

        assert response.status_code == 200
        assert response.json() == {"success": True, "received": True, "handled": False, "event": "order.paid"}

    def test_payment_captured(self, client, seeded_db, checkout_request):
        placed = _place_order(client, checkout_request)

        response = _webhook(client, {
            "event": "payment.captured",
            "payload": {"payment": {"entity": {
                "id": "pay_hook_1", "order_id": placed["razorpay"]["order_id"],
            }}},
        })

        assert response.status_code == 200
        assert response.json()["handled"] is True
        assert seeded_db.orders[placed["order_id"]]["payment_status"] == "paid"


class TestDashboardOrderEndpoints:
    """Tests for /dashboard/orders"""

    def test_list_orders(self, client, auth_headers, checkout_request):
        _place_order(client, checkout_request)
        _place_order(client, checkout_request, payment_method="cod")

        everything = client.get("/api/v1/dashboard/orders", headers=auth_headers)
        confirmed = client.get("/api/v1/dashboard/orders?status=confirmed", headers=auth_headers)

        assert everything.json()["count"] == 2
        assert confirmed.json()["count"] == 1
        assert confirmed.json()["orders"][0]["payment_method"] == "cod"

    def test_invalid_status_filter(self, client, auth_headers):
        response = client.get("/api/v1/dashboard/orders?status=lost", headers=auth_headers)

        assert response.status_code == 422

    def test_other_store_cannot_read_order(self, client, other_auth_headers, checkout_request):
        placed = _place_order(client, checkout_request)

        response = client.get(f"/api/v1/dashboard/orders/{placed['order_id']}", headers=other_auth_headers)

        assert response.status_code == 403

    def test_ship_order(self, client, auth_headers, checkout_request):
        placed = _place_order(client, checkout_request, payment_method="cod")

        response = client.patch(
            f"/api/v1/dashboard/orders/{placed['order_id']}",
            json={"status": "shipped", "tracking_number": "AWB123", "courier_name": "Delhivery"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["order"]["status"] == "shipped"
        assert data["order"]["tracking_number"] == "AWB123"
        assert data["message"] == "Order status updated to shipped"

    def test_invalid_transition(self, client, auth_headers, checkout_request):
        placed = _place_order(client, checkout_request)

        response = client.patch(
            f"/api/v1/dashboard/orders/{placed['order_id']}",
            json={"status": "delivered"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_STATUS_TRANSITION"

    def test_refund_unpaid_order(self, client, auth_headers, checkout_request):
        placed = _place_order(client, checkout_request)

        response = client.post(
            f"/api/v1/dashboard/orders/{placed['order_id']}/refund",
            json={"amount": 10, "reason": "Goodwill"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "REFUND_ERROR"

    def test_unknown_order(self, client, auth_headers):
        response = client.get("/api/v1/dashboard/orders/missing", headers=auth_headers)

        assert response.status_code == 404


class TestDashboardRefundEndpoints:
    """Tests for /dashboard/refunds"""

    def _paid_order(self, client, checkout_request, payment_id):
        placed = _place_order(client, checkout_request)
        _webhook(client, {
            "event": "payment.captured",
            "payload": {"payment": {"entity": {
                "id": payment_id, "order_id": placed["razorpay"]["order_id"],
            }}},
        })
        return placed

    def test_list_store_refunds(self, client, seeded_db, auth_headers, checkout_request):
        first = self._paid_order(client, checkout_request, "pay_list_1")
        second = self._paid_order(client, checkout_request, "pay_list_2")
        for placed, amount in ((first, 100), (second, 50)):
            client.post(
                f"/api/v1/dashboard/orders/{placed['order_id']}/refund",
                json={"amount": amount, "reason": "Damaged item"},
                headers=auth_headers,
            )
        seeded_db.refunds[next(iter(seeded_db.refunds))]["status"] = "failed"

        everything = client.get("/api/v1/dashboard/refunds", headers=auth_headers)
        processed = client.get("/api/v1/dashboard/refunds?status=processed", headers=auth_headers)

        assert everything.status_code == 200
        assert everything.json()["count"] == 2
        assert processed.json()["count"] == 1
        refund = processed.json()["refunds"][0]
        assert refund["amount"] == 50.0
        assert refund["order_number"] == second["order_number"]
        assert refund["customer_email"] == checkout_request["customer_email"].lower()

    def test_scoped_to_caller_store(self, client, auth_headers, other_auth_headers, checkout_request):
        placed = self._paid_order(client, checkout_request, "pay_scope_1")
        client.post(
            f"/api/v1/dashboard/orders/{placed['order_id']}/refund",
            json={"amount": 100, "reason": "Damaged item"},
            headers=auth_headers,
        )

        response = client.get("/api/v1/dashboard/refunds", headers=other_auth_headers)

        assert response.status_code == 200
        assert response.json()["refunds"] == []

    def test_invalid_status_filter(self, client, auth_headers):
        response = client.get("/api/v1/dashboard/refunds?status=lost", headers=auth_headers)

        assert response.status_code == 422

    def test_requires_auth(self, client):
        response = client.get("/api/v1/dashboard/refunds")

        assert response.status_code == 401
