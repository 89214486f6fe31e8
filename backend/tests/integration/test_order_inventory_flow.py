"""
Integration Tests for Order-Inventory Flow

Tests for:
- Checkout holding stock until payment
- Payment verification committing stock exactly once
- Payment failure releasing held stock
- Cancellation and refunds restoring stock
- End-to-end COD lifecycle
"""

import hashlib
import hmac
import json

KEY_SECRET = "rzp_test_key_secret"
WEBHOOK_SECRET = "whsec_test_secret"
STORE_ID = "store-test-001"


def _signature(razorpay_order_id: str, payment_id: str) -> str:
    message = f"{razorpay_order_id}|{payment_id}"
    return hmac.new(KEY_SECRET.encode(), message.encode(), hashlib.sha256).hexdigest()


def _checkout(client, checkout_request, **overrides):
    return client.post("/api/v1/orders/create", json={**checkout_request, **overrides})


def _verify(client, placed, payment_id="pay_flow_1"):
    razorpay_order_id = placed["razorpay"]["order_id"]
    return client.post("/api/v1/orders/verify-payment", json={
        "order_id": placed["order_id"],
        "razorpay_order_id": razorpay_order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": _signature(razorpay_order_id, payment_id),
    })


def _webhook(client, event: dict):
    body = json.dumps(event).encode()
    signature = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()
    return client.post(
        "/api/v1/webhooks/razorpay",
        content=body,
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": signature},
    )


class TestOnlinePaymentFlow:
    """Checkout -> Razorpay -> verification"""

    def test_checkout_holds_stock_until_payment(self, client, seeded_db, checkout_request):
        response = _checkout(client, checkout_request)

        assert response.status_code == 201
        placed = response.json()
        assert placed["payment_required"] is True
        assert placed["razorpay"]["amount"] == 73900
        assert placed["order"]["status"] == "pending"
        assert "razorpay_order_id" not in placed["order"]
        assert seeded_db.products["prod-rice"]["quantity"] == 10
        assert len(seeded_db.reservations) == 2

    def test_complete_order_flow_success(self, client, seeded_db, checkout_request):
        """Test checkout -> verify commits stock and clears the hold"""
        placed = _checkout(client, checkout_request).json()

        response = _verify(client, placed)

        assert response.status_code == 200
        data = response.json()
        assert data["payment_status"] == "paid"
        assert data["status"] == "confirmed"
        assert seeded_db.products["prod-rice"]["quantity"] == 8
        assert seeded_db.variants[("prod-tee", "var-s-red")]["quantity"] == 4
        assert seeded_db.reservations == {}

    def test_verification_and_webhook_commit_once(self, client, seeded_db, checkout_request):
        placed = _checkout(client, checkout_request).json()

        _verify(client, placed, payment_id="pay_dup")
        _verify(client, placed, payment_id="pay_dup")
        _webhook(client, {
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": "pay_dup", "order_id": placed["razorpay"]["order_id"]}}},
        })

        assert seeded_db.products["prod-rice"]["quantity"] == 8

    def test_forged_signature_rejected(self, client, seeded_db, checkout_request):
        placed = _checkout(client, checkout_request).json()

        response = client.post("/api/v1/orders/verify-payment", json={
            "order_id": placed["order_id"],
            "razorpay_order_id": placed["razorpay"]["order_id"],
            "razorpay_payment_id": "pay_forged",
            "razorpay_signature": "0" * 64,
        })

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"
        assert seeded_db.products["prod-rice"]["quantity"] == 10

    def test_held_stock_blocks_other_shoppers(self, client, seeded_db, checkout_request):
        """Test the last units cannot be sold twice while a payment is pending"""
        seeded_db.products["prod-rice"]["quantity"] = 2
        rice_only = {**checkout_request, "items": [{"product_id": "prod-rice", "quantity": 2}]}

        first = _checkout(client, rice_only)
        second = _checkout(client, rice_only)

        assert first.status_code == 201
        assert second.status_code == 400
        assert second.json()["error"]["code"] == "CART_VALIDATION_FAILED"
        assert second.json()["error"]["details"]["errors"] == ["Basmati Rice: Out of stock"]

    def test_payment_failure_releases_hold(self, client, seeded_db, checkout_request):
        seeded_db.products["prod-rice"]["quantity"] = 2
        rice_only = {**checkout_request, "items": [{"product_id": "prod-rice", "quantity": 2}]}
        placed = _checkout(client, rice_only).json()

        _webhook(client, {
            "event": "payment.failed",
            "payload": {"payment": {"entity": {
                "id": "pay_declined",
                "order_id": placed["razorpay"]["order_id"],
                "error_description": "Card declined",
            }}},
        })
        retry = client.post("/api/v1/cart/validate", json={"store_id": STORE_ID, "items": rice_only["items"]})

        assert seeded_db.orders[placed["order_id"]]["status"] == "cancelled"
        assert retry.json()["valid"] is True


class TestCancellationAndRefunds:
    """Merchant cancellation and refunds after payment"""

    def test_partial_refund_then_cancel(self, client, seeded_db, auth_headers, checkout_request):
        """Test a partial refund followed by cancellation refunds the remainder and restocks"""
        placed = _checkout(client, checkout_request).json()
        _verify(client, placed)
        order_url = f"/api/v1/dashboard/orders/{placed['order_id']}"

        partial = client.post(f"{order_url}/refund", json={"amount": 100, "reason": "Damaged box"},
                              headers=auth_headers)
        cancelled = client.delete(order_url, headers=auth_headers)
        refunds = client.get(f"{order_url}/refund", headers=auth_headers)

        assert partial.status_code == 200
        assert partial.json()["order"]["refunded_amount"] == 100.0
        assert partial.json()["order"]["payment_status"] == "paid"
        assert cancelled.status_code == 200
        assert cancelled.json()["order"]["status"] == "cancelled"
        assert cancelled.json()["order"]["payment_status"] == "refunded"
        assert [r["amount"] for r in refunds.json()["refunds"]] == [100.0, 639.0]
        assert seeded_db.products["prod-rice"]["quantity"] == 10
        assert seeded_db.variants[("prod-tee", "var-s-red")]["quantity"] == 5

    def test_cancel_shipped_order_via_status_update(self, client, seeded_db, auth_headers, checkout_request):
        """Test a shipped order can be cancelled with PATCH but not with DELETE"""
        placed = _checkout(client, checkout_request).json()
        _verify(client, placed)
        order_url = f"/api/v1/dashboard/orders/{placed['order_id']}"
        client.patch(order_url, json={"status": "shipped"}, headers=auth_headers)

        deleted = client.delete(order_url, headers=auth_headers)
        patched = client.patch(order_url, json={"status": "cancelled"}, headers=auth_headers)

        assert deleted.status_code == 400
        assert patched.status_code == 200
        assert patched.json()["order"]["status"] == "cancelled"
        assert patched.json()["order"]["payment_status"] == "refunded"
        assert seeded_db.products["prod-rice"]["quantity"] == 10
        assert seeded_db.variants[("prod-tee", "var-s-red")]["quantity"] == 5

    def test_over_refund_rejected(self, client, auth_headers, checkout_request):
        placed = _checkout(client, checkout_request).json()
        _verify(client, placed)

        response = client.post(
            f"/api/v1/dashboard/orders/{placed['order_id']}/refund",
            json={"amount": 800, "reason": "Too much"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["refundable"] == 739.0

    def test_full_refund_restocks(self, client, seeded_db, auth_headers, checkout_request):
        placed = _checkout(client, checkout_request).json()
        _verify(client, placed)

        response = client.post(
            f"/api/v1/dashboard/orders/{placed['order_id']}/refund",
            json={"amount": 739, "reason": "Returned"},
            headers=auth_headers,
        )

        assert response.json()["order"]["status"] == "refunded"
        assert seeded_db.products["prod-rice"]["quantity"] == 10


class TestCodLifecycle:
    """Cash on delivery from checkout to delivery"""

    def test_cod_order_to_delivery(self, client, seeded_db, auth_headers, checkout_request):
        response = _checkout(client, checkout_request, payment_method="cod")
        placed = response.json()
        order_url = f"/api/v1/dashboard/orders/{placed['order_id']}"

        assert response.status_code == 201
        assert placed["payment_required"] is False
        assert placed["razorpay"] is None
        assert placed["order"]["status"] == "confirmed"
        assert placed["order"]["total"] == 759.0
        assert seeded_db.products["prod-rice"]["quantity"] == 8

        for status in ("packed", "shipped", "out_for_delivery", "delivered"):
            step = client.patch(order_url, json={"status": status}, headers=auth_headers)
            assert step.status_code == 200, step.text

        delivered = client.get(order_url, headers=auth_headers).json()["order"]
        assert delivered["status"] == "delivered"
        assert delivered["delivered_at"] is not None

        cancel = client.delete(order_url, headers=auth_headers)
        assert cancel.status_code == 400
        assert seeded_db.products["prod-rice"]["quantity"] == 8

    def test_cod_cancel_restocks(self, client, seeded_db, auth_headers, checkout_request):
        placed = _checkout(client, checkout_request, payment_method="cod").json()

        response = client.delete(f"/api/v1/dashboard/orders/{placed['order_id']}", headers=auth_headers)

        assert response.status_code == 200
        assert seeded_db.products["prod-rice"]["quantity"] == 10
        assert seeded_db.refunds == {}

    def test_order_lookup(self, client, checkout_request):
        placed = _checkout(client, checkout_request, payment_method="cod").json()

        response = client.get(f"/api/v1/orders/lookup/{placed['order_number']}")

        assert response.status_code == 200
        order = response.json()["order"]
        assert order["order_id"] == placed["order_id"]
        assert "inventory_committed" not in order
