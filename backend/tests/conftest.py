"""
StoreForge Test Configuration and Fixtures

This module provides:
- Test environment variables (set before any storeforge import)
- An in-memory CommerceDatabase double with the same DBResult contract
- Service fixtures wired to the double
- API client fixtures with dependency overrides and auth headers
"""

import copy
import os
import sys
from datetime import datetime, timedelta
from typing import Any, Dict, Generator, List, Optional

import pytest

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET"] = "test_secret_key_for_testing_only_32chars!"
os.environ["AWS_REGION"] = "ap-south-1"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_key_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["PAYMENT_MOCK_MODE"] = "true"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["LOG_LEVEL"] = "WARNING"

from fastapi.testclient import TestClient

from storeforge.database.commerce_db import CONDITION_FAILED, NOT_FOUND, DBResult


TEST_STORE_ID = "store-test-001"
OTHER_STORE_ID = "store-other-002"


# =============================================================================
# In-memory CommerceDatabase
# =============================================================================

def _not_found() -> DBResult:
    return DBResult(success=False, error="Item not found", error_code=NOT_FOUND)


def _condition_failed() -> DBResult:
    return DBResult(success=False, error="Condition check failed", error_code=CONDITION_FAILED)


def _apply(item: Dict[str, Any], updates: Dict[str, Any]) -> None:
    for key, value in updates.items():
        if value is None:
            item.pop(key, None)
        else:
            item[key] = copy.deepcopy(value)


def _tracked(row: Dict[str, Any]) -> bool:
    return row.get('track_quantity', True) is True


class FakeCommerceDatabase:
    """
    Dict-backed stand-in for CommerceDatabase.

    Mirrors the conditional semantics the services rely on: unique puts,
    guarded order updates, one-shot flags, clamped stock decrements and
    usage-limited coupon increments. Returned data is always a copy.
    """

    def __init__(self):
        self.stores: Dict[str, Dict] = {}
        self.products: Dict[str, Dict] = {}
        self.variants: Dict[tuple, Dict] = {}
        self.orders: Dict[str, Dict] = {}
        self.reservations: Dict[str, Dict] = {}
        self.coupons: Dict[tuple, Dict] = {}
        self.coupon_usage: Dict[tuple, Dict] = {}
        self.refunds: Dict[str, Dict] = {}

    # Seeding helpers ---------------------------------------------------------

    def add_store(self, store_id: str = TEST_STORE_ID, **fields) -> Dict[str, Any]:
        store = {'store_id': store_id, 'name': 'Test Store', 'status': 'active', **fields}
        self.stores[store_id] = store
        return store

    def add_product(self, product_id: str, store_id: str = TEST_STORE_ID, **fields) -> Dict[str, Any]:
        product = {
            'product_id': product_id,
            'store_id': store_id,
            'title': fields.pop('title', product_id),
            'price': 100.0,
            'quantity': 10,
            'track_quantity': True,
            'status': 'active',
            'has_variants': False,
            'created_at': '2025-01-01T00:00:00',
            **fields,
        }
        self.products[product_id] = product
        return product

    def add_variant(self, product_id: str, variant_id: str, attributes: Dict[str, str], **fields) -> Dict[str, Any]:
        variant = {
            'product_id': product_id,
            'variant_id': variant_id,
            'attributes': attributes,
            'price': None,
            'quantity': 5,
            'track_quantity': True,
            'status': 'active',
            'is_default': False,
            'position': len([k for k in self.variants if k[0] == product_id]),
            'created_at': '2025-01-01T00:00:00',
            **fields,
        }
        variant = {k: v for k, v in variant.items() if v is not None}
        self.variants[(product_id, variant_id)] = variant
        if product_id in self.products:
            self.products[product_id]['has_variants'] = True
        return variant

    def add_coupon(self, code: str, store_id: str = TEST_STORE_ID, **fields) -> Dict[str, Any]:
        coupon = {
            'coupon_id': f"coupon-{code.lower()}",
            'store_id': store_id,
            'code': code,
            'discount_type': 'percentage',
            'discount_value': 10,
            'active': True,
            'usage_count': 0,
            'created_at': '2025-01-01T00:00:00',
            **fields,
        }
        coupon = {k: v for k, v in coupon.items() if v is not None}
        self.coupons[(store_id, code)] = coupon
        return coupon

    def add_reservation(self, order_id: str, product_id: str, quantity: int,
                        variant_id: Optional[str] = None, minutes: int = 15) -> Dict[str, Any]:
        reservation_id = f"res-{len(self.reservations) + 1}"
        reservation = {
            'reservation_id': reservation_id,
            'order_id': order_id,
            'product_id': product_id,
            'variant_id': variant_id,
            'item_key': f"{product_id}#{variant_id or '-'}",
            'quantity': quantity,
            'expires_at': (datetime.utcnow() + timedelta(minutes=minutes)).isoformat(),
            'created_at': datetime.utcnow().isoformat(),
        }
        self.reservations[reservation_id] = reservation
        return reservation

    # Stores and products -----------------------------------------------------

    async def get_store(self, store_id: str) -> DBResult:
        store = self.stores.get(store_id)
        return DBResult(success=True, data=copy.deepcopy(store)) if store else _not_found()

    async def get_product(self, product_id: str) -> DBResult:
        product = self.products.get(product_id)
        return DBResult(success=True, data=copy.deepcopy(product)) if product else _not_found()

    async def update_product(self, product_id: str, updates: Dict[str, Any]) -> DBResult:
        product = self.products.get(product_id)
        if product is None:
            return _condition_failed()
        _apply(product, updates)
        return DBResult(success=True, data=copy.deepcopy(product))

    async def list_store_products(self, store_id: str) -> DBResult:
        items = [copy.deepcopy(p) for p in self.products.values() if p.get('store_id') == store_id]
        return DBResult(success=True, data=items)

    # Variants ----------------------------------------------------------------

    async def get_variant(self, product_id: str, variant_id: str) -> DBResult:
        variant = self.variants.get((product_id, variant_id))
        return DBResult(success=True, data=copy.deepcopy(variant)) if variant else _not_found()

    async def list_variants(self, product_id: str) -> DBResult:
        items = [copy.deepcopy(v) for k, v in self.variants.items() if k[0] == product_id]
        items.sort(key=lambda v: (v.get('position', 0), v.get('created_at', '')))
        return DBResult(success=True, data=items)

    async def put_variants(self, variants: List[Dict[str, Any]]) -> DBResult:
        for variant in variants:
            row = {k: copy.deepcopy(v) for k, v in variant.items() if v is not None}
            self.variants[(variant['product_id'], variant['variant_id'])] = row
        return DBResult(success=True, data=variants)

    async def update_variant(self, product_id: str, variant_id: str, updates: Dict[str, Any]) -> DBResult:
        variant = self.variants.get((product_id, variant_id))
        if variant is None:
            return _condition_failed()
        _apply(variant, updates)
        return DBResult(success=True, data=copy.deepcopy(variant))

    async def delete_variants(self, product_id: str, variant_ids: List[str]) -> DBResult:
        for variant_id in variant_ids:
            self.variants.pop((product_id, variant_id), None)
        return DBResult(success=True, data=len(variant_ids))

    # Stock -------------------------------------------------------------------

    def _stock_row(self, product_id: str, variant_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if variant_id:
            return self.variants.get((product_id, variant_id))
        return self.products.get(product_id)

    async def decrement_stock(self, product_id: str, variant_id: Optional[str], quantity: int) -> DBResult:
        row = self._stock_row(product_id, variant_id)
        if row is None or not _tracked(row) or 'quantity' not in row:
            return _condition_failed()
        if row['quantity'] >= quantity:
            row['quantity'] -= quantity
            return DBResult(success=True, data={'quantity': row['quantity'], 'clamped': False})
        row['quantity'] = 0
        return DBResult(success=True, data={'quantity': 0, 'clamped': True})

    async def increment_stock(self, product_id: str, variant_id: Optional[str], quantity: int) -> DBResult:
        row = self._stock_row(product_id, variant_id)
        if row is None or not _tracked(row) or 'quantity' not in row:
            return _condition_failed()
        row['quantity'] += quantity
        return DBResult(success=True, data={'quantity': row['quantity']})

    # Reservations ------------------------------------------------------------

    async def put_reservations(self, reservations: List[Dict[str, Any]]) -> DBResult:
        for reservation in reservations:
            self.reservations[reservation['reservation_id']] = copy.deepcopy(reservation)
        return DBResult(success=True, data=reservations)

    async def get_reserved_quantity(self, item_key: str, now: str,
                                    exclude_order_id: Optional[str] = None) -> DBResult:
        total = sum(
            int(r['quantity']) for r in self.reservations.values()
            if r['item_key'] == item_key and r['expires_at'] > now
            and (exclude_order_id is None or r['order_id'] != exclude_order_id)
        )
        return DBResult(success=True, data=total)

    async def delete_reservations_for_order(self, order_id: str) -> DBResult:
        ids = [rid for rid, r in self.reservations.items() if r['order_id'] == order_id]
        for rid in ids:
            del self.reservations[rid]
        return DBResult(success=True, data=len(ids))

    async def delete_expired_reservations(self, now: str) -> DBResult:
        ids = [rid for rid, r in self.reservations.items() if r['expires_at'] < now]
        for rid in ids:
            del self.reservations[rid]
        return DBResult(success=True, data=len(ids))

    # Orders ------------------------------------------------------------------

    async def create_order(self, order: Dict[str, Any]) -> DBResult:
        if order['order_id'] in self.orders:
            return _condition_failed()
        self.orders[order['order_id']] = {k: copy.deepcopy(v) for k, v in order.items() if v is not None}
        return DBResult(success=True, data=order)

    async def get_order(self, order_id: str) -> DBResult:
        order = self.orders.get(order_id)
        return DBResult(success=True, data=copy.deepcopy(order)) if order else _not_found()

    def _find_order(self, field_name: str, value: Any) -> DBResult:
        for order in self.orders.values():
            if value is not None and order.get(field_name) == value:
                return DBResult(success=True, data=copy.deepcopy(order))
        return _not_found()

    async def get_order_by_number(self, order_number: str) -> DBResult:
        return self._find_order('order_number', order_number)

    async def get_order_by_razorpay_order_id(self, razorpay_order_id: str) -> DBResult:
        return self._find_order('razorpay_order_id', razorpay_order_id)

    async def get_order_by_payment_id(self, razorpay_payment_id: str) -> DBResult:
        return self._find_order('razorpay_payment_id', razorpay_payment_id)

    async def update_order(self, order_id: str, updates: Dict[str, Any],
                           expected_status: Optional[str] = None,
                           expected_payment_status: Optional[str] = None) -> DBResult:
        order = self.orders.get(order_id)
        if order is None:
            return _condition_failed()
        if expected_status is not None and order.get('status') != expected_status:
            return _condition_failed()
        if expected_payment_status is not None and order.get('payment_status') != expected_payment_status:
            return _condition_failed()
        _apply(order, updates)
        return DBResult(success=True, data=copy.deepcopy(order))

    async def claim_order_flag(self, order_id: str, flag: str) -> DBResult:
        order = self.orders.get(order_id)
        if order is None or order.get(flag):
            return _condition_failed()
        order[flag] = True
        return DBResult(success=True, data=copy.deepcopy(order))

    async def delete_order(self, order_id: str) -> DBResult:
        self.orders.pop(order_id, None)
        return DBResult(success=True)

    async def list_store_orders(self, store_id: str, status: Optional[str] = None,
                                limit: int = 50, cursor: Optional[str] = None) -> DBResult:
        items = [
            copy.deepcopy(o) for o in self.orders.values()
            if o.get('store_id') == store_id and (status is None or o.get('status') == status)
        ]
        items.sort(key=lambda o: o.get('created_at', ''), reverse=True)
        return DBResult(success=True, data=items[:limit], next_cursor=None)

    # Coupons -----------------------------------------------------------------

    async def get_coupon(self, store_id: str, code: str) -> DBResult:
        coupon = self.coupons.get((store_id, code))
        return DBResult(success=True, data=copy.deepcopy(coupon)) if coupon else _not_found()

    async def create_coupon(self, coupon: Dict[str, Any]) -> DBResult:
        key = (coupon['store_id'], coupon['code'])
        if key in self.coupons:
            return _condition_failed()
        self.coupons[key] = {k: copy.deepcopy(v) for k, v in coupon.items() if v is not None}
        return DBResult(success=True, data=coupon)

    async def update_coupon(self, store_id: str, code: str, updates: Dict[str, Any]) -> DBResult:
        coupon = self.coupons.get((store_id, code))
        if coupon is None:
            return _condition_failed()
        _apply(coupon, updates)
        return DBResult(success=True, data=copy.deepcopy(coupon))

    async def delete_coupon(self, store_id: str, code: str) -> DBResult:
        self.coupons.pop((store_id, code), None)
        return DBResult(success=True)

    async def list_coupons(self, store_id: str) -> DBResult:
        items = [copy.deepcopy(c) for k, c in self.coupons.items() if k[0] == store_id]
        return DBResult(success=True, data=items)

    async def increment_coupon_usage(self, store_id: str, code: str) -> DBResult:
        coupon = self.coupons.get((store_id, code))
        if coupon is None:
            return _condition_failed()
        limit = coupon.get('usage_limit')
        if limit is not None and coupon.get('usage_count', 0) >= limit:
            return _condition_failed()
        coupon['usage_count'] = coupon.get('usage_count', 0) + 1
        return DBResult(success=True, data={'usage_count': coupon['usage_count']})

    async def create_coupon_usage(self, usage: Dict[str, Any]) -> DBResult:
        key = (usage['coupon_id'], usage['order_id'])
        if key in self.coupon_usage:
            return _condition_failed()
        self.coupon_usage[key] = copy.deepcopy(usage)
        return DBResult(success=True, data=usage)

    async def count_customer_coupon_usage(self, coupon_id: str, customer_email: str) -> DBResult:
        count = sum(
            1 for key, usage in self.coupon_usage.items()
            if key[0] == coupon_id and usage.get('customer_email') == customer_email
        )
        return DBResult(success=True, data=count)

    # Refunds -----------------------------------------------------------------

    async def create_refund(self, refund: Dict[str, Any]) -> DBResult:
        if refund['refund_id'] in self.refunds:
            return _condition_failed()
        self.refunds[refund['refund_id']] = {k: copy.deepcopy(v) for k, v in refund.items() if v is not None}
        return DBResult(success=True, data=refund)

    async def get_refund_by_provider_id(self, razorpay_refund_id: str) -> DBResult:
        for refund in self.refunds.values():
            if refund.get('razorpay_refund_id') == razorpay_refund_id:
                return DBResult(success=True, data=copy.deepcopy(refund))
        return _not_found()

    async def update_refund(self, refund_id: str, updates: Dict[str, Any]) -> DBResult:
        refund = self.refunds.get(refund_id)
        if refund is None:
            return _condition_failed()
        _apply(refund, updates)
        return DBResult(success=True, data=copy.deepcopy(refund))

    async def list_refunds(self, order_id: str) -> DBResult:
        items = [copy.deepcopy(r) for r in self.refunds.values() if r.get('order_id') == order_id]
        items.sort(key=lambda r: r.get('created_at', ''))
        return DBResult(success=True, data=items)

    async def list_store_refunds(self, store_id: str, status: Optional[str] = None,
                                 limit: int = 50, cursor: Optional[str] = None) -> DBResult:
        items = [
            copy.deepcopy(r) for r in self.refunds.values()
            if r.get('store_id') == store_id and (status is None or r.get('status') == status)
        ]
        items.sort(key=lambda r: r.get('created_at', ''), reverse=True)
        return DBResult(success=True, data=items[:limit], next_cursor=None)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def fake_db() -> FakeCommerceDatabase:
    """Empty in-memory database"""
    return FakeCommerceDatabase()


@pytest.fixture
def seeded_db(fake_db) -> FakeCommerceDatabase:
    """
    One active store with:
    - prod-rice: simple tracked product, price 120, stock 10
    - prod-tee: T-shirt with Size x Color variants
    - prod-ebook: untracked simple product
    """
    fake_db.add_store(TEST_STORE_ID)
    fake_db.add_store(OTHER_STORE_ID, name="Other Store")

    fake_db.add_product('prod-rice', title='Basmati Rice', price=120.0, quantity=10,
                        compare_at_price=150.0, sku='RICE-1KG', weight=1.0)
    fake_db.add_product(
        'prod-tee', title='T-Shirt', price=500.0, quantity=0,
        variant_options=[
            {'name': 'Size', 'position': 0, 'values': [
                {'value': 'S', 'position': 0}, {'value': 'M', 'position': 1}]},
            {'name': 'Color', 'position': 1, 'values': [{'value': 'Red', 'position': 0}]},
        ],
    )
    fake_db.add_variant('prod-tee', 'var-s-red', {'Size': 'S', 'Color': 'Red'},
                        price=450.0, quantity=5, sku='TEE-S-RED', is_default=True)
    fake_db.add_variant('prod-tee', 'var-m-red', {'Size': 'M', 'Color': 'Red'},
                        quantity=2, sku='TEE-M-RED')
    fake_db.add_product('prod-ebook', title='E-Book', price=299.0, track_quantity=False, quantity=0)
    fake_db.add_product('prod-foreign', store_id=OTHER_STORE_ID, title='Foreign Item')
    return fake_db


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def payment_service():
    """PaymentService in mock mode with known secrets"""
    from storeforge.services.payment_service import PaymentService
    return PaymentService(
        key_id="rzp_test_key",
        key_secret="rzp_test_key_secret",
        webhook_secret="whsec_test_secret",
        mock_mode=True,
    )


@pytest.fixture
def variant_service(seeded_db):
    from storeforge.services.variant_service import VariantService
    return VariantService(seeded_db)


@pytest.fixture
def inventory_service(seeded_db):
    from storeforge.services.inventory_service import InventoryService
    return InventoryService(seeded_db)


@pytest.fixture
def coupon_service(seeded_db):
    from storeforge.services.coupon_service import CouponService
    return CouponService(seeded_db)


@pytest.fixture
def cart_service(seeded_db, inventory_service, coupon_service):
    from storeforge.services.cart_service import CartService
    return CartService(seeded_db, inventory_service, coupon_service)


@pytest.fixture
def order_service(seeded_db, inventory_service, coupon_service, payment_service, cart_service):
    from storeforge.services.order_service import OrderService
    return OrderService(seeded_db, inventory_service, coupon_service, payment_service, cart_service)


# =============================================================================
# Test Data Factories
# =============================================================================

@pytest.fixture
def shipping_address() -> Dict[str, Any]:
    return {
        "name": "Asha Verma",
        "phone": "9876543210",
        "address_line1": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
        "country": "India",
    }


@pytest.fixture
def checkout_request(shipping_address) -> Dict[str, Any]:
    """Online checkout for 2 x rice and 1 x T-shirt (S / Red)"""
    return {
        "store_id": TEST_STORE_ID,
        "items": [
            {"product_id": "prod-rice", "variant_id": None, "quantity": 2},
            {"product_id": "prod-tee", "variant_id": "var-s-red", "quantity": 1},
        ],
        "customer_name": "Asha Verma",
        "customer_email": "asha@example.com",
        "customer_phone": "9876543210",
        "shipping_address": shipping_address,
        "payment_method": "razorpay",
        "coupon_code": None,
        "notes": None,
    }


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture
def app(seeded_db, variant_service, inventory_service, coupon_service, cart_service, order_service):
    """FastAPI app with every service dependency bound to the in-memory database"""
    from storeforge.main import app as fastapi_app
    from storeforge.services.cart_service import get_cart_service
    from storeforge.services.coupon_service import get_coupon_service
    from storeforge.services.inventory_service import get_inventory_service
    from storeforge.services.order_service import get_order_service
    from storeforge.services.variant_service import get_variant_service

    fastapi_app.dependency_overrides[get_variant_service] = lambda: variant_service
    fastapi_app.dependency_overrides[get_inventory_service] = lambda: inventory_service
    fastapi_app.dependency_overrides[get_coupon_service] = lambda: coupon_service
    fastapi_app.dependency_overrides[get_cart_service] = lambda: cart_service
    fastapi_app.dependency_overrides[get_order_service] = lambda: order_service
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> Generator:
    """Create synchronous test client."""
    with TestClient(app) as test_client:
        yield test_client


# =============================================================================
# Authentication Fixtures
# =============================================================================

@pytest.fixture
def store_owner_token() -> str:
    from storeforge.core.security import create_store_owner_token
    return create_store_owner_token({
        "user_id": "user-test-001",
        "store_id": TEST_STORE_ID,
        "email": "owner@example.com",
    })


@pytest.fixture
def other_store_owner_token() -> str:
    from storeforge.core.security import create_store_owner_token
    return create_store_owner_token({
        "user_id": "user-other-002",
        "store_id": OTHER_STORE_ID,
        "email": "other@example.com",
    })


@pytest.fixture
def auth_headers(store_owner_token) -> Dict[str, str]:
    """Authorization headers for the test store's owner."""
    return {"Authorization": f"Bearer {store_owner_token}"}


@pytest.fixture
def other_auth_headers(other_store_owner_token) -> Dict[str, str]:
    return {"Authorization": f"Bearer {other_store_owner_token}"}


@pytest.fixture
def cron_headers() -> Dict[str, str]:
    return {"Authorization": "Bearer test-cron-secret"}
