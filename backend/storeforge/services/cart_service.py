"""
Cart Service

Server-side cart validation for the storefront. The client's cart is never
trusted: every line is re-read from the catalog, priced from the effective
(variant or product) price and checked against effective availability.
"""

import logging
from typing import Any, Dict, List, Optional

from storeforge.core.exceptions import (
    CartValidationError,
    DatabaseError,
    StoreNotFoundError,
)
from storeforge.database.commerce_db import NOT_FOUND, CommerceDatabase, get_commerce_db
from storeforge.models.commerce import PaymentMethod, VariantStatus
from storeforge.services import pricing
from storeforge.services.coupon_service import CouponService, get_coupon_service
from storeforge.services.inventory_service import InventoryService, get_inventory_service
from storeforge.services.variant_service import (
    format_variant_attributes,
    get_effective_price,
)

logger = logging.getLogger(__name__)

SELLABLE_PRODUCT_STATUSES = ("active", "published")


class CartService:
    """Cart validation, totals and coupon preview"""

    def __init__(self, db: Optional[CommerceDatabase] = None,
                 inventory: Optional[InventoryService] = None,
                 coupons: Optional[CouponService] = None):
        self.db = db or get_commerce_db()
        self.inventory = inventory or InventoryService(self.db)
        self.coupons = coupons or CouponService(self.db)

    async def verify_store(self, store_id: str) -> Dict[str, Any]:
        """
        Raises:
            StoreNotFoundError: if the store does not exist or is not active
        """
        result = await self.db.get_store(store_id)
        if not result.success:
            if result.error_code == NOT_FOUND:
                raise StoreNotFoundError(store_id)
            raise DatabaseError("Failed to load store", {"store_id": store_id})

        store = result.data
        if store.get('status', 'active') != 'active':
            raise StoreNotFoundError(store_id, {"reason": "inactive"})
        return store

    async def validate_cart_items(self, store_id: str,
                                  items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Validate cart lines against the catalog.

        Lines that cannot be sold at all go to `errors`; lines that can only
        be partly filled are kept with an adjusted quantity and `issues`.

        Returns:
            Dict with valid, items (validated lines) and errors
        """
        validated = []
        errors = []

        for item in items:
            product_id = item['product_id']
            variant_id = item.get('variant_id') or None
            requested = int(item['quantity'])

            product_result = await self.db.get_product(product_id)
            if not product_result.success:
                errors.append(f"Product not found: {product_id}")
                continue
            product = product_result.data
            title = product.get('title', '')

            if product.get('store_id') != store_id:
                errors.append(f"Product {title} does not belong to this store")
                continue

            if product.get('status', 'active') not in SELLABLE_PRODUCT_STATUSES:
                errors.append(f"Product {title} is not available")
                continue

            if product.get('has_variants') and not variant_id:
                errors.append(f"Please select options for {title}")
                continue

            variant = None
            if variant_id:
                variant_result = await self.db.get_variant(product_id, variant_id)
                if not variant_result.success:
                    errors.append(f"Selected option not found for {title}")
                    continue
                variant = variant_result.data
                if variant.get('status') != VariantStatus.ACTIVE.value:
                    errors.append(f"Selected option for {title} is not available")
                    continue

            available = await self.inventory.get_effective_availability(product_id, variant_id)
            quantity = requested
            issues = []
            if available is not None and requested > available:
                if available == 0:
                    issues.append("Out of stock")
                else:
                    issues.append(f"Only {available} available")
                quantity = available

            unit_price = pricing.money_float(get_effective_price(product, variant))
            compare_at = (variant or {}).get('compare_at_price') or product.get('compare_at_price')
            attributes = (variant or {}).get('attributes')

            validated.append({
                'product_id': product_id,
                'variant_id': variant_id,
                'title': title,
                'variant_title': format_variant_attributes(attributes) if attributes else None,
                'variant_attributes': attributes,
                'sku': (variant or {}).get('sku') or product.get('sku'),
                'image_url': product.get('image_url'),
                'quantity': quantity,
                'requested_quantity': requested,
                'available_quantity': available,
                'unit_price': unit_price,
                'compare_at_price': compare_at,
                'subtotal': pricing.money_float(pricing.to_money(unit_price) * quantity),
                'weight': (variant or {}).get('weight') or product.get('weight'),
                'issues': issues or None,
            })

        has_issues = any(line['issues'] for line in validated)
        return {
            'valid': not errors and not has_issues,
            'items': validated,
            'errors': errors,
        }

    async def validate_cart(self, store_id: str, items: List[Dict[str, Any]],
                            payment_method: Optional[str] = None,
                            coupon_code: Optional[str] = None,
                            customer_email: Optional[str] = None) -> Dict[str, Any]:
        """
        Validate a cart and compute its totals.

        Raises:
            StoreNotFoundError: unknown or inactive store
            CartValidationError: when no line survives validation
        """
        store = await self.verify_store(store_id)
        result = await self.validate_cart_items(store_id, items)
        errors = list(result['errors'])

        if errors and not result['items']:
            raise CartValidationError(errors)

        shipping_settings = pricing.get_shipping_settings(store)
        method = getattr(payment_method, 'value', payment_method)
        if method == PaymentMethod.COD.value and not shipping_settings['cod_enabled']:
            errors.append("Cash on delivery is not available for this store")

        subtotal = pricing.calculate_subtotal(result['items'])
        discount = 0.0
        free_shipping = False
        coupon = None
        if coupon_code:
            validation = await self.coupons.validate_coupon(store_id, coupon_code, customer_email, subtotal)
            if validation.valid:
                discount = validation.discount_amount
                free_shipping = validation.is_free_shipping
                coupon = validation.to_dict()
            else:
                errors.append(validation.message)

        totals = pricing.calculate_cart_total(
            result['items'], store, method, discount=discount, free_shipping=free_shipping
        )

        return {
            'valid': result['valid'] and not errors,
            'items': result['items'],
            'totals': totals,
            'errors': errors,
            'coupon': coupon,
            'savings': pricing.calculate_savings(result['items']),
            'qualifies_for_free_shipping': pricing.qualifies_for_free_shipping(subtotal, store),
            'amount_to_free_shipping': pricing.amount_to_free_shipping(subtotal, store),
        }

    async def apply_coupon(self, store_id: str, code: str, items: List[Dict[str, Any]],
                           customer_email: Optional[str] = None,
                           payment_method: Optional[str] = None) -> Dict[str, Any]:
        """
        Preview a coupon against the current cart.

        Raises:
            CouponError: with the validation reason when the coupon does not apply
        """
        store = await self.verify_store(store_id)
        result = await self.validate_cart_items(store_id, items)
        if result['errors'] and not result['items']:
            raise CartValidationError(result['errors'])

        subtotal = pricing.calculate_subtotal(result['items'])
        validation = await self.coupons.validate_coupon(store_id, code, customer_email, subtotal)
        validation.raise_for_error()

        totals = pricing.calculate_cart_total(
            result['items'], store, getattr(payment_method, 'value', payment_method),
            discount=validation.discount_amount,
            free_shipping=validation.is_free_shipping,
        )

        return {
            **validation.to_dict(),
            'totals': totals,
        }


# Global instance (lazy initialization)
_cart_service: Optional[CartService] = None


def get_cart_service() -> CartService:
    """Get or create the global CartService instance"""
    global _cart_service
    if _cart_service is None:
        _cart_service = CartService(
            get_commerce_db(), get_inventory_service(), get_coupon_service()
        )
    return _cart_service
