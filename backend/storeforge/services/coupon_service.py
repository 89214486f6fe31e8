"""
Coupon Service

Store-scoped discount codes:
- Validation runs a fixed sequence of checks and reports the first failure
- Discounts are percentage (optionally capped), fixed amount (capped at the
  subtotal) or free shipping
- Usage is recorded once per (coupon, order) and counted against limits
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from storeforge.core.exceptions import CouponError, DatabaseError, NotFoundError
from storeforge.database.commerce_db import (
    CONDITION_FAILED,
    NOT_FOUND,
    CommerceDatabase,
    get_commerce_db,
)
from storeforge.models.commerce import DiscountType
from storeforge.services.pricing import money_float, to_money

logger = logging.getLogger(__name__)

COUPON_MESSAGES = {
    'not_found': "Invalid coupon code",
    'inactive': "This coupon is no longer active",
    'not_started': "This coupon is not yet active",
    'expired': "This coupon has expired",
    'usage_limit_reached': "This coupon has reached its usage limit",
    'usage_limit_per_customer_reached': "You have already used this coupon",
}


@dataclass
class CouponValidation:
    """Outcome of validate_coupon"""
    valid: bool
    error: Optional[str] = None
    message: str = ""
    coupon: Optional[Dict[str, Any]] = None
    discount_amount: float = 0.0
    is_free_shipping: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def raise_for_error(self) -> None:
        if not self.valid:
            raise CouponError(self.message, self.error, self.details)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'error': self.error,
            'message': self.message,
            'coupon': public_coupon(self.coupon) if self.coupon else None,
            'discount_amount': self.discount_amount,
            'is_free_shipping': self.is_free_shipping,
        }


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """ISO timestamp to naive UTC; accepts a trailing Z"""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def calculate_discount(coupon: Dict[str, Any], subtotal: Any) -> Dict[str, Any]:
    """
    Discount for a subtotal.

    Returns:
        Dict with discount_amount (float, 2 places half-up) and is_free_shipping
    """
    discount_type = coupon.get('discount_type')
    value = Decimal(str(coupon.get('discount_value') or 0))
    subtotal_amount = to_money(subtotal)
    discount = Decimal("0")
    free_shipping = False

    if discount_type == DiscountType.PERCENTAGE.value:
        discount = subtotal_amount * value / Decimal("100")
        cap = coupon.get('maximum_discount_amount')
        if cap is not None:
            discount = min(discount, Decimal(str(cap)))
    elif discount_type == DiscountType.FIXED_AMOUNT.value:
        discount = min(value, subtotal_amount)
    elif discount_type == DiscountType.FREE_SHIPPING.value:
        free_shipping = True

    return {'discount_amount': money_float(discount), 'is_free_shipping': free_shipping}


def format_amount(value: Any) -> str:
    amount = float(value)
    if amount.is_integer():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def format_discount(coupon: Dict[str, Any]) -> str:
    discount_type = coupon.get('discount_type')
    value = coupon.get('discount_value')
    if discount_type == DiscountType.PERCENTAGE.value:
        return f"{format_amount(value)}% off"
    if discount_type == DiscountType.FIXED_AMOUNT.value:
        return f"₹{format_amount(value)} off"
    if discount_type == DiscountType.FREE_SHIPPING.value:
        return "Free Shipping"
    return ""


def is_coupon_valid(coupon: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    """Active, inside its date window and under its usage limit"""
    now = now or datetime.utcnow()
    if not coupon.get('active'):
        return False
    expires_at = parse_timestamp(coupon.get('expires_at'))
    if expires_at and expires_at < now:
        return False
    starts_at = parse_timestamp(coupon.get('starts_at'))
    if starts_at and starts_at > now:
        return False
    usage_limit = coupon.get('usage_limit')
    if usage_limit is not None and coupon.get('usage_count', 0) >= usage_limit:
        return False
    return True


def public_coupon(coupon: Dict[str, Any]) -> Dict[str, Any]:
    return {
        **coupon,
        'formatted_discount': format_discount(coupon),
        'is_valid': is_coupon_valid(coupon),
    }


class CouponService:
    """Coupon validation, usage tracking and merchant CRUD"""

    def __init__(self, db: Optional[CommerceDatabase] = None):
        self.db = db or get_commerce_db()

    async def validate_coupon(self, store_id: str, code: str, customer_email: Optional[str],
                              subtotal: Any, now: Optional[datetime] = None) -> CouponValidation:
        """
        Validate a code for a cart subtotal.

        Checks, in order: not_found, inactive, not_started, expired,
        usage_limit_reached, usage_limit_per_customer_reached, minimum_not_met.
        """
        now = now or datetime.utcnow()

        def _invalid(error: str, message: Optional[str] = None, **details) -> CouponValidation:
            return CouponValidation(
                valid=False, error=error, message=message or COUPON_MESSAGES[error], details=details
            )

        result = await self.db.get_coupon(store_id, normalize_code(code))
        if not result.success:
            if result.error_code != NOT_FOUND:
                raise DatabaseError("Failed to load coupon", {"code": normalize_code(code)})
            return _invalid('not_found')
        coupon = result.data

        if not coupon.get('active'):
            return _invalid('inactive')

        starts_at = parse_timestamp(coupon.get('starts_at'))
        if starts_at and starts_at > now:
            return _invalid('not_started')

        expires_at = parse_timestamp(coupon.get('expires_at'))
        if expires_at and expires_at < now:
            return _invalid('expired')

        usage_limit = coupon.get('usage_limit')
        if usage_limit is not None and coupon.get('usage_count', 0) >= usage_limit:
            return _invalid('usage_limit_reached')

        per_customer = coupon.get('usage_limit_per_customer')
        if per_customer and customer_email:
            usage_result = await self.db.count_customer_coupon_usage(
                coupon['coupon_id'], customer_email.strip().lower()
            )
            if not usage_result.success:
                raise DatabaseError("Failed to read coupon usage", {"code": coupon['code']})
            if usage_result.data >= per_customer:
                return _invalid('usage_limit_per_customer_reached')

        minimum = coupon.get('minimum_order_value')
        if minimum is not None and to_money(subtotal) < to_money(minimum):
            return _invalid(
                'minimum_not_met',
                f"Minimum order value ₹{format_amount(minimum)} required",
                minimum_order_value=minimum,
            )

        discount = calculate_discount(coupon, subtotal)
        if discount['is_free_shipping']:
            message = "Free shipping applied!"
        elif discount['discount_amount'] > 0:
            message = f"Coupon applied! You saved ₹{format_amount(discount['discount_amount'])}"
        else:
            message = ""

        return CouponValidation(
            valid=True,
            message=message,
            coupon=coupon,
            discount_amount=discount['discount_amount'],
            is_free_shipping=discount['is_free_shipping'],
        )

    async def record_coupon_usage(self, coupon: Dict[str, Any], order_id: str,
                                  customer_email: str, discount_amount: Any) -> bool:
        """
        Record one use of a coupon by an order.

        Returns False when the order already recorded a use (nothing changes)
        or when the write fails.
        """
        usage = {
            'coupon_id': coupon['coupon_id'],
            'order_id': order_id,
            'store_id': coupon['store_id'],
            'code': coupon['code'],
            'customer_email': (customer_email or "").strip().lower(),
            'discount_amount': money_float(discount_amount),
            'created_at': datetime.utcnow().isoformat(),
        }

        result = await self.db.create_coupon_usage(usage)
        if not result.success:
            if result.error_code == CONDITION_FAILED:
                logger.info(f"Coupon {coupon['code']} usage already recorded for order {order_id}")
            else:
                logger.error(f"Failed to record coupon usage for order {order_id}: {result.error}")
            return False

        increment = await self.db.increment_coupon_usage(coupon['store_id'], coupon['code'])
        if not increment.success:
            logger.warning(
                f"Coupon {coupon['code']} usage count not incremented for order {order_id}: "
                f"{increment.error_code}"
            )
            return False

        logger.info(f"Recorded coupon {coupon['code']} usage for order {order_id}")
        return True

    # =========================================================================
    # Merchant CRUD
    # =========================================================================

    async def get_coupon(self, store_id: str, code: str) -> Dict[str, Any]:
        result = await self.db.get_coupon(store_id, normalize_code(code))
        if not result.success:
            if result.error_code == NOT_FOUND:
                raise NotFoundError(f"Coupon '{normalize_code(code)}' not found", {"code": normalize_code(code)})
            raise DatabaseError("Failed to load coupon")
        return result.data

    async def list_coupons(self, store_id: str) -> List[Dict[str, Any]]:
        result = await self.db.list_coupons(store_id)
        if not result.success:
            raise DatabaseError("Failed to list coupons", {"store_id": store_id})
        coupons = sorted(result.data, key=lambda c: c.get('created_at', ''), reverse=True)
        return [public_coupon(c) for c in coupons]

    async def create_coupon(self, store_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        now = datetime.utcnow().isoformat()
        coupon = {
            **data,
            'coupon_id': str(uuid.uuid4()),
            'store_id': store_id,
            'code': normalize_code(data['code']),
            'discount_type': getattr(data['discount_type'], 'value', data['discount_type']),
            'usage_count': 0,
            'created_at': now,
            'updated_at': now,
        }

        result = await self.db.create_coupon(coupon)
        if not result.success:
            if result.error_code == CONDITION_FAILED:
                raise CouponError(
                    f"Coupon code '{coupon['code']}' already exists",
                    "duplicate_code",
                    {"code": coupon['code']},
                    status_code=409,
                )
            raise DatabaseError("Failed to create coupon", {"code": coupon['code']})

        logger.info(f"Created coupon {coupon['code']} for store {store_id}")
        return public_coupon(coupon)

    async def update_coupon(self, store_id: str, code: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        coupon = await self.get_coupon(store_id, code)

        if coupon.get('discount_type') == DiscountType.PERCENTAGE.value:
            value = updates.get('discount_value')
            if value is not None and value > 100:
                raise CouponError("Percentage discount cannot exceed 100", "invalid_value")

        updates = {**updates, 'updated_at': datetime.utcnow().isoformat()}
        result = await self.db.update_coupon(store_id, coupon['code'], updates)
        if not result.success:
            raise DatabaseError("Failed to update coupon", {"code": coupon['code']})
        return public_coupon(result.data)

    async def delete_coupon(self, store_id: str, code: str) -> None:
        coupon = await self.get_coupon(store_id, code)
        result = await self.db.delete_coupon(store_id, coupon['code'])
        if not result.success:
            raise DatabaseError("Failed to delete coupon", {"code": coupon['code']})
        logger.info(f"Deleted coupon {coupon['code']} for store {store_id}")


# Global instance (lazy initialization)
_coupon_service: Optional[CouponService] = None


def get_coupon_service() -> CouponService:
    """Get or create the global CouponService instance"""
    global _coupon_service
    if _coupon_service is None:
        _coupon_service = CouponService()
    return _coupon_service
