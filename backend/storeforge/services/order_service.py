"""
Order Service

Checkout and the order lifecycle across the orders, reservations, variants,
coupons and refunds tables. There is no transactional workflow engine:

1. Checkout reserves stock before the order row is written, and a failure
   after that point runs compensations (release reservation, delete order)
2. Stock is committed once per order, when payment is captured (online) or
   at creation (COD), guarded by the `inventory_committed` flag
3. Stock is restored at most once, guarded by the `inventory_restored` flag
4. Status changes are conditional writes on the previous status

Failed compensations are logged at CRITICAL for manual follow-up.
"""

import logging
import secrets
import string
import time
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from storeforge.core.config import settings
from storeforge.core.exceptions import (
    CartValidationError,
    DatabaseError,
    InvalidStatusTransitionError,
    OrderError,
    OrderNotFoundError,
    OrderValidationError,
    PaymentError,
    PaymentSignatureError,
    RefundError,
)
from storeforge.database.commerce_db import (
    CONDITION_FAILED,
    NOT_FOUND,
    CommerceDatabase,
    get_commerce_db,
)
from storeforge.models.commerce import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
)
from storeforge.services import pricing
from storeforge.services.cart_service import CartService, get_cart_service
from storeforge.services.coupon_service import CouponService, get_coupon_service
from storeforge.services.inventory_service import InventoryService, get_inventory_service
from storeforge.services.payment_service import (
    PaymentService,
    from_paise,
    get_payment_service,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Status machine
# =============================================================================

VALID_TRANSITIONS: Dict[str, List[str]] = {
    OrderStatus.PENDING.value: [
        OrderStatus.CONFIRMED.value, OrderStatus.PROCESSING.value, OrderStatus.CANCELLED.value,
    ],
    OrderStatus.CONFIRMED.value: [
        OrderStatus.PROCESSING.value, OrderStatus.PACKED.value,
        OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value,
    ],
    OrderStatus.PROCESSING.value: [
        OrderStatus.PACKED.value, OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value,
    ],
    OrderStatus.PACKED.value: [OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value],
    OrderStatus.SHIPPED.value: [
        OrderStatus.OUT_FOR_DELIVERY.value, OrderStatus.DELIVERED.value,
        OrderStatus.RETURNED.value, OrderStatus.CANCELLED.value,
    ],
    OrderStatus.OUT_FOR_DELIVERY.value: [OrderStatus.DELIVERED.value, OrderStatus.RETURNED.value],
    OrderStatus.DELIVERED.value: [OrderStatus.RETURNED.value],
    OrderStatus.RETURNED.value: [],
    OrderStatus.CANCELLED.value: [],
    OrderStatus.REFUNDED.value: [],
}

CANCELLABLE_STATUSES = (
    OrderStatus.PENDING.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.PACKED.value,
)

STATUS_TIMESTAMPS = {
    OrderStatus.CONFIRMED.value: 'confirmed_at',
    OrderStatus.SHIPPED.value: 'shipped_at',
    OrderStatus.DELIVERED.value: 'delivered_at',
    OrderStatus.CANCELLED.value: 'cancelled_at',
    OrderStatus.RETURNED.value: 'returned_at',
}

# Fields hidden from the public order lookup
_PRIVATE_ORDER_FIELDS = (
    'razorpay_order_id', 'razorpay_payment_id', 'merchant_notes',
    'inventory_committed', 'inventory_restored',
)

_ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def get_valid_transitions(status: str) -> List[str]:
    return VALID_TRANSITIONS.get(status, [])


def can_transition(current: str, requested: str) -> bool:
    return requested in get_valid_transitions(current)


def generate_order_number() -> str:
    """ORD-<epoch ms>-<5 random characters>"""
    suffix = "".join(secrets.choice(_ORDER_NUMBER_ALPHABET) for _ in range(5))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def public_order(order: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in order.items() if k not in _PRIVATE_ORDER_FIELDS}


def _now() -> str:
    return datetime.utcnow().isoformat()


def _value(enum_or_str: Any) -> Optional[str]:
    return getattr(enum_or_str, 'value', enum_or_str)


class OrderService:
    """Checkout, payment confirmation, webhooks, fulfilment and refunds"""

    def __init__(self, db: Optional[CommerceDatabase] = None,
                 inventory: Optional[InventoryService] = None,
                 coupons: Optional[CouponService] = None,
                 payments: Optional[PaymentService] = None,
                 carts: Optional[CartService] = None):
        self.db = db or get_commerce_db()
        self.inventory = inventory or InventoryService(self.db)
        self.coupons = coupons or CouponService(self.db)
        self.payments = payments or get_payment_service()
        self.carts = carts or CartService(self.db, self.inventory, self.coupons)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        result = await self.db.get_order(order_id)
        if not result.success:
            if result.error_code == NOT_FOUND:
                raise OrderNotFoundError(order_id)
            raise DatabaseError("Failed to load order", {"order_id": order_id})
        return result.data

    async def lookup_order(self, order_number: str) -> Dict[str, Any]:
        """Storefront order tracking by order number, without payment internals"""
        result = await self.db.get_order_by_number(order_number)
        if not result.success:
            if result.error_code == NOT_FOUND:
                raise OrderNotFoundError(order_number)
            raise DatabaseError("Failed to load order", {"order_number": order_number})
        return public_order(result.data)

    async def list_store_orders(self, store_id: str, status: Optional[str] = None,
                                limit: int = 50, cursor: Optional[str] = None) -> Dict[str, Any]:
        result = await self.db.list_store_orders(store_id, _value(status), limit, cursor)
        if not result.success:
            raise DatabaseError("Failed to list orders", {"store_id": store_id})
        return {'orders': result.data, 'next_cursor': result.next_cursor}

    async def list_refunds(self, order_id: str) -> List[Dict[str, Any]]:
        result = await self.db.list_refunds(order_id)
        if not result.success:
            raise DatabaseError("Failed to list refunds", {"order_id": order_id})
        return result.data

    async def list_store_refunds(self, store_id: str, status: Optional[str] = None,
                                 limit: int = 50, cursor: Optional[str] = None) -> Dict[str, Any]:
        """Refunds across the store, newest first"""
        result = await self.db.list_store_refunds(store_id, _value(status), limit, cursor)
        if not result.success:
            raise DatabaseError("Failed to list refunds", {"store_id": store_id})
        return {'refunds': result.data, 'next_cursor': result.next_cursor}

    # =========================================================================
    # Checkout
    # =========================================================================

    async def create_order(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Place an order from a storefront checkout.

        Steps: validate cart, check COD, validate coupon, compute totals,
        reserve stock, persist the order, then either create the Razorpay
        order (online) or confirm at once (COD).

        Returns:
            Dict with `order` and, for online payment, `razorpay` checkout
            parameters (key_id, order_id, amount in paise, currency)

        Raises:
            CartValidationError, OrderValidationError, CouponError,
            InsufficientStockError, PaymentError
        """
        store_id = request['store_id']
        payment_method = _value(request.get('payment_method')) or PaymentMethod.RAZORPAY.value
        customer_email = (request.get('customer_email') or "").strip().lower()

        store = await self.carts.verify_store(store_id)
        validation = await self.carts.validate_cart_items(store_id, request['items'])
        problems = list(validation['errors'])
        for line in validation['items']:
            for issue in line['issues'] or []:
                problems.append(f"{line['title']}: {issue}")
        if problems:
            raise CartValidationError(problems)
        lines = validation['items']

        shipping_settings = pricing.get_shipping_settings(store)
        if payment_method == PaymentMethod.COD.value and not shipping_settings['cod_enabled']:
            raise OrderValidationError("Cash on delivery is not available for this store")

        subtotal = pricing.calculate_subtotal(lines)
        discount = 0.0
        free_shipping = False
        coupon_code = None
        if request.get('coupon_code'):
            coupon_result = await self.coupons.validate_coupon(
                store_id, request['coupon_code'], customer_email, subtotal
            )
            coupon_result.raise_for_error()
            discount = coupon_result.discount_amount
            free_shipping = coupon_result.is_free_shipping
            coupon_code = coupon_result.coupon['code']

        totals = pricing.calculate_cart_total(
            lines, store, payment_method, discount=discount, free_shipping=free_shipping
        )
        if payment_method == PaymentMethod.RAZORPAY.value and totals['total'] <= 0:
            raise OrderValidationError("Order total must be greater than zero for online payment")

        order_id = str(uuid.uuid4())
        now = _now()
        order = {
            'order_id': order_id,
            'order_number': generate_order_number(),
            'store_id': store_id,
            'customer_name': request['customer_name'],
            'customer_email': customer_email,
            'customer_phone': request['customer_phone'],
            'shipping_address': request['shipping_address'],
            'items': [
                {
                    'product_id': line['product_id'],
                    'variant_id': line['variant_id'],
                    'variant_attributes': line['variant_attributes'],
                    'variant_title': line['variant_title'],
                    'sku': line['sku'],
                    'title': line['title'],
                    'image_url': line.get('image_url'),
                    'quantity': line['quantity'],
                    'unit_price': line['unit_price'],
                    'total': line['subtotal'],
                }
                for line in lines
            ],
            'subtotal': totals['subtotal'],
            'shipping': totals['shipping'],
            'tax': totals['tax'],
            'discount': totals['discount'],
            'total': totals['total'],
            'coupon_code': coupon_code,
            'payment_method': payment_method,
            'payment_status': PaymentStatus.PENDING.value,
            'status': OrderStatus.PENDING.value,
            'notes': request.get('notes'),
            'inventory_committed': False,
            'inventory_restored': False,
            'created_at': now,
            'updated_at': now,
        }

        logger.info(f"Starting checkout for order {order['order_number']} ({order_id}) in store {store_id}")

        # Reserve first; nothing to compensate if this raises
        await self.inventory.reserve_inventory(order['items'], order_id)

        create_result = await self.db.create_order(order)
        if not create_result.success:
            logger.error(f"Order {order_id} could not be persisted: {create_result.error}")
            await self._compensate_checkout(order_id, delete_order=False)
            raise DatabaseError("Failed to create order", {"order_id": order_id})

        if payment_method == PaymentMethod.COD.value:
            order = await self._confirm_cod_order(order)
            return {'order': order, 'razorpay': None}

        provider = await self.payments.create_order(
            totals['total'],
            settings.CURRENCY,
            receipt=order['order_number'],
            notes={'order_id': order_id, 'store_id': store_id},
        )
        if not provider['success']:
            await self._compensate_checkout(order_id, delete_order=True)
            raise PaymentError(
                "Failed to initialize payment",
                "PAYMENT_PROVIDER_ERROR",
                {"order_id": order_id, "provider_error": provider.get('error')},
                status_code=502,
            )

        razorpay_order = provider['order']
        update = await self.db.update_order(
            order_id, {'razorpay_order_id': razorpay_order['id'], 'updated_at': _now()}
        )
        if not update.success:
            await self._compensate_checkout(order_id, delete_order=True)
            raise DatabaseError("Failed to attach payment to order", {"order_id": order_id})

        logger.info(f"Order {order_id} awaiting payment on Razorpay order {razorpay_order['id']}")
        return {
            'order': update.data,
            'razorpay': {
                'key_id': self.payments.key_id,
                'order_id': razorpay_order['id'],
                'amount': razorpay_order['amount'],
                'currency': razorpay_order['currency'],
            },
        }

    async def _compensate_checkout(self, order_id: str, delete_order: bool) -> None:
        """Undo a half-finished checkout"""
        logger.info(f"Executing checkout compensation for order {order_id}")

        try:
            await self.inventory.release_reservation(order_id)
        except DatabaseError as e:
            logger.critical(
                f"CRITICAL: Reservation release FAILED for abandoned order {order_id}! "
                f"Stock stays held until expiry. Error: {e.message}"
            )

        if delete_order:
            result = await self.db.delete_order(order_id)
            if not result.success:
                logger.critical(
                    f"CRITICAL: Failed to delete abandoned order {order_id}! "
                    f"Manual intervention required. Error: {result.error}"
                )

    async def _confirm_cod_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        now = _now()
        result = await self.db.update_order(
            order['order_id'],
            {'status': OrderStatus.CONFIRMED.value, 'confirmed_at': now, 'updated_at': now},
            expected_status=OrderStatus.PENDING.value,
        )
        if not result.success:
            await self._compensate_checkout(order['order_id'], delete_order=True)
            raise DatabaseError("Failed to confirm order", {"order_id": order['order_id']})

        confirmed = result.data
        await self._commit_inventory(confirmed)
        await self._release_reservation(confirmed['order_id'])
        await self._record_coupon_usage(confirmed)

        logger.info(f"COD order {confirmed['order_id']} confirmed")
        return await self.get_order(confirmed['order_id'])

    # =========================================================================
    # Payment confirmation
    # =========================================================================

    async def verify_payment(self, order_id: str, razorpay_order_id: str,
                             razorpay_payment_id: str, razorpay_signature: str) -> Dict[str, Any]:
        """
        Client-side payment callback.

        Raises:
            PaymentError: the Razorpay order does not belong to this order
            PaymentSignatureError: the signature does not verify
        """
        order = await self.get_order(order_id)
        if order.get('razorpay_order_id') != razorpay_order_id:
            raise PaymentError(
                "Payment does not match this order", "PAYMENT_MISMATCH", {"order_id": order_id}
            )

        if not self.payments.verify_payment_signature(razorpay_order_id, razorpay_payment_id,
                                                      razorpay_signature):
            raise PaymentSignatureError(details={"order_id": order_id})

        return await self.confirm_payment(order, razorpay_payment_id, source="client")

    async def confirm_payment(self, order: Dict[str, Any], razorpay_payment_id: str,
                              source: str = "webhook") -> Dict[str, Any]:
        """
        Mark an order paid and run the post-payment side effects.

        Idempotent: an order already paid is returned unchanged. A payment
        captured after the order was cancelled is recorded without committing
        stock.
        """
        order_id = order['order_id']
        if order.get('payment_status') == PaymentStatus.PAID.value:
            logger.info(f"Payment for order {order_id} already confirmed ({source})")
            return order

        now = _now()
        updates = {
            'payment_status': PaymentStatus.PAID.value,
            'razorpay_payment_id': razorpay_payment_id,
            'paid_at': now,
            'updated_at': now,
        }

        if order.get('status') == OrderStatus.CANCELLED.value:
            result = await self.db.update_order(
                order_id, updates, expected_payment_status=order.get('payment_status')
            )
            logger.warning(
                f"Payment {razorpay_payment_id} captured for cancelled order {order_id}; "
                f"refund required"
            )
            return result.data if result.success else await self.get_order(order_id)

        expected_status = None
        if order.get('status') == OrderStatus.PENDING.value:
            updates['status'] = OrderStatus.CONFIRMED.value
            updates['confirmed_at'] = now
            expected_status = OrderStatus.PENDING.value

        result = await self.db.update_order(
            order_id, updates,
            expected_status=expected_status,
            expected_payment_status=order.get('payment_status'),
        )
        if not result.success:
            if result.error_code == CONDITION_FAILED:
                logger.info(f"Order {order_id} changed while confirming payment ({source}); re-reading")
                return await self.get_order(order_id)
            raise DatabaseError("Failed to confirm payment", {"order_id": order_id})

        paid = result.data
        await self._commit_inventory(paid)
        await self._release_reservation(order_id)
        await self._record_coupon_usage(paid)

        logger.info(f"Payment {razorpay_payment_id} confirmed for order {order_id} ({source})")
        return await self.get_order(order_id)

    # =========================================================================
    # Webhooks
    # =========================================================================

    async def handle_webhook_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Dispatch a verified Razorpay webhook event.

        Returns:
            Dict with `handled` and the event name; unknown events are
            acknowledged but not handled
        """
        event_type = event.get('event', '')
        payload = event.get('payload') or {}
        handlers = {
            'payment.captured': self._on_payment_captured,
            'payment.failed': self._on_payment_failed,
            'refund.created': self._on_refund_event,
            'refund.processed': self._on_refund_event,
            'refund.failed': self._on_refund_event,
        }

        handler = handlers.get(event_type)
        if handler is None:
            logger.info(f"Ignoring webhook event {event_type}")
            return {'handled': False, 'event': event_type}

        logger.info(f"Handling webhook event {event_type}")
        return {'event': event_type, **await handler(event_type, payload)}

    async def _find_order_for_payment(self, payment: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        razorpay_order_id = payment.get('order_id')
        if razorpay_order_id:
            result = await self.db.get_order_by_razorpay_order_id(razorpay_order_id)
            if result.success:
                return result.data

        order_id = (payment.get('notes') or {}).get('order_id')
        if order_id:
            result = await self.db.get_order(order_id)
            if result.success:
                return result.data
        return None

    async def _on_payment_captured(self, event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        payment = (payload.get('payment') or {}).get('entity') or {}
        order = await self._find_order_for_payment(payment)
        if order is None:
            logger.warning(f"No order for captured payment {payment.get('id')}")
            return {'handled': False, 'reason': 'order_not_found'}

        await self.confirm_payment(order, payment['id'], source="webhook")
        return {'handled': True, 'order_id': order['order_id']}

    async def _on_payment_failed(self, event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        payment = (payload.get('payment') or {}).get('entity') or {}
        order = await self._find_order_for_payment(payment)
        if order is None:
            logger.warning(f"No order for failed payment {payment.get('id')}")
            return {'handled': False, 'reason': 'order_not_found'}

        order_id = order['order_id']
        if order.get('payment_status') == PaymentStatus.PAID.value:
            logger.info(f"Ignoring payment.failed for already paid order {order_id}")
            return {'handled': True, 'order_id': order_id}

        now = _now()
        updates = {
            'payment_status': PaymentStatus.FAILED.value,
            'payment_error': payment.get('error_description'),
            'updated_at': now,
        }
        expected_status = None
        if order.get('status') == OrderStatus.PENDING.value:
            updates.update({
                'status': OrderStatus.CANCELLED.value,
                'cancelled_at': now,
                'cancellation_reason': "Payment failed",
            })
            expected_status = OrderStatus.PENDING.value

        result = await self.db.update_order(
            order_id, updates,
            expected_status=expected_status,
            expected_payment_status=order.get('payment_status'),
        )
        if not result.success and result.error_code != CONDITION_FAILED:
            raise DatabaseError("Failed to record payment failure", {"order_id": order_id})

        await self._release_reservation(order_id)
        logger.info(f"Payment failed for order {order_id}")
        return {'handled': True, 'order_id': order_id}

    async def _on_refund_event(self, event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        refund = (payload.get('refund') or {}).get('entity') or {}
        status = {
            'refund.created': RefundStatus.PENDING.value,
            'refund.processed': RefundStatus.PROCESSED.value,
            'refund.failed': RefundStatus.FAILED.value,
        }[event_type]

        order_result = await self.db.get_order_by_payment_id(refund.get('payment_id', ''))
        if not order_result.success:
            logger.warning(f"No order for refund {refund.get('id')} on payment {refund.get('payment_id')}")
            return {'handled': False, 'reason': 'order_not_found'}
        order = order_result.data

        existing = await self.db.get_refund_by_provider_id(refund['id'])
        now = _now()
        if existing.success:
            record = existing.data
            if event_type == 'refund.created':
                logger.info(f"Refund {refund['id']} already recorded")
                return {'handled': True, 'order_id': order['order_id']}
            if record.get('status') != status:
                updates = {'status': status, 'updated_at': now}
                if status == RefundStatus.PROCESSED.value:
                    updates['processed_at'] = now
                result = await self.db.update_refund(record['refund_id'], updates)
                if not result.success:
                    raise DatabaseError("Failed to update refund", {"refund_id": record['refund_id']})
        elif existing.error_code == NOT_FOUND:
            record = self._refund_record(
                order,
                amount=from_paise(refund.get('amount', 0)),
                reason=(refund.get('notes') or {}).get('reason') or "Refund via Razorpay",
                status=status,
                razorpay_refund_id=refund['id'],
            )
            result = await self.db.create_refund(record)
            if not result.success:
                raise DatabaseError("Failed to record refund", {"razorpay_refund_id": refund['id']})
        else:
            raise DatabaseError("Failed to load refund", {"razorpay_refund_id": refund['id']})

        if status == RefundStatus.FAILED.value:
            logger.warning(f"Refund {refund['id']} failed for order {order['order_id']}")
        if status != RefundStatus.PENDING.value:
            await self._sync_refund_totals(order['order_id'])

        return {'handled': True, 'order_id': order['order_id']}

    async def _sync_refund_totals(self, order_id: str) -> None:
        """
        Recompute `refunded_amount` from processed refunds, and mark the order
        refunded once they cover its total.
        """
        order = await self.get_order(order_id)
        if order.get('payment_status') == PaymentStatus.REFUNDED.value:
            return

        refunds = await self.list_refunds(order_id)
        processed = sum(
            (pricing.to_money(r['amount']) for r in refunds if r.get('status') == RefundStatus.PROCESSED.value),
            Decimal("0"),
        )
        if processed >= pricing.to_money(order['total']):
            await self._mark_refunded(order, processed)
            return

        if pricing.to_money(order.get('refunded_amount')) != processed:
            result = await self.db.update_order(order_id, {
                'refunded_amount': pricing.money_float(processed),
                'updated_at': _now(),
            })
            if not result.success:
                raise DatabaseError("Failed to update refunded amount", {"order_id": order_id})

    # =========================================================================
    # Fulfilment
    # =========================================================================

    async def update_order_status(self, order_id: str, status: Optional[str] = None,
                                  tracking_number: Optional[str] = None,
                                  courier_name: Optional[str] = None,
                                  notes: Optional[str] = None) -> Dict[str, Any]:
        """
        Merchant status / tracking update.

        Raises:
            InvalidStatusTransitionError: the transition is not allowed
            OrderError: the order changed concurrently (409)
        """
        order = await self.get_order(order_id)
        current = order.get('status')
        requested = _value(status)

        if requested and requested != current:
            if not can_transition(current, requested):
                raise InvalidStatusTransitionError(current, requested, get_valid_transitions(current))
            if requested == OrderStatus.CANCELLED.value:
                return await self._cancel(order, reason=notes)

        now = _now()
        updates: Dict[str, Any] = {'updated_at': now}
        if requested and requested != current:
            updates['status'] = requested
            timestamp_field = STATUS_TIMESTAMPS.get(requested)
            if timestamp_field:
                updates[timestamp_field] = now
        if tracking_number is not None:
            updates['tracking_number'] = tracking_number
        if courier_name is not None:
            updates['courier_name'] = courier_name
        if notes is not None:
            updates['merchant_notes'] = notes

        result = await self.db.update_order(order_id, updates, expected_status=current)
        if not result.success:
            if result.error_code == CONDITION_FAILED:
                raise OrderError(
                    "Order was modified by another request, please retry",
                    "ORDER_CONFLICT", {"order_id": order_id}, status_code=409,
                )
            raise DatabaseError("Failed to update order", {"order_id": order_id})

        if 'status' in updates:
            logger.info(f"Order {order_id} status {current} -> {requested}")
        return result.data

    async def cancel_order(self, order_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """
        Cancel an order that has not shipped.

        Shipped orders can still be cancelled through `update_order_status`.
        """
        order = await self.get_order(order_id)
        current = order.get('status')
        if current not in CANCELLABLE_STATUSES:
            raise InvalidStatusTransitionError(
                current, OrderStatus.CANCELLED.value,
                [s for s in get_valid_transitions(current) if s != OrderStatus.CANCELLED.value],
            )
        return await self._cancel(order, reason)

    async def _cancel(self, order: Dict[str, Any], reason: Optional[str]) -> Dict[str, Any]:
        """
        Move the order to cancelled and run the side effects.

        Paid online orders are refunded in full, committed stock is restored
        once and reservations are released.
        """
        order_id = order['order_id']
        current = order.get('status')
        now = _now()
        result = await self.db.update_order(
            order_id,
            {
                'status': OrderStatus.CANCELLED.value,
                'cancelled_at': now,
                'cancellation_reason': reason or "Cancelled by merchant",
                'updated_at': now,
            },
            expected_status=current,
        )
        if not result.success:
            if result.error_code == CONDITION_FAILED:
                raise OrderError(
                    "Order was modified by another request, please retry",
                    "ORDER_CONFLICT", {"order_id": order_id}, status_code=409,
                )
            raise DatabaseError("Failed to cancel order", {"order_id": order_id})

        cancelled = result.data
        logger.info(f"Order {order_id} cancelled from {current}")

        if (cancelled.get('payment_method') == PaymentMethod.RAZORPAY.value
                and cancelled.get('payment_status') == PaymentStatus.PAID.value
                and cancelled.get('razorpay_payment_id')):
            refundable = await self._refundable_amount(cancelled)
            if refundable > 0:
                try:
                    await self._issue_refund(cancelled, refundable, reason or "Order cancelled")
                except RefundError as e:
                    logger.critical(
                        f"CRITICAL: Order {order_id} cancelled but refund FAILED! "
                        f"Manual refund required. Error: {e.message}"
                    )

        await self._restore_inventory(await self.get_order(order_id))
        await self._release_reservation(order_id)
        return await self.get_order(order_id)

    # =========================================================================
    # Refunds
    # =========================================================================

    async def refund_order(self, order_id: str, amount: Any, reason: str) -> Dict[str, Any]:
        """
        Refund part or all of a paid online order.

        Raises:
            RefundError: not paid, no online payment, bad amount, or over the
                refundable balance
        """
        order = await self.get_order(order_id)
        if order.get('payment_status') != PaymentStatus.PAID.value:
            raise RefundError("Only paid orders can be refunded", {"order_id": order_id})
        if not order.get('razorpay_payment_id'):
            raise RefundError("Order has no online payment to refund", {"order_id": order_id})

        refund_amount = pricing.to_money(amount)
        if refund_amount <= 0:
            raise RefundError("Refund amount must be greater than zero", {"order_id": order_id})

        refundable = await self._refundable_amount(order)
        if refund_amount > refundable:
            raise RefundError(
                "Refund amount exceeds the refundable balance",
                {"order_id": order_id, "refundable": float(refundable)},
            )

        record = await self._issue_refund(order, refund_amount, reason)
        return {'refund': record, 'order': await self.get_order(order_id)}

    async def _refundable_amount(self, order: Dict[str, Any]) -> Decimal:
        """Order total minus pending and processed refunds"""
        refunds = await self.list_refunds(order['order_id'])
        already = sum(
            (pricing.to_money(r['amount']) for r in refunds
             if r.get('status') in (RefundStatus.PENDING.value, RefundStatus.PROCESSED.value)),
            Decimal("0"),
        )
        return max(Decimal("0"), pricing.to_money(order['total']) - already)

    def _refund_record(self, order: Dict[str, Any], amount: Any, reason: str, status: str,
                       razorpay_refund_id: Optional[str] = None) -> Dict[str, Any]:
        now = _now()
        record = {
            'refund_id': str(uuid.uuid4()),
            'order_id': order['order_id'],
            'store_id': order['store_id'],
            'order_number': order.get('order_number'),
            'customer_name': order.get('customer_name'),
            'customer_email': order.get('customer_email'),
            'razorpay_payment_id': order.get('razorpay_payment_id'),
            'razorpay_refund_id': razorpay_refund_id,
            'amount': pricing.money_float(amount),
            'reason': reason,
            'status': status,
            'created_at': now,
            'updated_at': now,
        }
        if status == RefundStatus.PROCESSED.value:
            record['processed_at'] = now
        return record

    async def _issue_refund(self, order: Dict[str, Any], amount: Decimal, reason: str) -> Dict[str, Any]:
        order_id = order['order_id']
        refundable_before = await self._refundable_amount(order)

        provider = await self.payments.refund_payment(
            order['razorpay_payment_id'], amount, notes={'order_id': order_id, 'reason': reason}
        )
        if not provider['success']:
            raise RefundError(
                "Refund could not be processed by the payment provider",
                {"order_id": order_id, "provider_error": provider.get('error')},
                status_code=502,
            )

        provider_refund = provider['refund']
        status = (
            RefundStatus.PROCESSED.value if provider_refund.get('status') == 'processed'
            else RefundStatus.PENDING.value
        )
        record = await self._save_refund(order, amount, reason, status, provider_refund.get('id'))
        logger.info(f"Refund of {record['amount']} issued for order {order_id}")

        if amount >= refundable_before:
            await self._mark_refunded(await self.get_order(order_id), pricing.to_money(order['total']))
        else:
            await self._sync_refund_totals(order_id)
        return record

    async def _save_refund(self, order: Dict[str, Any], amount: Decimal, reason: str, status: str,
                           razorpay_refund_id: Optional[str]) -> Dict[str, Any]:
        """Record an issued refund, completing the row a webhook may already have written for it"""
        order_id = order['order_id']
        existing = None
        if razorpay_refund_id:
            lookup = await self.db.get_refund_by_provider_id(razorpay_refund_id)
            if lookup.success:
                existing = lookup.data
            elif lookup.error_code != NOT_FOUND:
                logger.error(f"Could not check refund {razorpay_refund_id} for order {order_id}: {lookup.error}")

        if existing:
            updates = {'reason': reason, 'updated_at': _now()}
            if existing.get('status') == RefundStatus.PENDING.value and status == RefundStatus.PROCESSED.value:
                updates['status'] = status
                updates['processed_at'] = updates['updated_at']
            result = await self.db.update_refund(existing['refund_id'], updates)
            if not result.success:
                logger.error(f"Refund {razorpay_refund_id} for order {order_id} not updated: {result.error}")
                return {**existing, **updates}
            return result.data

        record = self._refund_record(order, amount, reason, status, razorpay_refund_id)
        result = await self.db.create_refund(record)
        if not result.success:
            logger.critical(
                f"CRITICAL: Refund {razorpay_refund_id} issued for order {order_id} "
                f"but not recorded! Amount: {record['amount']}. Error: {result.error}"
            )
        return record

    async def _mark_refunded(self, order: Dict[str, Any], refunded_total: Decimal) -> None:
        order_id = order['order_id']
        if order.get('payment_status') == PaymentStatus.REFUNDED.value:
            return

        now = _now()
        updates = {
            'payment_status': PaymentStatus.REFUNDED.value,
            'refunded_amount': pricing.money_float(refunded_total),
            'refunded_at': now,
            'updated_at': now,
        }
        if order.get('status') != OrderStatus.CANCELLED.value:
            updates['status'] = OrderStatus.REFUNDED.value

        result = await self.db.update_order(
            order_id, updates, expected_payment_status=order.get('payment_status')
        )
        if not result.success:
            if result.error_code == CONDITION_FAILED:
                return
            raise DatabaseError("Failed to mark order refunded", {"order_id": order_id})

        logger.info(f"Order {order_id} fully refunded")
        await self._restore_inventory(result.data)
        await self._release_reservation(order_id)

    # =========================================================================
    # Side effects
    # =========================================================================

    async def _commit_inventory(self, order: Dict[str, Any]) -> None:
        order_id = order['order_id']
        claim = await self.db.claim_order_flag(order_id, 'inventory_committed')
        if not claim.success:
            if claim.error_code == CONDITION_FAILED:
                logger.info(f"Inventory already committed for order {order_id}")
                return
            logger.critical(
                f"CRITICAL: Could not claim stock commit for order {order_id}! "
                f"Manual intervention required. Error: {claim.error}"
            )
            return

        summary = await self.inventory.reduce_inventory(order['items'])
        if not summary['success']:
            logger.critical(
                f"CRITICAL: Stock commit FAILED for order {order_id}! "
                f"Manual intervention required. Failed: {summary['failed']}"
            )

    async def _restore_inventory(self, order: Dict[str, Any]) -> None:
        order_id = order['order_id']
        if not order.get('inventory_committed'):
            return

        claim = await self.db.claim_order_flag(order_id, 'inventory_restored')
        if not claim.success:
            if claim.error_code == CONDITION_FAILED:
                logger.info(f"Inventory already restored for order {order_id}")
                return
            logger.critical(
                f"CRITICAL: Could not claim stock restore for order {order_id}! "
                f"Manual intervention required. Error: {claim.error}"
            )
            return

        summary = await self.inventory.restore_inventory(order['items'])
        if not summary['success']:
            logger.critical(
                f"CRITICAL: Stock restoration FAILED for order {order_id}! "
                f"Manual intervention required. Failed: {summary['failed']}"
            )

    async def _release_reservation(self, order_id: str) -> None:
        try:
            await self.inventory.release_reservation(order_id)
        except DatabaseError as e:
            logger.error(f"Reservation release failed for order {order_id}; expiry will free it: {e.message}")

    async def _record_coupon_usage(self, order: Dict[str, Any]) -> None:
        code = order.get('coupon_code')
        if not code:
            return
        result = await self.db.get_coupon(order['store_id'], code)
        if not result.success:
            logger.warning(f"Coupon {code} for order {order['order_id']} no longer exists")
            return
        await self.coupons.record_coupon_usage(
            result.data, order['order_id'], order.get('customer_email'), order.get('discount', 0)
        )


# Global instance (lazy initialization)
_order_service: Optional[OrderService] = None


def get_order_service() -> OrderService:
    """Get or create the global OrderService instance"""
    global _order_service
    if _order_service is None:
        _order_service = OrderService(
            get_commerce_db(),
            get_inventory_service(),
            get_coupon_service(),
            get_payment_service(),
            get_cart_service(),
        )
    return _order_service
