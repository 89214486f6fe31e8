"""
Commerce Database Manager for StoreForge
Handles DynamoDB operations for the catalog, stock, checkout and payments

Tables:
- storeforge-stores-{env}: store_id
- storeforge-products-{env}: product_id (GSI store_id-index)
- storeforge-product-variants-{env}: product_id + variant_id
- storeforge-orders-{env}: order_id (GSIs order_number-index, razorpay_order_id-index,
  razorpay_payment_id-index, store_id-index)
- storeforge-inventory-reservations-{env}: reservation_id (GSIs order_id-index, item_key-index)
- storeforge-coupons-{env}: store_id + code
- storeforge-coupon-usage-{env}: coupon_id + order_id
- storeforge-refunds-{env}: refund_id (GSIs order_id-index, razorpay_refund_id-index)

Key Design:
- Stock changes are single conditional UpdateItem calls, never read-modify-write
- Order status changes can be guarded by the status the caller last saw
- One-shot side effects (stock commit / restore) are claimed through a
  conditional flag write so they run at most once per order
"""

import asyncio
import base64
import json
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Any, Tuple
from dataclasses import dataclass
from datetime import datetime

from botocore.exceptions import ClientError
from boto3.dynamodb.conditions import Key, Attr

from storeforge.core.config import settings
from storeforge.core.database import get_dynamodb

logger = logging.getLogger(__name__)

CONDITION_FAILED = "CONDITION_FAILED"
NOT_FOUND = "NOT_FOUND"

# Rows without a track_quantity attribute count as tracked
_TRACKED = "(attribute_not_exists(track_quantity) OR track_quantity = :true)"


def decimal_to_float(obj: Any) -> Any:
    """Convert Decimal values recursively for JSON serialization; integral values become int"""
    if isinstance(obj, Decimal):
        if obj == obj.to_integral_value():
            return int(obj)
        return float(obj)
    elif isinstance(obj, dict):
        return {k: decimal_to_float(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [decimal_to_float(item) for item in obj]
    return obj


def float_to_decimal(obj: Any) -> Any:
    """Convert float values to Decimal recursively for DynamoDB compatibility"""
    if isinstance(obj, float):
        return Decimal(str(obj))
    elif isinstance(obj, dict):
        return {k: float_to_decimal(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [float_to_decimal(item) for item in obj]
    return obj


def _clean_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Drop top-level None values; index key attributes may not be NULL"""
    return float_to_decimal({k: v for k, v in item.items() if v is not None})


def _build_update(updates: Dict[str, Any]) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
    """
    Build an UpdateExpression from a field dict.

    None values are removed from the item, everything else is SET.
    """
    set_parts = []
    remove_parts = []
    names = {}
    values = {}

    for index, (field_name, value) in enumerate(updates.items()):
        name_ref = f"#f{index}"
        names[name_ref] = field_name
        if value is None:
            remove_parts.append(name_ref)
        else:
            value_ref = f":v{index}"
            values[value_ref] = float_to_decimal(value)
            set_parts.append(f"{name_ref} = {value_ref}")

    expression = ""
    if set_parts:
        expression += "SET " + ", ".join(set_parts)
    if remove_parts:
        expression += (" " if expression else "") + "REMOVE " + ", ".join(remove_parts)

    return expression, names, values


@dataclass
class DBResult:
    """Result from commerce database operations"""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    next_cursor: Optional[str] = None


class CommerceDatabase:
    """
    Commerce Database Manager

    Every public method returns a DBResult; boto3 ClientErrors are logged
    and reported, never raised. Conditional check failures carry
    error_code == CONDITION_FAILED.
    """

    def __init__(self, dynamodb=None):
        self.dynamodb = dynamodb if dynamodb is not None else get_dynamodb()
        self.table_names = {
            'stores': settings.DYNAMODB_STORES_TABLE,
            'products': settings.DYNAMODB_PRODUCTS_TABLE,
            'variants': settings.DYNAMODB_VARIANTS_TABLE,
            'orders': settings.DYNAMODB_ORDERS_TABLE,
            'reservations': settings.DYNAMODB_RESERVATIONS_TABLE,
            'coupons': settings.DYNAMODB_COUPONS_TABLE,
            'coupon_usage': settings.DYNAMODB_COUPON_USAGE_TABLE,
            'refunds': settings.DYNAMODB_REFUNDS_TABLE,
        }

    def _table(self, name: str):
        return self.dynamodb.Table(self.table_names[name])

    def _encode_cursor(self, last_evaluated_key: Optional[Dict]) -> Optional[str]:
        """Encode LastEvaluatedKey as base64 cursor for pagination"""
        if not last_evaluated_key:
            return None
        json_str = json.dumps(decimal_to_float(last_evaluated_key))
        return base64.b64encode(json_str.encode()).decode()

    def _decode_cursor(self, cursor: Optional[str]) -> Optional[Dict]:
        """Decode base64 cursor to LastEvaluatedKey for pagination"""
        if not cursor:
            return None
        try:
            json_str = base64.b64decode(cursor.encode()).decode()
            return float_to_decimal(json.loads(json_str))
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to decode pagination cursor: {e}")
            return None

    def _failure(self, operation: str, error: ClientError) -> DBResult:
        code = error.response.get('Error', {}).get('Code', 'Unknown')
        if code == 'ConditionalCheckFailedException':
            logger.info(f"Condition failed during {operation}")
            return DBResult(success=False, error="Condition check failed", error_code=CONDITION_FAILED)

        logger.error(f"DynamoDB error during {operation}: {error}")
        return DBResult(success=False, error=str(error), error_code=code)

    async def _get(self, table_name: str, key: Dict[str, Any], operation: str) -> DBResult:
        try:
            response = await asyncio.to_thread(self._table(table_name).get_item, Key=key)
        except ClientError as e:
            return self._failure(operation, e)

        item = response.get('Item')
        if not item:
            return DBResult(success=False, error="Item not found", error_code=NOT_FOUND)
        return DBResult(success=True, data=decimal_to_float(item))

    async def _query_all(self, table_name: str, **kwargs) -> List[Dict[str, Any]]:
        """Run a query following LastEvaluatedKey until exhausted"""
        table = self._table(table_name)

        def _run():
            items = []
            response = table.query(**kwargs)
            items.extend(response.get('Items', []))
            while 'LastEvaluatedKey' in response:
                response = table.query(ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs)
                items.extend(response.get('Items', []))
            return items

        items = await asyncio.to_thread(_run)
        return decimal_to_float(items)

    async def _query_first(self, table_name: str, index_name: str, attribute: str,
                           value: str, operation: str) -> DBResult:
        try:
            items = await self._query_all(
                table_name,
                IndexName=index_name,
                KeyConditionExpression=Key(attribute).eq(value),
            )
        except ClientError as e:
            return self._failure(operation, e)

        if not items:
            return DBResult(success=False, error="Item not found", error_code=NOT_FOUND)
        return DBResult(success=True, data=items[0])

    async def _query_page(self, table_name: str, operation: str, limit: int,
                          cursor: Optional[str], **kwargs) -> DBResult:
        """
        One page of a newest-first query.

        A FilterExpression is applied after DynamoDB's Limit, so pages are
        read until `limit` matching items are collected or the index is
        exhausted. Each read asks only for the remaining count, which keeps
        LastEvaluatedKey pointing at the last returned item.
        """
        table = self._table(table_name)
        query_kwargs = {k: v for k, v in kwargs.items() if v is not None}
        query_kwargs['ScanIndexForward'] = False
        exclusive_start_key = self._decode_cursor(cursor)

        def _run():
            items = []
            last_key = exclusive_start_key
            while True:
                page_kwargs = dict(query_kwargs, Limit=limit - len(items))
                if last_key:
                    page_kwargs['ExclusiveStartKey'] = last_key
                response = table.query(**page_kwargs)
                items.extend(response.get('Items', []))
                last_key = response.get('LastEvaluatedKey')
                if not last_key or len(items) >= limit:
                    return items, last_key

        try:
            items, last_key = await asyncio.to_thread(_run)
        except ClientError as e:
            return self._failure(operation, e)

        return DBResult(
            success=True,
            data=decimal_to_float(items),
            next_cursor=self._encode_cursor(last_key)
        )

    async def _update(self, table_name: str, key: Dict[str, Any], updates: Dict[str, Any],
                      operation: str, condition: Optional[str] = None,
                      condition_names: Optional[Dict[str, str]] = None,
                      condition_values: Optional[Dict[str, Any]] = None) -> DBResult:
        expression, names, values = _build_update(updates)
        key_attrs = " AND ".join(f"attribute_exists({k})" for k in key)
        full_condition = f"{key_attrs} AND ({condition})" if condition else key_attrs

        kwargs = {
            'Key': key,
            'UpdateExpression': expression,
            'ConditionExpression': full_condition,
            'ExpressionAttributeNames': {**names, **(condition_names or {})},
            'ReturnValues': 'ALL_NEW',
        }
        merged_values = {**values, **float_to_decimal(condition_values or {})}
        if merged_values:
            kwargs['ExpressionAttributeValues'] = merged_values

        try:
            response = await asyncio.to_thread(self._table(table_name).update_item, **kwargs)
        except ClientError as e:
            return self._failure(operation, e)

        return DBResult(success=True, data=decimal_to_float(response.get('Attributes', {})))

    async def _put(self, table_name: str, item: Dict[str, Any], operation: str,
                   unique_key: Optional[str] = None) -> DBResult:
        kwargs = {'Item': _clean_item(item)}
        if unique_key:
            kwargs['ConditionExpression'] = f"attribute_not_exists({unique_key})"

        try:
            await asyncio.to_thread(self._table(table_name).put_item, **kwargs)
        except ClientError as e:
            return self._failure(operation, e)

        return DBResult(success=True, data=item)

    async def _delete(self, table_name: str, key: Dict[str, Any], operation: str) -> DBResult:
        try:
            await asyncio.to_thread(self._table(table_name).delete_item, Key=key)
        except ClientError as e:
            return self._failure(operation, e)
        return DBResult(success=True)

    # =========================================================================
    # Stores and Products
    # =========================================================================

    async def get_store(self, store_id: str) -> DBResult:
        return await self._get('stores', {'store_id': store_id}, "get_store")

    async def get_product(self, product_id: str) -> DBResult:
        return await self._get('products', {'product_id': product_id}, "get_product")

    async def update_product(self, product_id: str, updates: Dict[str, Any]) -> DBResult:
        return await self._update('products', {'product_id': product_id}, updates, "update_product")

    async def list_store_products(self, store_id: str) -> DBResult:
        try:
            items = await self._query_all(
                'products',
                IndexName='store_id-index',
                KeyConditionExpression=Key('store_id').eq(store_id),
            )
        except ClientError as e:
            return self._failure("list_store_products", e)
        return DBResult(success=True, data=items)

    # =========================================================================
    # Variants
    # =========================================================================

    async def get_variant(self, product_id: str, variant_id: str) -> DBResult:
        return await self._get(
            'variants', {'product_id': product_id, 'variant_id': variant_id}, "get_variant"
        )

    async def list_variants(self, product_id: str) -> DBResult:
        try:
            items = await self._query_all(
                'variants',
                KeyConditionExpression=Key('product_id').eq(product_id),
            )
        except ClientError as e:
            return self._failure("list_variants", e)

        items.sort(key=lambda v: (v.get('position', 0), v.get('created_at', '')))
        return DBResult(success=True, data=items)

    async def put_variants(self, variants: List[Dict[str, Any]]) -> DBResult:
        """Write variants in batches; existing rows with the same key are replaced"""
        table = self._table('variants')

        def _run():
            with table.batch_writer() as batch:
                for variant in variants:
                    batch.put_item(Item=_clean_item(variant))

        try:
            await asyncio.to_thread(_run)
        except ClientError as e:
            return self._failure("put_variants", e)

        return DBResult(success=True, data=variants)

    async def update_variant(self, product_id: str, variant_id: str,
                             updates: Dict[str, Any]) -> DBResult:
        return await self._update(
            'variants', {'product_id': product_id, 'variant_id': variant_id},
            updates, "update_variant"
        )

    async def delete_variants(self, product_id: str, variant_ids: List[str]) -> DBResult:
        table = self._table('variants')

        def _run():
            with table.batch_writer() as batch:
                for variant_id in variant_ids:
                    batch.delete_item(Key={'product_id': product_id, 'variant_id': variant_id})

        try:
            await asyncio.to_thread(_run)
        except ClientError as e:
            return self._failure("delete_variants", e)

        return DBResult(success=True, data=len(variant_ids))

    # =========================================================================
    # Stock
    # =========================================================================

    def _stock_target(self, product_id: str, variant_id: Optional[str]) -> Tuple[str, Dict[str, str]]:
        if variant_id:
            return 'variants', {'product_id': product_id, 'variant_id': variant_id}
        return 'products', {'product_id': product_id}

    async def decrement_stock(self, product_id: str, variant_id: Optional[str],
                              quantity: int) -> DBResult:
        """
        Atomically decrement tracked stock, clamping at zero.

        Returns data {'quantity': new_quantity, 'clamped': bool}. Fails with
        CONDITION_FAILED when the row is missing or does not track quantity.
        """
        table_name, key = self._stock_target(product_id, variant_id)
        table = self._table(table_name)
        key_attrs = " AND ".join(f"attribute_exists({k})" for k in key)

        try:
            response = await asyncio.to_thread(
                table.update_item,
                Key=key,
                UpdateExpression='SET quantity = quantity - :qty, updated_at = :now',
                ConditionExpression=f'{key_attrs} AND {_TRACKED} AND quantity >= :qty',
                ExpressionAttributeValues={':qty': quantity, ':true': True, ':now': _now()},
                ReturnValues='UPDATED_NEW'
            )
            return DBResult(
                success=True,
                data={'quantity': decimal_to_float(response['Attributes']['quantity']), 'clamped': False}
            )
        except ClientError as e:
            if e.response['Error']['Code'] != 'ConditionalCheckFailedException':
                return self._failure("decrement_stock", e)

        # Not enough stock left: clamp at zero
        try:
            await asyncio.to_thread(
                table.update_item,
                Key=key,
                UpdateExpression='SET quantity = :zero, updated_at = :now',
                ConditionExpression=f'{key_attrs} AND {_TRACKED} AND quantity < :qty',
                ExpressionAttributeValues={':zero': 0, ':qty': quantity, ':true': True, ':now': _now()},
            )
        except ClientError as e:
            return self._failure("decrement_stock", e)

        return DBResult(success=True, data={'quantity': 0, 'clamped': True})

    async def increment_stock(self, product_id: str, variant_id: Optional[str],
                              quantity: int) -> DBResult:
        table_name, key = self._stock_target(product_id, variant_id)
        key_attrs = " AND ".join(f"attribute_exists({k})" for k in key)

        try:
            response = await asyncio.to_thread(
                self._table(table_name).update_item,
                Key=key,
                UpdateExpression='SET quantity = quantity + :qty, updated_at = :now',
                ConditionExpression=f'{key_attrs} AND {_TRACKED}',
                ExpressionAttributeValues={':qty': quantity, ':true': True, ':now': _now()},
                ReturnValues='UPDATED_NEW'
            )
        except ClientError as e:
            return self._failure("increment_stock", e)

        return DBResult(success=True, data={'quantity': decimal_to_float(response['Attributes']['quantity'])})

    # =========================================================================
    # Reservations
    # =========================================================================

    async def put_reservations(self, reservations: List[Dict[str, Any]]) -> DBResult:
        table = self._table('reservations')

        def _run():
            with table.batch_writer() as batch:
                for reservation in reservations:
                    batch.put_item(Item=_clean_item(reservation))

        try:
            await asyncio.to_thread(_run)
        except ClientError as e:
            return self._failure("put_reservations", e)

        return DBResult(success=True, data=reservations)

    async def get_reserved_quantity(self, item_key: str, now: str,
                                    exclude_order_id: Optional[str] = None) -> DBResult:
        """Sum of unexpired reservations held against one product/variant"""
        filter_expression = Attr('expires_at').gt(now)
        if exclude_order_id:
            filter_expression = filter_expression & Attr('order_id').ne(exclude_order_id)

        try:
            items = await self._query_all(
                'reservations',
                IndexName='item_key-index',
                KeyConditionExpression=Key('item_key').eq(item_key),
                FilterExpression=filter_expression,
            )
        except ClientError as e:
            return self._failure("get_reserved_quantity", e)

        return DBResult(success=True, data=sum(int(item.get('quantity', 0)) for item in items))

    async def delete_reservations_for_order(self, order_id: str) -> DBResult:
        try:
            items = await self._query_all(
                'reservations',
                IndexName='order_id-index',
                KeyConditionExpression=Key('order_id').eq(order_id),
            )
        except ClientError as e:
            return self._failure("delete_reservations_for_order", e)

        return await self._delete_reservations([item['reservation_id'] for item in items])

    async def delete_expired_reservations(self, now: str) -> DBResult:
        table = self._table('reservations')

        def _scan():
            ids = []
            kwargs = {
                'FilterExpression': Attr('expires_at').lt(now),
                'ProjectionExpression': 'reservation_id',
            }
            while True:
                response = table.scan(**kwargs)
                ids.extend(item['reservation_id'] for item in response.get('Items', []))
                if 'LastEvaluatedKey' not in response:
                    return ids
                kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']

        try:
            reservation_ids = await asyncio.to_thread(_scan)
        except ClientError as e:
            return self._failure("delete_expired_reservations", e)

        return await self._delete_reservations(reservation_ids)

    async def _delete_reservations(self, reservation_ids: List[str]) -> DBResult:
        if not reservation_ids:
            return DBResult(success=True, data=0)

        table = self._table('reservations')

        def _run():
            with table.batch_writer() as batch:
                for reservation_id in reservation_ids:
                    batch.delete_item(Key={'reservation_id': reservation_id})

        try:
            await asyncio.to_thread(_run)
        except ClientError as e:
            return self._failure("delete_reservations", e)

        return DBResult(success=True, data=len(reservation_ids))

    # =========================================================================
    # Orders
    # =========================================================================

    async def create_order(self, order: Dict[str, Any]) -> DBResult:
        return await self._put('orders', order, "create_order", unique_key='order_id')

    async def get_order(self, order_id: str) -> DBResult:
        return await self._get('orders', {'order_id': order_id}, "get_order")

    async def get_order_by_number(self, order_number: str) -> DBResult:
        return await self._query_first(
            'orders', 'order_number-index', 'order_number', order_number, "get_order_by_number"
        )

    async def get_order_by_razorpay_order_id(self, razorpay_order_id: str) -> DBResult:
        return await self._query_first(
            'orders', 'razorpay_order_id-index', 'razorpay_order_id', razorpay_order_id,
            "get_order_by_razorpay_order_id"
        )

    async def get_order_by_payment_id(self, razorpay_payment_id: str) -> DBResult:
        return await self._query_first(
            'orders', 'razorpay_payment_id-index', 'razorpay_payment_id', razorpay_payment_id,
            "get_order_by_payment_id"
        )

    async def update_order(self, order_id: str, updates: Dict[str, Any],
                           expected_status: Optional[str] = None,
                           expected_payment_status: Optional[str] = None) -> DBResult:
        """
        Update order fields, optionally guarded by the current status values.

        A guard mismatch fails with CONDITION_FAILED and leaves the order untouched.
        """
        conditions = []
        names = {}
        values = {}
        if expected_status is not None:
            conditions.append("#cur_status = :cur_status")
            names['#cur_status'] = 'status'
            values[':cur_status'] = expected_status
        if expected_payment_status is not None:
            conditions.append("#cur_payment_status = :cur_payment_status")
            names['#cur_payment_status'] = 'payment_status'
            values[':cur_payment_status'] = expected_payment_status

        return await self._update(
            'orders', {'order_id': order_id}, updates, "update_order",
            condition=" AND ".join(conditions) or None,
            condition_names=names,
            condition_values=values,
        )

    async def claim_order_flag(self, order_id: str, flag: str) -> DBResult:
        """
        Set a boolean flag on the order only if it is not already set.

        Used to make one-shot side effects (stock commit, stock restore) idempotent.
        """
        return await self._update(
            'orders', {'order_id': order_id}, {flag: True}, "claim_order_flag",
            condition="attribute_not_exists(#flag) OR #flag = :false",
            condition_names={'#flag': flag},
            condition_values={':false': False},
        )

    async def delete_order(self, order_id: str) -> DBResult:
        return await self._delete('orders', {'order_id': order_id}, "delete_order")

    async def list_store_orders(self, store_id: str, status: Optional[str] = None,
                                limit: int = 50, cursor: Optional[str] = None) -> DBResult:
        """List a store's orders, newest first, with cursor pagination"""
        return await self._query_page(
            'orders', "list_store_orders", limit, cursor,
            IndexName='store_id-index',
            KeyConditionExpression=Key('store_id').eq(store_id),
            FilterExpression=Attr('status').eq(status) if status else None,
        )

    # =========================================================================
    # Coupons
    # =========================================================================

    async def get_coupon(self, store_id: str, code: str) -> DBResult:
        return await self._get('coupons', {'store_id': store_id, 'code': code}, "get_coupon")

    async def create_coupon(self, coupon: Dict[str, Any]) -> DBResult:
        return await self._put('coupons', coupon, "create_coupon", unique_key='code')

    async def update_coupon(self, store_id: str, code: str, updates: Dict[str, Any]) -> DBResult:
        return await self._update(
            'coupons', {'store_id': store_id, 'code': code}, updates, "update_coupon"
        )

    async def delete_coupon(self, store_id: str, code: str) -> DBResult:
        return await self._delete('coupons', {'store_id': store_id, 'code': code}, "delete_coupon")

    async def list_coupons(self, store_id: str) -> DBResult:
        try:
            items = await self._query_all(
                'coupons',
                KeyConditionExpression=Key('store_id').eq(store_id),
            )
        except ClientError as e:
            return self._failure("list_coupons", e)
        return DBResult(success=True, data=items)

    async def increment_coupon_usage(self, store_id: str, code: str) -> DBResult:
        """Increment usage_count unless the coupon's usage_limit is already reached"""
        try:
            response = await asyncio.to_thread(
                self._table('coupons').update_item,
                Key={'store_id': store_id, 'code': code},
                UpdateExpression='SET usage_count = if_not_exists(usage_count, :zero) + :one, updated_at = :now',
                ConditionExpression=(
                    'attribute_exists(code) AND '
                    '(attribute_not_exists(usage_limit) OR usage_count < usage_limit)'
                ),
                ExpressionAttributeValues={':zero': 0, ':one': 1, ':now': _now()},
                ReturnValues='UPDATED_NEW'
            )
        except ClientError as e:
            return self._failure("increment_coupon_usage", e)

        return DBResult(success=True, data=decimal_to_float(response.get('Attributes', {})))

    async def create_coupon_usage(self, usage: Dict[str, Any]) -> DBResult:
        """One usage row per (coupon, order); duplicates fail with CONDITION_FAILED"""
        return await self._put('coupon_usage', usage, "create_coupon_usage", unique_key='order_id')

    async def count_customer_coupon_usage(self, coupon_id: str, customer_email: str) -> DBResult:
        try:
            items = await self._query_all(
                'coupon_usage',
                KeyConditionExpression=Key('coupon_id').eq(coupon_id),
                FilterExpression=Attr('customer_email').eq(customer_email),
            )
        except ClientError as e:
            return self._failure("count_customer_coupon_usage", e)
        return DBResult(success=True, data=len(items))

    # =========================================================================
    # Refunds
    # =========================================================================

    async def create_refund(self, refund: Dict[str, Any]) -> DBResult:
        return await self._put('refunds', refund, "create_refund", unique_key='refund_id')

    async def get_refund_by_provider_id(self, razorpay_refund_id: str) -> DBResult:
        return await self._query_first(
            'refunds', 'razorpay_refund_id-index', 'razorpay_refund_id', razorpay_refund_id,
            "get_refund_by_provider_id"
        )

    async def update_refund(self, refund_id: str, updates: Dict[str, Any]) -> DBResult:
        return await self._update('refunds', {'refund_id': refund_id}, updates, "update_refund")

    async def list_refunds(self, order_id: str) -> DBResult:
        try:
            items = await self._query_all(
                'refunds',
                IndexName='order_id-index',
                KeyConditionExpression=Key('order_id').eq(order_id),
            )
        except ClientError as e:
            return self._failure("list_refunds", e)

        items.sort(key=lambda r: r.get('created_at', ''))
        return DBResult(success=True, data=items)

    async def list_store_refunds(self, store_id: str, status: Optional[str] = None,
                                 limit: int = 50, cursor: Optional[str] = None) -> DBResult:
        """List a store's refunds, newest first, with cursor pagination"""
        return await self._query_page(
            'refunds', "list_store_refunds", limit, cursor,
            IndexName='store_id-index',
            KeyConditionExpression=Key('store_id').eq(store_id),
            FilterExpression=Attr('status').eq(status) if status else None,
        )


def _now() -> str:
    return datetime.utcnow().isoformat()


# =============================================================================
# Global Instance (lazy)
# =============================================================================

_commerce_db: Optional[CommerceDatabase] = None


def get_commerce_db() -> CommerceDatabase:
    """Get or create the global CommerceDatabase instance"""
    global _commerce_db
    if _commerce_db is None:
        _commerce_db = CommerceDatabase()
    return _commerce_db
