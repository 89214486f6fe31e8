"""
Inventory Service

Stock checks, checkout reservations and stock commits for products and
variants. Stock lives on the variant row when a variant is given and on the
product row otherwise.

- Availability is tracked stock minus active (unexpired) reservations
- Reservations hold stock for a pending order for RESERVATION_MINUTES
- Commit (reduce) and restore are conditional DynamoDB updates per line
"""

import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from storeforge.core.config import settings
from storeforge.core.exceptions import DatabaseError, InsufficientStockError
from storeforge.database.commerce_db import (
    CONDITION_FAILED,
    CommerceDatabase,
    get_commerce_db,
)
from storeforge.models.commerce import VariantStatus
from storeforge.services.variant_service import format_variant_attributes

logger = logging.getLogger(__name__)


@dataclass
class StockLine:
    """One product (or product variant) and a quantity"""
    product_id: str
    quantity: int
    variant_id: Optional[str] = None
    title: Optional[str] = None

    @property
    def item_key(self) -> str:
        return make_item_key(self.product_id, self.variant_id)


def make_item_key(product_id: str, variant_id: Optional[str] = None) -> str:
    return f"{product_id}#{variant_id or '-'}"


def to_stock_lines(items: Iterable[Union[StockLine, Dict[str, Any]]]) -> List[StockLine]:
    """Accept StockLine objects or dicts (order items, cart lines)"""
    lines = []
    for item in items:
        if isinstance(item, StockLine):
            lines.append(item)
        else:
            lines.append(StockLine(
                product_id=item['product_id'],
                quantity=int(item['quantity']),
                variant_id=item.get('variant_id') or None,
                title=item.get('title'),
            ))
    return lines


def aggregate_lines(items: Iterable[Union[StockLine, Dict[str, Any]]]) -> List[StockLine]:
    """Merge lines that target the same product/variant, keeping first-seen order"""
    merged: "OrderedDict[str, StockLine]" = OrderedDict()
    for line in to_stock_lines(items):
        if line.item_key in merged:
            merged[line.item_key].quantity += line.quantity
        else:
            merged[line.item_key] = StockLine(line.product_id, line.quantity, line.variant_id, line.title)
    return list(merged.values())


class InventoryService:
    """Stock and reservation management over CommerceDatabase"""

    def __init__(self, db: Optional[CommerceDatabase] = None):
        self.db = db or get_commerce_db()

    async def _reserved_quantity(self, item_key: str, exclude_order_id: Optional[str]) -> int:
        result = await self.db.get_reserved_quantity(
            item_key, datetime.utcnow().isoformat(), exclude_order_id
        )
        if not result.success:
            raise DatabaseError("Failed to read reservations", {"item_key": item_key})
        return result.data

    async def _net_available(self, stock_row: Dict[str, Any], item_key: str,
                             exclude_order_id: Optional[str]) -> int:
        reserved = await self._reserved_quantity(item_key, exclude_order_id)
        return max(0, int(stock_row.get('quantity', 0)) - reserved)

    async def get_effective_availability(self, product_id: str, variant_id: Optional[str] = None,
                                         exclude_order_id: Optional[str] = None) -> Optional[int]:
        """
        Sellable quantity for a product or variant.

        Returns:
            None when stock is not tracked (unlimited), 0 for a variant product
            queried without a variant or a missing row, else stock minus
            active reservations (never negative)
        """
        item_key = make_item_key(product_id, variant_id)

        if variant_id:
            variant_result = await self.db.get_variant(product_id, variant_id)
            if not variant_result.success:
                return 0
            variant = variant_result.data
            if not variant.get('track_quantity', True):
                return None
            return await self._net_available(variant, item_key, exclude_order_id)

        product_result = await self.db.get_product(product_id)
        if not product_result.success:
            return 0
        product = product_result.data
        if product.get('has_variants'):
            return 0
        if not product.get('track_quantity', True):
            return None
        return await self._net_available(product, item_key, exclude_order_id)

    async def check_stock_availability(self, items: Iterable[Union[StockLine, Dict[str, Any]]],
                                       exclude_order_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Check every line against effective availability.

        Returns:
            Dict with `available` and `unavailable_items`; each unavailable
            item carries product_id, variant_id, requested, available, title
        """
        unavailable = []

        for line in aggregate_lines(items):
            def _unavailable(available: int, title: str):
                unavailable.append({
                    'product_id': line.product_id,
                    'variant_id': line.variant_id,
                    'requested': line.quantity,
                    'available': available,
                    'title': title,
                })

            product_result = await self.db.get_product(line.product_id)
            if not product_result.success:
                _unavailable(0, line.title or 'Unknown product')
                continue
            product = product_result.data
            product_title = product.get('title', 'Unknown product')

            if line.variant_id:
                variant_result = await self.db.get_variant(line.product_id, line.variant_id)
                if not variant_result.success:
                    _unavailable(0, product_title)
                    continue
                variant = variant_result.data
                variant_title = f"{product_title} - {format_variant_attributes(variant.get('attributes') or {})}"

                if variant.get('status') != VariantStatus.ACTIVE.value:
                    _unavailable(0, variant_title)
                    continue

                if variant.get('track_quantity', True):
                    available = await self._net_available(variant, line.item_key, exclude_order_id)
                    if available < line.quantity:
                        _unavailable(available, variant_title)
                continue

            if product.get('has_variants'):
                _unavailable(0, f"{product_title} (variant required)")
                continue

            if product.get('track_quantity', True):
                available = await self._net_available(product, line.item_key, exclude_order_id)
                if available < line.quantity:
                    _unavailable(available, product_title)

        return {'available': not unavailable, 'unavailable_items': unavailable}

    async def reserve_inventory(self, items: Iterable[Union[StockLine, Dict[str, Any]]],
                                order_id: str, minutes: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Hold stock for a pending order.

        Raises:
            InsufficientStockError: naming every line that cannot be held
        """
        lines = to_stock_lines(items)
        check = await self.check_stock_availability(lines, exclude_order_id=order_id)
        if not check['available']:
            logger.warning(
                f"Reservation refused for order {order_id}: "
                f"{[item['title'] for item in check['unavailable_items']]}"
            )
            raise InsufficientStockError(check['unavailable_items'], {"order_id": order_id})

        now = datetime.utcnow()
        expires_at = (now + timedelta(minutes=minutes or settings.RESERVATION_MINUTES)).isoformat()
        reservations = [
            {
                'reservation_id': str(uuid.uuid4()),
                'order_id': order_id,
                'product_id': line.product_id,
                'variant_id': line.variant_id,
                'item_key': line.item_key,
                'quantity': line.quantity,
                'expires_at': expires_at,
                'created_at': now.isoformat(),
            }
            for line in aggregate_lines(lines)
        ]

        result = await self.db.put_reservations(reservations)
        if not result.success:
            raise DatabaseError("Failed to reserve inventory", {"order_id": order_id})

        logger.info(f"Reserved {len(reservations)} lines for order {order_id} until {expires_at}")
        return reservations

    async def release_reservation(self, order_id: str) -> int:
        result = await self.db.delete_reservations_for_order(order_id)
        if not result.success:
            raise DatabaseError("Failed to release reservation", {"order_id": order_id})
        if result.data:
            logger.info(f"Released {result.data} reservations for order {order_id}")
        return result.data

    async def cleanup_expired_reservations(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or datetime.utcnow()).isoformat()
        result = await self.db.delete_expired_reservations(cutoff)
        if not result.success:
            raise DatabaseError("Failed to clean up reservations")
        logger.info(f"Cleaned up {result.data} expired reservations")
        return result.data

    async def reduce_inventory(self, items: Iterable[Union[StockLine, Dict[str, Any]]]) -> Dict[str, Any]:
        """
        Commit stock for paid/confirmed lines.

        Tracked stock is decremented and clamped at zero; untracked or missing
        rows are skipped. Returns a summary with updated, clamped, skipped and
        failed lines.
        """
        summary = {'success': True, 'updated': [], 'clamped': [], 'skipped': [], 'failed': []}

        for line in aggregate_lines(items):
            result = await self.db.decrement_stock(line.product_id, line.variant_id, line.quantity)
            if result.success:
                summary['updated'].append(line.item_key)
                if result.data.get('clamped'):
                    summary['clamped'].append(line.item_key)
                    logger.warning(
                        f"Stock for {line.item_key} clamped at 0 (requested -{line.quantity})"
                    )
                else:
                    logger.info(f"Stock reduced: {line.item_key} -{line.quantity} -> {result.data['quantity']}")
            elif result.error_code == CONDITION_FAILED:
                summary['skipped'].append(line.item_key)
            else:
                summary['failed'].append({'item_key': line.item_key, 'error': result.error})

        summary['success'] = not summary['failed']
        return summary

    async def restore_inventory(self, items: Iterable[Union[StockLine, Dict[str, Any]]]) -> Dict[str, Any]:
        """Add committed stock back for cancelled or refunded lines"""
        summary = {'success': True, 'updated': [], 'skipped': [], 'failed': []}

        for line in aggregate_lines(items):
            result = await self.db.increment_stock(line.product_id, line.variant_id, line.quantity)
            if result.success:
                summary['updated'].append(line.item_key)
                logger.info(f"Stock restored: {line.item_key} +{line.quantity} -> {result.data['quantity']}")
            elif result.error_code == CONDITION_FAILED:
                summary['skipped'].append(line.item_key)
            else:
                summary['failed'].append({'item_key': line.item_key, 'error': result.error})

        summary['success'] = not summary['failed']
        return summary

    async def get_low_stock_products(self, store_id: str,
                                     threshold: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Tracked products and active variants at or below the threshold.

        A product's own `low_stock_threshold` wins over the argument.
        """
        default_threshold = settings.LOW_STOCK_THRESHOLD if threshold is None else threshold

        products_result = await self.db.list_store_products(store_id)
        if not products_result.success:
            raise DatabaseError("Failed to load products", {"store_id": store_id})

        low_stock = []
        for product in products_result.data:
            if product.get('status', 'active') != 'active':
                continue
            product_threshold = product.get('low_stock_threshold', default_threshold)

            if product.get('has_variants'):
                variants_result = await self.db.list_variants(product['product_id'])
                if not variants_result.success:
                    raise DatabaseError("Failed to load variants", {"product_id": product['product_id']})
                for variant in variants_result.data:
                    if variant.get('status') != VariantStatus.ACTIVE.value:
                        continue
                    if not variant.get('track_quantity', True):
                        continue
                    if variant.get('quantity', 0) <= product_threshold:
                        low_stock.append({
                            'product_id': product['product_id'],
                            'variant_id': variant['variant_id'],
                            'title': f"{product.get('title', '')} - "
                                     f"{format_variant_attributes(variant.get('attributes') or {})}",
                            'sku': variant.get('sku'),
                            'quantity': variant.get('quantity', 0),
                            'threshold': product_threshold,
                        })
                continue

            if product.get('track_quantity', True) and product.get('quantity', 0) <= product_threshold:
                low_stock.append({
                    'product_id': product['product_id'],
                    'variant_id': None,
                    'title': product.get('title', ''),
                    'sku': product.get('sku'),
                    'quantity': product.get('quantity', 0),
                    'threshold': product_threshold,
                })

        low_stock.sort(key=lambda item: item['quantity'])
        return low_stock


# Global instance (lazy initialization)
_inventory_service: Optional[InventoryService] = None


def get_inventory_service() -> InventoryService:
    """Get or create the global InventoryService instance"""
    global _inventory_service
    if _inventory_service is None:
        _inventory_service = InventoryService()
    return _inventory_service
