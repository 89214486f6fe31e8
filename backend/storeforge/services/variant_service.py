"""
Variant Service

Product variant combinatorics and persistence:
- Option sets (Size, Color, ...) are stored on the product as `variant_options`
- Variants are the Cartesian product of option values, capped at MAX_VARIANTS
- Regeneration can preserve stock/price data of combinations that already exist
"""

import itertools
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from storeforge.core.config import settings
from storeforge.core.exceptions import (
    DatabaseError,
    ProductNotFoundError,
    ValidationError,
    VariantGenerationError,
    VariantNotFoundError,
)
from storeforge.database.commerce_db import CONDITION_FAILED, NOT_FOUND, CommerceDatabase, get_commerce_db
from storeforge.models.commerce import VariantStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Pure helpers
# =============================================================================

def generate_variant_combinations(options: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """
    Cartesian product of option values, in option order.

    Returns [] when there are no options or when any option has no values.
    """
    if not options:
        return []

    names = [option['name'] for option in options]
    value_lists = [[v['value'] for v in option.get('values', [])] for option in options]

    return [dict(zip(names, combo)) for combo in itertools.product(*value_lists)]


def find_variant_by_attributes(variants: List[Dict[str, Any]],
                               attributes: Dict[str, str]) -> Optional[Dict[str, Any]]:
    """Exact attribute match: same number of keys and equal values"""
    for variant in variants:
        variant_attributes = variant.get('attributes') or {}
        if len(variant_attributes) != len(attributes):
            continue
        if all(variant_attributes.get(key) == value for key, value in attributes.items()):
            return variant
    return None


def format_variant_attributes(attributes: Dict[str, str]) -> str:
    return " / ".join(str(value) for value in attributes.values())


def get_effective_price(product: Dict[str, Any], variant: Optional[Dict[str, Any]] = None) -> float:
    if variant is not None and variant.get('price') is not None:
        return variant['price']
    return product.get('price', 0)


def get_effective_quantity(product: Dict[str, Any], variant: Optional[Dict[str, Any]] = None) -> int:
    if variant is not None:
        return variant.get('quantity', 0)
    return product.get('quantity', 0)


def is_variant_available(variant: Dict[str, Any], track_quantity: bool = True) -> bool:
    if variant.get('status', VariantStatus.ACTIVE.value) != VariantStatus.ACTIVE.value:
        return False
    if not track_quantity or not variant.get('track_quantity', True):
        return True
    return variant.get('quantity', 0) > 0


def normalize_variant_options(options: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Validate and normalize option definitions.

    Option names are required and unique (case-insensitive); values are
    trimmed and de-duplicated; positions follow list order.
    """
    normalized = []
    seen_names = set()

    for position, option in enumerate(options):
        name = (option.get('name') or '').strip()
        if not name:
            raise ValidationError("Option name is required", {"position": position})
        if name.lower() in seen_names:
            raise ValidationError(f"Duplicate option name: {name}", {"name": name})
        seen_names.add(name.lower())

        values = []
        seen_values = set()
        for value in option.get('values') or []:
            text = (value.get('value') or '').strip()
            if not text or text.lower() in seen_values:
                continue
            seen_values.add(text.lower())
            values.append({
                'value': text,
                'color_code': value.get('color_code'),
                'position': len(values),
            })

        normalized.append({'name': name, 'position': position, 'values': values})

    return normalized


class VariantService:
    """Variant option management and generation for merchant products"""

    def __init__(self, db: Optional[CommerceDatabase] = None):
        self.db = db or get_commerce_db()

    async def load_product(self, product_id: str) -> Dict[str, Any]:
        result = await self.db.get_product(product_id)
        if not result.success:
            if result.error_code == NOT_FOUND:
                raise ProductNotFoundError(product_id)
            raise DatabaseError("Failed to load product", {"product_id": product_id})
        return result.data

    async def _load_variants(self, product_id: str) -> List[Dict[str, Any]]:
        result = await self.db.list_variants(product_id)
        if not result.success:
            raise DatabaseError("Failed to load variants", {"product_id": product_id})
        return result.data

    async def get_product_with_variants(self, product_id: str) -> Dict[str, Any]:
        """Product with its variants, variant_count and total_inventory over active variants"""
        product = await self.load_product(product_id)
        variants = await self._load_variants(product_id)

        active = [v for v in variants if v.get('status') == VariantStatus.ACTIVE.value]
        return {
            **product,
            'variant_options': product.get('variant_options') or [],
            'variants': variants,
            'variant_count': len(variants),
            'total_inventory': sum(v.get('quantity', 0) for v in active),
        }

    async def save_variant_options(self, product_id: str,
                                   options: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        await self.load_product(product_id)
        normalized = normalize_variant_options(options)

        result = await self.db.update_product(product_id, {
            'variant_options': normalized,
            'has_variants': len(normalized) > 0,
            'updated_at': datetime.utcnow().isoformat(),
        })
        if not result.success:
            raise DatabaseError("Failed to save variant options", {"product_id": product_id})

        logger.info(f"Saved {len(normalized)} variant options for product {product_id}")
        return normalized

    async def generate_variants(self, product_id: str, preserve_existing: bool = True,
                                default_price: Optional[float] = None,
                                default_quantity: int = 0) -> Dict[str, Any]:
        """
        Generate one variant per option-value combination.

        Returns:
            Dict with generated, preserved, total and variants
        """
        product = await self.load_product(product_id)
        options = product.get('variant_options') or []

        if not options:
            raise VariantGenerationError("No variant options defined. Add options first.")

        for option in options:
            if not option.get('values'):
                raise VariantGenerationError(f'Option "{option["name"]}" has no values')

        combinations = generate_variant_combinations(options)
        if not combinations:
            raise VariantGenerationError("No combinations could be generated")

        if len(combinations) > settings.MAX_VARIANTS:
            raise VariantGenerationError(
                f"Too many combinations ({len(combinations)}). Maximum is {settings.MAX_VARIANTS}.",
                {"combinations": len(combinations), "max_variants": settings.MAX_VARIANTS}
            )

        existing = await self._load_variants(product_id)
        now = datetime.utcnow().isoformat()

        if preserve_existing:
            has_default = any(v.get('is_default') for v in existing)
        else:
            if existing:
                delete_result = await self.db.delete_variants(
                    product_id, [v['variant_id'] for v in existing]
                )
                if not delete_result.success:
                    raise DatabaseError("Failed to replace variants", {"product_id": product_id})
            existing = []
            has_default = False

        to_create = []
        preserved = 0
        for index, attributes in enumerate(combinations):
            if find_variant_by_attributes(existing, attributes):
                preserved += 1
                continue

            to_create.append({
                'variant_id': str(uuid.uuid4()),
                'product_id': product_id,
                'attributes': attributes,
                'price': default_price,
                'quantity': default_quantity,
                'track_quantity': True,
                'is_default': index == 0 and not has_default,
                'status': VariantStatus.ACTIVE.value,
                'position': index,
                'created_at': now,
                'updated_at': now,
            })

        if to_create:
            put_result = await self.db.put_variants(to_create)
            if not put_result.success:
                raise DatabaseError("Failed to create variants", {"product_id": product_id})

        if not product.get('has_variants'):
            await self.db.update_product(product_id, {'has_variants': True, 'updated_at': now})

        variants = await self._load_variants(product_id)

        logger.info(
            f"Generated variants for product {product_id}: "
            f"created={len(to_create)}, preserved={preserved}, total={len(variants)}"
        )

        return {
            'generated': len(to_create),
            'preserved': preserved,
            'total': len(variants),
            'variants': variants,
        }

    async def replace_variants(self, product_id: str, options: List[Dict[str, Any]],
                               variants: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Bulk save of options and variants.

        Every variant must reference only defined options and their values.
        Variants submitted with a known variant_id keep that id; everything
        not submitted is deleted.
        """
        await self.load_product(product_id)
        normalized = normalize_variant_options(options)
        allowed = {o['name']: {v['value'] for v in o['values']} for o in normalized}

        for variant in variants:
            for name, value in (variant.get('attributes') or {}).items():
                if name not in allowed:
                    raise ValidationError(
                        f"Variant references undefined option: {name}",
                        {"option": name}
                    )
                if value not in allowed[name]:
                    raise ValidationError(
                        f"Variant references undefined value '{value}' for option {name}",
                        {"option": name, "value": value}
                    )

        if len(variants) > settings.MAX_VARIANTS:
            raise VariantGenerationError(
                f"Too many variants ({len(variants)}). Maximum is {settings.MAX_VARIANTS}."
            )

        existing = await self._load_variants(product_id)
        existing_by_id = {v['variant_id']: v for v in existing}
        now = datetime.utcnow().isoformat()

        default_seen = False
        rows = []
        for position, variant in enumerate(variants):
            variant_id = variant.get('variant_id')
            previous = existing_by_id.get(variant_id) if variant_id else None
            is_default = bool(variant.get('is_default')) and not default_seen
            default_seen = default_seen or is_default
            rows.append({
                **{k: v for k, v in variant.items() if k != 'variant_id'},
                'variant_id': variant_id if previous else str(uuid.uuid4()),
                'product_id': product_id,
                'status': _status_value(variant.get('status')),
                'is_default': is_default,
                'position': position,
                'created_at': previous.get('created_at', now) if previous else now,
                'updated_at': now,
            })

        if rows and not default_seen:
            rows[0]['is_default'] = True

        kept_ids = {row['variant_id'] for row in rows}
        stale_ids = [vid for vid in existing_by_id if vid not in kept_ids]
        if stale_ids:
            delete_result = await self.db.delete_variants(product_id, stale_ids)
            if not delete_result.success:
                raise DatabaseError("Failed to delete stale variants", {"product_id": product_id})

        if rows:
            put_result = await self.db.put_variants(rows)
            if not put_result.success:
                raise DatabaseError("Failed to save variants", {"product_id": product_id})

        await self.db.update_product(product_id, {
            'variant_options': normalized,
            'has_variants': len(normalized) > 0,
            'updated_at': now,
        })

        logger.info(f"Replaced variants for product {product_id}: {len(rows)} saved, {len(stale_ids)} removed")
        return {'options': normalized, 'variants': await self._load_variants(product_id)}

    async def update_variant(self, product_id: str, variant_id: str,
                             updates: Dict[str, Any]) -> Dict[str, Any]:
        for field_name in ('price', 'compare_at_price', 'quantity', 'weight'):
            value = updates.get(field_name)
            if value is not None and value < 0:
                raise ValidationError(f"{field_name} cannot be negative", {"field": field_name})

        if updates.get('status') is not None:
            updates['status'] = _status_value(updates['status'])

        siblings = await self._load_variants(product_id)
        if not any(v['variant_id'] == variant_id for v in siblings):
            raise VariantNotFoundError(variant_id, product_id)

        updates['updated_at'] = datetime.utcnow().isoformat()
        result = await self.db.update_variant(product_id, variant_id, updates)
        if not result.success:
            if result.error_code in (NOT_FOUND, CONDITION_FAILED):
                raise VariantNotFoundError(variant_id, product_id)
            raise DatabaseError("Failed to update variant", {"variant_id": variant_id})

        if updates.get('is_default'):
            for sibling in siblings:
                if sibling['variant_id'] != variant_id and sibling.get('is_default'):
                    await self.db.update_variant(product_id, sibling['variant_id'], {'is_default': False})

        return result.data

    async def delete_variant(self, product_id: str, variant_id: str) -> None:
        variants = await self._load_variants(product_id)
        target = next((v for v in variants if v['variant_id'] == variant_id), None)
        if target is None:
            raise VariantNotFoundError(variant_id, product_id)

        result = await self.db.delete_variants(product_id, [variant_id])
        if not result.success:
            raise DatabaseError("Failed to delete variant", {"variant_id": variant_id})

        remaining = [v for v in variants if v['variant_id'] != variant_id]
        if target.get('is_default') and remaining:
            await self.db.update_variant(product_id, remaining[0]['variant_id'], {'is_default': True})

        logger.info(f"Deleted variant {variant_id} of product {product_id}")


def _status_value(status: Any) -> str:
    if status is None:
        return VariantStatus.ACTIVE.value
    value = status.value if isinstance(status, VariantStatus) else str(status)
    if value not in {s.value for s in VariantStatus}:
        raise ValidationError(f"Invalid variant status: {value}", {"status": value})
    return value


# Global instance (lazy initialization)
_variant_service: Optional[VariantService] = None


def get_variant_service() -> VariantService:
    """Get or create the global VariantService instance"""
    global _variant_service
    if _variant_service is None:
        _variant_service = VariantService()
    return _variant_service
