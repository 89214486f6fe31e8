"""
Product variant API

Merchant endpoints for option sets and variant rows of a product.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from storeforge.core.security import ensure_store_access, get_current_store_owner
from storeforge.models.commerce import (
    GenerateVariantsRequest,
    ReplaceVariantsRequest,
    SaveVariantOptionsRequest,
    UpdateVariantRequest,
)
from storeforge.services.variant_service import VariantService, get_variant_service

router = APIRouter(prefix="/products", tags=["variants"])


async def _authorize_product(service: VariantService, store_owner: Dict[str, Any],
                             product_id: str) -> Dict[str, Any]:
    product = await service.load_product(product_id)
    ensure_store_access(store_owner, product.get('store_id'))
    return product


@router.get("/{product_id}/variants")
async def get_variants(
    product_id: str,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: VariantService = Depends(get_variant_service),
):
    """Product with its option set and variants"""
    await _authorize_product(service, store_owner, product_id)
    product = await service.get_product_with_variants(product_id)
    return {
        "success": True,
        "product_id": product_id,
        "variant_options": product['variant_options'],
        "variants": product['variants'],
        "variant_count": product['variant_count'],
        "total_inventory": product['total_inventory'],
    }


@router.put("/{product_id}/variants")
async def replace_variants(
    product_id: str,
    request: ReplaceVariantsRequest,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: VariantService = Depends(get_variant_service),
):
    """Bulk save options and variants; variants not submitted are removed"""
    await _authorize_product(service, store_owner, product_id)
    result = await service.replace_variants(
        product_id,
        [option.model_dump() for option in request.options],
        [variant.model_dump(mode='json') for variant in request.variants],
    )
    return {"success": True, **result}


@router.post("/{product_id}/variants/options")
async def save_variant_options(
    product_id: str,
    request: SaveVariantOptionsRequest,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: VariantService = Depends(get_variant_service),
):
    await _authorize_product(service, store_owner, product_id)
    options = await service.save_variant_options(
        product_id, [option.model_dump() for option in request.options]
    )
    return {"success": True, "variant_options": options}


@router.post("/{product_id}/variants/generate")
async def generate_variants(
    product_id: str,
    request: GenerateVariantsRequest = GenerateVariantsRequest(),
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: VariantService = Depends(get_variant_service),
):
    """Generate the Cartesian product of the saved option values"""
    await _authorize_product(service, store_owner, product_id)
    result = await service.generate_variants(
        product_id,
        preserve_existing=request.preserve_existing,
        default_price=request.default_price,
        default_quantity=request.default_quantity,
    )
    return {"success": True, **result}


@router.patch("/{product_id}/variants/{variant_id}")
async def update_variant(
    product_id: str,
    variant_id: str,
    request: UpdateVariantRequest,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: VariantService = Depends(get_variant_service),
):
    await _authorize_product(service, store_owner, product_id)
    variant = await service.update_variant(
        product_id, variant_id, request.model_dump(exclude_unset=True, mode='json')
    )
    return {"success": True, "variant": variant}


@router.delete("/{product_id}/variants/{variant_id}")
async def delete_variant(
    product_id: str,
    variant_id: str,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: VariantService = Depends(get_variant_service),
):
    await _authorize_product(service, store_owner, product_id)
    await service.delete_variant(product_id, variant_id)
    return {"success": True, "message": "Variant deleted"}
