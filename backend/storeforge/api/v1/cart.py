"""
Storefront cart API
"""

from fastapi import APIRouter, Depends

from storeforge.models.commerce import ApplyCouponRequest, CartValidateRequest
from storeforge.services.cart_service import CartService, get_cart_service

router = APIRouter(prefix="/cart", tags=["cart"])


def _items(request) -> list:
    return [item.model_dump() for item in request.items]


@router.post("/validate")
async def validate_cart(
    request: CartValidateRequest,
    service: CartService = Depends(get_cart_service),
):
    """
    Re-price and re-check a cart against the catalog.

    Lines with stock problems come back with an adjusted quantity and their
    issues; lines that cannot be sold are listed in `errors`.
    """
    result = await service.validate_cart(
        request.store_id,
        _items(request),
        payment_method=request.payment_method.value,
        coupon_code=request.coupon_code,
        customer_email=request.customer_email,
    )
    return {"success": True, **result}


@router.post("/apply-coupon")
async def apply_coupon(
    request: ApplyCouponRequest,
    service: CartService = Depends(get_cart_service),
):
    result = await service.apply_coupon(
        request.store_id,
        request.code,
        _items(request),
        customer_email=request.customer_email,
        payment_method=request.payment_method.value,
    )
    return {"success": True, **result}
