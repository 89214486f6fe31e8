"""
Merchant coupon API
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from storeforge.core.security import get_current_store_owner
from storeforge.models.commerce import CouponCreateRequest, CouponUpdateRequest
from storeforge.services.coupon_service import CouponService, get_coupon_service

router = APIRouter(prefix="/dashboard/coupons", tags=["coupons"])


@router.get("")
async def list_coupons(
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: CouponService = Depends(get_coupon_service),
):
    coupons = await service.list_coupons(store_owner['store_id'])
    return {"success": True, "coupons": coupons, "count": len(coupons)}


@router.post("", status_code=201)
async def create_coupon(
    request: CouponCreateRequest,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: CouponService = Depends(get_coupon_service),
):
    coupon = await service.create_coupon(store_owner['store_id'], request.model_dump(mode='json'))
    return {"success": True, "coupon": coupon}


@router.patch("/{code}")
async def update_coupon(
    code: str,
    request: CouponUpdateRequest,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: CouponService = Depends(get_coupon_service),
):
    coupon = await service.update_coupon(
        store_owner['store_id'], code, request.model_dump(exclude_unset=True, mode='json')
    )
    return {"success": True, "coupon": coupon}


@router.delete("/{code}")
async def delete_coupon(
    code: str,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: CouponService = Depends(get_coupon_service),
):
    await service.delete_coupon(store_owner['store_id'], code)
    return {"success": True, "message": "Coupon deleted"}
