"""
Merchant order management API

All endpoints are scoped to the store in the caller's store-owner token.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from storeforge.core.security import ensure_store_access, get_current_store_owner
from storeforge.models.commerce import OrderStatus, RefundRequest, UpdateOrderStatusRequest
from storeforge.services.order_service import OrderService, get_order_service

router = APIRouter(prefix="/dashboard/orders", tags=["dashboard-orders"])


async def _authorized_order(service: OrderService, store_owner: Dict[str, Any],
                            order_id: str) -> Dict[str, Any]:
    order = await service.get_order(order_id)
    ensure_store_access(store_owner, order.get('store_id'))
    return order


@router.get("")
async def list_orders(
    status: Optional[OrderStatus] = None,
    limit: int = Query(50, ge=1, le=100),
    cursor: Optional[str] = None,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: OrderService = Depends(get_order_service),
):
    """Orders of the caller's store, newest first"""
    result = await service.list_store_orders(
        store_owner['store_id'], status.value if status else None, limit, cursor
    )
    return {
        "success": True,
        "orders": result['orders'],
        "count": len(result['orders']),
        "next_cursor": result['next_cursor'],
    }


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: OrderService = Depends(get_order_service),
):
    order = await _authorized_order(service, store_owner, order_id)
    return {"success": True, "order": order}


@router.patch("/{order_id}")
async def update_order(
    order_id: str,
    request: UpdateOrderStatusRequest,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: OrderService = Depends(get_order_service),
):
    """Move an order along its lifecycle and/or set tracking details"""
    await _authorized_order(service, store_owner, order_id)
    order = await service.update_order_status(
        order_id,
        status=request.status.value if request.status else None,
        tracking_number=request.tracking_number,
        courier_name=request.courier_name,
        notes=request.notes,
    )
    return {
        "success": True,
        "order": order,
        "message": f"Order status updated to {request.status.value if request.status else 'updated'}",
    }


@router.delete("/{order_id}")
async def cancel_order(
    order_id: str,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: OrderService = Depends(get_order_service),
):
    """Cancel an unshipped order, refunding it if it was paid online"""
    await _authorized_order(service, store_owner, order_id)
    order = await service.cancel_order(order_id)
    return {"success": True, "order": order, "message": "Order cancelled"}


@router.post("/{order_id}/refund")
async def refund_order(
    order_id: str,
    request: RefundRequest,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: OrderService = Depends(get_order_service),
):
    await _authorized_order(service, store_owner, order_id)
    result = await service.refund_order(order_id, request.amount, request.reason)
    return {"success": True, **result}


@router.get("/{order_id}/refund")
async def list_refunds(
    order_id: str,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: OrderService = Depends(get_order_service),
):
    await _authorized_order(service, store_owner, order_id)
    refunds = await service.list_refunds(order_id)
    return {"success": True, "refunds": refunds, "count": len(refunds)}
