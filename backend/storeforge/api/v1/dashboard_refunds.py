"""
Merchant refunds API

Store-wide refund history for the caller's store.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from storeforge.core.security import get_current_store_owner
from storeforge.models.commerce import RefundStatus
from storeforge.services.order_service import OrderService, get_order_service

router = APIRouter(prefix="/dashboard/refunds", tags=["dashboard-refunds"])


@router.get("")
async def list_refunds(
    status: Optional[RefundStatus] = None,
    limit: int = Query(50, ge=1, le=100),
    cursor: Optional[str] = None,
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: OrderService = Depends(get_order_service),
):
    """Refunds of the caller's store, newest first, with order number and customer"""
    result = await service.list_store_refunds(
        store_owner['store_id'], status.value if status else None, limit, cursor
    )
    return {
        "success": True,
        "refunds": result['refunds'],
        "count": len(result['refunds']),
        "next_cursor": result['next_cursor'],
    }
