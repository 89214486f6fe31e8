from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from storeforge.core.security import get_current_store_owner
from storeforge.services.inventory_service import InventoryService, get_inventory_service

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.get("/low-stock")
async def get_low_stock_products(
    threshold: Optional[int] = Query(None, ge=0),
    store_owner: Dict[str, Any] = Depends(get_current_store_owner),
    service: InventoryService = Depends(get_inventory_service),
):
    """Get products and variants at or below their low stock threshold"""
    products = await service.get_low_stock_products(store_owner['store_id'], threshold)
    return {
        "success": True,
        "low_stock_products": products,
        "count": len(products),
    }
