"""
Scheduled maintenance endpoints

Called by an external scheduler with `Authorization: Bearer <CRON_SECRET>`.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query

from storeforge.core.security import verify_cron_secret
from storeforge.services.inventory_service import InventoryService, get_inventory_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


@router.post("/cleanup-reservations")
async def cleanup_reservations(
    service: InventoryService = Depends(get_inventory_service),
):
    """Delete reservations whose hold window has passed"""
    deleted = await service.cleanup_expired_reservations()
    return {
        "success": True,
        "deleted": deleted,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/check-low-stock")
async def check_low_stock(
    store_id: str = Query(..., description="Store ID"),
    service: InventoryService = Depends(get_inventory_service),
):
    products = await service.get_low_stock_products(store_id)
    if products:
        logger.warning(
            f"Store {store_id} has {len(products)} low stock items",
            extra={"store_id": store_id, "low_stock_count": len(products)},
        )
    return {
        "success": True,
        "store_id": store_id,
        "low_stock_products": products,
        "count": len(products),
    }
