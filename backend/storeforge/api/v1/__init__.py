"""
API v1 Router Initialization
Exports all routers for the StoreForge API v1
"""

from fastapi import APIRouter
from .cart import router as cart_router
from .coupons import router as coupons_router
from .cron import router as cron_router
from .dashboard_orders import router as dashboard_orders_router
from .dashboard_refunds import router as dashboard_refunds_router
from .health import router as health_router
from .inventory import router as inventory_router
from .orders import router as orders_router
from .variants import router as variants_router
from .webhooks import router as webhooks_router

# Create main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

# Include all routers
api_v1_router.include_router(health_router)
api_v1_router.include_router(variants_router)
api_v1_router.include_router(cart_router)
api_v1_router.include_router(orders_router)
api_v1_router.include_router(dashboard_orders_router)
api_v1_router.include_router(dashboard_refunds_router)
api_v1_router.include_router(coupons_router)
api_v1_router.include_router(inventory_router)
api_v1_router.include_router(webhooks_router)
api_v1_router.include_router(cron_router)

# Export the main router
__all__ = ["api_v1_router"]
