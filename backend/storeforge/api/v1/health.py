import asyncio
import time
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from storeforge.core.config import settings
from storeforge.core.database import get_db_manager

router = APIRouter(tags=["health"])

# Health check timeout (seconds)
HEALTH_CHECK_TIMEOUT = 5


async def run_with_timeout(coro, timeout: float, default: Dict[str, Any]) -> Dict[str, Any]:
    """Run a coroutine with timeout, return default on failure"""
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError:
        return {**default, "status": "timeout", "message": f"Check timed out after {timeout}s"}
    except Exception as e:
        return {**default, "status": "error", "message": str(e)}


async def check_dynamodb() -> Dict[str, Any]:
    """Describe the orders table to confirm connectivity"""
    start = time.time()
    manager = get_db_manager()
    client = manager.get_dynamodb_client()
    if client is None:
        return {"status": "not_configured", "message": "DynamoDB client not initialized"}

    response = await asyncio.to_thread(
        client.describe_table, TableName=settings.DYNAMODB_ORDERS_TABLE
    )
    return {
        "status": "healthy",
        "table": settings.DYNAMODB_ORDERS_TABLE,
        "table_status": response.get('Table', {}).get('TableStatus', 'unknown'),
        "latency_ms": round((time.time() - start) * 1000, 2),
        **manager.health_check(),
    }


@router.get("/health")
async def health_check():
    """Service and DynamoDB health"""
    dynamodb = await run_with_timeout(
        check_dynamodb(),
        timeout=HEALTH_CHECK_TIMEOUT,
        default={"table": settings.DYNAMODB_ORDERS_TABLE},
    )
    healthy = dynamodb["status"] == "healthy"
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "degraded",
            "service": settings.PROJECT_NAME,
            "environment": settings.ENVIRONMENT,
            "timestamp": datetime.utcnow().isoformat(),
            "checks": {"dynamodb": dynamodb},
        },
    )
