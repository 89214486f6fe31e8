"""
StoreForge FastAPI Application
Commerce API: product variants, cart, checkout, orders, coupons and refunds
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storeforge.api.v1 import api_v1_router
from storeforge.core.config import settings
from storeforge.core.exceptions import StoreForgeException, storeforge_exception_handler
from storeforge.core.logging_config import new_request_id, set_request_id, setup_logging

setup_logging()
logger = logging.getLogger(__name__)

DEBUG = settings.ENVIRONMENT == "development"
APP_VERSION = "1.0.0"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Security headers on every response"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        if not DEBUG:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains; preload"
            )

        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
            response.headers["Pragma"] = "no-cache"

        return response


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Binds a request id to the logging context for the duration of the request.
    An incoming X-Request-ID is reused; the id is echoed in the response.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or new_request_id()
        request.state.request_id = request_id
        set_request_id(request_id)
        start_time = time.time()
        try:
            response = await call_next(request)
        finally:
            set_request_id(None)

        response.headers["X-Request-ID"] = request_id
        duration_ms = (time.time() - start_time) * 1000
        if request.url.path.startswith("/api/"):
            logger.debug(
                f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms:.1f}ms)"
            )
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.PROJECT_NAME} API ({settings.ENVIRONMENT})")
    if settings.PAYMENT_MOCK_MODE:
        logger.warning("Payment mock mode is ON: no real Razorpay orders or refunds will be created")
    if not settings.RAZORPAY_WEBHOOK_SECRET:
        logger.warning("RAZORPAY_WEBHOOK_SECRET not set: webhook deliveries will be rejected")
    yield
    logger.info(f"Shutting down {settings.PROJECT_NAME} API")


app = FastAPI(
    title=f"{settings.PROJECT_NAME} Commerce API",
    version=APP_VERSION,
    debug=DEBUG,
    lifespan=lifespan,
)

# =============================================================================
# MIDDLEWARE CONFIGURATION
# =============================================================================

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Razorpay-Signature"],
    expose_headers=["X-Request-ID"],
)

# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

app.add_exception_handler(StoreForgeException, storeforge_exception_handler)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with the same envelope as StoreForge errors"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": {
                "code": f"HTTP_{exc.status_code}",
                "message": exc.detail,
                "details": {},
            },
            "timestamp": datetime.utcnow().isoformat(),
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Never expose internal error details outside development"""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(
        f"Unhandled exception [request_id={request_id}]: {exc}",
        exc_info=True,
        extra={"path": request.url.path, "method": request.method},
    )

    details = {"request_id": request_id}
    if DEBUG:
        details["exception_type"] = type(exc).__name__
        details["exception_message"] = str(exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An internal error occurred. Please try again later.",
                "details": details,
            },
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


# =============================================================================
# ROUTER INCLUSION
# =============================================================================

app.include_router(api_v1_router)


@app.get("/")
async def root():
    return {
        "service": f"{settings.PROJECT_NAME} Commerce API",
        "version": APP_VERSION,
        "health": f"{settings.API_V1_STR}/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storeforge.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=DEBUG,
    )
