"""
Centralized Exception Handling for StoreForge

- Exception classes for catalog, inventory, checkout and payment errors
- Standardized error response format
- Exception handler for FastAPI
"""

from fastapi.responses import JSONResponse
from datetime import datetime
import logging
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

__all__ = [
    "StoreForgeException",
    "AuthenticationError",
    "AuthorizationError",
    "ValidationError",
    "NotFoundError",
    "DatabaseError",
    "ExternalServiceError",
    "ConfigurationError",
    "StoreNotFoundError",
    "ProductNotFoundError",
    "VariantNotFoundError",
    "VariantGenerationError",
    "OrderError",
    "OrderNotFoundError",
    "OrderValidationError",
    "InvalidStatusTransitionError",
    "InsufficientStockError",
    "CartValidationError",
    "CouponError",
    "PaymentError",
    "PaymentSignatureError",
    "RefundError",
    "create_error_response",
    "storeforge_exception_handler",
    "ERROR_CODE_MAPPINGS",
]


class StoreForgeException(Exception):
    """Base exception for StoreForge application"""

    def __init__(self, message: str, error_code: str = "INTERNAL_ERROR", details: Dict[str, Any] = None, status_code: int = 500):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)


class AuthenticationError(StoreForgeException):
    def __init__(self, message: str = "Authentication failed", details: Dict[str, Any] = None):
        super().__init__(message, "AUTH_ERROR", details, 401)


class AuthorizationError(StoreForgeException):
    def __init__(self, message: str = "Access denied", details: Dict[str, Any] = None):
        super().__init__(message, "AUTHZ_ERROR", details, 403)


class ValidationError(StoreForgeException):
    def __init__(self, message: str = "Validation failed", details: Dict[str, Any] = None):
        super().__init__(message, "VALIDATION_ERROR", details, 400)


class NotFoundError(StoreForgeException):
    def __init__(self, message: str = "Resource not found", details: Dict[str, Any] = None):
        super().__init__(message, "NOT_FOUND", details, 404)


class DatabaseError(StoreForgeException):
    def __init__(self, message: str = "Database operation failed", details: Dict[str, Any] = None):
        super().__init__(message, "DATABASE_ERROR", details, 500)


class ExternalServiceError(StoreForgeException):
    def __init__(self, message: str = "External service error", details: Dict[str, Any] = None):
        super().__init__(message, "EXTERNAL_SERVICE_ERROR", details, 502)


class ConfigurationError(StoreForgeException):
    def __init__(self, message: str = "Server configuration error", details: Dict[str, Any] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details, 500)


# =============================================================================
# Catalog
# =============================================================================

class StoreNotFoundError(StoreForgeException):
    def __init__(self, store_id: str, details: Dict[str, Any] = None):
        super().__init__(
            f"Store '{store_id}' not found",
            "STORE_NOT_FOUND",
            {**(details or {}), "store_id": store_id},
            404
        )


class ProductNotFoundError(StoreForgeException):
    def __init__(self, product_id: str, details: Dict[str, Any] = None):
        super().__init__(
            f"Product '{product_id}' not found",
            "PRODUCT_NOT_FOUND",
            {**(details or {}), "product_id": product_id},
            404
        )


class VariantNotFoundError(StoreForgeException):
    def __init__(self, variant_id: str, product_id: str = None, details: Dict[str, Any] = None):
        detail_info = {**(details or {}), "variant_id": variant_id}
        if product_id:
            detail_info["product_id"] = product_id
        super().__init__(
            f"Variant '{variant_id}' not found",
            "VARIANT_NOT_FOUND",
            detail_info,
            404
        )


class VariantGenerationError(StoreForgeException):
    """Variant options cannot produce a valid set of combinations"""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message, "VARIANT_GENERATION_ERROR", details, 400)


# =============================================================================
# Orders and inventory
# =============================================================================

class OrderError(StoreForgeException):
    def __init__(self, message: str = "Order operation failed", error_code: str = "ORDER_ERROR",
                 details: Dict[str, Any] = None, status_code: int = 400):
        super().__init__(message, error_code, details, status_code)


class OrderNotFoundError(OrderError):
    def __init__(self, order_id: str, details: Dict[str, Any] = None):
        super().__init__(
            f"Order '{order_id}' not found",
            "ORDER_NOT_FOUND",
            {**(details or {}), "order_id": order_id},
            404
        )


class OrderValidationError(OrderError):
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message, "ORDER_VALIDATION_ERROR", details, 400)


class InvalidStatusTransitionError(OrderError):
    def __init__(self, current_status: str, requested_status: str, valid_transitions: List[str]):
        super().__init__(
            f"Invalid status transition from {current_status} to {requested_status}",
            "INVALID_STATUS_TRANSITION",
            {
                "current_status": current_status,
                "requested_status": requested_status,
                "valid_transitions": valid_transitions,
            },
            400
        )


class InsufficientStockError(OrderError):
    def __init__(self, unavailable_items: List[Dict[str, Any]], details: Dict[str, Any] = None):
        titles = ", ".join(item.get("title", "Unknown product") for item in unavailable_items)
        super().__init__(
            f"Insufficient stock for: {titles}",
            "INSUFFICIENT_STOCK",
            {**(details or {}), "unavailable_items": unavailable_items},
            400
        )


class CartValidationError(OrderError):
    def __init__(self, errors: List[str], details: Dict[str, Any] = None):
        super().__init__(
            "Cart validation failed",
            "CART_VALIDATION_FAILED",
            {**(details or {}), "errors": errors},
            400
        )


class CouponError(StoreForgeException):
    def __init__(self, message: str, reason: str = "invalid", details: Dict[str, Any] = None,
                 status_code: int = 400):
        super().__init__(message, "COUPON_ERROR", {**(details or {}), "reason": reason}, status_code)


# =============================================================================
# Payments
# =============================================================================

class PaymentError(StoreForgeException):
    def __init__(self, message: str = "Payment operation failed", error_code: str = "PAYMENT_ERROR",
                 details: Dict[str, Any] = None, status_code: int = 400):
        super().__init__(message, error_code, details, status_code)


class PaymentSignatureError(PaymentError):
    def __init__(self, message: str = "Invalid payment signature", details: Dict[str, Any] = None):
        super().__init__(message, "INVALID_SIGNATURE", details, 400)


class RefundError(PaymentError):
    def __init__(self, message: str, details: Dict[str, Any] = None, status_code: int = 400):
        super().__init__(message, "REFUND_ERROR", details, status_code)


ERROR_CODE_MAPPINGS = {
    "AUTH_ERROR": 401,
    "AUTHZ_ERROR": 403,
    "VALIDATION_ERROR": 400,
    "NOT_FOUND": 404,
    "DATABASE_ERROR": 500,
    "EXTERNAL_SERVICE_ERROR": 502,
    "CONFIGURATION_ERROR": 500,
    "INTERNAL_ERROR": 500,
    "STORE_NOT_FOUND": 404,
    "PRODUCT_NOT_FOUND": 404,
    "VARIANT_NOT_FOUND": 404,
    "VARIANT_GENERATION_ERROR": 400,
    "ORDER_NOT_FOUND": 404,
    "ORDER_VALIDATION_ERROR": 400,
    "INVALID_STATUS_TRANSITION": 400,
    "INSUFFICIENT_STOCK": 400,
    "CART_VALIDATION_FAILED": 400,
    "COUPON_ERROR": 400,
    "PAYMENT_ERROR": 400,
    "INVALID_SIGNATURE": 400,
    "REFUND_ERROR": 400,
}


def create_error_response(error: StoreForgeException, status_code: Optional[int] = None) -> JSONResponse:
    """Create standardized error response"""

    if status_code is None:
        status_code = error.status_code

    error_response = {
        "success": False,
        "error": {
            "code": error.error_code,
            "message": error.message,
            "details": error.details
        },
        "timestamp": datetime.utcnow().isoformat()
    }

    log = logger.error if status_code >= 500 else logger.warning
    log(f"StoreForge Error: {error.error_code} - {error.message}", extra={
        "error_code": error.error_code,
        "status_code": status_code,
    })

    return JSONResponse(
        status_code=status_code,
        content=error_response
    )


async def storeforge_exception_handler(request, exc: StoreForgeException) -> JSONResponse:
    """Global exception handler for StoreForge exceptions"""
    return create_error_response(exc)
