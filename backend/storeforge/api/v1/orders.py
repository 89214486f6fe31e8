"""
Storefront order API

Checkout, client-side payment verification and public order tracking.
"""

from fastapi import APIRouter, Depends

from storeforge.models.commerce import CreateOrderRequest, VerifyPaymentRequest
from storeforge.services.order_service import (
    OrderService,
    get_order_service,
    public_order,
)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/create", status_code=201)
async def create_order(
    request: CreateOrderRequest,
    service: OrderService = Depends(get_order_service),
):
    """
    Place an order.

    Online orders return Razorpay checkout parameters; COD orders come back
    already confirmed.
    """
    result = await service.create_order(request.model_dump(mode='json'))
    order = result['order']
    return {
        "success": True,
        "order_id": order['order_id'],
        "order_number": order['order_number'],
        "order": public_order(order),
        "razorpay": result['razorpay'],
        "payment_required": result['razorpay'] is not None,
    }


@router.post("/verify-payment")
async def verify_payment(
    request: VerifyPaymentRequest,
    service: OrderService = Depends(get_order_service),
):
    order = await service.verify_payment(
        request.order_id,
        request.razorpay_order_id,
        request.razorpay_payment_id,
        request.razorpay_signature,
    )
    return {
        "success": True,
        "order_id": order['order_id'],
        "order_number": order['order_number'],
        "payment_status": order['payment_status'],
        "status": order['status'],
        "message": "Payment verified successfully",
    }


@router.get("/lookup/{order_number}")
async def lookup_order(
    order_number: str,
    service: OrderService = Depends(get_order_service),
):
    """Order tracking by order number"""
    order = await service.lookup_order(order_number)
    return {"success": True, "order": order}
