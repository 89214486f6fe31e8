"""
Payment provider webhooks

Razorpay retries deliveries that do not get a 2xx, so handler failures are
surfaced as 5xx and duplicate deliveries are absorbed by the order service.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from storeforge.core.exceptions import PaymentSignatureError, ValidationError
from storeforge.services.order_service import OrderService, get_order_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/razorpay")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    service: OrderService = Depends(get_order_service),
):
    body = await request.body()

    if not service.payments.verify_webhook_signature(body, x_razorpay_signature):
        logger.warning("Rejected Razorpay webhook with invalid signature")
        raise PaymentSignatureError("Invalid webhook signature")

    try:
        event = json.loads(body)
    except ValueError:
        raise ValidationError("Webhook body is not valid JSON")

    result = await service.handle_webhook_event(event)
    return {"success": True, "received": True, **result}
