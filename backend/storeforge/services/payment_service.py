"""
Payment Service

Thin wrapper around the Razorpay SDK for checkout and refunds. Amounts are
taken in rupees and sent to Razorpay in paise.

In mock mode the outbound calls (order creation, refunds) return fake
provider objects; signature verification always runs for real.
"""

import asyncio
import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional, Union

import razorpay

from storeforge.core.config import settings
from storeforge.core.exceptions import ConfigurationError
from storeforge.services.pricing import to_money

logger = logging.getLogger(__name__)


def to_paise(amount: Any) -> int:
    return int(to_money(amount) * 100)


def from_paise(amount_paise: Any) -> float:
    return float(to_money(Decimal(int(amount_paise)) / Decimal("100")))


class PaymentService:
    def __init__(self, key_id: Optional[str] = None, key_secret: Optional[str] = None,
                 webhook_secret: Optional[str] = None, mock_mode: Optional[bool] = None):
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.RAZORPAY_WEBHOOK_SECRET
        self.mock_mode = settings.PAYMENT_MOCK_MODE if mock_mode is None else mock_mode

        self.razorpay_client = razorpay.Client(auth=(self.key_id, self.key_secret))

    async def create_order(self, amount: Any, currency: Optional[str] = None,
                           receipt: Optional[str] = None,
                           notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Create a Razorpay order.

        Returns:
            Dict with success and either `order` (the provider order) or `error`
        """
        currency = currency or settings.CURRENCY
        payload = {
            "amount": to_paise(amount),
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }

        if self.mock_mode:
            mock_order = {
                "id": f"order_mock_{uuid.uuid4().hex[:14]}",
                "entity": "order",
                "amount": payload["amount"],
                "amount_paid": 0,
                "amount_due": payload["amount"],
                "currency": currency,
                "receipt": receipt,
                "status": "created",
                "notes": payload["notes"],
            }
            logger.info(f"Mock Razorpay order {mock_order['id']} for receipt {receipt}")
            return {"success": True, "order": mock_order}

        try:
            razorpay_order = await asyncio.to_thread(self.razorpay_client.order.create, data=payload)
            logger.info(f"Razorpay order {razorpay_order['id']} created for receipt {receipt}")
            return {"success": True, "order": razorpay_order}
        except Exception as e:
            logger.error(f"Razorpay order creation failed for receipt {receipt}: {e}")
            return {"success": False, "error": f"Payment order creation failed: {str(e)}"}

    def verify_payment_signature(self, razorpay_order_id: str, razorpay_payment_id: str,
                                 razorpay_signature: str) -> bool:
        """HMAC-SHA256 of `order_id|payment_id` with the key secret"""
        params_dict = {
            'razorpay_order_id': razorpay_order_id,
            'razorpay_payment_id': razorpay_payment_id,
            'razorpay_signature': razorpay_signature,
        }
        try:
            self.razorpay_client.utility.verify_payment_signature(params_dict)
            return True
        except razorpay.errors.SignatureVerificationError:
            logger.warning(f"Payment signature mismatch for Razorpay order {razorpay_order_id}")
            return False

    def verify_webhook_signature(self, body: Union[str, bytes], signature: Optional[str]) -> bool:
        """
        Verify the X-Razorpay-Signature header against the raw request body.

        Raises:
            ConfigurationError: when no webhook secret is configured
        """
        if not self.webhook_secret:
            raise ConfigurationError("Razorpay webhook secret is not configured")
        if not signature:
            return False
        if isinstance(body, bytes):
            body = body.decode("utf-8")
        try:
            self.razorpay_client.utility.verify_webhook_signature(body, signature, self.webhook_secret)
            return True
        except razorpay.errors.SignatureVerificationError:
            logger.warning("Webhook signature mismatch")
            return False

    async def refund_payment(self, payment_id: str, amount: Any = None,
                             notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Refund a captured payment, in full when no amount is given.

        Returns:
            Dict with success and either `refund` (the provider refund) or `error`
        """
        refund_data: Dict[str, Any] = {"notes": notes or {}}
        if amount is not None:
            refund_data["amount"] = to_paise(amount)

        if self.mock_mode:
            mock_refund = {
                "id": f"rfnd_mock_{uuid.uuid4().hex[:14]}",
                "entity": "refund",
                "payment_id": payment_id,
                "amount": refund_data.get("amount"),
                "currency": settings.CURRENCY,
                "status": "processed",
                "notes": refund_data["notes"],
            }
            logger.info(f"Mock refund {mock_refund['id']} for payment {payment_id}")
            return {"success": True, "refund": mock_refund}

        try:
            refund = await asyncio.to_thread(self.razorpay_client.payment.refund, payment_id, refund_data)
            logger.info(f"Razorpay refund {refund['id']} created for payment {payment_id}")
            return {"success": True, "refund": refund}
        except Exception as e:
            logger.error(f"Razorpay refund failed for payment {payment_id}: {e}")
            return {"success": False, "error": f"Refund failed: {str(e)}"}


# Global instance (lazy initialization)
_payment_service: Optional[PaymentService] = None


def get_payment_service() -> PaymentService:
    """Get or create the global PaymentService instance"""
    global _payment_service
    if _payment_service is None:
        _payment_service = PaymentService()
    return _payment_service
