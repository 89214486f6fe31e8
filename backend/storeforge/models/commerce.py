"""
Commerce Pydantic Models

Request models and enums for the catalog, cart, checkout and dashboard
API endpoints. Used for:
- Input validation
- API documentation (OpenAPI/Swagger)
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict
from enum import Enum


# =============================================================================
# Enums
# =============================================================================

class OrderStatus(str, Enum):
    """Order lifecycle states"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    PACKED = "packed"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    RETURNED = "returned"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    RAZORPAY = "razorpay"
    COD = "cod"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_SHIPPING = "free_shipping"


class VariantStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


# =============================================================================
# Variant Models
# =============================================================================

class VariantOptionValue(BaseModel):
    value: str = Field(..., min_length=1, max_length=100)
    color_code: Optional[str] = Field(None, description="Hex swatch for color options")
    position: Optional[int] = None


class VariantOption(BaseModel):
    """An option axis such as Size or Color"""
    name: str = Field(..., min_length=1, max_length=50)
    position: Optional[int] = None
    values: List[VariantOptionValue] = Field(default_factory=list)


class SaveVariantOptionsRequest(BaseModel):
    options: List[VariantOption] = Field(default_factory=list)


class GenerateVariantsRequest(BaseModel):
    preserve_existing: bool = True
    default_price: Optional[float] = Field(None, ge=0)
    default_quantity: int = Field(default=0, ge=0)


class VariantInput(BaseModel):
    """Variant row submitted in a bulk replace"""
    variant_id: Optional[str] = None
    attributes: Dict[str, str]
    price: Optional[float] = Field(None, ge=0)
    compare_at_price: Optional[float] = Field(None, ge=0)
    sku: Optional[str] = None
    barcode: Optional[str] = None
    quantity: int = Field(default=0, ge=0)
    track_quantity: bool = True
    weight: Optional[float] = Field(None, ge=0)
    image_id: Optional[str] = None
    is_default: bool = False
    status: VariantStatus = VariantStatus.ACTIVE


class ReplaceVariantsRequest(BaseModel):
    options: List[VariantOption] = Field(default_factory=list)
    variants: List[VariantInput] = Field(default_factory=list)


class UpdateVariantRequest(BaseModel):
    price: Optional[float] = Field(None, ge=0)
    compare_at_price: Optional[float] = Field(None, ge=0)
    sku: Optional[str] = None
    barcode: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0)
    track_quantity: Optional[bool] = None
    weight: Optional[float] = Field(None, ge=0)
    image_id: Optional[str] = None
    is_default: Optional[bool] = None
    status: Optional[VariantStatus] = None


# =============================================================================
# Cart / Checkout Models
# =============================================================================

class CartItemRequest(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(..., ge=1, le=1000)


class ShippingAddress(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., pattern=r'^\+?[0-9]{10,15}$')
    address_line1: str = Field(..., min_length=1, max_length=200)
    address_line2: Optional[str] = Field(None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    pincode: str = Field(..., pattern=r'^[0-9]{6}$')
    country: str = "India"


class CartValidateRequest(BaseModel):
    store_id: str
    items: List[CartItemRequest] = Field(..., min_length=1)
    payment_method: PaymentMethod = PaymentMethod.RAZORPAY
    coupon_code: Optional[str] = None
    customer_email: Optional[str] = None


class ApplyCouponRequest(BaseModel):
    store_id: str
    code: str = Field(..., min_length=1, max_length=50)
    items: List[CartItemRequest] = Field(..., min_length=1)
    customer_email: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.RAZORPAY


class CreateOrderRequest(BaseModel):
    """Storefront checkout request"""
    store_id: str
    items: List[CartItemRequest] = Field(..., min_length=1)
    customer_name: str = Field(..., min_length=1, max_length=100)
    customer_email: str = Field(..., pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
    customer_phone: str = Field(..., pattern=r'^\+?[0-9]{10,15}$')
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.RAZORPAY
    coupon_code: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator('customer_email')
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower()


class VerifyPaymentRequest(BaseModel):
    order_id: str
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


# =============================================================================
# Dashboard Models
# =============================================================================

class UpdateOrderStatusRequest(BaseModel):
    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = Field(None, max_length=100)
    courier_name: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=1000)


class RefundRequest(BaseModel):
    amount: float = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=500)


class CouponCreateRequest(BaseModel):
    code: str = Field(..., min_length=3, max_length=50, pattern=r'^[A-Za-z0-9_-]+$')
    description: Optional[str] = Field(None, max_length=500)
    discount_type: DiscountType
    discount_value: float = Field(default=0, ge=0)
    minimum_order_value: Optional[float] = Field(None, ge=0)
    maximum_discount_amount: Optional[float] = Field(None, gt=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    usage_limit_per_customer: int = Field(default=1, ge=1)
    starts_at: Optional[str] = None
    expires_at: Optional[str] = None
    active: bool = True

    @field_validator('code')
    @classmethod
    def uppercase_code(cls, v):
        return v.strip().upper()

    @model_validator(mode='after')
    def check_discount_value(self):
        if self.discount_type != DiscountType.FREE_SHIPPING and self.discount_value <= 0:
            raise ValueError("discount_value must be greater than 0")
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return self


class CouponUpdateRequest(BaseModel):
    description: Optional[str] = Field(None, max_length=500)
    discount_value: Optional[float] = Field(None, gt=0)
    minimum_order_value: Optional[float] = Field(None, ge=0)
    maximum_discount_amount: Optional[float] = Field(None, gt=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    usage_limit_per_customer: Optional[int] = Field(None, ge=1)
    starts_at: Optional[str] = None
    expires_at: Optional[str] = None
    active: Optional[bool] = None
