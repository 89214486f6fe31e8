from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "StoreForge"
    ENVIRONMENT: str = "development"

    # AWS Settings
    AWS_REGION: str = "ap-south-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    DYNAMODB_ENDPOINT: Optional[str] = None

    # DynamoDB Tables
    DYNAMODB_STORES_TABLE: str = "storeforge-stores-dev"
    DYNAMODB_PRODUCTS_TABLE: str = "storeforge-products-dev"
    DYNAMODB_VARIANTS_TABLE: str = "storeforge-product-variants-dev"
    DYNAMODB_ORDERS_TABLE: str = "storeforge-orders-dev"
    DYNAMODB_RESERVATIONS_TABLE: str = "storeforge-inventory-reservations-dev"
    DYNAMODB_COUPONS_TABLE: str = "storeforge-coupons-dev"
    DYNAMODB_COUPON_USAGE_TABLE: str = "storeforge-coupon-usage-dev"
    DYNAMODB_REFUNDS_TABLE: str = "storeforge-refunds-dev"

    # Razorpay
    RAZORPAY_KEY_ID: str = "rzp_test_placeholder"
    RAZORPAY_KEY_SECRET: str = "test_secret_placeholder"
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = None
    PAYMENT_MOCK_MODE: bool = True
    CURRENCY: str = "INR"

    # Checkout / inventory
    RESERVATION_MINUTES: int = 15
    MAX_VARIANTS: int = 100
    LOW_STOCK_THRESHOLD: int = 5

    # Cron endpoints
    CRON_SECRET: Optional[str] = None

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
