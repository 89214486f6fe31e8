"""
Setup DynamoDB tables for StoreForge commerce
Creates the tables and global secondary indexes used by CommerceDatabase

Usage (from backend/):
    python -m scripts.create_tables
    DYNAMODB_ENDPOINT=http://localhost:8000 python -m scripts.create_tables
"""

import logging

import boto3
from botocore.exceptions import ClientError

from storeforge.core.config import settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _gsi(name: str, hash_key: str, range_key: str = None) -> dict:
    key_schema = [{'AttributeName': hash_key, 'KeyType': 'HASH'}]
    if range_key:
        key_schema.append({'AttributeName': range_key, 'KeyType': 'RANGE'})
    return {
        'IndexName': name,
        'KeySchema': key_schema,
        'Projection': {'ProjectionType': 'ALL'},
    }


def table_definitions() -> list:
    """(table name, key schema, string attributes, GSIs) for every table"""
    return [
        {
            'TableName': settings.DYNAMODB_STORES_TABLE,
            'keys': [('store_id', 'HASH')],
            'attributes': ['store_id'],
            'indexes': [],
        },
        {
            'TableName': settings.DYNAMODB_PRODUCTS_TABLE,
            'keys': [('product_id', 'HASH')],
            'attributes': ['product_id', 'store_id'],
            'indexes': [_gsi('store_id-index', 'store_id')],
        },
        {
            'TableName': settings.DYNAMODB_VARIANTS_TABLE,
            'keys': [('product_id', 'HASH'), ('variant_id', 'RANGE')],
            'attributes': ['product_id', 'variant_id'],
            'indexes': [],
        },
        {
            'TableName': settings.DYNAMODB_ORDERS_TABLE,
            'keys': [('order_id', 'HASH')],
            'attributes': [
                'order_id', 'order_number', 'razorpay_order_id',
                'razorpay_payment_id', 'store_id', 'created_at',
            ],
            'indexes': [
                _gsi('order_number-index', 'order_number'),
                _gsi('razorpay_order_id-index', 'razorpay_order_id'),
                _gsi('razorpay_payment_id-index', 'razorpay_payment_id'),
                _gsi('store_id-index', 'store_id', 'created_at'),
            ],
        },
        {
            'TableName': settings.DYNAMODB_RESERVATIONS_TABLE,
            'keys': [('reservation_id', 'HASH')],
            'attributes': ['reservation_id', 'order_id', 'item_key'],
            'indexes': [
                _gsi('order_id-index', 'order_id'),
                _gsi('item_key-index', 'item_key'),
            ],
        },
        {
            'TableName': settings.DYNAMODB_COUPONS_TABLE,
            'keys': [('store_id', 'HASH'), ('code', 'RANGE')],
            'attributes': ['store_id', 'code'],
            'indexes': [],
        },
        {
            'TableName': settings.DYNAMODB_COUPON_USAGE_TABLE,
            'keys': [('coupon_id', 'HASH'), ('order_id', 'RANGE')],
            'attributes': ['coupon_id', 'order_id'],
            'indexes': [],
        },
        {
            'TableName': settings.DYNAMODB_REFUNDS_TABLE,
            'keys': [('refund_id', 'HASH')],
            'attributes': ['refund_id', 'order_id', 'razorpay_refund_id', 'store_id', 'created_at'],
            'indexes': [
                _gsi('order_id-index', 'order_id'),
                _gsi('razorpay_refund_id-index', 'razorpay_refund_id'),
                _gsi('store_id-index', 'store_id', 'created_at'),
            ],
        },
    ]


def create_table(dynamodb, definition: dict) -> bool:
    """Create one table; an existing table is left alone"""
    name = definition['TableName']
    kwargs = {
        'TableName': name,
        'KeySchema': [{'AttributeName': attr, 'KeyType': key_type} for attr, key_type in definition['keys']],
        'AttributeDefinitions': [
            {'AttributeName': attr, 'AttributeType': 'S'} for attr in definition['attributes']
        ],
        'BillingMode': 'PAY_PER_REQUEST',
    }
    if definition['indexes']:
        kwargs['GlobalSecondaryIndexes'] = definition['indexes']

    try:
        table = dynamodb.create_table(**kwargs)
        table.wait_until_exists()
        logger.info(f"✅ Created {name}")
        return True
    except ClientError as e:
        if e.response['Error']['Code'] == 'ResourceInUseException':
            logger.info(f"📋 {name} already exists")
            return False
        logger.error(f"❌ Error creating {name}: {e}")
        raise


def create_dynamodb_tables():
    """Create all required DynamoDB tables"""
    kwargs = {'region_name': settings.AWS_REGION}
    if settings.DYNAMODB_ENDPOINT:
        kwargs['endpoint_url'] = settings.DYNAMODB_ENDPOINT
    dynamodb = boto3.resource('dynamodb', **kwargs)

    created = sum(1 for definition in table_definitions() if create_table(dynamodb, definition))
    logger.info(f"🎉 DynamoDB table setup completed ({created} created)")


if __name__ == "__main__":
    create_dynamodb_tables()
