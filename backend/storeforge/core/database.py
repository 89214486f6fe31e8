"""
DynamoDB connection manager for StoreForge

- boto3 resource/client shared across the process
- botocore Config with connection pooling, timeouts and standard retries
- Credentials come from boto3's default provider chain

Usage:
    from storeforge.core.database import get_dynamodb

    table = get_dynamodb().Table(settings.DYNAMODB_ORDERS_TABLE)
"""

import os
import logging
from typing import Optional, Dict, Any

import boto3
from botocore.config import Config as BotoConfig

from storeforge.core.config import settings

logger = logging.getLogger(__name__)


def _create_boto_config(
    max_pool_connections: int = 25,
    connect_timeout: int = 5,
    read_timeout: int = 30,
    max_attempts: int = 3,
    retry_mode: str = 'standard'
) -> BotoConfig:
    """
    Create a boto3 Config object.

    Region and credentials are deliberately left out; region is passed to
    boto3 separately and credentials come from the default chain.
    """
    return BotoConfig(
        max_pool_connections=max_pool_connections,
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={
            'max_attempts': max_attempts,
            'mode': retry_mode
        }
    )


class DatabaseManager:
    """
    Process-wide DynamoDB connection manager.

    DynamoDB clients are thread-safe; resources are shared but only used
    from `asyncio.to_thread` workers one call at a time.
    """

    _instance: Optional['DatabaseManager'] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._initialized = True
        self._dynamodb_resource: Optional[Any] = None
        self._dynamodb_client: Optional[Any] = None

        self._aws_region = settings.AWS_REGION
        self._dynamodb_endpoint = settings.DYNAMODB_ENDPOINT

        self._max_pool_connections = int(os.getenv('BOTO_MAX_POOL_CONNECTIONS', '25'))
        self._connect_timeout = int(os.getenv('BOTO_CONNECT_TIMEOUT', '5'))
        self._read_timeout = int(os.getenv('BOTO_READ_TIMEOUT', '30'))
        self._max_retry_attempts = int(os.getenv('BOTO_MAX_RETRY_ATTEMPTS', '3'))
        self._retry_mode = os.getenv('BOTO_RETRY_MODE', 'standard')

        self._boto_config = _create_boto_config(
            max_pool_connections=self._max_pool_connections,
            connect_timeout=self._connect_timeout,
            read_timeout=self._read_timeout,
            max_attempts=self._max_retry_attempts,
            retry_mode=self._retry_mode
        )
        self._init_dynamodb()

        logger.info(
            f"DatabaseManager initialized: region={self._aws_region}, "
            f"pool_size={self._max_pool_connections}, retry_mode={self._retry_mode}"
        )

    def _init_dynamodb(self):
        """Initialize DynamoDB resource and client."""
        try:
            kwargs = {
                'region_name': self._aws_region,
                'config': self._boto_config
            }

            # DynamoDB Local for development
            if self._dynamodb_endpoint:
                kwargs['endpoint_url'] = self._dynamodb_endpoint
                logger.info(f"Using local DynamoDB endpoint: {self._dynamodb_endpoint}")

            self._dynamodb_resource = boto3.resource('dynamodb', **kwargs)
            self._dynamodb_client = boto3.client('dynamodb', **kwargs)

        except Exception as e:
            logger.error(f"Failed to initialize DynamoDB: {e}", exc_info=True)
            self._dynamodb_resource = None
            self._dynamodb_client = None

    def get_dynamodb(self) -> Optional[Any]:
        if not self._dynamodb_resource:
            logger.warning("DynamoDB resource not initialized")
        return self._dynamodb_resource

    def get_dynamodb_client(self) -> Optional[Any]:
        if not self._dynamodb_client:
            logger.warning("DynamoDB client not initialized")
        return self._dynamodb_client

    def health_check(self) -> Dict[str, Any]:
        return {
            "dynamodb": self._dynamodb_resource is not None,
            "region": self._aws_region,
            "endpoint": "local" if self._dynamodb_endpoint else "aws",
        }


def get_db_manager() -> DatabaseManager:
    """Get the DatabaseManager singleton, creating it on first use."""
    return DatabaseManager()


def get_dynamodb():
    """Get the shared DynamoDB resource"""
    return get_db_manager().get_dynamodb()

