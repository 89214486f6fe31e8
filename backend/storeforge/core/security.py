"""
Security helpers for StoreForge

This module provides:
- JWT configuration loaded from the environment
- Store owner token creation and verification
- FastAPI dependencies for merchant endpoints and cron jobs

Merchant dashboard routes depend on `get_current_store_owner` and then call
`ensure_store_access` before touching a store-scoped resource.
"""

import os

# =============================================================================
# Module Exports
# =============================================================================
__all__ = [
    "ENVIRONMENT",
    "IS_PRODUCTION",
    "JWT_ALGORITHM",
    "JWT_STORE_OWNER_TOKEN_EXPIRE_DAYS",
    "get_jwt_secret",
    "create_store_owner_token",
    "verify_token",
    "security_scheme",
    "get_current_store_owner",
    "ensure_store_access",
    "verify_cron_secret",
]
import hmac
import logging
from typing import Optional, Dict, Any
from datetime import datetime, timedelta
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from storeforge.core.config import settings

logger = logging.getLogger(__name__)

# =============================================================================
# Environment Detection
# =============================================================================

ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
IS_PRODUCTION: bool = ENVIRONMENT == "production"

# =============================================================================
# JWT Configuration - Loaded from Environment
# =============================================================================

JWT_SECRET: str = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
JWT_STORE_OWNER_TOKEN_EXPIRE_DAYS: int = int(os.getenv("JWT_STORE_OWNER_TOKEN_EXPIRE_DAYS", "7"))

# Only used outside production when JWT_SECRET is not set
_DEV_FALLBACK_SECRET = "storeforge_dev_only_fallback_secret_32chars_min"
_DEV_FALLBACK_WARNED = False


def _get_jwt_secret() -> str:
    """
    Get JWT secret with environment-aware fallback.

    In production: Requires JWT_SECRET to be set and at least 32 characters
    In development: Falls back to a development secret with a warning
    """
    global _DEV_FALLBACK_WARNED

    if JWT_SECRET and len(JWT_SECRET) >= 32:
        return JWT_SECRET

    if IS_PRODUCTION:
        raise ValueError(
            "JWT_SECRET environment variable must be set and at least 32 characters in production"
        )

    if not JWT_SECRET:
        if not _DEV_FALLBACK_WARNED:
            logger.warning("JWT_SECRET not set - using development fallback secret")
            _DEV_FALLBACK_WARNED = True
        return _DEV_FALLBACK_SECRET

    logger.warning(
        f"JWT_SECRET is only {len(JWT_SECRET)} characters. "
        "Recommended minimum is 32 characters."
    )
    return JWT_SECRET


def get_jwt_secret() -> str:
    """Get the active JWT secret."""
    return _get_jwt_secret()


# =============================================================================
# Token Utilities
# =============================================================================

def create_store_owner_token(store_owner_data: Dict[str, Any],
                             expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT token for a store owner.

    Args:
        store_owner_data: Must contain `user_id` and `store_id`
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    expire = datetime.utcnow() + (expires_delta or timedelta(days=JWT_STORE_OWNER_TOKEN_EXPIRE_DAYS))

    to_encode = {
        **store_owner_data,
        "exp": expire,
        "iat": datetime.utcnow(),
        "type": "store_owner"
    }

    return jwt.encode(to_encode, _get_jwt_secret(), algorithm=JWT_ALGORITHM)


def verify_token(token: str, expected_type: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Raises:
        jwt.ExpiredSignatureError: If token has expired
        jwt.InvalidTokenError: If token is invalid
        ValueError: If token type doesn't match expected
    """
    payload = jwt.decode(
        token,
        _get_jwt_secret(),
        algorithms=[JWT_ALGORITHM],
        options={
            "verify_signature": True,
            "verify_exp": True,
            "require": ["exp", "iat"]
        }
    )

    if expected_type and payload.get("type") != expected_type:
        raise ValueError(f"Expected token type '{expected_type}', got '{payload.get('type')}'")

    return payload


# =============================================================================
# FastAPI Authentication Dependencies
# =============================================================================

security_scheme = HTTPBearer(auto_error=False)


async def get_current_store_owner(
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme)
) -> Dict[str, Any]:
    """
    FastAPI dependency to get the authenticated store owner from a JWT token.

    Raises:
        HTTPException: 401 when the token is missing, expired or invalid,
            403 when it is not a store owner token or carries no store
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"}
        )

    try:
        payload = verify_token(credentials.credentials, expected_type="store_owner")
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Store owner access required"
        )

    if not payload.get("store_id"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No store associated with this account"
        )

    return {
        'user_id': payload.get('user_id') or payload.get('sub'),
        'store_id': payload.get('store_id'),
        'token_type': 'store_owner',
        'payload': payload
    }


def ensure_store_access(store_owner: Dict[str, Any], store_id: Optional[str]) -> None:
    """Reject access to a resource that belongs to another store."""
    if store_id is None or store_owner.get("store_id") != store_id:
        logger.warning(
            f"Store owner {store_owner.get('user_id')} denied access to store {store_id}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied"
        )


async def verify_cron_secret(
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme)
) -> None:
    """Cron endpoints require `Bearer <CRON_SECRET>` when a secret is configured."""
    if not settings.CRON_SECRET:
        return

    provided = credentials.credentials if credentials else ""
    if not hmac.compare_digest(provided.encode(), settings.CRON_SECRET.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )
