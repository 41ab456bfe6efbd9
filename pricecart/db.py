"""
Redis client for cart storage.

Provides a singleton Upstash Redis client plus the key layout used by
RedisStorage.
"""

import os
from typing import Optional

from upstash_redis import Redis

# Upstash uses REST_URL and REST_TOKEN
UPSTASH_REDIS_REST_URL = os.environ.get("UPSTASH_REDIS_REST_URL", "")
UPSTASH_REDIS_REST_TOKEN = os.environ.get("UPSTASH_REDIS_REST_TOKEN", "")

_redis_client: Optional[Redis] = None


def get_redis() -> Redis:
    """
    Get Upstash Redis client (singleton).

    Uses standard Upstash env var names:
    - UPSTASH_REDIS_REST_URL
    - UPSTASH_REDIS_REST_TOKEN
    """
    global _redis_client

    if _redis_client is None:
        if not UPSTASH_REDIS_REST_URL or not UPSTASH_REDIS_REST_TOKEN:
            raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
        _redis_client = Redis(url=UPSTASH_REDIS_REST_URL, token=UPSTASH_REDIS_REST_TOKEN)

    return _redis_client


class RedisKeys:
    """Redis key layout for carts."""

    DEFAULT_PREFIX = "cart"

    @staticmethod
    def cart_key(identifier: str, scope: str, prefix: str = DEFAULT_PREFIX) -> str:
        return f"{prefix}:{identifier}:{scope}"  # cart:{identifier}:{scope}

    @staticmethod
    def scopes_key(identifier: str, prefix: str = DEFAULT_PREFIX) -> str:
        return f"{prefix}:{identifier}:_scopes"  # set of scopes stored for identifier


class TTL:
    """Time-to-live constants for Redis keys (seconds)."""

    CART = 60 * 60 * 24 * 7  # 7 days for abandoned carts
