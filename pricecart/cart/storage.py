"""Cart storage backends.

Every backend stores serialized CartStates per (identifier, scope). An
absent identifier means session-style scoping.
"""
import json
from abc import ABC, abstractmethod
from typing import Any, Optional

from pricecart.db import TTL, RedisKeys, get_redis
from pricecart.errors import (
    ERROR_IDENTIFIER_REQUIRED,
    CartError,
    StorageReadError,
    StorageWriteError,
)
from pricecart.logging import get_logger, sanitize_id_for_logging

from .models import CartState

logger = get_logger(__name__)

DEFAULT_IDENTIFIER = "default"

# Malformed JSON (a ValueError) or payloads that cannot be rebuilt into a CartState
UNREADABLE_STATE_ERRORS = (KeyError, TypeError, ValueError, CartError)


class CartStorage(ABC):
    """Storage collaborator contract."""

    @abstractmethod
    def get(self, scope: str, identifier: Optional[str] = None) -> Optional[CartState]:
        """Load a cart state, None when nothing is stored. Raises StorageReadError."""

    @abstractmethod
    def put(self, scope: str, state: CartState, identifier: Optional[str] = None) -> None:
        """Persist a cart state. Raises StorageWriteError."""

    @abstractmethod
    def forget(self, scope: str, identifier: Optional[str] = None) -> None:
        """Delete one stored cart."""

    @abstractmethod
    def flush(self, identifier: Optional[str] = None) -> None:
        """Delete every cart of an identifier, or everything when None."""


class MemoryStorage(CartStorage):
    """In-process storage. States are kept serialized so readers never share objects."""

    def __init__(self) -> None:
        self._storage: dict[str, dict[str, dict[str, Any]]] = {}

    def get(self, scope: str, identifier: Optional[str] = None) -> Optional[CartState]:
        data = self._storage.get(identifier or DEFAULT_IDENTIFIER, {}).get(scope)
        if data is None:
            return None
        try:
            return CartState.from_dict(json.loads(json.dumps(data)))
        except UNREADABLE_STATE_ERRORS as e:
            logger.warning(f"Dropping unreadable cart {scope}: {e}")
            self.forget(scope, identifier)
            return None

    def put(self, scope: str, state: CartState, identifier: Optional[str] = None) -> None:
        self._storage.setdefault(identifier or DEFAULT_IDENTIFIER, {})[scope] = state.to_dict()

    def forget(self, scope: str, identifier: Optional[str] = None) -> None:
        self._storage.get(identifier or DEFAULT_IDENTIFIER, {}).pop(scope, None)

    def flush(self, identifier: Optional[str] = None) -> None:
        if identifier is None:
            self._storage = {}
        else:
            self._storage.pop(identifier, None)

    def all(self) -> dict[str, dict[str, dict[str, Any]]]:
        return self._storage


class RedisStorage(CartStorage):
    """
    Carts in Upstash Redis.

    Features:
    - JSON payload per (identifier, scope) with TTL for abandoned carts
    - Per-identifier set of stored scopes so flush() can find them
    - Corrupted payloads are logged and deleted
    """

    def __init__(
        self,
        redis_client=None,
        prefix: str = RedisKeys.DEFAULT_PREFIX,
        ttl: int = TTL.CART,
        session_id: Optional[str] = None,
    ) -> None:
        self._redis = redis_client  # Lazy initialization
        self.prefix = prefix
        self.ttl = ttl
        self.session_id = session_id

    @property
    def redis(self):
        """Get Redis client (lazy initialization)."""
        if self._redis is None:
            self._redis = get_redis()
        return self._redis

    def _identifier(self, identifier: Optional[str]) -> Optional[str]:
        return identifier or self.session_id

    def get(self, scope: str, identifier: Optional[str] = None) -> Optional[CartState]:
        owner = self._identifier(identifier)
        if owner is None:
            logger.warning(f"RedisStorage.get called without identifier for cart {scope}")
            return None

        key = RedisKeys.cart_key(owner, scope, self.prefix)
        try:
            data = self.redis.get(key)
        except Exception as e:
            raise StorageReadError(scope, f"Cart read failed for {scope}: {e}") from e

        if not data:
            return None

        try:
            return CartState.from_dict(json.loads(data))
        except UNREADABLE_STATE_ERRORS as e:
            # Corrupted data - clear it and start over
            logger.warning(
                f"Corrupted cart data for {sanitize_id_for_logging(owner)}/{scope}: {e}"
            )
            try:
                self.redis.delete(key)
            except Exception:
                logger.warning("Failed to delete corrupted cart key", exc_info=True)
            return None

    def put(self, scope: str, state: CartState, identifier: Optional[str] = None) -> None:
        owner = self._identifier(identifier)
        if owner is None:
            raise StorageWriteError(scope, ERROR_IDENTIFIER_REQUIRED.format(scope=scope))

        try:
            self.redis.set(
                RedisKeys.cart_key(owner, scope, self.prefix),
                json.dumps(state.to_dict()),
                ex=self.ttl,
            )
            scopes_key = RedisKeys.scopes_key(owner, self.prefix)
            self.redis.sadd(scopes_key, scope)
            self.redis.expire(scopes_key, self.ttl)
        except Exception as e:
            logger.error(f"Failed to save cart {scope} to Redis: {e}")
            raise StorageWriteError(scope) from e

    def forget(self, scope: str, identifier: Optional[str] = None) -> None:
        owner = self._identifier(identifier)
        if owner is None:
            return

        try:
            self.redis.delete(RedisKeys.cart_key(owner, scope, self.prefix))
            self.redis.srem(RedisKeys.scopes_key(owner, self.prefix), scope)
        except Exception as e:
            logger.error(f"Failed to delete cart {scope} from Redis: {e}")
            raise StorageWriteError(scope) from e

    def flush(self, identifier: Optional[str] = None) -> None:
        owner = self._identifier(identifier)
        if owner is None:
            return

        scopes_key = RedisKeys.scopes_key(owner, self.prefix)
        try:
            scopes = self.redis.smembers(scopes_key) or []
            keys = [RedisKeys.cart_key(owner, scope, self.prefix) for scope in scopes]
            self.redis.delete(*keys, scopes_key)
        except Exception as e:
            logger.error(f"Failed to flush carts for {sanitize_id_for_logging(owner)}: {e}")
            raise StorageWriteError("*") from e
