"""Pytest configuration and fixtures"""
import os
from typing import Optional
from unittest.mock import Mock

import pytest

# Set test environment variables
os.environ.setdefault("UPSTASH_REDIS_REST_URL", "https://test.upstash.io")
os.environ.setdefault("UPSTASH_REDIS_REST_TOKEN", "test_token")

from pricecart.cart import (  # noqa: E402
    CartOperations,
    EventDispatcher,
    MemoryStorage,
    PriceResolver,
    ResolvedPrice,
)
from pricecart.config import CartConfig  # noqa: E402
from pricecart.errors import UnresolvablePriceError  # noqa: E402


class FakeProduct:
    """Buyable + Priceable product used across tests."""

    def __init__(self, product_id, price: int, original: Optional[int] = None, product_kind: str = "product"):
        self.product_id = product_id
        self.price = price
        self.original = original if original is not None else price
        self.product_kind = product_kind

    def product_identity(self):
        return self.product_id

    def display_label(self) -> str:
        return f"Product {self.product_id}"

    def kind(self) -> str:
        return self.product_kind

    def current_price(self, context=None) -> int:
        return self.price

    def original_price(self) -> int:
        return self.original


class LabelOnlyProduct:
    """Buyable without pricing capability."""

    def __init__(self, product_id):
        self.product_id = product_id

    def product_identity(self):
        return self.product_id

    def display_label(self) -> str:
        return "No price"

    def kind(self) -> str:
        return "label"


class CountingResolver(PriceResolver):
    """Prices by product id and records every batch it receives."""

    def __init__(self, prices: Optional[dict] = None, originals: Optional[dict] = None):
        self.prices = dict(prices or {})
        self.originals = dict(originals or {})
        self.batches: list[list[str]] = []
        self.contexts: list = []

    def resolve(self, item, context):
        if item.product_id not in self.prices:
            raise UnresolvablePriceError(item.row_key, item.product_id)
        price = self.prices[item.product_id]
        return ResolvedPrice(
            unit_price=price,
            original_price=self.originals.get(item.product_id, price),
            source="test",
        )

    def resolve_many(self, items, context):
        items = list(items)
        self.batches.append([item.row_key for item in items])
        self.contexts.append(context)
        return super().resolve_many(items, context)


@pytest.fixture
def storage():
    """In-memory cart storage"""
    return MemoryStorage()


@pytest.fixture
def resolver():
    """Resolver knowing a handful of plain product ids"""
    return CountingResolver({"A": 1000, "B": 2500, "C": 500}, originals={"A": 1200})


@pytest.fixture
def config():
    """Default configuration"""
    return CartConfig()


@pytest.fixture
def dispatcher():
    """Event dispatcher with no handlers"""
    return EventDispatcher()


@pytest.fixture
def make_cart(storage, resolver, config, dispatcher):
    """Factory for CartOperations bound to the shared fixtures"""
    def _make(scope: str = "default", **kwargs) -> CartOperations:
        cart_storage = kwargs.pop("storage", storage)
        cart_resolver = kwargs.pop("resolver", resolver)
        kwargs.setdefault("config", config)
        kwargs.setdefault("notifier", dispatcher)
        return CartOperations(scope, cart_storage, cart_resolver, **kwargs)
    return _make


@pytest.fixture
def mock_redis():
    """Mock Upstash Redis client backed by dicts"""
    store: dict = {}
    sets: dict = {}
    client = Mock()

    def _set(key, value, ex=None):
        store[key] = value
        return True

    def _delete(*keys):
        removed = 0
        for key in keys:
            if store.pop(key, None) is not None or sets.pop(key, None) is not None:
                removed += 1
        return removed

    def _sadd(key, *members):
        sets.setdefault(key, set()).update(members)
        return len(members)

    def _srem(key, *members):
        current = sets.get(key, set())
        current.difference_update(members)
        return len(members)

    client.get.side_effect = lambda key: store.get(key)
    client.set.side_effect = _set
    client.delete.side_effect = _delete
    client.sadd.side_effect = _sadd
    client.srem.side_effect = _srem
    client.smembers.side_effect = lambda key: list(sets.get(key, set()))
    client.expire.return_value = True
    client.store = store
    client.sets = sets
    return client
