"""pricecart - shopping cart with read-time price resolution and ordered conditions."""
from pricecart.cart import (
    CartItem,
    CartOperations,
    CartState,
    MemoryStorage,
    MergeCoordinator,
    PricingContext,
    ProductPriceResolver,
    RedisStorage,
    ResolvedPrice,
)
from pricecart.config import CartConfig, MergeStrategy, TaxSettings
from pricecart.errors import CartError

__version__ = "0.1.0"

__all__ = [
    "CartConfig",
    "CartError",
    "CartItem",
    "CartOperations",
    "CartState",
    "MemoryStorage",
    "MergeCoordinator",
    "MergeStrategy",
    "PricingContext",
    "ProductPriceResolver",
    "RedisStorage",
    "ResolvedPrice",
    "TaxSettings",
]
