"""Cart module: items, pricing, storage, operations and login merge."""
from .events import (
    CANCELABLE_EVENTS,
    CartEvent,
    CartEventType,
    EventDispatcher,
    NotificationPort,
    NullNotifier,
)
from .merge import MergeCoordinator, MergeResult, combine_states, user_identifier
from .models import CartItem, CartState, PricingContext, ResolvedPrice, make_row_key
from .pricing import PriceResolutionCache
from .products import Buyable, Priceable, ProductId
from .resolvers import (
    BestPriceResolver,
    CallbackPriceResolver,
    ChainPriceResolver,
    PriceResolver,
    ProductPriceResolver,
)
from .service import CartOperations
from .storage import CartStorage, MemoryStorage, RedisStorage

__all__ = [
    "CANCELABLE_EVENTS",
    "BestPriceResolver",
    "Buyable",
    "CallbackPriceResolver",
    "CartEvent",
    "CartEventType",
    "CartItem",
    "CartOperations",
    "CartState",
    "CartStorage",
    "ChainPriceResolver",
    "EventDispatcher",
    "MemoryStorage",
    "MergeCoordinator",
    "MergeResult",
    "NotificationPort",
    "NullNotifier",
    "PriceResolutionCache",
    "PriceResolver",
    "Priceable",
    "PricingContext",
    "ProductId",
    "ProductPriceResolver",
    "RedisStorage",
    "ResolvedPrice",
    "combine_states",
    "make_row_key",
    "user_identifier",
]
