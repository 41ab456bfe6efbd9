"""Per-request memoization of resolved prices.

Lives inside one CartOperations instance, so cached prices never outlive
the request that resolved them.
"""
from typing import Callable, Iterable, Optional

from pricecart.errors import UnresolvablePriceError
from pricecart.logging import get_logger

from .models import CartItem, CartState, PricingContext, ResolvedPrice
from .resolvers import PriceResolver

logger = get_logger(__name__)


class PriceResolutionCache:
    """
    Resolves and memoizes prices for the items of one cart state.

    Features:
    - Keyed by the pricing context digest (user, currency, locale)
    - The first read of an unpriced item prices every unpriced item
      through a single resolve_many call
    - All-or-nothing: a failed batch leaves no prices behind
    """

    def __init__(
        self,
        resolver: PriceResolver,
        context_provider: Callable[[], PricingContext],
    ) -> None:
        self.resolver = resolver
        self._context_provider = context_provider
        self._state: Optional[CartState] = None
        self._resolved = False
        self._digest: Optional[str] = None

    @property
    def digest(self) -> Optional[str]:
        """Context digest the cached prices belong to."""
        return self._digest

    @property
    def is_warm(self) -> bool:
        return self._resolved

    def bind(self, state: CartState) -> None:
        """Attach to a freshly loaded state and hook its items."""
        self._state = state
        self._resolved = False
        self._digest = None
        for item in state.items.values():
            self.attach(item)

    def attach(self, item: CartItem) -> None:
        item.set_price_loader(self.ensure_resolved)

    def resolve(self, item: CartItem, context: PricingContext) -> ResolvedPrice:
        return self.resolver.resolve(item, context)

    def resolve_many(
        self,
        items: Iterable[CartItem],
        context: PricingContext,
    ) -> dict[str, ResolvedPrice]:
        """
        Resolve a batch, failing if any requested row is missing from the result.

        Raises:
            UnresolvablePriceError: If any item cannot be priced
        """
        items = list(items)
        if not items:
            return {}

        prices = self.resolver.resolve_many(items, context)
        for item in items:
            if item.row_key not in prices:
                raise UnresolvablePriceError(item.row_key, item.product_id)
        return prices

    def ensure_resolved(self) -> None:
        """Make sure every item of the bound state carries a price for the current context."""
        state = self._state
        if state is None or state.is_empty:
            return

        context = self._context_provider()
        digest = context.digest()

        if self._resolved and self._digest == digest:
            return

        if self._digest is not None and self._digest != digest:
            # Context changed since the last read: every price is stale
            state.clear_resolved_prices()

        unresolved = state.unresolved_items()
        if unresolved:
            prices = self.resolve_many(unresolved, context)
            # Applied only after the whole batch succeeded
            for item in unresolved:
                item.set_resolved_price(prices[item.row_key])
            logger.debug(f"Resolved {len(unresolved)} prices for scope {context.scope}")

        self._resolved = True
        self._digest = digest

    def invalidate(self) -> None:
        """Forget all cached prices of the bound state."""
        self._resolved = False
        self._digest = None
        if self._state is not None:
            self._state.clear_resolved_prices()
