"""Price resolvers.

A resolver turns cart items into ResolvedPrices for a PricingContext.
`resolve_many` is fail-fast: one item that cannot be priced fails the call.
"""
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Mapping, Optional, Sequence

from pricecart.errors import UnresolvablePriceError
from pricecart.logging import get_logger

from .models import CartItem, PricingContext, ResolvedPrice
from .products import Priceable, ProductId

logger = get_logger(__name__)

# Batch product lookup: product refs in, products keyed by ref out
ProductLookup = Callable[[Sequence[ProductId]], Mapping[ProductId, object]]


class PriceResolver(ABC):
    """Contract for everything that can price cart items."""

    @abstractmethod
    def resolve(self, item: CartItem, context: PricingContext) -> ResolvedPrice:
        """Price one item or raise UnresolvablePriceError."""

    def resolve_many(
        self,
        items: Iterable[CartItem],
        context: PricingContext,
    ) -> dict[str, ResolvedPrice]:
        """Price several items, keyed by row key. Fails on the first failure."""
        return {item.row_key: self.resolve(item, context) for item in items}


class CallbackPriceResolver(PriceResolver):
    """Adapts a plain function `(item, context) -> ResolvedPrice | int`."""

    def __init__(self, callback: Callable[[CartItem, PricingContext], object]) -> None:
        self.callback = callback

    def resolve(self, item: CartItem, context: PricingContext) -> ResolvedPrice:
        result = self.callback(item, context)
        if result is None:
            raise UnresolvablePriceError(item.row_key, item.product_id)
        if isinstance(result, ResolvedPrice):
            return result
        return ResolvedPrice(unit_price=int(result), original_price=int(result), source="callback")


class ProductPriceResolver(PriceResolver):
    """
    Prices items through the Priceable capability of their product.

    Uses the product attached to the item when there is one, otherwise
    batch-loads products through `lookup` (one call per resolve_many).
    """

    source = "product"

    def __init__(self, lookup: Optional[ProductLookup] = None) -> None:
        self.lookup = lookup

    def resolve(self, item: CartItem, context: PricingContext) -> ResolvedPrice:
        product = item.product
        if product is None and self.lookup is not None:
            product = self.lookup([item.product_ref]).get(item.product_ref)
            if product is not None:
                item.product = product
        return self._price(item, product, context)

    def resolve_many(
        self,
        items: Iterable[CartItem],
        context: PricingContext,
    ) -> dict[str, ResolvedPrice]:
        items = list(items)
        if not items:
            return {}

        missing = list(dict.fromkeys(i.product_ref for i in items if i.product is None))
        loaded: Mapping[ProductId, object] = {}
        if missing and self.lookup is not None:
            loaded = self.lookup(missing)
            logger.debug(f"Loaded {len(loaded)}/{len(missing)} products for pricing")

        results = {}
        for item in items:
            product = item.product
            if product is None:
                product = loaded.get(item.product_ref)
                if product is not None:
                    item.product = product
            results[item.row_key] = self._price(item, product, context)
        return results

    def _price(self, item: CartItem, product: Optional[object], context: PricingContext) -> ResolvedPrice:
        if product is None:
            raise UnresolvablePriceError.product_not_found(item.row_key, item.product_id)
        if not isinstance(product, Priceable):
            raise UnresolvablePriceError.not_priceable(item.row_key, item.product_id)
        return ResolvedPrice(
            unit_price=int(product.current_price(context)),
            original_price=int(product.original_price()),
            source=self.source,
        )


class ChainPriceResolver(PriceResolver):
    """Asks resolvers in turn; the first one that can price an item wins."""

    def __init__(self, resolvers: Optional[list[PriceResolver]] = None) -> None:
        self.resolvers: list[PriceResolver] = list(resolvers or [])

    def add(self, resolver: PriceResolver) -> "ChainPriceResolver":
        self.resolvers.append(resolver)
        return self

    def resolve(self, item: CartItem, context: PricingContext) -> ResolvedPrice:
        last_error: Optional[UnresolvablePriceError] = None
        for resolver in self.resolvers:
            try:
                return resolver.resolve(item, context)
            except UnresolvablePriceError as e:
                last_error = e
        raise last_error or UnresolvablePriceError(item.row_key, item.product_id)

    def resolve_many(
        self,
        items: Iterable[CartItem],
        context: PricingContext,
    ) -> dict[str, ResolvedPrice]:
        remaining = {item.row_key: item for item in items}
        results: dict[str, ResolvedPrice] = {}

        for resolver in self.resolvers:
            if not remaining:
                break
            try:
                resolved = resolver.resolve_many(list(remaining.values()), context)
            except UnresolvablePriceError:
                continue
            for row_key, price in resolved.items():
                if row_key in remaining:
                    results[row_key] = price
                    del remaining[row_key]

        if remaining:
            first = next(iter(remaining.values()))
            raise UnresolvablePriceError(first.row_key, first.product_id)
        return results


class BestPriceResolver(PriceResolver):
    """Asks every resolver and keeps the lowest unit price per item."""

    def __init__(self, resolvers: Optional[list[PriceResolver]] = None) -> None:
        self.resolvers: list[PriceResolver] = list(resolvers or [])

    def add(self, resolver: PriceResolver) -> "BestPriceResolver":
        self.resolvers.append(resolver)
        return self

    def resolve(self, item: CartItem, context: PricingContext) -> ResolvedPrice:
        prices = []
        for resolver in self.resolvers:
            try:
                prices.append(resolver.resolve(item, context))
            except UnresolvablePriceError:
                continue
        if not prices:
            raise UnresolvablePriceError(item.row_key, item.product_id)
        return self._best(prices)

    def resolve_many(
        self,
        items: Iterable[CartItem],
        context: PricingContext,
    ) -> dict[str, ResolvedPrice]:
        items = list(items)
        candidates: dict[str, list[ResolvedPrice]] = {item.row_key: [] for item in items}

        for resolver in self.resolvers:
            try:
                for row_key, price in resolver.resolve_many(items, context).items():
                    if row_key in candidates:
                        candidates[row_key].append(price)
            except UnresolvablePriceError:
                # Batch failed for this resolver, salvage what it can price one by one
                for item in items:
                    try:
                        candidates[item.row_key].append(resolver.resolve(item, context))
                    except UnresolvablePriceError:
                        continue

        results = {}
        for item in items:
            prices = candidates[item.row_key]
            if not prices:
                raise UnresolvablePriceError(item.row_key, item.product_id)
            results[item.row_key] = self._best(prices)
        return results

    @staticmethod
    def _best(prices: list[ResolvedPrice]) -> ResolvedPrice:
        return min(prices, key=lambda p: p.unit_price)
