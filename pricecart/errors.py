"""
Cart error taxonomy.

Message templates are centralized here so that log lines and exception
texts stay consistent across the package.
"""

from typing import Any

# Validation errors
ERROR_INVALID_QUANTITY = "Quantity must be at least 1, got {quantity}"
ERROR_UNKNOWN_ROW = "Cart row [{row_key}] does not exist"
ERROR_CAPACITY_EXCEEDED = "Cart scope [{scope}] has reached its maximum of {max_items} items"
ERROR_DUPLICATE_PRODUCT = "Product [{product_id}] is already in cart scope [{scope}] as row [{row_key}]"

# Pricing errors
ERROR_UNRESOLVABLE_PRICE = "Unable to resolve price for cart row [{row_key}]"
ERROR_PRODUCT_NOT_FOUND = "Product [{product_id}] not found for cart row [{row_key}]"
ERROR_NOT_PRICEABLE = "Product [{product_id}] does not expose pricing for cart row [{row_key}]"

# Storage errors
ERROR_STORAGE_READ = "Failed to read cart [{scope}] from storage"
ERROR_STORAGE_WRITE = "Failed to write cart [{scope}] to storage"
ERROR_IDENTIFIER_REQUIRED = "Storage backend requires an identifier for cart [{scope}]"

# Lifecycle errors
ERROR_OPERATION_CANCELLED = "Cart operation cancelled by [{event}] handler"


class CartError(Exception):
    """Base error for all cart failures."""

    code = "CART_ERROR"

    def __init__(self, message: str, scope: str | None = None, **context: Any) -> None:
        super().__init__(message)
        self.scope = scope
        self.context = context


class InvalidQuantityError(CartError):
    """Quantity below 1 passed to add or update."""

    code = "INVALID_QUANTITY"

    def __init__(self, quantity: Any, scope: str | None = None) -> None:
        super().__init__(ERROR_INVALID_QUANTITY.format(quantity=quantity), scope=scope)
        self.quantity = quantity


class UnknownRowError(CartError):
    """Row key not present in the cart."""

    code = "UNKNOWN_ROW"

    def __init__(self, row_key: str, scope: str | None = None) -> None:
        super().__init__(ERROR_UNKNOWN_ROW.format(row_key=row_key), scope=scope)
        self.row_key = row_key


class UnresolvablePriceError(CartError):
    """Resolver could not price an item."""

    code = "UNRESOLVABLE_PRICE"

    def __init__(
        self,
        row_key: str,
        product_id: Any = None,
        message: str | None = None,
    ) -> None:
        super().__init__(message or ERROR_UNRESOLVABLE_PRICE.format(row_key=row_key))
        self.row_key = row_key
        self.product_id = product_id

    @classmethod
    def product_not_found(cls, row_key: str, product_id: Any) -> "UnresolvablePriceError":
        return cls(
            row_key,
            product_id,
            ERROR_PRODUCT_NOT_FOUND.format(product_id=product_id, row_key=row_key),
        )

    @classmethod
    def not_priceable(cls, row_key: str, product_id: Any) -> "UnresolvablePriceError":
        return cls(
            row_key,
            product_id,
            ERROR_NOT_PRICEABLE.format(product_id=product_id, row_key=row_key),
        )


class CapacityExceededError(CartError):
    """New row would exceed max items for the scope."""

    code = "CAPACITY_EXCEEDED"

    def __init__(self, scope: str, max_items: int, current_count: int) -> None:
        super().__init__(
            ERROR_CAPACITY_EXCEEDED.format(scope=scope, max_items=max_items),
            scope=scope,
        )
        self.max_items = max_items
        self.current_count = current_count


class DuplicateProductError(CartError):
    """Product already present in a scope that disallows duplicates."""

    code = "DUPLICATE_PRODUCT"

    def __init__(self, scope: str, product_id: Any, row_key: str) -> None:
        super().__init__(
            ERROR_DUPLICATE_PRODUCT.format(product_id=product_id, scope=scope, row_key=row_key),
            scope=scope,
        )
        self.product_id = product_id
        self.row_key = row_key


class StorageReadError(CartError):
    """Storage backend could not load a cart. Non-fatal for readers."""

    code = "STORAGE_READ"

    def __init__(self, scope: str, message: str | None = None) -> None:
        super().__init__(message or ERROR_STORAGE_READ.format(scope=scope), scope=scope)


class StorageWriteError(CartError):
    """Storage backend could not persist a cart. Always propagated."""

    code = "STORAGE_WRITE"

    def __init__(self, scope: str, message: str | None = None) -> None:
        super().__init__(message or ERROR_STORAGE_WRITE.format(scope=scope), scope=scope)


class OperationCancelledError(CartError):
    """A cancelable lifecycle handler vetoed the operation."""

    code = "OPERATION_CANCELLED"

    def __init__(self, event: str, scope: str | None = None) -> None:
        super().__init__(ERROR_OPERATION_CANCELLED.format(event=event), scope=scope)
        self.event = event
