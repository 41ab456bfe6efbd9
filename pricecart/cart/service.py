"""CartOperations - mutation and totals for one cart scope.

One instance serves one request: it loads the CartState on first access,
keeps it (and the resolved prices) for its lifetime and rewrites storage
after every mutating call.
"""
from typing import Any, Optional, Union

from pricecart.conditions import CART_TARGETS, Condition, ConditionPipeline, ConditionType
from pricecart.config import CartConfig
from pricecart.errors import (
    CapacityExceededError,
    DuplicateProductError,
    InvalidQuantityError,
    OperationCancelledError,
    StorageReadError,
    StorageWriteError,
    UnknownRowError,
    UnresolvablePriceError,
)
from pricecart.logging import get_logger, sanitize_id_for_logging

from .events import CartEvent, CartEventType, NotificationPort, NullNotifier
from .models import CartItem, CartState, PricingContext
from .pricing import PriceResolutionCache
from .products import Buyable, ProductId
from .resolvers import PriceResolver
from .storage import CartStorage

logger = get_logger(__name__)

UpdateAttributes = Union[int, dict[str, Any]]


def _valid_quantity(quantity: Any) -> bool:
    return isinstance(quantity, int) and not isinstance(quantity, bool) and quantity >= 1


class CartOperations:
    """
    Cart for one scope (default cart, wishlist, compare list...).

    Features:
    - Row-key collapse: the same product + options is always one row
    - Prices resolved lazily in one batch and never persisted
    - Cancelable lifecycle notifications before every mutation
    - Invalid cart conditions pruned when the state is loaded
    """

    def __init__(
        self,
        scope: str,
        storage: CartStorage,
        resolver: PriceResolver,
        config: Optional[CartConfig] = None,
        notifier: Optional[NotificationPort] = None,
        identifier: Optional[str] = None,
        user_id: Optional[Union[int, str]] = None,
        currency: Optional[str] = None,
        locale: Optional[str] = None,
    ) -> None:
        self.scope = scope
        self.storage = storage
        self.config = config or CartConfig()
        self.notifier = notifier or NullNotifier()
        self.identifier = identifier
        self._user_id = str(user_id) if user_id is not None else None
        self._currency = currency
        self._locale = locale

        self._state: Optional[CartState] = None
        self._validating = False
        self._pricing = PriceResolutionCache(resolver, self.context)

    # ==================== Pricing context ====================

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @user_id.setter
    def user_id(self, value: Optional[Union[int, str]]) -> None:
        value = str(value) if value is not None else None
        if value != self._user_id:
            self._user_id = value
            self._pricing.invalidate()

    @property
    def currency(self) -> Optional[str]:
        return self._currency

    @currency.setter
    def currency(self, value: Optional[str]) -> None:
        if value != self._currency:
            self._currency = value
            self._pricing.invalidate()

    @property
    def locale(self) -> Optional[str]:
        return self._locale

    @locale.setter
    def locale(self, value: Optional[str]) -> None:
        if value != self._locale:
            self._locale = value
            self._pricing.invalidate()

    # ==================== State ====================

    @property
    def state(self) -> CartState:
        """Loaded cart state (loads from storage on first access)."""
        return self._load()

    @property
    def pricing(self) -> PriceResolutionCache:
        return self._pricing

    def context(self) -> PricingContext:
        """Pricing context of the current request."""
        return PricingContext(
            user_id=self.user_id,
            scope=self.scope,
            currency=self.currency or self.config.currency,
            locale=self.locale or self.config.locale,
        )

    def _load(self) -> CartState:
        if self._state is not None:
            return self._state

        try:
            loaded = self.storage.get(self.scope, self.identifier)
        except StorageReadError as e:
            logger.warning(f"Cart {self.scope} unavailable, using empty cart: {e}")
            loaded = None

        # Assigned before validation: is_valid() may read the subtotal
        state = self._state = loaded or CartState()
        self._pricing.bind(state)

        if self.config.auto_remove_invalid_conditions and not self._validating:
            self._validate_conditions()

        return state

    def _validate_conditions(self) -> None:
        state = self._state
        if state is None or not state.conditions:
            return

        self._validating = True
        try:
            invalid: list[Condition] = []
            for condition in list(state.conditions.values()):
                try:
                    if not condition.is_valid(self):
                        invalid.append(condition)
                except UnresolvablePriceError as e:
                    # Cannot judge without prices; keep it
                    logger.warning(f"Skipping validation of condition {condition.name}: {e}")

            for condition in invalid:
                state.remove_condition(condition.name)
                logger.info(
                    f"Removed invalid condition {condition.name} from cart {self.scope}: "
                    f"{condition.validation_error}"
                )
                self._emit(CartEventType.CONDITION_INVALIDATED, {
                    "condition": condition,
                    "reason": condition.validation_error,
                })

            if invalid:
                self._persist()
        finally:
            self._validating = False

    def _persist(self) -> None:
        state = self._state
        if state is None:
            return
        try:
            self.storage.put(self.scope, state, self.identifier)
        except StorageWriteError:
            # Drop the cached state so the next access reloads what storage holds
            self._state = None
            raise

    def _emit(self, event_type: CartEventType, payload: Optional[dict[str, Any]] = None) -> bool:
        if not self.config.events_enabled:
            return True
        return self.notifier.emit(CartEvent(event_type, self.scope, payload or {}))

    def _guard(self, event_type: CartEventType, payload: Optional[dict[str, Any]] = None) -> None:
        if not self._emit(event_type, payload):
            raise OperationCancelledError(event_type.value, self.scope)

    def _require(self, row_key: str) -> CartItem:
        item = self.state.get(row_key)
        if item is None:
            raise UnknownRowError(row_key, self.scope)
        return item

    # ==================== Items ====================

    def add(
        self,
        product: Union[Buyable, ProductId],
        quantity: int = 1,
        options: Optional[dict[str, Any]] = None,
        meta: Optional[dict[str, Any]] = None,
    ) -> CartItem:
        """
        Add a product to the cart.

        Adding a product + options that is already in the cart increases
        the quantity of the existing row.

        Args:
            product: Buyable object or plain product id
            quantity: Units to add (>= 1)
            options: Options distinguishing rows of the same product
            meta: Free-form data stored with the row

        Returns:
            The new or updated CartItem

        Raises:
            InvalidQuantityError: If quantity < 1
            CapacityExceededError: If the scope is full
            DuplicateProductError: If the scope disallows duplicates
            OperationCancelledError: If an item_adding handler vetoed it
        """
        if not _valid_quantity(quantity):
            raise InvalidQuantityError(quantity, self.scope)

        if isinstance(product, Buyable):
            item = CartItem.from_product(product, quantity, options, meta)
        else:
            item = CartItem(product_id=product, quantity=quantity, options=options or {}, meta=meta or {})

        state = self.state
        existing = state.get(item.row_key)
        if existing is not None:
            if existing.product is None and item.product is not None:
                existing.product = item.product
            return self.update(existing.row_key, {"quantity": existing.quantity + quantity})

        max_items = self.config.max_items_for(self.scope)
        if max_items is not None and state.count_items >= max_items:
            raise CapacityExceededError(self.scope, max_items, state.count_items)

        if not self.config.allows_duplicates(self.scope):
            duplicate = state.find_by_product(item.product_id)
            if duplicate is not None:
                raise DuplicateProductError(self.scope, item.product_id, duplicate.row_key)

        self._guard(CartEventType.ITEM_ADDING, {"item": item})

        state.put(item)
        self._pricing.attach(item)
        self._pricing.invalidate()
        self._persist()

        self._emit(CartEventType.ITEM_ADDED, {"item": item})
        logger.debug(f"Added {item.product_id} x{quantity} to cart {self.scope}")
        return item

    def update(self, row_key: str, attrs: UpdateAttributes) -> CartItem:
        """
        Update a row.

        Args:
            row_key: Row to update
            attrs: New quantity, or dict with `quantity` (replaces),
                `options` and `meta` (merged key by key)

        Raises:
            UnknownRowError: If the row does not exist
            InvalidQuantityError: If the new quantity is < 1
        """
        item = self._require(row_key)

        changes = {"quantity": attrs} if isinstance(attrs, int) else dict(attrs)
        if "quantity" in changes and not _valid_quantity(changes["quantity"]):
            raise InvalidQuantityError(changes["quantity"], self.scope)

        self._guard(CartEventType.ITEM_UPDATING, {"item": item, "changes": changes})

        if "quantity" in changes:
            item.set_quantity(changes["quantity"])
        for key, value in (changes.get("options") or {}).items():
            item.set_option(key, value)
        for key, value in (changes.get("meta") or {}).items():
            item.set_meta(key, value)

        self._pricing.invalidate()
        self._persist()

        self._emit(CartEventType.ITEM_UPDATED, {"item": item, "changes": changes})
        return item

    def remove(self, row_key: str) -> CartItem:
        """Remove a row. Raises UnknownRowError if it does not exist."""
        item = self._require(row_key)

        self._guard(CartEventType.ITEM_REMOVING, {"item": item})

        self.state.forget(row_key)
        self._pricing.invalidate()
        self._persist()

        self._emit(CartEventType.ITEM_REMOVED, {"item": item})
        return item

    def clear(self) -> None:
        """Remove every row. Cart conditions and metadata stay."""
        state = self.state
        if state.is_empty:
            return

        item_count = state.count_items
        self._guard(CartEventType.CLEARING, {"item_count": item_count})

        state.items = {}
        self._pricing.invalidate()
        self._persist()

        self._emit(CartEventType.CLEARED, {"item_count": item_count})

    def destroy(self) -> None:
        """Clear rows and conditions and delete the stored cart."""
        self.clear()
        self.state.clear_conditions()
        self.storage.forget(self.scope, self.identifier)
        self._state = None
        logger.info(f"Destroyed cart {self.scope}")

    def get(self, row_key: str) -> Optional[CartItem]:
        return self.state.get(row_key)

    def find(self, product_id: ProductId) -> Optional[CartItem]:
        """First row holding the product, whatever its options."""
        return self.state.find_by_product(product_id)

    def has(self, row_key: str) -> bool:
        return self.state.has(row_key)

    def items(self) -> list[CartItem]:
        return list(self.state.items.values())

    def is_empty(self) -> bool:
        return self.state.is_empty

    def count(self) -> int:
        """Total quantity across rows."""
        return self.state.total_quantity

    def count_items(self) -> int:
        """Number of rows."""
        return self.state.count_items

    def move_to(self, row_key: str, target: "CartOperations") -> CartItem:
        """Move a row into another cart, e.g. from the cart to the wishlist."""
        item = self._require(row_key)
        moved = target.add(
            item.product if item.product is not None else item.product_id,
            item.quantity,
            options=dict(item.options),
            meta=dict(item.meta),
        )
        self.remove(row_key)
        return moved

    # ==================== Totals ====================

    def _effective_conditions(self) -> list[Condition]:
        """Cart conditions, then the scope's configured ones, then the default tax."""
        conditions = list(self.state.conditions.values())
        taken = {c.name for c in conditions}
        for condition in self.config.scope_conditions(self.scope):
            # A cart condition with the same name wins
            if condition.name not in taken:
                conditions.append(condition)
                taken.add(condition.name)

        default_tax = self.config.default_tax_condition()
        if default_tax is not None and not any(c.type == ConditionType.TAX for c in conditions):
            conditions.append(default_tax)
        return conditions

    def _pipeline(self) -> ConditionPipeline:
        return ConditionPipeline(c for c in self._effective_conditions() if c.target in CART_TARGETS)

    def subtotal(self) -> int:
        """Sum of item totals (item conditions applied), before cart conditions."""
        state = self.state
        self._pricing.ensure_resolved()
        return sum(item.total for item in state.items.values())

    def total(self) -> int:
        """Subtotal after every cart condition."""
        return self._pipeline().process(self.subtotal())

    def calculation_breakdown(self) -> dict[str, Any]:
        """
        Subtotal, total and the trace of every applied condition.

        Returns:
            Dict with `subtotal`, `total`, `steps` and `breakdown` (change per
            condition type)
        """
        subtotal = self.subtotal()
        pipeline = self._pipeline()
        total = pipeline.process(subtotal)
        return {
            "subtotal": subtotal,
            "total": total,
            "steps": pipeline.steps,
            "breakdown": pipeline.breakdown(),
        }

    def savings(self) -> int:
        """Difference between original and current prices."""
        state = self.state
        self._pricing.ensure_resolved()
        return sum(item.savings for item in state.items.values())

    def conditions_total(self) -> int:
        return self.total() - self.subtotal()

    def tax_total(self) -> int:
        subtotal = self.subtotal()
        return sum(
            c.get_adjustment(subtotal)
            for c in self._effective_conditions()
            if c.type == ConditionType.TAX
        )

    def discount_total(self) -> int:
        """Sum of discount adjustments on the subtotal (negative or zero)."""
        subtotal = self.subtotal()
        return sum(
            c.get_adjustment(subtotal)
            for c in self.state.conditions.values()
            if c.type == ConditionType.DISCOUNT
        )

    def refresh_prices(self) -> None:
        """Drop resolved prices; the next read resolves them again."""
        self._pricing.invalidate()

    # ==================== Conditions ====================

    def add_condition(self, condition: Condition) -> None:
        """Attach a cart condition. Same name replaces."""
        self.state.add_condition(condition)
        self._persist()
        self._emit(CartEventType.CONDITION_ADDED, {"condition": condition})

    def remove_condition(self, name: str) -> Optional[Condition]:
        condition = self.state.remove_condition(name)
        if condition is None:
            return None
        self._persist()
        self._emit(CartEventType.CONDITION_REMOVED, {"condition": condition})
        return condition

    def get_condition(self, name: str) -> Optional[Condition]:
        return self.state.get_condition(name)

    def has_condition(self, name: str) -> bool:
        return self.state.has_condition(name)

    def conditions(self) -> list[Condition]:
        return list(self.state.conditions.values())

    def clear_conditions(self) -> None:
        self.state.clear_conditions()
        self._persist()

    def add_item_condition(self, row_key: str, condition: Condition) -> CartItem:
        item = self._require(row_key)
        item.add_condition(condition)
        self._persist()
        self._emit(CartEventType.CONDITION_ADDED, {"condition": condition, "row_key": row_key})
        return item

    def remove_item_condition(self, row_key: str, name: str) -> Optional[Condition]:
        item = self._require(row_key)
        condition = item.remove_condition(name)
        if condition is None:
            return None
        self._persist()
        self._emit(CartEventType.CONDITION_REMOVED, {"condition": condition, "row_key": row_key})
        return condition

    # ==================== Metadata & identity ====================

    def set_meta(self, key: str, value: Any) -> None:
        self.state.set_meta(key, value)
        self._persist()

    def get_meta(self, key: str, default: Any = None) -> Any:
        return self.state.get_meta(key, default)

    def set_identifier(self, identifier: Optional[str]) -> "CartOperations":
        """Point at another stored cart. The state is reloaded on next access."""
        self.identifier = identifier
        self._state = None
        return self

    def associate(self, user_id: Union[int, str]) -> "CartOperations":
        """Switch to the durable cart of an authenticated user."""
        self.user_id = str(user_id)
        logger.info(f"Cart {self.scope} associated with user {sanitize_id_for_logging(self.user_id)}")
        return self.set_identifier(f"user_{user_id}")
