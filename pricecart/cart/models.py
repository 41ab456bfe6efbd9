"""Cart models: items, cart state, resolved prices and pricing context.

Prices are never stored with an item. A CartItem only holds the
ResolvedPrice produced for the current request, and that price is dropped
whenever the cart changes.
"""
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pricecart.conditions import Condition, ConditionPipeline, condition_from_dict
from pricecart.errors import InvalidQuantityError, UnresolvablePriceError
from pricecart.logging import get_logger

from .products import Buyable, ProductId

logger = get_logger(__name__)


def make_row_key(product_id: ProductId, options: Optional[dict[str, Any]] = None) -> str:
    """
    Content hash identifying a cart line.

    Option order does not matter: {"size": "L", "color": "red"} and
    {"color": "red", "size": "L"} yield the same key.
    """
    normalized = json.dumps(options or {}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(f"{product_id}{normalized}".encode()).hexdigest()[:32]


class ResolvedPrice(BaseModel):
    """Price of one unit as resolved for the current context. Immutable."""
    model_config = ConfigDict(frozen=True)

    unit_price: int
    original_price: int
    source: Optional[str] = None
    meta: dict[str, Any] = Field(default_factory=dict)

    @property
    def has_discount(self) -> bool:
        return self.unit_price < self.original_price

    @property
    def discount_amount(self) -> int:
        return self.original_price - self.unit_price

    @property
    def discount_percent(self) -> float:
        if self.original_price == 0:
            return 0.0
        return round((self.original_price - self.unit_price) / self.original_price * 100, 2)


class PricingContext(BaseModel):
    """Who is buying, where and in what currency. Drives price resolution."""
    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None
    scope: str = "default"
    currency: Optional[str] = None
    locale: Optional[str] = None
    meta: dict[str, Any] = Field(default_factory=dict)

    @field_validator("user_id", mode="before")
    @classmethod
    def convert_user_id(cls, v):
        return str(v) if v is not None else None

    def digest(self) -> str:
        """Hash of the fields that change a price: user, currency, locale."""
        data = {
            "user_id": self.user_id or "guest",
            "currency": self.currency or "USD",
            "locale": self.locale or "en",
        }
        return hashlib.sha256(json.dumps(data, sort_keys=True).encode()).hexdigest()

    def with_user(self, user_id: Optional[str]) -> "PricingContext":
        return self.model_copy(update={"user_id": str(user_id) if user_id is not None else None})

    def with_scope(self, scope: str) -> "PricingContext":
        return self.model_copy(update={"scope": scope})

    def with_meta(self, meta: dict[str, Any]) -> "PricingContext":
        return self.model_copy(update={"meta": {**self.meta, **meta}})


@dataclass
class CartItem:
    """Single line in the cart."""
    product_id: ProductId
    quantity: int = 1
    options: dict[str, Any] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)
    product_kind: Optional[str] = None
    product_ref: Optional[ProductId] = None
    row_key: str = ""
    conditions: dict[str, Condition] = field(default_factory=dict)
    product: Optional[Any] = field(default=None, repr=False, compare=False)
    _resolved_price: Optional[ResolvedPrice] = field(default=None, init=False, repr=False, compare=False)
    _price_loader: Optional[Callable[[], None]] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        if not isinstance(self.quantity, int) or self.quantity < 1:
            raise InvalidQuantityError(self.quantity)
        self.options = dict(self.options)
        self.meta = dict(self.meta)
        if self.product_ref is None:
            self.product_ref = self.product_id
        if not self.row_key:
            self.row_key = make_row_key(self.product_id, self.options)

    @classmethod
    def from_product(
        cls,
        product: Buyable,
        quantity: int = 1,
        options: Optional[dict[str, Any]] = None,
        meta: Optional[dict[str, Any]] = None,
    ) -> "CartItem":
        identity = product.product_identity()
        return cls(
            product_id=identity,
            quantity=quantity,
            options=options or {},
            meta=meta or {},
            product_kind=product.kind(),
            product_ref=identity,
            product=product,
        )

    # ==================== Pricing ====================

    @property
    def resolved_price(self) -> ResolvedPrice:
        """
        Price for the current context.

        The first access on an unpriced item asks the owning cart to price
        every unpriced item in one batch. The owning cart drops cached prices
        when its user, currency or locale changes.

        Raises:
            UnresolvablePriceError: If no price could be resolved
        """
        if self._resolved_price is None and self._price_loader is not None:
            self._price_loader()
        if self._resolved_price is None:
            raise UnresolvablePriceError(self.row_key, self.product_id)
        return self._resolved_price

    def set_resolved_price(self, price: ResolvedPrice) -> None:
        self._resolved_price = price

    def clear_resolved_price(self) -> None:
        self._resolved_price = None

    @property
    def has_price_resolved(self) -> bool:
        return self._resolved_price is not None

    def set_price_loader(self, loader: Optional[Callable[[], None]]) -> None:
        self._price_loader = loader

    @property
    def unit_price(self) -> int:
        return self.resolved_price.unit_price

    @property
    def original_unit_price(self) -> int:
        return self.resolved_price.original_price

    @property
    def subtotal(self) -> int:
        """Unit price times quantity, before item conditions."""
        return self.unit_price * self.quantity

    @property
    def original_subtotal(self) -> int:
        return self.original_unit_price * self.quantity

    @property
    def savings(self) -> int:
        return self.original_subtotal - self.subtotal

    @property
    def total(self) -> int:
        """Subtotal after item-scoped conditions."""
        if not self.conditions:
            return self.subtotal
        return ConditionPipeline(self.conditions.values()).process(self.subtotal)

    # ==================== Mutation ====================

    def set_quantity(self, quantity: int) -> None:
        if not isinstance(quantity, int) or quantity < 1:
            raise InvalidQuantityError(quantity)
        self.quantity = quantity

    def set_option(self, key: str, value: Any) -> None:
        self.options[key] = value

    def set_meta(self, key: str, value: Any) -> None:
        self.meta[key] = value

    def add_condition(self, condition: Condition) -> None:
        # Same name replaces: pop first so the newcomer goes last
        self.conditions.pop(condition.name, None)
        self.conditions[condition.name] = condition

    def remove_condition(self, name: str) -> Optional[Condition]:
        return self.conditions.pop(name, None)

    def has_condition(self, name: str) -> bool:
        return name in self.conditions

    def get_condition(self, name: str) -> Optional[Condition]:
        return self.conditions.get(name)

    def clear_conditions(self) -> None:
        self.conditions = {}

    # ==================== Serialization ====================

    def to_dict(self) -> dict:
        """Convert to dictionary for storage. Prices are never included."""
        return {
            "row_key": self.row_key,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "options": dict(self.options),
            "meta": dict(self.meta),
            "product_kind": self.product_kind,
            "product_ref": self.product_ref,
            "conditions": [c.to_dict() for c in self.conditions.values()],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartItem":
        """Create from dictionary."""
        item = cls(
            product_id=data["product_id"],
            quantity=int(data.get("quantity", 1)),
            options=data.get("options") or {},
            meta=data.get("meta") or {},
            product_kind=data.get("product_kind"),
            product_ref=data.get("product_ref"),
            row_key=data.get("row_key") or "",
        )
        for condition in _conditions_from_list(data.get("conditions") or []):
            item.add_condition(condition)
        return item


@dataclass
class CartState:
    """Items, cart-scoped conditions and metadata of one cart scope."""
    items: dict[str, CartItem] = field(default_factory=dict)
    conditions: dict[str, Condition] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def count_items(self) -> int:
        """Number of distinct rows."""
        return len(self.items)

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items.values())

    def get(self, row_key: str) -> Optional[CartItem]:
        return self.items.get(row_key)

    def has(self, row_key: str) -> bool:
        return row_key in self.items

    def put(self, item: CartItem) -> None:
        self.items[item.row_key] = item

    def forget(self, row_key: str) -> Optional[CartItem]:
        return self.items.pop(row_key, None)

    def find_by_product(self, product_id: ProductId) -> Optional[CartItem]:
        return next(
            (item for item in self.items.values() if item.product_id == product_id),
            None,
        )

    def unresolved_items(self) -> list[CartItem]:
        return [item for item in self.items.values() if not item.has_price_resolved]

    def clear_resolved_prices(self) -> None:
        for item in self.items.values():
            item.clear_resolved_price()

    def add_condition(self, condition: Condition) -> None:
        self.conditions.pop(condition.name, None)
        self.conditions[condition.name] = condition

    def remove_condition(self, name: str) -> Optional[Condition]:
        return self.conditions.pop(name, None)

    def get_condition(self, name: str) -> Optional[Condition]:
        return self.conditions.get(name)

    def has_condition(self, name: str) -> bool:
        return name in self.conditions

    def clear_conditions(self) -> None:
        self.conditions = {}

    def set_meta(self, key: str, value: Any) -> None:
        self.meta[key] = value

    def get_meta(self, key: str, default: Any = None) -> Any:
        return self.meta.get(key, default)

    def copy(self) -> "CartState":
        """Detached copy without resolved prices or attached products."""
        return CartState.from_dict(self.to_dict())

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        return {
            "items": [item.to_dict() for item in self.items.values()],
            "conditions": [c.to_dict() for c in self.conditions.values()],
            "meta": dict(self.meta),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartState":
        """Create from dictionary."""
        state = cls(meta=dict(data.get("meta") or {}))
        for item_data in data.get("items") or []:
            state.put(CartItem.from_dict(item_data))
        for condition in _conditions_from_list(data.get("conditions") or []):
            state.add_condition(condition)
        return state


def _conditions_from_list(payloads: list[dict]) -> list[Condition]:
    conditions = []
    for payload in payloads:
        try:
            conditions.append(condition_from_dict(payload))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Skipping unreadable condition {payload.get('name')!r}: {e}")
    return conditions
