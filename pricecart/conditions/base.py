"""Base condition and kind-keyed factory registry.

A condition is a pure value object: it computes a signed adjustment for a
base amount and knows how to apply it. Serialized conditions are rebuilt
through the registry, each variant registers itself under its `kind`.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional

from pricecart.logging import get_logger
from pricecart.services.money import clamp_non_negative

if TYPE_CHECKING:
    from pricecart.cart.service import CartOperations

logger = get_logger(__name__)


class ConditionType(str, Enum):
    """What a condition represents in a breakdown."""
    TAX = "tax"
    DISCOUNT = "discount"
    SHIPPING = "shipping"
    FEE = "fee"


class ConditionTarget(str, Enum):
    """Which amount a condition is applied to."""
    SUBTOTAL = "subtotal"
    TOTAL = "total"
    ITEM = "item"


CART_TARGETS = (ConditionTarget.SUBTOTAL.value, ConditionTarget.TOTAL.value)


# Registry of condition factories
# Key: kind (stored in serialized payloads)
# Value: Condition subclass
_CONDITION_REGISTRY: dict[str, type["Condition"]] = {}


def register_condition(kind: str) -> Callable[[type["Condition"]], type["Condition"]]:
    """Decorator to register a condition class under a serialization kind."""
    def decorator(condition_class: type["Condition"]) -> type["Condition"]:
        condition_class.kind = kind
        _CONDITION_REGISTRY[kind] = condition_class
        return condition_class
    return decorator


def get_condition_class(kind: str) -> Optional[type["Condition"]]:
    return _CONDITION_REGISTRY.get(kind)


def registered_kinds() -> list[str]:
    return sorted(_CONDITION_REGISTRY)


def condition_from_dict(data: dict[str, Any]) -> "Condition":
    """
    Rebuild a condition from its serialized form.

    Args:
        data: {kind, name, type, target, order, attributes}

    Returns:
        Condition instance

    Raises:
        ValueError: If kind is missing or not registered
    """
    kind = data.get("kind")
    condition_class = _CONDITION_REGISTRY.get(kind) if kind else None
    if condition_class is None:
        raise ValueError(f"Unknown condition kind: {kind}. Available: {registered_kinds()}")

    condition = condition_class.from_attributes(data["name"], data.get("attributes") or {})
    if data.get("target"):
        condition.target = data["target"]
    if data.get("order") is not None:
        condition.order = int(data["order"])
    return condition


class Condition(ABC):
    """
    Base class for cart and item modifiers.

    Subclasses set `type` and a default `order`, and implement
    `get_adjustment`. `calculate` applies the adjustment and never returns
    a negative amount.
    """

    kind: str = ""
    type: str = ConditionType.FEE.value
    default_order: int = 0

    def __init__(
        self,
        name: str,
        attributes: Optional[dict[str, Any]] = None,
        target: str = ConditionTarget.SUBTOTAL.value,
        order: Optional[int] = None,
    ) -> None:
        self.name = name
        self.attributes: dict[str, Any] = dict(attributes or {})
        self.target = target
        self.order = self.default_order if order is None else order

    @abstractmethod
    def get_adjustment(self, base: int) -> int:
        """Signed adjustment this condition makes to `base`."""

    def calculate(self, value: int) -> int:
        return clamp_non_negative(value + self.get_adjustment(value))

    def is_valid(self, cart: Optional["CartOperations"] = None) -> bool:
        return True

    @property
    def validation_error(self) -> Optional[str]:
        """Diagnostic for the last failed is_valid() call, None when valid."""
        return None

    @classmethod
    @abstractmethod
    def from_attributes(cls, name: str, attributes: dict[str, Any]) -> "Condition":
        """Build an instance from serialized attributes."""

    def get_attribute(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "type": self.type,
            "target": self.target,
            "order": self.order,
            "attributes": dict(self.attributes),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, order={self.order}, target={self.target!r})"
