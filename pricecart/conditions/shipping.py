"""Shipping fee with optional free-shipping threshold."""
from typing import Any, Optional

from .base import Condition, ConditionTarget, ConditionType, register_condition


@register_condition("shipping")
class ShippingCondition(Condition):
    """Flat shipping fee, waived once the base reaches the threshold."""

    type = ConditionType.SHIPPING.value
    default_order = 200

    def __init__(
        self,
        name: str,
        amount: int,
        free_shipping_threshold: Optional[int] = None,
        order: Optional[int] = None,
    ) -> None:
        if amount < 0:
            raise ValueError(f"Shipping amount cannot be negative. Got: {amount}")
        super().__init__(
            name,
            {"amount": int(amount), "free_shipping_threshold": free_shipping_threshold},
            target=ConditionTarget.SUBTOTAL.value,
            order=order,
        )
        self.amount = int(amount)
        self.free_shipping_threshold = free_shipping_threshold

    def has_free_shipping(self, base: int) -> bool:
        return self.free_shipping_threshold is not None and base >= self.free_shipping_threshold

    def get_adjustment(self, base: int) -> int:
        if self.has_free_shipping(base):
            return 0
        return self.amount

    @classmethod
    def from_attributes(cls, name: str, attributes: dict[str, Any]) -> "ShippingCondition":
        return cls(
            name,
            amount=int(attributes.get("amount", 0)),
            free_shipping_threshold=attributes.get("free_shipping_threshold"),
        )
