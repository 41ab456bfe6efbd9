"""Discount condition with optional cap and minimum order gate."""
from typing import TYPE_CHECKING, Any, Optional

from pricecart.services.money import percent_of

from .base import Condition, ConditionTarget, ConditionType, register_condition

if TYPE_CHECKING:
    from pricecart.cart.service import CartOperations

MODE_PERCENTAGE = "percentage"
MODE_FIXED = "fixed"
DISCOUNT_MODES = (MODE_PERCENTAGE, MODE_FIXED)


@register_condition("discount")
class DiscountCondition(Condition):
    """
    Percentage or fixed discount.

    `max_amount` caps a percentage discount. Below `min_order_amount` the
    discount is worth nothing and the condition reports itself invalid, so
    carts loaded from storage drop it automatically.
    """

    type = ConditionType.DISCOUNT.value
    default_order = 50

    def __init__(
        self,
        name: str,
        value: float,
        mode: str = MODE_PERCENTAGE,
        target: str = ConditionTarget.SUBTOTAL.value,
        max_amount: Optional[int] = None,
        min_order_amount: Optional[int] = None,
        order: Optional[int] = None,
    ) -> None:
        if value < 0:
            raise ValueError(f"Discount value cannot be negative. Got: {value}")
        if mode not in DISCOUNT_MODES:
            raise ValueError(f"Invalid discount mode. Expected 'percentage' or 'fixed', got: {mode}")
        if mode == MODE_PERCENTAGE and value > 100:
            raise ValueError(f"Percentage discount cannot exceed 100. Got: {value}")

        super().__init__(
            name,
            {
                "value": value,
                "mode": mode,
                "max_amount": max_amount,
                "min_order_amount": min_order_amount,
            },
            target=target,
            order=order,
        )
        self.value = value
        self.mode = mode
        self.max_amount = max_amount
        self.min_order_amount = min_order_amount
        self._validation_error: Optional[str] = None

    @property
    def is_percentage(self) -> bool:
        return self.mode == MODE_PERCENTAGE

    @property
    def is_fixed(self) -> bool:
        return self.mode == MODE_FIXED

    def meets_minimum(self, base: int) -> bool:
        return self.min_order_amount is None or base >= self.min_order_amount

    def get_adjustment(self, base: int) -> int:
        if not self.meets_minimum(base):
            return 0

        if self.is_percentage:
            discount = percent_of(base, self.value)
            if self.max_amount is not None:
                discount = min(discount, self.max_amount)
            return -discount

        return -min(int(self.value), max(base, 0))

    def is_valid(self, cart: Optional["CartOperations"] = None) -> bool:
        self._validation_error = None
        if cart is None or self.min_order_amount is None:
            return True

        subtotal = cart.subtotal()
        if subtotal < self.min_order_amount:
            self._validation_error = (
                f"Discount '{self.name}' requires a minimum order of "
                f"{self.min_order_amount}, cart subtotal is {subtotal}"
            )
            return False
        return True

    @property
    def validation_error(self) -> Optional[str]:
        return self._validation_error

    @classmethod
    def from_attributes(cls, name: str, attributes: dict[str, Any]) -> "DiscountCondition":
        return cls(
            name,
            value=attributes.get("value", 0),
            mode=attributes.get("mode", MODE_PERCENTAGE),
            max_amount=attributes.get("max_amount"),
            min_order_amount=attributes.get("min_order_amount"),
        )
