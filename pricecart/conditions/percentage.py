"""Percentage-of-base condition."""
from typing import Any, Optional

from pricecart.services.money import percent_of

from .base import Condition, ConditionTarget, ConditionType, register_condition


@register_condition("percentage")
class PercentageCondition(Condition):
    """
    Adds or subtracts `rate` percent of the base.

    The sign follows the role: discounts subtract, fees and taxes add.
    """

    def __init__(
        self,
        name: str,
        rate: float,
        condition_type: str = ConditionType.FEE.value,
        target: str = ConditionTarget.SUBTOTAL.value,
        order: Optional[int] = None,
        attributes: Optional[dict[str, Any]] = None,
    ) -> None:
        if rate < 0:
            raise ValueError(f"Percentage rate cannot be negative. Got: {rate}")
        super().__init__(name, attributes, target=target, order=order)
        self.type = ConditionType(condition_type).value
        self.rate = rate
        self.attributes["rate"] = rate
        self.attributes["condition_type"] = self.type

    @property
    def is_negative(self) -> bool:
        return self.type == ConditionType.DISCOUNT.value

    def get_adjustment(self, base: int) -> int:
        value = percent_of(base, self.rate)
        return -value if self.is_negative else value

    @classmethod
    def from_attributes(cls, name: str, attributes: dict[str, Any]) -> "PercentageCondition":
        extra = {k: v for k, v in attributes.items() if k not in ("rate", "condition_type")}
        return cls(
            name,
            rate=float(attributes.get("rate", 0)),
            condition_type=attributes.get("condition_type", ConditionType.FEE.value),
            attributes=extra,
        )
