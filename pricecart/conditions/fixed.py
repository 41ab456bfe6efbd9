"""Fixed-amount condition."""
from typing import Any, Optional

from .base import Condition, ConditionTarget, ConditionType, register_condition


@register_condition("fixed")
class FixedCondition(Condition):
    """
    Adds a fixed amount, or subtracts it when used as a discount.

    A fixed discount never takes more than the base it is applied to.
    """

    def __init__(
        self,
        name: str,
        amount: int,
        condition_type: str = ConditionType.FEE.value,
        target: str = ConditionTarget.SUBTOTAL.value,
        order: Optional[int] = None,
        attributes: Optional[dict[str, Any]] = None,
    ) -> None:
        if amount < 0:
            raise ValueError(f"Fixed amount cannot be negative. Got: {amount}")
        super().__init__(name, attributes, target=target, order=order)
        self.type = ConditionType(condition_type).value
        self.amount = int(amount)
        self.attributes["amount"] = self.amount
        self.attributes["condition_type"] = self.type

    def get_adjustment(self, base: int) -> int:
        if self.type == ConditionType.DISCOUNT.value:
            return -min(self.amount, max(base, 0))
        return self.amount

    @classmethod
    def from_attributes(cls, name: str, attributes: dict[str, Any]) -> "FixedCondition":
        extra = {k: v for k, v in attributes.items() if k not in ("amount", "condition_type")}
        return cls(
            name,
            amount=int(attributes.get("amount", 0)),
            condition_type=attributes.get("condition_type", ConditionType.FEE.value),
            attributes=extra,
        )
