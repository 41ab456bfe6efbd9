"""Tax condition, exclusive (added on top) or inclusive (already in price)."""
from typing import Any, Optional

from pricecart.services.money import extract_inclusive_tax, percent_of, round_half_up, to_decimal

from .base import Condition, ConditionTarget, ConditionType, register_condition


@register_condition("tax")
class TaxCondition(Condition):
    """
    Percentage tax.

    Exclusive mode (US style) adds `rate` percent to the base.
    Inclusive mode (EU style) leaves the amount untouched; the adjustment
    reports the tax contained in the base for breakdowns only.
    """

    type = ConditionType.TAX.value
    default_order = 100

    def __init__(
        self,
        name: str,
        rate: float,
        included_in_price: bool = False,
        target: str = ConditionTarget.SUBTOTAL.value,
        order: Optional[int] = None,
    ) -> None:
        if rate < 0 or rate > 100:
            raise ValueError(f"Tax rate must be between 0 and 100. Got: {rate}")
        super().__init__(
            name,
            {"rate": rate, "included_in_price": included_in_price},
            target=target,
            order=order,
        )
        self.rate = rate
        self.included_in_price = included_in_price

    def get_adjustment(self, base: int) -> int:
        if self.included_in_price:
            return extract_inclusive_tax(base, self.rate)
        return percent_of(base, self.rate)

    def calculate(self, value: int) -> int:
        if self.included_in_price:
            return max(value, 0)
        return super().calculate(value)

    def subtotal_excluding_tax(self, total: int) -> int:
        """Net amount for a gross total; identity in exclusive mode."""
        if not self.included_in_price:
            return total
        return round_half_up(to_decimal(total) * 100 / (100 + to_decimal(self.rate)))

    @classmethod
    def from_attributes(cls, name: str, attributes: dict[str, Any]) -> "TaxCondition":
        return cls(
            name,
            rate=float(attributes.get("rate", 0)),
            included_in_price=bool(attributes.get("included_in_price", False)),
        )
