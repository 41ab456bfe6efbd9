"""Ordered application of conditions with a calculation trace."""
from typing import Any, Iterable, Optional

from pricecart.services.money import clamp_non_negative

from .base import Condition


class ConditionPipeline:
    """
    Applies conditions to an amount in ascending `order`.

    Conditions with equal order run in the order they were given. The
    running value is clamped to zero after every step, and each step is
    recorded so callers can show how a total was reached.
    """

    def __init__(self, conditions: Optional[Iterable[Condition]] = None) -> None:
        self._conditions: list[Condition] = list(conditions or [])
        self._steps: list[dict[str, Any]] = []

    def through(self, conditions: Iterable[Condition]) -> "ConditionPipeline":
        self._conditions = list(conditions)
        return self

    @property
    def conditions(self) -> list[Condition]:
        # sorted() is stable, so insertion order breaks ties
        return sorted(self._conditions, key=lambda c: c.order)

    def process(self, value: int) -> int:
        """
        Run `value` through every condition.

        Args:
            value: Starting amount in minor units

        Returns:
            Final amount, never negative
        """
        self._steps = []
        current = clamp_non_negative(value)

        for condition in self.conditions:
            before = current
            current = clamp_non_negative(condition.calculate(current))
            self._steps.append({
                "name": condition.name,
                "type": condition.type,
                "order": condition.order,
                "before": before,
                "after": current,
                "change": current - before,
            })

        return current

    @property
    def steps(self) -> list[dict[str, Any]]:
        return list(self._steps)

    def breakdown(self) -> dict[str, int]:
        """Sum of changes per condition type for the last run."""
        result: dict[str, int] = {}
        for step in self._steps:
            result[step["type"]] = result.get(step["type"], 0) + step["change"]
        return result

    def total_change(self) -> int:
        return sum(step["change"] for step in self._steps)

    def has_processed(self) -> bool:
        return bool(self._steps)

    def step_count(self) -> int:
        return len(self._steps)
