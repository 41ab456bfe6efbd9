"""Cart conditions: value modifiers and the pipeline that applies them.

Importing this package registers every built-in condition kind.
"""
from .base import (
    CART_TARGETS,
    Condition,
    ConditionTarget,
    ConditionType,
    condition_from_dict,
    get_condition_class,
    register_condition,
    registered_kinds,
)
from .discount import DiscountCondition
from .fixed import FixedCondition
from .percentage import PercentageCondition
from .pipeline import ConditionPipeline
from .shipping import ShippingCondition
from .tax import TaxCondition

__all__ = [
    "CART_TARGETS",
    "Condition",
    "ConditionPipeline",
    "ConditionTarget",
    "ConditionType",
    "DiscountCondition",
    "FixedCondition",
    "PercentageCondition",
    "ShippingCondition",
    "TaxCondition",
    "condition_from_dict",
    "get_condition_class",
    "register_condition",
    "registered_kinds",
]
