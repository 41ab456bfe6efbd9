"""Product capabilities the cart depends on.

The cart never sees concrete product classes, only these two protocols.
"""
from typing import TYPE_CHECKING, Optional, Protocol, Union, runtime_checkable

if TYPE_CHECKING:
    from .models import PricingContext

ProductId = Union[int, str]


@runtime_checkable
class Buyable(Protocol):
    """Identity and description of something that can go into a cart."""

    def product_identity(self) -> ProductId: ...

    def display_label(self) -> str: ...

    def kind(self) -> str: ...


@runtime_checkable
class Priceable(Protocol):
    """Current and list price of a product, in minor units."""

    def current_price(self, context: Optional["PricingContext"] = None) -> int: ...

    def original_price(self) -> int: ...
