"""
Cart configuration.

A single explicit value handed to CartOperations and MergeCoordinator.
`CartConfig.from_env()` builds one from CART_* environment variables.
"""
import json
import os
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pricecart.conditions import Condition, TaxCondition, condition_from_dict
from pricecart.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TAX_CONDITION_NAME = "_config_tax"


class MergeStrategy(str, Enum):
    """How guest and user carts are reconciled on login."""
    KEEP_GUEST = "keep_guest"
    KEEP_USER = "keep_user"
    COMBINE = "combine"


class TaxSettings(BaseModel):
    """Store-wide tax applied when a cart carries no tax condition."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    rate: float = 0
    included_in_price: bool = False


class CartConfig(BaseModel):
    """Cart behaviour settings."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    default_scope: str = "default"
    max_items_per_scope: dict[str, Optional[int]] = Field(
        default_factory=lambda: {"default": None, "wishlist": 50, "compare": 4}
    )
    allow_duplicates_per_scope: dict[str, bool] = Field(
        default_factory=lambda: {"compare": False}
    )
    # Serialized conditions ({kind, name, attributes, target, order}) applied to every cart of a scope
    conditions_per_scope: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    default_tax: TaxSettings = Field(default_factory=TaxSettings)
    auto_remove_invalid_conditions: bool = True
    merge_strategy: MergeStrategy = MergeStrategy.COMBINE
    merge_on_login: bool = True
    events_enabled: bool = True
    currency: str = "USD"
    locale: str = "en"
    storage_prefix: str = "cart"
    storage_ttl_seconds: int = 60 * 60 * 24 * 7  # 7 days

    @field_validator("merge_strategy", mode="before")
    @classmethod
    def normalize_strategy(cls, v):
        return v.lower() if isinstance(v, str) else v

    @field_validator("conditions_per_scope")
    @classmethod
    def drop_unbuildable_conditions(cls, v):
        """Keep only entries the condition registry can build."""
        valid = {}
        for scope, entries in v.items():
            valid[scope] = []
            for entry in entries:
                try:
                    condition_from_dict(entry)
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"Skipping configured condition {entry.get('name')!r} for scope {scope}: {e}")
                    continue
                valid[scope].append(entry)
        return valid

    def max_items_for(self, scope: str) -> Optional[int]:
        return self.max_items_per_scope.get(scope)

    def allows_duplicates(self, scope: str) -> bool:
        return self.allow_duplicates_per_scope.get(scope, True)

    def scope_conditions(self, scope: str) -> list[Condition]:
        """Fresh condition instances configured for a scope."""
        return [condition_from_dict(entry) for entry in self.conditions_per_scope.get(scope, [])]

    def default_tax_condition(self) -> Optional[TaxCondition]:
        """TaxCondition for the store-wide tax, None when disabled or out of range."""
        tax = self.default_tax
        if not tax.enabled or tax.rate <= 0 or tax.rate > 100:
            return None
        return TaxCondition(
            name=DEFAULT_TAX_CONDITION_NAME,
            rate=tax.rate,
            included_in_price=tax.included_in_price,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CartConfig":
        """
        Build configuration from environment variables.

        Recognized variables:
        - CART_DEFAULT_SCOPE, CART_CURRENCY, CART_LOCALE
        - CART_MAX_ITEMS (JSON object, e.g. {"wishlist": 50})
        - CART_ALLOW_DUPLICATES (JSON object, e.g. {"compare": false})
        - CART_SCOPE_CONDITIONS (JSON object of condition lists per scope)
        - CART_TAX_ENABLED, CART_TAX_RATE, CART_TAX_INCLUDED
        - CART_AUTO_REMOVE_INVALID, CART_MERGE_STRATEGY, CART_MERGE_ON_LOGIN
        - CART_EVENTS_ENABLED, CART_STORAGE_PREFIX, CART_STORAGE_TTL
        """
        env = os.environ if environ is None else environ
        values: dict = {}

        for key, field_name in (
            ("CART_DEFAULT_SCOPE", "default_scope"),
            ("CART_CURRENCY", "currency"),
            ("CART_LOCALE", "locale"),
            ("CART_MERGE_STRATEGY", "merge_strategy"),
            ("CART_STORAGE_PREFIX", "storage_prefix"),
            ("CART_STORAGE_TTL", "storage_ttl_seconds"),
        ):
            if env.get(key):
                values[field_name] = env[key]

        for key, field_name in (
            ("CART_AUTO_REMOVE_INVALID", "auto_remove_invalid_conditions"),
            ("CART_MERGE_ON_LOGIN", "merge_on_login"),
            ("CART_EVENTS_ENABLED", "events_enabled"),
        ):
            if env.get(key):
                values[field_name] = _parse_bool(env[key])

        for key, field_name in (
            ("CART_MAX_ITEMS", "max_items_per_scope"),
            ("CART_ALLOW_DUPLICATES", "allow_duplicates_per_scope"),
            ("CART_SCOPE_CONDITIONS", "conditions_per_scope"),
        ):
            if env.get(key):
                try:
                    values[field_name] = json.loads(env[key])
                except json.JSONDecodeError as e:
                    logger.warning(f"Ignoring malformed {key}: {e}")

        if env.get("CART_TAX_RATE") or env.get("CART_TAX_ENABLED"):
            values["default_tax"] = TaxSettings(
                enabled=_parse_bool(env.get("CART_TAX_ENABLED", "true")),
                rate=float(env.get("CART_TAX_RATE", 0) or 0),
                included_in_price=_parse_bool(env.get("CART_TAX_INCLUDED", "false")),
            )

        return cls(**values)


def _parse_bool(value: str) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")
