"""
Tests for CartOperations
"""

import json
from unittest.mock import Mock

import pytest

from conftest import FakeProduct
from pricecart.cart import (
    CartEventType,
    CartState,
    CartStorage,
    CartItem,
    MemoryStorage,
    ProductPriceResolver,
    RedisStorage,
    make_row_key,
)
from pricecart.conditions import (
    DiscountCondition,
    FixedCondition,
    ShippingCondition,
    TaxCondition,
)
from pricecart.config import DEFAULT_TAX_CONDITION_NAME, CartConfig, TaxSettings
from pricecart.errors import (
    CapacityExceededError,
    DuplicateProductError,
    InvalidQuantityError,
    OperationCancelledError,
    StorageReadError,
    StorageWriteError,
    UnknownRowError,
    UnresolvablePriceError,
)


class FlakyStorage(MemoryStorage):
    """MemoryStorage whose writes can be switched off."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    def put(self, scope, state, identifier=None):
        if self.fail_writes:
            raise StorageWriteError(scope)
        super().put(scope, state, identifier)


@pytest.fixture
def recorded(dispatcher):
    """Every event emitted through the dispatcher"""
    events = []
    for event_type in CartEventType:
        dispatcher.on(event_type, events.append)
    return events


def _types(events):
    return [event.type.value for event in events]


class TestAdd:
    """Tests for adding items."""

    def test_same_product_and_options_collapse_into_one_row(self, make_cart):
        cart = make_cart()
        cart.add("A", 2, options={"size": "L", "color": "red"})
        item = cart.add("A", 3, options={"color": "red", "size": "L"})

        assert cart.count_items() == 1
        assert item.quantity == 5
        assert cart.count() == 5

    def test_add_is_additive_update_replaces(self, make_cart, recorded):
        cart = make_cart()
        row_key = cart.add("A", 2).row_key
        cart.add("A", 3)
        assert cart.get(row_key).quantity == 5

        cart.update(row_key, 2)
        assert cart.get(row_key).quantity == 2
        assert _types(recorded) == [
            "item_adding", "item_added",
            "item_updating", "item_updated",
            "item_updating", "item_updated",
        ]

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_invalid_quantity_leaves_state_unchanged(self, make_cart, storage, quantity):
        cart = make_cart()
        cart.add("A", 1)

        with pytest.raises(InvalidQuantityError):
            cart.add("B", quantity)
        with pytest.raises(InvalidQuantityError):
            cart.add("A", quantity)

        assert cart.count_items() == 1
        assert cart.count() == 1
        assert storage.get("default").total_quantity == 1

    def test_add_buyable(self, make_cart):
        cart = make_cart(resolver=ProductPriceResolver())
        item = cart.add(FakeProduct("P", 300, product_kind="ebook"))

        assert item.product_kind == "ebook"
        assert cart.total() == 300

    def test_persisted_without_prices(self, make_cart, storage):
        cart = make_cart()
        cart.add("A", 2)
        cart.total()

        stored = storage.all()["default"]["default"]
        assert stored["items"][0]["quantity"] == 2
        assert "price" not in json_keys(stored)

    def test_capacity_applies_to_new_rows_only(self, make_cart):
        cart = make_cart("compare")
        for product_id in ("A", "B", "C", "D"):
            cart.add(product_id)

        with pytest.raises(CapacityExceededError) as exc_info:
            cart.add("E")
        assert exc_info.value.max_items == 4

        assert cart.add("A").quantity == 2
        assert cart.count_items() == 4

    def test_duplicates_rejected_when_disallowed(self, make_cart):
        compare = make_cart("compare")
        compare.add("A", options={"color": "red"})

        with pytest.raises(DuplicateProductError):
            compare.add("A", options={"color": "blue"})

        cart = make_cart()
        cart.add("A", options={"color": "red"})
        cart.add("A", options={"color": "blue"})
        assert cart.count_items() == 2

    def test_cancelled_add(self, make_cart, dispatcher, storage):
        dispatcher.on(CartEventType.ITEM_ADDING, lambda event: False)
        cart = make_cart()

        with pytest.raises(OperationCancelledError):
            cart.add("A")

        assert cart.is_empty()
        assert storage.get("default") is None

    def test_events_disabled(self, make_cart, dispatcher):
        dispatcher.on(CartEventType.ITEM_ADDING, lambda event: False)
        cart = make_cart(config=CartConfig(events_enabled=False))

        cart.add("A")
        assert cart.count_items() == 1


class TestUpdateRemove:
    """Tests for update, remove, clear and destroy."""

    def test_update_merges_options_and_meta(self, make_cart):
        cart = make_cart()
        row_key = cart.add("A", options={"size": "L"}, meta={"from": "search"}).row_key

        item = cart.update(row_key, {"options": {"gift": True}, "meta": {"note": "hi"}})

        assert item.options == {"size": "L", "gift": True}
        assert item.meta == {"from": "search", "note": "hi"}
        assert item.row_key == row_key
        assert cart.has(row_key)

    def test_update_invalid_quantity(self, make_cart, storage):
        cart = make_cart()
        row_key = cart.add("A", 3).row_key

        with pytest.raises(InvalidQuantityError):
            cart.update(row_key, 0)
        with pytest.raises(InvalidQuantityError):
            cart.update(row_key, {"quantity": -2})

        assert cart.get(row_key).quantity == 3
        assert storage.get("default").get(row_key).quantity == 3

    def test_unknown_row(self, make_cart):
        cart = make_cart()
        with pytest.raises(UnknownRowError):
            cart.update("missing", 1)
        with pytest.raises(UnknownRowError):
            cart.remove("missing")

    def test_cancelled_update(self, make_cart, dispatcher):
        cart = make_cart()
        row_key = cart.add("A").row_key
        dispatcher.on(CartEventType.ITEM_UPDATING, lambda event: False)

        with pytest.raises(OperationCancelledError):
            cart.update(row_key, 5)
        assert cart.get(row_key).quantity == 1

    def test_remove(self, make_cart, recorded, storage):
        cart = make_cart()
        row_key = cart.add("A").row_key
        cart.add("B")

        removed = cart.remove(row_key)

        assert removed.product_id == "A"
        assert not cart.has(row_key)
        assert storage.get("default").count_items == 1
        assert _types(recorded)[-2:] == ["item_removing", "item_removed"]

    def test_cancelled_remove(self, make_cart, dispatcher):
        cart = make_cart()
        row_key = cart.add("A").row_key
        dispatcher.on(CartEventType.ITEM_REMOVING, lambda event: False)

        with pytest.raises(OperationCancelledError):
            cart.remove(row_key)
        assert cart.has(row_key)

    def test_clear_keeps_conditions(self, make_cart, recorded):
        cart = make_cart()
        cart.add("A")
        cart.add("B")
        cart.add_condition(DiscountCondition("promo", 10))

        cart.clear()

        assert cart.is_empty()
        assert cart.has_condition("promo")
        clearing, cleared = [e for e in recorded if e.type in (CartEventType.CLEARING, CartEventType.CLEARED)]
        assert clearing.payload["item_count"] == 2
        assert cleared.payload["item_count"] == 2

    def test_clear_empty_is_noop(self, make_cart, recorded):
        make_cart().clear()
        assert recorded == []

    def test_cancelled_clear(self, make_cart, dispatcher):
        cart = make_cart()
        cart.add("A")
        dispatcher.on(CartEventType.CLEARING, lambda event: False)

        with pytest.raises(OperationCancelledError):
            cart.clear()
        assert cart.count_items() == 1

    def test_destroy(self, make_cart, storage):
        cart = make_cart()
        cart.add("A")
        cart.add_condition(DiscountCondition("promo", 10))

        cart.destroy()

        assert storage.get("default") is None
        assert cart.is_empty()
        assert cart.conditions() == []

    def test_move_to(self, make_cart):
        cart = make_cart()
        wishlist = make_cart("wishlist")
        row_key = cart.add("A", 2, options={"size": "M"}).row_key

        moved = cart.move_to(row_key, wishlist)

        assert cart.is_empty()
        assert moved.row_key == row_key
        assert wishlist.get(row_key).quantity == 2


class TestTotals:
    """Tests for subtotal, total and breakdowns."""

    def test_discount_then_tax(self, make_cart):
        cart = make_cart(resolver=ProductPriceResolver())
        cart.add(FakeProduct("X", 10000))
        cart.add_condition(TaxCondition("vat", 10))
        cart.add_condition(DiscountCondition("promo", 15))

        assert cart.subtotal() == 10000
        assert cart.total() == 9350

        breakdown = cart.calculation_breakdown()
        assert breakdown["subtotal"] == 10000
        assert breakdown["total"] == 9350
        assert [s["name"] for s in breakdown["steps"]] == ["promo", "vat"]
        assert breakdown["breakdown"] == {"discount": -1500, "tax": 850}
        assert cart.conditions_total() == -650
        assert cart.discount_total() == -1500
        assert cart.tax_total() == 1000

    @pytest.mark.parametrize("price,expected", [(4999, 5598), (5000, 5000)])
    def test_free_shipping_threshold(self, make_cart, price, expected):
        cart = make_cart(resolver=ProductPriceResolver())
        cart.add(FakeProduct("X", price))
        cart.add_condition(ShippingCondition("shipping", 599, free_shipping_threshold=5000))

        assert cart.total() == expected

    def test_default_tax_injected_without_tax_condition(self, make_cart):
        config = CartConfig(default_tax=TaxSettings(enabled=True, rate=10))
        cart = make_cart(config=config, resolver=ProductPriceResolver())
        cart.add(FakeProduct("X", 10000))

        assert cart.total() == 11000
        assert cart.calculation_breakdown()["steps"][0]["name"] == DEFAULT_TAX_CONDITION_NAME

        cart.add_condition(TaxCondition("state", 20))
        assert cart.total() == 12000

    def test_scope_conditions_apply_to_their_scope_only(self, make_cart):
        config = CartConfig(conditions_per_scope={
            "default": [{"kind": "fixed", "name": "handling", "attributes": {"amount": 250}}],
        })
        cart = make_cart(config=config)
        cart.add("A")
        wishlist = make_cart("wishlist", config=config)
        wishlist.add("A")

        assert cart.total() == 1250
        assert wishlist.total() == 1000
        assert not cart.has_condition("handling")

    def test_cart_condition_wins_over_scope_condition(self, make_cart):
        config = CartConfig(conditions_per_scope={
            "default": [{"kind": "fixed", "name": "handling", "attributes": {"amount": 250}}],
        })
        cart = make_cart(config=config)
        cart.add("A")
        cart.add_condition(FixedCondition("handling", 100))

        assert cart.total() == 1100

    def test_scope_tax_condition_suppresses_default_tax(self, make_cart):
        config = CartConfig(
            default_tax=TaxSettings(enabled=True, rate=10),
            conditions_per_scope={"default": [{"kind": "tax", "name": "vat", "attributes": {"rate": 20}}]},
        )
        cart = make_cart(config=config)
        cart.add("A")

        assert cart.total() == 1200
        assert cart.tax_total() == 200
        assert [step["name"] for step in cart.calculation_breakdown()["steps"]] == ["vat"]

    def test_item_target_conditions_ignored_at_cart_level(self, make_cart):
        cart = make_cart()
        cart.add("A")
        cart.add_condition(FixedCondition("odd", 100, target="item"))

        assert cart.total() == 1000

    def test_item_conditions_flow_into_subtotal(self, make_cart, recorded):
        cart = make_cart()
        row_key = cart.add("A", 2).row_key

        cart.add_item_condition(row_key, FixedCondition("wrap", 150, target="item"))
        assert cart.subtotal() == 2150

        assert cart.remove_item_condition(row_key, "wrap").name == "wrap"
        assert cart.subtotal() == 2000
        assert "condition_added" in _types(recorded)
        assert "condition_removed" in _types(recorded)

    def test_savings(self, make_cart):
        cart = make_cart()
        cart.add("A", 2)
        assert cart.savings() == 400

    def test_unresolvable_price_propagates(self, make_cart):
        cart = make_cart()
        cart.add("unknown")

        with pytest.raises(UnresolvablePriceError):
            cart.total()


class TestPriceCaching:
    """Tests for price resolution through CartOperations."""

    def test_one_batch_per_read(self, make_cart, resolver):
        writer = make_cart()
        for product_id in ("A", "B", "C"):
            writer.add(product_id)
        assert resolver.batches == []

        reader = make_cart()
        reader.total()
        reader.subtotal()
        reader.items()[0].unit_price

        assert len(resolver.batches) == 1
        assert len(resolver.batches[0]) == 3

    def test_mutation_invalidates(self, make_cart, resolver):
        cart = make_cart()
        cart.add("A")
        cart.total()
        cart.add("B")
        cart.total()

        assert len(resolver.batches) == 2
        assert len(resolver.batches[1]) == 2

    def test_refresh_prices(self, make_cart, resolver):
        cart = make_cart()
        cart.add("A")
        cart.total()
        cart.refresh_prices()
        cart.total()

        assert len(resolver.batches) == 2

    def test_context_change_re_resolves(self, make_cart, resolver):
        cart = make_cart()
        cart.add("A")
        cart.total()

        cart.currency = "EUR"
        cart.total()

        assert len(resolver.batches) == 2
        assert resolver.contexts[1].currency == "EUR"

    def test_item_price_follows_context_change(self, make_cart, resolver):
        cart = make_cart()
        item = cart.add("A")
        assert item.unit_price == 1000

        resolver.prices["A"] = 900
        cart.currency = "EUR"
        assert item.unit_price == 900
        assert resolver.contexts[-1].currency == "EUR"

        cart.currency = "EUR"
        item.unit_price
        assert len(resolver.batches) == 2

    def test_conditions_do_not_invalidate_prices(self, make_cart, resolver):
        cart = make_cart()
        cart.add("A")
        cart.total()
        cart.add_condition(FixedCondition("fee", 100))

        assert cart.total() == 1100
        assert len(resolver.batches) == 1


class TestConditionsOnLoad:
    """Tests for pruning invalid conditions when a cart is loaded."""

    def _store_cart_below_minimum(self, storage):
        state = CartState()
        state.put(CartItem(product_id="A"))
        state.add_condition(DiscountCondition("promo", 10, min_order_amount=5000))
        state.add_condition(FixedCondition("fee", 100))
        storage.put("default", state)

    def test_invalid_condition_removed_and_persisted(self, make_cart, storage, recorded):
        self._store_cart_below_minimum(storage)

        cart = make_cart()
        assert [c.name for c in cart.conditions()] == ["fee"]
        assert not storage.get("default").has_condition("promo")

        invalidated = [e for e in recorded if e.type == CartEventType.CONDITION_INVALIDATED]
        assert len(invalidated) == 1
        assert invalidated[0].payload["condition"].name == "promo"
        assert "5000" in invalidated[0].payload["reason"]

    def test_retained_when_disabled(self, make_cart, storage):
        self._store_cart_below_minimum(storage)

        cart = make_cart(config=CartConfig(auto_remove_invalid_conditions=False))
        assert cart.has_condition("promo")
        assert cart.total() == 1100

    def test_valid_condition_kept(self, make_cart, storage):
        state = CartState()
        state.put(CartItem(product_id="B", quantity=2))
        state.add_condition(DiscountCondition("promo", 10, min_order_amount=5000))
        storage.put("default", state)

        cart = make_cart()
        assert cart.has_condition("promo")
        assert cart.total() == 4500


class TestStorageFailures:
    """Tests for storage error handling."""

    def test_read_failure_degrades_to_empty_cart(self, make_cart):
        storage = Mock(spec=CartStorage)
        storage.get.side_effect = StorageReadError("default")

        cart = make_cart(storage=storage)

        assert cart.items() == []
        assert cart.is_empty()
        cart.add("A")
        storage.put.assert_called_once()

    def test_corrupted_row_degrades_to_empty_cart(self, make_cart, mock_redis):
        mock_redis.store["cart:sess:default"] = json.dumps(
            {"items": [{"row_key": "k", "product_id": "A", "quantity": 0}]}
        )
        cart = make_cart(storage=RedisStorage(mock_redis, session_id="sess"))

        assert cart.is_empty()
        cart.add("A")
        assert cart.count() == 1

    def test_write_failure_propagates_and_reloads(self, make_cart):
        storage = FlakyStorage()
        cart = make_cart(storage=storage)
        cart.add("A")

        storage.fail_writes = True
        with pytest.raises(StorageWriteError):
            cart.add("B")

        storage.fail_writes = False
        assert cart.count_items() == 1
        assert not cart.has(make_row_key("B"))


class TestIdentity:
    """Tests for identifiers, metadata and conditions bookkeeping."""

    def test_associate_switches_cart(self, make_cart, storage):
        cart = make_cart()
        cart.add("A")

        cart.associate(42)

        assert cart.identifier == "user_42"
        assert cart.context().user_id == "42"
        assert cart.is_empty()
        assert storage.get("default") is not None

    def test_set_identifier_reloads(self, make_cart):
        guest = make_cart(identifier="guest-1")
        guest.add("A")

        cart = make_cart()
        assert cart.is_empty()
        cart.set_identifier("guest-1")
        assert cart.count_items() == 1

    def test_meta_persisted(self, make_cart, storage):
        cart = make_cart()
        cart.set_meta("coupon_note", "welcome")

        assert cart.get_meta("coupon_note") == "welcome"
        assert storage.get("default").get_meta("coupon_note") == "welcome"

    def test_condition_lifecycle(self, make_cart, recorded):
        cart = make_cart()
        cart.add_condition(FixedCondition("fee", 100))
        cart.add_condition(FixedCondition("fee", 200))

        assert len(cart.conditions()) == 1
        assert cart.get_condition("fee").amount == 200
        assert cart.remove_condition("fee").amount == 200
        assert cart.remove_condition("fee") is None
        assert _types(recorded) == ["condition_added", "condition_added", "condition_removed"]

    def test_find(self, make_cart):
        cart = make_cart()
        cart.add("A", options={"size": "S"})
        assert cart.find("A").options == {"size": "S"}
        assert cart.find("Z") is None


def json_keys(data) -> set:
    """All dict keys appearing anywhere in a JSON-like structure."""
    keys = set()
    if isinstance(data, dict):
        for key, value in data.items():
            keys.add(key)
            keys |= json_keys(value)
    elif isinstance(data, list):
        for value in data:
            keys |= json_keys(value)
    return keys
