"""
Tests for MergeCoordinator
"""

from unittest.mock import Mock

import pytest

from pricecart.cart import (
    CartEventType,
    CartItem,
    CartState,
    MemoryStorage,
    MergeCoordinator,
    combine_states,
    make_row_key,
    user_identifier,
)
from pricecart.conditions import DiscountCondition, FixedCondition
from pricecart.config import CartConfig, MergeStrategy
from pricecart.errors import OperationCancelledError, StorageReadError, StorageWriteError

USER_ID = 7
USER = user_identifier(USER_ID)


def cart_with(meta=None, conditions=(), **quantities) -> CartState:
    state = CartState(meta=dict(meta or {}))
    for product_id, quantity in quantities.items():
        state.put(CartItem(product_id=product_id, quantity=quantity))
    for condition in conditions:
        state.add_condition(condition)
    return state


def quantities(state: CartState) -> dict:
    return {item.product_id: item.quantity for item in state.items.values()}


@pytest.fixture
def recorded(dispatcher):
    events = []
    for event_type in (CartEventType.MERGING, CartEventType.MERGED):
        dispatcher.on(event_type, events.append)
    return events


@pytest.fixture
def make_coordinator(storage, dispatcher):
    def _make(**config) -> MergeCoordinator:
        return MergeCoordinator(storage, config=CartConfig(**config), notifier=dispatcher)
    return _make


class TestCombine:
    """Tests for the combine strategy."""

    def test_quantities_summed_and_user_conditions_kept(self, storage, make_coordinator):
        """guest {A: 2} + user {A: 1, B: 1} -> {A: 3, B: 1} with user conditions only."""
        storage.put("default", cart_with(A=2, conditions=[FixedCondition("guest-only", 100)]))
        storage.put("default", cart_with(A=1, B=1, conditions=[DiscountCondition("loyalty", 5)]), USER)

        result = make_coordinator().merge_scope("default", USER_ID)

        assert result.action == "merged"
        assert quantities(result.state) == {"A": 3, "B": 1}
        assert list(result.state.conditions) == ["loyalty"]

        stored = storage.get("default", USER)
        assert quantities(stored) == {"A": 3, "B": 1}
        assert list(stored.conditions) == ["loyalty"]
        assert storage.get("default") is None

    def test_meta_user_wins(self):
        guest = cart_with(meta={"source": "ad", "note": "guest"}, A=1)
        user = cart_with(meta={"note": "user"}, B=1)

        combined = combine_states(guest, user)

        assert combined.meta == {"source": "ad", "note": "user"}

    def test_inputs_untouched(self):
        guest = cart_with(A=2)
        user = cart_with(A=1)

        combine_states(guest, user)

        assert user.get(make_row_key("A")).quantity == 1
        assert guest.get(make_row_key("A")).quantity == 2

    def test_rows_with_different_options_stay_separate(self):
        guest = CartState()
        guest.put(CartItem(product_id="A", options={"size": "L"}))
        user = cart_with(A=1)

        assert combine_states(guest, user).count_items == 2


class TestStrategies:
    """Tests for keep_guest and keep_user."""

    def test_keep_guest(self, storage, make_coordinator):
        storage.put("default", cart_with(A=2))
        storage.put("default", cart_with(B=1, conditions=[FixedCondition("fee", 100)]), USER)

        result = make_coordinator(merge_strategy="keep_guest").merge_scope("default", USER_ID)

        assert quantities(storage.get("default", USER)) == {"A": 2}
        assert result.state.conditions == {}
        assert result.strategy == MergeStrategy.KEEP_GUEST

    def test_keep_user(self, storage, make_coordinator):
        storage.put("default", cart_with(A=2))
        storage.put("default", cart_with(B=1), USER)

        make_coordinator(merge_strategy="keep_user").merge_scope("default", USER_ID)

        assert quantities(storage.get("default", USER)) == {"B": 1}
        assert storage.get("default") is None


class TestShortcuts:
    """Tests for the cases that need no merge."""

    def test_empty_guest_associates(self, storage, make_coordinator, recorded):
        storage.put("default", cart_with(B=4), USER)

        result = make_coordinator().merge_scope("default", USER_ID)

        assert result.action == "associated"
        assert quantities(result.state) == {"B": 4}
        assert recorded == []

    def test_empty_user_relocates_guest(self, storage, make_coordinator, recorded):
        storage.put("default", cart_with(A=2, conditions=[FixedCondition("fee", 100)]))

        result = make_coordinator().merge_scope("default", USER_ID)

        assert result.action == "relocated"
        stored = storage.get("default", USER)
        assert quantities(stored) == {"A": 2}
        assert stored.has_condition("fee")
        assert storage.get("default") is None
        assert recorded == []

    def test_merge_on_login_disabled(self, storage, make_coordinator):
        storage.put("default", cart_with(A=2))
        storage.put("default", cart_with(B=1), USER)

        result = make_coordinator(merge_on_login=False).merge_scope("default", USER_ID)

        assert result.action == "associated"
        assert quantities(storage.get("default", USER)) == {"B": 1}
        assert quantities(storage.get("default")) == {"A": 2}


class TestMergeLifecycle:
    """Tests for notifications and failure handling."""

    def test_events_carry_item_count(self, storage, make_coordinator, recorded):
        storage.put("default", cart_with(A=2, C=1))
        storage.put("default", cart_with(A=1, B=1), USER)

        make_coordinator().merge_scope("default", USER_ID)

        assert [e.type for e in recorded] == [CartEventType.MERGING, CartEventType.MERGED]
        assert recorded[0].payload["strategy"] == "combine"
        assert recorded[1].payload["item_count"] == 3

    def test_cancelled_merge_writes_nothing(self, storage, make_coordinator, dispatcher):
        dispatcher.on(CartEventType.MERGING, lambda event: False)
        storage.put("default", cart_with(A=2))
        storage.put("default", cart_with(B=1), USER)

        with pytest.raises(OperationCancelledError):
            make_coordinator().merge_scope("default", USER_ID)

        assert quantities(storage.get("default", USER)) == {"B": 1}
        assert quantities(storage.get("default")) == {"A": 2}

    def test_guest_kept_when_write_fails(self):
        """A failed write leaves the guest cart in place so the merge can be retried."""
        guest_storage = MemoryStorage()
        guest_storage.put("default", cart_with(A=2))
        user_storage = Mock()
        user_storage.get.return_value = cart_with(B=1)
        user_storage.put.side_effect = StorageWriteError("default")

        with pytest.raises(StorageWriteError):
            MergeCoordinator(guest_storage, user_storage).merge_scope("default", USER_ID)

        assert quantities(guest_storage.get("default")) == {"A": 2}

    def test_unreadable_guest_treated_as_empty(self):
        guest_storage = Mock()
        guest_storage.get.side_effect = StorageReadError("default")
        user_storage = MemoryStorage()
        user_storage.put("default", cart_with(B=1), USER)

        result = MergeCoordinator(guest_storage, user_storage).merge_scope("default", USER_ID)

        assert result.action == "associated"
        guest_storage.forget.assert_not_called()

    def test_unreadable_user_cart_propagates(self):
        guest_storage = MemoryStorage()
        guest_storage.put("default", cart_with(A=1))
        user_storage = Mock()
        user_storage.get.side_effect = StorageReadError("default")

        with pytest.raises(StorageReadError):
            MergeCoordinator(guest_storage, user_storage).merge_scope("default", USER_ID)

        user_storage.put.assert_not_called()

    def test_handle_login_runs_every_scope(self, storage, make_coordinator):
        storage.put("default", cart_with(A=1), "sess-1")
        storage.put("wishlist", cart_with(W=1), "sess-1")

        results = make_coordinator().handle_login(USER_ID, ["default", "wishlist"], guest_identifier="sess-1")

        assert {scope: r.action for scope, r in results.items()} == {
            "default": "relocated",
            "wishlist": "relocated",
        }
        assert quantities(storage.get("wishlist", USER)) == {"W": 1}
        assert storage.get("default", "sess-1") is None

    def test_handle_login_defaults_to_default_scope(self, storage, make_coordinator):
        results = make_coordinator().handle_login(USER_ID)
        assert list(results) == ["default"]
