"""Guest-to-user cart reconciliation on login."""
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from pricecart.config import CartConfig, MergeStrategy
from pricecart.errors import OperationCancelledError, StorageReadError
from pricecart.logging import get_logger, sanitize_id_for_logging

from .events import CartEvent, CartEventType, NotificationPort, NullNotifier
from .models import CartState
from .storage import CartStorage

logger = get_logger(__name__)

ACTION_ASSOCIATED = "associated"
ACTION_RELOCATED = "relocated"
ACTION_MERGED = "merged"


def user_identifier(user_id: Union[int, str]) -> str:
    """Storage identifier of an authenticated user's carts."""
    return f"user_{user_id}"


@dataclass
class MergeResult:
    """Outcome of reconciling one scope."""
    scope: str
    strategy: MergeStrategy
    action: str
    state: CartState
    item_count: int


def combine_states(guest: CartState, user: CartState) -> CartState:
    """
    Combine two carts, starting from the user's.

    Rows present in both carts get their quantities summed, guest-only rows
    are added as they are. Conditions are the user's only; guest metadata is
    overlaid by user metadata.
    """
    combined = user.copy()
    combined.meta = {**guest.meta, **user.meta}

    for guest_item in guest.copy().items.values():
        existing = combined.get(guest_item.row_key)
        if existing is not None:
            existing.set_quantity(existing.quantity + guest_item.quantity)
        else:
            combined.put(guest_item)

    return combined


class MergeCoordinator:
    """
    Moves a guest's carts into the user's carts when the guest logs in.

    Guest carts are forgotten only after the reconciled cart was written,
    so a failed write can simply be retried.
    """

    def __init__(
        self,
        guest_storage: CartStorage,
        user_storage: Optional[CartStorage] = None,
        config: Optional[CartConfig] = None,
        notifier: Optional[NotificationPort] = None,
    ) -> None:
        self.guest_storage = guest_storage
        self.user_storage = user_storage or guest_storage
        self.config = config or CartConfig()
        self.notifier = notifier or NullNotifier()

    def _emit(self, event_type: CartEventType, scope: str, payload: dict) -> bool:
        if not self.config.events_enabled:
            return True
        return self.notifier.emit(CartEvent(event_type, scope, payload))

    def _load_guest(self, scope: str, guest_identifier: Optional[str]) -> Optional[CartState]:
        try:
            return self.guest_storage.get(scope, guest_identifier)
        except StorageReadError as e:
            logger.warning(f"Guest cart {scope} unreadable, treating it as empty: {e}")
            return None

    def merge(self, guest: CartState, user: CartState, strategy: MergeStrategy) -> CartState:
        """Reconcile two non-empty carts according to `strategy`."""
        if strategy == MergeStrategy.KEEP_GUEST:
            return guest.copy()
        if strategy == MergeStrategy.KEEP_USER:
            return user.copy()
        return combine_states(guest, user)

    def merge_scope(
        self,
        scope: str,
        user_id: Union[int, str],
        guest_identifier: Optional[str] = None,
    ) -> MergeResult:
        """
        Reconcile one scope for a user who just authenticated.

        Args:
            scope: Cart scope to reconcile
            user_id: Authenticated user id
            guest_identifier: Identifier of the guest cart (None for session carts)

        Returns:
            MergeResult describing what happened

        Raises:
            StorageReadError: If the user's cart cannot be read
            StorageWriteError: If the reconciled cart cannot be written
            OperationCancelledError: If a merging handler vetoed the merge
        """
        strategy = self.config.merge_strategy
        owner = user_identifier(user_id)
        safe_user = sanitize_id_for_logging(str(user_id))

        if not self.config.merge_on_login:
            # User cart read failures propagate so it is never overwritten by accident
            state = self.user_storage.get(scope, owner) or CartState()
            return MergeResult(scope, strategy, ACTION_ASSOCIATED, state, state.count_items)

        guest = self._load_guest(scope, guest_identifier)
        user = self.user_storage.get(scope, owner)

        if guest is None or guest.is_empty:
            state = user or CartState()
            logger.debug(f"No guest cart {scope} for user {safe_user}, associating")
            return MergeResult(scope, strategy, ACTION_ASSOCIATED, state, state.count_items)

        if user is None or user.is_empty:
            self.user_storage.put(scope, guest, owner)
            self.guest_storage.forget(scope, guest_identifier)
            logger.info(f"Moved guest cart {scope} to user {safe_user}")
            return MergeResult(scope, strategy, ACTION_RELOCATED, guest, guest.count_items)

        if not self._emit(CartEventType.MERGING, scope, {
            "guest": guest,
            "user": user,
            "strategy": strategy.value,
            "user_id": str(user_id),
        }):
            raise OperationCancelledError(CartEventType.MERGING.value, scope)

        merged = self.merge(guest, user, strategy)
        self.user_storage.put(scope, merged, owner)
        self.guest_storage.forget(scope, guest_identifier)

        self._emit(CartEventType.MERGED, scope, {
            "state": merged,
            "item_count": merged.count_items,
            "user_id": str(user_id),
        })
        logger.info(
            f"Merged guest cart {scope} into user {safe_user} "
            f"({strategy.value}, {merged.count_items} rows)"
        )
        return MergeResult(scope, strategy, ACTION_MERGED, merged, merged.count_items)

    def handle_login(
        self,
        user_id: Union[int, str],
        scopes: Optional[Iterable[str]] = None,
        guest_identifier: Optional[str] = None,
    ) -> dict[str, MergeResult]:
        """Reconcile several scopes (default: the configured default scope)."""
        scopes = list(scopes) if scopes is not None else [self.config.default_scope]
        return {
            scope: self.merge_scope(scope, user_id, guest_identifier)
            for scope in scopes
        }
