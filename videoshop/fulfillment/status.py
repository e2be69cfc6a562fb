"""Fulfillment status machine for order items and the order-level aggregate."""

from enum import Enum
from typing import Iterable

from videoshop.errors import InvalidTransitionError


class ItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    ORDERED = "ordered"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    FAILED = "failed"


class OrderFulfillment(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


# Forward-only moves. FAILED is absorbing outside the retry sweep.
TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.PENDING: frozenset({ItemStatus.PROCESSING}),
    ItemStatus.PROCESSING: frozenset({ItemStatus.ORDERED, ItemStatus.FAILED}),
    ItemStatus.ORDERED: frozenset({ItemStatus.SHIPPED, ItemStatus.DELIVERED, ItemStatus.FAILED}),
    ItemStatus.SHIPPED: frozenset({ItemStatus.DELIVERED}),
    ItemStatus.DELIVERED: frozenset(),
    ItemStatus.FAILED: frozenset(),
}

REOPEN_TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.FAILED: frozenset({ItemStatus.PROCESSING}),
}

# Items at or past this point are never dispatched again
DISPATCHED = frozenset({ItemStatus.ORDERED, ItemStatus.SHIPPED, ItemStatus.DELIVERED})


def can_transition(current: str, target: str, reopen: bool = False) -> bool:
    current_status = ItemStatus(current)
    target_status = ItemStatus(target)
    if target_status in TRANSITIONS[current_status]:
        return True
    return reopen and target_status in REOPEN_TRANSITIONS.get(current_status, frozenset())


def transition(item, target: ItemStatus, reopen: bool = False) -> None:
    """
    Move ``item.fulfillment_status`` to ``target``.

    Args:
        item: Anything with a ``fulfillment_status`` string attribute
        target: New status
        reopen: Allow ``failed -> processing`` (retry sweep only)

    Raises:
        InvalidTransitionError: if the move is backward or otherwise illegal
    """
    current = item.fulfillment_status
    if not can_transition(current, target.value, reopen=reopen):
        raise InvalidTransitionError(current, target.value)
    item.fulfillment_status = target.value


def aggregate_status(statuses: Iterable[str]) -> OrderFulfillment:
    """
    Order-level fulfillment status from its item statuses.

    ``failed`` iff every item failed, ``complete`` iff every item was
    delivered, ``pending`` iff nothing has started; anything else (some
    dispatched, some failed, some in flight) is ``processing``.
    """
    values = [ItemStatus(s) for s in statuses]
    if not values:
        return OrderFulfillment.PENDING
    if all(v == ItemStatus.FAILED for v in values):
        return OrderFulfillment.FAILED
    if all(v == ItemStatus.DELIVERED for v in values):
        return OrderFulfillment.COMPLETE
    if all(v == ItemStatus.PENDING for v in values):
        return OrderFulfillment.PENDING
    return OrderFulfillment.PROCESSING
