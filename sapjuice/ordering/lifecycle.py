# sapjuice/ordering/lifecycle.py
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional


class OrderStatus(str, Enum):
    PLACED = "placed"
    PREPARING = "preparing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]

    @property
    def description(self) -> str:
        return STATUS_DESCRIPTIONS[self]


ORDER_STATUSES: List[OrderStatus] = [
    OrderStatus.PLACED,
    OrderStatus.PREPARING,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]

STATUS_LABELS: Dict[OrderStatus, str] = {
    OrderStatus.PLACED: "Order Placed",
    OrderStatus.PREPARING: "Preparing",
    OrderStatus.OUT_FOR_DELIVERY: "Out for Delivery",
    OrderStatus.DELIVERED: "Delivered",
}

STATUS_DESCRIPTIONS: Dict[OrderStatus, str] = {
    OrderStatus.PLACED: "Your order has been received",
    OrderStatus.PREPARING: "Your juices are being freshly pressed",
    OrderStatus.OUT_FOR_DELIVERY: "Your rider is on the way",
    OrderStatus.DELIVERED: "Enjoy your fresh juice!",
}

# Seconds spent in each status before the next step. Only PLACED is armed as
# a timer; the later steps are admin/delivery-driven.
PROGRESSION_DELAYS: Dict[OrderStatus, float] = {
    OrderStatus.PLACED: 8.0,
    OrderStatus.PREPARING: 15.0,
    OrderStatus.OUT_FOR_DELIVERY: 20.0,
}


class Transition(str, Enum):
    ADVANCE = "advance"
    UNCHANGED = "unchanged"
    BACKWARD = "backward"

    @property
    def applies(self) -> bool:
        return self is Transition.ADVANCE


def parse_status(raw: str | OrderStatus | None) -> Optional[OrderStatus]:
    if isinstance(raw, OrderStatus):
        return raw
    try:
        return OrderStatus((raw or "").strip().lower())
    except ValueError:
        return None


def _rank(status: OrderStatus) -> int:
    return ORDER_STATUSES.index(status)


def validate_transition(current: OrderStatus, target: OrderStatus) -> Transition:
    """Only forward moves are applied; anything else is a no-op."""
    diff = _rank(target) - _rank(current)
    if diff > 0:
        return Transition.ADVANCE
    if diff == 0:
        return Transition.UNCHANGED
    return Transition.BACKWARD


def is_terminal(status: OrderStatus) -> bool:
    return status is OrderStatus.DELIVERED


def next_status(status: OrderStatus) -> Optional[OrderStatus]:
    if is_terminal(status):
        return None
    return ORDER_STATUSES[_rank(status) + 1]


def earlier_statuses(target: OrderStatus) -> List[OrderStatus]:
    """Statuses from which ``target`` is a forward move."""
    return ORDER_STATUSES[: _rank(target)]
