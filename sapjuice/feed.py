# sapjuice/feed.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List

from .ordering.lifecycle import OrderStatus

logger = logging.getLogger(__name__)

StatusCallback = Callable[[OrderStatus], None]


class ChangeFeed:
    """In-process publish/subscribe of order status changes, keyed by order code.

    Callbacks run on the publisher's thread. A failing callback is logged and
    never reaches the publisher or the other subscribers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: Dict[str, List[StatusCallback]] = {}

    def subscribe(self, order_code: str, callback: StatusCallback) -> Callable[[], None]:
        with self._lock:
            self._subs.setdefault(order_code, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                subs = self._subs.get(order_code) or []
                if callback in subs:
                    subs.remove(callback)
                if not subs:
                    self._subs.pop(order_code, None)

        return unsubscribe

    def publish(self, order_code: str, status: OrderStatus) -> int:
        with self._lock:
            subs = list(self._subs.get(order_code) or [])

        for cb in subs:
            try:
                cb(status)
            except Exception:
                logger.exception("Status subscriber failed for order %s", order_code)
        return len(subs)

    def subscriber_count(self, order_code: str) -> int:
        with self._lock:
            return len(self._subs.get(order_code) or [])
