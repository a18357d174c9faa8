# sapjuice/ordering/tracking.py
"""
Keeps a displayed order status in step with the stored one.

Three mechanisms feed the displayed status:
  1. a one-off read when tracking starts (falls back to "placed"),
  2. the change feed, whose updates always overwrite the display,
  3. a one-shot auto-advance timer, armed only while the order is "placed",
     which nudges the stored order to "preparing" with a conditional write.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..feed import ChangeFeed
from ..models import utc_now
from ..stores import OrderStore, StatusSnapshot
from .lifecycle import PROGRESSION_DELAYS, OrderStatus, validate_transition

logger = logging.getLogger(__name__)

DEFAULT_ADVANCE_DELAY = PROGRESSION_DELAYS[OrderStatus.PLACED]


def advance_to_preparing(
    session_factory: sessionmaker, feed: Optional[ChangeFeed], order_code: str
) -> bool:
    db = session_factory()
    try:
        return OrderStore(db, feed).set_status(order_code, OrderStatus.PREPARING)
    finally:
        db.close()


def remaining_delay(placed_at: datetime, delay: float, now: Optional[datetime] = None) -> float:
    """Seconds left of ``delay`` counted from ``placed_at``, never negative."""
    now = now or utc_now()
    if placed_at.tzinfo is None:
        placed_at = placed_at.replace(tzinfo=timezone.utc)
    return max(0.0, delay - (now - placed_at).total_seconds())


def schedule_progression(
    order_code: str,
    advance: Callable[[str], bool],
    delay: float = DEFAULT_ADVANCE_DELAY,
    placed_at: Optional[datetime] = None,
) -> threading.Timer:
    """Arm the placement-time placed -> preparing timer. Call ``cancel()`` to drop it.

    With ``placed_at`` the delay runs from placement, not from this call.
    """
    if placed_at is not None:
        delay = remaining_delay(placed_at, delay)

    def _fire() -> None:
        try:
            advance(order_code)
        except SQLAlchemyError as e:
            logger.warning("Auto-advance of order %s failed: %s", order_code, e)

    timer = threading.Timer(delay, _fire)
    timer.daemon = True
    timer.start()
    return timer


class OrderTracker:
    def __init__(
        self,
        order_code: str,
        session_factory: sessionmaker,
        feed: ChangeFeed,
        on_status: Optional[Callable[[OrderStatus], None]] = None,
        advance_delay: float = DEFAULT_ADVANCE_DELAY,
    ):
        self.order_code = order_code
        self.session_factory = session_factory
        self.feed = feed
        self.on_status = on_status
        self.advance_delay = advance_delay

        self.status: Optional[OrderStatus] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._closed = False

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> OrderStatus:
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self.feed.subscribe(self.order_code, self._on_feed)

        snapshot = await asyncio.to_thread(self._read_status)
        initial = snapshot.status if snapshot else OrderStatus.PLACED

        # A feed update may have landed while we were reading; stored status
        # only moves forward, so the later of the two is the fresher one.
        if self.status is not None and validate_transition(initial, self.status).applies:
            initial = self.status

        self._apply(initial)
        if initial is OrderStatus.PLACED and not self._closed:
            self._timer = asyncio.create_task(self._auto_advance())
        return initial

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        self._cancel_timer()

    async def __aenter__(self) -> "OrderTracker":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------
    # internals
    # -------------------
    def _read_status(self) -> Optional[StatusSnapshot]:
        try:
            db = self.session_factory()
            try:
                return OrderStore(db).get_status(self.order_code)
            finally:
                db.close()
        except SQLAlchemyError as e:
            logger.warning("Could not read status of order %s: %s", self.order_code, e)
            return None

    def _advance(self) -> bool:
        return advance_to_preparing(self.session_factory, self.feed, self.order_code)

    def _on_feed(self, status: OrderStatus) -> None:
        # May run on any thread.
        loop = self._loop
        if self._closed or loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._apply, status)

    def _apply(self, status: OrderStatus) -> None:
        if self._closed:
            return
        changed = status is not self.status
        self.status = status
        if status is not OrderStatus.PLACED:
            self._cancel_timer()
        if changed and self.on_status is not None:
            self.on_status(status)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _auto_advance(self) -> None:
        await asyncio.sleep(self.advance_delay)
        if self._closed:
            return

        # Detach first so the optimistic update below doesn't cancel this task.
        self._timer = None
        self._apply(OrderStatus.PREPARING)

        try:
            applied = await asyncio.to_thread(self._advance)
        except SQLAlchemyError as e:
            logger.warning("Auto-advance of order %s failed: %s", self.order_code, e)
            return

        if not applied and not self._closed:
            snapshot = await asyncio.to_thread(self._read_status)
            if snapshot is not None:
                self._apply(snapshot.status)
