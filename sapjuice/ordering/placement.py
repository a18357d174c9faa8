# sapjuice/ordering/placement.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import MissingAddressError, OrderPlacementError, RedemptionLimitError, ValidationError
from ..feed import ChangeFeed
from ..models import utc_now
from ..stores import LineItem, OrderStore, ProfileStore
from .cart import cart_subtotal, resolve_cart
from .lifecycle import OrderStatus
from .notification import OrderDetails, OrderNotifier
from .points import apply_credit, apply_debit, earned_points, max_redeemable

logger = logging.getLogger(__name__)

ORDER_CODE_PREFIX = "SJ-"
CODE_ATTEMPTS = 3

_code_lock = threading.Lock()
_last_code_ms = 0


def new_order_code(now_ms: int | None = None) -> str:
    """SJ- plus the last 8 digits of the ms clock, strictly increasing per process."""
    global _last_code_ms
    with _code_lock:
        ms = int(now_ms if now_ms is not None else time.time() * 1000)
        ms = max(ms, _last_code_ms + 1)
        _last_code_ms = ms
    return f"{ORDER_CODE_PREFIX}{ms % 100_000_000:08d}"


@dataclass
class OrderRequest:
    user_id: int
    item_ids: List[str]
    address: str
    notes: str = ""
    redeem_points: int = 0
    save_address: bool = False


@dataclass
class PlacedOrder:
    order_code: str
    row_id: int
    items: List[LineItem]
    subtotal: int
    points_used: int
    points_earned: int
    total: int
    balance: int
    placed_at: datetime
    status: OrderStatus = OrderStatus.PLACED
    notified: bool = False
    address_saved: bool = False
    progression: Any = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_code,
            "items": [{"id": i.item_id, "name": i.name, "price": i.price} for i in self.items],
            "subtotal": self.subtotal,
            "points_used": self.points_used,
            "points_earned": self.points_earned,
            "total": self.total,
            "points_balance": self.balance,
            "status": self.status.value,
            "placed_at": self.placed_at.isoformat(),
            "notified": self.notified,
            "address_saved": self.address_saved,
        }


def quote(balance: int, subtotal: int, redeem_points: int) -> Tuple[int, int, int]:
    """Return (points_used, total, points_earned) for a redemption request."""
    if redeem_points < 0:
        raise ValidationError("Redeemed points can't be negative.")
    allowed = max_redeemable(balance, subtotal)
    if redeem_points > allowed:
        raise RedemptionLimitError(redeem_points, allowed)
    total = subtotal - redeem_points
    return redeem_points, total, earned_points(total)


class OrderPlacement:
    """
    Places customer orders.

    Steps run in a fixed order: debit redeemed points, credit earned points,
    save the order and its items, save the address, notify, schedule the
    first auto-advance. Each write commits on its own; a failing step raises
    OrderPlacementError and leaves the earlier steps in place.
    """

    def __init__(
        self,
        db: Session,
        menu: Dict[str, Any],
        feed: Optional[ChangeFeed] = None,
        notifier: Optional[OrderNotifier] = None,
        schedule: Optional[Callable[[str, datetime], Any]] = None,
    ):
        self.db = db
        self.menu = menu
        self.profiles = ProfileStore(db)
        self.orders = OrderStore(db, feed)
        self.notifier = notifier
        self.schedule = schedule

    def place(self, req: OrderRequest) -> PlacedOrder:
        address = (req.address or "").strip()
        if not address:
            raise MissingAddressError()
        lines = resolve_cart(self.menu, req.item_ids)
        subtotal = cart_subtotal(lines)

        user = self._step("load profile", req.user_id, self.profiles.get_user, req.user_id)
        if user is None:
            raise OrderPlacementError("load profile")

        balance = self._step(
            "read balance", req.user_id, self.profiles.get_balance, req.user_id, True
        )
        points_used, total, points_earned = quote(balance, subtotal, req.redeem_points)

        if points_used:
            balance = self._step("debit points", req.user_id, self._debit, req.user_id, points_used)
        if points_earned:
            balance = self._step("credit points", req.user_id, self._credit, req.user_id, points_earned)

        order_code, row_id, placed_at = self._step(
            "save order",
            req.user_id,
            self._persist,
            req.user_id,
            lines,
            total,
            address,
            (req.notes or "").strip(),
            points_earned,
            points_used,
        )
        logger.info(
            "Order %s placed by user %s: subtotal=%s used=%s earned=%s total=%s",
            order_code,
            req.user_id,
            subtotal,
            points_used,
            points_earned,
            total,
        )

        address_saved = False
        if req.save_address and address != (user.saved_address or ""):
            address_saved = self._save_address(req.user_id, address)

        placed = PlacedOrder(
            order_code=order_code,
            row_id=row_id,
            items=lines,
            subtotal=subtotal,
            points_used=points_used,
            points_earned=points_earned,
            total=total,
            balance=balance,
            placed_at=placed_at,
            address_saved=address_saved,
        )

        if self.notifier is not None:
            placed.notified = self.notifier.notify(
                OrderDetails(
                    order_id=order_code,
                    customer_name=user.name,
                    customer_email=user.email,
                    customer_phone=user.phone or "",
                    items=lines,
                    total=total,
                    address=address,
                    notes=(req.notes or "").strip(),
                )
            )

        if self.schedule is not None:
            # delay counts from placed_at, not from here
            placed.progression = self.schedule(order_code, placed_at)

        return placed

    # -------------------
    # steps
    # -------------------
    def _step(self, step: str, user_id: int, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Order placement for user %s failed at %r: %s", user_id, step, e)
            raise OrderPlacementError(step, e) from e

    def _debit(self, user_id: int, amount: int) -> int:
        current = self.profiles.get_balance(user_id, for_update=True)
        updated = apply_debit(current, amount)
        self.profiles.set_balance(user_id, updated)
        return updated

    def _credit(self, user_id: int, amount: int) -> int:
        current = self.profiles.get_balance(user_id, for_update=True)
        updated = apply_credit(current, amount)
        self.profiles.set_balance(user_id, updated)
        return updated

    def _persist(
        self,
        user_id: int,
        lines: List[LineItem],
        total: int,
        address: str,
        notes: str,
        points_earned: int,
        points_used: int,
    ) -> Tuple[str, int, datetime]:
        for _ in range(CODE_ATTEMPTS):
            order_code = new_order_code()
            placed_at = utc_now()
            try:
                row_id = self.orders.create_order(
                    user_id=user_id,
                    order_code=order_code,
                    total=total,
                    address=address,
                    notes=notes,
                    points_earned=points_earned,
                    points_used=points_used,
                    placed_at=placed_at,
                )
            except IntegrityError:
                self.db.rollback()
                logger.warning("Order code %s already taken, retrying", order_code)
                continue
            self.orders.create_line_items(row_id, lines)
            return order_code, row_id, placed_at

        raise OrderPlacementError("save order")

    def _save_address(self, user_id: int, address: str) -> bool:
        try:
            self.profiles.set_saved_address(user_id, address)
            return True
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Could not save address for user %s: %s", user_id, e)
            return False
