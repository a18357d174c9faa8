# sapjuice/stores.py
"""Row-level access to profiles, orders and reviews.

Each store wraps one SQLAlchemy session and commits per call, so a caller that
issues several writes gets several independent commits.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, selectinload

from .feed import ChangeFeed
from .models import Order, OrderItem, Review, User, utc_now
from .ordering.lifecycle import OrderStatus, earlier_statuses, parse_status

logger = logging.getLogger(__name__)

PAGE_SIZE = 20
MIN_SEARCH_LENGTH = 2


@dataclass(frozen=True)
class LineItem:
    item_id: str
    name: str
    price: int


@dataclass(frozen=True)
class StatusSnapshot:
    status: OrderStatus
    updated_at: Optional[datetime]


def _as_utc(value: datetime) -> datetime:
    # Stored timestamps are UTC; naive filter values are taken as UTC already.
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc)


class ProfileStore:
    def __init__(self, db: Session):
        self.db = db

    def create_user(
        self,
        name: str,
        email: str,
        phone: str | None,
        password_hash: str,
        is_admin: bool = False,
    ) -> User:
        u = User(
            name=name,
            email=email.strip().lower(),
            phone=phone,
            password_hash=password_hash,
            points_balance=0,
            is_admin=is_admin,
        )
        self.db.add(u)
        self.db.commit()
        self.db.refresh(u)
        return u

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.execute(
            select(User).where(User.email == email.strip().lower())
        ).scalar_one_or_none()

    def get_profile(self, user_id: int) -> Optional[Dict[str, Any]]:
        u = self.get_user(user_id)
        if not u:
            return None
        return {"name": u.name, "email": u.email, "phone": u.phone}

    def get_balance(self, user_id: int, for_update: bool = False) -> int:
        stmt = select(User.points_balance).where(User.id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        value = self.db.execute(stmt).scalar_one_or_none()
        return int(value or 0)

    def set_balance(self, user_id: int, balance: int) -> None:
        if balance < 0:
            raise ValueError(f"points balance must be >= 0, got {balance}")
        self.db.execute(update(User).where(User.id == user_id).values(points_balance=balance))
        self.db.commit()

    def get_saved_address(self, user_id: int) -> Optional[str]:
        return self.db.execute(
            select(User.saved_address).where(User.id == user_id)
        ).scalar_one_or_none()

    def set_saved_address(self, user_id: int, address: Optional[str]) -> None:
        value = (address or "").strip() or None
        self.db.execute(update(User).where(User.id == user_id).values(saved_address=value))
        self.db.commit()


class OrderStore:
    def __init__(self, db: Session, feed: Optional[ChangeFeed] = None):
        self.db = db
        self.feed = feed

    def create_order(
        self,
        user_id: int,
        order_code: str,
        total: int,
        address: str,
        notes: str | None = None,
        points_earned: int = 0,
        points_used: int = 0,
        placed_at: datetime | None = None,
    ) -> int:
        now = placed_at or utc_now()
        o = Order(
            user_id=user_id,
            order_code=order_code,
            total=total,
            address=address,
            notes=notes or None,
            status=OrderStatus.PLACED.value,
            placed_at=now,
            updated_at=now,
            points_earned=points_earned,
            points_used=points_used,
        )
        self.db.add(o)
        self.db.commit()
        return o.id

    def create_line_items(self, order_row_id: int, items: Iterable[LineItem]) -> None:
        self.db.add_all(
            OrderItem(order_id=order_row_id, item_id=i.item_id, item_name=i.name, price=i.price)
            for i in items
        )
        self.db.commit()

    def get_order(self, order_code: str) -> Optional[Order]:
        return self.db.execute(
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.user))
            .where(Order.order_code == order_code)
        ).scalar_one_or_none()

    def get_status(self, order_code: str) -> Optional[StatusSnapshot]:
        row = self.db.execute(
            select(Order.status, Order.updated_at).where(Order.order_code == order_code)
        ).first()
        if row is None:
            return None
        status = parse_status(row.status)
        if status is None:
            logger.warning("Order %s has unknown status %r", order_code, row.status)
            return None
        return StatusSnapshot(status=status, updated_at=row.updated_at)

    def set_status(self, order_code: str, status: OrderStatus | str) -> bool:
        """
        Move an order forward to ``status``.

        The write only matches rows still in an earlier status, so equal or
        backward updates are no-ops and concurrent writers can't regress the
        order. Returns True if the row changed.
        """
        target = parse_status(status)
        if target is None:
            raise ValueError(f"Unknown order status: {status!r}")

        allowed = [s.value for s in earlier_statuses(target)]
        if not allowed:
            return False

        result = self.db.execute(
            update(Order)
            .where(Order.order_code == order_code, Order.status.in_(allowed))
            .values(status=target.value, updated_at=utc_now())
        )
        self.db.commit()

        applied = result.rowcount == 1
        if applied:
            logger.info("Order %s -> %s", order_code, target.value)
            if self.feed is not None:
                self.feed.publish(order_code, target)
        else:
            logger.debug("Order %s: update to %s was a no-op", order_code, target.value)
        return applied

    def list_orders(
        self,
        user_id: int | None = None,
        status: OrderStatus | str | None = None,
        search: str | None = None,
        placed_from: datetime | None = None,
        placed_to: datetime | None = None,
        sort: str = "newest",
        page: int = 0,
        page_size: int = PAGE_SIZE,
    ) -> List[Order]:
        stmt = select(Order).options(selectinload(Order.items), selectinload(Order.user))

        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)

        if status not in (None, "", "all"):
            wanted = parse_status(status)
            if wanted is None:
                raise ValueError(f"Unknown order status: {status!r}")
            stmt = stmt.where(Order.status == wanted.value)

        if placed_from is not None:
            stmt = stmt.where(Order.placed_at >= _as_utc(placed_from))
        if placed_to is not None:
            stmt = stmt.where(Order.placed_at < _as_utc(placed_to))

        q = (search or "").strip()
        if len(q) >= MIN_SEARCH_LENGTH:
            stmt = stmt.where(
                or_(
                    Order.order_code.icontains(q, autoescape=True),
                    Order.address.icontains(q, autoescape=True),
                )
            )

        if sort == "oldest":
            stmt = stmt.order_by(Order.placed_at.asc(), Order.id.asc())
        else:
            stmt = stmt.order_by(Order.placed_at.desc(), Order.id.desc())

        page = max(0, page)
        stmt = stmt.offset(page * page_size).limit(page_size)
        return list(self.db.execute(stmt).scalars().all())


class ReviewStore:
    def __init__(self, db: Session):
        self.db = db

    def list_reviews(self) -> List[Review]:
        return list(
            self.db.execute(
                select(Review).order_by(Review.created_at.desc(), Review.id.desc())
            ).scalars()
        )

    def list_reviews_for_item(self, item_id: str) -> List[Review]:
        return list(
            self.db.execute(
                select(Review)
                .where(Review.item_id == item_id)
                .order_by(Review.created_at.desc(), Review.id.desc())
            ).scalars()
        )

    def create_review(
        self,
        item_id: str,
        user_name: str,
        taste_rating: int,
        quality_rating: int,
        comment: str = "",
        user_id: int | None = None,
    ) -> Review:
        r = Review(
            user_id=user_id,
            item_id=item_id,
            user_name=user_name,
            taste_rating=taste_rating,
            quality_rating=quality_rating,
            comment=comment or "",
        )
        self.db.add(r)
        self.db.commit()
        self.db.refresh(r)
        return r
