# sapjuice/models.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .db import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (CheckConstraint("points_balance >= 0", name="ck_users_points_nonneg"),)

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    points_balance = Column(Integer, nullable=False, default=0)
    saved_address = Column(Text, nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    orders = relationship("Order", back_populates="user")


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (CheckConstraint("total >= 0", name="ck_orders_total_nonneg"),)

    id = Column(Integer, primary_key=True)
    order_code = Column(String, unique=True, index=True, nullable=False)  # SJ-########
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    total = Column(Integer, nullable=False, default=0)
    address = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="placed", index=True)
    placed_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now)
    points_earned = Column(Integer, nullable=False, default=0)
    points_used = Column(Integer, nullable=False, default=0)

    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    item_id = Column(String, nullable=False)
    item_name = Column(String, nullable=False)
    price = Column(Integer, nullable=False)  # snapshot price at time of order

    order = relationship("Order", back_populates="items")


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        CheckConstraint("taste_rating BETWEEN 1 AND 5", name="ck_reviews_taste"),
        CheckConstraint("quality_rating BETWEEN 1 AND 5", name="ck_reviews_quality"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    item_id = Column(String, nullable=False, index=True)
    user_name = Column(String, nullable=False)
    taste_rating = Column(Integer, nullable=False)
    quality_rating = Column(Integer, nullable=False)
    comment = Column(Text, default="")
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
