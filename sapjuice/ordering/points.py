# sapjuice/ordering/points.py
"""Loyalty points arithmetic.

1 point is earned per 10 currency units spent, and points can fund at most
half of an order's subtotal. Nothing here touches the database; the placement
flow applies the results to the profile store.
"""
from __future__ import annotations

EARN_DIVISOR = 10
REDEEM_DIVISOR = 2


def earned_points(order_total: int) -> int:
    if order_total < 0:
        raise ValueError(f"order total must be >= 0, got {order_total}")
    return int(order_total // EARN_DIVISOR)


def max_redeemable(balance: int, subtotal: int) -> int:
    """Max redeemable = min(balance, 50% of subtotal), never below 0."""
    return max(0, min(balance, int(subtotal // REDEEM_DIVISOR)))


def apply_debit(balance: int, amount: int) -> int:
    return max(0, balance - amount)


def apply_credit(balance: int, amount: int) -> int:
    return balance + amount
