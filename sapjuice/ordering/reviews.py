# sapjuice/ordering/reviews.py
from __future__ import annotations

from typing import Any, Iterable

ANONYMOUS_NAME = "Anonymous"


def _rating(review: Any, name: str) -> float:
    if isinstance(review, dict):
        return float(review.get(name, 0) or 0)
    return float(getattr(review, name, 0) or 0)


def review_score(review: Any) -> float:
    return (_rating(review, "taste_rating") + _rating(review, "quality_rating")) / 2


def average_rating(reviews: Iterable[Any]) -> float:
    """Mean of each review's (taste + quality) / 2; 0 when there are none.

    Accepts ORM rows or dicts carrying ``taste_rating`` and ``quality_rating``.
    """
    scores = [review_score(r) for r in reviews]
    if not scores:
        return 0
    return sum(scores) / len(scores)


def can_submit_review(taste_rating: int, quality_rating: int) -> bool:
    return taste_rating > 0 or quality_rating > 0


def display_name(name: str | None, anonymous: bool = False) -> str:
    if anonymous:
        return ANONYMOUS_NAME
    return (name or "").strip() or ANONYMOUS_NAME
