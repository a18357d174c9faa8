# sapjuice/ordering/cart.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Sequence, Tuple

from ..catalog import find_item
from ..errors import EmptyCartError, UnknownItemError
from ..stores import LineItem


def resolve_cart(menu: Dict[str, Any], item_ids: Sequence[str]) -> List[LineItem]:
    """Turn item ids into priced line items; menu prices win over client input."""
    if not item_ids:
        raise EmptyCartError()

    lines: List[LineItem] = []
    for iid in item_ids:
        item = find_item(menu, str(iid))
        if not item:
            raise UnknownItemError(str(iid))
        lines.append(
            LineItem(
                item_id=str(item["id"]),
                name=str(item.get("name", "Item")),
                price=int(item.get("price", 0) or 0),
            )
        )
    return lines


def cart_subtotal(lines: Iterable[LineItem]) -> int:
    return sum(line.price for line in lines)


def format_price(amount: int, currency_symbol: str = "₹") -> str:
    return f"{currency_symbol}{amount}"


def build_summary(lines: Sequence[LineItem], currency_symbol: str = "₹") -> Tuple[str, int]:
    if not lines:
        return ("Your cart is empty.", 0)

    out = [f"- {line.name}: {format_price(line.price, currency_symbol)}" for line in lines]
    total = cart_subtotal(lines)
    return ("\n".join(out), total)
