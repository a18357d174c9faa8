# sapjuice/ordering/notification.py
"""
Best-effort admin alert for new orders.

The notifier POSTs a Formspree-style JSON form to a configured endpoint. It is
a side channel: every failure is turned into a typed result, logged, and
never raised, so order placement can't be blocked or reverted by it.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import requests

from ..stores import LineItem
from .cart import build_summary, format_price

logger = logging.getLogger(__name__)

PLACEHOLDER_MARKER = "YOUR_FORM_ID"


@dataclass
class OrderDetails:
    order_id: str
    customer_name: str
    customer_email: str
    customer_phone: str
    items: List[LineItem] = field(default_factory=list)
    total: int = 0
    address: str = ""
    notes: str = ""


class NotificationFailure(str, Enum):
    UNCONFIGURED = "unconfigured"
    NETWORK = "network"
    REJECTED = "rejected"


@dataclass(frozen=True)
class NotificationResult:
    delivered: bool
    failure: Optional[NotificationFailure] = None
    status_code: Optional[int] = None


def is_configured(endpoint: str | None) -> bool:
    ep = (endpoint or "").strip()
    return bool(ep) and PLACEHOLDER_MARKER not in ep


def build_payload(order: OrderDetails, currency_symbol: str = "₹") -> Dict[str, Any]:
    items_list, _ = build_summary(order.items, currency_symbol)
    total = format_price(order.total, currency_symbol)
    return {
        "_subject": f"[SapJuice] New order {order.order_id}",
        "orderId": order.order_id,
        "customerName": order.customer_name,
        "customerEmail": order.customer_email,
        "customerPhone": order.customer_phone,
        "items": items_list,
        "total": total,
        "address": order.address,
        "notes": order.notes,
        "message": (
            f"New order {order.order_id} from {order.customer_name} ({order.customer_email}).\n\n"
            f"Items:\n{items_list}\n\n"
            f"Total: {total}\n\n"
            f"Delivery address: {order.address}\n\n"
            f"Notes: {order.notes}"
        ),
    }


class OrderNotifier:
    def __init__(
        self,
        endpoint: str | None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        currency_symbol: str = "₹",
    ):
        self.endpoint = (endpoint or "").strip()
        self.timeout = timeout
        self.session = session or requests.Session()
        self.currency_symbol = currency_symbol

    @property
    def configured(self) -> bool:
        return is_configured(self.endpoint)

    def dispatch(self, order: OrderDetails) -> NotificationResult:
        if not self.configured:
            logger.debug("Order notifications disabled; skipping %s", order.order_id)
            return NotificationResult(delivered=False, failure=NotificationFailure.UNCONFIGURED)

        body = json.dumps(build_payload(order, self.currency_symbol), ensure_ascii=False)
        try:
            response = self.session.post(
                self.endpoint,
                data=body.encode("utf-8"),
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Order notification for %s failed: %s", order.order_id, e)
            return NotificationResult(delivered=False, failure=NotificationFailure.NETWORK)

        if 200 <= response.status_code < 300:
            logger.info("Order notification sent for %s", order.order_id)
            return NotificationResult(delivered=True, status_code=response.status_code)

        logger.warning(
            "Order notification for %s rejected with status %s",
            order.order_id,
            response.status_code,
        )
        return NotificationResult(
            delivered=False,
            failure=NotificationFailure.REJECTED,
            status_code=response.status_code,
        )

    def notify(self, order: OrderDetails) -> bool:
        return self.dispatch(order).delivered
