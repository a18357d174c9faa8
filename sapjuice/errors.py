"""Custom exceptions for sapjuice."""


class SapJuiceError(Exception):
    """Base exception for all sapjuice errors."""

    pass


class ValidationError(SapJuiceError):
    """Raised when an order request is rejected before any write happens."""

    pass


class EmptyCartError(ValidationError):
    """Raised when an order is placed with no items."""

    def __init__(self):
        super().__init__("Your cart is empty. Add at least one juice.")


class UnknownItemError(ValidationError):
    """Raised when a cart references an item missing from the menu."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Unknown menu item: {item_id}")


class MissingAddressError(ValidationError):
    """Raised when an order has a blank delivery address."""

    def __init__(self):
        super().__init__("Please enter a delivery address.")


class RedemptionLimitError(ValidationError):
    """Raised when more points are redeemed than the order allows."""

    def __init__(self, requested: int, allowed: int):
        self.requested = requested
        self.allowed = allowed
        super().__init__(
            f"You can redeem at most {allowed} points on this order (requested {requested})."
        )


class OrderNotFoundError(SapJuiceError):
    """Raised when an order code doesn't exist."""

    def __init__(self, order_code: str):
        self.order_code = order_code
        super().__init__(f"Order not found: {order_code}")


class OrderPlacementError(SapJuiceError):
    """Raised when a store write fails part-way through placing an order.

    Steps that already completed are not rolled back; ``step`` names the one
    that failed.
    """

    def __init__(self, step: str, cause: Exception | None = None):
        self.step = step
        self.cause = cause
        super().__init__("We couldn't place your order right now. Please try again.")
