"""Exceptions raised by the storefront core."""


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    pass


class NotFound(StorefrontError):
    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")


class InsufficientStock(StorefrontError):
    """Raised when a variant cannot cover the requested quantity."""

    def __init__(self, variant_id: str, requested: int, available: int | None = None):
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        msg = f"Insufficient stock for variant {variant_id}: requested {requested}"
        if available is not None:
            msg = f"{msg}, available {available}"
        super().__init__(msg)


class InvalidQuantity(StorefrontError):
    def __init__(self, variant_id: str, delta: int, reason: str):
        self.variant_id = variant_id
        self.delta = delta
        super().__init__(f"Invalid quantity {delta} for variant {variant_id}: {reason}")


class CouponRejected(StorefrontError):
    """Raised when a coupon cannot be applied. `reason` is machine readable."""

    MESSAGES = {
        "inactive": "Coupon is no longer active",
        "expired": "Coupon has expired",
        "usage_exhausted": "Coupon usage limit reached",
        "below_minimum": "Cart subtotal is below the coupon minimum",
        "unknown": "Coupon code not recognised",
    }

    def __init__(self, code: str, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(f"{self.MESSAGES.get(reason, reason)} ({code})")


class DuplicateCoupon(StorefrontError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Coupon code already exists: {code}")


class OrderImmutable(StorefrontError):
    """Raised when a status change is not permitted from the current status."""

    def __init__(self, order_id: str, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Order {order_id} cannot move from '{current}' to '{requested}'"
        )


class InvariantViolation(StorefrontError):
    """Internal consistency failure. Never expected in normal operation."""

    pass


class InvalidRequest(StorefrontError):
    """Raised for malformed input that reached the core (empty cart, blank note)."""

    pass
