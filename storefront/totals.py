# storefront/totals.py
"""Order totals. Pure functions, no I/O."""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from . import settings
from .coupons import require_discount
from .errors import InvariantViolation
from .models import ZERO, Coupon, OrderTotals, money


@dataclass(frozen=True)
class ShippingRule:
    """Free at or above `free_threshold` (pre-discount subtotal), flat fee below."""

    free_threshold: Decimal
    flat_fee: Decimal

    @classmethod
    def from_settings(cls) -> "ShippingRule":
        return cls(settings.FREE_SHIPPING_THRESHOLD, settings.FLAT_SHIPPING_FEE)

    def __call__(self, subtotal: Decimal) -> Decimal:
        if subtotal >= self.free_threshold:
            return ZERO
        return money(self.flat_fee)


@dataclass(frozen=True)
class TaxRule:
    rate: Decimal

    @classmethod
    def from_settings(cls) -> "TaxRule":
        return cls(settings.TAX_RATE)

    def __call__(self, taxable: Decimal) -> Decimal:
        return money(taxable * self.rate)


def compute_totals(
    items: Iterable,
    coupon: Optional[Coupon] = None,
    shipping_rule: Optional[ShippingRule] = None,
    tax_rule: Optional[TaxRule] = None,
    now: Optional[datetime] = None,
) -> OrderTotals:
    """Totals for `items` (anything with unit_price and quantity).

    Shipping is charged on the pre-discount subtotal; tax on the
    post-discount merchandise value, shipping exempt. A rejected coupon
    raises CouponRejected.
    """
    shipping_rule = shipping_rule or ShippingRule.from_settings()
    tax_rule = tax_rule or TaxRule.from_settings()

    subtotal = money(sum((money(i.unit_price * i.quantity) for i in items), ZERO))
    discount = require_discount(coupon, subtotal, now) if coupon is not None else ZERO
    if discount > subtotal:
        raise InvariantViolation(f"discount {discount} exceeds subtotal {subtotal}")

    shipping = money(shipping_rule(subtotal))
    tax = money(tax_rule(subtotal - discount))
    total = money(subtotal - discount + shipping + tax)
    if total < 0:
        raise InvariantViolation(
            f"negative order total {total} (subtotal={subtotal} discount={discount} "
            f"shipping={shipping} tax={tax})"
        )
    return OrderTotals(subtotal=subtotal, discount=discount, shipping=shipping, tax=tax, total=total)
