# storefront/coupons.py
"""Coupon evaluation and administration.

`evaluate` is pure: previewing a coupon never touches usage_count. A usage
slot is consumed only by `redeem`, which the order service calls inside the
checkout transaction.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .errors import CouponRejected, DuplicateCoupon, NotFound
from .models import ZERO, Coupon, CouponIn, CouponPreview, DiscountType, money
from .store import Check, Column, Increment, RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CouponResult:
    discount: Decimal = ZERO
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.reason is None


def normalize_code(code: str) -> str:
    return code.strip().upper()


def evaluate(coupon: Coupon, subtotal, now: Optional[datetime] = None) -> CouponResult:
    """Return the discount `coupon` gives on `subtotal`, or why it does not apply.

    Checks run in a fixed order and the first failure wins:
    inactive, expired, usage_exhausted, below_minimum.
    """
    now = now or datetime.now(timezone.utc)
    subtotal = money(subtotal)

    if not coupon.is_active:
        return CouponResult(reason="inactive")
    if coupon.expires_at is not None and coupon.expires_at <= now:
        return CouponResult(reason="expired")
    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        return CouponResult(reason="usage_exhausted")
    if subtotal < coupon.min_purchase_amount:
        return CouponResult(reason="below_minimum")

    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        discount = money(subtotal * coupon.discount_value / 100)
    else:
        discount = money(coupon.discount_value)
    return CouponResult(discount=min(discount, subtotal))


def require_discount(coupon: Coupon, subtotal, now: Optional[datetime] = None) -> Decimal:
    result = evaluate(coupon, subtotal, now)
    if not result.ok:
        raise CouponRejected(coupon.code, result.reason)
    return result.discount


# Store-backed helpers

def find_coupon(store: RecordStore, code: str) -> Optional[Coupon]:
    rows = store.find("coupons", {"code": normalize_code(code)})
    return Coupon.model_validate(rows[0]) if rows else None


def preview(store: RecordStore, code: str, subtotal, now: Optional[datetime] = None) -> CouponPreview:
    code = normalize_code(code)
    coupon = find_coupon(store, code)
    if coupon is None:
        reason = "unknown"
        return CouponPreview(code=code, valid=False, reason=reason, message=CouponRejected.MESSAGES[reason])
    result = evaluate(coupon, subtotal, now)
    if not result.ok:
        return CouponPreview(
            code=code, valid=False, reason=result.reason, message=CouponRejected.MESSAGES[result.reason]
        )
    return CouponPreview(code=code, valid=True, discount=result.discount)


def redeem(store: RecordStore, coupon: Coupon) -> Coupon:
    """Consume one usage slot.

    The increment is conditional on usage_count < usage_limit, so of two
    checkouts racing for the last slot exactly one succeeds; the other gets
    CouponRejected("usage_exhausted") even though its evaluation passed.
    """
    where = [Check("is_active", "=", True)]
    if coupon.usage_limit is not None:
        where.append(Check("usage_count", "<", Column("usage_limit")))
    row = store.update("coupons", coupon.id, {"usage_count": Increment(1)}, where)
    if row is None:
        current = store.get("coupons", coupon.id)
        if current is None:
            raise NotFound("Coupon", coupon.code)
        reason = "inactive" if not current["is_active"] else "usage_exhausted"
        raise CouponRejected(coupon.code, reason)
    return Coupon.model_validate(row)


def create_coupon(store: RecordStore, data: CouponIn, now: Optional[datetime] = None) -> Coupon:
    with store.transaction() as tx:
        if find_coupon(tx, data.code) is not None:
            raise DuplicateCoupon(data.code)
        row = tx.create(
            "coupons",
            {
                **data.model_dump(),
                "usage_count": 0,
                "created_at": now or datetime.now(timezone.utc),
            },
        )
    logger.info("created coupon %s (%s %s)", row["code"], row["discount_type"], row["discount_value"])
    return Coupon.model_validate(row)


def list_coupons(store: RecordStore, active_only: bool = False) -> list[Coupon]:
    filters = {"is_active": True} if active_only else None
    return [Coupon.model_validate(r) for r in store.find("coupons", filters, order_by="created_at", descending=True)]


def deactivate_coupon(store: RecordStore, code: str) -> Coupon:
    coupon = find_coupon(store, code)
    if coupon is None:
        raise NotFound("Coupon", normalize_code(code))
    row = store.update("coupons", coupon.id, {"is_active": False})
    logger.info("deactivated coupon %s", coupon.code)
    return Coupon.model_validate(row)
