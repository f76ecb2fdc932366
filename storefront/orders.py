# storefront/orders.py
"""Order lifecycle: checkout commit, status transitions, notes, refunds.

Status machine::

    pending -> confirmed -> processing -> shipped -> out_for_delivery -> delivered -> returned
    pending | confirmed | processing -> cancelled
    delivered -> refunded   (payment path)

Forward jumps along the main path are allowed (pending straight to
delivered). cancelled, refunded and returned are final; delivered only
leaves for returned or refunded. Re-applying the current status is a no-op.
Every write for one call happens in one store transaction.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from . import coupons, inventory
from .errors import CouponRejected, InsufficientStock, InvalidRequest, NotFound, OrderImmutable
from .models import (
    CartItemIn,
    InventoryRow,
    Order,
    OrderItem,
    OrderStatus,
    OrderTrackingEvent,
    PaymentStatus,
    Product,
    Variant,
)
from .store import Check, RecordStore
from .totals import ShippingRule, TaxRule, compute_totals

logger = logging.getLogger(__name__)

S = OrderStatus

HAPPY_PATH = (
    S.PENDING,
    S.CONFIRMED,
    S.PROCESSING,
    S.SHIPPED,
    S.OUT_FOR_DELIVERY,
    S.DELIVERED,
)
TERMINAL = frozenset({S.CANCELLED, S.REFUNDED, S.RETURNED})
CANCELLABLE = frozenset({S.PENDING, S.CONFIRMED, S.PROCESSING})
RESTOCKING = frozenset({S.CANCELLED, S.RETURNED})

DEFAULT_MESSAGES = {
    S.PENDING: "Order placed",
    S.REFUNDED: "Payment refunded",
}


def can_transition(current, new) -> Optional[bool]:
    """True for an allowed move, False for a no-op (same status), None if forbidden."""
    current, new = S(current), S(new)
    if current == new:
        return False
    if current in TERMINAL:
        return None
    if new == S.CANCELLED:
        return current in CANCELLABLE or None
    if new in (S.RETURNED, S.REFUNDED):
        return current == S.DELIVERED or None
    if new in HAPPY_PATH and HAPPY_PATH.index(new) > HAPPY_PATH.index(current):
        return True
    return None


def check_transition(order_id: str, current, new) -> bool:
    """Raise OrderImmutable for a forbidden move; False for a no-op, True otherwise."""
    allowed = can_transition(current, new)
    if allowed is None:
        logger.warning("order %s: rejected transition %s -> %s", order_id, S(current).value, S(new).value)
        raise OrderImmutable(order_id, S(current).value, S(new).value)
    return allowed


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _order_number(now: datetime) -> str:
    return f"HS-{now.year}-{secrets.token_hex(3).upper()}"


@dataclass
class CheckoutContext:
    """Caller identity for a checkout, passed explicitly rather than read from global state."""

    user_id: Optional[str] = None
    payment_method: Optional[str] = None


class OrderService:
    def __init__(
        self,
        store: RecordStore,
        shipping_rule: Optional[ShippingRule] = None,
        tax_rule: Optional[TaxRule] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.store = store
        self.shipping_rule = shipping_rule or ShippingRule.from_settings()
        self.tax_rule = tax_rule or TaxRule.from_settings()
        self.clock = clock

    # Checkout

    def place_order(
        self,
        cart_items: Iterable[CartItemIn],
        shipping_address: dict,
        coupon_code: Optional[str] = None,
        context: Optional[CheckoutContext] = None,
    ) -> Order:
        """Commit a cart as a new pending order.

        Stock for every line is decremented before the order row is written;
        any failure (InsufficientStock, CouponRejected, NotFound) rolls back
        the whole checkout.
        """
        context = context or CheckoutContext()
        quantities: dict[str, int] = {}
        for item in cart_items:
            if item.quantity < 1:
                raise InvalidRequest(f"quantity must be at least 1 for variant {item.variant_id}")
            quantities[item.variant_id] = quantities.get(item.variant_id, 0) + item.quantity
        if not quantities:
            raise InvalidRequest("cart is empty")

        now = self.clock()
        try:
            with self.store.transaction() as tx:
                lines = [self._snapshot_line(tx, vid, qty) for vid, qty in quantities.items()]

                coupon = None
                if coupon_code:
                    coupon = coupons.find_coupon(tx, coupon_code)
                    if coupon is None:
                        raise CouponRejected(coupons.normalize_code(coupon_code), "unknown")

                totals = compute_totals(lines, coupon, self.shipping_rule, self.tax_rule, now)

                for line in lines:
                    inventory.decrement(tx, line.variant_id, line.quantity)
                if coupon is not None:
                    coupons.redeem(tx, coupon)

                order_row = tx.create(
                    "orders",
                    {
                        "order_number": _order_number(now),
                        "user_id": context.user_id,
                        "status": S.PENDING.value,
                        "payment_status": PaymentStatus.PENDING.value,
                        "payment_method": context.payment_method,
                        **totals.model_dump(),
                        "coupon_id": coupon.id if coupon else None,
                        "coupon_code": coupon.code if coupon else None,
                        "shipping_address": dict(shipping_address),
                        "notes": [],
                        "created_at": now,
                        "updated_at": now,
                    },
                )
                for line in lines:
                    tx.create("order_items", line.model_dump(exclude={"id"}) | {"order_id": order_row["id"]})
                self._track(tx, order_row["id"], S.PENDING, DEFAULT_MESSAGES[S.PENDING], now)
        except (InsufficientStock, CouponRejected) as exc:
            logger.warning("checkout rejected: %s", exc)
            raise

        logger.info(
            "placed order %s (%s) total=%s items=%d",
            order_row["order_number"], order_row["id"], order_row["total"], len(lines),
        )
        return self.get_order(order_row["id"])

    def _snapshot_line(self, tx: RecordStore, variant_id: str, quantity: int) -> OrderItem:
        row = tx.get("product_variants", variant_id)
        if row is None:
            raise NotFound("Variant", variant_id)
        variant = Variant.model_validate(row)
        product_row = tx.get("products", variant.product_id)
        if product_row is None:
            raise NotFound("Product", variant.product_id)
        product = Product.model_validate(product_row)
        if not (variant.is_active and product.is_active):
            raise InsufficientStock(variant_id, quantity, 0)
        return OrderItem(
            variant_id=variant.id,
            product_id=product.id,
            product_name=product.name,
            variant_name=variant.name,
            image=product.image_url,
            unit_price=variant.price,
            quantity=quantity,
        )

    # Status machine

    def transition_order(self, order_id: str, new_status, message: Optional[str] = None) -> Order:
        new_status = S(new_status)
        with self.store.transaction() as tx:
            order = self._load(tx, order_id)
            if not check_transition(order_id, order.status, new_status):
                logger.debug("order %s already %s, nothing recorded", order_id, new_status.value)
                return self.get_order(order_id, store=tx)

            now = self.clock()
            changes = {"status": new_status.value, "updated_at": now}
            if new_status == S.REFUNDED:
                changes["payment_status"] = PaymentStatus.REFUNDED.value
            # guard against a concurrent transition since we read the order
            if tx.update("orders", order_id, changes, [Check("status", "=", order.status)]) is None:
                raise OrderImmutable(order_id, order.status, new_status.value)

            text = message or DEFAULT_MESSAGES.get(new_status, f"Status updated to {new_status.value}")
            self._track(tx, order_id, new_status, text, now)

            if new_status in RESTOCKING:
                for item in order.items:
                    inventory.restock(tx, item.variant_id, item.quantity)

        logger.info("order %s: %s -> %s", order.order_number, order.status, new_status.value)
        return self.get_order(order_id)

    def record_refund(self, order_id: str, message: Optional[str] = None) -> Order:
        """Payment-side refund of a delivered order."""
        return self.transition_order(order_id, S.REFUNDED, message)

    def update_payment_status(self, order_id: str, payment_status) -> Order:
        payment_status = PaymentStatus(payment_status)
        if payment_status == PaymentStatus.REFUNDED:
            return self.record_refund(order_id)
        with self.store.transaction() as tx:
            order = self._load(tx, order_id, with_items=False)
            if S(order.status) in TERMINAL:
                raise OrderImmutable(order_id, order.status, f"payment {payment_status.value}")
            tx.update(
                "orders", order_id, {"payment_status": payment_status.value, "updated_at": self.clock()}
            )
        logger.info("order %s payment %s", order.order_number, payment_status.value)
        return self.get_order(order_id)

    # Notes

    def add_note(self, order_id: str, note: str) -> Order:
        """Append an internal note. Notes are kept in order and never edited."""
        note = note.strip()
        if not note:
            raise InvalidRequest("note is empty")
        with self.store.transaction() as tx:
            order = self._load(tx, order_id, with_items=False)
            tx.update("orders", order_id, {"notes": [*order.notes, note], "updated_at": self.clock()})
        return self.get_order(order_id)

    # Reads

    def get_order(self, order_id: str, store: Optional[RecordStore] = None) -> Order:
        store = store or self.store
        order = self._load(store, order_id)
        events = store.find("order_tracking", {"order_id": order_id}, order_by="created_at")
        # newest first; equal timestamps keep reverse insertion order
        order.timeline = [OrderTrackingEvent.model_validate(e) for e in reversed(events)]
        return order

    def list_orders(self, status: Optional[str] = None) -> list[Order]:
        filters = {"status": S(status).value} if status else None
        rows = self.store.find("orders", filters, order_by="created_at", descending=True)
        return [Order.model_validate(r) for r in rows]

    def list_inventory(self, status: Optional[str] = None, active_only: bool = False) -> list[InventoryRow]:
        return inventory.fetch_inventory(self.store, status=status, active_only=active_only)

    def restock_variant(self, variant_id: str, delta: int) -> Variant:
        return inventory.restock(self.store, variant_id, delta)

    def _load(self, store: RecordStore, order_id: str, with_items: bool = True) -> Order:
        row = store.get("orders", order_id)
        if row is None:
            raise NotFound("Order", order_id)
        order = Order.model_validate(row)
        if with_items:
            order.items = [OrderItem.model_validate(r) for r in store.find("order_items", {"order_id": order_id})]
        return order

    def _track(self, store: RecordStore, order_id: str, status, message: Optional[str], now: datetime):
        store.create(
            "order_tracking",
            {"order_id": order_id, "status": S(status).value, "message": message, "created_at": now},
        )
