"""Tests for the order lifecycle."""

from decimal import Decimal

import pytest

from storefront.errors import CouponRejected, InsufficientStock, InvalidRequest, NotFound, OrderImmutable
from storefront.models import CartItemIn
from storefront.orders import CheckoutContext, can_transition

from .conftest import ADDRESS, stock_of


def cart(*lines):
    return [CartItemIn(variant_id=v, quantity=q) for v, q in lines]


def order_count(store):
    return len(store.find("orders"))


class TestCanTransition:
    @pytest.mark.parametrize(
        "current,new",
        [
            ("pending", "confirmed"),
            ("pending", "delivered"),
            ("processing", "out_for_delivery"),
            ("pending", "cancelled"),
            ("processing", "cancelled"),
            ("delivered", "returned"),
            ("delivered", "refunded"),
        ],
    )
    def test_allowed(self, current, new):
        assert can_transition(current, new) is True

    @pytest.mark.parametrize(
        "current,new",
        [
            ("shipped", "pending"),
            ("shipped", "cancelled"),
            ("delivered", "cancelled"),
            ("pending", "returned"),
            ("shipped", "refunded"),
            ("cancelled", "pending"),
            ("cancelled", "delivered"),
            ("refunded", "returned"),
            ("returned", "delivered"),
        ],
    )
    def test_forbidden(self, current, new):
        assert can_transition(current, new) is None

    @pytest.mark.parametrize("status", ["pending", "delivered", "cancelled", "returned"])
    def test_same_status_is_noop(self, status):
        assert can_transition(status, status) is False


class TestPlaceOrder:
    def test_creates_pending_order_with_coupon(self, service, store):
        order = service.place_order(
            cart(("v-phone-black", 2)),
            ADDRESS,
            coupon_code="demo2026",
            context=CheckoutContext(user_id="u1", payment_method="UPI"),
        )

        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.order_number.startswith("HS-2026-")
        assert order.subtotal == Decimal("2000.00")
        assert order.discount == Decimal("400.00")
        assert order.shipping == Decimal("0")
        assert order.tax == Decimal("288.00")
        assert order.total == Decimal("1888.00")
        assert order.total == order.subtotal - order.discount + order.shipping + order.tax
        assert order.coupon_code == "DEMO2026"
        assert order.user_id == "u1"
        assert order.shipping_address == ADDRESS

        assert stock_of(store, "v-phone-black") == 1
        assert store.get("coupons", "c-demo")["usage_count"] == 6

        assert len(order.items) == 1
        line = order.items[0]
        assert line.product_name == "Aurora Phone"
        assert line.variant_name == "Black"
        assert line.image == "https://img.example/phone.jpg"
        assert line.total == Decimal("2000.00")

        assert [e.status for e in order.timeline] == ["pending"]

    def test_duplicate_lines_merged(self, service, store):
        order = service.place_order(cart(("v-tee-m", 1), ("v-tee-m", 2)), ADDRESS)
        assert [(i.variant_id, i.quantity) for i in order.items] == [("v-tee-m", 3)]
        assert stock_of(store, "v-tee-m") == 17

    def test_insufficient_stock(self, service, store):
        with pytest.raises(InsufficientStock) as exc_info:
            service.place_order(cart(("v-tee-l", 3)), ADDRESS)
        assert exc_info.value.variant_id == "v-tee-l"
        assert stock_of(store, "v-tee-l") == 2
        assert order_count(store) == 0

    def test_failure_keeps_no_partial_decrement(self, service, store):
        with pytest.raises(InsufficientStock):
            service.place_order(cart(("v-tee-m", 1), ("v-tee-l", 3)), ADDRESS)
        assert stock_of(store, "v-tee-m") == 20
        assert stock_of(store, "v-tee-l") == 2
        assert store.find("order_items") == []
        assert store.find("order_tracking") == []

    def test_rejected_coupon_leaves_stock(self, service, store):
        with pytest.raises(CouponRejected) as exc_info:
            service.place_order(cart(("v-tee-m", 1)), ADDRESS, coupon_code="DEMO2026")
        assert exc_info.value.reason == "below_minimum"
        assert stock_of(store, "v-tee-m") == 20
        assert store.get("coupons", "c-demo")["usage_count"] == 5

    def test_unknown_coupon(self, service):
        with pytest.raises(CouponRejected) as exc_info:
            service.place_order(cart(("v-tee-m", 1)), ADDRESS, coupon_code="ghost")
        assert exc_info.value.reason == "unknown"

    def test_exhausted_coupon(self, service, store):
        with pytest.raises(CouponRejected) as exc_info:
            service.place_order(cart(("v-tee-m", 1)), ADDRESS, coupon_code="USEDUP")
        assert exc_info.value.reason == "usage_exhausted"
        assert order_count(store) == 0

    def test_last_coupon_slot_single_winner(self, service, store):
        service.place_order(cart(("v-tee-m", 1)), ADDRESS, coupon_code="LASTONE")
        with pytest.raises(CouponRejected):
            service.place_order(cart(("v-tee-m", 1)), ADDRESS, coupon_code="LASTONE")
        assert store.get("coupons", "c-last")["usage_count"] == 1
        assert stock_of(store, "v-tee-m") == 19

    def test_unknown_variant(self, service):
        with pytest.raises(NotFound):
            service.place_order(cart(("v-ghost", 1)), ADDRESS)

    def test_inactive_variant_unavailable(self, service, store):
        store.update("product_variants", "v-tee-m", {"is_active": False})
        with pytest.raises(InsufficientStock):
            service.place_order(cart(("v-tee-m", 1)), ADDRESS)

    def test_empty_cart(self, service):
        with pytest.raises(InvalidRequest):
            service.place_order([], ADDRESS)

    def test_address_is_a_snapshot(self, service):
        address = dict(ADDRESS)
        order = service.place_order(cart(("v-tee-m", 1)), address)
        address["city"] = "Pune"
        assert service.get_order(order.id).shipping_address["city"] == "Mumbai"


class TestTransitions:
    def test_cancel_restocks_and_appends_one_event(self, service, store):
        order = service.place_order(cart(("v-tee-m", 4), ("v-phone-black", 1)), ADDRESS)
        service.transition_order(order.id, "processing")
        assert stock_of(store, "v-tee-m") == 16

        cancelled = service.transition_order(order.id, "cancelled")

        assert cancelled.status == "cancelled"
        assert stock_of(store, "v-tee-m") == 20
        assert stock_of(store, "v-phone-black") == 3
        assert [e.status for e in cancelled.timeline].count("cancelled") == 1
        assert len(cancelled.timeline) == 3
        assert cancelled.timeline[0].status == "cancelled"
        assert cancelled.timeline[0].message == "Status updated to cancelled"

    def test_forward_jump(self, service):
        order = service.place_order(cart(("v-tee-m", 1)), ADDRESS)
        delivered = service.transition_order(order.id, "delivered", "Left at the door")
        assert delivered.status == "delivered"
        assert delivered.timeline[0].message == "Left at the door"

    def test_same_status_is_noop(self, service, store):
        order = service.place_order(cart(("v-tee-m", 1)), ADDRESS)
        service.transition_order(order.id, "delivered")
        again = service.transition_order(order.id, "delivered")
        assert again.status == "delivered"
        assert [e.status for e in again.timeline] == ["delivered", "pending"]

    def test_terminal_is_immutable(self, service, store):
        order = service.place_order(cart(("v-tee-m", 2)), ADDRESS)
        service.transition_order(order.id, "cancelled")

        for status in ("pending", "confirmed", "delivered", "returned", "refunded"):
            with pytest.raises(OrderImmutable):
                service.transition_order(order.id, status)

        after = service.get_order(order.id)
        assert after.status == "cancelled"
        assert len(after.timeline) == 2
        assert stock_of(store, "v-tee-m") == 20

    def test_cannot_cancel_after_shipping(self, service, store):
        order = service.place_order(cart(("v-tee-m", 1)), ADDRESS)
        service.transition_order(order.id, "shipped")
        with pytest.raises(OrderImmutable):
            service.transition_order(order.id, "cancelled")
        assert stock_of(store, "v-tee-m") == 19

    def test_backwards_rejected(self, service):
        order = service.place_order(cart(("v-tee-m", 1)), ADDRESS)
        service.transition_order(order.id, "shipped")
        with pytest.raises(OrderImmutable):
            service.transition_order(order.id, "confirmed")

    def test_return_after_delivery_restocks(self, service, store):
        order = service.place_order(cart(("v-tee-l", 2)), ADDRESS)
        service.transition_order(order.id, "delivered")
        returned = service.transition_order(order.id, "returned")
        assert returned.status == "returned"
        assert stock_of(store, "v-tee-l") == 2
        with pytest.raises(OrderImmutable):
            service.transition_order(order.id, "delivered")

    def test_refund_after_delivery(self, service, store):
        order = service.place_order(cart(("v-tee-m", 1)), ADDRESS)
        service.update_payment_status(order.id, "paid")
        service.transition_order(order.id, "delivered")

        refunded = service.record_refund(order.id)

        assert refunded.status == "refunded"
        assert refunded.payment_status == "refunded"
        assert refunded.timeline[0].message == "Payment refunded"
        assert refunded.total == order.total
        # refunds do not restock
        assert stock_of(store, "v-tee-m") == 19

    def test_refund_before_delivery_rejected(self, service):
        order = service.place_order(cart(("v-tee-m", 1)), ADDRESS)
        with pytest.raises(OrderImmutable):
            service.record_refund(order.id)

    def test_payment_status_on_terminal_order_rejected(self, service):
        order = service.place_order(cart(("v-tee-m", 1)), ADDRESS)
        service.transition_order(order.id, "cancelled")
        with pytest.raises(OrderImmutable):
            service.update_payment_status(order.id, "paid")

    def test_totals_unchanged_by_transitions(self, service):
        order = service.place_order(cart(("v-phone-black", 2)), ADDRESS, coupon_code="DEMO2026")
        for status in ("confirmed", "shipped", "delivered", "returned"):
            service.transition_order(order.id, status)
        after = service.get_order(order.id)
        assert (after.subtotal, after.discount, after.shipping, after.tax, after.total) == (
            order.subtotal, order.discount, order.shipping, order.tax, order.total,
        )

    def test_unknown_order(self, service):
        with pytest.raises(NotFound):
            service.transition_order("ghost", "confirmed")


class TestNotesAndReads:
    def test_notes_are_appended_in_order(self, service):
        order = service.place_order(cart(("v-tee-m", 1)), ADDRESS)
        service.add_note(order.id, "Customer requested gift wrapping")
        updated = service.add_note(order.id, "  Priority delivery requested\n")
        assert updated.notes == ["Customer requested gift wrapping", "Priority delivery requested"]

    def test_blank_note_rejected(self, service):
        order = service.place_order(cart(("v-tee-m", 1)), ADDRESS)
        with pytest.raises(InvalidRequest):
            service.add_note(order.id, "   ")

    def test_list_orders_by_status(self, service):
        first = service.place_order(cart(("v-tee-m", 1)), ADDRESS)
        second = service.place_order(cart(("v-tee-m", 1)), ADDRESS)
        service.transition_order(second.id, "confirmed")

        assert {o.id for o in service.list_orders()} == {first.id, second.id}
        assert [o.id for o in service.list_orders("confirmed")] == [second.id]
        assert [o.id for o in service.list_orders("pending")] == [first.id]

    def test_list_inventory_reflects_checkout(self, service):
        service.place_order(cart(("v-tee-m", 20)), ADDRESS)
        rows = {r.product.id: r for r in service.list_inventory()}
        assert rows["p-tee"].total_stock == 2
        assert rows["p-tee"].status == "low_stock"

    def test_restock_variant(self, service):
        assert service.restock_variant("v-phone-white", 10).stock_quantity == 10
