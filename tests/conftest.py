"""Pytest fixtures for storefront tests."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront.orders import OrderService
from storefront.store import MemoryStore
from storefront.totals import ShippingRule, TaxRule

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

ADDRESS = {
    "name": "Rahul Sharma",
    "phone": "+91 98765 43210",
    "address_line1": "42, Maple Street, Sector 15",
    "city": "Mumbai",
    "state": "Maharashtra",
    "postal_code": "400001",
    "country": "India",
}


def seed(store: MemoryStore) -> MemoryStore:
    store.create("products", {"id": "p-phone", "name": "Aurora Phone", "base_price": Decimal("1000.00"),
                              "image_url": "https://img.example/phone.jpg"})
    store.create("products", {"id": "p-tee", "name": "Cotton Tee", "base_price": Decimal("250.00")})
    store.create("products", {"id": "p-mug", "name": "Steel Mug", "base_price": Decimal("199.00")})

    store.create("product_variants", {"id": "v-phone-black", "product_id": "p-phone", "name": "Black",
                                      "price": Decimal("1000.00"), "stock_quantity": 3,
                                      "options": {"color": "black"}})
    store.create("product_variants", {"id": "v-phone-white", "product_id": "p-phone", "name": "White",
                                      "price": Decimal("1000.00"), "stock_quantity": 0,
                                      "options": {"color": "white"}})
    store.create("product_variants", {"id": "v-tee-m", "product_id": "p-tee", "name": "M",
                                      "price": Decimal("250.00"), "stock_quantity": 20,
                                      "options": {"size": "M"}})
    store.create("product_variants", {"id": "v-tee-l", "product_id": "p-tee", "name": "L",
                                      "price": Decimal("250.00"), "stock_quantity": 2,
                                      "options": {"size": "L"}})

    coupons = [
        {"id": "c-demo", "code": "DEMO2026", "discount_type": "percentage", "discount_value": Decimal("20"),
         "min_purchase_amount": Decimal("1000"), "expires_at": NOW + timedelta(days=30),
         "usage_limit": 100, "usage_count": 5, "is_active": True},
        {"id": "c-flat", "code": "FLAT500", "discount_type": "fixed", "discount_value": Decimal("500"),
         "min_purchase_amount": Decimal("2500"), "expires_at": NOW + timedelta(days=7),
         "usage_limit": 1000, "usage_count": 42, "is_active": True},
        {"id": "c-last", "code": "LASTONE", "discount_type": "fixed", "discount_value": Decimal("50"),
         "min_purchase_amount": Decimal("0"), "expires_at": None,
         "usage_limit": 1, "usage_count": 0, "is_active": True},
        {"id": "c-used", "code": "USEDUP", "discount_type": "fixed", "discount_value": Decimal("50"),
         "min_purchase_amount": Decimal("0"), "expires_at": None,
         "usage_limit": 1, "usage_count": 1, "is_active": True},
    ]
    for c in coupons:
        store.create("coupons", {**c, "created_at": NOW - timedelta(days=1)})
    return store


@pytest.fixture
def store():
    return seed(MemoryStore())


@pytest.fixture
def service(store):
    return OrderService(
        store,
        shipping_rule=ShippingRule(Decimal("500.00"), Decimal("40.00")),
        tax_rule=TaxRule(Decimal("0.18")),
        clock=lambda: NOW,
    )


def stock_of(store, variant_id):
    return store.get("product_variants", variant_id)["stock_quantity"]
