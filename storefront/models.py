# storefront/models.py
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    """Quantize to the currency's minor unit (2 places, half up)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    RETURNED = "returned"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class StockStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class Record(BaseModel):
    # enums are kept as plain strings so rows round-trip through the store
    model_config = ConfigDict(use_enum_values=True)


# Catalog

class Product(Record):
    id: str
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None
    base_price: Decimal = Field(ge=0)
    compare_price: Optional[Decimal] = Field(default=None, ge=0)
    category_id: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool = True
    is_featured: bool = False
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)


class Variant(Record):
    id: str
    product_id: str
    sku: Optional[str] = None
    name: Optional[str] = None
    price: Decimal = Field(ge=0)
    stock_quantity: int = Field(default=0, ge=0)
    options: dict[str, Any] = Field(default_factory=dict)  # e.g. {"color": "black", "size": "M"}
    is_active: bool = True


class InventoryRow(Record):
    product: Product
    total_stock: int
    status: StockStatus
    variant_count: int = 0


# Coupons

class CouponFields(Record):
    code: str = Field(min_length=1, max_length=64)
    discount_type: DiscountType
    discount_value: Decimal
    min_purchase_amount: Decimal = Field(default=ZERO, ge=0)
    expires_at: Optional[datetime] = None
    usage_limit: Optional[int] = Field(default=None, ge=0)
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def _upper_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("expires_at")
    @classmethod
    def _aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        # naive timestamps are taken as UTC
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def _check_value(self):
        if self.discount_value <= 0:
            raise ValueError("discount_value must be greater than 0")
        if self.discount_type == DiscountType.PERCENTAGE.value and self.discount_value > 100:
            raise ValueError("percentage discount_value must be at most 100")
        return self


class CouponIn(CouponFields):
    pass


class Coupon(CouponFields):
    id: str
    usage_count: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_usage(self):
        if self.usage_limit is not None and self.usage_count > self.usage_limit:
            raise ValueError("usage_count exceeds usage_limit")
        return self


class CouponValidateIn(BaseModel):
    code: str = Field(min_length=1)
    subtotal: Decimal = Field(ge=0)


class CouponPreview(BaseModel):
    code: str
    valid: bool
    discount: Decimal = ZERO
    reason: Optional[str] = None
    message: Optional[str] = None


# Orders

class OrderItem(Record):
    id: Optional[str] = None
    order_id: Optional[str] = None
    variant_id: str
    product_id: Optional[str] = None
    product_name: str
    variant_name: Optional[str] = None
    image: Optional[str] = None
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(ge=1)
    total: Optional[Decimal] = None

    @model_validator(mode="after")
    def _line_total(self):
        expected = money(self.unit_price * self.quantity)
        if self.total is None:
            self.total = expected
        elif money(self.total) != expected:
            raise ValueError(f"item total {self.total} != unit_price x quantity ({expected})")
        return self


class OrderTrackingEvent(Record):
    id: Optional[str] = None
    order_id: str
    status: OrderStatus
    message: Optional[str] = None
    location: Optional[str] = None
    created_at: datetime


class OrderTotals(BaseModel):
    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal


class Order(Record):
    id: str
    order_number: str
    user_id: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[str] = None
    subtotal: Decimal = Field(ge=0)
    discount: Decimal = Field(default=ZERO, ge=0)
    shipping: Decimal = Field(default=ZERO, ge=0)
    tax: Decimal = Field(default=ZERO, ge=0)
    total: Decimal = Field(ge=0)
    coupon_id: Optional[str] = None
    coupon_code: Optional[str] = None
    shipping_address: dict[str, Any] = Field(default_factory=dict)
    notes: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    items: list[OrderItem] = Field(default_factory=list)
    timeline: list[OrderTrackingEvent] = Field(default_factory=list)  # newest first


# Request bodies

class CartItemIn(BaseModel):
    variant_id: str
    quantity: int = Field(default=1, ge=1)


class ShippingAddress(BaseModel):
    name: str
    phone: Optional[str] = None
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: str = "India"


class PlaceOrderIn(BaseModel):
    items: list[CartItemIn] = Field(min_length=1)
    shipping_address: ShippingAddress
    coupon_code: Optional[str] = None
    payment_method: Optional[str] = None
    user_id: Optional[str] = None


class StatusPatch(BaseModel):
    status: OrderStatus
    message: Optional[str] = None


class PaymentPatch(BaseModel):
    payment_status: str = Field(pattern="^(pending|paid|failed)$")


class NoteIn(BaseModel):
    note: str = Field(min_length=1)


class RefundIn(BaseModel):
    message: Optional[str] = None


class RestockIn(BaseModel):
    delta: int
