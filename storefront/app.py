# storefront/app.py
import logging

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from . import coupons, settings
from .db import close_pool, fetch_one, get_conn
from .errors import (
    CouponRejected,
    DuplicateCoupon,
    InsufficientStock,
    InvalidQuantity,
    InvalidRequest,
    InvariantViolation,
    NotFound,
    OrderImmutable,
    StorefrontError,
)
from .inventory import inventory_summary
from .models import (
    Coupon,
    CouponIn,
    CouponPreview,
    CouponValidateIn,
    InventoryRow,
    NoteIn,
    Order,
    PaymentPatch,
    PlaceOrderIn,
    RefundIn,
    RestockIn,
    StatusPatch,
    Variant,
)
from .orders import CheckoutContext, OrderService
from .store import MemoryStore, PostgresStore, RecordStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Storefront Orders API", version="0.1.0")

# Presentation only; the core never looks at these.
STATUS_LABELS = {
    "pending": {"label": "Pending", "color": "bg-yellow-500"},
    "confirmed": {"label": "Confirmed", "color": "bg-blue-500"},
    "processing": {"label": "Processing", "color": "bg-purple-500"},
    "shipped": {"label": "Shipped", "color": "bg-cyan-500"},
    "out_for_delivery": {"label": "Out for Delivery", "color": "bg-indigo-500"},
    "delivered": {"label": "Delivered", "color": "bg-green-500"},
    "cancelled": {"label": "Cancelled", "color": "bg-red-500"},
    "refunded": {"label": "Refunded", "color": "bg-gray-500"},
    "returned": {"label": "Returned", "color": "bg-orange-500"},
}

ERROR_STATUS_CODES = {
    NotFound: 404,
    InsufficientStock: 409,
    InvalidQuantity: 400,
    CouponRejected: 422,
    DuplicateCoupon: 409,
    OrderImmutable: 409,
    InvalidRequest: 400,
    InvariantViolation: 500,
}

_memory_store = MemoryStore()


def get_store() -> RecordStore:
    if settings.STORE_BACKEND == "memory":
        return _memory_store
    return PostgresStore()


def get_service(store: RecordStore = Depends(get_store)) -> OrderService:
    return OrderService(store)


@app.on_event("startup")
def startup():
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.STORE_BACKEND == "postgres":
        # touch the pool so it initializes eagerly
        with get_conn():
            pass


@app.on_event("shutdown")
def shutdown():
    close_pool()


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Map StorefrontError subclasses to HTTP responses."""
    status_code = next(
        (code for cls, code in ERROR_STATUS_CODES.items() if isinstance(exc, cls)), 500
    )
    if isinstance(exc, InvariantViolation):
        logger.error("invariant violation on %s %s: %s", request.method, request.url.path, exc)
    content = {"detail": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, CouponRejected):
        content["reason"] = exc.reason
    if isinstance(exc, InsufficientStock):
        content["variant_id"] = exc.variant_id
        content["available"] = exc.available
    return JSONResponse(status_code=status_code, content=content)


# Health

@app.get("/health/db")
def health_db():
    if settings.STORE_BACKEND == "memory":
        return {"db_ok": True, "store": "memory"}
    try:
        with get_conn() as conn:
            row = fetch_one(conn, "SELECT 1 AS ok")
            return {"db_ok": row["ok"] == 1, "store": "postgres"}
    except Exception as e:
        return JSONResponse(status_code=500, content={"db_ok": False, "error": str(e)})


@app.get("/meta/order-statuses")
def order_statuses():
    return [{"value": value, **meta} for value, meta in STATUS_LABELS.items()]


# Inventory

@app.get("/inventory", response_model=list[InventoryRow])
def list_inventory(
    status: str = Query("all", pattern="^(all|in_stock|low_stock|out_of_stock)$"),
    active_only: bool = False,
    service: OrderService = Depends(get_service),
):
    return service.list_inventory(status=status, active_only=active_only)


@app.get("/inventory/summary")
def get_inventory_summary(service: OrderService = Depends(get_service)):
    return inventory_summary(service.list_inventory())


@app.post("/variants/{variant_id}/restock", response_model=Variant)
def restock_variant(variant_id: str, body: RestockIn, service: OrderService = Depends(get_service)):
    return service.restock_variant(variant_id, body.delta)


# Coupons

@app.get("/coupons", response_model=list[Coupon])
def list_coupons(active_only: bool = False, store: RecordStore = Depends(get_store)):
    return coupons.list_coupons(store, active_only=active_only)


@app.post("/coupons", response_model=Coupon, status_code=201)
def create_coupon(body: CouponIn, store: RecordStore = Depends(get_store)):
    return coupons.create_coupon(store, body)


@app.post("/coupons/validate", response_model=CouponPreview)
def validate_coupon(body: CouponValidateIn, store: RecordStore = Depends(get_store)):
    # preview only: usage_count is untouched
    return coupons.preview(store, body.code, body.subtotal)


@app.post("/coupons/{code}/deactivate", response_model=Coupon)
def deactivate_coupon(code: str, store: RecordStore = Depends(get_store)):
    return coupons.deactivate_coupon(store, code)


# Orders

@app.post("/orders", response_model=Order, status_code=201)
def place_order(body: PlaceOrderIn, service: OrderService = Depends(get_service)):
    return service.place_order(
        body.items,
        body.shipping_address.model_dump(),
        coupon_code=body.coupon_code,
        context=CheckoutContext(user_id=body.user_id, payment_method=body.payment_method),
    )


@app.get("/orders", response_model=list[Order])
def list_orders(
    status: str | None = Query(
        None,
        pattern="^(pending|confirmed|processing|shipped|out_for_delivery|delivered|cancelled|refunded|returned)$",
    ),
    service: OrderService = Depends(get_service),
):
    return service.list_orders(status)


@app.get("/orders/{order_id}", response_model=Order)
def get_order(order_id: str, service: OrderService = Depends(get_service)):
    return service.get_order(order_id)


@app.patch("/orders/{order_id}/status", response_model=Order)
def transition_order(order_id: str, body: StatusPatch, service: OrderService = Depends(get_service)):
    return service.transition_order(order_id, body.status, body.message)


@app.patch("/orders/{order_id}/payment", response_model=Order)
def update_payment(order_id: str, body: PaymentPatch, service: OrderService = Depends(get_service)):
    return service.update_payment_status(order_id, body.payment_status)


@app.post("/orders/{order_id}/refund", response_model=Order)
def refund_order(order_id: str, body: RefundIn, service: OrderService = Depends(get_service)):
    return service.record_refund(order_id, body.message)


@app.post("/orders/{order_id}/notes", response_model=Order)
def add_note(order_id: str, body: NoteIn, service: OrderService = Depends(get_service)):
    return service.add_note(order_id, body.note)


if __name__ == "__main__":
    import os

    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
