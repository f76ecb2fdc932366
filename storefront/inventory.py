# storefront/inventory.py
"""Stock aggregation across variants.

Variants hold the stock; a product's stock is always the sum over its
variants, and a product without variants has zero stock.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Optional

from . import settings
from .errors import InsufficientStock, InvalidQuantity, NotFound
from .models import InventoryRow, Product, StockStatus, Variant
from .store import Check, Increment, RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockLevel:
    total_stock: int
    status: str


def classify(total_stock: int, threshold: Optional[int] = None) -> str:
    if threshold is None:
        threshold = settings.LOW_STOCK_THRESHOLD
    if total_stock <= 0:
        return StockStatus.OUT_OF_STOCK.value
    if total_stock <= threshold:
        return StockStatus.LOW_STOCK.value
    return StockStatus.IN_STOCK.value


def aggregate(product: Product, variants: Iterable[Variant]) -> StockLevel:
    total = sum(v.stock_quantity for v in variants if v.product_id == product.id)
    return StockLevel(total, classify(total, product.low_stock_threshold))


def aggregate_many(products: Iterable[Product], variants: Iterable[Variant]) -> list[InventoryRow]:
    by_product: dict[str, list[Variant]] = defaultdict(list)
    for v in variants:
        by_product[v.product_id].append(v)

    rows = []
    for product in products:
        own = by_product.get(product.id, [])
        level = aggregate(product, own)
        rows.append(
            InventoryRow(
                product=product,
                total_stock=level.total_stock,
                status=level.status,
                variant_count=len(own),
            )
        )
    return rows


def fetch_inventory(
    store: RecordStore,
    status: Optional[str] = None,
    product_ids: Optional[list[str]] = None,
    active_only: bool = False,
) -> list[InventoryRow]:
    """Inventory rows for the catalog (or `product_ids`).

    All variants are read in one query keyed by product id, whatever the
    number of products.
    """
    filters: dict = {}
    if product_ids is not None:
        filters["id"] = list(product_ids)
    if active_only:
        filters["is_active"] = True
    products = [Product.model_validate(r) for r in store.find("products", filters, order_by="name")]
    if not products:
        return []

    variant_rows = store.find("product_variants", {"product_id": [p.id for p in products]})
    rows = aggregate_many(products, [Variant.model_validate(r) for r in variant_rows])
    if status and status != "all":
        rows = [r for r in rows if r.status == status]
    return rows


def inventory_summary(rows: Iterable[InventoryRow]) -> dict:
    summary = {"total_products": 0, **{s.value: 0 for s in StockStatus}}
    for row in rows:
        summary["total_products"] += 1
        summary[row.status] += 1
    return summary


def restock(store: RecordStore, variant_id: str, delta: int) -> Variant:
    """Add `delta` (may be negative) to a variant's stock.

    Rejected with InvalidQuantity when the result would drop below zero.
    Retried requests are not deduplicated here.
    """
    where = [Check("stock_quantity", ">=", -delta)] if delta < 0 else []
    row = store.update("product_variants", variant_id, {"stock_quantity": Increment(delta)}, where)
    if row is None:
        current = store.get("product_variants", variant_id)
        if current is None:
            raise NotFound("Variant", variant_id)
        raise InvalidQuantity(
            variant_id, delta, f"stock would become negative (current {current['stock_quantity']})"
        )
    logger.info("variant %s stock %+d -> %s", variant_id, delta, row["stock_quantity"])
    return Variant.model_validate(row)


def decrement(store: RecordStore, variant_id: str, quantity: int) -> Variant:
    """Take `quantity` units out of stock in one conditional update."""
    if quantity < 1:
        raise InvalidQuantity(variant_id, -quantity, "quantity must be at least 1")
    row = store.update(
        "product_variants",
        variant_id,
        {"stock_quantity": Increment(-quantity)},
        [Check("stock_quantity", ">=", quantity)],
    )
    if row is None:
        current = store.get("product_variants", variant_id)
        if current is None:
            raise NotFound("Variant", variant_id)
        raise InsufficientStock(variant_id, quantity, current["stock_quantity"])
    return Variant.model_validate(row)
