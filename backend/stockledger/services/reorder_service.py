# backend/stockledger/services/reorder_service.py
"""
Reorder suggestions and low-stock reporting.

Read-only. Covers every stock-tracked product, active or not, and works
from StockLevel thresholds (0 = unset):
- target    = max_stock if set, else min_stock
- suggested = max(0, target - on_hand)
- needs_reorder = on_hand <= min_stock when min_stock is set, else suggested > 0
"""
from __future__ import annotations

from decimal import Decimal

from sqlalchemy import or_

from ..extensions import db
from ..models import Product, ProductVariant, StockLevel, Warehouse
from ..quantities import as_decimal, quantity_to_json


def _threshold_query(warehouse_id: int | None, q: str | None):
    query = (
        db.session.query(StockLevel, Product, Warehouse, ProductVariant)
        .join(Product, Product.id == StockLevel.product_id)
        .join(Warehouse, Warehouse.id == StockLevel.warehouse_id)
        .outerjoin(ProductVariant, ProductVariant.id == StockLevel.variant_id)
        .filter(
            Product.track_stock.is_(True),
            or_(StockLevel.min_stock > 0, StockLevel.max_stock > 0),
        )
    )
    if warehouse_id is not None:
        query = query.filter(StockLevel.warehouse_id == warehouse_id)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))
    return query.order_by(StockLevel.id.asc())


def evaluate_level(on_hand, min_stock, max_stock) -> tuple[Decimal, Decimal, bool]:
    """Return (target, suggested_quantity, needs_reorder) for one level."""
    on_hand = as_decimal(on_hand)
    min_stock = as_decimal(min_stock)
    max_stock = as_decimal(max_stock)

    target = max_stock if max_stock > 0 else min_stock
    suggested = max(Decimal("0"), target - on_hand)
    if min_stock > 0:
        needs_reorder = on_hand <= min_stock
    else:
        needs_reorder = suggested > 0
    return target, suggested, needs_reorder


def reorder_suggestions(warehouse_id: int | None = None, q: str | None = None) -> list[dict]:
    """
    Items that should be reordered, largest suggested quantity first.

    Args:
        warehouse_id: Limit to one warehouse
        q: Filter by product name or SKU

    Returns:
        list[dict]: One row per (item, warehouse, zone) with on_hand,
        thresholds, target and suggested_quantity
    """
    rows = []
    for level, product, warehouse, variant in _threshold_query(warehouse_id, q).all():
        target, suggested, needs_reorder = evaluate_level(level.quantity, level.min_stock, level.max_stock)
        if not needs_reorder or suggested <= 0:
            continue
        rows.append({
            "warehouse_id": warehouse.id,
            "warehouse_name": warehouse.name,
            "zone_id": level.zone_id,
            "product_id": product.id,
            "product_name": product.name,
            "sku": variant.sku if variant is not None and variant.sku else product.sku,
            "variant_id": level.variant_id,
            "variant_name": variant.name if variant is not None else None,
            "on_hand": as_decimal(level.quantity),
            "min_stock": as_decimal(level.min_stock),
            "max_stock": as_decimal(level.max_stock),
            "target": target,
            "suggested_quantity": suggested,
            "needs_reorder": needs_reorder,
        })

    rows.sort(key=lambda r: r["suggested_quantity"], reverse=True)
    return rows


def low_stock_report(warehouse_id: int | None = None) -> dict:
    """
    Items at or below their minimum.

    Returns:
        dict: {"items": [...], "summary": {...}}; each item carries its
        deficit (min_stock - on_hand)
    """
    items = []
    for level, product, warehouse, variant in _threshold_query(warehouse_id, None).all():
        min_stock = as_decimal(level.min_stock)
        on_hand = as_decimal(level.quantity)
        if min_stock <= 0 or on_hand > min_stock:
            continue
        items.append({
            "warehouse_id": warehouse.id,
            "warehouse_name": warehouse.name,
            "zone_id": level.zone_id,
            "product_id": product.id,
            "product_name": product.name,
            "variant_id": level.variant_id,
            "on_hand": quantity_to_json(on_hand),
            "min_stock": quantity_to_json(min_stock),
            "deficit": quantity_to_json(min_stock - on_hand),
            "out_of_stock": on_hand <= 0,
        })

    items.sort(key=lambda r: (r["warehouse_id"], r["product_name"]))
    return {
        "items": items,
        "summary": {
            "low_stock_count": len(items),
            "out_of_stock_count": sum(1 for r in items if r["out_of_stock"]),
            "warehouses_affected": len({r["warehouse_id"] for r in items}),
        },
    }
