# Overview: Movement ledger and stock-level projection; the single write path for on-hand quantity.

# backend/stockledger/services/stock_service.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, ProductVariant, StockLevel, StockMovement, Warehouse, WarehouseZone
from ..models.stock import (
    MOVEMENT_TYPE_IN,
    MOVEMENT_TYPE_OUT,
    MOVEMENT_TYPES,
)
from ..quantities import QUANTITY_SCALE, as_decimal, to_quantity
from ..time_utils import parse_iso_datetime, utcnow
from .concurrency import ConcurrentInsertError, finish, lock_for_update, run_unit_of_work, run_with_retry
"""
Stock Ledger Invariants (authoritative)

Ledger model:
- StockMovement rows are the system of record; they are append-only.
- StockLevel.quantity is a projection: for every (product, variant,
  warehouse, zone) it equals SUM(quantity * direction) of its movements.
- Both are written in ONE transaction by _record_movement_inner(); no other
  code path assigns StockLevel.quantity.

Negative stock:
- Allowed at this layer (oversell, mis-sequenced transfers).
- Callers that must not go negative pass enforce_available=True, which
  re-reads the level under row lock inside the write transaction.

Item identity:
- (product_id, variant_id | None). A variant must belong to the product.
"""


@dataclass(frozen=True)
class ItemIdentity:
    """What is being tracked: a base product, or one variant of it."""
    product_id: int
    variant_id: int | None = None

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "variant_id": self.variant_id}


# =============================================================================
# Resolution helpers
# =============================================================================

def _resolve_warehouse(warehouse_id: int) -> Warehouse:
    warehouse = db.session.get(Warehouse, warehouse_id)
    if warehouse is None:
        raise NotFoundError(f"Warehouse {warehouse_id} not found")
    return warehouse


def _resolve_zone(warehouse_id: int, zone_id: int | None) -> WarehouseZone | None:
    if zone_id is None:
        return None
    zone = db.session.get(WarehouseZone, zone_id)
    if zone is None:
        raise NotFoundError(f"Zone {zone_id} not found")
    if zone.warehouse_id != warehouse_id:
        raise ValidationError(f"Zone {zone_id} does not belong to warehouse {warehouse_id}")
    return zone


def _resolve_item(item: ItemIdentity) -> Product:
    if not isinstance(item, ItemIdentity):
        raise ValidationError("item must be an ItemIdentity")

    product = db.session.get(Product, item.product_id)
    if product is None:
        raise NotFoundError(f"Product {item.product_id} not found")

    if item.variant_id is not None:
        variant = db.session.get(ProductVariant, item.variant_id)
        if variant is None:
            raise NotFoundError(f"Variant {item.variant_id} not found")
        if variant.product_id != product.id:
            raise ValidationError(
                f"Variant {item.variant_id} does not belong to product {item.product_id}"
            )
    return product


def _level_query(item: ItemIdentity, warehouse_id: int, zone_id: int | None):
    return db.session.query(StockLevel).filter_by(
        product_id=item.product_id,
        variant_id=item.variant_id,
        warehouse_id=warehouse_id,
        zone_id=zone_id,
    )


def _lock_or_create_level(item: ItemIdentity, warehouse_id: int, zone_id: int | None) -> StockLevel:
    level = lock_for_update(_level_query(item, warehouse_id, zone_id)).first()
    if level is None:
        level = StockLevel(
            product_id=item.product_id,
            variant_id=item.variant_id,
            warehouse_id=warehouse_id,
            zone_id=zone_id,
            quantity=Decimal("0"),
            min_stock=Decimal("0"),
            max_stock=Decimal("0"),
        )
        db.session.add(level)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # Lost the insert race on ux_stock_levels_identity; the retry finds the row
            raise ConcurrentInsertError(
                f"stock level for product {item.product_id} in warehouse {warehouse_id} "
                f"was created concurrently"
            ) from exc
    return level


def _apply_level_delta(level: StockLevel, delta: Decimal) -> None:
    level.quantity = as_decimal(level.quantity) + delta
    level.updated_at = utcnow()


def _validate_direction(movement_type: str, signed_quantity: Decimal) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {movement_type}")
    if signed_quantity == 0:
        raise ValidationError("quantity must be non-zero")
    if movement_type == MOVEMENT_TYPE_IN and signed_quantity < 0:
        raise ValidationError("IN movements must have a positive quantity")
    if movement_type == MOVEMENT_TYPE_OUT and signed_quantity > 0:
        raise ValidationError("OUT movements must have a negative quantity")


# =============================================================================
# Writes
# =============================================================================

def _record_movement_inner(
    *,
    warehouse_id: int,
    item: ItemIdentity,
    signed_quantity: Decimal,
    movement_type: str,
    reason_code: str | None,
    reason_note: str | None,
    reference: str | None,
    actor: str,
    zone_id: int | None = None,
    unit_cost: Decimal | None = None,
    enforce_available: bool = False,
) -> StockMovement:
    """Core ledger write without entity resolution, retry, or commit.

    Called by record_movement() and by the transfer, adjustment and
    physical-inventory services inside their own unit of work.
    """
    _validate_direction(movement_type, signed_quantity)

    level = _lock_or_create_level(item, warehouse_id, zone_id)

    if enforce_available and signed_quantity < 0:
        available = as_decimal(level.quantity)
        if available < -signed_quantity:
            raise InsufficientStockError(
                f"Insufficient stock for product {item.product_id} in warehouse {warehouse_id}. "
                f"On-hand: {available}, requested: {-signed_quantity}",
                available=available,
                requested=-signed_quantity,
            )

    movement = StockMovement(
        warehouse_id=warehouse_id,
        zone_id=zone_id,
        product_id=item.product_id,
        variant_id=item.variant_id,
        type=movement_type,
        quantity=abs(signed_quantity),
        direction=1 if signed_quantity > 0 else -1,
        unit_cost=unit_cost,
        reason_code=reason_code,
        reason_note=reason_note,
        reference=reference,
        actor=actor or "SYSTEM",
    )
    db.session.add(movement)

    _apply_level_delta(level, signed_quantity)

    db.session.flush()
    return movement


def record_movement(
    warehouse_id: int,
    item: ItemIdentity,
    signed_quantity,
    movement_type: str,
    *,
    reason_code: str | None = None,
    reason_note: str | None = None,
    reference: str | None = None,
    actor: str = "SYSTEM",
    zone_id: int | None = None,
    unit_cost=None,
    enforce_available: bool = False,
    commit: bool = True,
) -> StockMovement:
    """
    Append a movement and apply it to the stock level, atomically.

    Args:
        warehouse_id: Warehouse the stock sits in
        item: Product or product variant
        signed_quantity: Change in on-hand (IN > 0, OUT < 0, ADJUSTMENT either)
        movement_type: "IN", "OUT" or "ADJUSTMENT"
        zone_id: Optional zone inside the warehouse
        unit_cost: Optional cost per unit (receipts)
        enforce_available: Reject decrements beyond the locked on-hand
        commit: False to flush only and leave the transaction to the caller

    Returns:
        StockMovement: The appended movement

    Raises:
        ValidationError, NotFoundError, InsufficientStockError, PersistenceError
    """
    qty = to_quantity(signed_quantity)
    cost = to_quantity(unit_cost, field="unit_cost") if unit_cost is not None else None
    if cost is not None and cost < 0:
        raise ValidationError("unit_cost cannot be negative")
    _validate_direction(movement_type, qty)

    def _op():
        _resolve_warehouse(warehouse_id)
        _resolve_zone(warehouse_id, zone_id)
        _resolve_item(item)

        movement = _record_movement_inner(
            warehouse_id=warehouse_id,
            item=item,
            signed_quantity=qty,
            movement_type=movement_type,
            reason_code=reason_code,
            reason_note=reason_note,
            reference=reference,
            actor=actor,
            zone_id=zone_id,
            unit_cost=cost,
            enforce_available=enforce_available,
        )
        finish(commit)
        return movement

    return run_unit_of_work(_op, commit=commit)


def receive_stock(
    warehouse_id: int,
    item: ItemIdentity,
    quantity,
    *,
    reference: str | None = None,
    actor: str = "SYSTEM",
    unit_cost=None,
    zone_id: int | None = None,
    reason_note: str | None = None,
    commit: bool = True,
) -> StockMovement:
    """IN movement for goods received (purchase orders, returns to stock)."""
    qty = to_quantity(quantity)
    if qty <= 0:
        raise ValidationError("quantity must be positive")
    return record_movement(
        warehouse_id,
        item,
        qty,
        MOVEMENT_TYPE_IN,
        reason_code="PURCHASE",
        reason_note=reason_note,
        reference=reference,
        actor=actor,
        zone_id=zone_id,
        unit_cost=unit_cost,
        commit=commit,
    )


def issue_stock(
    warehouse_id: int,
    item: ItemIdentity,
    quantity,
    *,
    reference: str | None = None,
    actor: str = "SYSTEM",
    zone_id: int | None = None,
    reason_note: str | None = None,
    require_available: bool = False,
    commit: bool = True,
) -> StockMovement:
    """OUT movement for goods leaving stock (sale completion)."""
    qty = to_quantity(quantity)
    if qty <= 0:
        raise ValidationError("quantity must be positive")
    return record_movement(
        warehouse_id,
        item,
        -qty,
        MOVEMENT_TYPE_OUT,
        reason_code="SALE",
        reason_note=reason_note,
        reference=reference,
        actor=actor,
        zone_id=zone_id,
        enforce_available=require_available,
        commit=commit,
    )


def set_stock_thresholds(
    warehouse_id: int,
    item: ItemIdentity,
    *,
    min_stock=0,
    max_stock=0,
    zone_id: int | None = None,
) -> StockLevel:
    """
    Configure reorder thresholds for an item in a warehouse.

    Creates the level with quantity 0 when it does not exist yet. Never
    touches quantity. 0 means "unset" for either threshold.
    """
    min_qty = to_quantity(min_stock, field="min_stock")
    max_qty = to_quantity(max_stock, field="max_stock")
    if min_qty < 0 or max_qty < 0:
        raise ValidationError("Thresholds cannot be negative")
    if max_qty > 0 and min_qty > max_qty:
        raise ValidationError("min_stock cannot exceed max_stock")

    def _op():
        _resolve_warehouse(warehouse_id)
        _resolve_zone(warehouse_id, zone_id)
        _resolve_item(item)

        level = _lock_or_create_level(item, warehouse_id, zone_id)
        level.min_stock = min_qty
        level.max_stock = max_qty

        db.session.commit()
        return level

    return run_with_retry(_op)


def _purge_reference_movements(
    reference: str,
    *,
    reason_code: str,
    warehouse_id: int | None = None,
) -> list[dict]:
    """
    Undo and delete every movement carrying ``reference`` and ``reason_code``.

    Reversal-tool only: the inverse of each movement is applied to its level
    before the row is deleted, so the projection invariant still holds.
    Runs inside the caller's transaction. Returns what was removed.
    """
    q = db.session.query(StockMovement).filter(
        StockMovement.reference == reference,
        StockMovement.reason_code == reason_code,
    )
    if warehouse_id is not None:
        q = q.filter(StockMovement.warehouse_id == warehouse_id)
    movements = q.order_by(StockMovement.id.asc()).all()

    removed = []
    for movement in movements:
        item = ItemIdentity(movement.product_id, movement.variant_id)
        level = _lock_or_create_level(item, movement.warehouse_id, movement.zone_id)
        inverse = -as_decimal(movement.quantity) * movement.direction
        _apply_level_delta(level, inverse)

        removed.append({
            **movement.to_dict(),
            "reversed_by": inverse,
        })
        db.session.delete(movement)

    db.session.flush()
    return removed


# =============================================================================
# Reads
# =============================================================================

def get_stock_level(
    warehouse_id: int,
    item: ItemIdentity,
    zone_id: int | None = None,
) -> StockLevel | None:
    return _level_query(item, warehouse_id, zone_id).first()


def get_quantity_on_hand(
    warehouse_id: int,
    item: ItemIdentity,
    zone_id: int | None = None,
) -> Decimal:
    """On-hand for one (item, warehouse, zone); 0 when no level exists."""
    level = get_stock_level(warehouse_id, item, zone_id)
    return as_decimal(level.quantity) if level else Decimal("0")


def get_warehouse_quantity(warehouse_id: int, item: ItemIdentity) -> Decimal:
    """On-hand for an item across every zone of a warehouse."""
    total = db.session.query(
        func.coalesce(func.sum(StockLevel.quantity), 0)
    ).filter(
        StockLevel.warehouse_id == warehouse_id,
        StockLevel.product_id == item.product_id,
        StockLevel.variant_id.is_(None) if item.variant_id is None else StockLevel.variant_id == item.variant_id,
    ).scalar()
    return as_decimal(total).quantize(QUANTITY_SCALE)


def list_stock_levels(
    *,
    warehouse_id: int | None = None,
    product_id: int | None = None,
    zone_id: int | None = None,
    q: str | None = None,
    limit: int = 500,
) -> list[StockLevel]:
    query = db.session.query(StockLevel).join(Product, Product.id == StockLevel.product_id)
    if warehouse_id is not None:
        query = query.filter(StockLevel.warehouse_id == warehouse_id)
    if product_id is not None:
        query = query.filter(StockLevel.product_id == product_id)
    if zone_id is not None:
        query = query.filter(StockLevel.zone_id == zone_id)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))

    return query.order_by(
        StockLevel.warehouse_id.asc(),
        Product.name.asc(),
        StockLevel.id.asc(),
    ).limit(limit).all()


def _parse_bound(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"invalid datetime: {value!r}")


def list_movements(
    *,
    warehouse_id: int | None = None,
    product_id: int | None = None,
    movement_type: str | None = None,
    actor: str | None = None,
    reference: str | None = None,
    start=None,
    end=None,
    q: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[StockMovement], int]:
    """
    Page through the ledger, newest first.

    Date bounds are inclusive and accept datetimes or ISO-8601 strings.
    Returns (movements, total_matching).
    """
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {movement_type}")

    start_dt = _parse_bound(start)
    end_dt = _parse_bound(end)

    query = db.session.query(StockMovement)
    if warehouse_id is not None:
        query = query.filter(StockMovement.warehouse_id == warehouse_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if movement_type is not None:
        query = query.filter(StockMovement.type == movement_type)
    if actor:
        query = query.filter(StockMovement.actor == actor)
    if reference:
        query = query.filter(StockMovement.reference == reference)
    if start_dt is not None:
        query = query.filter(StockMovement.created_at >= start_dt)
    if end_dt is not None:
        query = query.filter(StockMovement.created_at <= end_dt)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(or_(
            StockMovement.reason_note.ilike(pattern),
            StockMovement.reference.ilike(pattern),
        ))

    total = query.count()
    rows = query.order_by(
        StockMovement.created_at.desc(),
        StockMovement.id.desc(),
    ).offset((page - 1) * limit).limit(limit).all()
    return rows, total


def check_stock(warehouse_id: int, items: list[ItemIdentity]) -> dict[ItemIdentity, Decimal]:
    """Batch availability for a checkout: warehouse-wide on-hand per item, 0 when untracked."""
    if not items:
        raise ValidationError("items cannot be empty")
    _resolve_warehouse(warehouse_id)
    return {item: get_warehouse_quantity(warehouse_id, item) for item in items}


def verify_ledger(*, warehouse_id: int | None = None) -> list[dict]:
    """
    Compare every stock level with the signed sum of its movements.

    Read-only. Returns one row per mismatching (product, variant, warehouse,
    zone); an empty list means the projection matches the ledger.
    """
    sums_q = db.session.query(
        StockMovement.product_id,
        StockMovement.variant_id,
        StockMovement.warehouse_id,
        StockMovement.zone_id,
        func.sum(StockMovement.quantity * StockMovement.direction),
    ).group_by(
        StockMovement.product_id,
        StockMovement.variant_id,
        StockMovement.warehouse_id,
        StockMovement.zone_id,
    )
    levels_q = db.session.query(StockLevel)
    if warehouse_id is not None:
        sums_q = sums_q.filter(StockMovement.warehouse_id == warehouse_id)
        levels_q = levels_q.filter(StockLevel.warehouse_id == warehouse_id)

    ledger = {
        (product_id, variant_id, wh_id, zone_id): as_decimal(total).quantize(QUANTITY_SCALE)
        for product_id, variant_id, wh_id, zone_id, total in sums_q.all()
    }
    projection = {
        (lvl.product_id, lvl.variant_id, lvl.warehouse_id, lvl.zone_id): as_decimal(lvl.quantity).quantize(QUANTITY_SCALE)
        for lvl in levels_q.all()
    }

    mismatches = []
    for key in sorted(set(ledger) | set(projection), key=lambda k: tuple(-1 if v is None else v for v in k)):
        ledger_qty = ledger.get(key, Decimal("0").quantize(QUANTITY_SCALE))
        level_qty = projection.get(key)
        if level_qty is not None and level_qty == ledger_qty:
            continue
        product_id, variant_id, wh_id, zone_id = key
        mismatches.append({
            "product_id": product_id,
            "variant_id": variant_id,
            "warehouse_id": wh_id,
            "zone_id": zone_id,
            "level_quantity": level_qty,
            "ledger_quantity": ledger_qty,
        })
    return mismatches
