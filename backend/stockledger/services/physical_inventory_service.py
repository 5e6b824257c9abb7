# backend/stockledger/services/physical_inventory_service.py
"""
Physical inventory: count a warehouse, then reconcile the ledger.

WHY: The stock level is only as good as the movements behind it. A
physical inventory snapshots what the system expects, records what staff
actually count, and on approval posts each difference as one ADJUSTMENT
movement so the ledger and the shelf agree again.

LIFECYCLE:
1. PENDING: Created with system quantities snapshotted per item
2. COUNTING: First counted quantity recorded (or start_counting)
3. COMPLETED: Counting closed; no ledger writes yet
4. APPROVED: Differences posted as ADJUSTMENT movements (reason
   PHYSICAL_INVENTORY, reference = inventory number)
5. CANCELLED: Abandoned before approval (no ledger effect)

Reverting an APPROVED inventory is a separate privileged tool, see
inventory_reversal_service.
"""
from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import or_

from ..errors import InvalidStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import PhysicalInventory, PhysicalInventoryItem, Product, StockLevel
from ..quantities import as_decimal, quantity_to_json, to_quantity
from ..time_utils import utcnow
from . import audit_service, stock_service
from .adjustment_service import REASON_PHYSICAL_INVENTORY, _adjust_inner
from .concurrency import lock_for_update, run_with_retry
from .document_service import DOCUMENT_TYPE_PHYSICAL_INVENTORY, next_document_number
from .stock_service import ItemIdentity


# Status constants
STATUS_PENDING = "PENDING"
STATUS_COUNTING = "COUNTING"
STATUS_COMPLETED = "COMPLETED"
STATUS_APPROVED = "APPROVED"
STATUS_CANCELLED = "CANCELLED"

STATUSES = (STATUS_PENDING, STATUS_COUNTING, STATUS_COMPLETED, STATUS_APPROVED, STATUS_CANCELLED)

COUNTABLE_STATUSES = (STATUS_PENDING, STATUS_COUNTING)
CANCELLABLE_STATUSES = (STATUS_PENDING, STATUS_COUNTING, STATUS_COMPLETED)


def _require_actor(actor: str | None) -> str:
    if not actor or not actor.strip():
        raise ValidationError("actor is required")
    return actor.strip()


def _lock_inventory(inventory_id: int) -> PhysicalInventory:
    inventory = lock_for_update(
        db.session.query(PhysicalInventory).filter_by(id=inventory_id)
    ).first()
    if inventory is None:
        raise NotFoundError(f"Physical inventory {inventory_id} not found")
    return inventory


def _require_status(inventory: PhysicalInventory, allowed: tuple, action: str) -> None:
    if inventory.status not in allowed:
        raise InvalidStateTransitionError(
            f"Cannot {action} physical inventory {inventory.number} in {inventory.status} status",
            current_status=inventory.status,
        )


def _snapshot_levels(warehouse_id: int, *, zone_id, product_ids, only_positive) -> list[StockLevel]:
    q = (
        db.session.query(StockLevel)
        .join(Product, Product.id == StockLevel.product_id)
        .filter(
            StockLevel.warehouse_id == warehouse_id,
            Product.track_stock.is_(True),
        )
    )
    if zone_id is not None:
        q = q.filter(StockLevel.zone_id == zone_id)
    if product_ids:
        q = q.filter(StockLevel.product_id.in_(product_ids))
    if only_positive:
        q = q.filter(StockLevel.quantity > 0)
    return q.order_by(StockLevel.product_id.asc(), StockLevel.variant_id.asc(), StockLevel.id.asc()).all()


def create_physical_inventory(
    warehouse_id: int,
    actor: str,
    *,
    notes: str | None = None,
    zone_id: int | None = None,
    product_ids: list[int] | None = None,
    only_positive: bool = False,
) -> PhysicalInventory:
    """
    Open a physical inventory (status: PENDING).

    Every stock level in scope becomes one item with system_quantity set to
    the level's current quantity. Explicitly requested products that have
    no level yet are added with system_quantity 0.

    Args:
        warehouse_id: Warehouse being counted
        actor: Who opened the count
        notes: Optional free text
        zone_id: Restrict to one zone
        product_ids: Restrict to these products
        only_positive: Skip levels at or below zero

    Returns:
        PhysicalInventory: The new inventory with its items

    Raises:
        ValidationError, NotFoundError
    """
    created_by = _require_actor(actor)

    def _op():
        stock_service._resolve_warehouse(warehouse_id)
        stock_service._resolve_zone(warehouse_id, zone_id)
        for product_id in product_ids or []:
            stock_service._resolve_item(ItemIdentity(product_id))

        inventory = PhysicalInventory(
            number=next_document_number(document_type=DOCUMENT_TYPE_PHYSICAL_INVENTORY),
            warehouse_id=warehouse_id,
            status=STATUS_PENDING,
            notes=notes,
            created_by=created_by,
        )
        db.session.add(inventory)

        levels = _snapshot_levels(
            warehouse_id, zone_id=zone_id, product_ids=product_ids, only_positive=only_positive
        )
        seen = set()
        for level in levels:
            seen.add(level.product_id)
            inventory.items.append(PhysicalInventoryItem(
                product_id=level.product_id,
                variant_id=level.variant_id,
                zone_id=level.zone_id,
                system_quantity=as_decimal(level.quantity),
            ))

        if not only_positive:
            for product_id in product_ids or []:
                if product_id in seen:
                    continue
                seen.add(product_id)
                inventory.items.append(PhysicalInventoryItem(
                    product_id=product_id,
                    zone_id=zone_id,
                    system_quantity=Decimal("0"),
                ))

        db.session.commit()
        return inventory

    return run_with_retry(_op)


def start_counting(inventory_id: int) -> PhysicalInventory:
    """Explicit PENDING -> COUNTING. Idempotent while COUNTING."""
    def _op():
        inventory = _lock_inventory(inventory_id)
        _require_status(inventory, COUNTABLE_STATUSES, "start counting")

        if inventory.status == STATUS_PENDING:
            inventory.status = STATUS_COUNTING
            inventory.started_at = utcnow()

        db.session.commit()
        return inventory

    return run_with_retry(_op)


def set_counted(
    item_id: int,
    counted_quantity,
    notes: str | None = None,
    *,
    actor: str | None = None,
) -> PhysicalInventoryItem:
    """
    Record the counted quantity for one item.

    The first count moves a PENDING inventory to COUNTING. Recording the
    same value again changes nothing but the count stamp.

    Raises:
        ValidationError: counted_quantity negative or not a number
        NotFoundError: Unknown item
        InvalidStateTransitionError: Inventory already COMPLETED, APPROVED or CANCELLED
    """
    counted = to_quantity(counted_quantity, field="counted_quantity")
    if counted < 0:
        raise ValidationError("counted_quantity cannot be negative")

    def _op():
        item = db.session.get(PhysicalInventoryItem, item_id)
        if item is None:
            raise NotFoundError(f"Physical inventory item {item_id} not found")

        inventory = _lock_inventory(item.physical_inventory_id)
        _require_status(inventory, COUNTABLE_STATUSES, "record counts for")

        item.counted_quantity = counted
        item.difference = counted - as_decimal(item.system_quantity)
        if notes is not None:
            item.notes = notes
        item.counted_by = actor
        item.counted_at = utcnow()

        if inventory.status == STATUS_PENDING:
            inventory.status = STATUS_COUNTING
            inventory.started_at = utcnow()

        db.session.commit()
        return item

    return run_with_retry(_op)


def complete_physical_inventory(inventory_id: int, actor: str) -> PhysicalInventory:
    """Close counting (PENDING or COUNTING -> COMPLETED). No ledger writes."""
    completed_by = _require_actor(actor)

    def _op():
        inventory = _lock_inventory(inventory_id)
        _require_status(inventory, COUNTABLE_STATUSES, "complete")

        inventory.status = STATUS_COMPLETED
        inventory.completed_by = completed_by
        inventory.completed_at = utcnow()

        db.session.commit()
        return inventory

    return run_with_retry(_op)


def approve_physical_inventory(inventory_id: int, actor: str) -> PhysicalInventory:
    """
    Post the differences of a COMPLETED inventory to the ledger.

    One ADJUSTMENT movement per counted item with a non-zero difference,
    plus the state change, all in one transaction. Uncounted items are left
    alone. An inventory with no differences approves without movements.

    Returns:
        PhysicalInventory: The approved inventory

    Raises:
        NotFoundError, InvalidStateTransitionError, PersistenceError
    """
    approved_by = _require_actor(actor)

    def _op():
        inventory = _lock_inventory(inventory_id)
        _require_status(inventory, (STATUS_COMPLETED,), "approve")

        posted = []
        for item in inventory.items:
            if item.difference is None:
                continue
            difference = as_decimal(item.difference)
            if difference == 0:
                continue

            movement = _adjust_inner(
                warehouse_id=inventory.warehouse_id,
                item=ItemIdentity(item.product_id, item.variant_id),
                signed_quantity=difference,
                reason_code=REASON_PHYSICAL_INVENTORY,
                reason_note=f"Physical inventory {inventory.number}",
                actor=approved_by,
                zone_id=item.zone_id,
                reference=inventory.number,
            )
            item.stock_movement_id = movement.id
            posted.append(item)

        inventory.status = STATUS_APPROVED
        inventory.approved_by = approved_by
        inventory.approved_at = utcnow()

        db.session.commit()
        return inventory, posted

    inventory, posted = run_with_retry(_op)

    current_app.logger.info(
        "Physical inventory %s approved by %s: %d adjustment(s)",
        inventory.number, approved_by, len(posted),
    )
    audit_service.log_activity(
        event_type=audit_service.EVENT_PHYSICAL_INVENTORY_APPROVED,
        subject=f"Physical inventory approved: {inventory.number}",
        description=f"{len(posted)} adjustment(s) posted",
        actor=approved_by,
        metadata={
            "physical_inventory_id": inventory.id,
            "number": inventory.number,
            "warehouse_id": inventory.warehouse_id,
            "adjustments": [
                {
                    "item_id": item.id,
                    "product_id": item.product_id,
                    "variant_id": item.variant_id,
                    "zone_id": item.zone_id,
                    "difference": quantity_to_json(item.difference),
                    "stock_movement_id": item.stock_movement_id,
                }
                for item in posted
            ],
        },
    )
    return inventory


def cancel_physical_inventory(inventory_id: int, actor: str, reason: str | None = None) -> PhysicalInventory:
    """Abandon an unapproved inventory. No ledger effect."""
    cancelled_by = _require_actor(actor)

    def _op():
        inventory = _lock_inventory(inventory_id)
        _require_status(inventory, CANCELLABLE_STATUSES, "cancel")

        inventory.status = STATUS_CANCELLED
        inventory.cancelled_by = cancelled_by
        inventory.cancelled_at = utcnow()
        inventory.cancellation_reason = reason

        db.session.commit()
        return inventory

    return run_with_retry(_op)


def get_physical_inventory(inventory_id: int) -> PhysicalInventory:
    inventory = db.session.get(PhysicalInventory, inventory_id)
    if inventory is None:
        raise NotFoundError(f"Physical inventory {inventory_id} not found")
    return inventory


def get_physical_inventory_by_number(number: str) -> PhysicalInventory:
    inventory = db.session.query(PhysicalInventory).filter_by(number=number).first()
    if inventory is None:
        raise NotFoundError(f"Physical inventory {number} not found")
    return inventory


def _difference_flags(items) -> dict:
    differences = [
        as_decimal(item.difference)
        for item in items
        if item.difference is not None and as_decimal(item.difference) != 0
    ]
    return {
        "has_differences": bool(differences),
        "differences_count": len(differences),
        "has_positive_differences": any(d > 0 for d in differences),
        "has_negative_differences": any(d < 0 for d in differences),
    }


def get_physical_inventory_summary(inventory_id: int) -> dict:
    """
    Inventory header, items and totals.

    Returns:
        dict: to_dict() fields plus "items", counted/uncounted totals and
        the difference flags
    """
    inventory = get_physical_inventory(inventory_id)
    items = list(inventory.items)
    counted = [item for item in items if item.counted_quantity is not None]

    return {
        **inventory.to_dict(),
        **_difference_flags(items),
        "items": [item.to_dict() for item in items],
        "items_count": len(items),
        "counted_count": len(counted),
        "uncounted_count": len(items) - len(counted),
        "total_difference": quantity_to_json(
            sum((as_decimal(item.difference) for item in counted), Decimal("0"))
        ),
    }


def list_physical_inventories(
    *,
    warehouse_id: int | None = None,
    status: str | None = None,
    q: str | None = None,
    limit: int = 100,
) -> list[dict]:
    """Newest first, each with its difference flags."""
    if status is not None and status not in STATUSES:
        raise ValidationError(f"Invalid status: {status}")

    query = db.session.query(PhysicalInventory)
    if warehouse_id is not None:
        query = query.filter(PhysicalInventory.warehouse_id == warehouse_id)
    if status is not None:
        query = query.filter(PhysicalInventory.status == status)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(or_(
            PhysicalInventory.number.ilike(pattern),
            PhysicalInventory.notes.ilike(pattern),
        ))

    inventories = query.order_by(PhysicalInventory.id.desc()).limit(limit).all()
    return [
        {**inventory.to_dict(), **_difference_flags(inventory.items)}
        for inventory in inventories
    ]
