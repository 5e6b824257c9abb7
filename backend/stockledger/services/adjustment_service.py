# backend/stockledger/services/adjustment_service.py
"""
Stock adjustments: direct corrections with a mandatory audit reason.

WHY: Breakage, waste, theft or a spot recount change on-hand outside any
purchase/sale document. Each adjustment is a single ADJUSTMENT movement
(either sign) and is never anonymous: reason code, note and actor are
required. Negative results are allowed here; adjustments record reality.
"""
from __future__ import annotations

from ..errors import ValidationError
from ..models import StockMovement
from ..models.stock import MOVEMENT_TYPE_ADJUSTMENT
from ..quantities import quantity_to_json, to_quantity
from . import audit_service, stock_service
from .concurrency import finish, run_unit_of_work
from .document_service import (
    DOCUMENT_PREFIXES,
    DOCUMENT_TYPE_ADJUSTMENT,
    DOCUMENT_TYPE_PHYSICAL_INVENTORY,
    next_document_number,
)
from .stock_service import ItemIdentity

_INVENTORY_PREFIX = f"{DOCUMENT_PREFIXES[DOCUMENT_TYPE_PHYSICAL_INVENTORY]}-"


# Reason codes
REASON_WASTE = "WASTE"
REASON_SPILL = "SPILL"
REASON_EXPIRED = "EXPIRED"
REASON_STAFF_MEAL = "STAFF_MEAL"
REASON_DAMAGE = "DAMAGE"
REASON_THEFT = "THEFT"
REASON_FOUND = "FOUND"
REASON_COUNT_CORRECTION = "COUNT_CORRECTION"
REASON_PHYSICAL_INVENTORY = "PHYSICAL_INVENTORY"
REASON_OTHER = "OTHER"

ADJUSTMENT_REASON_CODES = frozenset({
    REASON_WASTE,
    REASON_SPILL,
    REASON_EXPIRED,
    REASON_STAFF_MEAL,
    REASON_DAMAGE,
    REASON_THEFT,
    REASON_FOUND,
    REASON_COUNT_CORRECTION,
    REASON_PHYSICAL_INVENTORY,
    REASON_OTHER,
})


def _validate_reason(reason_code: str | None, reason_note: str | None, actor: str | None) -> tuple[str, str]:
    code = (reason_code or "").strip().upper()
    note = (reason_note or "").strip()
    if not code:
        raise ValidationError("reason_code is required for adjustments")
    if code not in ADJUSTMENT_REASON_CODES:
        raise ValidationError(f"Invalid reason_code: {reason_code}")
    if not note:
        raise ValidationError("reason_note is required for adjustments")
    if not actor or not actor.strip():
        raise ValidationError("actor is required for adjustments")
    return code, note


def _adjust_inner(
    *,
    warehouse_id: int,
    item: ItemIdentity,
    signed_quantity,
    reason_code: str,
    reason_note: str,
    actor: str,
    zone_id: int | None = None,
    reference: str | None = None,
) -> StockMovement:
    """ADJUSTMENT write without retry, commit or audit.

    Used by adjust() and by physical-inventory approval, which runs many
    adjustments inside one transaction.
    """
    return stock_service._record_movement_inner(
        warehouse_id=warehouse_id,
        item=item,
        signed_quantity=signed_quantity,
        movement_type=MOVEMENT_TYPE_ADJUSTMENT,
        reason_code=reason_code,
        reason_note=reason_note,
        reference=reference,
        actor=actor,
        zone_id=zone_id,
    )


def adjust(
    warehouse_id: int,
    item: ItemIdentity,
    signed_quantity,
    reason_code: str,
    reason_note: str,
    actor: str,
    *,
    zone_id: int | None = None,
    reference: str | None = None,
    commit: bool = True,
) -> StockMovement:
    """
    Record a signed stock correction.

    Args:
        warehouse_id: Warehouse being corrected
        item: Product or variant
        signed_quantity: Change in on-hand (non-zero, either sign)
        reason_code: One of ADJUSTMENT_REASON_CODES
        reason_note: Free-text explanation (required)
        actor: Who made the correction (required)
        commit: False to flush only; the caller then owns commit and audit

    Returns:
        StockMovement: The ADJUSTMENT movement

    Raises:
        ValidationError, NotFoundError, PersistenceError
    """
    code, note = _validate_reason(reason_code, reason_note, actor)
    if code == REASON_PHYSICAL_INVENTORY:
        raise ValidationError("PHYSICAL_INVENTORY adjustments are posted by inventory approval only")
    if reference and reference.strip().upper().startswith(_INVENTORY_PREFIX):
        raise ValidationError(f"Reference {reference} is reserved for physical inventories")
    qty = to_quantity(signed_quantity)
    if qty == 0:
        raise ValidationError("quantity must be non-zero")

    def _op():
        stock_service._resolve_warehouse(warehouse_id)
        stock_service._resolve_zone(warehouse_id, zone_id)
        stock_service._resolve_item(item)

        ref = reference or next_document_number(document_type=DOCUMENT_TYPE_ADJUSTMENT)
        movement = _adjust_inner(
            warehouse_id=warehouse_id,
            item=item,
            signed_quantity=qty,
            reason_code=code,
            reason_note=note,
            actor=actor,
            zone_id=zone_id,
            reference=ref,
        )
        finish(commit)
        return movement

    movement = run_unit_of_work(_op, commit=commit)

    if commit:
        audit_service.log_activity(
            event_type=audit_service.EVENT_INVENTORY_ADJUSTMENT,
            subject=f"Inventory adjustment: {code}",
            description=f"{'Increase' if qty > 0 else 'Decrease'} of {abs(qty)} units. {note}",
            actor=actor,
            metadata={
                "movement_id": movement.id,
                "warehouse_id": warehouse_id,
                "zone_id": zone_id,
                **item.to_dict(),
                "quantity": quantity_to_json(qty),
                "reference": movement.reference,
            },
        )

    return movement
