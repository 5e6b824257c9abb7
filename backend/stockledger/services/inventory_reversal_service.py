# backend/stockledger/services/inventory_reversal_service.py
"""
Privileged reversal of an APPROVED physical inventory.

WHY: An approval posted against the wrong warehouse or with a botched
count cannot be fixed with ordinary adjustments without doubling the
noise in the ledger. This tool removes the approval's movements outright:
each movement referencing the inventory number has its inverse applied to
the stock level and is then deleted, and the inventory becomes CANCELLED.

It is the only code path allowed to delete ledger rows. It is reachable
from the command line only (flask inventory revert) and always leaves an
audit entry.
"""
from __future__ import annotations

from flask import current_app

from ..errors import InvalidStateTransitionError, ValidationError
from ..extensions import db
from ..quantities import quantity_to_json
from ..time_utils import utcnow
from . import audit_service, stock_service
from .adjustment_service import REASON_PHYSICAL_INVENTORY
from .concurrency import run_with_retry
from .physical_inventory_service import STATUS_APPROVED, STATUS_CANCELLED, _lock_inventory


def revert_approved_inventory(inventory_id: int, actor: str, reason: str) -> dict:
    """
    Undo an approved physical inventory in one transaction.

    Args:
        inventory_id: Inventory to revert (must be APPROVED)
        actor: Operator running the reversal
        reason: Why the approval is being undone (required)

    Returns:
        dict: {"inventory": ..., "removed_movements": [...]}

    Raises:
        ValidationError: Missing actor or reason
        NotFoundError: Unknown inventory
        InvalidStateTransitionError: Inventory is not APPROVED
        PersistenceError: Storage failure (nothing is changed)
    """
    if not actor or not actor.strip():
        raise ValidationError("actor is required")
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    def _op():
        inventory = _lock_inventory(inventory_id)
        if inventory.status != STATUS_APPROVED:
            raise InvalidStateTransitionError(
                f"Only APPROVED inventories can be reverted; "
                f"{inventory.number} is {inventory.status}",
                current_status=inventory.status,
            )

        # Items point at the movements about to be deleted
        for item in inventory.items:
            item.stock_movement_id = None
        db.session.flush()

        removed = stock_service._purge_reference_movements(
            inventory.number,
            reason_code=REASON_PHYSICAL_INVENTORY,
            warehouse_id=inventory.warehouse_id,
        )

        inventory.status = STATUS_CANCELLED
        inventory.cancelled_by = actor
        inventory.cancelled_at = utcnow()
        inventory.cancellation_reason = reason

        db.session.commit()
        return inventory, removed

    inventory, removed = run_with_retry(_op)

    current_app.logger.info(
        "Physical inventory %s reverted by %s: %d movement(s) removed (%s)",
        inventory.number, actor, len(removed), reason,
    )
    audit_service.log_activity(
        event_type=audit_service.EVENT_PHYSICAL_INVENTORY_REVERTED,
        subject=f"Physical inventory reverted: {inventory.number}",
        description=reason,
        actor=actor,
        metadata={
            "physical_inventory_id": inventory.id,
            "number": inventory.number,
            "warehouse_id": inventory.warehouse_id,
            "removed_movements": [
                {
                    "id": row["id"],
                    "product_id": row["product_id"],
                    "variant_id": row["variant_id"],
                    "zone_id": row["zone_id"],
                    "reversed_by": quantity_to_json(row["reversed_by"]),
                }
                for row in removed
            ],
        },
    )
    return {"inventory": inventory.to_dict(), "removed_movements": removed}
