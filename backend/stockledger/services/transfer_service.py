# backend/stockledger/services/transfer_service.py
"""
Inter-warehouse stock transfer.

WHY: Moving stock between warehouses must never create or destroy units.
A transfer is two ledger writes sharing one TRF-nnnnnn reference:

1. OUT at the source warehouse (-quantity)
2. IN at the destination warehouse (+quantity)

Both legs, their projection updates and the availability check run in one
transaction. The source level is re-read under row lock right before the
decrement, so two concurrent transfers cannot both drain the same stock.
Both levels are locked in (warehouse, zone) order first, so opposite
transfers between the same pair never wait on each other crosswise.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..errors import ValidationError
from ..extensions import db
from ..models import StockMovement
from ..models.stock import MOVEMENT_TYPE_IN, MOVEMENT_TYPE_OUT
from ..quantities import to_quantity
from . import stock_service
from .concurrency import run_with_retry
from .document_service import DOCUMENT_TYPE_TRANSFER, next_document_number
from .stock_service import ItemIdentity


TRANSFER_REASON_CODE = "TRANSFER"


@dataclass(frozen=True)
class TransferResult:
    from_movement: StockMovement
    to_movement: StockMovement
    reference: str

    @property
    def quantity(self) -> Decimal:
        return self.from_movement.quantity

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "from_movement": self.from_movement.to_dict(),
            "to_movement": self.to_movement.to_dict(),
        }


def _lock_order(*locations: tuple[int, int | None]) -> list[tuple[int, int | None]]:
    return sorted(locations, key=lambda loc: (loc[0], loc[1] or 0))


def transfer(
    from_warehouse_id: int,
    to_warehouse_id: int,
    item: ItemIdentity,
    quantity,
    reason: str | None = None,
    *,
    actor: str = "SYSTEM",
    from_zone_id: int | None = None,
    to_zone_id: int | None = None,
) -> TransferResult:
    """
    Move stock from one warehouse to another.

    Args:
        from_warehouse_id: Source warehouse
        to_warehouse_id: Destination warehouse (must differ from source)
        item: Product or variant being moved
        quantity: Units to move (> 0)
        reason: Free-text note stored on both legs
        actor: Who performed the transfer

    Returns:
        TransferResult: Both movements and their shared reference

    Raises:
        ValidationError: Same warehouse, non-positive quantity, bad zone
        NotFoundError: Unknown warehouse, product, variant or zone
        InsufficientStockError: Source on-hand below quantity
        PersistenceError: Storage failure (nothing was written)
    """
    if from_warehouse_id == to_warehouse_id:
        raise ValidationError("Source and destination warehouses must be different")

    qty = to_quantity(quantity)
    if qty <= 0:
        raise ValidationError("Quantity must be positive")

    note = reason or "Transfer"

    def _op():
        stock_service._resolve_warehouse(from_warehouse_id)
        stock_service._resolve_warehouse(to_warehouse_id)
        stock_service._resolve_zone(from_warehouse_id, from_zone_id)
        stock_service._resolve_zone(to_warehouse_id, to_zone_id)
        stock_service._resolve_item(item)

        reference = next_document_number(document_type=DOCUMENT_TYPE_TRANSFER)

        # Both rows are locked in (warehouse, zone) order before either leg writes
        for warehouse_id, zone_id in _lock_order(
            (from_warehouse_id, from_zone_id), (to_warehouse_id, to_zone_id)
        ):
            stock_service._lock_or_create_level(item, warehouse_id, zone_id)

        # Availability is checked against the locked source row
        out_movement = stock_service._record_movement_inner(
            warehouse_id=from_warehouse_id,
            item=item,
            signed_quantity=-qty,
            movement_type=MOVEMENT_TYPE_OUT,
            reason_code=TRANSFER_REASON_CODE,
            reason_note=f"{note} (to warehouse {to_warehouse_id})",
            reference=reference,
            actor=actor,
            zone_id=from_zone_id,
            enforce_available=True,
        )

        in_movement = stock_service._record_movement_inner(
            warehouse_id=to_warehouse_id,
            item=item,
            signed_quantity=qty,
            movement_type=MOVEMENT_TYPE_IN,
            reason_code=TRANSFER_REASON_CODE,
            reason_note=f"{note} (from warehouse {from_warehouse_id})",
            reference=reference,
            actor=actor,
            zone_id=to_zone_id,
        )

        db.session.commit()
        return TransferResult(from_movement=out_movement, to_movement=in_movement, reference=reference)

    return run_with_retry(_op)


def get_transfer_legs(reference: str) -> list[StockMovement]:
    """Both legs of a transfer, OUT first."""
    movements, _ = stock_service.list_movements(reference=reference, limit=10)
    return sorted(movements, key=lambda m: (m.direction, m.id))
