from __future__ import annotations

from ..extensions import db
from ..quantities import quantity_to_json
from ..time_utils import to_utc_z


# Movement types
MOVEMENT_TYPE_IN = "IN"
MOVEMENT_TYPE_OUT = "OUT"
MOVEMENT_TYPE_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_TYPES = (MOVEMENT_TYPE_IN, MOVEMENT_TYPE_OUT, MOVEMENT_TYPE_ADJUSTMENT)


class StockMovement(db.Model):
    """
    Immutable record of a single stock change.

    INVARIANTS:
    - quantity is always > 0; the sign lives in direction (+1 / -1).
    - IN is always +1, OUT always -1, ADJUSTMENT carries either.
    - SUM(quantity * direction) per (product, variant, warehouse, zone)
      equals StockLevel.quantity for the same tuple.

    Rows are never updated. The physical-inventory reversal tool is the only
    code path allowed to delete them.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint("direction IN (1, -1)", name="ck_stock_movements_direction"),
        db.Index("ix_movements_item_location", "product_id", "variant_id", "warehouse_id", "zone_id"),
        db.Index("ix_movements_warehouse_created", "warehouse_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    zone_id = db.Column(db.Integer, db.ForeignKey("warehouse_zones.id"), nullable=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    direction = db.Column(db.SmallInteger, nullable=False)

    unit_cost = db.Column(db.Numeric(18, 4), nullable=True)

    reason_code = db.Column(db.String(32), nullable=True)
    reason_note = db.Column(db.String(255), nullable=True)

    # Correlates transfer legs or the originating document (e.g. "INV-000004")
    reference = db.Column(db.String(64), nullable=True, index=True)

    actor = db.Column(db.String(64), nullable=False, default="SYSTEM")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    warehouse = db.relationship("Warehouse")
    zone = db.relationship("WarehouseZone")
    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    @property
    def signed_quantity(self):
        return self.quantity * self.direction

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} type={self.type} qty={self.signed_quantity} "
            f"warehouse_id={self.warehouse_id} ref={self.reference!r}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "warehouse_id": self.warehouse_id,
            "zone_id": self.zone_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "type": self.type,
            "quantity": quantity_to_json(self.quantity),
            "signed_quantity": quantity_to_json(self.signed_quantity),
            "unit_cost": quantity_to_json(self.unit_cost),
            "reason_code": self.reason_code,
            "reason_note": self.reason_note,
            "reference": self.reference,
            "actor": self.actor,
            "created_at": to_utc_z(self.created_at),
        }


class StockLevel(db.Model):
    """
    Current on-hand projection for one (product, variant, warehouse, zone).

    WHY a stored projection: reads (POS availability, reorder reports) stay
    O(1) per item. The movement table remains the system of record.

    WRITE PATH: quantity is changed only by services.stock_service, inside
    the same transaction as the StockMovement it reflects. min_stock and
    max_stock are configuration (0 means unset) and may be edited freely.

    One row per tuple: ux_stock_levels_identity is a unique index over
    COALESCE(variant_id, 0) and COALESCE(zone_id, 0), since NULLs never
    collide in a plain UNIQUE index.
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.Index("ix_stock_levels_item_location", "product_id", "variant_id", "warehouse_id", "zone_id"),
        db.Index("ix_stock_levels_warehouse", "warehouse_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)
    zone_id = db.Column(db.Integer, db.ForeignKey("warehouse_zones.id"), nullable=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    min_stock = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    max_stock = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    warehouse = db.relationship("Warehouse")
    zone = db.relationship("WarehouseZone")
    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<StockLevel id={self.id} product_id={self.product_id} variant_id={self.variant_id} "
            f"warehouse_id={self.warehouse_id} zone_id={self.zone_id} qty={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "warehouse_id": self.warehouse_id,
            "zone_id": self.zone_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": quantity_to_json(self.quantity),
            "min_stock": quantity_to_json(self.min_stock),
            "max_stock": quantity_to_json(self.max_stock),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


db.Index(
    "ux_stock_levels_identity",
    StockLevel.product_id,
    db.func.coalesce(StockLevel.variant_id, 0),
    StockLevel.warehouse_id,
    db.func.coalesce(StockLevel.zone_id, 0),
    unique=True,
)
