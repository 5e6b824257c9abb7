from __future__ import annotations

from ..extensions import db
from ..quantities import quantity_to_json
from ..time_utils import to_utc_z


class PhysicalInventory(db.Model):
    """
    Physical stock count for one warehouse.

    LIFECYCLE:
    1. PENDING: Created with a snapshot of expected (system) quantities
    2. COUNTING: First counted quantity recorded (automatic)
    3. COMPLETED: Counting session closed, nothing posted yet
    4. APPROVED: Differences posted to the ledger as ADJUSTMENT movements
    5. CANCELLED: Abandoned before approval, or approval reverted

    Document numbers (INV-000001) are allocated from DocumentSequence and
    are stamped as the reference of every movement the approval creates.
    """
    __tablename__ = "physical_inventories"
    __table_args__ = (
        db.Index("ix_physical_inventories_warehouse_status", "warehouse_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(32), nullable=False, unique=True)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    # PENDING, COUNTING, COMPLETED, APPROVED, CANCELLED
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(64), nullable=False)
    completed_by = db.Column(db.String(64), nullable=True)
    approved_by = db.Column(db.String(64), nullable=True)
    cancelled_by = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancellation_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    warehouse = db.relationship("Warehouse")
    items = db.relationship(
        "PhysicalInventoryItem",
        backref="physical_inventory",
        lazy=True,
        order_by="PhysicalInventoryItem.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<PhysicalInventory id={self.id} number={self.number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "warehouse_id": self.warehouse_id,
            "status": self.status,
            "notes": self.notes,
            "created_by": self.created_by,
            "completed_by": self.completed_by,
            "approved_by": self.approved_by,
            "cancelled_by": self.cancelled_by,
            "created_at": to_utc_z(self.created_at),
            "started_at": to_utc_z(self.started_at) if self.started_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
            "version_id": self.version_id,
        }


class PhysicalInventoryItem(db.Model):
    """
    Snapshot line: expected quantity at creation, counted quantity later.

    difference = counted_quantity - system_quantity, NULL until counted.
    """
    __tablename__ = "physical_inventory_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    physical_inventory_id = db.Column(
        db.Integer, db.ForeignKey("physical_inventories.id"), nullable=False, index=True
    )

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    zone_id = db.Column(db.Integer, db.ForeignKey("warehouse_zones.id"), nullable=True)

    system_quantity = db.Column(db.Numeric(18, 4), nullable=False)
    counted_quantity = db.Column(db.Numeric(18, 4), nullable=True)
    difference = db.Column(db.Numeric(18, 4), nullable=True)

    notes = db.Column(db.String(255), nullable=True)
    counted_by = db.Column(db.String(64), nullable=True)
    counted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Set on approval when the difference was posted
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")
    zone = db.relationship("WarehouseZone")
    stock_movement = db.relationship("StockMovement")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "physical_inventory_id": self.physical_inventory_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "zone_id": self.zone_id,
            "system_quantity": quantity_to_json(self.system_quantity),
            "counted_quantity": quantity_to_json(self.counted_quantity),
            "difference": quantity_to_json(self.difference),
            "notes": self.notes,
            "counted_by": self.counted_by,
            "counted_at": to_utc_z(self.counted_at) if self.counted_at else None,
            "stock_movement_id": self.stock_movement_id,
        }
