from __future__ import annotations

from ..extensions import db
from ..quantities import quantity_to_json
from ..time_utils import to_utc_z


class Recipe(db.Model):
    """
    Bill of materials for a composite product.

    WHY: Prepared items (a cocktail, a sandwich, a gift basket) are sold
    without being stocked. Their availability is derived on read from the
    stock of their components and is never written to stock_levels.

    A product has at most one recipe; is_active=False keeps the definition
    around while the product falls back to its own stock level.
    """
    __tablename__ = "recipes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, unique=True)

    # Units produced per batch
    yield_quantity = db.Column(db.Numeric(18, 4), nullable=False, default=1)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("recipe", uselist=False, lazy=True))
    items = db.relationship(
        "RecipeItem",
        backref="recipe",
        lazy=True,
        order_by="RecipeItem.position",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "yield_quantity": quantity_to_json(self.yield_quantity),
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "items": [item.to_dict() for item in self.items],
        }


class RecipeItem(db.Model):
    """One component line of a recipe: required quantity per batch."""
    __tablename__ = "recipe_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    recipe_id = db.Column(db.Integer, db.ForeignKey("recipes.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    component_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    component_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)

    # Display only (e.g. "ml", "g"); quantities are in the component's stock unit
    unit_of_measure = db.Column(db.String(32), nullable=True)

    component_product = db.relationship("Product", foreign_keys=[component_product_id])
    component_variant = db.relationship("ProductVariant", foreign_keys=[component_variant_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recipe_id": self.recipe_id,
            "position": self.position,
            "component_product_id": self.component_product_id,
            "component_variant_id": self.component_variant_id,
            "quantity": quantity_to_json(self.quantity),
            "unit_of_measure": self.unit_of_measure,
        }
