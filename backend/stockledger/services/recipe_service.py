# backend/stockledger/services/recipe_service.py
"""
Composite products: recipes and virtual stock.

WHY: A composite product (recipe / bill of materials) is never stocked.
How many can be sold is derived on every read from the stock of its
components, so the number can never drift away from the real levels:

    available = min over items of floor(component_stock / required_per_batch)

- Missing component stock counts as 0; negative stock contributes 0.
- A required quantity <= 0 contributes 0.
- An empty recipe yields 0, never "unlimited".
- One batch is one sellable unit unless COMPOSITE_STOCK_MULTIPLY_BY_YIELD
  is enabled, in which case the result is multiplied by the recipe yield.

Virtual stock is computed per warehouse and is never written to
stock_levels.
"""
from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, Recipe, RecipeItem, Warehouse
from ..quantities import as_decimal, floor_units, to_quantity
from . import stock_service
from .concurrency import run_with_retry
from .stock_service import ItemIdentity


def get_recipe(product_id: int) -> Recipe | None:
    return db.session.query(Recipe).filter_by(product_id=product_id).first()


def get_active_recipe(product_id: int) -> Recipe | None:
    return db.session.query(Recipe).filter_by(product_id=product_id, is_active=True).first()


def set_recipe(
    product_id: int,
    yield_quantity,
    items: list[dict],
    *,
    is_active: bool = True,
) -> Recipe:
    """
    Create or replace a product's recipe.

    Args:
        product_id: Composite product
        yield_quantity: Units produced per batch (> 0)
        items: [{"product_id": int, "variant_id": int | None,
                 "quantity": number, "unit_of_measure": str | None}, ...]
        is_active: Inactive recipes are kept but ignored by the calculator

    Returns:
        Recipe: The recipe with its items replaced, in the given order

    Raises:
        ValidationError: Bad yield/quantity, or the product lists itself
        NotFoundError: Unknown product or component
    """
    yield_qty = to_quantity(yield_quantity, field="yield_quantity")
    if yield_qty <= 0:
        raise ValidationError("yield_quantity must be positive")

    lines = []
    for position, raw in enumerate(items or []):
        try:
            component = ItemIdentity(raw["product_id"], raw.get("variant_id"))
        except (KeyError, TypeError):
            raise ValidationError(f"Recipe item {position} is missing product_id")
        qty = to_quantity(raw.get("quantity"), field="quantity")
        if qty <= 0:
            raise ValidationError(f"Recipe item {position} quantity must be positive")
        if component.product_id == product_id:
            raise ValidationError("A recipe cannot list its own product as a component")
        lines.append((position, component, qty, raw.get("unit_of_measure")))

    def _op():
        if db.session.get(Product, product_id) is None:
            raise NotFoundError(f"Product {product_id} not found")
        for _, component, _, _ in lines:
            stock_service._resolve_item(component)

        recipe = get_recipe(product_id)
        if recipe is None:
            recipe = Recipe(product_id=product_id)
            db.session.add(recipe)

        recipe.yield_quantity = yield_qty
        recipe.is_active = is_active

        recipe.items.clear()
        db.session.flush()
        for position, component, qty, unit in lines:
            recipe.items.append(RecipeItem(
                position=position,
                component_product_id=component.product_id,
                component_variant_id=component.variant_id,
                quantity=qty,
                unit_of_measure=unit,
            ))

        db.session.commit()
        return recipe

    return run_with_retry(_op)


def _component_contribution(item: RecipeItem, warehouse_id: int) -> int:
    required = as_decimal(item.quantity)
    if required <= 0:
        return 0
    component = ItemIdentity(item.component_product_id, item.component_variant_id)
    stock = stock_service.get_warehouse_quantity(warehouse_id, component)
    if stock <= 0:
        return 0
    return floor_units(stock, required)


def _batches_to_units(recipe: Recipe, batches: int) -> int:
    if not current_app.config.get("COMPOSITE_STOCK_MULTIPLY_BY_YIELD", False):
        return batches
    return int(batches * as_decimal(recipe.yield_quantity))


def available_to_sell(product_id: int, warehouse_id: int) -> int:
    """
    Sellable quantity of a composite product in one warehouse.

    Raises:
        NotFoundError: No active recipe (callers fall back to the product's
            own stock level, see sellable_quantity)
    """
    recipe = get_active_recipe(product_id)
    if recipe is None:
        raise NotFoundError(f"Product {product_id} has no active recipe")

    if not recipe.items:
        return 0

    batches = min(_component_contribution(item, warehouse_id) for item in recipe.items)
    return _batches_to_units(recipe, batches)


def available_to_sell_by_warehouse(product_id: int) -> list[dict]:
    """Virtual stock for every active warehouse, including those at 0."""
    warehouses = (
        db.session.query(Warehouse)
        .filter(Warehouse.is_active.is_(True))
        .order_by(Warehouse.id.asc())
        .all()
    )
    return [
        {"warehouse_id": wh.id, "quantity": available_to_sell(product_id, wh.id)}
        for wh in warehouses
    ]


def sellable_quantity(product_id: int, warehouse_id: int, variant_id: int | None = None) -> Decimal:
    """
    What a checkout should treat as available.

    Composite products (active recipe with at least one item) use the
    recipe calculation; everything else reads its own stock level.
    """
    if variant_id is None:
        recipe = get_active_recipe(product_id)
        if recipe is not None and recipe.items:
            return Decimal(available_to_sell(product_id, warehouse_id))
    return stock_service.get_warehouse_quantity(warehouse_id, ItemIdentity(product_id, variant_id))


def resolve_ingredients(product_id: int, quantity) -> list[dict]:
    """
    Expand a product into the raw components consumed by ``quantity`` units.

    Nested recipes are expanded (a component with its own active recipe is
    replaced by its components, scaled by yield). Duplicate components are
    summed. A product without an active recipe resolves to itself.
    Circular references are skipped and logged.
    """
    qty = to_quantity(quantity)
    if qty <= 0:
        raise ValidationError("quantity must be positive")

    totals: "OrderedDict[ItemIdentity, Decimal]" = OrderedDict()
    stack = [(ItemIdentity(product_id), qty, frozenset())]

    while stack:
        current, current_qty, path = stack.pop()

        if current.product_id in path:
            current_app.logger.warning(
                "Circular recipe reference detected for product %s", current.product_id
            )
            continue

        recipe = get_active_recipe(current.product_id) if current.variant_id is None else None
        if recipe is None or not recipe.items:
            totals[current] = totals.get(current, Decimal("0")) + current_qty
            continue

        scale = current_qty / (as_decimal(recipe.yield_quantity) or Decimal("1"))
        for item in reversed(recipe.items):
            stack.append((
                ItemIdentity(item.component_product_id, item.component_variant_id),
                as_decimal(item.quantity) * scale,
                path | {current.product_id},
            ))

    return [
        {**component.to_dict(), "quantity": total}
        for component, total in totals.items()
    ]
