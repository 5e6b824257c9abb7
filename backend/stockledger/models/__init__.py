from .catalog import Warehouse, WarehouseZone, Product, ProductVariant
from .stock import StockMovement, StockLevel
from .recipes import Recipe, RecipeItem
from .physical_inventory import PhysicalInventory, PhysicalInventoryItem
from .documents import DocumentSequence, AuditEvent

__all__ = [
    'Warehouse', 'WarehouseZone', 'Product', 'ProductVariant',
    'StockMovement', 'StockLevel',
    'Recipe', 'RecipeItem',
    'PhysicalInventory', 'PhysicalInventoryItem',
    'DocumentSequence', 'AuditEvent',
]
