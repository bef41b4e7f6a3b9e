"""SQLAlchemy models."""

from orderflow.models.inventory import InventoryItem, InventoryMovement, MovementOrigin, MovementType
from orderflow.models.order import Order, OrderItem, OrderItemModifier, OrderStatus
from orderflow.models.product import Product, ProductSize
from orderflow.models.recipe import ProductIngredientRule
from orderflow.models.side_effect import SideEffectKind, SideEffectMarker

__all__ = [
    "InventoryItem",
    "InventoryMovement",
    "MovementOrigin",
    "MovementType",
    "Order",
    "OrderItem",
    "OrderItemModifier",
    "OrderStatus",
    "Product",
    "ProductSize",
    "ProductIngredientRule",
    "SideEffectKind",
    "SideEffectMarker",
]
