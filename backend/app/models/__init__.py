from app.models.alert import StockAlert
from app.models.audit import AuditLog
from app.models.category import Category
from app.models.inventory import Inventory
from app.models.product import Product
from app.models.transaction import InventoryTransaction
from app.models.user import User
from app.models.warehouse import Warehouse

__all__ = [
    "AuditLog",
    "Category",
    "Inventory",
    "InventoryTransaction",
    "Product",
    "StockAlert",
    "User",
    "Warehouse",
]
