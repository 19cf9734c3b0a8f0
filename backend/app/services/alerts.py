import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError
from app.models.alert import StockAlert
from app.models.inventory import Inventory
from app.models.product import Product
from app.models.user import User
from app.models.warehouse import Warehouse


logger = logging.getLogger(__name__)

LOW_STOCK = "low_stock"
OUT_OF_STOCK = "out_of_stock"
OVERSTOCK = "overstock"

ALERT_TYPES: tuple[str, ...] = (LOW_STOCK, OUT_OF_STOCK, OVERSTOCK)

SEVERITY_BY_TYPE: dict[str, str] = {
    OUT_OF_STOCK: "critical",
    LOW_STOCK: "warning",
    OVERSTOCK: "info",
}


def detect_conditions(inventory: Inventory) -> list[tuple[str, int | None]]:
    """Return ``(alert_type, threshold)`` pairs that currently hold for a row."""
    if inventory.quantity == 0:
        return [(OUT_OF_STOCK, inventory.min_threshold)]
    conditions: list[tuple[str, int | None]] = []
    if inventory.quantity <= inventory.min_threshold:
        conditions.append((LOW_STOCK, inventory.min_threshold))
    if inventory.max_threshold is not None and inventory.quantity > inventory.max_threshold:
        conditions.append((OVERSTOCK, inventory.max_threshold))
    return conditions


def build_message(alert_type: str, product_name: str, warehouse_name: str, quantity: int, threshold: int | None) -> str:
    if alert_type == OUT_OF_STOCK:
        return f"{product_name} is out of stock in {warehouse_name}"
    if alert_type == LOW_STOCK:
        return f"{product_name} is low in {warehouse_name}: {quantity} left (threshold {threshold})"
    return f"{product_name} exceeds the maximum in {warehouse_name}: {quantity} (max {threshold})"


def evaluate_inventory(db: Session, inventory: Inventory) -> list[StockAlert]:
    conditions = detect_conditions(inventory)
    if not conditions:
        return []

    pending_types = set(
        db.scalars(
            select(StockAlert.alert_type)
            .where(StockAlert.inventory_id == inventory.id)
            .where(StockAlert.is_acknowledged.is_(False))
        ).all()
    )
    product = db.get(Product, inventory.product_id)
    warehouse = db.get(Warehouse, inventory.warehouse_id)
    product_name = product.name if product else f"Product {inventory.product_id}"
    warehouse_name = warehouse.name if warehouse else f"warehouse {inventory.warehouse_id}"

    created: list[StockAlert] = []
    for alert_type, threshold in conditions:
        if alert_type in pending_types:
            continue
        alert = StockAlert(
            inventory_id=inventory.id,
            product_id=inventory.product_id,
            warehouse_id=inventory.warehouse_id,
            alert_type=alert_type,
            severity=SEVERITY_BY_TYPE[alert_type],
            message=build_message(alert_type, product_name, warehouse_name, inventory.quantity, threshold),
            current_quantity=inventory.quantity,
            threshold=threshold,
        )
        db.add(alert)
        created.append(alert)
        logger.info("Stock alert %s raised for inventory %s", alert_type, inventory.id)
    return created


def scan_all(db: Session) -> list[StockAlert]:
    created: list[StockAlert] = []
    for inventory in db.scalars(select(Inventory).order_by(Inventory.id)).all():
        created.extend(evaluate_inventory(db, inventory))
    return created


def acknowledge(db: Session, alert_id: int, user: User, notes: str = "") -> StockAlert:
    alert = db.get(StockAlert, alert_id)
    if not alert:
        raise NotFoundError("Alert not found")
    if alert.is_acknowledged:
        raise ConflictError("Alert already acknowledged")

    alert.is_acknowledged = True
    alert.acknowledged_by = user.id
    alert.acknowledged_at = datetime.now(timezone.utc)
    alert.notes = notes
    return alert


def suggestion_priority(inventory: Inventory) -> str:
    if inventory.quantity == 0:
        return "critical"
    if inventory.quantity * 2 < inventory.min_threshold:
        return "high"
    return "medium"


def suggested_quantity(inventory: Inventory) -> int:
    if inventory.max_threshold is not None and inventory.max_threshold > inventory.quantity:
        return inventory.max_threshold - inventory.quantity
    return max(inventory.min_threshold * 2 - inventory.quantity, 1)


def reorder_suggestions(db: Session) -> list[dict]:
    rows = db.execute(
        select(Inventory, Product, Warehouse)
        .join(Product, Product.id == Inventory.product_id)
        .join(Warehouse, Warehouse.id == Inventory.warehouse_id)
        .where(Inventory.quantity <= Inventory.min_threshold)
        .where(Product.is_active.is_(True))
        .order_by(Inventory.quantity.asc(), Inventory.id.asc())
    ).all()

    suggestions: list[dict] = []
    for inventory, product, warehouse in rows:
        quantity = suggested_quantity(inventory)
        suggestions.append(
            {
                "inventory_id": inventory.id,
                "product_id": product.id,
                "product_name": product.name,
                "sku": product.sku,
                "warehouse_id": warehouse.id,
                "warehouse_name": warehouse.name,
                "current_stock": inventory.quantity,
                "reorder_point": inventory.min_threshold,
                "suggested_quantity": quantity,
                "estimated_cost": round(quantity * product.cost, 2),
                "priority": suggestion_priority(inventory),
            }
        )
    return suggestions
