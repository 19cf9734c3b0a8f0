from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.api.deps import require_permission
from app.db.session import get_db
from app.models.alert import StockAlert
from app.models.inventory import Inventory
from app.models.product import Product
from app.models.transaction import InventoryTransaction
from app.models.user import User
from app.models.warehouse import Warehouse
from app.services.ledger import TRANSACTION_TYPES


router = APIRouter()

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}


def resolve_period(period: str) -> tuple[int, datetime]:
    days = PERIOD_DAYS.get(period)
    if days is None:
        raise HTTPException(status_code=400, detail=f"Invalid period. Must be one of: {', '.join(PERIOD_DAYS)}")
    today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return days, today_start - timedelta(days=days - 1)


def utc_day(value: datetime) -> str:
    # SQLite hands back naive UTC values, PostgreSQL hands back the session timezone
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date().isoformat()


@router.get("/overview")
def overview(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("dashboard", "read")),
) -> dict:
    total_products = db.scalar(select(func.count(Product.id)).where(Product.is_active.is_(True))) or 0
    total_warehouses = db.scalar(select(func.count(Warehouse.id)).where(Warehouse.is_active.is_(True))) or 0
    total_units, total_value = db.execute(
        select(
            func.coalesce(func.sum(Inventory.quantity), 0),
            func.coalesce(func.sum(Inventory.quantity * Product.cost), 0),
        )
        .select_from(Inventory)
        .join(Product, Product.id == Inventory.product_id)
    ).one()
    low_stock = db.scalar(
        select(func.count(Inventory.id))
        .where(Inventory.quantity > 0)
        .where(Inventory.quantity <= Inventory.min_threshold)
    ) or 0
    out_of_stock = db.scalar(select(func.count(Inventory.id)).where(Inventory.quantity == 0)) or 0
    total_transactions = db.scalar(select(func.count(InventoryTransaction.id))) or 0
    pending_alerts = db.scalar(select(func.count(StockAlert.id)).where(StockAlert.is_acknowledged.is_(False))) or 0
    critical_alerts = db.scalar(
        select(func.count(StockAlert.id))
        .where(StockAlert.is_acknowledged.is_(False))
        .where(StockAlert.severity == "critical")
    ) or 0

    recent = db.execute(
        select(InventoryTransaction, Product.name, Warehouse.name, User.username)
        .join(Product, Product.id == InventoryTransaction.product_id)
        .join(Warehouse, Warehouse.id == InventoryTransaction.warehouse_id)
        .outerjoin(User, User.id == InventoryTransaction.created_by)
        .order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
        .limit(10)
    ).all()

    return {
        "total_products": total_products,
        "total_warehouses": total_warehouses,
        "total_inventory_units": int(total_units),
        "total_inventory_value": round(float(total_value), 2),
        "low_stock_items": low_stock,
        "out_of_stock_items": out_of_stock,
        "total_transactions": total_transactions,
        "pending_alerts": pending_alerts,
        "critical_alerts": critical_alerts,
        "recent_activity": [
            {
                "id": entry.id,
                "type": entry.transaction_type,
                "product_name": product_name,
                "warehouse_name": warehouse_name,
                "quantity": entry.quantity,
                "quantity_change": entry.quantity_change,
                "reason": entry.reason,
                "user": username,
                "created_at": entry.created_at.isoformat(),
            }
            for entry, product_name, warehouse_name, username in recent
        ],
    }


@router.get("/transaction-analytics")
def transaction_analytics(
    period: str = "30d",
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("dashboard", "read")),
) -> dict:
    days, since = resolve_period(period)
    rows = db.execute(
        select(InventoryTransaction.created_at, InventoryTransaction.transaction_type, InventoryTransaction.quantity)
        .where(InventoryTransaction.created_at >= since)
    ).all()

    # bucketed here so the same code runs on every backend
    empty_day = {transaction_type: 0 for transaction_type in TRANSACTION_TYPES}
    series = {(since + timedelta(days=offset)).date().isoformat(): dict(empty_day) for offset in range(days)}
    by_type = {transaction_type: {"count": 0, "total_quantity": 0} for transaction_type in TRANSACTION_TYPES}
    for created_at, transaction_type, quantity in rows:
        key = utc_day(created_at)
        if key in series and transaction_type in series[key]:
            series[key][transaction_type] += 1
        if transaction_type in by_type:
            by_type[transaction_type]["count"] += 1
            by_type[transaction_type]["total_quantity"] += quantity

    return {
        "period": period,
        "total_transactions": len(rows),
        "by_type": by_type,
        "daily": [{"date": day, **counts} for day, counts in series.items()],
    }


@router.get("/warehouse-analytics")
def warehouse_analytics(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("dashboard", "read")),
) -> list[dict]:
    stock = {
        warehouse_id: (count, int(quantity), float(value))
        for warehouse_id, count, quantity, value in db.execute(
            select(
                Inventory.warehouse_id,
                func.count(Inventory.id),
                func.coalesce(func.sum(Inventory.quantity), 0),
                func.coalesce(func.sum(Inventory.quantity * Product.cost), 0),
            )
            .select_from(Inventory)
            .join(Product, Product.id == Inventory.product_id)
            .group_by(Inventory.warehouse_id)
        ).all()
    }
    low_stock = dict(
        db.execute(
            select(Inventory.warehouse_id, func.count(Inventory.id))
            .where(Inventory.quantity <= Inventory.min_threshold)
            .group_by(Inventory.warehouse_id)
        ).all()
    )
    since = datetime.now(timezone.utc) - timedelta(days=30)
    activity = dict(
        db.execute(
            select(InventoryTransaction.warehouse_id, func.count(InventoryTransaction.id))
            .where(InventoryTransaction.created_at >= since)
            .group_by(InventoryTransaction.warehouse_id)
        ).all()
    )

    warehouses = db.scalars(select(Warehouse).where(Warehouse.is_active.is_(True)).order_by(Warehouse.name)).all()
    result: list[dict] = []
    for warehouse in warehouses:
        count, quantity, value = stock.get(warehouse.id, (0, 0, 0.0))
        result.append(
            {
                "warehouse_id": warehouse.id,
                "warehouse_name": warehouse.name,
                "product_count": count,
                "total_quantity": quantity,
                "total_value": round(value, 2),
                "low_stock_items": low_stock.get(warehouse.id, 0),
                "transactions_last_30d": activity.get(warehouse.id, 0),
                "utilization_percentage": round(quantity / warehouse.capacity * 100, 2) if warehouse.capacity else None,
            }
        )
    return result
