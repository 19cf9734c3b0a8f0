from datetime import date, datetime, time, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.api.deps import log_action, require_permission
from app.api.pagination import PageParams, paginate
from app.db.session import get_db
from app.models.inventory import Inventory
from app.models.product import Product
from app.models.transaction import InventoryTransaction
from app.models.user import User
from app.models.warehouse import Warehouse
from app.schemas.transaction import TransactionCreate
from app.services import ledger


router = APIRouter()

PERIOD_DAYS = {"1d": 1, "7d": 7, "30d": 30, "90d": 90}


def serialize_transaction(
    entry: InventoryTransaction,
    product_name: str | None = None,
    warehouse_name: str | None = None,
    username: str | None = None,
) -> dict:
    return {
        "id": entry.id,
        "inventory_id": entry.inventory_id,
        "product_id": entry.product_id,
        "product_name": product_name,
        "warehouse_id": entry.warehouse_id,
        "warehouse_name": warehouse_name,
        "type": entry.transaction_type,
        "quantity": entry.quantity,
        "previous_quantity": entry.previous_quantity,
        "new_quantity": entry.new_quantity,
        "quantity_change": entry.quantity_change,
        "reason": entry.reason,
        "reference": entry.reference,
        "notes": entry.notes,
        "source_warehouse_id": entry.source_warehouse_id,
        "destination_warehouse_id": entry.destination_warehouse_id,
        "created_by": entry.created_by,
        "created_by_username": username,
        "created_at": entry.created_at.isoformat(),
    }


def detailed_statement():
    return (
        select(InventoryTransaction, Product.name, Warehouse.name, User.username)
        .join(Product, Product.id == InventoryTransaction.product_id)
        .join(Warehouse, Warehouse.id == InventoryTransaction.warehouse_id)
        .outerjoin(User, User.id == InventoryTransaction.created_by)
        .order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
    )


def day_bounds(from_date: date | None, to_date: date | None) -> tuple[datetime | None, datetime | None]:
    if from_date and to_date and from_date > to_date:
        raise HTTPException(status_code=400, detail="Invalid date range")
    start_dt = datetime.combine(from_date, time.min, tzinfo=timezone.utc) if from_date else None
    end_dt = datetime.combine(to_date + timedelta(days=1), time.min, tzinfo=timezone.utc) if to_date else None
    return start_dt, end_dt


def period_start(period: str) -> datetime:
    days = PERIOD_DAYS.get(period)
    if days is None:
        raise HTTPException(status_code=400, detail=f"Invalid period. Must be one of: {', '.join(PERIOD_DAYS)}")
    return datetime.now(timezone.utc) - timedelta(days=days)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_transaction(
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("transactions", "create")),
) -> dict:
    result = ledger.record_transaction(db, payload, current_user)
    log_action(
        db,
        current_user.id,
        "create",
        "transactions",
        record_id=result.transactions[0].id,
        detail=f"{result.transactions[0].transaction_type} {payload.quantity} on inventory {result.inventory.id}",
    )
    return {
        "message": "Transaction recorded",
        "transactions": [serialize_transaction(entry) for entry in result.transactions],
        "inventory": {
            "id": result.inventory.id,
            "previous_quantity": result.previous_quantity,
            "quantity": result.inventory.quantity,
            "reserved_quantity": result.inventory.reserved_quantity,
            "available_quantity": result.inventory.available_quantity,
        },
        "destination_inventory": (
            {"id": result.destination.id, "quantity": result.destination.quantity} if result.destination else None
        ),
    }


@router.get("")
def list_transactions(
    inventory_id: int | None = None,
    product_id: int | None = None,
    warehouse_id: int | None = None,
    type: str | None = None,
    start_date: date | None = Query(default=None, alias="from"),
    end_date: date | None = Query(default=None, alias="to"),
    params: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("transactions", "read")),
) -> dict:
    statement = detailed_statement()
    if inventory_id is not None:
        statement = statement.where(InventoryTransaction.inventory_id == inventory_id)
    if product_id is not None:
        statement = statement.where(InventoryTransaction.product_id == product_id)
    if warehouse_id is not None:
        statement = statement.where(InventoryTransaction.warehouse_id == warehouse_id)
    if type:
        statement = statement.where(InventoryTransaction.transaction_type == ledger.normalize_type(type))
    start_dt, end_dt = day_bounds(start_date, end_date)
    if start_dt:
        statement = statement.where(InventoryTransaction.created_at >= start_dt)
    if end_dt:
        statement = statement.where(InventoryTransaction.created_at < end_dt)

    rows, pagination = paginate(db, statement, params)
    return {"data": [serialize_transaction(*row) for row in rows], "pagination": pagination}


@router.get("/stats")
def transaction_stats(
    period: str = "30d",
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("transactions", "read")),
) -> dict:
    since = period_start(period)
    by_type = {
        transaction_type: {"count": count, "total_quantity": int(total or 0)}
        for transaction_type, count, total in db.execute(
            select(
                InventoryTransaction.transaction_type,
                func.count(InventoryTransaction.id),
                func.sum(InventoryTransaction.quantity),
            )
            .where(InventoryTransaction.created_at >= since)
            .group_by(InventoryTransaction.transaction_type)
        ).all()
    }
    top_products = db.execute(
        select(
            Product.id,
            Product.name,
            func.count(InventoryTransaction.id).label("transaction_count"),
            func.sum(InventoryTransaction.quantity).label("total_quantity"),
        )
        .select_from(InventoryTransaction)
        .join(Product, Product.id == InventoryTransaction.product_id)
        .where(InventoryTransaction.created_at >= since)
        .group_by(Product.id, Product.name)
        .order_by(func.count(InventoryTransaction.id).desc(), Product.name.asc())
        .limit(5)
    ).all()
    top_reasons = db.execute(
        select(InventoryTransaction.reason, func.count(InventoryTransaction.id))
        .where(InventoryTransaction.created_at >= since)
        .group_by(InventoryTransaction.reason)
        .order_by(func.count(InventoryTransaction.id).desc(), InventoryTransaction.reason.asc())
        .limit(5)
    ).all()

    return {
        "period": period,
        "total_transactions": sum(item["count"] for item in by_type.values()),
        "by_type": {
            transaction_type: by_type.get(transaction_type, {"count": 0, "total_quantity": 0})
            for transaction_type in ledger.TRANSACTION_TYPES
        },
        "top_products": [
            {
                "product_id": product_id,
                "product_name": name,
                "transaction_count": count,
                "total_quantity": int(total or 0),
            }
            for product_id, name, count, total in top_products
        ],
        "top_reasons": [{"reason": reason, "count": count} for reason, count in top_reasons],
    }


@router.get("/inventory/{inventory_id}")
def inventory_history(
    inventory_id: int,
    params: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("transactions", "read")),
) -> dict:
    if not db.get(Inventory, inventory_id):
        raise HTTPException(status_code=404, detail="Inventory record not found")
    statement = detailed_statement().where(InventoryTransaction.inventory_id == inventory_id)
    rows, pagination = paginate(db, statement, params)
    return {"data": [serialize_transaction(*row) for row in rows], "pagination": pagination}


@router.get("/warehouse/{warehouse_id}")
def warehouse_history(
    warehouse_id: int,
    params: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("transactions", "read")),
) -> dict:
    if not db.get(Warehouse, warehouse_id):
        raise HTTPException(status_code=404, detail="Warehouse not found")
    statement = detailed_statement().where(InventoryTransaction.warehouse_id == warehouse_id)
    rows, pagination = paginate(db, statement, params)
    return {"data": [serialize_transaction(*row) for row in rows], "pagination": pagination}


@router.get("/{transaction_id}")
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("transactions", "read")),
) -> dict:
    row = db.execute(detailed_statement().where(InventoryTransaction.id == transaction_id)).first()
    if not row:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return serialize_transaction(*row)
