import csv
from datetime import date, datetime, time, timedelta, timezone
from io import StringIO

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from app.api.deps import require_permission
from app.db.session import get_db
from app.models.inventory import Inventory
from app.models.product import Product
from app.models.transaction import InventoryTransaction
from app.models.user import User
from app.models.warehouse import Warehouse
from app.services.ledger import TRANSACTION_TRANSFER
from app.services.rbac import has_permission


router = APIRouter()

INVENTORY_COLUMNS = [
    "warehouse_id",
    "warehouse_name",
    "product_id",
    "sku",
    "product_name",
    "quantity",
    "reserved_quantity",
    "min_threshold",
    "unit_cost",
    "total_value",
    "status",
]

TURNOVER_COLUMNS = [
    "product_id",
    "sku",
    "product_name",
    "beginning_quantity",
    "ending_quantity",
    "total_in",
    "total_out",
    "average_quantity",
    "turnover_rate",
]


def resolve_range(from_date: date | None, to_date: date | None) -> tuple[date, date, datetime, datetime]:
    today = datetime.now(timezone.utc).date()
    end_date = to_date or today
    start_date = from_date or (end_date - timedelta(days=29))
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="Invalid date range")
    if (end_date - start_date).days > 365:
        raise HTTPException(status_code=400, detail="The maximum range is 365 days")

    start_dt = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    end_dt = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return start_date, end_date, start_dt, end_dt


def ensure_export_allowed(user: User) -> None:
    if not has_permission(user, "reports", "export"):
        raise HTTPException(status_code=403, detail="Insufficient permissions")


def csv_response(columns: list[str], items: list[dict], prefix: str) -> StreamingResponse:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(columns)
    for item in items:
        writer.writerow([item[column] for column in columns])

    content = output.getvalue()
    output.close()
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{prefix}-{stamp}.csv"'},
    )


def line_status(quantity: int, min_threshold: int) -> str:
    if quantity == 0:
        return "out_of_stock"
    if quantity <= min_threshold:
        return "low_stock"
    return "in_stock"


@router.get("/inventory")
def inventory_report(
    warehouse_id: int | None = None,
    format: str = Query(default="json", pattern="^(csv|json)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("reports", "read")),
):
    if format == "csv":
        ensure_export_allowed(current_user)

    statement = (
        select(Inventory, Product, Warehouse)
        .join(Product, Product.id == Inventory.product_id)
        .join(Warehouse, Warehouse.id == Inventory.warehouse_id)
        .order_by(Warehouse.name.asc(), Product.name.asc())
    )
    if warehouse_id is not None:
        statement = statement.where(Inventory.warehouse_id == warehouse_id)
    rows = db.execute(statement).all()

    lines = [
        {
            "warehouse_id": warehouse.id,
            "warehouse_name": warehouse.name,
            "product_id": product.id,
            "sku": product.sku,
            "product_name": product.name,
            "quantity": inventory.quantity,
            "reserved_quantity": inventory.reserved_quantity,
            "min_threshold": inventory.min_threshold,
            "unit_cost": round(product.cost, 2),
            "total_value": round(inventory.quantity * product.cost, 2),
            "status": line_status(inventory.quantity, inventory.min_threshold),
        }
        for inventory, product, warehouse in rows
    ]

    if format == "csv":
        return csv_response(INVENTORY_COLUMNS, lines, "inventory-report")

    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "total_products": len({line["product_id"] for line in lines}),
        "total_items": sum(line["quantity"] for line in lines),
        "total_value": round(sum(line["total_value"] for line in lines), 2),
        "low_stock_count": sum(1 for line in lines if line["status"] == "low_stock"),
        "out_of_stock_count": sum(1 for line in lines if line["status"] == "out_of_stock"),
        "lines": lines,
    }


@router.get("/turnover")
def turnover_report(
    from_date: date | None = Query(default=None, alias="from"),
    to_date: date | None = Query(default=None, alias="to"),
    format: str = Query(default="json", pattern="^(csv|json)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("reports", "read")),
):
    if format == "csv":
        ensure_export_allowed(current_user)
    range_from, range_to, start_dt, end_dt = resolve_range(from_date, to_date)

    change = InventoryTransaction.new_quantity - InventoryTransaction.previous_quantity
    current = dict(
        db.execute(select(Inventory.product_id, func.sum(Inventory.quantity)).group_by(Inventory.product_id)).all()
    )
    after_range = dict(
        db.execute(
            select(InventoryTransaction.product_id, func.sum(change))
            .where(InventoryTransaction.created_at >= end_dt)
            .group_by(InventoryTransaction.product_id)
        ).all()
    )
    in_range = {
        product_id: (int(total_in or 0), int(total_out or 0))
        for product_id, total_in, total_out in db.execute(
            select(
                InventoryTransaction.product_id,
                func.sum(case((change > 0, change), else_=0)),
                func.sum(case((change < 0, -change), else_=0)),
            )
            .where(InventoryTransaction.created_at >= start_dt)
            .where(InventoryTransaction.created_at < end_dt)
            # transfer legs cancel out per product
            .where(InventoryTransaction.transaction_type != TRANSACTION_TRANSFER)
            .group_by(InventoryTransaction.product_id)
        ).all()
    }

    product_ids = sorted(set(current) | set(in_range))
    products = db.scalars(select(Product).where(Product.id.in_(product_ids)).order_by(Product.name)).all()
    lines: list[dict] = []
    for product in products:
        ending = int(current.get(product.id) or 0) - int(after_range.get(product.id) or 0)
        total_in, total_out = in_range.get(product.id, (0, 0))
        beginning = ending - total_in + total_out
        average = (beginning + ending) / 2
        lines.append(
            {
                "product_id": product.id,
                "sku": product.sku,
                "product_name": product.name,
                "beginning_quantity": beginning,
                "ending_quantity": ending,
                "total_in": total_in,
                "total_out": total_out,
                "average_quantity": round(average, 2),
                "turnover_rate": round(total_out / average, 2) if average > 0 else 0.0,
            }
        )

    if format == "csv":
        return csv_response(TURNOVER_COLUMNS, lines, "turnover-report")

    return {
        "range_from": range_from.isoformat(),
        "range_to": range_to.isoformat(),
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "count": len(lines),
        "lines": lines,
    }
