from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.api.deps import log_action, require_permission
from app.api.pagination import PageParams, paginate
from app.db.session import get_db
from app.models.inventory import Inventory
from app.models.product import Product
from app.models.user import User
from app.models.warehouse import Warehouse
from app.schemas.warehouse import WarehouseCreate, WarehouseUpdate
from app.services.rbac import MANAGER, has_minimum_role


router = APIRouter()


def serialize_warehouse(warehouse: Warehouse) -> dict:
    return {
        "id": warehouse.id,
        "name": warehouse.name,
        "location": warehouse.location,
        "address": warehouse.address,
        "capacity": warehouse.capacity,
        "manager_id": warehouse.manager_id,
        "manager_name": warehouse.manager.username if warehouse.manager else None,
        "is_active": warehouse.is_active,
        "created_at": warehouse.created_at.isoformat(),
        "updated_at": warehouse.updated_at.isoformat(),
    }


def get_warehouse_or_404(db: Session, warehouse_id: int) -> Warehouse:
    warehouse = db.get(Warehouse, warehouse_id)
    if not warehouse:
        raise HTTPException(status_code=404, detail="Warehouse not found")
    return warehouse


def ensure_unique_name(db: Session, name: str, exclude_id: int | None = None) -> None:
    statement = select(Warehouse.id).where(func.lower(Warehouse.name) == name.lower())
    if exclude_id is not None:
        statement = statement.where(Warehouse.id != exclude_id)
    if db.scalar(statement):
        raise HTTPException(status_code=409, detail="Warehouse name already exists")


def validate_manager(db: Session, manager_id: int | None) -> None:
    if manager_id is None:
        return
    manager = db.get(User, manager_id)
    if not manager or not manager.is_active:
        raise HTTPException(status_code=404, detail="Manager not found")
    if not has_minimum_role(manager, MANAGER):
        raise HTTPException(status_code=400, detail="Warehouse manager must have the manager or admin role")


def validate_capacity(capacity: int | None) -> None:
    if capacity is not None and capacity < 0:
        raise HTTPException(status_code=400, detail="Capacity cannot be negative")


def stock_totals_statement():
    return (
        select(
            Inventory.warehouse_id,
            func.count(Inventory.id).label("product_count"),
            func.coalesce(func.sum(Inventory.quantity), 0).label("total_quantity"),
            func.coalesce(func.sum(Inventory.reserved_quantity), 0).label("total_reserved"),
            func.coalesce(func.sum(Inventory.quantity * Product.cost), 0).label("total_value"),
        )
        .select_from(Inventory)
        .join(Product, Product.id == Inventory.product_id)
        .group_by(Inventory.warehouse_id)
    )


@router.get("")
def list_warehouses(
    search: str = "",
    is_active: bool | None = None,
    params: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("warehouses", "read")),
) -> dict:
    statement = select(Warehouse).order_by(Warehouse.name.asc())
    if search:
        pattern = f"%{search.strip()}%"
        statement = statement.where(Warehouse.name.ilike(pattern) | Warehouse.location.ilike(pattern))
    if is_active is not None:
        statement = statement.where(Warehouse.is_active.is_(is_active))

    rows, pagination = paginate(db, statement, params)
    return {"data": [serialize_warehouse(warehouse) for (warehouse,) in rows], "pagination": pagination}


@router.get("/capacity-utilization")
def capacity_utilization(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("warehouses", "read")),
) -> list[dict]:
    totals = {row.warehouse_id: row for row in db.execute(stock_totals_statement()).all()}
    warehouses = db.scalars(select(Warehouse).where(Warehouse.is_active.is_(True)).order_by(Warehouse.name)).all()

    result: list[dict] = []
    for warehouse in warehouses:
        used = int(totals[warehouse.id].total_quantity) if warehouse.id in totals else 0
        utilization = round(used / warehouse.capacity * 100, 2) if warehouse.capacity else None
        result.append(
            {
                "warehouse_id": warehouse.id,
                "warehouse_name": warehouse.name,
                "capacity": warehouse.capacity,
                "used_capacity": used,
                "available_capacity": max(warehouse.capacity - used, 0) if warehouse.capacity else None,
                "utilization_percentage": utilization,
            }
        )
    return result


@router.get("/with-inventory-summary")
def warehouses_with_inventory_summary(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("warehouses", "read")),
) -> list[dict]:
    totals = {row.warehouse_id: row for row in db.execute(stock_totals_statement()).all()}
    warehouses = db.scalars(select(Warehouse).where(Warehouse.is_active.is_(True)).order_by(Warehouse.name)).all()

    result: list[dict] = []
    for warehouse in warehouses:
        row = totals.get(warehouse.id)
        result.append(
            {
                **serialize_warehouse(warehouse),
                "product_count": row.product_count if row else 0,
                "total_quantity": int(row.total_quantity) if row else 0,
                "total_reserved": int(row.total_reserved) if row else 0,
                "total_value": round(float(row.total_value), 2) if row else 0.0,
            }
        )
    return result


@router.get("/stats")
def warehouse_stats(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("warehouses", "read")),
) -> dict:
    total = db.scalar(select(func.count(Warehouse.id))) or 0
    active = db.scalar(select(func.count(Warehouse.id)).where(Warehouse.is_active.is_(True))) or 0
    total_capacity = db.scalar(
        select(func.coalesce(func.sum(Warehouse.capacity), 0)).where(Warehouse.is_active.is_(True))
    )
    managed = db.scalar(
        select(func.count(Warehouse.id)).where(Warehouse.is_active.is_(True)).where(Warehouse.manager_id.is_not(None))
    ) or 0
    return {
        "total_warehouses": total,
        "active_warehouses": active,
        "inactive_warehouses": total - active,
        "total_capacity": int(total_capacity or 0),
        "warehouses_with_manager": managed,
    }


@router.get("/{warehouse_id}")
def get_warehouse(
    warehouse_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("warehouses", "read")),
) -> dict:
    return serialize_warehouse(get_warehouse_or_404(db, warehouse_id))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_warehouse(
    payload: WarehouseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("warehouses", "create")),
) -> dict:
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Warehouse name is required")
    validate_capacity(payload.capacity)
    ensure_unique_name(db, name)
    validate_manager(db, payload.manager_id)

    warehouse = Warehouse(**{**payload.model_dump(), "name": name})
    db.add(warehouse)
    db.commit()
    db.refresh(warehouse)

    log_action(db, current_user.id, "create", "warehouses", record_id=warehouse.id, detail=f"Warehouse {name}")
    return serialize_warehouse(warehouse)


@router.put("/{warehouse_id}")
def update_warehouse(
    warehouse_id: int,
    payload: WarehouseUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("warehouses", "update")),
) -> dict:
    warehouse = get_warehouse_or_404(db, warehouse_id)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("name") is not None:
        changes["name"] = changes["name"].strip()
        if not changes["name"]:
            raise HTTPException(status_code=400, detail="Warehouse name is required")
        ensure_unique_name(db, changes["name"], exclude_id=warehouse.id)
    if "capacity" in changes:
        validate_capacity(changes["capacity"])
        warehouse.capacity = changes.pop("capacity")
    if "manager_id" in changes:
        validate_manager(db, changes["manager_id"])
        warehouse.manager_id = changes.pop("manager_id")

    for field, value in changes.items():
        if value is not None:
            setattr(warehouse, field, value)
    db.commit()
    db.refresh(warehouse)

    log_action(db, current_user.id, "update", "warehouses", record_id=warehouse.id, detail=f"Warehouse {warehouse.name}")
    return serialize_warehouse(warehouse)


@router.delete("/{warehouse_id}")
def delete_warehouse(
    warehouse_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("warehouses", "delete")),
) -> dict:
    warehouse = get_warehouse_or_404(db, warehouse_id)
    warehouse.is_active = False
    db.commit()

    log_action(db, current_user.id, "delete", "warehouses", record_id=warehouse.id, detail=f"Warehouse {warehouse.name}")
    return {"message": "Warehouse deactivated"}
