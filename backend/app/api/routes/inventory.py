from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from app.api.deps import log_action, require_permission
from app.api.pagination import PageParams, paginate
from app.db.session import get_db
from app.models.alert import StockAlert
from app.models.inventory import Inventory
from app.models.product import Product
from app.models.transaction import InventoryTransaction
from app.models.user import User
from app.models.warehouse import Warehouse
from app.schemas.inventory import InventoryCreate, InventoryUpdate, ReservationRequest
from app.schemas.transaction import TransactionCreate
from app.services import alerts, ledger


router = APIRouter()


def stock_status(inventory: Inventory) -> str:
    if inventory.quantity == 0:
        return "out_of_stock"
    if inventory.quantity <= inventory.min_threshold:
        return "low_stock"
    if inventory.max_threshold is not None and inventory.quantity > inventory.max_threshold:
        return "overstock"
    return "in_stock"


def serialize_inventory(inventory: Inventory, product: Product | None = None, warehouse: Warehouse | None = None) -> dict:
    product = product or inventory.product
    warehouse = warehouse or inventory.warehouse
    return {
        "id": inventory.id,
        "product_id": inventory.product_id,
        "product_name": product.name if product else None,
        "sku": product.sku if product else None,
        "warehouse_id": inventory.warehouse_id,
        "warehouse_name": warehouse.name if warehouse else None,
        "quantity": inventory.quantity,
        "reserved_quantity": inventory.reserved_quantity,
        "available_quantity": inventory.available_quantity,
        "min_threshold": inventory.min_threshold,
        "max_threshold": inventory.max_threshold,
        "status": stock_status(inventory),
        "created_at": inventory.created_at.isoformat(),
        "updated_at": inventory.updated_at.isoformat(),
    }


def get_inventory_or_404(db: Session, inventory_id: int) -> Inventory:
    inventory = db.get(Inventory, inventory_id)
    if not inventory:
        raise HTTPException(status_code=404, detail="Inventory record not found")
    return inventory


def validate_thresholds(min_threshold: int, max_threshold: int | None) -> None:
    if min_threshold < 0:
        raise HTTPException(status_code=400, detail="Minimum threshold cannot be negative")
    if max_threshold is not None and max_threshold <= min_threshold:
        raise HTTPException(status_code=400, detail="Maximum threshold must be greater than the minimum threshold")


def detailed_statement():
    return (
        select(Inventory, Product, Warehouse)
        .join(Product, Product.id == Inventory.product_id)
        .join(Warehouse, Warehouse.id == Inventory.warehouse_id)
    )


@router.get("")
def list_inventory(
    search: str = "",
    warehouse_id: int | None = None,
    product_id: int | None = None,
    low_stock: bool = False,
    params: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("inventory", "read")),
) -> dict:
    statement = detailed_statement().order_by(Product.name.asc(), Warehouse.name.asc())
    if search:
        pattern = f"%{search.strip()}%"
        statement = statement.where(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))
    if warehouse_id is not None:
        statement = statement.where(Inventory.warehouse_id == warehouse_id)
    if product_id is not None:
        statement = statement.where(Inventory.product_id == product_id)
    if low_stock:
        statement = statement.where(Inventory.quantity <= Inventory.min_threshold)

    rows, pagination = paginate(db, statement, params)
    return {
        "data": [serialize_inventory(inventory, product, warehouse) for inventory, product, warehouse in rows],
        "pagination": pagination,
    }


@router.get("/low-stock")
def low_stock_inventory(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("inventory", "read")),
) -> list[dict]:
    rows = db.execute(
        detailed_statement()
        .where(Inventory.quantity <= Inventory.min_threshold)
        .where(Inventory.quantity > 0)
        .order_by(Inventory.quantity.asc(), Product.name.asc())
    ).all()
    return [serialize_inventory(inventory, product, warehouse) for inventory, product, warehouse in rows]


@router.get("/out-of-stock")
def out_of_stock_inventory(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("inventory", "read")),
) -> list[dict]:
    rows = db.execute(detailed_statement().where(Inventory.quantity == 0).order_by(Product.name.asc())).all()
    return [serialize_inventory(inventory, product, warehouse) for inventory, product, warehouse in rows]


@router.get("/summary/warehouse")
def summary_by_warehouse(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("inventory", "read")),
) -> list[dict]:
    rows = db.execute(
        select(
            Warehouse.id,
            Warehouse.name,
            func.count(Inventory.id),
            func.coalesce(func.sum(Inventory.quantity), 0),
            func.coalesce(func.sum(Inventory.reserved_quantity), 0),
            func.coalesce(func.sum(Inventory.quantity * Product.cost), 0),
        )
        .join(Inventory, Inventory.warehouse_id == Warehouse.id)
        .join(Product, Product.id == Inventory.product_id)
        .group_by(Warehouse.id, Warehouse.name)
        .order_by(Warehouse.name.asc())
    ).all()
    low_counts = dict(
        db.execute(
            select(Inventory.warehouse_id, func.count(Inventory.id))
            .where(Inventory.quantity <= Inventory.min_threshold)
            .group_by(Inventory.warehouse_id)
        ).all()
    )
    return [
        {
            "warehouse_id": warehouse_id,
            "warehouse_name": name,
            "total_products": count,
            "total_quantity": int(quantity),
            "total_reserved": int(reserved),
            "total_value": round(float(value), 2),
            "low_stock_count": low_counts.get(warehouse_id, 0),
        }
        for warehouse_id, name, count, quantity, reserved, value in rows
    ]


@router.get("/total-value")
def total_value(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("inventory", "read")),
) -> dict:
    value, quantity = db.execute(
        select(
            func.coalesce(func.sum(Inventory.quantity * Product.cost), 0),
            func.coalesce(func.sum(Inventory.quantity), 0),
        )
        .select_from(Inventory)
        .join(Product, Product.id == Inventory.product_id)
    ).one()
    return {"total_value": round(float(value), 2), "total_quantity": int(quantity)}


@router.get("/product/{product_id}")
def inventory_by_product(
    product_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("inventory", "read")),
) -> list[dict]:
    rows = db.execute(
        detailed_statement().where(Inventory.product_id == product_id).order_by(Warehouse.name.asc())
    ).all()
    return [serialize_inventory(inventory, product, warehouse) for inventory, product, warehouse in rows]


@router.get("/warehouse/{warehouse_id}")
def inventory_by_warehouse(
    warehouse_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("inventory", "read")),
) -> list[dict]:
    rows = db.execute(
        detailed_statement().where(Inventory.warehouse_id == warehouse_id).order_by(Product.name.asc())
    ).all()
    return [serialize_inventory(inventory, product, warehouse) for inventory, product, warehouse in rows]


@router.get("/{inventory_id}")
def get_inventory(
    inventory_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("inventory", "read")),
) -> dict:
    return serialize_inventory(get_inventory_or_404(db, inventory_id))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_inventory(
    payload: InventoryCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("inventory", "create")),
) -> dict:
    if payload.quantity < 0:
        raise HTTPException(status_code=400, detail="Quantity cannot be negative")
    validate_thresholds(payload.min_threshold, payload.max_threshold)
    if not db.get(Product, payload.product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    if not db.get(Warehouse, payload.warehouse_id):
        raise HTTPException(status_code=404, detail="Warehouse not found")

    existing = db.scalar(
        select(Inventory.id)
        .where(Inventory.product_id == payload.product_id)
        .where(Inventory.warehouse_id == payload.warehouse_id)
    )
    if existing:
        raise HTTPException(status_code=409, detail="Inventory record already exists for this product and warehouse")

    inventory = Inventory(
        product_id=payload.product_id,
        warehouse_id=payload.warehouse_id,
        quantity=0,
        reserved_quantity=0,
        min_threshold=payload.min_threshold,
        max_threshold=payload.max_threshold,
    )
    db.add(inventory)
    db.flush()

    # opening stock is booked through the ledger, which commits the row with it
    if payload.quantity > 0:
        result = ledger.record_transaction(
            db,
            TransactionCreate(
                inventory_id=inventory.id,
                type=ledger.TRANSACTION_IN,
                quantity=payload.quantity,
                reason="Initial stock",
            ),
            current_user,
        )
        inventory = result.inventory
    else:
        alerts.evaluate_inventory(db, inventory)
        db.commit()
        db.refresh(inventory)

    log_action(db, current_user.id, "create", "inventory", record_id=inventory.id)
    return serialize_inventory(inventory)


@router.put("/{inventory_id}")
def update_inventory(
    inventory_id: int,
    payload: InventoryUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("inventory", "update")),
) -> dict:
    inventory = get_inventory_or_404(db, inventory_id)
    changes = payload.model_dump(exclude_unset=True)
    min_threshold = changes.get("min_threshold")
    if min_threshold is None:
        min_threshold = inventory.min_threshold
    max_threshold = changes["max_threshold"] if "max_threshold" in changes else inventory.max_threshold
    validate_thresholds(min_threshold, max_threshold)

    inventory.min_threshold = min_threshold
    inventory.max_threshold = max_threshold
    db.flush()
    alerts.evaluate_inventory(db, inventory)
    db.commit()
    db.refresh(inventory)

    log_action(db, current_user.id, "update", "inventory", record_id=inventory.id, detail="Thresholds updated")
    return serialize_inventory(inventory)


@router.put("/{inventory_id}/reserve")
def reserve_inventory(
    inventory_id: int,
    payload: ReservationRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("inventory", "update")),
) -> dict:
    inventory = ledger.reserve_stock(db, inventory_id, payload.quantity)
    log_action(db, current_user.id, "reserve", "inventory", record_id=inventory.id, detail=f"Reserved {payload.quantity}")
    return serialize_inventory(inventory)


@router.put("/{inventory_id}/release")
def release_inventory(
    inventory_id: int,
    payload: ReservationRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("inventory", "update")),
) -> dict:
    inventory = ledger.release_stock(db, inventory_id, payload.quantity)
    log_action(db, current_user.id, "release", "inventory", record_id=inventory.id, detail=f"Released {payload.quantity}")
    return serialize_inventory(inventory)


@router.delete("/{inventory_id}")
def delete_inventory(
    inventory_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("inventory", "delete")),
) -> dict:
    inventory = get_inventory_or_404(db, inventory_id)
    has_history = db.scalar(
        select(InventoryTransaction.id).where(InventoryTransaction.inventory_id == inventory.id).limit(1)
    )
    if has_history:
        raise HTTPException(status_code=409, detail="Inventory record has transaction history and cannot be deleted")

    db.execute(delete(StockAlert).where(StockAlert.inventory_id == inventory.id))
    db.delete(inventory)
    db.commit()

    log_action(db, current_user.id, "delete", "inventory", record_id=inventory_id)
    return {"message": "Inventory record deleted"}
