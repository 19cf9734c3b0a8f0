from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.api.deps import log_action, require_permission
from app.api.pagination import PageParams, paginate, resolve_sort
from app.db.session import get_db
from app.models.category import Category
from app.models.inventory import Inventory
from app.models.product import Product
from app.models.user import User
from app.models.warehouse import Warehouse
from app.schemas.product import ProductCreate, ProductUpdate


router = APIRouter()

SORT_COLUMNS = {
    "name": Product.name,
    "sku": Product.sku,
    "price": Product.price,
    "cost": Product.cost,
    "created_at": Product.created_at,
    "updated_at": Product.updated_at,
}


def serialize_product(product: Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "sku": product.sku,
        "barcode": product.barcode,
        "description": product.description,
        "category_id": product.category_id,
        "unit_of_measure": product.unit_of_measure,
        "price": product.price,
        "cost": product.cost,
        "is_active": product.is_active,
        "created_at": product.created_at.isoformat(),
        "updated_at": product.updated_at.isoformat(),
    }


def get_product_or_404(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def ensure_unique_codes(db: Session, sku: str | None, barcode: str | None, exclude_id: int | None = None) -> None:
    if sku:
        statement = select(Product.id).where(Product.sku == sku)
        if exclude_id is not None:
            statement = statement.where(Product.id != exclude_id)
        if db.scalar(statement):
            raise HTTPException(status_code=409, detail="SKU already exists")
    if barcode:
        statement = select(Product.id).where(Product.barcode == barcode)
        if exclude_id is not None:
            statement = statement.where(Product.id != exclude_id)
        if db.scalar(statement):
            raise HTTPException(status_code=409, detail="Barcode already exists")


def validate_product_fields(data: dict) -> None:
    if "name" in data and data["name"] is not None and not data["name"].strip():
        raise HTTPException(status_code=400, detail="Product name is required")
    if "sku" in data and data["sku"] is not None and not data["sku"].strip():
        raise HTTPException(status_code=400, detail="SKU is required")
    for field in ("price", "cost"):
        if data.get(field) is not None and data[field] < 0:
            raise HTTPException(status_code=400, detail=f"{field.capitalize()} cannot be negative")


def ensure_category(db: Session, category_id: int | None) -> None:
    if category_id is not None and not db.get(Category, category_id):
        raise HTTPException(status_code=404, detail="Category not found")


@router.get("")
def list_products(
    search: str = "",
    category_id: int | None = None,
    is_active: bool | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    params: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("products", "read")),
) -> dict:
    statement = select(Product, Category.name).outerjoin(Category, Category.id == Product.category_id)
    if search:
        pattern = f"%{search.strip()}%"
        statement = statement.where(
            or_(Product.name.ilike(pattern), Product.sku.ilike(pattern), Product.barcode.ilike(pattern))
        )
    if category_id is not None:
        statement = statement.where(Product.category_id == category_id)
    if is_active is not None:
        statement = statement.where(Product.is_active.is_(is_active))
    statement = statement.order_by(resolve_sort(SORT_COLUMNS, sort_by, sort_order), Product.id.desc())

    rows, pagination = paginate(db, statement, params)
    return {
        "data": [{**serialize_product(product), "category_name": category_name} for product, category_name in rows],
        "pagination": pagination,
    }


@router.get("/low-stock")
def low_stock_products(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("products", "read")),
) -> list[dict]:
    rows = db.scalars(
        select(Product)
        .where(Product.is_active.is_(True))
        .where(Product.id.in_(select(Inventory.product_id).where(Inventory.quantity <= Inventory.min_threshold)))
        .order_by(Product.name.asc())
    ).all()
    return [serialize_product(row) for row in rows]


@router.get("/out-of-stock")
def out_of_stock_products(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("products", "read")),
) -> list[dict]:
    rows = db.scalars(
        select(Product)
        .where(Product.is_active.is_(True))
        .where(Product.id.in_(select(Inventory.product_id).where(Inventory.quantity == 0)))
        .order_by(Product.name.asc())
    ).all()
    return [serialize_product(row) for row in rows]


@router.get("/stats")
def product_stats(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("products", "read")),
) -> dict:
    total = db.scalar(select(func.count(Product.id))) or 0
    active = db.scalar(select(func.count(Product.id)).where(Product.is_active.is_(True))) or 0
    by_category = db.execute(
        select(Product.category_id, Category.name, func.count(Product.id))
        .outerjoin(Category, Category.id == Product.category_id)
        .where(Product.is_active.is_(True))
        .group_by(Product.category_id, Category.name)
        .order_by(func.count(Product.id).desc())
    ).all()
    return {
        "total_products": total,
        "active_products": active,
        "inactive_products": total - active,
        "by_category": [
            {"category_id": category_id, "category_name": name or "Uncategorized", "count": count}
            for category_id, name, count in by_category
        ],
    }


@router.get("/search/{identifier}")
def search_by_identifier(
    identifier: str,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("products", "read")),
) -> dict:
    sku = identifier.strip().upper()
    product = db.scalar(select(Product).where(or_(Product.sku == sku, Product.barcode == identifier)))
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_product(product)


@router.get("/category/{category_id}")
def products_by_category(
    category_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("products", "read")),
) -> list[dict]:
    rows = db.scalars(
        select(Product)
        .where(Product.category_id == category_id)
        .where(Product.is_active.is_(True))
        .order_by(Product.name.asc())
    ).all()
    return [serialize_product(row) for row in rows]


@router.get("/{product_id}")
def get_product(
    product_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("products", "read")),
) -> dict:
    product = get_product_or_404(db, product_id)
    return {**serialize_product(product), "category_name": product.category.name if product.category else None}


@router.get("/{product_id}/with-inventory")
def get_product_with_inventory(
    product_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("products", "read")),
) -> dict:
    product = get_product_or_404(db, product_id)
    rows = db.execute(
        select(Inventory, Warehouse.name)
        .join(Warehouse, Warehouse.id == Inventory.warehouse_id)
        .where(Inventory.product_id == product.id)
        .order_by(Warehouse.name.asc())
    ).all()
    inventory = [
        {
            "inventory_id": row.id,
            "warehouse_id": row.warehouse_id,
            "warehouse_name": warehouse_name,
            "quantity": row.quantity,
            "reserved_quantity": row.reserved_quantity,
            "available_quantity": row.available_quantity,
            "min_threshold": row.min_threshold,
            "max_threshold": row.max_threshold,
        }
        for row, warehouse_name in rows
    ]
    return {
        **serialize_product(product),
        "inventory": inventory,
        "total_quantity": sum(item["quantity"] for item in inventory),
        "total_available": sum(item["available_quantity"] for item in inventory),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("products", "create")),
) -> dict:
    data = payload.model_dump()
    validate_product_fields(data)
    data["name"] = data["name"].strip()
    data["sku"] = data["sku"].strip().upper()
    data["barcode"] = (data["barcode"] or "").strip() or None
    ensure_unique_codes(db, data["sku"], data["barcode"])
    ensure_category(db, data["category_id"])

    product = Product(**data)
    db.add(product)
    db.commit()
    db.refresh(product)

    log_action(db, current_user.id, "create", "products", record_id=product.id, detail=f"SKU {product.sku}")
    return serialize_product(product)


@router.put("/{product_id}")
def update_product(
    product_id: int,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("products", "update")),
) -> dict:
    product = get_product_or_404(db, product_id)
    changes = payload.model_dump(exclude_unset=True)
    validate_product_fields(changes)

    if changes.get("name") is not None:
        changes["name"] = changes["name"].strip()
    if changes.get("sku") is not None:
        changes["sku"] = changes["sku"].strip().upper()
    if "barcode" in changes:
        changes["barcode"] = (changes["barcode"] or "").strip() or None
        product.barcode = changes.pop("barcode")
    if "category_id" in changes:
        ensure_category(db, changes["category_id"])
        product.category_id = changes.pop("category_id")
    ensure_unique_codes(db, changes.get("sku"), product.barcode, exclude_id=product.id)

    for field, value in changes.items():
        if value is not None:
            setattr(product, field, value)
    db.commit()
    db.refresh(product)

    log_action(db, current_user.id, "update", "products", record_id=product.id, detail=f"SKU {product.sku}")
    return serialize_product(product)


@router.delete("/{product_id}")
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("products", "delete")),
) -> dict:
    product = get_product_or_404(db, product_id)
    product.is_active = False
    db.commit()

    log_action(db, current_user.id, "delete", "products", record_id=product.id, detail=f"SKU {product.sku}")
    return {"message": "Product deactivated"}
