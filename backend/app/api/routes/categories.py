from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.api.deps import log_action, require_permission
from app.db.session import get_db
from app.models.category import Category
from app.models.product import Product
from app.models.user import User
from app.schemas.category import CategoryCreate, CategoryUpdate


router = APIRouter()


def serialize_category(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "description": category.description,
        "parent_id": category.parent_id,
        "is_active": category.is_active,
        "created_at": category.created_at.isoformat(),
        "updated_at": category.updated_at.isoformat(),
    }


def get_category_or_404(db: Session, category_id: int) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


def ensure_unique_name(db: Session, name: str, exclude_id: int | None = None) -> None:
    statement = select(Category.id).where(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        statement = statement.where(Category.id != exclude_id)
    if db.scalar(statement):
        raise HTTPException(status_code=409, detail="Category name already exists")


def validate_parent(db: Session, parent_id: int | None, category_id: int | None = None) -> None:
    if parent_id is None:
        return
    if category_id is not None and parent_id == category_id:
        raise HTTPException(status_code=400, detail="A category cannot be its own parent")
    parent = db.get(Category, parent_id)
    if not parent:
        raise HTTPException(status_code=404, detail="Parent category not found")

    # walk up to reject cycles through descendants
    seen: set[int] = set()
    while parent is not None and parent.parent_id is not None:
        if parent.parent_id == category_id or parent.parent_id in seen:
            raise HTTPException(status_code=400, detail="Category hierarchy cannot contain cycles")
        seen.add(parent.id)
        parent = db.get(Category, parent.parent_id)


def build_tree(categories: list[Category]) -> list[dict]:
    nodes = {category.id: {**serialize_category(category), "children": []} for category in categories}
    roots: list[dict] = []
    for category in categories:
        node = nodes[category.id]
        if category.parent_id in nodes:
            nodes[category.parent_id]["children"].append(node)
        else:
            roots.append(node)
    return roots


@router.get("")
def list_categories(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("categories", "read")),
) -> list[dict]:
    statement = select(Category).order_by(Category.name.asc())
    if not include_inactive:
        statement = statement.where(Category.is_active.is_(True))
    return [serialize_category(row) for row in db.scalars(statement).all()]


@router.get("/tree")
def category_tree(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("categories", "read")),
) -> list[dict]:
    rows = db.scalars(select(Category).where(Category.is_active.is_(True)).order_by(Category.name.asc())).all()
    return build_tree(list(rows))


@router.get("/with-product-count")
def categories_with_product_count(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("categories", "read")),
) -> list[dict]:
    rows = db.execute(
        select(Category, func.count(Product.id))
        .outerjoin(Product, (Product.category_id == Category.id) & Product.is_active.is_(True))
        .where(Category.is_active.is_(True))
        .group_by(Category.id)
        .order_by(Category.name.asc())
    ).all()
    return [{**serialize_category(category), "product_count": count} for category, count in rows]


@router.get("/{category_id}")
def get_category(
    category_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("categories", "read")),
) -> dict:
    return serialize_category(get_category_or_404(db, category_id))


@router.get("/{category_id}/subcategories")
def list_subcategories(
    category_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("categories", "read")),
) -> list[dict]:
    get_category_or_404(db, category_id)
    rows = db.scalars(
        select(Category)
        .where(Category.parent_id == category_id)
        .where(Category.is_active.is_(True))
        .order_by(Category.name.asc())
    ).all()
    return [serialize_category(row) for row in rows]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_category(
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("categories", "create")),
) -> dict:
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Category name is required")
    ensure_unique_name(db, name)
    validate_parent(db, payload.parent_id)

    category = Category(name=name, description=payload.description, parent_id=payload.parent_id)
    db.add(category)
    db.commit()
    db.refresh(category)

    log_action(db, current_user.id, "create", "categories", record_id=category.id, detail=f"Category {category.name}")
    return serialize_category(category)


@router.put("/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("categories", "update")),
) -> dict:
    category = get_category_or_404(db, category_id)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("name") is not None:
        changes["name"] = changes["name"].strip()
        if not changes["name"]:
            raise HTTPException(status_code=400, detail="Category name is required")
        ensure_unique_name(db, changes["name"], exclude_id=category.id)
    if "parent_id" in changes:
        validate_parent(db, changes["parent_id"], category.id)
        category.parent_id = changes.pop("parent_id")

    for field, value in changes.items():
        if value is not None:
            setattr(category, field, value)
    db.commit()
    db.refresh(category)

    log_action(db, current_user.id, "update", "categories", record_id=category.id, detail=f"Category {category.name}")
    return serialize_category(category)


@router.delete("/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("categories", "delete")),
) -> dict:
    category = get_category_or_404(db, category_id)
    category.is_active = False
    db.commit()

    log_action(db, current_user.id, "delete", "categories", record_id=category.id, detail=f"Category {category.name}")
    return {"message": "Category deactivated"}
