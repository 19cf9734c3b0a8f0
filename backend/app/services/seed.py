import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.security import hash_password
from app.models.category import Category
from app.models.user import User
from app.models.warehouse import Warehouse
from app.services.rbac import ADMIN, MANAGER, USER


logger = logging.getLogger(__name__)

DEFAULT_USERS = [
    ("admin", "admin@stockroom.local", "Admin123!", ADMIN),
    ("manager", "manager@stockroom.local", "Manager123!", MANAGER),
    ("user", "user@stockroom.local", "User123!", USER),
]


def seed_initial_data(db: Session) -> None:
    user_count = db.scalar(select(func.count(User.id))) or 0
    if user_count == 0:
        db.add_all(
            [
                User(username=username, email=email, hashed_password=hash_password(password), role=role)
                for username, email, password, role in DEFAULT_USERS
            ]
        )
        db.commit()
        logger.info("Seeded %s default accounts", len(DEFAULT_USERS))

    category_count = db.scalar(select(func.count(Category.id))) or 0
    if category_count == 0:
        db.add(Category(name="General", description="Default category"))
        db.commit()

    warehouse_count = db.scalar(select(func.count(Warehouse.id))) or 0
    if warehouse_count == 0:
        manager = db.scalar(select(User).where(User.role == MANAGER).order_by(User.id))
        db.add(
            Warehouse(
                name="Main Warehouse",
                location="Headquarters",
                capacity=10000,
                manager_id=manager.id if manager else None,
            )
        )
        db.commit()
