import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SEED_DEMO_DATA"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"

import pytest
from fastapi.testclient import TestClient

from app.core.security import create_access_token, hash_password
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.main import app
from app.models.inventory import Inventory
from app.models.product import Product
from app.models.user import User
from app.models.warehouse import Warehouse


PASSWORD = "Password123!"


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    return TestClient(app)


@pytest.fixture
def make_user(db_session):
    def factory(username: str, role: str = "user", is_active: bool = True) -> User:
        user = User(
            username=username,
            email=f"{username}@example.com",
            hashed_password=hash_password(PASSWORD),
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return factory


@pytest.fixture
def admin(make_user):
    return make_user("alice", "admin")


@pytest.fixture
def manager(make_user):
    return make_user("morgan", "manager")


@pytest.fixture
def staff(make_user):
    return make_user("sam", "user")


@pytest.fixture
def headers_for():
    def build(user: User) -> dict:
        token = create_access_token(str(user.id), user.role, user.token_version)
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
def make_stock(db_session):
    counter = {"value": 0}

    def factory(
        quantity: int = 10,
        min_threshold: int = 5,
        max_threshold: int | None = None,
        warehouse: Warehouse | None = None,
        product: Product | None = None,
        cost: float = 2.5,
    ) -> Inventory:
        counter["value"] += 1
        if product is None:
            product = Product(sku=f"SKU-{counter['value']:03d}", name=f"Widget {counter['value']}", price=5, cost=cost)
            db_session.add(product)
        if warehouse is None:
            warehouse = Warehouse(name=f"Warehouse {counter['value']}", location="Dock")
            db_session.add(warehouse)
        db_session.flush()

        inventory = Inventory(
            product_id=product.id,
            warehouse_id=warehouse.id,
            quantity=quantity,
            reserved_quantity=0,
            min_threshold=min_threshold,
            max_threshold=max_threshold,
        )
        db_session.add(inventory)
        db_session.commit()
        db_session.refresh(inventory)
        return inventory

    return factory
