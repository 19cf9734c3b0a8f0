from app.schemas.alert import AlertAcknowledgeRequest, ThresholdRequest
from app.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
)
from app.schemas.category import CategoryCreate, CategoryUpdate
from app.schemas.inventory import InventoryCreate, InventoryUpdate, ReservationRequest
from app.schemas.product import ProductCreate, ProductUpdate
from app.schemas.transaction import TransactionCreate
from app.schemas.user import UserCreate, UserPasswordUpdate, UserRead, UserUpdate
from app.schemas.warehouse import WarehouseCreate, WarehouseUpdate

__all__ = [
    "AlertAcknowledgeRequest",
    "CategoryCreate",
    "CategoryUpdate",
    "ChangePasswordRequest",
    "InventoryCreate",
    "InventoryUpdate",
    "LoginRequest",
    "MessageResponse",
    "ProductCreate",
    "ProductUpdate",
    "RefreshRequest",
    "RegisterRequest",
    "ReservationRequest",
    "ThresholdRequest",
    "TokenResponse",
    "TransactionCreate",
    "UserCreate",
    "UserPasswordUpdate",
    "UserRead",
    "UserUpdate",
    "WarehouseCreate",
    "WarehouseUpdate",
]
