from pydantic import BaseModel


class WarehouseCreate(BaseModel):
    name: str
    location: str = ""
    address: str = ""
    capacity: int | None = None
    manager_id: int | None = None


class WarehouseUpdate(BaseModel):
    name: str | None = None
    location: str | None = None
    address: str | None = None
    capacity: int | None = None
    manager_id: int | None = None
    is_active: bool | None = None
