from pydantic import BaseModel


class InventoryCreate(BaseModel):
    product_id: int
    warehouse_id: int
    quantity: int = 0
    min_threshold: int = 0
    max_threshold: int | None = None


class InventoryUpdate(BaseModel):
    min_threshold: int | None = None
    max_threshold: int | None = None


class ReservationRequest(BaseModel):
    quantity: int
