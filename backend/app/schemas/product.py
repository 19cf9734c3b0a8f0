from pydantic import BaseModel


class ProductCreate(BaseModel):
    name: str
    sku: str
    barcode: str | None = None
    description: str = ""
    category_id: int | None = None
    unit_of_measure: str = "piece"
    price: float = 0
    cost: float = 0
    is_active: bool = True


class ProductUpdate(BaseModel):
    name: str | None = None
    sku: str | None = None
    barcode: str | None = None
    description: str | None = None
    category_id: int | None = None
    unit_of_measure: str | None = None
    price: float | None = None
    cost: float | None = None
    is_active: bool | None = None
