from pydantic import BaseModel


class CategoryCreate(BaseModel):
    name: str
    description: str = ""
    parent_id: int | None = None


class CategoryUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    parent_id: int | None = None
    is_active: bool | None = None
