from pydantic import BaseModel


class TransactionCreate(BaseModel):
    inventory_id: int
    type: str
    quantity: int
    reason: str = ""
    reference: str = ""
    notes: str = ""
    source_warehouse_id: int | None = None
    destination_warehouse_id: int | None = None
