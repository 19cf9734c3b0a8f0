from pydantic import BaseModel


class AlertAcknowledgeRequest(BaseModel):
    notes: str = ""


class ThresholdRequest(BaseModel):
    inventory_id: int
    min_threshold: int
    max_threshold: int | None = None
