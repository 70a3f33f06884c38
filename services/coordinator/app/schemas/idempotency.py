"""
Schemas for the operation reservation endpoints.
"""
from datetime import datetime
from pydantic import BaseModel, Field


class OperationAccepted(BaseModel):
    operation: str = Field(..., description="Logical operation name, e.g. create-post")
    owner_id: str
    dedup_key: str = Field(..., description="Store key guarding this operation")
    status: str = Field("accepted")
    accepted_at: datetime
    expires_at: datetime = Field(..., description="When the reservation lapses on its own")


class OperationReleased(BaseModel):
    operation: str
    dedup_key: str
    released: bool = Field(..., description="False when no live reservation existed")


class IdempotencyStats(BaseModel):
    claims_total: int = 0
    duplicates_total: int = 0
    failures_total: int = 0
    store_errors_total: int = 0
    swept_total: int = 0
