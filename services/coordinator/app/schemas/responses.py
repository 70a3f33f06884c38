"""
Standard API response schemas for consistent client experience.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Generic, TypeVar
from datetime import datetime, timezone

T = TypeVar('T')


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class APIMetadata(BaseModel):
    """Metadata included in API responses."""
    request_id: Optional[str] = Field(None, description="Request trace ID for debugging")
    timestamp: datetime = Field(default_factory=_utcnow, description="Response timestamp")
    version: str = Field(default="v1", description="API version")


class APIResponse(BaseModel, Generic[T]):
    """
    Standard success response wrapper.

    Usage:
        @router.get("/api/v1/idempotency/stats")
        async def stats(request: Request) -> APIResponse[IdempotencyStats]:
            return APIResponse(
                data=IdempotencyStats(**coordinator.stats()),
                meta=APIMetadata(request_id=request.state.trace_id)
            )
    """
    success: bool = Field(True, description="Indicates successful operation")
    data: T = Field(..., description="Response payload")
    meta: Optional[APIMetadata] = Field(None, description="Response metadata")
    message: Optional[str] = Field(None, description="Optional human-readable message")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": True,
                "data": {"operation": "create-post", "status": "accepted"},
                "meta": {
                    "request_id": "req_abc123",
                    "timestamp": "2025-10-09T12:00:00Z",
                    "version": "v1"
                }
            }
        }
    )
