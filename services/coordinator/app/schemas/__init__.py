"""
Pydantic schemas for request/response validation.
"""
from .responses import (
    APIResponse,
    APIMetadata
)
from .idempotency import (
    IdempotencyStats,
    OperationAccepted,
    OperationReleased
)

__all__ = [
    'APIResponse',
    'APIMetadata',
    'IdempotencyStats',
    'OperationAccepted',
    'OperationReleased'
]
