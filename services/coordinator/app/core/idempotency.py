"""
Idempotency records, dedup keys and the coordinator error taxonomy.
"""
import enum
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

ANONYMOUS_OWNER = "anonymous"


class SuccessPolicy(str, enum.Enum):
    """What happens to a claim after its action succeeds."""

    RETAIN = "retain"  # keep until TTL expiry, blocks replays
    CLEAR = "clear"  # delete immediately, dedups only in-flight calls


def _escape_key_part(part: str) -> str:
    return part.replace("%", "%25").replace(":", "%3A")


def derive_dedup_key(owner_id: str, operation_name: str, payload_fingerprint: str) -> str:
    """
    Build the store lookup key for an operation.

    Owner and operation name are percent-escaped so a `:` inside either
    cannot make two different triples share a key.
    """
    return f"{_escape_key_part(owner_id)}:{_escape_key_part(operation_name)}:{payload_fingerprint}"


def ms_to_datetime(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class IdempotencyRecord:
    """A claim on one logical operation."""

    owner_id: str
    operation_name: str
    payload_fingerprint: str
    created_at_ms: int
    expires_at_ms: int

    @property
    def dedup_key(self) -> str:
        return derive_dedup_key(self.owner_id, self.operation_name, self.payload_fingerprint)

    @property
    def created_at(self) -> datetime:
        return ms_to_datetime(self.created_at_ms)

    @property
    def expires_at(self) -> datetime:
        return ms_to_datetime(self.expires_at_ms)

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at_ms

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdempotencyRecord":
        return cls(
            owner_id=data["owner_id"],
            operation_name=data["operation_name"],
            payload_fingerprint=data["payload_fingerprint"],
            created_at_ms=int(data["created_at_ms"]),
            expires_at_ms=int(data["expires_at_ms"]),
        )


class IdempotencyError(Exception):
    """Base class for coordinator errors."""


class DuplicateOperation(IdempotencyError):
    """An unexpired claim already exists for the dedup key."""

    def __init__(self, dedup_key: str, operation_name: str, created_at: datetime):
        self.dedup_key = dedup_key
        self.operation_name = operation_name
        self.created_at = created_at
        super().__init__(
            f"Duplicate operation detected. Operation '{operation_name}' "
            f"is already in progress since {created_at.isoformat()}"
        )


class StoreUnavailable(IdempotencyError):
    """The backing store could not be read or written."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)
