"""
Payload fingerprinting for duplicate-operation detection.

Two payloads with the same content produce the same fingerprint no matter
how their mapping keys were ordered, at any nesting depth. The digest is a
64-bit FNV-1a hash of the canonical JSON form rendered in base 36. It is a
dedup heuristic, not a security boundary.
"""
import json
from typing import Any

from fastapi.encoders import jsonable_encoder

FNV_OFFSET_BASIS = 0xCBF29CE484222325
FNV_PRIME = 0x100000001B3
MASK_64 = 0xFFFFFFFFFFFFFFFF

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

# Canonical token for an absent payload; cannot be produced by json.dumps.
_UNDEFINED_TOKEN = "~undefined"


class _Undefined:
    """Marker for a missing value, distinct from None (JSON null)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "UNDEFINED"

    def __bool__(self):
        return False


UNDEFINED = _Undefined()


class FingerprintError(TypeError):
    """Raised when a payload cannot be reduced to canonical JSON."""


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, dict):
        return {
            str(key): _normalize(item)
            for key, item in value.items()
            if item is not UNDEFINED
        }
    if isinstance(value, (list, tuple)):
        return [None if item is UNDEFINED else _normalize(item) for item in value]
    if value is UNDEFINED:
        return None

    # Pydantic models, datetimes, UUIDs, enums, Decimals, sets...
    try:
        encoded = jsonable_encoder(value)
    except (TypeError, ValueError) as e:
        raise FingerprintError(f"Payload of type {type(value).__name__} is not JSON-serializable") from e
    if encoded is value:
        raise FingerprintError(f"Payload of type {type(value).__name__} is not JSON-serializable")
    return _normalize(encoded)


def canonical_json(payload: Any) -> str:
    """Serialize a payload with mapping keys sorted at every level."""
    if payload is UNDEFINED:
        return _UNDEFINED_TOKEN
    try:
        return json.dumps(
            _normalize(payload),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except ValueError as e:
        raise FingerprintError(str(e)) from e


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def fnv1a_64(data: bytes) -> int:
    digest = FNV_OFFSET_BASIS
    for byte in data:
        digest ^= byte
        digest = (digest * FNV_PRIME) & MASK_64
    return digest


def fingerprint(payload: Any = UNDEFINED) -> str:
    """
    Compute the stable fingerprint of a structured payload.

    Args:
        payload: Any JSON-serializable value. ``UNDEFINED`` (the default),
            ``None`` and ``{}`` all fingerprint differently.

    Returns:
        Short base-36 token of at most 13 characters.

    Raises:
        FingerprintError: payload contains a value with no JSON form.
    """
    return _to_base36(fnv1a_64(canonical_json(payload).encode("utf-8")))
