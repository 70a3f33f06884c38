"""
Operation reservation endpoints.

The web client reserves an operation here before it performs the side
effect (publish a post, open a checkout session). A second submission of
the same payload while the first is in flight gets 409 "Operation still
processing". If the side effect fails the client releases the reservation
so the user can retry immediately.
"""
from datetime import timedelta
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, Request

from app.core.fingerprint import UNDEFINED
from app.core.idempotency import ANONYMOUS_OWNER, SuccessPolicy, ms_to_datetime
from app.schemas.idempotency import IdempotencyStats, OperationAccepted, OperationReleased
from app.schemas.responses import APIMetadata, APIResponse
from app.services.idempotency import IdempotencyCoordinator, get_coordinator

router = APIRouter(prefix="/api/v1", tags=["Idempotency"])

OPERATION_NAME = Path(..., min_length=1, max_length=128, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$")


def _owner(request: Request) -> str:
    return request.headers.get("X-User-Id") or ANONYMOUS_OWNER


async def _payload(request: Request, body: Any) -> Any:
    """A request without a body is UNDEFINED, distinct from a JSON null body."""
    if not await request.body():
        return UNDEFINED
    return body


def _meta(request: Request) -> APIMetadata:
    return APIMetadata(request_id=getattr(request.state, "trace_id", None))


@router.post("/operations/{operation_name}", status_code=202, response_model=APIResponse[OperationAccepted])
async def reserve_operation(
    request: Request,
    operation_name: str = OPERATION_NAME,
    payload: Any = Body(None),
    ttl_ms: Optional[int] = Query(None, gt=0, description="Reservation lifetime in milliseconds"),
    coordinator: IdempotencyCoordinator = Depends(get_coordinator),
):
    """Reserve an operation; 409 if the same one is already in progress."""
    owner_id = _owner(request)
    payload = await _payload(request, payload)
    effective_ttl_ms = ttl_ms or coordinator.default_ttl_ms
    dedup_key = coordinator.dedup_key_for(owner_id, operation_name, payload)

    def accept() -> OperationAccepted:
        accepted_at = ms_to_datetime(coordinator.clock())
        return OperationAccepted(
            operation=operation_name,
            owner_id=owner_id,
            dedup_key=dedup_key,
            accepted_at=accepted_at,
            expires_at=accepted_at + timedelta(milliseconds=effective_ttl_ms),
        )

    # The reservation must outlive this request, whatever the default policy
    accepted = await coordinator.execute_once(
        owner_id,
        operation_name,
        payload,
        accept,
        ttl_ms=effective_ttl_ms,
        on_success=SuccessPolicy.RETAIN,
    )
    return APIResponse(data=accepted, meta=_meta(request))


@router.post("/operations/{operation_name}/release", response_model=APIResponse[OperationReleased])
async def release_operation(
    request: Request,
    operation_name: str = OPERATION_NAME,
    payload: Any = Body(None),
    coordinator: IdempotencyCoordinator = Depends(get_coordinator),
):
    """Release a reservation after the guarded side effect failed."""
    owner_id = _owner(request)
    payload = await _payload(request, payload)
    released = coordinator.release(owner_id, operation_name, payload)
    return APIResponse(
        data=OperationReleased(
            operation=operation_name,
            dedup_key=coordinator.dedup_key_for(owner_id, operation_name, payload),
            released=released,
        ),
        meta=_meta(request),
    )


@router.get("/idempotency/stats", response_model=APIResponse[IdempotencyStats])
async def idempotency_stats(
    request: Request,
    coordinator: IdempotencyCoordinator = Depends(get_coordinator),
):
    """Coordinator counters since process start."""
    return APIResponse(data=IdempotencyStats(**coordinator.stats()), meta=_meta(request))
