"""HTTP and websocket routes for generation jobs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import UUID

from fastapi import (
    APIRouter,
    Body,
    Depends,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)

from ..auth.auth_dependencies import require_principal
from ..auth.token_service import AuthError, TokenService
from ..domain.models import JobEvent, JobState, Principal
from ..exceptions import NotFoundError
from ..services.status_service import JobProjection, StatusService
from ..services.events import JobEventBroker
from ..services.submission_service import SubmissionService
from .schemas import (
    GenerationAccepted,
    GenerationListResponse,
    GenerationStatusResponse,
)

router = APIRouter(prefix="/api/generations", tags=["generations"])
logger = logging.getLogger(__name__)


def get_submission_service(request: Request) -> SubmissionService:
    """Fetch submission service from application state."""
    try:
        return request.app.state.submission_service  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover
        raise RuntimeError("SubmissionService is not configured") from exc


def get_status_service(request: Request) -> StatusService:
    try:
        return request.app.state.status_service  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover
        raise RuntimeError("StatusService is not configured") from exc


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=GenerationAccepted)
def submit_generation(
    payload: dict[str, Any] = Body(...),
    principal: Principal = Depends(require_principal),
    service: SubmissionService = Depends(get_submission_service),
) -> GenerationAccepted:
    """Accept a generation request and return its id without waiting for the image."""
    job = service.submit(principal, payload)
    return GenerationAccepted(id=job.id, state=job.state.value)


@router.get("", response_model=GenerationListResponse)
def list_generations(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_principal),
    service: StatusService = Depends(get_status_service),
) -> GenerationListResponse:
    result = service.list_for_owner(principal, page=page, limit=limit)
    return GenerationListResponse(
        items=[GenerationStatusResponse(**item.to_dict()) for item in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
    )


@router.get("/{job_id}", response_model=GenerationStatusResponse)
def get_generation(
    job_id: UUID,
    principal: Principal = Depends(require_principal),
    service: StatusService = Depends(get_status_service),
) -> GenerationStatusResponse:
    return GenerationStatusResponse(**service.get(job_id, principal).to_dict())


@router.post("/{job_id}/cancel", response_model=GenerationStatusResponse)
def cancel_generation(
    job_id: UUID,
    principal: Principal = Depends(require_principal),
    service: StatusService = Depends(get_status_service),
) -> GenerationStatusResponse:
    """Cancel a job; cancelling a finished job returns it unchanged."""
    return GenerationStatusResponse(**service.cancel(job_id, principal).to_dict())


@router.websocket("/{job_id}/events")
async def stream_generation_events(
    websocket: WebSocket,
    job_id: UUID,
    token: str | None = Query(None),
) -> None:
    """Push the current projection, then every state change until a terminal state.

    Browsers cannot set headers on a websocket handshake, so the bearer token
    travels in the ``token`` query parameter.

    Events published in this process arrive immediately. Workers running in
    another process publish nothing here, so when no event arrives within
    ``events_refresh_interval_seconds`` the job row is read again and sent
    if its state or progress moved.
    """
    state = websocket.app.state
    token_service: TokenService = state.token_service
    status_service: StatusService = state.status_service
    broker: JobEventBroker = state.event_broker
    refresh_interval: float = state.config.events_refresh_interval_seconds

    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    try:
        principal = token_service.verify(token)
    except AuthError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    # subscribe before reading the row so no change falls between the two
    async with broker.subscription(job_id) as events:
        try:
            projection = await asyncio.to_thread(status_service.get, job_id, principal)
        except NotFoundError:
            await websocket.send_json({"error": {"code": "NOT_FOUND", "message": f"generation '{job_id}' not found"}})
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        try:
            await websocket.send_json(projection.to_dict())
            if projection.state.is_terminal:
                await websocket.close()
                return
            finished = await _forward_changes(
                websocket,
                events,
                refresh=lambda: asyncio.to_thread(status_service.get, job_id, principal),
                last_seen=(projection.state, projection.progress),
                refresh_interval=refresh_interval,
            )
        except WebSocketDisconnect:
            finished = False
        if not finished:
            logger.debug("generations.ws.disconnected", extra={"job_id": str(job_id)})
            return
    await websocket.close()


async def _forward_changes(
    websocket: WebSocket,
    events: asyncio.Queue[JobEvent],
    *,
    refresh: Callable[[], Awaitable[JobProjection]],
    last_seen: tuple[JobState, float | None],
    refresh_interval: float,
) -> bool:
    """Send changes until a terminal state. Return ``False`` if the client left first."""
    receiver = asyncio.ensure_future(websocket.receive())
    try:
        while True:
            getter = asyncio.ensure_future(events.get())
            done, _ = await asyncio.wait(
                {getter, receiver},
                timeout=refresh_interval,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if receiver in done:
                if receiver.result()["type"] == "websocket.disconnect":
                    getter.cancel()
                    return False
                # client frames carry no meaning on this channel
                receiver = asyncio.ensure_future(websocket.receive())
                if getter not in done:
                    getter.cancel()
                    continue

            if getter in done:
                event = getter.result()
                current, payload = (event.state, event.progress), event.to_dict()
            else:
                getter.cancel()
                projection = await refresh()
                current, payload = (projection.state, projection.progress), projection.to_dict()
                if current == last_seen:
                    continue
            await websocket.send_json(payload)
            last_seen = current
            if current[0].is_terminal:
                return True
    finally:
        if not receiver.done():
            receiver.cancel()


__all__ = ["get_status_service", "get_submission_service", "router"]
