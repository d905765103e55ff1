"""Liveness endpoint used by the load balancer."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..domain.models import utcnow
from ..exceptions import QueueUnavailableError
from .schemas import HealthResponse

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/health", response_model=HealthResponse)
def health(request: Request) -> JSONResponse:
    queue = request.app.state.queue
    try:
        depth = queue.depth(now=utcnow())
    except QueueUnavailableError:
        logger.warning("health.queue.unavailable", exc_info=True)
        return JSONResponse(
            status_code=503,
            content=HealthResponse(status="degraded", database="unavailable").model_dump(),
        )
    return JSONResponse(
        content=HealthResponse(status="ok", database="ok", queue_depth=depth.total).model_dump()
    )
