"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI

from .api.errors import register_error_handlers
from .config import AppConfig
from .dependencies import build_infrastructure, build_sweep, build_worker_pool, include_routers
from .lifecycle import run_periodic_reconciliation
from .logging import configure_logging
from .media.artifact_store import ArtifactStore
from .providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


def create_app(
    config: AppConfig | None = None,
    *,
    provider: ProviderAdapter | None = None,
    artifact_store: ArtifactStore | None = None,
) -> FastAPI:
    """Build FastAPI instance with configured dependencies.

    When ``run_workers_in_api`` is enabled the worker pool and the periodic
    reconciliation sweep run as background tasks of the API process.
    """
    configure_logging()
    cfg = config or AppConfig.build_default()
    infra = build_infrastructure(cfg)

    @contextlib.asynccontextmanager
    async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
        await _start_background_tasks()
        try:
            yield
        finally:
            await _stop_background_tasks()

    app = FastAPI(title="PrintCraft Generations", lifespan=_lifespan)
    register_error_handlers(app)
    include_routers(app, cfg, infra)

    async def _start_background_tasks() -> None:
        if not cfg.run_workers_in_api:
            return
        pool = build_worker_pool(
            cfg,
            infra,
            provider=provider,
            artifact_store=artifact_store,
            events=app.state.event_broker,
        )
        shutdown_event = asyncio.Event()
        await pool.start()
        sweep_task = asyncio.create_task(
            run_periodic_reconciliation(
                sweep=build_sweep(cfg, infra),
                shutdown_event=shutdown_event,
                interval_seconds=cfg.sweep_interval_seconds,
            ),
            name="printcraft-reconciliation",
        )
        app.state.worker_pool = pool
        app.state.background_shutdown = shutdown_event
        app.state.sweep_task = sweep_task
        logger.info("app.background.started", extra={"workers": len(pool.workers)})

    async def _stop_background_tasks() -> None:
        shutdown_event: asyncio.Event | None = getattr(app.state, "background_shutdown", None)
        if shutdown_event is not None:
            shutdown_event.set()
        pool = getattr(app.state, "worker_pool", None)
        if pool is not None:
            await pool.stop()
        sweep_task: asyncio.Task[None] | None = getattr(app.state, "sweep_task", None)
        if sweep_task is not None:
            sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweep_task
        infra.engine.dispose()

    return app
