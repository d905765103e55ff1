"""Lifecycle helpers wiring background tasks for FastAPI startup and the scripts."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from .domain.models import utcnow
from .workers.reconciliation import ReconciliationSweep, SweepReport

logger = logging.getLogger(__name__)


async def reconcile_once(
    sweep: ReconciliationSweep,
    *,
    now: datetime | None = None,
) -> SweepReport:
    """Run a single sweep iteration off the event loop."""

    current = now or utcnow()
    return await asyncio.to_thread(sweep.run_once, now=current)


async def run_periodic_reconciliation(
    *,
    sweep: ReconciliationSweep,
    shutdown_event: asyncio.Event,
    interval_seconds: float = 60.0,
    clock: Callable[[], datetime] | None = None,
) -> None:
    """Execute the reconciliation sweep until ``shutdown_event`` is signalled."""

    interval = max(1.0, float(interval_seconds))
    tick = clock or utcnow
    try:
        while not shutdown_event.is_set():
            try:
                await reconcile_once(sweep, now=tick())
            except Exception:  # pragma: no cover
                logger.exception("Reconciliation sweep iteration failed")
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
    except asyncio.CancelledError:  # pragma: no cover - shutdown path
        raise


__all__ = ["reconcile_once", "run_periodic_reconciliation"]
