"""Dependency wiring helpers shared by the API process and the worker scripts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .api.generations_api import router as generations_router
from .api.health_api import router as health_router
from .auth.token_service import TokenService
from .config import AppConfig, build_engine, build_session_factory
from .db.db_init import init_db
from .domain.backoff import RetryPolicy
from .infrastructure.queue.sqlalchemy_queue import QueueConfig, SqlAlchemyWorkQueue
from .media.artifact_store import ArtifactStore, FilesystemArtifactStore
from .media.image_optimizer import ImageOptimizer
from .providers.base import ProviderAdapter
from .providers.providers_factory import create_provider
from .repositories.job_repository import JobRepository
from .services.events import JobEventBroker
from .services.quota import RollingWindowQuotaChecker
from .services.status_service import StatusService
from .services.submission_service import SubmissionService
from .stats.metrics_api import router as metrics_router
from .stats.metrics_exporter import MetricsExporter
from .workers.queue_worker import GenerationWorker
from .workers.reconciliation import ReconciliationSweep
from .workers.worker_pool import WorkerPool


@dataclass(slots=True)
class Infrastructure:
    """Storage handles every process needs."""

    engine: Engine
    session_factory: sessionmaker[Session]
    repository: JobRepository
    queue: SqlAlchemyWorkQueue


def build_infrastructure(config: AppConfig, *, create_schema: bool = True) -> Infrastructure:
    engine = build_engine(config)
    if create_schema:
        init_db(engine)
    session_factory = build_session_factory(engine)
    queue = SqlAlchemyWorkQueue(
        session_factory,
        config=QueueConfig(
            visibility_timeout_seconds=config.queue_visibility_timeout_seconds,
            premium_boost_seconds=config.queue_premium_boost_seconds,
        ),
    )
    return Infrastructure(
        engine=engine,
        session_factory=session_factory,
        repository=JobRepository(session_factory),
        queue=queue,
    )


def build_artifact_store(config: AppConfig) -> FilesystemArtifactStore:
    config.artifact_root.mkdir(parents=True, exist_ok=True)
    return FilesystemArtifactStore(
        root=config.artifact_root,
        public_base_url=config.artifact_public_base_url,
    )


def build_image_optimizer(config: AppConfig) -> ImageOptimizer | None:
    if config.artifact_image_format == "original":
        return None
    return ImageOptimizer(
        image_format=config.artifact_image_format,
        quality=config.artifact_image_quality,
        max_width=config.artifact_max_width,
        max_height=config.artifact_max_height,
    )


def build_worker_pool(
    config: AppConfig,
    infra: Infrastructure,
    *,
    provider: ProviderAdapter | None = None,
    artifact_store: ArtifactStore | None = None,
    events: JobEventBroker | None = None,
) -> WorkerPool:
    """Assemble ``config.worker_count`` workers sharing one provider and store."""
    adapter = provider or create_provider(config.provider_name, config=config)
    store = artifact_store or build_artifact_store(config)
    optimizer = build_image_optimizer(config)
    retry_policy = RetryPolicy(
        max_attempts=config.worker_max_attempts,
        base_delay_seconds=config.worker_backoff_base_seconds,
        max_delay_seconds=config.worker_backoff_cap_seconds,
        jitter_seconds=config.worker_backoff_jitter_seconds,
    )

    def _factory(worker_id: str) -> GenerationWorker:
        return GenerationWorker(
            repository=infra.repository,
            queue=infra.queue,
            provider=adapter,
            artifact_store=store,
            image_optimizer=optimizer,
            retry_policy=retry_policy,
            events=events,
            poll_interval_seconds=config.worker_poll_interval_seconds,
            idle_sleep_seconds=config.worker_idle_sleep_seconds,
            request_timeout_seconds=config.provider_request_timeout_seconds,
            worker_id=worker_id,
        )

    return WorkerPool.build(
        worker_count=config.worker_count,
        concurrency=config.worker_concurrency,
        factory=_factory,
    )


def build_sweep(config: AppConfig, infra: Infrastructure) -> ReconciliationSweep:
    return ReconciliationSweep(
        repository=infra.repository,
        queue=infra.queue,
        pending_grace_seconds=config.sweep_pending_grace_seconds,
        stuck_threshold_seconds=config.sweep_stuck_threshold_seconds,
        batch_size=config.sweep_batch_size,
    )


def include_routers(app: FastAPI, config: AppConfig, infra: Infrastructure) -> None:
    """Mount module routers and attach services."""
    events = JobEventBroker()
    quota_checker = RollingWindowQuotaChecker(
        repository=infra.repository,
        window=timedelta(hours=config.quota_window_hours),
        standard_limit=config.quota_standard_limit,
        premium_limit=config.quota_premium_limit,
    )
    submission_service = SubmissionService(
        repository=infra.repository,
        queue=infra.queue,
        quota_checker=quota_checker,
        events=events,
    )
    status_service = StatusService(
        repository=infra.repository,
        queue=infra.queue,
        events=events,
    )

    app.state.config = config
    app.state.engine = infra.engine
    app.state.job_repo = infra.repository
    app.state.queue = infra.queue
    app.state.event_broker = events
    app.state.token_service = TokenService(signing_key=config.jwt_secret)
    app.state.submission_service = submission_service
    app.state.status_service = status_service
    app.state.metrics_exporter = MetricsExporter(infra.repository, infra.queue)

    app.include_router(health_router)
    app.include_router(generations_router)
    app.include_router(metrics_router)

    if config.serve_artifacts:
        config.artifact_root.mkdir(parents=True, exist_ok=True)
        app.mount(
            "/artifacts",
            StaticFiles(directory=config.artifact_root),
            name="artifacts",
        )


__all__ = [
    "Infrastructure",
    "build_artifact_store",
    "build_image_optimizer",
    "build_infrastructure",
    "build_sweep",
    "build_worker_pool",
    "include_routers",
]
