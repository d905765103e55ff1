"""Application configuration for the generation pipeline.

Values are read from ``PRINTCRAFT_*`` environment variables. The defaults are
tuned for the provider's typical latency: a generation usually finishes within
10-40 seconds, so workers poll every 5 seconds and a job whose row has not
moved for 2 minutes is considered stuck.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


def _default_artifact_root() -> Path:
    return Path("./var/artifacts")


class AppConfig(BaseSettings):
    """Pydantic settings container shared by the API, workers and scripts."""

    model_config = SettingsConfigDict(env_prefix="PRINTCRAFT_", extra="ignore")

    database_url: str = Field(
        default="sqlite:///printcraft.db",
        description="SQLAlchemy URL of the job record store and the work queue.",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements.")

    # Provider ------------------------------------------------------------
    provider_name: str = Field(
        default="replicate",
        description="Identifier of the generation provider adapter.",
    )
    provider_api_token: str = Field(
        default="",
        description="API token for the generation provider.",
    )
    provider_base_url: str = Field(
        default="https://api.replicate.com",
        description="Base URL of the provider HTTP API.",
    )
    provider_model_version: str = Field(
        default="39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b",
        description="Model version submitted with each prediction.",
    )
    provider_request_timeout_seconds: float = Field(
        default=30.0,
        ge=0.1,
        description="Upper bound for a single provider HTTP call.",
    )

    # Artifact storage ----------------------------------------------------
    artifact_root: Path = Field(
        default_factory=_default_artifact_root,
        description="Filesystem root where finished artifacts are written.",
    )
    artifact_public_base_url: str = Field(
        default="http://localhost:8000/artifacts",
        description="Public URL prefix under which artifacts are served.",
    )
    serve_artifacts: bool = Field(
        default=True,
        description="Mount ``artifact_root`` under ``/artifacts`` in the API process.",
    )
    artifact_image_format: Literal["original", "webp", "jpeg", "png"] = Field(
        default="webp",
        description="Format generated images are re-encoded to; ``original`` stores provider bytes.",
    )
    artifact_image_quality: int = Field(default=85, ge=1, le=100)
    artifact_max_width: int | None = Field(default=None, ge=1)
    artifact_max_height: int | None = Field(default=None, ge=1)

    # Queue ---------------------------------------------------------------
    queue_visibility_timeout_seconds: float = Field(
        default=90.0,
        ge=1.0,
        description="Lease duration of a dequeued message before redelivery.",
    )
    queue_premium_boost_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Head start premium jobs get over standard jobs.",
    )

    # Worker --------------------------------------------------------------
    worker_count: int = Field(default=2, ge=1, description="Worker loops per process.")
    worker_concurrency: int = Field(
        default=4,
        ge=1,
        description="In-flight jobs per process across all worker loops.",
    )
    worker_idle_sleep_seconds: float = Field(
        default=1.0,
        ge=0.01,
        description="Sleep between dequeue attempts when the queue is empty.",
    )
    worker_poll_interval_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Delay before polling a running provider prediction again.",
    )
    worker_max_attempts: int = Field(
        default=5,
        ge=1,
        description="Retry ceiling for transient provider and storage failures.",
    )
    worker_backoff_base_seconds: float = Field(default=2.0, ge=0.0)
    worker_backoff_cap_seconds: float = Field(default=60.0, ge=0.0)
    worker_backoff_jitter_seconds: float = Field(default=1.0, ge=0.0)

    # Reconciliation ------------------------------------------------------
    sweep_interval_seconds: float = Field(default=60.0, ge=1.0)
    sweep_stuck_threshold_seconds: float = Field(
        default=120.0,
        ge=1.0,
        description="QUEUED/PROCESSING rows idle for longer are re-enqueued.",
    )
    sweep_pending_grace_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="PENDING rows older than this are re-enqueued.",
    )
    sweep_batch_size: int = Field(default=200, ge=1)

    # Auth and quota ------------------------------------------------------
    jwt_secret: str = Field(
        default="change-me",
        min_length=1,
        description="HS256 secret used to verify client bearer tokens.",
    )
    quota_window_hours: int = Field(default=24, ge=1)
    quota_standard_limit: int = Field(default=10, ge=0)
    quota_premium_limit: int = Field(default=200, ge=0)

    # Push channel --------------------------------------------------------
    events_refresh_interval_seconds: float = Field(
        default=2.0,
        gt=0.0,
        description="How often a websocket re-reads the job when no event arrives.",
    )

    # Background tasks ----------------------------------------------------
    run_workers_in_api: bool = Field(
        default=False,
        description="Start the worker pool and sweep inside the API process.",
    )

    @classmethod
    def build_default(cls) -> "AppConfig":
        """Construct configuration from the environment."""

        return cls()


def build_engine(config: AppConfig) -> Engine:
    """Create the SQLAlchemy engine for ``config.database_url``."""

    url = config.database_url
    kwargs: dict[str, Any] = {"future": True, "echo": config.database_echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


__all__ = ["AppConfig", "build_engine", "build_session_factory"]
