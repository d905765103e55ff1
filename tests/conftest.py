from __future__ import annotations

import os
from pathlib import Path

import pytest

from printcraft.config import AppConfig, build_engine, build_session_factory
from printcraft.db import init_db
from printcraft.infrastructure.queue import QueueConfig, SqlAlchemyWorkQueue
from printcraft.media.artifact_store import FilesystemArtifactStore
from printcraft.repositories import JobRepository
from tests.helpers.clock import FakeClock

os.environ.setdefault("PRINTCRAFT_JWT_SECRET", "test-signing-key")

CDN_BASE_URL = "https://cdn.printcraft.test/artifacts"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        database_url=f"sqlite:///{tmp_path / 'printcraft.db'}",
        artifact_root=tmp_path / "artifacts",
        artifact_public_base_url=CDN_BASE_URL,
        jwt_secret="test-signing-key",
        provider_api_token="r8-test-token",
    )


@pytest.fixture
def engine(app_config: AppConfig):
    engine = build_engine(app_config)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def repository(session_factory) -> JobRepository:
    return JobRepository(session_factory)


@pytest.fixture
def queue(session_factory) -> SqlAlchemyWorkQueue:
    return SqlAlchemyWorkQueue(
        session_factory,
        config=QueueConfig(visibility_timeout_seconds=90.0, premium_boost_seconds=30.0),
    )


@pytest.fixture
def artifact_store(tmp_path: Path) -> FilesystemArtifactStore:
    return FilesystemArtifactStore(root=tmp_path / "artifacts", public_base_url=CDN_BASE_URL)
