from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from printcraft.auth import TokenService
from printcraft.config import AppConfig
from printcraft.dependencies import build_artifact_store, build_infrastructure
from printcraft.domain.models import JobPriority
from printcraft.main import create_app
from printcraft.workers import GenerationWorker
from tests.mocks.providers import ScriptedProvider

SIGNING_KEY = "test-signing-key"
VALID_PAYLOAD = {"prompt": "a lighthouse at dusk", "style": "watercolor"}


def _token(owner_id: str = "user-1", tier: JobPriority = JobPriority.STANDARD) -> str:
    return TokenService(signing_key=SIGNING_KEY).issue_token(owner_id, tier=tier)


def _auth(owner_id: str = "user-1", tier: JobPriority = JobPriority.STANDARD) -> dict[str, str]:
    return {"Authorization": f"Bearer {_token(owner_id, tier)}"}


@pytest.fixture
def client(app_config: AppConfig):
    with TestClient(create_app(app_config)) as test_client:
        yield test_client


def _submit(client: TestClient, payload: dict | None = None, **auth) -> str:
    response = client.post("/api/generations", json=payload or VALID_PAYLOAD, headers=_auth(**auth))
    assert response.status_code == 202, response.text
    return response.json()["id"]


def test_submit_returns_accepted_job(client: TestClient) -> None:
    response = client.post("/api/generations", json=VALID_PAYLOAD, headers=_auth())

    assert response.status_code == 202
    body = response.json()
    assert body["state"] == "PENDING"

    status_response = client.get(f"/api/generations/{body['id']}", headers=_auth())
    assert status_response.status_code == 200
    assert status_response.json()["state"] == "QUEUED"
    assert status_response.json()["attempt"] == 0


def test_submit_requires_bearer_token(client: TestClient) -> None:
    response = client.post("/api/generations", json=VALID_PAYLOAD)

    assert response.status_code == 401
    assert response.json() == {"error": {"code": "UNAUTHORIZED", "message": "missing bearer token"}}
    assert response.headers["www-authenticate"] == "Bearer"


def test_submit_rejects_expired_token(client: TestClient) -> None:
    expired = TokenService(signing_key=SIGNING_KEY).issue_token(
        "user-1", issued_at=datetime.now(tz=timezone.utc) - timedelta(days=1)
    )

    response = client.post("/api/generations", json=VALID_PAYLOAD, headers={"Authorization": f"Bearer {expired}"})

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "token expired"


@pytest.mark.parametrize(
    "payload",
    [
        {"prompt": "hi", "style": "watercolor"},
        {"prompt": "a lighthouse at dusk", "style": "oil-on-velvet"},
        {"prompt": "a lighthouse at dusk", "style": "watercolor", "width": 777},
        {"prompt": "a lighthouse at dusk", "style": "watercolor", "params": {"guidance_scale": 99}},
    ],
)
def test_submit_rejects_invalid_request(client: TestClient, payload: dict) -> None:
    response = client.post("/api/generations", json=payload, headers=_auth())

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_REQUEST"


def test_submit_rejects_non_object_body(client: TestClient) -> None:
    response = client.post("/api/generations", json=["not", "an", "object"], headers=_auth())

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_REQUEST"


def test_quota_exhaustion_returns_403(tmp_path) -> None:
    config = AppConfig(
        database_url=f"sqlite:///{tmp_path / 'quota.db'}",
        artifact_root=tmp_path / "artifacts",
        jwt_secret=SIGNING_KEY,
        quota_standard_limit=1,
    )
    with TestClient(create_app(config)) as client:
        assert client.post("/api/generations", json=VALID_PAYLOAD, headers=_auth()).status_code == 202

        response = client.post("/api/generations", json=VALID_PAYLOAD, headers=_auth())

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "QUOTA_EXCEEDED"
        # premium callers draw from their own allowance
        premium = client.post("/api/generations", json=VALID_PAYLOAD, headers=_auth("user-9", JobPriority.PREMIUM))
        assert premium.status_code == 202


def test_foreign_job_is_not_found(client: TestClient) -> None:
    job_id = _submit(client)

    response = client.get(f"/api/generations/{job_id}", headers=_auth("intruder"))

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"
    assert client.get(f"/api/generations/{uuid4()}", headers=_auth()).status_code == 404


def test_list_returns_own_jobs_newest_first(client: TestClient) -> None:
    first = _submit(client)
    second = _submit(client)
    _submit(client, owner_id="someone-else")

    response = client.get("/api/generations", params={"limit": 10}, headers=_auth())

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert {item["id"] for item in body["items"]} == {first, second}


def test_list_rejects_out_of_range_limit(client: TestClient) -> None:
    response = client.get("/api/generations", params={"limit": 0}, headers=_auth())

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_REQUEST"


def test_cancel_is_idempotent(client: TestClient) -> None:
    job_id = _submit(client)

    first = client.post(f"/api/generations/{job_id}/cancel", headers=_auth())
    second = client.post(f"/api/generations/{job_id}/cancel", headers=_auth())

    assert first.status_code == 200
    assert first.json()["state"] == "CANCELLED"
    assert first.json()["error"]["kind"] == "CANCELLED"
    assert second.json() == first.json()
    assert client.get("/health").json()["queue_depth"] == 0


def test_events_stream_pushes_projection_then_changes(client: TestClient) -> None:
    job_id = _submit(client)

    with client.websocket_connect(f"/api/generations/{job_id}/events?token={_token()}") as websocket:
        snapshot = websocket.receive_json()
        assert snapshot["id"] == job_id
        assert snapshot["state"] == "QUEUED"

        client.post(f"/api/generations/{job_id}/cancel", headers=_auth())

        event = websocket.receive_json()
        assert event["id"] == job_id
        assert event["state"] == "CANCELLED"
        assert event["error_kind"] == "CANCELLED"


def test_events_stream_follows_job_finished_by_worker_process(app_config: AppConfig) -> None:
    config = app_config.model_copy(update={"events_refresh_interval_seconds": 0.05})
    worker_infra = build_infrastructure(config)
    # built without the API's event broker, like a worker started by run_worker.py
    worker = GenerationWorker(
        repository=worker_infra.repository,
        queue=worker_infra.queue,
        provider=ScriptedProvider(inline_output=True),
        artifact_store=build_artifact_store(config),
    )

    with TestClient(create_app(config)) as client:
        job_id = _submit(client)
        with client.websocket_connect(f"/api/generations/{job_id}/events?token={_token()}") as websocket:
            assert websocket.receive_json()["state"] == "QUEUED"

            assert asyncio.run(worker.run_once())

            frames = [websocket.receive_json()]
            while frames[-1]["state"] == "PROCESSING" and len(frames) < 5:
                frames.append(websocket.receive_json())
            with pytest.raises(WebSocketDisconnect):
                websocket.receive_json()
    worker_infra.engine.dispose()

    assert frames[-1]["state"] == "COMPLETED"
    assert frames[-1]["id"] == job_id
    assert frames[-1]["result_url"].endswith(f"/generations/user-1/{job_id}.png")


def test_events_stream_closes_for_terminal_job(client: TestClient) -> None:
    job_id = _submit(client)
    client.post(f"/api/generations/{job_id}/cancel", headers=_auth())

    with client.websocket_connect(f"/api/generations/{job_id}/events?token={_token()}") as websocket:
        assert websocket.receive_json()["state"] == "CANCELLED"
        with pytest.raises(WebSocketDisconnect):
            websocket.receive_json()


def test_events_stream_requires_valid_token(client: TestClient) -> None:
    job_id = _submit(client)

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(f"/api/generations/{job_id}/events?token=garbage"):
            pass

    assert excinfo.value.code == 1008


def test_events_stream_hides_foreign_job(client: TestClient) -> None:
    job_id = _submit(client)

    with client.websocket_connect(f"/api/generations/{job_id}/events?token={_token('intruder')}") as websocket:
        assert websocket.receive_json()["error"]["code"] == "NOT_FOUND"
        with pytest.raises(WebSocketDisconnect):
            websocket.receive_json()


def test_health_reports_queue_depth(client: TestClient) -> None:
    _submit(client)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "ok", "queue_depth": 1}


def test_metrics_are_exposed(client: TestClient) -> None:
    _submit(client)

    response = client.get("/metrics")

    assert response.status_code == 200
    assert 'generation_jobs{state="QUEUED"} 1' in response.text
    assert 'generation_queue_depth{priority="standard",status="ready"} 1' in response.text


def test_artifacts_are_served(client: TestClient, app_config: AppConfig) -> None:
    target = app_config.artifact_root / "generations" / "user-1" / "sample.png"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(b"\x89PNG")

    response = client.get("/artifacts/generations/user-1/sample.png")

    assert response.status_code == 200
    assert response.content == b"\x89PNG"


def test_in_process_workers_complete_submitted_job(app_config: AppConfig) -> None:
    config = app_config.model_copy(update={"run_workers_in_api": True, "worker_idle_sleep_seconds": 0.05})
    provider = ScriptedProvider(inline_output=True)

    with TestClient(create_app(config, provider=provider)) as client:
        job_id = _submit(client)
        body = {}
        for _ in range(100):
            body = client.get(f"/api/generations/{job_id}", headers=_auth()).json()
            if body["state"] == "COMPLETED":
                break
            time.sleep(0.05)

    assert body["state"] == "COMPLETED"
    assert body["result_url"] == f"{config.artifact_public_base_url}/generations/user-1/{job_id}.webp"
    assert body["result"]["content_type"] == "image/webp"
    assert len(provider.submitted) == 1
