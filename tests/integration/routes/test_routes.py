"""
Integration tests for the HTTP surface with the engine and settings
dependencies pointed at the in-memory store.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Callable, Generator
from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from sync_wubook.config import Settings
from sync_wubook.db.readers.properties import PropertyConfig
from sync_wubook.dependencies import get_db_engine, get_settings
from sync_wubook.main import app
from sync_wubook.services.locks import LeaseLock
from sync_wubook.services.upsert import upsert_reservations

RES_ID = "106_ABC123_11"


@pytest.fixture
def client(engine: Engine, settings: Settings) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_db_engine] = lambda: engine
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def seeded(
    engine: Engine,
    settings: Settings,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> str:
    upsert_reservations(engine, [make_raw()], prop, settings)
    return RES_ID


@pytest.mark.integration
def test_health_and_ready(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}

    response = client.get("/ready")

    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "ok"


@pytest.mark.integration
def test_ready_returns_503_when_database_is_down(client: TestClient) -> None:
    with patch("sync_wubook.routes.health.check_engine_health", return_value=False):
        response = client.get("/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "not ready"


@pytest.mark.integration
def test_reservation_action(client: TestClient, seeded: str) -> None:
    response = client.post(
        f"/reservations/{seeded}/actions",
        json={
            "action": "addNote",
            "payload": {"text": "Check-in tardío"},
            "actor": {"uid": "u1", "display_name": "Lucía"},
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert "notes" in body["updated_fields"]
    assert "X-Request-ID" in response.headers


@pytest.mark.integration
@pytest.mark.parametrize(
    "reservation_id, body, status_code",
    [
        (RES_ID, {"action": "addNote", "payload": {"text": ""}}, 400),
        (RES_ID, {"action": "refund"}, 400),
        ("106_NOPE_11", {"action": "checkin"}, 404),
    ],
)
def test_reservation_action_errors(
    client: TestClient, seeded: str, reservation_id: str, body: dict[str, Any], status_code: int
) -> None:
    response = client.post(f"/reservations/{reservation_id}/actions", json=body)

    assert response.status_code == status_code


@pytest.mark.integration
@patch("sync_wubook.services.upsert.poll_reservations_today")
def test_sync_today_endpoint(
    mock_poll: Mock,
    client: TestClient,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> None:
    mock_poll.return_value = [make_raw()]

    response = client.post("/wubook/sync-today", json={"property_ids": ["106"], "dry_run": True})

    assert response.status_code == 200
    body = response.json()
    assert body["dry_run"] is True
    assert body["summary"][0]["upserts"] == 1


@pytest.mark.integration
def test_import_with_bad_date_is_400(client: TestClient, prop: PropertyConfig) -> None:
    response = client.post("/wubook/import-by-arrival", json={"from_date": "soon"})

    assert response.status_code == 400


@pytest.mark.integration
def test_enrich_with_unknown_mode_is_400(client: TestClient) -> None:
    response = client.post("/wubook/enrich", json={"mode": "everything"})

    assert response.status_code == 400


@pytest.mark.integration
def test_fx_link_endpoint_defaults_to_dry_run(client: TestClient) -> None:
    response = client.post("/fx/link", json={})

    assert response.status_code == 200
    assert response.json()["dry_run"] is True
    assert response.json()["reason"] == "no_quotes"


@pytest.mark.integration
def test_orchestrator_conflict_is_423(
    client: TestClient, engine: Engine, settings: Settings
) -> None:
    LeaseLock(engine, settings.lock_name, "other-runner").acquire(timedelta(minutes=5))

    response = client.post("/cron/orchestrator", json={"dry_run": True})

    assert response.status_code == 423
    assert response.json()["holder"] == "other-runner"


@pytest.mark.integration
@patch("sync_wubook.services.orchestrator.requests.post")
def test_orchestrator_runs(mock_post: Mock, client: TestClient) -> None:
    mock_post.return_value = Mock(status_code=200, json=Mock(return_value={"ok": True}))

    response = client.post("/cron/orchestrator", json={"dry_run": True, "retries": 0})

    assert response.status_code == 200
    assert len(response.json()["results"]) == 4
