"""
Unit tests for the request ID middleware.
"""

from __future__ import annotations

import pytest
import structlog
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from sync_wubook.middleware import RequestIDMiddleware


@pytest.fixture
def client() -> TestClient:
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)

    @app.get("/test")
    async def test_endpoint(request: Request) -> dict[str, str]:
        bound = structlog.contextvars.get_contextvars()
        return {"request_id": request.state.request_id, "bound": bound.get("request_id", "")}

    return TestClient(app)


@pytest.mark.unit
def test_request_id_added_to_response(client: TestClient) -> None:
    response = client.get("/test")

    assert response.status_code == 200
    data = response.json()
    assert len(response.headers["X-Request-ID"]) == 36
    assert data["request_id"] == response.headers["X-Request-ID"]
    assert data["bound"] == data["request_id"]


@pytest.mark.unit
def test_incoming_request_id_is_reused(client: TestClient) -> None:
    response = client.get("/test", headers={"X-Request-ID": "cron-run-1"})

    assert response.headers["X-Request-ID"] == "cron-run-1"
