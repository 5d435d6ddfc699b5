import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from sync_wubook.metrics import reservation_writes
from sync_wubook.routes.metrics import router


@pytest.mark.unit
def test_metrics_endpoint_exposes_wubook_metrics() -> None:
    app = FastAPI()
    app.include_router(router)
    reservation_writes.labels(source="host", change_type="updated").inc()

    response = TestClient(app).get("/metrics")

    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]
    assert "wubook_reservation_writes_total" in response.text
