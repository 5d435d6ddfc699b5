"""
Prometheus metrics endpoint.

Example:
    GET /metrics

    Response:
        # HELP wubook_polls_total Total number of reservation polls (success and failure)
        # TYPE wubook_polls_total counter
        wubook_polls_total{kind="today",property_id="106",status="success"} 12.0
        ...
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics", response_class=Response)
async def metrics() -> Any:
    """
    Prometheus metrics endpoint.

    Returns:
        Response: Metrics in Prometheus text exposition format
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
