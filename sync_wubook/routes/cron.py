from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from sync_wubook.config import Settings
from sync_wubook.dependencies import get_db_engine, get_settings
from sync_wubook.routes._helpers import to_http_exception
from sync_wubook.schemas.cron import OrchestratorPayload
from sync_wubook.services.orchestrator import run_orchestrator

router = APIRouter()


@router.post("/cron/orchestrator", response_model=None)
def orchestrator_endpoint(
    payload: OrchestratorPayload,
    engine: Engine = Depends(get_db_engine),
    settings: Settings = Depends(get_settings),
) -> Any:
    """
    Run the scheduled sync sequence once.

    Returns 423 with the lock holder when another run is in progress.
    """
    try:
        result = run_orchestrator(engine, settings, **payload.model_dump())
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e)

    if result.get("conflict"):
        return JSONResponse(status_code=status.HTTP_423_LOCKED, content=result)
    return result
