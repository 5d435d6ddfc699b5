"""
Sync endpoints: reservation import, today's sync, enrichment and FX linking.

Each handler is a thin wrapper that forwards the body to its engine and
returns the engine's summary unchanged.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.engine import Engine

from sync_wubook.config import Settings
from sync_wubook.dependencies import get_db_engine, get_settings
from sync_wubook.routes._helpers import resolve_dry_run, to_http_exception
from sync_wubook.schemas.sync import (
    EnrichPayload,
    FxLinkPayload,
    ImportByArrivalPayload,
    SyncTodayPayload,
)
from sync_wubook.services.enrichment import enrich
from sync_wubook.services.fx_linking import link_fx
from sync_wubook.services.upsert import import_by_arrival, sync_today

router = APIRouter()


@router.post("/wubook/import-by-arrival")
def import_by_arrival_endpoint(
    payload: ImportByArrivalPayload,
    engine: Engine = Depends(get_db_engine),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """
    Import reservations by arrival date for every (or the given) property.

    Returns:
        dict: Per-property summary with upsert counts
    """
    try:
        return import_by_arrival(
            engine,
            settings,
            property_ids=payload.property_ids,
            from_date=payload.from_date,
            to_date=payload.to_date,
            dry_run=resolve_dry_run(payload.dry_run),
        )
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e)


@router.post("/wubook/sync-today")
def sync_today_endpoint(
    payload: SyncTodayPayload,
    engine: Engine = Depends(get_db_engine),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Sync today's arrivals, departures and in-house reservations."""
    try:
        return sync_today(
            engine,
            settings,
            property_ids=payload.property_ids,
            dry_run=resolve_dry_run(payload.dry_run),
        )
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e)


@router.post("/wubook/enrich")
def enrich_endpoint(
    payload: EnrichPayload,
    engine: Engine = Depends(get_db_engine),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """
    Enrich stored reservations with customer, payments, notes and extras.

    Returns:
        dict: Counts of processed, unchanged and skipped reservations
    """
    try:
        return enrich(
            engine,
            settings,
            reservation_id=payload.reservation_id,
            mode=payload.mode,
            limit=payload.limit,
            dry_run=resolve_dry_run(payload.dry_run),
            force_update=payload.force_update,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e)


@router.post("/fx/link")
def link_fx_endpoint(
    payload: FxLinkPayload,
    engine: Engine = Depends(get_db_engine),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Attach the check-in FX snapshot to reservations by arrival date."""
    try:
        return link_fx(engine, settings, **payload.model_dump())
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e)
