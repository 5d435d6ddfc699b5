from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.engine import Engine

from sync_wubook.config import Settings
from sync_wubook.dependencies import get_db_engine, get_settings
from sync_wubook.routes._helpers import to_http_exception
from sync_wubook.schemas.reservations import ActorPayload, ReservationActionPayload
from sync_wubook.services.mutations import apply_mutation

router = APIRouter()


@router.post("/reservations/{reservation_id}/actions")
def reservation_action(
    reservation_id: str,
    payload: ReservationActionPayload,
    engine: Engine = Depends(get_db_engine),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """
    Apply one host action to a reservation.

    Args:
        reservation_id: Composite reservation id
        payload: Action name, action input and actor

    Returns:
        dict: `{ok, id, action, updated_fields}`
    """
    actor = payload.actor.model_dump() if isinstance(payload.actor, ActorPayload) else payload.actor
    try:
        return apply_mutation(
            engine, settings, reservation_id, payload.action, payload.payload, actor
        )
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e)
