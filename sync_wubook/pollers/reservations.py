import json
from typing import Any, Callable

import structlog

from sync_wubook.config import DEBUG, Settings
from sync_wubook.db.readers.properties import PropertyConfig
from sync_wubook.metrics import poll_duration, poll_total, records_fetched
from sync_wubook.network.client import fetch_reservations_by_arrival, fetch_today_reservations

logger = structlog.get_logger(__name__)


def _poll(
    prop: PropertyConfig, kind: str, fetch: Callable[[], list[dict[str, Any]]]
) -> list[dict[str, Any]]:
    with poll_duration.labels(property_id=prop.id, kind=kind).time():
        try:
            reservations = fetch()

            if DEBUG and reservations:
                logger.debug("Sample reservation:\n%s", json.dumps(reservations[0], indent=2))

            logger.info(
                "Fetched %d reservations from WuBook [property_id=%s kind=%s]",
                len(reservations),
                prop.id,
                kind,
            )

            records_fetched.labels(property_id=prop.id, kind=kind).inc(len(reservations))
            poll_total.labels(property_id=prop.id, kind=kind, status="success").inc()

            return reservations
        except Exception:
            poll_total.labels(property_id=prop.id, kind=kind, status="failure").inc()
            raise


def poll_reservations_by_arrival(
    prop: PropertyConfig, settings: Settings, from_date: str, to_date: str
) -> list[dict[str, Any]]:
    """
    Fetch raw reservations arriving between two `dd/mm/yyyy` dates.

    Args:
        prop (PropertyConfig): Property with a non-empty API key
        settings (Settings): Runtime settings
        from_date (str): First arrival date
        to_date (str): Last arrival date

    Returns:
        list[dict]: Raw WuBook reservation records
    """
    return _poll(
        prop,
        "by_arrival",
        lambda: fetch_reservations_by_arrival(prop.api_key or "", settings, from_date, to_date),
    )


def poll_reservations_today(prop: PropertyConfig, settings: Settings) -> list[dict[str, Any]]:
    """Fetch the raw "today" reservation list of a property."""
    return _poll(prop, "today", lambda: fetch_today_reservations(prop.api_key or "", settings))
