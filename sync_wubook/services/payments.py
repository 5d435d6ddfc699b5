"""Payment status of a reservation, with the FX rate it is computed at."""

from datetime import date
from typing import Any, Optional

import structlog
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from sync_wubook.config import Settings
from sync_wubook.db.readers.fx import get_sell_rate
from sync_wubook.utils.datetime import local_today, parse_iso_date
from sync_wubook.utils.money import (
    canonical_breakdown,
    compute_paid,
    payment_status,
    to_number_or_none,
)

logger = structlog.get_logger(__name__)


def fx_reference_date(document: dict[str, Any], settings: Settings) -> date:
    """Arrival date of the reservation, or today when it has none."""
    return parse_iso_date(document.get("arrival_iso")) or local_today(settings.timezone)


def resolve_fx_rate(
    conn: Connection,
    settings: Settings,
    document: dict[str, Any],
    override: Any = None,
) -> tuple[Optional[float], date]:
    """
    Rate used to convert local-currency payments into the settlement currency.

    Order: the caller's override, the host-set breakdown rate, then the
    dated quote (sell) for the reservation's arrival date. A lookup failure
    degrades to no rate.

    Returns:
        tuple: (rate or None, reference date)
    """
    ref_date = fx_reference_date(document, settings)
    for candidate in (override, canonical_breakdown(document.get("to_pay_breakdown"))["fx_rate"]):
        rate = to_number_or_none(candidate)
        if rate is not None and rate > 0:
            return rate, ref_date
    try:
        return get_sell_rate(conn, settings.settlement_currency, ref_date), ref_date
    except SQLAlchemyError as e:
        logger.warning("fx_rate_lookup_failed", date=ref_date.isoformat(), error=str(e))
        return None, ref_date


def evaluate_payment_status(
    conn: Connection,
    settings: Settings,
    document: dict[str, Any],
    payments: list[dict[str, Any]],
    to_pay: Any,
    override: Any = None,
) -> dict[str, Any]:
    """
    Compute `payment_status` for a set of payments.

    Returns:
        dict: `status`, `paid`, `fx_rate`, `fx_date`, `fx_note`.
    """
    rate, ref_date = resolve_fx_rate(conn, settings, document, override)
    paid, rate_used, note = compute_paid(
        payments, settings.settlement_currency, settings.local_currency, rate
    )
    return {
        "status": payment_status(to_pay, paid),
        "paid": paid,
        "fx_rate": rate_used,
        "fx_date": ref_date.isoformat(),
        "fx_note": note,
    }
