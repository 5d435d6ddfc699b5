"""
FX linking engine.

Annotates each reservation with the daily quote of its check-in date
(`fx_on_checkin`). The annotation is additive and idempotent: it never
touches pricing fields and is only rewritten with `force`. Progress is
tracked per currency by a watermark (`fx_link_meta.last_linked_date`).
"""

from datetime import date, datetime, timedelta
from functools import partial
from typing import Any, Optional

import structlog
from sqlalchemy.engine import Connection, Engine

from sync_wubook.config import Settings
from sync_wubook.db.readers.fx import (
    find_previous_quote_date,
    get_last_quote_date,
    get_link_meta,
    get_quote,
)
from sync_wubook.db.readers.reservations import get_reservation, page_by_arrival
from sync_wubook.db.session import BoundedWriteSession
from sync_wubook.db.writers.fx import link_meta_stmt
from sync_wubook.db.writers.reservations import update_reservation_stmt
from sync_wubook.errors import ValidationError
from sync_wubook.metrics import fx_link_dates
from sync_wubook.utils.datetime import (
    date_range,
    local_now,
    parse_iso_date,
    to_iso_instant,
    utc_now,
)
from sync_wubook.utils.hashing import hash_document

logger = structlog.get_logger(__name__)

# Largest IN (...) list sent per reservation query
PROPERTY_CHUNK_SIZE = 10
MIN_PAGE_SIZE, MAX_PAGE_SIZE = 50, 1000
MAX_BACKFILL_DAYS = 60
QUOTE_SOURCE = "fx_quotes"
FALLBACK_SOURCE = "fx_quotes:fallback"
DEFAULT_HOUSE = "oficial"


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _parse_optional_date(value: Any, field: str) -> Optional[date]:
    if value is None or value == "":
        return None
    parsed = parse_iso_date(value)
    if parsed is None:
        raise ValidationError(f"Invalid {field}: {value!r}")
    return parsed


def _past_cutoff(now: datetime, cutoff: str) -> bool:
    """True once the local clock reaches `HH:MM`."""
    hour, _, minute = cutoff.partition(":")
    return (now.hour, now.minute) >= (int(hour), int(minute or 0))


def _chunks(ids: list[str], size: int) -> list[Optional[list[str]]]:
    if not ids:
        return [None]
    return [ids[i : i + size] for i in range(0, len(ids), size)]


def build_fx_snapshot(
    quote: dict[str, Any], day: date, used_fallback: bool, now: datetime
) -> dict[str, Any]:
    """The `fx_on_checkin` annotation for one check-in date."""
    origin: date = quote["date"]
    return {
        "house": str(quote.get("house") or DEFAULT_HOUSE).lower(),
        "date": day.isoformat(),
        "buy": quote.get("buy"),
        "sell": quote.get("sell"),
        "source": FALLBACK_SOURCE if used_fallback else QUOTE_SOURCE,
        "origin_date": origin.isoformat(),
        "set_at": to_iso_instant(now),
    }


def write_fx_snapshot(
    conn: Connection,
    reservation_id: str,
    quote: dict[str, Any],
    day: date,
    used_fallback: bool,
    force: bool,
) -> bool:
    """
    Set `fx_on_checkin` on the locked stored row, leaving every other field as is.

    Returns:
        bool: False when the row is gone or was linked since it was paged.
    """
    current = get_reservation(conn, reservation_id, for_update=True)
    if current is None or (current.get("fx_on_checkin") and not force):
        return False
    now = utc_now()
    document = {
        **current,
        "fx_on_checkin": build_fx_snapshot(quote, day, used_fallback, now),
        "updated_at": to_iso_instant(now),
    }
    document["content_hash"] = hash_document(document)
    conn.execute(update_reservation_stmt(reservation_id, document, now))
    return True


def _link_date(
    engine: Engine,
    session: BoundedWriteSession,
    day: date,
    quote: dict[str, Any],
    used_fallback: bool,
    property_ids: list[str],
    page_size: int,
    force: bool,
    dry_run: bool,
) -> dict[str, int]:
    matched = skipped_existing = updated = 0

    for chunk in _chunks(property_ids, PROPERTY_CHUNK_SIZE):
        after_id: Optional[str] = None
        while True:
            with engine.connect() as conn:
                page = page_by_arrival(conn, day, chunk, page_size, after_id)
            if not page:
                break

            for res_id, doc in page:
                matched += 1
                if doc.get("fx_on_checkin") and not force:
                    skipped_existing += 1
                    continue
                updated += 1
                if dry_run:
                    continue
                session.defer(
                    partial(
                        write_fx_snapshot,
                        reservation_id=res_id,
                        quote=quote,
                        day=day,
                        used_fallback=used_fallback,
                        force=force,
                    )
                )

            after_id = page[-1][0]
            if len(page) < page_size:
                break

    return {"matched": matched, "skipped_existing": skipped_existing, "updated": updated}


def link_fx(
    engine: Engine,
    settings: Settings,
    since: Any = None,
    until: Any = None,
    force: bool = False,
    dry_run: bool = True,
    property_ids: Optional[list[str]] = None,
    page_size: int = 500,
    backfill_days: Optional[int] = None,
    currency: Optional[str] = None,
) -> dict[str, Any]:
    """
    Attach the check-in day's FX quote to reservations over a date range.

    Range: `since` (else the day after the watermark, else the last quote
    date minus `backfill_days`) through `until` (else today), clamped to
    today and to the last quote date. Today is kept past the last quote
    date once the fallback cutoff has passed; its quote then falls back to
    the most recent one within the lookback window.

    Args:
        engine: SQLAlchemy Engine
        settings: Runtime settings
        since: First check-in date (`yyyy-mm-dd`)
        until: Last check-in date (`yyyy-mm-dd`)
        force: Rewrite existing annotations
        dry_run: Count without writing (default True); the watermark is
            only advanced when False
        property_ids: Restrict to these properties
        page_size: Reservations read per query (clamped to 50..1000)
        backfill_days: Lookback without a watermark (clamped to 0..60)
        currency: Quoted currency (default: settlement currency)

    Returns:
        dict: Summary with `range`, `totals` and `per_date`; dates without a
        quote are reported with `status: "no_quote"`.

    Raises:
        ValidationError: If `since` or `until` is not a date.
    """
    currency = (currency or settings.settlement_currency).upper()
    since_date = _parse_optional_date(since, "since")
    until_date = _parse_optional_date(until, "until")
    page_size = _clamp(int(page_size or 500), MIN_PAGE_SIZE, MAX_PAGE_SIZE)
    backfill = _clamp(
        settings.fx_backfill_days if backfill_days is None else int(backfill_days),
        0,
        MAX_BACKFILL_DAYS,
    )
    property_ids = [str(p) for p in property_ids or []]

    now_local = local_now(settings.timezone)
    today = now_local.date()
    after_cutoff = _past_cutoff(now_local, settings.fx_fallback_cutoff)

    with engine.connect() as conn:
        meta = get_link_meta(conn, currency)
        last_quote_date = get_last_quote_date(conn, currency) or meta["last_quote_date"]
    last_linked_before = meta["last_linked_date"]

    summary: dict[str, Any] = {
        "ok": True,
        "dry_run": dry_run,
        "force": force,
        "currency": currency,
        "last_quote_date": last_quote_date.isoformat() if last_quote_date else None,
        "last_linked_date_before": last_linked_before.isoformat() if last_linked_before else None,
        "property_ids_count": len(property_ids),
    }

    if last_quote_date is None:
        logger.warning("fx_link_no_quotes", currency=currency)
        return {**summary, "reason": "no_quotes", "range": None}

    if since_date:
        start = since_date
    elif last_linked_before:
        start = last_linked_before + timedelta(days=1)
    else:
        start = last_quote_date - timedelta(days=backfill)

    end = min(until_date or today, today)
    if end > last_quote_date and (end != today or not after_cutoff):
        end = last_quote_date

    summary["range"] = {"start": start.isoformat(), "end": end.isoformat()}
    logger.info(
        "fx_link_range_computed",
        start=start.isoformat(),
        end=end.isoformat(),
        last_quote_date=last_quote_date.isoformat(),
        after_cutoff=after_cutoff,
    )

    if start > end:
        return {**summary, "reason": "no_work"}

    per_date: list[dict[str, Any]] = []
    with BoundedWriteSession(engine, max_ops=settings.max_batch_ops) as session:
        for day in date_range(start, end):
            with engine.connect() as conn:
                quote = get_quote(conn, currency, day)
                used_fallback = False
                if quote is None and day == today and after_cutoff:
                    previous = find_previous_quote_date(
                        conn, currency, day, settings.fx_fallback_lookback_days
                    )
                    if previous is not None:
                        quote = get_quote(conn, currency, previous)
                        used_fallback = quote is not None

            if quote is None:
                per_date.append({"date": day.isoformat(), "status": "no_quote"})
                fx_link_dates.labels(status="no_quote").inc()
                continue

            counts = _link_date(
                engine, session, day, quote, used_fallback, property_ids, page_size, force, dry_run
            )
            entry = {"date": day.isoformat(), "status": "ok", **counts}
            if used_fallback:
                entry["fallback_from"] = quote["date"].isoformat()
            per_date.append(entry)
            fx_link_dates.labels(status="ok").inc()
            logger.info("fx_link_date_done", date=day.isoformat(), **counts)

        if not dry_run:
            session.add(
                link_meta_stmt(session.dialect_name, currency, end, last_quote_date, utc_now())
            )

    summary["totals"] = {
        "dates": len(per_date),
        "updated": sum(d.get("updated", 0) for d in per_date),
        "matched": sum(d.get("matched", 0) for d in per_date),
        "skipped_existing": sum(d.get("skipped_existing", 0) for d in per_date),
        "no_quote_days": sum(1 for d in per_date if d["status"] == "no_quote"),
    }
    summary["per_date"] = per_date
    logger.info("fx_link_completed", range=summary["range"], totals=summary["totals"])
    return summary
