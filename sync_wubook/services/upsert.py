"""
Reservation upsert engine and the property-level import drivers.

Raw channel reservations become one document per booked room. Every write
is skipped when the content hash says nothing material changed, and every
real write carries exactly one history entry.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable, Optional

import structlog
from sqlalchemy.engine import Connection, Engine

from sync_wubook.config import Settings
from sync_wubook.db.readers.properties import PropertyConfig, get_properties
from sync_wubook.db.readers.reservations import get_reservation
from sync_wubook.db.session import BoundedWriteSession
from sync_wubook.db.writers.reservations import history_stmt, upsert_reservation_stmt
from sync_wubook.errors import NotFoundError, UpstreamError, ValidationError
from sync_wubook.metrics import reservation_writes
from sync_wubook.normalizers.reservations import (
    CanonicalReservation,
    RoomLine,
    normalize_reservation,
    stay_dates,
)
from sync_wubook.pollers.reservations import (
    poll_reservations_by_arrival,
    poll_reservations_today,
)
from sync_wubook.utils.datetime import (
    local_today,
    parse_iso_date,
    to_eu,
    to_iso_instant,
    utc_now,
)
from sync_wubook.utils.hashing import diff_documents, hash_document
from sync_wubook.utils.money import BREAKDOWN_FIELDS, canonical_breakdown, recompute_to_pay, round2

logger = structlog.get_logger(__name__)

SOURCE_IMPORT = "import_by_arrival"
SOURCE_TODAY = "sync_today"
OPEN_ENDED_TO_DATE = "31/12/2099"
UNKNOWN_GUEST = "N/D"


def reservation_key(property_id: str, reservation_code: str, room_id: str) -> str:
    """Composite document id of one booked room."""
    return f"{property_id}_{reservation_code}_{room_id}"


def _preserved_breakdown(
    stored: dict[str, Any], channel_price: dict[str, Any], extras_per_room: Optional[float]
) -> dict[str, Any]:
    """Stored (host) values win; only null fields are filled from the import."""
    old = canonical_breakdown(stored.get("to_pay_breakdown"))
    imported = {
        "base_amount": round2(channel_price["amount"]),
        "vat_percent": None,
        "vat_amount": None,
        "extras_amount": extras_per_room,
        "fx_rate": None,
    }
    return {
        field: old[field] if old[field] is not None else imported[field]
        for field in BREAKDOWN_FIELDS
    }


def build_room_document(
    canon: CanonicalReservation,
    line: RoomLine,
    prop: PropertyConfig,
    stored: dict[str, Any],
    settings: Settings,
) -> dict[str, Any]:
    """
    Build the imported fields of one room document.

    Pricing is only set when the room is priced in the settlement currency,
    and then only for breakdown fields the stored document leaves null;
    `to_pay` is only set when absent.

    Args:
        canon: Normalized reservation
        line: The room being written
        prop: Property (supplies the room mapping)
        stored: Current stored document ({} when new)
        settings: Runtime settings

    Returns:
        dict: Fields to merge over the stored document.
    """
    mapping = prop.room_map[line.room_id]
    arrival_iso, departure_iso = stay_dates(line)
    extras_per_room = (
        round2(canon.extras_total / max(1, canon.rooms_count))
        if canon.extras_total is not None
        else None
    )

    doc: dict[str, Any] = {
        "reservation_code": canon.code,
        "external_id": canon.external_id,
        "property_id": prop.id,
        "property_name": prop.name,
        "guest_name": canon.guest_name
        or stored.get("guest_name")
        or canon.booker_id
        or UNKNOWN_GUEST,
        "booker_id": canon.booker_id,
        "channel": canon.channel,
        "room_id": line.room_id,
        "room_code": mapping.room_code,
        "room_name": mapping.room_name,
        "arrival": line.arrival,
        "arrival_iso": arrival_iso,
        "departure": line.departure,
        "departure_iso": departure_iso,
        "adults": line.adults,
        "children": line.children,
        "status": canon.status,
        "is_cancelled": False,
        "rooms_count": canon.rooms_count,
        "extras_total": canon.extras_total,
        "extras_per_room": extras_per_room,
    }
    if line.price:
        doc["channel_price"] = line.price

    if line.price and line.price["currency"] == settings.settlement_currency.upper():
        breakdown = _preserved_breakdown(stored, line.price, extras_per_room)
        doc["currency"] = settings.settlement_currency.upper()
        doc["to_pay_breakdown"] = breakdown
        if stored.get("to_pay") is None:
            doc["to_pay"] = recompute_to_pay(breakdown)["total"]

    return doc


@dataclass
class RoomWrite:
    """A planned room document write and its history entry."""

    document: dict[str, Any]
    diff: dict[str, Any]
    hash_from: Optional[str]
    hash_to: str
    change_type: str
    imported: dict[str, Any]


def plan_room_write(
    canon: CanonicalReservation,
    line: RoomLine,
    prop: PropertyConfig,
    stored: Optional[dict[str, Any]],
    settings: Settings,
    now: datetime,
) -> Optional[RoomWrite]:
    """
    Merge the imported fields of one room over its stored document.

    Returns:
        Optional[RoomWrite]: None when the stored document would not change.
    """
    existed = stored is not None
    old = stored or {}
    base = build_room_document(canon, line, prop, old, settings)
    new_doc = {**old, **base}
    new_doc["created_at"] = old.get("created_at") or to_iso_instant(now)
    new_doc["updated_at"] = to_iso_instant(now)
    if not existed:
        new_doc["enrichment_state"] = "pending"

    diff = diff_documents(old, new_doc)
    if existed and not diff:
        return None

    hash_to = hash_document(new_doc)
    new_doc["content_hash"] = hash_to
    return RoomWrite(
        document=new_doc,
        diff=diff,
        hash_from=(old.get("content_hash") or hash_document(old)) if existed else None,
        hash_to=hash_to,
        change_type="updated" if existed else "created",
        imported=base,
    )


def write_room(
    conn: Connection,
    key: str,
    canon: CanonicalReservation,
    line: RoomLine,
    prop: PropertyConfig,
    settings: Settings,
    source_tag: str,
) -> bool:
    """
    Re-plan one room against the locked stored row and write it.

    Runs inside the flush transaction, so host edits committed after the
    run first read the document are merged instead of overwritten.

    Returns:
        bool: False when the current document already matches.
    """
    now = utc_now()
    planned = plan_room_write(
        canon, line, prop, get_reservation(conn, key, for_update=True), settings, now
    )
    if planned is None:
        logger.debug("room_write_unchanged_at_flush", reservation_id=key)
        return False

    conn.execute(upsert_reservation_stmt(conn.dialect.name, key, planned.document, now))
    conn.execute(
        history_stmt(
            key,
            now,
            source=source_tag,
            change_type=planned.change_type,
            diff=planned.diff,
            hash_from=planned.hash_from,
            hash_to=planned.hash_to,
            snapshot_after=planned.document,
            context={"property_id": prop.id},
            payload={
                "channel_price_set": "channel_price" in planned.imported,
                "to_pay_set_auto": "to_pay" in planned.imported,
            },
        )
    )
    reservation_writes.labels(source=source_tag, change_type=planned.change_type).inc()
    return True


def upsert_reservations(
    engine: Engine,
    raw: list[dict[str, Any]],
    prop: PropertyConfig,
    settings: Settings,
    dry_run: bool = False,
    source_tag: str = SOURCE_IMPORT,
) -> dict[str, int]:
    """
    Turn raw reservations into per-room documents and write what changed.

    Counting happens against the documents read up front; each write is
    then re-applied to the row as it stands when the batch is committed.

    Args:
        engine: SQLAlchemy Engine
        raw: Raw channel reservations of one property
        prop: Property the reservations belong to
        settings: Runtime settings
        dry_run: If True, count what would be written without writing
        source_tag: Recorded as the history entry source

    Returns:
        dict: `upserts`, `skipped` (unmapped rooms or missing dates),
        `skipped_cancelled` and `unchanged` counts.
    """
    counts = {"upserts": 0, "skipped": 0, "skipped_cancelled": 0, "unchanged": 0}
    if not raw:
        return counts

    # Documents planned earlier in this run; the store may not have them yet
    written: dict[str, dict[str, Any]] = {}

    with BoundedWriteSession(engine, max_ops=settings.max_batch_ops) as session:
        for item in raw:
            canon = normalize_reservation(item, settings.settlement_currency)
            if canon.cancelled:
                counts["skipped_cancelled"] += 1
                continue

            for line in canon.rooms:
                if not line.room_id or line.room_id not in prop.room_map:
                    counts["skipped"] += 1
                    continue
                if not line.arrival or not line.departure:
                    counts["skipped"] += 1
                    continue
                if line.reservation_arrival and line.reservation_arrival != line.arrival:
                    logger.warning(
                        "arrival_mismatch",
                        reservation_code=canon.code,
                        reservation_arrival=line.reservation_arrival,
                        room_arrival=line.arrival,
                        source=source_tag,
                    )

                key = reservation_key(prop.id, canon.code, line.room_id)
                if key in written:
                    stored: Optional[dict[str, Any]] = written[key]
                else:
                    with engine.connect() as conn:
                        stored = get_reservation(conn, key)

                planned = plan_room_write(canon, line, prop, stored, settings, utc_now())
                if planned is None:
                    counts["unchanged"] += 1
                    continue
                counts["upserts"] += 1

                if dry_run:
                    continue

                write = partial(
                    write_room,
                    key=key,
                    canon=canon,
                    line=line,
                    prop=prop,
                    settings=settings,
                    source_tag=source_tag,
                )
                session.defer(write, ops=2)
                written[key] = planned.document

    logger.info(
        "upsert_completed", property_id=prop.id, source=source_tag, dry_run=dry_run, **counts
    )
    return counts


def _as_eu_date(value: Optional[str], field: str) -> Optional[str]:
    """Accept `dd/mm/yyyy` or ISO `yyyy-mm-dd`; return the channel's format."""
    if value is None or value == "":
        return None
    text = str(value).strip()
    if "/" in text:
        parts = text.split("/")
        if len(parts) == 3 and all(p.isdigit() for p in parts):
            return text
    else:
        day = parse_iso_date(text)
        if day is not None:
            return to_eu(day)
    raise ValidationError(f"Invalid {field}: {value!r}")


def _run_per_property(
    engine: Engine,
    settings: Settings,
    property_ids: Optional[list[str]],
    dry_run: bool,
    source_tag: str,
    fetch: Callable[[PropertyConfig], list[dict[str, Any]]],
    extra: dict[str, Any],
) -> dict[str, Any]:
    with engine.connect() as conn:
        properties = get_properties(conn, property_ids)
    if property_ids and not properties:
        raise NotFoundError(f"No properties found for ids {property_ids}")

    summary: list[dict[str, Any]] = []
    errors: list[dict[str, Any]] = []
    skipped_properties = 0

    for prop in properties:
        item: dict[str, Any] = {"property": {"id": prop.id, "name": prop.name}, **extra}
        if not prop.api_key:
            logger.warning("property_skipped_missing_credential", property_id=prop.id)
            skipped_properties += 1
            summary.append({**item, "status": "skipped", "reason": "missing_credential"})
            continue

        logger.info("property_sync_started", property_id=prop.id, source=source_tag)
        try:
            raw = fetch(prop)
        except UpstreamError as e:
            logger.error("property_fetch_failed", property_id=prop.id, error=str(e))
            errors.append({"property_id": prop.id, "error": str(e)})
            summary.append({**item, "status": "error", "error": str(e)})
            continue

        result = upsert_reservations(engine, raw, prop, settings, dry_run, source_tag)
        summary.append(
            {**item, "status": "ok", "total_found": len(raw), **result, "dry_run": dry_run}
        )

    return {
        "ok": True,
        "dry_run": dry_run,
        **extra,
        "summary": summary,
        "skipped_properties": skipped_properties,
        "errors": errors,
    }


def import_by_arrival(
    engine: Engine,
    settings: Settings,
    property_ids: Optional[list[str]] = None,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    """
    Import reservations by arrival date for each property.

    Without `from_date` the import runs in auto mode over tomorrow and the
    day after (property timezone). With only `from_date`, the range is open
    ended.

    Args:
        engine: SQLAlchemy Engine
        settings: Runtime settings
        property_ids: Properties to import (default: every active property)
        from_date: First arrival date, `dd/mm/yyyy` or `yyyy-mm-dd`
        to_date: Last arrival date, same formats
        dry_run: If True, skip DB writes

    Returns:
        dict: `{ok, dry_run, mode, range, summary[], skipped_properties, errors[]}`

    Raises:
        ValidationError: If a date cannot be parsed.
        NotFoundError: If explicit property ids match nothing.
    """
    start = _as_eu_date(from_date, "from_date")
    end = _as_eu_date(to_date, "to_date")
    if start is None:
        mode = "auto_future_sync"
        today = local_today(settings.timezone)
        start, end = to_eu(today + timedelta(days=1)), to_eu(today + timedelta(days=2))
    else:
        mode = "manual"
        end = end or OPEN_ENDED_TO_DATE

    logger.info(
        "import_by_arrival_started", mode=mode, from_date=start, to_date=end, dry_run=dry_run
    )
    range_from, range_to = start, end
    return _run_per_property(
        engine,
        settings,
        property_ids,
        dry_run,
        SOURCE_IMPORT,
        lambda prop: poll_reservations_by_arrival(prop, settings, range_from, range_to),
        {"mode": mode, "range": {"from": range_from, "to": range_to}},
    )


def sync_today(
    engine: Engine,
    settings: Settings,
    property_ids: Optional[list[str]] = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    """
    Sync each property's "today" reservations (arrivals, departures, in-house).

    Same per-property failure isolation as `import_by_arrival`.
    """
    logger.info("sync_today_started", dry_run=dry_run)
    return _run_per_property(
        engine,
        settings,
        property_ids,
        dry_run,
        SOURCE_TODAY,
        lambda prop: poll_reservations_today(prop, settings),
        {"mode": "today"},
    )
