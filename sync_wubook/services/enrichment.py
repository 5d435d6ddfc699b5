"""
Enrichment merger.

Fetches customer identity, payments, notes and extras for stored
reservations and merges them into the unified lists. Pricing fields set by
the import or by hosts are never replaced: the breakdown's extras amount is
only filled while it is still null.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Any, Callable, Optional

import structlog
from sqlalchemy.engine import Connection, Engine

from sync_wubook.cache import CredentialCache, get_credential_cache
from sync_wubook.config import Settings
from sync_wubook.db.readers.properties import get_api_key
from sync_wubook.db.readers.reservations import get_reservation, select_for_enrichment
from sync_wubook.db.session import BoundedWriteSession
from sync_wubook.db.writers.reservations import (
    history_stmt,
    payment_ledger_stmt,
    update_reservation_stmt,
)
from sync_wubook.errors import InvalidRequestError, UpstreamError, ValidationError
from sync_wubook.metrics import enrichment_outcomes, reservation_writes
from sync_wubook.network.client import (
    fetch_customer,
    fetch_extras,
    fetch_notes,
    fetch_payments,
)
from sync_wubook.normalizers.unified import (
    PAYMENTS,
    identity_key,
    map_external_extras,
    map_external_notes,
    map_external_payments,
    reconcile_extras,
    reconcile_notes,
    reconcile_payments,
    sum_extras,
)
from sync_wubook.services.payments import evaluate_payment_status
from sync_wubook.utils.datetime import local_today, to_iso_instant, utc_now
from sync_wubook.utils.hashing import diff_documents, hash_document, stable_json
from sync_wubook.utils.money import canonical_breakdown, recompute_to_pay

logger = structlog.get_logger(__name__)

ENRICHMENT_SOURCE = "enrichment"
ENRICHMENT_ACTOR = "wubook_sync"
MODES = ("pending", "active", "force")
MAX_FETCH_WORKERS = 4


def customer_fields(customer: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Map a customer record onto the document's guest fields; {} when unknown."""
    if not customer:
        return {}
    main = customer.get("main_info") or {}
    contacts = customer.get("contacts") or {}
    full_name = f"{main.get('name') or ''} {main.get('surname') or ''}".strip()
    fields = {
        "guest_email": contacts.get("email") or None,
        "guest_phone": contacts.get("phone") or None,
        "guest_address": main.get("address") or None,
        "guest_city": main.get("city") or None,
        "guest_country": main.get("country") or None,
    }
    if full_name:
        fields["guest_name"] = full_name
    return fields


def _degrade(
    label: str, reservation_id: str, fn: Callable[[], Any], failed: set[str]
) -> Any:
    try:
        return fn()
    except UpstreamError as e:
        logger.warning(
            "enrichment_fetch_failed", part=label, reservation_id=reservation_id, error=str(e)
        )
        failed.add(label)
        return None


def fetch_supplementary(
    api_key: str, settings: Settings, reservation_id: str, document: dict[str, Any]
) -> tuple[dict[str, Any], set[str]]:
    """
    Fetch the four sub-resources of one reservation concurrently.

    Each fetch degrades to None on `UpstreamError`; the labels of the failed
    ones are returned so callers keep the previous data for them.

    Returns:
        tuple: ({"customer", "payments", "notes", "extras"}, failed labels)
    """
    rcode = str(document.get("reservation_code") or "")
    booker_id = str(document.get("booker_id") or "")
    failed: set[str] = set()

    calls: dict[str, Callable[[], Any]] = {
        "payments": lambda: fetch_payments(api_key, settings, rcode),
        "notes": lambda: fetch_notes(api_key, settings, rcode),
        "extras": lambda: fetch_extras(api_key, settings, rcode),
    }
    if booker_id.isdigit():
        calls["customer"] = lambda: fetch_customer(api_key, settings, booker_id)

    with ThreadPoolExecutor(max_workers=MAX_FETCH_WORKERS) as pool:
        futures = {
            label: pool.submit(_degrade, label, reservation_id, fn, failed)
            for label, fn in calls.items()
        }
        results = {label: future.result() for label, future in futures.items()}

    results.setdefault("customer", None)
    return results, failed


def merge_enrichment(
    stored: dict[str, Any],
    fetched: dict[str, Any],
    failed: set[str],
    settings: Settings,
) -> dict[str, Any]:
    """
    Compute the fields enrichment changes on one document.

    Args:
        stored: Current document
        fetched: Output of `fetch_supplementary`
        failed: Sub-resources that could not be fetched
        settings: Runtime settings

    Returns:
        dict: Fields to merge over the stored document.
    """
    local = settings.local_currency
    update: dict[str, Any] = customer_fields(fetched.get("customer"))

    raw_payments = fetched.get("payments") or []
    raw_notes = fetched.get("notes") or []
    raw_extras = fetched.get("extras") or []
    for label, raw in (("payments", raw_payments), ("notes", raw_notes), ("extras", raw_extras)):
        if label not in failed:
            update[f"raw_{label}"] = raw

    update["notes"] = reconcile_notes(stored.get("notes"), map_external_notes(raw_notes))
    update["payments"] = reconcile_payments(
        stored.get("payments"), map_external_payments(raw_payments, local)
    )
    update["extras"] = reconcile_extras(
        stored.get("extras"), map_external_extras(raw_extras, local)
    )

    stored_breakdown = stored.get("to_pay_breakdown")
    if isinstance(stored_breakdown, dict):
        breakdown = canonical_breakdown(stored_breakdown)
        derived = sum_extras(update["extras"], settings.settlement_currency)
        if breakdown["extras_amount"] is None and derived > 0:
            breakdown["extras_amount"] = derived
            update["to_pay_breakdown"] = breakdown
            update["to_pay"] = recompute_to_pay(breakdown)["total"]

    return update


def _new_payments(
    before: Optional[list[dict[str, Any]]], after: list[dict[str, Any]]
) -> list[tuple[str, dict[str, Any]]]:
    known = {identity_key(p, PAYMENTS) for p in before or [] if isinstance(p, dict)}
    return [
        (key, p) for p in after if (key := identity_key(p, PAYMENTS)) not in known
    ]


@dataclass
class EnrichmentWrite:
    """A planned enrichment of one document."""

    document: dict[str, Any]
    diff: dict[str, Any]
    hash_from: str
    hash_to: str
    new_payments: list[tuple[str, dict[str, Any]]]


def plan_enrichment(
    conn: Connection,
    stored: dict[str, Any],
    fetched: dict[str, Any],
    failed: set[str],
    settings: Settings,
    now: datetime,
) -> Optional[EnrichmentWrite]:
    """
    Merge fetched data over a stored document.

    Args:
        conn: Connection used for the FX lookup of the payment status
        stored: Current document
        fetched: Output of `fetch_supplementary`
        failed: Sub-resources that could not be fetched
        settings: Runtime settings
        now: Write timestamp

    Returns:
        Optional[EnrichmentWrite]: None when nothing material changes.
    """
    update = merge_enrichment(stored, fetched, failed, settings)
    new_doc = {**stored, **update}

    if stable_json(update["payments"]) != stable_json(stored.get("payments") or []):
        status = evaluate_payment_status(
            conn, settings, new_doc, update["payments"], new_doc.get("to_pay")
        )
        new_doc["payment_status"] = status["status"]

    diff = diff_documents(stored, new_doc)
    if not diff:
        return None

    hash_to = hash_document(new_doc)
    new_doc.update(
        {
            "enrichment_state": "completed",
            "enriched_at": stored.get("enriched_at") or to_iso_instant(now),
            "last_updated_by": ENRICHMENT_ACTOR,
            "last_updated_at": to_iso_instant(now),
            "updated_at": to_iso_instant(now),
            "content_hash": hash_to,
        }
    )
    return EnrichmentWrite(
        document=new_doc,
        diff=diff,
        hash_from=stored.get("content_hash") or hash_document(stored),
        hash_to=hash_to,
        new_payments=_new_payments(stored.get("payments"), update["payments"]),
    )


def write_enrichment(
    conn: Connection,
    reservation_id: str,
    fetched: dict[str, Any],
    failed: set[str],
    settings: Settings,
    mode: str,
) -> bool:
    """
    Re-merge fetched data into the locked stored row and write it.

    Runs inside the flush transaction; host notes, payments and pricing
    committed since the selection are kept.

    Returns:
        bool: False when the row is gone or already up to date.
    """
    current = get_reservation(conn, reservation_id, for_update=True)
    if current is None:
        logger.warning("enrichment_row_missing_at_flush", reservation_id=reservation_id)
        return False

    now = utc_now()
    planned = plan_enrichment(conn, current, fetched, failed, settings, now)
    if planned is None:
        logger.debug("enrichment_unchanged_at_flush", reservation_id=reservation_id)
        return False

    property_id = str(current.get("property_id") or "")
    conn.execute(update_reservation_stmt(reservation_id, planned.document, now))
    conn.execute(
        history_stmt(
            reservation_id,
            now,
            source=ENRICHMENT_SOURCE,
            change_type="updated",
            diff=planned.diff,
            hash_from=planned.hash_from,
            hash_to=planned.hash_to,
            snapshot_after=planned.document,
            context={"scope": "sync", "mode": mode, "property_id": property_id},
        )
    )
    for key, payment in planned.new_payments:
        conn.execute(
            payment_ledger_stmt(conn.dialect.name, reservation_id, property_id, key, payment)
        )
    reservation_writes.labels(source=ENRICHMENT_SOURCE, change_type="updated").inc()
    return True


def enrich(
    engine: Engine,
    settings: Settings,
    reservation_id: Optional[str] = None,
    mode: str = "pending",
    limit: int = 10,
    dry_run: bool = False,
    force_update: bool = False,
    cache: Optional[CredentialCache] = None,
) -> dict[str, Any]:
    """
    Enrich stored reservations with supplementary channel data.

    Args:
        engine: SQLAlchemy Engine
        settings: Runtime settings
        reservation_id: Enrich only this reservation
        mode: "pending" (default), "active" (departure today or later) or "force"
        limit: Maximum reservations selected
        dry_run: If True, count what would change without writing
        force_update: Same as mode="force"
        cache: Credential cache (default: the process-wide one built with
            `settings.credential_cache_ttl`)

    Returns:
        dict: `{ok, dry_run, mode, processed, total_found, unchanged, skipped,
        payment_records, errors[]}`; `processed` counts changed reservations.

    Raises:
        InvalidRequestError: If the mode is unknown.
        ValidationError: If limit is not positive.
    """
    if mode not in MODES:
        raise InvalidRequestError(f"Unsupported enrichment mode: {mode}")
    if limit < 1:
        raise ValidationError("limit must be positive")
    if force_update:
        mode = "force"
    cache = cache or get_credential_cache(settings.credential_cache_ttl)

    with engine.connect() as conn:
        selected = select_for_enrichment(
            conn, mode, limit, local_today(settings.timezone), reservation_id
        )

    logger.info(
        "enrichment_started",
        mode=mode,
        reservation_id=reservation_id,
        total_found=len(selected),
        dry_run=dry_run,
    )

    summary: dict[str, Any] = {
        "ok": True,
        "dry_run": dry_run,
        "mode": mode,
        "processed": 0,
        "total_found": len(selected),
        "unchanged": 0,
        "skipped": 0,
        "payment_records": 0,
        "errors": [],
    }

    def load_key(property_id: str) -> Optional[str]:
        with engine.connect() as conn:
            return get_api_key(conn, property_id)

    with BoundedWriteSession(engine, max_ops=settings.max_batch_ops) as session:
        for res_id, stored in selected:
            property_id = str(stored.get("property_id") or "")
            if not property_id or not stored.get("reservation_code"):
                summary["skipped"] += 1
                enrichment_outcomes.labels(outcome="skipped").inc()
                continue

            api_key = cache.get_or_load(property_id, load_key)
            if not api_key:
                logger.info("enrichment_skipped_missing_credential", reservation_id=res_id)
                summary["skipped"] += 1
                enrichment_outcomes.labels(outcome="skipped").inc()
                continue

            try:
                fetched, failed = fetch_supplementary(api_key, settings, res_id, stored)
                with engine.connect() as conn:
                    planned = plan_enrichment(conn, stored, fetched, failed, settings, utc_now())
                if planned is None:
                    summary["unchanged"] += 1
                    enrichment_outcomes.labels(outcome="unchanged").inc()
                    continue

                summary["processed"] += 1
                summary["payment_records"] += len(planned.new_payments)
                enrichment_outcomes.labels(outcome="updated").inc()

                if dry_run:
                    continue

                write = partial(
                    write_enrichment,
                    reservation_id=res_id,
                    fetched=fetched,
                    failed=failed,
                    settings=settings,
                    mode=mode,
                )
                session.defer(write, ops=2 + len(planned.new_payments))
            except Exception as e:
                logger.exception("enrichment_failed", reservation_id=res_id, error=str(e))
                summary["errors"].append({"id": res_id, "error": str(e)})
                enrichment_outcomes.labels(outcome="failed").inc()

    logger.info(
        "enrichment_completed",
        **{k: v for k, v in summary.items() if k != "errors"},
        errors=len(summary["errors"]),
    )
    return summary
