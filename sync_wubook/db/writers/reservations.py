"""
Statement builders for reservation documents, their history and payments.

Builders return statements instead of executing them so callers can group a
document write with its history entry inside one BoundedWriteSession batch.
"""

import hashlib
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import insert, update
from sqlalchemy.sql import Executable

from sync_wubook.db.writers._upsert import build_insert_ignore, build_upsert
from sync_wubook.models.reservations import Reservation, ReservationHistory, ReservationPayment
from sync_wubook.utils.datetime import parse_iso_date


def new_history_id(now: datetime) -> str:
    """Time-prefixed random id so history rows sort in write order."""
    return f"{int(now.timestamp() * 1_000_000):016x}{uuid.uuid4().hex[:16]}"


def _columns_from_document(document: dict[str, Any]) -> dict[str, Any]:
    return {
        "property_id": str(document.get("property_id") or ""),
        "reservation_code": str(document.get("reservation_code") or ""),
        "room_id": str(document.get("room_id") or ""),
        "arrival_date": parse_iso_date(document.get("arrival_iso")),
        "departure_date": parse_iso_date(document.get("departure_iso")),
        "status": document.get("status"),
        "enrichment_state": document.get("enrichment_state") or "pending",
        "content_hash": document.get("content_hash"),
    }


def upsert_reservation_stmt(
    dialect_name: str, reservation_id: str, document: dict[str, Any], now: datetime
) -> Executable:
    """
    Insert a reservation or overwrite the stored one.

    The caller has already merged the stored document with the new fields,
    so overwriting the whole JSON column gives merge semantics.

    Args:
        dialect_name: Target engine's dialect name
        reservation_id: Composite reservation id
        document: Complete document to store
        now: Write timestamp (becomes `updated_at`)

    Returns:
        Executable: Upsert statement.
    """
    row = {
        "id": reservation_id,
        **_columns_from_document(document),
        "document": document,
        "updated_at": now,
    }
    return build_upsert(dialect_name, Reservation, row, ["id"])


def update_reservation_stmt(
    reservation_id: str, document: dict[str, Any], now: datetime
) -> Executable:
    """Overwrite an existing reservation (used when the row is known to exist)."""
    return (
        update(Reservation)
        .where(Reservation.id == reservation_id)
        .values(**_columns_from_document(document), document=document, updated_at=now)
    )


def history_stmt(
    reservation_id: str,
    now: datetime,
    source: str,
    change_type: str,
    diff: dict[str, Any],
    hash_from: Optional[str],
    hash_to: str,
    snapshot_after: dict[str, Any],
    context: Optional[dict[str, Any]] = None,
    payload: Optional[dict[str, Any]] = None,
) -> Executable:
    """
    Append one history entry.

    Args:
        reservation_id: Reservation the entry belongs to
        now: Entry timestamp
        source: Writer tag, e.g. "import_by_arrival", "enrichment", "host"
        change_type: "created" or "updated"
        diff: Output of `diff_documents`
        hash_from: Content hash before the write (None for new documents)
        hash_to: Content hash after the write
        snapshot_after: Document as written
        context: Writer-specific context (property, mode, actor...)
        payload: Action-specific snapshot (note, payment, pricing)

    Returns:
        Executable: Insert statement.
    """
    return insert(ReservationHistory).values(
        id=new_history_id(now),
        reservation_id=reservation_id,
        ts=now,
        source=source,
        context=context or {},
        change_type=change_type,
        changed_keys=list(diff),
        diff=diff,
        hash_from=hash_from,
        hash_to=hash_to,
        snapshot_after=snapshot_after,
        payload=payload,
    )


def payment_ledger_id(reservation_id: str, identity_key: str) -> str:
    """Deterministic ledger id: re-materializing a payment hits the same row."""
    return hashlib.sha1(f"{reservation_id}|{identity_key}".encode("utf-8")).hexdigest()


def payment_ledger_stmt(
    dialect_name: str,
    reservation_id: str,
    property_id: str,
    identity_key: str,
    payment: dict[str, Any],
) -> Executable:
    """Insert a payment ledger row unless one with the same id already exists."""
    row = {
        "id": payment_ledger_id(reservation_id, identity_key),
        "reservation_id": reservation_id,
        "property_id": property_id,
        "identity_key": identity_key,
        "payment": payment,
    }
    return build_insert_ignore(dialect_name, ReservationPayment, row, ["id"])
