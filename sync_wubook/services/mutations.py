"""
Host mutation handler.

Each call applies one host action to one reservation and writes the
document and one history entry in a single transaction.
"""

from typing import Any, Callable, Optional, Union

import structlog
from sqlalchemy.engine import Connection, Engine

from sync_wubook.config import Settings
from sync_wubook.db.readers.reservations import get_reservation
from sync_wubook.db.writers.reservations import history_stmt, update_reservation_stmt
from sync_wubook.errors import InvalidRequestError, NotFoundError, ValidationError
from sync_wubook.metrics import reservation_writes
from sync_wubook.normalizers.unified import SOURCE_HOST
from sync_wubook.services.payments import evaluate_payment_status
from sync_wubook.utils.datetime import parse_when, to_iso_instant, utc_now
from sync_wubook.utils.hashing import diff_documents, hash_document
from sync_wubook.utils.money import (
    LEGACY_BREAKDOWN_ALIASES,
    canonical_breakdown,
    recompute_to_pay,
    round2,
    to_number_or_none,
)

logger = structlog.get_logger(__name__)

MUTATION_SOURCE = "host"
DEFAULT_ACTOR = "host"
DEFAULT_PAYMENT_METHOD = "cash"
MAX_LIST_ITEMS = 1000

Actor = Union[str, dict[str, Any], None]

_MISSING = object()


def actor_label(actor: Actor) -> str:
    """Short actor name stored on notes, payments and `last_updated_by`."""
    if isinstance(actor, dict):
        name = actor.get("display_name") or actor.get("email") or actor.get("uid")
        return str(name or DEFAULT_ACTOR)
    return str(actor or DEFAULT_ACTOR)


def _actor_context(actor: Actor) -> Any:
    if isinstance(actor, dict):
        return {k: actor.get(k) for k in ("uid", "display_name", "email")}
    return actor_label(actor)


def _field_input(payload: dict[str, Any], field: str) -> Any:
    """
    Read a breakdown field honoring the three-state rule.

    Returns `_MISSING` when neither the canonical name nor any legacy alias
    is present, None when present but empty, else the number rounded to two
    decimals.

    Raises:
        ValidationError: If a present value is not a finite number.
    """
    for name in (field, *LEGACY_BREAKDOWN_ALIASES[field]):
        if name in payload:
            value = payload[name]
            if value is None or (isinstance(value, str) and not value.strip()):
                return None
            number = to_number_or_none(value)
            if number is None:
                raise ValidationError(f"{name} must be a number")
            return round2(number)
    return _MISSING


def _timestamp_action(field: str) -> Callable[..., tuple[dict[str, Any], dict[str, Any]]]:
    def apply(
        conn: Connection,
        settings: Settings,
        before: dict[str, Any],
        payload: dict[str, Any],
        actor: Actor,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        when = to_iso_instant(parse_when(payload.get("when")))
        return {field: when}, {field: when}

    return apply


def _add_note(
    conn: Connection,
    settings: Settings,
    before: dict[str, Any],
    payload: dict[str, Any],
    actor: Actor,
) -> tuple[dict[str, Any], dict[str, Any]]:
    text = str(payload.get("text") or "").strip()
    if not text:
        raise ValidationError("Note text is empty")
    note = {
        "ts": to_iso_instant(utc_now()),
        "actor": actor_label(actor),
        "source": SOURCE_HOST,
        "external_id": None,
        "text": text,
        "sent_to_channel": False,
    }
    notes = list(before.get("notes") or [])[:MAX_LIST_ITEMS]
    return {"notes": [*notes, note]}, {"note": note}


def _add_payment(
    conn: Connection,
    settings: Settings,
    before: dict[str, Any],
    payload: dict[str, Any],
    actor: Actor,
) -> tuple[dict[str, Any], dict[str, Any]]:
    amount = to_number_or_none(payload.get("amount"))
    if amount is None or amount <= 0:
        raise ValidationError("Payment amount must be a positive number")
    when = payload.get("when")
    payment = {
        "ts": to_iso_instant(parse_when(when) if when else utc_now()),
        "actor": actor_label(actor),
        "source": SOURCE_HOST,
        "external_id": None,
        "amount": amount,
        "currency": str(payload.get("currency") or settings.local_currency).upper(),
        "method": str(payload.get("method") or DEFAULT_PAYMENT_METHOD),
    }
    payments = [*list(before.get("payments") or [])[:MAX_LIST_ITEMS], payment]
    status = evaluate_payment_status(
        conn, settings, before, payments, before.get("to_pay"), _fx_override(payload)
    )
    return (
        {"payments": payments, "payment_status": status["status"]},
        {"payment": payment, "paid": status["paid"], "fx_rate": status["fx_rate"]},
    )


def _fx_override(payload: dict[str, Any]) -> Optional[float]:
    rate = to_number_or_none(payload.get("fx_rate", payload.get("fxRate")))
    return rate if rate is not None and rate > 0 else None


def _set_to_pay(
    conn: Connection,
    settings: Settings,
    before: dict[str, Any],
    payload: dict[str, Any],
    actor: Actor,
) -> tuple[dict[str, Any], dict[str, Any]]:
    breakdown = canonical_breakdown(before.get("to_pay_breakdown"))
    supplied = {field: _field_input(payload, field) for field in breakdown}
    for field, value in supplied.items():
        if value is not _MISSING:
            breakdown[field] = value
    # A new percent without an amount means the amount is derived again
    if supplied["vat_percent"] is not _MISSING and supplied["vat_amount"] is _MISSING:
        breakdown["vat_amount"] = None

    computed = recompute_to_pay(breakdown)
    total = computed["total"]
    if total < 0:
        raise ValidationError("Total to pay cannot be negative")

    status = evaluate_payment_status(
        conn,
        settings,
        {**before, "to_pay_breakdown": breakdown},
        list(before.get("payments") or []),
        total,
        _fx_override(payload),
    )
    update = {
        "to_pay": total,
        "to_pay_breakdown": breakdown,
        "currency": settings.settlement_currency.upper(),
        "payment_status": status["status"],
    }
    history = {
        "to_pay": {
            **breakdown,
            "vat_amount_applied": computed["vat_amount"],
            "total": total,
            "fx_date": status["fx_date"],
            "fx_rate_used": status["fx_rate"],
            "fx_note": status["fx_note"],
        }
    }
    return update, history


ACTIONS: dict[str, Callable[..., tuple[dict[str, Any], dict[str, Any]]]] = {
    "checkin": _timestamp_action("checkin_at"),
    "checkout": _timestamp_action("checkout_at"),
    "contact": _timestamp_action("contacted_at"),
    "addNote": _add_note,
    "addPayment": _add_payment,
    "setToPay": _set_to_pay,
}


def apply_mutation(
    engine: Engine,
    settings: Settings,
    reservation_id: str,
    action: str,
    payload: Optional[dict[str, Any]] = None,
    actor: Actor = None,
) -> dict[str, Any]:
    """
    Apply one host action to a reservation.

    Args:
        engine: SQLAlchemy Engine
        settings: Runtime settings
        reservation_id: Reservation to change
        action: checkin, checkout, contact, addNote, addPayment or setToPay
        payload: Action input (`when`, `text`, `amount`/`currency`/`method`,
            breakdown fields, `fx_rate`)
        actor: `{uid, display_name, email}`, a name, or None for "host"

    Returns:
        dict: `{ok, id, action, updated_fields}`

    Raises:
        InvalidRequestError: Unsupported action.
        NotFoundError: Reservation does not exist.
        ValidationError: Invalid payload (empty note, non-positive amount...).
    """
    handler = ACTIONS.get(action)
    if handler is None:
        raise InvalidRequestError(f"Unsupported action: {action}")
    payload = payload or {}

    with engine.begin() as conn:
        before = get_reservation(conn, reservation_id, for_update=True)
        if before is None:
            raise NotFoundError(f"Reservation not found: {reservation_id}")

        update, action_payload = handler(conn, settings, before, payload, actor)

        now = utc_now()
        update["last_updated_by"] = actor_label(actor)
        update["last_updated_at"] = to_iso_instant(now)
        after = {**before, **update}
        diff = diff_documents(before, after)
        hash_to = hash_document(after)
        after["content_hash"] = hash_to
        after["updated_at"] = to_iso_instant(now)

        conn.execute(update_reservation_stmt(reservation_id, after, now))
        conn.execute(
            history_stmt(
                reservation_id,
                now,
                source=MUTATION_SOURCE,
                change_type="updated",
                diff=diff,
                hash_from=before.get("content_hash"),
                hash_to=hash_to,
                snapshot_after=after,
                context={"action": action, "actor": _actor_context(actor)},
                payload=action_payload,
            )
        )

    reservation_writes.labels(source=MUTATION_SOURCE, change_type="updated").inc()
    logger.info(
        "mutation_applied", reservation_id=reservation_id, action=action, changed=list(diff)
    )
    return {
        "ok": True,
        "id": reservation_id,
        "action": action,
        "updated_fields": sorted([*update, "content_hash", "updated_at"]),
    }
