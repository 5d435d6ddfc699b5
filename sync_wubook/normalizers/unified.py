"""
Unified notes, payments and extras: mapping and reconciliation.

Each reservation keeps one append-only list per kind that combines records
from the channel manager (`source="external"`) and from hosts
(`source="host"`). The unified list is the only source of truth; the raw
channel copies kept next to it are provenance and are never merged back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from sync_wubook.utils.datetime import to_epoch_seconds, to_iso_instant
from sync_wubook.utils.money import round2, to_number_or_none

SOURCE_EXTERNAL = "external"
SOURCE_HOST = "host"
EXTERNAL_ACTOR = "wubook"


@dataclass(frozen=True)
class UnifiedKind:
    """How one kind of unified element is fingerprinted and validated."""

    name: str
    fingerprint: Callable[[dict[str, Any]], str]
    has_content: Callable[[dict[str, Any]], bool]


def _note_fingerprint(item: dict[str, Any]) -> str:
    return f"x:{str(item.get('text') or '')[:120]}"


def _payment_fingerprint(item: dict[str, Any]) -> str:
    return f"a:{item.get('amount')}|c:{item.get('currency')}|m:{item.get('method')}"


def _extra_fingerprint(item: dict[str, Any]) -> str:
    name = str(item.get("name") or "")[:60]
    return (
        f"n:{name}|p:{item.get('price')}|c:{item.get('currency')}|q:{item.get('qty')}"
    )


NOTES = UnifiedKind(
    name="notes",
    fingerprint=_note_fingerprint,
    has_content=lambda n: bool(str(n.get("text") or "").strip()),
)
PAYMENTS = UnifiedKind(
    name="payments",
    fingerprint=_payment_fingerprint,
    has_content=lambda p: (to_number_or_none(p.get("amount")) or 0) > 0,
)
EXTRAS = UnifiedKind(
    name="extras",
    fingerprint=_extra_fingerprint,
    has_content=lambda e: bool(
        e.get("name") or e.get("note") or (to_number_or_none(e.get("price")) or 0) > 0
    ),
)


def identity_key(item: dict[str, Any], kind: UnifiedKind) -> str:
    """
    Identity used for deduplication.

    The external id when present, otherwise a fingerprint of source,
    timestamp seconds and the kind's content-defining fields.
    """
    external_id = item.get("external_id")
    if external_id not in (None, ""):
        return f"w:{external_id}"
    seconds = to_epoch_seconds(item.get("ts"))
    return f"s:{item.get('source')}|t:{seconds}|{kind.fingerprint(item)}"


def reconcile(
    existing: Optional[Iterable[dict[str, Any]]],
    incoming: Optional[Iterable[dict[str, Any]]],
    kind: UnifiedKind,
) -> list[dict[str, Any]]:
    """
    Merge stored unified elements with freshly fetched ones.

    The first occurrence of each identity wins, so stored (and host) entries
    are never displaced by a re-fetched external copy. Contentless elements
    are dropped and the result is sorted by timestamp (stable).

    Args:
        existing: Elements already stored on the reservation.
        incoming: Elements mapped from the channel manager.
        kind: NOTES, PAYMENTS or EXTRAS.

    Returns:
        list: The merged unified list.
    """
    seen: set[str] = set()
    merged: list[dict[str, Any]] = []
    for item in [*(existing or []), *(incoming or [])]:
        if not isinstance(item, dict) or not kind.has_content(item):
            continue
        key = identity_key(item, kind)
        if key in seen:
            continue
        seen.add(key)
        merged.append(item)
    merged.sort(key=lambda item: to_epoch_seconds(item.get("ts")))
    return merged


def reconcile_notes(existing: Any, incoming: Any) -> list[dict[str, Any]]:
    return reconcile(existing, incoming, NOTES)


def reconcile_payments(existing: Any, incoming: Any) -> list[dict[str, Any]]:
    return reconcile(existing, incoming, PAYMENTS)


def reconcile_extras(existing: Any, incoming: Any) -> list[dict[str, Any]]:
    return reconcile(existing, incoming, EXTRAS)


def _as_list(raw: Any) -> list[dict[str, Any]]:
    return [item for item in raw if isinstance(item, dict)] if isinstance(raw, list) else []


def map_external_notes(raw: Any) -> list[dict[str, Any]]:
    """Map channel notes (`remarks`, `created_at`, `id`) to unified notes."""
    notes = []
    for n in _as_list(raw):
        text = str(n.get("remarks") or n.get("text") or "").strip()
        if not text:
            continue
        notes.append(
            {
                "ts": to_iso_instant(n.get("created_at") or n.get("date")),
                "actor": EXTERNAL_ACTOR,
                "source": SOURCE_EXTERNAL,
                "external_id": n.get("id"),
                "text": text,
                "sent_to_channel": True,
            }
        )
    return notes


def map_external_payments(raw: Any, default_currency: str) -> list[dict[str, Any]]:
    """Map channel payments (`amount`/`total`, `currency`/`ccy`, `method`/`type`)."""
    payments = []
    for p in _as_list(raw):
        amount = to_number_or_none(p.get("amount", p.get("total"))) or 0.0
        if amount <= 0:
            continue
        payments.append(
            {
                "ts": to_iso_instant(p.get("created_at") or p.get("date")),
                "actor": EXTERNAL_ACTOR,
                "source": SOURCE_EXTERNAL,
                "external_id": p.get("id"),
                "amount": amount,
                "currency": str(p.get("currency") or p.get("ccy") or default_currency).upper(),
                "method": str(p.get("method") or p.get("type") or "unknown"),
            }
        )
    return payments


def map_external_extras(raw: Any, default_currency: str) -> list[dict[str, Any]]:
    """Map channel extras (`exid`, `name`, `note`, `price`, `ccy`, `number`, `inclusive`)."""
    extras = []
    for e in _as_list(raw):
        price = to_number_or_none(e.get("price")) or 0.0
        qty = to_number_or_none(e.get("number", e.get("qty")))
        item = {
            "ts": to_iso_instant(e.get("created_at") or e.get("date")),
            "actor": EXTERNAL_ACTOR,
            "source": SOURCE_EXTERNAL,
            "external_id": e.get("exid", e.get("id")),
            "name": str(e.get("name") or "").strip() or None,
            "note": str(e.get("note") or e.get("notes") or "").strip() or None,
            "price": price,
            "currency": str(e.get("ccy") or e.get("currency") or default_currency).upper(),
            "qty": qty if qty and qty > 0 else 1,
            "inclusive": bool(e.get("inclusive", False)),
        }
        if EXTRAS.has_content(item):
            extras.append(item)
    return extras


def sum_extras(extras: Iterable[dict[str, Any]], currency: str) -> float:
    """Total price × qty of the extras charged in `currency`."""
    total = 0.0
    for e in extras or []:
        if str(e.get("currency") or currency).upper() != currency.upper():
            continue
        total += (to_number_or_none(e.get("price")) or 0.0) * (to_number_or_none(e.get("qty")) or 1)
    return round2(total)
