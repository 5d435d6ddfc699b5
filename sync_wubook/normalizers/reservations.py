"""
Ingestion boundary for raw channel-manager reservations.

Channel payloads are loosely shaped: the same concept arrives under several
field names (status, ids, dates, prices). Every alternate shape is mapped
here into one canonical record before any business logic runs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional

from sync_wubook.utils.datetime import eu_to_iso
from sync_wubook.utils.money import round2, to_number_or_none

DEFAULT_CHANNEL = "Direct/WuBook"


@dataclass(frozen=True)
class RoomLine:
    """One booked room of a reservation, with dates resolved room-first."""

    room_id: str
    arrival: Optional[str]
    departure: Optional[str]
    adults: Optional[int]
    children: int
    price: Optional[dict[str, Any]]
    reservation_arrival: Optional[str]


@dataclass(frozen=True)
class CanonicalReservation:
    """A raw reservation reduced to the fields the upsert engine uses."""

    code: str
    external_id: Any
    status: str
    cancelled: bool
    guest_name: Optional[str]
    booker_id: Optional[str]
    channel: str
    rooms: list[RoomLine]
    rooms_count: int
    extras_total: Optional[float]


def normalize_status(value: Any) -> str:
    """Lowercase snake_case status; missing status becomes `unknown`."""
    text = str(value or "unknown").strip().lower()
    return re.sub(r"\s+", "_", text) or "unknown"


def is_cancelled(raw: dict[str, Any]) -> bool:
    """
    Detect cancellation under any of the known field shapes.

    Checks `status`/`state`/`reservation_status`, the `is_cancelled` and
    `cancelled` booleans and `cancellation.status`.
    """
    status = raw.get("status") or raw.get("state") or raw.get("reservation_status")
    if "cancel" in normalize_status(status):
        return True
    if raw.get("is_cancelled") is True or raw.get("cancelled") is True:
        return True
    cancellation = raw.get("cancellation")
    if isinstance(cancellation, dict) and "cancel" in normalize_status(cancellation.get("status")):
        return True
    return False


def reservation_external_id(raw: dict[str, Any]) -> Any:
    for key in ("id", "rsrvid", "reservation_id", "rexid", "rid"):
        if raw.get(key) is not None:
            return raw[key]
    return None


def guest_name(raw: dict[str, Any]) -> Optional[str]:
    """Full name from the embedded customer block, if any."""
    customer = raw.get("customer") if isinstance(raw.get("customer"), dict) else {}
    full = f"{customer.get('name') or ''} {customer.get('surname') or ''}".strip()
    return full or None


def channel_label(raw: dict[str, Any]) -> str:
    origin = raw.get("origin") if isinstance(raw.get("origin"), dict) else {}
    channel = origin.get("channel")
    if channel and channel != "--":
        return str(channel)
    return str(raw.get("channel_name") or DEFAULT_CHANNEL)


def extras_total(raw: dict[str, Any], settlement_currency: str) -> Optional[float]:
    """
    Reservation-level extras charged in the settlement currency.

    Returns:
        Optional[float]: Positive amount, or None when absent or in another currency.
    """
    price = raw.get("price") if isinstance(raw.get("price"), dict) else {}
    extras = price.get("extras")
    if not isinstance(extras, dict):
        return None
    currency = str(extras.get("currency") or price.get("currency") or "").strip().upper()
    if currency != settlement_currency.upper():
        return None
    amount = to_number_or_none(extras.get("amount"))
    return round2(amount) if amount and amount > 0 else None


def room_price(room: dict[str, Any], raw: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Per-room price block `{amount, vat, total, currency}`; falls back to the reservation's."""
    price = raw.get("price") if isinstance(raw.get("price"), dict) else {}
    block = room.get("price") or price.get("rooms")
    if not isinstance(block, dict):
        return None
    rooms_block = price.get("rooms") if isinstance(price.get("rooms"), dict) else {}
    currency = block.get("currency") or rooms_block.get("currency") or price.get("currency")
    return {
        "amount": round2(block.get("amount")),
        "vat": round2(block.get("vat")),
        "total": round2(block.get("total")),
        "currency": str(currency or "").strip().upper(),
    }


def _room_line(room: dict[str, Any], raw: dict[str, Any]) -> RoomLine:
    occupancy = room.get("occupancy") if isinstance(room.get("occupancy"), dict) else {}
    adults = occupancy.get("adults", raw.get("adults"))
    children = occupancy.get("children", raw.get("children"))
    return RoomLine(
        room_id=str(room.get("id_zak_room") or room.get("id_zak_room_type") or ""),
        arrival=room.get("dfrom") or room.get("arrival") or raw.get("dfrom") or raw.get("arrival"),
        departure=(
            room.get("dto") or room.get("departure") or raw.get("dto") or raw.get("departure")
        ),
        adults=adults,
        children=children if children is not None else 0,
        price=room_price(room, raw),
        reservation_arrival=raw.get("dfrom") or raw.get("arrival"),
    )


def normalize_reservation(raw: dict[str, Any], settlement_currency: str) -> CanonicalReservation:
    """
    Map one raw channel reservation into its canonical form.

    Args:
        raw: Reservation as returned by the channel manager.
        settlement_currency: Currency whose extras are prorated into the breakdown.

    Returns:
        CanonicalReservation
    """
    rooms = [r for r in raw.get("rooms") or [] if isinstance(r, dict)]
    booker = raw.get("booker")
    return CanonicalReservation(
        code=str(raw.get("id_human") or reservation_external_id(raw) or ""),
        external_id=reservation_external_id(raw),
        status=normalize_status(
            raw.get("status") or raw.get("state") or raw.get("reservation_status")
        ),
        cancelled=is_cancelled(raw),
        guest_name=guest_name(raw),
        booker_id=str(booker) if booker not in (None, "") else None,
        channel=channel_label(raw),
        rooms=[_room_line(room, raw) for room in rooms],
        rooms_count=len(rooms) or 1,
        extras_total=extras_total(raw, settlement_currency),
    )


def stay_dates(line: RoomLine) -> tuple[Optional[str], Optional[str]]:
    """ISO calendar dates for a room line's arrival and departure."""
    return eu_to_iso(line.arrival), eu_to_iso(line.departure)
