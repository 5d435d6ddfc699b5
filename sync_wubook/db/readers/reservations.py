from datetime import date
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from sync_wubook.models.reservations import Reservation, ReservationHistory


def get_reservation(
    conn: Connection, reservation_id: str, for_update: bool = False
) -> Optional[dict[str, Any]]:
    """
    Load one stored reservation document.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        reservation_id (str): Composite reservation id.
        for_update (bool): Lock the row until the surrounding transaction ends.

    Returns:
        Optional[dict]: The document, or None if it does not exist.
    """
    query = select(Reservation.document).where(Reservation.id == reservation_id)
    if for_update:
        query = query.with_for_update()
    row = conn.execute(query).first()
    return dict(row[0]) if row else None


def get_reservations_by_ids(conn: Connection, ids: list[str]) -> dict[str, dict[str, Any]]:
    """Load several documents at once, keyed by id; missing ids are absent."""
    if not ids:
        return {}
    rows = conn.execute(
        select(Reservation.id, Reservation.document).where(Reservation.id.in_(ids))
    ).all()
    return {row.id: dict(row.document) for row in rows}


def select_for_enrichment(
    conn: Connection,
    mode: str,
    limit: int,
    today: date,
    reservation_id: Optional[str] = None,
) -> list[tuple[str, dict[str, Any]]]:
    """
    Select reservations to enrich.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        mode (str): "pending", "active" or "force".
        limit (int): Maximum rows returned.
        today (date): Reference date for "active" (departure today or later).
        reservation_id (Optional[str]): When given, selects only that id.

    Returns:
        list[tuple[str, dict]]: (id, document) pairs ordered by id.
    """
    query = select(Reservation.id, Reservation.document).order_by(Reservation.id)
    if reservation_id:
        query = query.where(Reservation.id == reservation_id)
    elif mode == "active":
        query = query.where(Reservation.departure_date >= today)
    elif mode == "pending":
        query = query.where(Reservation.enrichment_state == "pending")
    return [(row.id, dict(row.document)) for row in conn.execute(query.limit(limit)).all()]


def page_by_arrival(
    conn: Connection,
    arrival: date,
    property_ids: Optional[list[str]],
    page_size: int,
    after_id: Optional[str] = None,
) -> list[tuple[str, dict[str, Any]]]:
    """
    One page of reservations arriving on `arrival`, keyset-paginated by id.

    Returns:
        list[tuple[str, dict]]: At most `page_size` (id, document) pairs.
    """
    query = (
        select(Reservation.id, Reservation.document)
        .where(Reservation.arrival_date == arrival)
        .order_by(Reservation.id)
        .limit(page_size)
    )
    if property_ids:
        query = query.where(Reservation.property_id.in_(property_ids))
    if after_id is not None:
        query = query.where(Reservation.id > after_id)
    return [(row.id, dict(row.document)) for row in conn.execute(query).all()]


def get_history(conn: Connection, reservation_id: str) -> list[dict[str, Any]]:
    """Every history entry of a reservation, oldest first."""
    table = ReservationHistory.__table__
    rows = conn.execute(
        select(table)
        .where(table.c.reservation_id == reservation_id)
        .order_by(table.c.ts, table.c.id)
    ).mappings()
    return [{k: v for k, v in r.items() if k != "reservation_id"} for r in rows]
