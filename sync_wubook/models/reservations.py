# models/reservations.py

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, String
from sqlalchemy.sql import func

from sync_wubook.config import SCHEMA
from sync_wubook.models.base import Base, JSONDocument


class Reservation(Base):
    """
    ORM model for one booked room of one stay.

    The full reservation lives in `document` (guest, dates, pricing, unified
    notes/payments/extras). The scalar columns duplicate the fields the
    batch jobs filter on so they can be indexed.
    """

    __tablename__ = "reservations"
    __table_args__ = (
        Index("ix_reservations_arrival_property", "arrival_date", "property_id"),
        {"schema": SCHEMA},
    )

    id = Column(String, primary_key=True)  # "{property_id}_{reservation_code}_{room_id}"
    property_id = Column(String, nullable=False, index=True)
    reservation_code = Column(String, nullable=False)
    room_id = Column(String, nullable=False)
    arrival_date = Column(Date, nullable=True)
    departure_date = Column(Date, nullable=True, index=True)
    status = Column(String, nullable=True)
    enrichment_state = Column(String, nullable=False, default="pending", index=True)
    content_hash = Column(String(40), nullable=True)
    document = Column(JSONDocument, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class ReservationHistory(Base):
    """
    Append-only audit trail of every write to a reservation.

    Rows are only ever inserted: never updated or deleted.
    """

    __tablename__ = "reservation_history"
    __table_args__ = {"schema": SCHEMA}

    id = Column(String(32), primary_key=True)
    reservation_id = Column(
        String,
        ForeignKey(f"{SCHEMA}.reservations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ts = Column(DateTime(timezone=True), nullable=False)
    source = Column(String, nullable=False)
    context = Column(JSONDocument, nullable=True)
    change_type = Column(String, nullable=False)  # created | updated
    changed_keys = Column(JSONDocument, nullable=False)
    diff = Column(JSONDocument, nullable=False)
    hash_from = Column(String(40), nullable=True)
    hash_to = Column(String(40), nullable=False)
    snapshot_after = Column(JSONDocument, nullable=False)
    payload = Column(JSONDocument, nullable=True)


class ReservationPayment(Base):
    """
    Ledger row materialized for each payment discovered by enrichment.

    The id is derived from the reservation id and the payment identity, so
    re-running enrichment never inserts a second row for the same payment.
    """

    __tablename__ = "reservation_payments"
    __table_args__ = {"schema": SCHEMA}

    id = Column(String(40), primary_key=True)
    reservation_id = Column(
        String,
        ForeignKey(f"{SCHEMA}.reservations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    property_id = Column(String, nullable=False)
    identity_key = Column(String, nullable=False)
    payment = Column(JSONDocument, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
