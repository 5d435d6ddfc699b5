"""SQLAlchemy models for daily FX quotes and the FX linking watermark."""

from sqlalchemy import Column, Date, DateTime, Float, String
from sqlalchemy.sql import func

from sync_wubook.config import SCHEMA
from sync_wubook.models.base import Base


class FxQuote(Base):
    """
    One daily quote of the local currency against the settlement currency.

    Written by the rate-ingestion job; this service only reads it.
    """

    __tablename__ = "fx_quotes"
    __table_args__ = {"schema": SCHEMA}

    currency = Column(String, primary_key=True)  # e.g. "USD"
    quote_date = Column(Date, primary_key=True)
    house = Column(String, nullable=True)
    buy = Column(Float, nullable=True)
    sell = Column(Float, nullable=True)
    source = Column(String, nullable=True)
    upserted_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class FxLinkMeta(Base):
    """Per-currency watermark of the FX linking job."""

    __tablename__ = "fx_link_meta"
    __table_args__ = {"schema": SCHEMA}

    currency = Column(String, primary_key=True)
    last_quote_date = Column(Date, nullable=True)
    last_linked_date = Column(Date, nullable=True)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
