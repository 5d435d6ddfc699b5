"""SQLAlchemy models for properties and their external room mapping."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, text
from sqlalchemy.sql import func

from sync_wubook.config import SCHEMA
from sync_wubook.models.base import Base


class Property(Base):
    """
    ORM model for a property connected to the channel manager.

    Each property owns its own API key; a property without one is skipped by
    every batch job rather than failing it.
    """

    __tablename__ = "properties"
    __table_args__ = {"schema": SCHEMA}

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    api_key = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, server_default=text("TRUE"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class PropertyRoom(Base):
    """Maps an external room id to the local room code and name."""

    __tablename__ = "property_rooms"
    __table_args__ = {"schema": SCHEMA}

    property_id = Column(
        String,
        ForeignKey(f"{SCHEMA}.properties.id", ondelete="CASCADE"),
        primary_key=True,
    )
    external_room_id = Column(String, primary_key=True)
    room_code = Column(String, nullable=False)
    room_name = Column(String, nullable=True)
