from sqlalchemy import Column, DateTime, String

from sync_wubook.config import SCHEMA
from sync_wubook.models.base import Base


class Lock(Base):
    """
    Lease-based lock record.

    A lock whose `expires_at` is in the past is free, even if it was never
    released.
    """

    __tablename__ = "locks"
    __table_args__ = {"schema": SCHEMA}

    name = Column(String, primary_key=True)
    holder = Column(String, nullable=False)
    token = Column(String(32), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
