"""
Shared fixtures: an in-memory SQLite store, runtime settings and a seeded
property with one mapped room.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Callable, Generator

import pytest
from sqlalchemy import create_engine, insert
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from sync_wubook.config import SCHEMA, Settings
from sync_wubook.db.readers.properties import PropertyConfig, get_properties
from sync_wubook.models.base import Base
from sync_wubook.models.fx import FxLinkMeta, FxQuote  # noqa: F401
from sync_wubook.models.locks import Lock  # noqa: F401
from sync_wubook.models.properties import Property, PropertyRoom
from sync_wubook.models.reservations import (  # noqa: F401
    Reservation,
    ReservationHistory,
    ReservationPayment,
)
from sync_wubook.utils.datetime import to_eu

PROPERTY_ID = "106"
KEYLESS_PROPERTY_ID = "207"
MAPPED_ROOM = "11"


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """SQLite in-memory engine with the `wubook` schema mapped away."""
    base = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    eng = base.execution_options(schema_translate_map={SCHEMA: None})
    Base.metadata.create_all(eng)
    yield eng
    base.dispose()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        orchestrator_base_url="http://sync.test",
        lock_holder="test-runner",
        max_retries=2,
    )


@pytest.fixture
def prop(engine: Engine) -> PropertyConfig:
    """Property 106 with room 11 mapped to 101, plus keyless property 207."""
    with engine.begin() as conn:
        conn.execute(
            insert(Property).values(id=PROPERTY_ID, name="Casa Palermo", api_key="key-106")
        )
        conn.execute(
            insert(PropertyRoom).values(
                property_id=PROPERTY_ID,
                external_room_id=MAPPED_ROOM,
                room_code="101",
                room_name="Suite Jardín",
            )
        )
        conn.execute(
            insert(Property).values(id=KEYLESS_PROPERTY_ID, name="Casa Sin Clave", api_key=None)
        )
    with engine.connect() as conn:
        return get_properties(conn, [PROPERTY_ID])[0]


@pytest.fixture
def make_raw() -> Callable[..., dict[str, Any]]:
    """Factory for raw channel reservations with one room."""

    def _make(
        code: str = "ABC123",
        arrival: date = date(2030, 10, 10),
        departure: date = date(2030, 10, 12),
        room: str = MAPPED_ROOM,
        currency: str = "USD",
        amount: float = 200,
        status: str = "confirmed",
        **extra: Any,
    ) -> dict[str, Any]:
        raw = {
            "id": 9001,
            "id_human": code,
            "status": status,
            "booker": 555,
            "dfrom": to_eu(arrival),
            "dto": to_eu(departure),
            "customer": {"name": "Ana", "surname": "García"},
            "origin": {"channel": "Booking.com"},
            "price": {
                "currency": currency,
                "rooms": {"amount": amount, "vat": 0, "total": amount, "currency": currency},
            },
            "rooms": [
                {
                    "id_zak_room": room,
                    "dfrom": to_eu(arrival),
                    "dto": to_eu(departure),
                    "occupancy": {"adults": 2, "children": 0},
                }
            ],
        }
        raw.update(extra)
        return raw

    return _make
