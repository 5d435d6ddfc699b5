from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from sync_wubook.models.properties import Property, PropertyRoom


@dataclass(frozen=True)
class RoomMapping:
    room_code: str
    room_name: Optional[str]


@dataclass(frozen=True)
class PropertyConfig:
    """A property as the batch jobs see it: credential plus room map."""

    id: str
    name: str
    api_key: Optional[str]
    room_map: dict[str, RoomMapping] = field(default_factory=dict)


def get_room_map(conn: Connection, property_id: str) -> dict[str, RoomMapping]:
    """
    Build the external room id -> local room mapping for one property.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        property_id (str): Property ID.

    Returns:
        dict[str, RoomMapping]: Empty when the property has no mapped rooms.
    """
    rows = conn.execute(
        select(PropertyRoom.external_room_id, PropertyRoom.room_code, PropertyRoom.room_name)
        .where(PropertyRoom.property_id == property_id)
    ).all()
    return {str(r.external_room_id): RoomMapping(r.room_code, r.room_name) for r in rows}


def get_properties(
    conn: Connection, property_ids: Optional[list[str]] = None
) -> list[PropertyConfig]:
    """
    Load properties with their room maps.

    When `property_ids` is given those properties are returned whether or not
    they are active; otherwise every active property is returned. Properties
    without an API key are included so callers can count them as skipped.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        property_ids (Optional[list[str]]): Explicit selection.

    Returns:
        list[PropertyConfig]: Ordered by property id.
    """
    query = select(Property.id, Property.name, Property.api_key).order_by(Property.id)
    if property_ids:
        query = query.where(Property.id.in_([str(p) for p in property_ids]))
    else:
        query = query.where(Property.is_active.is_(True))

    return [
        PropertyConfig(
            id=row.id,
            name=row.name,
            api_key=row.api_key or None,
            room_map=get_room_map(conn, row.id),
        )
        for row in conn.execute(query).all()
    ]


def get_api_key(conn: Connection, property_id: str) -> Optional[str]:
    """
    Get the channel-manager API key for a property.

    Args:
        conn (Connection): SQLAlchemy DB connection.
        property_id (str): Property ID.

    Returns:
        Optional[str]: API key or None if the property is unknown or has none.
    """
    row = conn.execute(select(Property.api_key).where(Property.id == property_id)).first()
    return row[0] if row and row[0] else None
