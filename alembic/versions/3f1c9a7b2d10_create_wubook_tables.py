"""Create wubook schema tables

Revision ID: 3f1c9a7b2d10
Revises:
Create Date: 2025-10-02 11:20:14.318402

"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op  # type: ignore[attr-defined]

# revision identifiers, used by Alembic.
revision = "3f1c9a7b2d10"
down_revision = None
branch_labels = None
depends_on = None

SCHEMA = "wubook"


def upgrade() -> None:
    """Upgrade schema."""
    op.execute(sa.schema.CreateSchema(SCHEMA, if_not_exists=True))

    op.create_table(
        "properties",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("api_key", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("TRUE"), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        schema=SCHEMA,
    )
    op.create_table(
        "property_rooms",
        sa.Column(
            "property_id",
            sa.String(),
            sa.ForeignKey(f"{SCHEMA}.properties.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("external_room_id", sa.String(), primary_key=True),
        sa.Column("room_code", sa.String(), nullable=False),
        sa.Column("room_name", sa.String(), nullable=True),
        schema=SCHEMA,
    )

    op.create_table(
        "reservations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("property_id", sa.String(), nullable=False),
        sa.Column("reservation_code", sa.String(), nullable=False),
        sa.Column("room_id", sa.String(), nullable=False),
        sa.Column("arrival_date", sa.Date(), nullable=True),
        sa.Column("departure_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("enrichment_state", sa.String(), nullable=False),
        sa.Column("content_hash", sa.String(40), nullable=True),
        sa.Column("document", postgresql.JSONB(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_reservations_arrival_property",
        "reservations",
        ["arrival_date", "property_id"],
        schema=SCHEMA,
    )
    for column in ("property_id", "departure_date", "enrichment_state"):
        op.create_index(
            f"ix_{SCHEMA}_reservations_{column}", "reservations", [column], schema=SCHEMA
        )

    op.create_table(
        "reservation_history",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "reservation_id",
            sa.String(),
            sa.ForeignKey(f"{SCHEMA}.reservations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("context", postgresql.JSONB(), nullable=True),
        sa.Column("change_type", sa.String(), nullable=False),
        sa.Column("changed_keys", postgresql.JSONB(), nullable=False),
        sa.Column("diff", postgresql.JSONB(), nullable=False),
        sa.Column("hash_from", sa.String(40), nullable=True),
        sa.Column("hash_to", sa.String(40), nullable=False),
        sa.Column("snapshot_after", postgresql.JSONB(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        schema=SCHEMA,
    )
    op.create_index(
        f"ix_{SCHEMA}_reservation_history_reservation_id",
        "reservation_history",
        ["reservation_id"],
        schema=SCHEMA,
    )

    op.create_table(
        "reservation_payments",
        sa.Column("id", sa.String(40), primary_key=True),
        sa.Column(
            "reservation_id",
            sa.String(),
            sa.ForeignKey(f"{SCHEMA}.reservations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("property_id", sa.String(), nullable=False),
        sa.Column("identity_key", sa.String(), nullable=False),
        sa.Column("payment", postgresql.JSONB(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        schema=SCHEMA,
    )
    op.create_index(
        f"ix_{SCHEMA}_reservation_payments_reservation_id",
        "reservation_payments",
        ["reservation_id"],
        schema=SCHEMA,
    )

    op.create_table(
        "fx_quotes",
        sa.Column("currency", sa.String(), primary_key=True),
        sa.Column("quote_date", sa.Date(), primary_key=True),
        sa.Column("house", sa.String(), nullable=True),
        sa.Column("buy", sa.Float(), nullable=True),
        sa.Column("sell", sa.Float(), nullable=True),
        sa.Column("source", sa.String(), nullable=True),
        sa.Column(
            "upserted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        schema=SCHEMA,
    )
    op.create_table(
        "fx_link_meta",
        sa.Column("currency", sa.String(), primary_key=True),
        sa.Column("last_quote_date", sa.Date(), nullable=True),
        sa.Column("last_linked_date", sa.Date(), nullable=True),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        schema=SCHEMA,
    )

    op.create_table(
        "locks",
        sa.Column("name", sa.String(), primary_key=True),
        sa.Column("holder", sa.String(), nullable=False),
        sa.Column("token", sa.String(32), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        schema=SCHEMA,
    )


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        "locks",
        "fx_link_meta",
        "fx_quotes",
        "reservation_payments",
        "reservation_history",
        "reservations",
        "property_rooms",
        "properties",
    ):
        op.drop_table(table, schema=SCHEMA)
