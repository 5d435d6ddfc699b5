from datetime import date, datetime
from typing import Optional

from sqlalchemy.sql import Executable

from sync_wubook.db.writers._upsert import build_upsert
from sync_wubook.models.fx import FxLinkMeta, FxQuote


def link_meta_stmt(
    dialect_name: str,
    currency: str,
    last_linked_date: date,
    last_quote_date: Optional[date],
    now: datetime,
) -> Executable:
    """
    Advance the FX linking watermark.

    Args:
        dialect_name: Target engine's dialect name
        currency: Quoted currency
        last_linked_date: End of the range just linked
        last_quote_date: Latest quote date seen during the run
        now: Write timestamp

    Returns:
        Executable: Upsert statement.
    """
    row = {
        "currency": currency,
        "last_linked_date": last_linked_date,
        "last_quote_date": last_quote_date,
        "updated_at": now,
    }
    return build_upsert(dialect_name, FxLinkMeta, row, ["currency"])


def quote_stmt(
    dialect_name: str,
    currency: str,
    quote_date: date,
    buy: Optional[float],
    sell: Optional[float],
    house: str = "oficial",
    source: Optional[str] = None,
) -> Executable:
    """Upsert one daily quote (used by fixtures and manual corrections)."""
    row = {
        "currency": currency,
        "quote_date": quote_date,
        "house": house,
        "buy": buy,
        "sell": sell,
        "source": source,
    }
    return build_upsert(dialect_name, FxQuote, row, ["currency", "quote_date"])
