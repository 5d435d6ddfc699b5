from datetime import date, timedelta
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Connection

from sync_wubook.models.fx import FxLinkMeta, FxQuote


def get_quote(conn: Connection, currency: str, day: date) -> Optional[dict[str, Any]]:
    """
    Load the quote for one currency and day.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        currency (str): Quoted currency, e.g. "USD".
        day (date): Quote date.

    Returns:
        Optional[dict]: `{date, house, buy, sell, source}` or None.
    """
    row = conn.execute(
        select(FxQuote.quote_date, FxQuote.house, FxQuote.buy, FxQuote.sell, FxQuote.source)
        .where(FxQuote.currency == currency, FxQuote.quote_date == day)
    ).first()
    if row is None:
        return None
    return {
        "date": row.quote_date,
        "house": row.house,
        "buy": row.buy,
        "sell": row.sell,
        "source": row.source,
    }


def get_sell_rate(conn: Connection, currency: str, day: date) -> Optional[float]:
    """Sell rate (local units per settlement unit) for `day`, if positive."""
    quote = get_quote(conn, currency, day)
    sell = quote["sell"] if quote else None
    return float(sell) if sell and sell > 0 else None


def find_previous_quote_date(
    conn: Connection, currency: str, before: date, lookback_days: int
) -> Optional[date]:
    """Most recent day strictly before `before` (within the lookback) with a sell rate."""
    row = conn.execute(
        select(func.max(FxQuote.quote_date)).where(
            FxQuote.currency == currency,
            FxQuote.sell.is_not(None),
            FxQuote.quote_date < before,
            FxQuote.quote_date >= before - timedelta(days=lookback_days),
        )
    ).first()
    return row[0] if row else None


def get_last_quote_date(conn: Connection, currency: str) -> Optional[date]:
    """Latest quote date carrying a sell rate."""
    row = conn.execute(
        select(func.max(FxQuote.quote_date)).where(
            FxQuote.currency == currency, FxQuote.sell.is_not(None)
        )
    ).first()
    return row[0] if row else None


def get_link_meta(conn: Connection, currency: str) -> dict[str, Optional[date]]:
    """Watermark record; both dates are None when linking never ran."""
    row = conn.execute(
        select(FxLinkMeta.last_quote_date, FxLinkMeta.last_linked_date).where(
            FxLinkMeta.currency == currency
        )
    ).first()
    if row is None:
        return {"last_quote_date": None, "last_linked_date": None}
    return {"last_quote_date": row.last_quote_date, "last_linked_date": row.last_linked_date}
