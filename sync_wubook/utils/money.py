"""
Financial breakdown calculator and payment-status helpers.

All amounts in a breakdown are expressed in the settlement currency. The
breakdown fields are `base_amount`, `vat_percent`, `vat_amount`,
`extras_amount` and `fx_rate`; each is independently nullable.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Optional

BREAKDOWN_FIELDS = ("base_amount", "vat_percent", "vat_amount", "extras_amount", "fx_rate")

# Older documents and clients used these names.
# TODO: drop the aliases once no stored document carries a pre-rename breakdown.
LEGACY_BREAKDOWN_ALIASES: dict[str, tuple[str, ...]] = {
    "base_amount": ("baseAmount", "baseUSD"),
    "vat_percent": ("vatPercent", "ivaPercent"),
    "vat_amount": ("vatAmount", "vatUSD", "ivaUSD"),
    "extras_amount": ("extrasAmount", "extrasUSD", "cleaningUSD"),
    "fx_rate": ("fxRate",),
}


def to_number_or_none(value: Any) -> Optional[float]:
    """Return a finite float, or None for empty/invalid input."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def round2(value: Any) -> float:
    """Round to two decimals; invalid input yields 0.0."""
    number = to_number_or_none(value)
    return float(round(number, 2)) if number is not None else 0.0


def canonical_breakdown(raw: Optional[dict[str, Any]]) -> dict[str, Any]:
    """
    Map a breakdown that may use legacy key names onto the canonical keys.

    Canonical names win over aliases when both are present.

    Args:
        raw: Stored or supplied breakdown.

    Returns:
        dict: Breakdown with exactly the canonical keys (values may be None).
    """
    raw = raw or {}
    out: dict[str, Any] = {}
    for field in BREAKDOWN_FIELDS:
        value = raw.get(field)
        if value is None:
            for alias in LEGACY_BREAKDOWN_ALIASES[field]:
                if raw.get(alias) is not None:
                    value = raw[alias]
                    break
        out[field] = value
    return out


def recompute_to_pay(
    breakdown: Optional[dict[str, Any]], extras_override: Any = None
) -> dict[str, Any]:
    """
    Compute the total payable from a breakdown.

    Rules:
        - base defaults to 0
        - VAT amount is taken verbatim when present; otherwise derived from
          the percent when the base is positive; otherwise 0
        - extras come from `extras_override`, else the breakdown, else 0
        - total = base + vat + extras, two decimals

    Args:
        breakdown: Breakdown dict (canonical or legacy keys). Not mutated.
        extras_override: Extras amount to use instead of the breakdown's.

    Returns:
        dict: `total`, `base_amount`, `vat_percent`, `vat_amount`, `extras_amount`.

    Example:
        >>> recompute_to_pay({"base_amount": 100, "vat_percent": 21}, None)["total"]
        121.0
    """
    bd = canonical_breakdown(breakdown)
    base = to_number_or_none(bd["base_amount"]) or 0.0
    vat_percent = to_number_or_none(bd["vat_percent"])
    vat_amount = to_number_or_none(bd["vat_amount"])
    if vat_amount is None:
        if vat_percent is not None and base > 0:
            vat_amount = round2(base * vat_percent / 100)
        else:
            vat_amount = 0.0

    extras_source = extras_override if extras_override is not None else bd["extras_amount"]
    extras = to_number_or_none(extras_source) or 0.0

    return {
        "total": round2(base + vat_amount + extras),
        "base_amount": base,
        "vat_percent": vat_percent,
        "vat_amount": vat_amount,
        "extras_amount": extras,
    }


def compute_paid(
    payments: Iterable[dict[str, Any]],
    settlement_currency: str,
    local_currency: str,
    rate: Optional[float],
) -> tuple[float, Optional[float], Optional[str]]:
    """
    Sum payments expressed in the settlement currency.

    Local-currency amounts are divided by `rate` (local units per settlement
    unit); without a rate they are ignored. Other currencies are ignored.

    Returns:
        tuple: (paid, rate_used, note)
    """
    settlement = settlement_currency.upper()
    local = local_currency.upper()
    paid = 0.0
    for payment in payments or []:
        amount = to_number_or_none(payment.get("amount"))
        if not amount:
            continue
        currency = str(payment.get("currency") or "").upper()
        if currency == settlement:
            paid += amount
        elif currency == local and rate:
            paid += amount / rate
    note = None if rate else f"FX missing: {settlement} total ignores {local}"
    return round2(paid), rate or None, note


def payment_status(to_pay: Any, paid: float) -> str:
    """Classify a reservation as `paid`, `partial` or `unpaid`."""
    total = to_number_or_none(to_pay)
    if total is not None and total > 0:
        if paid >= total:
            return "paid"
        return "partial" if paid > 0 else "unpaid"
    return "partial" if paid > 0 else "unpaid"
