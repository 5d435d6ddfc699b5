"""
Stable content hashing and top-level diffing of reservation documents.

Used to skip writes when nothing material changed and to fill the
`changed_keys` / `diff` fields of every history entry.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

# Bookkeeping fields that never count as a content change
VOLATILE_KEYS = frozenset(
    {
        "created_at",
        "updated_at",
        "content_hash",
        "enrichment_state",
        "enriched_at",
        "last_updated_at",
        "last_updated_by",
    }
)


def _sort_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _sort_keys(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [_sort_keys(item) for item in value]
    return value


def stable_json(value: Any) -> str:
    """
    Serialize to JSON with object keys sorted at every depth.

    List order is preserved: it is significant for the unified lists.

    Args:
        value: Any JSON-compatible value.

    Returns:
        str: Canonical JSON text.
    """
    return json.dumps(_sort_keys(value), separators=(",", ":"), ensure_ascii=False, default=str)


def strip_volatile(doc: dict[str, Any] | None) -> dict[str, Any]:
    """Return a shallow copy of `doc` without the volatile keys."""
    return {k: v for k, v in (doc or {}).items() if k not in VOLATILE_KEYS}


def hash_document(doc: dict[str, Any] | None) -> str:
    """
    Compute the content hash of a document.

    Args:
        doc: Reservation document (volatile keys are ignored).

    Returns:
        str: sha1 hex digest of the canonical JSON.

    Example:
        >>> hash_document({"a": 1, "b": 2}) == hash_document({"b": 2, "a": 1})
        True
    """
    payload = stable_json(strip_volatile(doc)).encode("utf-8")
    return hashlib.sha1(payload).hexdigest()


def diff_documents(
    before: dict[str, Any] | None, after: dict[str, Any] | None
) -> dict[str, dict[str, Any]]:
    """
    Report every top-level key whose canonical JSON differs.

    Args:
        before: Stored document (or None for a new one).
        after: Candidate document.

    Returns:
        dict: `{key: {"from": old, "to": new}}`; missing values are None.
    """
    before = before or {}
    after = after or {}
    diff: dict[str, dict[str, Any]] = {}
    for key in sorted(set(before) | set(after)):
        if key in VOLATILE_KEYS:
            continue
        old, new = before.get(key), after.get(key)
        if stable_json(old) != stable_json(new):
            diff[key] = {"from": old, "to": new}
    return diff
