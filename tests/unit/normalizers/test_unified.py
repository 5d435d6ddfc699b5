import pytest

from sync_wubook.normalizers.unified import (
    NOTES,
    PAYMENTS,
    identity_key,
    map_external_extras,
    map_external_notes,
    map_external_payments,
    reconcile_notes,
    reconcile_payments,
    sum_extras,
)

TS = 1_900_000_000


def _payment(external_id: object, amount: float, ts: int = TS, source: str = "external") -> dict:
    return {
        "ts": ts,
        "actor": "wubook",
        "source": source,
        "external_id": external_id,
        "amount": amount,
        "currency": "USD",
        "method": "card",
    }


@pytest.mark.unit
def test_identity_key_prefers_external_id() -> None:
    assert identity_key(_payment(7, 10), PAYMENTS) == "w:7"
    note = {"ts": TS, "source": "host", "external_id": None, "text": "Late arrival"}
    assert identity_key(note, NOTES) == f"s:host|t:{TS}|x:Late arrival"


@pytest.mark.unit
def test_reconcile_keeps_first_occurrence_and_adds_new() -> None:
    """A re-fetched external payment does not replace the stored one."""
    stored = [_payment("w1", 100)]
    incoming = [_payment("w1", 999), _payment("w2", 50, ts=TS + 60)]

    merged = reconcile_payments(stored, incoming)

    assert [p["external_id"] for p in merged] == ["w1", "w2"]
    assert merged[0]["amount"] == 100


@pytest.mark.unit
def test_reconcile_is_idempotent() -> None:
    stored = [_payment("w1", 100)]
    once = reconcile_payments(stored, [_payment("w2", 50)])
    twice = reconcile_payments(once, [_payment("w2", 50)])

    assert once == twice


@pytest.mark.unit
def test_reconcile_drops_contentless_and_sorts_by_time() -> None:
    notes = [
        {"ts": TS + 10, "source": "host", "external_id": None, "text": "second"},
        {"ts": TS, "source": "host", "external_id": None, "text": "first"},
        {"ts": TS, "source": "host", "external_id": None, "text": "   "},
    ]

    merged = reconcile_notes(notes, None)

    assert [n["text"] for n in merged] == ["first", "second"]


@pytest.mark.unit
def test_host_notes_with_same_second_and_text_are_duplicates() -> None:
    note = {"ts": "2030-03-17T17:46:40Z", "source": "host", "external_id": None, "text": "hi"}
    same = {**note, "ts": TS}

    assert len(reconcile_notes([note], [same])) == 1


@pytest.mark.unit
def test_map_external_payments_normalizes_fields() -> None:
    raw = [
        {"id": 1, "amount": "100", "currency": "usd", "method": "card", "created_at": TS},
        {"id": 2, "total": 5000, "ccy": "ARS", "type": "cash"},
        {"id": 3, "amount": 0},
        "garbage",
    ]

    payments = map_external_payments(raw, "ARS")

    assert len(payments) == 2
    assert payments[0]["amount"] == 100.0
    assert payments[0]["currency"] == "USD"
    assert payments[0]["ts"] == "2030-03-17T17:46:40+00:00"
    assert payments[1]["method"] == "cash"
    assert payments[1]["ts"] is None
    assert all(p["source"] == "external" for p in payments)


@pytest.mark.unit
def test_map_external_notes_and_extras() -> None:
    notes = map_external_notes([{"id": 4, "remarks": "Cuna"}, {"id": 5, "remarks": ""}])
    extras = map_external_extras(
        [{"exid": 9, "name": "Limpieza", "price": 25, "ccy": "USD", "number": 2}], "ARS"
    )

    assert [n["text"] for n in notes] == ["Cuna"]
    assert notes[0]["sent_to_channel"] is True
    assert extras[0]["external_id"] == 9
    assert extras[0]["qty"] == 2
    assert extras[0]["inclusive"] is False


@pytest.mark.unit
def test_sum_extras_counts_only_the_requested_currency() -> None:
    extras = [
        {"price": 10, "qty": 2, "currency": "USD"},
        {"price": 5, "qty": 1, "currency": "ARS"},
    ]

    assert sum_extras(extras, "USD") == 20.0
