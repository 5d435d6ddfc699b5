"""
Integration tests for the enrichment merger with the channel API mocked out.
"""

from typing import Any, Callable
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from sync_wubook.cache import CredentialCache
from sync_wubook.config import Settings
from sync_wubook.db.readers.properties import PropertyConfig
from sync_wubook.db.readers.reservations import get_history, get_reservation
from sync_wubook.errors import InvalidRequestError, UpstreamError, ValidationError
from sync_wubook.models.reservations import ReservationPayment
from sync_wubook.services.enrichment import enrich
from sync_wubook.services.mutations import apply_mutation
from sync_wubook.services.upsert import upsert_reservations

RES_ID = "106_ABC123_11"

CUSTOMER = {
    "main_info": {"name": "Ana María", "surname": "García", "city": "Rosario", "country": "AR"},
    "contacts": {"email": "ana@example.com", "phone": "+54 11 5555"},
}
PAYMENTS = [
    {"id": 77, "amount": 100, "currency": "USD", "method": "card", "created_at": 1_900_000_000}
]
NOTES = [{"id": 3, "remarks": "Llega tarde", "created_at": 1_900_000_100}]
EXTRAS = [{"exid": 5, "name": "Limpieza", "price": 25, "ccy": "USD", "number": 1}]


@pytest.fixture
def seeded(
    engine: Engine,
    settings: Settings,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> str:
    upsert_reservations(engine, [make_raw()], prop, settings)
    return RES_ID


@pytest.fixture
def channel() -> Any:
    """Patch the four sub-resource fetches with canned responses."""
    with patch("sync_wubook.services.enrichment.fetch_customer") as customer, patch(
        "sync_wubook.services.enrichment.fetch_payments"
    ) as payments, patch("sync_wubook.services.enrichment.fetch_notes") as notes, patch(
        "sync_wubook.services.enrichment.fetch_extras"
    ) as extras:
        customer.return_value = CUSTOMER
        payments.return_value = PAYMENTS
        notes.return_value = NOTES
        extras.return_value = EXTRAS
        yield Mock(customer=customer, payments=payments, notes=notes, extras=extras)


def _ledger_count(engine: Engine) -> int:
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(ReservationPayment)).scalar_one()


@pytest.mark.integration
def test_enrich_pending_merges_everything(
    engine: Engine, settings: Settings, seeded: str, channel: Mock
) -> None:
    result = enrich(engine, settings, cache=CredentialCache())

    assert result["ok"] is True
    assert result["total_found"] == 1
    assert result["processed"] == 1
    assert result["payment_records"] == 1

    with engine.connect() as conn:
        doc = get_reservation(conn, seeded)
        history = get_history(conn, seeded)
    assert doc is not None
    assert doc["guest_name"] == "Ana María García"
    assert doc["guest_email"] == "ana@example.com"
    assert doc["guest_city"] == "Rosario"
    assert [n["text"] for n in doc["notes"]] == ["Llega tarde"]
    assert doc["payments"][0]["external_id"] == 77
    assert doc["raw_payments"] == PAYMENTS
    # Extras were null in the breakdown, so they are filled and the total follows
    assert doc["to_pay_breakdown"]["extras_amount"] == 25.0
    assert doc["to_pay"] == 225.0
    assert doc["payment_status"] == "partial"
    assert doc["enrichment_state"] == "completed"
    assert history[-1]["source"] == "enrichment"
    assert _ledger_count(engine) == 1
    channel.customer.assert_called_once()


@pytest.mark.integration
def test_rerun_is_unchanged_and_ledger_not_duplicated(
    engine: Engine, settings: Settings, seeded: str, channel: Mock
) -> None:
    enrich(engine, settings, cache=CredentialCache())

    result = enrich(engine, settings, mode="force", cache=CredentialCache())

    assert result["total_found"] == 1
    assert result["processed"] == 0
    assert result["unchanged"] == 1
    assert result["payment_records"] == 0
    assert _ledger_count(engine) == 1


@pytest.mark.integration
def test_completed_reservations_are_not_pending(
    engine: Engine, settings: Settings, seeded: str, channel: Mock
) -> None:
    enrich(engine, settings, cache=CredentialCache())

    result = enrich(engine, settings, cache=CredentialCache())

    assert result["total_found"] == 0


@pytest.mark.integration
def test_host_extras_are_preserved(
    engine: Engine, settings: Settings, seeded: str, channel: Mock
) -> None:
    apply_mutation(engine, settings, seeded, "setToPay", {"extras_amount": 10})

    enrich(engine, settings, cache=CredentialCache())

    with engine.connect() as conn:
        doc = get_reservation(conn, seeded)
    assert doc is not None
    assert doc["to_pay_breakdown"]["extras_amount"] == 10.0
    assert doc["to_pay"] == 210.0


@pytest.mark.integration
def test_failed_fetch_keeps_previous_data(
    engine: Engine, settings: Settings, seeded: str, channel: Mock
) -> None:
    enrich(engine, settings, cache=CredentialCache())
    channel.notes.side_effect = UpstreamError("notes down")
    channel.payments.return_value = PAYMENTS + [
        {"id": 78, "amount": 100, "currency": "USD", "created_at": 1_900_000_500}
    ]

    result = enrich(engine, settings, mode="force", cache=CredentialCache())

    with engine.connect() as conn:
        doc = get_reservation(conn, seeded)
    assert doc is not None
    assert result["processed"] == 1
    assert result["payment_records"] == 1
    assert doc["raw_notes"] == NOTES
    assert [n["text"] for n in doc["notes"]] == ["Llega tarde"]
    assert len(doc["payments"]) == 2
    assert doc["payment_status"] == "partial"
    assert _ledger_count(engine) == 2


@pytest.mark.integration
def test_single_reservation_and_missing_id(
    engine: Engine, settings: Settings, seeded: str, channel: Mock
) -> None:
    assert enrich(engine, settings, reservation_id=seeded, cache=CredentialCache())[
        "processed"
    ] == 1
    assert enrich(engine, settings, reservation_id="nope", cache=CredentialCache())[
        "total_found"
    ] == 0


@pytest.mark.integration
def test_dry_run_writes_nothing(
    engine: Engine, settings: Settings, seeded: str, channel: Mock
) -> None:
    result = enrich(engine, settings, dry_run=True, cache=CredentialCache())

    assert result["processed"] == 1
    with engine.connect() as conn:
        doc = get_reservation(conn, seeded)
    assert doc is not None
    assert "payments" not in doc
    assert _ledger_count(engine) == 0


@pytest.mark.integration
def test_property_without_key_is_skipped(
    engine: Engine, settings: Settings, seeded: str, channel: Mock
) -> None:
    cache = Mock(spec=CredentialCache)
    cache.get_or_load.return_value = None

    result = enrich(engine, settings, cache=cache)

    assert result["skipped"] == 1
    channel.payments.assert_not_called()


@pytest.mark.integration
def test_invalid_arguments(engine: Engine, settings: Settings) -> None:
    with pytest.raises(InvalidRequestError):
        enrich(engine, settings, mode="everything")
    with pytest.raises(ValidationError):
        enrich(engine, settings, limit=0)


@pytest.mark.integration
def test_host_note_added_during_fetch_is_kept(
    engine: Engine, settings: Settings, seeded: str, channel: Mock
) -> None:
    def notes_with_host_edit(*args: Any) -> list[dict[str, Any]]:
        apply_mutation(engine, settings, seeded, "addNote", {"text": "Pide cuna"})
        return NOTES

    channel.notes.side_effect = notes_with_host_edit

    result = enrich(engine, settings, cache=CredentialCache())

    with engine.connect() as conn:
        doc = get_reservation(conn, seeded)
        history = get_history(conn, seeded)
    assert doc is not None
    # Sorted by timestamp: the host note is stamped now, the channel one in 2030
    assert [n["text"] for n in doc["notes"]] == ["Pide cuna", "Llega tarde"]
    assert doc["notes"][0]["source"] == "host"
    assert [h["source"] for h in history][-2:] == ["host", "enrichment"]
    assert result["processed"] == 1


@pytest.mark.integration
def test_host_extras_set_during_fetch_are_not_replaced(
    engine: Engine, settings: Settings, seeded: str, channel: Mock
) -> None:
    def extras_with_host_edit(*args: Any) -> list[dict[str, Any]]:
        apply_mutation(engine, settings, seeded, "setToPay", {"extras_amount": 40})
        return EXTRAS

    channel.extras.side_effect = extras_with_host_edit

    enrich(engine, settings, cache=CredentialCache())

    with engine.connect() as conn:
        doc = get_reservation(conn, seeded)
    assert doc is not None
    assert doc["to_pay_breakdown"]["extras_amount"] == 40.0
    assert doc["to_pay"] == 240.0
    assert doc["extras"][0]["name"] == "Limpieza"


@pytest.mark.integration
def test_default_cache_uses_configured_ttl(
    engine: Engine, settings: Settings, seeded: str, channel: Mock
) -> None:
    settings = settings.model_copy(update={"credential_cache_ttl": 60})

    with patch(
        "sync_wubook.services.enrichment.get_credential_cache",
        return_value=CredentialCache(ttl_seconds=60),
    ) as factory:
        result = enrich(engine, settings)

    factory.assert_called_once_with(60)
    assert result["processed"] == 1
