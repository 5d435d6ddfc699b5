"""
Integration tests for the reservation upsert engine and its import drivers.
"""

from typing import Any, Callable
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from sync_wubook.config import Settings
from sync_wubook.db.readers.properties import PropertyConfig
from sync_wubook.db.readers.reservations import get_history, get_reservation
from sync_wubook.errors import NotFoundError, UpstreamError, ValidationError
from sync_wubook.models.reservations import Reservation
from sync_wubook.normalizers.reservations import normalize_reservation
from sync_wubook.services.mutations import apply_mutation
from sync_wubook.services.upsert import (
    OPEN_ENDED_TO_DATE,
    SOURCE_TODAY,
    import_by_arrival,
    sync_today,
    upsert_reservations,
)

RES_ID = "106_ABC123_11"


def _count(engine: Engine) -> int:
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(Reservation)).scalar_one()


@pytest.mark.integration
def test_creates_room_document_with_history(
    engine: Engine,
    settings: Settings,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> None:
    counts = upsert_reservations(engine, [make_raw()], prop, settings)

    assert counts == {"upserts": 1, "skipped": 0, "skipped_cancelled": 0, "unchanged": 0}
    with engine.connect() as conn:
        doc = get_reservation(conn, RES_ID)
        history = get_history(conn, RES_ID)

    assert doc is not None
    assert doc["guest_name"] == "Ana García"
    assert doc["room_code"] == "101"
    assert doc["arrival_iso"] == "2030-10-10"
    assert doc["channel"] == "Booking.com"
    assert doc["to_pay"] == 200.0
    assert doc["to_pay_breakdown"]["base_amount"] == 200.0
    assert doc["currency"] == "USD"
    assert doc["enrichment_state"] == "pending"
    assert len(history) == 1
    assert history[0]["change_type"] == "created"
    assert history[0]["source"] == "import_by_arrival"
    assert history[0]["hash_from"] is None
    assert history[0]["hash_to"] == doc["content_hash"]


@pytest.mark.integration
def test_reimport_is_unchanged(
    engine: Engine,
    settings: Settings,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> None:
    """Importing the same payload twice writes nothing the second time."""
    upsert_reservations(engine, [make_raw()], prop, settings)

    counts = upsert_reservations(engine, [make_raw()], prop, settings)

    assert counts["upserts"] == 0
    assert counts["unchanged"] == 1
    with engine.connect() as conn:
        assert len(get_history(conn, RES_ID)) == 1


@pytest.mark.integration
def test_duplicate_rows_in_one_payload_write_once(
    engine: Engine,
    settings: Settings,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> None:
    counts = upsert_reservations(engine, [make_raw(), make_raw()], prop, settings)

    assert counts["upserts"] == 1
    assert counts["unchanged"] == 1


@pytest.mark.integration
def test_host_pricing_survives_reimport(
    engine: Engine,
    settings: Settings,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> None:
    """A host-set breakdown and total are never replaced by the channel price."""
    upsert_reservations(engine, [make_raw()], prop, settings)
    apply_mutation(
        engine, settings, RES_ID, "setToPay", {"base_amount": 150, "vat_percent": 21}
    )

    counts = upsert_reservations(engine, [make_raw(amount=300)], prop, settings)

    with engine.connect() as conn:
        doc = get_reservation(conn, RES_ID)
    assert doc is not None
    assert doc["to_pay"] == 181.5
    assert doc["to_pay_breakdown"]["base_amount"] == 150.0
    assert doc["to_pay_breakdown"]["vat_percent"] == 21.0
    # The channel price itself is refreshed
    assert doc["channel_price"]["amount"] == 300.0
    assert counts["upserts"] == 1


@pytest.mark.integration
def test_host_edit_committed_mid_run_is_kept(
    engine: Engine,
    settings: Settings,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> None:
    """A price set by a host after the run read the document is not reverted."""
    upsert_reservations(engine, [make_raw()], prop, settings)
    seen: list[str] = []

    def normalize_then_edit(raw: dict[str, Any], currency: str) -> Any:
        seen.append(raw["id_human"])
        if len(seen) == 2:
            apply_mutation(engine, settings, RES_ID, "setToPay", {"base_amount": 999})
        return normalize_reservation(raw, currency)

    with patch(
        "sync_wubook.services.upsert.normalize_reservation", side_effect=normalize_then_edit
    ):
        counts = upsert_reservations(
            engine, [make_raw(amount=250), make_raw(code="XYZ789")], prop, settings
        )

    with engine.connect() as conn:
        doc = get_reservation(conn, RES_ID)
        history = get_history(conn, RES_ID)
    assert doc is not None
    assert doc["to_pay_breakdown"]["base_amount"] == 999.0
    assert doc["to_pay"] == 999.0
    assert doc["channel_price"]["amount"] == 250.0
    assert [h["source"] for h in history] == ["import_by_arrival", "host", "import_by_arrival"]
    assert history[-1]["snapshot_after"]["to_pay"] == 999.0
    assert counts["upserts"] == 2


@pytest.mark.integration
def test_guest_name_is_not_downgraded_to_booker_id(
    engine: Engine,
    settings: Settings,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> None:
    upsert_reservations(engine, [make_raw()], prop, settings)

    upsert_reservations(engine, [make_raw(customer={})], prop, settings)

    with engine.connect() as conn:
        doc = get_reservation(conn, RES_ID)
    assert doc is not None
    assert doc["guest_name"] == "Ana García"


@pytest.mark.integration
def test_non_settlement_price_sets_no_pricing(
    engine: Engine,
    settings: Settings,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> None:
    upsert_reservations(engine, [make_raw(currency="ARS", amount=250000)], prop, settings)

    with engine.connect() as conn:
        doc = get_reservation(conn, RES_ID)
    assert doc is not None
    assert doc["channel_price"]["currency"] == "ARS"
    assert "to_pay" not in doc
    assert "to_pay_breakdown" not in doc


@pytest.mark.integration
def test_cancelled_and_unmapped_are_skipped(
    engine: Engine,
    settings: Settings,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> None:
    raw = [
        make_raw(code="CANC1", status="cancelled"),
        make_raw(code="UNMAPPED", room="99"),
    ]

    counts = upsert_reservations(engine, raw, prop, settings)

    assert counts == {"upserts": 0, "skipped": 1, "skipped_cancelled": 1, "unchanged": 0}
    assert _count(engine) == 0


@pytest.mark.integration
def test_dry_run_counts_without_writing(
    engine: Engine,
    settings: Settings,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> None:
    counts = upsert_reservations(engine, [make_raw()], prop, settings, dry_run=True)

    assert counts["upserts"] == 1
    assert _count(engine) == 0


@pytest.mark.integration
def test_small_batches_still_write_everything(
    engine: Engine,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> None:
    settings = Settings(max_batch_ops=3)
    raw = [make_raw(code=f"R{i}") for i in range(5)]

    counts = upsert_reservations(engine, raw, prop, settings)

    assert counts["upserts"] == 5
    assert _count(engine) == 5


@pytest.mark.integration
@patch("sync_wubook.services.upsert.poll_reservations_by_arrival")
def test_import_by_arrival_isolates_properties(
    mock_poll: Mock,
    engine: Engine,
    settings: Settings,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> None:
    """Keyless properties are skipped; the keyed one is imported."""
    mock_poll.return_value = [make_raw()]

    result = import_by_arrival(engine, settings, from_date="2030-10-01", dry_run=False)

    assert result["ok"] is True
    assert result["mode"] == "manual"
    assert result["range"] == {"from": "01/10/2030", "to": OPEN_ENDED_TO_DATE}
    assert result["skipped_properties"] == 1
    by_id = {item["property"]["id"]: item for item in result["summary"]}
    assert by_id["106"]["status"] == "ok"
    assert by_id["106"]["upserts"] == 1
    assert by_id["207"]["status"] == "skipped"
    mock_poll.assert_called_once()


@pytest.mark.integration
@patch("sync_wubook.services.upsert.poll_reservations_by_arrival")
def test_import_auto_mode_uses_the_next_two_days(
    mock_poll: Mock, engine: Engine, settings: Settings, prop: PropertyConfig
) -> None:
    mock_poll.return_value = []

    result = import_by_arrival(engine, settings, property_ids=["106"])

    assert result["mode"] == "auto_future_sync"
    assert result["range"]["from"] != result["range"]["to"]
    assert result["summary"][0]["total_found"] == 0


@pytest.mark.integration
@patch("sync_wubook.services.upsert.poll_reservations_today")
def test_upstream_failure_is_recorded_per_property(
    mock_poll: Mock, engine: Engine, settings: Settings, prop: PropertyConfig
) -> None:
    mock_poll.side_effect = UpstreamError("boom", status_code=502)

    result = sync_today(engine, settings)

    assert result["ok"] is True
    assert result["mode"] == "today"
    assert result["errors"] == [{"property_id": "106", "error": "boom"}]
    by_id = {item["property"]["id"]: item for item in result["summary"]}
    assert by_id["106"]["status"] == "error"


@pytest.mark.integration
@patch("sync_wubook.services.upsert.poll_reservations_today")
def test_sync_today_records_its_source(
    mock_poll: Mock,
    engine: Engine,
    settings: Settings,
    prop: PropertyConfig,
    make_raw: Callable[..., dict[str, Any]],
) -> None:
    mock_poll.return_value = [make_raw()]

    sync_today(engine, settings, property_ids=["106"])

    with engine.connect() as conn:
        assert get_history(conn, RES_ID)[0]["source"] == SOURCE_TODAY


@pytest.mark.integration
def test_unknown_property_ids_raise(
    engine: Engine, settings: Settings, prop: PropertyConfig
) -> None:
    with pytest.raises(NotFoundError):
        sync_today(engine, settings, property_ids=["nope"])


@pytest.mark.integration
def test_invalid_date_raises(engine: Engine, settings: Settings, prop: PropertyConfig) -> None:
    with pytest.raises(ValidationError):
        import_by_arrival(engine, settings, from_date="next tuesday")
