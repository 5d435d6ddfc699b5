import json
from typing import Any, Optional
from unittest.mock import Mock, patch

import pytest
import requests

from sync_wubook.config import Settings
from sync_wubook.errors import UpstreamError
from sync_wubook.network.client import (
    PAGE_LIMIT,
    fetch_customer,
    fetch_payments,
    fetch_reservations_by_arrival,
    post_form,
)

SETTINGS = Settings(kp_base_url="https://kp.test/kp", kapi_base_url="https://kp.test/kapi")


def _response(status_code: int, body: Optional[Any] = None) -> Mock:
    res = Mock(status_code=status_code)
    res.json.return_value = body
    if status_code >= 400:
        res.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return res


@pytest.mark.unit
@patch("sync_wubook.network.client.requests.post")
def test_fetch_reservations_pages_until_short_page(mock_post: Mock) -> None:
    """A full page triggers another request at the next offset."""
    full_page = [{"id": i} for i in range(PAGE_LIMIT)]
    mock_post.side_effect = [
        _response(200, {"data": {"reservations": full_page}}),
        _response(200, {"data": {"reservations": [{"id": 999}]}}),
    ]

    result = fetch_reservations_by_arrival("key", SETTINGS, "01/10/2030", "02/10/2030")

    assert len(result) == PAGE_LIMIT + 1
    second_filters = json.loads(mock_post.call_args_list[1].kwargs["data"]["filters"])
    assert second_filters["pager"] == {"limit": PAGE_LIMIT, "offset": PAGE_LIMIT}
    assert second_filters["arrival"] == {"from": "01/10/2030", "to": "02/10/2030"}
    assert mock_post.call_args_list[0].kwargs["headers"] == {"x-api-key": "key"}
    assert mock_post.call_args_list[0].args[0] == (
        "https://kp.test/kp/reservations/fetch_reservations"
    )


@pytest.mark.unit
@patch("sync_wubook.network.client.time.sleep")
@patch("sync_wubook.network.client.requests.post")
def test_post_form_retries_throttled_requests(mock_post: Mock, mock_sleep: Mock) -> None:
    mock_post.side_effect = [_response(429), _response(503), _response(200, {"data": []})]

    body = post_form("https://kp.test/kapi", "notes/get_notes", {"rcode": "A"}, SETTINGS)

    assert body == {"data": []}
    assert mock_post.call_count == 3
    assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]


@pytest.mark.unit
@patch("sync_wubook.network.client.time.sleep")
@patch("sync_wubook.network.client.requests.post")
def test_post_form_gives_up_after_max_retries(mock_post: Mock, mock_sleep: Mock) -> None:
    mock_post.return_value = _response(500)

    with pytest.raises(UpstreamError) as exc_info:
        post_form("https://kp.test/kp", "customers/fetch_one", {}, SETTINGS)

    assert exc_info.value.status_code == 500
    assert mock_post.call_count == SETTINGS.max_retries + 1


@pytest.mark.unit
@patch("sync_wubook.network.client.requests.post")
def test_client_errors_are_not_retried(mock_post: Mock) -> None:
    mock_post.return_value = _response(401)

    with pytest.raises(UpstreamError):
        post_form("https://kp.test/kp", "customers/fetch_one", {}, SETTINGS)

    assert mock_post.call_count == 1


@pytest.mark.unit
@patch("sync_wubook.network.client.requests.post")
def test_invalid_json_raises_upstream_error(mock_post: Mock) -> None:
    res = _response(200)
    res.json.side_effect = ValueError("Expecting value")
    mock_post.return_value = res

    with pytest.raises(UpstreamError):
        fetch_payments("key", SETTINGS, "ABC123")


@pytest.mark.unit
@patch("sync_wubook.network.client.requests.post")
def test_kapi_calls_use_basic_auth(mock_post: Mock) -> None:
    mock_post.return_value = _response(200, {"data": [{"id": 1, "amount": 10}]})

    payments = fetch_payments("key", SETTINGS, "ABC123")

    assert payments == [{"id": 1, "amount": 10}]
    assert mock_post.call_args.kwargs["auth"] == ("key", "")
    assert mock_post.call_args.kwargs["data"] == {"rcode": "ABC123"}


@pytest.mark.unit
@patch("sync_wubook.network.client.requests.post")
def test_fetch_customer_without_main_info(mock_post: Mock) -> None:
    mock_post.return_value = _response(200, {"data": {}})

    assert fetch_customer("key", SETTINGS, "555") is None
