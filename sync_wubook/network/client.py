"""
Client module for the WuBook channel-manager APIs.

Two APIs are used: KP (reservations and customers, `x-api-key` header) and
KAPI (payments, notes and extras, HTTP basic auth with the key as user).
Both take form-encoded POST bodies. Throttled, timed-out and 5xx requests
are retried; anything still failing is raised as `UpstreamError`.
"""

import json
import time
from typing import Any, Optional, cast

import requests
import structlog

from sync_wubook.config import Settings
from sync_wubook.errors import UpstreamError
from sync_wubook.metrics import api_latency, api_requests

logger = structlog.get_logger(__name__)

PAGE_LIMIT = 64
MAX_PAGES = 100
RETRY_DELAY = 1.0


def should_retry(res: Optional[requests.Response], err: Optional[Exception]) -> bool:
    """
    Determine whether the request should be retried based on response or error.

    Args:
        res (Optional[requests.Response]): Response object if available.
        err (Optional[Exception]): Exception raised by the request, if any.

    Returns:
        bool: True if the request should be retried, False otherwise.
    """
    if res is not None and res.status_code == 429:
        return True
    if isinstance(err, (requests.Timeout, requests.ConnectionError)):
        return True
    if res is not None and 500 <= res.status_code < 600:
        return True
    return False


def post_form(
    base_url: str,
    endpoint: str,
    data: dict[str, Any],
    settings: Settings,
    headers: Optional[dict[str, str]] = None,
    auth: Optional[tuple[str, str]] = None,
) -> dict[str, Any]:
    """
    POST a form-encoded request and return the decoded JSON body.

    Args:
        base_url (str): KP or KAPI base URL.
        endpoint (str): Path below the base URL (e.g. 'payments/get_payments').
        data (dict): Form fields.
        settings (Settings): Supplies timeout and retry count.
        headers (Optional[dict]): Extra headers (the KP API key).
        auth (Optional[tuple]): Basic auth pair (the KAPI API key).

    Returns:
        dict: The JSON response.

    Raises:
        UpstreamError: If the request fails after all retries or the body is not JSON.
    """
    url = f"{base_url.rstrip('/')}/{endpoint}"
    retries = 0

    while True:
        res: Optional[requests.Response] = None
        try:
            logger.debug("Requesting %s", endpoint)

            start_time = time.time()
            res = requests.post(
                url, data=data, headers=headers, auth=auth, timeout=settings.request_timeout
            )
            api_requests.labels(endpoint=endpoint, status_code=str(res.status_code)).inc()
            api_latency.labels(endpoint=endpoint).observe(time.time() - start_time)

            res.raise_for_status()
            return cast(dict[str, Any], res.json())

        except ValueError as err:
            # requests' JSONDecodeError subclasses ValueError
            raise UpstreamError(f"Invalid JSON from {endpoint}: {err}") from err

        except requests.RequestException as err:
            if res is None:
                api_requests.labels(endpoint=endpoint, status_code="error").inc()
            logger.warning("Error calling %s: %s", endpoint, str(err))
            retries += 1
            if retries > settings.max_retries or not should_retry(res, err):
                status = res.status_code if res is not None else None
                raise UpstreamError(f"{endpoint} failed: {err}", status_code=status) from err
            time.sleep(RETRY_DELAY * retries)


def _kp(endpoint: str, data: dict[str, Any], api_key: str, settings: Settings) -> dict[str, Any]:
    return post_form(settings.kp_base_url, endpoint, data, settings, headers={"x-api-key": api_key})


def _kapi(endpoint: str, data: dict[str, Any], api_key: str, settings: Settings) -> dict[str, Any]:
    return post_form(settings.kapi_base_url, endpoint, data, settings, auth=(api_key, ""))


def _reservations_of(body: dict[str, Any]) -> list[dict[str, Any]]:
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    items = data.get("reservations") or []
    return [r for r in items if isinstance(r, dict)]


def fetch_reservations_by_arrival(
    api_key: str, settings: Settings, from_date: str, to_date: str
) -> list[dict[str, Any]]:
    """
    Fetch every reservation arriving within a date range, page by page.

    Args:
        api_key (str): Property API key.
        settings (Settings): Runtime settings.
        from_date (str): First arrival date, `dd/mm/yyyy`.
        to_date (str): Last arrival date, `dd/mm/yyyy`.

    Returns:
        list[dict]: Raw reservations across all pages.
    """
    results: list[dict[str, Any]] = []
    offset = 0
    for _ in range(MAX_PAGES):
        filters = {
            "arrival": {"from": from_date, "to": to_date},
            "pager": {"limit": PAGE_LIMIT, "offset": offset},
        }
        body = _kp(
            "reservations/fetch_reservations", {"filters": json.dumps(filters)}, api_key, settings
        )
        items = _reservations_of(body)
        results.extend(items)
        if len(items) < PAGE_LIMIT:
            break
        offset += PAGE_LIMIT
    else:
        logger.warning("page_guard_reached", pages=MAX_PAGES, fetched=len(results))

    return results


def fetch_today_reservations(api_key: str, settings: Settings) -> list[dict[str, Any]]:
    """Fetch the channel's "today" list (arrivals, departures and in-house stays)."""
    return _reservations_of(_kp("reservations/fetch_today_reservations", {}, api_key, settings))


def fetch_customer(api_key: str, settings: Settings, customer_id: str) -> Optional[dict[str, Any]]:
    """
    Fetch a customer record.

    Returns:
        Optional[dict]: `{"main_info": {...}, "contacts": {...}}`, or None
        when the customer has no main info.
    """
    body = _kp("customers/fetch_one", {"id": customer_id}, api_key, settings)
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    if not isinstance(data.get("main_info"), dict):
        return None
    return {"main_info": data["main_info"], "contacts": data.get("contacts") or {}}


def _kapi_list(endpoint: str, api_key: str, settings: Settings, rcode: str) -> list[Any]:
    body = _kapi(endpoint, {"rcode": rcode}, api_key, settings)
    data = body.get("data")
    return data if isinstance(data, list) else []


def fetch_payments(api_key: str, settings: Settings, rcode: str) -> list[Any]:
    return _kapi_list("payments/get_payments", api_key, settings, rcode)


def fetch_notes(api_key: str, settings: Settings, rcode: str) -> list[Any]:
    return _kapi_list("notes/get_notes", api_key, settings, rcode)


def fetch_extras(api_key: str, settings: Settings, rcode: str) -> list[Any]:
    return _kapi_list("reservations/get_extras", api_key, settings, rcode)
