"""
Prometheus metrics for reservation sync, enrichment, FX linking and cron runs.

Metrics are exposed via the /metrics endpoint for scraping by Prometheus.

Example:
    >>> from sync_wubook.metrics import poll_duration, reservation_writes
    >>> with poll_duration.labels(property_id="106", kind="by_arrival").time():
    ...     raw = poll_reservations_by_arrival(prop, settings, "01/10/2025", "02/10/2025")
    >>> reservation_writes.labels(source="import_by_arrival", change_type="created").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Poll Metrics
# =============================================================================

poll_total = Counter(
    "wubook_polls_total",
    "Total number of reservation polls (success and failure)",
    ["property_id", "kind", "status"],
)
"""
Counter for reservation polls.

Labels:
    property_id: Property ID
    kind: by_arrival or today
    status: success or failure
"""

poll_duration = Histogram(
    "wubook_poll_duration_seconds",
    "Duration of reservation polls in seconds",
    ["property_id", "kind"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, float("inf")),
)

records_fetched = Counter(
    "wubook_records_fetched_total",
    "Total number of raw reservations fetched from the channel manager",
    ["property_id", "kind"],
)

# =============================================================================
# API Metrics
# =============================================================================

api_requests = Counter(
    "wubook_api_requests_total",
    "Total channel-manager API requests made",
    ["endpoint", "status_code"],
)
"""
Counter for API requests.

Labels:
    endpoint: API endpoint path (e.g., "reservations/fetch_reservations")
    status_code: HTTP status code, or "error" when no response was received
"""

api_latency = Histogram(
    "wubook_api_latency_seconds",
    "Channel-manager API request latency in seconds",
    ["endpoint"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float("inf")),
)

# =============================================================================
# Engine Metrics
# =============================================================================

reservation_writes = Counter(
    "wubook_reservation_writes_total",
    "Reservation document writes (each with one history entry)",
    ["source", "change_type"],
)
"""
Counter for reservation writes.

Labels:
    source: import_by_arrival, sync_today, enrichment, host
    change_type: created or updated
"""

enrichment_outcomes = Counter(
    "wubook_enrichment_outcomes_total",
    "Per-reservation enrichment outcomes",
    ["outcome"],
)
"""
Labels:
    outcome: updated, unchanged, skipped, failed
"""

fx_link_dates = Counter(
    "wubook_fx_link_dates_total",
    "Dates processed by FX linking",
    ["status"],
)

orchestrator_steps = Counter(
    "wubook_orchestrator_steps_total",
    "Orchestrator step outcomes",
    ["step", "outcome"],
)

orchestrator_step_duration = Histogram(
    "wubook_orchestrator_step_duration_seconds",
    "Duration of orchestrator steps in seconds, retries included",
    ["step"],
    buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, float("inf")),
)

# =============================================================================
# Credential Cache Metrics
# =============================================================================

credential_cache_hits = Counter(
    "wubook_credential_cache_hits_total",
    "Total number of property credential cache hits",
)

credential_cache_misses = Counter(
    "wubook_credential_cache_misses_total",
    "Total number of property credential cache misses",
)
