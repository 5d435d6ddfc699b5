"""
Cron orchestrator.

Runs the sync steps in a fixed order against the service's own HTTP
endpoints, one lease-locked run at a time. A failed step is recorded and
the sequence continues. Once the total timeout has elapsed or the lock
lease is lost, the steps not yet started are recorded as skipped.
"""

import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Optional

import requests
import structlog
from sqlalchemy.engine import Engine

from sync_wubook.config import Settings
from sync_wubook.errors import ConfigurationError, ConflictError
from sync_wubook.metrics import orchestrator_step_duration, orchestrator_steps
from sync_wubook.services.locks import LeaseLock
from sync_wubook.utils.datetime import to_iso_instant, utc_now

logger = structlog.get_logger(__name__)

BACKOFF_BASE_SECONDS = 1.0
LOCK_GRACE_MS = 60_000
MAX_ERROR_BODY = 300


@dataclass(frozen=True)
class Step:
    """One orchestrated call: POST `body` to `path` under the base URL."""

    name: str
    path: str
    body: dict[str, Any] = field(default_factory=dict)


def default_steps(dry_run: bool) -> list[Step]:
    return [
        Step("import_by_arrival", "/wubook/import-by-arrival", {"dry_run": dry_run}),
        Step("sync_today", "/wubook/sync-today", {"dry_run": dry_run}),
        Step("enrich_pending", "/wubook/enrich", {"limit": 500, "dry_run": dry_run}),
        Step(
            "enrich_active",
            "/wubook/enrich",
            {"limit": 100, "mode": "active", "dry_run": dry_run},
        ),
    ]


def post_step(
    url: str,
    body: dict[str, Any],
    timeout_ms: int,
    retries: int,
    name: str,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, Any]:
    """
    POST one step with a per-attempt timeout and exponential backoff.

    Args:
        url: Step endpoint
        body: JSON body
        timeout_ms: Timeout of each attempt
        retries: Extra attempts after the first failure
        name: Step name for logs
        sleep: Backoff sleeper (1s, 2s, 4s...)

    Returns:
        dict: `{ok, duration_ms, attempts, data}` or `{ok: False, duration_ms,
        attempts, error}`; never raises for HTTP or network failures.
    """
    attempt = 0
    while True:
        started = time.monotonic()
        logger.info("step_attempt_started", step=name, attempt=attempt + 1)
        try:
            res = requests.post(url, json=body, timeout=timeout_ms / 1000)
            try:
                data: Any = res.json()
            except ValueError:
                data = {"raw": res.text}
            duration_ms = int((time.monotonic() - started) * 1000)
            if res.status_code >= 400:
                raise requests.HTTPError(
                    f"{res.status_code} {res.reason} {str(data)[:MAX_ERROR_BODY]}"
                )
            logger.info("step_ok", step=name, duration_ms=duration_ms)
            return {"ok": True, "duration_ms": duration_ms, "attempts": attempt + 1, "data": data}
        except requests.RequestException as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.warning("step_failed", step=name, attempt=attempt + 1, error=str(e))
            if attempt >= retries:
                return {
                    "ok": False,
                    "duration_ms": duration_ms,
                    "attempts": attempt + 1,
                    "error": str(e),
                }
            backoff = BACKOFF_BASE_SECONDS * (2**attempt)
            logger.info("step_retry_scheduled", step=name, backoff_s=backoff)
            sleep(backoff)
            attempt += 1


def run_orchestrator(
    engine: Engine,
    settings: Settings,
    dry_run: bool = False,
    step_timeout_ms: int = 120_000,
    total_timeout_ms: int = 420_000,
    retries: int = 2,
    steps: Optional[list[Step]] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> dict[str, Any]:
    """
    Run the step sequence under the orchestrator lock.

    Args:
        engine: SQLAlchemy Engine (holds the lock table)
        settings: Runtime settings; `orchestrator_base_url` is required
        dry_run: Passed to every step
        step_timeout_ms: Timeout of each step attempt
        total_timeout_ms: Budget after which remaining steps are skipped
        retries: Extra attempts per step
        steps: Override the default sequence
        sleep: Backoff sleeper
        clock: Monotonic seconds, for the total timeout

    Returns:
        dict: `{ok, lock_lost, dry_run, started_at, ended_at,
        total_duration_ms, step_timeout_ms, total_timeout_ms, retries,
        results[]}`; when the lock is held, `{ok: False, conflict: True,
        holder, results: []}`. A lease lost mid-run skips the remaining
        steps with `lock_lost` and the run is not ok.

    Raises:
        ConfigurationError: If no base URL is configured.
    """
    if not settings.orchestrator_base_url:
        raise ConfigurationError("PUBLIC_BASE_URL is not set.")
    base = settings.orchestrator_base_url.rstrip("/")
    steps = default_steps(dry_run) if steps is None else steps

    lock = LeaseLock(engine, settings.lock_name, settings.lock_holder)
    ttl = timedelta(milliseconds=total_timeout_ms + LOCK_GRACE_MS)
    try:
        token = lock.acquire(ttl)
    except ConflictError as e:
        logger.warning("orchestrator_conflict", holder=e.holder)
        return {
            "ok": False,
            "conflict": True,
            "holder": e.holder,
            "dry_run": dry_run,
            "results": [],
        }

    started_at = utc_now()
    started = clock()
    logger.info(
        "orchestrator_started",
        dry_run=dry_run,
        base_url=base,
        step_timeout_ms=step_timeout_ms,
        total_timeout_ms=total_timeout_ms,
        retries=retries,
    )

    results: list[dict[str, Any]] = []
    stop_reason: Optional[str] = None
    try:
        for step in steps:
            if stop_reason is None and (clock() - started) * 1000 >= total_timeout_ms:
                stop_reason = "total_timeout"
            if stop_reason is None and not lock.refresh(token, ttl):
                stop_reason = "lock_lost"
            if stop_reason is not None:
                logger.warning("orchestrator_step_skipped", step=step.name, reason=stop_reason)
                results.append(
                    {"name": step.name, "ok": False, "skipped": True, "error": stop_reason}
                )
                orchestrator_steps.labels(step=step.name, outcome="skipped").inc()
                continue

            with orchestrator_step_duration.labels(step=step.name).time():
                result = post_step(
                    f"{base}{step.path}", step.body, step_timeout_ms, retries, step.name, sleep
                )
            results.append({"name": step.name, **result})
            orchestrator_steps.labels(
                step=step.name, outcome="ok" if result["ok"] else "failed"
            ).inc()
            if not result["ok"]:
                logger.warning("orchestrator_step_failed_continuing", step=step.name)
    finally:
        lock.release(token)

    ended_at = utc_now()
    lock_lost = stop_reason == "lock_lost"
    summary = {
        "ok": not lock_lost and all(r["ok"] or r.get("skipped") for r in results),
        "lock_lost": lock_lost,
        "dry_run": dry_run,
        "started_at": to_iso_instant(started_at),
        "ended_at": to_iso_instant(ended_at),
        "total_duration_ms": int((clock() - started) * 1000),
        "step_timeout_ms": step_timeout_ms,
        "total_timeout_ms": total_timeout_ms,
        "retries": retries,
        "results": results,
    }
    logger.info("orchestrator_completed", ok=summary["ok"], steps=len(results))
    return summary
