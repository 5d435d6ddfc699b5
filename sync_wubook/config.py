import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEBUG = LOG_LEVEL == "DEBUG"

DRY_RUN = os.getenv("DRY_RUN", "false").lower() == "true"

SCHEMA = "wubook"


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    """
    Runtime configuration handed to every engine at construction time.

    Engines never read the environment themselves; build one of these with
    `Settings.from_env()` in the app and scripts, or directly in tests.
    """

    database_url: str = Field("sqlite:///./sync_wubook.db", description="SQLAlchemy URL")
    kp_base_url: str = Field(
        "https://kapi.wubook.net/kp", description="Reservations and customers API"
    )
    kapi_base_url: str = Field(
        "https://kapi.wubook.net/kapi", description="Payments, notes and extras API"
    )
    request_timeout: float = Field(30.0, description="Per-request timeout in seconds")
    max_retries: int = Field(2, description="Retries for throttled or failed API calls")

    timezone: str = Field("America/Argentina/Buenos_Aires", description="Property timezone")
    settlement_currency: str = Field("USD", description="Currency of toPay and the breakdown")
    local_currency: str = Field("ARS", description="Currency quoted against settlement")

    max_batch_ops: int = Field(450, description="Writes per transaction before flushing")

    fx_backfill_days: int = Field(7, description="Lookback when no FX watermark exists")
    fx_fallback_cutoff: str = Field("10:10", description="HH:MM after which today's FX falls back")
    fx_fallback_lookback_days: int = Field(7, description="Days searched for a fallback quote")

    orchestrator_base_url: Optional[str] = Field(None, description="Base URL for cron steps")
    lock_name: str = Field("cron_orchestrator", description="Orchestrator lock record name")
    lock_holder: str = Field("local", description="Identifier written into the lock")

    credential_cache_ttl: int = Field(3600, description="Seconds to cache property API keys")
    allowed_origins: list[str] = Field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from the process environment (after `.env` is loaded).

        Returns:
            Settings: Populated settings; unset variables keep their defaults.
        """
        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            kp_base_url=os.getenv("WUBOOK_BASE_URL", defaults.kp_base_url),
            kapi_base_url=os.getenv("WUBOOK_BASE_URL_KAPI", defaults.kapi_base_url),
            request_timeout=float(os.getenv("WUBOOK_TIMEOUT", defaults.request_timeout)),
            max_retries=int(os.getenv("WUBOOK_MAX_RETRIES", defaults.max_retries)),
            timezone=os.getenv("TZ_NAME", defaults.timezone),
            settlement_currency=os.getenv("SETTLEMENT_CURRENCY", defaults.settlement_currency),
            local_currency=os.getenv("LOCAL_CURRENCY", defaults.local_currency),
            max_batch_ops=int(os.getenv("MAX_BATCH_OPS", defaults.max_batch_ops)),
            fx_backfill_days=int(os.getenv("FX_BACKFILL_DAYS", defaults.fx_backfill_days)),
            fx_fallback_cutoff=os.getenv("FX_FALLBACK_CUTOFF", defaults.fx_fallback_cutoff),
            orchestrator_base_url=os.getenv("PUBLIC_BASE_URL") or defaults.orchestrator_base_url,
            lock_holder=os.getenv("LOCK_HOLDER", defaults.lock_holder),
            credential_cache_ttl=int(
                os.getenv("CREDENTIAL_CACHE_TTL", defaults.credential_cache_ttl)
            ),
            allowed_origins=_env_list("ALLOWED_ORIGINS", "*"),
        )
