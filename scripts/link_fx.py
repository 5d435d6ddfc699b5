import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import json
import os
from datetime import timedelta

import structlog

from sync_wubook.config import Settings
from sync_wubook.db.engine import get_engine
from sync_wubook.logging_config import setup_logging
from sync_wubook.services.fx_linking import link_fx
from sync_wubook.utils.datetime import local_today

setup_logging()
logger = structlog.get_logger(__name__)

RESCUE_DAYS = 2


def main() -> None:
    """
    Rescue job: link FX for arrivals from two days ago through today.

    PROPERTY_IDS (comma separated) restricts the run to some properties.
    """
    settings = Settings.from_env()
    today = local_today(settings.timezone)
    property_ids = [p.strip() for p in os.getenv("PROPERTY_IDS", "").split(",") if p.strip()]

    since = today - timedelta(days=RESCUE_DAYS)
    logger.info("fx_rescue_started", since=str(since), until=str(today))
    try:
        result = link_fx(
            get_engine(settings),
            settings,
            since=since.isoformat(),
            until=today.isoformat(),
            dry_run=False,
            property_ids=property_ids or None,
        )
    except Exception:
        logger.exception("fx_rescue_failed")
        raise
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
