import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import json

import structlog

from sync_wubook.config import DRY_RUN, Settings
from sync_wubook.db.engine import get_engine
from sync_wubook.logging_config import setup_logging
from sync_wubook.services.orchestrator import run_orchestrator

setup_logging()
logger = structlog.get_logger(__name__)


def main() -> None:
    """
    Run the cron sequence once against PUBLIC_BASE_URL.

    Exits with status 1 when a step failed and 2 when another run holds the lock.
    """
    settings = Settings.from_env()
    result = run_orchestrator(get_engine(settings), settings, dry_run=DRY_RUN)
    print(json.dumps(result, indent=2, default=str))

    if result.get("conflict"):
        sys.exit(2)
    if not result["ok"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
