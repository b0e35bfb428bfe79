"""One-shot batch run, for invocation from cron."""

import asyncio
import logging
import sys

from calmirror.config import get_settings
from calmirror.database import open_database
from calmirror.jobs.sync_job import BatchSummary, run_all_subscriptions
from calmirror.logging_config import setup_logging

logger = logging.getLogger(__name__)


async def main() -> BatchSummary:
    settings = get_settings()
    async with open_database(settings.database_path) as db:
        return await run_all_subscriptions(db, settings=settings)


def run() -> None:
    setup_logging(get_settings().log_level)
    summary = asyncio.run(main())
    # Non-zero only when every subscription failed; partial failures are logged.
    if summary.results and summary.failed == len(summary.results):
        sys.exit(1)


if __name__ == "__main__":
    run()
