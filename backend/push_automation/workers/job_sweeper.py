"""
Cron-triggered automation job sweep.

Runs one JobProcessor sweep over due jobs and exits. Designed to run as a
cron job (e.g. every minute); overlapping runs are safe because every job
is claimed with a conditional queued -> running update.

Usage:
    python -m push_automation.workers.job_sweeper
"""

import asyncio
import logging
import sys

from push_automation.database.session import get_session_factory
from push_automation.integrations.expo import DatabaseDeviceTokenProvider, ExpoPushDispatcher
from push_automation.jobs.processor import JobProcessor

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def run_sweep_async() -> dict:
    """Run one sweep and return its stats."""
    session = get_session_factory()()
    try:
        dispatcher = ExpoPushDispatcher(DatabaseDeviceTokenProvider(session))
        processor = JobProcessor(session, dispatcher)
        stats = await processor.run_sweep()
        return stats.to_dict()
    finally:
        session.close()


def main():
    """Entry point for running the sweep from command line."""
    try:
        result = asyncio.run(run_sweep_async())
        logger.info("Job sweep finished", extra=result)
        sys.exit(0)
    except Exception as e:
        logger.error("Job sweep failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
