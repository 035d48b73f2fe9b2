"""
Run one retry batch for pending/failed webhook events.

Cron entrypoint when the HTTP retry endpoint is not reachable from the
scheduler. Uses the same batch logic as POST /api/v1/webhook-events/retry.

Usage:
    python scripts/run_retry_batch.py
    python scripts/run_retry_batch.py --limit 100
    python scripts/run_retry_batch.py --stats
"""
import argparse
import asyncio
import json
import logging

from src.database import async_session_factory
from src.services.event_store import status_counts
from src.utils.logging import correlation_scope
from src.workers.retry_worker import run_retry_batch

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


async def run(limit: int | None, delay: float | None, stats_only: bool):
    async with async_session_factory() as db:
        if not stats_only:
            with correlation_scope() as cid:
                stats = await run_retry_batch(db, limit=limit, delay=delay)
                logger.info(
                    "Retry batch %s: processed=%d succeeded=%d failed=%d pending=%d",
                    cid[:8], stats.processed, stats.succeeded, stats.failed, stats.total_pending,
                )

        counts = await status_counts(db)
        logger.info("Event store status:\n%s", json.dumps(counts, indent=2))


def _positive_int(value: str) -> int:
    limit = int(value)
    if limit < 1:
        raise argparse.ArgumentTypeError("limit must be at least 1")
    return limit


def main():
    parser = argparse.ArgumentParser(description="Run one webhook retry batch")
    parser.add_argument("--limit", type=_positive_int, default=None, help="Batch size (default 50, max 100)")
    parser.add_argument("--delay", type=float, default=None, help="Seconds between events")
    parser.add_argument("--stats", action="store_true", help="Only print status counts")
    args = parser.parse_args()

    asyncio.run(run(args.limit, args.delay, args.stats))


if __name__ == "__main__":
    main()
