"""
Backfill call logs from the ElevenLabs conversations API.

Recovers conversations whose post-call webhook was lost. Lists the configured
agent's conversations (ELEVENLABS_AGENT_ID), fetches each detail and upserts
the call log by conversation id, so re-running is safe.

Each conversation commits on its own so progress survives interruptions.

Usage:
    python scripts/backfill_elevenlabs_calls.py
    python scripts/backfill_elevenlabs_calls.py --max-pages 5
    python scripts/backfill_elevenlabs_calls.py --agent-id agent_123 --details
"""
import argparse
import asyncio
import json
import logging

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def backfill(agent_id: str | None, max_pages: int | None, show_details: bool):
    """Run one backfill against the configured ElevenLabs account."""
    from src.config import get_settings
    from src.database import async_session_factory
    from src.services.elevenlabs_backfill import ElevenLabsClient, backfill_call_logs

    settings = get_settings()
    if not settings.elevenlabs_api_key:
        raise SystemExit("ELEVENLABS_API_KEY is not configured")

    client = ElevenLabsClient(settings.elevenlabs_api_key, settings.elevenlabs_api_base_url)
    async with async_session_factory() as db:
        stats = await backfill_call_logs(
            db, client,
            agent_id=agent_id or settings.elevenlabs_agent_id,
            max_pages=max_pages or settings.backfill_max_pages,
        )

    summary = stats.as_dict()
    details = summary.pop("details")
    logger.info("Summary:\n%s", json.dumps(summary, indent=2))
    if show_details:
        logger.info("Details:\n%s", json.dumps(details, indent=2))


def _positive_int(value: str) -> int:
    pages = int(value)
    if pages < 1:
        raise argparse.ArgumentTypeError("max-pages must be at least 1")
    return pages


def main():
    parser = argparse.ArgumentParser(description="Backfill ElevenLabs call logs")
    parser.add_argument("--agent-id", default=None, help="Agent to backfill (default ELEVENLABS_AGENT_ID)")
    parser.add_argument("--max-pages", type=_positive_int, default=None, help="Page limit (default 50)")
    parser.add_argument("--details", action="store_true", help="Print per-conversation results")
    args = parser.parse_args()

    asyncio.run(backfill(args.agent_id, args.max_pages, args.details))


if __name__ == "__main__":
    main()
