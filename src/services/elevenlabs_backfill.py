"""
ElevenLabs conversation backfill - recovers call logs for conversations whose
post-call webhook never arrived.

Lists the agent's conversations page by page (cursor paging, bounded by
max_pages), fetches each conversation's detail and upserts the call log by
elevenlabs_conversation_id through the same routine the webhook processor uses.
The agent filter is applied by the API and checked again on every list item
and every detail response. A failure on one conversation is counted and never
aborts the run; a failure listing conversations does.

API: https://elevenlabs.io/docs/api-reference/conversations
Auth: xi-api-key header. All calls have a 10-second timeout.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from src.schemas.webhook_payloads import ElevenLabsConversation
from src.services.processors import upsert_call_log

logger = logging.getLogger(__name__)

TIMEOUT = 10.0
PAGE_SIZE = 100


class ElevenLabsClient:
    """Conversational AI conversations API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.elevenlabs.io",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._headers = {"xi-api-key": api_key, "Accept": "application/json"}
        self._transport = transport

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        async with httpx.AsyncClient(timeout=TIMEOUT, transport=self._transport) as client:
            response = await client.get(
                f"{self.base_url}{path}", headers=self._headers, params=params,
            )
            response.raise_for_status()
            return response.json()

    async def list_conversations(self, agent_id: str, cursor: Optional[str] = None) -> dict:
        """One page of conversation summaries: {"conversations": [...], "next_cursor": ...}."""
        params = {"page_size": PAGE_SIZE, "agent_id": agent_id}
        if cursor:
            params["cursor"] = cursor
        return await self._get("/v1/convai/conversations", params=params)

    async def get_conversation(self, conversation_id: str) -> ElevenLabsConversation:
        data = await self._get(f"/v1/convai/conversations/{conversation_id}")
        return ElevenLabsConversation.model_validate(data)


@dataclass
class BackfillStats:
    fetched_total: int = 0
    upserted_total: int = 0
    created_total: int = 0
    skipped_wrong_agent: int = 0
    errors_total: int = 0
    pages_fetched: int = 0
    details: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


async def backfill_call_logs(
    db: AsyncSession,
    client: ElevenLabsClient,
    agent_id: str,
    max_pages: int = 50,
    page_delay: float = 0.2,
    item_delay: float = 0.1,
) -> BackfillStats:
    """
    Upsert a call log for every conversation of one agent.
    Each conversation commits on its own. Raises if the agent id is missing or
    a conversation page cannot be listed.
    """
    if not agent_id:
        raise ValueError("ElevenLabs agent id is required to backfill call logs")

    stats = BackfillStats()
    conversation_ids: list[str] = []
    cursor: Optional[str] = None

    while stats.pages_fetched < max_pages:
        page = await client.list_conversations(agent_id, cursor)
        items = page.get("conversations") or []

        for item in items:
            if item.get("agent_id") != agent_id:
                logger.warning(
                    "Skipping conversation %s from agent %s",
                    item.get("conversation_id"), item.get("agent_id"),
                )
                stats.skipped_wrong_agent += 1
                continue
            conversation_ids.append(item["conversation_id"])

        stats.pages_fetched += 1
        cursor = page.get("next_cursor")
        logger.info("Page %d: %d conversations", stats.pages_fetched, len(items))
        if not cursor or not items:
            break
        if page_delay > 0:
            await asyncio.sleep(page_delay)

    stats.fetched_total = len(conversation_ids)
    logger.info(
        "Backfill fetched %d conversations over %d pages",
        stats.fetched_total, stats.pages_fetched,
    )

    for i, conversation_id in enumerate(conversation_ids):
        if i > 0 and item_delay > 0:
            await asyncio.sleep(item_delay)
        await _backfill_one(db, client, agent_id, conversation_id, stats)

    logger.info(
        "Backfill done: upserted=%d created=%d skipped_wrong_agent=%d errors=%d",
        stats.upserted_total, stats.created_total,
        stats.skipped_wrong_agent, stats.errors_total,
    )
    return stats


async def _backfill_one(
    db: AsyncSession,
    client: ElevenLabsClient,
    agent_id: str,
    conversation_id: str,
    stats: BackfillStats,
) -> None:
    try:
        conv = await client.get_conversation(conversation_id)
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Failed to fetch conversation %s: %s", conversation_id, str(e))
        stats.errors_total += 1
        stats.details.append({"conversation_id": conversation_id, "status": "fetch_error"})
        return

    if conv.agent_id != agent_id:
        logger.warning(
            "Conversation %s detail has agent %s, expected %s",
            conversation_id, conv.agent_id, agent_id,
        )
        stats.skipped_wrong_agent += 1
        return

    try:
        call_log, created = await upsert_call_log(db, conversation_id, conv)
        duration = call_log.duration_seconds
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(
            "Backfill upsert failed for conversation %s: %s",
            conversation_id, str(e), exc_info=True,
        )
        stats.errors_total += 1
        stats.details.append({
            "conversation_id": conversation_id, "status": "error", "error": str(e)[:200],
        })
        return

    stats.upserted_total += 1
    if created:
        stats.created_total += 1
    stats.details.append({
        "conversation_id": conversation_id,
        "status": "created" if created else "updated",
        "duration": duration,
    })
