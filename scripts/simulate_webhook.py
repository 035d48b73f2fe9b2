"""
Simulate provider webhooks against a local server.

Usage:
    python scripts/simulate_webhook.py --source elevenlabs
    python scripts/simulate_webhook.py --source signwell --event document_signed --instance <uuid> --order 1
    python scripts/simulate_webhook.py --source daily --event meeting.ended --room demo-room
    python scripts/simulate_webhook.py --source signwell --secret <signwell secret>
"""
import argparse
import asyncio
import base64
import hashlib
import hmac
import json
import logging
import time
import uuid

import httpx

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"


def elevenlabs_payload(conversation_id: str) -> dict:
    now = int(time.time())
    return {
        "type": "post_call_transcription",
        "event_timestamp": now,
        "data": {
            "conversation_id": conversation_id,
            "agent_id": "agent_demo",
            "status": "done",
            "start_time_unix_secs": now - 180,
            "call_duration_secs": 180,
            "transcript": [
                {"role": "agent", "message": "Hi, thanks for calling. How can I help?"},
                {"role": "user", "message": "I'd like to book a follow-up."},
            ],
            "analysis": {
                "transcript_summary": "Caller asked to book a follow-up.",
                "data_collection_results": {"callback_requested": True},
            },
            "call": {"from_number": "+15125559876", "call_cost_credits": 1200},
        },
    }


def signwell_payload(event: str, instance_id: str, order: int, pdf_url: str) -> dict:
    payload = {
        "event": {"type": event, "time": int(time.time())},
        "data": {
            "document": {
                "id": "sw_doc_demo",
                "metadata": {"instanceId": instance_id},
                "files": [],
            },
            "recipient": {"signing_order": order, "email": f"signer{order}@example.com"},
        },
    }
    if event == "document_completed":
        payload["data"]["document"]["files"] = [{"url": pdf_url, "name": "final.pdf"}]
    return payload


def daily_payload(event: str, room: str) -> dict:
    now = int(time.time())
    return {
        "type": event,
        "id": uuid.uuid4().hex,
        "event_ts": now,
        "payload": {
            "room": room,
            "meeting_id": "mtg_demo",
            "start_ts": now - 1800,
            "end_ts": now,
            "duration": 1800,
            "download_link": "https://example.com/recordings/demo.mp4",
        },
    }


def signed_headers(source: str, secret: str | None, body: bytes) -> dict:
    """Headers matching each provider's signing scheme."""
    headers = {"Content-Type": "application/json"}
    if not secret:
        return headers
    ts = str(int(time.time()))
    if source == "elevenlabs":
        digest = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
        headers["ElevenLabs-Signature"] = f"t={ts},v0={digest}"
    elif source == "signwell":
        headers["X-Signwell-Signature"] = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    elif source == "daily":
        key = base64.b64decode(secret)
        digest = hmac.new(key, f"{ts}.".encode() + body, hashlib.sha256).digest()
        headers["X-Webhook-Timestamp"] = ts
        headers["X-Webhook-Signature"] = base64.b64encode(digest).decode()
    return headers


async def send(source: str, payload: dict, secret: str | None):
    body = json.dumps(payload).encode()
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(
            f"{BASE_URL}/api/v1/webhook/{source}",
            content=body,
            headers=signed_headers(source, secret, body),
        )
        logger.info("%s response: %s %s", source, resp.status_code, resp.text)
        return resp


async def main():
    parser = argparse.ArgumentParser(description="Simulate provider webhooks")
    parser.add_argument("--source", default="elevenlabs", choices=["elevenlabs", "signwell", "daily"])
    parser.add_argument("--event", default=None, help="Provider event type")
    parser.add_argument("--conversation", default=None, help="ElevenLabs conversation id")
    parser.add_argument("--instance", default=None, help="Document instance UUID (SignWell)")
    parser.add_argument("--order", type=int, default=1, help="Signing order (SignWell)")
    parser.add_argument("--pdf-url", default="https://example.com/docs/final.pdf")
    parser.add_argument("--room", default="demo-room", help="Room name (Daily)")
    parser.add_argument("--secret", default=None, help="Provider webhook secret to sign with")
    args = parser.parse_args()

    if args.source == "elevenlabs":
        payload = elevenlabs_payload(args.conversation or f"conv_{uuid.uuid4().hex[:12]}")
    elif args.source == "signwell":
        payload = signwell_payload(
            args.event or "document_signed",
            args.instance or str(uuid.uuid4()),
            args.order,
            args.pdf_url,
        )
    else:
        payload = daily_payload(args.event or "meeting.ended", args.room)

    logger.info("Simulating %s webhook...", args.source)
    await send(args.source, payload, args.secret)


if __name__ == "__main__":
    asyncio.run(main())
