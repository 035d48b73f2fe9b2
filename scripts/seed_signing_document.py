"""
Seed a document instance with three sequential signers (seller, purchaser, chairman).

Prints the instance id (use it as SignWell metadata.instanceId) and each
signer's access token for the /api/v1/signing/{token} endpoints.

Usage:
    python scripts/seed_signing_document.py
    python scripts/seed_signing_document.py --title "Share Purchase Agreement" --days 14
"""
import argparse
import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone

from src.database import async_session_factory
from src.models.doc_instance import DocInstance, DocStatus
from src.models.doc_signer import DocSigner

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)

SIGNER_ROLES = [
    (1, "seller", "Sam Seller", "seller@example.com"),
    (2, "purchaser", "Pat Purchaser", "purchaser@example.com"),
    (3, "chairman", "Chris Chairman", "chairman@example.com"),
]


async def seed(title: str, days: int):
    expires_at = datetime.now(timezone.utc) + timedelta(days=days)

    async with async_session_factory() as db:
        instance = DocInstance(
            title=title,
            status=DocStatus.DRAFT,
            submission_data={"seeded": True},
        )
        db.add(instance)
        await db.flush()

        tokens = []
        for order, role, name, email in SIGNER_ROLES:
            token = secrets.token_urlsafe(32)
            db.add(DocSigner(
                doc_instance_id=instance.id,
                role=role,
                name=name,
                email=email,
                signing_order=order,
                access_token=token,
                token_expires_at=expires_at,
            ))
            tokens.append((order, role, token))

        await db.commit()

    logger.info("Seeded document instance %s (%s)", instance.id, title)
    for order, role, token in tokens:
        logger.info("  %d. %-10s /api/v1/signing/%s", order, role, token)


def main():
    parser = argparse.ArgumentParser(description="Seed a sequential signing document")
    parser.add_argument("--title", default="Share Purchase Agreement")
    parser.add_argument("--days", type=int, default=7, help="Token validity in days")
    args = parser.parse_args()
    asyncio.run(seed(args.title, args.days))


if __name__ == "__main__":
    main()
