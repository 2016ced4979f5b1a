"""Housekeeping worker for expired and long-deleted conversation states."""

import asyncio
import logging
from datetime import timedelta

from prima.config import settings
from prima.db.repositories import ConversationStateRepository
from prima.db.session import async_session_maker

logger = logging.getLogger(__name__)


async def run_cleanup() -> tuple[int, int]:
    """Run one cleanup pass. Returns (deactivated, purged) counts."""
    async with async_session_maker() as db:
        repo = ConversationStateRepository(db)
        return await repo.cleanup_expired(
            retention=timedelta(days=settings.DELETED_STATE_RETENTION_DAYS)
        )


async def main() -> None:
    """Main cleanup loop.

    Expiry is already enforced when a reply is handled; this loop only keeps
    the table small.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Starting conversation cleanup worker...")
    logger.info(f"Running cleanup every {settings.CLEANUP_INTERVAL_SECONDS} seconds")

    while True:
        try:
            deactivated, purged = await run_cleanup()
            if deactivated or purged:
                logger.info(
                    f"Deactivated {deactivated} expired contexts, purged {purged} old rows"
                )
        except Exception as e:
            logger.error(f"Error in cleanup loop: {e}")

        await asyncio.sleep(settings.CLEANUP_INTERVAL_SECONDS)


if __name__ == "__main__":
    asyncio.run(main())
