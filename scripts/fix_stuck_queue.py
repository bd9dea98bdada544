"""Reset queue rows stuck in processing.

Rows whose lease has run out go back to pending, or to failed when they are
out of attempts. Usage: python scripts/fix_stuck_queue.py [queue-name ...]
"""

import asyncio
import logging
import sys

from musicscan.database import session_scope
from musicscan.services.dispatcher import load_queue_definitions
from musicscan.services.queue_repository import QueueRepository

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def fix_stuck(names: list[str], older_than_seconds: int = 0) -> None:
    definitions = load_queue_definitions()
    async with session_scope() as db:
        for name in names or sorted(definitions):
            definition = definitions.get(name)
            if definition is None:
                logger.error(f"Unknown queue: {name}")
                continue
            counts = await QueueRepository(db, definition.model).reset_stuck(older_than_seconds)
            logger.info(f"{name}: {counts['requeued']} requeued, {counts['failed']} failed")


if __name__ == "__main__":
    asyncio.run(fix_stuck(sys.argv[1:]))
