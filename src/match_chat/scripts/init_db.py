"""Create all tables and indexes on an empty database (dev / CI only)."""
from __future__ import annotations

import asyncio
import logging

from match_chat.config import settings
from match_chat.infrastructure.db.base import Base
from match_chat.infrastructure.db.session import create_engine
from match_chat.log_config import configure_logging

# registers the tables on Base.metadata
import match_chat.infrastructure.db.models  # noqa: F401

logger = logging.getLogger(__name__)


async def init_db() -> None:
    engine = create_engine(settings)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Created tables: %s", ", ".join(sorted(Base.metadata.tables)))
    finally:
        await engine.dispose()


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(init_db())


if __name__ == "__main__":
    main()
