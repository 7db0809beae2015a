"""Script to initialize the database."""

import asyncio

from clinic_scheduler.config import settings
from clinic_scheduler.database import create_engine_from_url, create_tables


async def init_db() -> None:
    """Initialize the configured database by creating all tables."""
    engine = create_engine_from_url(settings.database_url, echo=settings.debug)
    try:
        await create_tables(engine)
    finally:
        await engine.dispose()

    print("✓ Database initialized successfully!")


if __name__ == "__main__":
    asyncio.run(init_db())
