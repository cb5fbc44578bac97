"""Create the scheduling schema directly from the table metadata.

Meant for local development; deployed databases are managed with Alembic
(``python scripts/migrate.py``).
"""

import asyncio

from sqlalchemy import text

from app.database import engine
from app.models import metadata


async def init_db() -> None:
    """Create every table that does not exist yet."""
    async with engine.begin() as conn:
        # gen_random_uuid() used by the migrations lives in pgcrypto on older servers
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))
        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print(f"✓ Created {len(metadata.tables)} tables")


if __name__ == "__main__":
    asyncio.run(init_db())
