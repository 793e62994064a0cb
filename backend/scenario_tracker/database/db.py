"""
Database connection and initialization.
"""

import aiosqlite
from pathlib import Path
from scenario_tracker.config import settings
from scenario_tracker.logging import get_logger

logger = get_logger('database')

SCHEMA_PATH = Path(__file__).parent / "init_db.sql"


async def init_db(db_path: str | None = None):
    """
    Initialize database with schema.

    :param db_path: Database file; defaults to settings.DATABASE_PATH
    :type db_path: str | None
    :return: None
    :rtype: None
    """
    path = Path(db_path or settings.DATABASE_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(path) as db:
        with open(SCHEMA_PATH) as f:
            await db.executescript(f.read())
        await db.commit()
        logger.info(f"Database initialized at {path}")
