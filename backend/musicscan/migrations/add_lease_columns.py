"""
Migration script to add lease and step ledger columns to queue tables.
Run this once on databases created before claims were leased.
"""

import asyncio
import logging

from sqlalchemy import text

from musicscan.database import engine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

QUEUE_TABLES = [
    "discogs_import_queue",
    "master_singles",
    "singles_import_queue",
    "artist_story_queue",
    "photo_batch_queue",
    "social_post_queue",
]

COLUMNS = [
    ("attempts", "INTEGER NOT NULL DEFAULT 0"),
    ("max_attempts", "INTEGER NOT NULL DEFAULT 3"),
    ("lease_owner", "VARCHAR(100)"),
    ("lease_expires_at", "DATETIME"),
    ("step_ledger", "JSON NOT NULL DEFAULT '{}'"),
    ("result", "JSON"),
    ("scheduled_for", "DATETIME"),
    ("started_at", "DATETIME"),
]

MIGRATIONS = [
    (table, column, f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
    for table in QUEUE_TABLES
    for column, definition in COLUMNS
]


async def table_columns(conn, table: str) -> list[str]:
    """Column names of a table, empty when the table does not exist."""
    result = await conn.execute(text(f"PRAGMA table_info({table})"))
    return [row[1] for row in result.fetchall()]


async def run_migrations() -> int:
    """Run all pending migrations; returns the number of columns added."""
    added = 0
    async with engine.begin() as conn:
        for table, column, sql in MIGRATIONS:
            columns = await table_columns(conn, table)
            if not columns:
                logger.info(f"Table {table} does not exist yet, skipping")
                continue
            if column in columns:
                logger.info(f"Column {table}.{column} already exists, skipping")
                continue

            logger.info(f"Adding column {table}.{column}")
            try:
                await conn.execute(text(sql))
                added += 1
            except Exception as e:
                logger.error(f"Failed to add {table}.{column}: {e}")
                raise

    logger.info(f"All migrations complete ({added} columns added)")
    return added


if __name__ == "__main__":
    asyncio.run(run_migrations())
