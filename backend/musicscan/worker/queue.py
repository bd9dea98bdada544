"""Huey instance for the periodic queue runs.

Task state lives in its own SQLite file under ``data_dir`` so the consumer
never contends with dispatchers for the application database.
"""

from huey import SqliteHuey

from musicscan.config import settings

HUEY_DB = settings.data_dir / "huey.db"

huey = SqliteHuey(
    name="musicscan",
    filename=str(HUEY_DB),
    utc=True,
)
