"""Slug allocation for stored content."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


async def unique_slug(db: AsyncSession, model: type[Any], slug: str, suffix: Any) -> str:
    """
    Return ``slug`` when ``model`` has no row using it yet, else ``slug-<suffix>``.

    Different names can fold to the same slug ("AC/DC" and "AC DC"), so the
    queue item id is used as the suffix to keep the unique column satisfied.
    """
    result = await db.execute(select(model.id).where(model.slug == slug))
    if result.scalar_one_or_none() is None:
        return slug
    return f"{slug}-{suffix}"
