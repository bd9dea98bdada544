"""Discogs import queue - turns Discogs releases into art products."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.config import settings
from musicscan.models import ArtProduct, DiscogsImportQueue
from musicscan.schemas.functions import ArtProductResponse
from musicscan.services.dedup import catalog_key
from musicscan.services.dispatcher import QueueDefinition, register_queue
from musicscan.services.functions_client import get_functions_client
from musicscan.services.steps import PermanentStepError, Step, StepContext, StepPipeline, StepResult

logger = logging.getLogger(__name__)

QUEUE_NAME = "discogs-import"


def release_key(item: DiscogsImportQueue) -> str | None:
    return catalog_key(item.discogs_release_id)


async def existing_product_keys(db: AsyncSession) -> list[str | None]:
    result = await db.execute(select(ArtProduct.discogs_id))
    return [catalog_key(discogs_id) for discogs_id in result.scalars().all()]


async def validate_release(ctx: StepContext) -> StepResult:
    release_id = ctx.item.discogs_release_id
    if catalog_key(release_id) is None:
        raise PermanentStepError(f"Invalid release ID: {release_id} (must be positive integer)")
    return StepResult.ok({"discogs_release_id": int(release_id)})


async def create_product(ctx: StepContext) -> StepResult:
    item: DiscogsImportQueue = ctx.item
    release_id = ctx.outputs["validate_release"]["discogs_release_id"]

    logger.info(f"Calling create-art-product for release {release_id}")
    response = await get_functions_client().invoke(
        "create-art-product",
        {"discogs_id": release_id, "price": item.price or settings.art_product_price},
        schema=ArtProductResponse,
    )
    data = response.model_dump()

    await ctx.progress(product_id=response.product_id, blog_id=response.blog_id)
    if response.already_exists:
        return StepResult.skipped("Product already exists", data=data)

    existing = await ctx.session.execute(select(ArtProduct).where(ArtProduct.discogs_id == release_id))
    if existing.scalar_one_or_none() is None:
        ctx.session.add(ArtProduct(
            discogs_id=release_id,
            product_id=response.product_id,
            slug=response.product_slug,
            blog_id=response.blog_id,
            artist=item.artist,
            title=item.title,
            price=item.price or settings.art_product_price,
        ))
        await ctx.session.commit()

    logger.info(f"Product created for release {release_id}: {response.product_id}")
    return StepResult.ok(data)


discogs_import_queue = register_queue(QueueDefinition(
    name=QUEUE_NAME,
    model=DiscogsImportQueue,
    pipeline=StepPipeline([
        Step("validate_release", validate_release),
        Step("create_product", create_product),
    ]),
    key_fn=release_key,
    content_loaders=[existing_product_keys],
    # Product creation is OpenAI-heavy
    inter_item_delay=settings.discogs_import_delay,
    describe=lambda item: {
        "discogs_release_id": item.discogs_release_id,
        "artist": item.artist,
        "title": item.title,
    },
))
