"""
Photo batch queue - turns one uploaded photo into a set of merchandise.

A batch runs ten jobs: seven poster styles, a canvas, a t-shirt with style
variants and a pair of socks. Every job is optional; a failing job is
recorded in the result and the batch moves on to the next one. Products that
were already created stay created.
"""

import logging
from datetime import date
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.models import PhotoBatch
from musicscan.schemas.functions import (
    DesignResponse,
    PosterStylesResponse,
    ProductResponse,
    StylizedPhotoResponse,
    TshirtProductsResponse,
)
from musicscan.services.dedup import url_key
from musicscan.services.dispatcher import QueueDefinition, register_queue
from musicscan.services.enqueue import EnqueueSummary, enqueue_items
from musicscan.services.functions_client import get_functions_client
from musicscan.services.steps import (
    PermanentStepError,
    PipelineOutcome,
    Step,
    StepContext,
    StepError,
    StepPipeline,
    StepResult,
)

logger = logging.getLogger(__name__)

QUEUE_NAME = "photo-batch"

TOTAL_JOBS = 10
PHOTO_ARTIST = "Custom Photo"
POSTER_PRICE = 49.95
CANVAS_PRICE = 79.95

DESIGN_PALETTE = {
    "primary_color": "#000000",
    "secondary_color": "#FFFFFF",
    "accent_color": "#808080",
    "design_theme": "custom-photo",
}


def photo_key(item: PhotoBatch) -> str | None:
    return url_key(item.photo_url)


def _product_title() -> str:
    return f"Photo {date.today().isoformat()}"


def _require(ctx: StepContext, step: str) -> Any:
    output = ctx.outputs.get(step)
    if output is None:
        raise PermanentStepError(f"{step} did not produce anything")
    return output


async def posters(ctx: StepContext) -> StepResult:
    await ctx.progress(completed_jobs=0, current_job="Generating 7 poster styles...")
    response = await get_functions_client().invoke(
        "batch-generate-poster-styles",
        {"posterUrl": ctx.item.photo_url, "eventId": f"batch-{ctx.item.id}", "artistName": PHOTO_ARTIST},
        schema=PosterStylesResponse,
    )
    variants = [variant.model_dump() for variant in response.style_variants]
    await ctx.progress(completed_jobs=7, current_job="Poster styles completed, creating products...")
    logger.info(f"Photo batch {ctx.item.id}: generated {len(variants)} poster styles")
    return StepResult.ok({"variants": variants})


async def poster_products(ctx: StepContext) -> StepResult:
    variants = _require(ctx, "posters")["variants"]
    client = get_functions_client()
    product_ids = []
    errors = []
    # One variant failing must not lose the products already created
    for variant in variants:
        try:
            product = await client.invoke(
                "create-poster-product",
                {
                    "stylizedImageBase64": variant["url"],
                    "artist": PHOTO_ARTIST,
                    "title": _product_title(),
                    "style": variant.get("style"),
                    "price": POSTER_PRICE,
                    "styleVariants": [],
                },
                schema=ProductResponse,
            )
        except StepError as e:
            logger.warning(f"Photo batch {ctx.item.id}: poster product for {variant.get('style')} failed: {e}")
            errors.append({"style": variant.get("style"), "error": str(e)})
            continue
        if product.product_id:
            product_ids.append(product.product_id)

    output: dict[str, Any] = {"product_ids": product_ids}
    if errors:
        output["errors"] = errors
    return StepResult.ok(output)


async def canvas(ctx: StepContext) -> StepResult:
    await ctx.progress(completed_jobs=7, current_job="Generating canvas (warm grayscale)...")
    response = await get_functions_client().invoke(
        "stylize-photo",
        {"imageUrl": ctx.item.photo_url, "style": "warmGrayscale", "preserveComposition": True},
        schema=StylizedPhotoResponse,
    )
    await ctx.progress(completed_jobs=8, current_job="Canvas style completed, creating product...")
    return StepResult.ok({"image_url": response.stylized_image_url})


async def canvas_product(ctx: StepContext) -> StepResult:
    image_url = _require(ctx, "canvas")["image_url"]
    product = await get_functions_client().invoke(
        "create-canvas-product",
        {
            "stylizedImageBase64": image_url,
            "artist": PHOTO_ARTIST,
            "title": _product_title(),
            "style": "warmGrayscale",
            "price": CANVAS_PRICE,
            "styleVariants": [],
        },
        schema=ProductResponse,
    )
    return StepResult.ok({"product_id": product.product_id})


async def tshirt(ctx: StepContext) -> StepResult:
    await ctx.progress(completed_jobs=8, current_job="Generating T-shirt design + 7 styles...")
    client = get_functions_client()
    design = await client.invoke(
        "generate-tshirt-design",
        {
            "albumCoverUrl": ctx.item.photo_url,
            "albumTitle": PHOTO_ARTIST,
            "artistName": "Custom Artist",
            "colorPalette": DESIGN_PALETTE,
        },
        schema=DesignResponse,
    )
    variants = await client.invoke(
        "batch-generate-tshirt-styles",
        {"baseDesignUrl": design.base_design_url, "tshirtId": design.tshirt_id},
        schema=PosterStylesResponse,
    )
    await ctx.progress(completed_jobs=9, current_job="T-shirt styles completed, creating products...")
    return StepResult.ok({
        "tshirt_id": design.tshirt_id,
        "base_design": design.base_design_url,
        "variants": [variant.model_dump() for variant in variants.style_variants],
    })


async def tshirt_products(ctx: StepContext) -> StepResult:
    design = _require(ctx, "tshirt")
    products = await get_functions_client().invoke(
        "create-tshirt-products",
        {
            "tshirtId": design["tshirt_id"],
            "styleVariants": [{"url": v["url"], "style": v.get("style")} for v in design["variants"]],
        },
        schema=TshirtProductsResponse,
    )
    product_ids = [pid for pid in (products.standard_product_id, products.premium_product_id) if pid]
    return StepResult.ok({"product_ids": product_ids})


async def socks(ctx: StepContext) -> StepResult:
    await ctx.progress(completed_jobs=9, current_job="Generating socks design (pop art)...")
    design = await get_functions_client().invoke(
        "generate-sock-design",
        {
            "albumCoverUrl": ctx.item.photo_url,
            "artistName": "Custom Artist",
            "albumTitle": PHOTO_ARTIST,
            "colorPalette": {
                **DESIGN_PALETTE,
                "color_palette": ["#000000", "#FFFFFF", "#808080"],
                "pattern_type": "custom-photo",
            },
        },
        schema=DesignResponse,
    )
    await ctx.progress(completed_jobs=10, current_job="Socks design completed, creating product...")
    return StepResult.ok({"sock_id": design.sock_id, "image_url": design.base_design_url})


async def socks_product(ctx: StepContext) -> StepResult:
    design = _require(ctx, "socks")
    product = await get_functions_client().invoke(
        "create-sock-products",
        {"sockId": design["sock_id"], "styleVariants": []},
        schema=ProductResponse,
    )
    return StepResult.ok({"product_id": product.product_id})


def completion_values(item: PhotoBatch, outcome: PipelineOutcome) -> dict[str, Any]:
    current_job = "All jobs completed"
    if outcome.errors:
        current_job = f"All jobs completed ({len(outcome.errors)} errors)"
    return {"completed_jobs": TOTAL_JOBS, "current_job": current_job}


photo_batch_queue = register_queue(QueueDefinition(
    name=QUEUE_NAME,
    model=PhotoBatch,
    pipeline=StepPipeline([
        Step("posters", posters, optional=True),
        Step("poster_products", poster_products, optional=True),
        Step("canvas", canvas, optional=True),
        Step("canvas_product", canvas_product, optional=True),
        Step("tshirt", tshirt, optional=True),
        Step("tshirt_products", tshirt_products, optional=True),
        Step("socks", socks, optional=True),
        Step("socks_product", socks_product, optional=True),
    ]),
    key_fn=photo_key,
    completion_values=completion_values,
    default_batch_size=1,
    describe=lambda item: {"photo_url": item.photo_url, "completed_jobs": item.completed_jobs},
))


async def start_photo_batch(db: AsyncSession, photo_url: str) -> EnqueueSummary:
    """Queue a new photo batch; a photo that is already queued is skipped."""
    if not photo_url or not photo_url.strip():
        raise ValueError("photo_url is required")
    batch = PhotoBatch(photo_url=photo_url.strip(), total_jobs=TOTAL_JOBS, completed_jobs=0)
    return await enqueue_items(db, photo_batch_queue, [batch])
