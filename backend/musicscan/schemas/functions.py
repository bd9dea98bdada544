"""
Schemas for responses of the sibling serverless functions.

Fields the processors rely on are required: a response without them is a
``SchemaValidationError`` and the item fails permanently instead of being
stored half-filled.
"""

from pydantic import BaseModel, ConfigDict, Field


class FunctionResponse(BaseModel):
    """Base for function responses; unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True, populate_by_name=True)


class ArtProductResponse(FunctionResponse):
    """create-art-product"""

    product_id: str
    blog_id: str | None = None
    product_slug: str | None = None
    already_exists: bool = False


class SingleStoryResponse(FunctionResponse):
    """generate-single-story"""

    story: str = Field(..., min_length=1)
    title: str | None = None
    slug: str | None = None
    artwork_url: str | None = None


class ArtistStoryResponse(FunctionResponse):
    """generate-artist-story"""

    story: str = Field(..., min_length=1)
    title: str | None = None
    slug: str | None = None
    artwork_url: str | None = None


class StyleVariant(FunctionResponse):
    url: str
    style: str | None = None


class PosterStylesResponse(FunctionResponse):
    """batch-generate-poster-styles, batch-generate-tshirt-styles"""

    style_variants: list[StyleVariant] = Field(default_factory=list, alias="styleVariants")


class StylizedPhotoResponse(FunctionResponse):
    """stylize-photo"""

    stylized_image_url: str = Field(..., alias="stylizedImageUrl")


class DesignResponse(FunctionResponse):
    """generate-tshirt-design, generate-sock-design"""

    base_design_url: str
    tshirt_id: str | None = None
    sock_id: str | None = None


class ProductResponse(FunctionResponse):
    """create-poster-product, create-canvas-product, create-sock-products"""

    product_id: str | None = None


class TshirtProductsResponse(FunctionResponse):
    """create-tshirt-products"""

    standard_product_id: str | None = None
    premium_product_id: str | None = None


class SocialPostResponse(FunctionResponse):
    """post-to-facebook"""

    success: bool = True
    post_id: str | None = None
    error: str | None = None
