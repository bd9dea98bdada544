"""Text helpers for content slugs."""

import re
import unicodedata

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(value: str, max_length: int = 200) -> str:
    """
    Turn a title into a URL slug.

    Accents are folded to ASCII, anything else that is not a letter or digit
    becomes a single dash.
    """
    normalized = unicodedata.normalize("NFKD", value or "")
    ascii_value = normalized.encode("ascii", "ignore").decode("ascii").lower()
    slug = _NON_SLUG.sub("-", ascii_value).strip("-")
    return slug[:max_length].rstrip("-")
