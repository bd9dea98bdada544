"""Queue domains. Importing this package registers every queue definition."""

from musicscan.services.processors import (  # noqa: F401
    artist_stories,
    discogs_import,
    master_singles,
    photo_batch,
    singles_import,
    social_post,
)
