"""
Tests for deduplication keys and the dedup index.

Covers:
- Key normalization for artist/title pairs, URLs and catalog ids
- Duplicate detection against content, live rows and reserved keys
- Lookup failures surfacing as DuplicateCheckError
"""

import pytest

from musicscan.services.dedup import (
    DedupIndex,
    DuplicateCheckError,
    artist_key,
    artist_title_key,
    build_index,
    catalog_key,
    normalize_text,
    url_key,
)
from musicscan.services.queue_repository import QueueError


class TestKeys:
    """Tests for the key builders."""

    def test_normalize_text(self):
        assert normalize_text("  The   Beatles ") == "the beatles"
        assert normalize_text(None) == ""

    def test_artist_title_key_ignores_case_and_spacing(self):
        """Test the same single written differently gives the same key."""
        assert artist_title_key("Queen", "Bohemian Rhapsody") == artist_title_key(
            " queen ", "BOHEMIAN  rhapsody"
        )
        assert artist_title_key("Queen", "Bohemian Rhapsody") == "queen|bohemian rhapsody"

    def test_artist_title_key_needs_both_parts(self):
        assert artist_title_key("Queen", "") is None
        assert artist_title_key(None, "Bohemian Rhapsody") is None

    def test_artist_key(self):
        assert artist_key("Daft Punk") == "artist:daft punk"
        assert artist_key("   ") is None

    def test_url_key_drops_tracking_and_fragment(self):
        """Test URLs that point at the same thing share a key."""
        a = url_key("HTTPS://Example.com/photos/1/?utm_source=fb&b=2&a=1#top")
        b = url_key("https://example.com/photos/1?a=1&b=2")

        assert a == b
        assert a == "https://example.com/photos/1?a=1&b=2"

    def test_url_key_empty(self):
        assert url_key("") is None
        assert url_key(None) is None

    @pytest.mark.parametrize("value", [0, -5, "abc", None, True])
    def test_catalog_key_rejects_invalid_ids(self, value):
        """Test only positive integer ids produce a key."""
        assert catalog_key(value) is None

    def test_catalog_key_accepts_numeric_strings(self):
        assert catalog_key("123") == catalog_key(123) == "discogs:123"


class TestDedupIndex:
    """Tests for DedupIndex."""

    def test_existing_content_is_duplicate(self):
        index = DedupIndex(existing={"queen|bohemian rhapsody"})

        assert index.is_duplicate("queen|bohemian rhapsody")
        assert index.reason("queen|bohemian rhapsody").startswith("Already exists")

    def test_row_is_not_duplicate_of_itself(self):
        """Test the row owning a queue key may still be processed."""
        index = DedupIndex(owners={"artist:muse": 7})

        assert not index.is_duplicate("artist:muse", item_id=7)
        assert index.is_duplicate("artist:muse", item_id=8)
        assert index.reason("artist:muse") == "Already queued: artist:muse"

    def test_reserved_keys_block_second_occurrence(self):
        index = DedupIndex()
        index.reserve("artist:muse")

        assert index.is_duplicate("artist:muse")
        assert index.reason("artist:muse") == "Duplicate in batch: artist:muse"

    def test_missing_key_is_never_duplicate(self):
        index = DedupIndex(existing={"x"})
        index.reserve(None)

        assert not index.is_duplicate(None)
        assert index.reserved == set()


class TestBuildIndex:
    """Tests for build_index."""

    async def test_collects_loader_keys(self):
        async def loader(session):
            return ["discogs:1", None, "discogs:2"]

        index = await build_index(session=None, content_loaders=[loader], queue_keys={"discogs:3": 1})

        assert index.existing == {"discogs:1", "discogs:2"}
        assert index.owners == {"discogs:3": 1}

    async def test_loader_failure_raises_duplicate_check_error(self):
        """Test a failing lookup is never treated as 'no duplicates'."""
        async def broken(session):
            raise RuntimeError("database is locked")

        with pytest.raises(DuplicateCheckError, match="database is locked"):
            await build_index(session=None, content_loaders=[broken])

    def test_duplicate_check_error_is_queue_error(self):
        assert issubclass(DuplicateCheckError, QueueError)
