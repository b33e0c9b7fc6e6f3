"""Tests for the deduplication module."""

from docsmith.core.data_models import ArticleItem, RetrievedItem, SourceType
from docsmith.core.deduplication import (
    ResultDeduplicator,
    deduplicate_items,
    merge_item_lists,
    normalize_url,
)


def make_item(url, source=SourceType.SEARCH, trust=None, quality=None, **metadata):
    return RetrievedItem(
        title="Item",
        url=url,
        source_type=source,
        trust_score=trust,
        quality_score=quality,
        metadata=metadata,
    )


class TestNormalizeUrl:
    """Tests for normalize_url."""

    def test_strips_query_and_fragment(self):
        """Test query strings and fragments are ignored."""
        assert normalize_url("https://x.com/a?ref=1") == normalize_url("https://x.com/a?ref=2")
        assert normalize_url("https://x.com/a#top") == "https://x.com/a"

    def test_case_and_trailing_slash(self):
        """Test case differences and a trailing slash are ignored."""
        assert normalize_url("https://X.com/A/") == "https://x.com/a"

    def test_strips_www(self):
        """Test a leading www. on the host is ignored."""
        assert normalize_url("https://www.x.com/a") == normalize_url("https://x.com/a")
        assert normalize_url("https://WWW.X.com/a/") == "https://x.com/a"
        assert normalize_url("https://wwwx.com/a") == "https://wwwx.com/a"

    def test_empty(self):
        """Test empty input normalises to an empty string."""
        assert normalize_url(None) == ""
        assert normalize_url("") == ""

    def test_schemeless(self):
        """Test values without a scheme are still cleaned."""
        assert normalize_url("x.com/a/?q=1") == "x.com/a"


class TestResultDeduplicator:
    """Tests for ResultDeduplicator class."""

    def test_init_defaults(self):
        """Test default initialization."""
        assert ResultDeduplicator().merge_metadata is True

    def test_empty_list(self):
        """Test deduplicating an empty list."""
        assert ResultDeduplicator().deduplicate([]) == []

    def test_tracking_parameters_collapse(self):
        """Test two URLs differing only in query parameters yield one item."""
        items = [make_item("https://x.com/a?ref=1"), make_item("https://x.com/a?ref=2")]
        assert len(deduplicate_items(items)) == 1

    def test_keeps_best_scored_copy(self):
        """Test the highest-scored duplicate survives."""
        low = make_item("https://x.com/a", trust=0.2)
        high = make_item("https://x.com/a/", trust=0.9)

        result = deduplicate_items([low, high])

        assert len(result) == 1
        assert result[0].trust_score == 0.9

    def test_records_other_sources(self):
        """Test the surviving copy lists the other sources that found it."""
        web = make_item("https://stackoverflow.com/q/1", SourceType.SEARCH, trust=0.5)
        api = make_item("https://stackoverflow.com/q/1", SourceType.STACKOVERFLOW, trust=0.8)

        result = deduplicate_items([web, api])

        assert result[0].source_type is SourceType.STACKOVERFLOW
        assert result[0].metadata["also_found_in"] == ["search"]

    def test_merges_metadata_without_mutating_input(self):
        """Test duplicate metadata is merged into a copy."""
        first = make_item("https://x.com/a", trust=0.9, via="api")
        second = make_item("https://x.com/a", trust=0.1, via="web_search", extra=True)

        result = deduplicate_items([first, second])

        assert result[0].metadata == {"via": "api", "extra": True}
        assert first.metadata == {"via": "api"}

    def test_merge_metadata_disabled(self):
        """Test metadata stays untouched when merging is disabled."""
        first = make_item("https://x.com/a", trust=0.9, via="api")
        second = make_item("https://x.com/a", trust=0.1, extra=True)

        result = ResultDeduplicator(merge_metadata=False).deduplicate([first, second])

        assert result[0] is first

    def test_sorted_by_rank(self):
        """Test unique items come back highest score first."""
        items = [
            make_item("https://a.com", trust=0.3),
            make_item("https://b.com", trust=0.7, quality=0.95),
            make_item("https://c.com", trust=0.5),
        ]

        result = deduplicate_items(items)

        assert [item.domain for item in result] == ["b.com", "c.com", "a.com"]

    def test_preserves_item_subclass(self):
        """Test the concrete item kind survives merging."""
        article = ArticleItem(
            title="Guide", url="https://dev.to/guide", source_type=SourceType.DEVTO, reactions=40
        )
        web = make_item("https://dev.to/guide?utm=x")

        result = deduplicate_items([article, web])

        assert isinstance(result[0], ArticleItem)


class TestMergeItemLists:
    """Tests for merge_item_lists."""

    def test_merge_and_deduplicate(self):
        """Test lists are concatenated and deduplicated."""
        merged = merge_item_lists(
            [make_item("https://a.com")], [make_item("https://a.com/"), make_item("https://b.com")]
        )
        assert len(merged) == 2

    def test_merge_without_deduplication(self):
        """Test lists are only concatenated when deduplication is off."""
        merged = merge_item_lists(
            [make_item("https://a.com")], [make_item("https://a.com")], deduplicate=False
        )
        assert len(merged) == 2
