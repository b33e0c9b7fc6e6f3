"""Result deduplication utilities for docsmith.

Research sources frequently surface the same page (a Stack Overflow question
found both through the Stack Exchange API and through web search, or the same
article linked with different tracking parameters).  This module collapses
those into one item per normalised URL while keeping the best-scored copy.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlparse

from docsmith.core.data_models import RetrievedItem

logger = logging.getLogger(__name__)


def normalize_url(url: Optional[str]) -> str:
    """Normalize URL for comparison.

    Lower-cases the URL, drops the query string and fragment, a leading
    ``www.`` on the host and a trailing slash, so ``https://x.com/a?ref=1``
    and ``https://www.X.com/a/`` compare equal.

    Args:
        url: URL to normalize

    Returns:
        Normalized URL string
    """
    if not url:
        return ""

    cleaned = url.strip().lower()
    try:
        parsed = urlparse(cleaned)
    except ValueError:
        return cleaned.split("#")[0].split("?")[0].rstrip("/")

    if not parsed.scheme or not parsed.netloc:
        return cleaned.split("#")[0].split("?")[0].rstrip("/")

    host = parsed.netloc[4:] if parsed.netloc.startswith("www.") else parsed.netloc
    return f"{parsed.scheme}://{host}{parsed.path.rstrip('/')}"


class ResultDeduplicator:
    """Deduplicates research items by normalised URL."""

    def __init__(self, merge_metadata: bool = True) -> None:
        """Initialize the deduplicator.

        Args:
            merge_metadata: Whether to merge metadata from duplicate items
        """
        self.merge_metadata = merge_metadata
        self.logger = logging.getLogger(self.__class__.__name__)

    def deduplicate(self, items: Sequence[RetrievedItem]) -> List[RetrievedItem]:
        """Remove duplicate items while preserving the best version.

        The deduplication strategy:
        1. Group by normalized URL
        2. Within each group, keep the item with the highest score
        3. Optionally merge metadata from all duplicates

        Args:
            items: Items to deduplicate

        Returns:
            Deduplicated items, highest score first
        """
        if not items:
            return []

        url_groups: Dict[str, List[RetrievedItem]] = {}
        for item in items:
            url_groups.setdefault(normalize_url(item.url), []).append(item)

        deduplicated: List[RetrievedItem] = []
        for url, group in url_groups.items():
            if len(group) == 1:
                deduplicated.append(group[0])
                continue

            best = self._select_best(group)
            if self.merge_metadata:
                best = self._merge_duplicate_metadata(best, group)
            deduplicated.append(best)
            self.logger.debug(
                "Merged %d duplicates for URL: %s",
                len(group),
                url[:50] + "..." if len(url) > 50 else url,
            )

        deduplicated.sort(key=lambda item: item.rank_score, reverse=True)

        if len(deduplicated) != len(items):
            self.logger.info(
                "Deduplicated %d items to %d unique items",
                len(items),
                len(deduplicated),
            )

        return deduplicated

    def _select_best(self, group: List[RetrievedItem]) -> RetrievedItem:
        """Select the best item from a group of duplicates.

        Selection criteria (in order):
        1. Highest rank score
        2. Highest trust score
        3. Most metadata
        4. First occurrence
        """
        return max(
            group,
            key=lambda item: (
                item.rank_score,
                item.trust_score or 0.0,
                len(item.metadata),
            ),
        )

    def _merge_duplicate_metadata(
        self, best: RetrievedItem, group: List[RetrievedItem]
    ) -> RetrievedItem:
        """Return a copy of ``best`` carrying metadata from every duplicate."""
        merged_metadata = dict(best.metadata)

        sources = []
        for item in group:
            if item.source_type != best.source_type and item.source_type.value not in sources:
                sources.append(item.source_type.value)
        if sources:
            merged_metadata["also_found_in"] = sources

        for item in group:
            if item is best:
                continue
            for key, value in item.metadata.items():
                merged_metadata.setdefault(key, value)

        return dataclasses.replace(best, metadata=merged_metadata)


def deduplicate_items(
    items: Sequence[RetrievedItem],
    merge_metadata: bool = True,
) -> List[RetrievedItem]:
    """Convenience function to deduplicate items by URL."""
    return ResultDeduplicator(merge_metadata=merge_metadata).deduplicate(items)


def merge_item_lists(
    *item_lists: Sequence[RetrievedItem],
    deduplicate: bool = True,
) -> List[RetrievedItem]:
    """Merge multiple item lists into one, optionally deduplicating.

    Args:
        *item_lists: Variable number of item lists
        deduplicate: Whether to deduplicate the merged items

    Returns:
        Merged (and optionally deduplicated) list of items
    """
    merged: List[RetrievedItem] = []
    for items in item_lists:
        merged.extend(items)

    if deduplicate:
        return deduplicate_items(merged)

    return merged
