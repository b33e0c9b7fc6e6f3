"""Trust and quality scoring for research results.

Per-item trust is a step function over source-specific signals.  The rules
are plain data (``TRUST_BUCKETS``) so they can be tested and tuned without
touching any network code:

* every item starts at ``BASE_TRUST`` (0.5);
* for each signal the first bucket whose threshold the value *exceeds* adds
  its delta, and buckets are listed from the highest threshold down;
* flags (accepted answer, official post, tutorial channel) and the domain add
  fixed boosts;
* the result is clamped to ``[0, 1]``.

All scores in this module share one normalised ``[0, 1]`` scale.  The content
validator's ``trusted_threshold`` of 0.6 corresponds to 60 on a 0-100
composite scale.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from docsmith.core.data_models import (
    PostItem,
    QuestionItem,
    RetrievedItem,
    SourceType,
    VideoItem,
    extract_domain,
)
from docsmith.core.deduplication import deduplicate_items
from docsmith.core.http_client import AsyncHTTPClient

logger = logging.getLogger(__name__)

BASE_TRUST = 0.5
TRUSTED_THRESHOLD = 0.6
HIGH_QUALITY_THRESHOLD = 0.8
ENGAGEMENT_CAP = 1000

# (exclusive lower threshold, delta), highest threshold first
Bucket = Tuple[float, float]

_QA_BUCKETS: Dict[str, Tuple[Bucket, ...]] = {
    "votes": ((10, 0.3), (5, 0.2), (0, 0.1)),
    "answers": ((5, 0.3), (2, 0.2), (0, 0.1)),
    "views": ((1000, 0.2), (500, 0.1)),
}

TRUST_BUCKETS: Dict[SourceType, Dict[str, Tuple[Bucket, ...]]] = {
    SourceType.STACKOVERFLOW: _QA_BUCKETS,
    SourceType.STACKEXCHANGE: _QA_BUCKETS,
    SourceType.QUORA: {
        "votes": ((100, 0.2), (10, 0.1)),
        "answers": ((5, 0.1),),
    },
    SourceType.GITHUB: {
        "upvotes": ((50, 0.2), (10, 0.1)),
        "comments": ((20, 0.2), (5, 0.1)),
    },
    SourceType.YOUTUBE: {
        "views": ((1_000_000, 0.3), (100_000, 0.2), (10_000, 0.1), (1_000, 0.0), (-1, -0.2)),
        "like_ratio": ((0.9, 0.2), (0.8, 0.1), (0.5, 0.0), (-1, -0.1)),
    },
    SourceType.REDDIT: {
        "upvotes": ((100, 0.3), (50, 0.2), (10, 0.1)),
        "comments": ((20, 0.2), (5, 0.1)),
    },
    SourceType.FORUMS: {
        "upvotes": ((20, 0.1),),
        "comments": ((10, 0.1),),
        "views": ((1000, 0.1),),
    },
    SourceType.DEVTO: {
        "reactions": ((100, 0.3), (50, 0.2), (5, 0.1)),
        "comments": ((20, 0.1), (5, 0.05)),
        "reading_time": ((10, 0.1), (5, 0.05), (-1, -0.05)),
    },
    SourceType.CODEPROJECT: {
        "views": ((10_000, 0.3), (5_000, 0.2), (1_000, 0.1)),
        "rating": ((4.5, 0.3), (4.0, 0.2), (3.5, 0.1)),
        "votes": ((50, 0.2), (20, 0.1)),
    },
    SourceType.SEARCH: {},
}

ACCEPTED_ANSWER_BOOST = 0.2
OFFICIAL_POST_BOOST = 0.1
CHANNEL_KEYWORD_BOOST = 0.1
CHANNEL_KEYWORDS = ("official", "tutorial")

AUTHORITATIVE_SUFFIXES = (".gov", ".edu")
DOCUMENTATION_HOST_PREFIXES = ("docs.", "developer.", "developers.", "learn.")
TRUSTED_DEVELOPER_DOMAINS = frozenset({"stackoverflow.com", "github.com"})
TRUSTED_COMMUNITY_DOMAINS = frozenset(
    {
        "stackoverflow.com",
        "github.com",
        "medium.com",
        "dev.to",
        "docs.microsoft.com",
        "developer.mozilla.org",
        "readthedocs.io",
        "stackexchange.com",
        "codeproject.com",
    }
)
DOMAIN_AUTHORITY_BOOST = 0.3
COMMUNITY_DOMAIN_BOOST = 0.1

CATEGORY_WEIGHTS: Dict[str, float] = {
    "docs": 3.0,
    "qa": 2.0,
    "video": 1.5,
    "forums": 1.4,
    "blogs": 1.0,
    "web": 0.5,
}
MAX_CATEGORY_WEIGHT = max(CATEGORY_WEIGHTS.values())

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def bucket_delta(value: float, buckets: Sequence[Bucket]) -> float:
    """Return the delta of the first bucket whose threshold ``value`` exceeds."""
    for threshold, delta in buckets:
        if value > threshold:
            return delta
    return 0.0


def _host_matches(domain: str, allowed: frozenset) -> bool:
    return any(domain == host or domain.endswith("." + host) for host in allowed)


def is_documentation_domain(domain: str) -> bool:
    """Whether ``domain`` looks like official documentation or an authority."""
    domain = domain.lower()
    return (
        domain.endswith(AUTHORITATIVE_SUFFIXES)
        or domain.startswith(DOCUMENTATION_HOST_PREFIXES)
        or domain.endswith(".readthedocs.io")
    )


def domain_trust_boost(domain: str) -> float:
    """Trust delta contributed by the item's host."""
    if not domain:
        return 0.0
    if is_documentation_domain(domain):
        return DOMAIN_AUTHORITY_BOOST
    if _host_matches(domain, TRUSTED_COMMUNITY_DOMAINS):
        return COMMUNITY_DOMAIN_BOOST
    return 0.0


def _flag_boost(item: RetrievedItem) -> float:
    boost = 0.0
    if isinstance(item, QuestionItem) and item.accepted:
        boost += ACCEPTED_ANSWER_BOOST
    if isinstance(item, PostItem) and item.is_official:
        boost += OFFICIAL_POST_BOOST
    if isinstance(item, VideoItem):
        channel = item.channel_title.lower()
        if any(keyword in channel for keyword in CHANNEL_KEYWORDS):
            boost += CHANNEL_KEYWORD_BOOST
    return boost


def trust_score(item: RetrievedItem) -> float:
    """Compute the heuristic trust of a single item.

    Args:
        item: The item to score

    Returns:
        Trust score clamped to ``[0, 1]``
    """
    score = BASE_TRUST
    buckets = TRUST_BUCKETS.get(item.source_type, {})
    for signal, value in item.signals().items():
        if signal in buckets:
            score += bucket_delta(value, buckets[signal])
    score += _flag_boost(item)
    score += domain_trust_boost(item.domain)
    return min(max(score, 0.0), 1.0)


def score_items(items: Sequence[RetrievedItem]) -> List[RetrievedItem]:
    """Return copies of ``items`` with ``trust_score`` filled in, best first."""
    scored = [dataclasses.replace(item, trust_score=trust_score(item)) for item in items]
    scored.sort(key=lambda item: item.trust_score or 0.0, reverse=True)
    return scored


def _trust_of(item: RetrievedItem) -> float:
    return item.trust_score if item.trust_score is not None else trust_score(item)


def engagement_quality(items: Sequence[RetrievedItem]) -> float:
    """Aggregate quality of a single-source result set.

    ``0.7 * mean(trust) + 0.3 * mean(min(engagement, 1000)) / 1000``
    """
    if not items:
        return 0.0
    mean_trust = sum(_trust_of(item) for item in items) / len(items)
    mean_engagement = sum(min(item.engagement(), ENGAGEMENT_CAP) for item in items) / len(items)
    return 0.7 * mean_trust + 0.3 * (mean_engagement / ENGAGEMENT_CAP)


def item_category(item: RetrievedItem) -> str:
    """Content category of an item; documentation hosts override the source."""
    if is_documentation_domain(item.domain):
        return "docs"
    return item.source_type.category


def category_quality(items: Sequence[RetrievedItem]) -> float:
    """Aggregate quality of a mixed-source pool from fixed category weights."""
    if not items:
        return 0.0
    total = sum(CATEGORY_WEIGHTS.get(item_category(item), 0.5) for item in items)
    return min(total / (len(items) * MAX_CATEGORY_WEIGHT), 1.0)


def aggregate_quality(items: Sequence[RetrievedItem]) -> float:
    """Engagement-based quality for one source, category weights for mixed pools."""
    if len({item.source_type for item in items}) > 1:
        return category_quality(items)
    return engagement_quality(items)


def domain_authority(url: str) -> float:
    """Authority of the URL's host in ``[0, 1]``."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return 0.2
    if not parsed.scheme or not parsed.netloc:
        return 0.2

    domain = extract_domain(url)
    if domain.endswith(AUTHORITATIVE_SUFFIXES):
        return 0.95
    if _host_matches(domain, TRUSTED_DEVELOPER_DOMAINS):
        return 0.9
    if domain.startswith(DOCUMENTATION_HOST_PREFIXES) or domain.endswith(".readthedocs.io"):
        return 0.85
    if _host_matches(domain, TRUSTED_COMMUNITY_DOMAINS):
        return 0.7
    return 0.5


def tokenize(text: str) -> List[str]:
    return _TOKEN_RE.findall(text.lower())


def relevance(query: str, text: str) -> float:
    """Share of query terms (longer than two characters) present in ``text``.

    Returns 0.5 when either side has nothing to compare, otherwise a value
    clamped to ``[0.1, 1]``.
    """
    terms = {term for term in tokenize(query) if len(term) > 2}
    words = set(tokenize(text))
    if not terms or not words:
        return 0.5
    matches = sum(1 for term in terms if term in words)
    return min(max(matches / len(terms), 0.1), 1.0)


def composite_score(query: str, item: RetrievedItem) -> float:
    """``0.6 * domain authority + 0.4 * relevance``."""
    text = f"{item.title} {item.snippet}"
    return 0.6 * domain_authority(item.url) + 0.4 * relevance(query, text)


def heuristic_score(query: str, item: RetrievedItem) -> float:
    """Cheaper ranking used when strict validation leaves nothing."""
    text = f"{item.title} {item.snippet}"
    return (domain_authority(item.url) + relevance(query, text) / 2) / 1.5


def content_fingerprint(text: str, length: int = 200) -> str:
    """First ``length`` characters of ``text``, lower-cased with whitespace collapsed."""
    return " ".join(text.lower().split())[:length]


def jaccard_similarity(a: str, b: str) -> float:
    tokens_a, tokens_b = set(tokenize(a)), set(tokenize(b))
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


@dataclass
class ValidationOutcome:
    """Result of running the content-validation pipeline."""

    items: List[RetrievedItem]
    degraded: bool = False
    cross_verified: bool = False
    dead_links: int = 0
    below_threshold: int = 0
    near_duplicates: int = 0


class ContentValidator:
    """Liveness, relevance, threshold, dedup and cross-verification pipeline."""

    def __init__(
        self,
        http_client: Optional[AsyncHTTPClient] = None,
        threshold: float = TRUSTED_THRESHOLD,
        check_links: bool = True,
        link_concurrency: int = 5,
        link_timeout: float = 5.0,
        cross_verify_top_k: int = 10,
        min_verified_sources: int = 3,
        similarity_threshold: float = 0.8,
    ) -> None:
        self.http_client = http_client
        self.threshold = threshold
        self.check_links = check_links and http_client is not None
        self.link_concurrency = link_concurrency
        self.link_timeout = link_timeout
        self.cross_verify_top_k = cross_verify_top_k
        self.min_verified_sources = min_verified_sources
        self.similarity_threshold = similarity_threshold
        self.logger = logging.getLogger(self.__class__.__name__)

    async def validate(
        self,
        query: str,
        items: Sequence[RetrievedItem],
        max_results: int = 10,
    ) -> ValidationOutcome:
        """Validate, score and rank ``items`` for ``query``.

        Never returns an empty list from a non-empty input: if strict
        filtering removes everything, the items are re-ranked with
        ``heuristic_score`` and the top ``max_results`` are returned with
        ``degraded=True``.
        """
        if not items:
            return ValidationOutcome(items=[])

        live = await self.filter_live(items)
        dead = len(items) - len(live)

        scored = [dataclasses.replace(item, quality_score=composite_score(query, item)) for item in live]
        trusted = [item for item in scored if (item.quality_score or 0.0) >= self.threshold]
        unique = deduplicate_items(trusted)

        if not unique:
            self.logger.warning(
                "No results passed validation for '%s' (%d dead, %d below %.2f); using heuristic ranking",
                query,
                dead,
                len(scored),
                self.threshold,
            )
            return ValidationOutcome(
                items=self.fallback_ranking(query, items, max_results),
                degraded=True,
                dead_links=dead,
                below_threshold=len(scored),
            )

        checked, verified, near_duplicates = self.cross_verify(unique)
        self.logger.debug(
            "Validated %d/%d results for '%s' (verified=%s)",
            len(checked[:max_results]),
            len(items),
            query,
            verified,
        )
        return ValidationOutcome(
            items=checked[:max_results],
            cross_verified=verified,
            dead_links=dead,
            below_threshold=len(scored) - len(trusted),
            near_duplicates=near_duplicates,
        )

    async def filter_live(self, items: Sequence[RetrievedItem]) -> List[RetrievedItem]:
        """Drop items whose URL fails the liveness check."""
        if not self.check_links:
            return list(items)

        semaphore = asyncio.Semaphore(self.link_concurrency)

        async def check(item: RetrievedItem) -> bool:
            async with semaphore:
                return await self.http_client.is_alive(item.url, timeout=self.link_timeout)

        alive = await asyncio.gather(*(check(item) for item in items))
        return [item for item, ok in zip(items, alive) if ok]

    def cross_verify(self, items: Sequence[RetrievedItem]) -> Tuple[List[RetrievedItem], bool, int]:
        """Flag near-duplicate content among the top K items.

        Returns:
            (items with ``near_duplicate_of`` markers, whether enough distinct
            high-quality sources agree, number of near duplicates flagged)
        """
        top = list(items[: self.cross_verify_top_k])
        rest = list(items[self.cross_verify_top_k :])

        checked: List[RetrievedItem] = []
        originals: List[RetrievedItem] = []
        near_duplicates = 0
        for item in top:
            text = f"{item.title} {item.snippet}"
            fingerprint = content_fingerprint(text)
            match = next(
                (
                    original
                    for original in originals
                    if content_fingerprint(f"{original.title} {original.snippet}") == fingerprint
                    or jaccard_similarity(text, f"{original.title} {original.snippet}")
                    >= self.similarity_threshold
                ),
                None,
            )
            if match is None:
                originals.append(item)
                checked.append(item)
            else:
                near_duplicates += 1
                checked.append(
                    dataclasses.replace(item, metadata={**item.metadata, "near_duplicate_of": match.url})
                )

        high_quality = [item for item in originals if (item.quality_score or 0.0) > HIGH_QUALITY_THRESHOLD]
        verified = len(high_quality) >= self.min_verified_sources
        return checked + rest, verified, near_duplicates

    def fallback_ranking(
        self, query: str, items: Sequence[RetrievedItem], max_results: int
    ) -> List[RetrievedItem]:
        """Rank every item by ``heuristic_score`` and keep the top ``max_results``."""
        rescored = [dataclasses.replace(item, quality_score=heuristic_score(query, item)) for item in items]
        ranked = deduplicate_items(rescored)
        return ranked[: max(max_results, 1)]
