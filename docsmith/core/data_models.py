"""Data models used throughout docsmith.

``RetrievedItem`` is the common representation of one research result.  Every
source client normalises its raw response into one of the concrete item kinds
defined here so that scoring, deduplication and ranking can operate on a
single shape regardless of where the item came from.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Generic, List, Mapping, Optional, TypeVar
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SourceType(str, Enum):
    """External research sources."""

    STACKOVERFLOW = "stackoverflow"
    GITHUB = "github"
    SEARCH = "search"
    YOUTUBE = "youtube"
    REDDIT = "reddit"
    DEVTO = "devto"
    CODEPROJECT = "codeproject"
    STACKEXCHANGE = "stackexchange"
    QUORA = "quora"
    FORUMS = "forums"

    @property
    def category(self) -> str:
        """Coarse content category used by aggregate quality scoring."""
        return _SOURCE_CATEGORIES[self]


_SOURCE_CATEGORIES: Dict[SourceType, str] = {
    SourceType.STACKOVERFLOW: "qa",
    SourceType.STACKEXCHANGE: "qa",
    SourceType.QUORA: "qa",
    SourceType.GITHUB: "qa",
    SourceType.YOUTUBE: "video",
    SourceType.REDDIT: "forums",
    SourceType.FORUMS: "forums",
    SourceType.DEVTO: "blogs",
    SourceType.CODEPROJECT: "blogs",
    SourceType.SEARCH: "web",
}


class ComplexityClass(str, Enum):
    """Coarse size classification of the product being researched."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


def extract_domain(url: str) -> str:
    """Return the lower-cased host of ``url`` without a leading ``www.``."""
    try:
        host = urlparse(url).netloc.lower()
    except ValueError:
        return ""
    host = host.split("@")[-1].split(":")[0]
    return host[4:] if host.startswith("www.") else host


def _clamp_score(value: Optional[float], name: str, url: str) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    if value < 0.0:
        logger.warning("%s %f clamped to 0.0 for %s", name, value, url)
        return 0.0
    if value > 1.0:
        logger.warning("%s %f clamped to 1.0 for %s", name, value, url)
        return 1.0
    return value


@dataclass
class RetrievedItem:
    """A single normalised research result.

    Attributes
    ----------
    title: str
        Human readable title of the resource.
    url: str
        Canonical link to the resource.
    source_type: SourceType
        Which source client produced the item.
    snippet: str
        Short excerpt or description, possibly truncated.
    domain: str
        Host of ``url``; derived automatically when left empty.
    trust_score: Optional[float]
        Per-item heuristic confidence in ``[0, 1]``.
    quality_score: Optional[float]
        Composite validation score in ``[0, 1]`` assigned by the content
        validator.
    metadata: Dict[str, Any]
        Free-form extra data (merge bookkeeping, near-duplicate markers).
    """

    title: str
    url: str
    source_type: SourceType
    snippet: str = ""
    domain: str = ""
    trust_score: Optional[float] = None
    quality_score: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.url or not str(self.url).strip():
            raise ValueError("url cannot be empty")
        self.url = str(self.url).strip()

        if not self.title or not str(self.title).strip():
            raise ValueError("title cannot be empty")
        self.title = str(self.title).strip()

        self.source_type = SourceType(self.source_type)
        self.snippet = (self.snippet or "").strip()
        if not self.domain:
            self.domain = extract_domain(self.url)

        self.trust_score = _clamp_score(self.trust_score, "Trust score", self.url)
        self.quality_score = _clamp_score(self.quality_score, "Quality score", self.url)

        if self.metadata is None:
            self.metadata = {}
        elif not isinstance(self.metadata, dict):
            logger.warning("Converting non-dict metadata to dict for %s", self.url)
            self.metadata = {"value": self.metadata}

    def signals(self) -> Dict[str, float]:
        """Numeric inputs for trust scoring, keyed by signal name."""
        return {}

    def engagement(self) -> float:
        """Raw engagement count used by aggregate quality scoring."""
        return 0.0

    @property
    def rank_score(self) -> float:
        """Score used to order merged result sets."""
        if self.quality_score is not None:
            return self.quality_score
        if self.trust_score is not None:
            return self.trust_score
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the item to a JSON-serialisable dictionary."""
        data = asdict(self)
        data["source_type"] = self.source_type.value
        return data

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(source_type={self.source_type.value!r}, "
            f"url={self.url!r}, score={self.rank_score:.2f})"
        )


@dataclass(repr=False)
class QuestionItem(RetrievedItem):
    """A question from a Q&A site (Stack Overflow, Stack Exchange, Quora)."""

    votes: int = 0
    answers: int = 0
    views: int = 0
    accepted: bool = False
    tags: List[str] = field(default_factory=list)
    site: str = "stackoverflow"

    def signals(self) -> Dict[str, float]:
        return {"votes": self.votes, "answers": self.answers, "views": self.views}

    def engagement(self) -> float:
        return float(self.votes + self.answers + self.views)


@dataclass(repr=False)
class VideoItem(RetrievedItem):
    """A video from the video platform."""

    video_id: str = ""
    views: int = 0
    likes: int = 0
    dislikes: int = 0
    channel_title: str = ""
    duration: str = ""
    published_at: str = ""
    transcript: Optional[str] = None

    def signals(self) -> Dict[str, float]:
        signals: Dict[str, float] = {"views": self.views}
        reactions = self.likes + self.dislikes
        if reactions > 0:
            signals["like_ratio"] = self.likes / reactions
        return signals

    def engagement(self) -> float:
        return float(self.views + self.likes)


@dataclass(repr=False)
class PostItem(RetrievedItem):
    """A community post (Reddit thread, forum topic, GitHub issue)."""

    upvotes: int = 0
    comments: int = 0
    views: int = 0
    community: str = ""
    author: str = ""
    is_official: bool = False

    def signals(self) -> Dict[str, float]:
        return {"upvotes": self.upvotes, "comments": self.comments, "views": self.views}

    def engagement(self) -> float:
        return float(self.upvotes + self.comments + self.views)


@dataclass(repr=False)
class ArticleItem(RetrievedItem):
    """A long-form article (DEV.to, CodeProject, general web page)."""

    reactions: int = 0
    comments: int = 0
    reading_time: int = 0
    views: int = 0
    rating: float = 0.0
    votes: int = 0
    tags: List[str] = field(default_factory=list)
    author: str = ""

    def signals(self) -> Dict[str, float]:
        return {
            "reactions": self.reactions,
            "comments": self.comments,
            "reading_time": self.reading_time,
            "views": self.views,
            "rating": self.rating,
            "votes": self.votes,
        }

    def engagement(self) -> float:
        return float(self.reactions + self.comments + self.views + self.votes)


@dataclass(frozen=True)
class SourceLimits:
    """Maximum item count per source, plus the snippet truncation length.

    Every ``SourceType`` is always present in ``counts``; sources missing
    from the mapping passed in are filled with zero.
    """

    counts: Mapping[SourceType, int]
    truncation_limit: int = 1000

    def __post_init__(self) -> None:
        counts: Dict[SourceType, int] = {source: 0 for source in SourceType}
        for key, value in dict(self.counts).items():
            count = int(value)
            if count < 0:
                raise ValueError(f"limit for {key} cannot be negative: {count}")
            counts[SourceType(key)] = count
        if self.truncation_limit <= 0:
            raise ValueError("truncation_limit must be positive")
        object.__setattr__(self, "counts", MappingProxyType(counts))

    def __getitem__(self, source: SourceType) -> int:
        return self.counts[SourceType(source)]

    def with_counts(self, counts: Mapping[SourceType, int]) -> "SourceLimits":
        """Return a copy with some counts replaced."""
        merged = dict(self.counts)
        merged.update({SourceType(k): v for k, v in counts.items()})
        return SourceLimits(merged, self.truncation_limit)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to a plain dictionary keyed by source name."""
        data: Dict[str, Any] = {source.value: count for source, count in self.counts.items()}
        data["truncation_limit"] = self.truncation_limit
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SourceLimits":
        """Build limits from a mapping of source names to counts."""
        data = dict(data)
        truncation = int(data.pop("truncation_limit", 1000))
        return cls({SourceType(k): int(v) for k, v in data.items()}, truncation)


@dataclass(frozen=True)
class TierCeiling:
    """Hard upper bound on research depth imposed by a subscription plan."""

    name: str
    price_monthly: float
    limits: SourceLimits
    youtube_api_access: bool = False
    youtube_transcripts: bool = False
    max_generations_per_month: Optional[int] = None
    upgrade_benefit: str = ""


@dataclass
class ChainResult(Generic[T]):
    """Outcome of a successful fallback-chain execution."""

    data: T
    provider_label: str
    from_cache: bool = False


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Immutable cached value; replaced wholesale, never mutated."""

    data: T
    timestamp: float
    provider_label: str


@dataclass
class SourceResult:
    """Items returned by one source client, plus their aggregate quality."""

    source_type: SourceType
    items: List[RetrievedItem] = field(default_factory=list)
    quality_score: float = 0.0
    provider_label: str = ""
    from_cache: bool = False
    retrieved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the source result to a dictionary."""
        return {
            "source_type": self.source_type.value,
            "items": [item.to_dict() for item in self.items],
            "quality_score": self.quality_score,
            "provider_label": self.provider_label,
            "from_cache": self.from_cache,
            "retrieved_at": self.retrieved_at.isoformat(),
        }
