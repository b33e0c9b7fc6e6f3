"""Subscription tiers and research-depth resolution.

Research depth is chosen in two steps: the product's apparent complexity
selects a desired per-source count table (smart scaling), and the
subscription plan's ceiling clamps that table field by field.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from docsmith.core.data_models import ComplexityClass, SourceLimits, SourceType, TierCeiling

logger = logging.getLogger(__name__)

DEFAULT_PLAN = "free"
TRUNCATION_LIMIT = 1000

# Column order of the count tables below
SOURCE_ORDER = (
    SourceType.STACKOVERFLOW,
    SourceType.GITHUB,
    SourceType.SEARCH,
    SourceType.YOUTUBE,
    SourceType.REDDIT,
    SourceType.DEVTO,
    SourceType.CODEPROJECT,
    SourceType.STACKEXCHANGE,
    SourceType.QUORA,
    SourceType.FORUMS,
)

SOURCE_LABELS: Dict[SourceType, str] = {
    SourceType.STACKOVERFLOW: "Stack Overflow",
    SourceType.GITHUB: "GitHub",
    SourceType.SEARCH: "web search",
    SourceType.YOUTUBE: "YouTube",
    SourceType.REDDIT: "Reddit",
    SourceType.DEVTO: "DEV.to",
    SourceType.CODEPROJECT: "CodeProject",
    SourceType.STACKEXCHANGE: "Stack Exchange",
    SourceType.QUORA: "Quora",
    SourceType.FORUMS: "forums",
}


def _row(*counts: int) -> SourceLimits:
    return SourceLimits(dict(zip(SOURCE_ORDER, counts)), TRUNCATION_LIMIT)


SMART_SCALING: Dict[ComplexityClass, SourceLimits] = {
    ComplexityClass.SMALL: _row(5, 5, 10, 5, 5, 3, 3, 5, 3, 3),
    ComplexityClass.MEDIUM: _row(10, 10, 20, 10, 10, 6, 6, 8, 6, 6),
    ComplexityClass.LARGE: _row(20, 15, 30, 15, 15, 10, 10, 12, 10, 10),
}

TIER_CEILINGS: Dict[str, TierCeiling] = {
    "free": TierCeiling(
        name="free",
        price_monthly=0.0,
        limits=_row(5, 5, 10, 5, 5, 3, 3, 5, 3, 3),
        youtube_api_access=False,
        youtube_transcripts=False,
        max_generations_per_month=1,
        upgrade_benefit="Upgrade to Pro for deeper research!",
    ),
    "pro": TierCeiling(
        name="pro",
        price_monthly=19.0,
        limits=_row(20, 15, 30, 20, 15, 10, 8, 12, 8, 10),
        youtube_api_access=True,
        youtube_transcripts=False,
        max_generations_per_month=None,
        upgrade_benefit="Consider Enterprise for YouTube transcripts and API access.",
    ),
    "enterprise": TierCeiling(
        name="enterprise",
        price_monthly=99.0,
        limits=_row(20, 15, 30, 30, 25, 20, 15, 20, 15, 20),
        youtube_api_access=True,
        youtube_transcripts=True,
        max_generations_per_month=None,
    ),
}


@dataclass(frozen=True)
class ComplexityThresholds:
    """Page-count and popularity cut-offs for complexity estimation."""

    medium_pages: int = 11
    large_pages: int = 50
    large_popularity: int = 1000


@dataclass
class EnforcedLimits:
    """Per-source counts after clamping to a plan ceiling."""

    plan: str
    limits: SourceLimits
    youtube_api_access: bool
    youtube_transcripts: bool
    limited_by_tier: bool = False
    constrained: List[SourceType] = field(default_factory=list)
    upgrade_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan": self.plan,
            "limits": self.limits.to_dict(),
            "youtube_api_access": self.youtube_api_access,
            "youtube_transcripts": self.youtube_transcripts,
            "limited_by_tier": self.limited_by_tier,
            "constrained": [source.value for source in self.constrained],
            "upgrade_message": self.upgrade_message,
        }


@dataclass
class ResearchPlan:
    """Everything the aggregator needs to know about how deep to research."""

    complexity: ComplexityClass
    desired: SourceLimits
    enforced: EnforcedLimits

    @property
    def limits(self) -> SourceLimits:
        return self.enforced.limits

    def to_dict(self) -> Dict[str, Any]:
        return {
            "complexity": self.complexity.value,
            "desired": self.desired.to_dict(),
            **self.enforced.to_dict(),
        }


def estimate_complexity(
    page_count: int,
    popularity: Optional[int] = None,
    thresholds: ComplexityThresholds = ComplexityThresholds(),
) -> ComplexityClass:
    """Estimate how large the product is from its crawl size and popularity.

    Args:
        page_count: Number of documentation pages discovered
        popularity: Popularity signal such as repository stars (optional)
        thresholds: Cut-off values

    Returns:
        ComplexityClass
    """
    if popularity is not None and popularity >= thresholds.large_popularity:
        return ComplexityClass.LARGE
    if page_count >= thresholds.large_pages:
        return ComplexityClass.LARGE
    if page_count >= thresholds.medium_pages:
        return ComplexityClass.MEDIUM
    return ComplexityClass.SMALL


def smart_scaling(
    complexity: ComplexityClass,
    table: Mapping[ComplexityClass, SourceLimits] = SMART_SCALING,
) -> SourceLimits:
    """Desired per-source counts for a complexity class."""
    return table[ComplexityClass(complexity)]


def get_tier(plan: Optional[str], ceilings: Mapping[str, TierCeiling] = TIER_CEILINGS) -> TierCeiling:
    """Look up a plan, falling back to the free tier for unknown names."""
    key = (plan or DEFAULT_PLAN).lower()
    if key not in ceilings:
        logger.warning("Unknown plan '%s', using %s tier limits", plan, DEFAULT_PLAN)
        key = DEFAULT_PLAN
    return ceilings[key]


def _upgrade_message(tier: TierCeiling, constrained: List[SourceType], truncated: bool = False) -> str:
    names = ", ".join([SOURCE_LABELS[source] for source in constrained] + (["snippet length"] if truncated else []))
    message = f"Research limited by the {tier.name} plan for: {names}."
    if tier.upgrade_benefit:
        message = f"{message} {tier.upgrade_benefit}"
    return message


def enforce_tier_limits(
    plan: Optional[str],
    desired: SourceLimits,
    ceilings: Mapping[str, TierCeiling] = TIER_CEILINGS,
) -> EnforcedLimits:
    """Clamp ``desired`` to the plan ceiling, field by field.

    ``limited_by_tier`` is true iff at least one field was reduced, the
    snippet truncation length included, in which case ``upgrade_message``
    names the constrained sources.
    """
    tier = get_tier(plan, ceilings)

    enforced: Dict[SourceType, int] = {}
    constrained: List[SourceType] = []
    for source in SourceType:
        wanted = desired[source]
        allowed = min(tier.limits[source], wanted)
        enforced[source] = allowed
        if allowed < wanted:
            constrained.append(source)

    truncation = min(tier.limits.truncation_limit, desired.truncation_limit)
    truncated = truncation < desired.truncation_limit
    limited = bool(constrained) or truncated
    if limited:
        logger.info("Plan %s constrained %d sources (snippets cut: %s)", tier.name, len(constrained), truncated)

    return EnforcedLimits(
        plan=tier.name,
        limits=SourceLimits(enforced, truncation),
        youtube_api_access=tier.youtube_api_access,
        youtube_transcripts=tier.youtube_transcripts,
        limited_by_tier=limited,
        constrained=constrained,
        upgrade_message=_upgrade_message(tier, constrained, truncated) if limited else None,
    )


def can_generate(
    plan: Optional[str],
    generations_this_month: int,
    ceilings: Mapping[str, TierCeiling] = TIER_CEILINGS,
) -> bool:
    """Whether the plan's monthly generation allowance has room left."""
    tier = get_tier(plan, ceilings)
    if tier.max_generations_per_month is None:
        return True
    return generations_this_month < tier.max_generations_per_month


class TierResolver:
    """Resolves research plans, applying configured overrides to the defaults."""

    def __init__(
        self,
        ceilings: Optional[Mapping[str, TierCeiling]] = None,
        thresholds: Optional[ComplexityThresholds] = None,
        scaling: Optional[Mapping[ComplexityClass, SourceLimits]] = None,
    ) -> None:
        self.ceilings: Dict[str, TierCeiling] = dict(ceilings or TIER_CEILINGS)
        self.thresholds = thresholds or ComplexityThresholds()
        self.scaling: Dict[ComplexityClass, SourceLimits] = dict(scaling or SMART_SCALING)
        self.logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_config(cls, config: Any) -> "TierResolver":
        """Build a resolver from the ``complexity`` and ``tiers`` config sections."""
        defaults = ComplexityThresholds()
        complexity = config.get_section("complexity")
        thresholds = ComplexityThresholds(
            medium_pages=int(complexity.get("medium_pages", defaults.medium_pages)),
            large_pages=int(complexity.get("large_pages", defaults.large_pages)),
            large_popularity=int(complexity.get("large_popularity", defaults.large_popularity)),
        )

        ceilings = dict(TIER_CEILINGS)
        for raw_name, override in (config.get_section("tiers") or {}).items():
            if not isinstance(override, dict):
                continue
            # get_tier looks plans up lower-cased
            name = str(raw_name).lower()
            base = ceilings.get(name, ceilings[DEFAULT_PLAN])
            counts = {SourceType(k): int(v) for k, v in (override.get("limits") or {}).items()}
            ceilings[name] = TierCeiling(
                name=name,
                price_monthly=float(override.get("price_monthly", base.price_monthly)),
                limits=base.limits.with_counts(counts),
                youtube_api_access=bool(override.get("youtube_api_access", base.youtube_api_access)),
                youtube_transcripts=bool(override.get("youtube_transcripts", base.youtube_transcripts)),
                max_generations_per_month=override.get(
                    "max_generations_per_month", base.max_generations_per_month
                ),
                upgrade_benefit=override.get("upgrade_benefit", base.upgrade_benefit),
            )
        return cls(ceilings=ceilings, thresholds=thresholds)

    def estimate(self, page_count: int, popularity: Optional[int] = None) -> ComplexityClass:
        return estimate_complexity(page_count, popularity, self.thresholds)

    def enforce(self, plan: Optional[str], desired: SourceLimits) -> EnforcedLimits:
        return enforce_tier_limits(plan, desired, self.ceilings)

    def can_generate(self, plan: Optional[str], generations_this_month: int) -> bool:
        return can_generate(plan, generations_this_month, self.ceilings)

    def resolve(
        self,
        plan: Optional[str],
        page_count: int,
        popularity: Optional[int] = None,
    ) -> ResearchPlan:
        """Estimate complexity, scale the desired counts and clamp them to the plan."""
        complexity = self.estimate(page_count, popularity)
        desired = smart_scaling(complexity, self.scaling)
        enforced = self.enforce(plan, desired)
        self.logger.info(
            "Resolved %s research for plan %s (limited_by_tier=%s)",
            complexity.value,
            enforced.plan,
            enforced.limited_by_tier,
        )
        return ResearchPlan(complexity=complexity, desired=desired, enforced=enforced)
