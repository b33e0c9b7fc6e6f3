"""Core functionality for docsmith.

This package contains the research engine's building blocks:
- data_models: Retrieved items, source limits and chain results
- fallback: Ordered provider chains with retries, timeouts and caching
- cache: TTL cache used as the last-resort fallback
- quota / rate_limiter: Daily unit quotas and per-service rate limits
- http_client: Shared async HTTP transport
- scoring: Trust, quality and content validation
- deduplication / aggregator: Merging results across sources
- tiers: Complexity estimation and plan limits
- config / logging_setup / error_recovery: Ambient services
- orchestrator: High-level research API
"""

from .data_models import RetrievedItem, SourceLimits, SourceType  # noqa: F401
from .http_client import AsyncHTTPClient  # noqa: F401
from .logging_setup import configure_logging  # noqa: F401
from .config import Config, get_config, ValidationResult  # noqa: F401
from .cache import ResultCache  # noqa: F401
from .fallback import FallbackExecutor, Operation  # noqa: F401
from .deduplication import deduplicate_items, ResultDeduplicator  # noqa: F401
from .rate_limiter import RateLimiter, get_rate_limiter  # noqa: F401
from .tiers import TierResolver  # noqa: F401
from .error_recovery import (  # noqa: F401
    AllProvidersExhausted,
    ErrorSeverity,
    MalformedResponse,
    ProviderError,
    ProviderUnavailable,
    QuotaExceeded,
    SourceFailure,
)

__all__ = [
    # Models
    "RetrievedItem",
    "SourceLimits",
    "SourceType",
    # Core
    "AsyncHTTPClient",
    "configure_logging",
    "FallbackExecutor",
    "Operation",
    # Config
    "Config",
    "get_config",
    "ValidationResult",
    # Caching
    "ResultCache",
    # Deduplication
    "deduplicate_items",
    "ResultDeduplicator",
    # Rate Limiting
    "RateLimiter",
    "get_rate_limiter",
    # Tiers
    "TierResolver",
    # Errors
    "AllProvidersExhausted",
    "ErrorSeverity",
    "MalformedResponse",
    "ProviderError",
    "ProviderUnavailable",
    "QuotaExceeded",
    "SourceFailure",
]
