"""Error types and recovery helpers for docsmith.

Provider failures are modelled as a small exception hierarchy rooted at
``ProviderError``.  Individual attempt failures are folded into
``AllProvidersExhausted`` by the fallback executor; source-level failures
inside a research pass are recorded as ``SourceFailure`` entries rather
than raised.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base class for every provider-related failure."""

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderUnavailable(ProviderError):
    """No provider is configured for the requested operation."""


class ProviderTimeout(ProviderError):
    """A single attempt did not finish within its timeout window."""

    def __init__(self, provider: str, timeout: float) -> None:
        super().__init__(f"{provider} timed out after {timeout:.1f}s", provider)
        self.timeout = timeout


class ProviderHTTPError(ProviderError):
    """A provider answered with a non-2xx HTTP status."""

    def __init__(self, status: int, provider: str, body: str = "") -> None:
        detail = f": {body[:200]}" if body else ""
        super().__init__(f"{provider} returned HTTP {status}{detail}", provider)
        self.status = status
        self.body = body


class MalformedResponse(ProviderError):
    """A provider response could not be parsed into the expected shape."""


class QuotaExceeded(ProviderError):
    """A rate-limited API has no quota left for the current window."""


class AllProvidersExhausted(ProviderError):
    """Every operation in a chain failed and no cached value was usable."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors: List[BaseException] = list(errors)
        details = "; ".join(_describe(e) for e in self.errors) or "no attempts were made"
        super().__init__(
            "All providers failed after retries. No cached data available. "
            f"Errors: {details}"
        )

    @property
    def messages(self) -> List[str]:
        """Messages of every underlying error, in attempt order."""
        return [_describe(e) for e in self.errors]


def _describe(error: BaseException) -> str:
    message = str(error)
    return message if message else type(error).__name__


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"  # Minor issue, can continue
    MEDIUM = "medium"  # Notable issue, degraded results
    HIGH = "high"  # Major issue, partial failure
    CRITICAL = "critical"  # Complete failure


@dataclass
class SourceFailure:
    """Represents a research source that failed during aggregation."""

    source: str
    query: str
    error_type: str
    message: str
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    recoverable: bool = True
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, source: str, query: str, exception: BaseException) -> "SourceFailure":
        """Build a failure record from a raised exception."""
        details: Dict[str, Any] = {
            "exception_class": type(exception).__module__ + "." + type(exception).__name__
        }
        if isinstance(exception, AllProvidersExhausted):
            details["underlying"] = exception.messages
        if isinstance(exception, ProviderHTTPError):
            details["status"] = exception.status
        return cls(
            source=source,
            query=query,
            error_type=type(exception).__name__,
            message=str(exception),
            severity=classify_error(exception),
            recoverable=is_recoverable_error(exception),
            details=details,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "source": self.source,
            "query": self.query,
            "error_type": self.error_type,
            "message": self.message,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "details": self.details,
        }


def classify_error(exception: BaseException) -> ErrorSeverity:
    """Classify an exception by severity.

    Args:
        exception: The exception to classify

    Returns:
        ErrorSeverity level
    """
    if isinstance(exception, ProviderUnavailable):
        return ErrorSeverity.CRITICAL
    if isinstance(exception, QuotaExceeded):
        return ErrorSeverity.LOW
    if isinstance(exception, (ProviderTimeout, asyncio.TimeoutError)):
        return ErrorSeverity.MEDIUM
    if isinstance(exception, ProviderHTTPError):
        if exception.status == 429:
            return ErrorSeverity.LOW
        if exception.status in (401, 403):
            return ErrorSeverity.HIGH
        return ErrorSeverity.MEDIUM
    if isinstance(exception, AllProvidersExhausted):
        return ErrorSeverity.HIGH

    error_type = type(exception).__name__
    if "RateLimit" in error_type:
        return ErrorSeverity.LOW
    if "Auth" in error_type:
        return ErrorSeverity.HIGH

    # Default
    return ErrorSeverity.MEDIUM


def is_recoverable_error(exception: BaseException) -> bool:
    """Determine if an exception is recoverable.

    Args:
        exception: The exception to check

    Returns:
        True if the error is likely recoverable with retry
    """
    if isinstance(exception, (ProviderUnavailable, QuotaExceeded)):
        return False
    if isinstance(exception, ProviderHTTPError):
        return exception.status == 429 or exception.status >= 500

    # Non-recoverable errors
    non_recoverable = (
        ValueError,
        TypeError,
        AttributeError,
        KeyError,
        PermissionError,
        NotImplementedError,
    )
    if isinstance(exception, non_recoverable):
        return False

    message = str(exception).lower()
    permanent_markers = [
        "invalid api key",
        "unauthorized",
        "forbidden",
        "not implemented",
    ]

    return not any(marker in message for marker in permanent_markers)
