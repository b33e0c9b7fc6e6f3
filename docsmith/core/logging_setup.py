"""Logging configuration for docsmith.

Three kinds of output:
- the application log (console plus a rotating file), plain text or JSON
- the performance log, one JSON line per research pass and per source
- provider context: records carrying ``provider``, ``source`` or ``attempt``
  attributes (passed through ``extra=``) keep them in JSON output

Entry points call ``configure_comprehensive_logging`` once at startup.
"""

import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
CONTEXT_FIELDS = ("provider", "source", "attempt")
# Third-party loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")
MB = 1024 * 1024


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with provider context and extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(
            (name, getattr(record, name)) for name in CONTEXT_FIELDS if getattr(record, name, None) is not None
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update(getattr(record, "extra_fields", {}))
        return json.dumps(payload, default=str)


def _rotating_handler(
    path: Path, formatter: logging.Formatter, max_bytes: int, backups: int, level: int = logging.NOTSET
) -> RotatingFileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


class PerformanceLogger:
    """Writes research timings and per-source outcomes as JSON lines."""

    def __init__(self, log_file: Optional[Path] = None):
        self.logger = logging.getLogger("docsmith.performance")
        self.logger.setLevel(logging.INFO)
        # Keep timing records out of the application log
        self.logger.propagate = False
        if log_file is not None:
            self.logger.addHandler(_rotating_handler(log_file, JSONFormatter(), 10 * MB, 5))

    def _emit(self, message: str, arg: str, fields: Dict[str, Any]) -> None:
        self.logger.info(message, arg, extra={"extra_fields": fields})

    def log_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record one timed operation.

        Args:
            operation: Operation name, e.g. "research" or "completion"
            duration_ms: Wall time in milliseconds
            success: Whether it finished without raising
            metadata: Additional fields (source counts, provider labels)
        """
        fields: Dict[str, Any] = {
            "event_type": "performance",
            "operation": operation,
            "duration_ms": round(duration_ms, 2),
            "success": success,
        }
        fields.update(metadata or {})
        self._emit("Operation completed: %s", operation, fields)

    def log_aggregation(self, operation: str, aggregation: Any, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Log one aggregation: one record per source, then a summary.

        ``aggregation`` is an ``AggregationResult``; a source counts as a
        success when it completed, and failed sources carry their severity.
        """
        failures = {failure.source: failure for failure in aggregation.failures}
        for source, result in aggregation.results.items():
            failure = failures.get(source.value)
            fields = {
                "event_type": "source",
                "operation": operation,
                "source": source.value,
                "items": len(result.items),
                "provider": result.provider_label or None,
                "from_cache": result.from_cache,
                "success": failure is None,
            }
            if failure is not None:
                fields.update(error_type=failure.error_type, severity=failure.severity.value)
            self._emit("Source %s finished", source.value, fields)

        summary = {
            "event_type": "performance",
            "operation": operation,
            "duration_ms": round(aggregation.duration_ms, 2),
            "success": bool(aggregation.completed),
            "sources": aggregation.attempted,
            "failed_sources": sorted(failures),
            "success_rate": round(aggregation.success_rate, 2),
            "merged_items": len(aggregation.items),
        }
        summary.update(metadata or {})
        self._emit("Aggregation completed: %s", operation, summary)


@contextmanager
def log_performance(operation: str, logger: Optional[logging.Logger] = None) -> Iterator[Dict[str, Any]]:
    """Time a block and log its duration.

    The yielded dict collects extra fields that are appended to the message.

    Example:
        with log_performance("research:stripe", logger) as fields:
            report = await orchestrator.perform_comprehensive_research(...)
            fields["items"] = report.total_sources
    """
    if logger is None:
        logger = logging.getLogger()

    fields: Dict[str, Any] = {}
    start_time = time.monotonic()
    success = False
    try:
        yield fields
        success = True
    finally:
        duration_ms = (time.monotonic() - start_time) * 1000
        details = "".join(f", {key}={value}" for key, value in fields.items())
        logger.info("%s completed in %.2fms (success=%s%s)", operation, duration_ms, success, details)


def configure_logging(
    log_file: Optional[Path] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * MB,
    backup_count: int = 3,
    use_json: bool = False,
    console_output: bool = True,
    fmt: str = DEFAULT_FORMAT,
    quiet_loggers: Sequence[str] = NOISY_LOGGERS,
) -> None:
    """Install console and rotating-file handlers on the root logger.

    Does nothing when the root logger already has handlers, so repeated
    calls (tests, embedded use) keep the first configuration.

    Args:
        log_file: Application log path; its directory is created on demand
        level: Root and handler level
        max_bytes: Size at which the file rotates
        backup_count: Rotated files kept
        use_json: Emit ``JSONFormatter`` documents instead of ``fmt`` text
        console_output: Also log to stderr
        fmt: Text format for non-JSON output
        quiet_loggers: Loggers raised to at least WARNING
    """
    root = logging.getLogger()
    if root.handlers:
        return
    root.setLevel(level)

    formatter: logging.Formatter = (
        JSONFormatter() if use_json else logging.Formatter(fmt, datefmt="%Y-%m-%d %H:%M:%S")
    )
    handlers: List[logging.Handler] = []
    if console_output:
        handlers.append(logging.StreamHandler())
    if log_file is not None:
        handlers.append(_rotating_handler(log_file, formatter, max_bytes, backup_count))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def setup_performance_logging(log_dir: Path = Path("logs")) -> PerformanceLogger:
    return PerformanceLogger(log_dir / "performance.log")


def configure_comprehensive_logging(
    log_dir: Path = Path("logs"),
    level: int = logging.INFO,
    use_json: bool = False,
    console_output: bool = True,
    fmt: str = DEFAULT_FORMAT,
) -> PerformanceLogger:
    """Set up ``docsmith.log`` and ``performance.log`` under ``log_dir``.

    Returns the performance logger that research passes report to.
    """
    main_log = log_dir / "docsmith.log"
    configure_logging(log_file=main_log, level=level, use_json=use_json, console_output=console_output, fmt=fmt)
    performance = setup_performance_logging(log_dir)
    logging.getLogger(__name__).info("Logging configured: main=%s, perf=%s/performance.log", main_log, log_dir)
    return performance
