"""Layered settings for docsmith.

Lookup order for any dotted key, highest first:

1. an environment variable named after the key (``RETRY_MAX_RETRIES``),
   converted to the type of the configured value
2. the config file: an explicit path, else the first of
   ``config/docsmith.{yaml,yml,toml}`` and ``docsmith.{yaml,yml,toml}``
3. ``DEFAULTS`` below, merged two levels deep under the file

A ``.env`` in the working directory is loaded into the environment first.
Provider credentials have their own lookup in ``Config.get_api_key``.
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # type: ignore

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

LLM_PROVIDERS = ("openai", "groq", "deepseek", "ollama")
SEARCH_PROVIDERS = ("serpapi", "brave")

DEFAULTS: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "file": "logs/docsmith.log",
        "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        "json": False,
    },
    "providers": {
        "llm_order": list(LLM_PROVIDERS),
        "search_order": list(SEARCH_PROVIDERS),
        "openai": {"model": "gpt-5", "base_url": "https://api.openai.com/v1"},
        "groq": {"model": "llama-3.3-70b-versatile", "base_url": "https://api.groq.com/openai/v1"},
        "deepseek": {"model": "deepseek-chat", "base_url": "https://api.deepseek.com/v1"},
        "ollama": {"model": "llama3.1:8b-instruct", "base_url": ""},
    },
    "api_keys": {
        "openai_api_key": "",
        "groq_api_key": "",
        "deepseek_api_key": "",
        "serpapi_api_key": "",
        "brave_api_key": "",
        "youtube_api_key": "",
        "stackexchange_api_key": "",
        "github_token": "",
    },
    "retry": {
        "max_retries": 3,
        "timeout_seconds": 10,
        "llm_timeout_seconds": 30,
        "exponential_backoff": True,
        "base_delay_seconds": 1.0,
    },
    "cache": {"enabled": True, "ttl_seconds": 1800, "sweep_interval_seconds": 600},
    "research": {
        "max_concurrency": 3,
        "inter_batch_delay_seconds": 1.0,
        "max_queries": 8,
        "min_score": 0.6,
        "user_agent": "docsmith/0.1 (documentation research)",
    },
    "scoring": {"trusted_threshold": 0.6, "check_links": True, "cross_verify_top_k": 10},
    "quota": {"youtube_daily_units": 10000},
    "rate_limits": {},
    "complexity": {"medium_pages": 11, "large_pages": 50, "large_popularity": 1000},
    "tiers": {},
    "sources": {
        "stackoverflow": {"enabled": True},
        "github": {"enabled": True},
        "search": {"enabled": True},
        "youtube": {"enabled": True},
        "reddit": {"enabled": True},
        "devto": {"enabled": True},
        "codeproject": {"enabled": True},
        "stackexchange": {"enabled": True},
        "quora": {"enabled": True},
        "forums": {"enabled": True},
    },
}

SEARCH_PATHS = [
    Path("config") / "docsmith.yaml",
    Path("config") / "docsmith.yml",
    Path("config") / "docsmith.toml",
    Path("docsmith.yaml"),
    Path("docsmith.yml"),
    Path("docsmith.toml"),
]

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
TRUTHY = ("1", "true", "yes", "on")

# Credentials reported by `validate` when absent; none of them is mandatory
OPTIONAL_KEYS = {
    "openai": "OpenAI completions",
    "groq": "Groq completions",
    "deepseek": "DeepSeek completions",
    "serpapi": "SerpAPI web search",
    "brave": "Brave web search",
    "youtube": "YouTube Data API",
    "stackexchange": "Stack Exchange higher request quota",
    "github": "GitHub issue search rate limit",
}


@dataclass
class ValidationResult:
    """Errors make a config invalid; warnings and missing keys do not."""

    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    missing_api_keys: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def __str__(self) -> str:
        sections = (
            ("Errors", self.errors),
            ("Warnings", self.warnings),
            ("Missing API keys (optional)", self.missing_api_keys),
        )
        lines: List[str] = []
        for title, entries in sections:
            if entries:
                lines.append(f"{title}:")
                lines.extend(f"  - {entry}" for entry in entries)
        return "\n".join(lines) if lines else "Configuration is valid."


def _coerce(value: str, like: Any) -> Any:
    """Convert an environment string to the type of ``like``."""
    if isinstance(like, bool):
        return value.strip().lower() in TRUTHY
    if isinstance(like, list):
        return [part.strip() for part in value.split(",") if part.strip()]
    for kind in (int, float):
        if isinstance(like, kind):
            try:
                return kind(value)
            except ValueError:
                return value
    return value


def _read_file(path: Path) -> Dict[str, Any]:
    """Parse a YAML or TOML settings file; unreadable files give ``{}``."""
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    if path.suffix not in (".yaml", ".yml", ".toml"):
        logger.error("Unsupported config format: %s", path)
        return {}

    try:
        with open(path, "rb") as fh:
            data = tomllib.load(fh) if path.suffix == ".toml" else yaml.safe_load(fh)
    except (OSError, yaml.YAMLError, tomllib.TOMLDecodeError) as exc:
        logger.error("Failed to load config file %s: %s", path, exc)
        return {}

    if not isinstance(data, dict):
        logger.warning("Ignoring %s: top level is not a mapping", path)
        return {}
    logger.info("Loaded config from %s", path)
    return data


def _with_defaults(loaded: Dict[str, Any]) -> Dict[str, Any]:
    """Lay ``DEFAULTS`` under ``loaded``; nested provider tables merge too."""
    merged = copy.deepcopy(DEFAULTS)
    for section, value in loaded.items():
        base = merged.get(section)
        if not (isinstance(base, dict) and isinstance(value, dict)):
            merged[section] = value
            continue
        for key, sub_value in value.items():
            if isinstance(sub_value, dict) and isinstance(base.get(key), dict):
                base[key] = {**base[key], **sub_value}
            else:
                base[key] = sub_value
    return merged


class Config:
    """Settings for one docsmith process."""

    def __init__(self, config_file: Optional[str] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._config_file = config_file

        env_path = Path(".env")
        if env_path.exists():
            load_dotenv(env_path)
            self.logger.info("Loaded environment variables from .env")

        self._config: Dict[str, Any] = self._load(config_file)

    def _load(self, config_file: Optional[str]) -> Dict[str, Any]:
        if config_file:
            return _with_defaults(_read_file(Path(config_file)))
        for candidate in SEARCH_PATHS:
            if candidate.exists():
                return _with_defaults(_read_file(candidate))
        self.logger.debug("No config file found; using defaults and the environment")
        return _with_defaults({})

    def _lookup(self, key: str) -> Any:
        node: Any = self._config
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value at dotted ``key``.

        ``retry.max_retries`` is overridden by ``RETRY_MAX_RETRIES``.
        """
        configured = self._lookup(key)
        from_env = os.getenv(key.upper().replace(".", "_"))
        if from_env is not None:
            return _coerce(from_env, default if configured is None else configured)
        return default if configured is None else configured

    def set(self, key: str, value: Any) -> None:
        """Override dotted ``key`` for this process, creating tables as needed."""
        *parents, leaf = key.split(".")
        node = self._config
        for part in parents:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        node[leaf] = value
        self.logger.debug("Set config %s = %r", key, value)

    def get_section(self, section: str) -> Dict[str, Any]:
        """Top-level table ``section``, or ``{}``."""
        value = self._config.get(section)
        return value if isinstance(value, dict) else {}

    def get_list(self, key: str, env_var: Optional[str] = None) -> List[str]:
        """
        Lower-cased string list at ``key``.

        Args:
            key: Dotted configuration key
            env_var: Comma-separated override checked first (e.g. "AI_PROVIDER_ORDER")
        """
        raw: Any = os.getenv(env_var) if env_var else None
        if not raw:
            raw = self.get(key, [])
        if isinstance(raw, str):
            raw = raw.split(",")
        names = (str(item).strip().lower() for item in raw or [])
        return [name for name in names if name]

    def get_api_key(self, service: str) -> str:
        """
        Credential for ``service``.

        ``SERVICE_API_KEY`` then ``SERVICE_TOKEN`` in the environment win over
        ``api_keys.<service>_api_key`` and ``api_keys.<service>_token``.
        Returns an empty string when nothing is configured.
        """
        prefix = service.upper()
        for env_name in (f"{prefix}_API_KEY", f"{prefix}_TOKEN"):
            value = os.getenv(env_name)
            if value:
                return value
        keys = self.get_section("api_keys")
        return keys.get(f"{service}_api_key") or keys.get(f"{service}_token") or ""

    def get_provider_setting(self, provider: str, setting: str, default: str = "") -> str:
        """
        A per-provider setting such as ``model`` or ``base_url``.

        ``OLLAMA_BASE_URL`` style environment variables take precedence.
        """
        from_env = os.getenv(f"{provider.upper()}_{setting.upper()}")
        if from_env:
            return from_env
        table = self.get_section("providers").get(provider) or {}
        value = table.get(setting)
        return str(value) if value else default

    def is_source_enabled(self, source: str) -> bool:
        value = self.get(f"sources.{source}.enabled", True)
        if isinstance(value, str):
            return value.strip().lower() in TRUTHY
        return bool(value)

    def to_dict(self) -> Dict[str, Any]:
        """Deep copy of the effective settings (environment overrides excluded)."""
        return copy.deepcopy(self._config)

    def reload(self, config_file: Optional[str] = None) -> None:
        """Re-read settings from disk, dropping runtime ``set`` overrides."""
        self._config_file = config_file or self._config_file
        self._config = self._load(self._config_file)
        self.logger.info("Configuration reloaded")

    def _ready_llm_providers(self, order: List[str]) -> List[str]:
        def ready(name: str) -> bool:
            if name == "ollama":
                return bool(self.get_provider_setting("ollama", "base_url"))
            return bool(self.get_api_key(name))

        return [name for name in order if ready(name)]

    def validate(self) -> ValidationResult:
        """
        Check value types and ranges, provider names and provider readiness.

        Type and range problems are errors. An unusable provider chain is a
        warning, since docsmith can still research from sources that need no
        credentials. Absent optional keys are listed separately.
        """
        result = ValidationResult()

        level = str(self.get("logging.level", "INFO"))
        if level.upper() not in LOG_LEVELS:
            result.add_error(f"Invalid logging level '{level}'. Must be one of: {', '.join(LOG_LEVELS)}")

        log_file = self.get("logging.file", "")
        if log_file and not Path(log_file).parent.exists():
            result.add_warning(f"Log directory does not exist: {Path(log_file).parent}")

        checks: List[tuple] = [
            ("retry.max_retries", lambda v: isinstance(v, int) and v >= 0, "must be a non-negative integer"),
            ("retry.timeout_seconds", _positive, "must be a positive number"),
            ("retry.llm_timeout_seconds", _positive, "must be a positive number"),
            ("cache.ttl_seconds", _positive, "must be a positive number"),
            ("research.max_concurrency", lambda v: isinstance(v, int) and v >= 1, "must be a positive integer"),
            ("scoring.trusted_threshold", lambda v: _number(v) and 0 <= v <= 1, "must be a number between 0 and 1"),
        ]
        for key, check, message in checks:
            if not _passes(check, self.get(key)):
                result.add_error(f"{key} {message}")

        concurrency = self.get("research.max_concurrency", 3)
        if isinstance(concurrency, int) and concurrency > 10:
            result.add_warning(f"research.max_concurrency={concurrency} is high, may cause rate limiting")

        for service, limit in self.get_section("rate_limits").items():
            if not isinstance(limit, dict):
                result.add_error(f"rate_limits.{service} must be a mapping")
            elif not _positive(limit.get("per_second", 1)):
                result.add_error(f"rate_limits.{service}.per_second must be a positive number")

        llm_order = self.get_list("providers.llm_order", "AI_PROVIDER_ORDER")
        search_order = self.get_list("providers.search_order", "SEARCH_PROVIDER_ORDER")
        chains = (
            ("LLM", "providers.llm_order", llm_order, LLM_PROVIDERS),
            ("search", "providers.search_order", search_order, SEARCH_PROVIDERS),
        )
        for kind, key, order, known in chains:
            for name in order:
                if name not in known:
                    result.add_error(f"Unknown {kind} provider in {key}: {name}")

        if not self._ready_llm_providers(llm_order):
            result.add_warning("No LLM provider is configured; completions will fail")
        if not any(self.get_api_key(name) for name in search_order):
            result.add_warning("No web search provider is configured; web research is disabled")

        result.missing_api_keys.extend(
            f"{service}: {purpose}" for service, purpose in OPTIONAL_KEYS.items() if not self.get_api_key(service)
        )

        for error in result.errors:
            self.logger.error("Config validation error: %s", error)
        for warning in result.warnings:
            self.logger.warning("Config validation warning: %s", warning)
        return result

    def validate_and_raise(self) -> None:
        """Raise ``ValueError`` listing every problem when ``validate`` fails."""
        result = self.validate()
        if not result.is_valid:
            raise ValueError(f"Invalid configuration:\n{result}")


def _number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _positive(value: Any) -> bool:
    return _number(value) and value > 0


def _passes(check: Callable[[Any], bool], value: Any) -> bool:
    return value is not None and check(value)


_global_config: Optional[Config] = None


def get_config(config_file: Optional[str] = None) -> Config:
    """Process-wide ``Config``; ``config_file`` only matters on the first call."""
    global _global_config
    if _global_config is None:
        _global_config = Config(config_file)
    return _global_config


def reload_config(config_file: Optional[str] = None) -> None:
    """Re-read the process-wide ``Config``, creating it if needed."""
    global _global_config
    if _global_config is None:
        _global_config = Config(config_file)
    else:
        _global_config.reload(config_file)
