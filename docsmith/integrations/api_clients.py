"""External API registry and base client for docsmith.

Every third-party service the research engine talks to is described by an
``APIConfig`` entry in ``API_REGISTRY``.  Clients subclass ``BaseAPIClient``,
which resolves credentials from configuration and sends requests through the
shared ``AsyncHTTPClient`` (and therefore through the per-service rate
limiter).

LLM completion APIs (OpenAI-compatible chat completions):
- OpenAI, Groq, DeepSeek (Bearer key)
- Ollama (self-hosted, base URL instead of a key)

Web search APIs:
- SerpAPI (Google engine)
- Brave Search

Community sources (keys optional unless noted):
- Stack Exchange API
- GitHub REST API
- Reddit public JSON endpoints
- YouTube Data API v3 (key required, quota tracked)
- DEV.to articles API
- CodeProject (HTML pages)

Quora, developer forums and general web research have no API of their own
and are reached through the web search chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from docsmith.core.config import Config, get_config
from docsmith.core.error_recovery import ProviderUnavailable
from docsmith.core.http_client import AsyncHTTPClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class APIConfig:
    """Configuration for an API integration."""

    name: str
    base_url: str
    api_key_name: str = ""  # Service name passed to Config.get_api_key
    requires_auth: bool = False
    timeout: float = 10.0


# Registry of available APIs
API_REGISTRY: Dict[str, APIConfig] = {
    "openai": APIConfig(
        name="OpenAI",
        base_url="https://api.openai.com/v1",
        api_key_name="openai",
        requires_auth=True,
        timeout=30.0,
    ),
    "groq": APIConfig(
        name="Groq",
        base_url="https://api.groq.com/openai/v1",
        api_key_name="groq",
        requires_auth=True,
        timeout=30.0,
    ),
    "deepseek": APIConfig(
        name="DeepSeek",
        base_url="https://api.deepseek.com/v1",
        api_key_name="deepseek",
        requires_auth=True,
        timeout=30.0,
    ),
    "ollama": APIConfig(
        name="Ollama",
        base_url="",  # Supplied by providers.ollama.base_url / OLLAMA_BASE_URL
        requires_auth=False,
        timeout=30.0,
    ),
    "serpapi": APIConfig(
        name="SerpAPI",
        base_url="https://serpapi.com",
        api_key_name="serpapi",
        requires_auth=True,
    ),
    "brave": APIConfig(
        name="Brave Search",
        base_url="https://api.search.brave.com/res/v1",
        api_key_name="brave",
        requires_auth=True,
    ),
    "stackexchange": APIConfig(
        name="Stack Exchange",
        base_url="https://api.stackexchange.com/2.3",
        api_key_name="stackexchange",  # Optional: raises the daily request quota
        requires_auth=False,
    ),
    "github": APIConfig(
        name="GitHub",
        base_url="https://api.github.com",
        api_key_name="github",
        requires_auth=False,
    ),
    "reddit": APIConfig(
        name="Reddit",
        base_url="https://www.reddit.com",
        requires_auth=False,
    ),
    "youtube": APIConfig(
        name="YouTube",
        base_url="https://www.googleapis.com/youtube/v3",
        api_key_name="youtube",
        requires_auth=True,
    ),
    "devto": APIConfig(
        name="DEV.to",
        base_url="https://dev.to/api",
        requires_auth=False,
    ),
    "codeproject": APIConfig(
        name="CodeProject",
        base_url="https://www.codeproject.com",
        requires_auth=False,
    ),
    # Web-search-only sources
    "quora": APIConfig(
        name="Quora",
        base_url="https://www.quora.com",
        requires_auth=False,
    ),
    "forums": APIConfig(
        name="Developer forums",
        base_url="",
        requires_auth=False,
    ),
    "search": APIConfig(
        name="Web search",
        base_url="",
        requires_auth=False,
    ),
}


class BaseAPIClient:
    """Base class for API clients."""

    service: str = ""

    def __init__(
        self,
        http_client: AsyncHTTPClient,
        config: Optional[Config] = None,
        api_key: Optional[str] = None,
        api_config: Optional[APIConfig] = None,
    ) -> None:
        """Initialize API client.

        Args:
            http_client: Shared HTTP transport
            config: Application configuration (defaults to the global config)
            api_key: API key (overrides config)
            api_config: API description (defaults to the registry entry)
        """
        self.http = http_client
        self.app_config = config or get_config()
        self.config = api_config or API_REGISTRY[self.service]
        self._api_key = api_key
        self.logger = logging.getLogger(self.__class__.__name__)

        if self._api_key is None and self.config.api_key_name:
            self._api_key = self.app_config.get_api_key(self.config.api_key_name)

        if self.config.requires_auth and not self._api_key:
            self.logger.debug(
                "%s not configured: requires API key '%s'",
                self.config.name,
                self.config.api_key_name,
            )

    @property
    def api_key(self) -> Optional[str]:
        """Get the API key."""
        return self._api_key

    @property
    def base_url(self) -> str:
        return self.config.base_url

    @property
    def is_configured(self) -> bool:
        """Whether credentials required by this API are present."""
        return bool(self.base_url) and (not self.config.requires_auth or bool(self._api_key))

    def _build_headers(self) -> Dict[str, str]:
        """Build request headers."""
        return {}

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise ProviderUnavailable(f"{self.config.name} is not configured", self.service)

    async def get_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """GET a JSON document from this API."""
        self._require_configured()
        return await self.http.get_json(
            self._url(path),
            service=self.service,
            params=params,
            headers={**self._build_headers(), **(headers or {})},
            timeout=self.config.timeout,
        )

    async def post_json(
        self,
        path: str,
        payload: Any,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """POST a JSON body and decode the JSON response."""
        self._require_configured()
        return await self.http.post_json(
            self._url(path),
            service=self.service,
            json=payload,
            headers={**self._build_headers(), **(headers or {})},
            timeout=self.config.timeout,
        )

    async def get_text(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> str:
        """GET an HTML or text document from this API's host."""
        self._require_configured()
        return await self.http.get_text(
            self._url(path),
            service=self.service,
            params=params,
            headers={**self._build_headers(), **(headers or {})},
            timeout=self.config.timeout,
        )
