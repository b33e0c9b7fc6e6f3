"""Shared fixtures for docsmith tests."""

from typing import Callable

import httpx
import pytest

from docsmith.core.config import Config
from docsmith.core.http_client import AsyncHTTPClient
from docsmith.core.rate_limiter import RateLimiter

# Environment variables that would leak real credentials or settings into tests
ENV_VARS = [
    "OPENAI_API_KEY",
    "GROQ_API_KEY",
    "DEEPSEEK_API_KEY",
    "OLLAMA_BASE_URL",
    "SERPAPI_API_KEY",
    "BRAVE_API_KEY",
    "YOUTUBE_API_KEY",
    "STACKEXCHANGE_API_KEY",
    "GITHUB_TOKEN",
    "GITHUB_API_KEY",
    "AI_PROVIDER_ORDER",
    "SEARCH_PROVIDER_ORDER",
    "RETRY_MAX_RETRIES",
    "RETRY_TIMEOUT_SECONDS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove provider credentials from the environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config(tmp_path) -> Config:
    """Configuration with defaults only and no retries."""
    cfg = Config(str(tmp_path / "docsmith.yaml"))
    cfg.set("retry.max_retries", 0)
    return cfg


@pytest.fixture
def unthrottled() -> RateLimiter:
    return RateLimiter.unthrottled()


@pytest.fixture
def make_http(unthrottled) -> Callable[[Callable[[httpx.Request], httpx.Response]], AsyncHTTPClient]:
    """Build an AsyncHTTPClient backed by an httpx.MockTransport handler."""

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> AsyncHTTPClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return AsyncHTTPClient(client=client, rate_limiter=unthrottled)

    return factory
