"""Integration modules for docsmith.

This package contains the provider chains for external services:
- api_clients: Registry of every external API and the shared base client
- llm: OpenAI-compatible chat completions (OpenAI, Groq, DeepSeek, Ollama)
- web_search: SerpAPI and Brave web search with a basic crawl fallback
"""

from docsmith.integrations.api_clients import API_REGISTRY, APIConfig, BaseAPIClient
from docsmith.integrations.llm import ChatMessage, CompletionResult, LLMProvider
from docsmith.integrations.web_search import WebSearchClient

__all__ = [
    # API Clients
    "APIConfig",
    "API_REGISTRY",
    "BaseAPIClient",
    # LLM
    "ChatMessage",
    "CompletionResult",
    "LLMProvider",
    # Web search
    "WebSearchClient",
]
