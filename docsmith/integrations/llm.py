"""LLM completion provider chain.

Each configured chat-completion provider becomes one ``Operation`` in a
fallback chain, ordered by ``providers.llm_order`` (or ``AI_PROVIDER_ORDER``).
All supported providers speak the OpenAI-compatible ``/chat/completions``
protocol, so a single adapter maps their responses into ``CompletionResult``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Hashable, List, Optional, Sequence

from docsmith.core.config import LLM_PROVIDERS, Config, get_config
from docsmith.core.error_recovery import MalformedResponse, ProviderUnavailable
from docsmith.core.fallback import FallbackExecutor, Operation
from docsmith.core.http_client import AsyncHTTPClient
from docsmith.integrations.api_clients import API_REGISTRY, APIConfig, BaseAPIClient

logger = logging.getLogger(__name__)

JSON_REPAIR_SYSTEM_PROMPT = (
    "You are a JSON formatting expert. Return only valid JSON with no commentary, "
    "no markdown fences and no trailing text."
)

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class ChatMessage:
    """One chat turn."""

    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class CompletionResult:
    """Canonical completion returned by any provider."""

    content: str
    provider_label: str
    model_id: str


def extract_json(content: str) -> Any:
    """Parse JSON from model output.

    Tries the raw text, then a fenced ```json block, then the outermost
    object or array.

    Raises:
        MalformedResponse: If no candidate parses
    """
    text = (content or "").strip()
    candidates = [text]

    fenced = _FENCED_JSON_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())

    for opener, closer in (("{", "}"), ("[", "]")):
        start, end = text.find(opener), text.rfind(closer)
        if start != -1 and end > start:
            candidates.append(text[start : end + 1])

    for candidate in candidates:
        if not candidate:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    raise MalformedResponse(f"Model output is not valid JSON: {text[:120]!r}")


class ChatCompletionClient(BaseAPIClient):
    """Client for one OpenAI-compatible chat-completions endpoint."""

    def __init__(
        self,
        provider: str,
        http_client: AsyncHTTPClient,
        config: Optional[Config] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self.service = provider
        app_config = config or get_config()
        registry = API_REGISTRY[provider]
        resolved_base = base_url or app_config.get_provider_setting(provider, "base_url", registry.base_url)
        # Ollama exposes the OpenAI-compatible API under /v1
        if provider == "ollama" and resolved_base and not resolved_base.rstrip("/").endswith("/v1"):
            resolved_base = resolved_base.rstrip("/") + "/v1"
        api_config = APIConfig(
            name=registry.name,
            base_url=resolved_base,
            api_key_name=registry.api_key_name,
            requires_auth=registry.requires_auth,
            timeout=registry.timeout,
        )
        super().__init__(http_client, app_config, api_key=api_key, api_config=api_config)
        self.model = model or app_config.get_provider_setting(provider, "model")

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def build_payload(self, messages: Sequence[ChatMessage], json_mode: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [message.to_dict() for message in messages],
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def parse_response(self, data: Any) -> CompletionResult:
        """Map a chat-completions response into ``CompletionResult``."""
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponse(
                f"{self.config.name} response missing choices[0].message.content", self.service
            ) from exc
        if not isinstance(content, str) or not content.strip():
            raise MalformedResponse(f"{self.config.name} returned empty content", self.service)
        model_id = data.get("model") if isinstance(data.get("model"), str) else self.model
        return CompletionResult(content=content, provider_label=self.service, model_id=model_id)

    async def complete(self, messages: Sequence[ChatMessage], json_mode: bool = False) -> CompletionResult:
        """Send one chat-completion request."""
        data = await self.post_json("chat/completions", self.build_payload(messages, json_mode))
        return self.parse_response(data)


class LLMProvider:
    """Builds and runs the LLM completion fallback chain."""

    def __init__(
        self,
        http_client: AsyncHTTPClient,
        executor: Optional[FallbackExecutor] = None,
        config: Optional[Config] = None,
        order: Optional[Sequence[str]] = None,
    ) -> None:
        self.config = config or get_config()
        self.http = http_client
        self.executor = executor or FallbackExecutor()
        self.order = [
            name
            for name in (order or self.config.get_list("providers.llm_order", "AI_PROVIDER_ORDER"))
            if name in LLM_PROVIDERS
        ]
        self.clients: List[ChatCompletionClient] = [
            ChatCompletionClient(name, http_client, self.config) for name in self.order
        ]
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def configured_providers(self) -> List[str]:
        return [client.service for client in self.clients if client.is_configured]

    def build_operations(self, messages: Sequence[ChatMessage], json_mode: bool = False) -> List[Operation]:
        """One operation per configured provider, in priority order."""
        operations = []
        for client in self.clients:
            if not client.is_configured:
                continue
            operations.append(
                Operation(
                    label=client.service,
                    call=lambda client=client: client.complete(messages, json_mode),
                )
            )
        return operations

    async def _run_chain(
        self,
        messages: Sequence[ChatMessage],
        json_mode: bool,
        max_retries: int,
        timeout: float,
        cache_key: Optional[Hashable],
    ) -> CompletionResult:
        operations = self.build_operations(messages, json_mode)
        if not operations:
            raise ProviderUnavailable(
                "No AI providers configured. Set OPENAI_API_KEY, GROQ_API_KEY, "
                "DEEPSEEK_API_KEY or OLLAMA_BASE_URL."
            )
        result = await self.executor.execute(
            operations,
            max_retries=max_retries,
            timeout=timeout,
            exponential_backoff=True,
            cache_results=cache_key is not None,
            cache_key=cache_key,
        )
        return result.data

    async def generate_completion(
        self,
        messages: Sequence[ChatMessage],
        *,
        json_mode: bool = False,
        max_retries: int = 3,
        timeout: float = 30.0,
        max_repairs: int = 2,
        cache_key: Optional[Hashable] = None,
    ) -> CompletionResult:
        """Run the completion chain.

        Args:
            messages: Conversation to complete
            json_mode: Request structured JSON output and repair it if needed
            max_retries: Retries per provider
            timeout: Per-attempt timeout in seconds
            max_repairs: JSON repair passes before giving up
            cache_key: Enables last-resort caching of the completion

        Raises:
            ProviderUnavailable: If no provider is configured
            AllProvidersExhausted: If every provider failed
            MalformedResponse: If JSON output could not be repaired
        """
        result = await self._run_chain(messages, json_mode, max_retries, timeout, cache_key)
        self.logger.info("Completion served by %s (%s)", result.provider_label, result.model_id)
        if not json_mode:
            return result

        for repair in range(max_repairs + 1):
            try:
                extract_json(result.content)
                return result
            except MalformedResponse:
                if repair == max_repairs:
                    raise
            self.logger.warning(
                "Invalid JSON from %s, repair attempt %d/%d",
                result.provider_label,
                repair + 1,
                max_repairs,
            )
            result = await self._run_chain(
                self.repair_messages(result.content), True, max_retries, timeout, None
            )
        return result

    @staticmethod
    def repair_messages(content: str, instruction: str = "") -> List[ChatMessage]:
        prompt = f"Fix this JSON:\n\n{content}"
        if instruction:
            prompt = f"{prompt}\n\n{instruction}"
        return [
            ChatMessage("system", JSON_REPAIR_SYSTEM_PROMPT),
            ChatMessage("user", prompt),
        ]

    async def generate_json(
        self,
        messages: Sequence[ChatMessage],
        *,
        instruction: str = "",
        max_retries: int = 3,
        timeout: float = 30.0,
        max_repairs: int = 2,
        cache_key: Optional[Hashable] = None,
    ) -> Any:
        """Run the chain in JSON mode and return the decoded document."""
        result = await self._run_chain(messages, True, max_retries, timeout, cache_key)
        self.logger.info("Completion served by %s (%s)", result.provider_label, result.model_id)
        return await self.parse_json(
            result.content, instruction, max_repairs, max_retries=max_retries, timeout=timeout
        )

    async def parse_json(
        self,
        content: str,
        instruction: str = "",
        max_repairs: int = 2,
        *,
        max_retries: int = 3,
        timeout: float = 30.0,
    ) -> Any:
        """Decode ``content`` as JSON, asking the chain to fix it when it does not parse."""
        for repair in range(max_repairs + 1):
            try:
                return extract_json(content)
            except MalformedResponse:
                if repair == max_repairs:
                    raise
            self.logger.warning("Invalid JSON, repair attempt %d/%d", repair + 1, max_repairs)
            result = await self._run_chain(
                self.repair_messages(content, instruction), True, max_retries, timeout, None
            )
            content = result.content
        raise MalformedResponse("JSON repair failed")
