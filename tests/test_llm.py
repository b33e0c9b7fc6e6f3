"""Tests for the LLM completion chain."""

import json

import httpx
import pytest

from docsmith.core.error_recovery import AllProvidersExhausted, MalformedResponse, ProviderUnavailable
from docsmith.core.fallback import FallbackExecutor
from docsmith.integrations.llm import (
    JSON_REPAIR_SYSTEM_PROMPT,
    ChatCompletionClient,
    ChatMessage,
    LLMProvider,
    extract_json,
)

MESSAGES = [ChatMessage("user", "Summarise the webhooks guide")]


def completion(content, model="test-model"):
    return httpx.Response(200, json={"model": model, "choices": [{"message": {"content": content}}]})


@pytest.fixture
def keys(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
    monkeypatch.setenv("GROQ_API_KEY", "gsk-groq")
    monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-deepseek")


def provider(http, config, order=None):
    return LLMProvider(http, FallbackExecutor(base_delay=0), config, order=order)


class TestExtractJson:
    """Tests for extract_json."""

    def test_plain(self):
        """Test raw JSON parses directly."""
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_fenced_block(self):
        """Test a fenced json block is extracted."""
        assert extract_json('Here you go:\n```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_embedded_object(self):
        """Test the outermost object is found inside prose."""
        assert extract_json('Result: {"ok": true} hope this helps') == {"ok": True}

    def test_embedded_array(self):
        """Test arrays are found as well as objects."""
        assert extract_json("Items: [1, 2, 3].") == [1, 2, 3]

    def test_invalid(self):
        """Test unparseable output raises MalformedResponse."""
        with pytest.raises(MalformedResponse):
            extract_json("no json here")


class TestChatCompletionClient:
    """Tests for a single chat-completions client."""

    def test_payload(self, config, make_http):
        """Test the payload carries the model and JSON mode flag."""
        client = ChatCompletionClient("openai", make_http(lambda r: httpx.Response(200)), config, api_key="k")

        payload = client.build_payload(MESSAGES, json_mode=True)

        assert payload["model"] == "gpt-5"
        assert payload["messages"] == [{"role": "user", "content": "Summarise the webhooks guide"}]
        assert payload["response_format"] == {"type": "json_object"}

    def test_missing_content(self, config, make_http):
        """Test responses without choices are malformed."""
        client = ChatCompletionClient("openai", make_http(lambda r: httpx.Response(200)), config, api_key="k")
        with pytest.raises(MalformedResponse):
            client.parse_response({"choices": []})
        with pytest.raises(MalformedResponse):
            client.parse_response({"choices": [{"message": {"content": "  "}}]})

    def test_ollama_needs_base_url(self, config, make_http, monkeypatch):
        """Test Ollama is only configured when a base URL is set, and gains /v1."""
        http = make_http(lambda r: httpx.Response(200))
        assert ChatCompletionClient("ollama", http, config).is_configured is False

        monkeypatch.setenv("OLLAMA_BASE_URL", "http://localhost:11434")
        client = ChatCompletionClient("ollama", http, config)
        assert client.is_configured is True
        assert client.base_url == "http://localhost:11434/v1"


class TestLLMProvider:
    """Tests for LLMProvider."""

    @pytest.mark.asyncio
    async def test_all_providers_fail(self, config, make_http, keys):
        """Test every provider returning 500 exhausts the chain with each message."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.host)
            return httpx.Response(500, text="upstream error")

        http = make_http(handler)
        llm = provider(http, config, order=["openai", "groq", "deepseek"])

        with pytest.raises(AllProvidersExhausted) as exc_info:
            await llm.generate_completion(MESSAGES, max_retries=0)

        messages = exc_info.value.messages
        assert len(messages) == 3
        assert "openai returned HTTP 500" in messages[0]
        assert "groq returned HTTP 500" in messages[1]
        assert "deepseek returned HTTP 500" in messages[2]
        assert seen == ["api.openai.com", "api.groq.com", "api.deepseek.com"]
        await http.aclose()

    @pytest.mark.asyncio
    async def test_falls_back_to_next_provider(self, config, make_http, keys):
        """Test a failing first provider hands over to the second."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "api.openai.com":
                return httpx.Response(503)
            assert request.headers["authorization"] == "Bearer gsk-groq"
            return completion("Webhooks are signed.", model="llama-3.3-70b-versatile")

        http = make_http(handler)
        result = await provider(http, config, order=["openai", "groq"]).generate_completion(MESSAGES, max_retries=0)

        assert result.content == "Webhooks are signed."
        assert result.provider_label == "groq"
        assert result.model_id == "llama-3.3-70b-versatile"
        await http.aclose()

    def test_order_from_environment(self, config, make_http, keys, monkeypatch):
        """Test AI_PROVIDER_ORDER reorders the chain and drops unknown names."""
        monkeypatch.setenv("AI_PROVIDER_ORDER", "deepseek, unknown, openai")
        llm = provider(make_http(lambda r: httpx.Response(200)), config)

        assert llm.order == ["deepseek", "openai"]
        assert llm.configured_providers == ["deepseek", "openai"]

    @pytest.mark.asyncio
    async def test_unconfigured_providers_are_skipped(self, config, make_http, monkeypatch):
        """Test providers without keys never receive a request."""
        monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-deepseek")
        hosts = []

        def handler(request: httpx.Request) -> httpx.Response:
            hosts.append(request.url.host)
            return completion("ok")

        http = make_http(handler)
        result = await provider(http, config).generate_completion(MESSAGES, max_retries=0)

        assert result.provider_label == "deepseek"
        assert hosts == ["api.deepseek.com"]
        await http.aclose()

    @pytest.mark.asyncio
    async def test_no_providers(self, config, make_http):
        """Test a chain with no configured providers raises ProviderUnavailable."""
        llm = provider(make_http(lambda r: httpx.Response(200)), config)
        with pytest.raises(ProviderUnavailable):
            await llm.generate_completion(MESSAGES)

    @pytest.mark.asyncio
    async def test_json_mode_repairs_output(self, config, make_http, monkeypatch):
        """Test invalid JSON is sent back through the chain for repair."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            bodies.append(body)
            if len(bodies) == 1:
                return completion("{'title': 'broken'")
            return completion('{"title": "fixed"}')

        http = make_http(handler)
        result = await provider(http, config).generate_completion(MESSAGES, json_mode=True, max_retries=0)

        assert extract_json(result.content) == {"title": "fixed"}
        assert len(bodies) == 2
        assert bodies[0]["response_format"] == {"type": "json_object"}
        assert bodies[1]["messages"][0]["content"] == JSON_REPAIR_SYSTEM_PROMPT
        assert "broken" in bodies[1]["messages"][1]["content"]
        await http.aclose()

    @pytest.mark.asyncio
    async def test_json_mode_gives_up(self, config, make_http, monkeypatch):
        """Test repairs stop after max_repairs and raise MalformedResponse."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return completion("still not json")

        http = make_http(handler)
        with pytest.raises(MalformedResponse):
            await provider(http, config).generate_completion(
                MESSAGES, json_mode=True, max_retries=0, max_repairs=1
            )

        assert len(calls) == 2
        await http.aclose()

    @pytest.mark.asyncio
    async def test_generate_json(self, config, make_http, monkeypatch):
        """Test generate_json returns the decoded document."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        http = make_http(lambda r: completion('```json\n{"steps": 3}\n```'))

        assert await provider(http, config).generate_json(MESSAGES, max_retries=0) == {"steps": 3}
        await http.aclose()

    @pytest.mark.asyncio
    async def test_generate_json_repairs_with_instruction(self, config, make_http, monkeypatch):
        """Test generate_json sends unparseable output back with the caller's instruction."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            if len(bodies) == 1:
                return completion("steps: three")
            return completion('{"steps": 3}')

        http = make_http(handler)
        document = await provider(http, config).generate_json(
            MESSAGES, instruction="Use an integer", max_retries=0
        )

        assert document == {"steps": 3}
        assert len(bodies) == 2
        assert bodies[1]["messages"][0]["content"] == JSON_REPAIR_SYSTEM_PROMPT
        assert "Use an integer" in bodies[1]["messages"][1]["content"]
        await http.aclose()

    @pytest.mark.asyncio
    async def test_parse_json_without_repair(self, config, make_http):
        """Test valid content is decoded without any request."""
        calls = []
        http = make_http(lambda r: calls.append(r) or httpx.Response(500))

        assert await provider(http, config).parse_json('{"a": 1}') == {"a": 1}
        assert calls == []
