"""Text-generation backends: availability, error mapping, provider selection."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from reviewshelf.core.config import Settings
from reviewshelf.core.dependencies import get_text_backend
from reviewshelf.domain.exceptions import ServiceUnavailableError, UpstreamError
from reviewshelf.infrastructure.llm.services import (
    DisabledTextBackend,
    MockTextBackend,
    OllamaTextBackend,
    OpenAITextBackend,
)
from reviewshelf.services.ai_recommendation import parse_recommendations


def use_transport(monkeypatch, handler):
    """Route every ``httpx.AsyncClient`` through ``handler``."""
    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)


def test_disabled_backend():
    backend = DisabledTextBackend()

    assert backend.is_available() is False
    assert asyncio.run(backend.test_connection()) is False
    with pytest.raises(ServiceUnavailableError):
        asyncio.run(backend.complete("s", "u", 10, 0.1))


def test_mock_backend_reply_parses():
    reply = asyncio.run(MockTextBackend().complete("s", "u", 10, 0.1))
    assert len(parse_recommendations(reply)) == 3


def test_ollama_complete(monkeypatch):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message": {"content": '{"recommendations": []}'}})

    use_transport(monkeypatch, handler)
    backend = OllamaTextBackend(base_url="http://ollama:11434/", model="llama3")

    reply = asyncio.run(backend.complete("system", "user", 256, 0.3))

    assert reply == '{"recommendations": []}'
    assert seen["url"] == "http://ollama:11434/api/chat"
    assert seen["body"]["format"] == "json"
    assert seen["body"]["options"] == {"temperature": 0.3, "num_predict": 256}
    assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"message": {"content": ""}}),
        httpx.Response(200, text="not json"),
    ],
)
def test_ollama_failures_raise_upstream_error(monkeypatch, response):
    use_transport(monkeypatch, lambda request: response)

    with pytest.raises(UpstreamError):
        asyncio.run(OllamaTextBackend().complete("s", "u", 10, 0.1))


def test_ollama_connection_test_swallows_failures(monkeypatch):
    use_transport(monkeypatch, lambda request: httpx.Response(503))
    assert asyncio.run(OllamaTextBackend().test_connection()) is False


def test_openai_without_key_is_unavailable():
    backend = OpenAITextBackend(api_key="")

    assert backend.is_available() is False
    assert asyncio.run(backend.test_connection()) is False
    with pytest.raises(ServiceUnavailableError):
        asyncio.run(backend.complete("s", "u", 10, 0.1))


def _openai_client(create: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = create
    return client


def test_openai_complete_returns_content():
    message = MagicMock(content='{"recommendations": []}')
    create = AsyncMock(return_value=MagicMock(choices=[MagicMock(message=message)]))
    backend = OpenAITextBackend(api_key="sk-test")
    backend._client = _openai_client(create)

    assert asyncio.run(backend.complete("s", "u", 100, 0.7)) == '{"recommendations": []}'
    kwargs = create.await_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["max_tokens"] == 100


def test_openai_errors_raise_upstream_error():
    error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com"))
    backend = OpenAITextBackend(api_key="sk-test")
    backend._client = _openai_client(AsyncMock(side_effect=error))

    with pytest.raises(UpstreamError):
        asyncio.run(backend.complete("s", "u", 100, 0.7))
    assert asyncio.run(backend.test_connection()) is False


def test_openai_empty_reply_raises_upstream_error():
    backend = OpenAITextBackend(api_key="sk-test")
    backend._client = _openai_client(AsyncMock(return_value=MagicMock(choices=[])))

    with pytest.raises(UpstreamError):
        asyncio.run(backend.complete("s", "u", 100, 0.7))


@pytest.mark.parametrize(
    "provider,expected",
    [
        ("none", DisabledTextBackend),
        ("mock", MockTextBackend),
        ("ollama", OllamaTextBackend),
        ("openai", OpenAITextBackend),
    ],
)
def test_provider_selection(provider, expected):
    config = Settings(llm_provider=provider, llm_api_key="sk-test", llm_timeout_seconds=5)
    backend = get_text_backend(config)

    assert isinstance(backend, expected)
    if provider in ("ollama", "openai"):
        assert backend.timeout == 5
