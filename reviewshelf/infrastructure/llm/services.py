"""Text-generation backend implementations.

The recommendation engine needs to know when the LLM fails so it can switch
to the rule-based generator, so these backends raise
:class:`UpstreamError` instead of quietly returning a canned reply.
"""

import json
import logging

import httpx

from reviewshelf.domain.exceptions import ServiceUnavailableError, UpstreamError
from reviewshelf.domain.repositories import ITextGenerationBackend
from reviewshelf.infrastructure.llm.prompts import CONNECTION_TEST_PROMPT

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Disabled (LLM_PROVIDER=none)
# ---------------------------------------------------------------------------
class DisabledTextBackend(ITextGenerationBackend):
    """Placeholder used when no provider is configured."""

    model = ""

    def is_available(self) -> bool:
        return False

    async def complete(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> str:
        raise ServiceUnavailableError("No text-generation provider is configured")

    async def test_connection(self) -> bool:
        return False


# ---------------------------------------------------------------------------
# Mock (development / testing)
# ---------------------------------------------------------------------------
class MockTextBackend(ITextGenerationBackend):
    """Returns a fixed, valid recommendation payload for offline development."""

    model = "mock"

    SAMPLE_RECOMMENDATIONS = [
        {
            "title": "The Name of the Wind",
            "author": "Patrick Rothfuss",
            "genre": "Fantasy",
            "reason": "A lyrical coming-of-age fantasy with a strong narrative voice.",
            "confidence": 0.82,
        },
        {
            "title": "Station Eleven",
            "author": "Emily St. John Mandel",
            "genre": "Literary Fiction",
            "reason": "A quiet, character-driven story that rewards attentive readers.",
            "confidence": 0.78,
        },
        {
            "title": "The Martian",
            "author": "Andy Weir",
            "genre": "Science Fiction",
            "reason": "Fast-paced and funny survival story grounded in real science.",
            "confidence": 0.74,
        },
    ]

    def is_available(self) -> bool:
        return True

    async def complete(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> str:
        logger.debug("MockText prompt (%d chars)", len(system_prompt) + len(user_prompt))
        return json.dumps({"recommendations": self.SAMPLE_RECOMMENDATIONS})

    async def test_connection(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Ollama (local)
# ---------------------------------------------------------------------------
class OllamaTextBackend(ITextGenerationBackend):
    """Local LLM backend served by `Ollama <https://ollama.com>`_.

    Talks to the Ollama REST API with **httpx** and asks for JSON output.

    Constructor args:
        base_url:  Ollama server URL (default ``http://localhost:11434``).
        model:     Model tag pulled into Ollama (default ``llama3``).
        timeout:   Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3",
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.base_url)

    async def _chat(self, messages: list[dict[str, str]], options: dict, json_mode: bool) -> str:
        """Call ``POST /api/chat`` (non-streaming) and return the response text."""
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": options,
        }
        if json_mode:
            payload["format"] = "json"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(f"{self.base_url}/api/chat", json=payload)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamError(f"Ollama /api/chat failed: {exc}") from exc
        content = (data.get("message") or {}).get("content") or ""
        if not content:
            raise UpstreamError("Ollama returned an empty reply")
        return content

    async def complete(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> str:
        if not self.is_available():
            raise ServiceUnavailableError("Ollama base URL is not configured")
        logger.info("Ollama: requesting completion from %s (model=%s)", self.base_url, self.model)
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        return await self._chat(
            messages,
            {"temperature": temperature, "num_predict": max_tokens},
            json_mode=True,
        )

    async def test_connection(self) -> bool:
        if not self.is_available():
            return False
        try:
            await self._chat(CONNECTION_TEST_PROMPT.render(), {"num_predict": 10}, json_mode=False)
            return True
        except UpstreamError as exc:
            logger.warning("Ollama connection test failed: %s", exc)
            return False


# ---------------------------------------------------------------------------
# OpenAI (remote API)
# ---------------------------------------------------------------------------
class OpenAITextBackend(ITextGenerationBackend):
    """OpenAI-backed text generation. Available only when an API key is set."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", timeout: float = 30.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = None
        if not api_key:
            logger.warning(
                "OpenAI API key not configured. AI recommendations will use fallback system."
            )

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            import openai

            self._client = openai.AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    async def complete(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> str:
        if not self.is_available():
            raise ServiceUnavailableError("OpenAI service is not configured")
        import openai

        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as exc:
            raise UpstreamError(f"OpenAI call failed: {exc}") from exc
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise UpstreamError("No response from OpenAI")
        return content

    async def test_connection(self) -> bool:
        if not self.is_available():
            return False
        import openai

        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                messages=CONNECTION_TEST_PROMPT.render(),  # type: ignore[arg-type]
                max_tokens=10,
            )
            return bool(response.choices and response.choices[0].message.content)
        except openai.OpenAIError as exc:
            logger.error("OpenAI connection test failed: %s", exc)
            return False
