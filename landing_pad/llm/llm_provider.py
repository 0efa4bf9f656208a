"""LLM provider: Anthropic for text, an OpenAI-compatible endpoint for embeddings."""

import asyncio
import json
import os
from collections import OrderedDict
from typing import Any, Mapping, Protocol

import anthropic
import httpx

from ..errors import InternalError, TransientError, UnauthorizedError
from ..logging_config import get_logger
from ..message_bus.retry import RetryPolicy

logger = get_logger(__name__)

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_EMBEDDING_URL = "https://api.openai.com/v1"


class ILLMProvider(Protocol):
    """Abstraction for LLM access. Retries and caching live here, not in callers."""

    async def generate_text(
        self,
        prompt: str | None = None,
        *,
        messages: list[dict] | None = None,
        system: str | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> str:
        """Generate a completion."""
        ...

    async def generate_embeddings(self, text: str) -> list[float]:
        """Embed a text."""
        ...


class LLMProvider:
    """Anthropic Claude API provider with retries and a bounded response cache."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        *,
        embedding_api_key: str | None = None,
        embedding_url: str = DEFAULT_EMBEDDING_URL,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
        timeout_seconds: float = 60.0,
        cache_size: int = 256,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self._embedding_api_key = embedding_api_key or os.getenv("OPENAI_API_KEY")
        if not (self._api_key or self._embedding_api_key):
            raise ValueError("ANTHROPIC_API_KEY or OPENAI_API_KEY environment variable not set")

        self._model = model
        self._client = (
            anthropic.AsyncAnthropic(api_key=self._api_key, timeout=timeout_seconds)
            if self._api_key
            else None
        )
        self._embedding_url = embedding_url.rstrip("/")
        self._embedding_model = embedding_model
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._retry_policy = retry_policy or RetryPolicy(attempts=3, initial_delay=1.0, max_delay=10.0)
        self._cache: OrderedDict[str, Any] = OrderedDict()
        self._cache_size = cache_size

    def _cached(self, key: str) -> Any | None:
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]
        return None

    def _remember(self, key: str, value: Any) -> None:
        self._cache[key] = value
        self._cache.move_to_end(key)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    async def _with_retry(self, operation: str, call):
        attempt = 0
        while True:
            attempt += 1
            try:
                return await call()
            except TransientError as e:
                if attempt >= self._retry_policy.attempts:
                    raise
                delay = self._retry_policy.delay(attempt - 1)
                logger.warning("%s failed (%s), retrying in %.2fs", operation, e.message, delay)
                await asyncio.sleep(delay)

    async def generate_text(
        self,
        prompt: str | None = None,
        *,
        messages: list[dict] | None = None,
        system: str | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> str:
        """Generate a completion using the Claude API."""
        if self._client is None:
            raise UnauthorizedError("No Anthropic API key configured")
        if messages is None:
            if prompt is None:
                raise ValueError("Either prompt or messages is required")
            messages = [{"role": "user", "content": prompt}]

        request = {
            "model": model or self._model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system:
            request["system"] = system

        cache_key = "text:" + json.dumps(request, sort_keys=True)
        cached = self._cached(cache_key)
        if cached is not None:
            return cached

        async def call() -> str:
            try:
                response = await self._client.messages.create(**request)
            except anthropic.AuthenticationError as e:
                raise UnauthorizedError(f"LLM authentication failed: {e}") from e
            except (
                anthropic.APIConnectionError,
                anthropic.RateLimitError,
                anthropic.InternalServerError,
            ) as e:
                raise TransientError(f"LLM API error: {e}") from e
            except anthropic.APIError as e:
                raise InternalError(f"LLM API error: {e}") from e
            return response.content[0].text

        text = await self._with_retry("generate_text", call)
        self._remember(cache_key, text)
        return text

    async def generate_embeddings(self, text: str) -> list[float]:
        """Embed a text via an OpenAI-compatible /embeddings endpoint."""
        if not self._embedding_api_key:
            raise UnauthorizedError("No embeddings API key configured")

        cache_key = f"embed:{self._embedding_model}:{text}"
        cached = self._cached(cache_key)
        if cached is not None:
            return cached

        async def call() -> list[float]:
            try:
                response = await self._http.post(
                    f"{self._embedding_url}/embeddings",
                    headers={"Authorization": f"Bearer {self._embedding_api_key}"},
                    json={"model": self._embedding_model, "input": text},
                )
            except httpx.TransportError as e:
                raise TransientError(f"Embeddings request failed: {e}") from e

            if response.status_code in (401, 403):
                raise UnauthorizedError("Embeddings authentication failed")
            if response.status_code == 429 or response.status_code >= 500:
                raise TransientError(f"Embeddings API returned {response.status_code}")
            if response.status_code >= 400:
                raise InternalError(f"Embeddings API returned {response.status_code}: {response.text}")
            return response.json()["data"][0]["embedding"]

        vector = await self._with_retry("generate_embeddings", call)
        self._remember(cache_key, vector)
        return vector

    async def close(self) -> None:
        await self._http.aclose()


def build_llm_provider(
    external_services: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> LLMProvider | None:
    """Build the provider from config, or None when no API key is available."""
    environ = os.environ if environ is None else environ
    services = external_services or {}
    anthropic_cfg = services.get("anthropic", {})
    openai_cfg = services.get("openai", {})
    llm_cfg = services.get("llm", {})

    api_key = environ.get("ANTHROPIC_API_KEY")
    embedding_key = environ.get("OPENAI_API_KEY")
    if not (api_key or embedding_key):
        logger.warning("No LLM API key configured, agents run with template output")
        return None

    return LLMProvider(
        api_key=api_key,
        model=anthropic_cfg.get("model", DEFAULT_MODEL),
        embedding_api_key=embedding_key,
        embedding_url=openai_cfg.get("base_url", DEFAULT_EMBEDDING_URL),
        embedding_model=openai_cfg.get("embedding_model", DEFAULT_EMBEDDING_MODEL),
        timeout_seconds=llm_cfg.get("timeout_seconds", 60.0),
        cache_size=llm_cfg.get("cache_size", 256),
    )
