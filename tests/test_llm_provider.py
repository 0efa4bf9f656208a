"""Tests for LLMProvider."""

from unittest.mock import AsyncMock, Mock, patch

import anthropic
import httpx
import pytest

from landing_pad.errors import TransientError, UnauthorizedError
from landing_pad.llm import LLMProvider, build_llm_provider
from landing_pad.message_bus import RetryPolicy

FAST_POLICY = RetryPolicy(attempts=3, initial_delay=0.001, max_delay=0.01, jitter=False)


def mock_anthropic(text: str = "Test response"):
    client = Mock()
    response = Mock()
    response.content = [Mock(text=text)]
    client.messages.create = AsyncMock(return_value=response)
    return client


def embeddings_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestLLMProviderInit:
    """Tests for LLMProvider initialization."""

    def test_init_with_api_key(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test_key")

        with patch("landing_pad.llm.llm_provider.anthropic.AsyncAnthropic"):
            provider = LLMProvider()
            assert provider is not None

    def test_init_without_api_key(self):
        with patch("landing_pad.llm.llm_provider.anthropic.AsyncAnthropic"):
            with pytest.raises(ValueError):
                LLMProvider()

    def test_build_without_keys_returns_none(self):
        assert build_llm_provider({}, environ={}) is None

    def test_build_from_config(self):
        with patch("landing_pad.llm.llm_provider.anthropic.AsyncAnthropic") as client_cls:
            provider = build_llm_provider(
                {"anthropic": {"model": "claude-test"}, "llm": {"timeout_seconds": 5}},
                environ={"ANTHROPIC_API_KEY": "test_key"},
            )
        assert isinstance(provider, LLMProvider)
        client_cls.assert_called_once_with(api_key="test_key", timeout=5)


class TestGenerateText:
    @pytest.mark.asyncio
    async def test_returns_response(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test_key")
        client = mock_anthropic()

        with patch("landing_pad.llm.llm_provider.anthropic.AsyncAnthropic", return_value=client):
            provider = LLMProvider()
            assert await provider.generate_text("Hello") == "Test response"

    @pytest.mark.asyncio
    async def test_sends_correct_format(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test_key")
        client = mock_anthropic()

        with patch("landing_pad.llm.llm_provider.anthropic.AsyncAnthropic", return_value=client):
            provider = LLMProvider(model="claude-test")
            await provider.generate_text(
                messages=[{"role": "user", "content": "Hello"}],
                system="You are a copywriter",
                max_tokens=200,
            )

        call_kwargs = client.messages.create.call_args.kwargs
        assert call_kwargs["model"] == "claude-test"
        assert call_kwargs["system"] == "You are a copywriter"
        assert call_kwargs["max_tokens"] == 200
        assert call_kwargs["messages"] == [{"role": "user", "content": "Hello"}]

    @pytest.mark.asyncio
    async def test_identical_requests_cached(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test_key")
        client = mock_anthropic()

        with patch("landing_pad.llm.llm_provider.anthropic.AsyncAnthropic", return_value=client):
            provider = LLMProvider()
            await provider.generate_text("Hello")
            await provider.generate_text("Hello")
            await provider.generate_text("Hello again")

        assert client.messages.create.await_count == 2

    @pytest.mark.asyncio
    async def test_connection_errors_retried(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test_key")
        client = mock_anthropic()
        error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))
        client.messages.create.side_effect = [error, client.messages.create.return_value]

        with patch("landing_pad.llm.llm_provider.anthropic.AsyncAnthropic", return_value=client):
            provider = LLMProvider(retry_policy=FAST_POLICY)
            assert await provider.generate_text("Hello") == "Test response"

        assert client.messages.create.await_count == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test_key")
        client = mock_anthropic()
        client.messages.create.side_effect = anthropic.APIConnectionError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        )

        with patch("landing_pad.llm.llm_provider.anthropic.AsyncAnthropic", return_value=client):
            provider = LLMProvider(retry_policy=FAST_POLICY)
            with pytest.raises(TransientError):
                await provider.generate_text("Hello")

        assert client.messages.create.await_count == 3

    @pytest.mark.asyncio
    async def test_embeddings_only_key_cannot_generate(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "test_key")
        provider = LLMProvider()
        with pytest.raises(UnauthorizedError):
            await provider.generate_text("Hello")
        await provider.close()


class TestGenerateEmbeddings:
    @pytest.mark.asyncio
    async def test_returns_vector(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2]}]})

        provider = LLMProvider(
            embedding_api_key="test_key",
            embedding_url="https://embeddings.test/v1/",
            http_client=embeddings_client(handler),
        )
        assert await provider.generate_embeddings("hello") == [0.1, 0.2]
        assert await provider.generate_embeddings("hello") == [0.1, 0.2]

        assert len(requests) == 1
        assert str(requests[0].url) == "https://embeddings.test/v1/embeddings"
        assert requests[0].headers["Authorization"] == "Bearer test_key"
        await provider.close()

    @pytest.mark.asyncio
    async def test_server_errors_retried(self):
        statuses = iter([503, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            if status == 200:
                return httpx.Response(200, json={"data": [{"embedding": [1.0]}]})
            return httpx.Response(status)

        provider = LLMProvider(
            embedding_api_key="test_key",
            retry_policy=FAST_POLICY,
            http_client=embeddings_client(handler),
        )
        assert await provider.generate_embeddings("hello") == [1.0]
        await provider.close()

    @pytest.mark.asyncio
    async def test_auth_failure_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(401)

        provider = LLMProvider(
            embedding_api_key="bad_key",
            retry_policy=FAST_POLICY,
            http_client=embeddings_client(handler),
        )
        with pytest.raises(UnauthorizedError):
            await provider.generate_embeddings("hello")
        assert len(calls) == 1
        await provider.close()
