"""Tests for model provider implementations.

Shared behaviour (request timeout, empty-reply check) lives in
BaseModelClient and is tested once via a lightweight stub, not per provider.
Provider-specific tests cover only what differs: SDK client setup, the
request shape and the mapping of SDK errors.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from prtalk_core.errors import ModelCallError, ModelRateLimited, ModelTimeout
from prtalk_core.orchestrator import get_model_client
from prtalk_core.providers.anthropic import AnthropicClient
from prtalk_core.providers.base import BaseModelClient
from prtalk_core.providers.openai import OpenAIClient
from prtalk_core.types import CompletionOptions

_REQUEST = httpx.Request("POST", "https://api.example.test/v1")


class _StubClient(BaseModelClient):
    def __init__(self, reply="{}", delay=0.0, request_timeout=None):
        super().__init__(request_timeout)
        self.reply = reply
        self.delay = delay
        self.seen = None

    async def _call_api(self, system_prompt, user_prompt, model, options):
        self.seen = (system_prompt, user_prompt, model, options)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.reply


# ---------------------------------------------------------------------------
# Shared behaviour, tested once through the stub
# ---------------------------------------------------------------------------


class TestBaseModelClient:
    async def test_returns_reply_and_passes_system_prompt(self):
        client = _StubClient(reply='{"answer": "x"}')
        assert await client.complete("question", "m1") == '{"answer": "x"}'
        system_prompt, user_prompt, model, options = client.seen
        assert "pull requests" in system_prompt
        assert (user_prompt, model) == ("question", "m1")
        assert options == CompletionOptions()

    async def test_empty_reply_raises(self):
        with pytest.raises(ModelCallError):
            await _StubClient(reply="").complete("q", "m1")

    async def test_slow_reply_raises_timeout(self):
        with pytest.raises(ModelTimeout):
            await _StubClient(delay=1.0, request_timeout=0.01).complete("q", "m1")

    def test_default_request_timeout(self):
        assert _StubClient().request_timeout == BaseModelClient.REQUEST_TIMEOUT


class TestGetModelClient:
    def test_builds_openai_client(self):
        client = get_model_client({"provider": "openai", "openai_api_key": "key"})
        assert isinstance(client, OpenAIClient)

    def test_builds_anthropic_client(self):
        client = get_model_client({"provider": "anthropic", "anthropic_api_key": "key", "request_timeout": 5})
        assert isinstance(client, AnthropicClient)
        assert client.request_timeout == 5

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown model provider"):
            get_model_client({"provider": "llama"})


# ---------------------------------------------------------------------------
# Provider-specific behaviour
# ---------------------------------------------------------------------------


def _openai_response(content):
    message = MagicMock(content=content)
    return MagicMock(choices=[MagicMock(message=message)])


class TestOpenAIClient:
    def test_raises_import_error_without_sdk(self):
        with patch("prtalk_core.providers.openai._AsyncOpenAI", None):
            with pytest.raises(ImportError):
                OpenAIClient(api_key="key")

    def test_sdk_retries_disabled(self):
        with patch("prtalk_core.providers.openai._AsyncOpenAI") as sdk:
            OpenAIClient(api_key="key")
        sdk.assert_called_once_with(api_key="key", max_retries=0)

    async def test_json_mode_request(self):
        client = OpenAIClient(api_key="key")
        client.client = MagicMock()
        client.client.chat.completions.create = AsyncMock(return_value=_openai_response('{"answer": "x"}'))

        raw = await client.complete("question", "gpt-4o-mini", CompletionOptions(temperature=0.2, max_tokens=50))

        assert raw == '{"answer": "x"}'
        kwargs = client.client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 50
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][1] == {"role": "user", "content": "question"}

    async def test_json_mode_off(self):
        client = OpenAIClient(api_key="key")
        client.client = MagicMock()
        client.client.chat.completions.create = AsyncMock(return_value=_openai_response("plain"))
        await client.complete("q", "gpt-4o", CompletionOptions(json_mode=False))
        assert "response_format" not in client.client.chat.completions.create.call_args.kwargs

    @pytest.mark.parametrize(
        "error, expected",
        [
            (lambda openai: openai.RateLimitError("slow", response=httpx.Response(429, request=_REQUEST), body=None),
             ModelRateLimited),
            (lambda openai: openai.APITimeoutError(request=_REQUEST), ModelTimeout),
            (lambda openai: openai.APIConnectionError(request=_REQUEST), ModelCallError),
        ],
    )  # fmt: skip
    async def test_sdk_errors_are_mapped(self, error, expected):
        import openai

        client = OpenAIClient(api_key="key")
        client.client = MagicMock()
        client.client.chat.completions.create = AsyncMock(side_effect=error(openai))
        with pytest.raises(expected):
            await client.complete("q", "gpt-4o")


class TestAnthropicClient:
    def test_raises_import_error_without_sdk(self):
        with patch.dict("sys.modules", {"anthropic": None}):
            with pytest.raises(ImportError):
                AnthropicClient(api_key="key")

    async def test_joins_text_blocks(self):
        from anthropic.types import TextBlock

        client = AnthropicClient(api_key="key")
        client.client = MagicMock()
        response = MagicMock(content=[TextBlock(type="text", text='{"answer": '), TextBlock(type="text", text='"x"}')])
        client.client.messages.create = AsyncMock(return_value=response)

        raw = await client.complete("question", "claude-3-5-haiku-20241022")

        assert raw == '{"answer": "x"}'
        kwargs = client.client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-3-5-haiku-20241022"
        assert "pull requests" in kwargs["system"]
        assert kwargs["messages"] == [{"role": "user", "content": "question"}]

    async def test_rate_limit_is_mapped(self):
        import anthropic

        client = AnthropicClient(api_key="key")
        client.client = MagicMock()
        error = anthropic.RateLimitError("slow", response=httpx.Response(429, request=_REQUEST), body=None)
        client.client.messages.create = AsyncMock(side_effect=error)
        with pytest.raises(ModelRateLimited):
            await client.complete("q", "claude-3-5-haiku-20241022")
