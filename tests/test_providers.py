"""Tests for provider adapters (mocked HTTP)."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from translate_gateway.core.config import ProviderConfig, ProviderType
from translate_gateway.gateway.errors import (
    ParseFailure,
    ProviderConfigError,
    ProviderHTTPError,
    ProviderNetworkError,
)
from translate_gateway.gateway.providers import (
    DEMO_PREFIX,
    PROVIDER_REGISTRY,
    CustomEndpointProvider,
    OpenAICompatibleProvider,
    get_provider,
    parse_json_array_like,
)
from translate_gateway.gateway.types import TranslateParams

PARAMS = TranslateParams(source_lang="en", target_lang="de")


def _make_httpx_response(status_code: int, json_data: dict | None = None, text: str = "") -> httpx.Response:
    request = httpx.Request("POST", "https://example.com")
    if json_data is not None:
        return httpx.Response(status_code, json=json_data, request=request)
    return httpx.Response(status_code, text=text, request=request)


def _mock_chat_response(content: str) -> httpx.Response:
    return _make_httpx_response(
        200,
        json_data={"choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}]},
    )


def _mock_client(mock_client_cls, response=None, side_effect=None) -> AsyncMock:
    mock_client = AsyncMock()
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    else:
        mock_client.post.return_value = response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_cls.return_value = mock_client
    return mock_client


# ==========================================================================
# Custom endpoint
# ==========================================================================


class TestCustomEndpointProvider:
    @pytest.fixture
    def provider(self):
        return CustomEndpointProvider(ProviderConfig(endpoint="https://mt.example.com/translate", api_key="k"))

    @pytest.mark.asyncio
    async def test_demo_mode_without_endpoint(self):
        provider = CustomEndpointProvider(ProviderConfig())
        with patch("translate_gateway.gateway.providers.httpx.AsyncClient") as mock_client_cls:
            outputs = await provider.translate_batch(["Hello", "World"], PARAMS)

        assert provider.demo_mode
        assert outputs == [f"{DEMO_PREFIX}Hello", f"{DEMO_PREFIX}World"]
        mock_client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_batch_success(self, provider):
        with patch("translate_gateway.gateway.providers.httpx.AsyncClient") as mock_client_cls:
            client = _mock_client(mock_client_cls, _make_httpx_response(200, {"outputs": ["Hallo", "Welt"]}))
            outputs = await provider.translate_batch(["Hello", "World"], PARAMS)

        assert outputs == ["Hallo", "Welt"]
        kwargs = client.post.call_args.kwargs
        assert kwargs["json"] == {
            "inputs": ["Hello", "World"],
            "sourceLang": "en",
            "targetLang": "de",
            "workflow": ["translate"],
        }
        assert kwargs["headers"]["Authorization"] == "Bearer k"

    @pytest.mark.asyncio
    async def test_data_field_and_model(self):
        provider = CustomEndpointProvider(ProviderConfig(endpoint="https://mt.example.com", model="nllb"))
        with patch("translate_gateway.gateway.providers.httpx.AsyncClient") as mock_client_cls:
            client = _mock_client(mock_client_cls, _make_httpx_response(200, {"data": [{"text": "Hallo"}]}))
            outputs = await provider.translate_batch(["Hello"], PARAMS)

        assert outputs == ["Hallo"]
        assert client.post.call_args.kwargs["json"]["model"] == "nllb"
        assert "Authorization" not in client.post.call_args.kwargs["headers"]

    @pytest.mark.asyncio
    async def test_translate_one(self, provider):
        with patch("translate_gateway.gateway.providers.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(200, {"outputs": ["Hallo"]}))
            assert await provider.translate_one("Hello", PARAMS) == "Hallo"

    @pytest.mark.asyncio
    async def test_length_mismatch_is_parse_failure(self, provider):
        with patch("translate_gateway.gateway.providers.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(200, {"outputs": ["only one"]}))
            with pytest.raises(ParseFailure):
                await provider.translate_batch(["a", "b"], PARAMS)

    @pytest.mark.asyncio
    async def test_missing_array_is_parse_failure(self, provider):
        with patch("translate_gateway.gateway.providers.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(200, text="not json"))
            with pytest.raises(ParseFailure):
                await provider.translate_batch(["a"], PARAMS)

    @pytest.mark.asyncio
    async def test_http_error_carries_status(self, provider):
        with patch("translate_gateway.gateway.providers.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(429, text="rate limited"))
            with pytest.raises(ProviderHTTPError) as exc_info:
                await provider.translate_batch(["a"], PARAMS)

        assert exc_info.value.status_code == 429
        assert "rate limited" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self, provider):
        with patch("translate_gateway.gateway.providers.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, side_effect=httpx.TimeoutException("timeout"))
            with pytest.raises(ProviderNetworkError) as exc_info:
                await provider.translate_batch(["a"], PARAMS)

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_connection_error(self, provider):
        with patch("translate_gateway.gateway.providers.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, side_effect=httpx.ConnectError("refused"))
            with pytest.raises(ProviderNetworkError):
                await provider.translate_batch(["a"], PARAMS)


# ==========================================================================
# OpenAI-compatible
# ==========================================================================


class TestOpenAICompatibleProvider:
    @pytest.fixture
    def provider(self):
        return OpenAICompatibleProvider(ProviderConfig(type=ProviderType.OPENAI_COMPATIBLE, api_key="sk-test"))

    def test_defaults(self, provider):
        assert provider.endpoint == "https://api.openai.com/v1/chat/completions"
        assert provider.model == "gpt-3.5-turbo"
        assert provider.name == "openai-compatible"

    @pytest.mark.asyncio
    async def test_batch_parses_fenced_array(self, provider):
        content = 'Here you go:\n```json\n["Hallo", "Welt"]\n```'
        with patch("translate_gateway.gateway.providers.httpx.AsyncClient") as mock_client_cls:
            client = _mock_client(mock_client_cls, _mock_chat_response(content))
            outputs = await provider.translate_batch(["Hello", "World"], PARAMS)

        assert outputs == ["Hallo", "Welt"]
        payload = client.post.call_args.kwargs["json"]
        assert payload["model"] == "gpt-3.5-turbo"
        assert payload["messages"][0]["role"] == "system"
        user = json.loads(payload["messages"][1]["content"])
        assert user == {"inputs": ["Hello", "World"], "meta": {"sourceLang": "en", "targetLang": "de"}}

    @pytest.mark.asyncio
    async def test_batch_wrong_length_is_parse_failure(self, provider):
        with patch("translate_gateway.gateway.providers.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, _mock_chat_response('["Hallo"]'))
            with pytest.raises(ParseFailure) as exc_info:
                await provider.translate_batch(["Hello", "World"], PARAMS)

        assert exc_info.value.raw == '["Hallo"]'

    @pytest.mark.asyncio
    async def test_single(self, provider):
        with patch("translate_gateway.gateway.providers.httpx.AsyncClient") as mock_client_cls:
            client = _mock_client(mock_client_cls, _mock_chat_response("Hallo"))
            assert await provider.translate_one("Hello", PARAMS) == "Hallo"

        assert client.post.call_args.kwargs["json"]["messages"][1]["content"] == "Hello"

    @pytest.mark.asyncio
    async def test_missing_key(self):
        provider = OpenAICompatibleProvider(ProviderConfig(type=ProviderType.OPENAI_COMPATIBLE))
        with patch("translate_gateway.gateway.providers.httpx.AsyncClient") as mock_client_cls:
            with pytest.raises(ProviderConfigError):
                await provider.translate_one("Hello", PARAMS)
        mock_client_cls.assert_not_called()


# ==========================================================================
# Helpers / registry
# ==========================================================================


class TestParseJsonArrayLike:
    def test_plain_array(self):
        assert parse_json_array_like('["a", "b"]', 2) == ["a", "b"]

    def test_embedded_array(self):
        assert parse_json_array_like('Result: ["a"] done', 1) == ["a"]

    def test_length_mismatch(self):
        assert parse_json_array_like('["a"]', 2) is None

    def test_not_an_array(self):
        assert parse_json_array_like('{"a": 1}', 1) is None
        assert parse_json_array_like("nothing here", 1) is None


class TestProviderRegistry:
    def test_all_types_registered(self):
        assert set(PROVIDER_REGISTRY) == set(ProviderType)

    def test_get_provider(self):
        provider = get_provider(ProviderConfig(type=ProviderType.OPENAI_COMPATIBLE, api_key="k"))
        assert isinstance(provider, OpenAICompatibleProvider)
        assert isinstance(get_provider(ProviderConfig()), CustomEndpointProvider)
