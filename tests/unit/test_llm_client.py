"""
Unit tests for the chat-completion clients.

HTTPChatClient is exercised end to end through httpx.MockTransport;
SDKChatClient is only checked for backend selection and its credential
guard (no network).
"""

import json

import httpx
import pytest

from sqlbot.config import LLMConfig
from sqlbot.domain.errors import LLMError
from sqlbot.infrastructure.llm_client import (
    BACKEND_HTTP,
    BACKEND_SDK,
    HTTPChatClient,
    SDKChatClient,
    create_llm_client,
    resolve_model,
    select_backend,
)


def _config(**overrides) -> LLMConfig:
    values = {"api_key": "sk-test", "base_url": "https://api.deepseek.com"}
    values.update(overrides)
    return LLMConfig(**values)


def _transport(handler):
    requests = []

    def _record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    return httpx.MockTransport(_record), requests


def _completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


class TestModelResolution:

    def test_alias_resolves_through_map(self):
        assert resolve_model("DeepSeek", {"DeepSeek": "deepseek-chat"}) == "deepseek-chat"

    def test_unmapped_alias_passes_through(self):
        assert resolve_model("qwen-max", {"DeepSeek": "deepseek-chat"}) == "qwen-max"

    def test_http_backend_for_deepseek(self):
        assert select_backend(_config()) == BACKEND_HTTP

    def test_sdk_backend_for_openai_url(self):
        assert select_backend(_config(base_url="https://api.openai.com/v1")) == BACKEND_SDK

    def test_sdk_backend_for_gpt_model(self):
        assert select_backend(_config(default_model="GPT-4")) == BACKEND_SDK

    def test_factory_builds_matching_client(self):
        assert isinstance(create_llm_client(_config()), HTTPChatClient)
        assert isinstance(create_llm_client(_config(default_model="GPT-4")), SDKChatClient)


class TestHTTPChatClient:

    @pytest.mark.asyncio
    async def test_request_shape_and_reply(self):
        transport, requests = _transport(lambda request: _completion("SELECT 1"))
        client = HTTPChatClient(_config(), transport=transport)

        reply = await client.complete("question", system_prompt="be brief", temperature=0.5)

        assert reply == "SELECT 1"
        request = requests[0]
        assert request.url.path == "/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["model"] == "deepseek-chat"
        assert body["temperature"] == 0.5
        assert body["stream"] is False
        assert body["messages"] == [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "question"},
        ]
        await client.close()

    @pytest.mark.asyncio
    async def test_configured_temperature_by_default(self):
        transport, requests = _transport(lambda request: _completion("ok"))
        client = HTTPChatClient(_config(temperature=0.1), transport=transport)

        await client.complete("question")

        body = json.loads(requests[0].content)
        assert body["temperature"] == 0.1
        assert body["messages"] == [{"role": "user", "content": "question"}]

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        transport, _ = _transport(lambda request: httpx.Response(500, text="upstream broke"))
        client = HTTPChatClient(_config(), transport=transport)

        with pytest.raises(LLMError, match="HTTP 500: upstream broke"):
            await client.complete("question")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def _fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        transport, _ = _transport(_fail)
        client = HTTPChatClient(_config(), transport=transport)

        with pytest.raises(LLMError, match="ConnectError"):
            await client.complete("question")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"choices": []},
        {"choices": [{"message": {"content": ""}}]},
        {"choices": [{"message": {"content": "   "}}]},
    ])
    async def test_empty_replies_are_errors(self, body):
        transport, _ = _transport(lambda request: httpx.Response(200, json=body))
        client = HTTPChatClient(_config(), transport=transport)

        with pytest.raises(LLMError):
            await client.complete("question")

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        transport, _ = _transport(lambda request: httpx.Response(200, text="<html>"))
        client = HTTPChatClient(_config(), transport=transport)

        with pytest.raises(LLMError, match="non-JSON"):
            await client.complete("question")


class TestRequestGuards:

    @pytest.mark.asyncio
    async def test_missing_api_key_makes_no_request(self):
        transport, requests = _transport(lambda request: _completion("ok"))
        client = HTTPChatClient(_config(api_key=None), transport=transport)

        with pytest.raises(LLMError, match="API key"):
            await client.complete("question")
        assert requests == []

    @pytest.mark.asyncio
    async def test_sdk_client_checks_key_before_building(self):
        client = SDKChatClient(_config(api_key=None, default_model="GPT-4"))
        assert not client.has_credentials()
        with pytest.raises(LLMError, match="API key"):
            await client.complete("question")

    @pytest.mark.asyncio
    async def test_blank_prompt(self):
        transport, _ = _transport(lambda request: _completion("ok"))
        client = HTTPChatClient(_config(), transport=transport)
        with pytest.raises(LLMError, match="must not be empty"):
            await client.complete("  ")

    @pytest.mark.asyncio
    async def test_oversized_prompt(self):
        transport, _ = _transport(lambda request: _completion("ok"))
        client = HTTPChatClient(_config(max_input_chars=10), transport=transport)
        with pytest.raises(LLMError, match="Total input too large"):
            await client.complete("x" * 11)
