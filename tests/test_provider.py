"""Tests for the upstream chat-completion client."""

import asyncio
import json
from typing import List

import httpx
import pytest

from policy_chat import provider
from policy_chat.config import UpstreamConfig
from policy_chat.models import PromptMessage
from policy_chat.provider import (
    ClientDisconnected,
    ConfigurationError,
    UpstreamError,
    UpstreamReply,
    call_upstream,
    complete_with_deadline,
)

MESSAGES = [
    PromptMessage(role="system", content="instructions"),
    PromptMessage(role="user", content="question"),
]


@pytest.fixture()
def upstream(monkeypatch: pytest.MonkeyPatch) -> UpstreamConfig:
    monkeypatch.setenv("TEST_OPENAI_ENDPOINT", "https://example.openai.azure.com/")
    monkeypatch.setenv("TEST_OPENAI_KEY", "key-123")
    return UpstreamConfig(
        endpoint_env="TEST_OPENAI_ENDPOINT",
        api_key_env="TEST_OPENAI_KEY",
        deployment="test-deployment",
        api_version="2024-02-15-preview",
        timeout_seconds=2.0,
    )


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_request_shape(upstream: UpstreamConfig) -> None:
    """The call targets the deployment URL with fixed sampling parameters."""
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"role": "assistant", "content": "hello"}}],
                "usage": {"total_tokens": 57},
            },
        )

    async with _client(handler) as client:
        reply = await call_upstream(upstream, MESSAGES, 750, client=client)

    assert reply == UpstreamReply(content="hello", tokens_used=57, model="test-deployment")

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/openai/deployments/test-deployment/chat/completions"
    assert request.url.params["api-version"] == "2024-02-15-preview"
    assert request.headers["api-key"] == "key-123"

    body = json.loads(request.content)
    assert body == {
        "messages": [
            {"role": "system", "content": "instructions"},
            {"role": "user", "content": "question"},
        ],
        "temperature": 0.7,
        "max_tokens": 750,
        "top_p": 0.95,
    }


@pytest.mark.asyncio
async def test_missing_usage_and_content_default(upstream: UpstreamConfig) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    async with _client(handler) as client:
        reply = await call_upstream(upstream, MESSAGES, 100, client=client)

    assert reply.content == ""
    assert reply.tokens_used == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 429, 500, 503])
async def test_non_2xx_raises_upstream_error(upstream: UpstreamConfig, status: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text="deployment exploded")

    async with _client(handler) as client:
        with pytest.raises(UpstreamError) as excinfo:
            await call_upstream(upstream, MESSAGES, 100, client=client)

    assert excinfo.value.status == status
    assert excinfo.value.body == "deployment exploded"


@pytest.mark.asyncio
async def test_transport_failure_raises_upstream_error(upstream: UpstreamConfig) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(UpstreamError) as excinfo:
            await call_upstream(upstream, MESSAGES, 100, client=client)

    assert excinfo.value.status is None


@pytest.mark.asyncio
async def test_invalid_json_body_raises_upstream_error(upstream: UpstreamConfig) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    async with _client(handler) as client:
        with pytest.raises(UpstreamError, match="invalid JSON"):
            await call_upstream(upstream, MESSAGES, 100, client=client)


@pytest.mark.asyncio
async def test_missing_configuration_detected_before_network(
    upstream: UpstreamConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("TEST_OPENAI_KEY", raising=False)
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    async with _client(handler) as client:
        with pytest.raises(ConfigurationError) as excinfo:
            await call_upstream(upstream, MESSAGES, 100, client=client)

    assert excinfo.value.missing == ["TEST_OPENAI_KEY"]
    assert calls == []


@pytest.mark.asyncio
async def test_deadline_expiry_raises_upstream_error(
    upstream: UpstreamConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    upstream.timeout_seconds = 0.05
    cancelled = asyncio.Event()

    async def slow_call(config, messages, max_tokens):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    monkeypatch.setattr(provider, "call_upstream", slow_call)

    with pytest.raises(UpstreamError, match="deadline"):
        await complete_with_deadline(upstream, MESSAGES, 100)

    await asyncio.wait_for(cancelled.wait(), timeout=1)


@pytest.mark.asyncio
async def test_disconnect_cancels_upstream_call(
    upstream: UpstreamConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    cancelled = asyncio.Event()

    async def slow_call(config, messages, max_tokens):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    async def gone() -> bool:
        return True

    monkeypatch.setattr(provider, "call_upstream", slow_call)

    with pytest.raises(ClientDisconnected):
        await complete_with_deadline(upstream, MESSAGES, 100, disconnected=gone)

    await asyncio.wait_for(cancelled.wait(), timeout=1)


@pytest.mark.asyncio
async def test_connected_caller_gets_reply(
    upstream: UpstreamConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def fast_call(config, messages, max_tokens):
        return UpstreamReply(content="ok", tokens_used=3, model=config.deployment)

    async def still_here() -> bool:
        return False

    monkeypatch.setattr(provider, "call_upstream", fast_call)

    reply = await complete_with_deadline(upstream, MESSAGES, 100, disconnected=still_here)
    assert reply.content == "ok"
