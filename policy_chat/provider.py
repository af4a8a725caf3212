"""Upstream client for the Azure OpenAI chat-completion deployment.

Issues a single request per chat turn with fixed sampling parameters. Errors
are surfaced to the caller of this module and never retried here.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from policy_chat.config import UpstreamConfig
from policy_chat.models import PromptMessage

# Async callable returning True once the downstream caller has gone away.
DisconnectCheck = Callable[[], Awaitable[bool]]

DISCONNECT_POLL_SECONDS = 0.5


class ConfigurationError(Exception):
    """Raised when the upstream endpoint or credential is not configured."""

    def __init__(self, missing: List[str]) -> None:
        self.missing = missing
        super().__init__("Missing upstream configuration: {}".format(", ".join(missing)))


class UpstreamError(Exception):
    """Raised when the upstream call fails or returns a non-2xx status."""

    def __init__(self, status: Optional[int], body: str) -> None:
        self.status = status
        self.body = body
        super().__init__("Upstream error (status={}): {}".format(status, body))


class ClientDisconnected(Exception):
    """Raised when the caller disconnects while the upstream call is in flight."""


@dataclass
class UpstreamReply:
    """Raw reply text plus usage reported by the upstream service."""

    content: str
    tokens_used: int
    model: str


def build_payload(
    config: UpstreamConfig, messages: List[PromptMessage], max_tokens: int
) -> Dict[str, Any]:
    """Build the chat-completion request body."""
    return {
        "messages": [{"role": m.role, "content": m.content} for m in messages],
        "temperature": config.temperature,
        "max_tokens": max_tokens,
        "top_p": config.top_p,
    }


def _parse_reply(config: UpstreamConfig, data: Any) -> UpstreamReply:
    if not isinstance(data, dict):
        data = {}

    choices = data.get("choices") or [{}]
    first = choices[0] if isinstance(choices, list) and isinstance(choices[0], dict) else {}
    message = first.get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None

    usage = data.get("usage") or {}
    tokens = usage.get("total_tokens") if isinstance(usage, dict) else None

    return UpstreamReply(
        content=content if isinstance(content, str) else "",
        tokens_used=tokens if isinstance(tokens, int) else 0,
        model=config.deployment,
    )


async def call_upstream(
    config: UpstreamConfig,
    messages: List[PromptMessage],
    max_tokens: int,
    client: Optional[httpx.AsyncClient] = None,
) -> UpstreamReply:
    """Call the chat-completion deployment and return its reply.

    Args:
        config: Upstream deployment settings.
        messages: The assembled prompt.
        max_tokens: Generation budget, already capped by the gateway.
        client: Optional HTTP client to reuse (tests inject one with a mock
            transport); a short-lived client is created otherwise.

    Returns:
        An UpstreamReply with the raw content and token usage.

    Raises:
        ConfigurationError: If the endpoint or API key is missing. Raised
            before any network I/O.
        UpstreamError: On transport failure or a non-2xx response.
    """
    endpoint = config.endpoint
    api_key = config.api_key
    missing = [
        name
        for name, value in ((config.endpoint_env, endpoint), (config.api_key_env, api_key))
        if not value
    ]
    if missing:
        raise ConfigurationError(missing)

    url = "{}/openai/deployments/{}/chat/completions".format(
        endpoint.rstrip("/"), config.deployment
    )
    headers = {
        "api-key": api_key,
        "Content-Type": "application/json",
    }
    payload = build_payload(config, messages, max_tokens)

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=config.timeout_seconds) as owned:
                resp = await owned.post(
                    url,
                    params={"api-version": config.api_version},
                    json=payload,
                    headers=headers,
                )
        else:
            resp = await client.post(
                url,
                params={"api-version": config.api_version},
                json=payload,
                headers=headers,
            )
    except httpx.TimeoutException as exc:
        raise UpstreamError(None, "Upstream request timed out: {}".format(exc)) from exc
    except httpx.HTTPError as exc:
        raise UpstreamError(None, "Cannot reach upstream: {}".format(exc)) from exc

    if not resp.is_success:
        raise UpstreamError(resp.status_code, resp.text)

    try:
        data = resp.json()
    except ValueError as exc:
        raise UpstreamError(resp.status_code, "Upstream returned invalid JSON") from exc

    return _parse_reply(config, data)


async def complete_with_deadline(
    config: UpstreamConfig,
    messages: List[PromptMessage],
    max_tokens: int,
    disconnected: Optional[DisconnectCheck] = None,
) -> UpstreamReply:
    """Run call_upstream under the configured deadline.

    If ``disconnected`` is given it is polled while the call is in flight and
    the call is cancelled as soon as the caller has gone.

    Raises:
        ConfigurationError: As call_upstream.
        UpstreamError: As call_upstream, or when the deadline expires.
        ClientDisconnected: If the caller went away first.
    """
    call = asyncio.ensure_future(call_upstream(config, messages, max_tokens))
    watcher = None
    if disconnected is not None:
        watcher = asyncio.ensure_future(_wait_for_disconnect(disconnected))

    try:
        pending = {call} if watcher is None else {call, watcher}
        done, _ = await asyncio.wait(
            pending,
            timeout=config.timeout_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if call in done:
            return call.result()

        call.cancel()
        if watcher is not None and watcher in done:
            watcher.result()
            raise ClientDisconnected()
        raise UpstreamError(
            None, "Upstream call exceeded {}s deadline".format(config.timeout_seconds)
        )
    finally:
        for task in (call, watcher):
            if task is not None and not task.done():
                task.cancel()


async def _wait_for_disconnect(disconnected: DisconnectCheck) -> None:
    while not await disconnected():
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)
