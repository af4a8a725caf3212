"""FastAPI application for the policy chat gateway.

Provides a single chat-completion endpoint that admits the caller against a
per-client quota, validates the payload, assembles a bounded and sanitized
prompt, calls the upstream deployment, and converts the model's reply into a
structured response with citations and suggested actions.

Request flow:
1. CORS preflight (OPTIONS) short-circuits everything else
2. Rate limiting BEFORE the body is read
3. Validation BEFORE any upstream call
4. Upstream errors are logged in full but reported to callers generically
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError as SchemaError

from policy_chat.assembler import AssembledPrompt, assemble_for_request
from policy_chat.config import GatewayConfig, apply_env_overrides, load_config
from policy_chat.extractor import RawReply, parse_reply, to_extracted
from policy_chat.limiter import RateLimiter
from policy_chat.models import (
    ChatMode,
    ChatRequest,
    ChatResponse,
    Citation,
    ErrorResponse,
    ResponseMetadata,
)
from policy_chat.provider import (
    ClientDisconnected,
    ConfigurationError,
    UpstreamError,
    complete_with_deadline,
)
from policy_chat.telemetry import log_request, setup_logging
from policy_chat.validator import validate_request

CONFIG_PATH = os.getenv("POLICY_CHAT_CONFIG")

CHAT_PATH = "/api/policyChatCompletion"

THROTTLED_MESSAGE = "Too many requests. Please wait a moment before trying again."
NOT_CONFIGURED_MESSAGE = "AI service not configured. Contact your administrator."
UPSTREAM_MESSAGE = "AI service temporarily unavailable. Please try again in a moment."
INTERNAL_MESSAGE = "An unexpected error occurred. Please try again."
INVALID_JSON_MESSAGE = "Request body must be valid JSON"

# Non-standard status used by proxies for "client closed request".
CLIENT_CLOSED_REQUEST = 499

logger = logging.getLogger("gateway")

_config: Optional[GatewayConfig] = None
_limiter: Optional[RateLimiter] = None


def get_config() -> GatewayConfig:
    """Return the loaded gateway configuration (lazy-init)."""
    global _config
    if _config is None:
        if CONFIG_PATH:
            _config = load_config(CONFIG_PATH)
        else:
            _config = apply_env_overrides(GatewayConfig())
    return _config


def get_limiter() -> RateLimiter:
    """Return the process-wide rate limiter (lazy-init from config)."""
    global _limiter
    if _limiter is None:
        cfg = get_config()
        _limiter = RateLimiter(
            max_requests=cfg.rate_limit.max_requests,
            window_seconds=cfg.rate_limit.window_seconds,
        )
    return _limiter


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Initialize config, logging, and the rate limiter on startup."""
    cfg = get_config()
    setup_logging(cfg.log_file, cfg.log_level)
    get_limiter()
    if not cfg.upstream.is_configured:
        logger.warning(
            "Upstream not configured: set %s and %s",
            cfg.upstream.endpoint_env,
            cfg.upstream.api_key_env,
        )
    yield


app = FastAPI(title="Policy Chat Gateway", version="1.0.0", lifespan=lifespan)


def client_key_for(request: Request) -> str:
    """Rate-limit key: leftmost X-Forwarded-For entry, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client:
        return request.client.host
    return "unknown"


def _cors_headers(config: GatewayConfig) -> Dict[str, str]:
    return {"Access-Control-Allow-Origin": config.cors.allow_origin}


def _error_response(config: GatewayConfig, status: int, message: str) -> JSONResponse:
    """Build a consistent JSON error response."""
    body = ErrorResponse(error=message)
    return JSONResponse(
        status_code=status, content=body.model_dump(), headers=_cors_headers(config)
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def parse_chat_request(
    payload: object, config: GatewayConfig
) -> Tuple[Optional[ChatRequest], Optional[str]]:
    """Validate a decoded body; return the request or a caller-facing problem."""
    problem = validate_request(payload, config.limits)
    if problem is not None:
        return None, problem.message

    try:
        return ChatRequest.model_validate(payload), None
    except SchemaError as exc:
        loc = exc.errors()[0]["loc"]
        return None, "Invalid field: {}".format(".".join(str(p) for p in loc))


def ground_citations(
    citations: List[Citation], request: ChatRequest
) -> List[Citation]:
    """Keep only citations that point at a policy the caller actually supplied.

    Help mode never cites; other modes may only cite the provided context.
    """
    if request.mode == ChatMode.GENERAL_HELP or request.policy_context is None:
        return []

    known = {str(p.id) for p in request.policy_context.policies}
    return [c for c in citations if str(c.policy_id) in known]


@app.get("/healthz")
async def healthz() -> Dict[str, object]:
    """Liveness probe; reports whether upstream settings are present."""
    return {"status": "ok", "upstreamConfigured": get_config().upstream.is_configured}


@app.api_route(CHAT_PATH, methods=["POST", "OPTIONS"], response_model=None)
async def policy_chat_completion(request: Request) -> Response:
    """Handle a policy chat completion request.

    Outcomes:
    - OPTIONS: 204 with CORS headers
    - quota exceeded: 429, no upstream call
    - invalid payload: 400 naming the violated constraint, no upstream call
    - upstream not configured: 500
    - upstream failure or timeout: 502
    - success: 200 with message, citations, suggested actions and metadata
    """
    started = time.monotonic()
    config = get_config()
    request_id = "chat-{}".format(uuid.uuid4().hex[:12])
    client_key = client_key_for(request)

    # --- CORS preflight ---
    if request.method == "OPTIONS":
        return Response(
            status_code=204,
            headers={
                "Access-Control-Allow-Origin": config.cors.allow_origin,
                "Access-Control-Allow-Methods": "POST, OPTIONS",
                "Access-Control-Allow-Headers": "Content-Type",
            },
        )

    # --- Rate limiting ---
    if not get_limiter().admit(client_key):
        log_request(
            request_id=request_id,
            client_key=client_key,
            outcome="rate_limited",
            elapsed_ms=_elapsed_ms(started),
        )
        return _error_response(config, 429, THROTTLED_MESSAGE)

    mode: Optional[str] = None
    prompt: Optional[AssembledPrompt] = None
    try:
        # --- Parse and validate ---
        try:
            payload = json.loads(await request.body())
        except (ValueError, RecursionError):
            log_request(
                request_id=request_id,
                client_key=client_key,
                outcome="invalid_request",
                elapsed_ms=_elapsed_ms(started),
                error="body is not valid JSON",
            )
            return _error_response(config, 400, INVALID_JSON_MESSAGE)

        chat_request, problem_message = parse_chat_request(payload, config)
        if chat_request is None:
            log_request(
                request_id=request_id,
                client_key=client_key,
                outcome="invalid_request",
                elapsed_ms=_elapsed_ms(started),
                error=problem_message,
            )
            return _error_response(config, 400, problem_message)

        mode = chat_request.mode.value

        # --- Prompt assembly ---
        prompt = assemble_for_request(
            chat_request, config.limits, config.app_base_url
        )

        # --- Upstream call ---
        reply = await complete_with_deadline(
            config.upstream,
            prompt.messages,
            prompt.max_tokens,
            disconnected=request.is_disconnected,
        )

        # --- Extraction ---
        parsed = parse_reply(reply.content)
        extracted = to_extracted(parsed)

        response = ChatResponse(
            message=extracted.message,
            citations=ground_citations(extracted.citations, chat_request),
            suggested_actions=extracted.suggested_actions,
            metadata=ResponseMetadata(
                model=reply.model,
                tokens_used=reply.tokens_used,
                processing_time_ms=_elapsed_ms(started),
            ),
        )
    except ConfigurationError as exc:
        log_request(
            request_id=request_id,
            client_key=client_key,
            outcome="configuration_error",
            elapsed_ms=_elapsed_ms(started),
            mode=mode,
            error=str(exc),
            level=logging.ERROR,
        )
        return _error_response(config, 500, NOT_CONFIGURED_MESSAGE)
    except UpstreamError as exc:
        log_request(
            request_id=request_id,
            client_key=client_key,
            outcome="upstream_error",
            elapsed_ms=_elapsed_ms(started),
            mode=mode,
            message_count=len(prompt.messages) if prompt else None,
            max_tokens=prompt.max_tokens if prompt else None,
            error=str(exc),
            level=logging.WARNING,
        )
        return _error_response(config, 502, UPSTREAM_MESSAGE)
    except ClientDisconnected:
        log_request(
            request_id=request_id,
            client_key=client_key,
            outcome="client_disconnected",
            elapsed_ms=_elapsed_ms(started),
            mode=mode,
        )
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    except Exception as exc:
        logger.exception("Unhandled error in request %s", request_id)
        log_request(
            request_id=request_id,
            client_key=client_key,
            outcome="internal_error",
            elapsed_ms=_elapsed_ms(started),
            mode=mode,
            error=type(exc).__name__,
            level=logging.ERROR,
        )
        return _error_response(config, 500, INTERNAL_MESSAGE)

    # --- Telemetry ---
    log_request(
        request_id=request_id,
        client_key=client_key,
        outcome="success",
        elapsed_ms=response.metadata.processing_time_ms,
        mode=mode,
        message_count=len(prompt.messages),
        max_tokens=prompt.max_tokens,
        tokens_used=reply.tokens_used,
        parse="fallback" if isinstance(parsed, RawReply) else "structured",
    )

    return JSONResponse(
        status_code=200,
        content=response.model_dump(by_alias=True),
        headers=_cors_headers(config),
    )
