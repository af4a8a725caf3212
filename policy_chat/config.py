"""Configuration loader for the policy chat gateway.

Reads an optional JSON config file containing upstream deployment settings,
request limits, and rate-limit parameters. The upstream endpoint and API key
are resolved from environment variables named in the config, so credentials
never live in the file itself.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

DEFAULT_APP_BASE_URL = "https://contoso.sharepoint.com/sites/PolicyManager/SitePages"


@dataclass
class UpstreamConfig:
    """Chat-completion deployment settings."""

    endpoint_env: str = "AZURE_OPENAI_ENDPOINT"
    api_key_env: str = "AZURE_OPENAI_API_KEY"
    deployment: str = "gpt-4o"
    api_version: str = "2024-02-15-preview"
    temperature: float = 0.7
    top_p: float = 0.95
    timeout_seconds: float = 25.0

    @property
    def endpoint(self) -> Optional[str]:
        """Resolve the endpoint URL from the environment variable."""
        return os.getenv(self.endpoint_env) or None

    @property
    def api_key(self) -> Optional[str]:
        """Resolve the API key from the environment variable."""
        return os.getenv(self.api_key_env) or None

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.api_key)


@dataclass
class LimitsConfig:
    """Caller-facing request limits."""

    max_message_length: int = 2000
    max_history_messages: int = 10
    max_policy_context: int = 5
    max_tokens_default: int = 1000
    max_tokens_ceiling: int = 2000
    max_context_chars: int = 20000


@dataclass
class RateLimitConfig:
    """Rate-limit parameters (per client key)."""

    max_requests: int = 20
    window_seconds: float = 60.0


@dataclass
class CorsConfig:
    allow_origin: str = "*"


@dataclass
class GatewayConfig:
    """Top-level gateway configuration."""

    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    cors: CorsConfig = field(default_factory=CorsConfig)
    app_base_url: str = DEFAULT_APP_BASE_URL
    log_file: str = "logs/gateway.log"
    log_level: str = "INFO"


def _check(config: GatewayConfig) -> None:
    """Reject settings that would break the gateway's bounds."""
    limits = config.limits
    for name in (
        "max_message_length",
        "max_history_messages",
        "max_policy_context",
        "max_tokens_default",
        "max_tokens_ceiling",
        "max_context_chars",
    ):
        if getattr(limits, name) <= 0:
            raise ValueError("limits.{} must be positive".format(name))

    if limits.max_tokens_default > limits.max_tokens_ceiling:
        raise ValueError(
            "limits.max_tokens_default ({}) exceeds limits.max_tokens_ceiling ({})".format(
                limits.max_tokens_default, limits.max_tokens_ceiling
            )
        )

    if config.rate_limit.max_requests <= 0 or config.rate_limit.window_seconds <= 0:
        raise ValueError("rate_limit values must be positive")

    if not isinstance(logging.getLevelName(config.log_level.upper()), int):
        raise ValueError("log_level {!r} is not a logging level".format(config.log_level))

    if config.upstream.timeout_seconds <= 0:
        raise ValueError("upstream.timeout_seconds must be positive")


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Return a config section, which must be a JSON object when present."""
    value = raw.get(name, {})
    if not isinstance(value, dict):
        raise ValueError("Config section '{}' must be a JSON object".format(name))
    return value


def load_config(path: Union[str, Path]) -> GatewayConfig:
    """Load gateway configuration from a JSON file.

    Missing keys fall back to the dataclass defaults. The deployment name and
    API version may also be overridden through ``AZURE_OPENAI_DEPLOYMENT`` and
    ``AZURE_OPENAI_API_VERSION``.

    Args:
        path: Path to the JSON config file.

    Returns:
        A fully resolved GatewayConfig instance.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the config file contains invalid data.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            raw: Dict[str, Any] = json.load(f)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Config file is not valid JSON: {path}") from exc

    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a JSON object: {path}")

    upstream_raw = _section(raw, "upstream")
    defaults = UpstreamConfig()
    upstream = UpstreamConfig(
        endpoint_env=upstream_raw.get("endpoint_env", defaults.endpoint_env),
        api_key_env=upstream_raw.get("api_key_env", defaults.api_key_env),
        deployment=upstream_raw.get("deployment", defaults.deployment),
        api_version=upstream_raw.get("api_version", defaults.api_version),
        temperature=float(upstream_raw.get("temperature", defaults.temperature)),
        top_p=float(upstream_raw.get("top_p", defaults.top_p)),
        timeout_seconds=float(
            upstream_raw.get("timeout_seconds", defaults.timeout_seconds)
        ),
    )

    limits_raw = _section(raw, "limits")
    limits = LimitsConfig(
        **{
            name: int(limits_raw[name])
            for name in LimitsConfig.__dataclass_fields__
            if name in limits_raw
        }
    )

    rate_limit_raw = _section(raw, "rate_limit")
    rate_limit = RateLimitConfig(
        max_requests=int(rate_limit_raw.get("max_requests", 20)),
        window_seconds=float(rate_limit_raw.get("window_seconds", 60.0)),
    )

    cors_raw = _section(raw, "cors")
    cors = CorsConfig(allow_origin=cors_raw.get("allow_origin", "*"))

    config = GatewayConfig(
        upstream=upstream,
        limits=limits,
        rate_limit=rate_limit,
        cors=cors,
        app_base_url=raw.get("app_base_url", DEFAULT_APP_BASE_URL).rstrip("/"),
        log_file=raw.get("log_file", "logs/gateway.log"),
        log_level=str(raw.get("log_level", "INFO")),
    )
    apply_env_overrides(config)
    _check(config)
    return config


def apply_env_overrides(config: GatewayConfig) -> GatewayConfig:
    """Apply deployment/API-version overrides from the environment."""
    deployment = os.getenv("AZURE_OPENAI_DEPLOYMENT")
    if deployment:
        config.upstream.deployment = deployment

    api_version = os.getenv("AZURE_OPENAI_API_VERSION")
    if api_version:
        config.upstream.api_version = api_version

    return config
