"""Shared test fixtures for the policy chat gateway tests."""

import json
import logging
from pathlib import Path
from typing import Dict, Iterator, Optional

import pytest

from policy_chat.config import GatewayConfig, LimitsConfig, load_config
from policy_chat.telemetry import setup_logging


def _make_config(tmp_path: Path, overrides: Optional[Dict] = None) -> str:
    """Write a minimal test config and return its path."""
    config = {
        "upstream": {
            "endpoint_env": "TEST_OPENAI_ENDPOINT",
            "api_key_env": "TEST_OPENAI_KEY",
            "deployment": "test-deployment",
            "api_version": "2024-02-15-preview",
            "timeout_seconds": 5,
        },
        "limits": {
            "max_message_length": 200,
            "max_history_messages": 4,
            "max_policy_context": 3,
            "max_tokens_default": 500,
            "max_tokens_ceiling": 800,
        },
        "rate_limit": {
            "max_requests": 5,
            "window_seconds": 60,
        },
        "app_base_url": "https://intranet.example.com/policies/",
        "log_file": str(tmp_path / "test.log"),
    }
    if overrides:
        config.update(overrides)

    path = tmp_path / "test_config.json"
    path.write_text(json.dumps(config))
    return str(path)


@pytest.fixture()
def make_config_path(tmp_path: Path):
    """Return a factory writing a test config with optional overrides."""

    def factory(overrides: Optional[Dict] = None) -> str:
        return _make_config(tmp_path, overrides)

    return factory


@pytest.fixture()
def test_config_path(tmp_path: Path) -> str:
    """Return the path to a temporary test config file."""
    return _make_config(tmp_path)


@pytest.fixture()
def test_config(test_config_path: str, monkeypatch: pytest.MonkeyPatch) -> GatewayConfig:
    """Return a loaded test GatewayConfig."""
    monkeypatch.delenv("AZURE_OPENAI_DEPLOYMENT", raising=False)
    monkeypatch.delenv("AZURE_OPENAI_API_VERSION", raising=False)
    return load_config(test_config_path)


@pytest.fixture()
def limits() -> LimitsConfig:
    """Return the production default limits."""
    return LimitsConfig()


@pytest.fixture()
def gateway_log(tmp_path: Path) -> Iterator[Path]:
    """Route the gateway logger to a temporary file; detach it afterwards."""
    log_file = tmp_path / "logs" / "gateway.log"
    setup_logging(str(log_file))
    yield log_file

    gateway_logger = logging.getLogger("gateway")
    for handler in list(gateway_logger.handlers):
        handler.close()
        gateway_logger.removeHandler(handler)
    gateway_logger.setLevel(logging.NOTSET)
