"""Logging and telemetry for the policy chat gateway.

Emits structured log records to stdout and appends them to an append-only
log file for local review. Request records carry decision metadata only;
caller message content is never logged.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("gateway")


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logging(log_file: str, level: str = "INFO") -> None:
    """Attach console and log-file handlers to the gateway logger.

    Safe to call more than once; handlers are only added the first time.

    Args:
        log_file: Path of the append-only log file; parent directories are
            created as needed.
        level: Level name applied to the logger and both handlers.
    """
    numeric_level = logging.getLevelName(level.upper())
    logger.setLevel(numeric_level)
    if logger.handlers:
        return

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")

    log_path = Path(log_file)
    os.makedirs(log_path.parent, exist_ok=True)

    for handler in (logging.StreamHandler(), logging.FileHandler(log_path, mode="a")):
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)


def log_request(
    *,
    request_id: str,
    client_key: str,
    outcome: str,
    elapsed_ms: int,
    mode: Optional[str] = None,
    message_count: Optional[int] = None,
    max_tokens: Optional[int] = None,
    tokens_used: Optional[int] = None,
    parse: Optional[str] = None,
    error: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    """Log a single request outcome as a JSON line.

    Args:
        request_id: Gateway-assigned request ID.
        client_key: The rate-limit key of the caller.
        outcome: Short outcome label (e.g. "success", "rate_limited").
        elapsed_ms: Time since the request was received.
        mode: Chat mode, once known.
        message_count: Number of messages sent upstream.
        max_tokens: Token ceiling sent upstream.
        tokens_used: Tokens reported by the upstream service.
        parse: "structured" or "fallback" for the reply extraction.
        error: Operator-facing error detail; never echoed to the caller.
        level: Log level for the record.
    """
    record: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "client_key": client_key,
        "outcome": outcome,
        "elapsed_ms": elapsed_ms,
    }

    optional = {
        "mode": mode,
        "message_count": message_count,
        "max_tokens": max_tokens,
        "tokens_used": tokens_used,
        "parse": parse,
        "error": error,
    }
    record.update({k: v for k, v in optional.items() if v is not None})

    logger.log(level, json.dumps(record))
