"""Logging and telemetry for the completion gateway.

Emits structured log records to stdout and appends them to an append-only
log file for local review. Request text is never logged, only its length.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("gateway")


def setup_logging(log_file: str) -> None:
    """Configure the gateway logger with stdout and file handlers.

    Args:
        log_file: Path to the append-only log file.
    """
    logger.setLevel(logging.INFO)

    if not logger.handlers:
        stdout_handler = logging.StreamHandler()
        stdout_handler.setLevel(logging.INFO)
        stdout_fmt = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
        stdout_handler.setFormatter(stdout_fmt)
        logger.addHandler(stdout_handler)

        log_path = Path(log_file)
        os.makedirs(log_path.parent, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="a")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(stdout_fmt)
        logger.addHandler(file_handler)


def log_request(
    *,
    client_id: str,
    outcome: str,
    cache_state: Optional[str] = None,
    text_length: Optional[int] = None,
    latency_ms: Optional[float] = None,
    error: Optional[str] = None,
    retry_after: Optional[int] = None,
    request_id: Optional[str] = None
) -> None:
    """Log a single request event as one JSON line.

    Args:
        client_id: The caller's identifier.
        outcome: Short outcome label (e.g. "success", "rate_limited", "error").
        cache_state: "hit", "miss" or "wait" for served requests.
        text_length: Length of the submitted text.
        latency_ms: Time spent serving the request.
        error: Error message if the request failed.
        retry_after: Retry hint returned to the caller, if any.
        request_id: Gateway-assigned request ID.
    """
    record: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "client_id": client_id,
        "outcome": outcome,
    }

    if cache_state:
        record["cache"] = cache_state

    if text_length is not None:
        record["text_length"] = text_length

    if latency_ms is not None:
        record["latency_ms"] = round(latency_ms, 1)

    if error:
        record["error"] = error

    if retry_after is not None:
        record["retry_after"] = retry_after

    logger.info(json.dumps(record))
