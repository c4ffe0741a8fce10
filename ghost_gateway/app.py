"""FastAPI application for the ghost-text completion gateway.

Provides a /complete endpoint that validates requests, rate limits the
caller, and serves completions through the CompletionGateway (cache,
negative cache, request coalescing, upstream call, sanitizer), plus
/health and /ping liveness probes.

Components are built once per process by init_gateway() and live in this
module's process-wide context; tests reset them with monkeypatch.
"""

import asyncio
import contextlib
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ghost_gateway.config import GatewayConfig, load_config
from ghost_gateway.gateway import CompletionGateway, build_gateway
from ghost_gateway.limiter import ANONYMOUS_CLIENT, RateLimitExceeded
from ghost_gateway.models import (
    CompletionRequest,
    CompletionResponse,
    ErrorResponse,
    HealthResponse,
)
from ghost_gateway.router import resolve_model
from ghost_gateway.sanitizer import DenyList, load_deny_list
from ghost_gateway.telemetry import log_request, setup_logging
from ghost_gateway.upstream import UpstreamClient, UpstreamError, UpstreamRateLimited

CONFIG_PATH = os.getenv("GATEWAY_CONFIG", "config/example.config.json")

_logger = logging.getLogger("gateway")

_config: Optional[GatewayConfig] = None
_gateway: Optional[CompletionGateway] = None

_INTERNAL_ERROR = "An error occurred while processing the request."


def get_config() -> GatewayConfig:
    """Return the loaded gateway configuration (lazy-init)."""
    global _config
    if _config is None:
        _config = load_config(CONFIG_PATH)
    return _config


def _load_deny_list(config: GatewayConfig) -> Optional[DenyList]:
    if not config.sanitizer_file:
        return None
    try:
        return load_deny_list(config.sanitizer_file)
    except (FileNotFoundError, ValueError) as exc:
        _logger.warning("Using default sanitizer deny list: %s", exc)
        return None


def init_gateway(config: GatewayConfig) -> CompletionGateway:
    """Build the process-wide gateway from configuration.

    Raises:
        RoutingError: If the default model is not in the model catalog.
    """
    global _gateway
    profile = resolve_model(config)
    upstream = UpstreamClient(config.upstream)
    if upstream.stub_mode:
        _logger.warning(
            "No API key in $%s; serving stub completions", config.upstream.api_key_env
        )
    _gateway = build_gateway(config, upstream, profile, _load_deny_list(config))
    return _gateway


def get_gateway() -> CompletionGateway:
    """Return the completion gateway (lazy-init from config)."""
    if _gateway is None:
        return init_gateway(get_config())
    return _gateway


async def _sweep_periodically(gateway: CompletionGateway, interval: float) -> None:
    """Reclaim expired cache entries and stale rate-limit buckets forever."""
    while True:
        await asyncio.sleep(interval)
        removed = gateway.sweep()
        _logger.info("Sweep removed %s", removed)


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Initialize config, logging and the gateway; run the periodic sweep."""
    cfg = get_config()
    setup_logging(cfg.log_file)
    gateway = get_gateway()
    sweeper = None
    if cfg.sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(
            _sweep_periodically(gateway, cfg.sweep_interval_seconds)
        )
    yield
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper


app = FastAPI(title="Ghost Text Completion Gateway", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def client_id_from(request: Request) -> str:
    """Best-effort client identity: forwarded address, real IP, then peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    if request.client is not None and request.client.host:
        return request.client.host
    return ANONYMOUS_CLIENT


def _error_response(
    status: int, message: str, retry_after: Optional[int] = None
) -> JSONResponse:
    """Build a consistent JSON error response."""
    headers: Dict[str, str] = {}
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    body = ErrorResponse(error=message)
    return JSONResponse(status_code=status, content=body.model_dump(), headers=headers)


@app.post("/complete", response_model=None)
async def complete(body: CompletionRequest, http_request: Request) -> JSONResponse:
    """Return the ghost-text continuation for the text before the cursor.

    Responses:
    - 200 {"text": ...}; an empty string means no suggestion
    - 429 with Retry-After when the client or the upstream is rate limited
    - 500 {"error": ...} on any other failure
    """
    client_id = client_id_from(http_request)
    request_id = "gc-{}".format(uuid.uuid4().hex[:12])
    started = time.monotonic()

    def _log(outcome: str, **kwargs) -> None:
        log_request(
            client_id=client_id,
            outcome=outcome,
            text_length=len(body.text),
            latency_ms=(time.monotonic() - started) * 1000.0,
            request_id=request_id,
            **kwargs
        )

    try:
        outcome = await get_gateway().complete(body, client_id)
    except RateLimitExceeded as exc:
        _log("rate_limited", error=exc.detail, retry_after=exc.retry_after_seconds)
        return _error_response(429, exc.detail, exc.retry_after_seconds)
    except UpstreamRateLimited as exc:
        _log("upstream_rate_limited", error=exc.message, retry_after=exc.retry_after_seconds)
        return _error_response(
            429,
            "Upstream rate limit exceeded; retry later.",
            exc.retry_after_seconds,
        )
    except UpstreamError as exc:
        _log("upstream_error", error="{}: {}".format(exc.kind, exc.message))
        return _error_response(500, _INTERNAL_ERROR)
    except Exception as exc:
        _logger.exception("Unhandled error while serving a completion")
        _log("internal_error", error=str(exc))
        return _error_response(500, _INTERNAL_ERROR)

    _log("success", cache_state=outcome.cache_state)
    response = CompletionResponse(text=outcome.text)
    return JSONResponse(status_code=200, content=response.model_dump())


@app.get("/health", response_model=HealthResponse)
@app.get("/ping", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness probe with cache and in-flight counters."""
    return HealthResponse(status="ok", **get_gateway().stats())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert FastAPI's validation errors into our error envelope format."""
    return _error_response(422, "Request validation failed: {}".format(exc.errors()))


def main() -> None:
    """Serve the gateway with uvicorn."""
    import uvicorn

    uvicorn.run(
        "ghost_gateway.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
    )
