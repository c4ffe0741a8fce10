"""Upstream adapter for OpenAI-compatible completion APIs (e.g. OpenRouter).

Supports a real mode (forwarding to the configured endpoint) and a stub mode
that returns a canned completion when no API key is configured.

Failures are raised as UpstreamError subclasses carrying a ``kind`` and, for
provider-side throttling, a ``retry_after_seconds`` hint parsed from the
provider's error metadata.
"""

import logging
import math
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ghost_gateway.config import UpstreamConfig
from ghost_gateway.prompts import Prompt

_logger = logging.getLogger("gateway")

RATE_LIMITED = "rate_limited"
TRANSPORT = "transport"
INVALID_RESPONSE = "invalid_response"

_STUB_COMPLETION = " and more"
_RETRY_DELAY = re.compile(r'"?retryDelay"?\s*:\s*"(\d+(?:\.\d+)?)s"')


class UpstreamError(Exception):
    """Raised when the upstream call does not produce a completion."""

    kind = TRANSPORT

    def __init__(self, message: str, retry_after_seconds: Optional[int] = None) -> None:
        self.message = message
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


class UpstreamRateLimited(UpstreamError):
    """The provider throttled the request."""

    kind = RATE_LIMITED


class UpstreamTransport(UpstreamError):
    """Network failure, timeout or unexpected HTTP status."""

    kind = TRANSPORT


class UpstreamInvalidResponse(UpstreamError):
    """The provider answered with a payload we cannot use."""

    kind = INVALID_RESPONSE


_ERRORS_BY_KIND = {
    RATE_LIMITED: UpstreamRateLimited,
    TRANSPORT: UpstreamTransport,
    INVALID_RESPONSE: UpstreamInvalidResponse,
}


def make_upstream_error(
    kind: str, message: str, retry_after_seconds: Optional[int] = None
) -> UpstreamError:
    """Rebuild an UpstreamError of the given kind."""
    cls = _ERRORS_BY_KIND.get(kind, UpstreamTransport)
    return cls(message, retry_after_seconds=retry_after_seconds)


@dataclass
class UpstreamResult:
    """Result returned by the upstream adapter."""

    text: str
    model: Optional[str] = None
    request_id: Optional[str] = None


def parse_retry_after(
    headers: Optional[httpx.Headers],
    body: Optional[Dict[str, Any]],
    now: Optional[float] = None,
) -> Optional[int]:
    """Extract a retry hint in whole seconds from a throttled response.

    Looks, in order, at the ``Retry-After`` header, OpenRouter's
    ``error.metadata.headers["X-RateLimit-Reset"]`` (epoch milliseconds) and
    a ``retryDelay`` value embedded in ``error.metadata.raw``.
    """
    if headers is not None:
        value = headers.get("retry-after")
        if value:
            try:
                return max(0, math.ceil(float(value)))
            except ValueError:
                pass

    error = (body or {}).get("error")
    if not isinstance(error, dict):
        return None
    metadata = error.get("metadata")
    if not isinstance(metadata, dict):
        return None

    meta_headers = metadata.get("headers")
    if isinstance(meta_headers, dict):
        reset = meta_headers.get("X-RateLimit-Reset")
        if reset is not None:
            try:
                reset_at = float(reset) / 1000.0
            except (TypeError, ValueError):
                reset_at = None
            if reset_at is not None:
                current = time.time() if now is None else now
                return max(0, math.ceil(reset_at - current))

    raw = metadata.get("raw")
    if isinstance(raw, str):
        match = _RETRY_DELAY.search(raw)
        if match:
            return math.ceil(float(match.group(1)))

    return None


def _error_message(body: Optional[Dict[str, Any]], default: str) -> str:
    error = (body or {}).get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return default


class UpstreamClient:
    """Issues chat completion calls to the configured provider."""

    def __init__(
        self,
        config: UpstreamConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport

    @property
    def stub_mode(self) -> bool:
        return not self._config.api_key

    async def complete(self, prompt: Prompt) -> UpstreamResult:
        """Call the provider and return the raw completion text.

        If the API key is not set in the environment, returns a stub
        completion so the gateway can run without real credentials.

        Raises:
            UpstreamRateLimited: If the provider throttled the request.
            UpstreamTransport: On network errors, timeouts or HTTP errors.
            UpstreamInvalidResponse: If the payload has no usable completion.
        """
        api_key = self._config.api_key
        if not api_key:
            return UpstreamResult(
                text=_STUB_COMPLETION,
                model=prompt.model,
                request_id="stub-{}".format(uuid.uuid4().hex[:8]),
            )
        return await self._real_request(prompt, api_key)

    async def _real_request(self, prompt: Prompt, api_key: str) -> UpstreamResult:
        """Forward the request to an OpenAI-compatible API endpoint."""
        url = "{}/chat/completions".format(self._config.base_url.rstrip("/"))
        headers = {
            "Authorization": "Bearer {}".format(api_key),
            "Content-Type": "application/json",
        }
        payload = {
            "model": prompt.model,
            "messages": prompt.messages,
            "max_tokens": prompt.max_tokens,
            "temperature": prompt.temperature,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._config.timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise UpstreamTransport("Upstream timed out: {}".format(exc)) from exc
        except httpx.HTTPError as exc:
            raise UpstreamTransport("Failed to reach upstream: {}".format(exc)) from exc

        return self._parse_response(resp)

    def _parse_response(self, resp: httpx.Response) -> UpstreamResult:
        try:
            data = resp.json()
        except ValueError:
            data = None
        body = data if isinstance(data, dict) else None

        status = resp.status_code
        # OpenRouter reports some provider errors with HTTP 200 and an error object.
        if body is not None and isinstance(body.get("error"), dict) and status < 400:
            code = body["error"].get("code")
            status = code if isinstance(code, int) else 502

        if status == 429:
            retry_after = parse_retry_after(resp.headers, body)
            _logger.warning("Upstream rate limited (retry after %s s)", retry_after)
            raise UpstreamRateLimited(
                _error_message(body, "Upstream rate limit exceeded."),
                retry_after_seconds=retry_after,
            )
        if status >= 400:
            raise UpstreamTransport(
                _error_message(body, "Upstream returned HTTP {}.".format(status))
            )
        if body is None:
            raise UpstreamInvalidResponse("Upstream returned a non-JSON payload.")

        choices = body.get("choices")
        if not isinstance(choices, list) or not choices:
            raise UpstreamInvalidResponse("Upstream response has no choices.")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise UpstreamInvalidResponse("Upstream response has no message.")
        content = message.get("content")
        if content is None:
            content = ""
        if not isinstance(content, str):
            raise UpstreamInvalidResponse("Upstream message content is not text.")

        return UpstreamResult(
            text=content,
            model=body.get("model"),
            request_id=body.get("id"),
        )
