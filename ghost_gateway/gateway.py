"""Completion gateway: the orchestration core between clients and the upstream.

Request flow:
1. Rate limit the client (rejections never touch the cache)
2. Derive the cache key from everything that shapes the prompt
3. Serve from the completion cache, then from the error cache
4. Join an identical upstream call that is already in flight
5. Otherwise call the upstream once, sanitize, and cache the outcome

At most one upstream call per cache key is outstanding at any time. The
in-flight task removes itself from the map when it settles, whatever the
outcome, and keeps running if the caller that started it disconnects.
"""

import asyncio
import hashlib
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ghost_gateway.cache import TTLCache
from ghost_gateway.config import GatewayConfig, ModelProfile
from ghost_gateway.limiter import RateLimiter
from ghost_gateway.models import CompletionRequest
from ghost_gateway.prompts import build_prompt
from ghost_gateway.sanitizer import DenyList, clean_completion, fit_to_input
from ghost_gateway.upstream import (
    RATE_LIMITED,
    UpstreamError,
    UpstreamTransport,
    make_upstream_error,
)

_logger = logging.getLogger("gateway")

HIT = "hit"
MISS = "miss"
WAIT = "wait"


@dataclass
class ErrorCacheEntry:
    """A remembered upstream failure."""

    kind: str
    error_message: str
    retry_after_seconds: Optional[int] = None

    @classmethod
    def from_error(cls, exc: UpstreamError) -> "ErrorCacheEntry":
        return cls(
            kind=exc.kind,
            error_message=exc.message,
            retry_after_seconds=exc.retry_after_seconds,
        )

    def to_error(self) -> UpstreamError:
        return make_upstream_error(
            self.kind, self.error_message, self.retry_after_seconds
        )


@dataclass
class CompletionOutcome:
    """A completion and how it was obtained (hit, miss or wait)."""

    text: str
    cache_state: str


def normalize_text(text: str) -> str:
    """Trim, lower-case and collapse whitespace runs."""
    return " ".join(text.split()).lower()


def _digest(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _normalize_field(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip().lower() or None


def make_cache_key(request: CompletionRequest, text: str, model_id: str) -> str:
    """Compute the cache key for a request.

    Covers every field that shapes the prompt, so two requests that would
    produce the same prompt share a key. Screenshots contribute a digest.
    """
    fields: Dict[str, Any] = {
        "text": normalize_text(text),
        "url": request.url.strip(),
        "previous_tab_url": (request.previousTabUrl or "").strip() or None,
        "country": _normalize_field(request.userCountry),
        "city": _normalize_field(request.userCity),
        "screenshot": _digest(request.screenshot),
        "previous_screenshot": _digest(request.previousScreenshot),
        "model": model_id,
    }
    canonical = json.dumps(fields, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class CompletionGateway:
    """Caching, coalescing, rate-limited front for an upstream client.

    Every collaborator is injected, so tests can build a gateway around a
    fake upstream and fresh stores.
    """

    def __init__(
        self,
        upstream: Any,
        profile: ModelProfile,
        cache: Optional[TTLCache[str]] = None,
        error_cache: Optional[TTLCache[ErrorCacheEntry]] = None,
        limiter: Optional[RateLimiter] = None,
        deny_list: Optional[DenyList] = None,
        max_text_length: int = 2000,
        upstream_timeout: Optional[float] = None,
    ) -> None:
        self._upstream = upstream
        self._profile = profile
        self._cache = cache if cache is not None else TTLCache()
        self._error_cache = (
            error_cache if error_cache is not None else TTLCache(ttl=30.0)
        )
        self._limiter = limiter if limiter is not None else RateLimiter()
        self._deny_list = deny_list
        self._max_text_length = max_text_length
        self._upstream_timeout = upstream_timeout
        self._in_flight: Dict[str, "asyncio.Task[str]"] = {}

    @property
    def cache(self) -> TTLCache[str]:
        return self._cache

    @property
    def error_cache(self) -> TTLCache[ErrorCacheEntry]:
        return self._error_cache

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def bound_text(self, text: str) -> str:
        """Keep only the last max_text_length characters (nearest the cursor)."""
        if len(text) > self._max_text_length:
            return text[-self._max_text_length:]
        return text

    def cache_key(self, request: CompletionRequest) -> str:
        return make_cache_key(
            request, self.bound_text(request.text), self._profile.model_id
        )

    async def complete(
        self, request: CompletionRequest, client_id: Optional[str] = None
    ) -> CompletionOutcome:
        """Return the completion for request.

        Args:
            request: The validated completion request.
            client_id: Best-effort client identifier for rate limiting.

        Returns:
            A CompletionOutcome. An empty text means no suggestion.

        Raises:
            RateLimitExceeded: If the client exceeded its local quota.
            UpstreamError: If the upstream failed now or within the error TTL.
        """
        self._limiter.check(client_id)

        text = self.bound_text(request.text)
        key = make_cache_key(request, text, self._profile.model_id)

        entry = self._cache.get(key)
        if entry is not None:
            _logger.debug("Completion cache hit for key %s", key[:16])
            return CompletionOutcome(
                text=fit_to_input(entry.value, text), cache_state=HIT
            )

        error_entry = self._error_cache.get(key)
        if error_entry is not None:
            _logger.debug("Error cache hit for key %s", key[:16])
            raise error_entry.value.to_error()

        # No await between lookup and registration: the check-then-insert
        # is atomic on the event loop.
        task = self._in_flight.get(key)
        state = WAIT
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._fetch(key, request, text)
            )
            task.add_done_callback(_retrieve_exception)
            self._in_flight[key] = task
            state = MISS
        else:
            _logger.debug("Joining in-flight request for key %s", key[:16])

        # Shielded so a disconnecting caller does not cancel the shared call.
        value = await asyncio.shield(task)
        # Cached values keep their new-word space; each caller's own input
        # decides whether it is shown.
        return CompletionOutcome(text=fit_to_input(value, text), cache_state=state)

    async def _fetch(self, key: str, request: CompletionRequest, text: str) -> str:
        """Run the single upstream call for key and cache its outcome."""
        try:
            prompt = build_prompt(request, text, self._profile)
            try:
                result = await asyncio.wait_for(
                    self._upstream.complete(prompt), timeout=self._upstream_timeout
                )
            except asyncio.TimeoutError as exc:
                raise UpstreamTransport(
                    "Upstream timed out after {}s.".format(self._upstream_timeout)
                ) from exc
            except UpstreamError:
                raise
            except Exception as exc:
                _logger.exception("Unexpected upstream failure")
                raise UpstreamTransport("Upstream call failed: {}".format(exc)) from exc

            completion = clean_completion(result.text, text, self._deny_list)
            value = completion or ""
            self._cache.set(key, value)
            return value
        except UpstreamError as exc:
            self._remember_error(key, exc)
            raise
        finally:
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]

    def _remember_error(self, key: str, exc: UpstreamError) -> None:
        ttl = self._error_cache.ttl
        if exc.retry_after_seconds is not None:
            ttl = float(exc.retry_after_seconds)
        ttl = min(ttl, self._cache.ttl)
        if exc.kind == RATE_LIMITED and exc.retry_after_seconds is None:
            # Throttled callers always get a hint: the time this error is replayed.
            exc.retry_after_seconds = max(1, int(math.ceil(ttl)))
        self._error_cache.set(key, ErrorCacheEntry.from_error(exc), ttl=ttl)
        _logger.warning(
            "Caching upstream %s error for %.0fs: %s", exc.kind, ttl, exc.message
        )

    def sweep(self) -> Dict[str, int]:
        """Reclaim expired cache entries and stale rate-limit buckets."""
        return {
            "cache": self._cache.sweep(),
            "error_cache": self._error_cache.sweep(),
            "rate_limit": self._limiter.sweep(),
        }

    def stats(self) -> Dict[str, int]:
        return {
            "cache_size": len(self._cache),
            "error_cache_size": len(self._error_cache),
            "in_flight": self.in_flight_count,
        }


def _retrieve_exception(task: "asyncio.Task[str]") -> None:
    # Every joined caller may have gone away; mark the exception as seen.
    if not task.cancelled():
        task.exception()


def build_gateway(
    config: GatewayConfig,
    upstream: Any,
    profile: ModelProfile,
    deny_list: Optional[DenyList] = None,
) -> CompletionGateway:
    """Wire a gateway from configuration."""
    return CompletionGateway(
        upstream=upstream,
        profile=profile,
        cache=TTLCache(
            max_size=config.cache.max_size, ttl=config.cache.ttl_seconds
        ),
        error_cache=TTLCache(
            max_size=config.cache.max_size, ttl=config.cache.error_ttl_seconds
        ),
        limiter=RateLimiter(
            max_requests=config.rate_limit.max_requests,
            window_seconds=config.rate_limit.window_seconds,
        ),
        deny_list=deny_list,
        max_text_length=config.max_text_length,
        upstream_timeout=config.upstream.timeout_seconds,
    )
