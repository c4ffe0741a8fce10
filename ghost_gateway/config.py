"""Configuration loader for the ghost-text completion gateway.

Reads a JSON config file containing the upstream provider definition, the
model catalog, cache and rate-limit parameters. The upstream API key is
resolved from an environment variable.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "google/gemini-2.0-flash-exp:free"


@dataclass
class UpstreamConfig:
    """Configuration for the upstream language-model provider."""

    base_url: str = DEFAULT_BASE_URL
    api_key_env: str = "OPENROUTER_API_KEY"
    default_model: str = DEFAULT_MODEL
    timeout_seconds: float = 15.0

    @property
    def api_key(self) -> Optional[str]:
        """Resolve the API key from the environment variable."""
        return os.getenv(self.api_key_env)


@dataclass
class ModelProfile:
    """Sampling parameters and capabilities of a single model."""

    model_id: str
    name: str = ""
    multimodal: bool = False
    max_tokens: int = 200
    temperature: float = 0.2


@dataclass
class CacheConfig:
    """Completion cache parameters."""

    max_size: int = 1000
    ttl_seconds: float = 3600.0
    error_ttl_seconds: float = 30.0


@dataclass
class RateLimitConfig:
    """Rate-limit parameters (per client)."""

    max_requests: int = 30
    window_seconds: float = 60.0


def _default_models() -> Dict[str, ModelProfile]:
    return {
        DEFAULT_MODEL: ModelProfile(
            model_id=DEFAULT_MODEL,
            name="Google Gemini Flash",
            multimodal=True,
            max_tokens=200,
            temperature=0.2,
        )
    }


@dataclass
class GatewayConfig:
    """Top-level gateway configuration."""

    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    models: Dict[str, ModelProfile] = field(default_factory=_default_models)
    cache: CacheConfig = field(default_factory=CacheConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    max_text_length: int = 2000
    sweep_interval_seconds: float = 300.0
    sanitizer_file: Optional[str] = None
    log_file: str = "logs/gateway.log"


def load_config(path: Union[str, Path]) -> GatewayConfig:
    """Load gateway configuration from a JSON file.

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

    with open(path) as f:
        raw: Dict[str, Any] = json.load(f)

    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a JSON object at the top level")

    upstream_raw = raw.get("upstream", {})
    upstream = UpstreamConfig(
        base_url=upstream_raw.get("base_url", DEFAULT_BASE_URL),
        api_key_env=upstream_raw.get("api_key_env", "OPENROUTER_API_KEY"),
        default_model=upstream_raw.get("default_model", DEFAULT_MODEL),
        timeout_seconds=float(upstream_raw.get("timeout_seconds", 15.0)),
    )

    models: Dict[str, ModelProfile] = {}
    for model_id, prof in raw.get("models", {}).items():
        models[model_id] = ModelProfile(
            model_id=model_id,
            name=prof.get("name", model_id),
            multimodal=bool(prof.get("multimodal", False)),
            max_tokens=int(prof.get("max_tokens", 200)),
            temperature=float(prof.get("temperature", 0.2)),
        )
    if not models:
        models = _default_models()

    cache_raw = raw.get("cache", {})
    cache = CacheConfig(
        max_size=int(cache_raw.get("max_size", 1000)),
        ttl_seconds=float(cache_raw.get("ttl_seconds", 3600.0)),
        error_ttl_seconds=float(cache_raw.get("error_ttl_seconds", 30.0)),
    )
    if cache.max_size < 1:
        raise ValueError("cache.max_size must be at least 1")

    rate_limit_raw = raw.get("rate_limit", {})
    rate_limit = RateLimitConfig(
        max_requests=int(rate_limit_raw.get("max_requests", 30)),
        window_seconds=float(rate_limit_raw.get("window_seconds", 60.0)),
    )
    if rate_limit.window_seconds <= 0:
        raise ValueError("rate_limit.window_seconds must be positive")

    return GatewayConfig(
        upstream=upstream,
        models=models,
        cache=cache,
        rate_limit=rate_limit,
        max_text_length=int(raw.get("max_text_length", 2000)),
        sweep_interval_seconds=float(raw.get("sweep_interval_seconds", 300.0)),
        sanitizer_file=raw.get("sanitizer_file"),
        log_file=raw.get("log_file", "logs/gateway.log"),
    )
