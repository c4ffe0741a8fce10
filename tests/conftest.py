"""Shared test fixtures for the completion gateway tests."""

import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from ghost_gateway.config import GatewayConfig, load_config
from ghost_gateway.prompts import Prompt
from ghost_gateway.upstream import UpstreamResult


def _make_config(tmp_path: Path, overrides: Optional[Dict] = None) -> str:
    """Write a minimal test config and return its path."""
    config = {
        "upstream": {
            "base_url": "https://api.example.com/v1",
            "api_key_env": "TEST_API_KEY",
            "default_model": "test-model",
            "timeout_seconds": 5,
        },
        "models": {
            "test-model": {
                "name": "Test Model",
                "multimodal": True,
                "max_tokens": 50,
                "temperature": 0.1,
            }
        },
        "cache": {
            "max_size": 100,
            "ttl_seconds": 600,
            "error_ttl_seconds": 10,
        },
        "rate_limit": {
            "max_requests": 5,
            "window_seconds": 60,
        },
        "max_text_length": 200,
        "log_file": str(tmp_path / "test.log"),
    }
    if overrides:
        config.update(overrides)

    path = tmp_path / "test_config.json"
    path.write_text(json.dumps(config))
    return str(path)


@pytest.fixture()
def test_config_path(tmp_path: Path) -> str:
    """Return the path to a temporary test config file."""
    return _make_config(tmp_path)


@pytest.fixture()
def test_config(test_config_path: str) -> GatewayConfig:
    """Return a loaded test GatewayConfig."""
    return load_config(test_config_path)


class FakeClock:
    """Manually advanced clock for TTL and window tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """Upstream stand-in that records prompts and replays scripted outcomes.

    Each call pops the next outcome; the last one repeats. An outcome that is
    an exception is raised, anything else is returned as completion text.
    ``delay`` suspends each call so concurrent callers can pile up.
    """

    def __init__(self, *outcomes: object, delay: float = 0.0) -> None:
        self.outcomes: List[object] = list(outcomes) or [" suggestion"]
        self.delay = delay
        self.prompts: List[Prompt] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def complete(self, prompt: Prompt) -> UpstreamResult:
        self.prompts.append(prompt)
        outcome = self.outcomes[0] if len(self.outcomes) == 1 else self.outcomes.pop(0)
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(outcome, BaseException):
            raise outcome
        return UpstreamResult(text=str(outcome), model=prompt.model)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
