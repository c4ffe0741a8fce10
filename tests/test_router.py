"""Tests for the model router."""

import pytest

from ghost_gateway.config import GatewayConfig
from ghost_gateway.router import RoutingError, resolve_model


def test_resolve_default_model(test_config: GatewayConfig) -> None:
    """With no model id the upstream's default model is resolved."""
    profile = resolve_model(test_config)
    assert profile.model_id == "test-model"
    assert profile.multimodal is True


def test_resolve_known_model(test_config: GatewayConfig) -> None:
    profile = resolve_model(test_config, "test-model")
    assert profile.name == "Test Model"


def test_resolve_unknown_model(test_config: GatewayConfig) -> None:
    """An unknown model raises RoutingError with a helpful message."""
    with pytest.raises(RoutingError, match="Unknown model"):
        resolve_model(test_config, "nonexistent-model")
