"""Routing: resolve a model id to its configured profile.

The router looks up the model in the gateway configuration's catalog and
returns the matching profile (capabilities and sampling parameters).
"""

from typing import Optional

from ghost_gateway.config import GatewayConfig, ModelProfile


class RoutingError(Exception):
    """Raised when a model id cannot be resolved."""

    def __init__(self, model_id: str, reason: str) -> None:
        self.model_id = model_id
        self.reason = reason
        super().__init__("Routing error for model '{}': {}".format(model_id, reason))


def resolve_model(config: GatewayConfig, model_id: Optional[str] = None) -> ModelProfile:
    """Resolve a model id (default: the upstream's default model) to a profile.

    Args:
        config: The loaded gateway configuration.
        model_id: The model to look up. None selects the default model.

    Returns:
        The ModelProfile for the model.

    Raises:
        RoutingError: If the model is not in the configured catalog.
    """
    model_id = model_id or config.upstream.default_model
    profile = config.models.get(model_id)
    if profile is None:
        available = ", ".join(sorted(config.models.keys())) or "(none)"
        raise RoutingError(
            model_id,
            "Unknown model. Available models: {}".format(available),
        )
    return profile
