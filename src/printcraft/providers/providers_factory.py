"""Factory for provider adapters."""

from ..config import AppConfig
from .base import ProviderAdapter
from .replicate import ReplicateProvider


def create_provider(name: str, *, config: AppConfig) -> ProviderAdapter:
    """Instantiate provider adapter by name."""
    lower = name.lower()
    if lower == "replicate":
        if not config.provider_api_token:
            raise ValueError("provider_api_token is required to instantiate ReplicateProvider")
        return ReplicateProvider(
            api_token=config.provider_api_token,
            base_url=config.provider_base_url,
            model_version=config.provider_model_version,
            timeout_seconds=config.provider_request_timeout_seconds,
        )
    raise ValueError(f"Unsupported provider '{name}'")
