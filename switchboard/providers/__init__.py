"""Provider connectors for LLM interactions.

This package contains provider-specific connectors for different LLM services.
Each connector implements the common interface defined in base.py and is
registered explicitly by create_default_registry().
"""

import os
from typing import Dict, Mapping, Optional

from .base import (
    BaseConnector,
    BaseModelHandle,
    ConnectorContext,
    ConnectorRegistry,
    MissingApiKeyError,
    ModelDescriptor,
    ModelProvider,
    ProviderChunk,
    ProviderUnavailableError,
    SwitchboardError,
    UnknownProviderError,
    retry_with_backoff
)
from .provider_openai import OpenAIConnector
from .provider_anthropic import AnthropicConnector
from .provider_google import GoogleConnector


def create_default_registry(max_retries: int = 3, retry_delay: float = 1.0) -> ConnectorRegistry:
    """Build a registry holding the bundled connectors.

    Args:
        max_retries: Retries for rate limit and connection errors.
        retry_delay: Initial backoff delay in seconds.
    """
    registry = ConnectorRegistry()
    registry.register(OpenAIConnector(max_retries=max_retries, retry_delay=retry_delay))
    registry.register(AnthropicConnector(max_retries=max_retries, retry_delay=retry_delay))
    registry.register(GoogleConnector(max_retries=max_retries, retry_delay=retry_delay))
    return registry


def build_context(
    connector: BaseConnector,
    api_key: Optional[str] = None,
    metadata: Optional[Dict] = None,
    environ: Optional[Mapping[str, str]] = None
) -> ConnectorContext:
    """Create a connector context with the standard key resolution order.

    Args:
        connector: Connector the context is for.
        api_key: Explicitly configured key.
        metadata: Per-session metadata; an 'api_key' entry wins over everything.
        environ: Environment mapping, defaults to os.environ.

    Returns:
        ConnectorContext: Resolves metadata key, then configured key, then
        the connector's environment variables in order.
    """
    environ = os.environ if environ is None else environ
    metadata = metadata or {}

    def resolve_api_key() -> Optional[str]:
        if metadata.get("api_key"):
            return metadata["api_key"]
        if api_key:
            return api_key
        for name in connector.env_keys:
            if environ.get(name):
                return environ[name]
        return None

    return ConnectorContext(
        resolve_api_key=resolve_api_key,
        environment={name: environ.get(name) for name in connector.env_keys}
    )


__all__ = [
    "AnthropicConnector",
    "BaseConnector",
    "BaseModelHandle",
    "ConnectorContext",
    "ConnectorRegistry",
    "GoogleConnector",
    "MissingApiKeyError",
    "ModelDescriptor",
    "ModelProvider",
    "OpenAIConnector",
    "ProviderChunk",
    "ProviderUnavailableError",
    "SwitchboardError",
    "UnknownProviderError",
    "build_context",
    "create_default_registry",
    "retry_with_backoff",
]
