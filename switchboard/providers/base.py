"""Base connector interface for LLM providers.

This module defines the abstract classes every provider connector and model
handle implements, the registry that maps provider ids to connectors, and the
error types raised while constructing them.
"""

import json
import uuid
import asyncio
import importlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, Type

import aiohttp

from ..messages import Fragment

logger = logging.getLogger(__name__)


class SwitchboardError(Exception):
    """Base class for runtime errors raised by this package."""


class ProviderUnavailableError(SwitchboardError):
    """An optional provider SDK is not installed."""

    def __init__(self, provider_name: str, package: str):
        self.provider_name = provider_name
        self.package = package
        super().__init__(
            f"{provider_name} support requires the optional dependency '{package}'. "
            f"Install it to enable this provider."
        )


class UnknownProviderError(SwitchboardError):
    """No connector is registered for the requested provider id."""


class MissingApiKeyError(SwitchboardError):
    """No credential could be resolved for a provider."""


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    label: str
    default: bool = False


@dataclass
class ConnectorContext:
    """Construction context handed to connectors.

    Args:
        resolve_api_key: Callable returning the provider credential or None.
        environment: Optional environment mapping used for extra settings.
    """
    resolve_api_key: Callable[[], Optional[str]]
    environment: Dict[str, Optional[str]] = field(default_factory=dict)


@dataclass
class ProviderChunk:
    """One provider stream chunk, already decoded into fragments."""
    fragments: List[Fragment] = field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None


def parse_tool_arguments(value: Any) -> Dict[str, Any]:
    """Coerce raw tool call arguments into a dictionary."""
    if value is None or value == "":
        return {}
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {"value": value}
        return parsed if isinstance(parsed, dict) else {"value": parsed}
    if isinstance(value, dict):
        return dict(value)
    return {"value": value}


def new_call_id(name: Optional[str] = None) -> str:
    return f"{name or 'call'}-{uuid.uuid4().hex[:12]}"


def load_optional(module_name: str, provider_name: str):
    """Import a provider SDK, raising a typed error when it is missing."""
    try:
        return importlib.import_module(module_name)
    except ModuleNotFoundError as e:
        if e.name and e.name.split(".")[0] == module_name.split(".")[0]:
            raise ProviderUnavailableError(provider_name, module_name) from e
        raise


async def retry_with_backoff(
    func: Callable,
    *args,
    max_retries: int = 3,
    retry_delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (aiohttp.ClientError,),
    **kwargs
):
    """Await func, retrying transient errors with exponential backoff.

    Args:
        func: Coroutine function to call.
        max_retries: Number of retries after the first attempt.
        retry_delay: Initial delay in seconds, doubled on every retry.
        retry_on: Exception types considered transient.

    Raises:
        The last transient error once retries are exhausted, or any
        non-transient error immediately.
    """
    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except retry_on as e:
            if attempt == max_retries:
                logger.error(f"[RETRY] All {max_retries} retries failed: {e}")
                raise
            delay = retry_delay * (2 ** attempt)
            logger.warning(f"[RETRY] Attempt {attempt + 1}/{max_retries} failed, retrying in {delay}s: {e}")
            await asyncio.sleep(delay)


class BaseModelHandle(ABC):
    """A callable model bound to one provider and model id."""

    def __init__(
        self,
        provider_id: str,
        model_id: str,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        self.provider_id = provider_id
        self.model_id = model_id
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    @abstractmethod
    def stream(
        self,
        messages: List[Any],
        *,
        system_prompt: Optional[str] = None,
        tools: Optional[List[Dict]] = None,
        max_output_tokens: Optional[int] = None
    ) -> AsyncIterator[ProviderChunk]:
        """Stream a completion as ProviderChunk objects.

        Args:
            messages: Provider-agnostic AgentMessage list.
            system_prompt: Optional system instruction.
            tools: Optional tool definitions in function-calling format.
            max_output_tokens: Optional output cap.
        """

    @abstractmethod
    async def generate(
        self,
        messages: List[Any],
        *,
        system_prompt: Optional[str] = None,
        max_output_tokens: Optional[int] = None
    ) -> str:
        """Run a non-streaming completion and return its text."""

    @abstractmethod
    async def count_tokens(self, messages: List[Any], system_prompt: Optional[str] = None) -> int:
        """Count the prompt tokens of a message list."""


class ModelProvider:
    """Resolves model handles for one connector, defaulting the model id."""

    def __init__(self, connector: "BaseConnector", context: ConnectorContext):
        self.connector = connector
        self.context = context

    def get_model(self, model_name: Optional[str] = None) -> BaseModelHandle:
        return self.connector.create_model(model_name or self.connector.default_model(), self.context)


class BaseConnector(ABC):
    """Capability descriptor and factory for one provider."""

    id: str = ""
    display_name: str = ""
    models: List[ModelDescriptor] = []
    supports_tools: bool = True
    env_keys: Tuple[str, ...] = ()

    @abstractmethod
    def create_model(self, model_id: str, context: ConnectorContext) -> BaseModelHandle:
        """Build a model handle.

        Raises:
            MissingApiKeyError: If the context resolves no credential.
            ProviderUnavailableError: If the provider SDK is not installed.
        """

    def get_model_provider(self, context: ConnectorContext) -> ModelProvider:
        return ModelProvider(self, context)

    def default_model(self) -> str:
        for model in self.models:
            if model.default:
                return model.id
        return self.models[0].id

    def _require_api_key(self, context: ConnectorContext, env_hint: str) -> str:
        api_key = context.resolve_api_key()
        if not api_key:
            raise MissingApiKeyError(
                f"{self.display_name} API key is required. Set {env_hint} or pass an API key."
            )
        return api_key


class ConnectorRegistry:
    """Explicitly constructed lookup of provider connectors."""

    def __init__(self):
        self._connectors: Dict[str, BaseConnector] = {}

    def register(self, connector: BaseConnector):
        self._connectors[connector.id] = connector

    def get(self, provider_id: str) -> Optional[BaseConnector]:
        return self._connectors.get(provider_id)

    def require(self, provider_id: str) -> BaseConnector:
        connector = self._connectors.get(provider_id)
        if connector is None:
            raise UnknownProviderError(
                f"Unknown provider connector: {provider_id}. Supported: {self.ids()}"
            )
        return connector

    def list(self) -> List[BaseConnector]:
        return list(self._connectors.values())

    def ids(self) -> List[str]:
        return list(self._connectors)
