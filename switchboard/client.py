#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: client.py
# Author: Ms. White
# Description: Provider-agnostic agent sessions built on the
#              connector registry
# Created: 2025-06-06 09:31:22
# Modified: 2025-06-18 12:04:49

import os
import time
import uuid
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from .conversion import AgentMessage
from .providers import build_context, create_default_registry
from .providers.base import BaseModelHandle, ConnectorRegistry, ModelProvider, ProviderChunk

logger = logging.getLogger(__name__)


@dataclass
class AgentSession:
    id: str
    provider_id: str
    model: str
    model_handle: BaseModelHandle
    model_provider: ModelProvider
    system_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class AgentClient:
    """Opens model sessions against registered provider connectors.

    Args:
        registry: Connector registry. A default one is built when omitted.
        api_keys: Configured keys per provider id, used after a session's
            metadata key and before environment variables.
        environ: Environment mapping for credential lookup.
    """

    def __init__(
        self,
        registry: Optional[ConnectorRegistry] = None,
        api_keys: Optional[Dict[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None
    ):
        self.registry = registry if registry is not None else create_default_registry()
        self.api_keys = dict(api_keys or {})
        self.environ = os.environ if environ is None else environ

    def create_session(
        self,
        provider_id: str,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> AgentSession:
        """Build a session bound to one provider, model and system prompt.

        Raises:
            UnknownProviderError: If provider_id is not registered.
            MissingApiKeyError: If no credential can be resolved.
            ProviderUnavailableError: If the provider SDK is not installed.
        """
        connector = self.registry.require(provider_id)
        metadata = dict(metadata or {})
        context = build_context(
            connector,
            api_key=self.api_keys.get(provider_id),
            metadata=metadata,
            environ=self.environ
        )

        model = model or connector.default_model()
        model_provider = connector.get_model_provider(context)
        model_handle = model_provider.get_model(model)

        session = AgentSession(
            id=f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}",
            provider_id=provider_id,
            model=model,
            model_handle=model_handle,
            model_provider=model_provider,
            system_prompt=system_prompt,
            metadata=metadata
        )
        logger.debug(f"[MODEL] Session {session.id} using {provider_id}:{model}")
        return session

    def stream_response(
        self,
        session: AgentSession,
        messages: List[AgentMessage],
        tools: Optional[List[Dict]] = None,
        max_output_tokens: Optional[int] = None
    ) -> AsyncIterator[ProviderChunk]:
        if session.model_handle is None:
            raise ValueError("Agent session is missing a model handle.")

        use_tools = tools if tools and self.registry.require(session.provider_id).supports_tools else None
        return session.model_handle.stream(
            messages,
            system_prompt=session.system_prompt,
            tools=use_tools,
            max_output_tokens=max_output_tokens
        )
