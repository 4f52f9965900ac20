#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: turn.py
# Author: Ms. White
# Description: One request/response exchange with a provider
# Created: 2025-06-08 13:10:05
# Modified: 2025-06-19 15:22:41

import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional

from .client import AgentClient
from .compression import CompressionStatus, Compressor
from .conversion import convert_history
from .events import (
    ChatCompressed,
    ContentDelta,
    Errored,
    Finished,
    StreamEvent,
    ToolCallRequest,
    ToolCallRequested,
    UserCancelled,
    error_message,
    error_status,
    is_terminal
)
from .history import HistoryStore
from .messages import (
    Message,
    MessageInput,
    Role,
    TextFragment,
    ToolCallFragment,
    ToolResultFragment,
    normalize_input
)
from .normalizer import StreamNormalizer

logger = logging.getLogger(__name__)


class Turn:
    """Drives a single exchange and reports it as canonical events.

    Once the provider session is open the turn appends the caller's input
    to history, streams the response and commits the assistant reply only
    once the stream finished cleanly. Tool calls are collected in
    pending_tool_calls and surfaced to the caller; they are never executed
    here.

    Args:
        client: AgentClient used to open the provider session.
        history: HistoryStore the turn reads from and appends to.
        provider_id: Connector id to use.
        model: Model id, or None for the connector default.
        system_prompt: Optional system instruction.
        tools: Optional tool definitions in function-calling format.
        compressor: Optional Compressor tried before the request is sent.
        metadata: Session metadata passed to the client.
    """

    def __init__(
        self,
        client: AgentClient,
        history: HistoryStore,
        provider_id: str,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        tools: Optional[List[Dict]] = None,
        compressor: Optional[Compressor] = None,
        metadata: Optional[Dict] = None
    ):
        self.client = client
        self.history = history
        self.provider_id = provider_id
        self.model = model
        self.system_prompt = system_prompt
        self.tools = tools
        self.compressor = compressor
        self.metadata = metadata or {}
        self.pending_tool_calls: List[ToolCallRequest] = []
        self.finish_reason: Optional[str] = None
        self.input_committed = False

    async def run(self, value: MessageInput, cancel: Optional[asyncio.Event] = None) -> AsyncIterator[StreamEvent]:
        """Run the exchange.

        Args:
            value: A string, a fragment, or a list of either.
            cancel: Optional asyncio.Event set by the caller to stop the stream.

        Yields:
            StreamEvent: Canonical events; the last one is always Finished,
            Errored or UserCancelled.
        """
        self.pending_tool_calls = []
        self.finish_reason = None
        self.input_committed = False
        text_parts: List[str] = []

        try:
            session = self.client.create_session(
                self.provider_id,
                model=self.model,
                system_prompt=self.system_prompt,
                metadata=self.metadata
            )

            # History is only touched once the connector is known to work
            fragments = normalize_input(value)
            role = Role.TOOL if any(isinstance(f, ToolResultFragment) for f in fragments) else Role.USER
            self.history.append(Message(role, fragments))
            self.input_committed = True

            if self.compressor is not None:
                outcome = await self.compressor.compress(
                    session.model_handle,
                    session.model,
                    session.system_prompt
                )
                if outcome.status == CompressionStatus.COMPRESSED:
                    yield ChatCompressed(outcome)

            messages = convert_history(self.history.get_all())
            logger.debug(f"[TURN] Sending {len(messages)} message(s) to {session.provider_id}:{session.model}")

            source = self.client.stream_response(session, messages, tools=self.tools)
            async for event in StreamNormalizer(source, cancel):
                if isinstance(event, ContentDelta):
                    text_parts.append(event.text)
                    yield event

                elif isinstance(event, ToolCallRequested):
                    self.pending_tool_calls.append(event.request)
                    yield event

                elif isinstance(event, Finished):
                    text = "".join(text_parts)
                    self._commit(text)
                    self.finish_reason = event.reason
                    yield Finished(reason=event.reason, message=text)
                    return

                elif is_terminal(event):
                    if isinstance(event, Errored):
                        logger.warning(f"[TURN] Stream ended with error: {event.message}")
                    yield event
                    return

                else:
                    yield event

        except Exception as e:
            if cancel is not None and cancel.is_set():
                yield UserCancelled()
                return
            logger.error(f"[TURN] {e}")
            yield Errored(message=error_message(e), status=error_status(e))

    def _commit(self, text: str):
        """Append the assistant reply, with any requested tool calls."""
        fragments = []
        if text:
            fragments.append(TextFragment(text))
        for request in self.pending_tool_calls:
            fragments.append(ToolCallFragment(
                id=request.call_id,
                name=request.name,
                arguments=dict(request.arguments)
            ))
        if fragments:
            self.history.append(Message(Role.ASSISTANT, fragments))
