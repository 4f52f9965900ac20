#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: normalizer.py
# Author: Ms. White
# Description: Pull-based translation of provider chunk streams
#              into the canonical event sequence
# Created: 2025-06-06 15:40:18
# Modified: 2025-06-19 10:12:07

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import AsyncIterator, Deque, Optional, Set

from .events import (
    ContentDelta,
    Errored,
    Finished,
    StreamEvent,
    Thought,
    ToolCallRequest,
    ToolCallRequested,
    Usage,
    UserCancelled,
    error_message,
    error_status
)
from .messages import TextFragment, ThoughtFragment, ToolCallFragment
from .providers.base import ProviderChunk, new_call_id

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    STREAMING = "streaming"
    FINISHED = "finished"
    ERRORED = "errored"
    CANCELLED = "cancelled"


class StreamNormalizer:
    """Async iterator over canonical events for one provider stream.

    Each pull first checks the cancellation signal, then drains events
    already decoded from the previous chunk, and only then reads the next
    chunk from the source. The sequence always ends with exactly one of
    Finished, Errored or UserCancelled.

    Args:
        source: Async iterator of ProviderChunk objects.
        cancel: Optional asyncio.Event; once set, no further chunks are read.
    """

    def __init__(self, source: AsyncIterator[ProviderChunk], cancel: Optional[asyncio.Event] = None):
        self._source = source
        self._iterator = None
        self._cancel = cancel
        self._pending: Deque[StreamEvent] = deque()
        self._seen_call_ids: Set[str] = set()
        self._finish_reason: Optional[str] = None
        self.state = StreamState.STREAMING

    def __aiter__(self):
        return self

    async def __anext__(self) -> StreamEvent:
        if self.state != StreamState.STREAMING:
            raise StopAsyncIteration

        while True:
            if self._cancel is not None and self._cancel.is_set():
                self._pending.clear()
                self.state = StreamState.CANCELLED
                await self._close_source()
                logger.debug("[STREAM] Cancelled by caller")
                return UserCancelled()

            if self._pending:
                return self._pending.popleft()

            try:
                if self._iterator is None:
                    self._iterator = self._source.__aiter__()
                chunk = await self._iterator.__anext__()
            except StopAsyncIteration:
                self.state = StreamState.FINISHED
                return Finished(reason=self._finish_reason or "STOP")
            except Exception as e:
                self.state = StreamState.ERRORED
                logger.error(f"[STREAM] Provider stream failed: {e}")
                await self._close_source()
                return Errored(message=error_message(e), status=error_status(e))

            self._decode(chunk)

    def _decode(self, chunk: ProviderChunk):
        for fragment in chunk.fragments:
            if isinstance(fragment, TextFragment):
                if fragment.value:
                    self._pending.append(ContentDelta(fragment.value))

            elif isinstance(fragment, ThoughtFragment):
                if fragment.text:
                    self._pending.append(Thought(description=fragment.text))

            elif isinstance(fragment, ToolCallFragment):
                call_id = fragment.id or new_call_id(fragment.name)
                # Providers may resend a call as its arguments accumulate
                if call_id in self._seen_call_ids:
                    logger.debug(f"[STREAM] Dropped duplicate tool call {call_id}")
                    continue
                self._seen_call_ids.add(call_id)
                self._pending.append(ToolCallRequested(ToolCallRequest(
                    call_id=call_id,
                    name=fragment.name,
                    arguments=dict(fragment.arguments)
                )))

        if chunk.usage:
            self._pending.append(Usage(dict(chunk.usage)))
        if chunk.finish_reason:
            self._finish_reason = chunk.finish_reason

    async def _close_source(self):
        aclose = getattr(self._iterator or self._source, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            logger.debug(f"[STREAM] Ignoring error while closing source: {e}")
