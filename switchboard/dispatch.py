#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: dispatch.py
# Author: Ms. White
# Description: Short lived result cache and dispatcher for tool calls
# Created: 2025-06-09 11:48:36
# Modified: 2025-06-19 17:05:12

import copy
import json
import time
import asyncio
import logging
from typing import Callable, Dict, List, Optional, Tuple

from .events import ToolCallRequest, ToolCallResponse, error_message

logger = logging.getLogger(__name__)

CACHEABLE_TOOL_NAMES = frozenset({
    "read_file",
    "read_many_files",
    "list_directory",
    "glob",
    "find_files",
    "search_file_content",
    "ripgrep_search",
    "web_fetch",
    "google_web_search",
})

CACHE_INVALIDATING_TOOL_NAMES = frozenset({
    "replace",
    "edit",
    "write_file",
    "run_shell_command",
    "local_shell",
})

DEFAULT_TTL = 5.0


def is_cacheable(name: str) -> bool:
    return name in CACHEABLE_TOOL_NAMES


def is_invalidating(name: str) -> bool:
    return name in CACHE_INVALIDATING_TOOL_NAMES


def build_cache_key(request: ToolCallRequest) -> Optional[str]:
    """Return 'name::arguments' for a read-only call, or None when it cannot be cached."""
    if not is_cacheable(request.name):
        return None
    try:
        payload = json.dumps(request.arguments or {}, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        logger.debug(f"[CACHE] Arguments for {request.name} are not serializable, skipping cache")
        return None
    return f"{request.name}::{payload}"


class ToolDispatchCache:
    """TTL cache of tool responses plus a map of executions still running.

    Args:
        ttl: Seconds a stored response stays valid.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._results: Dict[str, Tuple[float, ToolCallResponse]] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        self.generation = 0

    def get(self, key: str) -> Optional[ToolCallResponse]:
        entry = self._results.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self.clock() > expires_at:
            del self._results[key]
            return None
        return copy.deepcopy(value)

    def set(self, key: str, response: ToolCallResponse):
        self._results[key] = (self.clock() + self.ttl, copy.deepcopy(response))

    def track_pending(self, key: str, future: asyncio.Future):
        self._inflight[key] = future

        def _release(done):
            if self._inflight.get(key) is done:
                del self._inflight[key]

        future.add_done_callback(_release)

    def get_pending(self, key: str) -> Optional[asyncio.Future]:
        return self._inflight.get(key)

    def clear(self):
        """Drop stored results and in-flight entries.

        Executions started before the clear still finish, but the generation
        bump keeps their results out of the cache.
        """
        self.generation += 1
        self._results.clear()
        self._inflight.clear()


class ToolDispatcher:
    """Runs tool calls through an executor with caching and de-duplication.

    Side-effecting tools clear the whole cache before they run. Read-only
    tools are served from the cache inside the TTL, and identical calls
    issued while one is still running share its result.

    Args:
        executor: Object with an async execute(request) returning a ToolCallResponse.
        cache: ToolDispatchCache, one per session.
    """

    def __init__(self, executor, cache: Optional[ToolDispatchCache] = None):
        self.executor = executor
        self.cache = cache if cache is not None else ToolDispatchCache()

    async def dispatch(self, request: ToolCallRequest) -> ToolCallResponse:
        if is_invalidating(request.name):
            logger.debug(f"[CACHE] {request.name} invalidates cached tool results")
            self.cache.clear()

        key = build_cache_key(request)
        if key is None:
            return await self._execute(request)

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"[CACHE] Hit for {key}")
            return cached.for_call(request.call_id)

        pending = self.cache.get_pending(key)
        if pending is not None:
            logger.debug(f"[CACHE] Joining in-flight call for {key}")
            response = await asyncio.shield(pending)
            return copy.deepcopy(response).for_call(request.call_id)

        task = asyncio.ensure_future(self._execute_and_store(request, key))
        self.cache.track_pending(key, task)
        response = await asyncio.shield(task)
        return copy.deepcopy(response)

    async def dispatch_all(self, requests: List[ToolCallRequest]) -> List[ToolCallResponse]:
        """Dispatch requests in order, running neighbouring read-only calls concurrently."""
        responses = []
        batch = []
        for request in requests:
            if is_cacheable(request.name):
                batch.append(request)
                continue
            if batch:
                responses.extend(await asyncio.gather(*(self.dispatch(r) for r in batch)))
                batch = []
            responses.append(await self.dispatch(request))
        if batch:
            responses.extend(await asyncio.gather(*(self.dispatch(r) for r in batch)))
        return responses

    async def _execute_and_store(self, request: ToolCallRequest, key: str) -> ToolCallResponse:
        generation = self.cache.generation
        response = await self._execute(request)
        if response.error is not None:
            return response
        if generation != self.cache.generation:
            logger.debug(f"[CACHE] Cache was invalidated while {key} ran, not storing result")
            return response
        self.cache.set(key, response)
        return response

    async def _execute(self, request: ToolCallRequest) -> ToolCallResponse:
        try:
            return await self.executor.execute(request)
        except Exception as e:
            message = error_message(e)
            logger.error(f"[TOOL] {request.name} failed: {message}")
            return ToolCallResponse.failure(request.call_id, request.name, message)
