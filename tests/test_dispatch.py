#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: test_dispatch.py
# Description: Test suite for dispatch.py
# Author: Ms. White
# Created: 2025-06-14
# Modified: 2025-06-19 21:02:37

import asyncio
import unittest

from fakes import FakeClock, FakeExecutor
from switchboard.dispatch import (
    ToolDispatchCache,
    ToolDispatcher,
    build_cache_key,
    is_cacheable,
    is_invalidating
)
from switchboard.events import ToolCallRequest, ToolCallResponse


def request(call_id, name="read_file", **arguments):
    return ToolCallRequest(call_id=call_id, name=name, arguments=arguments)


class TestCacheKey(unittest.TestCase):
    def test_key_ignores_argument_order(self):
        first = ToolCallRequest("c1", "read_file", {"path": "/a", "limit": 10})
        second = ToolCallRequest("c2", "read_file", {"limit": 10, "path": "/a"})
        self.assertEqual(build_cache_key(first), build_cache_key(second))
        self.assertEqual(build_cache_key(first), 'read_file::{"limit":10,"path":"/a"}')

    def test_side_effecting_tools_have_no_key(self):
        self.assertIsNone(build_cache_key(request("c1", "write_file", path="/a")))
        self.assertIsNone(build_cache_key(request("c1", "unknown_tool")))

    def test_unserializable_arguments_have_no_key(self):
        self.assertIsNone(build_cache_key(request("c1", path=object())))

    def test_classification(self):
        self.assertTrue(is_cacheable("web_fetch"))
        self.assertFalse(is_cacheable("run_shell_command"))
        self.assertTrue(is_invalidating("edit"))
        self.assertFalse(is_invalidating("glob"))


class TestToolDispatchCache(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = ToolDispatchCache(ttl=5.0, clock=self.clock)
        self.response = ToolCallResponse(call_id="c1", display={"lines": [1, 2]})

    def test_entry_expires_after_ttl(self):
        self.cache.set("k", self.response)
        self.clock.advance(4.9)
        self.assertIsNotNone(self.cache.get("k"))
        self.clock.advance(0.2)
        self.assertIsNone(self.cache.get("k"))

    def test_get_returns_independent_copies(self):
        self.cache.set("k", self.response)
        self.response.display["lines"].append(3)
        first = self.cache.get("k")
        first.display["lines"].append(4)
        self.assertEqual(self.cache.get("k").display, {"lines": [1, 2]})

    def test_clear(self):
        self.cache.set("k", self.response)
        self.cache.clear()
        self.assertIsNone(self.cache.get("k"))
        self.assertEqual(self.cache.generation, 1)


class TestToolDispatcher(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.executor = FakeExecutor()
        self.dispatcher = ToolDispatcher(self.executor, ToolDispatchCache(clock=self.clock))

    async def test_repeated_read_within_ttl_executes_once(self):
        first = await self.dispatcher.dispatch(request("c1", path="/a.txt"))
        self.clock.advance(2)
        second = await self.dispatcher.dispatch(request("c2", path="/a.txt"))

        self.assertEqual(self.executor.count("read_file"), 1)
        self.assertEqual(first.display, second.display)
        self.assertEqual(second.call_id, "c2")
        self.assertEqual(second.result_fragments[0].call_id, "c2")

    async def test_read_after_ttl_executes_again(self):
        await self.dispatcher.dispatch(request("c1", path="/a.txt"))
        self.clock.advance(6)
        await self.dispatcher.dispatch(request("c2", path="/a.txt"))
        self.assertEqual(self.executor.count("read_file"), 2)

    async def test_write_invalidates_cache(self):
        await self.dispatcher.dispatch(request("c1", path="/a.txt"))
        await self.dispatcher.dispatch(request("c2", "write_file", path="/a.txt", content="new"))
        await self.dispatcher.dispatch(request("c3", path="/a.txt"))

        self.assertEqual(self.executor.count("read_file"), 2)
        self.assertEqual(self.executor.count("write_file"), 1)

    async def test_side_effecting_calls_always_execute(self):
        for call_id in ("c1", "c2"):
            await self.dispatcher.dispatch(request(call_id, "run_shell_command", command="ls"))
        self.assertEqual(self.executor.count("run_shell_command"), 2)

    async def test_concurrent_identical_calls_share_one_execution(self):
        gate = asyncio.Event()
        executor = FakeExecutor(gate=gate)
        dispatcher = ToolDispatcher(executor)

        pending = asyncio.gather(
            dispatcher.dispatch(request("c1", path="/a.txt")),
            dispatcher.dispatch(request("c2", path="/a.txt")),
        )
        await asyncio.sleep(0)
        gate.set()
        first, second = await pending

        self.assertEqual(executor.count("read_file"), 1)
        self.assertEqual(first.display, second.display)
        self.assertEqual([first.call_id, second.call_id], ["c1", "c2"])
        self.assertIsNone(dispatcher.cache.get_pending('read_file::{"path":"/a.txt"}'))

    async def test_read_running_across_a_write_is_not_cached(self):
        gate = asyncio.Event()
        executor = FakeExecutor(gate=gate)
        dispatcher = ToolDispatcher(executor)

        read = asyncio.ensure_future(dispatcher.dispatch(request("c1", path="/a.txt")))
        while executor.count("read_file") == 0:
            await asyncio.sleep(0)
        write = asyncio.ensure_future(dispatcher.dispatch(request("c2", "write_file", path="/a.txt", content="v2")))
        while executor.count("write_file") == 0:
            await asyncio.sleep(0)
        gate.set()
        await asyncio.gather(read, write)

        await dispatcher.dispatch(request("c3", path="/a.txt"))

        self.assertEqual(executor.count("read_file"), 2)

    async def test_cached_payload_is_not_shared(self):
        first = await self.dispatcher.dispatch(request("c1", path="/a.txt"))
        first.display["content"].append("mutated")
        second = await self.dispatcher.dispatch(request("c2", path="/a.txt"))
        self.assertEqual(second.display["content"], ["line 1", "line 2"])

    async def test_errors_are_not_cached(self):
        dispatcher = ToolDispatcher(FakeExecutor(error=OSError("disk gone")))

        first = await dispatcher.dispatch(request("c1", path="/a.txt"))
        second = await dispatcher.dispatch(request("c2", path="/a.txt"))

        self.assertEqual(first.error, "disk gone")
        self.assertTrue(first.result_fragments[0].is_error)
        self.assertEqual(dispatcher.executor.count("read_file"), 2)
        self.assertEqual(second.call_id, "c2")

    async def test_dispatch_all_keeps_request_order(self):
        requests = [
            request("c1", path="/a"),
            request("c2", "list_directory", path="/"),
            request("c3", "write_file", path="/b", content="x"),
            request("c4", path="/a"),
        ]

        responses = await self.dispatcher.dispatch_all(requests)

        self.assertEqual([r.call_id for r in responses], ["c1", "c2", "c3", "c4"])
        self.assertEqual(self.executor.count("read_file"), 2)


if __name__ == "__main__":
    unittest.main()
