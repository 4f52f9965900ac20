#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: test_turn.py
# Description: Test suite for turn.py and client.py
# Author: Ms. White
# Created: 2025-06-13
# Modified: 2025-06-19 20:44:18

import asyncio
import unittest

from fakes import FakeModelHandle, finish, make_client, text, tool_call
from switchboard.compression import Compressor
from switchboard.events import (
    ChatCompressed,
    ContentDelta,
    Errored,
    Finished,
    ToolCallRequested,
    UserCancelled,
    is_terminal
)
from switchboard.history import HistoryStore
from switchboard.messages import Message, Role, ToolResultFragment
from switchboard.providers.base import MissingApiKeyError


async def collect(turn, value, cancel=None):
    return [event async for event in turn.run(value, cancel)]


class TestTurn(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.history = HistoryStore()

    def make_turn(self, handle, **kwargs):
        return _turn(make_client(handle), self.history, **kwargs)

    async def test_simple_answer(self):
        self.history.append(Message.user("hi"))
        self.history.append(Message.assistant("hello"))
        handle = FakeModelHandle(streams=[[text("4"), finish("stop")]])

        events = await collect(self.make_turn(handle), "what's 2+2?")

        self.assertEqual(events, [ContentDelta("4"), Finished("stop", message="4")])
        curated = self.history.get_curated()
        self.assertEqual(curated[-1].role, Role.ASSISTANT)
        self.assertEqual(curated[-1].text, "4")
        self.assertEqual([m.content for m in handle.requests[0]["messages"]], ["hi", "hello", "what's 2+2?"])

    async def test_system_prompt_and_tools_are_forwarded(self):
        handle = FakeModelHandle(streams=[[text("ok")]])
        tools = [{"type": "function", "function": {"name": "read_file", "parameters": {}}}]

        await collect(self.make_turn(handle, system_prompt="be brief", tools=tools), "hi")

        self.assertEqual(handle.requests[0]["system_prompt"], "be brief")
        self.assertEqual(handle.requests[0]["tools"], tools)

    async def test_stream_error_leaves_no_assistant_text(self):
        handle = FakeModelHandle(streams=[[text("partial"), RuntimeError("stream broke")]])

        events = await collect(self.make_turn(handle), "hello")

        self.assertEqual(events[-1], Errored("stream broke"))
        messages = self.history.get_all()
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0].role, Role.USER)

    async def test_connector_failure_becomes_error_event(self):
        self.history.append(Message.user("hi"))
        self.history.append(Message.assistant("hello"))
        client = make_client(error=MissingApiKeyError("Fake API key is required."))
        events = await collect(_turn(client, self.history), "hello")
        self.assertEqual(len(events), 1)
        self.assertIsInstance(events[0], Errored)
        self.assertIn("API key", events[0].message)
        self.assertEqual(len(self.history), 2)
        self.assertEqual(self.history.get_all()[-1].text, "hello")

    async def test_unknown_provider_becomes_error_event(self):
        events = await collect(_turn(make_client(), self.history, provider_id="missing"), "hello")
        self.assertIsInstance(events[-1], Errored)
        self.assertIn("missing", events[-1].message)
        self.assertEqual(len(self.history), 0)

    async def test_empty_input_becomes_error_event(self):
        events = await collect(self.make_turn(FakeModelHandle()), [])
        self.assertIsInstance(events[-1], Errored)
        self.assertEqual(len(self.history), 0)

    async def test_tool_calls_are_collected_and_committed(self):
        handle = FakeModelHandle(streams=[[
            text("Let me look."),
            tool_call("call-1", "read_file", {"path": "/a.txt"}),
            tool_call("call-1", "read_file", {"path": "/a.txt"}),
            finish("tool_calls"),
        ]])
        turn = self.make_turn(handle)

        events = await collect(turn, "read /a.txt")

        self.assertEqual(sum(1 for e in events if isinstance(e, ToolCallRequested)), 1)
        self.assertEqual([r.call_id for r in turn.pending_tool_calls], ["call-1"])
        self.assertEqual(turn.finish_reason, "tool_calls")
        reply = self.history.get_all()[-1]
        self.assertEqual(reply.text, "Let me look.")
        self.assertEqual(reply.tool_calls[0].arguments, {"path": "/a.txt"})

    async def test_tool_result_input_is_stored_as_tool_message(self):
        handle = FakeModelHandle(streams=[[text("done")]])
        result = ToolResultFragment(call_id="call-1", name="read_file", payload={"content": "x"})

        await collect(self.make_turn(handle), [result])

        self.assertEqual(self.history.get_all()[0].role, Role.TOOL)

    async def test_cancel_mid_stream(self):
        handle = FakeModelHandle(streams=[[text("one"), text("two"), text("three")]])
        cancel = asyncio.Event()
        events = []

        async for event in self.make_turn(handle).run("go", cancel):
            events.append(event)
            cancel.set()

        self.assertEqual(events, [ContentDelta("one"), UserCancelled()])
        self.assertEqual(len(self.history), 1)
        self.assertTrue(handle.closed)

    async def test_exactly_one_terminal_event(self):
        scripts = [
            [text("fine")],
            [text("bad"), RuntimeError("x")],
            [tool_call("c1", "read_file")],
        ]
        for script in scripts:
            handle = FakeModelHandle(streams=[script])
            events = await collect(self.make_turn(handle), "hi")
            self.assertEqual(sum(1 for e in events if is_terminal(e)), 1)
            self.assertTrue(is_terminal(events[-1]))

    async def test_compression_event_precedes_response(self):
        for index in range(6):
            self.history.append(Message.user("x" * 100) if index % 2 == 0 else Message.assistant("y" * 100))
        handle = FakeModelHandle(streams=[[text("ok")]], token_counts=[1000, 100])
        compressor = Compressor(self.history, threshold=0.0001)

        events = await collect(self.make_turn(handle, compressor=compressor), "continue")

        self.assertIsInstance(events[0], ChatCompressed)
        self.assertEqual(events[0].outcome.new_token_count, 100)
        self.assertEqual(events[-1], Finished("STOP", message="ok"))
        self.assertEqual(self.history.get_all()[-1].text, "ok")


class TestAgentClient(unittest.TestCase):
    def test_session_uses_default_model(self):
        session = make_client().create_session("fake", system_prompt="sys")
        self.assertEqual(session.model, "fake-model")
        self.assertEqual(session.system_prompt, "sys")
        self.assertTrue(session.id.startswith("session-"))

    def test_metadata_key_wins(self):
        client = make_client()
        client.api_keys["fake"] = "configured"
        client.environ = {"FAKE_API_KEY": "from-env"}
        connector = client.registry.require("fake")

        client.create_session("fake", metadata={"api_key": "from-metadata"})
        client.create_session("fake")
        client.api_keys.clear()
        client.create_session("fake")

        keys = [context.resolve_api_key() for context in connector.contexts]
        self.assertEqual(keys, ["from-metadata", "configured", "from-env"])


def _turn(client, history, provider_id="fake", **kwargs):
    from switchboard.turn import Turn
    return Turn(client, history, provider_id, **kwargs)


if __name__ == "__main__":
    unittest.main()
