#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: test_history.py
# Description: Test suite for messages.py and history.py
# Author: Ms. White
# Created: 2025-06-12
# Modified: 2025-06-19 20:10:31

import unittest

from switchboard.history import HistoryStore, curate_history, is_valid_message
from switchboard.messages import (
    Message,
    Role,
    TextFragment,
    ThoughtFragment,
    ToolCallFragment,
    ToolResultFragment,
    normalize_input,
    serialized_size
)


def user(text):
    return Message(Role.USER, [TextFragment(text)])


def assistant(*fragments):
    return Message(Role.ASSISTANT, list(fragments))


def tool(call_id, payload="ok"):
    return Message(Role.TOOL, [ToolResultFragment(call_id=call_id, name="read_file", payload=payload)])


class TestMessages(unittest.TestCase):
    def test_normalize_string(self):
        self.assertEqual(normalize_input("hi"), [TextFragment("hi")])

    def test_normalize_fragment_and_list(self):
        call = ToolCallFragment(id="c1", name="read_file")
        self.assertEqual(normalize_input(call), [call])
        self.assertEqual(normalize_input(["a", call]), [TextFragment("a"), call])

    def test_normalize_rejects_unknown_items(self):
        with self.assertRaises(TypeError):
            normalize_input(["a", 3])

    def test_role_coerced_from_string(self):
        msg = Message("assistant", [TextFragment("x")])
        self.assertIs(msg.role, Role.ASSISTANT)

    def test_dict_round_trip_keeps_signature(self):
        msg = Message(Role.ASSISTANT, [
            TextFragment("hello", thought_signature="sig"),
            ToolCallFragment(id="c1", name="read_file", arguments={"path": "/a.txt"}),
            ThoughtFragment("thinking"),
        ])
        self.assertEqual(Message.from_dict(msg.to_dict()), msg)

    def test_serialized_size_counts_bytes(self):
        self.assertGreater(serialized_size(user("é")), serialized_size(user("e")))

    def test_tool_result_detection(self):
        self.assertTrue(tool("c1").is_tool_result())
        self.assertFalse(user("x").is_tool_result())


class TestHistoryStore(unittest.TestCase):
    def setUp(self):
        self.appended = []
        self.history = HistoryStore(on_append=self.appended.append)

    def test_append_rejects_empty_message(self):
        with self.assertRaises(ValueError):
            self.history.append(Message(Role.USER, []))
        self.assertEqual(len(self.history), 0)

    def test_get_all_returns_copies(self):
        self.history.append(user("hi"))
        snapshot = self.history.get_all()
        snapshot[0].fragments.append(TextFragment("extra"))
        snapshot.append(user("other"))
        self.assertEqual(len(self.history), 1)
        self.assertEqual(self.history.get_all()[0].text, "hi")

    def test_on_append_receives_message(self):
        self.history.append(user("hi"))
        self.assertEqual([m.text for m in self.appended], ["hi"])

    def test_replace_strips_thought_signatures(self):
        self.history.replace([assistant(TextFragment("a", thought_signature="sig"))], strip_thoughts=True)
        fragment = self.history.get_all()[0].fragments[0]
        self.assertIsNone(fragment.thought_signature)
        self.assertEqual(fragment.value, "a")

    def test_replace_does_not_notify(self):
        self.history.replace([user("restored")])
        self.assertEqual(self.appended, [])

    def test_clear(self):
        self.history.append(user("hi"))
        self.history.clear()
        self.assertEqual(self.history.get_all(), [])


class TestCuration(unittest.TestCase):
    def test_valid_history_is_unchanged(self):
        history = [user("hi"), assistant(TextFragment("hello"))]
        self.assertEqual(curate_history(history), history)

    def test_invalid_fragment_drops_whole_assistant_run(self):
        history = [
            user("hi"),
            assistant(TextFragment("part one")),
            assistant(TextFragment("")),
            user("again"),
        ]
        self.assertEqual([m.text for m in curate_history(history)], ["hi", "again"])

    def test_tool_call_without_name_is_invalid(self):
        self.assertFalse(is_valid_message(assistant(ToolCallFragment(id="c1", name=""))))

    def test_orphan_tool_result_dropped(self):
        history = [user("hi"), tool("missing")]
        self.assertEqual(curate_history(history), [user("hi")])

    def test_tool_result_dropped_with_its_invalid_call(self):
        history = [
            user("read it"),
            assistant(ToolCallFragment(id="c1", name="read_file"), TextFragment("")),
            tool("c1"),
            user("next"),
        ]
        self.assertEqual([m.role for m in curate_history(history)], [Role.USER, Role.USER])

    def test_matching_tool_exchange_kept(self):
        history = [
            user("read it"),
            assistant(ToolCallFragment(id="c1", name="read_file", arguments={"path": "/a"})),
            tool("c1"),
            assistant(TextFragment("done")),
        ]
        self.assertEqual(curate_history(history), history)

    def test_curation_is_idempotent(self):
        histories = [
            [],
            [user("hi"), assistant(TextFragment(""))],
            [user("a"), assistant(ToolCallFragment(id="c1", name="x")), tool("c1"), tool("c2")],
            [assistant(TextFragment("x")), assistant(TextFragment("")), tool("c9"), user("z")],
            [Message(Role.SYSTEM, [TextFragment("sys")]), user("q"), assistant(TextFragment("a"))],
        ]
        for history in histories:
            once = curate_history(history)
            self.assertEqual(curate_history(once), once)

    def test_store_curated_view(self):
        store = HistoryStore()
        store.append(user("hi"))
        store.append(assistant(TextFragment("")))
        self.assertEqual(len(store.get_curated()), 1)
        self.assertEqual(len(store.get_all()), 2)


if __name__ == "__main__":
    unittest.main()
