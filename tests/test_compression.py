#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: test_compression.py
# Description: Test suite for compression.py
# Author: Ms. White
# Created: 2025-06-12
# Modified: 2025-06-19 20:22:47

import unittest

from fakes import FakeModelHandle
from switchboard.compression import (
    COMPRESSION_ACK,
    COMPRESSION_PROMPT,
    CompressionStatus,
    Compressor,
    find_split_index
)
from switchboard.history import HistoryStore
from switchboard.messages import Message, Role, TextFragment


def user(text):
    return Message(Role.USER, [TextFragment(text)])


def assistant(text):
    return Message(Role.ASSISTANT, [TextFragment(text)])


class TestFindSplitIndex(unittest.TestCase):
    def setUp(self):
        self.history = [
            user("This is the first message."),
            assistant("This is the second message."),
            user("This is the third message."),
            assistant("This is the fourth message."),
            user("This is the fifth message."),
        ]

    def test_rejects_non_positive_fraction(self):
        with self.assertRaises(ValueError):
            find_split_index(self.history, 0)

    def test_rejects_fraction_of_one_or_more(self):
        with self.assertRaises(ValueError):
            find_split_index(self.history, 1)
        with self.assertRaises(ValueError):
            find_split_index(self.history, 1.5)

    def test_half_of_evenly_sized_history(self):
        self.assertEqual(find_split_index(self.history, 0.5), 2)

    def test_half_of_growing_history(self):
        history = [user("a" * size) for size in (10, 20, 40, 80, 160)]
        self.assertEqual(find_split_index(history, 0.5), 3)

    def test_short_histories(self):
        self.assertEqual(find_split_index([], 0.5), 0)
        self.assertEqual(find_split_index(self.history[:1], 0.5), 0)


class TestCompressor(unittest.IsolatedAsyncioTestCase):
    def make_history(self, messages):
        history = HistoryStore()
        for message in messages:
            history.append(message)
        return history

    def six_messages(self):
        return [
            user("x" * 100), assistant("x" * 100),
            user("x" * 100), assistant("x" * 100),
            user("x" * 100), assistant("x" * 100),
        ]

    async def test_empty_history_is_noop(self):
        compressor = Compressor(HistoryStore())
        outcome = await compressor.compress(FakeModelHandle(), force=True)
        self.assertEqual(outcome.status, CompressionStatus.NOOP)
        self.assertEqual((outcome.original_token_count, outcome.new_token_count), (0, 0))

    async def test_below_threshold_is_noop(self):
        history = self.make_history(self.six_messages())
        handle = FakeModelHandle(token_counts=[500])
        outcome = await Compressor(history).compress(handle, model="gpt-4o")
        self.assertEqual(outcome.status, CompressionStatus.NOOP)
        self.assertEqual(outcome.new_token_count, 500)
        self.assertEqual(handle.generate_calls, [])

    async def test_single_message_is_not_compressed(self):
        history = self.make_history([user("x" * 1000)])
        handle = FakeModelHandle(token_counts=[1000])
        compressor = Compressor(history)

        outcome = await compressor.compress(handle, force=True)

        self.assertEqual(outcome.status, CompressionStatus.NOOP)
        self.assertEqual(outcome.original_token_count, 1000)
        self.assertEqual(handle.generate_calls, [])
        self.assertEqual(history.get_all()[0].text, "x" * 1000)
        self.assertFalse(compressor.has_failed)

    async def test_forced_compression_replaces_old_messages(self):
        messages = self.six_messages()
        history = self.make_history(messages)
        handle = FakeModelHandle(token_counts=[1000, 200], summary="  <state_snapshot/>  ")

        outcome = await Compressor(history).compress(handle, force=True)

        self.assertEqual(outcome.status, CompressionStatus.COMPRESSED)
        self.assertEqual((outcome.original_token_count, outcome.new_token_count), (1000, 200))
        self.assertLessEqual(outcome.new_token_count, outcome.original_token_count)

        renewed = history.get_all()
        self.assertEqual(renewed[0].role, Role.USER)
        self.assertEqual(renewed[0].text, "<state_snapshot/>")
        self.assertEqual(renewed[1].text, COMPRESSION_ACK)
        self.assertEqual(renewed[2:], messages[4:])

        call = handle.generate_calls[0]
        self.assertEqual(call["system_prompt"], COMPRESSION_PROMPT)
        self.assertEqual(call["max_output_tokens"], 1000)
        self.assertEqual(len(call["messages"]), 5)

    async def test_threshold_triggers_compression(self):
        history = self.make_history(self.six_messages())
        handle = FakeModelHandle(token_counts=[100_000, 1000])
        outcome = await Compressor(history, threshold=0.7).compress(handle, model="gpt-4o")
        self.assertEqual(outcome.status, CompressionStatus.COMPRESSED)

    async def test_split_never_lands_on_assistant(self):
        history = self.make_history([user("x" * 100), assistant("y" * 1000), user("z" * 10)])
        handle = FakeModelHandle(token_counts=[1000, 100])

        outcome = await Compressor(history).compress(handle, force=True)

        self.assertEqual(outcome.status, CompressionStatus.COMPRESSED)
        renewed = history.get_all()
        self.assertEqual(len(renewed), 3)
        self.assertEqual(renewed[-1].text, "z" * 10)

    async def test_empty_summary_restores_history_and_is_sticky(self):
        messages = self.six_messages()
        history = self.make_history(messages)
        handle = FakeModelHandle(token_counts=[1000], summary="   ")
        compressor = Compressor(history, threshold=0.0001)

        outcome = await compressor.compress(handle, model="gpt-4o")

        self.assertEqual(outcome.status, CompressionStatus.FAILED_TOKEN_COUNT_ERROR)
        self.assertEqual(history.get_all(), messages)
        self.assertTrue(compressor.has_failed)

        again = await compressor.compress(handle, model="gpt-4o")
        self.assertEqual(again.status, CompressionStatus.NOOP)
        self.assertEqual(len(handle.generate_calls), 1)

    async def test_inflated_summary_is_rejected(self):
        messages = self.six_messages()
        history = self.make_history(messages)
        handle = FakeModelHandle(token_counts=[100, 500])
        compressor = Compressor(history)

        outcome = await compressor.compress(handle, force=True)

        self.assertEqual(outcome.status, CompressionStatus.FAILED_INFLATED)
        self.assertEqual(outcome.new_token_count, 500)
        self.assertEqual(history.get_all(), messages)

    async def test_token_count_error(self):
        history = self.make_history(self.six_messages())
        handle = FakeModelHandle(token_counts=[RuntimeError("count unavailable")])
        compressor = Compressor(history)

        outcome = await compressor.compress(handle)

        self.assertEqual(outcome.status, CompressionStatus.FAILED_TOKEN_COUNT_ERROR)
        self.assertTrue(compressor.has_failed)

    async def test_forced_failure_does_not_set_sticky_flag(self):
        history = self.make_history(self.six_messages())
        compressor = Compressor(history)

        await compressor.compress(FakeModelHandle(token_counts=[1000], summary=""), force=True)

        self.assertFalse(compressor.has_failed)

    async def test_success_clears_sticky_flag(self):
        history = self.make_history(self.six_messages())
        compressor = Compressor(history)
        compressor.has_failed = True

        outcome = await compressor.compress(FakeModelHandle(token_counts=[1000, 100]), force=True)

        self.assertEqual(outcome.status, CompressionStatus.COMPRESSED)
        self.assertFalse(compressor.has_failed)

    async def test_summary_error_counts_as_failure(self):
        history = self.make_history(self.six_messages())
        handle = FakeModelHandle(token_counts=[1000], summary=RuntimeError("boom"))
        outcome = await Compressor(history).compress(handle, force=True)
        self.assertEqual(outcome.status, CompressionStatus.FAILED_TOKEN_COUNT_ERROR)


if __name__ == "__main__":
    unittest.main()
