#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: history.py
# Author: Ms. White
# Description: Ordered conversation history with curation
#              and wholesale replacement for compression
# Created: 2025-06-02 11:02:47
# Modified: 2025-06-18 09:21:55

import copy
import logging
from typing import Callable, Iterable, List, Optional

from .messages import (
    Message,
    Role,
    TextFragment,
    ToolCallFragment,
    ToolResultFragment,
    strip_thought_signature
)

logger = logging.getLogger(__name__)


def is_valid_message(message: Message) -> bool:
    """Check that a message has fragments and that every fragment is well formed.

    A single empty text fragment, or a tool call without an id or name,
    makes the whole message invalid.
    """
    if not message.fragments:
        return False

    for fragment in message.fragments:
        if fragment is None:
            return False
        if isinstance(fragment, TextFragment) and not fragment.value:
            return False
        if isinstance(fragment, ToolCallFragment) and not (fragment.id and fragment.name):
            return False
        if isinstance(fragment, ToolResultFragment) and not fragment.call_id:
            return False
    return True


def curate_history(history: List[Message]) -> List[Message]:
    """Return the well-formed subset of a history.

    User and system messages are always kept. Consecutive assistant messages
    form a run that is kept only when every member is valid; otherwise the
    whole run is dropped. Tool messages are kept only when a call with the
    same id survives earlier in the curated output.
    """
    curated = []
    seen_call_ids = set()
    index = 0
    length = len(history)

    while index < length:
        entry = history[index]

        if entry.role == Role.ASSISTANT:
            run = []
            valid = True
            while index < length and history[index].role == Role.ASSISTANT:
                candidate = history[index]
                run.append(candidate)
                if valid and not is_valid_message(candidate):
                    valid = False
                index += 1

            if valid:
                curated.extend(run)
                for message in run:
                    seen_call_ids.update(call.id for call in message.tool_calls)
            else:
                logger.debug(f"[HISTORY] Dropped invalid assistant run of {len(run)} message(s)")
            continue

        if entry.role == Role.TOOL:
            results = entry.tool_results
            if results and all(r.call_id in seen_call_ids for r in results):
                curated.append(entry)
            else:
                logger.debug("[HISTORY] Dropped tool message without a matching call")
            index += 1
            continue

        curated.append(entry)
        index += 1

    return curated


class HistoryStore:
    """Sole owner of a session's message list.

    Every read hands out a deep copy so callers can never alias the
    backing list.
    """

    def __init__(self, on_append: Optional[Callable[[Message], None]] = None):
        self._messages: List[Message] = []
        self._on_append = on_append

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, message: Message):
        """Add a message to the tail.

        Raises:
            ValueError: If the message carries no fragments.
        """
        if not message.fragments:
            raise ValueError("Cannot append a message with no fragments.")
        stored = copy.deepcopy(message)
        self._messages.append(stored)
        if self._on_append:
            self._on_append(copy.deepcopy(stored))

    def get_all(self) -> List[Message]:
        return copy.deepcopy(self._messages)

    def get_curated(self) -> List[Message]:
        return copy.deepcopy(curate_history(self._messages))

    def replace(self, new_history: Iterable[Message], strip_thoughts: bool = False):
        """Swap in a new history, optionally removing thought signatures."""
        if strip_thoughts:
            self._messages = [
                Message(m.role, [strip_thought_signature(f) for f in m.fragments])
                for m in new_history
            ]
        else:
            self._messages = copy.deepcopy(list(new_history))

    def clear(self):
        self._messages = []
