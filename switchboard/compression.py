#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: compression.py
# Author: Ms. White
# Description: History compression through model generated summaries
# Created: 2025-06-07 10:25:51
# Modified: 2025-06-19 14:47:30

import json
import logging
from enum import Enum
from dataclasses import dataclass
from typing import List, Optional

from .conversion import convert_history
from .history import HistoryStore
from .messages import Message, Role, TextFragment
from .tokens import token_limit

logger = logging.getLogger(__name__)

COMPRESSION_TOKEN_THRESHOLD = 0.7
COMPRESSION_PRESERVE_THRESHOLD = 0.3

COMPRESSION_MESSAGE = "First, reason in your scratchpad. Then, generate the <state_snapshot>."
COMPRESSION_ACK = "Got it. Thanks for the additional context!"

COMPRESSION_PROMPT = """You are the component that summarizes internal chat history into a given structure.

When the conversation history grows too large, you will be invoked to distill the entire history into a concise, structured XML snapshot. This snapshot is CRITICAL, as it will become the agent's *only* memory of the past. The agent will resume its work based solely on this snapshot. All crucial details, plans, errors, and user directives MUST be preserved.

First, you will think through the entire history in a private <scratchpad>. Review the user's overall goal, the agent's actions, tool outputs, file modifications, and any unresolved questions. Identify every piece of information that is essential for future actions.

After your reasoning is complete, generate the final <state_snapshot> XML object. Be incredibly dense with information. Omit any irrelevant conversational filler.

The structure MUST be as follows:

<state_snapshot>
    <overall_goal>
        <!-- A single, concise sentence describing the user's high-level objective. -->
    </overall_goal>

    <key_knowledge>
        <!-- Crucial facts, conventions, and constraints the agent must remember. Use bullet points. -->
    </key_knowledge>

    <file_system_state>
        <!-- Files that have been created, read, modified, or deleted, with short notes. -->
    </file_system_state>

    <recent_actions>
        <!-- A summary of the last few significant agent actions and their outcomes. -->
    </recent_actions>

    <current_plan>
        <!-- The agent's step-by-step plan. Mark completed steps. -->
    </current_plan>
</state_snapshot>
"""


class CompressionStatus(str, Enum):
    COMPRESSED = "compressed"
    NOOP = "noop"
    FAILED_TOKEN_COUNT_ERROR = "failed_token_count_error"
    FAILED_INFLATED = "failed_inflated"


@dataclass(frozen=True)
class CompressionOutcome:
    original_token_count: int
    new_token_count: int
    status: CompressionStatus


def find_split_index(history: List[Message], fraction: float) -> int:
    """Locate the index at which a cumulative fraction of the history size is reached.

    Sizes are measured on the serialized JSON form of each message, so a
    large tool result weighs more than a short user line.

    Args:
        history: Messages to measure.
        fraction: Target share of the total size, strictly between 0 and 1.

    Returns:
        int: First index whose cumulative size reaches fraction of the total,
        or len(history) if none does.

    Raises:
        ValueError: If fraction is not strictly between 0 and 1.
    """
    if fraction <= 0 or fraction >= 1:
        raise ValueError("Fraction must be between 0 and 1")

    lengths = [len(json.dumps(m.to_dict(), default=str)) for m in history]
    target = sum(lengths) * fraction

    so_far = 0
    for index, length in enumerate(lengths):
        so_far += length
        if so_far >= target:
            return index
    return len(lengths)


class Compressor:
    """Replaces the older part of a history with a model written summary.

    A failed attempt is sticky: later unforced calls return NOOP until a
    forced call or a successful compression clears it.

    Args:
        history: HistoryStore to compress in place.
        threshold: Share of the model's context window that triggers compression.
        preserve_fraction: Share of the history, by size, kept verbatim.
    """

    def __init__(
        self,
        history: HistoryStore,
        threshold: float = COMPRESSION_TOKEN_THRESHOLD,
        preserve_fraction: float = COMPRESSION_PRESERVE_THRESHOLD
    ):
        self.history = history
        self.threshold = threshold
        self.preserve_fraction = preserve_fraction
        self.has_failed = False

    def _fail(self, curated: List[Message], force: bool, original: int, new_count: int,
              status: CompressionStatus) -> CompressionOutcome:
        self.history.replace(curated)
        self.has_failed = not force
        return CompressionOutcome(original, new_count, status)

    async def compress(
        self,
        model_handle,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        force: bool = False
    ) -> CompressionOutcome:
        """Compress the history if it is large enough, or unconditionally when forced.

        Args:
            model_handle: Model handle used for counting and summarizing.
            model: Model id used for the context window lookup.
            system_prompt: System prompt included when counting tokens.
            force: Skip the threshold check and ignore a previous failure.

        Returns:
            CompressionOutcome: Token counts before and after, and the status.
        """
        curated = self.history.get_curated()

        if not curated or (self.has_failed and not force):
            return CompressionOutcome(0, 0, CompressionStatus.NOOP)

        model = model or model_handle.model_id

        try:
            original = await model_handle.count_tokens(convert_history(curated), system_prompt)
        except Exception as e:
            logger.warning(f"[COMPRESS] Could not determine token count for model {model}: {e}")
            self.has_failed = not force
            return CompressionOutcome(0, 0, CompressionStatus.FAILED_TOKEN_COUNT_ERROR)

        if not force and original < self.threshold * token_limit(model):
            return CompressionOutcome(original, original, CompressionStatus.NOOP)

        # A lone message has nothing before it to summarize
        if len(curated) <= 1:
            return CompressionOutcome(original, original, CompressionStatus.NOOP)

        split = find_split_index(curated, 1 - self.preserve_fraction)

        # Never cut inside an assistant/tool exchange
        while split < len(curated) and (
            curated[split].role == Role.ASSISTANT or curated[split].is_tool_result()
        ):
            split += 1

        to_compress = curated[:split]
        to_keep = curated[split:]

        if not to_compress:
            return CompressionOutcome(original, original, CompressionStatus.NOOP)

        logger.info(f"[COMPRESS] Summarizing {len(to_compress)} message(s), keeping {len(to_keep)}")

        request = convert_history(to_compress + [Message.user(COMPRESSION_MESSAGE)])
        try:
            summary = await model_handle.generate(
                request,
                system_prompt=COMPRESSION_PROMPT,
                max_output_tokens=original
            )
        except Exception as e:
            logger.warning(f"[COMPRESS] Summary request failed: {e}")
            summary = ""

        summary = (summary or "").strip()
        if not summary:
            return self._fail(curated, force, original, original, CompressionStatus.FAILED_TOKEN_COUNT_ERROR)

        renewed = [
            Message(Role.USER, [TextFragment(summary)]),
            Message(Role.ASSISTANT, [TextFragment(COMPRESSION_ACK)]),
        ] + to_keep

        try:
            new_count = await model_handle.count_tokens(convert_history(renewed), system_prompt)
        except Exception as e:
            logger.warning(f"[COMPRESS] Could not determine compressed history token count: {e}")
            return self._fail(curated, force, original, original, CompressionStatus.FAILED_TOKEN_COUNT_ERROR)

        logger.info(f"[COMPRESS] Tokens before: {original}, after: {new_count}")

        if new_count > original:
            return self._fail(curated, force, original, new_count, CompressionStatus.FAILED_INFLATED)

        self.history.replace(renewed, strip_thoughts=True)
        self.has_failed = False
        return CompressionOutcome(original, new_count, CompressionStatus.COMPRESSED)
