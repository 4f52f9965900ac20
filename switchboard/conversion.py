#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: conversion.py
# Author: Ms. White
# Description: History to provider-agnostic message conversion
# Created: 2025-06-05 09:12:40
# Modified: 2025-06-18 17:33:10

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .messages import (
    Message,
    Role,
    TextFragment,
    ToolCallFragment,
    ToolResultFragment,
    render_payload
)

ROLE_MAP = {
    Role.USER: "user",
    Role.ASSISTANT: "assistant",
    Role.SYSTEM: "system",
    Role.TOOL: "tool",
    "function": "tool",
}

EMPTY_RESULT = "(no output)"


@dataclass
class AgentMessage:
    role: str
    content: str
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    tool_calls: List[ToolCallFragment] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


def extract_text(message: Message) -> str:
    """Join the text and tool result fragments of a message."""
    segments = []
    for fragment in message.fragments:
        if isinstance(fragment, TextFragment):
            text = fragment.value.strip()
            if text:
                segments.append(text)
        elif isinstance(fragment, ToolResultFragment):
            rendered = render_payload(fragment.payload).strip()
            if rendered:
                segments.append(rendered)
    return "\n".join(segments).strip()


def convert_message(message: Message) -> List[AgentMessage]:
    """Convert one history message.

    Messages with no text and no tool calls produce nothing, since
    providers reject empty turns. Tool messages are the exception: each
    tool result becomes its own tool message, with a placeholder when the
    payload renders empty.
    """
    role = ROLE_MAP.get(message.role, "user")
    results = message.tool_results

    # Every call needs an answer, so results are never dropped for being empty
    if role == "tool" and results:
        return [
            AgentMessage(
                role="tool",
                content=render_payload(result.payload).strip() or EMPTY_RESULT,
                tool_call_id=result.call_id,
                name=result.name,
                metadata={"is_error": result.is_error}
            )
            for result in results
        ]

    text = extract_text(message)
    tool_calls = message.tool_calls if role == "assistant" else []
    if not text and not tool_calls:
        return []

    converted = AgentMessage(role=role, content=text, tool_calls=list(tool_calls))
    if results:
        converted.tool_call_id = results[0].call_id
        converted.name = results[0].name
        converted.metadata["is_error"] = results[0].is_error
    return [converted]


def convert_history(history: List[Message]) -> List[AgentMessage]:
    messages = []
    for entry in history:
        messages.extend(convert_message(entry))
    return messages
