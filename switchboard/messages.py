#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: messages.py
# Author: Ms. White
# Description: Role-tagged messages and the fragment union shared
#              by history, compression, streaming and tool dispatch
# Created: 2025-06-02 10:14:31
# Modified: 2025-06-19 16:40:02

import copy
import json
from enum import Enum
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Union


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class TextFragment:
    value: str
    thought_signature: Optional[str] = None


@dataclass(frozen=True)
class ToolCallFragment:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    thought_signature: Optional[str] = None


@dataclass(frozen=True)
class ToolResultFragment:
    call_id: str
    name: str
    payload: Any = None
    is_error: bool = False
    thought_signature: Optional[str] = None


@dataclass(frozen=True)
class ThoughtFragment:
    """Advisory reasoning text. Never required for correctness."""
    text: str
    thought_signature: Optional[str] = None


Fragment = Union[TextFragment, ToolCallFragment, ToolResultFragment, ThoughtFragment]

_FRAGMENT_KINDS = {
    TextFragment: "text",
    ToolCallFragment: "tool_call",
    ToolResultFragment: "tool_result",
    ThoughtFragment: "thought",
}


def render_payload(payload: Any) -> str:
    """Render a tool result payload as text for providers that only take strings."""
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload)
    except (TypeError, ValueError):
        return str(payload)


def fragment_to_dict(fragment: Fragment) -> Dict[str, Any]:
    kind = _FRAGMENT_KINDS.get(type(fragment))
    if kind is None:
        raise TypeError(f"Unsupported fragment type: {type(fragment).__name__}")

    data = {"type": kind}
    if isinstance(fragment, TextFragment):
        data["text"] = fragment.value
    elif isinstance(fragment, ToolCallFragment):
        data.update({"id": fragment.id, "name": fragment.name, "arguments": fragment.arguments})
    elif isinstance(fragment, ToolResultFragment):
        data.update({
            "call_id": fragment.call_id,
            "name": fragment.name,
            "payload": fragment.payload,
            "is_error": fragment.is_error
        })
    else:
        data["text"] = fragment.text

    if fragment.thought_signature is not None:
        data["thought_signature"] = fragment.thought_signature
    return data


def fragment_from_dict(data: Dict[str, Any]) -> Fragment:
    kind = data.get("type")
    signature = data.get("thought_signature")

    if kind == "text":
        return TextFragment(value=data.get("text", ""), thought_signature=signature)
    if kind == "tool_call":
        return ToolCallFragment(
            id=data["id"],
            name=data["name"],
            arguments=dict(data.get("arguments") or {}),
            thought_signature=signature
        )
    if kind == "tool_result":
        return ToolResultFragment(
            call_id=data["call_id"],
            name=data.get("name", ""),
            payload=data.get("payload"),
            is_error=bool(data.get("is_error", False)),
            thought_signature=signature
        )
    if kind == "thought":
        return ThoughtFragment(text=data.get("text", ""), thought_signature=signature)
    raise ValueError(f"Unknown fragment type: {kind!r}")


def strip_thought_signature(fragment: Fragment) -> Fragment:
    if fragment.thought_signature is None:
        return copy.deepcopy(fragment)
    return copy.deepcopy(replace(fragment, thought_signature=None))


@dataclass
class Message:
    role: Role
    fragments: List[Fragment] = field(default_factory=list)

    def __post_init__(self):
        self.role = Role(self.role)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(Role.USER, [TextFragment(text)])

    @classmethod
    def assistant(cls, text: str) -> "Message":
        return cls(Role.ASSISTANT, [TextFragment(text)])

    @property
    def text(self) -> str:
        """Concatenated value of the text fragments."""
        return "".join(f.value for f in self.fragments if isinstance(f, TextFragment))

    @property
    def tool_calls(self) -> List[ToolCallFragment]:
        return [f for f in self.fragments if isinstance(f, ToolCallFragment)]

    @property
    def tool_results(self) -> List[ToolResultFragment]:
        return [f for f in self.fragments if isinstance(f, ToolResultFragment)]

    def is_tool_result(self) -> bool:
        return self.role == Role.TOOL or bool(self.tool_results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "fragments": [fragment_to_dict(f) for f in self.fragments]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            role=Role(data.get("role", Role.USER.value)),
            fragments=[fragment_from_dict(f) for f in data.get("fragments", [])]
        )


MessageInput = Union[str, Fragment, List[Union[str, Fragment]]]


def normalize_input(value: MessageInput) -> List[Fragment]:
    """Turn a string, a single fragment, or a list of either into a fragment list."""
    if isinstance(value, str):
        return [TextFragment(value)]

    if isinstance(value, tuple(_FRAGMENT_KINDS)):
        return [value]

    if isinstance(value, (list, tuple)):
        fragments = []
        for item in value:
            if isinstance(item, str):
                fragments.append(TextFragment(item))
            elif isinstance(item, tuple(_FRAGMENT_KINDS)):
                fragments.append(item)
            else:
                raise TypeError(f"Unsupported input item: {type(item).__name__}")
        return fragments

    return [TextFragment(str(value))]


def serialized_size(message: Message) -> int:
    """Length in bytes of the JSON form of a message."""
    return len(json.dumps(message.to_dict(), default=str).encode("utf-8"))
