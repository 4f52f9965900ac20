#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: events.py
# Author: Ms. White
# Description: Canonical stream events produced for every provider
# Created: 2025-06-04 13:27:09
# Modified: 2025-06-19 11:58:44

from enum import Enum
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Union

from .messages import Fragment, ToolResultFragment, fragment_to_dict


class EventType(str, Enum):
    CONTENT = "content"
    THOUGHT = "thought"
    TOOL_CALL_REQUEST = "tool_call_request"
    TOOL_CALL_RESPONSE = "tool_call_response"
    CHAT_COMPRESSED = "chat_compressed"
    USAGE = "usage"
    FINISHED = "finished"
    ERROR = "error"
    USER_CANCELLED = "user_cancelled"


TERMINAL_EVENT_TYPES = frozenset({
    EventType.FINISHED,
    EventType.ERROR,
    EventType.USER_CANCELLED,
})


@dataclass(frozen=True)
class ToolCallRequest:
    call_id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    is_client_initiated: bool = False


@dataclass
class ToolCallResponse:
    call_id: str
    result_fragments: List[Fragment] = field(default_factory=list)
    display: Any = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, call_id: str, name: str, message: str) -> "ToolCallResponse":
        return cls(
            call_id=call_id,
            result_fragments=[ToolResultFragment(
                call_id=call_id,
                name=name,
                payload={"error": message},
                is_error=True
            )],
            error=message
        )

    def for_call(self, call_id: str) -> "ToolCallResponse":
        """Copy of this response rebound to another call id."""
        fragments = [
            ToolResultFragment(
                call_id=call_id,
                name=f.name,
                payload=f.payload,
                is_error=f.is_error,
                thought_signature=f.thought_signature
            ) if isinstance(f, ToolResultFragment) else f
            for f in self.result_fragments
        ]
        return ToolCallResponse(call_id=call_id, result_fragments=fragments,
                                display=self.display, error=self.error)


@dataclass(frozen=True)
class ContentDelta:
    type: ClassVar[EventType] = EventType.CONTENT
    text: str

    def to_wire(self) -> Dict[str, Any]:
        return {"type": "text-delta", "delta": self.text}


@dataclass(frozen=True)
class Thought:
    type: ClassVar[EventType] = EventType.THOUGHT
    description: str
    subject: str = "Reasoning"

    def to_wire(self) -> Dict[str, Any]:
        return {"type": "thought", "thought": {"subject": self.subject, "description": self.description}}


@dataclass(frozen=True)
class ToolCallRequested:
    type: ClassVar[EventType] = EventType.TOOL_CALL_REQUEST
    request: ToolCallRequest

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": "tool-call",
            "toolCall": {
                "id": self.request.call_id,
                "name": self.request.name,
                "arguments": self.request.arguments
            }
        }


@dataclass(frozen=True)
class ToolCallCompleted:
    type: ClassVar[EventType] = EventType.TOOL_CALL_RESPONSE
    response: ToolCallResponse

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": "tool-result",
            "toolResult": {
                "id": self.response.call_id,
                "parts": [fragment_to_dict(f) for f in self.response.result_fragments],
                "display": self.response.display,
                "error": self.response.error
            }
        }


@dataclass(frozen=True)
class ChatCompressed:
    type: ClassVar[EventType] = EventType.CHAT_COMPRESSED
    outcome: Any

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": "compressed",
            "compression": {
                "originalTokenCount": self.outcome.original_token_count,
                "newTokenCount": self.outcome.new_token_count,
                "status": self.outcome.status.value
            }
        }


@dataclass(frozen=True)
class Usage:
    type: ClassVar[EventType] = EventType.USAGE
    usage: Dict[str, Any]

    def to_wire(self) -> Dict[str, Any]:
        return {"type": "usage", "usage": dict(self.usage)}


@dataclass(frozen=True)
class Finished:
    type: ClassVar[EventType] = EventType.FINISHED
    reason: str = "STOP"
    message: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return {"type": "final", "message": {"role": "assistant", "content": self.message or ""}}


@dataclass(frozen=True)
class Errored:
    type: ClassVar[EventType] = EventType.ERROR
    message: str
    status: Optional[int] = None

    def to_wire(self) -> Dict[str, Any]:
        return {"type": "error", "error": {"message": self.message, "status": self.status}}


@dataclass(frozen=True)
class UserCancelled:
    type: ClassVar[EventType] = EventType.USER_CANCELLED

    def to_wire(self) -> Dict[str, Any]:
        return {"type": "cancelled"}


StreamEvent = Union[
    ContentDelta, Thought, ToolCallRequested, ToolCallCompleted,
    ChatCompressed, Usage, Finished, Errored, UserCancelled
]


def is_terminal(event: StreamEvent) -> bool:
    return event.type in TERMINAL_EVENT_TYPES


def error_status(error: BaseException) -> Optional[int]:
    """HTTP status carried by SDK errors, if any."""
    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    return status if isinstance(status, int) else None


def error_message(error: BaseException) -> str:
    message = str(error)
    return message or error.__class__.__name__
