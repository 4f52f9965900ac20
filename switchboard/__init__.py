#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: __init__.py
# Author: Ms. White
# Description: 
# Created: 2025-06-02 10:02:11
# Modified: 2025-06-19 19:10:45

from .conversation import Conversation
from .client import AgentClient, AgentSession
from .compression import CompressionOutcome, CompressionStatus, Compressor, find_split_index
from .dispatch import ToolDispatchCache, ToolDispatcher
from .history import HistoryStore
from .messages import Message, Role, TextFragment, ThoughtFragment, ToolCallFragment, ToolResultFragment
from .normalizer import StreamNormalizer
from .session import SessionHandle, SessionStore
from .tools import FunctionToolExecutor, ToolRegistry
from .turn import Turn

__all__ = [
    "AgentClient",
    "AgentSession",
    "CompressionOutcome",
    "CompressionStatus",
    "Compressor",
    "Conversation",
    "FunctionToolExecutor",
    "HistoryStore",
    "Message",
    "Role",
    "SessionHandle",
    "SessionStore",
    "StreamNormalizer",
    "TextFragment",
    "ThoughtFragment",
    "ToolCallFragment",
    "ToolDispatchCache",
    "ToolDispatcher",
    "ToolRegistry",
    "ToolResultFragment",
    "Turn",
    "find_split_index",
]
