#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: tokens.py
# Author: Ms. White
# Description: Context window limits and tiktoken based estimation
# Created: 2025-06-03 08:45:12
# Modified: 2025-06-17 14:02:38

import json
import logging
from typing import Any, Dict, List, Optional

import tiktoken

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIMIT = 1_048_576
OPENAI_GPT5_LIMIT = 282_000
OPENAI_GPT4O_LIMIT = 128_000
OPENAI_GPT41_LIMIT = 1_047_576
ANTHROPIC_OPUS_LIMIT = 200_000
ANTHROPIC_SONNET_LIMIT = 1_000_000

_GEMINI_LIMITS = {
    "gemini-1.5-pro": 2_097_152,
    "gemini-1.5-flash": DEFAULT_TOKEN_LIMIT,
    "gemini-2.0-flash": DEFAULT_TOKEN_LIMIT,
    "gemini-2.5-pro": DEFAULT_TOKEN_LIMIT,
    "gemini-2.5-flash": DEFAULT_TOKEN_LIMIT,
    "gemini-2.5-flash-lite": DEFAULT_TOKEN_LIMIT,
    "gemini-2.0-flash-preview-image-generation": 32_000,
}


def _normalize(model: Optional[str]) -> str:
    if not model:
        return ""
    name = model.lower()
    if name.startswith("models/"):
        name = name[len("models/"):]
    return name


def token_limit(model: Optional[str]) -> int:
    """Return the context window size in tokens for a model id."""
    name = _normalize(model)
    if not name:
        return DEFAULT_TOKEN_LIMIT

    if name in _GEMINI_LIMITS:
        return _GEMINI_LIMITS[name]

    if name.startswith("gpt-5"):
        return OPENAI_GPT5_LIMIT
    if name.startswith("gpt-4.1"):
        return OPENAI_GPT41_LIMIT
    if name.startswith("gpt-4o"):
        return OPENAI_GPT4O_LIMIT

    if "claude-opus-4" in name or name.startswith("claude-3"):
        return ANTHROPIC_OPUS_LIMIT
    if "claude-sonnet-4" in name:
        return ANTHROPIC_SONNET_LIMIT

    return DEFAULT_TOKEN_LIMIT


def get_encoding(model: Optional[str] = None):
    """Load the tiktoken encoding for a model, falling back to cl100k_base."""
    if model:
        try:
            return tiktoken.encoding_for_model(model)
        except KeyError:
            logger.debug(f"[ENCODING] No tokenizer registered for {model}, using cl100k_base")
    return tiktoken.get_encoding("cl100k_base")


def estimate_tokens(messages: List[Dict[str, Any]], encoding) -> int:
    """Estimate the token count of OpenAI-format chat messages."""
    num_tokens = 0

    for msg in messages:
        # Per-message overhead for role and framing
        num_tokens += 4
        num_tokens += len(encoding.encode(msg.get("role", "")))

        content = msg.get("content")
        if isinstance(content, str):
            num_tokens += len(encoding.encode(content))
        elif isinstance(content, list):
            for block in content:
                if isinstance(block, dict) and isinstance(block.get("text"), str):
                    num_tokens += len(encoding.encode(block["text"]))
                else:
                    num_tokens += len(encoding.encode(json.dumps(block, default=str)))

        for tool_call in msg.get("tool_calls") or []:
            function = tool_call.get("function", {})
            num_tokens += len(encoding.encode(function.get("name", "")))
            args = function.get("arguments", "")
            if not isinstance(args, str):
                args = json.dumps(args, default=str)
            num_tokens += len(encoding.encode(args))
            num_tokens += len(encoding.encode(tool_call.get("id", "")))

        if msg.get("role") == "tool":
            num_tokens += len(encoding.encode(msg.get("tool_call_id", "")))

    # Reply priming
    num_tokens += 2
    return num_tokens
