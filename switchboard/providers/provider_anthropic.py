"""Anthropic connector implementation.

This module implements the BaseConnector interface for Anthropic's messages
API. Tool definitions arrive in OpenAI function format and are converted to
Anthropic's input_schema layout before each request.
"""

import logging
import traceback
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Type

import aiohttp

from ..messages import TextFragment, ThoughtFragment, ToolCallFragment
from .base import (
    BaseConnector,
    BaseModelHandle,
    ConnectorContext,
    ModelDescriptor,
    ProviderChunk,
    load_optional,
    new_call_id,
    parse_tool_arguments,
    retry_with_backoff
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 8192


def to_anthropic_tools(tools: List[Dict]) -> List[Dict]:
    """Convert OpenAI-style function definitions to Anthropic tools."""
    anthropic_tools = []
    for tool in tools:
        tool_params = tool["function"].get("parameters", {})
        format_tool = {
            "name": tool["function"]["name"],
            "description": tool["function"].get("description", ""),
            "input_schema": {
                "type": "object",
                "properties": tool_params.get("properties", {})
            }
        }
        # 'required' must be a direct child of input_schema
        if "required" in tool_params:
            format_tool["input_schema"]["required"] = tool_params["required"]
        anthropic_tools.append(format_tool)
    return anthropic_tools


def to_anthropic_messages(messages: List[Any]) -> List[Dict]:
    """Convert AgentMessage objects into Anthropic content block messages.

    System messages are dropped here; the caller passes the system prompt
    separately. Consecutive messages with the same role are merged because
    the API requires alternating turns.
    """
    history = []
    announced = set()

    for msg in messages:
        if msg.role == "system":
            continue

        if msg.role == "assistant":
            role = "assistant"
            blocks = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls:
                blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": call.arguments
                })
                announced.add(call.id)

        elif msg.role == "tool":
            role = "user"
            if msg.tool_call_id and msg.tool_call_id in announced:
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content
                }
                if msg.metadata.get("is_error"):
                    block["is_error"] = True
                blocks = [block]
            else:
                blocks = [{"type": "text", "text": f"[{msg.name or 'tool'} result]\n{msg.content}"}]

        else:
            role = "user"
            blocks = [{"type": "text", "text": msg.content}]

        if not blocks:
            continue

        if history and history[-1]["role"] == role:
            history[-1]["content"].extend(blocks)
        else:
            history.append({"role": role, "content": blocks})

    return history


class AnthropicModelHandle(BaseModelHandle):
    """Model handle backed by an AsyncAnthropic client."""

    def __init__(
        self,
        provider_id: str,
        model_id: str,
        *,
        client,
        retry_on: Tuple[Type[BaseException], ...] = (aiohttp.ClientError,),
        max_tokens: int = DEFAULT_MAX_TOKENS,
        **kwargs
    ):
        super().__init__(provider_id, model_id, **kwargs)
        self.client = client
        self.retry_on = retry_on
        self.max_tokens = max_tokens

    def _build_params(self, messages, system_prompt, tools, max_output_tokens) -> Dict[str, Any]:
        limit = self.max_tokens
        if max_output_tokens:
            limit = min(max_output_tokens, self.max_tokens)

        params = {
            "model": self.model_id,
            "messages": to_anthropic_messages(messages),
            "max_tokens": limit,
        }
        if system_prompt:
            params["system"] = system_prompt
        if tools:
            params["tools"] = to_anthropic_tools(tools)
        return params

    async def stream(
        self,
        messages: List[Any],
        *,
        system_prompt: Optional[str] = None,
        tools: Optional[List[Dict]] = None,
        max_output_tokens: Optional[int] = None
    ) -> AsyncIterator[ProviderChunk]:
        params = self._build_params(messages, system_prompt, tools, max_output_tokens)
        params["stream"] = True
        logger.debug(f"[ANTHROPIC REQUEST] Sending request to {self.model_id} with {len(params['messages'])} messages")

        try:
            stream_response = await retry_with_backoff(
                self.client.messages.create,
                max_retries=self.max_retries,
                retry_delay=self.retry_delay,
                retry_on=self.retry_on,
                **params
            )
        except Exception:
            logger.error(f"[ANTHROPIC ERROR RUNNER] {traceback.format_exc()}")
            raise

        content_type = None
        current_tool = None

        async for chunk in stream_response:
            chunk_type = getattr(chunk, "type", "unknown")
            logger.debug(f"[ANTHROPIC CHUNK] Type: {chunk_type}")

            if chunk_type == "message_start":
                usage = getattr(getattr(chunk, "message", None), "usage", None)
                if usage is not None:
                    yield ProviderChunk(usage={"input_tokens": getattr(usage, "input_tokens", 0)})

            elif chunk_type == "content_block_start":
                block = chunk.content_block
                content_type = getattr(block, "type", None)
                if content_type == "tool_use":
                    current_tool = {"id": block.id, "name": block.name, "arguments": ""}
                    logger.debug(f"[ANTHROPIC TOOL USE] {block.name}")

            elif chunk_type == "content_block_delta":
                delta = chunk.delta
                delta_type = getattr(delta, "type", None)
                if delta_type == "text_delta":
                    yield ProviderChunk(fragments=[TextFragment(delta.text)])
                elif delta_type == "thinking_delta":
                    yield ProviderChunk(fragments=[ThoughtFragment(delta.thinking)])
                elif delta_type == "input_json_delta" and current_tool is not None:
                    current_tool["arguments"] += delta.partial_json

            elif chunk_type == "content_block_stop":
                if content_type == "tool_use" and current_tool is not None:
                    yield ProviderChunk(fragments=[ToolCallFragment(
                        id=current_tool["id"] or new_call_id(current_tool["name"]),
                        name=current_tool["name"],
                        arguments=parse_tool_arguments(current_tool["arguments"])
                    )])
                    current_tool = None
                content_type = None

            elif chunk_type == "message_delta":
                stop_reason = getattr(chunk.delta, "stop_reason", None)
                usage = getattr(chunk, "usage", None)
                yield ProviderChunk(
                    finish_reason=stop_reason,
                    usage={"output_tokens": getattr(usage, "output_tokens", 0)} if usage is not None else None
                )

    async def generate(
        self,
        messages: List[Any],
        *,
        system_prompt: Optional[str] = None,
        max_output_tokens: Optional[int] = None
    ) -> str:
        params = self._build_params(messages, system_prompt, None, max_output_tokens)
        response = await retry_with_backoff(
            self.client.messages.create,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            retry_on=self.retry_on,
            **params
        )
        return "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        )

    async def count_tokens(self, messages: List[Any], system_prompt: Optional[str] = None) -> int:
        params = {
            "model": self.model_id,
            "messages": to_anthropic_messages(messages),
        }
        if system_prompt:
            params["system"] = system_prompt
        result = await self.client.messages.count_tokens(**params)
        return result.input_tokens


class AnthropicConnector(BaseConnector):
    """Connector for the Anthropic API."""

    id = "anthropic"
    display_name = "Anthropic"
    models = [
        ModelDescriptor("claude-sonnet-4-20250514", "Claude Sonnet 4", default=True),
        ModelDescriptor("claude-opus-4-1-20250805", "Claude Opus 4.1"),
    ]
    supports_tools = True
    env_keys = ("ANTHROPIC_API_KEY",)

    def __init__(
        self,
        base_url: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def create_model(self, model_id: str, context: ConnectorContext) -> AnthropicModelHandle:
        anthropic = load_optional("anthropic", self.display_name)
        api_key = self._require_api_key(context, "ANTHROPIC_API_KEY")

        client = anthropic.AsyncAnthropic(api_key=api_key, base_url=self.base_url)
        retry_on = (anthropic.RateLimitError, anthropic.APIConnectionError, aiohttp.ClientError)

        logger.debug(f"[MODEL] Created {self.id}:{model_id}")
        return AnthropicModelHandle(
            self.id,
            model_id,
            client=client,
            retry_on=retry_on,
            max_tokens=self.max_tokens,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay
        )
