"""OpenAI connector implementation.

This module implements the BaseConnector interface for OpenAI's chat
completions API, including streamed tool calls and tiktoken estimation.
"""

import json
import logging
import traceback
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Type

import aiohttp

from ..messages import TextFragment, ThoughtFragment, ToolCallFragment
from ..tokens import estimate_tokens, get_encoding
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


def to_openai_messages(messages: List[Any], system_prompt: Optional[str] = None) -> List[Dict]:
    """Convert AgentMessage objects to the chat completions message format.

    Tool results whose call was not announced by an earlier assistant
    message are sent as plain user text, since the API rejects orphans.
    """
    history = []
    if system_prompt:
        history.append({"role": "system", "content": system_prompt})

    announced = set()
    for msg in messages:
        if msg.role == "assistant":
            entry = {"role": "assistant", "content": msg.content or None}
            if msg.tool_calls:
                entry["tool_calls"] = [{
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments)
                    }
                } for call in msg.tool_calls]
                announced.update(call.id for call in msg.tool_calls)
            history.append(entry)

        elif msg.role == "tool":
            if msg.tool_call_id and msg.tool_call_id in announced:
                history.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content
                })
            else:
                history.append({
                    "role": "user",
                    "content": f"[{msg.name or 'tool'} result]\n{msg.content}"
                })

        else:
            history.append({"role": msg.role, "content": msg.content})

    return history


def _usage_dict(usage: Any) -> Dict[str, Any]:
    if hasattr(usage, "model_dump"):
        return usage.model_dump()
    return dict(usage)


class OpenAIModelHandle(BaseModelHandle):
    """Model handle backed by an AsyncOpenAI client."""

    max_tokens_param = "max_completion_tokens"

    def __init__(
        self,
        provider_id: str,
        model_id: str,
        *,
        client,
        retry_on: Tuple[Type[BaseException], ...] = (aiohttp.ClientError,),
        encoding=None,
        include_usage: bool = True,
        **kwargs
    ):
        super().__init__(provider_id, model_id, **kwargs)
        self.client = client
        self.retry_on = retry_on
        self.encoding = encoding
        self.include_usage = include_usage

    def _build_params(self, messages, system_prompt, tools, max_output_tokens, stream) -> Dict[str, Any]:
        params = {
            "model": self.model_id,
            "messages": to_openai_messages(messages, system_prompt),
            "stream": stream,
        }
        if stream and self.include_usage:
            params["stream_options"] = {"include_usage": True}
        if tools:
            params["tools"] = tools
            params["tool_choice"] = "auto"
        if max_output_tokens:
            params[self.max_tokens_param] = max_output_tokens
        return params

    async def stream(
        self,
        messages: List[Any],
        *,
        system_prompt: Optional[str] = None,
        tools: Optional[List[Dict]] = None,
        max_output_tokens: Optional[int] = None
    ) -> AsyncIterator[ProviderChunk]:
        params = self._build_params(messages, system_prompt, tools, max_output_tokens, stream=True)
        logger.debug(f"[OPENAI REQUEST] Sending request to {self.model_id} with {len(params['messages'])} messages")

        try:
            response = await retry_with_backoff(
                self.client.chat.completions.create,
                max_retries=self.max_retries,
                retry_delay=self.retry_delay,
                retry_on=self.retry_on,
                **params
            )
        except Exception:
            logger.error(f"[OPENAI ERROR RUNNER]: {traceback.format_exc()}")
            raise

        tool_calls_dict = {}
        flushed = False

        async for chunk in response:
            usage = getattr(chunk, "usage", None)
            if usage:
                yield ProviderChunk(usage=_usage_dict(usage))

            if not getattr(chunk, "choices", None):
                continue

            choice = chunk.choices[0]
            delta = getattr(choice, "delta", None)
            finish_reason = getattr(choice, "finish_reason", None)
            fragments = []

            reasoning = getattr(delta, "reasoning_content", None)
            if reasoning:
                fragments.append(ThoughtFragment(reasoning))

            content = getattr(delta, "content", None)
            if content:
                fragments.append(TextFragment(content))

            # Tool call arguments arrive in pieces keyed by index
            for tool_call_delta in getattr(delta, "tool_calls", None) or []:
                index = tool_call_delta.index
                entry = tool_calls_dict.setdefault(index, {"id": None, "name": "", "arguments": ""})
                if getattr(tool_call_delta, "id", None) and not entry["id"]:
                    entry["id"] = tool_call_delta.id
                function = getattr(tool_call_delta, "function", None)
                if function:
                    if getattr(function, "name", None):
                        entry["name"] = function.name
                    if getattr(function, "arguments", None):
                        entry["arguments"] += function.arguments

            if finish_reason and not flushed:
                fragments.extend(self._complete_tool_calls(tool_calls_dict))
                flushed = True

            if fragments or finish_reason:
                yield ProviderChunk(fragments=fragments, finish_reason=finish_reason)

        if tool_calls_dict and not flushed:
            yield ProviderChunk(fragments=self._complete_tool_calls(tool_calls_dict))

    def _complete_tool_calls(self, tool_calls_dict: Dict[int, Dict]) -> List[ToolCallFragment]:
        calls = []
        for index in sorted(tool_calls_dict):
            entry = tool_calls_dict[index]
            calls.append(ToolCallFragment(
                id=entry["id"] or new_call_id(entry["name"]),
                name=entry["name"] or "unknown_tool",
                arguments=parse_tool_arguments(entry["arguments"])
            ))
            logger.debug(f"[OPENAI TOOL CALL {index}] {entry['name']} with ID {entry['id']}")
        return calls

    async def generate(
        self,
        messages: List[Any],
        *,
        system_prompt: Optional[str] = None,
        max_output_tokens: Optional[int] = None
    ) -> str:
        params = self._build_params(messages, system_prompt, None, max_output_tokens, stream=False)
        response = await retry_with_backoff(
            self.client.chat.completions.create,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            retry_on=self.retry_on,
            **params
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def count_tokens(self, messages: List[Any], system_prompt: Optional[str] = None) -> int:
        if self.encoding is None:
            self.encoding = get_encoding(self.model_id)
        return estimate_tokens(to_openai_messages(messages, system_prompt), self.encoding)


class OpenAIConnector(BaseConnector):
    """Connector for the OpenAI API."""

    id = "openai"
    display_name = "OpenAI"
    models = [
        ModelDescriptor("gpt-5-codex", "GPT-5 Codex", default=True),
        ModelDescriptor("gpt-5", "GPT-5"),
        ModelDescriptor("gpt-4.1", "GPT-4.1"),
        ModelDescriptor("gpt-4o-mini", "GPT-4o mini"),
    ]
    supports_tools = True
    env_keys = ("OPENAI_API_KEY",)
    base_url: Optional[str] = None
    handle_class = OpenAIModelHandle

    def __init__(self, base_url: Optional[str] = None, max_retries: int = 3, retry_delay: float = 1.0):
        if base_url:
            self.base_url = base_url
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def create_model(self, model_id: str, context: ConnectorContext) -> OpenAIModelHandle:
        openai = load_optional("openai", self.display_name)
        api_key = self._require_api_key(context, " or ".join(self.env_keys))

        client = openai.AsyncOpenAI(api_key=api_key, base_url=self.base_url)
        retry_on = (openai.RateLimitError, openai.APIConnectionError, aiohttp.ClientError)

        logger.debug(f"[MODEL] Created {self.id}:{model_id}")
        return self.handle_class(
            self.id,
            model_id,
            client=client,
            retry_on=retry_on,
            encoding=get_encoding(model_id),
            max_retries=self.max_retries,
            retry_delay=self.retry_delay
        )
