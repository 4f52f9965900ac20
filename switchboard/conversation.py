#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: conversation.py
# Author: Ms. White
# Description: Multi-turn conversation runtime with tool calling,
#              compression and session persistence, plus the CLI
# Created: 2025-06-11 10:44:02
# Modified: 2025-06-19 19:03:37

import os
import sys
import asyncio
import logging
import argparse
from typing import AsyncIterator, Dict, List, Optional

from rich.console import Console

from .builtin_tools import register_builtin_tools
from .client import AgentClient
from .compression import CompressionOutcome, CompressionStatus, Compressor
from .dispatch import DEFAULT_TTL, ToolDispatchCache, ToolDispatcher
from .events import (
    ChatCompressed,
    ContentDelta,
    Errored,
    Finished,
    StreamEvent,
    Thought,
    ToolCallCompleted,
    ToolCallRequest,
    ToolCallRequested,
    UserCancelled,
    is_terminal
)
from .history import HistoryStore
from .messages import Message, MessageInput, Role, ToolResultFragment
from .providers import create_default_registry
from .providers.base import ConnectorRegistry
from .session import SessionHandle, SessionStore
from .tools import FunctionToolExecutor, ToolRegistry
from .turn import Turn

console = Console()
print = console.print

DEFAULT_MODEL = "openai:gpt-5-codex"
DEFAULT_SYSTEM = "You are a helpful coding assistant. Only call tools if one is applicable."


class Conversation:
    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        system: Optional[str] = DEFAULT_SYSTEM,
        api_key: Optional[str] = None,
        tools: bool = True,
        registry: Optional[ConnectorRegistry] = None,
        tool_registry: Optional[ToolRegistry] = None,
        compression_threshold: float = 0.7,
        preserve_fraction: float = 0.3,
        cache_ttl: float = DEFAULT_TTL,
        max_tool_iterations: int = 5,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        session_path: Optional[str] = None,
        session_id: Optional[str] = None,
        log_path: Optional[str] = None,
        environ: Optional[Dict[str, str]] = None
    ):
        """Initialize a conversation against one provider and model.

        Args:
            model: Model identifier in format "provider:model_name"; the model part
                may be omitted to use the provider default.
            system: System prompt sent with every turn.
            api_key: Optional API key for the selected provider. Environment
                variables are used when omitted.
            tools: Enable (True) or disable (False) tool calling.
            registry: Connector registry; the bundled connectors are used when omitted.
            tool_registry: Registry of callable tools.
            compression_threshold: Share of the context window that triggers compression.
            preserve_fraction: Share of the history kept verbatim when compressing.
            cache_ttl: Seconds a read-only tool result is reused.
            max_tool_iterations: Maximum model turns per send() call.
            max_retries: Retries for rate limit and connection errors.
            retry_delay: Initial delay (in seconds) for exponential backoff retries.
            session_path: Directory for persistent sessions; persistence is off when None.
            session_id: Session to resume or create.
            log_path: Optional file receiving DEBUG logs.
            environ: Environment mapping for credential lookup.

        Raises:
            UnknownProviderError: If the provider is not registered.
        """
        self.logger = logging.getLogger(f"ConversationLogger_{id(self)}")
        self.logger.setLevel(logging.DEBUG)

        # Console log handler (always enabled at WARNING+)
        if not self.logger.handlers:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.WARNING)
            console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
            self.logger.addHandler(console_handler)

        self._log_enabled = False
        if log_path:
            file_handler = logging.FileHandler(log_path)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(
                "%(asctime)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S"
            ))
            self.logger.addHandler(file_handler)
            logging.getLogger("switchboard").addHandler(file_handler)
            logging.getLogger("switchboard").setLevel(logging.DEBUG)
            self._log_enabled = True

        self.system = system
        self.api_key = api_key
        self.tools_enabled = tools
        self.max_tool_iterations = max_tool_iterations
        self.registry = registry if registry is not None else create_default_registry(max_retries, retry_delay)
        self.environ = os.environ if environ is None else environ

        self.provider = None
        self.model = None
        self.client = None
        self.set_model(model)

        self.session_store = SessionStore(directory=session_path) if session_path else None
        self.session: Optional[SessionHandle] = None

        self.history = HistoryStore(on_append=self._persist)
        self.compressor = Compressor(self.history, compression_threshold, preserve_fraction)

        self.tool_registry = tool_registry if tool_registry is not None else ToolRegistry()
        self.dispatcher = ToolDispatcher(
            FunctionToolExecutor(self.tool_registry),
            ToolDispatchCache(ttl=cache_ttl)
        )

        if self.session_store:
            self.resume(session_id)

    def _log(self, message: str, level: str = "info"):
        if self._log_enabled:
            getattr(self.logger, level)(message)

    def _persist(self, message: Message):
        if self.session is not None:
            self.session.append([message.to_dict()])

    def set_model(self, model: str):
        """Switch provider and model.

        Args:
            model: "provider:model_name" or just "provider".

        Raises:
            UnknownProviderError: If the provider is not registered.
        """
        if not model:
            raise ValueError("Model must be specified as 'provider:model_name'")

        provider, _, model_name = model.partition(":")
        connector = self.registry.require(provider)

        self.provider = provider
        self.model = model_name or connector.default_model()
        self.client = AgentClient(
            self.registry,
            api_keys={provider: self.api_key} if self.api_key else None,
            environ=self.environ
        )
        self._log(f"[MODEL] Using {self.provider}:{self.model}")

    def list_models(self) -> List[str]:
        """Return "provider:model_id" strings for every registered connector."""
        models = []
        for connector in self.registry.list():
            for descriptor in connector.models:
                models.append(f"{connector.id}:{descriptor.id}")
        return models

    def add_function(self, external_callable, **kwargs) -> str:
        return self.tool_registry.add_function(external_callable, **kwargs)

    def resume(self, session_id: Optional[str] = None) -> str:
        """Load a persisted session into history, creating it when missing.

        Returns:
            str: The session id in use.
        """
        if self.session_store is None:
            raise ValueError("Session persistence is not enabled.")

        self.session = self.session_store.get_or_create(session_id)
        items = self.session.list()
        self.history.replace([Message.from_dict(item) for item in items])
        self._log(f"[SESSION] Resumed {self.session.session_id} with {len(items)} message(s)")
        return self.session.session_id

    def reset(self):
        """Clear history, cached tool results and any persisted items."""
        self.history.clear()
        self.dispatcher.cache.clear()
        self.compressor.has_failed = False
        if self.session is not None:
            self.session.clear()

    async def compress(self, force: bool = True) -> CompressionOutcome:
        session = self.client.create_session(self.provider, self.model, self.system)
        outcome = await self.compressor.compress(session.model_handle, session.model, session.system_prompt, force=force)
        self._log(f"[COMPRESS] {outcome.status.value}: {outcome.original_token_count} -> {outcome.new_token_count}")
        return outcome

    def _new_turn(self) -> Turn:
        tools = self.tool_registry.definitions() if self.tools_enabled else None
        return Turn(
            self.client,
            self.history,
            self.provider,
            model=self.model,
            system_prompt=self.system,
            tools=tools or None,
            compressor=self.compressor
        )

    def _close_calls(self, requests: List[ToolCallRequest], reason: str):
        """Record a result for calls that will not run, so every call has an answer."""
        self.history.append(Message(Role.TOOL, [
            ToolResultFragment(call_id=r.call_id, name=r.name, payload={"error": reason}, is_error=True)
            for r in requests
        ]))

    async def send(self, value: MessageInput, cancel: Optional[asyncio.Event] = None) -> AsyncIterator[StreamEvent]:
        """Send input and run the tool calling loop.

        Each model turn that requests tools is followed by dispatching the
        calls and feeding their results back, up to max_tool_iterations.

        Args:
            value: A string, a fragment, or a list of either.
            cancel: Optional asyncio.Event set to stop the exchange.

        Yields:
            StreamEvent: Content, tool and compression events, ending with
            exactly one Finished, Errored or UserCancelled.
        """
        next_input = value
        iterations = 0

        while True:
            iterations += 1
            turn = self._new_turn()
            terminal = None

            async for event in turn.run(next_input, cancel):
                if is_terminal(event):
                    terminal = event
                    continue
                yield event

            self._log(f"[ITERATION {iterations}] Tool calls: {len(turn.pending_tool_calls)}")

            if not isinstance(terminal, Finished):
                # Results of the last dispatch were never recorded by the failed turn
                if iterations > 1 and not turn.input_committed:
                    self.history.append(Message(Role.TOOL, next_input))
                yield terminal if terminal is not None else Errored("Turn ended without a terminal event")
                return

            if not turn.pending_tool_calls:
                yield terminal
                return

            if iterations >= self.max_tool_iterations:
                self._log(f"[TOOL] Stopping after {iterations} iterations", level="warning")
                self._close_calls(turn.pending_tool_calls, "Tool call limit reached; call was not executed.")
                yield terminal
                return

            if cancel is not None and cancel.is_set():
                self._close_calls(turn.pending_tool_calls, "Tool call cancelled by user.")
                yield UserCancelled()
                return

            responses = await self.dispatcher.dispatch_all(turn.pending_tool_calls)
            fragments = []
            for response in responses:
                yield ToolCallCompleted(response)
                fragments.extend(response.result_fragments)

            if cancel is not None and cancel.is_set():
                self.history.append(Message(Role.TOOL, fragments))
                yield UserCancelled()
                return

            next_input = fragments


def _render(event: StreamEvent):
    if isinstance(event, ContentDelta):
        print(event.text, end="", markup=False, highlight=False)
    elif isinstance(event, Thought):
        print(f"[dim]{event.description}[/dim]", end="")
    elif isinstance(event, ToolCallRequested):
        print(f"\n[bold cyan]Running {event.request.name}...[/bold cyan]")
    elif isinstance(event, ToolCallCompleted) and event.response.error:
        print(f"[red]Tool failed: {event.response.error}[/red]")
    elif isinstance(event, ChatCompressed):
        outcome = event.outcome
        print(f"[yellow]Compressed history: {outcome.original_token_count} -> {outcome.new_token_count} tokens[/yellow]")
    elif isinstance(event, Errored):
        print(f"\n[red]Error: {event.message}[/red]")
    elif isinstance(event, UserCancelled):
        print("\n[red]Cancelled[/red]")
    elif isinstance(event, Finished):
        print()


async def _send_and_render(conversation: Conversation, user_input: str):
    async for event in conversation.send(user_input):
        _render(event)


def main():
    """
    Run a Conversation as an interactive chat client via CLI.

    Command-line arguments:
        --model:        Model identifier in "provider:model" format
        --api-key:      Optional API key override
        --system:       System prompt
        --no-tools:     Disable tool calling
        --session:      Session id to resume
        --session-dir:  Directory for persistent sessions
        --log-path:     File receiving debug logs
        --list-models:  Print the known models and exit

    Returns:
        int: Exit code. 0 on normal termination, 1 if initialization fails.
    """
    parser = argparse.ArgumentParser(description="AI Switchboard Chat Client")
    parser.add_argument("--model", default=DEFAULT_MODEL,
                        help='Model identifier in format "provider:model_name"')
    parser.add_argument("--api-key", help="API key (optional)")
    parser.add_argument("--system", default=DEFAULT_SYSTEM, help="System prompt")
    parser.add_argument("--no-tools", action="store_true", default=False,
                        help="Disable tool calling")
    parser.add_argument("--session", help="Session id to resume (optional)")
    parser.add_argument("--session-dir", help="Directory for persistent sessions (optional)")
    parser.add_argument("--log-path", help="Write debug logs to this file (optional)")
    parser.add_argument("--list-models", action="store_true", default=False,
                        help="List known models and exit")

    args = parser.parse_args()

    try:
        conversation = Conversation(
            model=args.model,
            system=args.system,
            api_key=args.api_key,
            tools=not args.no_tools,
            session_path=args.session_dir,
            session_id=args.session,
            log_path=args.log_path
        )
        register_builtin_tools(conversation.tool_registry)
    except Exception as e:
        print(f"[red]Failed to initialize chat client: {str(e)}[/red]")
        return 1

    if args.list_models:
        for model in conversation.list_models():
            print(model)
        return 0

    print(f"[bold green]Switchboard[/bold green] {conversation.provider}:{conversation.model}")

    while True:
        try:
            user_input = console.input("\n[bold]You:[/bold] ").strip()

            if user_input.lower() in {"/exit", "/quit"}:
                break
            if user_input == "/models":
                for model in conversation.list_models():
                    print(model)
                continue
            if user_input == "/compress":
                outcome = asyncio.run(conversation.compress(force=True))
                if outcome.status == CompressionStatus.COMPRESSED:
                    print(f"[yellow]Compressed: {outcome.original_token_count} -> {outcome.new_token_count} tokens[/yellow]")
                else:
                    print(f"[yellow]Compression {outcome.status.value}[/yellow]")
                continue
            if user_input == "/reset":
                conversation.reset()
                print("[yellow]History cleared[/yellow]")
                continue
            if not user_input:
                continue

            asyncio.run(_send_and_render(conversation, user_input))

        except KeyboardInterrupt:
            print("\n[red]Interrupted[/red]")
            continue
        except EOFError:
            break
        except Exception as e:
            print(f"[red]Error in main loop: {e}[/red]")
            continue

    return 0


if __name__ == "__main__":
    sys.exit(main())
