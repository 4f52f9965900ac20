#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: tools.py
# Author: Ms. White
# Description: Function registration with generated JSON schemas
#              and a thread backed executor for tool calls
# Created: 2025-06-09 14:20:33
# Modified: 2025-06-19 17:41:58

import re
import json
import uuid
import asyncio
import inspect
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Literal, Optional, Union, get_args, get_origin

from .events import ToolCallRequest, ToolCallResponse
from .messages import ToolResultFragment

logger = logging.getLogger(__name__)


_SCALAR_SCHEMAS = {
    str: {"type": "string"},
    int: {"type": "integer"},
    float: {"type": "number"},
    bool: {"type": "boolean"},
    list: {"type": "array"},
    dict: {"type": "object"},
    datetime: {"type": "string", "format": "date-time"},
    date: {"type": "string", "format": "date"},
    uuid.UUID: {"type": "string", "format": "uuid"},
}

_ARGS_SECTION_RE = re.compile(r"^(?:Args|Parameters):\s*$")
_ARG_ENTRY_RE = re.compile(r"^ {4}(\w+)\s*(?:\([^)]*\))?:\s*(.*)$")


def _literal_kind(value) -> str:
    # bool first, it is a subclass of int
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (int, float)):
        return "number"
    return "object"


def _union_schema(members) -> dict:
    present = [m for m in members if m is not type(None)]
    nullable = len(present) < len(members)
    if nullable and len(present) == 1:
        return dict(python_type_to_schema(present[0]), nullable=True)
    schema = {"anyOf": [python_type_to_schema(m) for m in present]}
    if nullable:
        schema["nullable"] = True
    return schema


def _literal_schema(values) -> dict:
    kinds = {_literal_kind(v) for v in values}
    if len(kinds) == 1:
        return {"type": kinds.pop(), "enum": list(values)}
    return {"anyOf": [{"type": _literal_kind(v), "enum": [v]} for v in values]}


def _container_schema(origin, args) -> dict:
    if origin is list:
        schema = {"type": "array"}
        if args and args[0] is not Any:
            schema["items"] = python_type_to_schema(args[0])
        return schema
    schema = {"type": "object"}
    # JSON object keys are always strings, so only the value type is kept
    if len(args) == 2 and args[1] not in (Any, object):
        schema["additionalProperties"] = python_type_to_schema(args[1])
    return schema


def python_type_to_schema(ptype: Any) -> dict:
    """Convert a type annotation into a function-calling JSON schema."""
    if ptype is None:
        return {"type": "null"}

    origin = get_origin(ptype)
    if origin is Union:
        return _union_schema(get_args(ptype))
    if origin is Literal:
        return _literal_schema(get_args(ptype))
    if origin in (list, dict):
        return _container_schema(origin, get_args(ptype))

    return dict(_SCALAR_SCHEMAS.get(ptype, {"type": "object"}))


def parse_param_docs(docstring: str) -> Dict[str, str]:
    """Map parameter names to their descriptions in a Google style Args section.

    Continuation lines indented past the entry are folded into it. The
    section ends at the first line that is neither.
    """
    lines = (docstring or "").splitlines()
    start = next((i + 1 for i, line in enumerate(lines) if _ARGS_SECTION_RE.match(line.strip())), None)
    if start is None:
        return {}

    parts: Dict[str, List[str]] = {}
    name = None
    for line in lines[start:]:
        if not line.strip():
            continue
        entry = _ARG_ENTRY_RE.match(line)
        if entry:
            name = entry.group(1)
            parts[name] = [entry.group(2).strip()]
        elif name and line.startswith(" " * 8):
            parts[name].append(line.strip())
        else:
            break

    return {key: " ".join(p for p in chunks if p) for key, chunks in parts.items()}


class ToolRegistry:
    """Named callables exposed to the model as function tools."""

    def __init__(self):
        self.tools: List[Dict[str, Any]] = []
        self._callables: Dict[str, Callable] = {}

    def add_function(
        self,
        external_callable: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
        override: bool = False,
        disabled: bool = False,
        schema_extensions: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Register a function for tool calling with a schema built from its type hints.

        Args:
            external_callable (Callable): The function to register.
            name (Optional[str]): Optional custom name. Defaults to the function's __name__.
            description (Optional[str]): Optional description. Defaults to the first docstring line.
            override (bool): If True, replaces an existing tool with the same name.
            disabled (bool): If True, registers the function in a disabled state.
            schema_extensions (Optional[Dict[str, Any]]): Per-parameter entries merged
                into the generated schema.

        Returns:
            str: The registered name.

        Raises:
            ValueError: If the callable is invalid or the name is taken without override.
        """
        if not external_callable:
            raise ValueError("A valid external callable must be provided.")

        function_name = name or external_callable.__name__

        docstring = inspect.getdoc(external_callable) or ""
        description = description or (docstring.split("\n")[0].strip() if docstring else "No description provided.")
        param_docs = parse_param_docs(docstring)

        if override:
            self.delete_function(function_name)
        elif function_name in self._callables:
            raise ValueError(f"Function '{function_name}' is already registered. Use override=True to replace.")

        try:
            signature = inspect.signature(external_callable)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Cannot inspect callable '{function_name}': {e}")

        properties = {}
        required = []

        for param_name, param in signature.parameters.items():
            if param_name in ("self", "cls") and param.kind == inspect.Parameter.POSITIONAL_OR_KEYWORD:
                continue
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue

            annotation = param.annotation if param.annotation != inspect.Parameter.empty else Any
            schema = python_type_to_schema(annotation)
            schema["description"] = param_docs.get(param_name, f"{param_name} parameter")
            properties[param_name] = schema

            if param.default == inspect.Parameter.empty:
                required.append(param_name)

        if schema_extensions:
            for param_name, extensions in schema_extensions.items():
                if param_name in properties:
                    properties[param_name].update(extensions)

        parameters = {"type": "object", "properties": properties}
        if required:
            parameters["required"] = required

        tool_spec = {
            "type": "function",
            "function": {
                "name": function_name,
                "description": description,
                "parameters": parameters
            }
        }
        if disabled:
            tool_spec["function"]["disabled"] = True

        self.tools.append(tool_spec)
        self._callables[function_name] = external_callable

        logger.info(f"[TOOL] Registered function '{function_name}' with {len(properties)} parameters")
        return function_name

    def disable_function(self, name: str) -> bool:
        """Mark a function inactive without removing it.

        Returns:
            bool: True if the function was found.
        """
        for tool in self.tools:
            if tool["function"]["name"] == name:
                tool["function"]["disabled"] = True
                return True
        return False

    def enable_function(self, name: str) -> bool:
        for tool in self.tools:
            if tool["function"]["name"] == name:
                tool["function"].pop("disabled", None)
                return True
        return False

    def delete_function(self, name: str) -> bool:
        before = len(self.tools)
        self.tools = [tool for tool in self.tools if tool["function"]["name"] != name]
        self._callables.pop(name, None)
        return len(self.tools) < before

    def list_functions(self) -> List[Dict[str, Any]]:
        return self.tools

    def get(self, name: str) -> Optional[Callable]:
        return self._callables.get(name)

    def is_enabled(self, name: str) -> bool:
        for tool in self.tools:
            if tool["function"]["name"] == name:
                return not tool["function"].get("disabled", False)
        return False

    def definitions(self) -> List[Dict[str, Any]]:
        """Enabled tool specs, without the internal 'disabled' flag."""
        return [
            {"type": "function", "function": {k: v for k, v in tool["function"].items() if k != "disabled"}}
            for tool in self.tools
            if not tool["function"].get("disabled", False)
        ]


class FunctionToolExecutor:
    """Executes tool calls against a ToolRegistry in worker threads.

    Args:
        registry: Registry holding the callables.
        output_callback: Optional callable receiving JSON status notifications.
    """

    def __init__(self, registry: ToolRegistry, output_callback: Optional[Callable[[str], None]] = None):
        self.registry = registry
        self.output_callback = output_callback

    def _notify(self, name: str, status: str):
        if self.output_callback:
            self.output_callback(json.dumps({"type": "tool_call", "tool_name": name, "status": status}))

    async def execute(self, request: ToolCallRequest) -> ToolCallResponse:
        func = self.registry.get(request.name)
        if func is None or not self.registry.is_enabled(request.name):
            return ToolCallResponse.failure(request.call_id, request.name, f"Function '{request.name}' not found.")

        arguments = dict(request.arguments)
        logger.debug(f"[TOOL:{request.name}] args={arguments}")
        self._notify(request.name, "started")

        try:
            if inspect.iscoroutinefunction(func):
                result = await func(**arguments)
            else:
                loop = asyncio.get_running_loop()
                result = await loop.run_in_executor(None, lambda: func(**arguments))
        except Exception as e:
            logger.error(f"[TOOL] Error executing tool function '{request.name}': {e}")
            return ToolCallResponse.failure(request.call_id, request.name, str(e))

        try:
            json.dumps(result)
        except TypeError as e:
            logger.error(f"[TOOL] Tool call result not serializable: {e}")
            return ToolCallResponse.failure(request.call_id, request.name, "Tool call returned unserializable data.")

        self._notify(request.name, "completed")
        return ToolCallResponse(
            call_id=request.call_id,
            result_fragments=[ToolResultFragment(call_id=request.call_id, name=request.name, payload=result)],
            display=result
        )
