#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: builtin_tools.py
# Author: Ms. White
# Description: Default tools registered by the command line client
# Created: 2025-06-10 09:02:17
# Modified: 2025-06-18 16:55:40

import os
import subprocess
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp
from rich.console import Console
from rich.prompt import Confirm
from rich.rule import Rule
from rich.syntax import Syntax

from .tools import ToolRegistry

console = Console()

MAX_READ_BYTES = 256 * 1024
MAX_FETCH_CHARS = 100_000


def read_file(path: str, offset: int = 0, limit: Optional[int] = None) -> Dict[str, Any]:
    """Read a text file and return its contents.

    Args:
        path: File path to read.
        offset: Line number to start reading from.
        limit: Maximum number of lines to return.

    Returns:
        Dict containing status, path and content.
    """
    target = Path(os.path.expanduser(path))
    if not target.is_file():
        return {"status": "error", "error": f"File not found: {path}"}

    with open(target, "r", encoding="utf-8", errors="replace") as f:
        data = f.read(MAX_READ_BYTES)

    lines = data.splitlines()
    end = offset + limit if limit else None
    return {
        "status": "success",
        "path": str(target),
        "content": "\n".join(lines[offset:end]),
        "truncated": target.stat().st_size > MAX_READ_BYTES
    }


def list_directory(path: str = ".") -> Dict[str, Any]:
    """List the entries of a directory.

    Args:
        path: Directory to list.

    Returns:
        Dict containing status and a sorted list of entries.
    """
    target = Path(os.path.expanduser(path))
    if not target.is_dir():
        return {"status": "error", "error": f"Not a directory: {path}"}

    entries = []
    for entry in sorted(target.iterdir(), key=lambda p: p.name):
        entries.append({"name": entry.name, "type": "directory" if entry.is_dir() else "file"})
    return {"status": "success", "path": str(target), "entries": entries}


async def web_fetch(url: str, timeout: int = 20) -> Dict[str, Any]:
    """Fetch a URL and return the response body as text.

    Args:
        url: The http or https URL to fetch.
        timeout: Request timeout in seconds.

    Returns:
        Dict containing status, HTTP status code and content.
    """
    if not url.startswith(("http://", "https://")):
        return {"status": "error", "error": "Only http and https URLs are supported."}

    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
        async with session.get(url) as response:
            text = await response.text(errors="replace")
            return {
                "status": "success" if response.status < 400 else "error",
                "code": response.status,
                "content": text[:MAX_FETCH_CHARS]
            }


def run_shell_command(command: str, safe_mode: bool = True) -> Dict[str, Any]:
    """Run a shell command (e.g., 'ls -la ./' to list files) and return the output.

    Args:
        command: Shell command to execute.
        safe_mode: If True, asks for confirmation before execution.

    Returns:
        Dict containing status, output, error, and return_code.
    """
    console.print(Syntax(f"\n{command}\n", "bash", theme="monokai"))

    if safe_mode:
        if not Confirm.ask("execute? [y/n]: ", default=False):
            return {"status": "cancelled"}

    try:
        result = subprocess.run(command, shell=True, capture_output=True, text=True, timeout=30)
    except subprocess.TimeoutExpired:
        return {"status": "error", "error": "Command timed out."}

    console.print(Rule(), result.stdout.strip(), Rule())
    return {
        "status": "success",
        "output": result.stdout.strip(),
        "error": result.stderr.strip() or None,
        "return_code": result.returncode
    }


def register_builtin_tools(registry: ToolRegistry) -> ToolRegistry:
    registry.add_function(read_file)
    registry.add_function(list_directory)
    registry.add_function(web_fetch)
    registry.add_function(run_shell_command)
    return registry
