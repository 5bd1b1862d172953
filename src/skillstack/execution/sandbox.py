"""
Simulated sandboxes for tier-2 command skills.

A sandbox is an isolated context with a working directory, a command
allow-list, an in-memory file table and a resource envelope. Commands are
simulated by handlers in a pluggable command table; no OS process is ever
started. ``SandboxManager.session`` guarantees teardown on every exit path,
including cancellation.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import posixpath
import re
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from .models import (
    BASE_MEMORY_BYTES,
    CommandResult,
    ExecutionErrorType,
    ExecutionFailure,
    ResourceUsage,
    SandboxConfig,
)

logger = logging.getLogger(__name__)

CommandHandler = Callable[
    ["Sandbox", List[str]], Union[CommandResult, Awaitable[CommandResult]]
]


@dataclass
class Sandbox:
    id: str
    config: SandboxConfig
    files: Dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    destroyed: bool = False

    @property
    def working_directory(self) -> str:
        return self.config.working_directory

    def resolve_path(self, path: str) -> str:
        return posixpath.normpath(posixpath.join(self.working_directory, path))

    def is_path_allowed(self, path: str) -> bool:
        roots = [self.working_directory] + list(self.config.allowed_paths)
        return any(path == root or path.startswith(root.rstrip("/") + "/") for root in roots)

    def write_file(self, path: str, content: str) -> str:
        resolved = self.resolve_path(path)
        limit = self.config.max_file_size
        size = len(content.encode("utf-8"))
        if limit is not None and size > limit:
            raise ExecutionFailure(
                ExecutionErrorType.RESOURCE_ERROR,
                "RESOURCE_LIMIT_EXCEEDED",
                f"File '{path}' is {size} bytes, over the {limit} byte limit",
                details={"exceeded": {"file_size": size}, "limits": {"max_file_size": limit}},
            )
        self.files[resolved] = content
        return resolved

    def read_file(self, path: str) -> Optional[str]:
        return self.files.get(self.resolve_path(path))


# ---------------------------------------------------------------------------
# Built-in simulated commands
# ---------------------------------------------------------------------------


def _fail(message: str, exit_code: int = 1) -> CommandResult:
    return CommandResult(command="", stderr=message + "\n", exit_code=exit_code)


def _read(sandbox: Sandbox, command: str, path: str, usage: ResourceUsage):
    resolved = sandbox.resolve_path(path)
    if not sandbox.is_path_allowed(resolved):
        return None, _fail(f"{command}: {path}: Permission denied")
    content = sandbox.files.get(resolved)
    if content is None:
        return None, _fail(f"{command}: {path}: No such file or directory")
    usage.files_accessed.append(resolved)
    return content, None


def _echo(sandbox: Sandbox, args: List[str]) -> CommandResult:
    return CommandResult(command="echo", stdout=" ".join(args) + "\n")


def _pwd(sandbox: Sandbox, args: List[str]) -> CommandResult:
    return CommandResult(command="pwd", stdout=sandbox.working_directory + "\n")


def _ls(sandbox: Sandbox, args: List[str]) -> CommandResult:
    directory = sandbox.resolve_path(args[0] if args else ".")
    if not sandbox.is_path_allowed(directory):
        return _fail(f"ls: {directory}: Permission denied")
    prefix = directory.rstrip("/") + "/"
    names = sorted(
        {path[len(prefix):].split("/", 1)[0] for path in sandbox.files if path.startswith(prefix)}
    )
    usage = ResourceUsage(files_accessed=[directory])
    return CommandResult(
        command="ls",
        stdout="".join(f"{name}\n" for name in names),
        resource_usage=usage,
    )


def _cat(sandbox: Sandbox, args: List[str]) -> CommandResult:
    if not args:
        return _fail("cat: missing file operand")
    usage = ResourceUsage()
    chunks: List[str] = []
    for path in args:
        content, error = _read(sandbox, "cat", path, usage)
        if error is not None:
            return error
        chunks.append(content)
    return CommandResult(command="cat", stdout="".join(chunks), resource_usage=usage)


def _grep(sandbox: Sandbox, args: List[str]) -> CommandResult:
    if len(args) < 2:
        return _fail("usage: grep PATTERN FILE", exit_code=2)
    try:
        pattern = re.compile(args[0])
    except re.error as e:
        return _fail(f"grep: invalid pattern: {e}", exit_code=2)
    usage = ResourceUsage()
    matched: List[str] = []
    for path in args[1:]:
        content, error = _read(sandbox, "grep", path, usage)
        if error is not None:
            error.exit_code = 2
            return error
        matched.extend(line for line in content.splitlines() if pattern.search(line))
    return CommandResult(
        command="grep",
        stdout="".join(f"{line}\n" for line in matched),
        exit_code=0 if matched else 1,
        resource_usage=usage,
    )


def _wc(sandbox: Sandbox, args: List[str]) -> CommandResult:
    if not args:
        return _fail("wc: missing file operand")
    usage = ResourceUsage()
    lines: List[str] = []
    for path in args:
        content, error = _read(sandbox, "wc", path, usage)
        if error is not None:
            return error
        lines.append(
            f"{content.count(chr(10))} {len(content.split())} {len(content)} {path}\n"
        )
    return CommandResult(command="wc", stdout="".join(lines), resource_usage=usage)


async def _sleep(sandbox: Sandbox, args: List[str]) -> CommandResult:
    try:
        seconds = float(args[0]) if args else 0.0
    except ValueError:
        return _fail(f"sleep: invalid time interval '{args[0]}'")
    await asyncio.sleep(seconds)
    return CommandResult(command="sleep")


BUILTIN_COMMANDS: Dict[str, CommandHandler] = {
    "echo": _echo,
    "pwd": _pwd,
    "ls": _ls,
    "cat": _cat,
    "grep": _grep,
    "wc": _wc,
    "sleep": _sleep,
}


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class SandboxManager:
    """Creates, runs commands in and destroys sandboxes."""

    def __init__(self, *, root: str = "/tmp") -> None:
        self._root = root
        self._commands: Dict[str, CommandHandler] = dict(BUILTIN_COMMANDS)
        self._active: Dict[str, Sandbox] = {}

    def register_command(self, name: str, handler: CommandHandler) -> None:
        self._commands[name] = handler

    @property
    def commands(self) -> List[str]:
        return sorted(self._commands)

    def active_sandboxes(self) -> List[str]:
        return list(self._active)

    def create(
        self,
        *,
        allowed_commands: List[str],
        allowed_paths: Optional[List[str]] = None,
        environment: Optional[Dict[str, str]] = None,
        max_memory: Optional[int] = None,
        max_cpu: Optional[int] = None,
        max_duration: Optional[int] = None,
        max_file_size: Optional[int] = None,
    ) -> Sandbox:
        sandbox_id = f"sandbox_{uuid.uuid4().hex[:12]}"
        sandbox = Sandbox(
            id=sandbox_id,
            config=SandboxConfig(
                working_directory=posixpath.join(self._root, f"sandbox-{sandbox_id}"),
                allowed_commands=list(allowed_commands),
                allowed_paths=list(allowed_paths or []),
                environment=dict(environment or {}),
                max_memory=max_memory,
                max_cpu=max_cpu,
                max_duration=max_duration,
                max_file_size=max_file_size,
            ),
        )
        self._active[sandbox_id] = sandbox
        logger.debug("Created sandbox %s", sandbox_id)
        return sandbox

    def destroy(self, sandbox: Sandbox) -> None:
        if self._active.pop(sandbox.id, None) is not None:
            sandbox.files.clear()
            sandbox.destroyed = True
            logger.debug("Destroyed sandbox %s", sandbox.id)

    @asynccontextmanager
    async def session(self, **options: Any) -> AsyncIterator[Sandbox]:
        """Yield a fresh sandbox and destroy it however the block exits."""
        sandbox = self.create(**options)
        try:
            yield sandbox
        finally:
            self.destroy(sandbox)

    async def run(
        self,
        sandbox: Sandbox,
        command: str,
        args: List[str],
        *,
        usage: Optional[ResourceUsage] = None,
    ) -> CommandResult:
        """Run one simulated command inside ``sandbox``.

        When ``usage`` is given, the command's consumption is added to it
        before the limits are checked. A command that is cancelled is still
        charged the baseline memory and the time it ran.

        Raises:
            ExecutionFailure: PERMISSION_ERROR when the command is not in the
                allow-list, RESOURCE_ERROR when usage exceeds the envelope
        """
        if sandbox.destroyed:
            raise RuntimeError(f"Sandbox {sandbox.id} has been destroyed")
        if command not in sandbox.config.allowed_commands:
            raise ExecutionFailure(
                ExecutionErrorType.PERMISSION_ERROR,
                "COMMAND_NOT_ALLOWED",
                f"Command '{command}' is not allowed in this sandbox",
                details={
                    "command": command,
                    "allowed_commands": list(sandbox.config.allowed_commands),
                },
                suggestions=["Add the command to security.allowed_commands"],
            )

        handler = self._commands.get(command)
        started = time.perf_counter()
        result: Optional[CommandResult] = None
        try:
            result = await self._dispatch(handler, sandbox, command, args)
        finally:
            if result is None and usage is not None:
                usage.add(
                    ResourceUsage(
                        memory_used=BASE_MEMORY_BYTES,
                        cpu_time=int((time.perf_counter() - started) * 1000),
                    )
                )
        duration_ms = (time.perf_counter() - started) * 1000

        consumed = result.resource_usage
        consumed.memory_used = max(
            consumed.memory_used,
            BASE_MEMORY_BYTES + len(result.stdout) + len(result.stderr),
        )
        consumed.cpu_time = max(consumed.cpu_time, int(duration_ms))
        result = result.model_copy(
            update={
                "command": command,
                "args": list(args),
                "duration_ms": duration_ms,
                "resource_usage": consumed,
            }
        )
        logger.debug(
            "Sandbox %s ran %s %s -> exit %s", sandbox.id, command, args, result.exit_code
        )
        if usage is not None:
            usage.add(result.resource_usage)
        self._check_limits(sandbox, result)
        return result

    @staticmethod
    async def _dispatch(
        handler: Optional[CommandHandler], sandbox: Sandbox, command: str, args: List[str]
    ) -> CommandResult:
        if handler is None:
            return _fail(f"{command}: command not found", exit_code=127)
        try:
            result = handler(sandbox, list(args))
            if inspect.isawaitable(result):
                result = await result
        except ExecutionFailure:
            raise
        except Exception as e:
            logger.exception("Command handler for %s failed", command)
            return _fail(f"{command}: {e}")
        return result

    @staticmethod
    def _check_limits(sandbox: Sandbox, result: CommandResult) -> None:
        config = sandbox.config
        usage = result.resource_usage
        exceeded: Dict[str, Any] = {}
        if config.max_memory is not None and usage.memory_used > config.max_memory:
            exceeded["memory_used"] = usage.memory_used
        if config.max_cpu is not None and usage.cpu_time > config.max_cpu:
            exceeded["cpu_time"] = usage.cpu_time
        if config.max_duration is not None and result.duration_ms > config.max_duration:
            exceeded["duration_ms"] = result.duration_ms
        if exceeded:
            raise ExecutionFailure(
                ExecutionErrorType.RESOURCE_ERROR,
                "RESOURCE_LIMIT_EXCEEDED",
                f"Command '{result.command}' exceeded its resource envelope",
                details={
                    "exceeded": exceeded,
                    "limits": {
                        "max_memory": config.max_memory,
                        "max_cpu": config.max_cpu,
                        "max_duration": config.max_duration,
                    },
                },
            )
