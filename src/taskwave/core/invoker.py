"""
LLM command invocation.

Runs an external "prompt in, text out" command as an asyncio subprocess with
a hard wall-clock timeout and classifies what came back.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import time
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Protocol, Sequence, runtime_checkable

from taskwave.core.defaults import DEFAULT_COMMAND, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

SESSION_ID_RE = re.compile(r"SESSION_ID:\s*([a-f0-9-]+)", re.IGNORECASE)

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}


class InvokerNotFoundError(RuntimeError):
    """Raised when the configured command cannot be located."""


class OutcomeKind(Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    FAILED = "failed"
    EMPTY = "empty"


@dataclass(slots=True)
class InvocationOutcome:
    """Raw result of one external invocation for one work item."""

    kind: OutcomeKind
    output: str = ""
    error: str | None = None
    session_id: str | None = None
    returncode: int | None = None
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.kind is OutcomeKind.OK


@runtime_checkable
class Invoker(Protocol):
    """Anything that turns a prompt into an outcome."""

    async def invoke(self, prompt: str, cwd: str) -> InvocationOutcome:
        ...


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the current environment minus interpreter-specific variables."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def extract_session_id(stderr: str) -> str | None:
    match = SESSION_ID_RE.search(stderr)
    return match.group(1) if match else None


class CommandInvoker:
    """
    Execute a command-line LLM wrapper, feeding the prompt on stdin.

    The command must accept the prompt on standard input and print its answer
    to standard output. A `SESSION_ID: <id>` line on standard error is picked
    up for later resumption of that single session.
    """

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_COMMAND,
        timeout: float = DEFAULT_TIMEOUT,
        env: Mapping[str, str] | None = None,
    ) -> None:
        if not command:
            raise ValueError("Empty invocation command")
        self.command = tuple(command)
        self.timeout = timeout
        self._env = env

    def check(self) -> str:
        """Return the resolved executable path, or raise InvokerNotFoundError."""
        executable = self.command[0]
        if os.sep in executable:
            if os.path.isfile(executable) and os.access(executable, os.X_OK):
                return executable
            raise InvokerNotFoundError(f"Executable not found at {executable}")
        resolved = shutil.which(executable)
        if resolved is None:
            raise InvokerNotFoundError(f"{executable!r} not found on PATH")
        return resolved

    async def invoke(self, prompt: str, cwd: str) -> InvocationOutcome:
        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=cwd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(self._env),
            )
        except OSError as e:
            return InvocationOutcome(
                kind=OutcomeKind.FAILED,
                error=str(e),
                duration=time.monotonic() - started,
            )

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(prompt.encode("utf-8")), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            await self._terminate(process)
            logger.debug(f"Invocation killed after {self.timeout:.0f}s")
            return InvocationOutcome(
                kind=OutcomeKind.TIMEOUT,
                error="timeout",
                returncode=process.returncode,
                duration=time.monotonic() - started,
            )
        except BaseException:
            # Cancelled from outside; the child must not outlive us
            await self._terminate(process)
            raise

        stdout = stdout_bytes.decode("utf-8", errors="replace").strip()
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        session_id = extract_session_id(stderr)
        duration = time.monotonic() - started

        if process.returncode != 0:
            detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
            error = f"exit code {process.returncode}"
            if detail:
                error = f"{error}: {detail}"
            return InvocationOutcome(
                kind=OutcomeKind.FAILED,
                output=stdout,
                error=error,
                session_id=session_id,
                returncode=process.returncode,
                duration=duration,
            )

        if not stdout:
            return InvocationOutcome(
                kind=OutcomeKind.EMPTY,
                error="empty output",
                session_id=session_id,
                returncode=0,
                duration=duration,
            )

        return InvocationOutcome(
            kind=OutcomeKind.OK,
            output=stdout,
            session_id=session_id,
            returncode=0,
            duration=duration,
        )

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            return
        await asyncio.shield(process.wait())


class FakeInvoker:
    """Test double that returns scripted outcomes keyed by prompt."""

    def __init__(
        self,
        outcomes: Mapping[str, InvocationOutcome | BaseException] | None = None,
        delay: float | Mapping[str, float] = 0.0,
        default: InvocationOutcome | None = None,
    ) -> None:
        self._outcomes = dict(outcomes or {})
        self._delay = delay
        self._default = default or InvocationOutcome(kind=OutcomeKind.OK, output="ok", returncode=0)
        self.prompts: list[str] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def invoke(self, prompt: str, cwd: str) -> InvocationOutcome:
        self.prompts.append(prompt)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            delay = self._delay.get(prompt, 0.0) if isinstance(self._delay, Mapping) else self._delay
            if delay:
                await asyncio.sleep(delay)
            outcome = self._outcomes.get(prompt, self._default)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1
