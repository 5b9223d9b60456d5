"""
devpool-orchestrator — external command runner

File: src/devpool_orchestrator/integration/commands.py
Last updated: 2026-10-19

Purpose
- Run external commands (``git pull`` after a merge) as asyncio subprocesses
  with a hard timeout and normalized output.

Functional requirements
- Non-zero exits raise ``CommandError`` when ``check`` is set.
- Timeouts kill the child and raise ``CommandError`` with ``timed_out=True``.

Non-functional requirements
- Injectable via the ``CommandRunner`` protocol so tests never spawn processes.
"""

from __future__ import annotations

import asyncio
import os
import time
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_MAX_OUTPUT_CHARS = 20_000


class CommandError(RuntimeError):
    """Raised when a command exits non-zero, times out or cannot be started."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int | None,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
        reason: str | None = None,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.timed_out = timed_out
        if reason is not None:
            message = f"command failed: {' '.join(self.command)}: {reason}"
        else:
            message = f"command failed ({returncode}): {' '.join(self.command)}"
            if stderr.strip():
                message = f"{message}: {stderr.strip()}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess result."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str
    duration_ms: int = 0


@runtime_checkable
class CommandRunner(Protocol):
    async def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        timeout_seconds: float,
        check: bool = True,
    ) -> CommandResult: ...


class SubprocessCommandRunner:
    """Local ``asyncio`` subprocess runner."""

    def __init__(self, *, env_overrides: Mapping[str, str] | None = None) -> None:
        self._env_overrides = dict(env_overrides or {})

    async def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        timeout_seconds: float,
        check: bool = True,
    ) -> CommandResult:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        argv = tuple(command)
        run_cwd = Path(cwd).expanduser().resolve()
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.update(self._env_overrides)
        started_ns = time.monotonic_ns()

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=run_cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise CommandError(command=argv, returncode=None, reason=str(exc)) from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=timeout_seconds
            )
        except TimeoutError as exc:
            with suppress(ProcessLookupError):
                process.kill()
            stdout_bytes, stderr_bytes = await process.communicate()
            raise CommandError(
                command=argv,
                returncode=None,
                stdout=_normalize_output(stdout_bytes),
                stderr=_normalize_output(stderr_bytes),
                timed_out=True,
                reason=f"timed out after {timeout_seconds:.3f}s",
            ) from exc
        except asyncio.CancelledError:
            with suppress(ProcessLookupError):
                process.kill()
            await process.communicate()
            raise

        result = CommandResult(
            command=argv,
            cwd=run_cwd.as_posix(),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=_normalize_output(stdout_bytes),
            stderr=_normalize_output(stderr_bytes),
            duration_ms=max(0, (time.monotonic_ns() - started_ns) // 1_000_000),
        )
        if check and result.returncode != 0:
            raise CommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result


async def git_pull(runner: CommandRunner, repo: Path, *, timeout_seconds: float) -> CommandResult:
    return await runner.run(("git", "pull"), cwd=repo, timeout_seconds=timeout_seconds)


def _normalize_output(raw: bytes) -> str:
    text = raw.decode("utf-8", errors="replace").replace("\r\n", "\n").replace("\r", "\n")
    if len(text) <= _MAX_OUTPUT_CHARS:
        return text
    omitted = len(text) - _MAX_OUTPUT_CHARS
    return f"{text[:_MAX_OUTPUT_CHARS]}\n...[truncated {omitted} chars]"


__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "SubprocessCommandRunner",
    "git_pull",
]
