"""Subprocess plumbing shared by the git and container adapters.

Provides:
- CommandResult for captured invocations
- run_command: capture stdout/stderr, never raise for a non-zero exit
- run_interactive: hand the terminal to a child process and wait for it

No timeouts are applied. External tools here are either quick queries or
interactive sessions bounded only by the operator.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from wtpod.core.result import Err, Ok, Result, WtpodError

logger = logging.getLogger(__name__)

# Grace period for a delegated child after we forward termination to it.
_TERMINATE_GRACE_SECONDS = 5.0


@dataclass(slots=True)
class CommandResult:
    """Result of a captured command execution."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def diagnostic(self) -> str:
        """The tool's own error text, falling back to stdout, then the command line."""
        return self.stderr.strip() or self.stdout.strip() or f"{' '.join(self.args)} failed"


async def run_command(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Result[CommandResult, WtpodError]:
    """Run a command and capture its output.

    Returns Err only when the process could not be started at all. A non-zero
    exit status is reported through ``CommandResult.returncode`` so callers can
    decide whether it is a failure or "no data".
    """
    if cwd is not None and not cwd.exists():
        return Err(WtpodError("Working directory does not exist", context={"cwd": str(cwd)}))

    logger.debug("exec: %s", " ".join(args))
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError:
        return Err(WtpodError(f"{args[0]} executable not found on PATH", context={"cmd": args[0]}))
    except OSError as exc:
        return Err(
            WtpodError(
                f"Failed to start {args[0]}",
                context={"args": list(args), "error": str(exc)},
            )
        )

    stdout, stderr = await process.communicate()
    return Ok(
        CommandResult(
            args=tuple(args),
            returncode=process.returncode or 0,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
    )


async def run_interactive(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Result[int, WtpodError]:
    """Delegate the terminal to ``args`` and return its exit status.

    stdin/stdout/stderr are inherited. If this coroutine is cancelled (signal,
    shutdown) the child is terminated before the cancellation propagates, so
    callers' cleanup never races a still-running session.
    """
    logger.debug("exec (interactive): %s", " ".join(args))
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError:
        return Err(WtpodError(f"{args[0]} executable not found on PATH", context={"cmd": args[0]}))
    except OSError as exc:
        return Err(
            WtpodError(
                f"Failed to start {args[0]}",
                context={"args": list(args), "error": str(exc)},
            )
        )

    try:
        returncode = await process.wait()
    except BaseException:
        await _terminate(process)
        raise
    return Ok(returncode)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        process.terminate()
    try:
        await asyncio.wait_for(process.wait(), timeout=_TERMINATE_GRACE_SECONDS)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        with contextlib.suppress(ProcessLookupError):
            process.kill()


__all__ = [
    "CommandResult",
    "run_command",
    "run_interactive",
]
