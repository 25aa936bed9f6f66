"""
Result types and error hierarchy for wtpod.

This module provides:
1. Result[T, E] type for the external-tool adapters (git, container runtime,
   devcontainer CLI), which never raise for an expected tool failure
2. The exception hierarchy raised by the session controller and surfaced by
   the CLI

Usage:
    from wtpod.core.result import Ok, Err, Result, GitError

    def list_refs() -> Result[str, GitError]:
        if failed:
            return Err(GitError("git show-ref failed", context={"cwd": str(cwd)}))
        return Ok(output)

    match list_refs():
        case Ok(output):
            ...
        case Err(err):
            console.print(err.message)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound=Exception)
F = TypeVar("F", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Represents a successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply a function to the contained value."""
        return Ok(fn(self.value))


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Represents a failed result containing an error."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, fn: Callable[[T], U]) -> Err[E]:
        """No-op for Err - returns self unchanged."""
        return self


Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class WtpodError(Exception):
    """Base exception for all wtpod errors.

    Carries a human message plus an optional context mapping that is rendered
    after the message, e.g. ``git worktree add failed [cwd=/repo, returncode=128]``.
    """

    def __init__(self, message: str, *, context: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class UsageError(WtpodError):
    """Raised when the operator did not supply a usable identity.

    Not fatal: the CLI shows help and exits 0.
    """


class NotFoundError(WtpodError):
    """Raised when an identity has no worktree and no recoverable metadata."""


class ResolutionError(WtpodError):
    """Raised when the repository root cannot be determined.

    Nothing else can proceed without a repository.
    """


class TranslationError(WtpodError):
    """Raised when a git link record cannot be rewritten.

    Typically a file held open by the container runtime during teardown.
    Raised only after the bounded retry budget is exhausted.
    """


class ConfigurationError(WtpodError):
    """Raised for configuration issues."""


class ExternalToolError(WtpodError):
    """Raised when git, the container runtime or the devcontainer CLI fails.

    The message is the tool's own diagnostic (stderr), verbatim.
    """


class GitError(ExternalToolError):
    """A git invocation failed."""


class ContainerRuntimeError(ExternalToolError):
    """A docker/podman or devcontainer invocation failed."""


__all__ = [
    "ConfigurationError",
    "ContainerRuntimeError",
    "Err",
    "ExternalToolError",
    "GitError",
    "NotFoundError",
    "Ok",
    "ResolutionError",
    "Result",
    "TranslationError",
    "UsageError",
    "WtpodError",
]
