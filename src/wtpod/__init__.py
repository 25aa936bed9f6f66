"""wtpod - isolated development sessions from a git worktree plus a devcontainer.

This package provides the `wtpod` command-line tool: it pairs each git
worktree with exactly one container, keeps the worktree's git link records in
the right path namespace while a session runs, and cleans up orphaned
containers and volumes.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.4.0"
