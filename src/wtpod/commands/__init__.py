"""CLI command modules for wtpod.

    - session: up, stop and remove for one worktree identity
    - status: worktree, link and container report for the repository
    - cleanup: orphaned (or all) container and volume removal
"""

from __future__ import annotations

from . import cleanup, session, status

__all__ = [
    "cleanup",
    "session",
    "status",
]
