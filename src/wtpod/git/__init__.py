"""Git plumbing: repository discovery, worktree listing and identity matching.

This package provides:
    - GitClient: async, Result-returning git commands
    - locate_root / Repository: primary checkout discovery
    - WorktreeRegistry / sanitize_identity: identity-keyed worktree lookup
"""

from __future__ import annotations

from .client import GitClient, WorktreeEntry, parse_worktree_list
from .locator import Repository, default_worktrees_root, locate_root
from .registry import (
    WorktreeRecord,
    WorktreeRegistry,
    find_in,
    live_identities,
    sanitize_identity,
)

__all__ = [
    "GitClient",
    "Repository",
    "WorktreeEntry",
    "WorktreeRecord",
    "WorktreeRegistry",
    "default_worktrees_root",
    "find_in",
    "live_identities",
    "locate_root",
    "parse_worktree_list",
    "sanitize_identity",
]
