"""Worktree enumeration and identity matching.

Identity is the sanitized directory basename assigned when a worktree is
created. It is the only join key: the branch checked out inside a worktree is
reported for display and never used to locate, stop or remove anything.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from wtpod.core.result import Err, Ok, UsageError
from wtpod.git.client import GitClient, WorktreeEntry
from wtpod.git.locator import Repository
from wtpod.session.paths import HostPath, NamespacedPath, WorktreeLayout

logger = logging.getLogger(__name__)

_SEPARATOR_RUN = re.compile(r"[/\\]+")
_EDGES = re.compile(r"^[\s-]+|[\s-]+$")
IDENTITY_SUBSTITUTE = "-"


def sanitize_identity(name: str) -> str:
    """Turn a requested name (often a branch name) into a directory identity.

    ``feature/x`` -> ``feature-x``; ``a//b\\c`` -> ``a-b-c``.

    Raises:
        UsageError: nothing usable is left after sanitizing.
    """
    identity = _EDGES.sub("", _SEPARATOR_RUN.sub(IDENTITY_SUBSTITUTE, name))
    if identity in {"", ".", ".."}:
        raise UsageError(f"Cannot derive a worktree identity from {name!r}")
    return identity


@dataclass(frozen=True, slots=True)
class WorktreeRecord:
    """One worktree known to git, with its path tagged by namespace."""

    identity: str
    path: NamespacedPath
    host_path: HostPath
    head: str
    branch: str | None
    is_primary: bool = False
    locked: bool = False
    prunable: bool = False

    @property
    def detached(self) -> bool:
        return self.branch is None

    @property
    def branch_display(self) -> str:
        if self.branch:
            return self.branch
        return f"(detached {self.head[:7]})" if self.head else "(detached)"

    def branch_differs(self) -> bool:
        """True when the checked-out branch no longer matches the identity."""
        if self.branch is None:
            return True
        return sanitize_identity(self.branch) != self.identity


def to_record(entry: WorktreeEntry, layout: WorktreeLayout, primary_root: HostPath) -> WorktreeRecord:
    path = layout.path_space().classify(entry.path)
    is_primary = isinstance(path, HostPath) and path.path == primary_root.path
    if is_primary:
        return WorktreeRecord(
            identity=primary_root.name,
            path=path,
            host_path=primary_root,
            head=entry.head,
            branch=entry.branch,
            is_primary=True,
            locked=entry.locked,
            prunable=entry.prunable,
        )

    identity = path.name
    host_path = path if isinstance(path, HostPath) else layout.host_worktree(identity)
    return WorktreeRecord(
        identity=identity,
        path=path,
        host_path=host_path,
        head=entry.head,
        branch=entry.branch,
        locked=entry.locked,
        # A container-form worktree looks prunable to host git; it is not.
        prunable=entry.prunable and isinstance(path, HostPath),
    )


class WorktreeRegistry:
    """Lists the worktrees of one repository and resolves identities."""

    def __init__(self, repository: Repository, git: GitClient, layout: WorktreeLayout) -> None:
        self._repository = repository
        self._git = git
        self._layout = layout

    @property
    def layout(self) -> WorktreeLayout:
        return self._layout

    async def list_worktrees(self, *, strict: bool = False) -> list[WorktreeRecord]:
        """All worktrees in git's order (primary first).

        A failing git query yields an empty listing so read-only callers can
        degrade. Callers that act on what is absent pass ``strict=True`` and
        get the ``GitError`` instead.
        """
        match await self._git.worktree_list():
            case Ok(entries):
                pass
            case Err(err):
                if strict:
                    raise err
                logger.warning("Could not list worktrees: %s", err.message)
                return []

        primary = HostPath(self._repository.root)
        return [
            to_record(entry, self._layout, primary) for entry in entries if not entry.bare
        ]

    async def find_by_identity(self, name: str) -> WorktreeRecord | None:
        identity = sanitize_identity(name)
        return find_in(await self.list_worktrees(), identity)


def find_in(records: list[WorktreeRecord], identity: str) -> WorktreeRecord | None:
    """Look up an already-sanitized identity among secondary worktrees."""
    for record in records:
        if not record.is_primary and record.identity == identity:
            return record
    return None


def live_identities(records: list[WorktreeRecord]) -> set[str]:
    return {record.identity for record in records}


__all__ = [
    "IDENTITY_SUBSTITUTE",
    "WorktreeRecord",
    "WorktreeRegistry",
    "find_in",
    "live_identities",
    "sanitize_identity",
    "to_record",
]
