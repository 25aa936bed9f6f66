"""Path namespaces and git link records.

A worktree's link records name paths in exactly one of two namespaces:

    HostPath       - a path as the host filesystem sees it
    ContainerPath  - a path as the container sees it (under the mount root)

Raw strings read from disk or from git are converted into one of the two by
``PathSpace.classify`` at the boundary. Internal code only compares tagged
values, so a host path is never mistaken for a container path.
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

GITDIR_PREFIX = "gitdir:"


@dataclass(frozen=True, slots=True)
class HostPath:
    path: Path

    def __str__(self) -> str:
        return str(self.path)

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True, slots=True)
class ContainerPath:
    path: PurePosixPath

    def __str__(self) -> str:
        return str(self.path)

    @property
    def name(self) -> str:
        return self.path.name


NamespacedPath = HostPath | ContainerPath


class SessionState(str, enum.Enum):
    """What a worktree's on-disk link state looks like right now."""

    MISSING = "missing"
    CORRUPTED_METADATA = "corrupted-metadata"
    VALID_HOST = "valid-host"
    VALID_CONTAINER = "valid-container"


@dataclass(frozen=True, slots=True)
class PathSpace:
    """Classifies raw path strings for one repository.

    Host anchors win over the container root so that a repository which itself
    lives under ``/workspaces`` on the host is still read as host paths.
    """

    container_root: PurePosixPath
    host_anchors: tuple[Path, ...] = ()

    def classify(self, raw: str, *, relative_to: Path | None = None) -> NamespacedPath:
        text = raw.strip()
        candidate = Path(text)
        if not candidate.is_absolute():
            base = relative_to or Path.cwd()
            return HostPath(Path(os.path.normpath(base / candidate)))

        for anchor in self.host_anchors:
            if candidate == anchor or candidate.is_relative_to(anchor):
                return HostPath(candidate)

        posix = PurePosixPath(text)
        if posix == self.container_root or posix.is_relative_to(self.container_root):
            return ContainerPath(posix)
        return HostPath(candidate)


@dataclass(frozen=True, slots=True)
class WorktreeLayout:
    """Where a worktree and its metadata live, in both namespaces.

    Every location is derived from identity and the repository, never from the
    checked-out branch.
    """

    project: str
    host_git_dir: Path
    host_worktrees_root: Path
    container_root: PurePosixPath

    @property
    def container_git_dir(self) -> PurePosixPath:
        return self.container_root / self.project / ".git"

    def host_worktree(self, identity: str) -> HostPath:
        return HostPath(self.host_worktrees_root / identity)

    def container_worktree(self, identity: str) -> ContainerPath:
        return ContainerPath(self.container_root / identity)

    def host_metadata(self, key: str) -> HostPath:
        return HostPath(self.host_git_dir / "worktrees" / key)

    def container_metadata(self, key: str) -> ContainerPath:
        return ContainerPath(self.container_git_dir / "worktrees" / key)

    def path_space(self) -> PathSpace:
        return PathSpace(
            container_root=self.container_root,
            host_anchors=(self.host_worktrees_root, self.host_git_dir),
        )


@dataclass(frozen=True, slots=True)
class LinkRecord:
    """Both link records of one worktree, as currently found on disk.

    ``worktree_link`` is the target of ``<worktree>/.git`` ("gitdir: ...").
    ``metadata_pointer`` is the content of ``<git_dir>/worktrees/<key>/gitdir``.
    Either is None when the file is absent or unparseable.
    """

    worktree_link: NamespacedPath | None
    metadata_pointer: NamespacedPath | None

    @property
    def is_split(self) -> bool:
        """True when the two records disagree on namespace."""
        if self.worktree_link is None or self.metadata_pointer is None:
            return False
        return type(self.worktree_link) is not type(self.metadata_pointer)

    @property
    def namespace(self) -> type[HostPath] | type[ContainerPath] | None:
        if self.worktree_link is None or self.metadata_pointer is None or self.is_split:
            return None
        return type(self.worktree_link)


def parse_gitdir_file(text: str) -> str | None:
    """Return the target of a ``gitdir: <path>`` redirect record."""
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith(GITDIR_PREFIX):
            target = stripped[len(GITDIR_PREFIX) :].strip()
            return target or None
    return None


def render_gitdir_file(target: NamespacedPath) -> str:
    return f"{GITDIR_PREFIX} {target}\n"


def render_pointer_file(target: NamespacedPath) -> str:
    return f"{target}\n"


__all__ = [
    "ContainerPath",
    "HostPath",
    "LinkRecord",
    "NamespacedPath",
    "PathSpace",
    "SessionState",
    "WorktreeLayout",
    "parse_gitdir_file",
    "render_gitdir_file",
    "render_pointer_file",
]
