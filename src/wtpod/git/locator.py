"""Repository root discovery.

``locate_root`` answers "which primary checkout does this directory belong
to?" by reading the on-disk ``.git`` entry:

    .git is a directory   -> this is the primary checkout
    .git is a file        -> secondary worktree; follow ``gitdir:`` to
                             ``<common>/worktrees/<key>`` and its ``commondir``

When the structure is inconclusive (missing target, container-form redirect
that does not exist on the host) it falls back to asking git. Read-only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from wtpod.core.result import Err, Ok, ResolutionError
from wtpod.git.client import GitClient
from wtpod.session.paths import WorktreeLayout, parse_gitdir_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Repository:
    """The primary checkout of one project. Never path-translated."""

    root: Path
    git_dir: Path
    worktrees_root: Path

    @property
    def name(self) -> str:
        return self.root.name

    def layout(self, container_root: str | PurePosixPath) -> WorktreeLayout:
        return WorktreeLayout(
            project=self.name,
            host_git_dir=self.git_dir,
            host_worktrees_root=self.worktrees_root,
            container_root=PurePosixPath(container_root),
        )


def default_worktrees_root(root: Path) -> Path:
    return root.parent / f"{root.name}-worktrees"


def _find_dot_git(start: Path) -> Path | None:
    for candidate in (start, *start.parents):
        dot_git = candidate / ".git"
        if dot_git.exists() or dot_git.is_symlink():
            return dot_git
    return None


def _common_dir_from_redirect(dot_git: Path) -> Path | None:
    """Follow a worktree's ``.git`` file to the shared git directory."""
    try:
        target = parse_gitdir_file(dot_git.read_text(encoding="utf-8"))
    except OSError as exc:
        logger.debug("Unreadable redirect %s: %s", dot_git, exc)
        return None
    if target is None:
        return None

    metadata_dir = Path(target)
    if not metadata_dir.is_absolute():
        metadata_dir = (dot_git.parent / metadata_dir).resolve()
    if not metadata_dir.is_dir():
        return None

    commondir_file = metadata_dir / "commondir"
    if commondir_file.is_file():
        try:
            common = Path(commondir_file.read_text(encoding="utf-8").strip())
        except OSError:
            return None
        if not common.is_absolute():
            common = metadata_dir / common
        return common.resolve()

    # <common>/worktrees/<key>
    if metadata_dir.parent.name == "worktrees":
        return metadata_dir.parent.parent.resolve()
    return None


def _from_structure(start: Path) -> tuple[Path, Path] | None:
    dot_git = _find_dot_git(start)
    if dot_git is None:
        return None

    if dot_git.is_dir():
        return dot_git.parent.resolve(), dot_git.resolve()

    common = _common_dir_from_redirect(dot_git)
    if common is None or not common.is_dir():
        return None
    return common.parent, common


def _from_layout(start: Path) -> tuple[Path, Path] | None:
    """Conventional `<name>-worktrees/<identity>` sibling of `<name>/.git`.

    Covers a worktree whose redirect is currently in container form.
    """
    dot_git = _find_dot_git(start)
    if dot_git is None or not dot_git.is_file():
        return None
    worktree = dot_git.parent
    container_dir = worktree.parent
    if not container_dir.name.endswith("-worktrees"):
        return None
    root = container_dir.parent / container_dir.name.removesuffix("-worktrees")
    if (root / ".git").is_dir():
        return root.resolve(), (root / ".git").resolve()
    return None


async def _from_git(start: Path, git: GitClient) -> tuple[Path, Path] | None:
    match await git.common_dir(cwd=start):
        case Ok(common):
            pass
        case Err(err):
            logger.debug("git rev-parse --git-common-dir failed: %s", err)
            common = None

    if common is not None and common.name == ".git":
        return common.parent, common

    match await git.show_toplevel(cwd=start):
        case Ok(top):
            return top, top / ".git"
        case Err(err):
            logger.debug("git rev-parse --show-toplevel failed: %s", err)
            return None


async def locate_root(
    start_dir: Path,
    git: GitClient | None = None,
    *,
    worktrees_root: Path | None = None,
) -> Repository:
    """Resolve the primary checkout for ``start_dir``.

    Raises:
        ResolutionError: ``start_dir`` is not inside a git repository.
    """
    start = start_dir.expanduser().resolve()
    if not start.exists():
        raise ResolutionError("Start directory does not exist", context={"path": str(start)})

    found = _from_structure(start)
    if found is None:
        logger.debug("Structural inspection inconclusive for %s; asking git", start)
        found = await _from_git(start, git or GitClient(start))
    if found is None:
        found = _from_layout(start)
    if found is None:
        raise ResolutionError("Not inside a git repository", context={"path": str(start)})

    root, git_dir = found
    return Repository(
        root=root,
        git_dir=git_dir,
        worktrees_root=(worktrees_root or default_worktrees_root(root)).resolve(),
    )


__all__ = [
    "Repository",
    "default_worktrees_root",
    "locate_root",
]
