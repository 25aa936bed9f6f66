from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from wtpod.core.process import run_command
from wtpod.core.result import Err, GitError, Ok, Result


@dataclass(frozen=True, slots=True)
class WorktreeEntry:
    """One raw stanza of `git worktree list --porcelain`."""

    path: str
    head: str
    branch: str | None
    detached: bool
    bare: bool
    locked: bool
    prunable: bool


async def _run_git(cwd: Path, *args: str) -> Result[str, GitError]:
    """Run git in ``cwd`` and return stdout as text, wrapping failures."""
    match await run_command(["git", *args], cwd=cwd):
        case Err(err):
            return Err(GitError(err.message, context={"cwd": str(cwd), **err.context}))
        case Ok(result):
            pass

    if not result.ok:
        return Err(
            GitError(
                result.diagnostic,
                context={"cwd": str(cwd), "args": list(args), "returncode": result.returncode},
            )
        )
    return Ok(result.stdout)


def _entry_from(fields: dict[str, str]) -> WorktreeEntry:
    branch = fields.get("branch")
    return WorktreeEntry(
        path=fields.get("worktree", ""),
        head=fields.get("HEAD", ""),
        branch=branch.removeprefix("refs/heads/") if branch else None,
        detached="detached" in fields,
        bare="bare" in fields,
        locked="locked" in fields,
        prunable="prunable" in fields,
    )


def parse_worktree_list(output: str) -> list[WorktreeEntry]:
    """Parse `git worktree list --porcelain` output.

    Stanzas are separated by blank lines. ``locked`` and ``prunable`` may carry
    a reason after the keyword.
    """
    entries: list[WorktreeEntry] = []
    current: dict[str, str] = {}

    for line in output.splitlines():
        if not line.strip():
            if current:
                entries.append(_entry_from(current))
                current = {}
            continue

        key, _, value = line.partition(" ")
        if key in {"worktree", "HEAD", "branch", "locked", "prunable"}:
            current[key] = value
        elif key in {"detached", "bare"}:
            current[key] = "true"

    if current:
        entries.append(_entry_from(current))

    return entries


class GitClient:
    """Async git wrapper bound to the primary checkout."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def path(self) -> Path:
        return self._root

    async def run_git(self, *args: str, cwd: Path | None = None) -> Result[str, GitError]:
        """Public wrapper around git subprocess execution."""
        return await _run_git(cwd or self._root, *args)

    # -------------------------------------------------------------------------
    # Queries. Callers treat Err as "no data".
    # -------------------------------------------------------------------------

    async def show_toplevel(self, cwd: Path | None = None) -> Result[Path, GitError]:
        match await self.run_git("rev-parse", "--show-toplevel", cwd=cwd):
            case Ok(raw):
                return Ok(Path(raw.strip()).resolve())
            case Err(err):
                return Err(err)

    async def common_dir(self, cwd: Path | None = None) -> Result[Path, GitError]:
        """Absolute path of the shared git directory (the primary `.git`)."""
        match await self.run_git(
            "rev-parse", "--path-format=absolute", "--git-common-dir", cwd=cwd
        ):
            case Ok(raw):
                return Ok(Path(raw.strip()).resolve())
            case Err(err):
                return Err(err)

    async def worktree_list(self) -> Result[list[WorktreeEntry], GitError]:
        match await self.run_git("worktree", "list", "--porcelain"):
            case Ok(output):
                return Ok(parse_worktree_list(output))
            case Err(err):
                return Err(err)

    async def ref_exists(self, ref: str) -> bool:
        result = await self.run_git("show-ref", "--verify", "--quiet", ref)
        return result.is_ok()

    async def branch_exists(self, branch: str) -> bool:
        return await self.ref_exists(f"refs/heads/{branch}")

    async def remote_branch_exists(self, remote: str, branch: str) -> bool:
        return await self.ref_exists(f"refs/remotes/{remote}/{branch}")

    async def upstream(self, worktree: Path) -> str | None:
        match await self.run_git(
            "rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}", cwd=worktree
        ):
            case Ok(raw):
                return raw.strip() or None
            case Err(_):
                return None

    async def is_tracked(self, relative: str) -> bool:
        result = await self.run_git("ls-files", "--error-unmatch", "--", relative)
        return result.is_ok()

    # -------------------------------------------------------------------------
    # Mutations. Err carries git's own diagnostic verbatim.
    # -------------------------------------------------------------------------

    async def fetch(self, remote: str) -> Result[None, GitError]:
        result = await self.run_git("fetch", "--prune", remote)
        return result.map(lambda _: None)

    async def pull_ff_only(self, worktree: Path) -> Result[None, GitError]:
        result = await self.run_git("pull", "--ff-only", cwd=worktree)
        return result.map(lambda _: None)

    async def worktree_add(
        self,
        path: Path,
        branch: str,
        *,
        new_branch: bool = True,
        start_point: str | None = None,
        force: bool = False,
    ) -> Result[Path, GitError]:
        """Create a new worktree.

        Args:
            path: Directory for the new worktree
            branch: Branch name (created if new_branch=True)
            new_branch: If True, create branch with -b flag
            start_point: Base commit/branch for a new branch (default: HEAD)
            force: Re-add a path that is registered but missing on disk

        Returns:
            Ok(worktree_path) on success, Err(GitError) on failure
        """
        args: list[str] = ["worktree", "add"]
        if force:
            args.append("--force")
        if new_branch:
            args.extend(["-b", branch, str(path)])
            if start_point:
                args.append(start_point)
        else:
            args.extend([str(path), branch])

        match await self.run_git(*args):
            case Ok(_):
                return Ok(path.resolve())
            case Err(err):
                return Err(err)

    async def worktree_add_tracking(
        self, path: Path, branch: str, remote_ref: str
    ) -> Result[Path, GitError]:
        """Create a worktree with a local branch tracking ``remote_ref``."""
        match await self.run_git("worktree", "add", "--track", "-b", branch, str(path), remote_ref):
            case Ok(_):
                return Ok(path.resolve())
            case Err(err):
                return Err(err)

    async def worktree_remove(self, path: Path, *, force: bool = False) -> Result[None, GitError]:
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(path))

        result = await self.run_git(*args)
        return result.map(lambda _: None)

    async def delete_branch(self, branch: str, *, force: bool = False) -> Result[None, GitError]:
        flag = "-D" if force else "-d"
        result = await self.run_git("branch", flag, branch)
        return result.map(lambda _: None)


__all__ = [
    "GitClient",
    "WorktreeEntry",
    "parse_worktree_list",
]
