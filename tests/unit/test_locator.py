"""Tests for repository root discovery."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.mocks.fakes import FakeGit, add_linked_worktree, make_repo
from wtpod.core.result import Err, GitError, ResolutionError
from wtpod.git.locator import default_worktrees_root, locate_root


class _NoGit(FakeGit):
    """Git that knows nothing, so only on-disk structure can answer."""

    async def common_dir(self, cwd: Path | None = None):  # type: ignore[override]
        return Err(GitError("not a git repository"))

    async def show_toplevel(self, cwd: Path | None = None):  # type: ignore[override]
        return Err(GitError("not a git repository"))


@pytest.mark.asyncio
async def test_primary_checkout(tmp_path: Path) -> None:
    root = make_repo(tmp_path)
    (root / "src" / "pkg").mkdir(parents=True)

    repo = await locate_root(root / "src" / "pkg", _NoGit(root))

    assert repo.root == root
    assert repo.git_dir == root / ".git"
    assert repo.name == "proj"
    assert repo.worktrees_root == default_worktrees_root(root)


@pytest.mark.asyncio
async def test_secondary_worktree_follows_redirect(tmp_path: Path) -> None:
    root = make_repo(tmp_path)
    wt = add_linked_worktree(root, "feature-x")

    repo = await locate_root(wt, _NoGit(root))

    assert repo.root == root
    assert repo.git_dir == root / ".git"


@pytest.mark.asyncio
async def test_container_form_redirect_uses_layout(tmp_path: Path) -> None:
    root = make_repo(tmp_path)
    wt = add_linked_worktree(root, "feature-x")
    (wt / ".git").write_text("gitdir: /workspaces/proj/.git/worktrees/feature-x\n")

    repo = await locate_root(wt, _NoGit(root))

    assert repo.root == root


@pytest.mark.asyncio
async def test_custom_worktrees_root(tmp_path: Path) -> None:
    root = make_repo(tmp_path)
    custom = tmp_path / "elsewhere"

    repo = await locate_root(root, _NoGit(root), worktrees_root=custom)

    assert repo.worktrees_root == custom.resolve()


@pytest.mark.asyncio
async def test_not_a_repository(tmp_path: Path) -> None:
    lonely = tmp_path / "lonely"
    lonely.mkdir()
    with pytest.raises(ResolutionError):
        await locate_root(lonely, _NoGit(lonely))


@pytest.mark.asyncio
async def test_missing_start_dir(tmp_path: Path) -> None:
    with pytest.raises(ResolutionError):
        await locate_root(tmp_path / "absent", _NoGit(tmp_path))


@pytest.mark.asyncio
async def test_real_worktree(git_repo: Path, git) -> None:
    target = git_repo.parent / "proj-worktrees" / "topic"
    git(git_repo, "worktree", "add", "-b", "topic", str(target))

    repo = await locate_root(target)

    assert repo.root == git_repo
