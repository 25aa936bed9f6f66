"""Tests for worktree listing and identity matching."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path, PurePosixPath
from typing import Any

import pytest

from tests.mocks.fakes import FakeGit, add_linked_worktree, entry, make_repo
from wtpod.core.result import GitError, UsageError
from wtpod.git.client import GitClient, parse_worktree_list
from wtpod.git.locator import Repository, default_worktrees_root, locate_root
from wtpod.git.registry import (
    WorktreeRegistry,
    find_in,
    live_identities,
    sanitize_identity,
    to_record,
)
from wtpod.session.paths import ContainerPath, HostPath, WorktreeLayout

PORCELAIN = """\
worktree /home/dev/proj
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /home/dev/proj-worktrees/feature-x
HEAD 2222222222222222222222222222222222222222
branch refs/heads/feature/x

worktree /workspaces/bugfix
HEAD 3333333333333333333333333333333333333333
detached
prunable gitdir file points to non-existent location

worktree /home/dev/proj-worktrees/old
HEAD 4444444444444444444444444444444444444444
branch refs/heads/old
locked moved to usb disk
"""


class TestSanitizeIdentity:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("feature/x", "feature-x"),
            ("feature//x", "feature-x"),
            ("a\\b/c", "a-b-c"),
            ("/leading/", "leading"),
            ("  spaced  ", "spaced"),
            ("plain", "plain"),
        ],
    )
    def test_collapses_separators(self, raw: str, expected: str) -> None:
        assert sanitize_identity(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "/", "//\\", "..", "."])
    def test_rejects_empty_identity(self, raw: str) -> None:
        with pytest.raises(UsageError):
            sanitize_identity(raw)


class TestParsePorcelain:
    def test_parses_all_stanzas(self) -> None:
        entries = parse_worktree_list(PORCELAIN)
        assert [e.path for e in entries] == [
            "/home/dev/proj",
            "/home/dev/proj-worktrees/feature-x",
            "/workspaces/bugfix",
            "/home/dev/proj-worktrees/old",
        ]
        assert entries[1].branch == "feature/x"
        assert entries[2].detached and entries[2].branch is None and entries[2].prunable
        assert entries[3].locked

    def test_empty_output(self) -> None:
        assert parse_worktree_list("") == []


class TestToRecord:
    def _layout(self, tmp_path: Path) -> tuple[Repository, WorktreeLayout]:
        root = make_repo(tmp_path)
        repo = Repository(root=root, git_dir=root / ".git", worktrees_root=default_worktrees_root(root))
        return repo, repo.layout("/workspaces")

    def test_container_form_entry_keeps_identity(self, tmp_path: Path) -> None:
        repo, layout = self._layout(tmp_path)
        e = replace(entry("/workspaces/bugfix", None), prunable=True)
        record = to_record(e, layout, HostPath(repo.root))

        assert isinstance(record.path, ContainerPath)
        assert record.path.path == PurePosixPath("/workspaces/bugfix")
        assert record.identity == "bugfix"
        assert record.host_path == layout.host_worktree("bugfix")
        assert not record.prunable

    def test_primary_is_flagged(self, tmp_path: Path) -> None:
        repo, layout = self._layout(tmp_path)
        record = to_record(entry(repo.root, "main"), layout, HostPath(repo.root))
        assert record.is_primary
        assert record.identity == "proj"

    def test_branch_differs(self, tmp_path: Path) -> None:
        repo, layout = self._layout(tmp_path)
        wt = repo.worktrees_root / "feature-x"
        same = to_record(entry(wt, "feature/x"), layout, HostPath(repo.root))
        other = to_record(entry(wt, "hotfix"), layout, HostPath(repo.root))
        detached = to_record(entry(wt, None), layout, HostPath(repo.root))

        assert not same.branch_differs()
        assert other.branch_differs()
        assert detached.branch_differs()
        assert detached.branch_display.startswith("(detached")


class TestRegistry:
    @pytest.mark.asyncio
    async def test_find_by_identity_ignores_branch(self, tmp_path: Path) -> None:
        root = make_repo(tmp_path)
        wt = add_linked_worktree(root, "feature-x")
        git = FakeGit(root, [entry(root, "main"), entry(wt, "something-else")])
        repo = await locate_root(root, git)
        registry = WorktreeRegistry(repo, git, repo.layout("/workspaces"))

        found = await registry.find_by_identity("feature/x")
        assert found is not None
        assert found.host_path.path == wt
        assert await registry.find_by_identity("something-else") is None

    @pytest.mark.asyncio
    async def test_primary_never_matches(self, tmp_path: Path) -> None:
        root = make_repo(tmp_path)
        git = FakeGit(root)
        repo = await locate_root(root, git)
        registry = WorktreeRegistry(repo, git, repo.layout("/workspaces"))
        records = await registry.list_worktrees()

        assert find_in(records, "proj") is None
        assert live_identities(records) == {"proj"}

    @pytest.mark.asyncio
    async def test_git_failure_degrades_to_empty(self, tmp_path: Path) -> None:
        root = make_repo(tmp_path)
        repo = await locate_root(root, FakeGit(root))
        # A GitClient pointed at a directory that is not a repository
        broken = GitClient(tmp_path / "nowhere")
        registry = WorktreeRegistry(repo, broken, repo.layout("/workspaces"))
        assert await registry.list_worktrees() == []

    @pytest.mark.asyncio
    async def test_strict_listing_raises_git_error(self, tmp_path: Path) -> None:
        root = make_repo(tmp_path)
        git = FakeGit(root)
        repo = await locate_root(root, git)
        git.list_error = GitError("fatal: not a git repository")
        registry = WorktreeRegistry(repo, git, repo.layout("/workspaces"))

        with pytest.raises(GitError, match="not a git repository"):
            await registry.list_worktrees(strict=True)
        assert await registry.list_worktrees() == []


@pytest.mark.asyncio
async def test_identity_survives_branch_switch(git_repo: Path, git: Any) -> None:
    """feature/x -> feature-x; still found after checking out another branch inside it."""
    worktrees = git_repo.parent / "proj-worktrees"
    target = worktrees / sanitize_identity("feature/x")
    client = GitClient(git_repo)
    result = await client.worktree_add(target, "feature/x", start_point="main")
    assert result.is_ok()

    repo = await locate_root(target)
    registry = WorktreeRegistry(repo, client, repo.layout("/workspaces"))

    before = await registry.find_by_identity("feature/x")
    git(target, "checkout", "-b", "totally-different")
    after = await registry.find_by_identity("feature/x")

    assert before is not None and after is not None
    assert before.host_path == after.host_path
    assert after.branch == "totally-different"
    assert after.branch_differs()
