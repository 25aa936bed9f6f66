from __future__ import annotations

from pathlib import Path, PurePosixPath

from wtpod.session.paths import (
    ContainerPath,
    HostPath,
    LinkRecord,
    PathSpace,
    WorktreeLayout,
    parse_gitdir_file,
    render_gitdir_file,
    render_pointer_file,
)


def _layout() -> WorktreeLayout:
    return WorktreeLayout(
        project="proj",
        host_git_dir=Path("/home/dev/proj/.git"),
        host_worktrees_root=Path("/home/dev/proj-worktrees"),
        container_root=PurePosixPath("/workspaces"),
    )


class TestPathSpace:
    def test_container_root_classifies_as_container(self) -> None:
        space = _layout().path_space()
        assert space.classify("/workspaces/feature-x/.git") == ContainerPath(
            PurePosixPath("/workspaces/feature-x/.git")
        )

    def test_other_absolute_paths_are_host(self) -> None:
        space = _layout().path_space()
        assert space.classify("/home/dev/proj/.git/worktrees/x") == HostPath(
            Path("/home/dev/proj/.git/worktrees/x")
        )

    def test_host_anchor_wins_over_container_root(self) -> None:
        # A repository that itself lives under /workspaces on the host
        space = PathSpace(
            container_root=PurePosixPath("/workspaces"),
            host_anchors=(Path("/workspaces/proj-worktrees"),),
        )
        assert isinstance(space.classify("/workspaces/proj-worktrees/x"), HostPath)
        assert isinstance(space.classify("/workspaces/x"), ContainerPath)

    def test_relative_paths_resolve_against_base(self) -> None:
        space = _layout().path_space()
        result = space.classify("../proj/.git/worktrees/x", relative_to=Path("/home/dev/wt"))
        assert result == HostPath(Path("/home/dev/proj/.git/worktrees/x"))


class TestLayout:
    def test_both_namespaces_derive_from_identity(self) -> None:
        layout = _layout()
        assert layout.host_worktree("x").path == Path("/home/dev/proj-worktrees/x")
        assert layout.container_worktree("x").path == PurePosixPath("/workspaces/x")
        assert layout.container_metadata("x").path == PurePosixPath(
            "/workspaces/proj/.git/worktrees/x"
        )


class TestLinkRecord:
    def test_split_namespaces(self) -> None:
        record = LinkRecord(
            worktree_link=ContainerPath(PurePosixPath("/workspaces/proj/.git/worktrees/x")),
            metadata_pointer=HostPath(Path("/home/dev/proj-worktrees/x/.git")),
        )
        assert record.is_split
        assert record.namespace is None

    def test_consistent_namespace(self) -> None:
        record = LinkRecord(
            worktree_link=HostPath(Path("/a")), metadata_pointer=HostPath(Path("/b"))
        )
        assert not record.is_split
        assert record.namespace is HostPath

    def test_missing_record_is_not_split(self) -> None:
        record = LinkRecord(worktree_link=None, metadata_pointer=HostPath(Path("/b")))
        assert not record.is_split
        assert record.namespace is None


def test_gitdir_file_format() -> None:
    target = HostPath(Path("/home/dev/proj/.git/worktrees/x"))
    text = render_gitdir_file(target)
    assert text == "gitdir: /home/dev/proj/.git/worktrees/x\n"
    assert parse_gitdir_file(text) == "/home/dev/proj/.git/worktrees/x"
    assert render_pointer_file(target) == "/home/dev/proj/.git/worktrees/x\n"
    assert parse_gitdir_file("garbage") is None
