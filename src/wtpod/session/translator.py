"""Rewriting a worktree's git link records between host and container form.

Each worktree has two records that must always agree on namespace:

    <worktree>/.git                       gitdir: <git_dir>/worktrees/<key>
    <git_dir>/worktrees/<key>/gitdir      <worktree>/.git

Inside the container the primary ``.git`` is mounted at
``<container_root>/<project>/.git`` and the worktree at
``<container_root>/<identity>``, so both records are rewritten to those paths
for the lifetime of a session and restored afterwards.

``container_form()`` is the only supported way to hold container form: the
host form is written back in ``finally`` on every exit path.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from wtpod.core.config import TranslationConfig
from wtpod.core.result import NotFoundError, TranslationError
from wtpod.session.paths import (
    ContainerPath,
    HostPath,
    LinkRecord,
    SessionState,
    WorktreeLayout,
    parse_gitdir_file,
    render_gitdir_file,
    render_pointer_file,
)

logger = logging.getLogger(__name__)

POINTER_FILE = "gitdir"


@dataclass(frozen=True, slots=True)
class LinkSnapshot:
    """Host-form contents to write back when a session releases its worktree."""

    key: str
    link_file: Path
    pointer_file: Path
    link_text: str
    pointer_text: str


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.debug("Unreadable link record %s: %s", path, exc)
        return None


def _same_path(left: Path, right: Path) -> bool:
    return left.resolve() == right.resolve()


class PathTranslator:
    def __init__(
        self,
        layout: WorktreeLayout,
        policy: TranslationConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._layout = layout
        self._policy = policy or TranslationConfig()
        self._sleep = sleep
        self._clock = clock

    @property
    def layout(self) -> WorktreeLayout:
        return self._layout

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def metadata_key(self, worktree: HostPath) -> str | None:
        """Name of the ``<git_dir>/worktrees/<key>`` entry owned by ``worktree``.

        Git usually names the entry after the directory, but appends a number
        on collisions, so the link file is consulted first and the metadata
        directory scanned as a fallback.
        """
        metadata_root = self._layout.host_git_dir / "worktrees"
        link_text = _read_text(worktree.path / ".git")
        target = parse_gitdir_file(link_text) if link_text else None
        if target:
            key = Path(target).name
            if (metadata_root / key).is_dir():
                return key

        if not metadata_root.is_dir():
            return None

        identity = worktree.name
        for entry in sorted(metadata_root.iterdir()):
            pointer = _read_text(entry / POINTER_FILE)
            if pointer is None:
                continue
            # <worktree>/.git in either namespace
            if Path(pointer.strip()).parent.name == identity:
                return entry.name

        if (metadata_root / identity).is_dir():
            return identity
        return None

    def read_link_record(self, worktree: HostPath, key: str | None = None) -> LinkRecord:
        key = key or self.metadata_key(worktree)
        space = self._layout.path_space()

        link_text = _read_text(worktree.path / ".git")
        target = parse_gitdir_file(link_text) if link_text else None
        worktree_link = space.classify(target, relative_to=worktree.path) if target else None

        metadata_pointer = None
        if key is not None:
            metadata_dir = self._layout.host_metadata(key).path
            pointer_text = _read_text(metadata_dir / POINTER_FILE)
            if pointer_text and pointer_text.strip():
                metadata_pointer = space.classify(pointer_text, relative_to=metadata_dir)

        return LinkRecord(worktree_link=worktree_link, metadata_pointer=metadata_pointer)

    def inspect(self, worktree: HostPath, *, container_active: bool) -> SessionState:
        """Classify the on-disk link state of ``worktree``."""
        key = self.metadata_key(worktree)
        if not worktree.path.is_dir():
            return SessionState.MISSING if key is None else SessionState.CORRUPTED_METADATA
        if key is None:
            return SessionState.CORRUPTED_METADATA

        record = self.read_link_record(worktree, key)
        if record.namespace is HostPath:
            return (
                SessionState.VALID_HOST
                if self._is_canonical_host(worktree, key, record)
                else SessionState.CORRUPTED_METADATA
            )
        if record.namespace is ContainerPath:
            if container_active and self._is_canonical_container(worktree, key, record):
                return SessionState.VALID_CONTAINER
            return SessionState.CORRUPTED_METADATA
        return SessionState.CORRUPTED_METADATA

    def _is_canonical_host(self, worktree: HostPath, key: str, record: LinkRecord) -> bool:
        if not isinstance(record.worktree_link, HostPath) or not isinstance(
            record.metadata_pointer, HostPath
        ):
            return False
        metadata_dir = self._layout.host_metadata(key).path
        return (
            metadata_dir.is_dir()
            and _same_path(record.worktree_link.path, metadata_dir)
            and _same_path(record.metadata_pointer.path, worktree.path / ".git")
        )

    def _is_canonical_container(self, worktree: HostPath, key: str, record: LinkRecord) -> bool:
        expected_link = self._layout.container_metadata(key)
        expected_pointer = self._layout.container_worktree(worktree.name).path / ".git"
        return (
            record.worktree_link == expected_link
            and isinstance(record.metadata_pointer, ContainerPath)
            and record.metadata_pointer.path == expected_pointer
        )

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def _require_key(self, worktree: HostPath) -> str:
        key = self.metadata_key(worktree)
        if key is None:
            raise NotFoundError(
                f"No git metadata found for worktree '{worktree.name}'",
                context={"worktree": str(worktree)},
            )
        return key

    def host_snapshot(self, worktree: HostPath, key: str | None = None) -> LinkSnapshot:
        """The canonical host form, derived from identity alone."""
        key = key or self._require_key(worktree)
        metadata = self._layout.host_metadata(key)
        link_file = worktree.path / ".git"
        return LinkSnapshot(
            key=key,
            link_file=link_file,
            pointer_file=metadata.path / POINTER_FILE,
            link_text=render_gitdir_file(metadata),
            pointer_text=render_pointer_file(HostPath(link_file)),
        )

    def capture(self, worktree: HostPath) -> LinkSnapshot:
        """Snapshot the current records if they are valid host form.

        Anything else falls back to the canonical host form, so a release
        never writes container paths back.
        """
        key = self._require_key(worktree)
        canonical = self.host_snapshot(worktree, key)
        if self.inspect(worktree, container_active=False) is not SessionState.VALID_HOST:
            return canonical
        link_text = _read_text(canonical.link_file)
        pointer_text = _read_text(canonical.pointer_file)
        if link_text is None or pointer_text is None:
            return canonical
        return LinkSnapshot(
            key=key,
            link_file=canonical.link_file,
            pointer_file=canonical.pointer_file,
            link_text=link_text,
            pointer_text=pointer_text,
        )

    def _write(self, path: Path, text: str) -> None:
        """Overwrite ``path`` with bounded exponential backoff on OSError."""
        policy = self._policy
        delay = policy.initial_delay
        started = self._clock()
        attempt = 0
        while True:
            attempt += 1
            try:
                path.write_text(text, encoding="utf-8")
                logger.debug("Wrote %s", path)
                return
            except OSError as exc:
                elapsed = self._clock() - started
                if attempt >= policy.max_attempts or elapsed + delay > policy.max_total_seconds:
                    raise TranslationError(
                        f"Could not rewrite {path} after {attempt} attempts. "
                        "A container may still hold it open: stop the container, "
                        "then rerun the session to repair the link records.",
                        context={"path": str(path), "error": str(exc)},
                    ) from exc
                logger.warning(
                    "Rewriting %s failed (%s); retrying in %.2fs", path, exc.strerror or exc, delay
                )
                self._sleep(delay)
                delay = min(delay * 2, policy.max_delay)

    def write_snapshot(self, snapshot: LinkSnapshot) -> None:
        """Write both records, attempting the second even if the first fails."""
        failure: TranslationError | None = None
        for path, text in (
            (snapshot.pointer_file, snapshot.pointer_text),
            (snapshot.link_file, snapshot.link_text),
        ):
            try:
                self._write(path, text)
            except TranslationError as exc:
                failure = failure or exc
        if failure is not None:
            raise failure

    def to_container_form(self, worktree: HostPath) -> LinkSnapshot:
        """Rewrite both records to container paths.

        Returns the host form to restore. Fails closed: if either write fails
        or is interrupted, the captured host form is put back before raising.
        """
        snapshot = self.capture(worktree)
        link = self._layout.container_metadata(snapshot.key)
        pointer = ContainerPath(self._layout.container_worktree(worktree.name).path / ".git")

        try:
            self._write(snapshot.link_file, render_gitdir_file(link))
            self._write(snapshot.pointer_file, render_pointer_file(pointer))
        except BaseException:
            # Interrupts land here too; never leave one record translated.
            self.write_snapshot(snapshot)
            raise
        logger.debug("Link records for %s now in container form", worktree.name)
        return snapshot

    def to_host_form(self, worktree: HostPath, snapshot: LinkSnapshot | None = None) -> None:
        self.write_snapshot(snapshot or self.host_snapshot(worktree))
        logger.debug("Link records for %s restored to host form", worktree.name)

    def repair(self, worktree: HostPath) -> None:
        """Re-derive host form from identity and overwrite both records."""
        logger.info("Repairing git link records for %s", worktree.name)
        self.to_host_form(worktree)

    @contextmanager
    def container_form(self, worktree: HostPath) -> Iterator[LinkSnapshot]:
        snapshot = self.to_container_form(worktree)
        try:
            yield snapshot
        finally:
            self.to_host_form(worktree, snapshot)


__all__ = [
    "LinkSnapshot",
    "PathTranslator",
]
