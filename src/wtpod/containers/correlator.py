"""Answering "which container belongs to which worktree?".

Correlation is keyed by identity. A container matches an identity when its
identity label equals it exactly or, for containers created without our
labels, when the basename of its workspace-folder label equals it.

Every query issues at most one container listing, however many identities are
asked about.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable
from pathlib import Path

from wtpod.containers.runtime import ContainerInfo, ContainerRuntime
from wtpod.core.result import ContainerRuntimeError, Err, Ok, Result
from wtpod.git.locator import Repository

logger = logging.getLogger(__name__)


class ContainerStatus(str, enum.Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    NO_CONTAINER = "no-container"


def identity_of(container: ContainerInfo) -> str | None:
    """The identity a container claims, label first."""
    if container.identity_label:
        return container.identity_label
    return container.folder_basename


def status_of(container: ContainerInfo | None) -> ContainerStatus:
    if container is None:
        return ContainerStatus.NO_CONTAINER
    return ContainerStatus.RUNNING if container.running else ContainerStatus.STOPPED


class ContainerCorrelator:
    def __init__(self, runtime: ContainerRuntime, repository: Repository) -> None:
        self._runtime = runtime
        self._repository = repository

    def belongs_to_repo(self, container: ContainerInfo) -> bool:
        if container.project_label is not None:
            return container.project_label == self._repository.name
        if not container.folder_label:
            return False
        folder = Path(container.folder_label)
        return folder == self._repository.root or folder.parent == self._repository.worktrees_root

    def matches(self, container: ContainerInfo, identity: str) -> bool:
        if container.identity_label is not None:
            return container.identity_label == identity
        return container.folder_basename == identity

    async def list_repo_containers(self) -> Result[list[ContainerInfo], ContainerRuntimeError]:
        match await self._runtime.list_containers():
            case Err(err):
                return Err(err)
            case Ok(containers):
                return Ok([c for c in containers if self.belongs_to_repo(c)])

    def select(self, containers: Iterable[ContainerInfo], identity: str) -> ContainerInfo | None:
        """Best container for ``identity``; a running one wins over a stopped one."""
        found = [c for c in containers if self.matches(c, identity)]
        if not found:
            return None
        running = [c for c in found if c.running]
        return (running or found)[0]

    async def status_for_all(
        self, identities: Iterable[str]
    ) -> Result[dict[str, tuple[ContainerStatus, ContainerInfo | None]], ContainerRuntimeError]:
        match await self.list_repo_containers():
            case Err(err):
                return Err(err)
            case Ok(containers):
                pass

        statuses: dict[str, tuple[ContainerStatus, ContainerInfo | None]] = {}
        for identity in identities:
            container = self.select(containers, identity)
            statuses[identity] = (status_of(container), container)
        return Ok(statuses)

    async def status_for(
        self, identity: str
    ) -> Result[tuple[ContainerStatus, ContainerInfo | None], ContainerRuntimeError]:
        match await self.status_for_all([identity]):
            case Err(err):
                return Err(err)
            case Ok(statuses):
                return Ok(statuses[identity])

    async def containers_for(self, identity: str) -> Result[list[ContainerInfo], ContainerRuntimeError]:
        match await self.list_repo_containers():
            case Err(err):
                return Err(err)
            case Ok(containers):
                return Ok([c for c in containers if self.matches(c, identity)])

    @staticmethod
    def orphans(
        containers: Iterable[ContainerInfo], live_identities: set[str]
    ) -> list[ContainerInfo]:
        """Containers whose identity has no live worktree."""
        orphaned: list[ContainerInfo] = []
        for container in containers:
            identity = identity_of(container)
            if identity is None:
                logger.debug("Container %s carries no identity; ignoring", container.name)
                continue
            if identity not in live_identities:
                orphaned.append(container)
        return orphaned


__all__ = [
    "ContainerCorrelator",
    "ContainerStatus",
    "identity_of",
    "status_of",
]
