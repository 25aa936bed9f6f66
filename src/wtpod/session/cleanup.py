"""Container and volume cleanup for one repository.

Scoped mode targets containers whose identity no longer has a worktree.
Total mode targets every container correlated to the repository. Plans are
pure data; nothing is touched until ``apply`` or ``sweep_volumes`` runs, and
the CLI only calls those after a preview and a confirmation (or ``--yes``).
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from wtpod.containers.correlator import ContainerCorrelator, identity_of
from wtpod.containers.runtime import ContainerInfo, ContainerRuntime, VolumeRemoval
from wtpod.core.result import ContainerRuntimeError, Err, Ok
from wtpod.git.locator import Repository
from wtpod.git.registry import WorktreeRegistry, live_identities

logger = logging.getLogger(__name__)


class CleanupMode(str, enum.Enum):
    SCOPED = "scoped"
    TOTAL = "total"


class CleanupReason(str, enum.Enum):
    ORPHANED = "orphaned"
    ALL = "all"


@dataclass(frozen=True, slots=True)
class CleanupItem:
    container: ContainerInfo
    reason: CleanupReason

    @property
    def identity(self) -> str | None:
        return identity_of(self.container)


@dataclass
class VolumeSweepResult:
    removed: list[str] = field(default_factory=list)
    in_use: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)


class CleanupEngine:
    def __init__(
        self,
        runtime: ContainerRuntime,
        repository: Repository,
        registry: WorktreeRegistry,
    ) -> None:
        self._runtime = runtime
        self._repository = repository
        self._registry = registry
        self._correlator = ContainerCorrelator(runtime, repository)

    async def plan(self, mode: CleanupMode = CleanupMode.SCOPED) -> list[CleanupItem]:
        """Containers to remove, with the reason each is included.

        One container listing and one worktree listing, however many of
        either exist. A failed worktree listing raises ``GitError`` rather
        than planning every container as orphaned.
        """
        containers = (await self._correlator.list_repo_containers()).unwrap()
        live = live_identities(await self._registry.list_worktrees(strict=True))
        orphaned = {c.id for c in ContainerCorrelator.orphans(containers, live)}

        items: list[CleanupItem] = []
        for container in containers:
            if container.id in orphaned:
                items.append(CleanupItem(container, CleanupReason.ORPHANED))
            elif mode is CleanupMode.TOTAL:
                items.append(CleanupItem(container, CleanupReason.ALL))
        return items

    async def apply(self, plan: Sequence[CleanupItem]) -> int:
        """Stop and remove each planned container; return how many were removed.

        A container that is already gone is reported, not treated as a failure.
        Other failures are collected and raised once every item was attempted.
        """
        removed = 0
        failures: list[str] = []
        for item in plan:
            container = item.container
            if container.running:
                match await self._runtime.stop(container.id):
                    case Err(err):
                        failures.append(f"{container.name}: {err.message}")
                        continue
                    case Ok(_):
                        pass

            match await self._runtime.remove(container.id):
                case Ok(True):
                    removed += 1
                    logger.info("Removed container %s (%s)", container.name, item.reason.value)
                case Ok(False):
                    logger.info("Container %s was already gone", container.name)
                case Err(err):
                    failures.append(f"{container.name}: {err.message}")

        if failures:
            raise ContainerRuntimeError(
                f"Failed to remove {len(failures)} container(s): " + "; ".join(failures),
                context={"removed": removed},
            )
        return removed

    async def plan_volumes(self) -> list[str]:
        """Volumes whose name contains the project name."""
        needle = self._repository.name.lower()
        volumes = (await self._runtime.list_volumes()).unwrap()
        return [name for name in volumes if needle in name.lower()]

    async def sweep_volumes(self, volumes: Sequence[str]) -> VolumeSweepResult:
        result = VolumeSweepResult()
        for name in volumes:
            match await self._runtime.remove_volume(name):
                case Ok(VolumeRemoval.REMOVED):
                    result.removed.append(name)
                case Ok(VolumeRemoval.IN_USE):
                    logger.info("Volume %s is in use; skipped", name)
                    result.in_use.append(name)
                case Ok(VolumeRemoval.ABSENT):
                    logger.debug("Volume %s already removed", name)
                case Err(err):
                    result.failed.append((name, err.message))
        return result


__all__ = [
    "CleanupEngine",
    "CleanupItem",
    "CleanupMode",
    "CleanupReason",
    "VolumeSweepResult",
]
