"""The session state machine.

    IDLE -> RESOLVING -> FAST_RECONNECT | PROVISIONING
         -> TRANSLATING_TO_CONTAINER -> ACTIVE -> TRANSLATING_TO_HOST -> IDLE

``ABORTED`` is reachable from anywhere. Once container form has been acquired,
every route out of ``ACTIVE`` (normal exit, tool failure, signal, task
cancellation) passes through ``TRANSLATING_TO_HOST``: the acquisition is a
context manager, not a cleanup step someone has to remember.

Configuration, including credentials, arrives through ``AppConfig`` at
construction. Nothing here reads the environment.
"""

from __future__ import annotations

import enum
import logging
import shutil
import time
from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from wtpod.containers.correlator import ContainerCorrelator, ContainerStatus
from wtpod.containers.devcontainer import DevcontainerCli, bind_mount
from wtpod.containers.runtime import ContainerInfo, ContainerRuntime, merged_env
from wtpod.core.config import AppConfig
from wtpod.core.process import run_interactive
from wtpod.core.result import (
    ContainerRuntimeError,
    Err,
    NotFoundError,
    Ok,
    Result,
    WtpodError,
)
from wtpod.git.client import GitClient
from wtpod.git.locator import Repository, locate_root
from wtpod.git.registry import WorktreeRecord, WorktreeRegistry, sanitize_identity
from wtpod.session.bootstrap import build_setup_script, credential_env, run_setup_steps
from wtpod.session.paths import HostPath, SessionState, WorktreeLayout
from wtpod.session.translator import PathTranslator

logger = logging.getLogger(__name__)

Launcher = Callable[..., Awaitable[Result[int, WtpodError]]]


class SessionPhase(str, enum.Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    FAST_RECONNECT = "fast-reconnect"
    PROVISIONING = "provisioning"
    TRANSLATING_TO_CONTAINER = "translating-to-container"
    ACTIVE = "active"
    TRANSLATING_TO_HOST = "translating-to-host"
    ABORTED = "aborted"


class Route(str, enum.Enum):
    FAST_RECONNECT = "fast-reconnect"
    PROVISION = "provision"


@dataclass
class SessionRequest:
    name: str
    start_dir: Path
    base_ref: str | None = None
    command: list[str] | None = None


@dataclass
class SessionOutcome:
    identity: str
    route: Route | None = None
    phases: list[SessionPhase] = field(default_factory=list)
    exit_code: int = 0
    container_id: str | None = None
    created: bool = False
    synced: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)


@dataclass
class ResolvedSession:
    """Everything the RESOLVING phase learns, from one listing of each kind."""

    identity: str
    repository: Repository
    git: GitClient
    layout: WorktreeLayout
    record: WorktreeRecord | None
    status: ContainerStatus
    container: ContainerInfo | None


@dataclass(frozen=True, slots=True)
class WorktreeStatus:
    record: WorktreeRecord
    container_status: ContainerStatus
    container: ContainerInfo | None
    state: SessionState


@dataclass
class RemovalOutcome:
    identity: str
    containers: list[str] = field(default_factory=list)
    worktree_removed: bool = False
    branch_deleted: str | None = None
    notes: list[str] = field(default_factory=list)


def branch_note(record: WorktreeRecord) -> str | None:
    """Informational note when the checked-out branch no longer matches identity."""
    if not record.branch_differs():
        return None
    return (
        f"Worktree '{record.identity}' currently has {record.branch_display} checked out; "
        "identity is unchanged."
    )


class SessionController:
    def __init__(
        self,
        config: AppConfig,
        *,
        git_factory: Callable[[Path], GitClient] = GitClient,
        runtime: ContainerRuntime | None = None,
        devcontainer: DevcontainerCli | None = None,
        launcher: Launcher = run_interactive,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._git_factory = git_factory
        self._runtime = runtime or ContainerRuntime(config.container)
        self._devcontainer = devcontainer or DevcontainerCli(config.container)
        self._launcher = launcher
        self._sleep = sleep
        self.last_outcome: SessionOutcome | None = None

    @property
    def dry_run(self) -> bool:
        return self._config.user.dry_run

    def translator(self, layout: WorktreeLayout) -> PathTranslator:
        return PathTranslator(layout, self._config.translation, sleep=self._sleep)

    def correlator(self, repository: Repository) -> ContainerCorrelator:
        return ContainerCorrelator(self._runtime, repository)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _enter(outcome: SessionOutcome, phase: SessionPhase) -> None:
        outcome.phases.append(phase)
        logger.debug("[%s] -> %s", outcome.identity, phase.value)

    @staticmethod
    def _note(notes: list[str], message: str) -> None:
        notes.append(message)
        logger.info(message)

    async def open_repository(self, start_dir: Path) -> tuple[Repository, GitClient]:
        repository = await locate_root(
            start_dir,
            self._git_factory(start_dir),
            worktrees_root=self._config.session.worktrees_root,
        )
        return repository, self._git_factory(repository.root)

    async def resolve(self, start_dir: Path, identity: str) -> ResolvedSession:
        repository, git = await self.open_repository(start_dir)
        layout = repository.layout(self._config.container.workspace_root)
        registry = WorktreeRegistry(repository, git, layout)
        record = await registry.find_by_identity(identity)

        match await self.correlator(repository).status_for(identity):
            case Ok((status, container)):
                pass
            case Err(err):
                raise err

        logger.debug(
            "Resolved %s: worktree=%s container=%s",
            identity,
            record.path if record else None,
            status.value,
        )
        return ResolvedSession(
            identity=identity,
            repository=repository,
            git=git,
            layout=layout,
            record=record,
            status=status,
            container=container,
        )

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    async def run(self, request: SessionRequest) -> SessionOutcome:
        """Bring a session up for ``request.name`` and block until it ends.

        Raises:
            UsageError: the name does not yield an identity.
            ResolutionError: not inside a repository.
            TranslationError: link records could not be rewritten.
            ExternalToolError: git or the container tooling failed.
        """
        identity = sanitize_identity(request.name)
        outcome = SessionOutcome(identity=identity)
        self.last_outcome = outcome
        self._enter(outcome, SessionPhase.IDLE)
        try:
            self._enter(outcome, SessionPhase.RESOLVING)
            resolved = await self.resolve(request.start_dir, identity)

            if resolved.record is not None:
                note = branch_note(resolved.record)
                if note:
                    self._note(outcome.notes, note)

            if resolved.status is ContainerStatus.RUNNING and resolved.record is not None:
                await self._fast_reconnect(resolved, request, outcome)
            else:
                if resolved.status is ContainerStatus.RUNNING:
                    self._note(
                        outcome.notes,
                        f"Container for '{identity}' is running but its worktree is gone; "
                        "provisioning a new one.",
                    )
                await self._provision(resolved, request, outcome)
        except BaseException:
            if SessionPhase.ABORTED not in outcome.phases:
                self._enter(outcome, SessionPhase.ABORTED)
            raise

        self._enter(outcome, SessionPhase.IDLE)
        return outcome

    @contextmanager
    def _container_form(
        self, outcome: SessionOutcome, translator: PathTranslator, worktree: HostPath
    ) -> Iterator[None]:
        self._enter(outcome, SessionPhase.TRANSLATING_TO_CONTAINER)
        if self.dry_run:
            self._note(outcome.notes, f"Would rewrite git links of {worktree} to container form")
            yield
            return
        with translator.container_form(worktree):
            try:
                yield
            except BaseException:
                self._enter(outcome, SessionPhase.ABORTED)
                raise
            finally:
                self._enter(outcome, SessionPhase.TRANSLATING_TO_HOST)

    async def _fast_reconnect(
        self, resolved: ResolvedSession, request: SessionRequest, outcome: SessionOutcome
    ) -> None:
        assert resolved.record is not None and resolved.container is not None
        self._enter(outcome, SessionPhase.FAST_RECONNECT)
        outcome.route = Route.FAST_RECONNECT
        outcome.container_id = resolved.container.id

        worktree = resolved.record.host_path
        translator = self.translator(resolved.layout)
        state = translator.inspect(worktree, container_active=True)

        if state is SessionState.VALID_CONTAINER:
            # Left over from an interrupted session; this session now owns the
            # release back to host form.
            self._note(
                outcome.notes,
                f"Link records for '{outcome.identity}' were already in container form; "
                "they will be restored to host form on exit.",
            )
            with self._adopted_container_form(outcome, translator, worktree):
                self._enter(outcome, SessionPhase.ACTIVE)
                outcome.exit_code = await self._attach_or_report(
                    resolved, request, resolved.container.id, outcome
                )
            return

        if state is SessionState.CORRUPTED_METADATA:
            self._repair(translator, worktree, outcome.notes)

        with self._container_form(outcome, translator, worktree):
            self._enter(outcome, SessionPhase.ACTIVE)
            outcome.exit_code = await self._attach_or_report(
                resolved, request, resolved.container.id, outcome
            )

    @contextmanager
    def _adopted_container_form(
        self, outcome: SessionOutcome, translator: PathTranslator, worktree: HostPath
    ) -> Iterator[None]:
        if self.dry_run:
            self._note(outcome.notes, f"Would restore git links of {worktree} to host form")
            yield
            return
        try:
            yield
        except BaseException:
            self._enter(outcome, SessionPhase.ABORTED)
            raise
        finally:
            self._enter(outcome, SessionPhase.TRANSLATING_TO_HOST)
            translator.to_host_form(worktree)

    async def _attach_or_report(
        self,
        resolved: ResolvedSession,
        request: SessionRequest,
        container_id: str,
        outcome: SessionOutcome,
    ) -> int:
        if self.dry_run:
            self._note(outcome.notes, f"Would attach to {container_id}")
            return 0
        return await self._attach(resolved, request, container_id)

    async def _provision(
        self, resolved: ResolvedSession, request: SessionRequest, outcome: SessionOutcome
    ) -> None:
        self._enter(outcome, SessionPhase.PROVISIONING)
        outcome.route = Route.PROVISION
        translator = self.translator(resolved.layout)
        worktree = await self._ensure_worktree(resolved, request, outcome)

        if not self.dry_run:
            state = translator.inspect(worktree, container_active=False)
            if state is SessionState.CORRUPTED_METADATA:
                self._repair(translator, worktree, outcome.notes)
            elif state is SessionState.MISSING:
                raise NotFoundError(
                    f"Worktree '{outcome.identity}' has no directory and no git metadata",
                    context={"path": str(worktree)},
                )

            if resolved.record is not None and self._config.session.sync_upstream:
                await self._sync_upstream(resolved.git, worktree, outcome)

            outcome.synced = await self._sync_config(resolved, worktree)

        with self._container_form(outcome, translator, worktree):
            self._enter(outcome, SessionPhase.ACTIVE)
            if self.dry_run:
                self._note(outcome.notes, f"Would start a container for {worktree}")
                self._note(
                    outcome.notes,
                    "Would run container setup:\n"
                    + build_setup_script(self._config.credentials),
                )
                return
            container_id = await self._bring_up(resolved, worktree)
            outcome.container_id = container_id
            await run_setup_steps(
                self._runtime,
                container_id,
                self._config.credentials,
                workdir=str(resolved.layout.container_worktree(outcome.identity)),
            )
            outcome.exit_code = await self._attach(resolved, request, container_id)

    def _repair(self, translator: PathTranslator, worktree: HostPath, notes: list[str]) -> None:
        if self.dry_run:
            self._note(notes, f"Would repair git links of {worktree}")
            return
        translator.repair(worktree)
        self._note(notes, f"Repaired stale git link records for '{worktree.name}'.")

    async def _ensure_worktree(
        self, resolved: ResolvedSession, request: SessionRequest, outcome: SessionOutcome
    ) -> HostPath:
        git = resolved.git
        record = resolved.record
        if record is not None and record.host_path.path.is_dir():
            return record.host_path

        target = resolved.layout.host_worktree(outcome.identity)
        outcome.created = True
        if self.dry_run:
            self._note(outcome.notes, f"Would create worktree {target}")
            return target

        target.path.parent.mkdir(parents=True, exist_ok=True)
        if record is not None:
            # Registered with git but the directory is gone: re-add in place.
            ref = record.branch or record.head
            self._note(outcome.notes, f"Worktree directory {target} is missing; restoring it.")
            result = await git.worktree_add(target.path, ref, new_branch=False, force=True)
            result.unwrap()
            return target

        branch = request.name.strip()
        remote = self._config.session.remote
        match await git.fetch(remote):
            case Err(err):
                logger.debug("git fetch %s skipped: %s", remote, err.message)
            case Ok(_):
                pass

        if await git.branch_exists(branch):
            result = await git.worktree_add(target.path, branch, new_branch=False)
        elif await git.remote_branch_exists(remote, branch):
            result = await git.worktree_add_tracking(target.path, branch, f"{remote}/{branch}")
        else:
            base_ref = request.base_ref or self._config.session.base_ref
            result = await git.worktree_add(target.path, branch, start_point=base_ref)
        result.unwrap()
        logger.info("Created worktree %s for branch %s", target, branch)
        return target

    async def _sync_upstream(self, git: GitClient, worktree: HostPath, outcome: SessionOutcome) -> None:
        upstream = await git.upstream(worktree.path)
        if upstream is None:
            logger.debug("No upstream for %s; skipping pull", worktree.name)
            return
        match await git.pull_ff_only(worktree.path):
            case Ok(_):
                logger.debug("Fast-forwarded %s from %s", worktree.name, upstream)
            case Err(err):
                self._note(outcome.notes, f"Could not fast-forward from {upstream}: {err.message}")

    async def _sync_config(self, resolved: ResolvedSession, worktree: HostPath) -> list[str]:
        """Copy untracked project configuration from the primary checkout."""
        copied: list[str] = []
        root = resolved.repository.root
        for relative in self._config.session.sync_paths:
            source = root / relative
            if not source.is_file():
                continue
            if await resolved.git.is_tracked(relative):
                continue
            destination = worktree.path / relative
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, destination)
            except OSError as exc:
                logger.warning("Could not copy %s into %s: %s", relative, worktree.name, exc)
                continue
            copied.append(relative)
        if copied:
            logger.debug("Synced %s into %s", ", ".join(copied), worktree.name)
        return copied

    async def _bring_up(self, resolved: ResolvedSession, worktree: HostPath) -> str:
        labels = {
            self._config.container.project_label: resolved.repository.name,
            self._config.container.identity_label: resolved.identity,
        }
        mounts = [bind_mount(resolved.repository.git_dir, str(resolved.layout.container_git_dir))]
        result = await self._devcontainer.up(worktree.path, id_labels=labels, mounts=mounts)
        up = result.unwrap()
        assert up.container_id is not None
        return up.container_id

    def _session_command(self, request: SessionRequest) -> Sequence[str]:
        return request.command or self._config.session.command

    async def _attach(self, resolved: ResolvedSession, request: SessionRequest, container_id: str) -> int:
        env: Mapping[str, str] = credential_env(self._config.credentials)
        args = self._runtime.interactive_args(
            container_id,
            self._session_command(request),
            env=env,
            workdir=str(resolved.layout.container_worktree(resolved.identity)),
        )
        match await self._launcher(args, env=merged_env(env)):
            case Ok(code):
                return code
            case Err(err):
                raise ContainerRuntimeError(err.message, context=err.context)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    async def status(self, start_dir: Path) -> list[WorktreeStatus]:
        """Every worktree with its container and link state. Read-only.

        One worktree listing and one container listing in total.
        """
        repository, git = await self.open_repository(start_dir)
        layout = repository.layout(self._config.container.workspace_root)
        records = await WorktreeRegistry(repository, git, layout).list_worktrees()
        statuses = (
            await self.correlator(repository).status_for_all(r.identity for r in records)
        ).unwrap()
        translator = self.translator(layout)

        report: list[WorktreeStatus] = []
        for record in records:
            container_status, container = statuses[record.identity]
            if record.is_primary:
                state = SessionState.VALID_HOST
            else:
                state = translator.inspect(
                    record.host_path,
                    container_active=container_status is ContainerStatus.RUNNING,
                )
            report.append(WorktreeStatus(record, container_status, container, state))
        return report

    # -------------------------------------------------------------------------
    # Stop / remove
    # -------------------------------------------------------------------------

    async def stop(self, name: str, start_dir: Path) -> list[str]:
        """Stop every running container correlated to ``name``. Returns their ids."""
        identity = sanitize_identity(name)
        repository, _ = await self.open_repository(start_dir)
        containers = (await self.correlator(repository).containers_for(identity)).unwrap()
        stopped: list[str] = []
        for container in containers:
            if not container.running:
                continue
            if self.dry_run:
                logger.info("Would stop %s (%s)", container.name, container.id[:12])
                stopped.append(container.id)
                continue
            if (await self._runtime.stop(container.id)).unwrap():
                stopped.append(container.id)
            else:
                logger.info("Container %s is already gone", container.name)
        return stopped

    async def remove(
        self,
        name: str,
        start_dir: Path,
        *,
        delete_branch: bool = False,
        force: bool = False,
    ) -> RemovalOutcome:
        """Remove the containers, then the worktree, for ``name``.

        Raises:
            NotFoundError: no worktree, metadata or container carries the identity.
        """
        identity = sanitize_identity(name)
        repository, git = await self.open_repository(start_dir)
        layout = repository.layout(self._config.container.workspace_root)
        record = await WorktreeRegistry(repository, git, layout).find_by_identity(identity)
        containers = (await self.correlator(repository).containers_for(identity)).unwrap()
        translator = self.translator(layout)

        worktree = record.host_path if record else layout.host_worktree(identity)
        key = translator.metadata_key(worktree)
        if record is None and key is None and not containers:
            raise NotFoundError(f"No worktree or container found for '{identity}'")

        outcome = RemovalOutcome(identity=identity)
        for container in containers:
            if self.dry_run:
                self._note(outcome.notes, f"Would remove container {container.name}")
                continue
            if container.running:
                (await self._runtime.stop(container.id)).unwrap()
            if (await self._runtime.remove(container.id, force=force)).unwrap():
                outcome.containers.append(container.id)
            else:
                self._note(outcome.notes, f"Container {container.name} was already gone")

        if record is None and key is None:
            return outcome

        if self.dry_run:
            self._note(outcome.notes, f"Would remove worktree {worktree}")
            return outcome

        if worktree.path.is_dir():
            if translator.inspect(worktree, container_active=False) is not SessionState.VALID_HOST:
                self._repair(translator, worktree, outcome.notes)
            (await git.worktree_remove(worktree.path, force=force)).unwrap()
        elif key is not None:
            # Directory already deleted: drop just this worktree's metadata.
            shutil.rmtree(layout.host_metadata(key).path)
        outcome.worktree_removed = True

        branch = record.branch if record else None
        if delete_branch and branch:
            if sanitize_identity(branch) != identity:
                self._note(
                    outcome.notes,
                    f"Branch {branch} does not match identity '{identity}'; not deleted",
                )
            else:
                (await git.delete_branch(branch, force=force)).unwrap()
                outcome.branch_deleted = branch
        return outcome


__all__ = [
    "Launcher",
    "RemovalOutcome",
    "ResolvedSession",
    "Route",
    "SessionController",
    "SessionOutcome",
    "SessionPhase",
    "SessionRequest",
    "WorktreeStatus",
    "branch_note",
]
