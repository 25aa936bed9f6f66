"""docker/podman CLI adapter.

All listing goes through one bulk ``ps -a`` call whose output template
projects exactly the fields and labels correlation needs. Raw text is parsed
into ``ContainerInfo`` records here and nowhere else.
"""

from __future__ import annotations

import enum
import logging
import os
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import PurePosixPath

from wtpod.core.config import ContainerConfig
from wtpod.core.process import CommandResult, run_command
from wtpod.core.result import ContainerRuntimeError, Err, Ok, Result

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "\t"
_NO_SUCH_CONTAINER = re.compile(r"no such container", re.IGNORECASE)
_NO_SUCH_VOLUME = re.compile(r"no such volume", re.IGNORECASE)
_VOLUME_IN_USE = re.compile(r"volume is in use|volume being used", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class ContainerInfo:
    id: str
    name: str
    state: str
    identity_label: str | None
    project_label: str | None
    folder_label: str | None

    @property
    def running(self) -> bool:
        return self.state == "running"

    @property
    def folder_basename(self) -> str | None:
        if not self.folder_label:
            return None
        return PurePosixPath(self.folder_label.replace("\\", "/")).name or None


class VolumeRemoval(str, enum.Enum):
    REMOVED = "removed"
    IN_USE = "in-use"
    ABSENT = "absent"


def listing_template(config: ContainerConfig) -> str:
    fields = [
        "{{.ID}}",
        "{{.Names}}",
        "{{.State}}",
        f'{{{{.Label "{config.identity_label}"}}}}',
        f'{{{{.Label "{config.project_label}"}}}}',
        f'{{{{.Label "{config.folder_label}"}}}}',
    ]
    return FIELD_SEPARATOR.join(fields)


def _blank_to_none(value: str) -> str | None:
    value = value.strip()
    # docker renders a missing label as "" and podman as "<no value>"
    if not value or value == "<no value>":
        return None
    return value


def parse_container_listing(output: str) -> list[ContainerInfo]:
    """Parse the tab-separated output produced by ``listing_template``."""
    containers: list[ContainerInfo] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split(FIELD_SEPARATOR)
        if len(parts) < 3:
            logger.debug("Skipping malformed container line: %r", line)
            continue
        parts += [""] * (6 - len(parts))
        container_id, name, state, identity, project, folder = parts[:6]
        containers.append(
            ContainerInfo(
                id=container_id.strip(),
                name=name.strip(),
                state=state.strip().lower(),
                identity_label=_blank_to_none(identity),
                project_label=_blank_to_none(project),
                folder_label=_blank_to_none(folder),
            )
        )
    return containers


class ContainerRuntime:
    """Queries and mutates containers by identifier. Never creates them."""

    def __init__(self, config: ContainerConfig) -> None:
        self._config = config

    @property
    def binary(self) -> str:
        return self._config.runtime

    async def _run(
        self, *args: str, env: Mapping[str, str] | None = None
    ) -> Result[CommandResult, ContainerRuntimeError]:
        match await run_command([self.binary, *args], env=env):
            case Ok(result):
                return Ok(result)
            case Err(err):
                return Err(ContainerRuntimeError(err.message, context=err.context))

    def _failure(self, result: CommandResult) -> ContainerRuntimeError:
        return ContainerRuntimeError(
            result.diagnostic,
            context={"args": list(result.args[1:]), "returncode": result.returncode},
        )

    async def list_containers(self) -> Result[list[ContainerInfo], ContainerRuntimeError]:
        """Every container on the host, running or not, in one call."""
        match await self._run("ps", "-a", "--no-trunc", "--format", listing_template(self._config)):
            case Err(err):
                return Err(err)
            case Ok(result):
                if not result.ok:
                    return Err(self._failure(result))
                return Ok(parse_container_listing(result.stdout))

    async def stop(self, container_id: str) -> Result[bool, ContainerRuntimeError]:
        """Ok(False) when the container is already gone."""
        match await self._run("stop", container_id):
            case Err(err):
                return Err(err)
            case Ok(result):
                if result.ok:
                    return Ok(True)
                if _NO_SUCH_CONTAINER.search(result.diagnostic):
                    return Ok(False)
                return Err(self._failure(result))

    async def remove(
        self, container_id: str, *, force: bool = False
    ) -> Result[bool, ContainerRuntimeError]:
        """Ok(False) when the container is already gone."""
        args = ["rm", container_id] if not force else ["rm", "--force", container_id]
        match await self._run(*args):
            case Err(err):
                return Err(err)
            case Ok(result):
                if result.ok:
                    return Ok(True)
                if _NO_SUCH_CONTAINER.search(result.diagnostic):
                    return Ok(False)
                return Err(self._failure(result))

    async def list_volumes(self) -> Result[list[str], ContainerRuntimeError]:
        match await self._run("volume", "ls", "--format", "{{.Name}}"):
            case Err(err):
                return Err(err)
            case Ok(result):
                if not result.ok:
                    return Err(self._failure(result))
                return Ok([line.strip() for line in result.stdout.splitlines() if line.strip()])

    async def remove_volume(self, name: str) -> Result[VolumeRemoval, ContainerRuntimeError]:
        match await self._run("volume", "rm", name):
            case Err(err):
                return Err(err)
            case Ok(result):
                if result.ok:
                    return Ok(VolumeRemoval.REMOVED)
                if _VOLUME_IN_USE.search(result.diagnostic):
                    return Ok(VolumeRemoval.IN_USE)
                if _NO_SUCH_VOLUME.search(result.diagnostic):
                    return Ok(VolumeRemoval.ABSENT)
                return Err(self._failure(result))

    async def exec_script(
        self,
        container_id: str,
        script: str,
        *,
        env: Mapping[str, str] | None = None,
        workdir: str | None = None,
    ) -> Result[CommandResult, ContainerRuntimeError]:
        """Run a shell script in the container in one exec call.

        Environment values are passed through the runtime CLI's own
        environment (``-e NAME``) so secrets never appear in argv.
        """
        args = ["exec", *self._env_flags(env)]
        if workdir:
            args.extend(["-w", workdir])
        args.extend([container_id, "sh", "-c", script])
        match await run_command([self.binary, *args], env=merged_env(env)):
            case Ok(result):
                return Ok(result)
            case Err(err):
                return Err(ContainerRuntimeError(err.message, context=err.context))

    def interactive_args(
        self,
        container_id: str,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        workdir: str | None = None,
        tty: bool = True,
    ) -> list[str]:
        args = [self.binary, "exec", "-it" if tty else "-i", *self._env_flags(env)]
        if workdir:
            args.extend(["-w", workdir])
        args.append(container_id)
        args.extend(command)
        return args

    @staticmethod
    def _env_flags(env: Mapping[str, str] | None) -> list[str]:
        flags: list[str] = []
        for key in sorted(env or {}):
            flags.extend(["-e", key])
        return flags


def merged_env(extra: Mapping[str, str] | None) -> dict[str, str] | None:
    if not extra:
        return None
    return {**os.environ, **extra}


__all__ = [
    "ContainerInfo",
    "ContainerRuntime",
    "VolumeRemoval",
    "listing_template",
    "merged_env",
    "parse_container_listing",
]
