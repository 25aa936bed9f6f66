"""The session-bootstrap tool: `devcontainer up`.

``up`` is idempotent. Called against a workspace whose container already
exists it starts (if needed) and returns the same container id. Its result is
a single JSON object on the last stdout line.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from wtpod.core.config import ContainerConfig
from wtpod.core.process import run_command
from wtpod.core.result import ContainerRuntimeError, Err, Ok, Result

logger = logging.getLogger(__name__)


class UpResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    outcome: str
    container_id: str | None = Field(default=None, alias="containerId")
    remote_user: str | None = Field(default=None, alias="remoteUser")
    remote_workspace_folder: str | None = Field(default=None, alias="remoteWorkspaceFolder")
    message: str | None = None
    description: str | None = None


def parse_up_output(stdout: str) -> UpResult | None:
    """Return the last JSON object line of `devcontainer up` output."""
    for line in reversed(stdout.splitlines()):
        text = line.strip()
        if not (text.startswith("{") and text.endswith("}")):
            continue
        try:
            return UpResult.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError):
            continue
    return None


def bind_mount(source: Path | str, target: str) -> str:
    return f"type=bind,source={source},target={target}"


class DevcontainerCli:
    def __init__(self, config: ContainerConfig) -> None:
        self._config = config

    async def up(
        self,
        workspace_folder: Path,
        *,
        id_labels: Mapping[str, str],
        mounts: Sequence[str] = (),
    ) -> Result[UpResult, ContainerRuntimeError]:
        args = [
            self._config.devcontainer_bin,
            "up",
            "--workspace-folder",
            str(workspace_folder),
            "--docker-path",
            self._config.runtime,
        ]
        for key, value in id_labels.items():
            args.extend(["--id-label", f"{key}={value}"])
        for mount in mounts:
            args.extend(["--mount", mount])

        match await run_command(args, cwd=workspace_folder):
            case Err(err):
                return Err(ContainerRuntimeError(err.message, context=err.context))
            case Ok(result):
                pass

        parsed = parse_up_output(result.stdout)
        if parsed is None or parsed.outcome != "success" or not parsed.container_id:
            detail = (parsed.message or parsed.description) if parsed else None
            return Err(
                ContainerRuntimeError(
                    detail or result.diagnostic,
                    context={"workspace": str(workspace_folder), "returncode": result.returncode},
                )
            )

        logger.debug("devcontainer up -> %s", parsed.container_id)
        return Ok(parsed)


__all__ = [
    "DevcontainerCli",
    "UpResult",
    "bind_mount",
    "parse_up_output",
]
