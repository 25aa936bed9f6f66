"""System diagnostics and health checks.

Provides diagnostic checks for everything a session depends on:
    - External tool availability (git, container runtime, devcontainer, gh)
    - Container runtime daemon reachability
    - Configuration validation
    - Credentials forwarded into containers
    - Repository discovery from the current directory
"""

from __future__ import annotations

import asyncio
import json
import shutil
import tomllib
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field

from wtpod.core.config import AppConfig
from wtpod.core.process import run_command
from wtpod.core.result import Err, Ok, ResolutionError
from wtpod.git.locator import locate_root


class ExternalTool(BaseModel):
    name: str
    binary: str
    version_args: list[str] = Field(default_factory=lambda: ["--version"])
    required: bool = True
    install_hint: str | None = None


@dataclass
class ToolCheck:
    tool: ExternalTool
    status: str
    version: str | None
    message: str | None = None


class DiagnosticCheck(ABC):
    name: str

    @abstractmethod
    async def run(self) -> tuple[str, str]:
        """Run the diagnostic and return (status, message)."""


class ConfigCheck(DiagnosticCheck):
    def __init__(self, config: AppConfig, config_path: Path | None) -> None:
        self.config = config
        self.config_path = config_path
        self.name = "Config"

    async def run(self) -> tuple[str, str]:
        issues: list[str] = []
        if self.config_path and self.config_path.exists():
            raw = self.config_path.read_text(encoding="utf-8")
            try:
                if self.config_path.suffix.lower() == ".json":
                    json.loads(raw)
                else:
                    tomllib.loads(raw)
            except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
                issues.append(f"Invalid config file: {exc}")

        root = self.config.session.worktrees_root
        if root is not None and not root.parent.exists():
            issues.append(f"worktrees_root parent missing: {root.parent}")

        if not self.config.session.command:
            issues.append("session.command is empty")

        if issues:
            return "error", "; ".join(issues)
        if self.config_path and not self.config_path.exists():
            return "ok", f"No config file at {self.config_path}; using defaults."
        return "ok", "Configuration valid."


class CredentialsCheck(DiagnosticCheck):
    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.name = "Credentials"

    async def run(self) -> tuple[str, str]:
        creds = self.config.credentials
        missing = [
            label
            for label, value in (
                ("git user.name", creds.git_user_name),
                ("git user.email", creds.git_user_email),
            )
            if not value
        ]
        if creds.github_token is None:
            return "warn", "No GitHub token (GH_TOKEN); git push from containers will prompt."
        if missing:
            return "warn", "Not set: " + ", ".join(missing)
        return "ok", "Git identity and GitHub token configured."


class RuntimeDaemonCheck(DiagnosticCheck):
    def __init__(self, config: AppConfig) -> None:
        self.runtime = config.container.runtime
        self.name = "Container runtime"

    async def run(self) -> tuple[str, str]:
        match await run_command([self.runtime, "info", "--format", "{{.ServerVersion}}"]):
            case Err(err):
                return "error", err.message
            case Ok(result) if result.ok:
                return "ok", f"{self.runtime} server {result.stdout.strip() or 'reachable'}"
            case Ok(result):
                return "error", result.diagnostic


class RepositoryCheck(DiagnosticCheck):
    def __init__(self, config: AppConfig, start_dir: Path) -> None:
        self.config = config
        self.start_dir = start_dir
        self.name = "Repository"

    async def run(self) -> tuple[str, str]:
        try:
            repository = await locate_root(
                self.start_dir, worktrees_root=self.config.session.worktrees_root
            )
        except ResolutionError as exc:
            return "warn", f"{exc.message} ({self.start_dir})"
        return "ok", f"{repository.name} at {repository.root}; worktrees in {repository.worktrees_root}"


def default_tools(config: AppConfig) -> list[ExternalTool]:
    return [
        ExternalTool(
            name="Git", binary="git", install_hint="Install via your package manager (brew, apt, etc.)"
        ),
        ExternalTool(
            name="Container runtime",
            binary=config.container.runtime,
            install_hint="Install Docker Desktop, Docker Engine or Podman.",
        ),
        ExternalTool(
            name="Dev Container CLI",
            binary=config.container.devcontainer_bin,
            install_hint="npm install -g @devcontainers/cli",
        ),
        ExternalTool(
            name="GitHub CLI",
            binary="gh",
            install_hint="Install via your package manager (brew, apt, etc.)",
            required=False,
        ),
    ]


def _select_tools(tools: list[ExternalTool], names: Iterable[str] | None) -> list[ExternalTool]:
    if not names:
        return tools

    requested = {name.lower() for name in names}
    selected = [
        tool for tool in tools if tool.name.lower() in requested or tool.binary.lower() in requested
    ]
    return selected or tools


async def _check_tool(tool: ExternalTool) -> ToolCheck:
    resolved = shutil.which(tool.binary)
    if not resolved:
        status = "missing" if tool.required else "warn"
        return ToolCheck(tool=tool, status=status, version=None, message=tool.install_hint)

    match await run_command([resolved, *tool.version_args]):
        case Err(err):
            return ToolCheck(tool=tool, status="missing", version=None, message=err.message)
        case Ok(result):
            pass

    output = result.stdout.strip() or result.stderr.strip()
    version = output.splitlines()[0] if output else None

    if not result.ok:
        return ToolCheck(
            tool=tool, status="error", version=version, message=output or "version command failed"
        )

    return ToolCheck(tool=tool, status="ok", version=version, message=None)


async def _run_doctor(tools: list[ExternalTool]) -> list[ToolCheck]:
    tasks = [asyncio.create_task(_check_tool(tool)) for tool in tools]
    return await asyncio.gather(*tasks)


async def _run_deep_checks(
    config: AppConfig, config_path: Path | None, start_dir: Path
) -> list[tuple[str, str, str]]:
    diag_checks: list[DiagnosticCheck] = [
        ConfigCheck(config, config_path),
        CredentialsCheck(config),
        RuntimeDaemonCheck(config),
        RepositoryCheck(config, start_dir),
    ]
    results = await asyncio.gather(*(check.run() for check in diag_checks))
    return [
        (check.name, status, message)
        for check, (status, message) in zip(diag_checks, results, strict=True)
    ]


async def run_diagnostics_suite(
    config: AppConfig,
    config_path: Path | None,
    tool_names: list[str] | None,
    start_dir: Path | None = None,
) -> tuple[list[tuple[str, str, str]], list[ToolCheck]]:
    """Run deep checks and tool checks in parallel."""
    tools = _select_tools(default_tools(config), tool_names)
    deep_checks_task = asyncio.create_task(
        _run_deep_checks(config, config_path, start_dir or Path.cwd())
    )
    tools_task = asyncio.create_task(_run_doctor(tools))
    return await asyncio.gather(deep_checks_task, tools_task)
