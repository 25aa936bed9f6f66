"""One-time git setup inside a freshly started container.

Each step is a small shell snippet run through ``<runtime> exec``. Values come
from ``CredentialsConfig`` and reach the container as environment variables
(``-e NAME``), never as command-line arguments. Every step is best effort: a
failure is reported as a warning and the session carries on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from wtpod.containers.runtime import ContainerRuntime
from wtpod.core.config import CredentialsConfig
from wtpod.core.result import Err, Ok

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SetupStep:
    name: str
    script: str


def credential_env(credentials: CredentialsConfig) -> dict[str, str]:
    """Environment forwarded into the container for setup and the session."""
    env: dict[str, str] = {}
    if credentials.git_user_name:
        env["GIT_USER_NAME"] = credentials.git_user_name
    if credentials.git_user_email:
        env["GIT_USER_EMAIL"] = credentials.git_user_email
    if credentials.github_token is not None:
        token = credentials.github_token.get_secret_value()
        if token:
            env["GH_TOKEN"] = token
            env["GITHUB_TOKEN"] = token
    return env


def build_setup_steps(credentials: CredentialsConfig) -> list[SetupStep]:
    steps: list[SetupStep] = []
    if credentials.git_user_name:
        steps.append(SetupStep("git user.name", 'git config --global user.name "$GIT_USER_NAME"'))
    if credentials.git_user_email:
        steps.append(
            SetupStep("git user.email", 'git config --global user.email "$GIT_USER_EMAIL"')
        )
    if credentials.github_token is not None and credentials.github_token.get_secret_value():
        steps.append(
            SetupStep(
                "gh credential helper",
                "git config --global --unset-all credential.https://github.com.helper || true; "
                "gh auth setup-git",
            )
        )
    steps.append(SetupStep("safe.directory", "git config --global safe.directory '*'"))
    return steps


def build_setup_script(credentials: CredentialsConfig) -> str:
    """All steps as one script, as shown by a dry run."""
    return "\n".join(step.script for step in build_setup_steps(credentials))


async def run_setup_steps(
    runtime: ContainerRuntime,
    container_id: str,
    credentials: CredentialsConfig,
    *,
    workdir: str | None = None,
) -> list[str]:
    """Run every setup step; return one warning per failed step."""
    env = credential_env(credentials)
    warnings: list[str] = []
    for step in build_setup_steps(credentials):
        match await runtime.exec_script(container_id, step.script, env=env, workdir=workdir):
            case Ok(result) if result.ok:
                logger.debug("Container setup step '%s' done", step.name)
            case Ok(result):
                warnings.append(f"{step.name}: {result.diagnostic}")
            case Err(err):
                warnings.append(f"{step.name}: {err.message}")

    for warning in warnings:
        logger.warning("Container setup step failed (continuing): %s", warning)
    return warnings


__all__ = [
    "SetupStep",
    "build_setup_script",
    "build_setup_steps",
    "credential_env",
    "run_setup_steps",
]
