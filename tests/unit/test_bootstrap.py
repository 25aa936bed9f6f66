from __future__ import annotations

import pytest
from pydantic import SecretStr

from tests.mocks.fakes import FakeRuntime
from wtpod.core.config import CredentialsConfig
from wtpod.core.process import CommandResult
from wtpod.core.result import ContainerRuntimeError, Err, Ok
from wtpod.session.bootstrap import (
    build_setup_script,
    build_setup_steps,
    credential_env,
    run_setup_steps,
)

FULL = CredentialsConfig(
    git_user_name="Dev",
    git_user_email="dev@example.com",
    github_token=SecretStr("ghp_secret"),
)


def test_no_credentials_only_marks_safe_directory() -> None:
    steps = build_setup_steps(CredentialsConfig())
    assert [step.name for step in steps] == ["safe.directory"]
    assert credential_env(CredentialsConfig()) == {}


def test_full_credentials() -> None:
    steps = build_setup_steps(FULL)
    assert [step.name for step in steps] == [
        "git user.name",
        "git user.email",
        "gh credential helper",
        "safe.directory",
    ]
    env = credential_env(FULL)
    assert env["GH_TOKEN"] == env["GITHUB_TOKEN"] == "ghp_secret"
    assert env["GIT_USER_NAME"] == "Dev"


def test_script_references_variables_not_values() -> None:
    script = build_setup_script(FULL)
    assert "ghp_secret" not in script
    assert "Dev" not in script
    assert '"$GIT_USER_NAME"' in script


def test_empty_token_is_ignored() -> None:
    creds = CredentialsConfig(github_token=SecretStr(""))
    assert "GH_TOKEN" not in credential_env(creds)
    assert all(step.name != "gh credential helper" for step in build_setup_steps(creds))


class _FlakyRuntime(FakeRuntime):
    async def exec_script(self, container_id, script, *, env=None, workdir=None):  # type: ignore[override]
        self.calls.append(("exec_script", container_id, script, dict(env or {})))
        if "user.email" in script:
            return Ok(CommandResult(args=("docker",), returncode=1, stdout="", stderr="boom"))
        if "gh auth" in script:
            return Err(ContainerRuntimeError("docker executable not found on PATH"))
        return Ok(CommandResult(args=("docker",), returncode=0, stdout="", stderr=""))


@pytest.mark.asyncio
async def test_failed_steps_are_warnings() -> None:
    runtime = _FlakyRuntime()

    warnings = await run_setup_steps(runtime, "abc", FULL, workdir="/workspaces/x")

    assert warnings == [
        "git user.email: boom",
        "gh credential helper: docker executable not found on PATH",
    ]
    # every step still ran, each as its own exec
    assert runtime.count("exec_script") == 4
    assert all(call[3]["GH_TOKEN"] == "ghp_secret" for call in runtime.calls)
