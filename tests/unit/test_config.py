from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from wtpod.core.config import AppConfig, ContainerConfig, SessionConfig, load_config


def test_defaults(isolate_config: Path) -> None:
    config, meta = load_config()
    assert meta.path == isolate_config
    assert not meta.file_loaded
    assert meta.error is None
    assert config.container.runtime == "docker"
    assert config.container.workspace_root == "/workspaces"
    assert config.session.command == ["bash", "-l"]
    assert config.translation.max_attempts == 6


def test_toml_file(isolate_config: Path) -> None:
    isolate_config.write_text(
        '[container]\nruntime = "podman"\n\n[session]\nbase_ref = "origin/main"\n'
        'worktrees_root = "~/trees"\n'
    )
    config, meta = load_config()
    assert meta.file_loaded
    assert config.container.runtime == "podman"
    assert config.session.base_ref == "origin/main"
    assert config.session.worktrees_root == Path("~/trees").expanduser()


def test_json_file(tmp_path: Path) -> None:
    path = tmp_path / "wtpod.json"
    path.write_text('{"user": {"dry_run": true}}')
    config, meta = load_config(config_path=path)
    assert meta.file_loaded
    assert config.user.dry_run


def test_env_overrides_file(isolate_config: Path) -> None:
    isolate_config.write_text('[container]\nruntime = "podman"\n')
    config, meta = load_config(env={"WTPOD_CONTAINER__RUNTIME": "docker"})
    assert config.container.runtime == "docker"
    assert "container.runtime" in meta.env_overrides


def test_invalid_values_fall_back_to_defaults(isolate_config: Path) -> None:
    isolate_config.write_text('[container]\nworkspace_root = "relative/path"\n')
    config, meta = load_config()
    assert meta.error is not None
    assert config.container.workspace_root == "/workspaces"


def test_credentials_from_conventional_env() -> None:
    config, _ = load_config(
        env={"GITHUB_TOKEN": "ghp_x", "GIT_USER_NAME": "Dev", "GIT_USER_EMAIL": "dev@example.com"}
    )
    creds = config.credentials
    assert creds.github_token is not None
    assert creds.github_token.get_secret_value() == "ghp_x"
    assert creds.git_user_name == "Dev"
    assert "ghp_x" not in repr(config)


def test_explicit_token_wins(isolate_config: Path) -> None:
    isolate_config.write_text('[credentials]\ngithub_token = "from-file"\n')
    config, _ = load_config(env={"GH_TOKEN": "from-env"})
    assert config.credentials.github_token is not None
    assert config.credentials.github_token.get_secret_value() == "from-file"


@pytest.mark.parametrize("root", ["", "/", "workspaces"])
def test_workspace_root_must_be_absolute_dir(root: str) -> None:
    with pytest.raises(ValidationError):
        ContainerConfig(workspace_root=root)


@pytest.mark.parametrize("entry", ["/etc/passwd", "../secret", "a/../../b"])
def test_sync_paths_stay_inside_repo(entry: str) -> None:
    with pytest.raises(ValidationError):
        SessionConfig(sync_paths=[entry])


def test_nested_models() -> None:
    config = AppConfig(session=SessionConfig(remote="upstream"))
    assert config.session.remote == "upstream"
    assert config.container.identity_label == "wtpod.worktree"
