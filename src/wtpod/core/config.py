"""Application configuration management.

Handles loading and validating configuration from multiple sources:
    - TOML/JSON config files
    - Environment variables (WTPOD_* prefix, nested with ``__``)
    - Default values

Credentials are resolved here exactly once and travel inside ``AppConfig``;
the session controller never reads the environment on its own.

Key components:
    - AppConfig: Main configuration model
    - load_config(): Safe config loading with fallback
    - ConfigLoadResult: Metadata about config source
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any
from unittest.mock import patch

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

CONFIG_ENV_VAR = "WTPOD_CONFIG"

# Plain variables honoured by the in-container git auth setup.
CREDENTIAL_ENV_FALLBACKS = {
    "github_token": ("GH_TOKEN", "GITHUB_TOKEN"),
    "git_user_name": ("GIT_USER_NAME",),
    "git_user_email": ("GIT_USER_EMAIL",),
}


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or validated."""


# -----------------------------------------------------------------------------
# Sub-configuration Models
# -----------------------------------------------------------------------------


class ContainerConfig(BaseModel):
    """Container runtime and bootstrap tool configuration."""

    runtime: str = Field(default="docker", description="Container runtime binary (docker or podman).")
    devcontainer_bin: str = Field(
        default="devcontainer", description="devcontainer CLI used to bring containers up."
    )
    workspace_root: str = Field(
        default="/workspaces",
        description="Directory inside the container where worktrees are mounted.",
    )
    identity_label: str = Field(
        default="wtpod.worktree", description="Label carrying the worktree identity."
    )
    project_label: str = Field(
        default="wtpod.project", description="Label carrying the repository name."
    )
    folder_label: str = Field(
        default="devcontainer.local_folder",
        description="Generic workspace-folder label used as a correlation fallback.",
    )

    @field_validator("workspace_root")
    @classmethod
    def ensure_absolute(cls, v: str) -> str:
        path = PurePosixPath(v)
        if not path.is_absolute() or path == PurePosixPath("/"):
            raise ValueError(f"container.workspace_root must be an absolute directory, got {v!r}")
        return str(path)


class SessionConfig(BaseModel):
    """Worktree provisioning and session defaults."""

    base_ref: str = Field(default="HEAD", description="Reference new branches start from.")
    command: list[str] = Field(
        default_factory=lambda: ["bash", "-l"],
        description="Interactive command run inside the container.",
    )
    worktrees_root: Path | None = Field(
        default=None,
        description="Where worktrees are created (default: <repo>/../<repo>-worktrees).",
    )
    sync_paths: list[str] = Field(
        default_factory=lambda: [".env", ".devcontainer/devcontainer.local.json"],
        description="Untracked files copied from the primary checkout into each worktree.",
    )
    sync_upstream: bool = Field(
        default=True, description="Fast-forward existing worktrees from their upstream."
    )
    remote: str = Field(default="origin", description="Remote fetched before branching.")

    @field_validator("worktrees_root", mode="after")
    @classmethod
    def expand_root(cls, v: Path | None) -> Path | None:
        return v.expanduser() if v is not None else None

    @field_validator("sync_paths", mode="after")
    @classmethod
    def relative_only(cls, v: list[str]) -> list[str]:
        for entry in v:
            if Path(entry).is_absolute() or ".." in Path(entry).parts:
                raise ValueError(f"sync path must be relative to the repository: {entry!r}")
        return v


class TranslationConfig(BaseModel):
    """Bounded retry policy for rewriting git link records."""

    max_attempts: int = Field(default=6, ge=1, description="Write attempts per record.")
    initial_delay: float = Field(default=0.25, gt=0, description="First backoff delay (s).")
    max_delay: float = Field(default=2.0, gt=0, description="Backoff ceiling (s).")
    max_total_seconds: float = Field(
        default=10.0, gt=0, description="Upper bound on time spent retrying one record."
    )


class CredentialsConfig(BaseModel):
    """Identity forwarded into the container's one-time setup."""

    git_user_name: str | None = None
    git_user_email: str | None = None
    github_token: SecretStr | None = None


class UserConfig(BaseModel):
    """Operator preferences."""

    log_level: str = Field(default="INFO", description="Log level for wtpod output.")
    dry_run: bool = Field(
        default=False, description="If true, report mutations without performing them."
    )


@dataclass
class ConfigLoadResult:
    path: Path
    file_loaded: bool
    env_overrides: set[str]
    error: str | None = None


class AppConfig(BaseSettings):
    """Application-wide configuration with nested sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="WTPOD_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    container: ContainerConfig = Field(default_factory=ContainerConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    translation: TranslationConfig = Field(default_factory=TranslationConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    user: UserConfig = Field(default_factory=UserConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
    ]:
        # Environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


_NESTED_MODELS: dict[str, type[BaseModel]] = {
    "container": ContainerConfig,
    "session": SessionConfig,
    "translation": TranslationConfig,
    "credentials": CredentialsConfig,
    "user": UserConfig,
}


def _resolve_config_path(config_path: Path | None, env_vars: Mapping[str, str]) -> Path:
    candidate = (
        config_path
        or env_vars.get(CONFIG_ENV_VAR)
        or (Path.home() / ".config" / "wtpod" / "config.toml")
    )
    return Path(candidate).expanduser()


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    raw = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    parser = json.loads if suffix == ".json" else tomllib.loads

    try:
        data = parser(raw)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Syntax error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {path} must be a mapping.")

    return data


def _detect_env_overrides(env_vars: Mapping[str, str]) -> set[str]:
    """Detect which fields are overridden by environment variables.

    Nested fields look like WTPOD_SESSION__BASE_REF or WTPOD_CONTAINER__RUNTIME.
    """
    prefix = AppConfig.model_config.get("env_prefix", "")
    delimiter = AppConfig.model_config.get("env_nested_delimiter", "__")
    overrides: set[str] = set()

    for group_name, model_cls in _NESTED_MODELS.items():
        for field in model_cls.model_fields:
            env_key = f"{prefix}{group_name}{delimiter}{field}".upper()
            if env_key in env_vars:
                overrides.add(f"{group_name}.{field}")

    return overrides


def _resolve_credentials(config: AppConfig, env_vars: Mapping[str, str]) -> AppConfig:
    """Fill unset credentials from the conventional GH_TOKEN / GIT_USER_* variables."""
    updates: dict[str, Any] = {}
    current = config.credentials
    for field, names in CREDENTIAL_ENV_FALLBACKS.items():
        if getattr(current, field) is not None:
            continue
        value = next((env_vars[name] for name in names if env_vars.get(name)), None)
        if value is None:
            continue
        updates[field] = SecretStr(value) if field == "github_token" else value

    if not updates:
        return config
    return config.model_copy(update={"credentials": current.model_copy(update=updates)})


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[AppConfig, ConfigLoadResult]:
    """
    Load configuration with Safe Mode fallback.
    If the file is invalid, returns default config + error message.
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    resolved_path = _resolve_config_path(config_path, env_vars)
    env_overrides = _detect_env_overrides(env_vars)

    error: str | None = None
    file_loaded = False
    file_data: dict[str, Any] = {}

    try:
        file_data = _read_config_file(resolved_path)
        file_loaded = resolved_path.exists()
    except ConfigError as exc:
        error = str(exc)

    context_manager = (
        patch.dict(os.environ, env_vars, clear=False) if env is not None else nullcontext()
    )

    try:
        with context_manager:
            config = AppConfig(**file_data)
    except ValidationError as exc:
        error = str(exc)
        config = AppConfig()

    config = _resolve_credentials(config, env_vars)

    load_result = ConfigLoadResult(
        path=resolved_path,
        file_loaded=file_loaded,
        env_overrides=env_overrides,
        error=error,
    )

    return config, load_result
