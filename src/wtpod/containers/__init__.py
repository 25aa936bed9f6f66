"""Container runtime, bootstrap tool and container-to-worktree correlation."""

from __future__ import annotations

from .correlator import ContainerCorrelator, ContainerStatus, identity_of, status_of
from .devcontainer import DevcontainerCli, UpResult, bind_mount, parse_up_output
from .runtime import (
    ContainerInfo,
    ContainerRuntime,
    VolumeRemoval,
    listing_template,
    parse_container_listing,
)

__all__ = [
    "ContainerCorrelator",
    "ContainerInfo",
    "ContainerRuntime",
    "ContainerStatus",
    "DevcontainerCli",
    "UpResult",
    "VolumeRemoval",
    "bind_mount",
    "identity_of",
    "listing_template",
    "parse_container_listing",
    "parse_up_output",
    "status_of",
]
