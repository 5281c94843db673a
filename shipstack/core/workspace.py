"""Workspace detection and convention paths.

The workspace is the directory holding workload manifests, addon fragments
and patch documents. It is identified by the presence of a
`.shipstack-workspace` marker file.

Layout:

    .shipstack-workspace
    config.toml                       (optional)
    <workload>/manifest.yml
    <workload>/addons/*.yml           (workload addon fragments)
    <workload>/addons/addons.parameters.yml
    <workload>/overrides/cfn.patches.yml
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .result import Err, Ok, Result

__all__ = [
    "Workspace",
    "WorkspaceError",
    "MARKER_NAME",
    "detect_workspace",
    "find_workspace_upward",
    "is_workspace_root",
]

MARKER_NAME = ".shipstack-workspace"
ADDONS_PARAMETERS_FILE = "addons.parameters.yml"
PATCHES_FILE = "cfn.patches.yml"


@dataclass(frozen=True)
class WorkspaceError:
    """Error when workspace cannot be detected."""

    message: str
    searched_from: Path | None = None


@dataclass(frozen=True, slots=True)
class Workspace:
    """A detected workspace root and its fixed relative paths."""

    root: Path

    @property
    def config_path(self) -> Path:
        return self.root / "config.toml"

    @property
    def marker_path(self) -> Path:
        return self.root / MARKER_NAME

    def workload_dir(self, workload: str) -> Path:
        return self.root / workload

    def manifest_path(self, workload: str) -> Path:
        return self.workload_dir(workload) / "manifest.yml"

    def addons_dir(self, workload: str) -> Path:
        return self.workload_dir(workload) / "addons"

    def addons_parameters_path(self, workload: str) -> Path:
        return self.addons_dir(workload) / ADDONS_PARAMETERS_FILE

    def patches_path(self, workload: str) -> Path:
        return self.workload_dir(workload) / "overrides" / PATCHES_FILE

    def list_workloads(self) -> list[str]:
        """Names of directories holding a manifest, sorted."""
        if not self.root.is_dir():
            return []
        return sorted(p.parent.name for p in self.root.glob("*/manifest.yml"))

    def exists(self) -> bool:
        return self.root.is_dir() and self.marker_path.exists()

    def __str__(self) -> str:
        return str(self.root)


def is_workspace_root(path: Path) -> bool:
    return (path / MARKER_NAME).is_file()


def find_workspace_upward(start: Path) -> Path | None:
    """Search upward from start directory for a workspace root."""
    for parent in (start, *start.parents):
        if is_workspace_root(parent):
            return parent
    return None


def detect_workspace(
    *,
    start_dir: Path | None = None,
    env_var: str = "SHIPSTACK_WORKSPACE",
) -> Result[Workspace, WorkspaceError]:
    """Detect the workspace root directory.

    Detection order:
    1. $SHIPSTACK_WORKSPACE (if set, it must be valid)
    2. Search upward from start_dir (or cwd) for the marker file
    """
    env_value = os.environ.get(env_var)
    if env_value:
        env_path = Path(env_value).expanduser().resolve()
        if env_path.is_dir() and is_workspace_root(env_path):
            return Ok(Workspace(root=env_path))
        return Err(
            WorkspaceError(
                message=f"${env_var} is set to '{env_value}' but it is not a valid workspace",
                searched_from=env_path if env_path.is_dir() else None,
            )
        )

    search_start = (start_dir or Path.cwd()).resolve()
    found = find_workspace_upward(search_start)
    if found:
        return Ok(Workspace(root=found))

    return Err(
        WorkspaceError(
            message=f"Could not find workspace ({MARKER_NAME} not found)",
            searched_from=search_start,
        )
    )
