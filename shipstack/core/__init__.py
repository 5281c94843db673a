"""Core domain types and logic."""

from .config import Config, ConfigError, load_config, load_config_or_default
from .errors import DiffExitCode, ErrorCode
from .result import Err, Ok, Result, is_err, is_ok
from .workload import ManifestError, WorkloadConfig, load_workload_config
from .workspace import Workspace, WorkspaceError, detect_workspace

__all__ = [
    # config
    "Config",
    "ConfigError",
    "load_config",
    "load_config_or_default",
    # errors
    "DiffExitCode",
    "ErrorCode",
    # result
    "Err",
    "Ok",
    "Result",
    "is_err",
    "is_ok",
    # workload
    "ManifestError",
    "WorkloadConfig",
    "load_workload_config",
    # workspace
    "Workspace",
    "WorkspaceError",
    "detect_workspace",
]
