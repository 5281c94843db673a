"""Diff and deploy of the final stack template."""

from __future__ import annotations

from .control_plane import ControlPlane, ControlPlaneFailure
from .diff import compare_templates, diff_exit_code, render_diff
from .driver import STACK_LOCKS, ReleaseDriver, ReleaseReport
from .errors import (
    ControlPlaneError,
    DeploymentFailedError,
    DiffComputationError,
    RecoveryRequiredError,
    ReleaseError,
    RollbackFailedError,
    StackBusyError,
    WaitTimeoutError,
)
from .locks import KeyedLock
from .model import (
    DeployedStack,
    DeploymentRequest,
    DeployOutcome,
    DiffEntry,
    ExecutionMode,
    OperationHandle,
    OperationStatus,
    PropertyChange,
    ReleaseState,
    RollbackPolicy,
    StackStatus,
    StructuredDiff,
)

__all__ = [
    "ControlPlane",
    "ControlPlaneFailure",
    "ControlPlaneError",
    "DeployedStack",
    "DeploymentFailedError",
    "DeploymentRequest",
    "DeployOutcome",
    "DiffComputationError",
    "DiffEntry",
    "ExecutionMode",
    "KeyedLock",
    "OperationHandle",
    "OperationStatus",
    "PropertyChange",
    "RecoveryRequiredError",
    "ReleaseDriver",
    "ReleaseError",
    "ReleaseReport",
    "ReleaseState",
    "RollbackFailedError",
    "RollbackPolicy",
    "STACK_LOCKS",
    "StackBusyError",
    "StackStatus",
    "StructuredDiff",
    "WaitTimeoutError",
    "compare_templates",
    "diff_exit_code",
    "render_diff",
]
