"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shipstack.core.errors import ErrorCode
from shipstack.core.workload import ManifestError
from shipstack.output.console import Style
from shipstack.services.addons import CollisionError, SchemaError
from shipstack.services.assets import AssetNotFoundError, PublishError
from shipstack.services.overrides import PathNotFoundError, PatchSyntaxError, ProtectedFieldError
from shipstack.services.pipeline import ArtifactStoreRequired, PackageWriteError, PipelineError
from shipstack.services.release.errors import (
    ControlPlaneError,
    DeploymentFailedError,
    DiffComputationError,
    RecoveryRequiredError,
    ReleaseError,
    RollbackFailedError,
    StackBusyError,
    WaitTimeoutError,
)
from shipstack.template.document import TemplateParseError

if TYPE_CHECKING:
    from shipstack.output.console import ConsoleProtocol

__all__ = [
    "print_pipeline_error",
    "pipeline_error_exit_code",
    "print_release_error",
    "release_error_exit_code",
    "print_package_error",
]


def print_pipeline_error(error: PipelineError, console: ConsoleProtocol) -> None:
    """Print a synthesis error with appropriate formatting."""
    match error:
        case ManifestError(message=message, path=path):
            console.error(f"manifest: {message}")
            if path is not None:
                console.print(f"file: {path}", Style.DIM)
        case TemplateParseError(source=source, message=message):
            console.error(f"{source}: {message}")
        case SchemaError(fragment=fragment, message=message):
            console.error(f"addon {fragment}: {message}")
            console.print("hint: every addon declares App, Env and Name (Type: String)", Style.DIM)
        case CollisionError():
            console.error(f"addons: {error.message}")
            console.print("hint: logical ids must be unique across addon files", Style.DIM)
        case ProtectedFieldError():
            console.error(f"patch: {error.message}")
            console.print(
                "hint: the task family and container names identify the workload",
                Style.DIM,
            )
        case PathNotFoundError():
            console.error(f"patch: {error.message}")
        case PatchSyntaxError(source=source, message=message, rule_index=index):
            where = f"{source} rule {index}" if index is not None else source
            console.error(f"{where}: {message}")
        case AssetNotFoundError():
            console.error(error.message)
            console.print("hint: asset paths are relative to the workload directory", Style.DIM)
        case PublishError():
            console.error(error.description)
        case ArtifactStoreRequired(workload=workload, reason=reason):
            console.error(f"{workload}: {reason} but no artifact bucket is configured")
            console.print("hint: set deploy.artifact_bucket in config.toml", Style.DIM)


def pipeline_error_exit_code(error: PipelineError) -> int:
    """Get exit code for a synthesis error."""
    match error:
        case (
            ManifestError()
            | TemplateParseError()
            | SchemaError()
            | CollisionError()
            | ProtectedFieldError()
            | PathNotFoundError()
            | PatchSyntaxError()
        ):
            return int(ErrorCode.USER_ERROR)
        case AssetNotFoundError():
            return int(ErrorCode.IO_ERROR)
        case PublishError():
            return int(ErrorCode.NETWORK_ERROR)
        case ArtifactStoreRequired():
            return int(ErrorCode.ENV_ERROR)


def print_release_error(error: ReleaseError, console: ConsoleProtocol) -> None:
    """Print a diff/deploy error with appropriate formatting."""
    match error:
        case DiffComputationError(stack_name=name, message=message):
            console.error(f"{name}: cannot compute diff: {message}")
        case DeploymentFailedError(stack_name=name, status=status, reason=reason, state=state):
            console.error(f"{name}: deployment failed ({status})")
            if reason:
                console.print(f"reason: {reason}", Style.DIM)
            console.print(f"stack is {state}; it can be deployed again", Style.DIM)
        case RollbackFailedError(stack_name=name, status=status, reason=reason):
            console.error(f"{name}: deployment failed and was not rolled back ({status})")
            if reason:
                console.print(f"reason: {reason}", Style.DIM)
            console.warning("manual intervention required before the next deploy")
            console.print(
                "hint: repair or roll back the stack, then deploy again with --recovered",
                Style.DIM,
            )
        case RecoveryRequiredError(stack_name=name, status=status, message=message):
            console.error(f"{name}: refusing to deploy ({status})")
            console.print(message, Style.DIM)
            console.print("hint: deploy again with --recovered once the stack is fixed", Style.DIM)
        case StackBusyError(stack_name=name, status=status):
            console.error(f"{name}: another operation is in progress ({status})")
        case ControlPlaneError(operation=operation, stack_name=name, message=message):
            console.error(f"{name}: {operation} failed: {message}")
        case WaitTimeoutError(stack_name=name, waited_seconds=waited, last_status=status):
            console.error(f"{name}: still {status} after {waited:.0f}s")
            console.print("the operation continues remotely", Style.DIM)


def release_error_exit_code(error: ReleaseError) -> int:
    """Get exit code for a diff/deploy error."""
    match error:
        case DeploymentFailedError():
            return int(ErrorCode.DEPLOY_FAILED)
        case RollbackFailedError() | RecoveryRequiredError():
            return int(ErrorCode.RECOVERY_REQUIRED)
        case StackBusyError():
            return int(ErrorCode.ENV_ERROR)
        case DiffComputationError() | ControlPlaneError() | WaitTimeoutError():
            return int(ErrorCode.NETWORK_ERROR)


def print_package_error(error: PackageWriteError, console: ConsoleProtocol) -> None:
    console.error(f"cannot write package to {error.path}: {error.message}")
