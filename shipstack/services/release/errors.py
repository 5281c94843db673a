from __future__ import annotations

from dataclasses import dataclass

from .model import ReleaseState, StackStatus


@dataclass(frozen=True, slots=True)
class DiffComputationError:
    """The deployed template could not be fetched or parsed."""

    stack_name: str
    message: str


@dataclass(frozen=True, slots=True)
class DeploymentFailedError:
    """The deployment failed; the stack was reverted and stays deployable."""

    stack_name: str
    status: StackStatus
    reason: str | None = None
    state: ReleaseState = ReleaseState.FAILED


@dataclass(frozen=True, slots=True)
class RollbackFailedError:
    """The deployment failed and the stack was left as is.

    Further deploys of this stack are refused until manual recovery is
    confirmed.
    """

    stack_name: str
    status: StackStatus
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class RecoveryRequiredError:
    stack_name: str
    status: StackStatus
    message: str


@dataclass(frozen=True, slots=True)
class StackBusyError:
    """Another operation is running on the stack."""

    stack_name: str
    status: StackStatus


@dataclass(frozen=True, slots=True)
class ControlPlaneError:
    """A control plane call was rejected or could not be made."""

    operation: str
    stack_name: str
    message: str


@dataclass(frozen=True, slots=True)
class WaitTimeoutError:
    stack_name: str
    waited_seconds: float
    last_status: StackStatus


ReleaseError = (
    DiffComputationError
    | DeploymentFailedError
    | RollbackFailedError
    | RecoveryRequiredError
    | StackBusyError
    | ControlPlaneError
    | WaitTimeoutError
)
