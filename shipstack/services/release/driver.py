"""Deploy state machine.

    absent -> diff-computed -> deploying -> succeeded
                                        -> failed | rolled-back   (auto rollback)
                                        -> rollback-failed        (rollback disabled)

A stack that ends in ``rollback-failed`` is fenced: every further deploy of
it is refused with ``RecoveryRequiredError`` until
``confirm_manual_recovery`` is called. A stack whose remote status already
shows a failure that was not reverted is fenced the same way.

Only one deploy per stack identity runs at a time (``KeyedLock``).
Cancelling an attached deploy stops observing it; the remote operation keeps
running.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from shipstack.core.config import DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_TIMEOUT_SECONDS
from shipstack.core.result import Err, Ok, Result
from shipstack.output.console import ConsoleProtocol, Style
from shipstack.template.document import StackTemplate

from .control_plane import ControlPlane, ControlPlaneFailure
from .diff import compare_templates, render_diff
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
    ExecutionMode,
    OperationHandle,
    OperationKind,
    OperationStatus,
    ReleaseState,
    StackStatus,
    StructuredDiff,
)

__all__ = ["ReleaseDriver", "ReleaseReport", "STACK_LOCKS"]

# Shared by every driver in the process.
STACK_LOCKS = KeyedLock()

_REMOTE_ROLLBACK_FAILED = (StackStatus.ROLLBACK_FAILED, StackStatus.UPDATE_ROLLBACK_FAILED)


@dataclass(frozen=True, slots=True)
class ReleaseReport:
    diff: StructuredDiff
    # None in diff-only runs.
    outcome: DeployOutcome | None = None


class ReleaseDriver:
    def __init__(
        self,
        control_plane: ControlPlane,
        *,
        console: ConsoleProtocol,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        locks: KeyedLock | None = None,
        sleep: Callable[[float], object] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cp = control_plane
        self._console = console
        self._poll_interval = poll_interval_seconds
        self._timeout = timeout_seconds
        self._locks = locks if locks is not None else STACK_LOCKS
        self._sleep = sleep
        self._clock = clock

        self._guard = threading.Lock()
        self._states: dict[str, ReleaseState] = {}
        self._fenced: dict[str, StackStatus] = {}
        self._recovered: set[str] = set()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def state_of(self, stack_name: str) -> ReleaseState:
        with self._guard:
            return self._states.get(stack_name, ReleaseState.ABSENT)

    def _set_state(self, stack_name: str, state: ReleaseState) -> None:
        with self._guard:
            self._states[stack_name] = state

    def is_fenced(self, stack_name: str) -> bool:
        with self._guard:
            return stack_name in self._fenced

    def _fence(self, stack_name: str, status: StackStatus) -> None:
        with self._guard:
            self._fenced[stack_name] = status
            self._states[stack_name] = ReleaseState.ROLLBACK_FAILED

    def confirm_manual_recovery(self, stack_name: str) -> None:
        """Lift the fence on a stack the caller has repaired by hand.

        Also lets the next deploy proceed over a remote status that still
        reports the failure.
        """
        with self._guard:
            self._fenced.pop(stack_name, None)
            self._recovered.add(stack_name)
        self._console.print(f"{stack_name}: manual recovery confirmed", Style.DIM)

    # -------------------------------------------------------------------------
    # Diff
    # -------------------------------------------------------------------------

    def diff(self, stack_name: str, final: StackTemplate) -> Result[StructuredDiff, DiffComputationError]:
        """Compare ``final`` with the deployed template (empty when absent)."""
        try:
            deployed = self._cp.describe_stack(stack_name)
        except ControlPlaneFailure as e:
            return Err(DiffComputationError(stack_name=stack_name, message=str(e)))

        baseline = self._baseline(deployed)
        if isinstance(baseline, Err):
            return baseline

        result = compare_templates(stack_name, baseline.value, final)
        self._set_state(stack_name, ReleaseState.DIFF_COMPUTED)
        return Ok(result)

    @staticmethod
    def _baseline(deployed: DeployedStack) -> Result[StackTemplate | None, DiffComputationError]:
        # A create that was rolled back is recreated from scratch.
        if not deployed.exists or deployed.status == StackStatus.ROLLBACK_COMPLETE:
            return Ok(None)
        if deployed.template is None:
            return Err(
                DiffComputationError(
                    stack_name=deployed.name,
                    message=f"stack is {deployed.status} but its template is unavailable",
                )
            )
        return Ok(deployed.template)

    # -------------------------------------------------------------------------
    # Deploy
    # -------------------------------------------------------------------------

    def deploy(
        self,
        request: DeploymentRequest,
        *,
        mode: ExecutionMode = "attached",
        cancel: threading.Event | None = None,
    ) -> Result[DeployOutcome, ReleaseError]:
        """Create the stack when absent, update it otherwise."""
        with self._locks.hold(request.stack_name):
            return self._deploy(request, mode=mode, cancel=cancel)

    def _deploy(
        self,
        request: DeploymentRequest,
        *,
        mode: ExecutionMode,
        cancel: threading.Event | None,
    ) -> Result[DeployOutcome, ReleaseError]:
        name = request.stack_name

        with self._guard:
            fenced = self._fenced.get(name)
        if fenced is not None:
            return Err(
                RecoveryRequiredError(
                    stack_name=name,
                    status=fenced,
                    message="a deployment failed with rollback disabled; "
                    "repair the stack, then confirm manual recovery",
                )
            )

        try:
            deployed = self._cp.describe_stack(name)
        except ControlPlaneFailure as e:
            return Err(ControlPlaneError(operation="describe_stack", stack_name=name, message=str(e)))

        with self._guard:
            recovered = name in self._recovered
            self._recovered.discard(name)

        status = deployed.status
        if status.is_paused_failure and not recovered:
            self._fence(name, status)
            return Err(
                RecoveryRequiredError(
                    stack_name=name,
                    status=status,
                    message=f"stack is {status}; repair it, then confirm manual recovery",
                )
            )
        if status.is_in_progress:
            return Err(StackBusyError(stack_name=name, status=status))

        if status == StackStatus.ROLLBACK_COMPLETE:
            cleaned = self._delete_rolled_back(name)
            if isinstance(cleaned, Err):
                return cleaned
            status = StackStatus.NOT_CREATED

        kind: OperationKind = "update" if status.exists else "create"
        submitted = self._submit(request, kind)
        if isinstance(submitted, Err):
            return submitted
        handle = submitted.value

        if handle.no_changes:
            self._console.print(f"{name}: no changes to deploy", Style.DIM)
            self._set_state(name, ReleaseState.SUCCEEDED)
            return Ok(
                DeployOutcome(
                    stack_name=name,
                    state=ReleaseState.SUCCEEDED,
                    status=status,
                    operation=kind,
                    reason="no changes",
                )
            )

        self._set_state(name, ReleaseState.DEPLOYING)
        in_progress = (
            StackStatus.CREATE_IN_PROGRESS if kind == "create" else StackStatus.UPDATE_IN_PROGRESS
        )
        if mode == "detached":
            self._console.info(f"{name}: {kind} accepted; not waiting for completion")
            return Ok(
                DeployOutcome(
                    stack_name=name,
                    state=ReleaseState.DEPLOYING,
                    status=in_progress,
                    operation=kind,
                    observed=False,
                )
            )

        waited = self._wait(handle, cancel)
        if isinstance(waited, Err):
            return waited
        final = waited.value
        if final is None:
            return Ok(
                DeployOutcome(
                    stack_name=name,
                    state=ReleaseState.DEPLOYING,
                    status=in_progress,
                    operation=kind,
                    observed=False,
                    reason="stopped observing",
                )
            )
        return self._conclude(request, kind, final)

    def _submit(
        self, request: DeploymentRequest, kind: OperationKind
    ) -> Result[OperationHandle, ReleaseError]:
        name = request.stack_name
        self._console.print(f"{name}: submitting {kind} (rollback {request.rollback})", Style.DIM)
        try:
            if kind == "create":
                handle = self._cp.create_stack(
                    name,
                    request.template,
                    request.parameters,
                    rollback=request.rollback,
                    tags=request.tags,
                )
            else:
                handle = self._cp.update_stack(
                    name,
                    request.template,
                    request.parameters,
                    rollback=request.rollback,
                    tags=request.tags,
                )
        except ControlPlaneFailure as e:
            return Err(ControlPlaneError(operation=f"{kind}_stack", stack_name=name, message=str(e)))
        return Ok(handle)

    def _delete_rolled_back(self, name: str) -> Result[None, ReleaseError]:
        self._console.warning(f"{name}: previous create was rolled back; deleting it before recreating")
        try:
            handle = self._cp.delete_stack(name)
        except ControlPlaneFailure as e:
            return Err(ControlPlaneError(operation="delete_stack", stack_name=name, message=str(e)))

        waited = self._wait(handle, None)
        if isinstance(waited, Err):
            return waited
        final = waited.value
        if final is None or final.status != StackStatus.DELETE_COMPLETE:
            status = final.status if final is not None else StackStatus.DELETE_IN_PROGRESS
            return Err(
                DeploymentFailedError(
                    stack_name=name,
                    status=status,
                    reason=final.reason if final is not None else None,
                )
            )
        return Ok(None)

    def _wait(
        self,
        handle: OperationHandle,
        cancel: threading.Event | None,
    ) -> Result[OperationStatus | None, ReleaseError]:
        """Poll until a terminal status. ``None`` when the caller cancelled."""
        name = handle.stack_name
        deadline = self._clock() + self._timeout
        last: StackStatus | None = None
        while True:
            if cancel is not None and cancel.is_set():
                self._console.warning(
                    f"{name}: stopped observing; the {handle.kind} continues remotely"
                )
                return Ok(None)

            try:
                current = self._cp.poll_operation(handle)
            except ControlPlaneFailure as e:
                return Err(
                    ControlPlaneError(operation="poll_operation", stack_name=name, message=str(e))
                )

            if current.status != last:
                self._report(name, current)
                last = current.status
            if current.status.is_terminal:
                return Ok(current)
            if self._clock() >= deadline:
                return Err(
                    WaitTimeoutError(
                        stack_name=name, waited_seconds=self._timeout, last_status=current.status
                    )
                )
            self._sleep(self._poll_interval)

    def _report(self, name: str, current: OperationStatus) -> None:
        status = current.status
        message = f"{name}: {status}"
        if current.reason:
            message += f" ({current.reason})"
        if status.is_success or status == StackStatus.DELETE_COMPLETE:
            self._console.print(message, Style.SUCCESS)
        elif status.is_paused_failure or status.is_rolled_back:
            self._console.print(message, Style.ERROR)
        elif "ROLLBACK" in status.value:
            self._console.print(message, Style.WARNING)
        else:
            self._console.print(message, Style.DIM)

    def _conclude(
        self,
        request: DeploymentRequest,
        kind: OperationKind,
        final: OperationStatus,
    ) -> Result[DeployOutcome, ReleaseError]:
        name = request.stack_name
        status = final.status

        if status.is_success:
            self._set_state(name, ReleaseState.SUCCEEDED)
            return Ok(
                DeployOutcome(
                    stack_name=name,
                    state=ReleaseState.SUCCEEDED,
                    status=status,
                    operation=kind,
                    reason=final.reason,
                )
            )

        rollback_failed = status in _REMOTE_ROLLBACK_FAILED or (
            request.rollback == "disabled" and status.is_paused_failure
        )
        if rollback_failed:
            self._fence(name, status)
            return Err(RollbackFailedError(stack_name=name, status=status, reason=final.reason))

        state = ReleaseState.ROLLED_BACK if status.is_rolled_back else ReleaseState.FAILED
        self._set_state(name, state)
        return Err(
            DeploymentFailedError(stack_name=name, status=status, reason=final.reason, state=state)
        )

    # -------------------------------------------------------------------------
    # Full run
    # -------------------------------------------------------------------------

    def release(
        self,
        request: DeploymentRequest,
        *,
        diff_only: bool = False,
        mode: ExecutionMode = "attached",
        cancel: threading.Event | None = None,
    ) -> Result[ReleaseReport, ReleaseError]:
        """Diff then deploy, holding the stack's lock throughout."""
        with self._locks.hold(request.stack_name):
            diffed = self.diff(request.stack_name, request.template)
            if isinstance(diffed, Err):
                return diffed
            render_diff(diffed.value, self._console)
            if diff_only:
                return Ok(ReleaseReport(diff=diffed.value))

            deployed = self.deploy(request, mode=mode, cancel=cancel)
            if isinstance(deployed, Err):
                return deployed
            return Ok(ReleaseReport(diff=diffed.value, outcome=deployed.value))
