"""The remote stack orchestration API, as seen by the release driver."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from shipstack.template.document import StackTemplate

from .model import DeployedStack, OperationHandle, OperationStatus, RollbackPolicy


class ControlPlaneFailure(Exception):
    """Raised by adapters when a call fails or is rejected."""


class ControlPlane(Protocol):
    """Stack operations.

    Reads may be repeated freely. Submitting an unchanged template must be
    recognized by the control plane and reported as ``no_changes``.
    """

    def describe_stack(self, stack_name: str) -> DeployedStack:
        """Current status and last deployed template (NOT_CREATED when absent)."""
        ...

    def create_stack(
        self,
        stack_name: str,
        template: StackTemplate,
        parameters: Mapping[str, str],
        *,
        rollback: RollbackPolicy,
        tags: Mapping[str, str],
    ) -> OperationHandle: ...

    def update_stack(
        self,
        stack_name: str,
        template: StackTemplate,
        parameters: Mapping[str, str],
        *,
        rollback: RollbackPolicy,
        tags: Mapping[str, str],
    ) -> OperationHandle: ...

    def poll_operation(self, handle: OperationHandle) -> OperationStatus: ...

    def delete_stack(self, stack_name: str) -> OperationHandle: ...
