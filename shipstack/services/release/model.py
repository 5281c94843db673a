from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal

from shipstack.template.document import StackTemplate
from shipstack.template.tree import Node

RollbackPolicy = Literal["auto", "disabled"]
ExecutionMode = Literal["attached", "detached"]
OperationKind = Literal["create", "update", "delete"]
DiffKind = Literal["added", "removed", "changed", "unchanged"]


class StackStatus(StrEnum):
    """Remote stack status, plus NOT_CREATED for a stack that does not exist."""

    NOT_CREATED = "NOT_CREATED"
    REVIEW_IN_PROGRESS = "REVIEW_IN_PROGRESS"
    CREATE_IN_PROGRESS = "CREATE_IN_PROGRESS"
    CREATE_COMPLETE = "CREATE_COMPLETE"
    CREATE_FAILED = "CREATE_FAILED"
    UPDATE_IN_PROGRESS = "UPDATE_IN_PROGRESS"
    UPDATE_COMPLETE_CLEANUP_IN_PROGRESS = "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS"
    UPDATE_COMPLETE = "UPDATE_COMPLETE"
    UPDATE_FAILED = "UPDATE_FAILED"
    ROLLBACK_IN_PROGRESS = "ROLLBACK_IN_PROGRESS"
    ROLLBACK_COMPLETE = "ROLLBACK_COMPLETE"
    ROLLBACK_FAILED = "ROLLBACK_FAILED"
    UPDATE_ROLLBACK_IN_PROGRESS = "UPDATE_ROLLBACK_IN_PROGRESS"
    UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS = "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS"
    UPDATE_ROLLBACK_COMPLETE = "UPDATE_ROLLBACK_COMPLETE"
    UPDATE_ROLLBACK_FAILED = "UPDATE_ROLLBACK_FAILED"
    DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
    DELETE_COMPLETE = "DELETE_COMPLETE"
    DELETE_FAILED = "DELETE_FAILED"
    IMPORT_IN_PROGRESS = "IMPORT_IN_PROGRESS"
    IMPORT_COMPLETE = "IMPORT_COMPLETE"
    IMPORT_ROLLBACK_IN_PROGRESS = "IMPORT_ROLLBACK_IN_PROGRESS"
    IMPORT_ROLLBACK_COMPLETE = "IMPORT_ROLLBACK_COMPLETE"
    IMPORT_ROLLBACK_FAILED = "IMPORT_ROLLBACK_FAILED"

    @property
    def is_in_progress(self) -> bool:
        return self.value.endswith("_IN_PROGRESS")

    @property
    def is_terminal(self) -> bool:
        return not self.is_in_progress

    @property
    def is_success(self) -> bool:
        return self in (StackStatus.CREATE_COMPLETE, StackStatus.UPDATE_COMPLETE)

    @property
    def is_rolled_back(self) -> bool:
        return self in (StackStatus.ROLLBACK_COMPLETE, StackStatus.UPDATE_ROLLBACK_COMPLETE)

    @property
    def is_paused_failure(self) -> bool:
        """Failed and not reverted: someone has to look at it."""
        return self.value.endswith("_FAILED")

    @property
    def exists(self) -> bool:
        return self not in (StackStatus.NOT_CREATED, StackStatus.DELETE_COMPLETE)


class ReleaseState(StrEnum):
    ABSENT = "absent"
    DIFF_COMPUTED = "diff-computed"
    DEPLOYING = "deploying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled-back"
    ROLLBACK_FAILED = "rollback-failed"


@dataclass(frozen=True, slots=True)
class DeployedStack:
    name: str
    status: StackStatus
    template: StackTemplate | None = None
    status_reason: str | None = None

    @property
    def exists(self) -> bool:
        return self.status.exists

    @classmethod
    def absent(cls, name: str) -> DeployedStack:
        return cls(name=name, status=StackStatus.NOT_CREATED)


@dataclass(frozen=True, slots=True)
class DeploymentRequest:
    stack_name: str
    template: StackTemplate
    parameters: Mapping[str, str] = field(default_factory=dict)
    rollback: RollbackPolicy = "auto"
    tags: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class OperationHandle:
    stack_name: str
    kind: OperationKind
    operation_id: str = ""
    # The control plane found nothing to update.
    no_changes: bool = False


@dataclass(frozen=True, slots=True)
class OperationStatus:
    status: StackStatus
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class DeployOutcome:
    stack_name: str
    state: ReleaseState
    status: StackStatus
    operation: OperationKind | None = None
    # False when the caller stopped observing (detached or cancelled).
    observed: bool = True
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class PropertyChange:
    """A leaf difference inside a changed entry (``Properties.DesiredCount``)."""

    path: str
    old: Node | None
    new: Node | None


@dataclass(frozen=True, slots=True)
class DiffEntry:
    section: str
    logical_id: str
    kind: DiffKind
    old: Node | None = None
    new: Node | None = None
    changes: tuple[PropertyChange, ...] = ()


@dataclass(frozen=True, slots=True)
class StructuredDiff:
    stack_name: str
    entries: tuple[DiffEntry, ...] = ()
    # The stack did not exist; everything is "added".
    new_stack: bool = False

    @property
    def is_empty(self) -> bool:
        return all(e.kind == "unchanged" for e in self.entries)

    @property
    def changes(self) -> tuple[DiffEntry, ...]:
        return tuple(e for e in self.entries if e.kind != "unchanged")

    def of_kind(self, kind: DiffKind) -> tuple[DiffEntry, ...]:
        return tuple(e for e in self.entries if e.kind == kind)
