"""Structural diff between the deployed template and a freshly rendered one.

The comparison is a tree comparison: two expressions of the same resource
that are written differently count as a change.
"""

from __future__ import annotations

import json

from shipstack.core.errors import DiffExitCode
from shipstack.core.result import Err, Result
from shipstack.output.console import ConsoleProtocol, Style
from shipstack.template.document import MERGEABLE_SECTIONS, SECTION_ORDER, StackTemplate
from shipstack.template.tree import ListNode, MapNode, Node, ScalarNode, to_plain

from .errors import DiffComputationError
from .model import DiffEntry, PropertyChange, StructuredDiff

__all__ = [
    "compare_templates",
    "diff_exit_code",
    "render_diff",
    "TEMPLATE_SECTION",
]

# Pseudo-section for top-level keys that are not keyed by logical id.
TEMPLATE_SECTION = "Template"

_MAX_VALUE_WIDTH = 80


def _property_changes(old: Node | None, new: Node | None, path: str) -> list[PropertyChange]:
    if old == new:
        return []
    match old, new:
        case MapNode(), MapNode():
            changes: list[PropertyChange] = []
            keys = list(old.keys()) + [k for k in new.keys() if k not in old]
            for key in keys:
                child = f"{path}.{key}" if path else key
                changes.extend(_property_changes(old.get(key), new.get(key), child))
            return changes
        case ListNode(), ListNode() if len(old) == len(new):
            changes = []
            for index, (a, b) in enumerate(zip(old.items, new.items, strict=True)):
                changes.extend(_property_changes(a, b, f"{path}[{index}]"))
            return changes
    return [PropertyChange(path=path, old=old, new=new)]


def _entry(section: str, logical_id: str, old: Node | None, new: Node | None) -> DiffEntry:
    if old is None:
        return DiffEntry(section, logical_id, "added", new=new)
    if new is None:
        return DiffEntry(section, logical_id, "removed", old=old)
    if old == new:
        return DiffEntry(section, logical_id, "unchanged", old=old, new=new)
    return DiffEntry(
        section,
        logical_id,
        "changed",
        old=old,
        new=new,
        changes=tuple(_property_changes(old, new, "")),
    )


def compare_templates(
    stack_name: str,
    deployed: StackTemplate | None,
    final: StackTemplate,
) -> StructuredDiff:
    """Per-section, per-logical-id comparison. ``None`` means no stack."""
    old_root = deployed.root if deployed is not None else MapNode()
    new_root = final.root
    entries: list[DiffEntry] = []

    top_level = [k for k in SECTION_ORDER if k not in MERGEABLE_SECTIONS]
    for key in list(old_root.keys()) + list(new_root.keys()):
        if key not in SECTION_ORDER and key not in top_level:
            top_level.append(key)
    for key in top_level:
        old, new = old_root.get(key), new_root.get(key)
        if old is None and new is None:
            continue
        entries.append(_entry(TEMPLATE_SECTION, key, old, new))

    for section in MERGEABLE_SECTIONS:
        old_section = old_root.get_map(section)
        new_section = new_root.get_map(section)
        ids = list(old_section.keys()) + [k for k in new_section.keys() if k not in old_section]
        for logical_id in ids:
            entries.append(
                _entry(section, logical_id, old_section.get(logical_id), new_section.get(logical_id))
            )

    return StructuredDiff(stack_name=stack_name, entries=tuple(entries), new_stack=deployed is None)


def diff_exit_code(result: Result[StructuredDiff, DiffComputationError]) -> DiffExitCode:
    if isinstance(result, Err):
        return DiffExitCode.ERROR
    if result.value.is_empty:
        return DiffExitCode.NO_DIFFERENCES
    return DiffExitCode.DIFFERENCES


def _short(node: Node | None) -> str:
    if node is None:
        return "(none)"
    if isinstance(node, ScalarNode) and isinstance(node.value, str):
        text = node.value
    else:
        text = json.dumps(to_plain(node), sort_keys=True, separators=(",", ":"))
    if len(text) > _MAX_VALUE_WIDTH:
        return text[: _MAX_VALUE_WIDTH - 3] + "..."
    return text


def _resource_label(entry: DiffEntry) -> str:
    node = entry.new if entry.new is not None else entry.old
    if entry.section == "Resources" and isinstance(node, MapNode):
        kind = node.get("Type")
        if isinstance(kind, ScalarNode) and isinstance(kind.value, str):
            return f"{entry.section}/{entry.logical_id} ({kind.value})"
    return f"{entry.section}/{entry.logical_id}"


def render_diff(diff: StructuredDiff, console: ConsoleProtocol) -> None:
    """Print the changed entries, one block per logical id."""
    title = f"{diff.stack_name} (new stack)" if diff.new_stack else diff.stack_name
    console.header(title)

    if diff.is_empty:
        console.success("No changes")
        return

    for entry in diff.changes:
        label = _resource_label(entry)
        match entry.kind:
            case "added":
                console.print(f"+ {label}", Style.ADDED)
            case "removed":
                console.print(f"- {label}", Style.REMOVED)
            case "changed":
                console.print(f"~ {label}", Style.CHANGED)
                for change in entry.changes:
                    console.print(
                        f"    {change.path or '(value)'}: {_short(change.old)} -> {_short(change.new)}",
                        Style.DIM,
                    )
            case "unchanged":
                pass

    added = len(diff.of_kind("added"))
    removed = len(diff.of_kind("removed"))
    changed = len(diff.of_kind("changed"))
    console.newline()
    console.info(f"{added} added, {changed} changed, {removed} removed")
