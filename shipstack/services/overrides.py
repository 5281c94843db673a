"""Ordered patch rules applied to a composed template.

Rules use JSON Pointer paths (``/Resources/Service/Properties/DesiredCount``)
with the ``~0``/``~1`` escapes. They are applied one after the other, each
against the template produced by the previous rule.

``add`` creates missing map segments along its path, and ``-`` appends to a
list (creating the list when it is missing). ``replace`` and ``remove``
require the whole path to exist.

The task definition ``Family`` and the ``Name`` of every existing container
definition cannot be touched by any rule.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, get_args

import yaml

from shipstack.core.result import Err, Ok, Result
from shipstack.core.structured import as_obj_list, as_str_dict
from shipstack.template import cfn_yaml
from shipstack.template.document import StackTemplate
from shipstack.template.tree import ListNode, MapNode, Node, ScalarNode, from_plain

__all__ = [
    "PatchOp",
    "PatchRule",
    "OverrideError",
    "ProtectedFieldError",
    "PathNotFoundError",
    "PatchSyntaxError",
    "APPEND_MARKER",
    "apply_patches",
    "load_patch_rules",
    "parse_pointer",
    "protected_paths",
]

PatchOp = Literal["add", "remove", "replace"]
PATCH_OPS: tuple[str, ...] = get_args(PatchOp)

APPEND_MARKER = "-"

_TASK_DEFINITION_TYPE = "AWS::ECS::TaskDefinition"


@dataclass(frozen=True, slots=True)
class PatchRule:
    op: PatchOp
    path: str
    value: Node | None = None

    @classmethod
    def of(cls, op: PatchOp, path: str, value: object = None) -> PatchRule:
        """Build a rule from plain Python data."""
        return cls(op=op, path=path, value=None if op == "remove" else from_plain(value))


@dataclass(frozen=True, slots=True)
class ProtectedFieldError:
    """A rule touches an identity field of the workload."""

    rule_index: int
    path: str
    protected: str
    partial: StackTemplate = field(default_factory=StackTemplate.empty, compare=False, repr=False)

    @property
    def message(self) -> str:
        return f"rule {self.rule_index} ({self.path}) touches protected field {self.protected}"


@dataclass(frozen=True, slots=True)
class PathNotFoundError:
    """A rule's path cannot be resolved against the current template."""

    rule_index: int
    path: str
    op: str
    reason: str
    partial: StackTemplate = field(default_factory=StackTemplate.empty, compare=False, repr=False)

    @property
    def message(self) -> str:
        return f"rule {self.rule_index}: cannot {self.op} {self.path}: {self.reason}"


@dataclass(frozen=True, slots=True)
class PatchSyntaxError:
    """The patch document (or a rule in it) is malformed."""

    source: str
    message: str
    rule_index: int | None = None


OverrideError = ProtectedFieldError | PathNotFoundError | PatchSyntaxError


class _Unresolvable(Exception):
    """Raised inside the tree walk; turned into PathNotFoundError by apply_patches."""


# -----------------------------------------------------------------------------
# Pointers
# -----------------------------------------------------------------------------


def parse_pointer(path: str) -> tuple[str, ...] | None:
    """Split a JSON Pointer into unescaped segments; None if malformed."""
    if not path.startswith("/") or path == "/":
        return None
    return tuple(s.replace("~1", "/").replace("~0", "~") for s in path[1:].split("/"))


def _format_pointer(segments: Sequence[str]) -> str:
    return "/" + "/".join(s.replace("~", "~0").replace("/", "~1") for s in segments)


def protected_paths(template: StackTemplate) -> list[tuple[str, ...]]:
    """Identity fields of every task definition in the template."""
    paths: list[tuple[str, ...]] = []
    for logical_id, resource in template.resources.items():
        if template.resource_type(logical_id) != _TASK_DEFINITION_TYPE:
            continue
        props = ("Resources", logical_id, "Properties")
        paths.append((*props, "Family"))
        assert isinstance(resource, MapNode)
        containers = resource.get_map("Properties").get("ContainerDefinitions")
        if isinstance(containers, ListNode):
            for index in range(len(containers)):
                paths.append((*props, "ContainerDefinitions", str(index), "Name"))
    return paths


def _touches(segments: tuple[str, ...], protected: tuple[str, ...]) -> bool:
    shorter = min(len(segments), len(protected))
    return segments[:shorter] == protected[:shorter]


# -----------------------------------------------------------------------------
# Tree walk
# -----------------------------------------------------------------------------

_Leaf = Callable[[Node, str], Node]

# Array indices as RFC 6901 spells them: no sign, no leading zero, ASCII only.
_INDEX_RE = re.compile(r"0|[1-9][0-9]*")


def _list_index(segment: str, length: int, *, allow_end: bool = False) -> int:
    if _INDEX_RE.fullmatch(segment) is None:
        raise _Unresolvable(f"expected an index into a list of length {length}, got '{segment}'")
    index = int(segment)
    upper = length if allow_end else length - 1
    if index > upper:
        raise _Unresolvable(f"index {index} is out of range for a list of length {length}")
    return index


def _new_container(next_segment: str) -> Node:
    return ListNode() if next_segment == APPEND_MARKER else MapNode()


def _walk(node: Node, segments: tuple[str, ...], leaf: _Leaf, *, create: bool) -> Node:
    """Rebuild ``node`` with ``leaf`` applied to the parent of the last segment."""
    if len(segments) == 1:
        return leaf(node, segments[0])

    head, rest = segments[0], segments[1:]
    match node:
        case MapNode():
            child = node.get(head)
            if child is None:
                if not create:
                    raise _Unresolvable(f"key '{head}' not found")
                child = _new_container(rest[0])
            return node.with_entry(head, _walk(child, rest, leaf, create=create))
        case ListNode():
            if head == APPEND_MARKER:
                if not create:
                    raise _Unresolvable(f"'{APPEND_MARKER}' is only valid for add")
                return node.appended(_walk(_new_container(rest[0]), rest, leaf, create=create))
            index = _list_index(head, len(node))
            return node.with_item(index, _walk(node.items[index], rest, leaf, create=create))
        case ScalarNode():
            raise _Unresolvable(f"cannot descend into a scalar at '{head}'")


def _add_leaf(value: Node) -> _Leaf:
    def apply(parent: Node, key: str) -> Node:
        match parent:
            case MapNode():
                return parent.with_entry(key, value)
            case ListNode():
                if key == APPEND_MARKER:
                    return parent.appended(value)
                return parent.inserted(_list_index(key, len(parent), allow_end=True), value)
            case ScalarNode():
                raise _Unresolvable(f"cannot add '{key}' to a scalar")

    return apply


def _replace_leaf(value: Node) -> _Leaf:
    def apply(parent: Node, key: str) -> Node:
        match parent:
            case MapNode():
                if key not in parent:
                    raise _Unresolvable(f"key '{key}' not found")
                return parent.with_entry(key, value)
            case ListNode():
                return parent.with_item(_list_index(key, len(parent)), value)
            case ScalarNode():
                raise _Unresolvable(f"cannot replace '{key}' in a scalar")

    return apply


def _remove_leaf(parent: Node, key: str) -> Node:
    match parent:
        case MapNode():
            if key not in parent:
                raise _Unresolvable(f"key '{key}' not found")
            return parent.without(key)
        case ListNode():
            return parent.without(_list_index(key, len(parent)))
        case ScalarNode():
            raise _Unresolvable(f"cannot remove '{key}' from a scalar")


def _value_of(rule: PatchRule) -> Node:
    return rule.value if rule.value is not None else ScalarNode()


def _apply_one(root: MapNode, rule: PatchRule, segments: tuple[str, ...]) -> Node:
    match rule.op:
        case "add":
            return _walk(root, segments, _add_leaf(_value_of(rule)), create=True)
        case "replace":
            return _walk(root, segments, _replace_leaf(_value_of(rule)), create=False)
        case "remove":
            return _walk(root, segments, _remove_leaf, create=False)


def apply_patches(
    template: StackTemplate,
    rules: Sequence[PatchRule],
) -> Result[StackTemplate, OverrideError]:
    """Apply rules in order.

    On failure the error carries the template as patched by the rules before
    the failing one (``partial``). It is for diagnostics only.
    """
    current = template
    for index, rule in enumerate(rules):
        if rule.op not in PATCH_OPS:
            return Err(
                PatchSyntaxError(
                    source="rules", message=f"unsupported operation '{rule.op}'", rule_index=index
                )
            )
        segments = parse_pointer(rule.path)
        if segments is None:
            return Err(
                PatchSyntaxError(
                    source="rules",
                    message=f"path '{rule.path}' is not a JSON pointer below the template root",
                    rule_index=index,
                )
            )

        for protected in protected_paths(current):
            if _touches(segments, protected):
                return Err(
                    ProtectedFieldError(
                        rule_index=index,
                        path=rule.path,
                        protected=_format_pointer(protected),
                        partial=current,
                    )
                )

        try:
            root = _apply_one(current.root, rule, segments)
        except _Unresolvable as e:
            return Err(
                PathNotFoundError(
                    rule_index=index, path=rule.path, op=rule.op, reason=str(e), partial=current
                )
            )
        # Root segments always address the top-level mapping.
        assert isinstance(root, MapNode)
        current = StackTemplate(root)

    return Ok(current)


# -----------------------------------------------------------------------------
# Loading
# -----------------------------------------------------------------------------


def _parse_rule(raw: object, index: int, source: str) -> Result[PatchRule, PatchSyntaxError]:
    def fail(message: str) -> Err[PatchSyntaxError]:
        return Err(PatchSyntaxError(source=source, message=message, rule_index=index))

    data = as_str_dict(raw)
    if data is None:
        return fail("rule must be a mapping with 'op' and 'path'")

    unknown = sorted(set(data) - {"op", "path", "value"})
    if unknown:
        return fail(f"unknown keys: {', '.join(unknown)}")

    op = data.get("op")
    if not isinstance(op, str) or op not in PATCH_OPS:
        return fail(f"'op' must be one of {', '.join(PATCH_OPS)}")

    path = data.get("path")
    if not isinstance(path, str) or parse_pointer(path) is None:
        return fail("'path' must be a JSON pointer such as /Resources/Service")

    if op == "remove":
        if "value" in data:
            return fail("'remove' does not take a value")
        return Ok(PatchRule(op="remove", path=path))

    if "value" not in data:
        return fail(f"'{op}' requires a value")
    try:
        value = from_plain(data["value"])
    except TypeError as e:
        return fail(str(e))
    return Ok(PatchRule(op=op, path=path, value=value))  # type: ignore[arg-type]


def load_patch_rules(path: Path) -> Result[list[PatchRule], PatchSyntaxError]:
    """Read the ordered rule list; a missing file means no rules."""
    if not path.is_file():
        return Ok([])

    source = path.name
    try:
        raw = cfn_yaml.load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        return Err(PatchSyntaxError(source=source, message=f"invalid YAML: {e}"))
    except OSError as e:
        return Err(PatchSyntaxError(source=source, message=f"cannot read: {e}"))

    if raw is None:
        return Ok([])
    items = as_obj_list(raw)
    if items is None:
        return Err(PatchSyntaxError(source=source, message="document must be a list of rules"))

    rules: list[PatchRule] = []
    for index, item in enumerate(items):
        parsed = _parse_rule(item, index, source)
        if isinstance(parsed, Err):
            return parsed
        rules.append(parsed.value)
    return Ok(rules)
