"""Generic template tree.

Templates are modelled as a closed sum type over three node kinds so the
patch, merge and diff walks can match on every case exhaustively:

    Node = MapNode | ListNode | ScalarNode

Nodes are immutable. Every "update" helper returns a new node and shares the
untouched children with the original, which keeps each pipeline stage a pure
function over its input template.
"""

from __future__ import annotations

import datetime
from collections.abc import Iterator, Mapping
from dataclasses import dataclass

__all__ = [
    "Node",
    "MapNode",
    "ListNode",
    "ScalarNode",
    "ScalarValue",
    "from_plain",
    "to_plain",
]

ScalarValue = str | int | float | bool | None


@dataclass(frozen=True, slots=True, eq=False)
class MapNode:
    """String-keyed mapping. Key order is kept for output but ignored by ``==``."""

    entries: tuple[tuple[str, Node], ...] = ()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MapNode):
            return NotImplemented
        return dict(self.entries) == dict(other.entries)

    __hash__ = None  # type: ignore[assignment]

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: object) -> bool:
        return any(k == key for k, _ in self.entries)

    def __iter__(self) -> Iterator[str]:
        return (k for k, _ in self.entries)

    def keys(self) -> list[str]:
        return [k for k, _ in self.entries]

    def items(self) -> tuple[tuple[str, Node], ...]:
        return self.entries

    def get(self, key: str) -> Node | None:
        for k, v in self.entries:
            if k == key:
                return v
        return None

    def get_map(self, key: str) -> MapNode:
        """Child map, or an empty map when absent or not a map."""
        value = self.get(key)
        return value if isinstance(value, MapNode) else MapNode()

    def with_entry(self, key: str, value: Node) -> MapNode:
        """Set ``key``; an existing key keeps its position."""
        if key in self:
            return MapNode(tuple((k, value if k == key else v) for k, v in self.entries))
        return MapNode((*self.entries, (key, value)))

    def without(self, key: str) -> MapNode:
        return MapNode(tuple((k, v) for k, v in self.entries if k != key))


@dataclass(frozen=True, slots=True)
class ListNode:
    items: tuple[Node, ...] = ()

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.items)

    def get(self, index: int) -> Node | None:
        if 0 <= index < len(self.items):
            return self.items[index]
        return None

    def with_item(self, index: int, value: Node) -> ListNode:
        items = list(self.items)
        items[index] = value
        return ListNode(tuple(items))

    def inserted(self, index: int, value: Node) -> ListNode:
        items = list(self.items)
        items.insert(index, value)
        return ListNode(tuple(items))

    def appended(self, value: Node) -> ListNode:
        return ListNode((*self.items, value))

    def without(self, index: int) -> ListNode:
        return ListNode(self.items[:index] + self.items[index + 1 :])


@dataclass(frozen=True, slots=True, eq=False)
class ScalarNode:
    value: ScalarValue = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ScalarNode):
            return NotImplemented
        # True == 1 in Python, but not in a template.
        if isinstance(self.value, bool) or isinstance(other.value, bool):
            return type(self.value) is type(other.value) and self.value == other.value
        return self.value == other.value

    __hash__ = None  # type: ignore[assignment]


Node = MapNode | ListNode | ScalarNode


def from_plain(obj: object) -> Node:
    """Convert parsed YAML/JSON data into a tree.

    Raises:
        TypeError: If obj contains a value that has no template representation.
    """
    match obj:
        case MapNode() | ListNode() | ScalarNode():
            return obj
        case Mapping():
            return MapNode(tuple((str(k), from_plain(v)) for k, v in obj.items()))
        case list() | tuple():
            return ListNode(tuple(from_plain(v) for v in obj))
        case datetime.date():
            # YAML turns an unquoted 2010-09-09 into a date.
            return ScalarNode(obj.isoformat())
        case str() | bool() | int() | float() | None:
            return ScalarNode(obj)
    raise TypeError(f"unsupported template value: {type(obj).__name__}")


def to_plain(node: Node) -> object:
    match node:
        case MapNode(entries=entries):
            return {k: to_plain(v) for k, v in entries}
        case ListNode(items=items):
            return [to_plain(v) for v in items]
        case ScalarNode(value=value):
            return value
