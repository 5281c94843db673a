"""StackTemplate: an immutable CloudFormation-shaped document."""

from __future__ import annotations

from dataclasses import dataclass, field

import yaml

from shipstack.core.result import Err, Ok, Result
from shipstack.core.structured import as_str_dict

from . import cfn_yaml
from .tree import MapNode, Node, ScalarNode, from_plain, to_plain

__all__ = [
    "StackTemplate",
    "TemplateParseError",
    "SECTION_ORDER",
    "MERGEABLE_SECTIONS",
    "load_template",
]

# Serialization order of top-level keys; unknown keys follow in input order.
SECTION_ORDER = (
    "AWSTemplateFormatVersion",
    "Description",
    "Metadata",
    "Transform",
    "Parameters",
    "Mappings",
    "Conditions",
    "Resources",
    "Outputs",
)

# Sections keyed by logical id.
MERGEABLE_SECTIONS = ("Parameters", "Mappings", "Conditions", "Resources", "Outputs")


@dataclass(frozen=True, slots=True)
class TemplateParseError:
    source: str
    message: str


@dataclass(frozen=True, slots=True)
class StackTemplate:
    """A stack template. Never mutated; ``with_*`` helpers return copies."""

    root: MapNode = field(default_factory=MapNode)

    @classmethod
    def empty(cls) -> StackTemplate:
        return cls(MapNode())

    @classmethod
    def from_plain(cls, data: object) -> StackTemplate:
        """Raises TypeError if data is not a mapping."""
        node = from_plain(data)
        if not isinstance(node, MapNode):
            raise TypeError("template root must be a mapping")
        return cls(node)

    def to_plain(self) -> dict[str, object]:
        ordered: dict[str, object] = {}
        for key in SECTION_ORDER:
            value = self.root.get(key)
            if value is not None:
                ordered[key] = to_plain(value)
        for key, value in self.root.items():
            if key not in ordered:
                ordered[key] = to_plain(value)
        return ordered

    def dump_yaml(self) -> str:
        return cfn_yaml.dump(self.to_plain())

    def section(self, name: str) -> MapNode:
        """A keyed section, empty when absent."""
        return self.root.get_map(name)

    @property
    def parameters(self) -> MapNode:
        return self.section("Parameters")

    @property
    def resources(self) -> MapNode:
        return self.section("Resources")

    @property
    def outputs(self) -> MapNode:
        return self.section("Outputs")

    @property
    def is_empty(self) -> bool:
        return all(len(self.section(name)) == 0 for name in MERGEABLE_SECTIONS)

    def with_section(self, name: str, node: Node) -> StackTemplate:
        return StackTemplate(self.root.with_entry(name, node))

    def resource_type(self, logical_id: str) -> str | None:
        node = self.resources.get_map(logical_id).get("Type")
        if isinstance(node, ScalarNode) and isinstance(node.value, str):
            return node.value
        return None


def load_template(text: str, *, source: str) -> Result[StackTemplate, TemplateParseError]:
    """Parse YAML (short-form tags allowed) into a StackTemplate."""
    try:
        raw = cfn_yaml.load(text)
    except yaml.YAMLError as e:
        return Err(TemplateParseError(source=source, message=f"invalid YAML: {e}"))

    if raw is None:
        return Ok(StackTemplate.empty())

    data = as_str_dict(raw)
    if data is None:
        return Err(TemplateParseError(source=source, message="template root must be a mapping"))

    try:
        return Ok(StackTemplate.from_plain(data))
    except TypeError as e:
        return Err(TemplateParseError(source=source, message=str(e)))
