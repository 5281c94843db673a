"""Addon bundling.

Addons are user-authored CloudFormation fragments that live next to a
workload (``<workload>/addons/*.yml``). They are merged into one template
that the composer embeds as a nested stack. Every fragment must accept the
reserved ``App``/``Env``/``Name`` parameters, and fragments may not share
logical ids.

The outputs of the merged template are classified so the composer can wire
them into the workload:

- managed-policy outputs (``*PolicyArn``, or a ``Ref`` to an
  ``AWS::IAM::ManagedPolicy``) extend the execution role,
- secret outputs (a ``Ref`` to an ``AWS::SecretsManager::Secret``) become
  container secrets,
- every other output becomes an environment variable.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from shipstack.core.result import Err, Ok, Result
from shipstack.core.structured import as_str_dict, get_table
from shipstack.template import cfn_yaml
from shipstack.template.document import StackTemplate, TemplateParseError, load_template
from shipstack.template.tree import ListNode, MapNode, Node, ScalarNode, from_plain

__all__ = [
    "AddonFragment",
    "AddonBundle",
    "AddonError",
    "SchemaError",
    "CollisionError",
    "RESERVED_PARAMETERS",
    "PARAMETERS_FILE",
    "bundle",
    "empty_bundle",
    "discover_fragments",
    "load_parameter_values",
    "to_upper_snake",
]

RESERVED_PARAMETERS = ("App", "Env", "Name")
RESERVED_PARAMETER_TYPE = "String"
PARAMETERS_FILE = "addons.parameters.yml"

_POLICY_OUTPUT_SUFFIX = "PolicyArn"
_MANAGED_POLICY_TYPE = "AWS::IAM::ManagedPolicy"
_SECRET_TYPE = "AWS::SecretsManager::Secret"

# Sections where a logical id may be defined by one fragment only.
_DISJOINT_SECTIONS = ("Mappings", "Conditions", "Resources", "Outputs")


@dataclass(frozen=True, slots=True)
class AddonFragment:
    name: str
    template: StackTemplate


@dataclass(frozen=True, slots=True)
class SchemaError:
    """A fragment (or the parameters file) violates the addon contract."""

    fragment: str
    message: str


@dataclass(frozen=True, slots=True)
class CollisionError:
    """Two fragments define the same logical id."""

    section: str
    logical_id: str
    first: str
    second: str

    @property
    def message(self) -> str:
        return (
            f"{self.section} logical id '{self.logical_id}' is defined in both "
            f"{self.first} and {self.second}"
        )


AddonError = SchemaError | CollisionError | TemplateParseError


@dataclass(frozen=True, slots=True)
class AddonBundle:
    """Merged addon fragments plus the output wiring the composer needs."""

    template: StackTemplate
    fragments: tuple[str, ...] = ()
    sources: Mapping[str, str] = field(default_factory=dict)
    extra_parameters: Mapping[str, str] = field(default_factory=dict)
    parameter_values: Mapping[str, object] = field(default_factory=dict)
    policy_outputs: tuple[str, ...] = ()
    secret_outputs: tuple[str, ...] = ()
    variable_outputs: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.fragments


def empty_bundle() -> AddonBundle:
    return AddonBundle(template=StackTemplate.empty())


def to_upper_snake(name: str) -> str:
    """``TableName`` -> ``TABLE_NAME``, ``DDBTableName`` -> ``DDB_TABLE_NAME``."""
    s = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    s = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s)
    return s.replace("-", "_").upper()


# -----------------------------------------------------------------------------
# Bundling
# -----------------------------------------------------------------------------


def _scalar_str(node: Node | None) -> str | None:
    if isinstance(node, ScalarNode) and isinstance(node.value, str):
        return node.value
    return None


def _validate_reserved(fragment: AddonFragment) -> SchemaError | None:
    params = fragment.template.parameters
    for name in RESERVED_PARAMETERS:
        declared = params.get(name)
        if declared is None:
            return SchemaError(
                fragment=fragment.name,
                message=f"missing required parameter '{name}'",
            )
        if not isinstance(declared, MapNode):
            return SchemaError(
                fragment=fragment.name,
                message=f"parameter '{name}' must be a mapping with a Type",
            )
        declared_type = _scalar_str(declared.get("Type"))
        if declared_type != RESERVED_PARAMETER_TYPE:
            return SchemaError(
                fragment=fragment.name,
                message=(
                    f"parameter '{name}' must have Type {RESERVED_PARAMETER_TYPE}, "
                    f"got {declared_type or 'nothing'}"
                ),
            )
    return None


def _merge_transform(current: Node | None, incoming: Node | None) -> Node | None:
    if incoming is None:
        return current
    new_items = list(incoming.items) if isinstance(incoming, ListNode) else [incoming]
    if isinstance(current, ListNode):
        existing = list(current.items)
    else:
        existing = [] if current is None else [current]
    for item in new_items:
        if item not in existing:
            existing.append(item)
    return ListNode(tuple(existing))


def _ref_target(output: Node) -> str | None:
    if not isinstance(output, MapNode):
        return None
    value = output.get("Value")
    if not isinstance(value, MapNode) or len(value) != 1:
        return None
    return _scalar_str(value.get("Ref"))


def _classify_outputs(
    template: StackTemplate,
) -> tuple[tuple[str, ...], tuple[str, ...], tuple[str, ...]]:
    policies: list[str] = []
    secrets: list[str] = []
    variables: list[str] = []
    for name, output in template.outputs.items():
        target = _ref_target(output)
        target_type = template.resource_type(target) if target else None
        if name.endswith(_POLICY_OUTPUT_SUFFIX) or target_type == _MANAGED_POLICY_TYPE:
            policies.append(name)
        elif target_type == _SECRET_TYPE:
            secrets.append(name)
        else:
            variables.append(name)
    return tuple(sorted(policies)), tuple(sorted(secrets)), tuple(sorted(variables))


def _check_parameter_values(
    extras: Mapping[str, Node],
    owners: Mapping[str, str],
    values: Mapping[str, object],
) -> SchemaError | None:
    for name in values:
        if name in RESERVED_PARAMETERS:
            return SchemaError(
                fragment=PARAMETERS_FILE,
                message=f"reserved parameter '{name}' is set automatically and cannot be overridden",
            )
        if name not in extras:
            return SchemaError(
                fragment=PARAMETERS_FILE,
                message=f"parameter '{name}' is not declared by any addon",
            )
    for name, declared in extras.items():
        has_default = isinstance(declared, MapNode) and "Default" in declared
        if name not in values and not has_default:
            return SchemaError(
                fragment=owners[name],
                message=f"parameter '{name}' has no Default and no value in {PARAMETERS_FILE}",
            )
    return None


def bundle(
    fragments: Sequence[AddonFragment],
    *,
    parameter_values: Mapping[str, object] | None = None,
) -> Result[AddonBundle, AddonError]:
    """Merge addon fragments into one nested-stack template.

    Pure function: the result only depends on the fragments and values.
    """
    values = dict(parameter_values or {})
    if not fragments:
        if values:
            return Err(
                SchemaError(fragment=PARAMETERS_FILE, message="parameter values given without addons")
            )
        return Ok(empty_bundle())

    for fragment in fragments:
        invalid = _validate_reserved(fragment)
        if invalid is not None:
            return Err(invalid)

    sections: dict[str, MapNode] = {name: MapNode() for name in _DISJOINT_SECTIONS}
    owners: dict[tuple[str, str], str] = {}
    extras: dict[str, Node] = {}
    extra_types: dict[str, str] = {}
    extra_owners: dict[str, str] = {}
    metadata = MapNode()
    metadata_owners: dict[str, str] = {}
    transform: Node | None = None

    for fragment in fragments:
        tpl = fragment.template

        for name, declared in tpl.parameters.items():
            if name in RESERVED_PARAMETERS:
                continue
            declared_type = (
                _scalar_str(declared.get("Type")) if isinstance(declared, MapNode) else None
            ) or ""
            if name in extra_types:
                if extra_types[name] != declared_type:
                    return Err(
                        CollisionError(
                            section="Parameters",
                            logical_id=name,
                            first=extra_owners[name],
                            second=fragment.name,
                        )
                    )
                continue
            extras[name] = declared
            extra_types[name] = declared_type
            extra_owners[name] = fragment.name

        for section in _DISJOINT_SECTIONS:
            merged = sections[section]
            for logical_id, value in tpl.section(section).items():
                key = (section, logical_id)
                if key in owners:
                    return Err(
                        CollisionError(
                            section=section,
                            logical_id=logical_id,
                            first=owners[key],
                            second=fragment.name,
                        )
                    )
                owners[key] = fragment.name
                merged = merged.with_entry(logical_id, value)
            sections[section] = merged

        for key, value in tpl.section("Metadata").items():
            existing = metadata.get(key)
            if existing is not None and existing != value:
                return Err(
                    CollisionError(
                        section="Metadata",
                        logical_id=key,
                        first=metadata_owners[key],
                        second=fragment.name,
                    )
                )
            if existing is None:
                metadata = metadata.with_entry(key, value)
                metadata_owners[key] = fragment.name

        transform = _merge_transform(transform, tpl.root.get("Transform"))

    invalid = _check_parameter_values(extras, extra_owners, values)
    if invalid is not None:
        return Err(invalid)

    parameters = MapNode(
        tuple((name, from_plain({"Type": RESERVED_PARAMETER_TYPE})) for name in RESERVED_PARAMETERS)
    )
    for name, declared in extras.items():
        parameters = parameters.with_entry(name, declared)

    root = MapNode().with_entry("AWSTemplateFormatVersion", ScalarNode("2010-09-09"))
    if len(metadata):
        root = root.with_entry("Metadata", metadata)
    if transform is not None:
        root = root.with_entry("Transform", transform)
    root = root.with_entry("Parameters", parameters)
    for section in _DISJOINT_SECTIONS:
        if len(sections[section]):
            root = root.with_entry(section, sections[section])

    template = StackTemplate(root)
    policies, secrets, variables = _classify_outputs(template)
    return Ok(
        AddonBundle(
            template=template,
            fragments=tuple(f.name for f in fragments),
            sources={lid: owner for (section, lid), owner in owners.items() if section == "Resources"},
            extra_parameters=dict(extra_types),
            parameter_values=values,
            policy_outputs=policies,
            secret_outputs=secrets,
            variable_outputs=variables,
        )
    )


# -----------------------------------------------------------------------------
# Discovery
# -----------------------------------------------------------------------------


def discover_fragments(addons_dir: Path) -> Result[list[AddonFragment], AddonError]:
    """Read every fragment under the addons directory, in file name order."""
    if not addons_dir.is_dir():
        return Ok([])

    paths = sorted(
        p
        for p in addons_dir.iterdir()
        if p.is_file() and p.suffix in {".yml", ".yaml"} and p.name != PARAMETERS_FILE
    )

    fragments: list[AddonFragment] = []
    for path in paths:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            return Err(TemplateParseError(source=path.name, message=f"cannot read: {e}"))
        loaded = load_template(text, source=path.name)
        if isinstance(loaded, Err):
            return loaded
        fragments.append(AddonFragment(name=path.name, template=loaded.value))
    return Ok(fragments)


def load_parameter_values(addons_dir: Path) -> Result[dict[str, object], AddonError]:
    """Read ``addons.parameters.yml``; a missing file means no values."""
    path = addons_dir / PARAMETERS_FILE
    if not path.is_file():
        return Ok({})

    try:
        raw = cfn_yaml.load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        return Err(TemplateParseError(source=PARAMETERS_FILE, message=f"invalid YAML: {e}"))
    except OSError as e:
        return Err(TemplateParseError(source=PARAMETERS_FILE, message=f"cannot read: {e}"))

    data = as_str_dict(raw)
    if data is None:
        return Err(SchemaError(fragment=PARAMETERS_FILE, message="root must be a mapping"))
    params = get_table(data, "Parameters")
    if params is None:
        return Err(SchemaError(fragment=PARAMETERS_FILE, message="missing 'Parameters' mapping"))
    return Ok(dict(params))
