"""YAML codec for CloudFormation documents.

Hand-written fragments use the short-form intrinsic tags (``!Ref``,
``!GetAtt``, ``!Sub``...), which ``yaml.safe_load`` rejects. ``CfnLoader``
expands them to their long form so the rest of the pipeline only ever sees
plain mappings. Output is always long form.
"""

from __future__ import annotations

import yaml

__all__ = ["CfnLoader", "CfnDumper", "load", "dump"]

# Tags whose long form is not "Fn::<Tag>".
_UNPREFIXED_TAGS = {"Ref", "Condition"}


class CfnLoader(yaml.SafeLoader):
    """SafeLoader that understands CloudFormation short-form tags."""


def _construct_intrinsic(loader: CfnLoader, tag_suffix: str, node: yaml.Node) -> dict[str, object]:
    value: object
    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    elif isinstance(node, yaml.MappingNode):
        value = loader.construct_mapping(node, deep=True)
    else:  # pragma: no cover
        raise yaml.constructor.ConstructorError(
            None, None, f"unsupported node for !{tag_suffix}", node.start_mark
        )

    if tag_suffix in _UNPREFIXED_TAGS:
        return {tag_suffix: value}

    if tag_suffix == "GetAtt" and isinstance(value, str):
        resource, _, attribute = value.partition(".")
        return {"Fn::GetAtt": [resource, attribute]}

    return {f"Fn::{tag_suffix}": value}


CfnLoader.add_multi_constructor("!", _construct_intrinsic)


class CfnDumper(yaml.SafeDumper):
    """Block-style dumper that never emits anchors."""

    def ignore_aliases(self, data: object) -> bool:
        return True


def _represent_str(dumper: CfnDumper, data: str) -> yaml.ScalarNode:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


CfnDumper.add_representer(str, _represent_str)


def load(text: str) -> object:
    """Parse one YAML document.

    Raises:
        yaml.YAMLError: On invalid YAML.
    """
    return yaml.load(text, Loader=CfnLoader)  # noqa: S506 - CfnLoader derives from SafeLoader


def dump(data: object) -> str:
    return yaml.dump(
        data,
        Dumper=CfnDumper,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=120,
    )
