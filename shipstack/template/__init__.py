"""Template tree model and YAML codec."""

from .document import StackTemplate, TemplateParseError, load_template
from .tree import ListNode, MapNode, Node, ScalarNode, from_plain, to_plain

__all__ = [
    "StackTemplate",
    "TemplateParseError",
    "load_template",
    "ListNode",
    "MapNode",
    "Node",
    "ScalarNode",
    "from_plain",
    "to_plain",
]
