"""Tests for shipstack.template.cfn_yaml module."""

from __future__ import annotations

import pytest
import yaml

from shipstack.template import cfn_yaml


class TestLoad:
    def test_short_form_tags_expand(self) -> None:
        text = """\
A: !Ref Bucket
B: !GetAtt Queue.Arn
C: !Sub "${AWS::StackName}-x"
D: !Join [",", [a, b]]
E: !If [IsProd, 1, 2]
F: !Condition IsProd
G: !GetAtt [Stack, Outputs.Name]
"""
        assert cfn_yaml.load(text) == {
            "A": {"Ref": "Bucket"},
            "B": {"Fn::GetAtt": ["Queue", "Arn"]},
            "C": {"Fn::Sub": "${AWS::StackName}-x"},
            "D": {"Fn::Join": [",", ["a", "b"]]},
            "E": {"Fn::If": ["IsProd", 1, 2]},
            "F": {"Condition": "IsProd"},
            "G": {"Fn::GetAtt": ["Stack", "Outputs.Name"]},
        }

    def test_nested_short_forms(self) -> None:
        assert cfn_yaml.load("X: !Sub [\"${A}\", {A: !Ref B}]\n") == {
            "X": {"Fn::Sub": ["${A}", {"A": {"Ref": "B"}}]}
        }

    def test_rejects_python_tags(self) -> None:
        with pytest.raises(yaml.YAMLError):
            cfn_yaml.load("x: !!python/object:os.system {}\n")


class TestDump:
    def test_block_style_and_key_order(self) -> None:
        text = cfn_yaml.dump({"b": 1, "a": {"c": [1, 2]}})
        assert text == "b: 1\na:\n  c:\n  - 1\n  - 2\n"

    def test_multiline_strings_use_literal_style(self) -> None:
        text = cfn_yaml.dump({"Script": "line1\nline2\n"})
        assert text.startswith("Script: |")
        assert cfn_yaml.load(text) == {"Script": "line1\nline2\n"}

    def test_shared_values_are_not_aliased(self) -> None:
        shared = {"Ref": "X"}
        text = cfn_yaml.dump({"a": shared, "b": shared})
        assert "&" not in text
        assert "*" not in text
