"""Tests for shipstack.services.addons module."""

from __future__ import annotations

from pathlib import Path

import pytest

from shipstack.core.result import Err, Ok
from shipstack.services.addons import (
    AddonBundle,
    AddonFragment,
    CollisionError,
    SchemaError,
    bundle,
    discover_fragments,
    load_parameter_values,
    to_upper_snake,
)
from shipstack.template.document import StackTemplate, TemplateParseError, load_template
from shipstack.template.tree import ScalarNode

RESERVED = """\
Parameters:
  App: {Type: String}
  Env: {Type: String}
  Name: {Type: String}
"""

TABLE = RESERVED + """\
Resources:
  OrdersTable:
    Type: AWS::DynamoDB::Table
    Properties:
      TableName: !Sub "${App}-${Env}-orders"
  OrdersAccessPolicy:
    Type: AWS::IAM::ManagedPolicy
    Properties:
      PolicyDocument: {}
Outputs:
  OrdersTableName:
    Value: !Ref OrdersTable
  OrdersAccessPolicyArn:
    Value: !Ref OrdersAccessPolicy
"""

SECRET = RESERVED + """\
  RotationDays:
    Type: Number
Resources:
  ApiKey:
    Type: AWS::SecretsManager::Secret
  ReadOnlyPolicy:
    Type: AWS::IAM::ManagedPolicy
Outputs:
  ApiKeySecret:
    Value: !Ref ApiKey
  ReadOnly:
    Value: !Ref ReadOnlyPolicy
"""


def _fragment(name: str, text: str) -> AddonFragment:
    loaded = load_template(text, source=name)
    assert isinstance(loaded, Ok)
    return AddonFragment(name=name, template=loaded.value)


def _bundle(*fragments: AddonFragment, **values: object) -> AddonBundle:
    result = bundle(list(fragments), parameter_values=values)
    assert isinstance(result, Ok), result
    return result.value


class TestBundle:
    def test_no_fragments_is_empty(self) -> None:
        result = bundle([])
        assert isinstance(result, Ok)
        assert result.value.is_empty
        assert result.value.template == StackTemplate.empty()

    def test_merges_disjoint_fragments(self) -> None:
        merged = _bundle(_fragment("a.yml", TABLE), _fragment("b.yml", SECRET), RotationDays=30)

        resources = merged.template.resources
        assert set(resources) == {"OrdersTable", "OrdersAccessPolicy", "ApiKey", "ReadOnlyPolicy"}
        assert merged.fragments == ("a.yml", "b.yml")
        assert merged.sources["ApiKey"] == "b.yml"
        assert list(merged.template.parameters)[:3] == ["App", "Env", "Name"]
        assert merged.extra_parameters == {"RotationDays": "Number"}
        assert merged.parameter_values == {"RotationDays": 30}

    def test_classifies_outputs(self) -> None:
        merged = _bundle(_fragment("a.yml", TABLE), _fragment("b.yml", SECRET), RotationDays=30)

        assert merged.policy_outputs == ("OrdersAccessPolicyArn", "ReadOnly")
        assert merged.secret_outputs == ("ApiKeySecret",)
        assert merged.variable_outputs == ("OrdersTableName",)

    def test_is_deterministic(self) -> None:
        fragments = [_fragment("a.yml", TABLE), _fragment("b.yml", SECRET)]
        first = bundle(fragments, parameter_values={"RotationDays": 7})
        second = bundle(fragments, parameter_values={"RotationDays": 7})

        assert isinstance(first, Ok) and isinstance(second, Ok)
        assert first.value.template.dump_yaml() == second.value.template.dump_yaml()

    def test_fragment_order_does_not_change_the_merge(self) -> None:
        table, secret = _fragment("a.yml", TABLE), _fragment("b.yml", SECRET)
        forward = _bundle(table, secret, RotationDays=30)
        backward = _bundle(secret, table, RotationDays=30)

        assert forward.template.resources == backward.template.resources
        assert forward.template.outputs == backward.template.outputs
        assert set(forward.policy_outputs) == set(backward.policy_outputs)
        assert set(forward.secret_outputs) == set(backward.secret_outputs)
        assert set(forward.variable_outputs) == set(backward.variable_outputs)
        assert forward.sources == backward.sources

    def test_collision_regardless_of_order(self) -> None:
        table, other = _fragment("a.yml", TABLE), _fragment("b.yml", TABLE)

        for fragments in ([table, other], [other, table]):
            result = bundle(fragments)
            assert isinstance(result, Err)
            assert isinstance(result.error, CollisionError)

    @pytest.mark.parametrize(
        ("text", "needle"),
        [
            ("Parameters:\n  App: {Type: String}\n  Env: {Type: String}\n", "'Name'"),
            (RESERVED.replace("Name: {Type: String}", "Name: {Type: Number}"), "Type String"),
            ("Resources: {}\n", "'App'"),
        ],
    )
    def test_reserved_parameters_are_required(self, text: str, needle: str) -> None:
        result = bundle([_fragment("bad.yml", text)])

        assert isinstance(result, Err)
        assert isinstance(result.error, SchemaError)
        assert result.error.fragment == "bad.yml"
        assert needle in result.error.message

    def test_logical_id_collision(self) -> None:
        result = bundle([_fragment("a.yml", TABLE), _fragment("b.yml", TABLE)])

        assert isinstance(result, Err)
        error = result.error
        assert isinstance(error, CollisionError)
        assert (error.section, error.first, error.second) == ("Resources", "a.yml", "b.yml")
        assert "a.yml" in error.message and "b.yml" in error.message

    def test_parameter_type_conflict(self) -> None:
        other = RESERVED + "  RotationDays:\n    Type: String\n    Default: x\n"
        result = bundle(
            [_fragment("a.yml", SECRET), _fragment("b.yml", other)],
            parameter_values={"RotationDays": 1},
        )

        assert isinstance(result, Err)
        assert isinstance(result.error, CollisionError)
        assert result.error.section == "Parameters"

    def test_shared_parameter_with_same_type_is_merged(self) -> None:
        other = RESERVED + "  RotationDays:\n    Type: Number\n"
        merged = _bundle(_fragment("a.yml", SECRET), _fragment("b.yml", other), RotationDays=1)
        assert merged.extra_parameters == {"RotationDays": "Number"}

    def test_missing_value_without_default(self) -> None:
        result = bundle([_fragment("b.yml", SECRET)])

        assert isinstance(result, Err)
        assert isinstance(result.error, SchemaError)
        assert "RotationDays" in result.error.message

    def test_undeclared_value(self) -> None:
        result = bundle([_fragment("a.yml", TABLE)], parameter_values={"Bogus": 1})
        assert isinstance(result, Err)
        assert "not declared" in result.error.message  # type: ignore[union-attr]

    def test_reserved_value_cannot_be_overridden(self) -> None:
        result = bundle([_fragment("a.yml", TABLE)], parameter_values={"Env": "prod"})
        assert isinstance(result, Err)
        assert "reserved" in result.error.message  # type: ignore[union-attr]

    def test_transform_and_metadata_are_unioned(self) -> None:
        a = "Transform: AWS::Serverless-2016-10-31\nMetadata:\n  Owner: team\n" + TABLE
        b = "Transform: [AWS::Serverless-2016-10-31]\nMetadata:\n  Owner: team\n" + SECRET
        merged = _bundle(_fragment("a.yml", a), _fragment("b.yml", b), RotationDays=1)

        assert merged.template.to_plain()["Transform"] == ["AWS::Serverless-2016-10-31"]
        assert merged.template.section("Metadata").get("Owner") == ScalarNode("team")

    def test_conflicting_metadata(self) -> None:
        a = "Metadata:\n  Owner: team-a\n" + TABLE
        b = "Metadata:\n  Owner: team-b\n" + SECRET
        result = bundle([_fragment("a.yml", a), _fragment("b.yml", b)], parameter_values={"RotationDays": 1})

        assert isinstance(result, Err)
        assert isinstance(result.error, CollisionError)
        assert result.error.section == "Metadata"


class TestDiscovery:
    def test_reads_yaml_files_in_name_order(self, tmp_path: Path) -> None:
        (tmp_path / "b.yaml").write_text(SECRET, encoding="utf-8")
        (tmp_path / "a.yml").write_text(TABLE, encoding="utf-8")
        (tmp_path / "addons.parameters.yml").write_text("Parameters: {}\n", encoding="utf-8")
        (tmp_path / "README.md").write_text("docs", encoding="utf-8")

        result = discover_fragments(tmp_path)

        assert isinstance(result, Ok)
        assert [f.name for f in result.value] == ["a.yml", "b.yaml"]

    def test_missing_dir_means_no_addons(self, tmp_path: Path) -> None:
        assert discover_fragments(tmp_path / "addons") == Ok([])

    def test_parse_error_names_the_file(self, tmp_path: Path) -> None:
        (tmp_path / "broken.yml").write_text("Resources: [\n", encoding="utf-8")

        result = discover_fragments(tmp_path)

        assert isinstance(result, Err)
        assert isinstance(result.error, TemplateParseError)
        assert result.error.source == "broken.yml"


class TestParameterValues:
    def test_loads_values(self, tmp_path: Path) -> None:
        (tmp_path / "addons.parameters.yml").write_text(
            "Parameters:\n  RotationDays: 30\n  Url: !Sub 'https://${Env}.example.com'\n",
            encoding="utf-8",
        )

        result = load_parameter_values(tmp_path)

        assert result == Ok(
            {"RotationDays": 30, "Url": {"Fn::Sub": "https://${Env}.example.com"}}
        )

    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_parameter_values(tmp_path) == Ok({})

    def test_requires_parameters_key(self, tmp_path: Path) -> None:
        (tmp_path / "addons.parameters.yml").write_text("Values: {}\n", encoding="utf-8")

        result = load_parameter_values(tmp_path)

        assert isinstance(result, Err)
        assert isinstance(result.error, SchemaError)


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("TableName", "TABLE_NAME"),
        ("DDBTableName", "DDB_TABLE_NAME"),
        ("queue-url", "QUEUE_URL"),
        ("Bucket2Arn", "BUCKET2_ARN"),
    ],
)
def test_to_upper_snake(name: str, expected: str) -> None:
    assert to_upper_snake(name) == expected
