"""Tests for shipstack.services.aws.cloudformation module."""

from __future__ import annotations

import json
from typing import Any

import pytest
from botocore.exceptions import ClientError

from shipstack.services.assets import ObjectLocator
from shipstack.services.aws.cloudformation import CAPABILITIES, CloudFormationControlPlane
from shipstack.services.release import ControlPlaneFailure, OperationHandle, StackStatus
from shipstack.template.document import StackTemplate
from shipstack.template.tree import MapNode, ScalarNode

TEMPLATE_YAML = "Resources:\n  Q:\n    Type: AWS::SQS::Queue\n"


def _client_error(message: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "ValidationError", "Message": message}}, operation)


class FakeCfnClient:
    def __init__(self) -> None:
        self.stacks: dict[str, dict[str, Any]] = {}
        self.bodies: dict[str, object] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.update_error: ClientError | None = None

    def describe_stacks(self, *, StackName: str) -> dict[str, Any]:
        for stack in self.stacks.values():
            if StackName in (stack["StackName"], stack["StackId"]):
                return {"Stacks": [stack]}
        raise _client_error(f"Stack with id {StackName} does not exist", "DescribeStacks")

    def get_template(self, *, StackName: str, TemplateStage: str) -> dict[str, Any]:
        return {"TemplateBody": self.bodies[StackName]}

    def create_stack(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("create_stack", kwargs))
        return {"StackId": f"arn:stack/{kwargs['StackName']}/1"}

    def update_stack(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("update_stack", kwargs))
        if self.update_error is not None:
            raise self.update_error
        return {"StackId": self.stacks[kwargs["StackName"]]["StackId"]}

    def delete_stack(self, *, StackName: str) -> dict[str, Any]:
        self.calls.append(("delete_stack", {"StackName": StackName}))
        return {}


class FakeStore:
    def __init__(self) -> None:
        self.keys: list[str] = []

    def put_object_if_absent(self, key: str, data: bytes) -> ObjectLocator:
        self.keys.append(key)
        return ObjectLocator("artifacts", key)


def _add_stack(client: FakeCfnClient, name: str, status: str, body: object = TEMPLATE_YAML) -> None:
    client.stacks[name] = {
        "StackName": name,
        "StackId": f"arn:stack/{name}/1",
        "StackStatus": status,
        "StackStatusReason": "because",
    }
    client.bodies[name] = body


def _template() -> StackTemplate:
    return StackTemplate.from_plain({"Resources": {"Q": {"Type": "AWS::SQS::Queue"}}})


class TestDescribe:
    def test_missing_stack(self) -> None:
        cp = CloudFormationControlPlane(client=FakeCfnClient())
        deployed = cp.describe_stack("nope")
        assert not deployed.exists
        assert deployed.status == StackStatus.NOT_CREATED

    def test_yaml_body(self) -> None:
        client = FakeCfnClient()
        _add_stack(client, "s", "UPDATE_COMPLETE")

        deployed = CloudFormationControlPlane(client=client).describe_stack("s")

        assert deployed.status == StackStatus.UPDATE_COMPLETE
        assert deployed.template == _template()
        assert deployed.status_reason == "because"

    def test_json_body_is_already_decoded(self) -> None:
        client = FakeCfnClient()
        body = json.loads('{"Resources": {"Q": {"Type": "AWS::SQS::Queue"}}}')
        _add_stack(client, "s", "CREATE_COMPLETE", body=body)

        deployed = CloudFormationControlPlane(client=client).describe_stack("s")

        assert deployed.template == _template()

    def test_unknown_status(self) -> None:
        client = FakeCfnClient()
        _add_stack(client, "s", "SOMETHING_NEW")

        with pytest.raises(ControlPlaneFailure, match="SOMETHING_NEW"):
            CloudFormationControlPlane(client=client).describe_stack("s")


class TestOperations:
    def test_create_passes_rollback_parameters_and_tags(self) -> None:
        client = FakeCfnClient()
        cp = CloudFormationControlPlane(client=client)

        handle = cp.create_stack(
            "s",
            _template(),
            {"B": "2", "A": "1"},
            rollback="disabled",
            tags={"team": "x"},
        )

        assert handle == OperationHandle(
            stack_name="s", kind="create", operation_id="arn:stack/s/1"
        )
        op, args = client.calls[0]
        assert op == "create_stack"
        assert args["DisableRollback"] is True
        assert args["Parameters"] == [
            {"ParameterKey": "A", "ParameterValue": "1"},
            {"ParameterKey": "B", "ParameterValue": "2"},
        ]
        assert args["Tags"] == [{"Key": "team", "Value": "x"}]
        assert args["Capabilities"] == list(CAPABILITIES)
        assert "Type: AWS::SQS::Queue" in args["TemplateBody"]

    def test_no_op_update(self) -> None:
        client = FakeCfnClient()
        _add_stack(client, "s", "UPDATE_COMPLETE")
        client.update_error = _client_error("No updates are to be performed.", "UpdateStack")

        handle = CloudFormationControlPlane(client=client).update_stack(
            "s", _template(), {}, rollback="auto", tags={}
        )

        assert handle.no_changes

    def test_rejected_update(self) -> None:
        client = FakeCfnClient()
        _add_stack(client, "s", "UPDATE_COMPLETE")
        client.update_error = _client_error("Template format error", "UpdateStack")

        with pytest.raises(ControlPlaneFailure, match="Template format error"):
            CloudFormationControlPlane(client=client).update_stack(
                "s", _template(), {}, rollback="auto", tags={}
            )

    def test_large_template_goes_through_the_store(self) -> None:
        client = FakeCfnClient()
        store = FakeStore()
        cp = CloudFormationControlPlane(client=client, region="eu-west-1", template_store=store)
        big = _template().with_section(
            "Metadata", MapNode((("Blob", ScalarNode("x" * 60_000)),))
        )

        cp.create_stack("s", big, {}, rollback="auto", tags={})

        _, args = client.calls[0]
        assert "TemplateBody" not in args
        url = args["TemplateURL"]
        assert url.startswith("https://artifacts.s3.eu-west-1.amazonaws.com/manual/templates/")
        assert store.keys[0].endswith(".yml")

    def test_poll_and_delete(self) -> None:
        client = FakeCfnClient()
        _add_stack(client, "s", "DELETE_IN_PROGRESS")
        cp = CloudFormationControlPlane(client=client)

        handle = cp.delete_stack("s")
        assert handle.operation_id == "arn:stack/s/1"
        assert cp.poll_operation(handle).status == StackStatus.DELETE_IN_PROGRESS

        del client.stacks["s"]
        assert cp.poll_operation(handle).status == StackStatus.DELETE_COMPLETE

    def test_vanished_stack_during_update(self) -> None:
        cp = CloudFormationControlPlane(client=FakeCfnClient())

        with pytest.raises(ControlPlaneFailure, match="disappeared"):
            cp.poll_operation(OperationHandle(stack_name="s", kind="update"))


def test_client_setup_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    import boto3
    from botocore.exceptions import NoRegionError

    def no_region(**_kwargs: object) -> object:
        raise NoRegionError()

    monkeypatch.setattr(boto3, "client", no_region)

    with pytest.raises(ControlPlaneFailure, match="You must specify a region"):
        CloudFormationControlPlane()
