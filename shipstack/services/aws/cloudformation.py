"""CloudFormation-backed control plane."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from shipstack.core.result import Err
from shipstack.services.assets import RemoteObjectStore, publish_bytes
from shipstack.services.release.control_plane import ControlPlaneFailure
from shipstack.services.release.model import (
    DeployedStack,
    OperationHandle,
    OperationStatus,
    RollbackPolicy,
    StackStatus,
)
from shipstack.template.document import StackTemplate, load_template

# Larger bodies must be passed by URL.
MAX_TEMPLATE_BODY_BYTES = 51_200

CAPABILITIES = ("CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND")

_TEMPLATE_KEY_PREFIX = "manual/templates"


def _error_message(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Message", e))


def _status(stack: Mapping[str, Any]) -> StackStatus:
    value = str(stack.get("StackStatus", ""))
    try:
        return StackStatus(value)
    except ValueError as e:
        raise ControlPlaneFailure(f"unknown stack status {value!r}") from e


def _is_missing_stack(e: ClientError) -> bool:
    return "does not exist" in _error_message(e)


def _is_no_op_update(e: ClientError) -> bool:
    return "No updates are to be performed" in _error_message(e)


class CloudFormationControlPlane:
    """``ControlPlane`` over the CloudFormation API.

    When a template body exceeds the API limit and ``template_store`` is
    given, the body is published there and passed by URL.
    """

    def __init__(
        self,
        *,
        region: str | None = None,
        client: Any = None,
        template_store: RemoteObjectStore | None = None,
    ) -> None:
        if client is None:
            client_kwargs: dict[str, Any] = {
                "service_name": "cloudformation",
                "config": Config(retries={"mode": "standard"}),
            }
            if region:
                client_kwargs["region_name"] = region
            try:
                client = boto3.client(**client_kwargs)
            except BotoCoreError as e:
                raise ControlPlaneFailure(f"cannot create CloudFormation client: {e}") from e
        self.client = client
        self.region = region
        self.template_store = template_store

    def _describe(self, stack_name: str) -> dict[str, Any] | None:
        try:
            response = self.client.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if _is_missing_stack(e):
                return None
            raise ControlPlaneFailure(_error_message(e)) from e
        except BotoCoreError as e:
            raise ControlPlaneFailure(str(e)) from e
        stacks = response.get("Stacks") or []
        return stacks[0] if stacks else None

    def _fetch_template(self, stack_name: str) -> StackTemplate:
        try:
            response = self.client.get_template(StackName=stack_name, TemplateStage="Original")
        except (ClientError, BotoCoreError) as e:
            raise ControlPlaneFailure(f"cannot fetch template of {stack_name}: {e}") from e

        body = response.get("TemplateBody")
        # boto3 decodes JSON bodies; YAML bodies stay text.
        if isinstance(body, Mapping):
            try:
                return StackTemplate.from_plain(body)
            except TypeError as e:
                raise ControlPlaneFailure(f"cannot parse template of {stack_name}: {e}") from e
        loaded = load_template(str(body or ""), source=stack_name)
        if isinstance(loaded, Err):
            raise ControlPlaneFailure(
                f"cannot parse template of {stack_name}: {loaded.error.message}"
            )
        return loaded.value

    def describe_stack(self, stack_name: str) -> DeployedStack:
        stack = self._describe(stack_name)
        if stack is None:
            return DeployedStack.absent(stack_name)
        status = _status(stack)
        template = self._fetch_template(stack_name) if status.exists else None
        return DeployedStack(
            name=stack_name,
            status=status,
            template=template,
            status_reason=stack.get("StackStatusReason"),
        )

    def _template_args(self, template: StackTemplate) -> dict[str, str]:
        body = template.dump_yaml()
        if len(body.encode("utf-8")) <= MAX_TEMPLATE_BODY_BYTES or self.template_store is None:
            return {"TemplateBody": body}
        published = publish_bytes(
            self.template_store,
            body.encode("utf-8"),
            key_prefix=_TEMPLATE_KEY_PREFIX,
            suffix=".yml",
        )
        if isinstance(published, Err):
            raise ControlPlaneFailure(published.error.description)
        return {"TemplateURL": published.value.https_url(self.region)}

    def _stack_args(
        self,
        stack_name: str,
        template: StackTemplate,
        parameters: Mapping[str, str],
        tags: Mapping[str, str],
    ) -> dict[str, Any]:
        return {
            "StackName": stack_name,
            **self._template_args(template),
            "Parameters": [
                {"ParameterKey": k, "ParameterValue": v} for k, v in sorted(parameters.items())
            ],
            "Capabilities": list(CAPABILITIES),
            "Tags": [{"Key": k, "Value": v} for k, v in sorted(tags.items())],
        }

    def create_stack(
        self,
        stack_name: str,
        template: StackTemplate,
        parameters: Mapping[str, str],
        *,
        rollback: RollbackPolicy,
        tags: Mapping[str, str],
    ) -> OperationHandle:
        args = self._stack_args(stack_name, template, parameters, tags)
        try:
            response = self.client.create_stack(**args, DisableRollback=rollback == "disabled")
        except (ClientError, BotoCoreError) as e:
            raise ControlPlaneFailure(str(e)) from e
        return OperationHandle(
            stack_name=stack_name, kind="create", operation_id=response.get("StackId", "")
        )

    def update_stack(
        self,
        stack_name: str,
        template: StackTemplate,
        parameters: Mapping[str, str],
        *,
        rollback: RollbackPolicy,
        tags: Mapping[str, str],
    ) -> OperationHandle:
        args = self._stack_args(stack_name, template, parameters, tags)
        try:
            response = self.client.update_stack(**args, DisableRollback=rollback == "disabled")
        except ClientError as e:
            if _is_no_op_update(e):
                return OperationHandle(stack_name=stack_name, kind="update", no_changes=True)
            raise ControlPlaneFailure(_error_message(e)) from e
        except BotoCoreError as e:
            raise ControlPlaneFailure(str(e)) from e
        return OperationHandle(
            stack_name=stack_name, kind="update", operation_id=response.get("StackId", "")
        )

    def poll_operation(self, handle: OperationHandle) -> OperationStatus:
        # The stack id keeps resolving after a delete; the name does not.
        stack = self._describe(handle.operation_id or handle.stack_name)
        if stack is None:
            if handle.kind == "delete":
                return OperationStatus(status=StackStatus.DELETE_COMPLETE)
            raise ControlPlaneFailure(f"stack {handle.stack_name} disappeared")
        return OperationStatus(
            status=_status(stack),
            reason=stack.get("StackStatusReason"),
        )

    def delete_stack(self, stack_name: str) -> OperationHandle:
        stack = self._describe(stack_name)
        stack_id = stack.get("StackId", "") if stack is not None else ""
        try:
            self.client.delete_stack(StackName=stack_name)
        except (ClientError, BotoCoreError) as e:
            raise ControlPlaneFailure(str(e)) from e
        return OperationHandle(stack_name=stack_name, kind="delete", operation_id=stack_id)
