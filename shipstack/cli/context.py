from __future__ import annotations

from dataclasses import dataclass

import typer

from shipstack.core.config import Config, load_config_or_default
from shipstack.core.errors import ErrorCode
from shipstack.core.result import Err
from shipstack.core.workspace import Workspace, detect_workspace
from shipstack.output.console import ConsoleProtocol, RichConsole
from shipstack.services.assets import RemoteObjectStore
from shipstack.services.release.control_plane import ControlPlane


@dataclass(frozen=True, slots=True)
class CLIContext:
    workspace: Workspace
    config: Config
    console: ConsoleProtocol


def build_context() -> CLIContext:
    workspace_result = detect_workspace()
    if isinstance(workspace_result, Err):
        typer.echo(f"error: {workspace_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

    workspace = workspace_result.value
    config_result = load_config_or_default(workspace.config_path)
    if isinstance(config_result, Err):
        typer.echo(f"error: {config_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    return CLIContext(
        workspace=workspace,
        config=config_result.value,
        console=RichConsole(),
    )


def build_object_store(config: Config) -> RemoteObjectStore | None:
    """The artifact bucket store, or None when no bucket is configured.

    Raises:
        StoreError: If the S3 client cannot be created.
    """
    bucket = config.deploy.artifact_bucket
    if bucket is None:
        return None
    # boto3 is only needed once something talks to the cloud.
    from shipstack.services.aws.s3 import S3ObjectStore

    return S3ObjectStore(bucket, region=config.deploy.region)


def build_control_plane(config: Config, store: RemoteObjectStore | None) -> ControlPlane:
    """Raises ControlPlaneFailure if the CloudFormation client cannot be created."""
    from shipstack.services.aws.cloudformation import CloudFormationControlPlane

    return CloudFormationControlPlane(region=config.deploy.region, template_store=store)
