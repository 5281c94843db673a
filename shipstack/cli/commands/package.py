"""Package command - write the stack template and parameters to disk."""

from __future__ import annotations

from pathlib import Path

import typer

from shipstack.cli import context as cli_context
from shipstack.core.errors import ErrorCode
from shipstack.core.result import Err
from shipstack.output.console import Style
from shipstack.output.errors import (
    pipeline_error_exit_code,
    print_package_error,
    print_pipeline_error,
)
from shipstack.services.assets import StoreError
from shipstack.services.pipeline import synthesize, write_package


def package(
    workload: str = typer.Argument(..., help="Workload name (directory holding manifest.yml)"),
    env: str = typer.Option(..., "--env", "-e", help="Target environment"),
    output_dir: Path = typer.Option(
        Path("infrastructure"),
        "--output-dir",
        "-o",
        help="Directory receiving the template and parameters files",
    ),
    upload_assets: bool = typer.Option(
        False,
        "--upload-assets",
        help="Publish local assets and reference them from the template.",
    ),
) -> None:
    """Synthesize a workload stack without deploying it."""
    ctx = cli_context.build_context()

    store = None
    if upload_assets:
        try:
            store = cli_context.build_object_store(ctx.config)
        except StoreError as e:
            ctx.console.error(str(e))
            raise typer.Exit(code=int(ErrorCode.NETWORK_ERROR)) from e
        if store is None:
            ctx.console.error("--upload-assets needs an artifact bucket")
            ctx.console.print("hint: set deploy.artifact_bucket in config.toml", Style.DIM)
            raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

    synthesis = synthesize(
        ctx.workspace,
        workload,
        env=env,
        config=ctx.config,
        console=ctx.console,
        store=store,
        require_store=upload_assets,
    )
    if isinstance(synthesis, Err):
        print_pipeline_error(synthesis.error, ctx.console)
        raise typer.Exit(code=pipeline_error_exit_code(synthesis.error))

    written = write_package(synthesis.value, output_dir)
    if isinstance(written, Err):
        print_package_error(written.error, ctx.console)
        raise typer.Exit(code=int(ErrorCode.IO_ERROR))

    artifacts = written.value
    ctx.console.success(f"Wrote {artifacts.template_path}")
    ctx.console.print(f"parameters: {artifacts.parameters_path}", Style.DIM)
    if artifacts.addons_path is not None:
        ctx.console.print(f"addons: {artifacts.addons_path}", Style.DIM)
