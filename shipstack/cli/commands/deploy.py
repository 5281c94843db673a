"""Deploy and diff commands."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

import typer

from shipstack.cli import context as cli_context
from shipstack.cli.context import CLIContext
from shipstack.core.errors import DiffExitCode, ErrorCode
from shipstack.core.result import Err, Ok, Result
from shipstack.output.console import Style
from shipstack.output.errors import (
    pipeline_error_exit_code,
    print_pipeline_error,
    print_release_error,
    release_error_exit_code,
)
from shipstack.services.assets import RemoteObjectStore, StoreError
from shipstack.services.pipeline import synthesize
from shipstack.services.release import (
    ControlPlane,
    ControlPlaneFailure,
    DeploymentRequest,
    DeployOutcome,
    ExecutionMode,
    ReleaseDriver,
    ReleaseError,
    ReleaseReport,
    ReleaseState,
    RollbackPolicy,
    diff_exit_code,
    render_diff,
)


def _connect(ctx: CLIContext) -> Result[tuple[RemoteObjectStore | None, ControlPlane], str]:
    """Create the object store and control plane clients."""
    try:
        store = cli_context.build_object_store(ctx.config)
        control_plane = cli_context.build_control_plane(ctx.config, store)
    except (StoreError, ControlPlaneFailure) as e:
        return Err(str(e))
    return Ok((store, control_plane))


def _print_connect_error(message: str, ctx: CLIContext) -> None:
    ctx.console.error(message)
    ctx.console.print(
        "hint: set deploy.region in config.toml or configure an AWS region", Style.DIM
    )


def _driver(
    ctx: CLIContext,
    control_plane: ControlPlane,
    *,
    sleep: Callable[[float], object] = time.sleep,
) -> ReleaseDriver:
    return ReleaseDriver(
        control_plane,
        console=ctx.console,
        poll_interval_seconds=ctx.config.deploy.poll_interval_seconds,
        timeout_seconds=ctx.config.deploy.timeout_seconds,
        sleep=sleep,
    )


def _print_outcome(outcome: DeployOutcome, ctx: CLIContext) -> None:
    name = outcome.stack_name
    if outcome.state == ReleaseState.SUCCEEDED:
        if outcome.reason == "no changes":
            ctx.console.success(f"{name}: already up to date")
        else:
            ctx.console.success(f"{name}: {outcome.operation} complete ({outcome.status})")
        return
    if not outcome.observed:
        ctx.console.info(f"{name}: {outcome.operation} in progress ({outcome.status})")
        ctx.console.print("the deployment continues remotely", Style.DIM)


def run_diff(ctx: CLIContext, *, workload: str, env: str) -> int:
    """Print the diff for one workload and return its ``diff(1)``-style code."""
    connected = _connect(ctx)
    if isinstance(connected, Err):
        _print_connect_error(connected.error, ctx)
        return int(DiffExitCode.ERROR)
    store, control_plane = connected.value

    synthesis = synthesize(
        ctx.workspace, workload, env=env, config=ctx.config, console=ctx.console, store=store
    )
    if isinstance(synthesis, Err):
        print_pipeline_error(synthesis.error, ctx.console)
        return int(DiffExitCode.ERROR)

    request = synthesis.value.request
    diffed = _driver(ctx, control_plane).diff(request.stack_name, request.template)
    if isinstance(diffed, Err):
        print_release_error(diffed.error, ctx.console)
        return int(diff_exit_code(diffed))

    render_diff(diffed.value, ctx.console)
    return int(diff_exit_code(diffed))


def _release_in_worker(
    driver: ReleaseDriver,
    request: DeploymentRequest,
    *,
    mode: ExecutionMode,
    cancel: threading.Event,
    ctx: CLIContext,
) -> Result[ReleaseReport, ReleaseError]:
    """Run the release off the main thread so Ctrl-C only stops observing."""
    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(driver.release, request, mode=mode, cancel=cancel)
        try:
            return future.result()
        except KeyboardInterrupt:
            cancel.set()
            ctx.console.warning("interrupted; detaching from the deployment")
            return future.result()


def deploy(
    workload: str = typer.Argument(..., help="Workload name (directory holding manifest.yml)"),
    env: str = typer.Option(..., "--env", "-e", help="Target environment"),
    diff: bool = typer.Option(
        False,
        "--diff",
        help="Only show the diff. Exit 0: no changes, 1: changes, 2: error.",
    ),
    no_rollback: bool = typer.Option(
        False,
        "--no-rollback",
        help="Leave a failed deployment in place instead of rolling it back.",
    ),
    detach: bool = typer.Option(
        False, "--detach", help="Return as soon as the deployment is accepted."
    ),
    recovered: bool = typer.Option(
        False,
        "--recovered",
        help="Confirm a stack left failed by --no-rollback was repaired by hand.",
    ),
) -> None:
    """Synthesize, diff and deploy a workload stack."""
    ctx = cli_context.build_context()

    if diff:
        raise typer.Exit(code=run_diff(ctx, workload=workload, env=env))

    rollback: RollbackPolicy = "disabled" if no_rollback else "auto"
    mode: ExecutionMode = "detached" if detach else "attached"

    connected = _connect(ctx)
    if isinstance(connected, Err):
        _print_connect_error(connected.error, ctx)
        raise typer.Exit(code=int(ErrorCode.NETWORK_ERROR))
    store, control_plane = connected.value

    synthesis = synthesize(
        ctx.workspace,
        workload,
        env=env,
        config=ctx.config,
        console=ctx.console,
        store=store,
        require_store=True,
        rollback=rollback,
    )
    if isinstance(synthesis, Err):
        print_pipeline_error(synthesis.error, ctx.console)
        raise typer.Exit(code=pipeline_error_exit_code(synthesis.error))

    request = synthesis.value.request
    cancel = threading.Event()
    driver = _driver(ctx, control_plane, sleep=cancel.wait)
    if recovered:
        driver.confirm_manual_recovery(request.stack_name)

    result = _release_in_worker(driver, request, mode=mode, cancel=cancel, ctx=ctx)
    match result:
        case Ok(report):
            if report.outcome is not None:
                _print_outcome(report.outcome, ctx)
        case Err(error):
            print_release_error(error, ctx.console)
            raise typer.Exit(code=release_error_exit_code(error))


def diff(
    workload: str = typer.Argument(..., help="Workload name (directory holding manifest.yml)"),
    env: str = typer.Option(..., "--env", "-e", help="Target environment"),
) -> None:
    """Show what deploy would change. Exit 0: no changes, 1: changes, 2: error."""
    ctx = cli_context.build_context()
    raise typer.Exit(code=run_diff(ctx, workload=workload, env=env))
