"""``shipline run``: execute a pipeline."""

import asyncio
import contextlib
import json
import signal
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shipline.compiler.config_loader import load_config
from shipline.compiler.pipeline_loader import load_pipeline
from shipline.kernel.domain.run import RunOutcome
from shipline.kernel.exceptions import ShiplineError
from shipline.kernel.orchestration.run_controller import RunController, RunReport

console = Console()

_STATE_STYLES = {
    "SUCCESS": "green",
    "FAILED": "red",
    "SKIPPED": "dim",
    "FAILED_NONBLOCKING": "yellow",
}


def parse_parameters(values: list[str]) -> dict[str, str]:
    """Parse ``name=value`` pairs. Values are kept verbatim."""
    parameters: dict[str, str] = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"expected name=value, got {item!r}", param_hint="--param")
        if name in parameters:
            raise typer.BadParameter(f"parameter '{name}' given twice", param_hint="--param")
        parameters[name] = value
    return parameters


def exit_code_for(outcome: RunOutcome, fail_on_warning: bool = False) -> int:
    """Process exit status for a run outcome."""
    if outcome is RunOutcome.SUCCESS:
        return 0
    if outcome is RunOutcome.FAILED_NONBLOCKING:
        return 2 if fail_on_warning else 0
    return 1


async def _run_with_signals(
    controller: RunController,
    pipeline_path: Path,
    parameters: dict[str, str],
    run_id: str | None,
) -> RunReport:
    pipeline = load_pipeline(pipeline_path)
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform or outside the main thread
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(sig, cancel_event.set)
            installed.append(sig)
    try:
        return await controller.run(pipeline, parameters, run_id=run_id, cancel_event=cancel_event)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _print_report(report: RunReport) -> None:
    run = report.run
    table = Table(title=escape(f"Run {run.run_id} ({run.pipeline_name})"))
    table.add_column("#", justify="right", style="dim")
    table.add_column("Stage", style="cyan")
    table.add_column("Policy")
    table.add_column("State")
    table.add_column("Duration", justify="right")
    table.add_column("Detail")
    for execution in run.executions:
        style = _STATE_STYLES.get(str(execution.state), "white")
        duration = execution.duration_ms
        table.add_row(
            str(execution.definition.ordinal),
            execution.name,
            str(execution.policy),
            f"[{style}]{execution.state}[/{style}]",
            f"{duration / 1000:.2f}s" if duration is not None else "-",
            escape(execution.error or (str(execution.verdict) if execution.verdict else "")),
        )
    console.print(table)

    outcome = str(report.outcome)
    style = _STATE_STYLES.get(outcome, "white")
    cancelled = " (cancelled)" if run.cancelled else ""
    console.print(f"Outcome: [bold {style}]{outcome}[/bold {style}]{cancelled}")
    if report.manifest is not None:
        console.print(
            f"Archive: {escape(report.manifest.location)} "
            f"({report.manifest.artifact_count} artifacts, {len(report.manifest.errors)} errors)"
        )


def run_pipeline(
    pipeline_path: Annotated[
        Path,
        typer.Argument(help="Path to pipeline YAML file"),
    ],
    param: Annotated[
        list[str] | None,
        typer.Option("--param", "-p", help="Run parameter as name=value (repeatable)"),
    ] = None,
    source: Annotated[
        Path | None,
        typer.Option("--source", "-s", help="Source tree copied into the run workspace"),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Configuration file (kind: Config YAML or TOML)"),
    ] = None,
    run_id: Annotated[
        str | None,
        typer.Option("--run-id", help="Run id (generated when omitted)"),
    ] = None,
    json_out: Annotated[
        bool,
        typer.Option("--json", help="Print the run report as JSON"),
    ] = False,
    fail_on_warning: Annotated[
        bool,
        typer.Option("--fail-on-warning", help="Exit 2 when the run is FAILED_NONBLOCKING"),
    ] = False,
) -> None:
    """Run a pipeline and exit with a status derived from its outcome.

    Exit status: 0 SUCCESS, 1 FAILED, 0 FAILED_NONBLOCKING (2 with
    --fail-on-warning).
    """
    if not pipeline_path.exists():
        console.print(f"[red]Error: Pipeline file not found: {escape(str(pipeline_path))}[/red]")
        raise typer.Exit(1)

    parameters = parse_parameters(param or [])
    try:
        config = load_config(config_path)
        controller = RunController(config=config, source=source)
        report = asyncio.run(_run_with_signals(controller, pipeline_path, parameters, run_id))
    except ShiplineError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(1) from None

    if json_out:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _print_report(report)
    raise typer.Exit(exit_code_for(report.outcome, fail_on_warning))
