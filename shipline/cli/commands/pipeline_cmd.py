"""Pipeline inspection commands: validate, stages."""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shipline.compiler.pipeline_loader import load_pipeline
from shipline.kernel.domain.pipeline import PipelineDefinition
from shipline.kernel.exceptions import PipelineDefinitionError

console = Console()


def _load_or_exit(pipeline_path: Path) -> PipelineDefinition:
    if not pipeline_path.exists():
        console.print(f"[red]Error: Pipeline file not found: {escape(str(pipeline_path))}[/red]")
        raise typer.Exit(1)
    try:
        return load_pipeline(pipeline_path)
    except PipelineDefinitionError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(1) from None


def validate_pipeline(
    pipeline_path: Annotated[
        Path,
        typer.Argument(help="Path to pipeline YAML file"),
    ],
) -> None:
    """Validate a pipeline manifest (schema, references, policies)."""
    console.print(f"[cyan]Validating pipeline: {escape(str(pipeline_path))}[/cyan]")
    pipeline = _load_or_exit(pipeline_path)

    for stage in pipeline.stages:
        console.print(f"  [green]✓[/green] {stage.name} ({stage.action.kind}, {stage.policy})")

    console.print("\n[green]✓ Pipeline validation passed[/green]")
    console.print(f"  Name: {escape(pipeline.name)}")
    console.print(f"  Stages: {len(pipeline.stages)}")
    if pipeline.required_parameters:
        console.print(f"  Required parameters: {', '.join(pipeline.required_parameters)}")


def list_stages(
    pipeline_path: Annotated[
        Path,
        typer.Argument(help="Path to pipeline YAML file"),
    ],
) -> None:
    """Show stages with their policies, credentials and declared artifacts."""
    pipeline = _load_or_exit(pipeline_path)

    table = Table(title=f"Pipeline: {escape(pipeline.name)}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Stage", style="cyan")
    table.add_column("Kind")
    table.add_column("Policy")
    table.add_column("Credentials")
    table.add_column("Artifacts")

    for stage in pipeline.stages:
        policy_style = "red" if stage.policy == "hard" else "yellow"
        table.add_row(
            str(stage.ordinal),
            stage.name,
            stage.action.kind,
            f"[{policy_style}]{stage.policy}[/{policy_style}]",
            ", ".join(stage.credentials) or "-",
            "\n".join(escape(f"{a.path} ({a.category})") for a in stage.artifacts) or "-",
        )
    console.print(table)
