"""shipline CLI - Main entrypoint."""

import typer
from rich.console import Console

from shipline.cli.commands import pipeline_cmd, run_cmd
from shipline.kernel.logging import configure_logging

app = typer.Typer(
    name="shipline",
    help="shipline - sequential build/test/security delivery pipelines.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)

console = Console()

app.command("run")(run_cmd.run_pipeline)
app.command("validate")(pipeline_cmd.validate_pipeline)
app.command("stages")(pipeline_cmd.list_stages)


def _version() -> str:
    from shipline import __version__

    return __version__


@app.callback(invoke_without_command=True)
def callback(
    *,
    quiet: bool = typer.Option(False, "-q", "--quiet", help="Only log errors"),
    verbose: bool = typer.Option(False, "-V", "--verbose", help="Enable debug logging"),
    log_format: str = typer.Option(
        "structured", "--log-format", help="Log format: console|json|structured|rich"
    ),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    """shipline - pipeline orchestration engine.

    Global flags configure logging for every subcommand.
    """
    if version:
        console.print(f"[bold blue]shipline[/bold blue] version [green]{_version()}[/green]")
        raise typer.Exit()

    level = "ERROR" if quiet else "DEBUG" if verbose else "INFO"
    configure_logging(level=level, format=log_format)  # type: ignore[arg-type]


def main() -> None:
    app()


if __name__ == "__main__":
    main()
