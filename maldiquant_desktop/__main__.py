"""CLI entry point for MALDIquant Desktop."""

import asyncio
import logging
import shlex
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table as RichTable

from maldiquant_desktop.classifier import runtime_not_found
from maldiquant_desktop.config import Config
from maldiquant_desktop.launcher import build_argv, build_launch_spec
from maldiquant_desktop.models import FailureReport
from maldiquant_desktop.supervisor import LifecycleController

console = Console()


def setup_logging(level: str = "INFO", log_file=None):
    kwargs = {}
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        kwargs["filename"] = str(log_file)
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        **kwargs,
    )


def print_report(report: FailureReport):
    console.print(f"\n[bold red]{report.title}[/bold red]")
    console.print(report.diagnostic_text, markup=False, highlight=False)
    console.print(f"\n[yellow]{report.remediation}[/yellow]", highlight=False)


@click.group()
@click.option("--config", "-c", default=None, help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, config, verbose):
    """MALDIquant Desktop - run the MALDIquant Shiny app on a local R."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = Config.load(config)
    ctx.obj["verbose"] = verbose


def _console_logging(ctx):
    config = ctx.obj["config"]
    setup_logging("DEBUG" if ctx.obj["verbose"] else config.app.log_level, config.app.log_file)


@cli.command()
@click.pass_context
def locate(ctx):
    """Find the R installation that would be used."""
    _console_logging(ctx)
    controller = LifecycleController(ctx.obj["config"])

    with console.status("[bold green]Searching for R..."):
        candidate = controller.locate()

    if candidate is None:
        print_report(runtime_not_found(controller.locator.tried))
        sys.exit(1)

    table = RichTable(title="R Runtime")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Executable", candidate.path)
    table.add_row("Invocation mode", candidate.mode.value)
    table.add_row("Found via", candidate.source)
    console.print(table)


@cli.command()
@click.pass_context
def command(ctx):
    """Print the command line used to start the Shiny server."""
    _console_logging(ctx)
    config = ctx.obj["config"]
    controller = LifecycleController(config)
    candidate = controller.locate()
    if candidate is None:
        print_report(runtime_not_found(controller.locator.tried))
        sys.exit(1)

    argv = build_argv(build_launch_spec(candidate, config))
    click.echo(" ".join(shlex.quote(arg) for arg in argv))


async def _serve(config: Config, on_ready) -> FailureReport | None:
    controller = LifecycleController(config, on_ready=on_ready)
    try:
        if await controller.start():
            await controller.wait()
    finally:
        await controller.shutdown()
    return controller.report


@cli.command()
@click.option("--port", "-p", default=None, type=int, help="Override server port")
@click.pass_context
def serve(ctx, port):
    """Run the Shiny server headless until it exits or Ctrl+C."""
    _console_logging(ctx)
    config = ctx.obj["config"]
    if port:
        config.server.port = port

    def on_ready(url):
        console.print(f"[bold green]MALDIquant is ready:[/bold green] [blue]{url}[/blue]")

    console.print(f"Starting R Shiny server for [bold]{config.app.resolved_app_dir()}[/bold]")
    try:
        report = asyncio.run(_serve(config, on_ready))
    except KeyboardInterrupt:
        console.print("\nStopped.")
        return

    if report is not None:
        print_report(report)
        sys.exit(1)


@cli.command()
@click.pass_context
def desktop(ctx):
    """Open the MALDIquant desktop window."""
    from maldiquant_desktop.shell import DesktopShell

    config = ctx.obj["config"]
    log_file = config.app.log_file or str(Path.home() / "MALDIquantOutput" / "launcher.log")
    setup_logging("DEBUG" if ctx.obj["verbose"] else config.app.log_level, log_file)
    sys.exit(DesktopShell(config).run())


if __name__ == "__main__":
    cli()
