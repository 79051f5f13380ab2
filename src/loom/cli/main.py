# ~/loom/src/loom/cli/main.py
import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..errors import LoomError
from ..modules import default_registry
from ..runner import check_script, run_script

console = Console()
err_console = Console(stderr=True)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _report_fiber_error(fiber, message):
    err_console.print(f"[bold red]Runtime error[/bold red] in fiber {fiber.name}: {message}", soft_wrap=True)


@click.group()
@click.version_option(version=__version__, prog_name="Loom")
def cli():
    """Loom - run guest scripts whose fibers await asyncio operations"""
    pass


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.argument('args', nargs=-1, type=click.UNPROCESSED)
@click.option('--debug/--no-debug', default=None, help="Run the drive loop in asyncio debug mode.")
@click.option('--log-level', type=click.Choice(LOG_LEVELS, case_sensitive=False),
              default=None, help="Logging level (overrides the script's @loom flags).")
@click.option('--stats', is_flag=True, help="Print scheduler statistics when done.")
def run(file, args, debug, log_level, stats):
    """Run a Loom guest script"""
    try:
        vm = run_script(
            file,
            options={"debug": debug, "log_level": log_level},
            write=lambda text: click.echo(text, nl=False),
            on_error=_report_fiber_error,
            arguments=list(args),
            before_run=lambda config: configure_logging(config.log_level),
        )
    except LoomError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}", soft_wrap=True)
        sys.exit(1)

    try:
        if stats and vm.scheduler is not None:
            table = Table(title="Scheduler")
            table.add_column("Counter", style="cyan")
            table.add_column("Value", style="green")
            for key, value in vm.scheduler.statistics().items():
                table.add_row(key, str(value))
            err_console.print(table)
    finally:
        vm.free()


@cli.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
def check(file):
    """Check syntax of a Loom guest script"""
    try:
        flags = check_script(file)
    except LoomError as e:
        console.print(f"[bold red]❌ {e}[/bold red]", soft_wrap=True)
        sys.exit(1)

    console.print("[bold green]✅ Script is valid![/bold green]")
    if flags:
        console.print(Panel.fit(
            "\n".join(f"{key} = {value!r}" for key, value in flags.items()),
            title="[bold blue]@loom flags[/bold blue]",
            border_style="blue"
        ))


@cli.command()
def modules():
    """List built-in modules and their foreign methods"""
    registry = default_registry()

    table = Table(title="Foreign methods")
    table.add_column("Module", style="cyan")
    table.add_column("Class", style="green")
    table.add_column("Signature", style="yellow")

    for module, class_name, signature in registry.describe():
        table.add_row(module, class_name, signature)

    console.print(table)


if __name__ == "__main__":
    cli()
