"""LabMatch CLI - Main Entry Point"""

from importlib.metadata import PackageNotFoundError, version as package_version

import typer
from rich.console import Console
from rich.panel import Panel

from .client.endpoints import LabMatchClient, LabMatchError
from .commands import config, jobs, matching
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info

console = Console()

app = typer.Typer(
    name="labmatch",
    help="🔬 LabMatch - job queue and matching administration CLI",
    rich_markup_mode="rich",
)

app.add_typer(jobs.app, name="jobs")
app.add_typer(matching.app, name="matching")
app.add_typer(config.app, name="config")


def _cli_version() -> str:
    try:
        return package_version("labmatch")
    except PackageNotFoundError:
        return "unknown"


@app.command()
def status():
    """📊 Check API connectivity and backlog health"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with LabMatchClient(base_url) as client:
            health = client.health_check()
    except LabMatchError as e:
        print_error(f"Failed to connect: {e}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the LabMatch API is running at:\n"
            f"[blue]{base_url}[/blue]\n\n"
            f"You can update the API URL with:\n"
            f"[cyan]labmatch config set api.base_url <url>[/cyan]",
            title="Connection Error",
            border_style="red"
        ))
        raise typer.Exit(1) from None

    queue = health.get("queue") or {}
    console.print(Panel(
        f"🚀 [green]Connected Successfully![/green]\n\n"
        f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
        f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
        f"• Queue Backend: [magenta]{queue.get('backend', 'unknown')}[/magenta]\n"
        f"• Queue Depth: [cyan]{queue.get('queue_depth', 0)}[/cyan]\n"
        f"• Dead Jobs: [red]{queue.get('dead_jobs', 0)}[/red]\n"
        f"• API URL: [blue]{base_url}[/blue]",
        title="System Status",
        border_style="green"
    ))


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
):
    """
    🔬 LabMatch CLI

    Inspect the background job backlog, retry dead jobs and trigger
    matching runs through the admin API.
    """
    if version:
        console.print(f"LabMatch CLI v{_cli_version()}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


if __name__ == "__main__":
    app()
