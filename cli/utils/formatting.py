"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "processing": "blue",
    "completed": "green",
    "dead": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def _styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _short_time(value: str | None) -> str:
    if not value:
        return "—"
    # ISO timestamps: keep date and minutes
    return value.replace("T", " ")[:16]


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for the jobs list"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Priority", justify="right", style="yellow")
    table.add_column("Attempts", justify="center")
    table.add_column("Enqueued", justify="left", style="blue")
    table.add_column("Last Error", justify="left", style="white")

    for job in jobs:
        error = job.get("last_error") or "—"
        table.add_row(
            str(job.get("id", ""))[:8],
            job.get("type", ""),
            _styled_status(job.get("status", "")),
            str(job.get("priority", 0)),
            f"{job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
            _short_time(job.get("enqueued_at")),
            error[:50] + "..." if len(error) > 50 else error,
        )

    return table


def create_job_panel(job: dict[str, Any]) -> Panel:
    """Create formatted panel with a single job's details"""
    payload = job.get("payload", {})
    payload_lines = "\n".join(f"  • {key}: [cyan]{value}[/cyan]" for key, value in payload.items())

    content = f"""
🆔 [bold]ID:[/bold] [cyan]{job.get('id', 'unknown')}[/cyan]
📝 [bold]Type:[/bold] [magenta]{job.get('type', 'unknown')}[/magenta]
📊 [bold]Status:[/bold] {_styled_status(job.get('status', 'unknown'))}
⚡ [bold]Priority:[/bold] [yellow]{job.get('priority', 0)}[/yellow]
🔁 [bold]Attempts:[/bold] {job.get('attempts', 0)}/{job.get('max_attempts', 0)}
⏳ [bold]Retry After:[/bold] {_short_time(job.get('retry_after'))}
👷 [bold]Locked By:[/bold] {job.get('locked_by') or '—'}
📅 [bold]Enqueued:[/bold] [blue]{_short_time(job.get('enqueued_at'))}[/blue]
▶️ [bold]Started:[/bold] {_short_time(job.get('started_at'))}
🏁 [bold]Completed:[/bold] {_short_time(job.get('completed_at'))}

[bold]Payload:[/bold]
{payload_lines or '  —'}
"""

    if job.get("last_error"):
        content += f"\n[bold red]Last Error:[/bold red] {job['last_error']}\n"

    border = STATUS_STYLES.get(job.get("status", ""), "blue")
    return Panel(content.strip(), title="Job Details", border_style=border)


def create_stats_table(stats: dict[str, Any]) -> Table:
    """Create formatted table for job statistics"""
    table = Table(title="Job Statistics", box=box.ROUNDED)

    table.add_column("Group", justify="left", style="bold")
    table.add_column("Name", justify="left")
    table.add_column("Count", justify="right", style="cyan")

    for status, count in sorted(stats.get("by_status", {}).items()):
        table.add_row("status", _styled_status(status), str(count))
    for job_type, count in sorted(stats.get("by_type", {}).items()):
        table.add_row("type", f"[magenta]{job_type}[/magenta]", str(count))

    table.add_row("total", "all jobs", str(stats.get("total_jobs", 0)))
    table.add_row("total", "queue depth", str(stats.get("queue_depth", 0)))

    return table
