"""Jobs Commands - Backlog monitoring and maintenance"""

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from ..client.endpoints import LabMatchClient, LabMatchError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_jobs_table,
    create_stats_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="jobs", help="Background job monitoring and maintenance")


@app.command("list")
def list_jobs(
    status: list[str] | None = typer.Option(
        None, "--status", "-s", help="Filter by status (repeatable)"
    ),
    type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    limit: int | None = typer.Option(
        None, "--limit", "-l", help="Number of jobs to show (default: display.jobs_per_page)"
    ),
    offset: int = typer.Option(0, "--offset", "-o", help="Skip first N jobs"),
):
    """📋 List jobs, newest first"""
    base_url = config.get("api.base_url")
    limit = limit or config.get("display.jobs_per_page", 20)

    try:
        with LabMatchClient(base_url) as client:
            data = client.list_jobs(status=status, type=type, limit=limit, offset=offset)
    except LabMatchError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    jobs = data.get("jobs", [])
    total = data.get("total", len(jobs))

    if not jobs:
        console.print(Panel(
            "📭 [yellow]No jobs found![/yellow]\n\n"
            f"Filters applied:\n"
            f"• Status: {', '.join(status) if status else 'any'}\n"
            f"• Type: {type or 'any'}",
            title="Empty Results",
            border_style="yellow"
        ))
        return

    console.print(create_jobs_table(jobs))
    console.print(f"\n📊 Showing [cyan]{len(jobs)}[/cyan] of [yellow]{total}[/yellow] jobs")

    if offset + limit < total:
        console.print(f"💡 Use [cyan]--offset {offset + limit}[/cyan] to see more")


@app.command("show")
def show_job(job_id: str = typer.Argument(..., help="Job ID to show")):
    """🔍 Show one job in detail"""
    base_url = config.get("api.base_url")

    try:
        with LabMatchClient(base_url) as client:
            job = client.get_job(job_id)
    except LabMatchError as e:
        print_error(f"Failed to fetch job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(job))


@app.command("stats")
def job_stats():
    """📊 Show job counts by status and type"""
    base_url = config.get("api.base_url")

    try:
        with LabMatchClient(base_url) as client:
            stats = client.get_job_stats()
    except LabMatchError as e:
        print_error(f"Failed to fetch job stats: {e}")
        raise typer.Exit(1) from None

    console.print(create_stats_table(stats))

    dead = stats.get("dead_jobs", 0)
    if dead:
        print_warning(f"{dead} dead job(s) need attention: labmatch jobs list --status dead")


@app.command("retry")
def retry_job(job_id: str = typer.Argument(..., help="Dead job ID to retry")):
    """🔁 Re-enqueue the work of a dead job"""
    base_url = config.get("api.base_url")

    try:
        with LabMatchClient(base_url) as client:
            result = client.retry_job(job_id)
    except LabMatchError as e:
        print_error(f"Failed to retry job: {e}")
        if e.status_code == 404:
            print_info("Only dead jobs can be retried, check with: labmatch jobs show <id>")
        raise typer.Exit(1) from None

    new_job_id = result.get("new_job_id")
    print_success(f"Dead job re-enqueued as {new_job_id}")


@app.command("cleanup")
def cleanup_jobs(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🧹 Archive completed jobs past the retention window"""
    if not yes and not Confirm.ask("Delete completed jobs older than the retention window?"):
        console.print("Cleanup cancelled.")
        return

    base_url = config.get("api.base_url")

    try:
        with LabMatchClient(base_url) as client:
            result = client.cleanup_jobs()
    except LabMatchError as e:
        print_error(f"Failed to clean up jobs: {e}")
        raise typer.Exit(1) from None

    print_success(
        f"Archived {result.get('deleted_count', 0)} completed job(s) "
        f"older than {result.get('retention_days', '?')} days"
    )
    print_info("Dead jobs are kept for inspection")
