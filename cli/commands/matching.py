"""Matching Commands - Trigger pair evaluations"""

import typer
from rich.console import Console

from ..client.endpoints import LabMatchClient, LabMatchError
from ..utils.config_manager import config
from ..utils.formatting import print_error, print_info, print_success

console = Console()
app = typer.Typer(name="matching", help="Matching trigger commands")


@app.command("scan")
def scan():
    """🔎 Enqueue every eligible pair at background priority"""
    base_url = config.get("api.base_url")

    try:
        with LabMatchClient(base_url) as client:
            result = client.trigger_scan()
    except LabMatchError as e:
        print_error(f"Failed to trigger scan: {e}")
        raise typer.Exit(1) from None

    enqueued = result.get("enqueued", 0)
    if enqueued:
        print_success(f"Enqueued {enqueued} run_matching job(s)")
    else:
        print_info("No eligible pairs found, nothing enqueued")


@app.command("refresh-entity")
def refresh_entity(
    entity_id: str = typer.Argument(..., help="Researcher whose pairs should be re-evaluated"),
):
    """♻️ Re-evaluate every eligible pair touching one researcher"""
    base_url = config.get("api.base_url")

    try:
        with LabMatchClient(base_url) as client:
            result = client.refresh_entity(entity_id)
    except LabMatchError as e:
        print_error(f"Failed to refresh researcher: {e}")
        raise typer.Exit(1) from None

    print_success(
        f"Enqueued {result.get('enqueued', 0)} run_matching job(s) for [cyan]{entity_id}[/cyan]"
    )
