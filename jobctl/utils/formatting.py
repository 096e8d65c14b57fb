"""Rich Formatting Utilities for CLI Output"""

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "running": "blue",
    "completed": "green",
    "failed": "red",
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


def format_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def create_jobs_table(jobs: list[dict[str, Any]], title: str = "Jobs") -> Table:
    """Create a formatted table for a job list"""
    table = Table(title=title, box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Priority", justify="center")
    table.add_column("Created", justify="left", style="dim")
    table.add_column("Error", justify="left", style="red")

    for job in jobs:
        result = job.get("result") or {}
        table.add_row(
            str(job.get("id", ""))[:8],  # Short ID
            job.get("type", ""),
            format_status(job.get("status", "")),
            f"{job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
            str(job.get("priority", "")),
            str(job.get("created_at", ""))[:19],
            _truncate(result.get("error") or "-"),
        )

    return table


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for queue statistics"""
    content = (
        "📊 [bold blue]Job Queue[/bold blue]\n\n"
        f"• Pending: [yellow]{stats.get('pending', 0)}[/yellow]\n"
        f"• Running: [blue]{stats.get('running', 0)}[/blue]\n"
        f"• Completed: [green]{stats.get('completed', 0)}[/green]\n"
        f"• Failed: [red]{stats.get('failed', 0)}[/red]\n"
        f"• Total: [cyan]{stats.get('total', 0)}[/cyan]"
    )
    if "stale_locks" in stats:
        content += f"\n• Stale locks: [magenta]{stats['stale_locks']}[/magenta]"

    return Panel(content, title="Job Statistics", border_style="green")


def display_job(job: dict[str, Any], show_payload: bool = True):
    """Display the details of a single job"""
    lines = [
        f"• ID: [cyan]{job.get('id')}[/cyan]",
        f"• Plugin: [magenta]{job.get('plugin_id')}[/magenta]",
        f"• Type: [magenta]{job.get('type')}[/magenta]",
        f"• Status: {format_status(job.get('status', ''))}",
        f"• Attempts: [yellow]{job.get('attempts')}/{job.get('max_attempts')}[/yellow]",
        f"• Priority: {job.get('priority')}",
        f"• Created: {job.get('created_at')}",
        f"• Run at: {job.get('run_at')}",
        f"• Started: {job.get('started_at') or '-'}",
        f"• Completed: {job.get('completed_at') or '-'}",
    ]
    console.print(Panel("\n".join(lines), title="Job", border_style="blue"))

    if show_payload:
        console.print(
            Panel(json.dumps(job.get("payload") or {}, indent=2), title="Payload")
        )

    result = job.get("result")
    if result:
        border = "red" if result.get("error") else "green"
        console.print(
            Panel(json.dumps(result, indent=2), title="Result", border_style=border)
        )


def _truncate(text: str, length: int = 50) -> str:
    return text[:length] + "..." if len(text) > length else text
