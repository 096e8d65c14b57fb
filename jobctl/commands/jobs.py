"""Jobs Commands - Inspect and operate the plugin job queue"""

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from ..client.endpoints import JobsAPIError, PluginJobsClient
from ..utils.config_manager import config
from ..utils.formatting import (
    create_jobs_table,
    create_stats_panel,
    display_job,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="jobs", help="Plugin job queue commands")

CLEARABLE_STATUSES = ("completed", "failed")


@app.command("stats")
def show_stats():
    """📊 Show job counts per status"""
    base_url = config.get("api.base_url")

    try:
        with PluginJobsClient(base_url) as client:
            stats = client.get_job_stats()
            console.print(create_stats_panel(stats))

            if stats.get("stale_locks"):
                print_warning(
                    f"{stats['stale_locks']} stale lock(s), reclaim with: jobctl jobs recover"
                )

    except JobsAPIError as e:
        print_error(f"Failed to get job stats: {e}")
        raise typer.Exit(1) from None


@app.command("show")
def show_job(
    job_id: str = typer.Argument(..., help="Job ID to show"),
    payload: bool | None = typer.Option(
        None, "--payload/--no-payload", help="Show payload (default from display.show_payloads)"
    ),
):
    """🔍 Show details of a job"""
    base_url = config.get("api.base_url")
    if payload is None:
        payload = bool(config.get("display.show_payloads", False))

    try:
        with PluginJobsClient(base_url) as client:
            job = client.get_job(job_id)
            display_job(job, show_payload=payload)

    except JobsAPIError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None


@app.command("retry")
def retry_job(
    job_id: str = typer.Argument(..., help="ID of the failed job to retry"),
):
    """🔁 Retry a failed job"""
    base_url = config.get("api.base_url")

    try:
        with PluginJobsClient(base_url) as client:
            job = client.retry_job(job_id)
            print_success(f"Job {job.get('id', job_id)} queued for retry")

    except JobsAPIError as e:
        print_error(f"Failed to retry job: {e}")
        raise typer.Exit(1) from None


@app.command("list")
def list_jobs(
    plugin_id: str = typer.Argument(..., help="Plugin whose jobs to list"),
    limit: int | None = typer.Option(
        None, "--limit", "-l", help="Number of jobs to show"
    ),
):
    """📋 List recent jobs of a plugin"""
    base_url = config.get("api.base_url")
    limit = limit or int(config.get("display.jobs_per_page", 20))

    try:
        with PluginJobsClient(base_url) as client:
            data = client.list_plugin_jobs(plugin_id, limit=limit)
            jobs = data.get("jobs", [])

            if not jobs:
                console.print(
                    Panel(
                        f"📭 [yellow]No jobs found for plugin {plugin_id}[/yellow]",
                        title="Empty Results",
                        border_style="yellow",
                    )
                )
                return

            console.print(create_jobs_table(jobs, title=f"Jobs of {plugin_id}"))
            console.print(f"\n📊 Showing [cyan]{len(jobs)}[/cyan] most recent jobs")

    except JobsAPIError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None


@app.command("clear")
def clear_jobs(
    plugin_id: str = typer.Argument(..., help="Plugin whose jobs to clear"),
    status: list[str] = typer.Option(
        ["completed"], "--status", "-s", help="Status to clear (completed or failed)"
    ),
    type: str | None = typer.Option(None, "--type", "-t", help="Only this job type"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🧹 Delete finished jobs of a plugin"""
    invalid = [value for value in status if value not in CLEARABLE_STATUSES]
    if invalid:
        print_error(f"Only completed or failed jobs can be cleared, got: {', '.join(invalid)}")
        raise typer.Exit(1)

    if not yes and not Confirm.ask(
        f"Delete {'/'.join(status)} jobs of plugin {plugin_id}?"
    ):
        console.print("Clear cancelled.")
        return

    base_url = config.get("api.base_url")

    try:
        with PluginJobsClient(base_url) as client:
            data = client.clear_plugin_jobs(plugin_id, status, type=type)
            print_success(f"Deleted {data.get('deleted', 0)} job(s) of {plugin_id}")

    except JobsAPIError as e:
        print_error(f"Failed to clear jobs: {e}")
        raise typer.Exit(1) from None


@app.command("recover")
def recover_stale():
    """🩹 Reclaim jobs whose worker lease went stale"""
    base_url = config.get("api.base_url")

    try:
        with PluginJobsClient(base_url) as client:
            data = client.recover_stale_locks()
            recovered = data.get("recovered", 0)
            if recovered:
                print_success(f"Recovered {recovered} stale lock(s)")
            else:
                print_info("No stale locks found")

    except JobsAPIError as e:
        print_error(f"Failed to recover stale locks: {e}")
        raise typer.Exit(1) from None


@app.command("process")
def process_jobs(
    batch: int | None = typer.Option(None, "--batch", "-b", help="Jobs per batch"),
    catchup: bool = typer.Option(False, "--catchup", help="Drain all due jobs"),
    cleanup: bool = typer.Option(False, "--cleanup", help="Delete old finished jobs"),
    cleanup_days: int | None = typer.Option(
        None, "--cleanup-days", help="Retention for cleanup in days"
    ),
):
    """⚙️ Trigger a processing run through the cron endpoint"""
    base_url = config.get("api.base_url")

    try:
        with PluginJobsClient(base_url) as client:
            run = client.process_jobs(
                batch=batch, catchup=catchup, cleanup=cleanup, cleanup_days=cleanup_days
            )

            content = (
                f"• Processed: [green]{run.get('processed', 0)}[/green]\n"
                f"• Failed: [red]{run.get('failed', 0)}[/red]\n"
                f"• Iterations: [cyan]{run.get('iterations', 0)}[/cyan]\n"
                f"• Recovered locks: [magenta]{run.get('recovered_locks', 0)}[/magenta]\n"
                f"• Duration: [yellow]{run.get('duration_ms', 0)}ms[/yellow]"
            )
            if run.get("cleaned_up") is not None:
                content += f"\n• Cleaned up: [blue]{run['cleaned_up']}[/blue]"

            console.print(Panel(content, title="Processing Run", border_style="green"))

            stats_after = run.get("stats_after")
            if stats_after:
                console.print(create_stats_panel(stats_after))

    except JobsAPIError as e:
        print_error(f"Failed to process jobs: {e}")
        raise typer.Exit(1) from None
