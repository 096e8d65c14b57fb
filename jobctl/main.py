"""jobctl - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from . import __version__
from .client.endpoints import JobsAPIError, PluginJobsClient
from .commands import config, jobs
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info

console = Console()

app = typer.Typer(
    name="jobctl",
    help="⚙️ Plugin job queue administration CLI",
    rich_markup_mode="rich",
)

app.add_typer(jobs.app, name="jobs")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check service health and connectivity"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with PluginJobsClient(base_url) as client:
            health = client.health_check()
    except JobsAPIError as e:
        print_error(f"Failed to connect: {e}")
        console.print(
            Panel(
                f"🚫 [red]Connection Failed[/red]\n\n"
                f"Make sure the plugin job service is running at:\n"
                f"[blue]{base_url}[/blue]\n\n"
                f"You can update the API URL with:\n"
                f"[cyan]jobctl config set api.base_url <url>[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        raise typer.Exit(1) from None

    queue = health.get("queue") or {}
    poller = health.get("poller") or {}
    healthy = health.get("ok", False)

    console.print(
        Panel(
            f"{'🚀 [green]Healthy[/green]' if healthy else '⚠️ [red]Unhealthy[/red]'}\n\n"
            f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
            f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
            f"• Due jobs: [yellow]{queue.get('pending_due', 0)}[/yellow]\n"
            f"• Running jobs: [blue]{queue.get('running', 0)}[/blue]\n"
            f"• Stale locks: [magenta]{queue.get('stale_locks', 0)}[/magenta]\n"
            f"• Poller: {'[green]running[/green]' if poller.get('running') else '[dim]stopped[/dim]'}\n"
            f"• API URL: [blue]{base_url}[/blue]",
            title="System Status",
            border_style="green" if healthy else "red",
        )
    )

    if not healthy:
        raise typer.Exit(1)


@app.command()
def version():
    """📎 Show CLI version information"""
    console.print(
        Panel(
            f"⚙️ [bold cyan]jobctl[/bold cyan]\n\n"
            f"• Version: [green]{__version__}[/green]\n"
            f"• Type: [yellow]Plugin job queue CLI[/yellow]",
            title="Version Info",
            border_style="cyan",
        )
    )


if __name__ == "__main__":
    app()
