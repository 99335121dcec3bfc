"""Command-line interface for RSS Audio Monitor."""

from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from .config.settings import Settings
from .exceptions import RssMonitorError
from .models.download import DownloadStatus
from .models.events import DOWNLOAD_COMPLETED, DOWNLOAD_FAILED
from .models.subscription import DEFAULT_FILENAME_FORMAT, SubscriptionData
from .utils.logger import setup_logger
from .utils.platform import get_config_dir

app = typer.Typer(help="RSS audio feed monitor and downloader")
settings_app = typer.Typer(help="Read and change runtime settings")
app.add_typer(settings_app, name="settings")
console = Console()

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to configuration file"
)

STATUS_STYLES = {
    DownloadStatus.PENDING: "yellow",
    DownloadStatus.DOWNLOADING: "cyan",
    DownloadStatus.COMPLETED: "green",
    DownloadStatus.FAILED: "red",
    DownloadStatus.PAUSED: "magenta",
}


def get_settings(config_path: Optional[Path] = None) -> Settings:
    """Load settings from file or defaults."""
    return Settings.from_file_or_default(config_path)


def get_service(config_path: Optional[Path] = None, verbose: bool = False):
    """Build the service for a one-off command.

    Logs always go to the log file; they reach the console only when verbose.
    """
    # Import here to avoid loading the whole engine for init-config
    from .service import RssAudioMonitorService

    settings = get_settings(config_path)
    logger = setup_logger(
        log_file=settings.logging.path,
        level=settings.logging.level,
        max_size_mb=settings.logging.max_size_mb,
        backup_count=settings.logging.backup_count,
        console=verbose
    )
    return RssAudioMonitorService(config_path=config_path, settings=settings, logger=logger)


def fail(error: Exception) -> None:
    """Print an error and exit with status 1."""
    console.print(f"[red]Error: {error}[/red]")
    raise typer.Exit(1)


def format_time(value) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M") if value else "Never"


def report_downloads(service) -> None:
    """Print a line for every download that finishes."""

    def on_event(topic: str, payload: Any) -> None:
        if topic == DOWNLOAD_COMPLETED:
            console.print(f"[green]Downloaded[/green] {payload.file_path}")
        else:
            console.print(f"[red]Failed[/red] episode {payload.episode_id}: {payload.error}")

    service.events.subscribe(on_event, DOWNLOAD_COMPLETED)
    service.events.subscribe(on_event, DOWNLOAD_FAILED)


def run_downloads(service) -> None:
    """Wait for submitted downloads, then stop the download manager."""
    try:
        if not service.downloads.wait_until_idle(timeout=0):
            console.print("Downloading...")
            service.downloads.wait_until_idle()
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelling downloads...[/yellow]")
    finally:
        service.downloads.stop()


@app.command()
def start(config: Optional[Path] = ConfigOption):
    """Start the monitoring service."""
    console.print("[cyan]Starting RSS Audio Monitor service...[/cyan]")

    # Import here to avoid circular dependency
    from .service import RssAudioMonitorService

    try:
        service = RssAudioMonitorService(config_path=config)
        service.start()
    except KeyboardInterrupt:
        console.print("\n[yellow]Service stopped by user[/yellow]")
    except Exception as e:
        console.print(f"[red]Service error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def init_config(
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output path for config file"
    )
):
    """Initialize a configuration file with defaults."""
    if output is None:
        output = get_config_dir() / 'config.yaml'

    if output.exists():
        overwrite = typer.confirm(
            f"Config file already exists at {output}. Overwrite?",
            default=False
        )
        if not overwrite:
            console.print("[yellow]Cancelled[/yellow]")
            return

    settings = Settings()
    settings.save(output)

    console.print(f"[green]Configuration file created: {output}[/green]")
    console.print("\nEdit this file to customize your settings")


@app.command()
def add(
    rss_url: str = typer.Argument(..., help="Feed URL"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Show name (default: feed title)"),
    output_directory: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Download directory (default: from config)"
    ),
    frequency: int = typer.Option(60, "--frequency", "-f", help="Minutes between checks"),
    max_items: int = typer.Option(10, "--max-items", help="Newest feed items to look at per check"),
    max_episodes: Optional[int] = typer.Option(
        None, "--max-episodes", help="Completed episodes to keep (default: unlimited)"
    ),
    quality: str = typer.Option("enclosure", "--quality", "-q", help="enclosure, original, flac or mp3"),
    filename_format: str = typer.Option(
        DEFAULT_FILENAME_FORMAT, "--format", help="File name template using {show}, {episode}, {date}"
    ),
    config: Optional[Path] = ConfigOption
):
    """Subscribe to a feed."""
    service = get_service(config)

    try:
        if not name:
            console.print(f"Fetching feed title from {rss_url}...")
            name = service.fetch_feed_title(rss_url)

        subscription = service.create_subscription(SubscriptionData(
            name=name,
            rss_url=rss_url,
            output_directory=str(output_directory or service.settings.download.default_output_directory),
            check_frequency_minutes=frequency,
            max_items_to_check=max_items,
            max_episodes=max_episodes,
            preferred_quality=quality,
            filename_format=filename_format
        ))
    except RssMonitorError as e:
        fail(e)

    console.print(f"[green]Subscribed to {subscription.name}[/green] (id {subscription.id})")
    console.print(f"Downloads go to: {subscription.output_directory}")


@app.command()
def update(
    subscription_id: int = typer.Argument(..., help="Subscription ID"),
    name: Optional[str] = typer.Option(None, "--name", "-n"),
    rss_url: Optional[str] = typer.Option(None, "--url"),
    output_directory: Optional[Path] = typer.Option(None, "--output", "-o"),
    frequency: Optional[int] = typer.Option(None, "--frequency", "-f"),
    max_items: Optional[int] = typer.Option(None, "--max-items"),
    max_episodes: Optional[int] = typer.Option(None, "--max-episodes", help="0 removes the limit"),
    quality: Optional[str] = typer.Option(None, "--quality", "-q"),
    filename_format: Optional[str] = typer.Option(None, "--format"),
    config: Optional[Path] = ConfigOption
):
    """Change the settings of a subscription."""
    service = get_service(config)

    try:
        current = service.get_subscription(subscription_id)

        if max_episodes is None:
            max_episodes = current.max_episodes
        elif max_episodes == 0:
            max_episodes = None

        subscription = service.update_subscription(subscription_id, SubscriptionData(
            name=name or current.name,
            rss_url=rss_url or current.rss_url,
            output_directory=str(output_directory) if output_directory else current.output_directory,
            check_frequency_minutes=frequency or current.check_frequency_minutes,
            max_items_to_check=max_items or current.max_items_to_check,
            max_episodes=max_episodes,
            preferred_quality=quality or current.preferred_quality,
            filename_format=filename_format or current.filename_format
        ))
    except RssMonitorError as e:
        fail(e)

    console.print(f"[green]Updated {subscription.name}[/green]")


@app.command()
def remove(
    subscription_id: int = typer.Argument(..., help="Subscription ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Don't ask for confirmation"),
    config: Optional[Path] = ConfigOption
):
    """Delete a subscription and its episode records (files are kept)."""
    service = get_service(config)

    try:
        subscription = service.get_subscription(subscription_id)

        console.print(f"Subscription: {subscription.name}")
        console.print(f"Downloads: {subscription.total_downloads}")

        if not yes and not typer.confirm("Remove this subscription?", default=False):
            console.print("[yellow]Cancelled[/yellow]")
            return

        service.delete_subscription(subscription_id)
    except RssMonitorError as e:
        fail(e)

    console.print("[green]Subscription removed[/green]")


@app.command()
def enable(
    subscription_id: int = typer.Argument(..., help="Subscription ID"),
    config: Optional[Path] = ConfigOption
):
    """Resume checking a subscription."""
    service = get_service(config)

    try:
        service.set_subscription_enabled(subscription_id, True)
    except RssMonitorError as e:
        fail(e)

    console.print("[green]Subscription enabled[/green]")


@app.command()
def disable(
    subscription_id: int = typer.Argument(..., help="Subscription ID"),
    config: Optional[Path] = ConfigOption
):
    """Stop checking a subscription and pause its pending downloads."""
    service = get_service(config)

    try:
        service.set_subscription_enabled(subscription_id, False)
    except RssMonitorError as e:
        fail(e)

    console.print("[yellow]Subscription disabled[/yellow]")


@app.command(name="list")
def list_subscriptions(
    enabled_only: bool = typer.Option(False, "--enabled", "-e", help="Hide disabled subscriptions"),
    config: Optional[Path] = ConfigOption
):
    """List subscriptions."""
    service = get_service(config)

    try:
        subscriptions = service.list_subscriptions(enabled_only=enabled_only)
    except RssMonitorError as e:
        fail(e)

    if not subscriptions:
        console.print("[yellow]No subscriptions[/yellow]")
        console.print("\nUse the 'add' command to subscribe to a feed")
        return

    table = Table(title="Subscriptions")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Name", style="green")
    table.add_column("Every", justify="right")
    table.add_column("Found", justify="right")
    table.add_column("Downloaded", justify="right")
    table.add_column("Last Checked")
    table.add_column("Status")

    for subscription in subscriptions:
        if not subscription.enabled:
            status = "[red]Disabled[/red]"
        elif subscription.last_error:
            status = f"[yellow]Error: {subscription.last_error[:40]}[/yellow]"
        else:
            status = "[green]OK[/green]"

        table.add_row(
            str(subscription.id),
            subscription.name,
            f"{subscription.check_frequency_minutes}m",
            str(subscription.total_episodes_found),
            str(subscription.total_downloads),
            format_time(subscription.last_checked_at),
            status
        )

    console.print(table)


@app.command(name="check-now")
def check_now(
    subscription_id: Optional[int] = typer.Argument(None, help="Subscription ID (default: all enabled)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show log output"),
    config: Optional[Path] = ConfigOption
):
    """Check feeds immediately and download what is new."""
    service = get_service(config, verbose=verbose)
    report_downloads(service)
    service.downloads.start()

    try:
        if subscription_id is None:
            ids = [s.id for s in service.list_subscriptions(enabled_only=True)]
        else:
            ids = [service.get_subscription(subscription_id).id]

        for sub_id in ids:
            subscription = service.get_subscription(sub_id)
            console.print(f"[cyan]Checking {subscription.name}...[/cyan]")
            found = service.run_check(sub_id)

            checked = service.get_subscription(sub_id)
            if checked.last_error:
                console.print(f"[red]Check failed: {checked.last_error}[/red]")
            else:
                console.print(f"Found {found} new episode(s)")
    except RssMonitorError as e:
        service.downloads.stop()
        fail(e)

    run_downloads(service)


@app.command(name="feed-title")
def feed_title(
    rss_url: str = typer.Argument(..., help="Feed URL"),
    config: Optional[Path] = ConfigOption
):
    """Print the title of a feed without subscribing."""
    service = get_service(config)

    try:
        title = service.fetch_feed_title(rss_url)
    except RssMonitorError as e:
        fail(e)

    console.print(title)


@app.command()
def episodes(
    subscription_id: Optional[int] = typer.Option(None, "--subscription", "-s", help="Subscription ID"),
    status: Optional[str] = typer.Option(None, "--status", help="pending, downloading, completed, failed or paused"),
    limit: int = typer.Option(50, "--limit", "-l", help="Rows to show"),
    config: Optional[Path] = ConfigOption
):
    """List episodes, newest first."""
    service = get_service(config)

    try:
        found = service.list_episodes(subscription_id=subscription_id, status=status)
    except RssMonitorError as e:
        fail(e)

    if not found:
        console.print("[yellow]No episodes[/yellow]")
        return

    table = Table(title=f"Episodes ({len(found)})")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Sub", justify="right")
    table.add_column("Title", style="green", max_width=50)
    table.add_column("Published")
    table.add_column("Status")
    table.add_column("Info", max_width=40)

    for episode in found[:limit]:
        style = STATUS_STYLES[episode.download_status]
        status_text = episode.download_status.value
        if episode.download_status == DownloadStatus.DOWNLOADING:
            status_text += f" {episode.download_progress}%"

        table.add_row(
            str(episode.id),
            str(episode.subscription_id),
            episode.title,
            episode.pub_date.strftime("%Y-%m-%d") if episode.pub_date else "-",
            f"[{style}]{status_text}[/{style}]",
            episode.download_error or episode.download_path or ""
        )

    console.print(table)


@app.command()
def stats(
    subscription_id: Optional[int] = typer.Option(None, "--subscription", "-s", help="Subscription ID"),
    config: Optional[Path] = ConfigOption
):
    """Show episode counts by download status."""
    service = get_service(config)

    try:
        counts = service.episode_stats(subscription_id)
        queued = service.queue_size()
    except RssMonitorError as e:
        fail(e)

    console.print("[cyan]RSS Audio Monitor Status[/cyan]\n")

    console.print(f"Config directory: {get_config_dir()}")
    console.print(f"Database: {service.settings.database.path}")
    console.print(f"Log file: {service.settings.logging.path}\n")

    console.print("[bold]Episodes:[/bold]")
    console.print(f"  Total: {counts.total}")
    console.print(f"  Completed: {counts.completed}")
    console.print(f"  Pending: {counts.pending}")
    console.print(f"  Downloading: {counts.downloading}")
    console.print(f"  Failed: {counts.failed}")
    console.print(f"  Paused: {counts.paused}")
    console.print(f"  Queued: {queued}")


@app.command()
def retry(
    episode_id: int = typer.Argument(..., help="Episode ID"),
    config: Optional[Path] = ConfigOption
):
    """Download an episode again."""
    service = get_service(config)
    report_downloads(service)
    service.downloads.start()

    try:
        service.retry_episode(episode_id)
    except RssMonitorError as e:
        service.downloads.stop()
        fail(e)

    run_downloads(service)


@app.command(name="process-pending")
def process_pending(config: Optional[Path] = ConfigOption):
    """Download every pending episode."""
    service = get_service(config)
    report_downloads(service)
    service.downloads.start()

    try:
        count = service.process_pending_episodes()
    except RssMonitorError as e:
        service.downloads.stop()
        fail(e)

    console.print(f"Submitted {count} episode(s)")
    run_downloads(service)


@app.command(name="delete-episode")
def delete_episode(
    episode_id: int = typer.Argument(..., help="Episode ID"),
    delete_file: bool = typer.Option(False, "--delete-file", help="Also delete the downloaded file"),
    config: Optional[Path] = ConfigOption
):
    """Delete an episode record."""
    service = get_service(config)

    try:
        service.delete_episode(episode_id, delete_file=delete_file)
    except RssMonitorError as e:
        fail(e)

    console.print("[green]Episode deleted[/green]")


@app.command()
def verify(
    subscription_id: int = typer.Argument(..., help="Subscription ID"),
    config: Optional[Path] = ConfigOption
):
    """Reset completed episodes whose file has disappeared."""
    service = get_service(config)

    try:
        missing = service.verify_subscription_files(subscription_id)
    except RssMonitorError as e:
        fail(e)

    if missing:
        console.print(
            f"[yellow]{len(missing)} file(s) missing, reset to pending: "
            f"{', '.join(str(i) for i in missing)}[/yellow]"
        )
    else:
        console.print("[green]All downloaded files are present[/green]")


@app.command()
def media(
    episode_id: int = typer.Argument(..., help="Episode ID"),
    config: Optional[Path] = ConfigOption
):
    """Show every media rendition the feed offers for an episode."""
    service = get_service(config)

    try:
        urls = service.available_media(episode_id)
    except RssMonitorError as e:
        fail(e)

    table = Table(title=f"Media for episode {episode_id}")
    table.add_column("Quality", style="cyan")
    table.add_column("URL")

    for quality, url in urls.items():
        table.add_row(quality, url or "[dim]-[/dim]")

    console.print(table)


@app.command()
def queue(config: Optional[Path] = ConfigOption):
    """Show the download queue."""
    service = get_service(config)

    try:
        entries = service.list_queue()
    except RssMonitorError as e:
        fail(e)

    if not entries:
        console.print("[green]Queue is empty[/green]")
        return

    table = Table(title=f"Download Queue ({len(entries)})")
    table.add_column("Episode", style="cyan", justify="right")
    table.add_column("Priority", justify="right")
    table.add_column("Added")

    for entry in entries:
        table.add_row(str(entry.episode_id), str(entry.priority), format_time(entry.added_at))

    console.print(table)


@app.command(name="clear-queue")
def clear_queue(config: Optional[Path] = ConfigOption):
    """Remove every entry from the download queue."""
    service = get_service(config)

    try:
        removed = service.clear_queue()
    except RssMonitorError as e:
        fail(e)

    console.print(f"[green]Removed {removed} queue entries[/green]")


@settings_app.command(name="get")
def settings_get(
    key: str = typer.Argument(..., help="Setting name"),
    config: Optional[Path] = ConfigOption
):
    """Print one setting."""
    service = get_service(config)

    try:
        value = service.get_setting(key)
    except RssMonitorError as e:
        fail(e)

    if value is None:
        console.print(f"[yellow]{key} is not set[/yellow]")
        raise typer.Exit(1)
    console.print(value)


@settings_app.command(name="set")
def settings_set(
    key: str = typer.Argument(..., help="Setting name"),
    value: str = typer.Argument(..., help="New value"),
    config: Optional[Path] = ConfigOption
):
    """Change one setting."""
    service = get_service(config)

    try:
        service.set_setting(key, value)
    except RssMonitorError as e:
        fail(e)

    console.print(f"[green]{key} = {value}[/green]")


@settings_app.command(name="list")
def settings_list(config: Optional[Path] = ConfigOption):
    """List every stored setting."""
    service = get_service(config)

    try:
        values = service.list_settings()
    except RssMonitorError as e:
        fail(e)

    if not values:
        console.print("[yellow]No settings stored[/yellow]")
        return

    table = Table(title="Settings")
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    for key, value in values.items():
        table.add_row(key, value)

    console.print(table)


if __name__ == "__main__":
    app()
