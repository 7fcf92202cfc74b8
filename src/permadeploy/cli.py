"""CLI for permadeploy."""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import PD_DIR, __version__
from .collector import CollectionRules, collect
from .config import DeployConfig, get_pd_dir, load_config, save_config
from .cost import estimate_changeset_cost, format_cost
from .differ import diff_entries, full_upload_changeset, load_previous_snapshot
from .errors import ConfigError, DeploymentError, DiffUnavailable
from .manifest import JsonFileMetadataStore, get_snapshot_path

console = Console()
error_console = Console(stderr=True)


def get_project_root() -> Path:
    """Get the project root directory (current working directory)."""
    return Path.cwd()


def is_initialized(project_root: Path) -> bool:
    """Check if permadeploy is initialized in the project."""
    return get_pd_dir(project_root).exists()


def require_initialized(project_root: Path) -> None:
    """Exit with an error if permadeploy is not initialized."""
    if not is_initialized(project_root):
        error_console.print(
            "[red]Error:[/red] Not initialized. Run [bold]pdeploy init[/bold] first."
        )
        sys.exit(1)


def configure_logging(verbose: bool) -> None:
    """Route permadeploy log records through rich."""
    logger = logging.getLogger("permadeploy")
    logger.handlers.clear()
    logger.addHandler(
        RichHandler(console=error_console, show_path=False, markup=False)
    )
    logger.setLevel(logging.INFO if verbose else logging.WARNING)
    logger.propagate = False


def get_config(project_root: Path) -> DeployConfig:
    """Load config, exiting with a readable message if it is invalid."""
    try:
        return load_config(project_root)
    except ConfigError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="pdeploy")
def main() -> None:
    """permadeploy - Incremental static site deployment to permanent storage."""
    pass


@main.command()
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite existing configuration",
)
def init(force: bool) -> None:
    """Initialize permadeploy in the current project."""
    project_root = get_project_root()
    pd_dir = get_pd_dir(project_root)

    if pd_dir.exists() and not force:
        error_console.print(
            f"[yellow]Warning:[/yellow] {PD_DIR}/ already exists. Use --force to reinitialize."
        )
        sys.exit(1)

    pd_dir.mkdir(parents=True, exist_ok=True)

    config = DeployConfig()
    save_config(config, project_root)

    console.print(
        Panel(
            f"[green]Initialized permadeploy[/green]\n\n"
            f"Entry point: [bold]{config.entry_point}[/bold]\n"
            f"Gateway: [bold]{config.gateway_url}[/bold]\n"
            f"Config directory: [dim]{pd_dir}[/dim]\n\n"
            f"Next steps:\n"
            f"  1. Run [bold]pdeploy estimate <dir>[/bold] to preview changes\n"
            f"  2. Run [bold]pdeploy deploy <dir>[/bold] to publish",
            title="pdeploy init",
        )
    )


@main.command()
@click.argument("root", default="website", type=click.Path(path_type=Path))
@click.option("--batch-size", type=click.IntRange(min=1), default=None, help="Uploads per batch")
@click.option("--no-delay", is_flag=True, help="Skip the pause between upload batches")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def deploy(root: Path, batch_size: int | None, no_delay: bool, verbose: bool) -> None:
    """Deploy the files under ROOT."""
    from .deployer import run_deploy

    configure_logging(verbose)
    project_root = get_project_root()
    config = get_config(project_root)

    overrides: dict = {}
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    if no_delay:
        overrides["batch_delay_seconds"] = 0.0
    if overrides:
        config = config.model_copy(update=overrides)

    console.print(f"[bold]Deploying {root}...[/bold]")

    try:
        result = run_deploy(
            root,
            project_root=project_root,
            config=config,
            verbose=verbose,
            console=console,
        )
    except DeploymentError as e:
        error_console.print(f"[red]Deployment failed:[/red] {e}")
        if e.files_uploaded:
            error_console.print(f"  Files uploaded before failure: {e.files_uploaded}")
        sys.exit(1)

    table = Table(title="Deployment Complete")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")

    table.add_row("Total files", str(result.total_files))
    table.add_row("Uploaded", str(result.files_uploaded))
    table.add_row("Unchanged", str(result.files_unchanged))
    table.add_row("Deleted", str(result.files_deleted))
    table.add_row("Bytes uploaded", str(result.bytes_uploaded))
    table.add_row("Mode", "incremental" if result.incremental else "full upload")

    console.print(table)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    console.print(f"Manifest ID: [bold]{result.manifest_id}[/bold]")
    console.print(f"Manifest URL: {result.manifest_url}")
    console.print(f"Website URL: [green]{result.entry_url}[/green]")


@main.command()
@click.argument("root", default="website", type=click.Path(path_type=Path))
def estimate(root: Path) -> None:
    """Show what a deployment of ROOT would upload and what it would cost."""
    configure_logging(False)
    project_root = get_project_root()
    config = get_config(project_root)
    store = JsonFileMetadataStore(get_snapshot_path(project_root))

    try:
        entries = collect(root, CollectionRules.from_config(config))
        try:
            previous = load_previous_snapshot(store)
        except DiffUnavailable as e:
            console.print("[yellow]Warning:[/yellow] estimating a full upload")
            console.print(f"  {e.message}")
            changes = full_upload_changeset(
                entries,
                fail_fast_reads=config.fail_fast_reads,
                hash_workers=config.hash_workers,
            )
        else:
            changes = diff_entries(
                entries,
                previous,
                fail_fast_reads=config.fail_fast_reads,
                hash_workers=config.hash_workers,
            )
    except DeploymentError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    cost = estimate_changeset_cost(changes, config.ar_price_usd)

    table = Table(title="Deployment Estimate")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Total files", str(changes.total_files))
    table.add_row("Changed/New", str(len(changes.changed)))
    table.add_row("Unchanged", str(len(changes.unchanged)))
    table.add_row("Deleted", str(len(changes.deleted)))
    table.add_row("Unreadable", str(len(changes.read_failures)))
    table.add_row("Upload cost", format_cost(cost))

    console.print(table)


@main.command()
def status() -> None:
    """Show configuration and the last deployment snapshot."""
    project_root = get_project_root()
    require_initialized(project_root)

    config = get_config(project_root)
    table = Table(title="permadeploy Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    table.add_row("Project root", str(project_root))
    table.add_row("Entry point", config.entry_point)
    table.add_row("Gateway", config.gateway_url)
    table.add_row("Batch size", str(config.batch_size))

    try:
        snapshot = JsonFileMetadataStore(get_snapshot_path(project_root)).load_snapshot()
    except (OSError, ValueError) as e:
        table.add_row("Deployment status", f"[red]Unreadable manifest: {e}[/red]")
        snapshot = None
    else:
        if snapshot is None:
            table.add_row("Deployment status", "[yellow]Never deployed[/yellow]")

    if snapshot is not None:
        table.add_row("Deployed files", str(len(snapshot.files)))
        table.add_row("Last updated", snapshot.updated_at.isoformat())
        table.add_row("Deployment status", "[green]Deployed[/green]")

    console.print(table)


if __name__ == "__main__":
    main()
