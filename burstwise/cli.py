"""Burstwise CLI interface."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from burstwise import __version__
from burstwise.adapters.command import CommandImagingBackend
from burstwise.adapters.filesystem import WatchdogImageWatcher, is_image_file
from burstwise.config import get_settings
from burstwise.errors import BurstwiseError
from burstwise.grouping.exposure import exposure_delta
from burstwise.grouping.grouper import Grouper, load_grouper
from burstwise.log import configure_logging
from burstwise.models import GroupListDelta, ImageGroup, ImageStat, MergeOptions, MergeResult
from burstwise.monitor import BurstMonitor
from burstwise.session import SessionController

app = typer.Typer(
    name="burstwise",
    help="Detect continuous-shooting bursts and hand them to an HDR merge pipeline.",
    no_args_is_help=True,
)
console = Console()

# Sub-apps
config_app = typer.Typer(help="Configuration management")

app.add_typer(config_app, name="config")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        console.print(f"burstwise version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V", help="Show version", callback=version_callback, is_eager=True
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Burstwise CLI - Group bursts of images and merge them."""
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level)


# ============================================================================
# Config Commands
# ============================================================================


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Configuration key"),
    value: str = typer.Argument(..., help="Configuration value"),
):
    """Set a configuration value."""
    settings = get_settings()
    try:
        settings.set_value(key, value)
        console.print(f"[green]Set {key} successfully[/green]")
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@config_app.command("show")
def config_show():
    """Show current configuration."""
    settings = get_settings()

    table = Table(title="Burstwise Configuration")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Description")

    for field_name, field_info in type(settings).model_fields.items():
        value = getattr(settings, field_name)
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        description = field_info.description or ""
        table.add_row(field_name, display_value, description)

    console.print(table)


# ============================================================================
# Helpers
# ============================================================================


def _format_ms(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _load_files(paths: list[Path]) -> Grouper:
    """Group existing files using their modification times."""
    settings = get_settings()
    timed_paths = []
    for path in paths:
        if not is_image_file(path, settings.image_extensions):
            console.print(f"[yellow]Skipping non-image file: {path}[/yellow]")
            continue
        timed_paths.append((str(path), int(path.stat().st_mtime * 1000)))

    return load_grouper(
        timed_paths,
        window_ms=settings.group_window_ms,
        max_images=settings.max_group_images,
    )


def _pick_group(grouper: Grouper, index: Optional[int]) -> ImageGroup:
    """Pick a group by 1-based index, defaulting to the most recent."""
    groups = grouper.groups
    if not groups:
        console.print("[yellow]No images to group[/yellow]")
        raise typer.Exit(1)

    if index is None:
        return groups[-1]
    if index < 1 or index > len(groups):
        console.print(f"[red]Group {index} not found. There are {len(groups)} groups.[/red]")
        raise typer.Exit(1)
    return groups[index - 1]


def _select(paths: list[Path], group: Optional[int]) -> SessionController:
    settings = get_settings()
    grouper = _load_files(paths)
    selected = _pick_group(grouper, group)

    output_directory = Path(settings.output_directory) if settings.output_directory else None
    controller = SessionController(
        CommandImagingBackend(),
        grouper,
        min_merge_images=settings.min_merge_images,
        default_output_directory=output_directory,
    )
    controller.select_group(selected.id)
    console.print(f"Selected group {selected.id} ({selected.size} images)")
    return controller


def _print_groups(groups: tuple[ImageGroup, ...]):
    table = Table(title=f"Burst Groups ({len(groups)})")
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Images", justify="right")
    table.add_column("Started", style="magenta")
    table.add_column("Span", justify="right")
    table.add_column("Files", style="dim")

    for number, group in enumerate(groups, start=1):
        span_s = (group.last_image.detected_at - group.created_at) / 1000
        table.add_row(
            str(number),
            group.id,
            str(group.size),
            _format_ms(group.created_at),
            f"{span_s:.1f}s",
            "\n".join(Path(path).name for path in group.paths),
        )

    console.print(table)


def _print_stats(stats: list[ImageStat]):
    table = Table(title="Average Luma (0-1)")
    table.add_column("File")
    table.add_column("Luma", justify="right", style="green")
    for stat in stats:
        table.add_row(stat.path, f"{stat.average_luma:.4f}")
    console.print(table)

    delta = exposure_delta(stats)
    if delta is not None:
        console.print(f"[cyan]Exposure delta:[/cyan] {delta:.4f}")


def _print_merge_result(result: MergeResult):
    console.print(Panel(
        f"[cyan]PNG (16-bit):[/cyan] {result.output_png_path}\n"
        f"[cyan]EXR:[/cyan]          {result.output_exr_path or 'not written'}\n"
        f"[cyan]Size:[/cyan]         {result.width}x{result.height}\n"
        f"[cyan]Merged at:[/cyan]    {result.merged_at.isoformat()}",
        title="Merge Complete",
    ))


def _print_delta(delta: GroupListDelta):
    group = delta.group
    name = Path(group.last_image.path).name
    if delta.kind == "created":
        console.print(f"[green]New group[/green] {group.id}: {name}")
    else:
        console.print(f"[cyan]Group {group.id}[/cyan] +{name} ({group.size} images)")


# ============================================================================
# Groups Command
# ============================================================================


@app.command()
def groups(
    paths: list[Path] = typer.Argument(
        ..., exists=True, dir_okay=False, help="Image files to group"
    ),
):
    """Group existing image files into bursts by modification time."""
    grouper = _load_files(paths)

    if not grouper.groups:
        console.print("[yellow]No images to group[/yellow]")
        return

    _print_groups(grouper.groups)


# ============================================================================
# Analyze Command
# ============================================================================


@app.command()
def analyze(
    paths: list[Path] = typer.Argument(
        ..., exists=True, dir_okay=False, help="Image files to group"
    ),
    group: Optional[int] = typer.Option(
        None, "--group", "-g", help="Group number to analyze (default: latest)"
    ),
):
    """Measure the exposure of each image in a burst."""
    controller = _select(paths, group)

    try:
        stats = asyncio.run(controller.analyze())
    except BurstwiseError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)

    _print_stats(stats or [])


# ============================================================================
# Merge Command
# ============================================================================


@app.command()
def merge(
    paths: list[Path] = typer.Argument(
        ..., exists=True, dir_okay=False, help="Image files to group"
    ),
    group: Optional[int] = typer.Option(
        None, "--group", "-g", help="Group number to merge (default: latest)"
    ),
    output_dir: Optional[Path] = typer.Option(
        None, "--output-dir", "-o", file_okay=False, help="Output folder"
    ),
    exr: Optional[bool] = typer.Option(
        None, "--exr/--no-exr", help="Also write an EXR (default from config)"
    ),
):
    """Merge a burst into an HDR image."""
    settings = get_settings()
    controller = _select(paths, group)
    options = MergeOptions(
        output_directory=output_dir,
        include_exr=settings.include_exr if exr is None else exr,
    )

    try:
        with console.status("Merging..."):
            result = asyncio.run(controller.merge(options))
    except BurstwiseError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)

    if result:
        _print_merge_result(result)


# ============================================================================
# Watch Command
# ============================================================================


async def _analyze_latest(monitor: BurstMonitor, group_id: str):
    """Analyze the selected group and report unless superseded."""
    try:
        stats = await monitor.analyze()
    except BurstwiseError as e:
        console.print(f"[yellow]Analysis of {group_id} failed: {e.message}[/yellow]")
        return

    delta = exposure_delta(stats or [])
    if delta is not None:
        console.print(f"  [dim]{group_id} exposure delta: {delta:.4f}[/dim]")


async def _watch(monitor: BurstMonitor, folder: Path, analyze_latest: bool):
    pending: set[asyncio.Task] = set()
    min_images = monitor.controller.min_merge_images

    def on_delta(delta: GroupListDelta):
        _print_delta(delta)
        monitor.select_group(delta.group.id)
        if analyze_latest and delta.group.size >= min_images:
            task = asyncio.create_task(_analyze_latest(monitor, delta.group.id))
            pending.add(task)
            task.add_done_callback(pending.discard)

    monitor.add_listener(on_delta)
    monitor.set_watch_folder(folder)
    await monitor.start_watching()
    console.print(f"[green]Watching {folder}[/green] (Ctrl-C to stop)")

    try:
        await asyncio.Event().wait()
    finally:
        await monitor.stop_watching()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


@app.command()
def watch(
    folder: Optional[Path] = typer.Argument(None, help="Folder to watch (default from config)"),
    analyze_latest: bool = typer.Option(
        False, "--analyze", "-a", help="Analyze the latest group as it grows"
    ),
):
    """Watch a folder and group new images into bursts as they arrive."""
    settings = get_settings()
    folder = folder or (Path(settings.watch_folder) if settings.watch_folder else None)
    if folder is None:
        console.print("[red]Specify a folder or run: burstwise config set watch_folder <path>[/red]")
        raise typer.Exit(1)

    monitor = BurstMonitor(WatchdogImageWatcher(), CommandImagingBackend(), settings)

    try:
        asyncio.run(_watch(monitor, folder, analyze_latest))
    except BurstwiseError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass

    console.print()
    if monitor.groups:
        _print_groups(monitor.groups)
    else:
        console.print("[yellow]No bursts detected[/yellow]")


if __name__ == "__main__":
    app()
