"""Command line interface for the download sorter."""

from __future__ import annotations

import difflib
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import click
import yaml
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table

from download_sorter.classification import Classifier
from download_sorter.config import (
    ConfigError,
    ConfigManager,
    Folders,
    SorterConfig,
    resolve_with_precedence,
)
from download_sorter.logs import configure_logging
from download_sorter.organization import FileSorter, SortResult
from download_sorter.state import (
    AuditRecord,
    AuditStore,
    AuditStoreError,
    SortStatus,
    local_day_bounds,
)
from download_sorter.watch import WatchService

console = Console()

_FOLDER_PURPOSES = {
    Folders.INBOX: "New downloads land here",
    Folders.PINNED: "Protected files (never auto-sorted)",
    Folders.DOCUMENTS: "PDFs, Office docs, text files",
    Folders.EXECUTABLES: "EXE, MSI installers",
    Folders.ARCHIVES: "ZIP, RAR, 7z archives",
    Folders.MEDIA: "Images, videos, audio",
    Folders.CODE: "Source code, config files",
    Folders.ISOS: "Disk images",
    Folders.BIG_FILES: "Files over the big-file threshold",
    Folders.UNSORTED: "Unknown file types",
}

_STATUS_STYLES = {
    SortStatus.SUCCESS: "green",
    SortStatus.SKIPPED: "yellow",
    SortStatus.FAILED: "red",
}


# ---- Output helpers ---- #


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command appropriately.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """

    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


def _emit_message(message: Any, *, mode: str, quiet: bool) -> None:
    """Print CLI output unless quiet mode suppresses it.

    Args:
        message: Renderable or string to emit.
        mode: Output mode identifier (`detail`, `summary`, `warning`, or `error`).
        quiet: Whether quiet mode is active.
    """

    if quiet and mode != "error":
        return
    console.print(message)


def _format_summary_line(command: str, target: Path | str, metrics: dict[str, Any]) -> str:
    """Return a consistent summary line for CLI commands."""

    parts = ", ".join(f"{key}={value}" for key, value in metrics.items())
    return f"[green]{command} summary for {target}: {parts}.[/green]"


def _format_size(size: int) -> str:
    """Return a human readable size string."""

    if size >= 1024**3:
        return f"{size / 1024**3:.1f} GB"
    if size >= 1024**2:
        return f"{size / 1024**2:.1f} MB"
    return f"{size / 1024:.1f} KB"


def _format_result(result: SortResult) -> str:
    name = result.source_path.name
    if result.success:
        return f"[green]Sorted[/green] {name} -> {result.category} ({result.dest_path})"
    if result.skipped:
        return f"[yellow]Skipped[/yellow] {name}: {result.reason}"
    return f"[red]Failed[/red] {name}: {result.reason}"


def _result_payload(result: SortResult) -> dict[str, Any]:
    return {
        "status": result.status.value,
        "source": str(result.source_path),
        "destination": str(result.dest_path) if result.dest_path else None,
        "category": result.category,
        "reason": result.reason,
    }


def _count_results(results: list[SortResult]) -> dict[str, int]:
    return {
        "sorted": sum(1 for result in results if result.success),
        "skipped": sum(1 for result in results if result.skipped),
        "failed": sum(1 for result in results if result.failed),
    }


def _history_table(records: list[AuditRecord], title: str) -> Table:
    table = Table(title=title)
    table.add_column("When")
    table.add_column("File")
    table.add_column("Category")
    table.add_column("Status")
    table.add_column("Size", justify="right")
    for record in records:
        style = _STATUS_STYLES.get(record.status, "white")
        name = record.original_name
        if record.final_name != record.original_name:
            name = f"{record.original_name} -> {record.final_name}"
        table.add_row(
            record.sorted_at.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
            name,
            record.category,
            f"[{style}]{record.status.value}[/{style}]",
            _format_size(record.file_size),
        )
    return table


# ---- Config helpers ---- #


def _manager(ctx: click.Context) -> ConfigManager:
    obj = ctx.obj or {}
    return ConfigManager(obj.get("config_path"))


def _load_config(
    ctx: click.Context,
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> SorterConfig:
    manager = _manager(ctx)
    manager.ensure_exists()
    return manager.load(cli_overrides=cli_overrides)


def _require_root(config: SorterConfig) -> None:
    if not config.root_path:
        raise click.ClickException("Not configured. Run `download-sorter init` first.")


def _assign_nested(target: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a nested value within a dictionary for a dotted path.

    Args:
        target: Mapping to mutate in-place.
        path: Sequence of keys representing the nested location.
        value: Value to assign at the nested location.

    Raises:
        ConfigError: If a non-mapping value is encountered along the path.
    """

    node = target
    for segment in path[:-1]:
        existing = node.get(segment)
        if existing is None:
            existing = {}
            node[segment] = existing
        elif not isinstance(existing, dict):
            raise ConfigError(
                f"Cannot assign into '{segment}' because it is not a mapping in the config file."
            )
        node = existing
    node[path[-1]] = value


def _save_overrides(manager: ConfigManager, file_data: dict[str, Any]) -> None:
    """Validate ``file_data`` against the models before writing it."""

    resolve_with_precedence(defaults=SorterConfig(), file_overrides=file_data)
    manager.save(file_data)


def _build_sorter(config: SorterConfig) -> FileSorter:
    store = AuditStore(config.resolved_database_path)
    return FileSorter(config, store)


# ---- Root group ---- #


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="download-sorter")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="DOWNLOAD_SORTER_CONFIG",
    help="Use an alternate configuration file.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path]) -> None:
    """Sort finished downloads into category folders.

    Returns:
        None: This function is invoked for its side effects.
    """

    ctx.obj = {"config_path": config_path}
    try:
        config = _manager(ctx).load(ensure_file=False)
        sink = configure_logging(config.logging)
    except (ConfigError, OSError):
        return
    ctx.call_on_close(sink.close)


# ---- init ---- #


@cli.command()
@click.argument("path", required=False, type=click.Path(file_okay=False, path_type=str))
@click.option("-y", "--yes", is_flag=True, help="Create folders without asking for confirmation.")
@click.pass_context
def init(ctx: click.Context, path: str | None, yes: bool) -> None:
    """Create the sorter folder structure beneath PATH and save it as the root.

    Args:
        ctx: Click context carrying the configuration location.
        path: Root folder; prompted for when omitted.
        yes: Skip the confirmation prompt.

    Raises:
        click.ClickException: If the root cannot be created or saved.
    """

    manager = _manager(ctx)
    try:
        manager.ensure_exists()
        config = manager.load()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    if path is None:
        if config.root_path and not click.confirm(
            f"Already configured at {config.root_path}. Reconfigure?", default=False
        ):
            return
        default_root = Path("~/Downloads").expanduser()
        path = click.prompt("Where should sorted folders live?", default=str(default_root))

    root = Path(path).expanduser().resolve()
    if not root.parent.is_dir():
        raise click.ClickException(f"Parent directory doesn't exist: {root.parent}")

    table = Table(title=f"Folder structure at {root}")
    table.add_column("Folder")
    table.add_column("Purpose")
    for folder in Folders.ALL:
        table.add_row(folder, _FOLDER_PURPOSES.get(folder, ""))
    console.print(table)

    if not yes and not click.confirm("Create these folders?", default=True):
        console.print("[yellow]Cancelled.[/yellow]")
        return

    try:
        file_data = manager.load_file_overrides()
        file_data["root_path"] = str(root)
        _save_overrides(manager, file_data)
        config.model_copy(update={"root_path": str(root)}).create_folder_structure()
    except (ConfigError, OSError) as exc:
        raise click.ClickException(f"Unable to initialise {root}: {exc}") from exc

    console.print("[green]Folder structure created.[/green]")
    console.print(f"[green]Config saved to {manager.config_path}.[/green]")
    console.print(f"Inbox path: [blue]{root / Folders.INBOX}[/blue]")
    console.print("Point your browser's download folder at the inbox above.")


# ---- status ---- #


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit status information as JSON.")
@click.pass_context
def status(ctx: click.Context, json_output: bool) -> None:
    """Show configuration, inbox backlog, and today's activity.

    Args:
        ctx: Click context carrying the configuration location.
        json_output: When True, emit JSON instead of tables.
    """

    try:
        config = _load_config(ctx)
        _require_root(config)
        store = AuditStore(config.resolved_database_path)
        stats = store.today_stats()
        midnight, _ = local_day_bounds()
        categories = store.category_counts(since=midnight)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        return
    except AuditStoreError as exc:
        _handle_cli_error(str(exc), code="audit_error", json_output=json_output, original=exc)
        return
    except click.ClickException as exc:
        _handle_cli_error(str(exc), code="cli_error", json_output=json_output, original=exc)
        return

    sorter = FileSorter(config)
    inbox = config.inbox_path
    pending = sorter.pending_files(inbox)
    pending_size = 0
    for path in pending:
        try:
            pending_size += path.stat().st_size
        except OSError:
            continue

    if json_output:
        console.print_json(
            data={
                "root": str(config.root),
                "inbox": str(inbox),
                "inbox_exists": inbox.is_dir(),
                "settle_time_seconds": config.sorting.settle_time_seconds,
                "big_file_threshold": config.sorting.big_file_threshold,
                "database": str(config.resolved_database_path),
                "pending": {"count": len(pending), "bytes": pending_size},
                "today": stats.model_dump(mode="json"),
                "categories_today": categories,
            }
        )
        return

    console.print(Rule("[bold blue]Download Sorter Status[/bold blue]", align="left"))
    settings = Table(show_header=True)
    settings.add_column("Setting")
    settings.add_column("Value")
    settings.add_row("Root Path", str(config.root))
    settings.add_row("Inbox", str(inbox))
    settings.add_row("Settle Time", f"{config.sorting.settle_time_seconds} seconds")
    settings.add_row("Big File Threshold", _format_size(config.sorting.big_file_threshold))
    settings.add_row("Database", str(config.resolved_database_path))
    console.print(settings)

    color = "green" if not pending else ("yellow" if len(pending) < 10 else "red")
    console.print(
        f"Inbox status: [{color}]{len(pending)} files[/{color}] ({_format_size(pending_size)})"
    )
    if not inbox.is_dir():
        console.print("[red]Inbox folder doesn't exist![/red]")

    console.print(Rule("[bold]Today's Activity[/bold]", align="left"))
    today = Table()
    today.add_column("Metric")
    today.add_column("Count", justify="right")
    today.add_row("Files Sorted", f"[green]{stats.success_count}[/green]")
    today.add_row("Skipped", f"[yellow]{stats.skipped_count}[/yellow]")
    today.add_row("Failed", f"[red]{stats.failed_count}[/red]" if stats.failed_count else "0")
    today.add_row("Biggest File", _format_size(stats.max_file_size))
    console.print(today)

    if categories:
        breakdown = Table(title="Categories Today")
        breakdown.add_column("Category")
        breakdown.add_column("Files", justify="right")
        for category, count in categories.items():
            breakdown.add_row(category, str(count))
        console.print(breakdown)


# ---- sort ---- #


@cli.command()
@click.option("--dry-run", is_flag=True, help="Show where files would go without moving them.")
@click.option("--loop", is_flag=True, help="Keep sorting on an interval until interrupted.")
@click.option("--interval", type=int, help="Seconds between cycles when looping.")
@click.option(
    "--from",
    "source",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Sort this folder instead of the configured watch folders.",
)
@click.option("--json", "json_output", is_flag=True, help="Emit JSON describing sort results.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def sort(
    ctx: click.Context,
    dry_run: bool,
    loop: bool,
    interval: int | None,
    source: Path | None,
    json_output: bool,
    quiet: bool,
) -> None:
    """Sort every file currently waiting in the watch folders.

    Args:
        ctx: Click context carrying the configuration location.
        dry_run: If True, only preview destinations.
        loop: If True, repeat until interrupted.
        interval: Seconds between loop cycles.
        source: Folder to sort instead of the configured watch folders.
        json_output: When True, emit JSON instead of text.
        quiet: When True, suppress non-error output.

    Raises:
        click.ClickException: If configuration is missing or options conflict.
    """

    try:
        if loop and (json_output or dry_run):
            raise click.ClickException("--loop cannot be combined with --json or --dry-run.")
        if interval is not None and interval <= 0:
            raise click.ClickException("--interval must be greater than zero.")

        config = _load_config(ctx)
        _require_root(config)
        quiet_enabled = quiet or (config.cli.quiet_default and not json_output)
        folders = [source.expanduser().resolve()] if source else config.all_watch_folders

        if dry_run:
            sorter = FileSorter(config)
            previews: list[dict[str, Any]] = []
            for folder in folders:
                for path in sorter.pending_files(folder):
                    destination = sorter.preview(path)
                    if destination is None:
                        continue
                    previews.append(
                        {
                            "source": str(path),
                            "category": destination.category,
                            "destination": str(destination.folder),
                        }
                    )
            if json_output:
                console.print_json(data={"dry_run": True, "files": previews})
                return
            if not previews:
                _emit_message(
                    "[yellow]Nothing to sort.[/yellow]", mode="warning", quiet=quiet_enabled
                )
                return
            table = Table(title="Dry run")
            table.add_column("File")
            table.add_column("Category")
            table.add_column("Destination")
            for entry in previews:
                table.add_row(Path(entry["source"]).name, entry["category"], entry["destination"])
            _emit_message(table, mode="detail", quiet=quiet_enabled)
            _emit_message(
                _format_summary_line(
                    "Sort", config.root, {"dry_run": True, "files": len(previews)}
                ),
                mode="summary",
                quiet=quiet_enabled,
            )
            return

        sorter = _build_sorter(config)
        cycle_interval = interval or config.cli.loop_interval_seconds

        try:
            while True:
                results: list[SortResult] = []
                for folder in folders:
                    results.extend(sorter.sort_from_folder(folder))

                if json_output:
                    console.print_json(
                        data={
                            "results": [_result_payload(result) for result in results],
                            "counts": _count_results(results),
                        }
                    )
                    return

                for result in results:
                    mode = "error" if result.failed else "detail"
                    _emit_message(_format_result(result), mode=mode, quiet=quiet_enabled)
                if results or not loop:
                    _emit_message(
                        _format_summary_line("Sort", config.root, _count_results(results)),
                        mode="summary",
                        quiet=quiet_enabled,
                    )
                if not loop:
                    return
                time.sleep(cycle_interval)
        except KeyboardInterrupt:
            _emit_message("[yellow]Stopped.[/yellow]", mode="summary", quiet=quiet_enabled)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
    except AuditStoreError as exc:
        _handle_cli_error(str(exc), code="audit_error", json_output=json_output, original=exc)
    except click.ClickException as exc:
        _handle_cli_error(str(exc), code="cli_error", json_output=json_output, original=exc)


# ---- import ---- #

_IMPORT_PREVIEW_LIMIT = 50


def _truncate(name: str, width: int) -> str:
    return name if len(name) <= width else name[: width - 3] + "..."


def _managed_folders(config: SorterConfig) -> list[Path]:
    """Return the root's immediate subfolders, which an import never reads from."""

    root = config.root
    if not root.is_dir():
        return []
    return [entry for entry in root.iterdir() if entry.is_dir()]


@cli.command("import")
@click.argument("path", required=False, type=click.Path(file_okay=False, path_type=Path))
@click.option("-n", "--dry-run", is_flag=True, help="Show what would be imported without moving.")
@click.option("-r", "--recursive", is_flag=True, help="Scan subfolders recursively.")
@click.option("-y", "--yes", is_flag=True, help="Import without asking for confirmation.")
@click.pass_context
def import_files(
    ctx: click.Context,
    path: Path | None,
    dry_run: bool,
    recursive: bool,
    yes: bool,
) -> None:
    """Sort an existing folder (default ~/Downloads) into the category folders once.

    Args:
        ctx: Click context carrying the configuration location.
        path: Folder to import from.
        dry_run: If True, only list where files would go.
        recursive: If True, include files in subfolders.
        yes: If True, skip the confirmation prompt.

    Raises:
        click.ClickException: If configuration is missing or the folder does not exist.
        SystemExit: With status 1 when any file failed to import.
    """

    try:
        config = _load_config(ctx)
        _require_root(config)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    source = (path or Path.home() / "Downloads").expanduser()
    if not source.is_dir():
        raise click.ClickException(f"Path doesn't exist: {source}")

    console.print(f"Scanning [blue]{source}[/blue]...")
    sorter = FileSorter(config)
    files = sorter.scan(source, recursive=recursive, exclude=_managed_folders(config))
    if not files:
        console.print("[green]No files to import.[/green]")
        return
    console.print(f"Found [blue]{len(files)}[/blue] files to import.")

    if dry_run:
        table = Table(title="Dry run")
        table.add_column("File")
        table.add_column("Size", justify="right")
        table.add_column("Would Move To")
        for file in files[:_IMPORT_PREVIEW_LIMIT]:
            destination = sorter.preview(file)
            if destination is None:
                continue
            table.add_row(
                _truncate(file.name, 40),
                _format_size(file.stat().st_size),
                f"[blue]{destination.category}[/blue]",
            )
        console.print(table)
        if len(files) > _IMPORT_PREVIEW_LIMIT:
            console.print(f"[dim]...and {len(files) - _IMPORT_PREVIEW_LIMIT} more files[/dim]")
        console.print("[yellow]Dry run - no files moved.[/yellow]")
        return

    if not yes and not click.confirm(
        f"Import {len(files)} files into the sorter system?", default=False
    ):
        console.print("[yellow]Cancelled.[/yellow]")
        return

    try:
        sorter = _build_sorter(config)
    except AuditStoreError as exc:
        raise click.ClickException(str(exc)) from exc

    results: list[SortResult] = []
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task(f"Importing {len(files)} files", total=len(files))
        for file in files:
            progress.update(task, description=f"[dim]{_truncate(file.name, 30)}[/dim]")
            results.append(sorter.sort_file(file))
            progress.advance(task)
        progress.update(task, description="Done")

    counts = _count_results(results)
    for result in results:
        if result.failed:
            console.print(_format_result(result))
    console.print(
        f"[green]Imported:[/green] {counts['sorted']}  "
        f"[yellow]Skipped:[/yellow] {counts['skipped']}  "
        f"[red]Failed:[/red] {counts['failed']}"
    )
    if counts["failed"]:
        ctx.exit(1)


# ---- watch ---- #


@cli.command()
@click.option("--settle", type=int, help="Override the settle time in seconds.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def watch(ctx: click.Context, settle: int | None, quiet: bool) -> None:
    """Watch the inbox and extra folders, sorting files once they settle.

    Args:
        ctx: Click context carrying the configuration location.
        settle: Optional settle time override in seconds.
        quiet: When True, suppress non-error output.

    Raises:
        click.ClickException: If configuration is missing or invalid.
    """

    if settle is not None and settle < 0:
        raise click.ClickException("--settle must not be negative.")

    overrides = {"sorting": {"settle_time_seconds": settle}} if settle is not None else None
    try:
        config = _load_config(ctx, cli_overrides=overrides)
        _require_root(config)
        sorter = _build_sorter(config)
    except (ConfigError, AuditStoreError) as exc:
        raise click.ClickException(str(exc)) from exc

    quiet_enabled = quiet or config.cli.quiet_default
    service = WatchService(config, sorter)

    def _report(result: SortResult) -> None:
        mode = "error" if result.failed else "detail"
        _emit_message(_format_result(result), mode=mode, quiet=quiet_enabled)

    watched = config.all_watch_folders or [config.inbox_path]
    folders = ", ".join(str(folder) for folder in watched)
    _emit_message(
        f"[cyan]Watching {folders} (settle {config.sorting.settle_time_seconds}s). "
        "Press Ctrl+C to stop.[/cyan]",
        mode="detail",
        quiet=quiet_enabled,
    )

    try:
        service.watch(_report)
    except KeyboardInterrupt:
        service.stop()
        _emit_message(
            "[yellow]Watch stopped by user request.[/yellow]", mode="summary", quiet=quiet_enabled
        )


# ---- folders ---- #


@cli.group()
def folders() -> None:
    """Manage additional folders sorted alongside the inbox."""


@folders.command("list")
@click.pass_context
def folders_list(ctx: click.Context) -> None:
    """List the inbox and every configured extra watch folder."""

    try:
        config = _load_config(ctx)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    table = Table(title="Watch folders")
    table.add_column("Folder")
    table.add_column("Exists")
    if config.root_path:
        table.add_row(f"{config.inbox_path} (inbox)", "yes" if config.inbox_path.is_dir() else "no")
    for folder in config.watch_folders:
        exists = Path(folder).expanduser().is_dir()
        table.add_row(folder, "yes" if exists else "[red]no[/red]")
    console.print(table)


@folders.command("add")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_context
def folders_add(ctx: click.Context, path: Path) -> None:
    """Add PATH to the extra watch folders."""

    manager = _manager(ctx)
    manager.ensure_exists()
    target = str(path.expanduser().resolve())
    try:
        file_data = manager.load_file_overrides()
        current = list(file_data.get("watch_folders") or [])
        if target in current:
            console.print(f"[yellow]{target} is already watched.[/yellow]")
            return
        file_data["watch_folders"] = [*current, target]
        _save_overrides(manager, file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Added {target}.[/green]")


@folders.command("remove")
@click.argument("path", type=click.Path(path_type=Path))
@click.pass_context
def folders_remove(ctx: click.Context, path: Path) -> None:
    """Remove PATH from the extra watch folders."""

    manager = _manager(ctx)
    manager.ensure_exists()
    candidates = {str(path), str(path.expanduser()), str(path.expanduser().resolve())}
    try:
        file_data = manager.load_file_overrides()
        current = list(file_data.get("watch_folders") or [])
        remaining = [folder for folder in current if folder not in candidates]
        if len(remaining) == len(current):
            raise click.ClickException(f"{path} is not a watch folder.")
        file_data["watch_folders"] = remaining
        _save_overrides(manager, file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Removed {path}.[/green]")


# ---- history / search ---- #


@cli.command()
@click.option("-n", "--limit", type=int, help="Number of records to show.")
@click.option("-c", "--category", type=str, help="Only show records for CATEGORY.")
@click.option("--today", is_flag=True, help="Only show records from today.")
@click.option("--json", "json_output", is_flag=True, help="Emit records as JSON.")
@click.pass_context
def history(
    ctx: click.Context,
    limit: int | None,
    category: str | None,
    today: bool,
    json_output: bool,
) -> None:
    """Show recent sort history, newest first.

    Args:
        ctx: Click context carrying the configuration location.
        limit: Maximum number of records.
        category: Category filter.
        today: Restrict to the current local day.
        json_output: When True, emit JSON instead of a table.
    """

    try:
        config = _load_config(ctx)
        count = limit if limit is not None else config.cli.history_limit
        if count <= 0:
            raise click.ClickException("--limit must be greater than zero.")
        store = AuditStore(config.resolved_database_path)
        if today:
            start, next_midnight = local_day_bounds()
            end = next_midnight - timedelta(microseconds=1)
            fetch = count if category is None else max(count, 1000)
            records = store.by_date_range(start, end, limit=fetch)
            if category is not None:
                records = [record for record in records if record.category == category]
            records = records[:count]
        elif category is not None:
            records = store.by_category(category, limit=count)
        else:
            records = store.recent(limit=count)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        return
    except AuditStoreError as exc:
        _handle_cli_error(str(exc), code="audit_error", json_output=json_output, original=exc)
        return
    except click.ClickException as exc:
        _handle_cli_error(str(exc), code="cli_error", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(data={"records": [record.model_dump(mode="json") for record in records]})
        return
    if not records:
        console.print("[yellow]No history yet.[/yellow]")
        return
    console.print(_history_table(records, "Sort history"))


@cli.command()
@click.argument("query")
@click.option("-n", "--limit", type=int, default=50, show_default=True, help="Maximum results.")
@click.option("--json", "json_output", is_flag=True, help="Emit records as JSON.")
@click.pass_context
def search(ctx: click.Context, query: str, limit: int, json_output: bool) -> None:
    """Search sort history for file names containing QUERY."""

    try:
        config = _load_config(ctx)
        records = AuditStore(config.resolved_database_path).search(query, limit=limit)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        return
    except AuditStoreError as exc:
        _handle_cli_error(str(exc), code="audit_error", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(data={"records": [record.model_dump(mode="json") for record in records]})
        return
    if not records:
        console.print(f"[yellow]No files matching '{query}'.[/yellow]")
        return
    console.print(_history_table(records, f"Files matching '{query}'"))


# ---- rules ---- #


@cli.group()
def rules() -> None:
    """Inspect category routing rules."""


@rules.command("list")
@click.pass_context
def rules_list(ctx: click.Context) -> None:
    """List category rules in evaluation order."""

    try:
        config = _load_config(ctx)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    table = Table(title="Category rules")
    table.add_column("#", justify="right")
    table.add_column("Category")
    table.add_column("Extensions")
    table.add_column("Subfolder")
    for index, rule in enumerate(config.categories, start=1):
        extensions = ", ".join(rule.extensions[:10])
        if len(rule.extensions) > 10:
            extensions += f" +{len(rule.extensions) - 10} more"
        table.add_row(str(index), rule.category, extensions, rule.subfolder or "")
    console.print(table)

    routing = "enabled" if config.sorting.enable_big_file_routing else "disabled"
    console.print(
        f"Files of {_format_size(config.sorting.big_file_threshold)} or more go to "
        f"{Folders.BIG_FILES} (big-file routing {routing}); unmatched files go to "
        f"{Folders.UNSORTED}."
    )
    for extension, categories in config.extension_conflicts().items():
        console.print(
            f"[yellow].{extension} appears in {', '.join(categories)}; "
            f"{categories[0]} wins.[/yellow]"
        )


@rules.command("test")
@click.argument("filename")
@click.option("--size", type=int, default=0, show_default=True, help="File size in bytes.")
@click.pass_context
def rules_test(ctx: click.Context, filename: str, size: int) -> None:
    """Show where a file called FILENAME of --size bytes would be sorted."""

    try:
        config = _load_config(ctx)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    if config.should_ignore(filename):
        console.print(f"[yellow]{filename} has an ignored extension and is never sorted.[/yellow]")
        return
    destination = Classifier(config).classify(Path(filename).suffix, size)
    console.print(f"{filename} -> [blue]{destination.category}[/blue] ({destination.folder})")


# ---- config ---- #


@cli.group()
def config() -> None:
    """Manage download sorter configuration files and overrides.

    Returns:
        None: This function is invoked for its side effects.
    """


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
@click.pass_context
def config_view(ctx: click.Context, no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules.

    Args:
        ctx: Click context carrying the configuration location.
        no_env: If True, ignore environment-derived overrides.

    Raises:
        click.ClickException: If configuration cannot be loaded.
    """
    manager = _manager(ctx)
    try:
        manager.ensure_exists()
        loaded = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(loaded.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Args:
        ctx: Click context carrying the configuration location.
        key: Dotted path describing the configuration field to update.
        value: YAML-literal value to write into the configuration file.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = _manager(ctx)
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException(
            "KEY must specify a dotted path such as 'sorting.settle_time_seconds'."
        )

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    try:
        file_data = manager.load_file_overrides()
        _assign_nested(file_data, segments, parsed_value)
        _save_overrides(manager, file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    after = manager.read_text().splitlines()
    diff = [
        line
        for line in difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
        if not line.startswith(("-# Last updated", "+# Last updated"))
    ]

    changed = [line for line in diff if not line.startswith(("+++", "---"))]
    if not any(line.startswith(("+", "-")) for line in changed):
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point.

    Returns:
        None: This function is invoked for its side effects.
    """
    cli()


if __name__ == "__main__":
    main()
