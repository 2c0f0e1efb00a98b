"""Command Line Interface for databackup."""

import sys
import time
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from tqdm import tqdm

from .adb import ADBError, PackageManager, RootShell, check_adb_available, get_device_by_serial
from .backup import BackupEngine
from .config import ShellMode, load_config
from .context import EngineContext
from .errors import DataBackupError
from .util import format_duration, format_size_token, setup_logging

console = Console()


def setup_cli_logging(verbose: bool = False, log_dir: Optional[Path] = None):
    """Setup logging for CLI."""
    level = "DEBUG" if verbose else "INFO"
    log_file = Path(log_dir) / "databackup.log" if log_dir else None
    setup_logging(level=level, log_file=log_file, console=console)


def _abort(error: Exception):
    console.print(f"[red]Error: {escape(str(error))}[/red]")
    sys.exit(1)


def _open_engine(ctx: click.Context) -> BackupEngine:
    """Engine over a fresh root session; the preconditions are checked first."""
    config = ctx.obj["config"]
    context = EngineContext.from_config(config)
    shell = RootShell(context)
    ctx.call_on_close(shell.close)

    engine = BackupEngine(context, shell)
    engine.check()
    return engine


def _line_sink(verbose: bool):
    if not verbose:
        return None
    return lambda line: tqdm.write(f"  {line}")


def _run_batch(run, desc: str, unit: str, total: Optional[int] = None):
    """Run an engine batch behind a tqdm bar and print the summary."""
    start = time.monotonic()
    with tqdm(total=total, desc=desc, unit=unit) as pbar:
        def progress(name: str, ok: bool):
            pbar.set_postfix_str(name)
            pbar.update(1)
            if not ok:
                tqdm.write(f"Failed: {name}")

        result = run(progress)

    if result["total"] == 0:
        console.print("[yellow]Nothing selected[/yellow]")
        return result

    color = "green" if not result["failed"] else "yellow"
    console.print(f"[bold {color}]{desc} completed![/bold {color}]")
    console.print(f"Successful: {result['success']}/{result['total']}")
    console.print(f"Duration: {format_duration(time.monotonic() - start)}")
    for name in result["failed"][:10]:
        console.print(f"  [red]{name}[/red]")
    return result


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--config", "-c", type=click.Path(path_type=Path), help="Configuration file path")
@click.pass_context
def cli(ctx, verbose: bool, config: Optional[Path]):
    """databackup - privileged incremental backup and restore for Android apps and media."""
    ctx.ensure_object(dict)
    try:
        engine_config = load_config(config)
    except DataBackupError as e:
        setup_cli_logging(verbose)
        _abort(e)

    setup_cli_logging(verbose, engine_config.log_dir)
    ctx.obj["config"] = engine_config
    ctx.obj["verbose"] = verbose

    shell_config = engine_config.shell
    if shell_config.mode == ShellMode.ADB and not check_adb_available(shell_config.adb_path):
        console.print("[red]Error: ADB is not available or not in PATH[/red]")
        console.print("Please ensure Android Debug Bridge (ADB) is installed and accessible.")
        sys.exit(1)


@cli.command("check")
@click.pass_context
def check(ctx):
    """Check root access, required binaries and the target device."""
    config = ctx.obj["config"]
    try:
        engine = _open_engine(ctx)

        table = Table(title="Environment")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="white")

        if config.shell.mode == ShellMode.ADB:
            device_info = get_device_by_serial(config.shell.serial, config.shell.adb_path).get_device_info()
            table.add_row("Device", device_info.display_name)
            table.add_row("Android Version", device_info.android_version)
            table.add_row("SDK Version", device_info.sdk_version)

        table.add_row("Shell", config.shell.mode.value)
        table.add_row("Root Access", "Yes")
        table.add_row("Binaries", ", ".join(config.required_binaries))
        table.add_row("ls -Zd", "Yes" if engine.shell.check_ls_zd() else "No")
        table.add_row("Backup Path", config.backup_save_path)
        table.add_row("Strategy", config.backup_strategy.value)
        table.add_row("Compression", config.compression_type.value)

        console.print(table)
        console.print("[bold green]Environment OK[/bold green]")

    except (DataBackupError, ADBError) as e:
        _abort(e)


@cli.command("users")
@click.pass_context
def users(ctx):
    """List device users and the users that have backups."""
    try:
        engine = _open_engine(ctx)
        device_users = PackageManager(engine.shell).list_users()
        backup_users = engine.list_backup_users()

        table = Table(title="Users")
        table.add_column("User", style="cyan")
        table.add_column("On Device", style="white")
        table.add_column("Has Backups", style="white")

        for user in sorted(set(device_users) | set(backup_users), key=int):
            table.add_row(
                user,
                "Yes" if user in device_users else "No",
                "Yes" if user in backup_users else "No",
            )

        console.print(table)

    except (DataBackupError, ADBError) as e:
        _abort(e)


@cli.command("apps")
@click.option("--restore", is_flag=True, help="Show restore points instead of installed apps")
@click.option("--system", is_flag=True, help="Include system apps")
@click.pass_context
def apps(ctx, restore: bool, system: bool):
    """List applications known to the backup or restore map."""
    try:
        engine = _open_engine(ctx)

        if restore:
            restore_map = engine.reconcile_restore_map()
            table = Table(title="Restore Points")
            table.add_column("Package", style="cyan")
            table.add_column("Label", style="white")
            table.add_column("Dates", style="white")
            table.add_column("APK", style="white")
            table.add_column("Data", style="white")
            table.add_column("On Device", style="green")

            for key in sorted(restore_map):
                entity = restore_map[key]
                detail = entity.selected_detail()
                table.add_row(
                    key,
                    entity.detail_base.app_name,
                    ", ".join(d.date for d in entity.detail_restore_list) or "-",
                    "Yes" if detail and detail.has_app else "No",
                    "Yes" if detail and detail.has_data else "No",
                    "Yes" if entity.detail_base.is_on_this_device else "No",
                )
        else:
            backup_map = engine.reconcile_backup_map()
            table = Table(title=f"Installed Applications ({'All' if system else 'User Only'})")
            table.add_column("Package", style="cyan")
            table.add_column("Label", style="white")
            table.add_column("Version", style="white")
            table.add_column("APK Size", style="white")
            table.add_column("Last Backup", style="green")

            for key in sorted(backup_map):
                entity = backup_map[key]
                base = entity.detail_base
                if not base.is_on_this_device or (base.is_system_app and not system):
                    continue
                table.add_row(
                    key,
                    base.app_name,
                    base.version_name,
                    format_size_token(entity.detail_backup.app_size) or "-",
                    entity.detail_backup.date or "-",
                )

        console.print(table)

    except (DataBackupError, ADBError) as e:
        _abort(e)


@cli.group()
def media():
    """Media directory commands."""
    pass


@media.command("list")
@click.option("--restore", is_flag=True, help="Show restore points instead of tracked directories")
@click.pass_context
def media_list(ctx, restore: bool):
    """List tracked media directories."""
    try:
        engine = _open_engine(ctx)

        if restore:
            restore_map = engine.reconcile_media_restore_map()
            table = Table(title="Media Restore Points")
            table.add_column("Name", style="cyan")
            table.add_column("Path", style="white")
            table.add_column("Dates", style="white")

            for name in sorted(restore_map):
                entity = restore_map[name]
                table.add_row(name, entity.path, ", ".join(d.date for d in entity.detail_restore_list) or "-")
        else:
            backup_map = engine.reconcile_media_backup_map()
            table = Table(title="Media")
            table.add_column("Name", style="cyan")
            table.add_column("Path", style="white")
            table.add_column("Selected", style="white")
            table.add_column("Size", style="white")
            table.add_column("Last Backup", style="green")

            for name in sorted(backup_map):
                entity = backup_map[name]
                detail = entity.backup_detail
                table.add_row(
                    name,
                    entity.path,
                    "Yes" if detail.select_data else "No",
                    format_size_token(detail.size) or "-",
                    detail.date or "-",
                )

        console.print(table)

    except (DataBackupError, ADBError) as e:
        _abort(e)


@media.command("add")
@click.argument("name")
@click.argument("path")
@click.pass_context
def media_add(ctx, name: str, path: str):
    """Track the directory PATH under NAME."""
    try:
        engine = _open_engine(ctx)
        engine.add_media(name, path)
        console.print(f"[bold green]Tracking {name}: {path}[/bold green]")
    except (DataBackupError, ADBError) as e:
        _abort(e)


@media.command("delete")
@click.argument("name")
@click.pass_context
def media_delete(ctx, name: str):
    """Stop tracking NAME; existing archives are kept."""
    try:
        engine = _open_engine(ctx)
        if engine.delete_media(name):
            console.print(f"[bold green]Removed {name}[/bold green]")
        else:
            console.print(f"[yellow]{name} is not tracked[/yellow]")
    except (DataBackupError, ADBError) as e:
        _abort(e)


@cli.group()
def backup():
    """Backup commands."""
    pass


@backup.command("apps")
@click.argument("packages", nargs=-1)
@click.pass_context
def backup_apps(ctx, packages: List[str]):
    """Back up PACKAGES, or every selected app when none are given."""
    try:
        engine = _open_engine(ctx)
        on_line = _line_sink(ctx.obj["verbose"])
        names = list(packages) or None
        _run_batch(
            lambda progress: engine.backup_apps(names, on_line=on_line, progress=progress),
            "Backup", "app", len(names) if names else None,
        )
    except (DataBackupError, ADBError) as e:
        _abort(e)


@backup.command("media")
@click.argument("names", nargs=-1)
@click.pass_context
def backup_media(ctx, names: List[str]):
    """Back up media NAMES, or every selected directory when none are given."""
    try:
        engine = _open_engine(ctx)
        on_line = _line_sink(ctx.obj["verbose"])
        selected = list(names) or None
        _run_batch(
            lambda progress: engine.backup_all_media(selected, on_line=on_line, progress=progress),
            "Media backup", "dir", len(selected) if selected else None,
        )
    except (DataBackupError, ADBError) as e:
        _abort(e)


@cli.group()
def restore():
    """Restore commands."""
    pass


@restore.command("apps")
@click.argument("packages", nargs=-1)
@click.option("--date", "-d", help="Restore point to use instead of the selected one")
@click.pass_context
def restore_apps(ctx, packages: List[str], date: Optional[str]):
    """Restore PACKAGES, or every selected restore point when none are given."""
    try:
        engine = _open_engine(ctx)
        on_line = _line_sink(ctx.obj["verbose"])
        names = list(packages) or None
        _run_batch(
            lambda progress: engine.restore_apps(names, date, on_line=on_line, progress=progress),
            "Restore", "app", len(names) if names else None,
        )
    except (DataBackupError, ADBError) as e:
        _abort(e)


@restore.command("media")
@click.argument("names", nargs=-1)
@click.option("--date", "-d", help="Restore point to use instead of the selected one")
@click.pass_context
def restore_media(ctx, names: List[str], date: Optional[str]):
    """Restore media NAMES, or every selected restore point when none are given."""
    try:
        engine = _open_engine(ctx)
        on_line = _line_sink(ctx.obj["verbose"])
        selected = list(names) or None
        _run_batch(
            lambda progress: engine.restore_all_media(selected, date, on_line=on_line, progress=progress),
            "Media restore", "dir", len(selected) if selected else None,
        )
    except (DataBackupError, ADBError) as e:
        _abort(e)


@cli.group()
def clear():
    """Remove backups."""
    pass


@clear.command("apps")
@click.confirmation_option(prompt="Delete every app archive of the backup user?")
@click.pass_context
def clear_apps(ctx):
    """Delete all app archives and the app restore map."""
    try:
        engine = _open_engine(ctx)
        if engine.clear_app_restore():
            console.print("[bold green]App backups removed[/bold green]")
        else:
            _abort(DataBackupError("Could not remove app backups"))
    except (DataBackupError, ADBError) as e:
        _abort(e)


@cli.command("history")
@click.pass_context
def history(ctx):
    """Show previous backup runs."""
    try:
        engine = _open_engine(ctx)
        runs = engine.load_history()

        if not runs:
            console.print("[yellow]No backups recorded[/yellow]")
            return

        table = Table(title="Backup History")
        table.add_column("Started", style="cyan")
        table.add_column("Finished", style="white")
        table.add_column("Type", style="white")
        table.add_column("User", style="white")
        table.add_column("Success", style="green")
        table.add_column("Version", style="white")

        for run in runs:
            table.add_row(
                run.start_time, run.end_time, run.type, run.backup_user,
                f"{run.success}/{run.total}", run.version,
            )

        console.print(table)

    except (DataBackupError, ADBError) as e:
        _abort(e)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
