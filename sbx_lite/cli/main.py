"""
Main CLI entry point for sbx-lite.

This module provides the ``sbx`` command-line interface using Click
with Rich formatting.
"""

import sys
from typing import NoReturn, Optional

import click
from click.core import ParameterSource
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from sbx_lite import __version__
from sbx_lite.backup import BackupManager
from sbx_lite.core.error_handler import ErrorContext, ErrorHandler
from sbx_lite.core.exceptions import SbxError, UserInputError
from sbx_lite.models.config import SbxContext
from sbx_lite.utils.helpers import format_bytes
from sbx_lite.utils.logging import setup_logging

console = Console()


def _report_error(error: Exception, operation: str, archive: Optional[str] = None) -> NoReturn:
    """Print the error report and exit with the mapped exit code."""
    handler = ErrorHandler()
    error_info = handler.handle_error(error, ErrorContext(operation=operation, archive=archive))
    console.print(Panel(
        Text("\n".join(handler.format_report(error_info))),
        title=f"❌ {operation} failed",
        border_style="red",
        padding=(1, 2)
    ))
    sys.exit(int(error_info.exit_code))


def _click_confirm(message: str) -> bool:
    try:
        return click.confirm(message, default=False)
    except click.Abort:
        return False


def _build_manager(ctx: click.Context) -> BackupManager:
    """Create a BackupManager for the configured context."""
    context = SbxContext.from_sources(ctx.obj.get('config'))
    factory = ctx.obj.get('manager_factory', BackupManager)
    manager = factory(context)
    if manager.confirm is None:
        manager.confirm = _click_confirm
    return manager


@click.group(invoke_without_command=True)
@click.option('--config', '-c', type=click.Path(exists=True, dir_okay=False), help='Configuration file path (YAML or JSON)')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--version', is_flag=True, help='Show version information')
@click.pass_context
def main(ctx: click.Context, config: Optional[str], verbose: bool, version: bool):
    """
    sbx-lite management toolkit

    Back up, restore and prune the sing-box configuration, TLS
    certificates and systemd unit.
    """
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['config'] = config

    if version:
        console.print(f"sbx-lite version {__version__}")
        sys.exit(0)

    setup_logging(level="DEBUG" if verbose else "INFO")

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@main.group()
def backup():
    """Create, restore, list and clean up backups."""
    pass


@backup.command()
@click.option('--encrypt', '-e', is_flag=True, help='Encrypt the archive')
@click.option('--password', '-p', default=None, help='Encryption password (implies --encrypt; generated when omitted)')
@click.pass_context
def create(ctx: click.Context, encrypt: bool, password: Optional[str]):
    """Create a backup of the current configuration."""
    try:
        manager = _build_manager(ctx)
        archive = manager.create(encrypt=encrypt or password is not None, password=password)
    except SbxError as e:
        _report_error(e, "Backup")

    details = Text()
    details.append("File: ", style="bold")
    details.append(f"{archive.path}\n")
    details.append("Size: ", style="bold")
    details.append(f"{format_bytes(archive.size)}\n")
    details.append("Encrypted: ", style="bold")
    details.append("yes" if archive.encrypted else "no")
    if archive.key_file:
        details.append("\nKey file: ", style="bold")
        details.append(str(archive.key_file), style="yellow")

    console.print(Panel(details, title="✅ Backup created", border_style="green", padding=(1, 2)))


@backup.command()
@click.argument('archive', type=click.Path(dir_okay=False))
@click.option('--password', '-p', default=None, help='Password for an encrypted archive')
@click.option('--force', '-f', is_flag=True, help='Restore without confirmation')
@click.option('--auto-start/--no-auto-start', default=True, help='Start the service after restore even if it was stopped')
@click.pass_context
def restore(ctx: click.Context, archive: str, password: Optional[str], force: bool, auto_start: bool):
    """Restore configuration from ARCHIVE."""
    if ctx.get_parameter_source('auto_start') == ParameterSource.DEFAULT:
        auto_start = None

    try:
        manager = _build_manager(ctx)
        result = manager.restore(archive, password=password, force=True if force else None, auto_start=auto_start)
    except SbxError as e:
        _report_error(e, "Restore", archive)
    except KeyboardInterrupt:
        _report_error(UserInputError("Restore cancelled"), "Restore", archive)

    details = Text()
    details.append("Archive: ", style="bold")
    details.append(f"{result.archive}\n")
    details.append("Certificates: ", style="bold")
    details.append(f"{', '.join(result.domains) or 'none'}\n")
    details.append("Service: ", style="bold")
    details.append("running" if result.service_running else "stopped")
    if result.metadata:
        details.append("\nBackup date: ", style="bold")
        details.append(result.metadata.backup_date)

    console.print(Panel(details, title="✅ Restore completed", border_style="green", padding=(1, 2)))


@backup.command(name='list')
@click.pass_context
def list_backups(ctx: click.Context):
    """List available backups."""
    try:
        manager = _build_manager(ctx)
        archives = manager.list_backups()
    except SbxError as e:
        _report_error(e, "List")

    if not archives:
        console.print("[yellow]No backups found[/yellow]")
        return

    table = Table(
        title="💾 Available Backups",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
        title_style="bold blue"
    )
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Created", style="blue")
    table.add_column("Size", style="yellow", justify="right")
    table.add_column("Encrypted", style="magenta", justify="center")
    table.add_column("Key file", style="dim")

    for archive in archives:
        table.add_row(
            archive.path.name,
            archive.created_at.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
            format_bytes(archive.size),
            "🔒" if archive.encrypted else "",
            archive.key_file.name if archive.key_file else "",
        )

    console.print(table)
    console.print(f"\n[dim]Total: {len(archives)} backup(s)[/dim]")


@backup.command()
@click.option('--retention-days', '-r', type=int, default=None, help='Delete backups older than this many days')
@click.pass_context
def cleanup(ctx: click.Context, retention_days: Optional[int]):
    """Delete backups older than the retention window."""
    try:
        manager = _build_manager(ctx)
        deleted = manager.cleanup(retention_days)
    except SbxError as e:
        _report_error(e, "Cleanup")

    if deleted:
        console.print(f"[green]✓ Deleted {deleted} old backup(s)[/green]")
    else:
        console.print("[green]No old backups to clean up[/green]")


if __name__ == '__main__':
    main()
