"""
cloudfiles CLI

Command-line interface for chunked transfers to and from a file share.

Usage:
    cloudfiles upload SHARE REMOTE_PATH LOCAL_FILE     # Upload a local file
    cloudfiles download SHARE REMOTE_PATH -o OUT       # Download a file
    cloudfiles stat SHARE REMOTE_PATH                  # Show file properties
    cloudfiles config                                  # Show effective configuration
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import Config, load_config
from .errors import StorageError
from .rest.models import ContentSettings
from .service import FileService
from .transfer.progress import ProgressSnapshot, ProgressTracker, format_size

console = Console()


def setup_logging(verbose: bool = False, level_name: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def split_remote_path(remote_path: str) -> Tuple[str, str]:
    """'dir/sub/file.txt' -> ('dir/sub', 'file.txt')"""
    remote_path = remote_path.strip('/')
    if '/' not in remote_path:
        return '', remote_path
    directory, name = remote_path.rsplit('/', 1)
    return directory, name


def transfer_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    )


def track(progress: Progress, description: str) -> ProgressTracker:
    """A tracker whose updates drive a rich progress bar."""
    tracker = ProgressTracker(name=description)
    task = progress.add_task(description, total=None)

    def update(snapshot: ProgressSnapshot):
        progress.update(task, total=snapshot.total_size, completed=snapshot.completed_size)

    tracker.subscribe(update)
    return tracker


def run_command(ctx: click.Context, coro_factory: Callable):
    """Run an async command against a FileService, exiting 1 on failure."""
    config: Config = ctx.obj['config']
    factory = ctx.obj.get('service_factory') or FileService.from_config

    async def run():
        service = factory(config)
        try:
            return await coro_factory(service)
        finally:
            await service.close()

    try:
        return asyncio.run(run())
    except StorageError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        ctx.exit(1)


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(), default=None,
              help='JSON config file')
@click.option('--account-url', default=None, help='File service endpoint')
@click.option('--sas-token', default=None, help='Shared access signature')
@click.option('--parallel', type=int, default=None, help='Ranges in flight at once')
@click.option('--chunk-size', type=int, default=None, help='Range size in bytes (max 4MB)')
@click.pass_context
def cli(ctx, verbose, config_path, account_url, sas_token, parallel, chunk_size):
    """cloudfiles - chunked transfers for cloud file shares."""
    ctx.ensure_object(dict)
    config = load_config(Path(config_path) if config_path else None)

    if account_url:
        config.account_url = account_url
    if sas_token:
        config.sas_token = sas_token
    if parallel is not None:
        config.parallel_operation_thread_count = parallel
    if chunk_size is not None:
        config.chunk_size = chunk_size

    setup_logging(verbose, config.log_level)
    ctx.obj['config'] = config


@cli.command()
@click.argument('share')
@click.argument('remote_path')
@click.argument('local_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--store-md5', is_flag=True, help='Store the content MD5 with the file')
@click.option('--transactional-md5', is_flag=True, help='Send an MD5 with every range')
@click.option('--content-type', default=None, help='Content type to store')
@click.pass_context
def upload(ctx, share, remote_path, local_file, store_md5, transactional_md5, content_type):
    """Upload a local file."""
    directory, name = split_remote_path(remote_path)
    local_file = Path(local_file)

    async def do_upload(service: FileService):
        with transfer_progress() as progress:
            tracker = track(progress, f"Uploading {local_file.name}")
            return await service.upload_file(
                share, directory, name, local_file,
                progress=tracker,
                store_content_md5=store_md5 or None,
                use_transactional_md5=transactional_md5 or None,
                content_settings=ContentSettings(content_type=content_type) if content_type else None,
            )

    result = run_command(ctx, do_upload)
    console.print(f"\n[green]✓ Uploaded {format_size(result.bytes_transferred)} "
                  f"to {share}/{remote_path.strip('/')}[/green]")
    if result.content_md5:
        console.print(f"[dim]Content-MD5: {result.content_md5}[/dim]")


@cli.command()
@click.argument('share')
@click.argument('remote_path')
@click.option('--output', '-o', type=click.Path(), default=None, help='Output path')
@click.option('--range-start', type=int, default=None, help='First byte to download')
@click.option('--range-end', type=int, default=None, help='Last byte to download (inclusive)')
@click.option('--no-md5-check', is_flag=True, help='Skip MD5 validation')
@click.pass_context
def download(ctx, share, remote_path, output, range_start, range_end, no_md5_check):
    """Download a file."""
    directory, name = split_remote_path(remote_path)
    output_path = Path(output) if output else Path(name)

    async def do_download(service: FileService):
        with transfer_progress() as progress:
            tracker = track(progress, f"Downloading {name}")
            return await service.download_to_file(
                share, directory, name, output_path,
                range_start=range_start, range_end=range_end,
                progress=tracker,
                disable_md5_validation=no_md5_check or None,
            )

    result = run_command(ctx, do_download)
    console.print(f"\n[green]✓ Downloaded {format_size(result.bytes_transferred)} "
                  f"to: {output_path}[/green]")


@cli.command()
@click.argument('share')
@click.argument('remote_path')
@click.pass_context
def stat(ctx, share, remote_path):
    """Show file properties."""
    directory, name = split_remote_path(remote_path)

    async def do_stat(service: FileService):
        return await service.get_file_properties(share, directory, name)

    props = run_command(ctx, do_stat)
    size: Optional[int] = props.content_length

    lines = [
        f"Name: [cyan]{props.name}[/cyan]",
        f"Size: [yellow]{size:,} bytes[/yellow]" if size is not None else "Size: [dim]unknown[/dim]",
        f"Content-Type: {props.content_type or '-'}",
        f"Content-MD5: [green]{props.content_md5 or '-'}[/green]",
        f"ETag: {props.etag or '-'}",
        f"Last-Modified: {props.last_modified or '-'}",
    ]
    for key, value in props.metadata.items():
        lines.append(f"Metadata {key}: {value}")

    console.print(Panel.fit('\n'.join(lines), title=f"{share}/{remote_path.strip('/')}"))


@cli.command('config')
@click.pass_context
def show_config(ctx):
    """Show the effective configuration."""
    config: Config = ctx.obj['config']

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")
    for key, value in config.to_dict(redact=True).items():
        table.add_row(key, str(value))
    console.print(table)


if __name__ == '__main__':
    cli()
