"""imgup runtime CLI.

Default mode runs the protocol engine over stdio (for the GUI).

Usage:
    imgup-runtime                         # Stdio protocol engine (default)
    imgup-runtime --config cfg.json       # Use a specific configuration file
    imgup-runtime --no-embed              # Upload originals, no metadata embedding

    imgup-runtime backends                # List configured backends
    imgup-runtime backends --json         # ... as JSON
    imgup-runtime metadata <file>         # Show the metadata prepare would extract
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click

from . import __version__
from .collaborators.exiftool import ExiftoolMetadata
from .collaborators.upload_service import UploadService
from .config import RuntimeConfig
from .errors import ConfigError, MetadataError
from .transport.stdio_adapter import configure_logging
from .transport.stdio_adapter import main as run_stdio

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def _load_config(ctx: click.Context) -> RuntimeConfig:
    """Configuration stored on the group context."""
    return ctx.find_root().obj


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="IMGUP_CONFIG",
    help="Configuration file (default ~/.config/imgupv2/config.json)",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Log level for stderr logging",
)
@click.option("--exiftool", "exiftool_path", help="Path to the exiftool executable")
@click.option("--no-embed", is_flag=True, help="Upload original files without embedding metadata")
@click.version_option(__version__, prog_name="imgup-runtime")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Path | None,
    log_level: str | None,
    exiftool_path: str | None,
    no_embed: bool,
) -> None:
    """imgup runtime - upload session engine for the imgup GUI.

    By default, reads request envelopes from stdin and writes responses and
    progress events to stdout, one JSON object per line.
    """
    try:
        config = RuntimeConfig.load(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    if log_level:
        config.log_level = log_level.upper()
    if exiftool_path:
        config.exiftool_path = exiftool_path
    if no_embed:
        config.embed_metadata = False

    configure_logging(config.log_level)
    ctx.obj = config

    # If a subcommand is invoked, let it handle everything
    if ctx.invoked_subcommand is not None:
        return

    run_stdio(config)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def backends(ctx: click.Context, as_json: bool) -> None:
    """List configured upload backends."""
    service = UploadService.from_config(_load_config(ctx))
    names = service.list_available_backends()

    if as_json:
        click.echo(json.dumps(names))
        return

    if not names:
        click.echo("No backends configured.")
        return
    for name in names:
        click.echo(name)


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def metadata(ctx: click.Context, path: str) -> None:
    """Show the metadata extracted from PATH."""
    exiftool = ExiftoolMetadata.discover(_load_config(ctx).exiftool_path)
    if exiftool is None:
        raise click.ClickException("exiftool not found")

    try:
        extracted = asyncio.run(exiftool.extract_metadata(path))
    except MetadataError as e:
        raise click.ClickException(str(e)) from e

    click.echo(extracted.model_dump_json(by_alias=True, exclude_none=True, indent=2))


if __name__ == "__main__":
    main()
