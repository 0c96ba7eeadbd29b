"""CLI command definitions for pkgtxn."""

import sys
from pathlib import Path

import click

from pkgtxn.commands.context import CommandContext
from pkgtxn.commands.history import history
from pkgtxn.commands.transaction import distro_sync, downgrade, install, reinstall, remove, upgrade
from pkgtxn.config import ConfigError, load_config
from pkgtxn.errors import format_error
from pkgtxn.logger import FileLogger, Level, setup_logging


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None,
              help="Config file (default: $PKGTXN_CONFIG or ~/.config/pkgtxn/pkgtxn.yaml)")
@click.option("--index", "index_path", type=click.Path(path_type=Path), default=None,
              help="Package index snapshot to operate on")
@click.option("--debug", is_flag=True, help="Enable debug output for troubleshooting")
@click.option("--assumeyes", "-y", is_flag=True, help="Answer yes to the confirmation prompt")
@click.option("--allowerasing", is_flag=True, default=None,
              help="Allow removing installed packages to resolve conflicts")
@click.option("--best/--nobest", default=None, help="Require the newest candidate for every job")
@click.pass_context
def cli(ctx, config_path: Path | None, index_path: Path | None, debug: bool, assumeyes: bool,
        allowerasing: bool | None, best: bool | None):
    """Resolve and run package transactions."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)

    sink = None
    if config.log_file is not None:
        sink = FileLogger(config.log_file, Level.parse(config.log_level) if config.log_level else None)
    setup_logging(debug, sink)

    ctx.obj = CommandContext(
        config=config,
        debug=debug,
        assumeyes=assumeyes,
        index_path=index_path,
        allow_erasing=allowerasing or None,
        best=best,
    )


cli.add_command(install)
cli.add_command(remove)
cli.add_command(upgrade)
cli.add_command(downgrade)
cli.add_command(reinstall)
cli.add_command(distro_sync, name="distro-sync")
cli.add_command(history)

__all__ = [
    "cli",
]


if __name__ == "__main__":
    cli()
