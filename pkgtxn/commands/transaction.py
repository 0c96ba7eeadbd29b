"""Commands that build a Goal from package patterns and execute it."""

import click

from pkgtxn.commands.context import CommandContext
from pkgtxn.commands.utils import run_goal
from pkgtxn.goal import Goal


def _goal(context: CommandContext) -> Goal:
    return Goal(context.index(), context.policy())


@click.command()
@click.argument("patterns", nargs=-1, required=True)
@click.option("--allow-downgrade", is_flag=True, help="Allow installing an older version than the installed one")
@click.option("--force", is_flag=True, help="Reinstall packages that are already installed")
@click.option("--weak/--no-weak", default=None, help="Install weak dependencies (recommends)")
@click.pass_obj
def install(context: CommandContext, patterns: tuple[str, ...], allow_downgrade: bool, force: bool,
            weak: bool | None):
    """Install packages matching PATTERNS."""
    if weak is None:
        weak = context.config.install_weak_deps
    goal = _goal(context)
    for pattern in patterns:
        goal.add_install(pattern, allow_downgrade=allow_downgrade, force=force, weak=weak)
    run_goal(context, goal)


@click.command()
@click.argument("patterns", nargs=-1, required=True)
@click.option("--clean-deps/--no-clean-deps", default=None,
              help="Also remove dependencies left unused by the removal")
@click.pass_obj
def remove(context: CommandContext, patterns: tuple[str, ...], clean_deps: bool | None):
    """Remove installed packages matching PATTERNS."""
    if clean_deps is None:
        clean_deps = context.config.clean_requirements_on_remove
    goal = _goal(context)
    for pattern in patterns:
        goal.add_remove(pattern, clean_deps=clean_deps)
    run_goal(context, goal)


@click.command()
@click.argument("patterns", nargs=-1)
@click.pass_obj
def upgrade(context: CommandContext, patterns: tuple[str, ...]):
    """Upgrade installed packages (all of them without PATTERNS)."""
    goal = _goal(context)
    if not patterns:
        goal.add_upgrade()
    for pattern in patterns:
        goal.add_upgrade(pattern)
    run_goal(context, goal)


@click.command()
@click.argument("patterns", nargs=-1, required=True)
@click.pass_obj
def downgrade(context: CommandContext, patterns: tuple[str, ...]):
    """Downgrade installed packages to the next lower available version."""
    goal = _goal(context)
    for pattern in patterns:
        goal.add_downgrade(pattern)
    run_goal(context, goal)


@click.command()
@click.argument("patterns", nargs=-1, required=True)
@click.pass_obj
def reinstall(context: CommandContext, patterns: tuple[str, ...]):
    """Reinstall installed packages from a repository."""
    goal = _goal(context)
    for pattern in patterns:
        goal.add_reinstall(pattern)
    run_goal(context, goal)


@click.command(name="distro-sync")
@click.argument("patterns", nargs=-1)
@click.pass_obj
def distro_sync(context: CommandContext, patterns: tuple[str, ...]):
    """Move installed packages to the best available version, up or down."""
    goal = _goal(context)
    if not patterns:
        goal.add_distro_sync()
    for pattern in patterns:
        goal.add_distro_sync(pattern)
    run_goal(context, goal)
