"""Transaction history commands."""

import sys

import click

from pkgtxn.commands.context import CommandContext
from pkgtxn.commands.utils import run_goal
from pkgtxn.errors import ContractViolation, HistoryPackageUnavailable, format_error
from pkgtxn.reporting import format_problems, render_history, render_record


@click.group()
def history():
    """Inspect and undo past transactions."""
    pass


@history.command(name="list")
@click.option("--since", type=int, default=None, help="Only transactions started at or after this epoch")
@click.option("--until", type=int, default=None, help="Only transactions started at or before this epoch")
@click.pass_obj
def history_list(context: CommandContext, since: int | None, until: int | None):
    """List recorded transactions, newest first."""
    click.echo(render_history(context.history().query(since, until)))


def _get_record(context: CommandContext, transaction_id: int):
    record = context.history().get(transaction_id)
    if record is None:
        click.echo(format_error(f"transaction {transaction_id} not found"), err=True)
        sys.exit(1)
    return record


@history.command(name="info")
@click.argument("transaction_id", type=int)
@click.pass_obj
def history_info(context: CommandContext, transaction_id: int):
    """Show the items of one transaction."""
    click.echo(render_record(_get_record(context, transaction_id)))


@history.command(name="undo")
@click.argument("transaction_id", type=int)
@click.pass_obj
def history_undo(context: CommandContext, transaction_id: int):
    """Revert the changes of a successful transaction."""
    record = _get_record(context, transaction_id)
    try:
        goal = context.history().invert(record, context.index(), context.policy())
    except HistoryPackageUnavailable as e:
        click.echo(format_error(str(e)), err=True)
        click.echo(format_problems(e.problems), err=True)
        sys.exit(1)
    except ContractViolation as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)
    run_goal(context, goal)
