"""Shared flow for commands that change the system."""

import sys

import click

from pkgtxn.commands.context import CommandContext
from pkgtxn.errors import LockUnavailable, format_error, format_suggestion
from pkgtxn.goal import Goal
from pkgtxn.reporting import format_problems, render_transaction


def run_goal(context: CommandContext, goal: Goal) -> None:
    """Resolve a goal, confirm the transaction and execute it.

    Exits with status 1 on blocking problems, when the user declines, or
    when execution fails.
    """
    # Opening the store seeds the transaction id allocator past the
    # recorded ids; it must happen before resolve allocates one.
    context.history()
    result = goal.resolve()
    if not result.ok:
        click.echo(format_problems(result.problems), err=True)
        sys.exit(1)
    if result.problems:
        click.echo(format_problems(result.problems))

    transaction = result.transaction
    if transaction is None:
        click.echo("Nothing to do.")
        return

    click.echo(render_transaction(transaction))
    executor = context.executor()
    if not context.assumeyes and not click.confirm("Is this ok?", default=False):
        executor.cancel(transaction)
        click.echo("Operation aborted.")
        sys.exit(1)

    try:
        execution = executor.run(transaction)
    except LockUnavailable as e:
        click.echo(format_suggestion(str(e), "retry when the running transaction has finished"), err=True)
        sys.exit(1)

    if not execution.ok:
        click.echo(
            format_error(f"{execution.failed_item} failed: {execution.error.cause}"),
            err=True,
        )
        click.echo(f"Transaction {transaction.id} failed; applied items were kept.", err=True)
        sys.exit(1)
    click.echo("Complete!")
