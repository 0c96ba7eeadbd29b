from pkgtxn.models import (
    HistoryItem,
    HistoryRecord,
    ItemAction,
    ItemOutcome,
    ItemReason,
    Problem,
    ProblemKind,
    TransactionPackage,
    TransactionState,
)
from pkgtxn.reporting import format_problems, render_history, render_record, render_transaction, sort_problems
from pkgtxn.transaction import Transaction

from tests.conftest import make_ref


def problem(kind, message):
    return Problem(kind=kind, message=message)


class TestProblemOrdering:
    """Test problem severity ordering."""

    def test_most_severe_first_and_stable(self):
        problems = [
            problem(ProblemKind.ALREADY_INSTALLED, "a"),
            problem(ProblemKind.NOT_FOUND, "b"),
            problem(ProblemKind.CONFLICTS, "c"),
            problem(ProblemKind.EXCLUDED, "d"),
            problem(ProblemKind.PROTECTED_PACKAGE, "e"),
            problem(ProblemKind.ORDERING_CYCLE, "f"),
            problem(ProblemKind.BROKEN_DEPENDENCY, "g"),
        ]
        assert [p.message for p in sort_problems(problems)] == ["c", "e", "g", "b", "d", "a", "f"]

    def test_sort_does_not_mutate(self):
        problems = [problem(ProblemKind.NOT_FOUND, "b"), problem(ProblemKind.CONFLICTS, "a")]
        sort_problems(problems)
        assert [p.message for p in problems] == ["b", "a"]

    def test_format(self):
        problems = [
            problem(ProblemKind.ALREADY_INSTALLED, "Package foo-1.0-1.x86_64 is already installed."),
            Problem(
                kind=ProblemKind.BROKEN_DEPENDENCY,
                implicated=(make_ref("bar", "1.0-1"),),
                message="nothing provides libx needed by bar-1.0-1.x86_64",
            ),
        ]
        assert format_problems(problems) == "\n".join([
            "Problem 1 [broken-dependency]: nothing provides libx needed by bar-1.0-1.x86_64",
            "  - bar-1.0-1.x86_64",
            "Warning 2 [already-installed]: Package foo-1.0-1.x86_64 is already installed.",
        ])

    def test_format_empty(self):
        assert format_problems([]) == ""


class TestRenderTransaction:
    """Test transaction tables."""

    def test_empty(self):
        assert render_transaction(Transaction()) == "Nothing to do."

    def test_sections_and_summary(self):
        old = make_ref("foo", "1.0-1", repo="@System")
        transaction = Transaction(items=[
            TransactionPackage(make_ref("foo", "2.0-1", repo="fedora"), ItemAction.UPGRADE,
                               ItemReason.DEPENDENCY, order_index=0, replaces=(old,)),
            TransactionPackage(make_ref("bar", "1.0-1", repo="fedora"), ItemAction.INSTALL, order_index=1),
        ])
        text = render_transaction(transaction)
        lines = text.splitlines()

        assert lines[0] == f"Transaction {transaction.id}"
        assert lines.index("Installing:") < lines.index("Upgrading:")
        assert "(replacing foo-1.0-1.x86_64)" in text
        assert "[dependency]" in text
        assert lines[-3:] == [
            "Transaction Summary:",
            "  Install    1 Package",
            "  Upgrade    1 Package",
        ]

    def test_deterministic(self):
        items = [TransactionPackage(make_ref(n, "1.0-1"), ItemAction.REMOVE, order_index=i)
                 for i, n in enumerate(["a", "b"])]
        assert render_transaction(Transaction(items=items, id=5)) == render_transaction(Transaction(items=items, id=5))


class TestRenderHistory:
    """Test history list and info output."""

    def record(self):
        return HistoryRecord(
            id=3,
            start_epoch=0,
            end_epoch=2,
            final_state=TransactionState.FAILED,
            items=(
                HistoryItem("foo", "x86_64", "2.0-1", ItemAction.UPGRADE, ItemReason.USER, ItemOutcome.APPLIED),
                HistoryItem("foo", "x86_64", "1.0-1", ItemAction.REPLACED, ItemReason.USER, ItemOutcome.APPLIED),
                HistoryItem("bar", "x86_64", "1.0-1", ItemAction.INSTALL, ItemReason.USER, ItemOutcome.FAILED,
                            cause="disk full"),
            ),
        )

    def test_empty(self):
        assert render_history([]) == "No transactions recorded."

    def test_list_newest_first(self):
        older = HistoryRecord(id=1, start_epoch=0, end_epoch=0, final_state=TransactionState.DONE)
        lines = render_history([older, self.record()]).splitlines()
        assert lines[1].split()[0] == "3"
        assert lines[2].split()[0] == "1"
        assert "1970-01-01 00:00:00" in lines[1]
        assert lines[1].split()[-1] == "2"

    def test_info(self):
        text = render_record(self.record())
        assert "Transaction ID : 3" in text
        assert "(2 seconds)" in text
        assert "State          : failed" in text
        assert "bar-1.0-1.x86_64  [user]: disk full" in text
        assert "✅ upgrade" in text
