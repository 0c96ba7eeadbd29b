"""Human-readable rendering of problems, transactions and history.

All functions are pure: the same input always renders the same text.
"""

from datetime import datetime, timezone

from .models import HistoryRecord, ItemAction, ItemOutcome, ItemReason, Problem, ProblemKind
from .transaction import Transaction

# Lower sorts first.
SEVERITY = {
    ProblemKind.PROTECTED_PACKAGE: 0,
    ProblemKind.CONFLICTS: 0,
    ProblemKind.BROKEN_DEPENDENCY: 0,
    ProblemKind.NOT_FOUND: 1,
    ProblemKind.EXCLUDED: 1,
    ProblemKind.HISTORY_PACKAGE_UNAVAILABLE: 1,
    ProblemKind.ORDERING_CYCLE: 2,
    ProblemKind.ALREADY_INSTALLED: 2,
}

_SECTION_TITLES = {
    ItemAction.INSTALL: "Installing",
    ItemAction.UPGRADE: "Upgrading",
    ItemAction.REINSTALL: "Reinstalling",
    ItemAction.DOWNGRADE: "Downgrading",
    ItemAction.REMOVE: "Removing",
    ItemAction.OBSOLETE: "Obsoleting",
    ItemAction.REPLACED: "Replacing",
}

_SUMMARY_WORDS = {
    ItemAction.INSTALL: "Install",
    ItemAction.UPGRADE: "Upgrade",
    ItemAction.REINSTALL: "Reinstall",
    ItemAction.DOWNGRADE: "Downgrade",
    ItemAction.REMOVE: "Remove",
    ItemAction.OBSOLETE: "Obsolete",
    ItemAction.REPLACED: "Replace",
}

_OUTCOME_ICONS = {
    ItemOutcome.APPLIED: "✅",
    ItemOutcome.FAILED: "❌",
    ItemOutcome.UNATTEMPTED: "⏭️ ",
}


def sort_problems(problems: list[Problem]) -> list[Problem]:
    """Most severe first; equal severity keeps the order given."""
    return sorted(problems, key=lambda problem: SEVERITY[problem.kind])


def format_problems(problems: list[Problem]) -> str:
    if not problems:
        return ""
    lines = []
    for number, problem in enumerate(sort_problems(problems), 1):
        marker = "Warning" if problem.advisory else "Problem"
        lines.append(f"{marker} {number} [{problem.kind.value}]: {problem.message}")
        for ref in problem.implicated:
            lines.append(f"  - {ref.nevra}")
    return "\n".join(lines)


def render_transaction(transaction: Transaction) -> str:
    """Transaction table grouped by action, in execution order, with a summary."""
    items = transaction.ordered_items()
    if not items:
        return "Nothing to do."

    width = max(len(item.package.name) for item in items)
    lines = [f"Transaction {transaction.id}", ""]
    for action, title in _SECTION_TITLES.items():
        section = [item for item in items if item.action is action]
        if not section:
            continue
        lines.append(f"{title}:")
        for item in section:
            ref = item.package
            detail = f"  {ref.name:<{width}}  {ref.arch:<8} {ref.evr!s:<16} {ref.repo}"
            if item.replaces:
                detail += f"  (replacing {', '.join(old.nevra for old in item.replaces)})"
            if item.reason is not ItemReason.USER:
                detail += f"  [{item.reason.value}]"
            lines.append(detail.rstrip())
        lines.append("")

    lines.append("Transaction Summary:")
    for action, word in _SUMMARY_WORDS.items():
        count = sum(1 for item in items if item.action is action)
        if count:
            noun = "Package" if count == 1 else "Packages"
            lines.append(f"  {word:<10} {count} {noun}")
    return "\n".join(lines)


def _format_epoch(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def render_history(records: list[HistoryRecord]) -> str:
    if not records:
        return "No transactions recorded."
    lines = [f"{'ID':>4}  {'Started (UTC)':<19}  {'State':<11}  Altered"]
    for record in sorted(records, key=lambda r: r.id, reverse=True):
        altered = sum(1 for item in record.items if item.action is not ItemAction.REPLACED)
        lines.append(
            f"{record.id:>4}  {_format_epoch(record.start_epoch):<19}  "
            f"{record.final_state.value:<11}  {altered}"
        )
    return "\n".join(lines)


def render_record(record: HistoryRecord) -> str:
    lines = [
        f"Transaction ID : {record.id}",
        f"Begin time     : {_format_epoch(record.start_epoch)}",
        f"End time       : {_format_epoch(record.end_epoch)} "
        f"({record.end_epoch - record.start_epoch} seconds)",
        f"State          : {record.final_state.value}",
        "Packages Altered:",
    ]
    for item in record.items:
        icon = _OUTCOME_ICONS[item.outcome]
        nevra = f"{item.name}-{item.epoch_version_release}.{item.arch}"
        line = f"    {icon} {item.action.value:<10} {nevra}  [{item.reason.value}]"
        if item.cause:
            line += f": {item.cause}"
        lines.append(line)
    return "\n".join(lines)


__all__ = [
    "SEVERITY",
    "format_problems",
    "render_history",
    "render_record",
    "render_transaction",
    "sort_problems",
]
