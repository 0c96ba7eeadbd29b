"""Transaction history: append-only JSON Lines store and inversion (undo)."""

import json
import logging
import threading
from pathlib import Path

from .errors import ContractViolation, HistoryPackageUnavailable
from .goal import Goal
from .index import PackageIndex
from .models import (
    GoalPolicy,
    HistoryItem,
    HistoryRecord,
    ItemAction,
    ItemOutcome,
    Job,
    JobAction,
    PackageRef,
    Problem,
    ProblemKind,
    TransactionPackage,
    TransactionState,
)
from .transaction import transaction_ids

_logging = logging.getLogger(__name__)

# Actions whose record carries the replaced version as a REPLACED companion.
_VERSION_CHANGES = (ItemAction.UPGRADE, ItemAction.DOWNGRADE, ItemAction.REINSTALL)


def build_record(
    transaction_id: int,
    start_epoch: int,
    end_epoch: int,
    state: TransactionState,
    outcomes,
) -> HistoryRecord:
    """Build a HistoryRecord from ``(item, outcome, cause)`` triples.

    Version changes are followed by a REPLACED item for every version they
    replaced, sharing the parent's outcome.
    """
    items = []
    for item, outcome, cause in outcomes:
        items.append(_history_item(item.package, item.action, item, outcome, cause))
        if item.action in _VERSION_CHANGES:
            for old in item.replaces:
                items.append(_history_item(old, ItemAction.REPLACED, item, outcome, None))
    return HistoryRecord(
        id=transaction_id,
        start_epoch=start_epoch,
        end_epoch=end_epoch,
        final_state=state,
        items=tuple(items),
    )


def _history_item(ref: PackageRef, action: ItemAction, item: TransactionPackage,
                  outcome: ItemOutcome, cause: str | None) -> HistoryItem:
    return HistoryItem(
        name=ref.name,
        arch=ref.arch,
        epoch_version_release=str(ref.evr),
        action=action,
        reason=item.reason,
        outcome=outcome,
        cause=cause,
    )


class HistoryStore:
    """Append-only record store keyed by increasing transaction id.

    Records are kept in memory and, when a path is given, appended to a
    JSON Lines file (one record per line). Loading the file also advances the
    process-wide transaction id allocator past the last stored id.
    """

    def __init__(self, path: Path | None = None):
        self.path = path
        self._records: dict[int, HistoryRecord] = {}
        self._lock = threading.Lock()
        if path is not None:
            self._load()
        transaction_ids.reserve_through(self.last_id())

    def _load(self) -> None:
        if not self.path.exists():
            return
        with open(self.path, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = HistoryRecord.from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                    _logging.error(f"Skipping corrupt history line {line_num} in {self.path}: {e}")
                    continue
                self._records[record.id] = record
        _logging.debug(f"Loaded {len(self._records)} history records from {self.path}")

    def last_id(self) -> int:
        with self._lock:
            return max(self._records, default=0)

    def record(self, record: HistoryRecord) -> None:
        """Append a record.

        Raises:
            ContractViolation: If the id is not greater than every stored id
        """
        with self._lock:
            last = max(self._records, default=0)
            if record.id <= last:
                raise ContractViolation(
                    f"History record id {record.id} must be greater than the last id {last}"
                )
            if self.path is not None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(record.to_dict()) + "\n")
            self._records[record.id] = record
        transaction_ids.reserve_through(record.id)

    def get(self, record_id: int) -> HistoryRecord | None:
        with self._lock:
            return self._records.get(record_id)

    def query(self, start: int | None = None, end: int | None = None) -> list[HistoryRecord]:
        """Records whose start_epoch lies within [start, end], oldest first."""
        with self._lock:
            records = [self._records[key] for key in sorted(self._records)]
        return [
            record for record in records
            if (start is None or record.start_epoch >= start)
            and (end is None or record.start_epoch <= end)
        ]

    def invert(self, record: HistoryRecord, index: PackageIndex, policy: GoalPolicy | None = None) -> Goal:
        """Build a Goal that reverses the effect of a DONE record.

        INSTALL becomes REMOVE, REMOVE and OBSOLETE become INSTALL of the
        recorded version, UPGRADE and DOWNGRADE move back to the replaced
        version and REINSTALL stays REINSTALL.

        Raises:
            ContractViolation: If the record is not DONE
            HistoryPackageUnavailable: If a version to restore is not
                available from any repository
        """
        if record.final_state is not TransactionState.DONE:
            raise ContractViolation(
                f"Only successful transactions can be undone; transaction {record.id} "
                f"is {record.final_state.value}"
            )

        replaced = {
            (item.name, item.arch): item
            for item in record.items
            if item.action is ItemAction.REPLACED
        }
        jobs: list[Job] = []
        problems: list[Problem] = []

        def available(item: HistoryItem) -> PackageRef | None:
            ref = index.find(item.name, item.arch, item.evr, installed=False)
            if ref is None or index.is_excluded(ref):
                ref = PackageRef(name=item.name, arch=item.arch, evr=item.evr)
                problems.append(Problem(
                    kind=ProblemKind.HISTORY_PACKAGE_UNAVAILABLE,
                    implicated=(ref,),
                    message=f"Cannot find rpm nevra \"{ref.nevra}\".",
                ))
                return None
            return ref

        for item in record.items:
            if item.action is ItemAction.INSTALL:
                current = index.find(item.name, item.arch, item.evr, installed=True)
                if current is None:
                    _logging.info(f"{item.name}-{item.epoch_version_release}.{item.arch} "
                                  f"is no longer installed, nothing to remove")
                    continue
                jobs.append(Job(JobAction.REMOVE, packages=(current,)))

            elif item.action in (ItemAction.REMOVE, ItemAction.OBSOLETE):
                ref = available(item)
                if ref is not None:
                    jobs.append(Job(JobAction.INSTALL, packages=(ref,)))

            elif item.action in (ItemAction.UPGRADE, ItemAction.DOWNGRADE):
                previous = replaced.get((item.name, item.arch))
                if previous is None:
                    raise ContractViolation(
                        f"History record {record.id} lacks the replaced version of {item.name}.{item.arch}"
                    )
                ref = available(previous)
                if ref is not None:
                    action = JobAction.DOWNGRADE if item.action is ItemAction.UPGRADE else JobAction.UPGRADE
                    jobs.append(Job(action, packages=(ref,)))

            elif item.action is ItemAction.REINSTALL:
                ref = available(item)
                if ref is not None:
                    jobs.append(Job(JobAction.REINSTALL, packages=(ref,)))

        if problems:
            raise HistoryPackageUnavailable(
                f"Cannot undo transaction {record.id}: "
                f"{len(problems)} package version(s) are no longer available",
                problems=problems,
            )

        goal = Goal(index, policy)
        for job in jobs:
            goal.add_job(job)
        return goal


__all__ = [
    "HistoryStore",
    "build_record",
]
