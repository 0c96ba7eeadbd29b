"""Transaction execution under the process-wide execution lock.

The executor walks a Transaction in ``order_index`` order and hands each
item to an Installer. The first failing item stops the run: applied items
are kept (no rollback), later items are never attempted, and a history
record describing exactly that is persisted before the lock is released.
"""

import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .errors import ContractViolation, InstallError, LockUnavailable
from .history import HistoryStore, build_record
from .models import HistoryRecord, ItemOutcome, TransactionPackage, TransactionState
from .transaction import Transaction

_logging = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.1

ProgressCallback = Callable[[TransactionPackage, str, int], None]

# One in-process mutex per lock file; threads of one process never race on
# the file itself.
_thread_locks: dict[str, threading.Lock] = {}
_thread_locks_guard = threading.Lock()


def _thread_lock_for(path: Path | None) -> threading.Lock:
    key = str(path.resolve()) if path is not None else ""
    with _thread_locks_guard:
        return _thread_locks.setdefault(key, threading.Lock())


def _is_process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class ExecutionLock:
    """Process-wide execution mutex.

    Combines an in-process ``threading.Lock`` with a lock file created
    atomically (``O_CREAT | O_EXCL``) that holds the owner's pid. A lock
    file left behind by a dead process is reclaimed. Without a path the
    lock only guards threads of the current process.
    """

    def __init__(
        self,
        path: Path | None = None,
        timeout: float = 30,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.path = Path(path) if path is not None else None
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._thread_lock = _thread_lock_for(self.path)
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """Acquire the lock, waiting at most ``timeout`` seconds.

        Raises:
            LockUnavailable: If another transaction keeps the lock
        """
        deadline = time.monotonic() + self.timeout
        if not self._thread_lock.acquire(timeout=self.timeout):
            raise LockUnavailable(
                f"Another transaction is in progress in this process (waited {self.timeout}s)"
            )
        try:
            while self.path is not None and not self._try_create():
                owner = self._read_owner()
                if owner is not None and not _is_process_alive(owner):
                    _logging.warning(f"Reclaiming stale execution lock of dead process {owner}")
                    self._remove_file()
                    continue
                if time.monotonic() >= deadline:
                    holder = f"pid {owner}" if owner is not None else "unknown process"
                    raise LockUnavailable(
                        f"Could not acquire execution lock {self.path} after {self.timeout}s, "
                        f"held by {holder}"
                    )
                time.sleep(self.poll_interval)
        except BaseException:
            self._thread_lock.release()
            raise
        self._held = True
        _logging.debug(f"Execution lock acquired by pid {os.getpid()}")

    def release(self) -> None:
        if not self._held:
            raise ContractViolation("Execution lock released without being held")
        self._held = False
        try:
            if self.path is not None and self._read_owner() == os.getpid():
                self._remove_file()
        finally:
            self._thread_lock.release()
        _logging.debug("Execution lock released")

    def _try_create(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            json.dump({"pid": os.getpid(), "acquired_at": time.time()}, f)
        return True

    def _read_owner(self) -> int | None:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return int(json.load(f)["pid"])
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            # A half-written file from a racing writer looks like this too.
            _logging.debug(f"Unreadable execution lock file {self.path}: {e}")
            return None

    def _remove_file(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


class Installer(ABC):
    """Applies one transaction item to the system."""

    @abstractmethod
    def apply(self, item: TransactionPackage) -> None:
        """Apply ``item``.

        Raises:
            InstallError: If the item cannot be applied
        """


@dataclass
class ExecutionResult:
    transaction: Transaction
    record: HistoryRecord | None = None
    failed_item: TransactionPackage | None = None
    error: InstallError | None = None

    @property
    def ok(self) -> bool:
        return self.transaction.state is TransactionState.DONE


@dataclass
class _Run:
    start_epoch: int
    outcomes: list[tuple[TransactionPackage, ItemOutcome, str | None]] = field(default_factory=list)


class TransactionExecutor:
    """Runs transactions: ``start`` → ``run`` → ``finish``.

    Progress callbacks run synchronously while the execution lock is held
    and must not block.
    """

    def __init__(
        self,
        installer: Installer,
        history: HistoryStore | None = None,
        lock: ExecutionLock | None = None,
        progress: ProgressCallback | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.installer = installer
        self.history = history
        self.lock = lock or ExecutionLock()
        self.progress = progress
        self.clock = clock
        self._runs: dict[int, _Run] = {}

    def start(self, transaction: Transaction) -> None:
        """Acquire the execution lock and move the transaction IN_PROGRESS.

        Raises:
            ContractViolation: If the transaction is not CREATED
            LockUnavailable: If another transaction holds the lock
        """
        if transaction.state is not TransactionState.CREATED:
            raise ContractViolation(
                f"Transaction {transaction.id} cannot start from state {transaction.state.value}"
            )
        transaction.check_order_indices()
        self.lock.acquire()
        transaction.transition(TransactionState.STARTED)
        self._runs[transaction.id] = _Run(start_epoch=int(self.clock()))
        transaction.transition(TransactionState.IN_PROGRESS)
        _logging.info(f"Transaction {transaction.id} started with {len(transaction)} items")

    def cancel(self, transaction: Transaction) -> None:
        """Cancel a transaction that has not been started."""
        transaction.transition(TransactionState.CANCELED)
        _logging.info(f"Transaction {transaction.id} canceled")

    def run(self, transaction: Transaction) -> ExecutionResult:
        """Apply every item, starting the transaction first if needed."""
        if transaction.state is TransactionState.CREATED:
            self.start(transaction)
        elif transaction.state is not TransactionState.IN_PROGRESS or transaction.id not in self._runs:
            raise ContractViolation(
                f"Transaction {transaction.id} cannot run from state {transaction.state.value}"
            )

        run = self._runs[transaction.id]
        failed_item = None
        error = None
        current = None
        try:
            for item in transaction.ordered_items():
                if failed_item is not None:
                    run.outcomes.append((item, ItemOutcome.UNATTEMPTED, None))
                    continue

                current = item
                self._report(item, "start", 0)
                try:
                    self.installer.apply(item)
                except InstallError as e:
                    _logging.error(f"Transaction {transaction.id}: {item} failed: {e.cause}")
                    failed_item, error = item, e
                    run.outcomes.append((item, ItemOutcome.FAILED, e.cause))
                    current = None
                    self._report(item, "error", 0)
                    continue
                run.outcomes.append((item, ItemOutcome.APPLIED, None))
                current = None
                self._report(item, "done", 100)
        except BaseException as e:
            # Installer crash, progress callback error or interrupt: the
            # record is written and the lock released before propagating.
            cause = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            _logging.error(f"Transaction {transaction.id} aborted: {cause}")
            if current is not None:
                run.outcomes.append((current, ItemOutcome.FAILED, cause))
            self.finish(transaction, TransactionState.FAILED)
            raise

        state = TransactionState.FAILED if failed_item is not None else TransactionState.DONE
        record = self.finish(transaction, state)
        return ExecutionResult(transaction=transaction, record=record, failed_item=failed_item, error=error)

    def finish(self, transaction: Transaction, state: TransactionState) -> HistoryRecord:
        """Close an IN_PROGRESS transaction, persist its record, release the lock.

        Items without a recorded outcome are UNATTEMPTED.

        Raises:
            ContractViolation: On a second finish, or a state other than
                DONE or FAILED
        """
        run = self._runs.pop(transaction.id, None)
        if run is None or transaction.state is not TransactionState.IN_PROGRESS:
            if run is not None:
                self._runs[transaction.id] = run
            raise ContractViolation(
                f"Transaction {transaction.id} cannot finish from state {transaction.state.value}"
            )
        try:
            transaction.transition(state)
        except ContractViolation:
            self._runs[transaction.id] = run
            raise

        try:
            seen = {id(item) for item, _, _ in run.outcomes}
            outcomes = list(run.outcomes) + [
                (item, ItemOutcome.UNATTEMPTED, None)
                for item in transaction.ordered_items()
                if id(item) not in seen
            ]
            record = build_record(transaction.id, run.start_epoch, int(self.clock()), state, outcomes)
            if self.history is not None:
                self.history.record(record)
        finally:
            self.lock.release()

        _logging.info(f"Transaction {transaction.id} finished: {state.value}")
        return record

    def _report(self, item: TransactionPackage, phase: str, percent: int) -> None:
        if self.progress is not None:
            self.progress(item, phase, percent)


__all__ = [
    "ExecutionLock",
    "ExecutionResult",
    "Installer",
    "ProgressCallback",
    "TransactionExecutor",
]
