"""Transaction value and its lifecycle state machine."""

import itertools
import threading
from dataclasses import dataclass, field

from .errors import ContractViolation
from .models import Problem, TransactionPackage, TransactionState

# Allowed forward transitions; nothing is ever revisited.
_TRANSITIONS = {
    TransactionState.CREATED: {TransactionState.STARTED, TransactionState.CANCELED},
    TransactionState.STARTED: {TransactionState.IN_PROGRESS},
    TransactionState.IN_PROGRESS: {TransactionState.DONE, TransactionState.FAILED},
    TransactionState.DONE: set(),
    TransactionState.FAILED: set(),
    TransactionState.CANCELED: set(),
}


class TransactionIds:
    """Process-wide monotonically increasing transaction id source."""

    def __init__(self, start: int = 1):
        self._lock = threading.Lock()
        self._counter = itertools.count(start)
        self._last = start - 1

    def allocate(self) -> int:
        with self._lock:
            self._last = next(self._counter)
            return self._last

    def reserve_through(self, last_id: int) -> None:
        """Make sure future ids are strictly greater than ``last_id``."""
        with self._lock:
            if last_id > self._last:
                self._counter = itertools.count(last_id + 1)
                self._last = last_id


transaction_ids = TransactionIds()


@dataclass
class Transaction:
    items: list[TransactionPackage] = field(default_factory=list)
    state: TransactionState = TransactionState.CREATED
    problems: list[Problem] = field(default_factory=list, compare=False)
    id: int = field(default=0, compare=False)

    def __post_init__(self):
        if not self.id:
            self.id = transaction_ids.allocate()

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.ordered_items())

    def ordered_items(self) -> list[TransactionPackage]:
        return sorted(self.items, key=lambda item: item.order_index)

    def transition(self, target: TransactionState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise ContractViolation(
                f"Transaction {self.id}: illegal transition "
                f"{self.state.value} -> {target.value}"
            )
        self.state = target

    def find(self, name: str, arch: str | None = None) -> list[TransactionPackage]:
        return [
            item
            for item in self.ordered_items()
            if item.package.name == name and (arch is None or item.package.arch == arch)
        ]

    def check_order_indices(self) -> None:
        indices = sorted(item.order_index for item in self.items)
        if indices != list(range(len(self.items))):
            raise ContractViolation(
                f"Transaction {self.id}: order_index values are not a permutation of 0..{len(self.items) - 1}"
            )


__all__ = [
    "Transaction",
    "TransactionIds",
    "transaction_ids",
]
