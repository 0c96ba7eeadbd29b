"""Data models for goals, transactions and history."""

from dataclasses import dataclass, field
from enum import Enum
from functools import cmp_to_key
from typing import Any

from .versions import Evr, Requirement, compare_evr

SYSTEM_REPO = "@System"


class JobAction(Enum):
    INSTALL = "install"
    REMOVE = "remove"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    REINSTALL = "reinstall"
    DISTRO_SYNC = "distro-sync"


class ItemAction(Enum):
    INSTALL = "install"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    REINSTALL = "reinstall"
    REMOVE = "remove"
    OBSOLETE = "obsolete"
    REPLACED = "replaced"

    @property
    def is_inbound(self) -> bool:
        """True for actions that put a package onto the system."""
        return self in _INBOUND

    @property
    def priority(self) -> int:
        return _ACTION_PRIORITY[self]


_INBOUND = frozenset(
    {ItemAction.INSTALL, ItemAction.UPGRADE, ItemAction.DOWNGRADE, ItemAction.REINSTALL}
)

_ACTION_PRIORITY = {
    ItemAction.INSTALL: 0,
    ItemAction.UPGRADE: 1,
    ItemAction.REINSTALL: 2,
    ItemAction.DOWNGRADE: 3,
    ItemAction.REMOVE: 4,
    ItemAction.OBSOLETE: 4,
    ItemAction.REPLACED: 4,
}


class ItemReason(Enum):
    USER = "user"
    DEPENDENCY = "dependency"
    CLEAN = "clean"
    WEAK_DEPENDENCY = "weak-dependency"


class TransactionState(Enum):
    CREATED = "created"
    STARTED = "started"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def terminal(self) -> bool:
        return self in (TransactionState.DONE, TransactionState.FAILED, TransactionState.CANCELED)


class ItemOutcome(Enum):
    APPLIED = "applied"
    FAILED = "failed"
    UNATTEMPTED = "unattempted"


class ProblemKind(Enum):
    NOT_FOUND = "not-found"
    CONFLICTS = "conflicts"
    BROKEN_DEPENDENCY = "broken-dependency"
    PROTECTED_PACKAGE = "protected-package"
    ALREADY_INSTALLED = "already-installed"
    EXCLUDED = "excluded"
    ORDERING_CYCLE = "ordering-cycle"
    HISTORY_PACKAGE_UNAVAILABLE = "history-package-unavailable"


ADVISORY_KINDS = frozenset({ProblemKind.ORDERING_CYCLE, ProblemKind.ALREADY_INSTALLED})


def _requirements(values) -> tuple[Requirement, ...]:
    return tuple(v if isinstance(v, Requirement) else Requirement.parse(v) for v in values)


@dataclass(frozen=True)
class PackageRef:
    """Identity of one package build.

    Two refs are the same package iff name, arch and evr match; origin
    repository, checksum and dependency metadata ride along but do not take
    part in equality or hashing.
    """

    name: str
    arch: str
    evr: Evr
    repo: str = field(default="", compare=False)
    checksum: str = field(default="", compare=False)
    provides: tuple[Requirement, ...] = field(default=(), compare=False, repr=False)
    requires: tuple[Requirement, ...] = field(default=(), compare=False, repr=False)
    conflicts: tuple[Requirement, ...] = field(default=(), compare=False, repr=False)
    obsoletes: tuple[Requirement, ...] = field(default=(), compare=False, repr=False)
    recommends: tuple[Requirement, ...] = field(default=(), compare=False, repr=False)
    install_before: tuple[str, ...] = field(default=(), compare=False, repr=False)
    remove_after: tuple[str, ...] = field(default=(), compare=False, repr=False)

    def __post_init__(self):
        if not self.name or not isinstance(self.name, str):
            raise ValueError("name must be a non-empty string")
        if not self.arch or not isinstance(self.arch, str):
            raise ValueError("arch must be a non-empty string")
        if isinstance(self.evr, str):
            object.__setattr__(self, "evr", Evr.parse(self.evr))
        for attr in ("provides", "requires", "conflicts", "obsoletes", "recommends"):
            object.__setattr__(self, attr, _requirements(getattr(self, attr)))
        object.__setattr__(self, "install_before", tuple(self.install_before))
        object.__setattr__(self, "remove_after", tuple(self.remove_after))

    @property
    def nevra(self) -> str:
        evr = self.evr
        version = f"{evr.epoch}:{evr.version}" if evr.epoch else evr.version
        release = f"-{evr.release}" if evr.release else ""
        return f"{self.name}-{version}{release}.{self.arch}"

    @property
    def key(self) -> tuple[str, str]:
        """The (name, arch) slot this package occupies on a system."""
        return (self.name, self.arch)

    @property
    def installed(self) -> bool:
        return self.repo == SYSTEM_REPO

    @property
    def self_provide(self) -> Requirement:
        return Requirement(self.name, "=", self.evr)

    def all_provides(self) -> tuple[Requirement, ...]:
        return (self.self_provide,) + self.provides

    def provides_capability(self, requirement: Requirement) -> bool:
        return any(requirement.satisfied_by(p) for p in self.all_provides())

    def with_repo(self, repo: str) -> "PackageRef":
        """Copy of this ref attributed to another origin."""
        return PackageRef(
            name=self.name,
            arch=self.arch,
            evr=self.evr,
            repo=repo,
            checksum=self.checksum,
            provides=self.provides,
            requires=self.requires,
            conflicts=self.conflicts,
            obsoletes=self.obsoletes,
            recommends=self.recommends,
            install_before=self.install_before,
            remove_after=self.remove_after,
        )

    def sort_key(self) -> tuple:
        return (self.name, self.arch, self.evr.epoch, self.evr.version, self.evr.release)

    def __str__(self) -> str:
        return self.nevra


@dataclass(frozen=True)
class Job:
    action: JobAction
    pattern: str | None = None
    packages: tuple[PackageRef, ...] = ()
    allow_downgrade: bool = False
    clean_deps: bool = False
    weak: bool = False
    force: bool = False

    def __post_init__(self):
        object.__setattr__(self, "packages", tuple(self.packages))
        if self.pattern is not None and self.packages:
            raise ValueError("job takes either a pattern or explicit packages, not both")
        if self.pattern is None and not self.packages:
            if self.action not in (JobAction.UPGRADE, JobAction.DISTRO_SYNC):
                raise ValueError(f"{self.action.value} job requires a pattern or packages")
        if self.pattern is not None and not self.pattern.strip():
            raise ValueError("pattern must be a non-empty string")

    def describe(self) -> str:
        if self.pattern is not None:
            target = self.pattern
        elif self.packages:
            target = ", ".join(p.nevra for p in self.packages)
        else:
            target = "<all>"
        return f"{self.action.value} {target}"


@dataclass(frozen=True)
class GoalPolicy:
    protected_packages: frozenset[str] = frozenset()
    best_effort: bool = False
    allow_erasing: bool = False

    def __post_init__(self):
        object.__setattr__(self, "protected_packages", frozenset(self.protected_packages))


@dataclass(frozen=True)
class Problem:
    kind: ProblemKind
    implicated: tuple[PackageRef, ...] = ()
    message: str = ""
    job: Job | None = field(default=None, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "implicated", tuple(self.implicated))

    @property
    def advisory(self) -> bool:
        return self.kind in ADVISORY_KINDS


@dataclass
class TransactionPackage:
    package: PackageRef
    action: ItemAction
    reason: ItemReason = ItemReason.USER
    order_index: int = -1
    replaces: tuple[PackageRef, ...] = ()

    @property
    def key(self) -> tuple[str, str]:
        return self.package.key

    def sort_key(self) -> tuple:
        return (self.package.name, self.package.arch, self.action.priority)

    def __str__(self) -> str:
        return f"{self.action.value} {self.package.nevra}"


@dataclass(frozen=True)
class HistoryItem:
    name: str
    arch: str
    epoch_version_release: str
    action: ItemAction
    reason: ItemReason
    outcome: ItemOutcome
    cause: str | None = None

    @property
    def evr(self) -> Evr:
        return Evr.parse(self.epoch_version_release)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "arch": self.arch,
            "epoch_version_release": self.epoch_version_release,
            "action": self.action.value,
            "reason": self.reason.value,
            "outcome": self.outcome.value,
        }
        if self.cause is not None:
            data["cause"] = self.cause
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryItem":
        return cls(
            name=data["name"],
            arch=data["arch"],
            epoch_version_release=data["epoch_version_release"],
            action=ItemAction(data["action"]),
            reason=ItemReason(data["reason"]),
            outcome=ItemOutcome(data["outcome"]),
            cause=data.get("cause"),
        )


@dataclass(frozen=True)
class HistoryRecord:
    id: int
    start_epoch: int
    end_epoch: int
    final_state: TransactionState
    items: tuple[HistoryItem, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "items", tuple(self.items))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start_epoch": self.start_epoch,
            "end_epoch": self.end_epoch,
            "state": self.final_state.value,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryRecord":
        return cls(
            id=int(data["id"]),
            start_epoch=int(data["start_epoch"]),
            end_epoch=int(data["end_epoch"]),
            final_state=TransactionState(data["state"]),
            items=tuple(HistoryItem.from_dict(item) for item in data["items"]),
        )


def _compare_candidates(left: PackageRef, right: PackageRef) -> int:
    result = compare_evr(right.evr, left.evr)
    if result:
        return result
    if left.installed != right.installed:
        return -1 if left.installed else 1
    if left.repo != right.repo:
        return -1 if left.repo < right.repo else 1
    if left.arch != right.arch:
        return -1 if left.arch < right.arch else 1
    if left.name != right.name:
        return -1 if left.name < right.name else 1
    return 0


def sort_candidates(refs) -> list[PackageRef]:
    """Order candidates best first.

    Highest epoch-version-release wins, then an installed origin over a
    repository, then the lexicographically smallest repository id, then the
    architecture name and finally the package name.
    """
    return sorted(refs, key=cmp_to_key(_compare_candidates))


__all__ = [
    "sort_candidates",
    "SYSTEM_REPO",
    "JobAction",
    "ItemAction",
    "ItemReason",
    "ItemOutcome",
    "TransactionState",
    "ProblemKind",
    "ADVISORY_KINDS",
    "PackageRef",
    "Job",
    "GoalPolicy",
    "Problem",
    "TransactionPackage",
    "HistoryItem",
    "HistoryRecord",
]
