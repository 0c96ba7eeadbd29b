"""Package index: the queryable package universe and its solve primitive.

The engine only consumes the :class:`PackageIndex` contract. ``MemoryIndex``
is a snapshot-backed implementation: it loads repositories and the installed
set from a YAML document and provides a greedy dependency solver that is good
enough for small universes and fully deterministic.

Snapshot layout::

    repos:
      fedora:
        - {name: foo, arch: x86_64, evr: "2.0-1", requires: ["libc >= 1"]}
    installed:
      - {name: foo, arch: x86_64, evr: "1.0-1"}
    excludes: ["kernel*"]
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import yaml

from .config import ConfigError, load_yaml_file
from .models import (
    SYSTEM_REPO,
    GoalPolicy,
    ItemAction,
    ItemReason,
    Job,
    PackageRef,
    Problem,
    ProblemKind,
    sort_candidates,
)
from .versions import Evr, Requirement, compare_evr, is_constraint_pattern, match_nevra

_logging = logging.getLogger(__name__)

_LIST_FIELDS = ("provides", "requires", "conflicts", "obsoletes", "recommends",
                "install_before", "remove_after")


@dataclass(frozen=True)
class PackageFilter:
    """Query filter.

    ``pattern`` is a NEVRA glob (``foo``, ``foo-2.0``, ``foo.x86_64``,
    ``lib*``) or a capability constraint (``foo >= 2.0``). ``installed``
    restricts to installed (True) or repository (False) packages.
    """
    pattern: str | None = None
    name: str | None = None
    installed: bool | None = None
    include_excluded: bool = False


@dataclass(frozen=True)
class SolveRequest:
    action: ItemAction
    package: PackageRef
    job: Job | None = None
    reason: ItemReason = ItemReason.USER
    weak: bool = False


@dataclass(frozen=True)
class SolveAction:
    package: PackageRef
    action: ItemAction
    reason: ItemReason
    replaces: tuple[PackageRef, ...] = ()
    job: Job | None = field(default=None, compare=False)


@dataclass
class SolveResult:
    actions: list[SolveAction] = field(default_factory=list)
    problems: list[Problem] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


class PackageIndex(ABC):
    """Contract of the package universe consumed by the engine."""

    @abstractmethod
    def query(self, flt: PackageFilter | None = None) -> set[PackageRef]:
        ...

    @abstractmethod
    def solve(self, requests: list[SolveRequest], policy: GoalPolicy) -> SolveResult:
        ...

    @abstractmethod
    def is_excluded(self, ref: PackageRef) -> bool:
        ...

    def installed(self) -> set[PackageRef]:
        return self.query(PackageFilter(installed=True))

    def find(self, name: str, arch: str, evr, installed: bool | None = None) -> PackageRef | None:
        """Look up one exact NEVRA, preferring the installed copy."""
        wanted = evr if isinstance(evr, Evr) else Evr.parse(str(evr))
        for ref in sort_candidates(self.query(PackageFilter(name=name, installed=installed, include_excluded=True))):
            if ref.arch == arch and ref.evr == wanted:
                return ref
        return None


def package_from_dict(data: dict[str, Any], repo: str) -> PackageRef:
    """Build a PackageRef from a snapshot entry.

    Raises:
        ConfigError: If required fields are missing or malformed
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Package entry in '{repo}' must be a mapping, got {type(data).__name__}")
    entity = f"Package '{data.get('name', '?')}' in '{repo}'"
    for field_name in ("name", "arch", "evr"):
        if field_name not in data:
            raise ConfigError(f"{entity} missing required field: {field_name}")
        if not isinstance(data[field_name], (str, int, float)) or not str(data[field_name]).strip():
            raise ConfigError(f"{entity} field '{field_name}' must be a non-empty string")
    for field_name in _LIST_FIELDS:
        value = data.get(field_name, [])
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(f"{entity} field '{field_name}' must be a list of strings")

    try:
        return PackageRef(
            name=str(data["name"]),
            arch=str(data["arch"]),
            evr=str(data["evr"]),
            repo=repo,
            checksum=str(data.get("checksum", "")),
            **{field_name: tuple(data.get(field_name, [])) for field_name in _LIST_FIELDS},
        )
    except ValueError as e:
        raise ConfigError(f"{entity}: {e}") from e


def package_to_dict(ref: PackageRef) -> dict[str, Any]:
    data: dict[str, Any] = {"name": ref.name, "arch": ref.arch, "evr": str(ref.evr)}
    if ref.checksum:
        data["checksum"] = ref.checksum
    for field_name in _LIST_FIELDS:
        values = getattr(ref, field_name)
        if values:
            data[field_name] = [str(v) for v in values]
    return data


class MemoryIndex(PackageIndex):
    """In-memory package universe built from repositories and an installed set.

    Reads are safe from several threads; ``mark_installed``/``mark_removed``
    are only meant to be called by an installer while it holds the execution
    lock.
    """

    def __init__(
        self,
        repos: dict[str, Iterable[PackageRef]] | None = None,
        installed: Iterable[PackageRef] = (),
        excludes: Iterable[str] = (),
        path: Path | None = None,
    ):
        self._repos = {
            repo_id: [ref if ref.repo == repo_id else ref.with_repo(repo_id) for ref in refs]
            for repo_id, refs in sorted((repos or {}).items())
        }
        self._installed = {ref.key: ref.with_repo(SYSTEM_REPO) for ref in installed}
        self.excludes = list(excludes)
        self.path = path
        self._lock = threading.Lock()

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: Path | None = None) -> "MemoryIndex":
        repos_data = data.get("repos") or {}
        if not isinstance(repos_data, dict):
            raise ConfigError("repos must be a mapping of repository id to package list")
        repos = {}
        for repo_id, entries in repos_data.items():
            if not isinstance(entries, list):
                raise ConfigError(f"repos.{repo_id} must be a list")
            repos[str(repo_id)] = [package_from_dict(entry, str(repo_id)) for entry in entries]

        installed_data = data.get("installed") or []
        if not isinstance(installed_data, list):
            raise ConfigError("installed must be a list")
        installed = [package_from_dict(entry, SYSTEM_REPO) for entry in installed_data]

        excludes = data.get("excludes") or []
        if not isinstance(excludes, list) or not all(isinstance(e, str) for e in excludes):
            raise ConfigError("excludes must be a list of strings")

        return cls(repos=repos, installed=installed, excludes=excludes, path=path)

    @classmethod
    def load(cls, path: Path) -> "MemoryIndex":
        _logging.debug(f"Loading package index snapshot from {path}")
        return cls.from_dict(load_yaml_file(path), path=path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "repos": {
                repo_id: [package_to_dict(ref) for ref in refs]
                for repo_id, refs in self._repos.items()
            },
            "installed": [package_to_dict(ref) for _, ref in sorted(self._installed.items())],
            "excludes": list(self.excludes),
        }

    def save(self, path: Path | None = None) -> None:
        path = path or self.path
        if path is None:
            raise ValueError("No path to save the package index to")
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            data = self.to_dict()
        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

    def is_excluded(self, ref: PackageRef) -> bool:
        if ref.installed:
            return False
        return any(match_nevra(ref.name, ref.arch, ref.evr, pattern) for pattern in self.excludes)

    def _iter_packages(self, installed: bool | None):
        with self._lock:
            installed_refs = [ref for _, ref in sorted(self._installed.items())]
        if installed is not False:
            yield from installed_refs
        if installed is not True:
            for refs in self._repos.values():
                yield from refs

    def query(self, flt: PackageFilter | None = None) -> set[PackageRef]:
        flt = flt or PackageFilter()
        requirement = None
        if flt.pattern is not None and is_constraint_pattern(flt.pattern):
            requirement = Requirement.parse(flt.pattern)

        # The first equal ref wins, so installed copies shadow repository ones.
        result: set[PackageRef] = set()
        for ref in self._iter_packages(flt.installed):
            if flt.name is not None and ref.name != flt.name:
                continue
            if not flt.include_excluded and self.is_excluded(ref):
                continue
            if requirement is not None:
                if not ref.provides_capability(requirement):
                    continue
            elif flt.pattern is not None and not match_nevra(ref.name, ref.arch, ref.evr, flt.pattern):
                continue
            result.add(ref)
        return result

    def solve(self, requests: list[SolveRequest], policy: GoalPolicy) -> SolveResult:
        return _Solver(self, policy).run(requests)

    def mark_installed(self, ref: PackageRef) -> None:
        with self._lock:
            self._installed[ref.key] = ref.with_repo(SYSTEM_REPO)

    def mark_removed(self, ref: PackageRef) -> None:
        with self._lock:
            current = self._installed.get(ref.key)
            if current is None or current != ref:
                raise KeyError(f"{ref.nevra} is not installed")
            del self._installed[ref.key]


class _Solver:
    """Greedy, deterministic resolution of requests over a MemoryIndex.

    Every (name, arch) slot changes version at most once per solve, which
    bounds the number of settle rounds.
    """

    def __init__(self, index: PackageIndex, policy: GoalPolicy):
        self.policy = policy
        self.installed = {ref.key: ref for ref in sorted(index.installed(), key=PackageRef.sort_key)}
        self.available = sort_candidates(index.query(PackageFilter(installed=False)))
        self.target = dict(self.installed)
        self.reasons: dict[tuple[str, str], ItemReason] = {}
        self.jobs: dict[tuple[str, str], Job | None] = {}
        self.removed: dict[tuple[str, str], tuple[ItemAction, tuple[PackageRef, ...]]] = {}
        self.locked: set[tuple[str, str]] = set()
        self.reinstall: set[tuple[str, str]] = set()
        self.weak_sources: list[tuple[str, str]] = []
        self.problems: list[Problem] = []
        self._max_rounds = 2 * (len(self.installed) + len(self.available)) + 2

    def run(self, requests: list[SolveRequest]) -> SolveResult:
        for request in requests:
            self._apply(request)
        self._settle()
        if not self.problems and self.weak_sources:
            self._add_weak_dependencies()
        return SolveResult(actions=self._actions(), problems=self.problems)

    def _apply(self, request: SolveRequest) -> None:
        key = request.package.key
        if request.action is ItemAction.REMOVE:
            self._drop(key, ItemAction.REMOVE, (), request.reason, request.job)
        else:
            self._place(request.package, request.reason, request.job)
            if request.action is ItemAction.REINSTALL:
                self.reinstall.add(key)
            if request.weak:
                self.weak_sources.append(key)
        self.locked.add(key)

    def _place(self, ref: PackageRef, reason: ItemReason, job: Job | None) -> None:
        key = ref.key
        self.target[key] = ref
        self.removed.pop(key, None)
        self.reasons[key] = reason
        self.jobs[key] = job
        self.locked.add(key)
        self._obsolete_by(ref, job)

    def _drop(self, key, action: ItemAction, replaced_by, reason: ItemReason, job: Job | None) -> None:
        self.target.pop(key, None)
        self.removed[key] = (action, tuple(replaced_by))
        self.reasons[key] = reason
        self.jobs[key] = job

    def _obsolete_by(self, ref: PackageRef, job: Job | None) -> None:
        for requirement in ref.obsoletes:
            for key, other in sorted(self.target.items()):
                if other.name == ref.name or self.installed.get(key) is not other:
                    continue
                if requirement.satisfied_by(other.self_provide):
                    self._drop(key, ItemAction.OBSOLETE, (ref,), ItemReason.DEPENDENCY, job)

    def _satisfied(self, requirement: Requirement) -> bool:
        return any(ref.provides_capability(requirement) for ref in self.target.values())

    def _changed(self, key) -> bool:
        return self.target.get(key) is not self.installed.get(key)

    def _add_problem(self, problem: Problem) -> None:
        if problem not in self.problems:
            self.problems.append(problem)

    def _pick_provider(self, requirement: Requirement, exclude_key=None) -> PackageRef | None:
        for candidate in self.available:
            if candidate.key == exclude_key or candidate.key in self.removed:
                continue
            if not candidate.provides_capability(requirement):
                continue
            if candidate.key in self.locked and self.target.get(candidate.key) != candidate:
                continue
            return candidate
        return None

    def _pick_update(self, ref: PackageRef) -> PackageRef | None:
        if ref.key in self.locked:
            return None
        for candidate in self.available:
            if candidate.key != ref.key or compare_evr(candidate.evr, ref.evr) <= 0:
                continue
            if all(self._satisfied(r) or candidate.provides_capability(r) for r in candidate.requires):
                return candidate
        return None

    def _previous_provider(self, requirement: Requirement) -> PackageRef | None:
        for key, ref in self.installed.items():
            if self.target.get(key) is not ref and ref.provides_capability(requirement):
                return ref
        return None

    def _settle(self) -> None:
        for _ in range(self._max_rounds):
            requires_changed = self._resolve_requires()
            conflicts_changed = self._resolve_conflicts()
            if not (requires_changed or conflicts_changed):
                return
        _logging.warning("Dependency solving did not settle; giving up")

    def _resolve_requires(self) -> bool:
        changed = False
        for key in sorted(self.target):
            ref = self.target.get(key)
            if ref is None:
                continue
            for requirement in ref.requires:
                if self._satisfied(requirement):
                    continue
                if self._fix_requirement(ref, requirement):
                    changed = True
                if self.target.get(key) is not ref:
                    break
        return changed

    def _fix_requirement(self, ref: PackageRef, requirement: Requirement) -> bool:
        job = self.jobs.get(ref.key)
        provider = self._pick_provider(requirement, exclude_key=ref.key)
        if provider is not None:
            reason = self.reasons.get(provider.key, ItemReason.DEPENDENCY)
            self._place(provider, reason, self.jobs.get(provider.key, job))
            return True

        if self._changed(ref.key):
            self._add_problem(Problem(
                kind=ProblemKind.BROKEN_DEPENDENCY,
                implicated=(ref,),
                message=f"nothing provides {requirement} needed by {ref.nevra}",
                job=job,
            ))
            return False

        culprit = self._previous_provider(requirement)
        update = self._pick_update(ref)
        if update is not None:
            culprit_job = self.jobs.get(culprit.key) if culprit else None
            self._place(update, ItemReason.DEPENDENCY, culprit_job)
            return True

        if (culprit is not None and culprit.key in self.removed) or self.policy.allow_erasing:
            culprit_job = self.jobs.get(culprit.key) if culprit else None
            self._drop(ref.key, ItemAction.REMOVE, (), ItemReason.DEPENDENCY, culprit_job)
            return True

        implicated = (ref, culprit) if culprit is not None else (ref,)
        culprit_job = self.jobs.get(culprit.key) if culprit else None
        self._add_problem(Problem(
            kind=ProblemKind.BROKEN_DEPENDENCY,
            implicated=implicated,
            message=f"installed package {ref.nevra} requires {requirement}, "
                    f"but none of the providers can be installed",
            job=culprit_job,
        ))
        return False

    def _resolve_conflicts(self) -> bool:
        changed = False
        for key in sorted(self.target):
            ref = self.target.get(key)
            if ref is None:
                continue
            for requirement in ref.conflicts:
                for other_key in sorted(self.target):
                    other = self.target.get(other_key)
                    if other is None or other_key == key or self.target.get(key) is not ref:
                        continue
                    if not other.provides_capability(requirement):
                        continue
                    if self._erase_for_conflict(ref, other):
                        changed = True
                        continue
                    pair = tuple(sorted((ref, other), key=PackageRef.sort_key))
                    self._add_problem(Problem(
                        kind=ProblemKind.CONFLICTS,
                        implicated=pair,
                        message=f"{ref.nevra} conflicts with {requirement} provided by {other.nevra}",
                        job=self.jobs.get(key) or self.jobs.get(other_key),
                    ))
        return changed

    def _erase_for_conflict(self, ref: PackageRef, other: PackageRef) -> bool:
        if not self.policy.allow_erasing:
            return False
        for victim, winner in ((other, ref), (ref, other)):
            if not self._changed(victim.key) and victim.key not in self.locked:
                self._drop(victim.key, ItemAction.REMOVE, (), ItemReason.DEPENDENCY,
                           self.jobs.get(winner.key))
                return True
        return False

    def _snapshot(self):
        return (dict(self.target), dict(self.reasons), dict(self.jobs),
                dict(self.removed), set(self.locked), list(self.problems))

    def _restore(self, state) -> None:
        (self.target, self.reasons, self.jobs,
         self.removed, self.locked, self.problems) = state

    def _add_weak_dependencies(self) -> None:
        saved = self._snapshot()
        added = False
        for key in self.weak_sources:
            ref = self.target.get(key)
            if ref is None:
                continue
            for requirement in ref.recommends:
                if self._satisfied(requirement):
                    continue
                provider = self._pick_provider(requirement, exclude_key=key)
                if provider is None or provider.key in self.target:
                    _logging.debug(f"Skipping weak dependency {requirement} of {ref.nevra}")
                    continue
                self._place(provider, ItemReason.WEAK_DEPENDENCY, self.jobs.get(key))
                added = True
        if not added:
            return
        self._settle()
        if self.problems:
            _logging.debug("Weak dependencies introduced problems, dropping them")
            self._restore(saved)

    def _actions(self) -> list[SolveAction]:
        actions = []
        for key in sorted(set(self.installed) | set(self.target)):
            old, new = self.installed.get(key), self.target.get(key)
            reason = self.reasons.get(key, ItemReason.DEPENDENCY)
            job = self.jobs.get(key)
            if old is None:
                actions.append(SolveAction(new, ItemAction.INSTALL, reason, (), job))
            elif new is None:
                action, replaced_by = self.removed.get(key, (ItemAction.REMOVE, ()))
                actions.append(SolveAction(old, action, reason, replaced_by, job))
            elif new != old:
                action = ItemAction.UPGRADE if compare_evr(new.evr, old.evr) > 0 else ItemAction.DOWNGRADE
                actions.append(SolveAction(new, action, reason, (old,), job))
            elif key in self.reinstall:
                actions.append(SolveAction(new, ItemAction.REINSTALL, reason, (old,), job))
        return actions


__all__ = [
    "PackageFilter",
    "PackageIndex",
    "MemoryIndex",
    "SolveRequest",
    "SolveAction",
    "SolveResult",
    "package_from_dict",
    "package_to_dict",
]
