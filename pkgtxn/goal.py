"""Goal: user jobs plus policy, resolved into an ordered Transaction.

Resolution is all-or-nothing: either a Transaction (possibly accompanied by
advisory problems) or a list of problems and no Transaction.
"""

import logging
import threading
from dataclasses import dataclass, field

from .errors import ContractViolation
from .index import PackageFilter, PackageIndex, SolveAction, SolveRequest, SolveResult
from .models import (
    GoalPolicy,
    ItemAction,
    ItemReason,
    Job,
    JobAction,
    PackageRef,
    Problem,
    ProblemKind,
    TransactionPackage,
    sort_candidates,
)
from .planner import TransactionPlanner
from .transaction import Transaction
from .versions import compare_evr

_logging = logging.getLogger(__name__)

_OUTBOUND = (ItemAction.REMOVE, ItemAction.OBSOLETE, ItemAction.REPLACED)


@dataclass
class GoalResult:
    transaction: Transaction | None = None
    problems: list[Problem] = field(default_factory=list)

    @property
    def blocking(self) -> list[Problem]:
        return [p for p in self.problems if not p.advisory]

    @property
    def ok(self) -> bool:
        return not self.blocking


class _Slot:
    """Ordered candidate requests for one target of a job."""

    def __init__(self, requests: list[SolveRequest]):
        self.requests = requests
        self.position = 0

    @property
    def current(self) -> SolveRequest:
        return self.requests[self.position]

    def advance(self) -> bool:
        if self.position + 1 >= len(self.requests):
            return False
        self.position += 1
        return True


class Goal:
    """Collects jobs and policy and resolves them against a PackageIndex."""

    def __init__(
        self,
        index: PackageIndex,
        policy: GoalPolicy | None = None,
        planner: TransactionPlanner | None = None,
    ):
        self.index = index
        self.policy = policy or GoalPolicy()
        self.planner = planner or TransactionPlanner()
        self.jobs: list[Job] = []
        self._resolving = threading.Lock()

    def add_job(self, job: Job) -> None:
        self.jobs.append(job)

    def add_install(self, pattern: str, **flags) -> None:
        self.add_job(Job(JobAction.INSTALL, pattern=pattern, **flags))

    def add_remove(self, pattern: str, **flags) -> None:
        self.add_job(Job(JobAction.REMOVE, pattern=pattern, **flags))

    def add_upgrade(self, pattern: str | None = None, **flags) -> None:
        self.add_job(Job(JobAction.UPGRADE, pattern=pattern, **flags))

    def add_downgrade(self, pattern: str, **flags) -> None:
        self.add_job(Job(JobAction.DOWNGRADE, pattern=pattern, **flags))

    def add_reinstall(self, pattern: str, **flags) -> None:
        self.add_job(Job(JobAction.REINSTALL, pattern=pattern, **flags))

    def add_distro_sync(self, pattern: str | None = None, **flags) -> None:
        self.add_job(Job(JobAction.DISTRO_SYNC, pattern=pattern, **flags))

    def resolve(self) -> GoalResult:
        """Resolve all jobs.

        Repeated calls with the same jobs, policy and index snapshot return
        identical results.

        Raises:
            ContractViolation: If called while another resolve() on this
                Goal is still running
        """
        if not self._resolving.acquire(blocking=False):
            raise ContractViolation("Goal.resolve() called concurrently on the same Goal")
        try:
            return self._resolve()
        finally:
            self._resolving.release()

    def _resolve(self) -> GoalResult:
        problems: list[Problem] = []
        slots: list[_Slot] = []
        for job in self.jobs:
            job_slots, job_problems = self._translate(job)
            slots.extend(job_slots)
            problems.extend(job_problems)

        if any(not p.advisory for p in problems):
            return GoalResult(transaction=None, problems=problems)
        if not slots:
            _logging.info("Nothing to do")
            return GoalResult(transaction=None, problems=problems)

        result = self._solve(slots)
        if not result.ok:
            return GoalResult(transaction=None, problems=problems + result.problems)

        protected = self._protected_problems(result.actions)
        if protected:
            return GoalResult(transaction=None, problems=problems + protected)

        actions = result.actions + self._orphans(result.actions)
        if not actions:
            return GoalResult(transaction=None, problems=problems)

        items = [
            TransactionPackage(
                package=action.package,
                action=action.action,
                reason=action.reason,
                replaces=action.replaces,
            )
            for action in actions
        ]
        plan = self.planner.order(items)
        if not plan.ok:
            return GoalResult(transaction=None, problems=problems + plan.problems)

        plan.transaction.problems = problems + plan.problems
        return GoalResult(transaction=plan.transaction, problems=problems + plan.problems)

    def _solve(self, slots: list[_Slot]) -> SolveResult:
        while True:
            requests = [slot.current for slot in slots]
            result = self.index.solve(requests, self.policy)
            if result.ok or self.policy.best_effort:
                return result
            implicated = {ref for problem in result.problems for ref in problem.implicated}
            advanced = False
            for slot in slots:
                if slot.current.package in implicated and slot.advance():
                    _logging.debug(f"Retrying with candidate {slot.current.package.nevra}")
                    advanced = True
                    break
            if not advanced:
                return result

    # Job translation

    def _translate(self, job: Job) -> tuple[list[_Slot], list[Problem]]:
        handler = {
            JobAction.INSTALL: self._translate_install,
            JobAction.REMOVE: self._translate_remove,
            JobAction.UPGRADE: self._translate_upgrade,
            JobAction.DOWNGRADE: self._translate_downgrade,
            JobAction.REINSTALL: self._translate_reinstall,
            JobAction.DISTRO_SYNC: self._translate_distro_sync,
        }[job.action]
        return handler(job)

    def _matches(self, job: Job, installed: bool | None = None) -> tuple[list[PackageRef], list[Problem]]:
        """Candidates for a job, or a NOT_FOUND / EXCLUDED problem."""
        if job.packages:
            found, problems = [], []
            for ref in job.packages:
                match = self.index.find(ref.name, ref.arch, ref.evr, installed=installed)
                if match is None or (not match.installed and self.index.is_excluded(match)):
                    problems.append(Problem(
                        kind=ProblemKind.NOT_FOUND,
                        implicated=(ref,),
                        message=f"No match for argument: {ref.nevra}",
                        job=job,
                    ))
                else:
                    found.append(match)
            return sort_candidates(found), problems

        pattern = job.pattern
        if pattern is None:
            return sort_candidates(self.index.query(PackageFilter(installed=installed))), []

        matches = self.index.query(PackageFilter(pattern=pattern, installed=installed))
        if matches:
            return sort_candidates(matches), []

        excluded = self.index.query(PackageFilter(pattern=pattern, installed=installed, include_excluded=True))
        if excluded:
            return [], [Problem(
                kind=ProblemKind.EXCLUDED,
                implicated=tuple(sort_candidates(excluded)),
                message=f"All matches were filtered out by exclude filtering for argument: {pattern}",
                job=job,
            )]
        return [], [Problem(
            kind=ProblemKind.NOT_FOUND,
            message=f"No match for argument: {pattern}",
            job=job,
        )]

    def _installed_by_key(self) -> dict[tuple[str, str], PackageRef]:
        return {ref.key: ref for ref in self.index.installed()}

    def _best_problem(self, job: Job, chosen: PackageRef) -> Problem | None:
        """With best_effort the chosen candidate must be the newest known."""
        if not self.policy.best_effort or job.packages:
            return None
        flt = PackageFilter(name=chosen.name, include_excluded=True)
        if job.pattern is not None:
            flt = PackageFilter(pattern=job.pattern, include_excluded=True)
        known = [ref for ref in self.index.query(flt) if ref.key == chosen.key]
        newest = sort_candidates(known)[0] if known else chosen
        if compare_evr(newest.evr, chosen.evr) > 0:
            return Problem(
                kind=ProblemKind.BROKEN_DEPENDENCY,
                implicated=(newest, chosen),
                message=f"cannot install the best candidate for the job: "
                        f"{newest.nevra} is not installable, {chosen.nevra} would be chosen instead",
                job=job,
            )
        return None

    def _slot(self, job: Job, action: ItemAction, candidates: list[PackageRef]) -> tuple[list[_Slot], list[Problem]]:
        problem = self._best_problem(job, candidates[0])
        if problem is not None:
            return [], [problem]
        if self.policy.best_effort:
            candidates = candidates[:1]
        requests = [SolveRequest(action, ref, job, ItemReason.USER, job.weak) for ref in candidates]
        return [_Slot(requests)], []

    def _translate_install(self, job: Job) -> tuple[list[_Slot], list[Problem]]:
        matches, problems = self._matches(job)
        if problems:
            return [], problems

        installed = self._installed_by_key()
        slots: list[_Slot] = []
        by_name: dict[str, list[PackageRef]] = {}
        for ref in matches:
            by_name.setdefault(ref.name, []).append(ref)

        for name, group in sorted(by_name.items()):
            current = next((ref for key, ref in sorted(installed.items()) if key[0] == name), None)
            if current is not None:
                group = [ref for ref in group if ref.arch == current.arch] or group
            candidates = sort_candidates(group)
            top = candidates[0]
            current = installed.get(top.key)

            if current is None:
                new_slots, new_problems = self._slot(job, ItemAction.INSTALL, [r for r in candidates if not r.installed])
            else:
                order = compare_evr(top.evr, current.evr)
                if order == 0 and job.force:
                    new_slots, new_problems = self._reinstall_slots(job, [current])
                    slots.extend(new_slots)
                    problems.extend(new_problems)
                    continue
                if order == 0:
                    problems.append(Problem(
                        kind=ProblemKind.ALREADY_INSTALLED,
                        implicated=(current,),
                        message=f"Package {current.nevra} is already installed.",
                        job=job,
                    ))
                    continue
                if order > 0:
                    newer = [r for r in candidates if compare_evr(r.evr, current.evr) > 0]
                    new_slots, new_problems = self._slot(job, ItemAction.UPGRADE, newer)
                elif job.allow_downgrade:
                    new_slots, new_problems = self._slot(job, ItemAction.DOWNGRADE, candidates)
                else:
                    problems.append(Problem(
                        kind=ProblemKind.ALREADY_INSTALLED,
                        implicated=(current,),
                        message=f"Package {current.nevra} of higher version already installed, "
                                f"cannot install {top.nevra}.",
                        job=job,
                    ))
                    continue
            slots.extend(new_slots)
            problems.extend(new_problems)
        return slots, problems

    def _translate_remove(self, job: Job) -> tuple[list[_Slot], list[Problem]]:
        matches, problems = self._matches(job, installed=True)
        if problems:
            return [], problems
        slots = [
            _Slot([SolveRequest(ItemAction.REMOVE, ref, job, ItemReason.USER)])
            for ref in sorted(matches, key=PackageRef.sort_key)
        ]
        return slots, []

    def _targets(self, job: Job) -> tuple[list[tuple[PackageRef, list[PackageRef]]], list[Problem]]:
        """Pair every installed package a job addresses with the repository
        packages it may move to."""
        installed = self._installed_by_key()

        if job.packages:
            matches, problems = self._matches(job, installed=False)
            if problems:
                return [], problems
            pairs, problems = [], []
            for ref in matches:
                current = installed.get(ref.key)
                if current is None:
                    problems.append(Problem(
                        kind=ProblemKind.NOT_FOUND,
                        implicated=(ref,),
                        message=f"Package {ref.name}.{ref.arch} is not installed.",
                        job=job,
                    ))
                else:
                    pairs.append((current, [ref]))
            return pairs, problems

        if job.pattern is None:
            available = self.index.query(PackageFilter(installed=False))
            names = None
        else:
            matches, problems = self._matches(job)
            if problems:
                return [], problems
            available = self.index.query(PackageFilter(pattern=job.pattern, installed=False))
            names = {ref.name for ref in matches}

        pairs = []
        for key, current in sorted(installed.items()):
            if names is not None and key[0] not in names:
                continue
            pairs.append((current, sort_candidates(r for r in available if r.key == key)))

        if not pairs:
            return [], [Problem(
                kind=ProblemKind.NOT_FOUND,
                message=f"Package {job.pattern} available, but not installed.",
                job=job,
            )]
        return pairs, []

    def _translate_upgrade(self, job: Job) -> tuple[list[_Slot], list[Problem]]:
        pairs, problems = self._targets(job)
        slots: list[_Slot] = []
        for current, candidates in pairs:
            newer = [r for r in candidates if compare_evr(r.evr, current.evr) > 0]
            if not newer:
                _logging.debug(f"No upgrade available for {current.nevra}")
                continue
            new_slots, new_problems = self._slot(job, ItemAction.UPGRADE, newer)
            slots.extend(new_slots)
            problems.extend(new_problems)
        return slots, problems

    def _translate_downgrade(self, job: Job) -> tuple[list[_Slot], list[Problem]]:
        pairs, problems = self._targets(job)
        slots: list[_Slot] = []
        for current, candidates in pairs:
            older = [r for r in candidates if compare_evr(r.evr, current.evr) < 0]
            if not older:
                problems.append(Problem(
                    kind=ProblemKind.ALREADY_INSTALLED,
                    implicated=(current,),
                    message=f"Package {current.nevra} of lowest version already installed, "
                            f"cannot downgrade it.",
                    job=job,
                ))
                continue
            requests = [SolveRequest(ItemAction.DOWNGRADE, ref, job, ItemReason.USER, job.weak) for ref in older]
            slots.append(_Slot(requests[:1] if self.policy.best_effort else requests))
        return slots, problems

    def _translate_reinstall(self, job: Job) -> tuple[list[_Slot], list[Problem]]:
        matches, problems = self._matches(job, installed=True)
        if problems:
            return [], problems
        return self._reinstall_slots(job, matches)

    def _reinstall_slots(self, job: Job, installed: list[PackageRef]) -> tuple[list[_Slot], list[Problem]]:
        slots, problems = [], []
        for current in sorted(installed, key=PackageRef.sort_key):
            available = self.index.find(current.name, current.arch, current.evr, installed=False)
            if available is None or self.index.is_excluded(available):
                problems.append(Problem(
                    kind=ProblemKind.NOT_FOUND,
                    implicated=(current,),
                    message=f"Installed package {current.nevra} not available.",
                    job=job,
                ))
                continue
            slots.append(_Slot([SolveRequest(ItemAction.REINSTALL, available, job, ItemReason.USER)]))
        return slots, problems

    def _translate_distro_sync(self, job: Job) -> tuple[list[_Slot], list[Problem]]:
        pairs, problems = self._targets(job)
        slots: list[_Slot] = []
        for current, candidates in pairs:
            if not candidates:
                _logging.debug(f"{current.nevra} is not available from any repository, keeping it")
                continue
            top = candidates[0]
            order = compare_evr(top.evr, current.evr)
            if order == 0:
                continue
            action = ItemAction.UPGRADE if order > 0 else ItemAction.DOWNGRADE
            slots.append(_Slot([SolveRequest(action, top, job, ItemReason.USER, job.weak)]))
        return slots, problems

    # Policy applied to the solved action set

    def _protected_problems(self, actions: list[SolveAction]) -> list[Problem]:
        problems = []
        for action in actions:
            if action.action not in _OUTBOUND:
                continue
            if action.package.name not in self.policy.protected_packages:
                continue
            trigger = f" (requested by '{action.job.describe()}')" if action.job else ""
            problems.append(Problem(
                kind=ProblemKind.PROTECTED_PACKAGE,
                implicated=(action.package,),
                message=f"The operation would result in removing the following protected "
                        f"packages: {action.package.name}{trigger}",
                job=action.job,
            ))
        return problems

    def _orphans(self, actions: list[SolveAction]) -> list[SolveAction]:
        """Packages left without dependents by clean_deps removals."""
        clean_jobs = [job for job in self.jobs if job.action is JobAction.REMOVE and job.clean_deps]
        if not clean_jobs:
            return []

        installed = sorted(self.index.installed(), key=PackageRef.sort_key)
        removed = {a.package.key for a in actions if a.action in _OUTBOUND}
        replaced = {a.package.key for a in actions if a.action.is_inbound}
        swept = {a.package.key: a.job for a in actions if a.action in _OUTBOUND and a.job in clean_jobs}
        remaining = [ref for ref in installed if ref.key not in removed and ref.key not in replaced]
        remaining += [a.package for a in actions if a.action.is_inbound]

        def dependents(ref: PackageRef, pool) -> list[PackageRef]:
            return [
                other for other in pool
                if other.key != ref.key and any(ref.provides_capability(r) for r in other.requires)
            ]

        orphans: list[SolveAction] = []
        changed = True
        while changed:
            changed = False
            for ref in list(remaining):
                if ref.installed is False or ref.name in self.policy.protected_packages:
                    continue
                users = dependents(ref, installed)
                if not users or any(user.key not in removed for user in users):
                    continue
                cause = next((swept[user.key] for user in users if user.key in swept), None)
                if cause is None or dependents(ref, remaining):
                    continue
                _logging.debug(f"Removing orphaned dependency {ref.nevra}")
                removed.add(ref.key)
                swept[ref.key] = cause
                remaining.remove(ref)
                orphans.append(SolveAction(ref, ItemAction.REMOVE, ItemReason.CLEAN, (), cause))
                changed = True
        return orphans


__all__ = [
    "Goal",
    "GoalResult",
]
