import os
import subprocess
import sys
from pathlib import Path

import pytest

from pkgtxn.errors import ContractViolation
from pkgtxn.goal import Goal
from pkgtxn.index import MemoryIndex
from pkgtxn.models import GoalPolicy, ItemAction, ItemReason, ProblemKind

from tests.conftest import make_ref

ROOT = Path(__file__).resolve().parents[1]


def summary(transaction):
    return [
        (item.package.nevra, item.action, item.reason)
        for item in transaction.ordered_items()
    ]


def assert_no_self_conflict(transaction):
    keys = [item.key for item in transaction.items if item.action is not ItemAction.REPLACED]
    assert len(keys) == len(set(keys))


class TestScenarios:
    """End-to-end resolution scenarios."""

    def test_install_pulls_in_upgrade_ordered_first(self, scenario_a_index):
        goal = Goal(scenario_a_index)
        goal.add_install("bar")
        result = goal.resolve()

        assert result.ok
        assert result.problems == []
        assert summary(result.transaction) == [
            ("foo-2.0-1.x86_64", ItemAction.UPGRADE, ItemReason.DEPENDENCY),
            ("bar-1.0-1.x86_64", ItemAction.INSTALL, ItemReason.USER),
        ]
        foo = result.transaction.find("foo")[0]
        assert [ref.nevra for ref in foo.replaces] == ["foo-1.0-1.x86_64"]
        result.transaction.check_order_indices()

    def test_removing_protected_package_is_refused(self, system_index):
        goal = Goal(system_index, GoalPolicy(protected_packages=frozenset({"glibc"})))
        goal.add_remove("glibc")
        result = goal.resolve()

        assert result.transaction is None
        assert not result.ok
        assert [p.kind for p in result.problems] == [ProblemKind.PROTECTED_PACKAGE]
        assert [ref.name for ref in result.problems[0].implicated] == ["glibc"]

    def test_protected_dependency_of_removal(self, system_index):
        """Protection also covers packages removed as a consequence."""
        goal = Goal(system_index, GoalPolicy(protected_packages=frozenset({"app"})))
        goal.add_remove("libbar")
        result = goal.resolve()
        assert [p.kind for p in result.problems] == [ProblemKind.PROTECTED_PACKAGE]
        assert result.problems[0].implicated[0].name == "app"


class TestDeterminism:
    """Repeated resolution yields identical results."""

    def test_same_goal_twice(self, scenario_a_index):
        goal = Goal(scenario_a_index)
        goal.add_install("bar")
        first = goal.resolve()
        second = goal.resolve()
        assert first.transaction == second.transaction
        assert first.problems == second.problems

    def test_fresh_goals(self, system_index):
        results = []
        for _ in range(3):
            goal = Goal(system_index)
            goal.add_remove("app", clean_deps=True)
            results.append(goal.resolve())
        assert results[0].transaction == results[1].transaction == results[2].transaction

    def test_problems_are_deterministic(self, system_index):
        policy = GoalPolicy(protected_packages=frozenset({"glibc"}))
        runs = []
        for _ in range(2):
            goal = Goal(system_index, policy)
            goal.add_remove("glibc")
            goal.add_install("nosuch")
            runs.append(goal.resolve().problems)
        assert runs[0] == runs[1]

    @pytest.mark.parametrize("reverse", [False, True])
    def test_tied_providers_pick_smallest_name(self, reverse):
        """Equal providers of one capability are chosen by package name."""
        providers = [make_ref(name, "1.0-1", repo="fedora", provides=["mta"])
                     for name in ("postfix", "exim", "sendmail", "opensmtpd")]
        if reverse:
            providers.reverse()
        index = MemoryIndex(repos={"fedora": [make_ref("app", "1.0-1", requires=["mta"]), *providers]})
        goal = Goal(index)
        goal.add_install("app")
        result = goal.resolve()

        assert summary(result.transaction) == [
            ("exim-1.0-1.x86_64", ItemAction.INSTALL, ItemReason.DEPENDENCY),
            ("app-1.0-1.x86_64", ItemAction.INSTALL, ItemReason.USER),
        ]

    def test_excluded_matches_sorted_by_name(self):
        index = MemoryIndex(
            repos={"fedora": [make_ref(name, "1.0-1") for name in ("libd", "liba", "libe", "libc", "libb")]},
            excludes=["lib*"],
        )
        goal = Goal(index)
        goal.add_install("lib*")
        problems = goal.resolve().problems

        assert [p.kind for p in problems] == [ProblemKind.EXCLUDED]
        assert [ref.name for ref in problems[0].implicated] == ["liba", "libb", "libc", "libd", "libe"]

    def test_independent_of_hash_seed(self):
        """Resolution does not depend on set iteration order."""
        script = (
            "from pkgtxn.goal import Goal\n"
            "from pkgtxn.index import MemoryIndex\n"
            "from pkgtxn.models import PackageRef\n"
            "refs = [PackageRef(n, 'x86_64', '1.0-1', repo='fedora', provides=['mta'])\n"
            "        for n in ('postfix', 'exim', 'sendmail', 'opensmtpd')]\n"
            "refs.append(PackageRef('app', 'x86_64', '1.0-1', repo='fedora', requires=['mta']))\n"
            "goal = Goal(MemoryIndex(repos={'fedora': refs}))\n"
            "goal.add_install('app')\n"
            "print(' '.join(i.package.nevra for i in goal.resolve().transaction.ordered_items()))\n"
        )
        outputs = set()
        for seed in ("1", "4", "17"):
            completed = subprocess.run(
                [sys.executable, "-c", script],
                cwd=ROOT,
                env={**os.environ, "PYTHONHASHSEED": seed},
                capture_output=True,
                text=True,
                check=True,
            )
            outputs.add(completed.stdout.strip())
        assert outputs == {"exim-1.0-1.x86_64 app-1.0-1.x86_64"}


class TestInstall:
    """Test INSTALL job translation."""

    def test_already_installed(self):
        index = MemoryIndex(repos={"fedora": [make_ref("foo", "1.0-1")]}, installed=[make_ref("foo", "1.0-1")])
        goal = Goal(index)
        goal.add_install("foo")
        result = goal.resolve()

        assert result.ok
        assert result.transaction is None
        assert [p.kind for p in result.problems] == [ProblemKind.ALREADY_INSTALLED]

    def test_force_reinstalls(self):
        index = MemoryIndex(repos={"fedora": [make_ref("foo", "1.0-1")]}, installed=[make_ref("foo", "1.0-1")])
        goal = Goal(index)
        goal.add_install("foo", force=True)
        result = goal.resolve()
        assert summary(result.transaction) == [("foo-1.0-1.x86_64", ItemAction.REINSTALL, ItemReason.USER)]

    def test_installed_newer_needs_allow_downgrade(self):
        index = MemoryIndex(repos={"fedora": [make_ref("foo", "1.0-1")]}, installed=[make_ref("foo", "2.0-1")])
        goal = Goal(index)
        goal.add_install("foo-1.0")
        result = goal.resolve()
        assert result.transaction is None
        assert [p.kind for p in result.problems] == [ProblemKind.ALREADY_INSTALLED]

        goal = Goal(index)
        goal.add_install("foo-1.0", allow_downgrade=True)
        result = goal.resolve()
        assert summary(result.transaction) == [("foo-1.0-1.x86_64", ItemAction.DOWNGRADE, ItemReason.USER)]

    def test_not_found(self, scenario_a_index):
        goal = Goal(scenario_a_index)
        goal.add_install("nosuch")
        result = goal.resolve()
        assert result.transaction is None
        assert [p.kind for p in result.problems] == [ProblemKind.NOT_FOUND]
        assert "nosuch" in result.problems[0].message

    def test_excluded(self):
        index = MemoryIndex(repos={"fedora": [make_ref("kernel", "6.9-1")]}, excludes=["kernel"])
        goal = Goal(index)
        goal.add_install("kernel")
        result = goal.resolve()
        assert [p.kind for p in result.problems] == [ProblemKind.EXCLUDED]
        assert [ref.nevra for ref in result.problems[0].implicated] == ["kernel-6.9-1.x86_64"]

    def test_one_blocking_job_blocks_everything(self, scenario_a_index):
        goal = Goal(scenario_a_index)
        goal.add_install("bar")
        goal.add_install("nosuch")
        result = goal.resolve()
        assert result.transaction is None

    def test_falls_back_to_older_candidate(self):
        index = MemoryIndex(repos={"fedora": [
            make_ref("foo", "2.0-1", requires=["libmissing"]),
            make_ref("foo", "1.0-1"),
        ]})
        goal = Goal(index)
        goal.add_install("foo")
        result = goal.resolve()
        assert summary(result.transaction) == [("foo-1.0-1.x86_64", ItemAction.INSTALL, ItemReason.USER)]

    def test_best_effort_does_not_fall_back(self):
        index = MemoryIndex(repos={"fedora": [
            make_ref("foo", "2.0-1", requires=["libmissing"]),
            make_ref("foo", "1.0-1"),
        ]})
        goal = Goal(index, GoalPolicy(best_effort=True))
        goal.add_install("foo")
        result = goal.resolve()
        assert result.transaction is None
        assert [p.kind for p in result.problems] == [ProblemKind.BROKEN_DEPENDENCY]

    def test_best_effort_requires_newest_known(self):
        index = MemoryIndex(
            repos={"fedora": [make_ref("kernel", "6.9-1"), make_ref("kernel", "6.8-1")]},
            excludes=["kernel-6.9*"],
        )
        goal = Goal(index)
        goal.add_install("kernel")
        assert summary(goal.resolve().transaction) == [
            ("kernel-6.8-1.x86_64", ItemAction.INSTALL, ItemReason.USER),
        ]

        goal = Goal(index, GoalPolicy(best_effort=True))
        goal.add_install("kernel")
        result = goal.resolve()
        assert result.transaction is None
        assert [p.kind for p in result.problems] == [ProblemKind.BROKEN_DEPENDENCY]
        assert "kernel-6.9-1.x86_64" in result.problems[0].message

    def test_weak_dependencies(self):
        index = MemoryIndex(repos={"fedora": [
            make_ref("app", "1.0-1", recommends=["extras", "nowhere"]),
            make_ref("extras", "1.0-1"),
        ]})
        goal = Goal(index)
        goal.add_install("app", weak=True)
        assert summary(goal.resolve().transaction) == [
            ("app-1.0-1.x86_64", ItemAction.INSTALL, ItemReason.USER),
            ("extras-1.0-1.x86_64", ItemAction.INSTALL, ItemReason.WEAK_DEPENDENCY),
        ]

        goal = Goal(index)
        goal.add_install("app")
        assert summary(goal.resolve().transaction) == [
            ("app-1.0-1.x86_64", ItemAction.INSTALL, ItemReason.USER),
        ]

    def test_obsoleting_install_precedes_removal(self):
        index = MemoryIndex(
            repos={"fedora": [make_ref("newmail", "1.0-1", obsoletes=["oldmail"])]},
            installed=[make_ref("oldmail", "1.5-1")],
        )
        goal = Goal(index)
        goal.add_install("newmail")
        result = goal.resolve()
        assert summary(result.transaction) == [
            ("newmail-1.0-1.x86_64", ItemAction.INSTALL, ItemReason.USER),
            ("oldmail-1.5-1.x86_64", ItemAction.OBSOLETE, ItemReason.DEPENDENCY),
        ]
        assert_no_self_conflict(result.transaction)


class TestRemove:
    """Test REMOVE job translation and the orphan sweep."""

    def test_remove_without_clean_deps(self, system_index):
        goal = Goal(system_index)
        goal.add_remove("app")
        assert summary(goal.resolve().transaction) == [
            ("app-1.0-1.x86_64", ItemAction.REMOVE, ItemReason.USER),
        ]

    def test_clean_deps_removes_orphans_in_order(self, system_index):
        goal = Goal(system_index)
        goal.add_remove("app", clean_deps=True)
        assert summary(goal.resolve().transaction) == [
            ("app-1.0-1.x86_64", ItemAction.REMOVE, ItemReason.USER),
            ("libfoo-1.0-1.x86_64", ItemAction.REMOVE, ItemReason.CLEAN),
            ("libbar-1.0-1.x86_64", ItemAction.REMOVE, ItemReason.CLEAN),
        ]

    def test_clean_deps_keeps_shared_dependencies(self, system_index):
        index = MemoryIndex(
            repos={},
            installed=list(system_index.installed()) + [make_ref("tool", "1.0-1", requires=["libbar"])],
        )
        goal = Goal(index)
        goal.add_remove("app", clean_deps=True)
        assert summary(goal.resolve().transaction) == [
            ("app-1.0-1.x86_64", ItemAction.REMOVE, ItemReason.USER),
            ("libfoo-1.0-1.x86_64", ItemAction.REMOVE, ItemReason.CLEAN),
        ]

    def test_clean_deps_never_removes_protected(self, system_index):
        goal = Goal(system_index, GoalPolicy(protected_packages=frozenset({"libbar"})))
        goal.add_remove("app", clean_deps=True)
        result = goal.resolve()
        assert result.ok
        assert [item.package.name for item in result.transaction] == ["app", "libfoo"]

    def test_remove_not_installed(self, scenario_a_index):
        goal = Goal(scenario_a_index)
        goal.add_remove("bar")
        assert [p.kind for p in goal.resolve().problems] == [ProblemKind.NOT_FOUND]


class TestUpgradeDowngrade:
    """Test UPGRADE, DOWNGRADE, REINSTALL and DISTRO_SYNC jobs."""

    def test_upgrade_all(self, scenario_a_index):
        goal = Goal(scenario_a_index)
        goal.add_upgrade()
        assert summary(goal.resolve().transaction) == [
            ("foo-2.0-1.x86_64", ItemAction.UPGRADE, ItemReason.USER),
        ]

    def test_upgrade_not_installed(self, scenario_a_index):
        goal = Goal(scenario_a_index)
        goal.add_upgrade("bar")
        result = goal.resolve()
        assert [p.kind for p in result.problems] == [ProblemKind.NOT_FOUND]
        assert "available, but not installed" in result.problems[0].message

    def test_upgrade_nothing_newer(self):
        index = MemoryIndex(repos={"fedora": [make_ref("foo", "1.0-1")]}, installed=[make_ref("foo", "1.0-1")])
        goal = Goal(index)
        goal.add_upgrade("foo")
        result = goal.resolve()
        assert result.ok
        assert result.transaction is None

    def test_downgrade(self):
        index = MemoryIndex(
            repos={"fedora": [make_ref("foo", "1.0-1"), make_ref("foo", "1.5-1"), make_ref("foo", "2.0-1")]},
            installed=[make_ref("foo", "2.0-1")],
        )
        goal = Goal(index)
        goal.add_downgrade("foo")
        result = goal.resolve()
        assert summary(result.transaction) == [("foo-1.5-1.x86_64", ItemAction.DOWNGRADE, ItemReason.USER)]

    def test_downgrade_lowest(self, scenario_a_index):
        goal = Goal(scenario_a_index)
        goal.add_downgrade("foo")
        result = goal.resolve()
        assert [p.kind for p in result.problems] == [ProblemKind.ALREADY_INSTALLED]
        assert "lowest version" in result.problems[0].message

    def test_reinstall(self, scenario_a_index):
        goal = Goal(scenario_a_index)
        goal.add_reinstall("foo")
        assert summary(goal.resolve().transaction) == [
            ("foo-1.0-1.x86_64", ItemAction.REINSTALL, ItemReason.USER),
        ]

    def test_reinstall_unavailable(self):
        index = MemoryIndex(repos={"fedora": [make_ref("foo", "2.0-1")]}, installed=[make_ref("foo", "1.0-1")])
        goal = Goal(index)
        goal.add_reinstall("foo")
        assert [p.kind for p in goal.resolve().problems] == [ProblemKind.NOT_FOUND]

    def test_distro_sync_moves_down(self):
        index = MemoryIndex(
            repos={"fedora": [make_ref("foo", "2.0-1"), make_ref("bar", "1.0-1")]},
            installed=[make_ref("foo", "3.0-1"), make_ref("bar", "1.0-1"), make_ref("local", "1.0-1")],
        )
        goal = Goal(index)
        goal.add_distro_sync()
        assert summary(goal.resolve().transaction) == [
            ("foo-2.0-1.x86_64", ItemAction.DOWNGRADE, ItemReason.USER),
        ]


class TestContract:
    """Misuse is reported distinctly from problems."""

    def test_concurrent_resolve(self, scenario_a_index):
        goal = Goal(scenario_a_index)
        goal.add_install("bar")
        goal._resolving.acquire()
        try:
            with pytest.raises(ContractViolation, match="concurrently"):
                goal.resolve()
        finally:
            goal._resolving.release()
        assert goal.resolve().ok
