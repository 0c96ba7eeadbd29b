"""Execution context handed to every command through click's ``ctx.obj``."""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path

import click

from pkgtxn.config import ConfigError, EngineConfig
from pkgtxn.errors import format_error
from pkgtxn.executor import ExecutionLock, Installer, TransactionExecutor
from pkgtxn.history import HistoryStore
from pkgtxn.index import MemoryIndex
from pkgtxn.installers import CommandInstaller, SnapshotInstaller
from pkgtxn.models import GoalPolicy, TransactionPackage

_logging = logging.getLogger(__name__)

_PROGRESS_VERBS = {
    "install": "Installing",
    "upgrade": "Upgrading",
    "downgrade": "Downgrading",
    "reinstall": "Reinstalling",
    "remove": "Removing",
    "obsolete": "Obsoleting",
    "replaced": "Cleaning up",
}


def echo_progress(item: TransactionPackage, phase: str, percent: int) -> None:
    verb = _PROGRESS_VERBS[item.action.value]
    if phase == "done":
        click.echo(f"  ✅ {verb:<13} {item.package.nevra}")
    elif phase == "error":
        click.echo(f"  ❌ {verb:<13} {item.package.nevra}")


@dataclass
class CommandContext:
    """Everything a command needs; built once by the ``pkgtxn`` group."""
    config: EngineConfig
    debug: bool = False
    assumeyes: bool = False
    index_path: Path | None = None
    allow_erasing: bool | None = None
    best: bool | None = None
    _index: MemoryIndex | None = field(default=None, repr=False)
    _history: HistoryStore | None = field(default=None, repr=False)

    def policy(self) -> GoalPolicy:
        policy = self.config.goal_policy()
        return GoalPolicy(
            protected_packages=policy.protected_packages,
            best_effort=policy.best_effort if self.best is None else self.best,
            allow_erasing=policy.allow_erasing if self.allow_erasing is None else self.allow_erasing,
        )

    def index(self) -> MemoryIndex:
        if self._index is None:
            path = self.index_path or self.config.index_path
            if path.exists():
                try:
                    self._index = MemoryIndex.load(path)
                except ConfigError as e:
                    click.echo(format_error(str(e)), err=True)
                    sys.exit(1)
            else:
                _logging.debug(f"No package index at {path}, starting from an empty one")
                self._index = MemoryIndex(path=path)
        return self._index

    def history(self) -> HistoryStore:
        if self._history is None:
            self._history = HistoryStore(self.config.history_path)
        return self._history

    def installer(self) -> Installer:
        snapshot = SnapshotInstaller(self.index())
        if self.config.commands:
            return CommandInstaller(self.config.commands, snapshot=snapshot)
        return snapshot

    def executor(self) -> TransactionExecutor:
        return TransactionExecutor(
            self.installer(),
            history=self.history(),
            lock=ExecutionLock(self.config.lock_path, timeout=self.config.lock_timeout),
            progress=echo_progress,
        )
