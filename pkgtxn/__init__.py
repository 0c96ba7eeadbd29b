"""Goal resolution and transaction execution engine for package managers."""

__version__ = "0.1.0"

from .config import ConfigError, EngineConfig, load_config
from .errors import (
    ContractViolation,
    HistoryPackageUnavailable,
    InstallError,
    LevelNotSet,
    LockUnavailable,
    PkgtxnError,
    format_error,
    format_suggestion,
)
from .executor import ExecutionLock, ExecutionResult, Installer, TransactionExecutor
from .goal import Goal, GoalResult
from .history import HistoryStore
from .index import MemoryIndex, PackageFilter, PackageIndex
from .installers import CommandInstaller, SnapshotInstaller
from .logger import Level, setup_logging
from .models import (
    GoalPolicy,
    HistoryItem,
    HistoryRecord,
    ItemAction,
    ItemOutcome,
    ItemReason,
    Job,
    JobAction,
    PackageRef,
    Problem,
    ProblemKind,
    TransactionPackage,
    TransactionState,
)
from .planner import TransactionPlanner
from .reporting import format_problems, render_transaction
from .transaction import Transaction

__all__ = [
    "CommandInstaller",
    "ConfigError",
    "ContractViolation",
    "EngineConfig",
    "ExecutionLock",
    "ExecutionResult",
    "Goal",
    "GoalPolicy",
    "GoalResult",
    "HistoryItem",
    "HistoryPackageUnavailable",
    "HistoryRecord",
    "HistoryStore",
    "InstallError",
    "Installer",
    "ItemAction",
    "ItemOutcome",
    "ItemReason",
    "Job",
    "JobAction",
    "Level",
    "LevelNotSet",
    "LockUnavailable",
    "MemoryIndex",
    "PackageFilter",
    "PackageIndex",
    "PackageRef",
    "PkgtxnError",
    "Problem",
    "ProblemKind",
    "SnapshotInstaller",
    "Transaction",
    "TransactionExecutor",
    "TransactionPackage",
    "TransactionPlanner",
    "TransactionState",
    "format_error",
    "format_problems",
    "format_suggestion",
    "load_config",
    "render_transaction",
    "setup_logging",
]
