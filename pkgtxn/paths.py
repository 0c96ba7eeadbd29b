"""Configuration and state path helpers for pkgtxn."""

import os
from pathlib import Path


def get_config_dir() -> Path:
    """Return XDG-compliant config directory: ~/.config/pkgtxn"""
    base = os.environ.get("XDG_CONFIG_HOME")
    return (Path(base) if base else Path.home() / ".config") / "pkgtxn"


def get_state_dir() -> Path:
    """Return XDG-compliant state directory: ~/.local/state/pkgtxn"""
    base = os.environ.get("XDG_STATE_HOME")
    return (Path(base) if base else Path.home() / ".local" / "state") / "pkgtxn"


def get_config_path() -> Path:
    """Return path to user config file.

    Priority:
    1. PKGTXN_CONFIG environment variable (if set)
    2. ~/.config/pkgtxn/pkgtxn.yaml (default XDG location)
    """
    if "PKGTXN_CONFIG" in os.environ:
        return Path(os.environ["PKGTXN_CONFIG"])
    return get_config_dir() / "pkgtxn.yaml"


def get_index_path() -> Path:
    """Return path to the package index snapshot (PKGTXN_INDEX overrides)."""
    if "PKGTXN_INDEX" in os.environ:
        return Path(os.environ["PKGTXN_INDEX"])
    return get_state_dir() / "index.yaml"


def get_history_path() -> Path:
    return get_state_dir() / "history.jsonl"


def get_lock_path() -> Path:
    return get_state_dir() / "transaction.lock"
