"""Configuration loading and validation."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .models import GoalPolicy, ItemAction
from .paths import get_config_path, get_history_path, get_index_path, get_lock_path

DEFAULT_LOCK_TIMEOUT = 30
LOG_LEVELS = ("critical", "error", "warning", "notice", "info", "debug", "trace")


class ConfigError(Exception):
    """Raised when config loading or parsing fails.

    Syntax errors carry the line, column and a caret pointing at the
    offending position.
    """
    pass


@dataclass
class EngineConfig:
    """Settings for resolution, execution and history."""
    protected_packages: list[str] = field(default_factory=list)
    best: bool = False
    allow_erasing: bool = False
    clean_requirements_on_remove: bool = False
    install_weak_deps: bool = True
    lock_timeout: int = DEFAULT_LOCK_TIMEOUT
    index_path: Path = field(default_factory=get_index_path)
    history_path: Path = field(default_factory=get_history_path)
    lock_path: Path = field(default_factory=get_lock_path)
    log_file: Path | None = None
    log_level: str | None = None
    commands: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.lock_timeout < 0:
            raise ValueError("lock_timeout must be zero or positive")
        if self.log_level is not None and self.log_level.lower() not in LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {', '.join(LOG_LEVELS)}, got '{self.log_level}'"
            )
        known_actions = {action.value for action in ItemAction}
        for action in self.commands:
            if action not in known_actions:
                raise ValueError(f"commands has unknown action '{action}'")

    def goal_policy(self) -> GoalPolicy:
        return GoalPolicy(
            protected_packages=frozenset(self.protected_packages),
            best_effort=self.best,
            allow_erasing=self.allow_erasing,
        )


_BOOL_FIELDS = ("best", "allow_erasing", "clean_requirements_on_remove", "install_weak_deps")
_PATH_FIELDS = ("index_path", "history_path", "lock_path", "log_file")


def validate_config(data: dict) -> EngineConfig:
    """Validate and convert a raw mapping to EngineConfig.

    Args:
        data: Raw dict from yaml.safe_load() containing config data

    Returns:
        EngineConfig with defaults filled in for missing keys

    Raises:
        ConfigError: If validation fails with clear field path errors
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a mapping, got {type(data).__name__}")

    kwargs: dict[str, Any] = {}

    if "protected_packages" in data:
        value = data["protected_packages"]
        if not isinstance(value, list):
            raise ConfigError(
                f"protected_packages must be a list, got {type(value).__name__}"
            )
        for i, name in enumerate(value):
            if not isinstance(name, str) or not name.strip():
                raise ConfigError(f"protected_packages[{i}] must be a non-empty string")
        kwargs["protected_packages"] = list(value)

    for field_name in _BOOL_FIELDS:
        if field_name in data:
            if not isinstance(data[field_name], bool):
                raise ConfigError(
                    f"{field_name} must be a boolean, got {type(data[field_name]).__name__}"
                )
            kwargs[field_name] = data[field_name]

    if "lock_timeout" in data:
        value = data["lock_timeout"]
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"lock_timeout must be an integer, got {type(value).__name__}")
        kwargs["lock_timeout"] = value

    for field_name in _PATH_FIELDS:
        value = data.get(field_name)
        if value is not None:
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"{field_name} must be a non-empty string or null")
            kwargs[field_name] = Path(value).expanduser()

    if data.get("log_level") is not None:
        if not isinstance(data["log_level"], str):
            raise ConfigError("log_level must be a string or null")
        kwargs["log_level"] = data["log_level"]

    if "commands" in data:
        commands = data["commands"]
        if not isinstance(commands, dict):
            raise ConfigError(f"commands must be a mapping, got {type(commands).__name__}")
        for action, template in commands.items():
            if not isinstance(template, str) or not template.strip():
                raise ConfigError(f"commands.{action} must be a non-empty string")
        kwargs["commands"] = dict(commands)

    try:
        return EngineConfig(**kwargs)
    except ValueError as e:
        raise ConfigError(str(e)) from e


def _format_syntax_error(original_text: str, error: yaml.MarkedYAMLError) -> str:
    """Format a YAML syntax error with line, caret, and context."""
    mark = error.problem_mark or error.context_mark
    if mark is None:
        return f"Config syntax error: {error}"

    line_num, col_num = mark.line + 1, mark.column + 1
    msg_parts = [f"Config syntax error at line {line_num}, col {col_num}: {error.problem}"]

    lines = original_text.split("\n")
    if 1 <= line_num <= len(lines):
        msg_parts.append(lines[line_num - 1])
        msg_parts.append(" " * mark.column + "^")

    return "\n".join(msg_parts)


def load_yaml_file(path: Path) -> dict:
    """Read a YAML mapping from disk.

    Raises:
        ConfigError: If the file cannot be read, has syntax errors or does
            not contain a mapping.
    """
    try:
        original_text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"File not found: {path}")
    except PermissionError:
        raise ConfigError(f"Permission denied reading file: {path}")
    except UnicodeDecodeError:
        raise ConfigError(f"File is not valid UTF-8: {path}")
    except OSError as e:
        raise ConfigError(f"Error reading file {path}: {e}")

    try:
        result = yaml.safe_load(original_text)
    except yaml.MarkedYAMLError as e:
        raise ConfigError(_format_syntax_error(original_text, e)) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Config syntax error: {e}") from e

    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(result).__name__}")
    return result


def load_config(path: Path | None = None) -> EngineConfig:
    """Load the engine configuration.

    An explicit path must exist. Without one the default location is used,
    and a missing default file yields the built-in defaults.
    """
    if path is None:
        path = get_config_path()
        if not path.exists():
            return EngineConfig()
    return validate_config(load_yaml_file(path))


__all__ = [
    "ConfigError",
    "EngineConfig",
    "DEFAULT_LOCK_TIMEOUT",
    "LOG_LEVELS",
    "validate_config",
    "load_yaml_file",
    "load_config",
]
