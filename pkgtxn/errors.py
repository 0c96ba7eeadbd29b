"""Exceptions and error formatting utilities.

Resolution problems (missing packages, conflicts, protected packages...) are
returned as data and never raised. The exceptions below cover everything
else:

- ContractViolation: the engine was misused (state machine order, concurrent
  resolve on one Goal, double finish). These indicate programming errors.
- LockUnavailable: another transaction holds the execution lock.
- InstallError: the installer failed to apply one transaction item.
- HistoryPackageUnavailable: a history record cannot be inverted because
  a package version it references is gone.
- LevelNotSet: a logger's level was read before being set.

User-facing error style:
- Errors use the 'Error: ' prefix
- Use present tense: 'must be', 'is required'
- Include actionable hints where helpful
"""


class PkgtxnError(Exception):
    """Base class for engine errors."""


class ContractViolation(PkgtxnError):
    """Raised when the engine's API is used out of order or concurrently."""


class LockUnavailable(PkgtxnError):
    """Raised when the execution lock cannot be acquired in time."""


class InstallError(PkgtxnError):
    """Raised by an installer when one transaction item cannot be applied."""

    def __init__(self, message: str, item=None, cause: str | None = None):
        super().__init__(message)
        self.item = item
        self.cause = cause or message


class HistoryPackageUnavailable(PkgtxnError):
    """Raised when a history record references packages no longer available."""

    def __init__(self, message: str, problems=()):
        super().__init__(message)
        self.problems = list(problems)


class LevelNotSet(PkgtxnError):
    """Raised when reading the level of a logger that has none."""


def format_error(message: str) -> str:
    """Format an error message with consistent prefix.

    Examples:
        >>> format_error("transaction 4 not found")
        'Error: transaction 4 not found'
    """
    return f"Error: {message}"


def format_suggestion(message: str, suggestion: str) -> str:
    """Format an error message with a helpful suggestion.

    Examples:
        >>> format_suggestion("lock held by pid 42", "retry when the other transaction finishes")
        'Error: lock held by pid 42. Hint: retry when the other transaction finishes'
    """
    return f"{format_error(message)}. Hint: {suggestion}"


__all__ = [
    "PkgtxnError",
    "ContractViolation",
    "LockUnavailable",
    "InstallError",
    "HistoryPackageUnavailable",
    "LevelNotSet",
    "format_error",
    "format_suggestion",
]
