"""Version comparison and capability matching utilities."""

import fnmatch
import re
from dataclasses import dataclass
from functools import total_ordering

_DIGITS = re.compile(r"[0-9]+")
_ALPHA = re.compile(r"[A-Za-z]+")
_EVR = re.compile(r"^(?:(?P<epoch>[0-9]+):)?(?P<version>[^-:]+)(?:-(?P<release>[^-:]+))?$")
_REQUIREMENT = re.compile(r"^\s*(?P<name>[^\s<>=]+)\s*(?:(?P<op><=|>=|==|=|<|>)\s*(?P<evr>\S+))?\s*$")

OPERATORS = ("<=", ">=", "==", "=", "<", ">")


def _is_alnum(ch: str) -> bool:
    return ch.isascii() and ch.isalnum()


def rpmvercmp(left: str, right: str) -> int:
    """Compare two version (or release) strings segment by segment.

    Returns -1, 0, or 1. Digit runs compare numerically and beat letter
    runs, ``~`` sorts before anything (even the end of the string) and ``^``
    sorts after the end of the string but before any further segment.
    """
    if left == right:
        return 0

    i = j = 0
    n, m = len(left), len(right)
    while i < n or j < m:
        while i < n and not _is_alnum(left[i]) and left[i] not in "~^":
            i += 1
        while j < m and not _is_alnum(right[j]) and right[j] not in "~^":
            j += 1

        left_tilde = i < n and left[i] == "~"
        right_tilde = j < m and right[j] == "~"
        if left_tilde or right_tilde:
            if not left_tilde:
                return 1
            if not right_tilde:
                return -1
            i += 1
            j += 1
            continue

        left_caret = i < n and left[i] == "^"
        right_caret = j < m and right[j] == "^"
        if left_caret or right_caret:
            if i >= n:
                return -1
            if j >= m:
                return 1
            if not left_caret:
                return 1
            if not right_caret:
                return -1
            i += 1
            j += 1
            continue

        if i >= n or j >= m:
            break

        if left[i].isdigit():
            one = _DIGITS.match(left, i)
            two = _DIGITS.match(right, j)
            if two is None:
                return 1
            a, b = one.group().lstrip("0"), two.group().lstrip("0")
            if len(a) != len(b):
                return 1 if len(a) > len(b) else -1
        else:
            one = _ALPHA.match(left, i)
            two = _ALPHA.match(right, j)
            if two is None:
                return -1
            a, b = one.group(), two.group()

        if a != b:
            return 1 if a > b else -1
        i, j = one.end(), two.end()

    if i >= n and j >= m:
        return 0
    return -1 if i >= n else 1


@total_ordering
@dataclass(frozen=True)
class Evr:
    """Epoch, version and release of a package."""

    epoch: int
    version: str
    release: str = ""

    @classmethod
    def parse(cls, text: str) -> "Evr":
        match = _EVR.match(str(text).strip())
        if not match:
            raise ValueError(f"Invalid epoch-version-release: {text!r}")
        return cls(
            epoch=int(match.group("epoch") or 0),
            version=match.group("version"),
            release=match.group("release") or "",
        )

    def __str__(self) -> str:
        text = f"{self.epoch}:{self.version}" if self.epoch else self.version
        return f"{text}-{self.release}" if self.release else text

    def __lt__(self, other: "Evr") -> bool:
        if not isinstance(other, Evr):
            return NotImplemented
        return compare_evr(self, other) < 0


def compare_evr(left: Evr, right: Evr, ignore_missing_release: bool = False) -> int:
    """Compare two EVRs. Returns -1, 0, or 1.

    With ``ignore_missing_release`` the release is only compared when both
    sides carry one, which is how versioned requirements are matched.
    """
    if left.epoch != right.epoch:
        return 1 if left.epoch > right.epoch else -1
    result = rpmvercmp(left.version, right.version)
    if result:
        return result
    if ignore_missing_release and (not left.release or not right.release):
        return 0
    return rpmvercmp(left.release, right.release)


@dataclass(frozen=True)
class Requirement:
    """A capability name with an optional version constraint."""

    name: str
    op: str | None = None
    evr: Evr | None = None

    @classmethod
    def parse(cls, text: str) -> "Requirement":
        match = _REQUIREMENT.match(text)
        if not match:
            raise ValueError(f"Invalid capability: {text!r}")
        op = match.group("op")
        if op == "==":
            op = "="
        evr = Evr.parse(match.group("evr")) if op else None
        return cls(name=match.group("name"), op=op, evr=evr)

    def __str__(self) -> str:
        if self.op is None:
            return self.name
        return f"{self.name} {self.op} {self.evr}"

    def satisfied_by(self, provide: "Requirement") -> bool:
        """Check whether a provided capability fulfils this requirement.

        Unversioned provides satisfy any constraint on the same name.
        """
        if provide.name != self.name:
            return False
        if self.op is None or provide.evr is None:
            return True
        result = compare_evr(provide.evr, self.evr, ignore_missing_release=True)
        return {
            "=": result == 0,
            "<": result < 0,
            "<=": result <= 0,
            ">": result > 0,
            ">=": result >= 0,
        }[self.op]


def is_constraint_pattern(pattern: str) -> bool:
    """Return True when a pattern is a capability constraint like 'foo >= 2'."""
    return any(op in pattern for op in OPERATORS)


def nevra_forms(name: str, arch: str, evr: Evr) -> list[str]:
    """Return every textual form a user may use to address a package."""
    forms = [
        name,
        f"{name}.{arch}",
        f"{name}-{evr.version}",
        f"{name}-{evr.version}-{evr.release}",
        f"{name}-{evr.version}-{evr.release}.{arch}",
    ]
    if evr.epoch:
        forms.append(f"{name}-{evr.epoch}:{evr.version}-{evr.release}")
        forms.append(f"{name}-{evr.epoch}:{evr.version}-{evr.release}.{arch}")
    return forms


def match_nevra(name: str, arch: str, evr: Evr, pattern: str) -> bool:
    """Match a glob pattern against the NEVRA forms of a package."""
    return any(fnmatch.fnmatchcase(form, pattern) for form in nevra_forms(name, arch, evr))


__all__ = [
    "OPERATORS",
    "Evr",
    "Requirement",
    "compare_evr",
    "is_constraint_pattern",
    "match_nevra",
    "nevra_forms",
    "rpmvercmp",
]
