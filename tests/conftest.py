"""Pytest fixtures and utilities for pkgtxn tests."""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from pkgtxn.executor import Installer
from pkgtxn.errors import InstallError
from pkgtxn.index import MemoryIndex
from pkgtxn.models import PackageRef


def make_ref(name: str, evr: str, arch: str = "x86_64", **kwargs) -> PackageRef:
    """Build a PackageRef; list fields accept plain strings."""
    return PackageRef(name=name, arch=arch, evr=evr, **kwargs)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def pkg():
    """Factory for PackageRef instances."""
    return make_ref


@pytest.fixture
def scenario_a_index() -> MemoryIndex:
    """foo-1.0 installed; foo-2.0 and bar-1.0 (requires foo >= 2.0) available."""
    return MemoryIndex(
        repos={
            "fedora": [
                make_ref("foo", "1.0-1"),
                make_ref("foo", "2.0-1"),
                make_ref("bar", "1.0-1", requires=["foo >= 2.0"]),
            ],
        },
        installed=[make_ref("foo", "1.0-1")],
    )


@pytest.fixture
def system_index() -> MemoryIndex:
    """A small installed system with a protected core and some leaves."""
    glibc = make_ref("glibc", "2.38-1", provides=["libc.so.6"])
    bash = make_ref("bash", "5.2-1", requires=["libc.so.6"])
    app = make_ref("app", "1.0-1", requires=["libfoo"])
    libfoo = make_ref("libfoo", "1.0-1", provides=["libfoo"], requires=["libbar"])
    libbar = make_ref("libbar", "1.0-1", provides=["libbar"])
    return MemoryIndex(
        repos={"fedora": [glibc, bash, app, libfoo, libbar]},
        installed=[glibc, bash, app, libfoo, libbar],
    )


class RecordingInstaller(Installer):
    """Installer that records applied items and fails on request."""

    def __init__(self, fail_on: set[str] | None = None):
        self.applied = []
        self.fail_on = fail_on or set()

    def apply(self, item):
        if item.package.name in self.fail_on:
            raise InstallError(f"cannot apply {item}", item=item, cause="disk full")
        self.applied.append(item)


@pytest.fixture
def recording_installer():
    """Factory for RecordingInstaller instances."""
    return RecordingInstaller
