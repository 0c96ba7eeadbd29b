"""Installer implementations.

``SnapshotInstaller`` applies items to a :class:`MemoryIndex` snapshot, which
makes the whole engine usable (and testable) without touching the host.
``CommandInstaller`` runs a configured shell command per action.
"""

import logging
import shlex

from .errors import InstallError
from .execution import INSTALL_TIMEOUT, run_command
from .executor import Installer
from .index import MemoryIndex
from .models import ItemAction, TransactionPackage

_logging = logging.getLogger(__name__)


class SnapshotInstaller(Installer):
    """Records item effects in the installed set of a MemoryIndex."""

    def __init__(self, index: MemoryIndex, save: bool = True):
        self.index = index
        self.save = save

    def apply(self, item: TransactionPackage) -> None:
        ref = item.package
        if item.action is ItemAction.REPLACED:
            # The inbound item of the same slot already swapped it out.
            return
        try:
            if item.action.is_inbound:
                self.index.mark_installed(ref)
            else:
                self.index.mark_removed(ref)
        except KeyError as e:
            raise InstallError(f"Cannot {item.action.value} {ref.nevra}", item=item, cause=str(e.args[0])) from e

        if self.save and self.index.path is not None:
            try:
                self.index.save()
            except OSError as e:
                raise InstallError(f"Cannot save package index: {e}", item=item) from e
        _logging.debug(f"Applied {item}")


def format_command(template: str, item: TransactionPackage) -> str:
    """Fill a command template; every value is shell quoted.

    Placeholders: ``{name}``, ``{arch}``, ``{evr}``, ``{epoch}``,
    ``{version}``, ``{release}``, ``{nevra}``, ``{repo}``.
    """
    ref = item.package
    values = {
        "name": ref.name,
        "arch": ref.arch,
        "evr": str(ref.evr),
        "epoch": str(ref.evr.epoch),
        "version": ref.evr.version,
        "release": ref.evr.release,
        "nevra": ref.nevra,
        "repo": ref.repo,
    }
    try:
        return template.format(**{key: shlex.quote(value) for key, value in values.items()})
    except (KeyError, IndexError) as e:
        raise InstallError(f"Invalid command template '{template}': unknown placeholder {e}", item=item) from e


class CommandInstaller(Installer):
    """Runs ``commands[action]`` for every item.

    When a snapshot installer is given, successful items are also recorded
    there so the package index keeps tracking the system.
    """

    def __init__(
        self,
        commands: dict[str, str],
        timeout: int = INSTALL_TIMEOUT,
        snapshot: SnapshotInstaller | None = None,
    ):
        self.commands = commands
        self.timeout = timeout
        self.snapshot = snapshot

    def apply(self, item: TransactionPackage) -> None:
        template = self.commands.get(item.action.value)
        if template is None:
            if item.action is not ItemAction.REPLACED:
                raise InstallError(
                    f"No command configured for action '{item.action.value}'",
                    item=item,
                )
        else:
            command = format_command(template, item)
            output, returncode = run_command(command, timeout=self.timeout)
            if returncode != 0:
                raise InstallError(
                    f"Command failed with exit code {returncode}: {command}",
                    item=item,
                    cause=output or f"exit code {returncode}",
                )
            _logging.debug(f"{command}: {output}")

        if self.snapshot is not None:
            self.snapshot.apply(item)


__all__ = [
    "CommandInstaller",
    "SnapshotInstaller",
    "format_command",
]
