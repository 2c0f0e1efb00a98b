"""Shared test doubles."""

from typing import Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest

from databackup.adb.package import PackageManager
from databackup.adb.shell import RootShell, ShellResult, ShTransport
from databackup.config import EngineConfig
from databackup.context import EngineContext
from databackup.util.logging import ShellLog


class FakeShell(RootShell):
    """RootShell that answers commands from rules instead of running them.

    Every command succeeds with no output unless a rule matches; the most
    recently added rule whose needle occurs in the command wins. Files read
    and written through :meth:`read_text`/:meth:`write_text` live in
    :attr:`files`.
    """

    def __init__(self, context: Optional[EngineContext] = None):
        super().__init__(context or EngineContext(), ShTransport())
        self.commands: List[str] = []
        self.rules: List[Tuple[str, ShellResult]] = []
        self.files: Dict[str, str] = {}

    def on(self, needle: str, success: bool = True, out: Optional[List[str]] = None) -> None:
        self.rules.append((needle, ShellResult(success=success, out=list(out or []), code=0 if success else 1)))

    def execute(self, command, log_enabled=True, on_line=None, input_text=None):
        self.commands.append(command)
        result = ShellResult(success=True)
        for needle, candidate in reversed(self.rules):
            if needle in command:
                result = candidate
                break

        if on_line is not None:
            for line in result.out:
                on_line(line)
        return result

    def read_text(self, path):
        self.commands.append(f"cat {path}")
        if path not in self.files:
            return ShellResult(success=False, code=1)
        return ShellResult(success=True, out=self.files[path].splitlines())

    def write_text(self, path, text):
        self.commands.append(f"cat > {path}")
        self.files[path] = text
        return True

    def ran(self, needle: str) -> int:
        """Number of executed commands containing ``needle``."""
        return sum(1 for command in self.commands if needle in command)


@pytest.fixture
def context():
    return EngineContext(config=EngineConfig(backup_save_path="/save"), shell_log=ShellLog())


@pytest.fixture
def shell(context):
    return FakeShell(context)


@pytest.fixture
def packages():
    return MagicMock(spec=PackageManager)


@pytest.fixture
def lines():
    """Collected progress lines; pass ``lines.append`` as ``on_line``."""
    return []
