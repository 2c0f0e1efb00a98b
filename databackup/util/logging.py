"""Utility functions for logging setup."""

import logging
import threading
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    console: Optional[Console] = None
) -> logging.Logger:
    """Set up structured logging with Rich formatting."""

    if console is None:
        console = Console(stderr=True)

    logger = logging.getLogger("databackup")
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    console_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=True,
        rich_tracebacks=True,
        tracebacks_show_locals=True,
    )
    console_handler.setLevel(getattr(logging, level.upper()))
    console_handler.setFormatter(logging.Formatter(fmt="%(message)s", datefmt="[%X]"))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)

        # Detailed format for file
        file_format = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = "databackup") -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)


class ShellLog:
    """Append-only record of every shell command issued and every line it produced.

    Lines are kept in memory and, when a path is given, appended to a plain
    text file as they arrive. Each line is mirrored to the ``databackup.shell``
    logger at DEBUG level.
    """

    IN = "SHELL_IN:"
    OUT = "SHELL_OUT:"

    def __init__(self, path: Optional[Path] = None, keep_lines: int = 5000):
        self.path = Path(path) if path is not None else None
        self.keep_lines = keep_lines
        self._lines: List[str] = []
        self._lock = threading.Lock()
        self._logger = get_logger("databackup.shell")

        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def add_line(self, line: str) -> None:
        """Append a single line to the log."""
        with self._lock:
            self._lines.append(line)
            if len(self._lines) > self.keep_lines:
                del self._lines[: len(self._lines) - self.keep_lines]

            if self.path is not None:
                try:
                    with open(self.path, "a", encoding="utf-8") as f:
                        f.write(line + "\n")
                except OSError as e:
                    self._logger.warning(f"Could not write shell log {self.path}: {e}")

        self._logger.debug(line)

    def command(self, command: str) -> None:
        self.add_line(f"{self.IN} {command}")

    def output(self, line: str) -> None:
        self.add_line(f"{self.OUT} {line}")

    @property
    def lines(self) -> List[str]:
        """Snapshot of the lines kept in memory."""
        with self._lock:
            return list(self._lines)
