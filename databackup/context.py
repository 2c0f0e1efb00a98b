"""Engine context carried explicitly through the gateway, pipeline and engine."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .config import EngineConfig
from .util.logging import ShellLog

SHELL_LOG_NAME = "shell.log"


@dataclass
class EngineContext:
    """
    Configuration and operation log shared by one engine instance.

    Every component receives this at construction time; nothing reads
    configuration or writes the shell log through module globals.
    """

    config: EngineConfig = field(default_factory=EngineConfig)
    shell_log: ShellLog = field(default_factory=ShellLog)

    @classmethod
    def from_config(cls, config: EngineConfig, log_path: Optional[Path] = None) -> "EngineContext":
        """Build a context whose shell log is persisted under ``config.log_dir``."""
        if log_path is None:
            log_path = Path(config.log_dir) / SHELL_LOG_NAME
        return cls(config=config, shell_log=ShellLog(log_path))
