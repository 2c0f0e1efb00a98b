"""Configuration management for databackup."""

from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .errors import ConfigError
from .util.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config/databackup/config.yaml"


class BackupStrategy(str, Enum):
    """How repeated backups of the same entity are stored."""

    OVERWRITE = "overwrite"
    VERSIONED = "versioned"


class CompressionType(str, Enum):
    """Archive codec used by the pipeline."""

    TAR = "tar"
    LZ4 = "lz4"
    ZSTD = "zstd"


class ShellMode(str, Enum):
    """How the privileged interpreter is reached."""

    SU = "su"     # running on the device, escalate with su
    ADB = "adb"   # running on a workstation, adb shell + su
    SH = "sh"     # process is already privileged


class ShellConfig(BaseModel):
    """Configuration for the privileged shell transport."""

    mode: ShellMode = Field(default=ShellMode.SU, description="Shell transport")
    su_path: str = Field(default="su", description="Path to su binary")
    adb_path: str = Field(default="adb", description="Path to ADB binary")
    serial: Optional[str] = Field(default=None, description="ADB device serial")


class EngineConfig(BaseModel):
    """Main configuration for databackup."""

    backup_save_path: str = Field(
        default="/storage/emulated/0/DataBackup",
        description="Backup root on the device"
    )
    backup_user: str = Field(default="0", description="User whose apps are backed up")
    restore_user: str = Field(default="0", description="User apps are restored into")
    backup_strategy: BackupStrategy = Field(default=BackupStrategy.OVERWRITE)
    compression_type: CompressionType = Field(default=CompressionType.ZSTD)
    verify_archives: bool = Field(default=True, description="Test archives after compression")
    auto_fix_multi_user_context: bool = Field(
        default=False,
        description="Rewrite SELinux categories for the restore user"
    )
    host_package: str = Field(
        default="com.xayah.databackup",
        description="Package excluded from enumeration (the host application)"
    )
    required_binaries: List[str] = Field(
        default=["tar", "zstd", "lz4", "du", "find"],
        description="Binaries that must be present on the device"
    )

    shell: ShellConfig = Field(default_factory=ShellConfig)

    # Runtime settings
    log_dir: Path = Field(
        default_factory=lambda: Path.home() / ".local/share/databackup/logs",
        description="Directory for the shell operation log"
    )
    log_level: str = Field(default="INFO", description="Logging level")
    max_concurrent_operations: int = Field(default=4, description="Worker pool size")

    class Config:
        """Pydantic configuration."""

        validate_assignment = True


def load_config(config_path: Optional[Path] = None) -> EngineConfig:
    """Load configuration from file or create default.

    Raises:
        ConfigError: The file exists but is not a valid configuration
    """

    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if config_path.exists():
        yaml = YAML(typ="safe")
        try:
            with open(config_path, "r") as f:
                data = yaml.load(f) or {}
            config = EngineConfig(**data)
        except (YAMLError, ValidationError, TypeError) as e:
            raise ConfigError(f"Invalid configuration {config_path}: {e}") from e
        logger.debug(f"Loaded configuration from {config_path}")
        return config
    else:
        config = EngineConfig()
        save_config(config, config_path)
        return config


def save_config(config: EngineConfig, config_path: Optional[Path] = None) -> None:
    """Save configuration to file."""

    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    config_path.parent.mkdir(parents=True, exist_ok=True)

    yaml = YAML()
    yaml.default_flow_style = False

    with open(config_path, "w") as f:
        yaml.dump(config.model_dump(mode="json"), f)
