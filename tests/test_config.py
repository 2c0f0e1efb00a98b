"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from databackup.config import (
    BackupStrategy,
    CompressionType,
    EngineConfig,
    ShellMode,
    load_config,
    save_config,
)
from databackup.context import EngineContext
from databackup.errors import ConfigError


class TestEngineConfig:
    """Test configuration defaults and persistence."""

    def test_defaults(self):
        """Test the default configuration."""
        config = EngineConfig()

        assert config.backup_save_path == "/storage/emulated/0/DataBackup"
        assert config.backup_strategy == BackupStrategy.OVERWRITE
        assert config.compression_type == CompressionType.ZSTD
        assert config.shell.mode == ShellMode.SU
        assert config.verify_archives

    def test_assignment_is_validated(self):
        """Test that invalid values are rejected on assignment."""
        config = EngineConfig()
        with pytest.raises(ValidationError):
            config.compression_type = "gzip"

    def test_round_trip(self, tmp_path):
        """Test saving and loading YAML."""
        path = tmp_path / "config.yaml"
        config = EngineConfig(backup_user="10", compression_type="lz4", backup_strategy="versioned")
        config.shell.mode = ShellMode.ADB
        config.shell.serial = "emulator-5554"

        save_config(config, path)
        loaded = load_config(path)

        assert loaded.backup_user == "10"
        assert loaded.compression_type == CompressionType.LZ4
        assert loaded.backup_strategy == BackupStrategy.VERSIONED
        assert loaded.shell.mode == ShellMode.ADB
        assert loaded.shell.serial == "emulator-5554"

    def test_missing_file_created(self, tmp_path):
        """Test that a default configuration is written when none exists."""
        path = tmp_path / "new" / "config.yaml"

        config = load_config(path)

        assert path.exists()
        assert config.backup_user == "0"

    def test_invalid_file(self, tmp_path):
        """Test that an invalid file is reported as a configuration error."""
        path = tmp_path / "config.yaml"
        path.write_text("compression_type: gzip\n")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_context_shell_log_location(self, tmp_path):
        """Test that the shell log is kept in the log directory."""
        context = EngineContext.from_config(EngineConfig(log_dir=tmp_path / "logs"))
        assert context.shell_log.path == tmp_path / "logs" / "shell.log"
