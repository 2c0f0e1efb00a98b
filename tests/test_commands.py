"""Tests for archive pipeline command lines."""

from databackup.backup import commands
from databackup.backup.models import DataCategory
from databackup.config import CompressionType


class TestCompressCommands:
    """Test tar command construction."""

    def test_app_data_excludes_rebuilt_directories(self):
        """Test that cache directories are excluded from app data archives."""
        command = commands.compress(
            CompressionType.ZSTD, DataCategory.USER, "com.a", "/out", "/data/user/0"
        )

        assert command.startswith("tar ")
        assert "--exclude=com.a/cache" in command
        assert "--exclude=com.a/code_cache" in command
        assert "--exclude=com.a/lib" in command
        assert "-I zstd -cpf /out/user.tar.zst -C /data/user/0 com.a" in command

    def test_media_archives_directory_from_parent(self):
        """Test that a medium is archived by name from its parent directory."""
        command = commands.compress(
            CompressionType.TAR, DataCategory.MEDIA, "Pictures", "/out", "/storage/emulated/0/Pictures/"
        )

        assert command == "tar -cpf /out/Pictures.tar -C /storage/emulated/0 Pictures"

    def test_apk_archive(self):
        """Test that APKs are archived from the working directory."""
        assert commands.compress_apk(CompressionType.LZ4, "/out") == "tar -I lz4 -cpf /out/apk.tar.lz4 *.apk"

    def test_decompress_media_into_parent(self):
        """Test that media archives are extracted next to their directory."""
        command = commands.decompress(
            CompressionType.ZSTD, DataCategory.MEDIA, "/in/Music.tar.zst", "/storage/emulated/0/Music"
        )

        assert command == "mkdir -p /storage/emulated/0 && tar -I zstd -xpf /in/Music.tar.zst -C /storage/emulated/0"

    def test_paths_are_quoted(self):
        """Test that paths with spaces stay single words."""
        command = commands.compress(
            CompressionType.TAR, DataCategory.MEDIA, "My Files", "/out", "/sdcard/My Files"
        )
        assert "'/out/My Files.tar'" in command
        assert "'My Files'" in command

    def test_archive_tests(self):
        """Test the integrity check per codec."""
        assert commands.test_archive(CompressionType.ZSTD, "/a.tar.zst") == "zstd -t -q /a.tar.zst"
        assert commands.test_archive(CompressionType.LZ4, "/a.tar.lz4") == "lz4 -t -q /a.tar.lz4"
        assert commands.test_archive(CompressionType.TAR, "/a.tar") == "tar -tf /a.tar > /dev/null"


class TestInstallCommands:
    """Test package installer commands."""

    def test_parse_session_id(self):
        """Test reading the session id printed by install-create."""
        assert commands.parse_session_id("Success: created install session [1234]") == "1234"
        assert commands.parse_session_id("Failure") is None

    def test_install_write_names_split(self):
        """Test that each split is staged under its file name."""
        command = commands.install_write("7", "/tmp/x/split_config.arm64_v8a.apk")
        assert command == "pm install-write 7 split_config.arm64_v8a.apk /tmp/x/split_config.arm64_v8a.apk"


class TestMultiUserContext:
    """Test SELinux category rewriting."""

    def test_user_categories(self):
        """Test that user categories follow the uid's user."""
        fixed = commands.fix_multi_user_context("u:object_r:app_data_file:s0:c512,c768", 1010123)
        assert fixed == "u:object_r:app_data_file:s0:c522,c768"

    def test_app_and_user_categories(self):
        """Test that per-app categories follow the app id."""
        fixed = commands.fix_multi_user_context(
            "u:object_r:app_data_file:s0:c123,c256,c512,c768", 1010379
        )
        assert fixed == "u:object_r:app_data_file:s0:c123,c257,c522,c768"

    def test_context_without_categories(self):
        """Test that contexts without categories are left alone."""
        context = "u:object_r:media_rw_data_file:s0"
        assert commands.fix_multi_user_context(context, 1010123) == context
