"""Tests for the archive pipeline."""

from contextlib import contextmanager

import pytest

from databackup.backup.archive import (
    INSTALL_TMP_ROOT,
    PROCESS_COMPRESSING,
    PROCESS_FINISHED,
    PROCESS_INSTALLING,
    PROCESS_SETTING_SELINUX,
    PROCESS_SKIPPED,
    PROCESS_TESTING,
    ArchivePipeline,
)
from databackup.backup.models import DataCategory
from databackup.config import BackupStrategy, CompressionType

OUT = "/save/backup/0/data/com.a/Cover"
USER_DATA = "/data/user/0"
ZSTD = CompressionType.ZSTD


@pytest.fixture
def pipeline(context, shell, packages):
    return ArchivePipeline(context, shell, packages)


def compress_user(pipeline, previous_size=None, on_line=None):
    return pipeline.compress(ZSTD, DataCategory.USER, "com.a", OUT, USER_DATA, previous_size, on_line)


class TestCompress:
    """Test incremental compression."""

    def test_unchanged_data_is_skipped(self, pipeline, shell, lines):
        """Test that the compressor is not run when the fingerprint matches."""
        shell.on("du -ks /data/user/0/com.a", out=["4096\t/data/user/0/com.a"])

        assert compress_user(pipeline, "4096", lines.append)

        assert shell.ran("-cpf") == 0
        assert lines == [PROCESS_SKIPPED, PROCESS_TESTING, PROCESS_FINISHED]

    def test_changed_data_is_compressed(self, pipeline, shell, lines):
        """Test that a different fingerprint triggers compression."""
        shell.on("du -ks", out=["5000\t/data/user/0/com.a"])

        assert compress_user(pipeline, "4096", lines.append)

        assert shell.ran("-cpf /save/backup/0/data/com.a/Cover/user.tar.zst") == 1
        assert lines[0] == PROCESS_COMPRESSING
        assert lines[-1] == PROCESS_FINISHED

    def test_missing_archive_is_recompressed(self, pipeline, shell):
        """Test that an unchanged source is archived again when its archive is gone."""
        shell.on("du -ks", out=["4096"])
        shell.on(f"ls -i {OUT}/user.tar.zst", success=False)

        compress_user(pipeline, "4096")

        assert shell.ran("-cpf") == 1

    def test_first_backup_is_compressed(self, pipeline, shell):
        """Test that no previous fingerprint means no skip."""
        compress_user(pipeline, None)

        assert shell.ran("-cpf") == 1
        assert shell.ran("du ") == 0

    def test_versioned_strategy_never_skips(self, pipeline, context, shell):
        """Test that every versioned backup writes a new archive."""
        context.config.backup_strategy = BackupStrategy.VERSIONED
        shell.on("du -ks", out=["4096"])

        compress_user(pipeline, "4096")

        assert shell.ran("-cpf") == 1

    def test_compression_failure(self, pipeline, shell, lines):
        """Test that a failing tar fails the step without testing."""
        shell.on("-cpf", success=False)

        assert not compress_user(pipeline, None, lines.append)

        assert shell.ran("zstd -t") == 0
        assert lines == [PROCESS_COMPRESSING, PROCESS_FINISHED]

    def test_integrity_failure(self, pipeline, shell):
        """Test that a failing archive test fails the step and keeps the file."""
        shell.on("zstd -t", success=False)

        assert not compress_user(pipeline)

        assert shell.ran("rm ") == 0

    def test_verification_disabled(self, pipeline, context, shell, lines):
        """Test that archives are not tested when verification is off."""
        context.config.verify_archives = False

        assert compress_user(pipeline, None, lines.append)

        assert shell.ran("zstd -t") == 0
        assert PROCESS_TESTING not in lines

    def test_tar_output_forwarded(self, pipeline, shell, lines):
        """Test that compressor output reaches the sink."""
        shell.on("-cpf", out=["tar: removing leading '/'"])

        compress_user(pipeline, None, lines.append)

        assert "tar: removing leading '/'" in lines


class TestCompressApk:
    """Test APK archiving."""

    def test_archives_from_apk_directory(self, pipeline, shell, packages):
        """Test that APKs are archived from their directory and the session returns to /."""
        packages.resolve_apk_directory.return_value = "/data/app/com.a-1"

        assert pipeline.compress_apk(ZSTD, "com.a", OUT, "0")

        assert shell.ran("cd /data/app/com.a-1") == 1
        assert shell.ran(f"-cpf {OUT}/apk.tar.zst *.apk") == 1
        assert shell.cwd is None

    def test_apk_directory_held_for_whole_sequence(self, pipeline, shell, packages):
        """Test that cd, tar and the return to / run inside one held session."""
        packages.resolve_apk_directory.return_value = "/data/app/com.a-1"
        held = []
        real_session = shell.session

        @contextmanager
        def session():
            with real_session():
                held.append(len(shell.commands))
                yield shell
                held.append(len(shell.commands))

        shell.session = session

        assert pipeline.compress_apk(ZSTD, "com.a", OUT, "0")

        start, end = held
        inside = shell.commands[start:end]
        assert inside[0] == "cd /data/app/com.a-1"
        assert "*.apk" in inside[1]
        assert inside[-1] == "cd /"

    def test_returns_to_root_after_failure(self, pipeline, shell, packages, lines):
        """Test that the working directory is reset when tar fails."""
        packages.resolve_apk_directory.return_value = "/data/app/com.a-1"
        shell.on("*.apk", success=False)

        assert not pipeline.compress_apk(ZSTD, "com.a", OUT, "0", on_line=lines.append)

        assert shell.cwd is None
        assert lines[-1] == PROCESS_FINISHED

    def test_not_installed(self, pipeline, shell, packages, lines):
        """Test that a package without APK directory fails."""
        packages.resolve_apk_directory.return_value = None

        assert not pipeline.compress_apk(ZSTD, "com.a", OUT, "0", on_line=lines.append)

        assert shell.ran("-cpf") == 0
        assert lines == [PROCESS_FINISHED]

    def test_cd_failure(self, pipeline, shell, packages):
        """Test that an unreachable APK directory fails the step."""
        packages.resolve_apk_directory.return_value = "/data/app/com.a-1"
        shell.on("cd /data/app/com.a-1", success=False)

        assert not pipeline.compress_apk(ZSTD, "com.a", OUT, "0")
        assert shell.ran("-cpf") == 0


class TestInstallApk:
    """Test APK installation."""

    def test_skipped_when_installed_version_not_older(self, pipeline, shell, packages, lines):
        """Test that an equal or newer installed version is kept."""
        packages.get_version_code.return_value = "20"

        assert pipeline.install_apk(f"{OUT}/apk.tar.zst", "com.a", "0", 10, lines.append)

        assert shell.ran("pm install") == 0
        assert lines == [PROCESS_SKIPPED, PROCESS_FINISHED]

    def test_single_apk(self, pipeline, shell, packages, lines):
        """Test a plain install from the extracted archive."""
        packages.get_version_code.return_value = ""
        tmp_dir = f"{INSTALL_TMP_ROOT}/com.a"
        shell.on(f"ls {tmp_dir}", out=["base.apk"])

        assert pipeline.install_apk(f"{OUT}/apk.tar.zst", "com.a", "0", 10, lines.append)

        assert shell.ran(f"-xpf {OUT}/apk.tar.zst -C {tmp_dir}") == 1
        assert shell.ran(f"pm install --user 0 -r -t {tmp_dir}/base.apk") == 1
        assert shell.commands[-1] == f"rm -rf {tmp_dir}"
        assert lines[0] == PROCESS_INSTALLING
        assert lines[-1] == PROCESS_FINISHED

    def test_split_apks(self, pipeline, shell, packages):
        """Test a session install for split APKs."""
        packages.get_version_code.return_value = "5"
        tmp_dir = f"{INSTALL_TMP_ROOT}/com.a"
        shell.on(f"ls {tmp_dir}", out=["base.apk", "split_config.en.apk"])
        shell.on("pm install-create", out=["Success: created install session [77]"])

        assert pipeline.install_apk(f"{OUT}/apk.tar.zst", "com.a", "0", 10)

        assert shell.ran("pm install-write 77") == 2
        assert shell.ran("pm install-commit 77") == 1

    def test_no_apk_in_archive(self, pipeline, shell, packages):
        """Test that an archive without APKs fails and is cleaned up."""
        packages.get_version_code.return_value = ""

        assert not pipeline.install_apk(f"{OUT}/apk.tar.zst", "com.a", "0", 10)
        assert shell.commands[-1] == f"rm -rf {INSTALL_TMP_ROOT}/com.a"

    def test_unknown_archive(self, pipeline, shell, packages):
        """Test that an unknown archive type is rejected."""
        packages.get_version_code.return_value = ""
        assert not pipeline.install_apk(f"{OUT}/apk.zip", "com.a", "0", 10)
        assert shell.ran("pm install") == 0


class TestOwnerAndContext:
    """Test ownership and SELinux repair."""

    def test_restorecon_without_context(self, pipeline, shell, packages, lines):
        """Test that the default context is restored when none was read."""
        packages.get_uid.return_value = 10123

        assert pipeline.set_owner_and_selinux(DataCategory.USER, "com.a", USER_DATA, "0", "", lines.append)

        assert shell.ran("chown -hR 10123:10123 /data/user/0/com.a") == 1
        assert shell.ran("restorecon -RF /data/user/0/com.a") == 1
        assert lines == [PROCESS_SETTING_SELINUX, PROCESS_FINISHED]

    def test_external_data_keeps_parent_group(self, pipeline, shell, packages):
        """Test that external data takes the group of its parent directory."""
        packages.get_uid.return_value = 10123
        shell.on("stat -c %g", out=["1078"])

        pipeline.set_owner_and_selinux(DataCategory.DATA, "com.a", "/data/media/0/Android/data", "0")

        assert shell.ran("chown -hR 10123:1078 /data/media/0/Android/data/com.a") == 1

    def test_context_rewritten_for_user(self, pipeline, context, shell, packages):
        """Test that the saved context is adjusted for the restore user."""
        context.config.auto_fix_multi_user_context = True
        packages.get_uid.return_value = 1010123

        pipeline.set_owner_and_selinux(
            DataCategory.USER, "com.a", "/data/user/10", "10", "u:object_r:app_data_file:s0:c512,c768"
        )

        assert shell.ran("chcon -hR u:object_r:app_data_file:s0:c522,c768 /data/user/10/com.a") == 1

    def test_unknown_uid_still_finishes(self, pipeline, shell, packages, lines):
        """Test that the finished marker follows a failure."""
        packages.get_uid.return_value = None

        assert not pipeline.set_owner_and_selinux(DataCategory.USER, "com.a", USER_DATA, "0", "", lines.append)

        assert shell.ran("chown") == 0
        assert lines == [PROCESS_SETTING_SELINUX, PROCESS_FINISHED]

    def test_read_security_context(self, pipeline, shell):
        """Test the context read with ls -Zd."""
        shell.on("ls -Zd", out=["u:object_r:app_data_file:s0:c512,c768 /data/user/0/com.a"])
        assert pipeline.read_security_context("/data/user/0/com.a") == "u:object_r:app_data_file:s0:c512,c768"


class TestDecompressAndLookup:
    """Test extraction and archive lookup."""

    def test_decompress_always_runs(self, pipeline, shell, lines):
        """Test extraction into the data directory."""
        assert pipeline.decompress(ZSTD, DataCategory.USER, f"{OUT}/user.tar.zst", "com.a", USER_DATA, lines.append)

        assert shell.ran(f"tar -I zstd -xpf {OUT}/user.tar.zst -C /data/user/0") == 1
        assert lines[-1] == PROCESS_FINISHED

    def test_find_archive(self, pipeline, shell):
        """Test that archives are found by stem whatever their codec."""
        shell.on(f"ls {OUT}", out=["apk.tar.lz4", "user.tar.zst", "user_de.tar.zst", "notes.txt"])

        assert pipeline.find_archive(OUT, "user") == f"{OUT}/user.tar.zst"
        assert pipeline.find_archive(OUT, "apk") == f"{OUT}/apk.tar.lz4"
        assert pipeline.find_archive(OUT, "obb") is None
