"""Archive pipeline: compress, extract, install and repair restored data.

Each public operation accepts an optional ``on_line`` sink receiving stage
markers and the raw output of the commands it runs. The sink only narrates
progress; it never influences the result. Every operation ends its narration
with :data:`PROCESS_FINISHED`, whether it succeeded or not.
"""

import posixpath
from typing import Callable, Optional, Union

from ..adb.package import PackageManager
from ..adb.shell import RootShell
from ..config import BackupStrategy, CompressionType
from ..context import EngineContext
from ..util.logging import get_logger
from . import commands
from .codecs import codec_for
from .models import DataCategory
from .sizes import SizeMode, size_of

logger = get_logger(__name__)

PROCESS_COMPRESSING = "Compressing"
PROCESS_SKIPPED = "Skipped"
PROCESS_TESTING = "Testing"
PROCESS_DECOMPRESSING = "Decompressing"
PROCESS_INSTALLING = "Installing"
PROCESS_SETTING_SELINUX = "Setting SELinux context"
PROCESS_FINISHED = "Finished"

INSTALL_TMP_ROOT = "/data/local/tmp/databackup"

LineSink = Callable[[str], None]


def _discard(line: str) -> None:
    pass


def _as_int(value: Union[int, str, None]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ArchivePipeline:
    """Runs the per-entity archive steps through the root shell."""

    def __init__(self, context: EngineContext, shell: RootShell, packages: PackageManager):
        self.context = context
        self.shell = shell
        self.packages = packages

    @property
    def config(self):
        return self.context.config

    def _needs_update(self, source: str, previous_size: Optional[str], archive: str) -> bool:
        """False only when nothing changed since the archive was written."""
        if self.config.backup_strategy != BackupStrategy.OVERWRITE or previous_size is None:
            return True
        if size_of(self.shell, source, SizeMode.OCCUPIED) != previous_size:
            return True
        return not self.shell.ls(archive)

    def _verify(self, compression_type: CompressionType, archive: str, emit: LineSink) -> bool:
        if not self.shell.ls(archive):
            logger.error(f"Archive was not written: {archive}")
            return False
        if self.config.verify_archives:
            emit(PROCESS_TESTING)
            return self.test_archive(compression_type, archive)
        return True

    def compress(
        self,
        compression_type: CompressionType,
        data_type: DataCategory,
        entity_key: str,
        output_dir: str,
        data_path: str,
        previous_size: Optional[str] = None,
        on_line: Optional[LineSink] = None,
    ) -> bool:
        """Archive one data category of an app, or a whole medium.

        Args:
            compression_type: Codec of the archive
            data_type: Category; ``MEDIA`` archives ``data_path`` itself,
                other categories archive ``data_path/entity_key``
            entity_key: Package or media name
            output_dir: Dated restore point directory
            data_path: Source directory (or its parent for app data)
            previous_size: Fingerprint recorded when the archive was last written
            on_line: Progress sink

        Returns:
            True when an archive exists (and passed its test, if enabled)
        """
        emit = on_line or _discard
        archive = commands.archive_path(compression_type, data_type, entity_key, output_dir)
        source = data_path if data_type == DataCategory.MEDIA else posixpath.join(data_path, entity_key)

        ok = True
        if self._needs_update(source, previous_size, archive):
            emit(PROCESS_COMPRESSING)
            command = commands.compress(compression_type, data_type, entity_key, output_dir, data_path)
            ok = self.shell.execute(command, on_line=emit).success
            if not ok:
                logger.error(f"Compressing {entity_key} ({data_type.value}) failed")
        else:
            logger.info(f"{entity_key} ({data_type.value}) unchanged, skipping")
            emit(PROCESS_SKIPPED)

        if ok:
            ok = self._verify(compression_type, archive, emit)

        emit(PROCESS_FINISHED)
        return ok

    def compress_apk(
        self,
        compression_type: CompressionType,
        package_name: str,
        output_dir: str,
        user_id: str,
        previous_size: Optional[str] = None,
        on_line: Optional[LineSink] = None,
    ) -> bool:
        """Archive the installed APK files of ``package_name``."""
        emit = on_line or _discard
        ok = self._compress_apk(compression_type, package_name, output_dir, user_id, previous_size, emit)
        emit(PROCESS_FINISHED)
        return ok

    def _compress_apk(
        self,
        compression_type: CompressionType,
        package_name: str,
        output_dir: str,
        user_id: str,
        previous_size: Optional[str],
        emit: LineSink,
    ) -> bool:
        apk_dir = self.packages.resolve_apk_directory(package_name, user_id)
        if not apk_dir:
            logger.error(f"Could not resolve APK directory of {package_name} for user {user_id}")
            return False

        archive = commands.archive_path(compression_type, DataCategory.APK, package_name, output_dir)
        if not self._needs_update(apk_dir, previous_size, archive):
            logger.info(f"{package_name} APK unchanged, skipping")
            emit(PROCESS_SKIPPED)
            return self._verify(compression_type, archive, emit)

        emit(PROCESS_COMPRESSING)
        with self.shell.session():
            if not self.shell.cd(apk_dir).success:
                logger.error(f"Could not enter {apk_dir}")
                return False
            try:
                ok = self.shell.execute(commands.compress_apk(compression_type, output_dir), on_line=emit).success
            finally:
                restored = self.shell.cd("/").success

        if not ok:
            logger.error(f"Compressing APK of {package_name} failed")
            return False
        if not restored:
            logger.error("Could not return to / after compressing APK")
            return False
        return self._verify(compression_type, archive, emit)

    def decompress(
        self,
        compression_type: CompressionType,
        data_type: DataCategory,
        input_path: str,
        entity_key: str,
        data_path: str,
        on_line: Optional[LineSink] = None,
    ) -> bool:
        """Extract an archive back into ``data_path``; always performed."""
        emit = on_line or _discard
        emit(PROCESS_DECOMPRESSING)
        command = commands.decompress(compression_type, data_type, input_path, data_path)
        ok = self.shell.execute(command, on_line=emit).success
        if not ok:
            logger.error(f"Decompressing {input_path} for {entity_key} failed")
        emit(PROCESS_FINISHED)
        return ok

    def install_apk(
        self,
        input_path: str,
        package_name: str,
        user_id: str,
        version_code: Union[int, str, None],
        on_line: Optional[LineSink] = None,
    ) -> bool:
        """Install the APK archive ``input_path`` for ``user_id``.

        Installation is skipped (and reported as success) when the same or a
        newer version of the package is already installed for the user.
        """
        emit = on_line or _discard
        ok = self._install_apk(input_path, package_name, user_id, version_code, emit)
        emit(PROCESS_FINISHED)
        return ok

    def _install_apk(
        self,
        input_path: str,
        package_name: str,
        user_id: str,
        version_code: Union[int, str, None],
        emit: LineSink,
    ) -> bool:
        installed = _as_int(self.packages.get_version_code(user_id, package_name))
        candidate = _as_int(version_code)
        if installed is not None and candidate is not None and installed >= candidate:
            logger.info(f"{package_name} {installed} already installed, not older than {candidate}")
            emit(PROCESS_SKIPPED)
            return True

        compression_type = codec_for(input_path)
        if compression_type is None:
            logger.error(f"Unknown archive type: {input_path}")
            return False

        if not self.packages.disable_verification():
            logger.warning("Could not disable package verification")

        emit(PROCESS_INSTALLING)
        tmp_dir = posixpath.join(INSTALL_TMP_ROOT, package_name)
        try:
            if not self.shell.execute(commands.extract_to(compression_type, input_path, tmp_dir), on_line=emit).success:
                logger.error(f"Could not extract {input_path}")
                return False

            apks = [posixpath.join(tmp_dir, name) for name in self.shell.list_dir(tmp_dir) if name.endswith(".apk")]
            if not apks:
                logger.error(f"No APK found in {input_path}")
                return False

            if len(apks) == 1:
                return self.shell.execute(commands.install_apk(apks[0], user_id), on_line=emit).success
            return self._install_session(apks, user_id, emit)
        finally:
            self.shell.rm(tmp_dir)

    def _install_session(self, apks, user_id: str, emit: LineSink) -> bool:
        """Install split APKs through a single package installer session."""
        created = self.shell.execute(commands.install_create(user_id), on_line=emit)
        session_id = commands.parse_session_id(created.text) if created.success else None
        if session_id is None:
            logger.error("Could not create install session")
            return False

        for apk in apks:
            if not self.shell.execute(commands.install_write(session_id, apk), on_line=emit).success:
                logger.error(f"Could not stage {apk} in session {session_id}")
                self.shell.execute(f"pm install-abandon {session_id}")
                return False

        return self.shell.execute(commands.install_commit(session_id), on_line=emit).success

    def read_security_context(self, path: str) -> str:
        """SELinux context of ``path`` via ``ls -Zd``, or an empty string."""
        result = self.shell.execute(commands.read_context(path))
        if not result.success or not result.first_line:
            return ""
        return result.first_line.split()[0]

    def set_owner_and_selinux(
        self,
        data_type: DataCategory,
        package_name: str,
        path: str,
        user_id: str,
        context: str = "",
        on_line: Optional[LineSink] = None,
    ) -> bool:
        """Give ``path/package_name`` back to the package's uid and fix its context.

        A failure here does not undo the steps that restored the data.
        """
        emit = on_line or _discard
        emit(PROCESS_SETTING_SELINUX)
        ok = self._set_owner_and_selinux(data_type, package_name, path, user_id, context)
        emit(PROCESS_FINISHED)
        return ok

    def _set_owner_and_selinux(
        self,
        data_type: DataCategory,
        package_name: str,
        path: str,
        user_id: str,
        context: str,
    ) -> bool:
        target = posixpath.join(path, package_name)
        uid = self.packages.get_uid(user_id, package_name)
        if uid is None:
            logger.error(f"Could not find uid of {package_name} for user {user_id}")
            return False

        group = str(uid)
        if data_type in (DataCategory.DATA, DataCategory.OBB):
            result = self.shell.execute(commands.group_of(path))
            if result.success and result.first_line:
                group = result.first_line

        if not self.shell.execute(commands.chown(str(uid), group, target)).success:
            logger.error(f"Could not change owner of {target}")
            return False

        context = (context or "").strip()
        if context and self.config.auto_fix_multi_user_context:
            context = commands.fix_multi_user_context(context, uid)

        command = commands.chcon(context, target) if context else commands.restorecon(target)
        if not self.shell.execute(command).success:
            logger.error(f"Could not set SELinux context of {target}")
            return False
        return True

    def test_archive(self, compression_type: CompressionType, path: str) -> bool:
        """Integrity check of an archive; the file is left in place on failure."""
        ok = self.shell.execute(commands.test_archive(compression_type, path)).success
        if not ok:
            logger.error(f"Archive failed its integrity test: {path}")
        return ok

    def find_archive(self, directory: str, stem: str) -> Optional[str]:
        """Path of the ``stem.tar*`` archive inside ``directory``, if any."""
        for name in self.shell.list_dir(directory):
            if name.startswith(f"{stem}.tar") and codec_for(name) is not None:
                return posixpath.join(directory, name)
        return None
