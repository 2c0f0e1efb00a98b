"""Backup engine: reconciliation passes and per-entity backup/restore runs."""

import posixpath
from typing import Any, Callable, Dict, Iterable, List, Optional

from .. import __version__
from ..adb.package import PackageManager
from ..adb.shell import RootShell
from ..config import BackupStrategy
from ..context import EngineContext
from ..errors import DataBackupError, EntityNotFoundError
from ..util.logging import get_logger
from ..util.timeutil import backup_date, now_display
from .archive import ArchivePipeline, LineSink
from .codecs import codec_for
from .models import (
    APP_DATA_CATEGORIES,
    AppInfoBackupMap,
    AppInfoDetailRestore,
    AppInfoRestore,
    AppInfoRestoreMap,
    BackupInfo,
    BackupInfoList,
    DataCategory,
    MediaInfoBackup,
    MediaInfoBackupMap,
    MediaInfoDetail,
    MediaInfoRestore,
    MediaInfoRestoreMap,
)
from .reconciler import (
    apply_installed_packages,
    reconcile_backup_map,
    reconcile_media_backup_map,
    reconcile_media_restore_map,
    reconcile_restore_map,
)
from .sizes import SizeMode, size_of
from .storage import (
    APP_INFO_BACKUP_MAP,
    APP_INFO_RESTORE_MAP,
    BACKUP_INFO_LIST,
    MEDIA_INFO_BACKUP_MAP,
    MEDIA_INFO_RESTORE_MAP,
    BackupStorage,
    data_path_for,
)
from .store import (
    APP_BACKUP_MAP,
    APP_RESTORE_MAP,
    BACKUP_INFO_LIST as HISTORY,
    MEDIA_BACKUP_MAP,
    MEDIA_RESTORE_MAP,
    MapStore,
)

logger = get_logger(__name__)

COVER_DATE = "Cover"

ProgressCallback = Callable[[str, bool], None]


class BackupEngine:
    """Reconciles persisted state with the device and runs backups and restores.

    Each entity's state transition is persisted on its own; a failure in one
    entity never aborts its siblings in a batch run.
    """

    def __init__(
        self,
        context: EngineContext,
        shell: RootShell,
        packages: Optional[PackageManager] = None,
        pipeline: Optional[ArchivePipeline] = None,
        store: Optional[MapStore] = None,
    ):
        self.context = context
        self.shell = shell
        self.packages = packages or PackageManager(shell)
        self.pipeline = pipeline or ArchivePipeline(context, shell, self.packages)
        self.store = store or MapStore(shell)

    @property
    def config(self):
        return self.context.config

    @property
    def storage(self) -> BackupStorage:
        """Layout of the backup user's archives."""
        return BackupStorage(self.config.backup_save_path, self.config.backup_user)

    def check(self) -> None:
        """Verify the preconditions of every other operation.

        Raises:
            RootAccessError: The privileged shell is not usable
            MissingBinaryError: A required binary is absent
        """
        self.shell.require_root()
        self.shell.require_binaries(self.config.required_binaries)

        if self.config.auto_fix_multi_user_context and not self.shell.check_ls_zd():
            logger.warning("ls -Zd is not supported, disabling multi-user context fix")
            self.config.auto_fix_multi_user_context = False

    def backup_date(self) -> str:
        """Name of the restore point written by the next backup."""
        if self.config.backup_strategy == BackupStrategy.OVERWRITE:
            return COVER_DATE
        return backup_date()

    def list_backup_users(self) -> List[str]:
        return self.storage.list_backup_users(self.shell)

    # Persisted maps

    def _path(self, name: str) -> str:
        return self.storage.config_file(name)

    def load_backup_map(self) -> AppInfoBackupMap:
        return self.store.load(self._path(APP_INFO_BACKUP_MAP), APP_BACKUP_MAP)

    def load_restore_map(self) -> AppInfoRestoreMap:
        return self.store.load(self._path(APP_INFO_RESTORE_MAP), APP_RESTORE_MAP)

    def load_media_backup_map(self) -> MediaInfoBackupMap:
        return self.store.load(self._path(MEDIA_INFO_BACKUP_MAP), MEDIA_BACKUP_MAP)

    def load_media_restore_map(self) -> MediaInfoRestoreMap:
        return self.store.load(self._path(MEDIA_INFO_RESTORE_MAP), MEDIA_RESTORE_MAP)

    def load_history(self) -> BackupInfoList:
        return self.store.load(self._path(BACKUP_INFO_LIST), HISTORY)

    def save_backup_map(self, value: AppInfoBackupMap) -> bool:
        return self.store.save(self._path(APP_INFO_BACKUP_MAP), value, APP_BACKUP_MAP)

    def save_restore_map(self, value: AppInfoRestoreMap) -> bool:
        return self.store.save(self._path(APP_INFO_RESTORE_MAP), value, APP_RESTORE_MAP)

    def save_media_backup_map(self, value: MediaInfoBackupMap) -> bool:
        return self.store.save(self._path(MEDIA_INFO_BACKUP_MAP), value, MEDIA_BACKUP_MAP)

    def save_media_restore_map(self, value: MediaInfoRestoreMap) -> bool:
        return self.store.save(self._path(MEDIA_INFO_RESTORE_MAP), value, MEDIA_RESTORE_MAP)

    def _append_history(self, info: BackupInfo) -> None:
        history = self.load_history()
        history.append(info)
        self.store.save(self._path(BACKUP_INFO_LIST), history, HISTORY)

    # Reconciliation passes

    def _listing(self, root: str) -> Optional[List[str]]:
        """Sorted listing of ``root``; None when it exists but could not be listed."""
        result = self.shell.find_files(root)
        if result.success:
            return result.out
        if self.shell.ls(root):
            logger.warning(f"Could not list {root}, keeping stored restore points")
            return None
        return []

    def reconcile_backup_map(self) -> AppInfoBackupMap:
        """Refresh the app backup map from the packages installed for the backup user."""
        installed = self.packages.get_installed_packages(self.config.backup_user)
        result = reconcile_backup_map(self.load_backup_map(), installed, self.config.host_package)
        self.save_backup_map(result)
        logger.info(f"Backup map: {len(result)} apps")
        return result

    def reconcile_restore_map(self) -> AppInfoRestoreMap:
        """Refresh the app restore map from the archive tree and the restore user's packages."""
        previous = self.load_restore_map()
        root = self.storage.data_root
        listing = self._listing(root)

        if listing is None:
            result = {key: entity.model_copy(deep=True) for key, entity in previous.items()}
        else:
            result = reconcile_restore_map(previous, listing, root)

        installed = self.packages.get_installed_packages(self.config.restore_user)
        apply_installed_packages(result, installed, self.config.host_package, AppInfoRestore)

        self.save_restore_map(result)
        logger.info(f"Restore map: {len(result)} apps")
        return result

    def reconcile_media_backup_map(self) -> MediaInfoBackupMap:
        result = reconcile_media_backup_map(self.load_media_backup_map())
        self.save_media_backup_map(result)
        return result

    def reconcile_media_restore_map(self) -> MediaInfoRestoreMap:
        """Refresh the media restore map from the media archive tree."""
        previous = self.load_media_restore_map()
        root = self.storage.media_root
        listing = self._listing(root)

        if listing is None:
            result = {key: entity.model_copy(deep=True) for key, entity in previous.items()}
        else:
            result = reconcile_media_restore_map(previous, listing, root)

        backup_map = self.load_media_backup_map()
        for name, entity in result.items():
            if not entity.path and name in backup_map:
                entity.path = backup_map[name].path

        self.save_media_restore_map(result)
        logger.info(f"Media restore map: {len(result)} media")
        return result

    # App backup and restore

    def backup_app(
        self,
        package_name: str,
        date: Optional[str] = None,
        select_app: Optional[bool] = None,
        select_data: Optional[bool] = None,
        backup_map: Optional[AppInfoBackupMap] = None,
        restore_map: Optional[AppInfoRestoreMap] = None,
        on_line: Optional[LineSink] = None,
    ) -> bool:
        """Archive the APK and data of one package into a dated restore point.

        Args:
            package_name: Package to back up
            date: Restore point name, defaults to :meth:`backup_date`
            select_app: Override the stored APK toggle
            select_data: Override the stored data toggle
            backup_map: Map to update; loaded and saved when omitted
            restore_map: Map to update; loaded and saved when omitted
            on_line: Progress sink

        Returns:
            True when every selected category was archived

        Raises:
            EntityNotFoundError: The package is not in the backup map
        """
        if backup_map is None:
            backup_map = self.load_backup_map()
        if restore_map is None:
            restore_map = self.load_restore_map()

        entity = backup_map.get(package_name)
        if entity is None:
            raise EntityNotFoundError(f"{package_name} is not in the backup map")

        detail = entity.detail_backup
        if select_app is not None:
            detail.select_app = select_app
        if select_data is not None:
            detail.select_data = select_data

        user_id = self.config.backup_user
        compression_type = self.config.compression_type
        date = date or self.backup_date()
        output_dir = self.storage.app_backup_dir(package_name, date)

        logger.info(f"Backing up {package_name} to {output_dir}")
        if not self.shell.mkdir(output_dir):
            logger.error(f"Could not create {output_dir}")
            return False

        ok = True
        app_done = False
        data_done = False

        if detail.select_app:
            ok = self.pipeline.compress_apk(
                compression_type, package_name, output_dir, user_id, detail.app_size or None, on_line
            )
            if ok:
                app_done = True
                apk_dir = self.packages.resolve_apk_directory(package_name, user_id)
                if apk_dir:
                    detail.app_size = size_of(self.shell, apk_dir, SizeMode.OCCUPIED)

        if ok and detail.select_data:
            for category in APP_DATA_CATEGORIES:
                data_path = data_path_for(category, user_id)
                source = posixpath.join(data_path, package_name)
                if not self.shell.ls(source):
                    logger.debug(f"{source} does not exist, skipping {category.value}")
                    continue

                ok = self.pipeline.compress(
                    compression_type, category, package_name, output_dir, data_path,
                    detail.size_for(category) or None, on_line
                )
                if not ok:
                    break
                data_done = True
                detail.set_size(category, size_of(self.shell, source, SizeMode.OCCUPIED))

        if ok:
            detail.date = date
            self._record_app_restore_point(restore_map, entity, date, app_done, data_done, output_dir)
        else:
            logger.error(f"Backup of {package_name} failed")

        self.save_backup_map(backup_map)
        self.save_restore_map(restore_map)
        return ok

    def _record_app_restore_point(self, restore_map, entity, date, app_done, data_done, output_dir) -> None:
        package_name = entity.detail_base.package_name
        restore = restore_map.get(package_name)
        if restore is None:
            restore = AppInfoRestore(detail_base=entity.detail_base.model_copy(deep=True))
            restore_map[package_name] = restore

        detail = AppInfoDetailRestore(
            date=date,
            has_app=app_done,
            has_data=data_done,
            select_app=app_done,
            select_data=data_done,
            version_name=entity.detail_backup.version_name,
            version_code=entity.detail_backup.version_code,
            size=size_of(self.shell, output_dir, SizeMode.OCCUPIED),
        )
        details = [d for d in restore.detail_restore_list if d.date != date]
        details.append(detail)
        restore.detail_restore_list = details

    def restore_app(
        self,
        package_name: str,
        date: Optional[str] = None,
        restore_map: Optional[AppInfoRestoreMap] = None,
        on_line: Optional[LineSink] = None,
    ) -> bool:
        """Install the APK and restore the data of one restore point.

        Raises:
            EntityNotFoundError: No restore point matches
        """
        if restore_map is None:
            restore_map = self.load_restore_map()

        entity = restore_map.get(package_name)
        detail = entity.selected_detail(date) if entity is not None else None
        if detail is None:
            raise EntityNotFoundError(f"No restore point for {package_name}" + (f" at {date}" if date else ""))

        user_id = self.config.restore_user
        input_dir = self.storage.app_backup_dir(package_name, detail.date)
        logger.info(f"Restoring {package_name} from {input_dir} for user {user_id}")

        if detail.has_app and detail.select_app:
            archive = self.pipeline.find_archive(input_dir, DataCategory.APK.value)
            if archive is None:
                logger.error(f"No APK archive in {input_dir}")
                return False
            if not self.pipeline.install_apk(archive, package_name, user_id, detail.version_code or None, on_line):
                logger.error(f"Installing {package_name} failed")
                return False

        if not (detail.has_data and detail.select_data):
            return True

        if self.packages.resolve_apk_directory(package_name, user_id) is None:
            logger.error(f"{package_name} is not installed for user {user_id}, cannot restore data")
            return False

        for category in APP_DATA_CATEGORIES:
            archive = self.pipeline.find_archive(input_dir, category.value)
            if archive is None:
                continue

            data_path = data_path_for(category, user_id)
            context = self.pipeline.read_security_context(posixpath.join(data_path, package_name))
            if not self.pipeline.decompress(codec_for(archive), category, archive, package_name, data_path, on_line):
                return False
            if not self.pipeline.set_owner_and_selinux(category, package_name, data_path, user_id, context, on_line):
                return False

        return True

    # Media backup and restore

    def backup_media(
        self,
        name: str,
        date: Optional[str] = None,
        backup_map: Optional[MediaInfoBackupMap] = None,
        restore_map: Optional[MediaInfoRestoreMap] = None,
        on_line: Optional[LineSink] = None,
    ) -> bool:
        """Archive one media directory into a dated restore point."""
        if backup_map is None:
            backup_map = self.reconcile_media_backup_map()
        if restore_map is None:
            restore_map = self.load_media_restore_map()

        entity = backup_map.get(name)
        if entity is None:
            raise EntityNotFoundError(f"{name} is not in the media backup map")

        date = date or self.backup_date()
        output_dir = self.storage.media_backup_dir(name, date)
        logger.info(f"Backing up {entity.path} to {output_dir}")
        if not self.shell.mkdir(output_dir):
            logger.error(f"Could not create {output_dir}")
            return False

        detail = entity.backup_detail
        ok = self.pipeline.compress(
            self.config.compression_type, DataCategory.MEDIA, name, output_dir, entity.path,
            detail.size or None, on_line
        )

        if ok:
            detail.size = size_of(self.shell, entity.path, SizeMode.OCCUPIED)
            detail.has_data = True
            detail.date = date

            restore = restore_map.get(name)
            if restore is None:
                restore = MediaInfoRestore(name=name)
                restore_map[name] = restore
            restore.path = entity.path
            details = [d for d in restore.detail_restore_list if d.date != date]
            details.append(MediaInfoDetail(date=date, size=detail.size))
            restore.detail_restore_list = details
        else:
            logger.error(f"Backup of {name} failed")

        self.save_media_backup_map(backup_map)
        self.save_media_restore_map(restore_map)
        return ok

    def restore_media(
        self,
        name: str,
        date: Optional[str] = None,
        restore_map: Optional[MediaInfoRestoreMap] = None,
        on_line: Optional[LineSink] = None,
    ) -> bool:
        """Extract one media restore point back to its directory."""
        if restore_map is None:
            restore_map = self.load_media_restore_map()

        entity = restore_map.get(name)
        detail = entity.selected_detail(date) if entity is not None else None
        if detail is None:
            raise EntityNotFoundError(f"No restore point for {name}" + (f" at {date}" if date else ""))

        if not entity.path:
            logger.error(f"Unknown destination for {name}")
            return False

        archive = self.pipeline.find_archive(self.storage.media_backup_dir(name, detail.date), name)
        if archive is None:
            logger.error(f"No archive for {name} at {detail.date}")
            return False

        return self.pipeline.decompress(codec_for(archive), DataCategory.MEDIA, archive, name, entity.path, on_line)

    # Batches

    def _run_batch(
        self,
        names: List[str],
        run: Callable[[str], bool],
        progress: Optional[ProgressCallback],
    ) -> Dict[str, Any]:
        results: Dict[str, Any] = {"total": len(names), "success": 0, "failed": []}
        for name in names:
            try:
                ok = run(name)
            except DataBackupError as e:
                logger.error(str(e))
                ok = False

            if ok:
                results["success"] += 1
            else:
                results["failed"].append(name)
            if progress is not None:
                progress(name, ok)
        return results

    def backup_apps(
        self,
        package_names: Optional[Iterable[str]] = None,
        on_line: Optional[LineSink] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, Any]:
        """Back up several packages into one restore point and record the run.

        Explicitly named packages are backed up with both toggles on; without
        names, every on-device package with a toggle set is backed up.
        """
        start = now_display()
        backup_map = self.reconcile_backup_map()
        restore_map = self.load_restore_map()
        date = self.backup_date()

        if package_names is None:
            names = sorted(
                key for key, entity in backup_map.items()
                if entity.detail_base.is_on_this_device
                and (entity.detail_backup.select_app or entity.detail_backup.select_data)
            )
            override = None
        else:
            names = list(package_names)
            override = True

        results = self._run_batch(
            names,
            lambda name: self.backup_app(
                name, date, override, override, backup_map, restore_map, on_line
            ),
            progress,
        )
        self._append_history(BackupInfo(
            version=__version__,
            start_time=start,
            end_time=now_display(),
            type="app",
            backup_user=self.config.backup_user,
            total=results["total"],
            success=results["success"],
        ))
        return results

    def restore_apps(
        self,
        package_names: Optional[Iterable[str]] = None,
        date: Optional[str] = None,
        on_line: Optional[LineSink] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, Any]:
        """Restore several packages; without names, every selected restore point."""
        restore_map = self.reconcile_restore_map()
        if package_names is None:
            names = sorted(
                key for key, entity in restore_map.items()
                if (d := entity.selected_detail()) is not None
                and ((d.has_app and d.select_app) or (d.has_data and d.select_data))
            )
        else:
            names = list(package_names)

        return self._run_batch(
            names, lambda name: self.restore_app(name, date, restore_map, on_line), progress
        )

    def backup_all_media(
        self,
        names: Optional[Iterable[str]] = None,
        on_line: Optional[LineSink] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, Any]:
        """Back up several media directories and record the run."""
        start = now_display()
        backup_map = self.reconcile_media_backup_map()
        restore_map = self.load_media_restore_map()
        date = self.backup_date()

        if names is None:
            names = sorted(key for key, entity in backup_map.items() if entity.backup_detail.select_data)
        names = list(names)

        results = self._run_batch(
            names, lambda name: self.backup_media(name, date, backup_map, restore_map, on_line), progress
        )
        self._append_history(BackupInfo(
            version=__version__,
            start_time=start,
            end_time=now_display(),
            type="media",
            backup_user=self.config.backup_user,
            total=results["total"],
            success=results["success"],
        ))
        return results

    def restore_all_media(
        self,
        names: Optional[Iterable[str]] = None,
        date: Optional[str] = None,
        on_line: Optional[LineSink] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, Any]:
        restore_map = self.reconcile_media_restore_map()
        if names is None:
            names = sorted(
                key for key, entity in restore_map.items()
                if (d := entity.selected_detail()) is not None and d.has_data and d.select_data
            )
        names = list(names)

        return self._run_batch(
            names, lambda name: self.restore_media(name, date, restore_map, on_line), progress
        )

    # Explicit user-driven removal

    def add_media(self, name: str, path: str) -> MediaInfoBackup:
        """Track a custom media directory, selected for backup."""
        backup_map = self.reconcile_media_backup_map()
        existing = backup_map.get(name)
        if existing is not None and existing.path != path:
            raise DataBackupError(f"Media {name} already tracks {existing.path}")

        entity = MediaInfoBackup(name=name, path=path, backup_detail=MediaInfoDetail(has_data=False, select_data=True))
        if existing is not None:
            entity.backup_detail = existing.backup_detail
            entity.backup_detail.select_data = True
        backup_map[name] = entity
        self.save_media_backup_map(backup_map)
        return entity

    def delete_media(self, name: str) -> bool:
        """Stop tracking a media directory; its archives are kept."""
        backup_map = self.load_media_backup_map()
        if backup_map.pop(name, None) is None:
            return False
        return self.save_media_backup_map(backup_map)

    def clear_app_restore(self) -> bool:
        """Delete every app archive and the app restore map."""
        logger.warning(f"Removing {self.storage.data_root}")
        return self.shell.rm(self.storage.data_root, self._path(APP_INFO_RESTORE_MAP))
