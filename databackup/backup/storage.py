"""On-device backup storage layout."""

import posixpath
from typing import List

from ..adb.shell import RootShell
from .models import DataCategory

APP_INFO_BACKUP_MAP = "appInfoBackupMap.json"
APP_INFO_RESTORE_MAP = "appInfoRestoreMap.json"
MEDIA_INFO_BACKUP_MAP = "mediaInfoBackupMap.json"
MEDIA_INFO_RESTORE_MAP = "mediaInfoRestoreMap.json"
BACKUP_INFO_LIST = "backupInfoList.json"


class BackupStorage:
    """Manages the backup directory layout on the device.

    ``<save>/backup/<user>/data/<package>/<date>/<category>.tar*`` holds app
    archives, ``<save>/backup/<user>/media/<name>/<date>/<name>.tar*`` holds
    media archives and ``<save>/backup/<user>/config`` the JSON maps.
    """

    def __init__(self, save_path: str, user_id: str) -> None:
        """Initialize backup storage.

        Args:
            save_path: Backup root on the device
            user_id: User whose backups live under this layout
        """
        self.save_path = save_path.rstrip("/") or "/"
        self.user_id = user_id

    @property
    def users_root(self) -> str:
        return posixpath.join(self.save_path, "backup")

    @property
    def user_root(self) -> str:
        return posixpath.join(self.users_root, self.user_id)

    @property
    def data_root(self) -> str:
        """Root of the app archive tree."""
        return posixpath.join(self.user_root, "data")

    @property
    def media_root(self) -> str:
        """Root of the media archive tree."""
        return posixpath.join(self.user_root, "media")

    @property
    def config_dir(self) -> str:
        return posixpath.join(self.user_root, "config")

    def config_file(self, name: str) -> str:
        return posixpath.join(self.config_dir, name)

    def app_backup_dir(self, package_name: str, date: str) -> str:
        """Directory of one dated app restore point."""
        return posixpath.join(self.data_root, package_name, date)

    def media_backup_dir(self, name: str, date: str) -> str:
        """Directory of one dated media restore point."""
        return posixpath.join(self.media_root, name, date)

    def list_backup_users(self, shell: RootShell) -> List[str]:
        """Numeric user ids that have a backup tree."""
        return sorted((name for name in shell.list_dir(self.users_root) if name.isdigit()), key=int)


def data_path_for(category: DataCategory, user_id: str) -> str:
    """Parent directory on the device holding ``<package>`` for an app data category."""
    if category == DataCategory.USER:
        return f"/data/user/{user_id}"
    if category == DataCategory.USER_DE:
        return f"/data/user_de/{user_id}"
    if category == DataCategory.DATA:
        return f"/data/media/{user_id}/Android/data"
    if category == DataCategory.OBB:
        return f"/data/media/{user_id}/Android/obb"
    raise ValueError(f"No data path for category {category.value}")
