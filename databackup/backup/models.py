"""Backup and restore state models.

Every field has a default so that persisted documents written by older
versions (or edited by hand) still decode: missing fields fall back to empty
strings, empty lists or the defaults below, and unknown fields are ignored.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

RETRIEVED_APP_NAME = "(Retrieved)"


class DataCategory(str, Enum):
    """Data partitions archived per entity."""

    APK = "apk"
    USER = "user"
    USER_DE = "user_de"
    DATA = "data"
    OBB = "obb"
    MEDIA = "media"

    @property
    def is_app_data(self) -> bool:
        return self in APP_DATA_CATEGORIES


APP_DATA_CATEGORIES = (DataCategory.USER, DataCategory.USER_DE, DataCategory.DATA, DataCategory.OBB)


class AppInfoBase(BaseModel):
    """Identity of an application as last seen on the device."""

    app_name: str = Field(default="", description="Display label")
    package_name: str = Field(default="", description="Package name")
    is_system_app: bool = Field(default=False)
    is_on_this_device: bool = Field(default=False, description="Installed for the configured user")
    first_install_time: str = Field(default="")
    version_name: str = Field(default="")
    version_code: int = Field(default=0)


class AppInfoDetailBackup(BaseModel):
    """What the next backup of an application would contain."""

    select_app: bool = Field(default=True, description="Back up the APK")
    select_data: bool = Field(default=True, description="Back up data categories")
    version_name: str = Field(default="")
    version_code: int = Field(default=0)
    app_size: str = Field(default="", description="APK directory fingerprint at last archive")
    user_size: str = Field(default="")
    user_de_size: str = Field(default="")
    data_size: str = Field(default="")
    obb_size: str = Field(default="")
    date: str = Field(default="", description="Date of the last backup")

    def size_for(self, category: DataCategory) -> str:
        return getattr(self, _size_field(category))

    def set_size(self, category: DataCategory, token: str) -> None:
        setattr(self, _size_field(category), token)


def _size_field(category: DataCategory) -> str:
    if category == DataCategory.APK:
        return "app_size"
    if category == DataCategory.MEDIA:
        raise ValueError("Media sizes are kept on MediaInfoDetail")
    return f"{category.value}_size"


class AppInfoDetailRestore(BaseModel):
    """One dated restore point of an application."""

    date: str = Field(default="")
    has_app: bool = Field(default=True, description="APK archive present")
    has_data: bool = Field(default=True, description="At least one data archive present")
    select_app: bool = Field(default=True)
    select_data: bool = Field(default=True)
    version_name: str = Field(default="")
    version_code: int = Field(default=0)
    size: str = Field(default="")

    def degrade(self, app_seen: bool, data_seen: bool) -> None:
        """AND presence and selection flags with the evidence found on disk."""
        self.has_app = self.has_app and app_seen
        self.has_data = self.has_data and data_seen
        self.select_app = self.select_app and app_seen
        self.select_data = self.select_data and data_seen


class AppInfoBackup(BaseModel):
    """Backup map record of an application."""

    detail_base: AppInfoBase = Field(default_factory=AppInfoBase)
    detail_backup: AppInfoDetailBackup = Field(default_factory=AppInfoDetailBackup)


class AppInfoRestore(BaseModel):
    """Restore map record of an application."""

    detail_base: AppInfoBase = Field(default_factory=AppInfoBase)
    detail_restore_list: List[AppInfoDetailRestore] = Field(default_factory=list)
    restore_index: int = Field(default=-1, description="Selected restore point, -1 for the latest")

    def selected_detail(self, date: Optional[str] = None) -> Optional[AppInfoDetailRestore]:
        return _select(self.detail_restore_list, self.restore_index, date)


class MediaInfoDetail(BaseModel):
    """A dated media archive, or the backup state of a medium."""

    date: str = Field(default="")
    has_data: bool = Field(default=True)
    select_data: bool = Field(default=True)
    size: str = Field(default="")

    def degrade(self, data_seen: bool) -> None:
        self.has_data = self.has_data and data_seen
        self.select_data = self.select_data and data_seen


class MediaInfoBackup(BaseModel):
    """Backup map record of a media directory."""

    name: str = Field(default="")
    path: str = Field(default="", description="Directory on the device")
    backup_detail: MediaInfoDetail = Field(
        default_factory=lambda: MediaInfoDetail(has_data=False, select_data=False)
    )


class MediaInfoRestore(BaseModel):
    """Restore map record of a media directory."""

    name: str = Field(default="")
    path: str = Field(default="")
    detail_restore_list: List[MediaInfoDetail] = Field(default_factory=list)
    restore_index: int = Field(default=-1)

    def selected_detail(self, date: Optional[str] = None) -> Optional[MediaInfoDetail]:
        return _select(self.detail_restore_list, self.restore_index, date)


class BackupInfo(BaseModel):
    """One entry of the run history."""

    version: str = Field(default="", description="Engine version that ran the backup")
    start_time: str = Field(default="")
    end_time: str = Field(default="")
    type: str = Field(default="app", description="app or media")
    backup_user: str = Field(default="0")
    total: int = Field(default=0)
    success: int = Field(default=0)


def _select(details, index: int, date: Optional[str]):
    if date is not None:
        return next((d for d in details if d.date == date), None)
    if not details:
        return None
    if 0 <= index < len(details):
        return details[index]
    return details[-1]


AppInfoBackupMap = Dict[str, AppInfoBackup]
AppInfoRestoreMap = Dict[str, AppInfoRestore]
MediaInfoBackupMap = Dict[str, MediaInfoBackup]
MediaInfoRestoreMap = Dict[str, MediaInfoRestore]
BackupInfoList = List[BackupInfo]
