"""Backup module initialization."""

from .archive import ArchivePipeline
from .codecs import archive_name, codec_for, suffix_for
from .engine import BackupEngine
from .models import (
    AppInfoBackup,
    AppInfoBase,
    AppInfoDetailBackup,
    AppInfoDetailRestore,
    AppInfoRestore,
    BackupInfo,
    DataCategory,
    MediaInfoBackup,
    MediaInfoDetail,
    MediaInfoRestore,
)
from .sizes import SizeMode, size_of
from .storage import BackupStorage
from .store import MapStore

__all__ = [
    # engine
    "BackupEngine",
    # pipeline
    "ArchivePipeline",
    "archive_name",
    "codec_for",
    "suffix_for",
    "SizeMode",
    "size_of",
    # storage
    "BackupStorage",
    "MapStore",
    # models
    "AppInfoBackup",
    "AppInfoBase",
    "AppInfoDetailBackup",
    "AppInfoDetailRestore",
    "AppInfoRestore",
    "BackupInfo",
    "DataCategory",
    "MediaInfoBackup",
    "MediaInfoDetail",
    "MediaInfoRestore",
]
