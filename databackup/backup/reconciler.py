"""Rebuild backup and restore maps from persisted state and the files on disk.

The restore maps are rebuilt from a recursive listing of the backup tree. The
listing must be sorted by path: lines are grouped by consecutive
``(entity, date)`` pairs, so every restore point of an entity has to be
contiguous. A line takes part only when it is exactly
``<root>/<entity>/<date>/<file>``; anything else (deeper files, stray lines, a
trailing sentinel) is ignored.

Presence flags of a restore point only ever degrade: a flag is the AND of the
flag stored by the previous pass and what the current listing shows.
"""

from dataclasses import dataclass
from itertools import groupby
from operator import attrgetter
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple, TypeVar

from ..adb.package import PackageInfo
from ..util.collections import find_index, upsert
from ..util.paths import relative_parts
from .models import (
    RETRIEVED_APP_NAME,
    AppInfoBackup,
    AppInfoBackupMap,
    AppInfoBase,
    AppInfoDetailRestore,
    AppInfoRestore,
    AppInfoRestoreMap,
    DataCategory,
    MediaInfoBackup,
    MediaInfoBackupMap,
    MediaInfoDetail,
    MediaInfoRestore,
    MediaInfoRestoreMap,
)

D = TypeVar("D", AppInfoDetailRestore, MediaInfoDetail)
E = TypeVar("E", AppInfoBackup, AppInfoRestore)

# Checked in this order; the first category whose marker occurs in a file name wins.
_APP_FILE_CATEGORIES = (
    DataCategory.APK,
    DataCategory.DATA,
    DataCategory.OBB,
    DataCategory.USER,
    DataCategory.USER_DE,
)

DEFAULT_MEDIA = (
    ("Pictures", "/storage/emulated/0/Pictures"),
    ("Download", "/storage/emulated/0/Download"),
    ("Music", "/storage/emulated/0/Music"),
    ("DCIM", "/storage/emulated/0/DCIM"),
)


@dataclass(frozen=True)
class ListingEntry:
    """One archive file found at ``<root>/<key>/<date>/<file_name>``."""

    key: str
    date: str
    file_name: str


def parse_listing(lines: Iterable[str], root: str) -> Iterator[ListingEntry]:
    """Entries of ``lines`` that follow the backup layout below ``root``."""
    for line in lines:
        parts = relative_parts(line.strip(), root)
        if parts is not None and len(parts) == 3:
            yield ListingEntry(*parts)


def group_listing(entries: Iterable[ListingEntry]) -> Iterator[Tuple[str, List[Tuple[str, List[str]]]]]:
    """Group consecutive entries into ``(key, [(date, [file names])])``."""
    for key, by_key in groupby(entries, key=attrgetter("key")):
        dates = [
            (date, [entry.file_name for entry in by_date])
            for date, by_date in groupby(by_key, key=attrgetter("date"))
        ]
        yield key, dates


def classify_app_file(file_name: str) -> Optional[DataCategory]:
    for category in _APP_FILE_CATEGORIES:
        if f"{category.value}.tar" in file_name:
            return category
    return None


def _clean_lines(listing: Iterable[str]) -> List[str]:
    return [line.strip() for line in listing if line.strip()]


def _drop_stale(details: List[D], key: str, present: Set[Tuple[str, str]]) -> List[D]:
    """Keep restore points whose own ``<key>/<date>`` directory is still listed."""
    return [detail for detail in details if (key, detail.date) in present]


def _merge_detail(
    details: List[D],
    previous: List[D],
    date: str,
    factory: Callable[[], D],
    degrade: Callable[[D], None],
) -> None:
    """Find-or-create the restore point for ``date`` and degrade it in place."""
    index = find_index(details, lambda d: d.date == date)
    if index != -1:
        detail = details[index]
    else:
        index = find_index(previous, lambda d: d.date == date)
        detail = previous[index].model_copy(deep=True) if index != -1 else factory()
        detail.date = date

    degrade(detail)
    upsert(details, detail, lambda a, b: a.date == b.date)


def _clamp_index(index: int, details: list) -> int:
    return index if 0 <= index < len(details) else -1


def reconcile_restore_map(previous: AppInfoRestoreMap, listing: Iterable[str], root: str) -> AppInfoRestoreMap:
    """Rebuild the app restore map from the previous map and a sorted listing of ``root``.

    Args:
        previous: Map loaded from the last pass; not modified
        listing: Recursive file listing of the app archive tree, path-sorted
        root: Root of the app archive tree

    Returns:
        The reconciled map. Entities are never removed; entities found only on
        disk are added as retrieved, not-on-device records.
    """
    entries = list(parse_listing(_clean_lines(listing), root))
    present = {(entry.key, entry.date) for entry in entries}

    result: AppInfoRestoreMap = {key: entity.model_copy(deep=True) for key, entity in previous.items()}
    for key, entity in result.items():
        entity.detail_restore_list = _drop_stale(entity.detail_restore_list, key, present)

    for key, date_groups in group_listing(entries):
        entity = result.get(key)
        stored = entity.detail_restore_list if entity is not None else []

        details: List[AppInfoDetailRestore] = []
        for date, file_names in date_groups:
            seen = {classify_app_file(name) for name in file_names}
            app_seen = DataCategory.APK in seen
            data_seen = any(category is not None and category.is_app_data for category in seen)
            _merge_detail(
                details, stored, date, AppInfoDetailRestore,
                lambda detail: detail.degrade(app_seen, data_seen),
            )

        if entity is None:
            entity = AppInfoRestore(
                detail_base=AppInfoBase(app_name=RETRIEVED_APP_NAME, package_name=key, is_on_this_device=False)
            )
            result[key] = entity

        entity.detail_base.package_name = key
        entity.detail_restore_list = details

    for entity in result.values():
        entity.restore_index = _clamp_index(entity.restore_index, entity.detail_restore_list)

    return result


def reconcile_media_restore_map(previous: MediaInfoRestoreMap, listing: Iterable[str], root: str) -> MediaInfoRestoreMap:
    """Media counterpart of :func:`reconcile_restore_map`; ``<name>.tar*`` marks data."""
    entries = list(parse_listing(_clean_lines(listing), root))
    present = {(entry.key, entry.date) for entry in entries}

    result: MediaInfoRestoreMap = {key: entity.model_copy(deep=True) for key, entity in previous.items()}
    for key, entity in result.items():
        entity.detail_restore_list = _drop_stale(entity.detail_restore_list, key, present)

    for name, date_groups in group_listing(entries):
        entity = result.get(name)
        stored = entity.detail_restore_list if entity is not None else []

        details: List[MediaInfoDetail] = []
        for date, file_names in date_groups:
            data_seen = any(f"{name}.tar" in file_name for file_name in file_names)
            _merge_detail(details, stored, date, MediaInfoDetail, lambda detail: detail.degrade(data_seen))

        if entity is None:
            entity = MediaInfoRestore()
            result[name] = entity

        entity.name = name
        entity.detail_restore_list = details

    for entity in result.values():
        entity.restore_index = _clamp_index(entity.restore_index, entity.detail_restore_list)

    return result


def apply_installed_packages(
    entities: Dict[str, E],
    installed: Iterable[PackageInfo],
    host_package: str,
    factory: Callable[[], E],
) -> Dict[str, E]:
    """Overwrite base descriptors from the live package list, in place.

    Every entity is first marked as not on this device; each installed package
    (except the host application) is then found or created and marked present.
    Restore lists are never touched.
    """
    for entity in entities.values():
        entity.detail_base.is_on_this_device = False

    for info in installed:
        if info.package_name == host_package:
            continue
        entity = entities.get(info.package_name)
        if entity is None:
            entity = factory()
            entities[info.package_name] = entity

        base = entity.detail_base
        base.app_name = info.label or info.package_name
        base.package_name = info.package_name
        base.version_name = info.version_name
        base.version_code = info.version_code
        base.first_install_time = info.first_install_time
        base.is_system_app = info.is_system
        base.is_on_this_device = True

    return entities


def reconcile_backup_map(
    previous: AppInfoBackupMap,
    installed: Iterable[PackageInfo],
    host_package: str,
) -> AppInfoBackupMap:
    """Rebuild the app backup map from the previous map and the installed packages."""
    installed = list(installed)
    result: AppInfoBackupMap = {key: entity.model_copy(deep=True) for key, entity in previous.items()}
    apply_installed_packages(result, installed, host_package, AppInfoBackup)

    for info in installed:
        entity = result.get(info.package_name)
        if entity is not None:
            entity.detail_backup.version_name = info.version_name
            entity.detail_backup.version_code = info.version_code

    return result


def reconcile_media_backup_map(previous: MediaInfoBackupMap) -> MediaInfoBackupMap:
    """The stored media backup map, seeded with the default directories when empty."""
    result: MediaInfoBackupMap = {key: entity.model_copy(deep=True) for key, entity in previous.items()}
    if not result:
        for name, path in DEFAULT_MEDIA:
            result[name] = MediaInfoBackup(name=name, path=path)
    return result
