"""Persisted map store: whole-document JSON maps on the privileged filesystem."""

import json
from typing import Any, Callable

from pydantic import TypeAdapter, ValidationError

from ..adb.shell import RootShell
from ..util.logging import get_logger
from .models import (
    AppInfoBackupMap,
    AppInfoRestoreMap,
    BackupInfoList,
    MediaInfoBackupMap,
    MediaInfoRestoreMap,
)

logger = get_logger(__name__)


class MapKind:
    """A persisted document type: its decoder and the value used when it cannot be read."""

    def __init__(self, name: str, annotation: Any, empty: Callable[[], Any]):
        self.name = name
        self.adapter = TypeAdapter(annotation)
        self.empty = empty

    def __repr__(self) -> str:
        return f"MapKind({self.name!r})"


APP_BACKUP_MAP = MapKind("app backup map", AppInfoBackupMap, dict)
APP_RESTORE_MAP = MapKind("app restore map", AppInfoRestoreMap, dict)
MEDIA_BACKUP_MAP = MapKind("media backup map", MediaInfoBackupMap, dict)
MEDIA_RESTORE_MAP = MapKind("media restore map", MediaInfoRestoreMap, dict)
BACKUP_INFO_LIST = MapKind("backup history", BackupInfoList, list)


def dumps(kind: MapKind, value: Any) -> str:
    """Deterministic JSON text of ``value``; equal values give identical text."""
    data = kind.adapter.dump_python(value, mode="json")
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def loads(kind: MapKind, text: str) -> Any:
    return kind.adapter.validate_python(json.loads(text))


class MapStore:
    """Loads and saves persisted maps through the root shell.

    Loading is best-effort: a missing, empty or malformed document yields an
    empty map (or list) and a warning, never an exception. Saving always
    rewrites the whole document.
    """

    def __init__(self, shell: RootShell):
        self.shell = shell

    def load(self, path: str, kind: MapKind) -> Any:
        result = self.shell.read_text(path)
        if not result.success:
            logger.debug(f"No {kind.name} at {path}")
            return kind.empty()

        try:
            value = loads(kind, result.text)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Could not parse {kind.name} at {path}, starting empty: {e}")
            return kind.empty()

        logger.debug(f"Loaded {kind.name} from {path}")
        return value

    def save(self, path: str, value: Any, kind: MapKind) -> bool:
        ok = self.shell.write_text(path, dumps(kind, value))
        if ok:
            logger.debug(f"Saved {kind.name} to {path}")
        else:
            logger.error(f"Failed to save {kind.name} to {path}")
        return ok
