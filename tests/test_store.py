"""Tests for persisted maps."""

import json

import pytest

from databackup.adb.shell import RootShell, ShTransport
from databackup.backup.models import AppInfoBackup, AppInfoBase, BackupInfo, MediaInfoBackup
from databackup.backup.store import (
    APP_BACKUP_MAP,
    BACKUP_INFO_LIST,
    MEDIA_BACKUP_MAP,
    MapStore,
    dumps,
    loads,
)
from databackup.context import EngineContext


@pytest.fixture
def store():
    return MapStore(RootShell(EngineContext(), ShTransport()))


def sample_map():
    return {
        "com.b": AppInfoBackup(detail_base=AppInfoBase(package_name="com.b", app_name="Bee")),
        "com.a": AppInfoBackup(detail_base=AppInfoBase(package_name="com.a", app_name="Ay")),
    }


class TestSerialization:
    """Test the JSON documents."""

    def test_deterministic(self):
        """Test that equal maps give identical text whatever their order."""
        forward = sample_map()
        backward = dict(reversed(list(forward.items())))

        assert dumps(APP_BACKUP_MAP, forward) == dumps(APP_BACKUP_MAP, backward)
        assert dumps(APP_BACKUP_MAP, forward).endswith("}\n")

    def test_missing_fields_default(self):
        """Test that documents from older versions still decode."""
        value = loads(APP_BACKUP_MAP, json.dumps({"com.a": {"detail_base": {"package_name": "com.a"}}}))

        assert value["com.a"].detail_base.package_name == "com.a"
        assert value["com.a"].detail_backup.select_app
        assert value["com.a"].detail_backup.app_size == ""

    def test_unknown_fields_ignored(self):
        """Test that extra keys do not break decoding."""
        value = loads(MEDIA_BACKUP_MAP, json.dumps({"Music": {"name": "Music", "path": "/m", "extra": 1}}))
        assert value["Music"].path == "/m"


class TestMapStore:
    """Test loading and saving through the shell."""

    def test_missing_file(self, store, tmp_path):
        """Test that a missing document loads as an empty map."""
        assert store.load(str(tmp_path / "absent.json"), APP_BACKUP_MAP) == {}
        assert store.load(str(tmp_path / "absent.json"), BACKUP_INFO_LIST) == []

    @pytest.mark.parametrize("content", ["", "{not json", "[1, 2, 3]", '{"com.a": {"detail_base": 5}}'])
    def test_unreadable_document_then_resave(self, store, tmp_path, content):
        """Test that a corrupt document loads empty and can be rewritten."""
        path = tmp_path / "config" / "appInfoBackupMap.json"
        path.parent.mkdir()
        path.write_text(content)

        assert store.load(str(path), APP_BACKUP_MAP) == {}

        assert store.save(str(path), sample_map(), APP_BACKUP_MAP)
        reloaded = store.load(str(path), APP_BACKUP_MAP)
        assert {k: v.model_dump() for k, v in reloaded.items()} == {
            k: v.model_dump() for k, v in sample_map().items()
        }

    def test_save_creates_directories(self, store, tmp_path):
        """Test that the config directory is created on first save."""
        path = tmp_path / "backup" / "0" / "config" / "mediaInfoBackupMap.json"
        value = {"Music": MediaInfoBackup(name="Music", path="/storage/emulated/0/Music")}

        assert store.save(str(path), value, MEDIA_BACKUP_MAP)
        assert path.read_text() == dumps(MEDIA_BACKUP_MAP, value)

    def test_history_round_trip(self, store, tmp_path):
        """Test the run history list."""
        path = str(tmp_path / "backupInfoList.json")
        history = [BackupInfo(version="0.1.0", type="media", total=3, success=2)]

        store.save(path, history, BACKUP_INFO_LIST)

        loaded = store.load(path, BACKUP_INFO_LIST)
        assert loaded[0].type == "media"
        assert loaded[0].success == 2
