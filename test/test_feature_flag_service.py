# test/test_feature_flag_service.py

"""
Tests for services/feature_flag_service.py

Everything runs against a real SafeFileStorage in tmp_path:
- updates merge into the stored flags and are written as pretty JSON
- invalid updates leave the document and backups untouched
- changes are appended to the change log, no-op updates are not
"""

import dataclasses
import json
import os
import threading
import time

import pytest

from config import get_settings_obj
from logic.feature_flags import DEFAULT_FEATURE_FLAGS, FeatureFlagValidationError
from services.feature_flag_service import FeatureFlagService
from storage.safe_file_storage import SafeFileStorage


@pytest.fixture
def service(tmp_path):
    storage = SafeFileStorage(tmp_path / "flags.json")
    return FeatureFlagService(storage, change_log_path=tmp_path / "flag-changes.log")


def test_first_update_starts_from_defaults(service, tmp_path):
    flags = service.update_flags({"enablePayments": True}, user="alice")

    assert flags == {**DEFAULT_FEATURE_FLAGS, "enablePayments": True}
    stored = (tmp_path / "flags.json").read_text()
    assert json.loads(stored) == flags
    assert stored.startswith('{\n  "enablePayments"')


def test_get_flags_reads_latest_from_disk(service, tmp_path):
    service.update_flags({"enablePayments": True}, user="alice")

    on_disk = dict(DEFAULT_FEATURE_FLAGS, enableExperimentalUI=True)
    (tmp_path / "flags.json").write_text(json.dumps(on_disk))

    assert service.get_flags() == on_disk


def test_get_flags_without_document_raises(service):
    with pytest.raises(FileNotFoundError):
        service.get_flags()


def test_invalid_update_leaves_store_untouched(service, tmp_path):
    service.update_flags({"enablePayments": True}, user="alice")
    before = (tmp_path / "flags.json").read_text()
    backups_before = service.storage.list_backups()

    with pytest.raises(FeatureFlagValidationError) as exc_info:
        service.update_flags({"enablePayments": "false", "nope": True}, user="mallory")

    assert sorted(exc_info.value.fields) == ["enablePayments", "nope"]
    assert (tmp_path / "flags.json").read_text() == before
    assert service.storage.list_backups() == backups_before


def test_updates_are_backed_up(service):
    service.update_flags({"enablePayments": True}, user="alice")
    service.update_flags({"enablePayments": False}, user="bob")

    backups = service.storage.list_backups()
    assert len(backups) == 1
    assert json.loads(backups[0].read_text())["enablePayments"] is True


def test_concurrent_updates_all_survive(service, monkeypatch):
    """
    Several updaters each flip a different flag at the same time. Each
    merge is slowed down so the updates overlap; none may be lost.
    """
    import services.feature_flag_service as module

    real_parse = module.parse_feature_flags

    def slow_parse(data):
        time.sleep(0.02)
        return real_parse(data)

    monkeypatch.setattr(module, "parse_feature_flags", slow_parse)

    keys = [
        "enablePayments",
        "enableAIRecommendations",
        "enableExperimentalUI",
        "enableNostrDirectMessages",
        "enableNostrAIContentDiscovery",
    ]
    start = threading.Barrier(len(keys))
    errors = []

    def set_one(key):
        start.wait()
        try:
            service.update_flags({key: True}, user=key)
        except Exception as e:  # surfaced by the assert below
            errors.append(e)

    threads = [threading.Thread(target=set_one, args=(k,)) for k in keys]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    flags = service.get_flags()
    assert all(flags[k] is True for k in keys)
    assert len(service.storage.list_backups()) == len(keys) - 1


def test_change_log_records_each_change(service, tmp_path):
    service.update_flags({"enablePayments": True}, user="alice")
    service.update_flags({"enablePayments": True}, user="bob")  # no change
    service.update_flags({"enablePayments": False, "enableNostrRelay": False}, user="cli")

    lines = (tmp_path / "flag-changes.log").read_text().splitlines()
    assert len(lines) == 2
    assert lines[0].endswith("alice changed: enablePayments: False -> True")
    assert "cli changed: enablePayments: True -> False, enableNostrRelay: True -> False" in lines[1]
    assert lines[0].startswith("[")


def test_initialize_keeps_defaults_when_document_is_missing(service):
    assert service.initialize() == DEFAULT_FEATURE_FLAGS


def test_initialize_keeps_defaults_when_document_is_corrupt(service, tmp_path):
    (tmp_path / "flags.json").write_text("{not json")

    assert service.initialize() == DEFAULT_FEATURE_FLAGS


def test_initialize_loads_stored_flags(service):
    service.update_flags({"enableExperimentalUI": True}, user="alice")
    service.flags = dict(DEFAULT_FEATURE_FLAGS)

    assert service.initialize()["enableExperimentalUI"] is True


def test_cleanup_old_backups_delegates_to_storage(service):
    service.update_flags({"enablePayments": True}, user="alice")
    service.update_flags({"enablePayments": False}, user="alice")
    backup = service.storage.list_backups()[0]
    old = time.time() - 30 * 24 * 60 * 60
    os.utime(backup, (old, old))

    assert service.cleanup_old_backups(7) == [backup]
    assert service.storage.list_backups() == []


def test_from_settings(tmp_path):
    settings = dataclasses.replace(
        get_settings_obj(),
        FEATURE_FLAGS_PATH=str(tmp_path / "conf" / "flags.json"),
        FEATURE_FLAGS_CHANGE_LOG=str(tmp_path / "conf" / "changes.log"),
        LOCK_TIMEOUT_MS=1234,
        STALE_LOCK_MS=0,
    )

    service = FeatureFlagService.from_settings(settings)

    assert service.storage.file_path == tmp_path / "conf" / "flags.json"
    assert service.storage.backup_dir == tmp_path / "conf" / "backups"
    assert service.storage.lock.timeout_ms == 1234
    assert service.storage.lock.stale_after_ms is None
    assert service.change_log_path == tmp_path / "conf" / "changes.log"
