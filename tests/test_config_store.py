"""
Test configuration store loading, reload and snapshot diffing
"""
import os
import pytest
from monitoring.config_store import (
    ChangeType,
    ConfigChange,
    ConfigStore,
    ConfigurationSnapshot,
    diff_snapshots,
)
from conftest import write_properties


@pytest.fixture
def store_file(tmp_path):
    path = tmp_path / "sidecar.properties"
    write_properties(path, {"key1": "value1", "key2": "value2", "key3": "value3"})
    return path


@pytest.fixture
def store(tmp_path, store_file):
    return ConfigStore(tmp_path, store_file.name, environ={})


def test_new_store_has_empty_snapshot(tmp_path):
    """Test the store starts with an empty snapshot"""
    store = ConfigStore(tmp_path, "sidecar.properties", environ={})

    assert isinstance(store.snapshot, ConfigurationSnapshot)
    assert len(store.snapshot) == 0


def test_load_reads_all_properties(store):
    """Test load installs every key of the file"""
    assert store.load() is True

    assert store.get_property("key1") == "value1"
    assert store.get_property("key2") == "value2"
    assert store.get_property("key3") == "value3"


def test_load_missing_file_keeps_empty_snapshot(tmp_path, log_records):
    """Test loading a missing file logs and does not raise"""
    store = ConfigStore(tmp_path, "notexisting", environ={})

    assert store.load() is False
    assert store.snapshot is not None
    assert len(store.snapshot) == 0
    assert any("Not able to load configuration file" in r.getMessage() for r in log_records.records)


def test_reload_picks_up_new_values(store, store_file):
    """Test reload installs the new file content"""
    store.load()

    write_properties(store_file, {"key1": "othervalue1"})
    store.reload()

    assert store.get_property("key1") == "othervalue1"
    assert store.get_property("key2") is None


def test_reload_after_file_removed_keeps_snapshot(store, store_file):
    """Test a deleted file does not blank out the working configuration"""
    store.load()
    before = store.snapshot

    store_file.unlink()
    changes = store.reload()

    assert changes is None
    assert store.snapshot is before
    assert store.get_property("key1") == "value1"


@pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs non-root POSIX permissions")
def test_reload_unreadable_file_keeps_snapshot(store, store_file):
    """Test a permission-denied file keeps the previous snapshot"""
    store.load()
    before = store.snapshot.to_dict()

    store_file.chmod(0)
    try:
        assert store.reload() is None
    finally:
        store_file.chmod(0o644)

    assert store.snapshot.to_dict() == before


def test_reload_reports_three_way_diff(store, store_file):
    """Test modified, removed and added keys are reported"""
    store.load()

    write_properties(store_file, {"key1": "changed", "key3": "value3", "key4": "new"})
    changes = store.reload()

    assert changes == [
        ConfigChange("key1", ChangeType.MODIFIED, "value1", "changed"),
        ConfigChange("key2", ChangeType.REMOVED, "value2", None),
        ConfigChange("key4", ChangeType.ADDED, None, "new"),
    ]


def test_second_reload_without_change_is_empty(store, store_file):
    """Test reloading twice with no edit reports nothing the second time"""
    store.load()
    write_properties(store_file, {"key1": "changed"})

    assert store.reload()
    assert store.reload() == []


def test_reload_installs_new_snapshot_even_without_changes(store):
    """Test an unchanged reload still replaces the snapshot object"""
    store.load()
    before = store.snapshot

    assert store.reload() == []
    assert store.snapshot is not before
    assert store.snapshot == before


def test_snapshot_is_immutable():
    """Test snapshots reject mutation"""
    snapshot = ConfigurationSnapshot({"a": "1"})

    with pytest.raises(TypeError):
        snapshot["a"] = "2"
    with pytest.raises(AttributeError):
        snapshot.source = None


def test_snapshot_copies_its_input():
    """Test mutating the source dict does not leak into the snapshot"""
    data = {"a": "1"}
    snapshot = ConfigurationSnapshot(data)
    data["a"] = "2"

    assert snapshot["a"] == "1"


def test_old_snapshot_unchanged_after_reload(store, store_file):
    """Test readers holding the previous snapshot never see the update"""
    store.load()
    held = store.snapshot

    write_properties(store_file, {"key1": "othervalue1"})
    store.reload()

    assert held["key1"] == "value1"
    assert "key2" in held


def test_env_overrides_take_precedence(tmp_path, store_file):
    """Test environment overrides replace file values on every load"""
    environ = {"SIDECAR_TEST_KEY1": "from-env"}
    store = ConfigStore(
        tmp_path,
        store_file.name,
        env_overrides={"SIDECAR_TEST_KEY1": "key1", "SIDECAR_TEST_KEY9": "key9"},
        environ=environ
    )

    store.load()
    assert store.get_property("key1") == "from-env"
    assert store.get_property("key9") is None

    environ["SIDECAR_TEST_KEY9"] = "late"
    changes = store.reload()

    assert changes == [ConfigChange("key9", ChangeType.ADDED, None, "late")]


def test_diff_identical_snapshots():
    """Test identical snapshots have no differences"""
    assert diff_snapshots({"a": "1"}, {"a": "1"}) == []


def test_change_removed_flag():
    """Test removal is explicit rather than a null value"""
    removed = ConfigChange("a", ChangeType.REMOVED, "1", None)
    cleared = ConfigChange("a", ChangeType.MODIFIED, "1", "")

    assert removed.removed
    assert not cleared.removed
