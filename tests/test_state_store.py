"""Instance state store tests."""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from bootagent.models import InstanceState
from bootagent.state import InstanceStateStore, StateStoreError


def test_init_creates_booting_state(tmp_path: Path) -> None:
    """A missing state file starts the instance in booting."""
    store = InstanceStateStore(tmp_path / "state" / "instance_state.yml")

    assert store.init("agent-1") is InstanceState.BOOTING

    path = tmp_path / "state" / "instance_state.yml"
    assert path.exists()
    assert (path.stat().st_mode & 0o777) == 0o640
    assert yaml.safe_load(path.read_text()) == {
        "identity": "agent-1",
        "value": "booting",
        "startup_tags": [],
    }


def test_state_persists_across_instances(tmp_path: Path) -> None:
    """Values written by one store are seen by the next."""
    path = tmp_path / "instance_state.yml"
    store = InstanceStateStore(path)
    store.init("agent-1")
    store.value = InstanceState.OPERATIONAL
    store.startup_tags = ["rs_agent:type=right_link", "env:prod"]

    reloaded = InstanceStateStore(path)

    assert reloaded.init("agent-1") is InstanceState.OPERATIONAL
    assert reloaded.identity == "agent-1"
    assert reloaded.startup_tags == ["rs_agent:type=right_link", "env:prod"]


def test_identity_change_resets_to_booting(tmp_path: Path) -> None:
    """A relaunched instance with a new identity boots again."""
    path = tmp_path / "instance_state.yml"
    store = InstanceStateStore(path)
    store.init("agent-1")
    store.value = "stranded"

    assert InstanceStateStore(path).init("agent-2") is InstanceState.BOOTING


def test_value_accepts_strings_and_rejects_unknown(tmp_path: Path) -> None:
    """Unknown state values raise StateStoreError."""
    store = InstanceStateStore(tmp_path / "instance_state.yml")
    store.init("agent-1")

    store.value = "stranded"
    assert store.value is InstanceState.STRANDED

    with pytest.raises(StateStoreError, match="Invalid instance state"):
        store.value = "rebooting"


def test_corrupt_value_surfaces_at_init(tmp_path: Path) -> None:
    """A corrupt persisted value is reported when the store is initialised."""
    path = tmp_path / "instance_state.yml"
    path.write_text("identity: agent-1\nvalue: exploded\n")

    with pytest.raises(StateStoreError):
        InstanceStateStore(path).init("agent-1")


def test_non_mapping_file_raises(tmp_path: Path) -> None:
    """A state file that is not a mapping is rejected."""
    path = tmp_path / "instance_state.yml"
    path.write_text("- booting\n")

    with pytest.raises(StateStoreError, match="must contain a mapping"):
        InstanceStateStore(path).init("agent-1")


def test_use_before_init_raises(tmp_path: Path) -> None:
    """Accessors require init() first."""
    store = InstanceStateStore(tmp_path / "instance_state.yml")

    with pytest.raises(StateStoreError, match="before init"):
        _ = store.value


def test_empty_identity_rejected(tmp_path: Path) -> None:
    """A blank identity cannot own state."""
    with pytest.raises(StateStoreError, match="non-empty"):
        InstanceStateStore(tmp_path / "instance_state.yml").init("   ")


def test_snapshot_reads_without_initialising(tmp_path: Path) -> None:
    """snapshot() never creates or rewrites the state file."""
    path = tmp_path / "instance_state.yml"
    store = InstanceStateStore(path)

    assert store.snapshot() == {}
    assert not path.exists()

    path.write_text("identity: agent-9\nvalue: operational\nstartup_tags: [a]\n")
    assert store.snapshot() == {
        "identity": "agent-9",
        "value": "operational",
        "startup_tags": ["a"],
    }


def test_failed_write_leaves_memory_and_disk_unchanged(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A write that cannot be committed raises and keeps the previous state."""
    path = tmp_path / "instance_state.yml"
    store = InstanceStateStore(path)
    store.init("agent-1")
    before = path.read_text()

    def refuse(*_args: object, **_kwargs: object) -> None:
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("bootagent.state.os.replace", refuse)

    with pytest.raises(StateStoreError, match="Failed to write state file"):
        store.value = InstanceState.OPERATIONAL
    with pytest.raises(StateStoreError, match="Failed to write state file"):
        store.startup_tags = ["env:prod"]

    assert store.value is InstanceState.BOOTING
    assert store.startup_tags == []
    assert path.read_text() == before
    assert sorted(p.name for p in tmp_path.iterdir()) == ["instance_state.yml"]


def test_unreadable_file_raises_store_error(tmp_path: Path) -> None:
    """Read errors are reported as StateStoreError."""
    path = tmp_path / "instance_state.yml"
    path.mkdir()

    with pytest.raises(StateStoreError, match="Failed to read state file"):
        InstanceStateStore(path).init("agent-1")
