from __future__ import annotations

import json
from pathlib import Path

import pytest

from shellstate.backing import EphemeralDriver, FileDriver, KeyedDriver, decode_snapshot, encode_snapshot
from shellstate.exceptions import ReconciliationError, RestoreError, SaveError


def test_encode_compact_and_pretty() -> None:
    snapshot = {"layout": {"split": [50, 50]}}

    assert encode_snapshot(snapshot) == '{"layout":{"split":[50,50]}}'
    assert encode_snapshot(snapshot, pretty=True) == json.dumps(snapshot, indent=2)


def test_decode_rejects_non_object_documents() -> None:
    assert decode_snapshot("") == {}
    assert decode_snapshot("  \n") == {}
    with pytest.raises(ValueError):
        decode_snapshot("[1, 2]")
    with pytest.raises(ValueError):
        decode_snapshot("{not json")


def test_file_restore_missing_and_empty(tmp_path: Path) -> None:
    missing = FileDriver(tmp_path / "settings.json")
    assert missing.restore() == {}

    empty = tmp_path / "empty.json"
    empty.write_text("", encoding="utf-8")
    assert FileDriver(empty).restore() == {}


def test_file_restore_malformed_raises(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text('{"shell": ', encoding="utf-8")

    with pytest.raises(RestoreError) as info:
        FileDriver(path).restore()
    assert info.value.target == str(path)


def test_file_path_is_absolute(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    driver = FileDriver("settings.json")
    assert driver.path == str(tmp_path / "settings.json")


@pytest.mark.asyncio
async def test_file_save_then_load(tmp_path: Path) -> None:
    driver = FileDriver(tmp_path / "nested" / "settings.json", pretty=True)
    snapshot = {"shell": {"theme": "dark", "resize": True}, "recent": ["a.R", None], "n": 1.5}

    await driver.save(snapshot)

    assert await driver.load() == snapshot
    assert driver.restore() == snapshot
    assert "\n  " in (tmp_path / "nested" / "settings.json").read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_file_load_failures_are_reconciliation_errors(tmp_path: Path) -> None:
    driver = FileDriver(tmp_path / "settings.json")
    with pytest.raises(ReconciliationError):
        await driver.load()

    (tmp_path / "settings.json").write_text("[]", encoding="utf-8")
    with pytest.raises(ReconciliationError):
        await driver.load()


@pytest.mark.asyncio
async def test_file_save_unserializable_raises_save_error(tmp_path: Path) -> None:
    driver = FileDriver(tmp_path / "settings.json")
    with pytest.raises(SaveError):
        await driver.save({"bad": object()})


@pytest.mark.asyncio
async def test_file_save_into_unwritable_location_raises_save_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    driver = FileDriver(blocker / "settings.json")

    with pytest.raises(SaveError):
        await driver.save({"a": 1})


@pytest.mark.asyncio
async def test_keyed_driver_round_trip() -> None:
    storage: dict[str, str] = {}
    driver = KeyedDriver(storage, "file-settings")

    assert driver.restore() == {}
    await driver.save({"recentFiles": ["/tmp/a.R"]})

    assert storage["file-settings"] == '{"recentFiles":["/tmp/a.R"]}'
    assert KeyedDriver(storage, "file-settings").restore() == {"recentFiles": ["/tmp/a.R"]}


def test_keyed_driver_malformed_value() -> None:
    driver = KeyedDriver({"k": "not json"}, "k")
    with pytest.raises(RestoreError):
        driver.restore()


def test_keyed_driver_requires_key() -> None:
    with pytest.raises(ValueError):
        KeyedDriver({}, "")


@pytest.mark.asyncio
async def test_ephemeral_driver() -> None:
    driver = EphemeralDriver()
    await driver.save({"a": 1})
    assert driver.restore() == {}
