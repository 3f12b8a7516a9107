"""Tests for XML conversion and the preference store."""
import plistlib
from pathlib import Path

import pytest

from devon_mcp.plist_store import (
    PLISTBUDDY,
    PreferenceStore,
    StoreError,
    convert_plist_to_xml,
    parse_plistbuddy_array,
    parse_plistbuddy_dict,
)

from conftest import fail, make_runner, ok, write_plist

PREFS = {
    "columns": ["Name", "Date Modified"],
    "widths": {"Name": 240, "Date Modified": 120.5, "Flag": True},
    "title": "hello",
}


def test_parse_plistbuddy_array():
    raw = "Array {\n    Name\n    Date Modified\n\n}\n"

    assert parse_plistbuddy_array(raw) == ["Name", "Date Modified"]


def test_parse_plistbuddy_dict():
    raw = "Dict {\n    Name = 240\n    Date Modified = 120.5\n    Broken = n/a\n}"

    assert parse_plistbuddy_dict(raw) == {"Name": 240.0, "Date Modified": 120.5}


def test_read_key_with_plistlib(tmp_path: Path):
    path = write_plist(tmp_path / "prefs.plist", PREFS)
    store = PreferenceStore(path, use_plistbuddy=False)

    assert store.read_key("columns") == ["Name", "Date Modified"]
    # Booleans are not widths
    assert store.read_key("widths") == {"Name": 240.0, "Date Modified": 120.5}
    assert store.read_key("title") == "hello"
    assert store.read_key("absent") is None


def test_read_key_with_plistbuddy(tmp_path: Path):
    runner = make_runner({
        "Print ':columns'": ok("Array {\n    Name\n    Kind\n}\n"),
        "Print ':widths'": ok("Dict {\n    Name = 200\n}\n"),
    })
    store = PreferenceStore(tmp_path / "prefs.plist", runner=runner, use_plistbuddy=True)

    assert store.read_key("columns") == ["Name", "Kind"]
    assert store.read_key("widths") == {"Name": 200.0}
    assert store.read_key("absent") is None
    assert runner.calls[0] == [PLISTBUDDY, "-c", "Print ':columns'", str(tmp_path / "prefs.plist")]


def test_missing_file(tmp_path: Path):
    store = PreferenceStore(tmp_path / "missing.plist", use_plistbuddy=False)

    assert store.read_key("columns") is None
    with pytest.raises(StoreError):
        store.keys()


def test_non_dictionary_store(tmp_path: Path):
    path = write_plist(tmp_path / "list.plist", ["a", "b"])

    with pytest.raises(StoreError):
        PreferenceStore(path, use_plistbuddy=False).load()


@pytest.mark.parametrize("fmt, magic", [
    (plistlib.FMT_BINARY, b"bplist00"),
    (plistlib.FMT_XML, b"<?xml"),
])
def test_transaction_preserves_format(tmp_path: Path, fmt, magic):
    path = write_plist(tmp_path / "prefs.plist", PREFS, fmt=fmt)
    store = PreferenceStore(path, use_plistbuddy=False)

    with store.transaction() as data:
        data["added"] = ["x"]

    assert path.read_bytes().startswith(magic)
    reloaded = store.load()
    assert reloaded["added"] == ["x"]
    assert reloaded["title"] == "hello"
    assert list(tmp_path.iterdir()) == [path]


def test_transaction_aborts_on_exception(tmp_path: Path):
    path = write_plist(tmp_path / "prefs.plist", PREFS)
    before = path.read_bytes()
    store = PreferenceStore(path, use_plistbuddy=False)

    with pytest.raises(RuntimeError):
        with store.transaction() as data:
            data["added"] = ["x"]
            raise RuntimeError("stop")

    assert path.read_bytes() == before


def test_convert_uses_plutil_when_runner_given(tmp_path: Path):
    runner = make_runner(default=ok("<plist/>"))

    result = convert_plist_to_xml(tmp_path / "a.plist", runner=runner)

    assert result["success"] is True
    assert runner.calls == [["plutil", "-convert", "xml1", "-o", "-", str(tmp_path / "a.plist")]]


def test_convert_reports_runner_failure(tmp_path: Path):
    result = convert_plist_to_xml(tmp_path / "a.plist", runner=make_runner(default=fail("bad file")))

    assert result == {"success": False, "error": "bad file", "command": []}


def test_convert_in_process(tmp_path: Path, no_macos_tools):
    path = write_plist(tmp_path / "groups.plist", [{"name": "A"}])

    result = convert_plist_to_xml(path)

    assert result["success"] is True
    assert "<key>name</key>" in result["output"]
    assert "<string>A</string>" in result["output"]


def test_convert_in_process_invalid_file(tmp_path: Path, no_macos_tools):
    path = tmp_path / "broken.plist"
    path.write_bytes(b"not a plist")

    result = convert_plist_to_xml(path)

    assert result["success"] is False
    assert result["error"]
