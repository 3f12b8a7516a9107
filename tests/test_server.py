"""Tests for the MCP tool layer."""
import asyncio
import json
import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from devon_mcp.logging_setup import configure_logging
from devon_mcp.server import (
    CopyColumnLayoutInput,
    GetColumnLayoutInput,
    ListColumnLayoutsInput,
    ListSmartItemsInput,
    ParseEmlHeadersInput,
    ResponseFormat,
    devon_copy_column_layout,
    devon_get_column_layout,
    devon_list_column_layouts,
    devon_list_smart_groups,
    devon_list_smart_rules,
    devon_parse_eml_headers,
    truncate_response,
)

from conftest import write_plist


@pytest.fixture
def env_paths(tmp_path: Path, monkeypatch, no_macos_tools):
    paths = {
        "smart_groups_plist": tmp_path / "SmartGroups.plist",
        "smart_rules_plist": tmp_path / "SmartRules.plist",
        "preferences_plist": tmp_path / "prefs.plist",
    }
    for field, path in paths.items():
        monkeypatch.setenv(f"DEVON_MCP_{field.upper()}", str(path))
    monkeypatch.setattr("devon_mcp.plist_store.PLISTBUDDY", str(tmp_path / "no-plistbuddy"))
    return paths


def test_smart_groups_markdown(env_paths):
    write_plist(env_paths["smart_groups_plist"], [{"name": "Inbox", "sync": {"UUID": "U-1"}}])

    output = asyncio.run(devon_list_smart_groups(
        ListSmartItemsInput(response_format=ResponseFormat.MARKDOWN)
    ))

    assert "### DEVONthink Smart Groups" in output
    assert "- **Inbox** (`U-1`)" in output
    assert "Total: 1 smart group(s)" in output


def test_smart_rules_json(env_paths):
    write_plist(env_paths["smart_rules_plist"], [{"name": "Tag", "Enabled": True}])

    result = json.loads(asyncio.run(devon_list_smart_rules(ListSmartItemsInput())))

    assert result["success"] is True
    assert result["smart_rules"][0]["enabled"] is True


def test_failure_is_json_even_for_markdown(env_paths):
    output = asyncio.run(devon_list_smart_rules(
        ListSmartItemsInput(response_format=ResponseFormat.MARKDOWN)
    ))

    assert json.loads(output)["success"] is False


def test_column_layout_tools(env_paths):
    write_plist(env_paths["preferences_plist"], {"ListColumnsHorizontal-Source": ["Name", "Kind"]})

    copied = json.loads(asyncio.run(devon_copy_column_layout(
        CopyColumnLayoutInput(source_name="Source", target_name=" Target ")
    )))
    read = json.loads(asyncio.run(devon_get_column_layout(GetColumnLayoutInput(name="Target"))))
    listed = asyncio.run(devon_list_column_layouts(ListColumnLayoutsInput()))

    assert copied["success"] is True
    assert copied["resolved_target_key"] == "Target"
    assert read["columns"] == ["Name", "Kind"]
    assert "- Source\n- Target\n" in listed
    assert "Showing 2 of 2 layout(s)" in listed


def test_parse_eml_headers_tool(tmp_path: Path):
    path = tmp_path / "mail.eml"
    path.write_bytes(b"Message-ID: <x@y>\nSubject: Hi\n\nbody")

    result = json.loads(asyncio.run(devon_parse_eml_headers(ParseEmlHeadersInput(file_path=str(path)))))

    assert result["success"] is True
    assert result["message_id"] == "<x@y>"
    assert result["from"] is None


@pytest.mark.parametrize("model, kwargs", [
    (GetColumnLayoutInput, {"name": ""}),
    (GetColumnLayoutInput, {"name": "x", "extra": 1}),
    (ListColumnLayoutsInput, {"limit": 0}),
    (ParseEmlHeadersInput, {"file_path": "   "}),
])
def test_input_validation(model, kwargs):
    with pytest.raises(ValidationError):
        model(**kwargs)


def test_truncate_response():
    assert truncate_response("short", limit=10) == "short"

    truncated = truncate_response("x" * 20, limit=10)

    assert truncated.startswith("x" * 10 + "\n\n---\n**Response truncated**")


def test_configure_logging_writes_file(tmp_path: Path):
    log_file = tmp_path / "logs" / "server.log"

    logger = configure_logging("WARNING", log_file)
    logging.getLogger("devon_mcp.column_layout").info("copied layout")
    for handler in logger.handlers:
        handler.flush()

    assert len(logger.handlers) == 2
    assert logger.handlers[0].level == logging.WARNING
    assert "copied layout" in log_file.read_text(encoding="utf-8")

    configure_logging("INFO")
    assert len(logger.handlers) == 1
