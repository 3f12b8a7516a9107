"""Tests for smart group / smart rule enumeration."""
from datetime import datetime

import pytest

from devon_mcp.smart_items import (
    list_smart_groups,
    list_smart_rules,
    name_sort_key,
    parse_smart_groups,
)

from conftest import fail, make_runner, ok, write_plist

SMART_GROUPS = [
    {
        "name": "beta",
        "sync": {"UUID": "U-B", "date": datetime(2024, 1, 2, 3, 4, 5)},
        "UseUUIDKey": True,
    },
    {"name": "Alpha", "sync": {"UUID": "U-A"}},
    {"sync": {"UUID": "U-N"}},
    {"UseUUIDKey": False},
]

SMART_RULES = [
    {
        "name": "File Invoices",
        "Enabled": True,
        "IndexOffset": 2,
        "LastExecution": 750000000.5,
        "sync": {"UUID": "R-1"},
        # Sorted before "name" in XML output; must not leak into the rule
        "actions": [{"name": "Move", "Enabled": False}],
    },
    {"name": "Archive", "Enabled": False},
]


def test_lists_smart_groups_sorted(settings, no_macos_tools):
    write_plist(settings.smart_groups_plist, SMART_GROUPS)

    result = list_smart_groups(settings)

    assert result["success"] is True
    assert result["total_count"] == 3
    assert [g["name"] for g in result["smart_groups"]] == ["(unnamed)", "Alpha", "beta"]
    assert result["smart_groups"][2] == {
        "name": "beta",
        "uuid": "U-B",
        "sync_date": "2024-01-02T03:04:05Z",
        "use_uuid_key": True,
    }
    assert result["smart_groups"][0]["uuid"] == "U-N"
    assert result["smart_groups"][1]["sync_date"] is None
    assert result["smart_groups"][1]["use_uuid_key"] is None


def test_lists_smart_rules(settings, no_macos_tools):
    write_plist(settings.smart_rules_plist, SMART_RULES)

    result = list_smart_rules(settings)

    assert result["success"] is True
    assert result["smart_rules"] == [
        {
            "name": "Archive",
            "uuid": "",
            "enabled": False,
            "index_offset": None,
            "last_execution": None,
            "sync_date": None,
            "use_uuid_key": None,
        },
        {
            "name": "File Invoices",
            "uuid": "R-1",
            "enabled": True,
            "index_offset": 2,
            "last_execution": 750000000.5,
            "sync_date": None,
            "use_uuid_key": None,
        },
    ]


def test_same_name_different_uuid_kept(settings, no_macos_tools):
    write_plist(settings.smart_groups_plist, [
        {"name": "Same", "sync": {"UUID": "U-2"}},
        {"name": "Same", "sync": {"UUID": "U-1"}},
    ])

    result = list_smart_groups(settings)

    assert [g["uuid"] for g in result["smart_groups"]] == ["U-2", "U-1"]


def test_empty_document(settings):
    settings.smart_groups_plist.write_bytes(b"")
    runner = make_runner(default=ok('<plist version="1.0">\n<array/>\n</plist>\n'))

    result = list_smart_groups(settings, runner=runner)

    assert result == {"success": True, "smart_groups": [], "total_count": 0}


def test_missing_file(settings):
    result = list_smart_rules(settings)

    assert result["success"] is False
    assert str(settings.smart_rules_plist) in result["error"]
    assert result["path"] == str(settings.smart_rules_plist)


def test_conversion_failure(settings):
    settings.smart_groups_plist.write_bytes(b"")
    runner = make_runner(default=fail("Command timed out after 10 seconds"))

    result = list_smart_groups(settings, runner=runner)

    assert result["success"] is False
    assert "Command timed out after 10 seconds" in result["error"]


def test_parse_exception_is_reported(settings, monkeypatch):
    settings.smart_groups_plist.write_bytes(b"")

    def explode(xml):
        raise ValueError("malformed")

    monkeypatch.setattr("devon_mcp.smart_items.extract_top_level_blocks", explode)

    result = list_smart_groups(settings, runner=make_runner(default=ok("<dict>")))

    assert result["success"] is False
    assert "malformed" in result["error"]


def test_unterminated_document_keeps_complete_blocks():
    xml = (
        "<array><dict><key>name</key><string>Done</string></dict>"
        "<dict><key>name</key><string>Cut"
    )

    assert [g.name for g in parse_smart_groups(xml)] == ["Done"]


def test_sync_inside_nested_actions_is_ignored():
    xml = (
        "<array><dict>"
        "<key>actions</key><array><dict>"
        "<key>sync</key><dict><key>UUID</key><string>ACTION-UUID</string></dict>"
        "</dict></array>"
        "<key>name</key><string>G</string>"
        "</dict></array>"
    )

    groups = parse_smart_groups(xml)

    assert [(g.name, g.uuid) for g in groups] == [("G", "")]


def test_direct_sync_found_after_nested_sync():
    xml = (
        "<dict>"
        "<key>actions</key><array><dict>"
        "<key>sync</key><dict><key>UUID</key><string>ACTION-UUID</string></dict>"
        "</dict></array>"
        "<key>name</key><string>G</string>"
        "<key>sync</key><dict><key>UUID</key><string>G-UUID</string></dict>"
        "</dict>"
    )

    assert parse_smart_groups(xml)[0].uuid == "G-UUID"


@pytest.mark.parametrize("names, expected", [
    (["b", "A", "a", "B"], ["a", "A", "b", "B"]),
    (["Zeta", "alpha", "(unnamed)"], ["(unnamed)", "alpha", "Zeta"]),
    (["Zebra", "Äpfel", "apple", "Étude", "Fax"], ["Äpfel", "apple", "Étude", "Fax", "Zebra"]),
    (["Éclair", "eclair", "Eclair", "éclair"], ["eclair", "Eclair", "éclair", "Éclair"]),
])
def test_name_sort_key(names, expected):
    assert sorted(names, key=name_sort_key) == expected
