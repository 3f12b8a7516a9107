"""
Smart group and smart rule enumeration.

Neither smart groups nor smart rules are reachable through DEVONthink's
scripting dictionary, so they are read from SmartGroups.plist and
SmartRules.plist in the application support folder.
"""

import logging
import unicodedata
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from .config import Settings
from .plist_store import convert_plist_to_xml
from .plist_xml import (
    extract_bool_after_key,
    extract_date_after_key,
    extract_integer_after_key,
    extract_real_after_key,
    extract_string_after_key,
    extract_sub_block_after_key,
    extract_top_level_blocks,
    strip_nested_blocks,
)
from .shell import CommandRunner

logger = logging.getLogger(__name__)

UNNAMED = "(unnamed)"


class SmartGroupEntry(BaseModel):
    """A smart group as stored in SmartGroups.plist."""
    name: str
    uuid: str
    sync_date: Optional[str] = None
    use_uuid_key: Optional[bool] = None


class SmartRuleEntry(BaseModel):
    """A smart rule as stored in SmartRules.plist."""
    name: str
    uuid: str
    enabled: Optional[bool] = None
    index_offset: Optional[int] = None
    last_execution: Optional[float] = None
    sync_date: Optional[str] = None
    use_uuid_key: Optional[bool] = None


def _common_fields(block: str, top: str) -> Optional[Dict[str, Any]]:
    """
    Name, sync UUID/date and UseUUIDKey of one top-level block.

    ``top`` is the block with nested bodies stripped, so scalar keys of
    nested action or criteria dictionaries are never picked up.

    Returns:
        Field dictionary, or None when the block has neither name nor UUID
    """
    name = extract_string_after_key(top, "name")

    uuid = None
    sync_date = None
    sync = extract_sub_block_after_key(block, "sync", direct=True)
    if sync is not None:
        sync_top = strip_nested_blocks(sync)
        uuid = extract_string_after_key(sync_top, "UUID")
        sync_date = extract_date_after_key(sync_top, "date")

    if not name and not uuid:
        return None

    return {
        "name": name or UNNAMED,
        "uuid": uuid or "",
        "sync_date": sync_date,
        "use_uuid_key": extract_bool_after_key(top, "UseUUIDKey"),
    }


def parse_smart_groups(xml: str) -> List[SmartGroupEntry]:
    """Turn the XML form of SmartGroups.plist into entries, in file order."""
    entries = []
    for block in extract_top_level_blocks(xml):
        fields = _common_fields(block, strip_nested_blocks(block))
        if fields is not None:
            entries.append(SmartGroupEntry(**fields))
    return entries


def parse_smart_rules(xml: str) -> List[SmartRuleEntry]:
    """Turn the XML form of SmartRules.plist into entries, in file order."""
    entries = []
    for block in extract_top_level_blocks(xml):
        top = strip_nested_blocks(block)
        fields = _common_fields(block, top)
        if fields is None:
            continue
        entries.append(SmartRuleEntry(
            enabled=extract_bool_after_key(top, "Enabled"),
            index_offset=extract_integer_after_key(top, "IndexOffset"),
            last_execution=extract_real_after_key(top, "LastExecution"),
            **fields
        ))
    return entries


def _strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def name_sort_key(name: str) -> tuple:
    """
    Locale-style order: accents and case are ignored first, then accented
    letters follow plain ones, then lowercase sorts before uppercase.
    """
    folded = name.casefold()
    return (_strip_accents(folded), folded, name.swapcase())


def _list_entries(
    path: Path,
    label: str,
    missing_hint: str,
    parse: Callable[[str], List[BaseModel]],
    settings: Settings,
    runner: Optional[CommandRunner]
) -> Dict[str, Any]:
    if not path.exists():
        return {
            "success": False,
            "error": f"{path.name} not found at: {path}. {missing_hint}",
            "path": str(path)
        }

    converted = convert_plist_to_xml(
        path,
        runner=runner,
        timeout=settings.convert_timeout,
        max_output=settings.max_output_bytes
    )
    if not converted["success"]:
        return {
            "success": False,
            "error": f"Failed to convert {path.name}: {converted['error']}",
            "path": str(path)
        }

    try:
        entries = parse(converted["output"])
    except Exception as e:
        logger.exception(f"Failed to parse XML output for {path}")
        return {
            "success": False,
            "error": f"Failed to parse XML output for {path.name}: {e}",
            "path": str(path)
        }

    entries.sort(key=lambda entry: name_sort_key(entry.name))
    logger.debug(f"Read {len(entries)} {label} from {path}")
    return {
        "success": True,
        label: [entry.model_dump() for entry in entries],
        "total_count": len(entries)
    }


def list_smart_groups(
    settings: Optional[Settings] = None,
    runner: Optional[CommandRunner] = None
) -> Dict[str, Any]:
    """
    List every smart group defined in DEVONthink.

    Args:
        settings: Path provider (defaults to ``Settings.from_env()``)
        runner: Command runner used for plutil

    Returns:
        ``{"success": True, "smart_groups": [...], "total_count": n}`` or a
        failure dictionary with ``error`` and ``path``
    """
    try:
        settings = settings or Settings.from_env()
        return _list_entries(
            settings.smart_groups_plist,
            "smart_groups",
            "Ensure DEVONthink has been run at least once.",
            parse_smart_groups,
            settings,
            runner
        )
    except Exception as e:
        logger.exception("list_smart_groups failed")
        return {"success": False, "error": f"Failed to list smart groups: {e}"}


def list_smart_rules(
    settings: Optional[Settings] = None,
    runner: Optional[CommandRunner] = None
) -> Dict[str, Any]:
    """
    List every smart rule defined in DEVONthink.

    Args:
        settings: Path provider (defaults to ``Settings.from_env()``)
        runner: Command runner used for plutil

    Returns:
        ``{"success": True, "smart_rules": [...], "total_count": n}`` or a
        failure dictionary with ``error`` and ``path``
    """
    try:
        settings = settings or Settings.from_env()
        return _list_entries(
            settings.smart_rules_plist,
            "smart_rules",
            "Ensure DEVONthink has been run at least once and smart rules have been created.",
            parse_smart_rules,
            settings,
            runner
        )
    except Exception as e:
        logger.exception("list_smart_rules failed")
        return {"success": False, "error": f"Failed to list smart rules: {e}"}
