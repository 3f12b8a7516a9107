#!/usr/bin/env python3
"""
DEVONthink MCP Server

Model Context Protocol server exposing DEVONthink data that its scripting
dictionary does not reach: smart groups and smart rules (read from their
plists), column layouts of smart groups/rules (read and copied in the
preferences plist), and thread headers of .eml files.
"""

import json
from enum import Enum
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP
from pydantic import BaseModel, ConfigDict, Field

from .column_layout import copy_layout, list_layout_names, read_layout
from .config import Settings
from .eml_headers import parse_eml_headers
from .logging_setup import configure_logging
from .smart_items import list_smart_groups, list_smart_rules

# Constants
CHARACTER_LIMIT = 25000

# Initialize FastMCP server
mcp = FastMCP("devon_mcp")


# ============================================================================
# Enums and Models
# ============================================================================

class ResponseFormat(str, Enum):
    """Output format for responses."""
    JSON = "json"
    MARKDOWN = "markdown"


# ============================================================================
# Helper Functions
# ============================================================================

def truncate_response(content: str, limit: int = CHARACTER_LIMIT) -> str:
    """
    Truncate response if it exceeds character limit.

    Args:
        content: Content to potentially truncate
        limit: Maximum character limit

    Returns:
        Original or truncated content with truncation notice
    """
    if len(content) <= limit:
        return content

    truncated = content[:limit]
    notice = (
        f"\n\n---\n**Response truncated** (exceeded {limit} characters). "
        f"Use more specific filters or criteria to narrow results."
    )
    return truncated + notice


def format_smart_groups(result: Dict[str, Any]) -> str:
    """Markdown listing of a successful list_smart_groups result."""
    groups = result["smart_groups"]
    output = "### DEVONthink Smart Groups\n\n"
    if not groups:
        return output + "No smart groups found.\n"
    for group in groups:
        uuid = group["uuid"] or "no UUID"
        output += f"- **{group['name']}** (`{uuid}`)"
        if group["sync_date"]:
            output += f" synced {group['sync_date']}"
        output += "\n"
    output += f"\nTotal: {result['total_count']} smart group(s)\n"
    return output


def format_smart_rules(result: Dict[str, Any]) -> str:
    """Markdown listing of a successful list_smart_rules result."""
    rules = result["smart_rules"]
    output = "### DEVONthink Smart Rules\n\n"
    if not rules:
        return output + "No smart rules found.\n"
    for rule in rules:
        uuid = rule["uuid"] or "no UUID"
        state = {True: "enabled", False: "disabled"}.get(rule["enabled"], "state unknown")
        output += f"- **{rule['name']}** (`{uuid}`) {state}"
        if rule["index_offset"] is not None:
            output += f", index offset {rule['index_offset']}"
        output += "\n"
    output += f"\nTotal: {result['total_count']} smart rule(s)\n"
    return output


def format_layout_names(result: Dict[str, Any]) -> str:
    """Markdown listing of a successful list_layout_names result."""
    names: List[str] = result["names"]
    output = "### Stored Column Layouts\n\n"
    if not names:
        return output + "No column layouts found.\n"
    for name in names:
        output += f"- {name}\n"
    shown = len(names)
    output += f"\nShowing {shown} of {result['total_count']} layout(s)\n"
    return output


# ============================================================================
# Smart Group and Smart Rule Tools
# ============================================================================

class ListSmartItemsInput(BaseModel):
    """Input for listing smart groups or smart rules."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    response_format: ResponseFormat = Field(
        default=ResponseFormat.JSON,
        description="Output format: 'json' for raw data or 'markdown' for human-readable"
    )


@mcp.tool(
    name="devon_list_smart_groups",
    annotations={
        "title": "List DEVONthink Smart Groups",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def devon_list_smart_groups(params: ListSmartItemsInput) -> str:
    """
    List all DEVONthink smart groups by parsing SmartGroups.plist.

    Smart groups are not accessible through DEVONthink's AppleScript API, so
    this is the only way to enumerate them. Each entry carries the name, the
    UUID (from sync.UUID), the sync date and the UseUUIDKey flag.

    Args:
        params (ListSmartItemsInput): Parameters containing:
            - response_format (ResponseFormat): Output format

    Returns:
        str: Smart groups sorted by name, in the requested format

    Example output:
        {
          "success": true,
          "smart_groups": [
            {"name": "Inbox - Unread", "uuid": "4A469368-...", "sync_date": "2024-03-01T10:00:00Z", "use_uuid_key": true}
          ],
          "total_count": 1
        }

    Notes:
        - Use the returned uuid as the group UUID when searching a smart group's contents
        - Groups without a name are listed as "(unnamed)"
    """
    result = list_smart_groups()

    if not result["success"] or params.response_format == ResponseFormat.JSON:
        return truncate_response(json.dumps(result, indent=2))

    return truncate_response(format_smart_groups(result))


@mcp.tool(
    name="devon_list_smart_rules",
    annotations={
        "title": "List DEVONthink Smart Rules",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def devon_list_smart_rules(params: ListSmartItemsInput) -> str:
    """
    List all DEVONthink smart rules by parsing SmartRules.plist.

    Smart rules are not accessible through DEVONthink's AppleScript API.
    Each entry carries the name, UUID, enabled state, index offset, last
    execution time (seconds since 2001-01-01) and sync date.

    Args:
        params (ListSmartItemsInput): Parameters containing:
            - response_format (ResponseFormat): Output format

    Returns:
        str: Smart rules sorted by name, in the requested format
    """
    result = list_smart_rules()

    if not result["success"] or params.response_format == ResponseFormat.JSON:
        return truncate_response(json.dumps(result, indent=2))

    return truncate_response(format_smart_rules(result))


# ============================================================================
# Column Layout Tools
# ============================================================================

class GetColumnLayoutInput(BaseModel):
    """Input for reading a column layout."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    name: str = Field(
        description="Name of the smart group or smart rule whose column layout to read",
        min_length=1,
        max_length=500
    )
    uuid: Optional[str] = Field(
        default=None,
        description=(
            "UUID of the smart group, tried when the name has no layout. "
            "DEVONthink sometimes stores layouts under the UUID rather than the display name."
        )
    )


@mcp.tool(
    name="devon_get_column_layout",
    annotations={
        "title": "Get DEVONthink Column Layout",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def devon_get_column_layout(params: GetColumnLayoutInput) -> str:
    """
    Read the column layout of a DEVONthink smart group or smart rule.

    Returns the ordered visible columns, all table view columns and the
    column widths. Looks up the exact name first, then the UUID, then a
    case-insensitive partial name match.

    Args:
        params (GetColumnLayoutInput): Parameters containing:
            - name (str): Smart group or smart rule name
            - uuid (Optional[str]): UUID fallback

    Returns:
        str: JSON-formatted layout or failure details

    Examples:
        - Exact name: name="Archive - Jobs"
        - Name with UUID fallback: name="Jobs", uuid="4A469368-..."

    Notes:
        - A failure lists partial_matches when the name is ambiguous
        - A failure lists example_names when nothing matched
    """
    result = read_layout(params.name, params.uuid)
    return json.dumps(result, indent=2)


class CopyColumnLayoutInput(BaseModel):
    """Input for copying a column layout."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    source_name: str = Field(
        description="Name of the source smart group or smart rule (must have a saved layout)",
        min_length=1,
        max_length=500
    )
    target_name: str = Field(
        description="Name of the smart group or smart rule to copy the layout to",
        min_length=1,
        max_length=500
    )
    source_uuid: Optional[str] = Field(
        default=None,
        description="UUID of the source smart group, tried when the source name has no layout"
    )
    target_uuid: Optional[str] = Field(
        default=None,
        description=(
            "UUID of the target smart group. When given, the layout is written under "
            "the UUID key, which DEVONthink prefers for smart groups."
        )
    )


@mcp.tool(
    name="devon_copy_column_layout",
    annotations={
        "title": "Copy DEVONthink Column Layout",
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def devon_copy_column_layout(params: CopyColumnLayoutInput) -> str:
    """
    Copy a column layout from one smart group or smart rule to another.

    Column order, visible columns and column widths are copied together in
    a single rewrite of DEVONthink's preferences file.

    Args:
        params (CopyColumnLayoutInput): Parameters containing:
            - source_name (str): Source smart group/rule name (partial names allowed)
            - target_name (str): Target smart group/rule name (used verbatim)
            - source_uuid (Optional[str]): Source UUID fallback
            - target_uuid (Optional[str]): Write under this UUID instead of target_name

    Returns:
        str: JSON-formatted result with the keys written

    Examples:
        - Copy by name: source_name="Archive - Jobs", target_name="Jobs - To Review"

    Warning:
        - Existing layout keys of the target are overwritten
        - DEVONthink must be restarted (or the smart group window reopened) to show the change
    """
    result = copy_layout(
        params.source_name,
        params.target_name,
        source_uuid=params.source_uuid,
        target_uuid=params.target_uuid
    )
    return json.dumps(result, indent=2)


class ListColumnLayoutsInput(BaseModel):
    """Input for listing stored column layouts."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    query: Optional[str] = Field(
        default=None,
        description="Only list names containing this text (case-insensitive)"
    )
    limit: int = Field(
        default=200,
        description="Maximum number of names to return",
        ge=1,
        le=1000
    )
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format: 'json' for raw data or 'markdown' for human-readable"
    )


@mcp.tool(
    name="devon_list_column_layouts",
    annotations={
        "title": "List DEVONthink Column Layouts",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def devon_list_column_layouts(params: ListColumnLayoutsInput) -> str:
    """
    List the smart group/rule names that have a stored column layout.

    Args:
        params (ListColumnLayoutsInput): Parameters containing:
            - query (Optional[str]): Substring filter
            - limit (int): Maximum names returned
            - response_format (ResponseFormat): Output format

    Returns:
        str: Layout names in the requested format

    Notes:
        - Names may be UUIDs for smart groups that store layouts by UUID
        - Use these names as source_name for devon_copy_column_layout
    """
    result = list_layout_names(params.query, params.limit)

    if not result["success"] or params.response_format == ResponseFormat.JSON:
        return truncate_response(json.dumps(result, indent=2))

    return truncate_response(format_layout_names(result))


# ============================================================================
# Email Tools
# ============================================================================

class ParseEmlHeadersInput(BaseModel):
    """Input for parsing .eml headers."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    file_path: str = Field(
        description="Absolute path to the .eml file to parse",
        min_length=1,
        max_length=4096
    )


@mcp.tool(
    name="devon_parse_eml_headers",
    annotations={
        "title": "Parse EML Headers",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def devon_parse_eml_headers(params: ParseEmlHeadersInput) -> str:
    """
    Extract the headers of an .eml file needed for email thread correlation.

    Returns message_id, in_reply_to, references (list), subject, from, to,
    cc and date. Handles CRLF/LF line endings, folded headers and RFC 2047
    encoded words.

    Args:
        params (ParseEmlHeadersInput): Parameters containing:
            - file_path (str): Path to the .eml file

    Returns:
        str: JSON-formatted headers or failure details

    Example output:
        {
          "success": true,
          "file_path": "/path/to/mail.eml",
          "message_id": "<abc@example.com>",
          "in_reply_to": null,
          "references": [],
          "subject": "Hello",
          ...
        }
    """
    result = parse_eml_headers(params.file_path)
    return json.dumps(result, indent=2)


# ============================================================================
# Main Entry Point
# ============================================================================

def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_file)
    # Run the MCP server with stdio transport
    mcp.run()


if __name__ == "__main__":
    main()
