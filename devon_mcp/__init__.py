"""DEVONthink MCP server: smart groups, smart rules, column layouts and .eml headers."""

from .column_layout import copy_layout, list_layout_names, read_layout
from .config import Settings
from .eml_headers import parse_eml_headers
from .smart_items import list_smart_groups, list_smart_rules

__version__ = "0.1.0"

__all__ = [
    "Settings",
    "copy_layout",
    "list_layout_names",
    "list_smart_groups",
    "list_smart_rules",
    "parse_eml_headers",
    "read_layout",
]
