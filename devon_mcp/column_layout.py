"""
Column layouts of DEVONthink smart groups and smart rules.

DEVONthink keeps one layout per smart group/rule in its preferences plist,
spread over three keys that share the entity name (or, for some smart
groups, its UUID) as a suffix:

    ListColumnsHorizontal-<name>                    visible columns, in order
    TableView Columns ListColumnsHorizontal-<name>  all columns
    TableView Column Widths ListColumnsHorizontal-<name>  column -> width

The three keys are always copied together in one rewrite of the file.
DEVONthink only picks up a changed layout after a restart or after the
smart group window is closed and reopened.
"""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from .config import Settings
from .plist_store import PreferenceStore, StoreError
from .shell import CommandRunner

logger = logging.getLogger(__name__)

LAYOUT_SUFFIXES = (
    "ListColumnsHorizontal",
    "TableView Columns ListColumnsHorizontal",
    "TableView Column Widths ListColumnsHorizontal",
)
LAYOUT_PREFIXES = tuple(f"{suffix}-" for suffix in LAYOUT_SUFFIXES)
LAYOUT_FIELDS = ("columns", "table_view_columns", "widths")

# Outline views store their layouts under the same prefixes
IGNORED_NAME_PREFIX = "Outline"

FUZZY_SEARCH_LIMIT = 200
READ_EXAMPLES_LIMIT = 15
COPY_EXAMPLES_LIMIT = 8

RESTART_NOTE = (
    "Restart DEVONthink or close/reopen the smart group window "
    "for the change to take effect."
)


class LayoutNotFoundError(Exception):
    """No layout keys exist for a name."""

    def __init__(self, name: str, examples: Optional[List[str]] = None):
        super().__init__(f"No column layout found for {name!r}")
        self.name = name
        self.examples = examples or []


class AmbiguousLayoutError(Exception):
    """A partial name matched more than one stored layout."""

    def __init__(self, name: str, candidates: List[str]):
        super().__init__(f"{name!r} matches {len(candidates)} layouts")
        self.name = name
        self.candidates = candidates


class ColumnLayout(BaseModel):
    """The layout stored under one base name."""
    found: bool = True
    name: str
    resolved_key: str
    columns: Optional[List[str]] = None
    table_view_columns: Optional[List[str]] = None
    widths: Optional[Dict[str, float]] = None
    keys_found: List[str] = Field(default_factory=list)


class Resolution(BaseModel):
    """Outcome of resolving a caller-supplied name to a stored base name."""
    key: str
    strategy: str
    layout: ColumnLayout


def layout_keys(base_name: str) -> Dict[str, str]:
    """Map each layout field to its preference key for ``base_name``."""
    return {
        field: f"{prefix}{base_name}"
        for field, prefix in zip(LAYOUT_FIELDS, LAYOUT_PREFIXES)
    }


def read_layout_for_key(store: PreferenceStore, base_name: str) -> Optional[ColumnLayout]:
    """
    Read the three layout keys stored under ``base_name``.

    Returns:
        The keys that exist, or None when none of the three exists
    """
    values = {}
    keys_found = []
    for field, key in layout_keys(base_name).items():
        value = store.read_key(key)
        if field == "widths":
            value = value if isinstance(value, dict) else None
        else:
            value = value if isinstance(value, list) else None
        values[field] = value
        if value is not None:
            keys_found.append(key)

    if not keys_found:
        return None

    return ColumnLayout(
        name=base_name,
        resolved_key=base_name,
        keys_found=keys_found,
        **values
    )


def layout_base_names(keys: List[str]) -> List[str]:
    """Sorted, de-duplicated base names of the layout keys among ``keys``."""
    names = set()
    for key in keys:
        for prefix in LAYOUT_PREFIXES:
            if key.startswith(prefix):
                names.add(key[len(prefix):])
    return sorted(n for n in names if not n.startswith(IGNORED_NAME_PREFIX))


def list_known_names(store: PreferenceStore, limit: int = FUZZY_SEARCH_LIMIT) -> List[str]:
    """
    Base names of every stored layout, sorted.

    Returns an empty list when the preference store cannot be loaded.
    """
    try:
        keys = store.keys()
    except StoreError as e:
        logger.warning(f"Cannot list layout names: {e}")
        return []
    return layout_base_names(keys)[:limit]


def find_matching_names(store: PreferenceStore, query: str) -> List[str]:
    """Known names containing ``query``, case-insensitively."""
    needle = query.casefold()
    return [n for n in list_known_names(store) if needle in n.casefold()]


# ============================================================================
# Name resolution
# ============================================================================

Strategy = Callable[[PreferenceStore, str, Optional[str]], Optional[Resolution]]


def _by_exact_name(store: PreferenceStore, name: str, uuid: Optional[str]) -> Optional[Resolution]:
    layout = read_layout_for_key(store, name)
    if layout is None:
        return None
    return Resolution(key=name, strategy="exact", layout=layout)


def _by_uuid(store: PreferenceStore, name: str, uuid: Optional[str]) -> Optional[Resolution]:
    if not uuid:
        return None
    layout = read_layout_for_key(store, uuid)
    if layout is None:
        return None
    return Resolution(key=uuid, strategy="uuid", layout=layout)


def _by_partial_name(store: PreferenceStore, name: str, uuid: Optional[str]) -> Optional[Resolution]:
    matches = find_matching_names(store, name)
    if len(matches) > 1:
        raise AmbiguousLayoutError(name, matches)
    if not matches:
        return None
    layout = read_layout_for_key(store, matches[0])
    if layout is None:
        return None
    return Resolution(key=matches[0], strategy="partial", layout=layout)


RESOLUTION_STRATEGIES: List[Strategy] = [_by_exact_name, _by_uuid, _by_partial_name]


def resolve_layout(store: PreferenceStore, name: str, uuid: Optional[str] = None) -> Resolution:
    """
    Resolve ``name`` to a stored layout.

    Strategies run in order (exact name, UUID, partial name) and the first
    hit wins.

    Raises:
        AmbiguousLayoutError: The partial name matched several layouts
        LayoutNotFoundError: No strategy found a layout
    """
    for strategy in RESOLUTION_STRATEGIES:
        resolution = strategy(store, name, uuid)
        if resolution is not None:
            logger.debug(f"Resolved layout {name!r} to {resolution.key!r} ({resolution.strategy})")
            return resolution
    raise LayoutNotFoundError(name, list_known_names(store, READ_EXAMPLES_LIMIT))


def _store_for(settings: Optional[Settings], runner: Optional[CommandRunner]) -> PreferenceStore:
    settings = settings or Settings.from_env()
    return PreferenceStore(
        settings.preferences_plist,
        runner=runner,
        read_timeout=settings.read_timeout,
        max_output=settings.max_output_bytes
    )


# ============================================================================
# Operations
# ============================================================================

def read_layout(
    name: str,
    uuid: Optional[str] = None,
    settings: Optional[Settings] = None,
    store: Optional[PreferenceStore] = None,
    runner: Optional[CommandRunner] = None
) -> Dict[str, Any]:
    """
    Read the column layout of a smart group or smart rule.

    Args:
        name: Display name of the smart group/rule (partial names allowed)
        uuid: UUID tried when the name has no layout of its own
        settings: Path provider (defaults to ``Settings.from_env()``)
        store: Preference store to use instead of the configured one
        runner: Command runner for PlistBuddy reads

    Returns:
        Layout dictionary with ``success: True``, or a failure with
        ``partial_matches`` (ambiguous) or ``example_names`` (not found)
    """
    try:
        store = store or _store_for(settings, runner)
        resolution = resolve_layout(store, name, uuid)
    except AmbiguousLayoutError as e:
        return {
            "success": False,
            "name": name,
            "error": f'No exact match for "{name}". Multiple partial matches found, be more specific.',
            "partial_matches": e.candidates
        }
    except LayoutNotFoundError as e:
        return {
            "success": False,
            "name": name,
            "error": (
                f'No column layout found for "{name}". '
                "This smart group may not have a custom layout yet (it will use defaults). "
                "Use copy_column_layout to copy an existing layout to it."
            ),
            "example_names": e.examples
        }
    except Exception as e:
        logger.exception(f"Reading column layout for {name!r} failed")
        return {"success": False, "name": name, "error": f"Failed to read column layout: {e}"}

    result = {"success": True, **resolution.layout.model_dump()}
    if resolution.strategy == "uuid":
        result["name"] = name
    elif resolution.strategy == "partial":
        result["name_searched"] = name
        result["note"] = f'Exact name not found; matched "{resolution.key}" via partial search'
    return result


def _copy_keys(store: PreferenceStore, source_key: str, target_key: str) -> List[str]:
    """Copy every existing layout key of ``source_key`` in one file rewrite."""
    with store.transaction() as data:
        copied = []
        for suffix in LAYOUT_SUFFIXES:
            src = f"{suffix}-{source_key}"
            if src in data:
                tgt = f"{suffix}-{target_key}"
                data[tgt] = copy.deepcopy(data[src])
                copied.append(tgt)
        if not copied:
            # Raising inside the transaction leaves the file untouched
            raise LayoutNotFoundError(source_key)
    return copied


def copy_layout(
    source_name: str,
    target_name: str,
    source_uuid: Optional[str] = None,
    target_uuid: Optional[str] = None,
    settings: Optional[Settings] = None,
    store: Optional[PreferenceStore] = None,
    runner: Optional[CommandRunner] = None
) -> Dict[str, Any]:
    """
    Copy a column layout from one smart group/rule to another.

    The source is resolved like ``read_layout``. The target is written under
    ``target_uuid`` when given, else under ``target_name`` verbatim. After
    the write the target is read back; if nothing can be read the copy is
    reported as failed.

    Returns:
        Result dictionary with ``success``, the resolved keys and
        ``keys_copied``
    """
    result: Dict[str, Any] = {"source_name": source_name, "target_name": target_name}
    try:
        store = store or _store_for(settings, runner)
        resolution = resolve_layout(store, source_name, source_uuid)
    except AmbiguousLayoutError as e:
        shown = ", ".join(e.candidates[:COPY_EXAMPLES_LIMIT])
        return {
            "success": False,
            **result,
            "error": f'Ambiguous source name "{source_name}". Multiple matches: {shown}',
            "partial_matches": e.candidates
        }
    except LayoutNotFoundError as e:
        shown = ", ".join(e.examples[:COPY_EXAMPLES_LIMIT])
        return {
            "success": False,
            **result,
            "error": (
                f'Source column layout for "{source_name}" not found. '
                "This smart group may not have a custom layout saved yet. "
                f"Known layouts include: {shown}"
            )
        }
    except Exception as e:
        logger.exception(f"Resolving column layout {source_name!r} failed")
        return {"success": False, **result, "error": f"Failed to resolve source layout: {e}"}

    result["resolved_source_key"] = resolution.key
    result["resolved_target_key"] = target_key = target_uuid or target_name

    try:
        keys_copied = _copy_keys(store, resolution.key, target_key)
    except LayoutNotFoundError:
        return {"success": False, **result, "error": "Copy failed: no source keys found"}
    except Exception as e:
        logger.exception(f"Copying column layout {resolution.key!r} -> {target_key!r} failed")
        return {"success": False, **result, "error": f"Copy failed: {e}"}

    logger.info(f"Copied column layout {resolution.key!r} -> {target_key!r}: {keys_copied}")

    verification = read_layout_for_key(store, target_key)
    if verification is None:
        return {
            "success": False,
            **result,
            "error": "Copy appeared to succeed but target keys not readable after write"
        }

    columns = ", ".join(verification.columns) if verification.columns else "n/a"
    return {
        "success": True,
        **result,
        "keys_copied": keys_copied,
        "message": (
            f'Copied column layout from "{source_name}" to "{target_name}". '
            f"Keys written: {', '.join(keys_copied)}. "
            f"Columns: [{columns}]. {RESTART_NOTE}"
        )
    }


def list_layout_names(
    query: Optional[str] = None,
    limit: int = FUZZY_SEARCH_LIMIT,
    settings: Optional[Settings] = None,
    store: Optional[PreferenceStore] = None,
    runner: Optional[CommandRunner] = None
) -> Dict[str, Any]:
    """
    List the base names that have a stored column layout.

    Args:
        query: Optional case-insensitive substring filter
        limit: Maximum number of names returned
    """
    try:
        store = store or _store_for(settings, runner)
        keys = store.keys()
    except StoreError as e:
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.exception("Listing column layouts failed")
        return {"success": False, "error": f"Failed to list column layouts: {e}"}

    names = layout_base_names(keys)
    if query:
        needle = query.casefold()
        names = [n for n in names if needle in n.casefold()]
    return {
        "success": True,
        "names": names[:limit],
        "total_count": len(names)
    }
