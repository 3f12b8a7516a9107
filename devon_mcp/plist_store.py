"""
Property list access: XML conversion and the DEVONthink preference store.

The macOS tools (``plutil``, ``PlistBuddy``) are used when present. On other
systems, or when they are not installed, the same operations are done in
process with ``plistlib`` and return the same shapes.
"""

import logging
import os
import plistlib
import re
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .shell import DEFAULT_MAX_OUTPUT, DEFAULT_TIMEOUT, CommandRunner, run_command

logger = logging.getLogger(__name__)

PLUTIL = "plutil"
PLISTBUDDY = "/usr/libexec/PlistBuddy"
BINARY_MAGIC = b"bplist00"


class StoreError(Exception):
    """The preference store could not be loaded or saved."""


# ============================================================================
# XML conversion
# ============================================================================

def _convert_in_process(path: Path) -> Dict[str, Any]:
    command = ["plistlib", str(path)]
    try:
        with open(path, "rb") as f:
            data = plistlib.load(f)
        xml = plistlib.dumps(data, fmt=plistlib.FMT_XML).decode("utf-8")
    except (OSError, ValueError, TypeError, OverflowError) as e:
        return {
            "success": False,
            "error": f"{type(e).__name__}: {e}",
            "command": command
        }
    return {
        "success": True,
        "output": xml,
        "command": command
    }


def convert_plist_to_xml(
    path: Path,
    runner: Optional[CommandRunner] = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_output: int = DEFAULT_MAX_OUTPUT
) -> Dict[str, Any]:
    """
    Convert a (usually binary) plist file to XML text.

    Uses ``plutil -convert xml1 -o -`` when a runner is supplied or plutil is
    on PATH; otherwise converts with plistlib.

    Returns:
        Command result dictionary; ``output`` holds the XML on success
    """
    if runner is None and shutil.which(PLUTIL) is None:
        logger.debug(f"{PLUTIL} not found, converting {path} with plistlib")
        return _convert_in_process(Path(path))
    runner = runner or run_command
    return runner(
        [PLUTIL, "-convert", "xml1", "-o", "-", str(path)],
        timeout=timeout,
        max_output=max_output
    )


# ============================================================================
# PlistBuddy output parsing
# ============================================================================

_DICT_LINE = re.compile(r"^(.+?)\s*=\s*(.+)$")


def parse_plistbuddy_array(raw: str) -> List[str]:
    """Parse PlistBuddy ``Array { ... }`` output into a list of strings."""
    lines = (line.strip() for line in raw.split("\n"))
    return [line for line in lines if line and line not in ("Array {", "}")]


def parse_plistbuddy_dict(raw: str) -> Dict[str, float]:
    """Parse PlistBuddy ``Dict { key = value ... }`` output into a number map."""
    result = {}
    for line in raw.split("\n"):
        line = line.strip()
        if not line or line in ("Dict {", "}"):
            continue
        m = _DICT_LINE.match(line)
        if not m:
            continue
        try:
            result[m.group(1)] = float(m.group(2))
        except ValueError:
            continue
    return result


def _parse_plistbuddy_value(raw: str) -> Any:
    first = raw.lstrip().split("\n", 1)[0].strip()
    if first == "Array {":
        return parse_plistbuddy_array(raw)
    if first == "Dict {":
        return parse_plistbuddy_dict(raw)
    return raw.strip()


def _normalize_value(value: Any) -> Any:
    """Give plistlib values the same shape PlistBuddy output parses into."""
    if isinstance(value, list):
        return [str(item) for item in value]
    if isinstance(value, dict):
        widths = {}
        for k, v in value.items():
            if isinstance(v, (int, float)) and not isinstance(v, bool):
                widths[str(k)] = float(v)
        return widths
    return value


# ============================================================================
# Preference store
# ============================================================================

class PreferenceStore:
    """
    Flat key/value preference plist.

    Single keys are read one at a time (through PlistBuddy when available).
    Writes happen only inside ``transaction()``, which loads the whole file,
    hands the mapping to the caller and atomically replaces the file when the
    block exits without an exception.
    """

    def __init__(
        self,
        path: Path,
        runner: Optional[CommandRunner] = None,
        use_plistbuddy: Optional[bool] = None,
        read_timeout: float = DEFAULT_TIMEOUT,
        max_output: int = DEFAULT_MAX_OUTPUT
    ):
        self.path = Path(path)
        self.runner = runner or run_command
        if use_plistbuddy is None:
            use_plistbuddy = os.path.exists(PLISTBUDDY)
        self.use_plistbuddy = use_plistbuddy
        self.read_timeout = read_timeout
        self.max_output = max_output

    def _load(self) -> tuple:
        try:
            raw = self.path.read_bytes()
        except OSError as e:
            raise StoreError(f"Cannot read {self.path}: {e}") from e
        fmt = plistlib.FMT_BINARY if raw.startswith(BINARY_MAGIC) else plistlib.FMT_XML
        try:
            data = plistlib.loads(raw)
        except (ValueError, TypeError, OverflowError) as e:
            raise StoreError(f"Cannot parse {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"{self.path} does not contain a dictionary")
        return data, fmt

    def load(self) -> Dict[str, Any]:
        """Load the whole store."""
        data, _ = self._load()
        return data

    def read_key(self, key: str) -> Optional[Any]:
        """
        Read one key.

        Arrays come back as lists of strings and dictionaries as
        ``{name: float}`` maps, whichever backend is used.

        Returns:
            Parsed value, or None if the key (or the file) does not exist
        """
        if self.use_plistbuddy:
            result = self.runner(
                [PLISTBUDDY, "-c", f"Print ':{key}'", str(self.path)],
                timeout=self.read_timeout,
                max_output=self.max_output
            )
            if not result["success"]:
                return None
            output = result["output"].strip()
            return _parse_plistbuddy_value(output) if output else None

        try:
            data = self.load()
        except StoreError as e:
            logger.debug(f"Key read skipped: {e}")
            return None
        if key not in data:
            return None
        return _normalize_value(data[key])

    def keys(self) -> List[str]:
        """All top-level keys of the store."""
        return list(self.load().keys())

    @contextmanager
    def transaction(self) -> Iterator[Dict[str, Any]]:
        """
        Load, let the caller mutate, then atomically replace the file.

        The file keeps its original format (binary or XML). If the block
        raises, nothing is written.
        """
        data, fmt = self._load()
        yield data
        self._save(data, fmt)

    def _save(self, data: Dict[str, Any], fmt) -> None:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.",
            suffix=".tmp",
            dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "wb") as f:
                plistlib.dump(data, f, fmt=fmt)
                f.flush()
                os.fsync(f.fileno())
            shutil.copymode(self.path, tmp_name)
            os.replace(tmp_name, self.path)
        except Exception as e:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise StoreError(f"Cannot write {self.path}: {e}") from e
        logger.info(f"Rewrote {self.path} ({len(data)} keys)")
