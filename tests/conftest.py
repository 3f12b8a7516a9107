import plistlib
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from devon_mcp.config import Settings


def write_plist(path: Path, data: Any, fmt=plistlib.FMT_BINARY) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        plistlib.dump(data, f, fmt=fmt)
    return path


class FakeRunner:
    """Stands in for ``run_command``; records every call."""

    def __init__(self, respond: Callable[[List[str]], Dict[str, Any]]):
        self.respond = respond
        self.calls: List[List[str]] = []

    def __call__(self, args, timeout=None, max_output=None):
        self.calls.append(list(args))
        return self.respond(list(args))


def ok(output: str) -> Dict[str, Any]:
    return {"success": True, "output": output, "command": []}


def fail(error: str) -> Dict[str, Any]:
    return {"success": False, "error": error, "command": []}


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        smart_groups_plist=tmp_path / "SmartGroups.plist",
        smart_rules_plist=tmp_path / "SmartRules.plist",
        preferences_plist=tmp_path / "com.devon-technologies.think.plist",
    )


@pytest.fixture
def no_macos_tools(monkeypatch):
    """Force the plistlib code paths even where plutil exists."""
    monkeypatch.setattr("devon_mcp.plist_store.shutil.which", lambda name: None)


def make_runner(outputs: Optional[Dict[str, Dict[str, Any]]] = None, default=None) -> FakeRunner:
    outputs = outputs or {}

    def respond(args):
        for needle, result in outputs.items():
            if any(needle in arg for arg in args):
                return result
        return default if default is not None else fail("Does Not Exist")

    return FakeRunner(respond)
