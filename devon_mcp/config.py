"""
Runtime configuration for the DEVONthink MCP server.

Every file location the server touches is a field on ``Settings`` so tests
and unusual installations can point the tools somewhere other than the
current user's Library folder.

Environment Variables (optional):
    DEVON_MCP_SMART_GROUPS_PLIST: SmartGroups.plist location
    DEVON_MCP_SMART_RULES_PLIST: SmartRules.plist location
    DEVON_MCP_PREFERENCES_PLIST: DEVONthink preferences plist location
    DEVON_MCP_CONVERT_TIMEOUT: Seconds allowed for plist conversion
    DEVON_MCP_READ_TIMEOUT: Seconds allowed for a single key read
    DEVON_MCP_MAX_OUTPUT_BYTES: Output cap for external commands
    DEVON_MCP_LOG_LEVEL: DEBUG, INFO, WARNING or ERROR
    DEVON_MCP_LOG_FILE: Optional log file (stderr is always used)
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "DEVON_MCP_"

SUPPORT_DIR = Path.home() / "Library" / "Application Support" / "DEVONthink"
PREFERENCES_DIR = Path.home() / "Library" / "Preferences"


class Settings(BaseModel):
    """Path provider and limits shared by every tool."""
    model_config = ConfigDict(
        validate_assignment=True,
        extra='forbid'
    )

    smart_groups_plist: Path = Field(
        default=SUPPORT_DIR / "SmartGroups.plist",
        description="Binary plist holding smart group definitions"
    )
    smart_rules_plist: Path = Field(
        default=SUPPORT_DIR / "SmartRules.plist",
        description="Binary plist holding smart rule definitions"
    )
    preferences_plist: Path = Field(
        default=PREFERENCES_DIR / "com.devon-technologies.think.plist",
        description="Preference store holding column layouts"
    )
    convert_timeout: float = Field(default=10.0, gt=0, le=300)
    read_timeout: float = Field(default=10.0, gt=0, le=300)
    max_output_bytes: int = Field(default=50 * 1024 * 1024, ge=1024)
    log_level: str = Field(default="INFO")
    log_file: Optional[Path] = None

    @field_validator("smart_groups_plist", "smart_rules_plist", "preferences_plist", "log_file")
    @classmethod
    def expand_user(cls, v: Optional[Path]) -> Optional[Path]:
        return v.expanduser() if v is not None else v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        """
        Build settings from ``DEVON_MCP_*`` environment variables.

        Unset or empty variables keep their defaults.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            Validated Settings instance
        """
        env = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is not None and raw.strip():
                values[name] = raw.strip()
        return cls(**values)
