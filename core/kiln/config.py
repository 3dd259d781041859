"""Shared kiln configuration utilities.

Centralises reading of ~/.kiln/configuration.json so the CLI, the logging
setup and every KilnHandler agree on one set of defaults. Environment
variables override the file:

    KILN_LOG_LEVEL           DEBUG, INFO, ...
    KILN_LOG_FORMAT          json, human or auto
    KILN_GUARD_TRANSACTIONS  0/false/no disables the transaction guard
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

KILN_CONFIG_FILE = Path.home() / ".kiln" / "configuration.json"

_FALSE_VALUES = {"0", "false", "no", "off"}


def get_kiln_config(path: Path | None = None) -> dict[str, Any]:
    """Load kiln configuration from ~/.kiln/configuration.json (or ``path``)."""
    config_file = path or KILN_CONFIG_FILE
    if not config_file.exists():
        return {}
    try:
        with open(config_file, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_log_level() -> str:
    """Return the log level, from KILN_LOG_LEVEL or the config file (default INFO)."""
    env = os.environ.get("KILN_LOG_LEVEL")
    if env:
        return env.upper()
    return str(get_kiln_config().get("logging", {}).get("level", "INFO")).upper()


def get_log_format() -> str:
    """Return the log format: json, human or auto (default)."""
    env = os.environ.get("KILN_LOG_FORMAT")
    if env:
        return env.lower()
    return str(get_kiln_config().get("logging", {}).get("format", "auto")).lower()


def get_guard_transactions() -> bool:
    """Whether resolution refuses to run inside a retrying transaction (default True)."""
    env = os.environ.get("KILN_GUARD_TRANSACTIONS")
    if env is not None:
        return env.strip().lower() not in _FALSE_VALUES
    value = get_kiln_config().get("guard_transactions", True)
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_VALUES
    return bool(value)


# ---------------------------------------------------------------------------
# KilnConfig – shared by the CLI and KilnHandler
# ---------------------------------------------------------------------------


@dataclass
class KilnConfig:
    """Kiln runtime configuration loaded from ~/.kiln/configuration.json."""

    log_level: str = field(default_factory=get_log_level)
    log_format: str = field(default_factory=get_log_format)
    guard_transactions: bool = field(default_factory=get_guard_transactions)
    seal_registry: bool = True
