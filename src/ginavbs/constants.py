import os
from pathlib import Path

"""Global constants and path definitions for GINAvbs.

This module defines the filesystem layout (adhering to XDG standards where applicable),
the service identity written into backup commits, and the fixed tag that marks
automated commits.
"""

# --- Identity ---
APP_NAME = "ginavbs"
"""str: The application name, also used as the logger name and job file name."""

SERVICE_NAME = "GINAvbs"
"""str: The git author name used for backup commits."""

SERVICE_EMAIL = "ginavbs@erebos.xyz"
"""str: The git author email used for backup commits."""

COMMIT_TAG = "automated backup (ginavbs)"
"""str: The suffix appended to every backup commit message (manual and scheduled)."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "ginavbs"
"""Path: The directory for runtime state data (logs)."""

# Ensure state directory exists immediately upon module import.
STATE_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = STATE_DIR / "ginavbs.log"
"""Path: The file path for the rotating run log."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/ginavbs"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

OS_RELEASE_FILE = Path("/etc/os-release")
"""Path: The host identification file used to pick a package manager."""

# --- Dependencies ---
REQUIRED_BINARIES: tuple[str, ...] = ("git",)
"""tuple[str, ...]: Binaries that must be on PATH before a backup can run."""

# --- Environment ---
ENV_PREFIX = "GINA_"
"""str: Prefix of the environment variables used as option defaults."""

DEFAULT_INTERVAL = "weekly"
"""str: Backup interval used when neither a flag nor GINA_INTERVAL is given."""
