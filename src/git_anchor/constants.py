"""Global constants and configuration path definitions for Git Anchor.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the git object constants used when rewriting the
aggregator repository's tree.
"""

import os
from pathlib import Path

# --- Identity ---
APP_NAME = "git-anchor"
"""str: The human-readable application name."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "git-anchor"
"""Path: The directory for runtime state data (logs, event journal)."""

LOG_FILE = STATE_DIR / "anchor.log"
"""Path: The file path for hook run logs."""

# --- Configuration Paths ---
_XDG_CONFIG = os.environ.get("XDG_CONFIG_HOME")
CONFIG_DIR: Path = (
    Path(_XDG_CONFIG) if _XDG_CONFIG else Path.home() / ".config"
) / "git-anchor"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

CONFIG_ENV_VAR = "GIT_ANCHOR_CONFIG"
"""str: Environment variable overriding the configuration file location."""

SOURCE_ENV_VAR = "GIT_ANCHOR_SOURCE"
"""str: Environment variable naming the dependent repository a hook runs in."""

# --- Git / Logic Constants ---
GITLINK_MODE = "160000"
"""str: The tree entry mode git uses for a pinned submodule commit."""

GITLINK_KIND = "commit"
"""str: The object kind reported by `git ls-tree` for gitlink entries."""

ZERO_OID = "0" * 40
"""str: The null object ID git passes for created or deleted refs."""

DEFAULT_BRANCH_PATTERN = "main|develop"
"""str: Branches of dependent repositories that trigger synchronization."""

LOCK_DIR_NAME = "anchor-locks"
"""str: Directory inside the aggregator's git dir holding branch lock files."""

HOOK_GIT_ENV = [
    "GIT_DIR",
    "GIT_WORK_TREE",
    "GIT_INDEX_FILE",
    "GIT_PREFIX",
    "GIT_OBJECT_DIRECTORY",
    "GIT_ALTERNATE_OBJECT_DIRECTORIES",
    "GIT_QUARANTINE_PATH",
]
"""
list[str]: Variables exported by git to hooks of the dependent repository.
They must not leak into commands run against the aggregator.
"""

# --- Exit Codes ---
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
