"""Shared constants for wallhue."""

import os
from pathlib import Path

__all__ = [
    "CACHE_FILE",
    "CONFIG_FILE",
    "DEFAULT_ENGINE_COMMAND",
    "DEFAULT_EXTRACT_TIMEOUT",
    "DEFAULT_HOOK_TIMEOUT",
    "DEFAULT_MAX_PARALLEL_HOOKS",
    "GRACEFUL_STOP_TIMEOUT",
    "HASH_CHUNK_SIZE",
    "STDERR_TAIL_LENGTH",
]

_xdg_config_home = Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")
_xdg_cache_home = Path(os.environ.get("XDG_CACHE_HOME") or Path.home() / ".cache")

CONFIG_FILE = _xdg_config_home / "wallhue" / "config.toml"
CACHE_FILE = _xdg_cache_home / "wallhue" / "palettes.json"

# The engine prints `colorN #rrggbb` lines (or pywal's colors.json) for the [image]
DEFAULT_ENGINE_COMMAND = "wallhue-palette [image]"

# Seconds
DEFAULT_EXTRACT_TIMEOUT = 10.0
DEFAULT_HOOK_TIMEOUT = 30.0
GRACEFUL_STOP_TIMEOUT = 1.0

DEFAULT_MAX_PARALLEL_HOOKS = 4

HASH_CHUNK_SIZE = 1 << 16

# Characters of a failed hook's stderr kept in its outcome
STDERR_TAIL_LENGTH = 500
