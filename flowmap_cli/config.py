"""Configuration paths and defaults for flowmap."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("FLOWMAP_HOME", str(Path.home() / ".flowmap"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

# Per-repository settings file, looked up at the repository root.
REPO_CONFIG_NAME = ".flowmap.toml"

DEFAULT_TAG = "#@#@#@"
DEFAULT_CONTEXT_LINES = 3
DEFAULT_DB_PATH = ".flowmap/flows.json"
DEFAULT_DEBOUNCE_MS = 100

SKIP_DIRS = {
    ".git", "node_modules", "dist", "out",
    ".venv", "venv", "__pycache__", ".tox", ".pytest_cache",
    ".mypy_cache", ".ruff_cache", "build", ".eggs", ".flowmap",
}
