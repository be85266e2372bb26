"""Settings management for flowmap using TOML files.

Effective settings are layered: built-in defaults, then the global
``~/.flowmap/config.toml``, then the repository's ``.flowmap.toml``.
Both files keep their values under a ``[flowmap]`` table.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml

from . import config

logger = logging.getLogger(__name__)

SECTION = "flowmap"


class ConfigError(RuntimeError):
    """Raised when a settings file cannot be parsed."""


@dataclass
class ScanSettings:
    """Settings that drive scanning, export and the flow database."""

    tag: str = config.DEFAULT_TAG
    context_lines: int = config.DEFAULT_CONTEXT_LINES
    db_path: str = config.DEFAULT_DB_PATH
    debounce_ms: int = config.DEFAULT_DEBOUNCE_MS
    exclude_dirs: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _read_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (toml.TomlDecodeError, OSError) as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc


def _apply(settings: ScanSettings, values: Dict[str, Any], source: Path) -> None:
    tag = values.get("tag")
    if tag is not None:
        if isinstance(tag, str) and tag.strip():
            settings.tag = tag.strip()
        else:
            logger.warning("Ignoring invalid 'tag' in %s", source)

    context_lines = values.get("context_lines")
    if context_lines is not None:
        if isinstance(context_lines, int) and not isinstance(context_lines, bool) and context_lines >= 0:
            settings.context_lines = context_lines
        else:
            logger.warning("Ignoring invalid 'context_lines' in %s", source)

    db_path = values.get("db_path")
    if db_path is not None:
        if isinstance(db_path, str) and db_path.strip():
            settings.db_path = db_path.strip()
        else:
            logger.warning("Ignoring invalid 'db_path' in %s", source)

    debounce = values.get("debounce_ms")
    if debounce is not None:
        if isinstance(debounce, int) and not isinstance(debounce, bool) and debounce >= 0:
            settings.debounce_ms = debounce
        else:
            logger.warning("Ignoring invalid 'debounce_ms' in %s", source)

    exclude = values.get("exclude_dirs")
    if exclude is not None:
        if isinstance(exclude, list) and all(isinstance(item, str) for item in exclude):
            settings.exclude_dirs = list(exclude)
        else:
            logger.warning("Ignoring invalid 'exclude_dirs' in %s", source)


def repo_config_file(repo_root: Path) -> Path:
    return repo_root / config.REPO_CONFIG_NAME


def load_settings(repo_root: Optional[Path] = None) -> ScanSettings:
    """Load effective settings for *repo_root*.

    Raises:
        ConfigError: if one of the TOML files exists but cannot be parsed.
    """
    settings = ScanSettings()
    sources = [config.CONFIG_FILE]
    if repo_root is not None:
        sources.append(repo_config_file(repo_root))

    for source in sources:
        section = _read_toml(source).get(SECTION)
        if isinstance(section, dict):
            _apply(settings, section, source)
    return settings


def save_settings(repo_root: Path, **values: Any) -> Path:
    """Write *values* into the repository settings file.

    Other tables in the file are preserved.
    """
    path = repo_config_file(repo_root)
    data = _read_toml(path)
    section = data.get(SECTION)
    if not isinstance(section, dict):
        section = {}
    for key, value in values.items():
        if value is not None:
            section[key] = value
    data[SECTION] = section

    # Validate before writing so a bad value never lands on disk.
    probe = ScanSettings()
    _apply(probe, section, path)

    with open(path, "w", encoding="utf-8") as f:
        toml.dump(data, f)
    return path


def resolve_db_path(repo_root: Path, settings: ScanSettings) -> Path:
    db_path = Path(settings.db_path).expanduser()
    if db_path.is_absolute():
        return db_path
    return repo_root / db_path
