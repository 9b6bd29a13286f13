"""Read the packaged ``defaults.toml`` and the optional override file.

Readers never raise: a file that cannot be used comes back as a
``ConfigDocument`` with ``error_kind`` set (``missing``, ``unreadable``,
``oversized`` or ``invalid_toml``) and the caller decides whether that is
fatal.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from functools import lru_cache
from importlib import resources as importlib_resources
from pathlib import Path
from typing import Any

CONFIG_PATH_ENV_VAR = "CSVBENCH_CONFIG_PATH"
SOURCE_PACKAGED = "packaged_toml"
SOURCE_OVERRIDE = "override_toml"

_RESOURCE_PACKAGE = "csvbench.config"
_DEFAULTS_FILE = "defaults.toml"
_MAX_CONFIG_FILE_BYTES = 1_048_576


@dataclass(frozen=True)
class ConfigDocument:
    source: str
    path: str
    payload: dict[str, Any] = field(default_factory=dict)
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    def failed(self, error_kind: str) -> "ConfigDocument":
        return ConfigDocument(source=self.source, path=self.path, error_kind=error_kind)


def _parse(document: ConfigDocument, text: str) -> ConfigDocument:
    try:
        payload = tomllib.loads(text)
    except tomllib.TOMLDecodeError:
        return document.failed("invalid_toml")
    return ConfigDocument(source=document.source, path=document.path, payload=payload)


@lru_cache(maxsize=1)
def packaged_defaults() -> ConfigDocument:
    """The ``defaults.toml`` shipped inside the package, read once per process."""
    resource = importlib_resources.files(_RESOURCE_PACKAGE).joinpath(_DEFAULTS_FILE)
    document = ConfigDocument(source=SOURCE_PACKAGED, path=f"{_RESOURCE_PACKAGE}/{_DEFAULTS_FILE}")
    try:
        text = resource.read_text(encoding="utf-8")
    except FileNotFoundError:
        return document.failed("missing")
    except (OSError, UnicodeDecodeError):
        return document.failed("unreadable")
    return _parse(document, text)


def resolve_override_path(explicit: str | os.PathLike | None = None) -> Path | None:
    """``explicit`` when given, else ``$CSVBENCH_CONFIG_PATH``, else None."""
    if explicit is not None and str(explicit).strip():
        return Path(explicit).expanduser()
    override = os.getenv(CONFIG_PATH_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    return None


def read_config_file(path: str | os.PathLike, *, source: str = SOURCE_OVERRIDE) -> ConfigDocument:
    path = Path(path)
    document = ConfigDocument(source=source, path=str(path))
    try:
        size_bytes = path.stat().st_size
    except FileNotFoundError:
        return document.failed("missing")
    except OSError:
        return document.failed("unreadable")
    if size_bytes > _MAX_CONFIG_FILE_BYTES:
        return document.failed("oversized")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return document.failed("unreadable")
    return _parse(document, text)


def load_override(explicit: str | os.PathLike | None = None) -> ConfigDocument | None:
    path = resolve_override_path(explicit)
    if path is None:
        return None
    return read_config_file(path, source=SOURCE_OVERRIDE)
