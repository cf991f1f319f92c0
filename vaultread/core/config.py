"""
Loader preferences (~/.config/vaultread/config.toml).

The file is a flat list of ``key = value`` lines. Comments (``#``), blank
lines, unknown keys and invalid values are ignored so a stale or hand-edited
file never stops a container from loading.

    verify_header_hash = true
    strict_trailing_data = false
    max_transform_rounds = 100000000
    read_chunk_size = 65536
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path

from .ciphers import DEFAULT_CHUNK_SIZE
from .errors import ConfigurationError
from .kdf import DEFAULT_MAX_TRANSFORM_ROUNDS

log = logging.getLogger(__name__)

_CONFIG_DIR = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")) / "vaultread"
_CONFIG_FILE = _CONFIG_DIR / "config.toml"

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}

_BOOL_KEYS = {"verify_header_hash", "strict_trailing_data"}
_INT_LIMITS = {
    "max_transform_rounds": (1, 2**64 - 1),
    "read_chunk_size": (16, 16 * 1024 * 1024),
}


def _parse_bool(value: str) -> bool | None:
    lowered = value.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    return None


def _parse_int(key: str, value: str) -> int | None:
    try:
        number = int(value.replace("_", ""))
    except ValueError:
        return None
    lo, hi = _INT_LIMITS[key]
    if number < lo or number > hi:
        return None
    if key == "read_chunk_size" and number % 16:
        return None
    return number


def load_config() -> dict:
    """Read the preference file. Returns {} when it does not exist."""
    try:
        text = _CONFIG_FILE.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        log.debug("Cannot read %s: %s", _CONFIG_FILE, exc)
        return {}

    config: dict = {}
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if not line or "=" not in line:
            continue
        key, value = (part.strip() for part in line.split("=", 1))
        value = value.strip("\"'")
        if key in _BOOL_KEYS:
            parsed = _parse_bool(value)
        elif key in _INT_LIMITS:
            parsed = _parse_int(key, value)
        else:
            log.debug("Ignoring unknown config key %r", key)
            continue
        if parsed is None:
            log.debug("Ignoring invalid value for %r", key)
            continue
        config[key] = parsed
    return config


@dataclass(frozen=True)
class LoaderOptions:
    """Knobs for one load. Defaults match an absent config file."""
    verify_header_hash: bool = True
    strict_trailing_data: bool = False
    max_transform_rounds: int = DEFAULT_MAX_TRANSFORM_ROUNDS
    read_chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self):
        for key, (lo, hi) in _INT_LIMITS.items():
            value = getattr(self, key)
            if not lo <= value <= hi:
                raise ConfigurationError(f"{key}={value} out of allowed range [{lo}, {hi}]")
        if self.read_chunk_size % 16:
            raise ConfigurationError("read_chunk_size must be a multiple of 16")

    @classmethod
    def from_config(cls, config: dict) -> "LoaderOptions":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in config.items() if k in known})


def default_options() -> LoaderOptions:
    """Options from the user's preference file, falling back to defaults."""
    return LoaderOptions.from_config(load_config())
