"""Central configuration helpers for the remote-item resolver."""

from __future__ import annotations

import os
import unicodedata
import warnings
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, TypeVar

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent

# Load the root .env first, then allow working-directory overrides without clobbering.
load_dotenv(dotenv_path=PROJECT_ROOT / ".env", override=False)
load_dotenv(override=False)

DEFAULT_BASE_URL = "https://api.podcastindex.org/api/1.0"

LEGACY_ENV_NAMES: Dict[str, list[str]] = {
    "PODCAST_INDEX_API_KEY": ["PODCASTINDEX_API_KEY"],
    "PODCAST_INDEX_API_SECRET": ["PODCASTINDEX_API_SECRET"],
    "PODCAST_INDEX_REQUEST_INTERVAL": ["PODCAST_INDEX_DELAY"],
    "TRACK_CACHE_FILE": ["CACHE_FILE"],
}

_WARNED: set[tuple[str, str]] = set()

Number = TypeVar("Number", int, float)


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""


_BOOL_WORDS = {
    "1": True,
    "true": True,
    "yes": True,
    "on": True,
    "0": False,
    "false": False,
    "no": False,
    "off": False,
}


def _lookup(name: str) -> Optional[str]:
    """Return the first non-blank value among ``name`` and its legacy aliases."""
    for candidate in (name, *LEGACY_ENV_NAMES.get(name, ())):
        raw = (os.getenv(candidate) or "").strip()
        if not raw:
            continue
        if candidate != name:
            _warn_once(candidate, name)
        return raw
    return None


def _warn_once(old_name: str, new_name: str) -> None:
    if (old_name, new_name) in _WARNED:
        return
    _WARNED.add((old_name, new_name))
    warnings.warn(
        f"Environment variable {old_name} is deprecated; use {new_name} instead.",
        DeprecationWarning,
        stacklevel=3,
    )


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = _lookup(name)
    if raw is None:
        raw = default
    return unicodedata.normalize("NFC", raw.strip()) if isinstance(raw, str) else raw


def env_bool(name: str, default: Optional[bool] = None) -> bool:
    raw = _lookup(name)
    if raw is None:
        if default is None:
            raise RuntimeError(f"{name} is required (true/false)")
        return bool(default)
    try:
        return _BOOL_WORDS[raw.lower()]
    except KeyError:
        raise ValueError(f"{name} must be one of {sorted(_BOOL_WORDS)}, got {raw!r}") from None


def _env_number(name: str, default: Any, cast: Callable[[Any], Number], min_value: Optional[Number]) -> Number:
    raw = _lookup(name)
    if raw is None and default is None:
        raise RuntimeError(f"{name} is required")
    try:
        value = cast(default if raw is None else raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be numeric ({cast.__name__}), got {raw!r}") from exc
    if min_value is not None and value < min_value:
        raise ValueError(f"{name} must be >= {min_value}, got {value}")
    return value


def env_int(name: str, default: Any = None, *, min_value: Optional[int] = None) -> int:
    return _env_number(name, default, int, min_value)


def env_float(name: str, default: Any = None, *, min_value: Optional[float] = None) -> float:
    return _env_number(name, default, float, min_value)


@dataclass(frozen=True)
class Settings:
    api_key: Optional[str]
    api_secret: Optional[str]
    base_url: str
    user_agent: str
    request_interval: float
    rate_limit_cooldown: float
    request_timeout: float
    episode_list_fallback: bool
    episode_list_max: int
    track_cache_file: Path
    backup_dir: Path
    log_level: str

    def require_credentials(self) -> tuple[str, str]:
        if not self.api_key or not self.api_secret:
            raise ConfigurationError(
                "PODCAST_INDEX_API_KEY and PODCAST_INDEX_API_SECRET are required."
            )
        return self.api_key, self.api_secret

    @classmethod
    def from_env(cls) -> Settings:
        defaults = {
            "PODCAST_INDEX_BASE_URL": DEFAULT_BASE_URL,
            "PODCAST_INDEX_USER_AGENT": "remote-item-resolver/1.0",
            "PODCAST_INDEX_REQUEST_INTERVAL": "1.0",
            "PODCAST_INDEX_COOLDOWN": "30",
            "PODCAST_INDEX_TIMEOUT": "15",
            "EPISODE_LIST_FALLBACK": "true",
            "EPISODE_LIST_MAX": "1000",
            "TRACK_CACHE_FILE": "data/resolved-tracks.json",
            "LOG_LEVEL": "INFO",
        }

        values = {key: env_str(key, defaults.get(key)) for key in defaults}

        base_url = (values["PODCAST_INDEX_BASE_URL"] or DEFAULT_BASE_URL).rstrip("/")
        user_agent = values["PODCAST_INDEX_USER_AGENT"] or defaults["PODCAST_INDEX_USER_AGENT"]
        request_interval = env_float(
            "PODCAST_INDEX_REQUEST_INTERVAL", defaults["PODCAST_INDEX_REQUEST_INTERVAL"], min_value=0.0
        )
        cooldown = env_float("PODCAST_INDEX_COOLDOWN", defaults["PODCAST_INDEX_COOLDOWN"], min_value=0.0)
        timeout = env_float("PODCAST_INDEX_TIMEOUT", defaults["PODCAST_INDEX_TIMEOUT"], min_value=1.0)
        episode_list_fallback = env_bool("EPISODE_LIST_FALLBACK", defaults["EPISODE_LIST_FALLBACK"] == "true")
        episode_list_max = env_int("EPISODE_LIST_MAX", defaults["EPISODE_LIST_MAX"], min_value=1)

        cache_file_raw = values["TRACK_CACHE_FILE"] or defaults["TRACK_CACHE_FILE"]
        cache_file = _resolve_path_relative(cache_file_raw)
        backup_dir_raw = env_str("TRACK_BACKUP_DIR")
        backup_dir = _resolve_path_relative(backup_dir_raw) if backup_dir_raw else cache_file.parent
        log_level = (values["LOG_LEVEL"] or defaults["LOG_LEVEL"]).upper()

        return cls(
            api_key=env_str("PODCAST_INDEX_API_KEY"),
            api_secret=env_str("PODCAST_INDEX_API_SECRET"),
            base_url=base_url,
            user_agent=user_agent,
            request_interval=request_interval,
            rate_limit_cooldown=cooldown,
            request_timeout=timeout,
            episode_list_fallback=episode_list_fallback,
            episode_list_max=episode_list_max,
            track_cache_file=cache_file,
            backup_dir=backup_dir,
            log_level=log_level,
        )


def _resolve_path_relative(raw: str) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    try:
        return path.resolve()
    except OSError:
        return path


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached Settings instance populated from the environment."""
    return Settings.from_env()


def iter_legacy_names(new_name: str) -> Iterable[str]:
    return LEGACY_ENV_NAMES.get(new_name, [])


__all__ = [
    "ConfigurationError",
    "Settings",
    "env_bool",
    "env_float",
    "env_int",
    "env_str",
    "get_settings",
    "iter_legacy_names",
]
